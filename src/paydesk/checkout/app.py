"""Command line checkout driver."""
import argparse
import asyncio
import sys
from datetime import timedelta
from pathlib import Path
from typing import Optional

from loguru import logger
from paydesk.checkout.api import CheckoutAPI
from paydesk.checkout.clock import format_countdown
from paydesk.checkout.config import CommandLineConfig, load_config
from paydesk.checkout.controller import CheckoutController, OperationResult
from paydesk.checkout.http_client import setup_http_client, shutdown_http_client
from paydesk.checkout.log import setup_logging
from paydesk.checkout.models.checkout import ConfirmProof, CreateCheckoutForm
from paydesk.checkout.models.config import Config


def _log_tick(remaining: timedelta):
    logger.debug(f"Checkout expires in {format_countdown(remaining)}")


async def run_checkout(
    controller: CheckoutController, args: CommandLineConfig
) -> OperationResult:
    """Run one checkout attempt.

    Creates a checkout unless ``args.checkout_id`` is set, loads its info,
    selects the requested method (or the first option), submits, and confirms
    if ``args.confirm`` is set.

    Returns:
        The result of the last operation attempted.
    """
    if args.checkout_id:
        checkout_id: Optional[str] = args.checkout_id
    else:
        result = await controller.create(
            CreateCheckoutForm(
                amount=args.amount or "",
                product_id=args.product_id or "",
                return_url=args.return_url or "",
                notify_url=args.notify_url or "",
                request_id=args.request_id,
                currency=args.currency,
            )
        )
        if not result.ok:
            return result
        checkout_id = None

    result = await controller.load_info(checkout_id)
    if not result.ok:
        return result

    for option in controller.options:
        logger.info(f"Payment method {option.code}: {option.display_name}")

    remaining = controller.clock.remaining
    if remaining is not None:
        logger.info(f"Checkout expires in {format_countdown(remaining)}")

    method = args.method or controller.options[0].code
    result = controller.select_method(method)
    if not result.ok:
        return result

    result = await controller.submit()
    if not result.ok:
        return result

    transaction = result.value
    logger.info(f"Transaction {transaction.id} issued")
    for app_name, url in transaction.links.items():
        logger.info(f"Pay with {app_name}: {url}")

    if not args.confirm:
        return result

    return await controller.confirm(
        ConfirmProof(proof_id=args.proof_id, proof_urls=tuple(args.proof_urls))
    )


async def _main(config: Config, args: CommandLineConfig) -> int:
    setup_http_client(config.api)
    controller = CheckoutController(
        CheckoutAPI(config.api), config.checkout, on_tick=_log_tick
    )
    try:
        result = await run_checkout(controller, args)
    finally:
        await controller.close()
        await shutdown_http_client()

    if not result.ok:
        logger.error(f"Checkout failed: {result.error}")
        return 1

    logger.info("Checkout finished")
    return 0


def run():
    """Entry point for the console script."""
    args = parse_args()
    setup_logging(debug=args.debug)
    config = load_config(args.config)
    sys.exit(asyncio.run(_main(config, args)))


def parse_args(argv: Optional[list[str]] = None) -> CommandLineConfig:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Run a hosted checkout against the payment platform",
    )

    parser.add_argument(
        "-d",
        "--debug",
        action="store_true",
        help="enable debug logging",
        default=False,
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        help="path to the config file",
        default=Path("config.yml"),
    )
    parser.add_argument(
        "--checkout-id", type=str, help="open an existing checkout instead"
    )
    parser.add_argument("--amount", type=str, help="the amount to charge")
    parser.add_argument("--product-id", type=str, help="the product ID")
    parser.add_argument("--return-url", type=str, help="the URL to return to")
    parser.add_argument("--notify-url", type=str, help="the notification URL")
    parser.add_argument("--currency", type=str, help="the currency code")
    parser.add_argument("--request-id", type=str, help="the idempotency key")
    parser.add_argument(
        "-m", "--method", type=str, help="the payment method (default: first)"
    )
    parser.add_argument(
        "--proof-id", type=str, help="the payment proof ID (default: generated)"
    )
    parser.add_argument(
        "--proof-url",
        type=str,
        action="append",
        dest="proof_urls",
        help="a payment proof URL, may be repeated",
        default=[],
    )
    parser.add_argument(
        "--no-confirm",
        action="store_false",
        dest="confirm",
        help="stop after submitting",
    )

    args = parser.parse_args(argv)
    return CommandLineConfig(
        debug=args.debug,
        config=args.config,
        checkout_id=args.checkout_id,
        amount=args.amount,
        product_id=args.product_id,
        return_url=args.return_url,
        notify_url=args.notify_url,
        currency=args.currency,
        request_id=args.request_id,
        method=args.method,
        proof_id=args.proof_id,
        proof_urls=tuple(args.proof_urls),
        confirm=args.confirm,
    )

