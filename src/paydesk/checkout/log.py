"""Logging module."""
import copy
import logging
import sys
from enum import Enum

from loguru import logger


class InterceptHandler(logging.Handler):
    def emit(self, record):
        # Get corresponding Loguru level if it exists.
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where originated the logged message.
        frame, depth = sys._getframe(6), 6
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


class AuditLogType(str, Enum):
    checkout_create = "checkout.create"
    checkout_info = "checkout.info"
    checkout_select = "checkout.select"
    checkout_submit = "checkout.submit"
    checkout_confirm = "checkout.confirm"
    checkout_expire = "checkout.expire"
    checkout_reset = "checkout.reset"


def setup_logging(debug: bool = False):
    """Set up the logger."""
    level = logging.DEBUG if debug else logging.INFO

    logger.remove()
    logger.add(sys.stderr, level=level)

    audit_log.remove()
    audit_log.add(
        sys.stderr,
        level=level,
    )

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug else logging.WARNING)
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)


audit_log = copy.deepcopy(logger, memo={id(sys.stderr): sys.stderr}).bind(name="audit")
"""Separate logger for audit events."""

audit_log.remove()

audit_log.configure(
    extra=dict(
        type=None,
        checkout=None,
    )
)
