"""Config module."""
from collections.abc import Sequence
from pathlib import Path
from typing import Optional

from attr import frozen
from paydesk.checkout.models.config import Config
from paydesk.checkout.serialization import get_config_converter
from ruamel.yaml import YAML

yaml = YAML(typ="safe")


@frozen
class CommandLineConfig:
    """Command line config settings."""

    debug: bool
    config: Path
    checkout_id: Optional[str]
    amount: Optional[str]
    product_id: Optional[str]
    return_url: Optional[str]
    notify_url: Optional[str]
    currency: Optional[str]
    request_id: Optional[str]
    method: Optional[str]
    proof_id: Optional[str]
    proof_urls: Sequence[str]
    confirm: bool


def load_config(path: Path) -> Config:
    """Load the main configuration."""
    doc = yaml.load(path)
    config = get_config_converter().structure(doc, Config)
    return config
