"""Serialization package."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from paydesk.checkout.serialization.common import CustomConverter


def get_config_converter() -> CustomConverter:
    """Get the converter for configuration files."""
    from paydesk.checkout.serialization.config import converter

    return converter


def get_converter() -> CustomConverter:
    """Get the converter for request bodies and backend response data."""
    from paydesk.checkout.serialization.data import converter

    return converter
