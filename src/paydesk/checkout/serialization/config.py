"""Serialization used internally for configuration."""
from cattrs import Converter
from paydesk.checkout.serialization.common import CustomConverter
from paydesk.checkout.serialization.common import (
    configure_converter as configure_common,
)

converter = CustomConverter(forbid_extra_keys=True)
configure_common(converter)


def structure_code(v, t):
    # YAML reads unquoted codes like 4004 as integers
    if isinstance(v, bool) or not isinstance(v, (str, int)):
        raise TypeError(f"Invalid code: {v!r}")
    return str(v)


def configure_converter(c: Converter):
    c.register_structure_hook(str, structure_code)


configure_converter(converter)
