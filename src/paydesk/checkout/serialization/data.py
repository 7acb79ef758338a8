"""Converter for backend data and request bodies."""
from enum import Enum
from typing import Union, get_args, get_origin

from attr import resolve_types
from attrs import fields
from cattrs import Converter
from cattrs.gen import make_dict_unstructure_fn
from paydesk.checkout.models.services import configure_services_converter
from paydesk.checkout.serialization.common import CustomConverter
from paydesk.checkout.serialization.common import (
    configure_converter as configure_common,
)

converter = CustomConverter()
configure_common(converter)


def structure_without_cast(v, t):
    """Structure a type without attempting to cast the value."""
    if isinstance(v, t) and not (t is not bool and isinstance(v, bool)):
        return v
    elif (
        issubclass(t, float)
        and isinstance(v, int)
        and not isinstance(v, bool)
        or issubclass(t, Enum)
        and isinstance(v, (int, str))
    ):
        return t(v)
    else:
        raise TypeError(f"Invalid type: {v!r}")


def _is_nullable(t):
    origin = get_origin(t)
    args = get_args(t)
    return origin is Union and type(None) in args


def make_unstructure_dict_omitting_none(c, t):
    """Make an unstructure function that omits None."""

    # Resolve types because some field types might just be strings
    resolve_types(t)

    nullable_fields = [f.name for f in fields(t) if _is_nullable(f.type)]

    unstructure_fn = make_dict_unstructure_fn(t, c)

    def unstructure(v):
        dict_ = unstructure_fn(v)
        for field in nullable_fields:
            if field in dict_ and dict_[field] is None:
                del dict_[field]
        return dict_

    return unstructure


def configure_converter(c: Converter):
    for t in (float, int, bool, str):
        c.register_structure_hook(t, structure_without_cast)

    # unstructure attrs classes omitting None
    c.register_unstructure_hook_factory(
        lambda cls: hasattr(cls, "__attrs_attrs__"),
        lambda cls: make_unstructure_dict_omitting_none(c, cls),
    )

    configure_services_converter(c)


configure_converter(converter)
