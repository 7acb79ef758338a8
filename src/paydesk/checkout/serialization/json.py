"""JSON serialization types."""
from collections.abc import Callable
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from functools import cache
from typing import Any, Mapping, Union
from uuid import UUID

import orjson

TypeFn = Callable[[Any], bool]
Serializer = Callable[[Any], object]

serializers: Mapping[TypeFn, Serializer] = {
    # Sets to lists
    lambda cls: issubclass(cls, (set, frozenset)): lambda v: sorted(v),
    # Decimal amounts keep their string form
    lambda cls: issubclass(cls, Decimal): lambda v: str(v),
    # UUIDs
    lambda cls: issubclass(cls, UUID): lambda v: str(v),
    # dates
    lambda cls: issubclass(cls, (date, datetime)): lambda v: v.isoformat(),
    # enums
    lambda cls: issubclass(cls, Enum): lambda v: v.value,
}
"""Mapping of JSON serialization handlers."""


def json_dumps(obj: object) -> bytes:
    """JSON dumps function."""
    return orjson.dumps(obj, default=json_default)


def json_loads(v: Union[str, bytes]) -> Any:
    """JSON loads function."""
    return orjson.loads(v)


def json_default(v: object) -> object:
    """JSON default type handler."""
    type_ = type(v)
    serializer = _get_serializer(type_)  # type: ignore
    return serializer(v)


@cache
def _get_serializer(type_: Any) -> Serializer:
    for type_fn, serializer in serializers.items():
        if type_fn(type_):
            return serializer

    raise TypeError(f"Cannot JSON serialize type: {type_}")
