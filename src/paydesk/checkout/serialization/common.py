"""Common converters."""
from collections.abc import Sequence
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Tuple, Type, TypeVar, Union, get_args, get_origin

from cattrs import Converter
from paydesk.checkout.serialization.json import json_dumps, json_loads

T = TypeVar("T")


class CustomConverter(Converter):
    """Converter that uses orjson."""

    def dumps(self, obj: object, unstructure_as=None) -> bytes:
        unstructured = self.unstructure(obj, unstructure_as)
        return json_dumps(unstructured)

    def loads(self, value: Union[str, bytes], cl: Type[T]) -> T:
        obj = json_loads(value)
        return self.structure(obj, cl)


def _from_timestamp_ms(v: float) -> datetime:
    try:
        return datetime.fromtimestamp(v / 1000, tz=timezone.utc)
    except (OverflowError, OSError) as e:
        raise ValueError(f"Invalid timestamp: {v!r}") from e


def structure_datetime(v: object) -> datetime:
    """Structure a datetime.

    Numbers are epoch milliseconds, as sent by the payment platform.
    """
    if isinstance(v, datetime):
        dt = v
    elif isinstance(v, bool):
        raise TypeError(f"Invalid datetime: {v!r}")
    elif isinstance(v, (float, int)):
        dt = _from_timestamp_ms(v)
    elif isinstance(v, str) and v.isdigit():
        dt = _from_timestamp_ms(int(v))
    elif isinstance(v, str):
        dt = datetime.fromisoformat(v)
    else:
        raise TypeError(f"Invalid datetime: {v!r}")

    if dt.tzinfo is None:
        dt = dt.astimezone()

    return dt


def structure_decimal(v: object) -> Decimal:
    if isinstance(v, Decimal):
        return v
    elif isinstance(v, bool):
        raise TypeError(f"Invalid decimal: {v!r}")
    elif isinstance(v, (int, str)):
        try:
            return Decimal(v)
        except InvalidOperation:
            raise ValueError(f"Invalid decimal: {v!r}")
    elif isinstance(v, float):
        return Decimal(str(v))
    else:
        raise TypeError(f"Invalid decimal: {v!r}")


# Sequence[T] is structured as tuple[T, ...]
def structure_sequence(c, v, t):
    if isinstance(v, (str, bytes)) or not isinstance(v, Sequence):
        raise TypeError(f"Invalid sequence: {v!r}")
    args = get_args(t)
    return c.structure(v, Tuple[args[0], ...])


converter = CustomConverter()

structure_funcs = {
    lambda cls: cls is datetime: lambda v, t: structure_datetime(v),
    lambda cls: cls is Decimal: lambda v, t: structure_decimal(v),
}


def configure_converter(c: Converter):
    for test_func, func in structure_funcs.items():
        c.register_structure_hook_func(test_func, func)

    c.register_structure_hook_func(
        lambda cls: get_origin(cls) is Sequence,
        lambda v, t: structure_sequence(c, v, t),
    )


configure_converter(converter)
