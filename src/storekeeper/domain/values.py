"""Row/parameter value variant and binding checks."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import TypeAlias

# Tagged variant of storable values: null, integer, float, text, binary.
SQLValue: TypeAlias = None | int | float | str | bytes
SQLParams: TypeAlias = Sequence[SQLValue]
Row: TypeAlias = dict[str, SQLValue]

_BINDABLE_TYPES = (int, float, str, bytes)


def value_tag(value: object) -> str:
    """Return the variant tag for ``value`` (``null``/``integer``/``float``/``text``/``binary``)."""

    if value is None:
        return "null"
    if isinstance(value, (bool, int)):
        return "integer"
    if isinstance(value, float):
        return "float"
    if isinstance(value, str):
        return "text"
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "binary"
    raise TypeError(f"unsupported SQL value type: {type(value).__name__}")


def coerce_param(value: object, position: int) -> SQLValue:
    """Normalize one positional parameter, rejecting values outside the variant."""

    if value is None or isinstance(value, _BINDABLE_TYPES):
        if isinstance(value, bool):
            return int(value)
        return value
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    raise TypeError(
        f"parameter {position} has unsupported type {type(value).__name__}; "
        "expected None, int, float, str, or bytes"
    )


def coerce_params(params: object) -> tuple[SQLValue, ...]:
    if params is None:
        return ()
    if isinstance(params, Mapping):
        raise TypeError("named parameter mappings are not supported; pass a positional sequence")
    if isinstance(params, (str, bytes)) or not isinstance(params, Sequence):
        raise TypeError(f"params must be a sequence, got {type(params).__name__}")
    return tuple(coerce_param(value, index + 1) for index, value in enumerate(params))


__all__ = [
    "Row",
    "SQLParams",
    "SQLValue",
    "coerce_param",
    "coerce_params",
    "value_tag",
]
