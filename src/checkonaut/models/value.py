"""Format-agnostic value model shared by all data documents.

Every JSON, YAML and TOML document is converted into a tree of plain Python
values before it reaches a Lua script:

    Value = None | bool | int | float | str | dict[str, Value] | list[Value]

Map keys are always strings. Integer and float origin is kept where the
source parser keeps it (``1`` stays ``int``, ``1.0`` stays ``float``), but
format specific types are flattened: TOML and YAML dates and times become
ISO-8601 strings, and YAML sequences used as tuples become lists.
"""

from datetime import date, datetime, time
from typing import Any, TypeAlias

from checkonaut.errors import ValueModelError

Value: TypeAlias = None | bool | int | float | str | dict[str, "Value"] | list["Value"]


def to_value(obj: Any) -> Value:
    """Convert the output of an upstream parser into the value model.

    Args:
        obj: Object produced by ``json``, ``yaml`` or ``tomllib``

    Returns:
        The equivalent Value tree (a new object, the input is not modified)

    Raises:
        ValueModelError: If the object contains a type with no Value equivalent
    """
    if obj is None or isinstance(obj, (bool, int, float, str)):
        return obj
    if isinstance(obj, (datetime, date, time)):
        return obj.isoformat()
    if isinstance(obj, dict):
        return {_map_key(key): to_value(item) for key, item in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_value(item) for item in obj]
    raise ValueModelError(f"unsupported value of type {type(obj).__name__}")


def _map_key(key: Any) -> str:
    # Same spelling a JSON encoder would use for non-string keys
    if isinstance(key, str):
        return key
    if isinstance(key, bool):
        return "true" if key else "false"
    if key is None:
        return "null"
    if isinstance(key, (int, float)):
        return str(key)
    if isinstance(key, (datetime, date, time)):
        return key.isoformat()
    raise ValueModelError(f"unsupported map key of type {type(key).__name__}")


def value_type_name(value: Value) -> str:
    """Name a value's type the way error messages refer to it."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, dict):
        return "map"
    if isinstance(value, list):
        return "sequence"
    return type(value).__name__
