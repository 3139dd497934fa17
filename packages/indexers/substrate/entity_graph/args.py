import json
from enum import Enum
from typing import Any, List


class ArgsShape(Enum):
    ABSENT = "absent"
    SCALAR = "scalar"
    SEQUENCE = "sequence"
    MAPPING = "mapping"


def classify_args(args: Any) -> ArgsShape:
    if args is None:
        return ArgsShape.ABSENT
    if isinstance(args, (list, tuple)):
        return ArgsShape.SEQUENCE
    if isinstance(args, dict):
        return ArgsShape.MAPPING
    return ArgsShape.SCALAR


def _is_composite(value: Any) -> bool:
    return isinstance(value, (dict, list, tuple))


def _integral_floats_as_int(value: Any) -> Any:
    """1.0 -> 1, recursively"""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, dict):
        return {key: _integral_floats_as_int(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_integral_floats_as_int(item) for item in value]
    return value


def _serialize_composite(value: Any) -> str:
    text = json.dumps(_integral_floats_as_int(value), separators=(',', ':'), ensure_ascii=False)
    if text.startswith('"'):
        text = text[1:]
    if text.endswith('"'):
        text = text[:-1]
    return text


def _scalar_text(value: Any) -> str:
    if value is None:
        return 'null'
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float):
        value = _integral_floats_as_int(value)
    return str(value)


def value_to_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    if _is_composite(value):
        return _serialize_composite(value)
    return _scalar_text(value)


def args_to_strings(args: Any) -> List[str]:
    """
    Flatten event arguments into a list of printable strings.

    Sequence elements and mapping values (in insertion order) each become one
    string: strings as-is, nested objects and lists as compact JSON, other
    scalars as text, with integral floats printed without a fraction. A bare
    non-empty string becomes a one-element list; absent args, the empty string
    and bare non-string scalars produce an empty list.

    >>> args_to_strings(["hello", {"x": 1}])
    ['hello', '{"x":1}']
    >>> args_to_strings({"a": 1, "b": {"c": 2}})
    ['1', '{"c":2}']
    """
    shape = classify_args(args)

    if shape is ArgsShape.ABSENT:
        return []
    elif shape is ArgsShape.SEQUENCE:
        return [value_to_string(value) for value in args]
    elif shape is ArgsShape.MAPPING:
        return [value_to_string(value) for value in args.values()]
    elif shape is ArgsShape.SCALAR:
        return [args] if isinstance(args, str) and args else []

    raise ValueError(f"Unhandled args shape: {shape}")
