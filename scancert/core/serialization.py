"""
Conversion between record dataclasses and JSON-compatible dictionaries.

Encoding walks the dataclass tree; decoding uses the type hints of the target
record so nested records, tuples, optionals, datetimes and UUIDs are rebuilt
with their original types and ordering.
"""

import uuid
import dataclasses
from datetime import datetime
from typing import Any, Dict, Type, TypeVar, Union, get_args, get_origin, get_type_hints

T = TypeVar("T")


def record_to_dict(record: Any) -> Any:
    """
    Convert a record (or any nested value) into JSON-compatible data.

    Args:
        record: Dataclass instance, sequence, mapping or scalar

    Returns:
        Plain dict/list/scalar structure
    """
    if dataclasses.is_dataclass(record) and not isinstance(record, type):
        return {f.name: record_to_dict(getattr(record, f.name)) for f in dataclasses.fields(record)}
    if isinstance(record, (list, tuple)):
        return [record_to_dict(item) for item in record]
    if isinstance(record, dict):
        return {str(key): record_to_dict(value) for key, value in record.items()}
    if isinstance(record, datetime):
        return record.isoformat()
    if isinstance(record, uuid.UUID):
        return str(record)
    return record


def record_from_dict(cls: Type[T], data: Dict[str, Any]) -> T:
    """
    Rebuild a record of type ``cls`` from :func:`record_to_dict` output.

    Keys missing from ``data`` fall back to the field defaults.
    """
    hints = get_type_hints(cls)
    kwargs = {}
    for f in dataclasses.fields(cls):
        if f.name in data:
            kwargs[f.name] = _decode(hints[f.name], data[f.name])
    return cls(**kwargs)


def _decode(tp: Any, value: Any) -> Any:
    if value is None:
        return None

    origin = get_origin(tp)
    args = get_args(tp)

    if origin is Union:
        candidates = [arg for arg in args if arg is not type(None)]
        return _decode(candidates[0], value)
    if origin is tuple:
        if len(args) == 2 and args[1] is Ellipsis:
            return tuple(_decode(args[0], item) for item in value)
        return tuple(_decode(arg, item) for arg, item in zip(args, value))
    if origin is list:
        return [_decode(args[0], item) for item in value]
    if origin is dict:
        return {key: _decode(args[1], item) for key, item in value.items()}
    if dataclasses.is_dataclass(tp):
        return record_from_dict(tp, value)
    if tp is datetime:
        return datetime.fromisoformat(value)
    if tp is uuid.UUID:
        return uuid.UUID(str(value))
    if tp is float:
        return float(value)
    return value
