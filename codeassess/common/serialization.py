"""
Serialization Utilities

Read models are dataclasses holding enums, datetimes and nested records.
``serialize`` turns them into JSON-ready primitives; ``SerializableMixin``
gives each read model a ``to_dict`` / ``to_json`` pair limited to its
declared fields.
"""

import json
import datetime
from enum import Enum
from dataclasses import fields, is_dataclass
from typing import Any, Dict, List, Mapping

_PRIMITIVES = (str, int, float, bool)


def serialize(obj: Any, exclude_none: bool = False) -> Any:
    """
    Convert a record tree into dicts, lists and primitives.

    Enums become their values and datetimes ISO 8601 strings. Records that
    declare their own field list are serialized through ``to_dict``; other
    dataclasses contribute every field.

    Args:
        obj: Value to convert
        exclude_none: Drop mapping entries whose value is None

    Returns:
        JSON-ready value
    """
    if obj is None or isinstance(obj, _PRIMITIVES):
        return obj
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime.datetime, datetime.date)):
        return obj.isoformat()
    if isinstance(obj, Mapping):
        return {
            str(key): serialize(value, exclude_none)
            for key, value in obj.items()
            if not (exclude_none and value is None)
        }
    if isinstance(obj, (list, tuple, set)):
        return [serialize(item, exclude_none) for item in obj]
    if isinstance(obj, SerializableMixin):
        return obj.to_dict(exclude_none)
    if is_dataclass(obj):
        # Field by field; dataclasses.asdict would deep-copy nested records
        return serialize({f.name: getattr(obj, f.name) for f in fields(obj)}, exclude_none)
    return str(obj)


def to_json(obj: Any, pretty: bool = False, exclude_none: bool = False) -> str:
    return json.dumps(serialize(obj, exclude_none), indent=2 if pretty else None, ensure_ascii=False)


class SerializableMixin:
    """
    Adds ``to_dict`` and ``to_json`` to a read model.

    ``__serializable_fields__`` lists the attributes to emit, in order.
    Attached relations left out of the list are never emitted.
    """

    __serializable_fields__: List[str] = []

    def to_dict(self, exclude_none: bool = False) -> Dict[str, Any]:
        return {
            name: serialize(getattr(self, name), exclude_none)
            for name in self.__serializable_fields__
            if not (exclude_none and getattr(self, name) is None)
        }

    def to_json(self, pretty: bool = False) -> str:
        return to_json(self, pretty)
