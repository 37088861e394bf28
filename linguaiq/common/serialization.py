"""
Serialization Utilities

This module provides the helpers used to turn domain dataclasses into
JSON-safe structures, for persistence in the SQL store and for the DTO layer.
"""

import json
import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from dataclasses import is_dataclass, fields


def serialize(
    obj: Any,
    exclude_none: bool = False,
    exclude_fields: Optional[List[str]] = None
) -> Any:
    """
    Serialize an object to JSON-safe Python structures.

    Args:
        obj: The object to serialize
        exclude_none: Whether to drop None values from mappings
        exclude_fields: Optional list of field names to drop from mappings

    Returns:
        Plain dicts, lists and primitives
    """
    exclude_fields = exclude_fields or []

    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj

    if isinstance(obj, Enum):
        return obj.value

    if isinstance(obj, (datetime.datetime, datetime.date)):
        return obj.isoformat()

    if isinstance(obj, (list, tuple, set, frozenset)):
        return [serialize(item, exclude_none, exclude_fields) for item in obj]

    if isinstance(obj, dict):
        result = {}
        for key, value in obj.items():
            if key in exclude_fields:
                continue
            if exclude_none and value is None:
                continue
            result[serialize(key)] = serialize(value, exclude_none, exclude_fields)
        return result

    if hasattr(obj, 'to_dict') and callable(getattr(obj, 'to_dict')):
        return serialize(obj.to_dict(), exclude_none, exclude_fields)

    # Shallow field walk keeps nested enums intact until they are serialized
    if is_dataclass(obj) and not isinstance(obj, type):
        return serialize(
            {f.name: getattr(obj, f.name) for f in fields(obj)},
            exclude_none,
            exclude_fields
        )

    return str(obj)


def to_json(obj: Any, exclude_none: bool = False, indent: Optional[int] = None) -> str:
    """Serialize an object straight to a JSON string."""
    return json.dumps(serialize(obj, exclude_none), indent=indent)


class SerializableMixin:
    """
    Mixin class to add serialization capabilities to dataclasses.
    """

    def to_dict(self, exclude_none: bool = False) -> Dict[str, Any]:
        return serialize(
            {f.name: getattr(self, f.name) for f in fields(self)},
            exclude_none
        )

    def to_json(self, exclude_none: bool = False) -> str:
        return to_json(self, exclude_none)
