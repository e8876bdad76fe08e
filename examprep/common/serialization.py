"""
Serialization Utilities

Converts domain objects (dataclasses, enums, datetimes) into plain
dictionaries for API responses and log payloads.
"""

import json
import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from dataclasses import is_dataclass, fields


def serialize(obj: Any, exclude_none: bool = False, exclude_fields: Optional[List[str]] = None) -> Any:
    """
    Serialize an object to JSON-compatible Python data.

    Args:
        obj: The object to serialize
        exclude_none: Whether to drop keys whose value is None
        exclude_fields: Optional list of top-level field names to drop

    Returns:
        Dicts, lists and primitives only
    """
    exclude_fields = exclude_fields or []

    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj

    if isinstance(obj, (datetime.datetime, datetime.date)):
        return obj.isoformat()

    if isinstance(obj, Enum):
        return obj.value

    if isinstance(obj, (list, tuple)):
        return [serialize(item, exclude_none) for item in obj]

    if isinstance(obj, dict):
        result = {}
        for key, value in obj.items():
            if key in exclude_fields:
                continue
            if exclude_none and value is None:
                continue
            result[serialize(key)] = serialize(value, exclude_none)
        return result

    if hasattr(obj, 'to_dict') and callable(getattr(obj, 'to_dict')):
        return serialize(obj.to_dict(), exclude_none, exclude_fields)

    # Shallow walk so nested objects keep their own to_dict
    if is_dataclass(obj):
        return serialize(
            {f.name: getattr(obj, f.name) for f in fields(obj)},
            exclude_none,
            exclude_fields
        )

    return str(obj)


def to_json(obj: Any, pretty: bool = False, exclude_none: bool = False) -> str:
    """Serialize an object to a JSON string."""
    indent = 2 if pretty else None
    return json.dumps(serialize(obj, exclude_none), indent=indent, ensure_ascii=False, default=str)


class SerializableMixin:
    """
    Mixin that provides ``to_dict`` for domain models.

    Classes using this mixin list the exported attribute names in
    ``__serializable_fields__``. Properties may be listed as well.
    """

    __serializable_fields__: List[str] = []

    def to_dict(self) -> Dict[str, Any]:
        """Convert the object to a dictionary."""
        result = {}
        for field_name in self.__serializable_fields__:
            if hasattr(self, field_name):
                result[field_name] = serialize(getattr(self, field_name))
        return result

    def to_json(self, pretty: bool = False) -> str:
        """Convert the object to a JSON string."""
        return to_json(self.to_dict(), pretty)
