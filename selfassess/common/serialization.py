"""
Serialization Utilities

Helpers that turn the assessment records into JSON-compatible structures and
back. Storage backends only ever see the output of ``serialize``: primitives,
ISO date strings, lists and dicts.
"""

import json
import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar
from dataclasses import is_dataclass, fields

T = TypeVar('T', bound='SerializableMixin')


def serialize(obj: Any, exclude_none: bool = False) -> Any:
    """
    Convert an object into a JSON-compatible structure.

    Args:
        obj: The object to serialize
        exclude_none: Whether to drop None values from mappings

    Returns:
        Primitive, list or dict representation
    """
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj

    if isinstance(obj, (datetime.datetime, datetime.date)):
        return obj.isoformat()

    if isinstance(obj, Enum):
        return obj.value

    if isinstance(obj, (list, tuple, set)):
        return [serialize(item, exclude_none) for item in obj]

    if isinstance(obj, dict):
        return {
            str(key): serialize(value, exclude_none)
            for key, value in obj.items()
            if not (exclude_none and value is None)
        }

    if hasattr(obj, 'to_dict') and callable(getattr(obj, 'to_dict')):
        return serialize(obj.to_dict(), exclude_none)

    if is_dataclass(obj):
        return {
            f.name: serialize(getattr(obj, f.name), exclude_none)
            for f in fields(obj)
            if not (exclude_none and getattr(obj, f.name) is None)
        }

    return str(obj)


def to_json(obj: Any, pretty: bool = False, exclude_none: bool = False) -> str:
    """
    Serialize an object to a JSON string.

    Args:
        obj: The object to serialize
        pretty: Whether to format the JSON with indentation
        exclude_none: Whether to exclude None values

    Returns:
        JSON string representation
    """
    indent = 2 if pretty else None
    return json.dumps(serialize(obj, exclude_none), indent=indent, ensure_ascii=False)


def parse_datetime(value: Any) -> Optional[datetime.datetime]:
    """
    Parse an ISO timestamp into an aware UTC datetime.

    Naive values are assumed to be UTC. Returns None for None.
    """
    if value is None:
        return None
    if isinstance(value, datetime.datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.datetime.fromisoformat(text)
    else:
        raise ValueError(f"Cannot parse datetime from {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


def utcnow() -> datetime.datetime:
    """Current time as an aware UTC datetime."""
    return datetime.datetime.now(datetime.timezone.utc)


class SerializableMixin:
    """
    Mixin that provides serialization capabilities to a dataclass.

    Classes using this mixin define:
    1. __serializable_fields__ - field names included in ``to_dict``
    2. __optional_fields__ - field names that may be absent in ``from_dict``

    Classes with nested records override ``from_dict``.
    """

    __serializable_fields__: List[str] = []
    __optional_fields__: List[str] = []

    def to_dict(self) -> Dict[str, Any]:
        """Convert the object to a dictionary."""
        return {
            field: serialize(getattr(self, field))
            for field in self.__serializable_fields__
            if hasattr(self, field)
        }

    def to_json(self, pretty: bool = False) -> str:
        """Convert the object to a JSON string."""
        return to_json(self.to_dict(), pretty)

    @classmethod
    def from_dict(cls: Type[T], data: Dict[str, Any]) -> T:
        """Create an instance from a dictionary."""
        init_kwargs = {}
        for field in cls.__serializable_fields__:
            if field in data:
                init_kwargs[field] = data[field]
            elif field not in cls.__optional_fields__:
                raise ValueError(f"Missing required field for {cls.__name__}: {field}")

        return cls(**init_kwargs)

    @classmethod
    def from_json(cls: Type[T], json_str: str) -> T:
        """Create an instance from a JSON string."""
        return cls.from_dict(json.loads(json_str))
