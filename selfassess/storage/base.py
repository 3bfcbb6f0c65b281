"""
Base Storage Module

This module defines the record type and the backend interface behind the
SessionStore. Backends store JSON-compatible records keyed by id and indexed
by record type.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class StoredRecord:
    """
    A persisted record.

    Attributes:
        id: Record id, unique across all types
        type: Record type used for listing (e.g. "assessment_session")
        data: JSON-compatible payload
        updated_at: Unix timestamp of the last write
    """
    id: str
    type: str
    data: Dict[str, Any]
    updated_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "type": self.type, "data": self.data, "updated_at": self.updated_at}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StoredRecord':
        return cls(
            id=data["id"],
            type=data["type"],
            data=data.get("data") or {},
            updated_at=data.get("updated_at", 0.0)
        )


class StorageBackend(ABC):
    """
    Abstract interface for storage backends.

    Implementations raise their library's own exceptions on I/O failure (the
    SessionStore translates them) and StorageQuotaExceededError when full.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the name of this backend."""
        pass

    @abstractmethod
    async def connect(self) -> None:
        """
        Verify the backend is reachable.

        Raises:
            Exception: If the backend cannot be used
        """
        pass

    @abstractmethod
    async def put(self, record: StoredRecord) -> None:
        """Insert or replace a record."""
        pass

    @abstractmethod
    async def get(self, record_id: str) -> Optional[StoredRecord]:
        """Get a record by id, or None."""
        pass

    @abstractmethod
    async def get_by_type(self, record_type: str) -> List[StoredRecord]:
        """Get all records of a type, oldest write first."""
        pass

    @abstractmethod
    async def delete(self, record_id: str) -> bool:
        """Delete a record; True if it existed."""
        pass

    @abstractmethod
    async def delete_by_type(self, record_type: str) -> int:
        """Delete all records of a type; returns how many were deleted."""
        pass

    async def close(self) -> None:
        """Release backend resources."""
        return None

    def get_stats(self) -> Dict[str, Any]:
        """Backend statistics."""
        return {"name": self.name}
