"""
Session Store

Typed record persistence used by the engine and the analyzer. Wraps a
StorageBackend, falls back to memory when the durable backend cannot be
reached at startup, retries failed writes and converts backend failures into
storage errors.
"""

import uuid
import logging
from typing import Any, Dict, List, Optional

from selfassess.common.config import StorageConfig
from selfassess.common.error_handling import (
    EnvironmentNotSupportedError,
    InitializationError,
    StorageError,
    StorageLoadError,
    StorageNotAvailableError,
    StorageQuotaExceededError,
    StorageSaveError,
    retry,
)
from selfassess.storage.base import StorageBackend, StoredRecord
from selfassess.storage.memory import MemoryStorageBackend

logger = logging.getLogger(__name__)

SESSION_RECORD = "assessment_session"
RESULT_RECORD = "assessment_result"


def session_record_id(session_id: str) -> str:
    return f"session_{session_id}"


def result_record_id(result_id: str) -> str:
    return f"result_{result_id}"


class SessionStore:
    """
    Generic typed store: ``save(type, data, id) -> id``, ``get``,
    ``get_by_type``, ``delete``, ``delete_by_type``.

    Must be initialized before use. When the primary backend fails its
    connection check and ``fallback_to_memory`` is set, an in-memory backend
    takes its place with no visible change to callers.
    """

    def __init__(
        self,
        backend: Optional[StorageBackend] = None,
        fallback_to_memory: bool = True,
        save_retries: int = 1,
        retry_delay: float = 0.05,
        memory_max_records: int = 10000
    ):
        """
        Initialize the store.

        Args:
            backend: Primary backend; in-memory when omitted
            fallback_to_memory: Use memory if the primary backend is unreachable
            save_retries: How many times a failed write is retried
            retry_delay: Initial delay between write attempts in seconds
            memory_max_records: Capacity of the in-memory (fallback) backend
        """
        self._primary = backend or MemoryStorageBackend(max_records=memory_max_records)
        self._fallback_to_memory = fallback_to_memory
        self._memory_max_records = memory_max_records
        self._backend: Optional[StorageBackend] = None
        self._using_fallback = False

        self._write = retry(
            max_retries=save_retries,
            retry_delay=retry_delay,
            ignore_exceptions=(StorageQuotaExceededError,)
        )(self._put)

    @classmethod
    def from_config(cls, config: StorageConfig) -> 'SessionStore':
        """
        Build a store for the configured backend.

        Raises:
            EnvironmentNotSupportedError: If the backend name is unknown
        """
        if config.backend == "memory":
            backend: StorageBackend = MemoryStorageBackend(max_records=config.memory_max_records)
        elif config.backend == "redis":
            from selfassess.storage.redis import RedisStorageBackend
            backend = RedisStorageBackend(config=config.redis, key_prefix=config.key_prefix)
        else:
            raise EnvironmentNotSupportedError("storage backend", config.backend)

        return cls(
            backend=backend,
            fallback_to_memory=config.fallback_to_memory,
            save_retries=config.save_retries,
            retry_delay=config.retry_delay,
            memory_max_records=config.memory_max_records
        )

    async def initialize(self) -> None:
        """
        Connect to the primary backend or switch to the memory fallback.

        Raises:
            StorageNotAvailableError: If the primary backend is unreachable and
                falling back is disabled
        """
        if self._backend is not None:
            return

        try:
            await self._primary.connect()
            self._backend = self._primary
            self._using_fallback = False
        except Exception as e:
            if not self._fallback_to_memory:
                raise StorageNotAvailableError(self._primary.name, cause=e)
            logger.warning(
                f"Storage backend '{self._primary.name}' unavailable ({type(e).__name__}: {e}); "
                f"falling back to in-memory storage"
            )
            self._backend = MemoryStorageBackend(max_records=self._memory_max_records, name="memory-fallback")
            self._using_fallback = True

        logger.info(f"Session store ready on backend '{self._backend.name}'")

    @property
    def is_initialized(self) -> bool:
        return self._backend is not None

    @property
    def is_using_fallback(self) -> bool:
        return self._using_fallback

    @property
    def backend_name(self) -> Optional[str]:
        return self._backend.name if self._backend else None

    def _require_backend(self) -> StorageBackend:
        if self._backend is None:
            raise InitializationError("session store", "Session store used before initialize()")
        return self._backend

    async def _put(self, record: StoredRecord) -> None:
        await self._require_backend().put(record)

    async def save(self, record_type: str, data: Dict[str, Any], record_id: Optional[str] = None) -> str:
        """
        Save a record, retrying a failed write.

        Args:
            record_type: Record type
            data: JSON-compatible payload
            record_id: Record id; generated when omitted

        Returns:
            The record id

        Raises:
            StorageQuotaExceededError: If the backend is full
            StorageSaveError: If the write still fails after retrying
        """
        self._require_backend()
        record_id = record_id or f"{record_type}_{uuid.uuid4().hex}"
        record = StoredRecord(id=record_id, type=record_type, data=data)

        try:
            await self._write(record)
        except StorageError:
            raise
        except Exception as e:
            raise StorageSaveError(record_id, cause=e)

        logger.debug(f"Saved {record_type} record {record_id}")
        return record_id

    async def get(self, record_id: str) -> Optional[Dict[str, Any]]:
        """
        Get a record payload by id.

        Raises:
            StorageLoadError: If the backend read fails
        """
        backend = self._require_backend()
        try:
            record = await backend.get(record_id)
        except Exception as e:
            raise StorageLoadError(record_id, cause=e)
        return record.data if record is not None else None

    async def get_by_type(self, record_type: str) -> List[Dict[str, Any]]:
        """
        Get every payload of a record type.

        Raises:
            StorageLoadError: If the backend read fails
        """
        backend = self._require_backend()
        try:
            records = await backend.get_by_type(record_type)
        except Exception as e:
            raise StorageLoadError(record_type, cause=e)
        return [record.data for record in records]

    async def delete(self, record_id: str) -> bool:
        """Delete a record; True if it existed."""
        backend = self._require_backend()
        try:
            return await backend.delete(record_id)
        except Exception as e:
            raise StorageSaveError(record_id, cause=e)

    async def delete_by_type(self, record_type: str) -> int:
        """Delete every record of a type; returns the count."""
        backend = self._require_backend()
        try:
            count = await backend.delete_by_type(record_type)
        except Exception as e:
            raise StorageSaveError(record_type, cause=e)
        logger.info(f"Deleted {count} {record_type} records")
        return count

    async def close(self) -> None:
        if self._backend is not None:
            await self._backend.close()
            self._backend = None

    def get_stats(self) -> Dict[str, Any]:
        stats = self._backend.get_stats() if self._backend else {}
        stats["using_fallback"] = self._using_fallback
        return stats
