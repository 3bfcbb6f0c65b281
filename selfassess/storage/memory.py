"""
Memory Storage Backend Module

In-process storage backend. Used directly in development and tests, and as
the transparent fallback when the durable backend cannot be reached.
"""

import copy
import logging
import threading
from collections import OrderedDict
from typing import Any, Dict, List, Optional

from selfassess.common.error_handling import StorageQuotaExceededError
from selfassess.storage.base import StorageBackend, StoredRecord

logger = logging.getLogger(__name__)


class MemoryStorageBackend(StorageBackend):
    """
    In-memory storage backend implementation.

    Records are deep-copied on the way in and out so callers never share
    mutable state with the store. Writes of new records beyond ``max_records``
    are refused rather than evicting user data.
    """

    def __init__(self, max_records: int = 10000, name: str = "memory"):
        """
        Initialize the memory backend.

        Args:
            max_records: Maximum number of records to hold
            name: Name for this backend
        """
        self._records: Dict[str, StoredRecord] = OrderedDict()
        self._lock = threading.RLock()
        self._max_records = max_records
        self._name = name

        self._reads = 0
        self._writes = 0
        self._deletes = 0

    @property
    def name(self) -> str:
        return self._name

    async def connect(self) -> None:
        return None

    async def put(self, record: StoredRecord) -> None:
        with self._lock:
            if record.id not in self._records and len(self._records) >= self._max_records:
                raise StorageQuotaExceededError(record_id=record.id, limit=self._max_records)
            self._records[record.id] = copy.deepcopy(record)
            self._records.move_to_end(record.id)
            self._writes += 1

    async def get(self, record_id: str) -> Optional[StoredRecord]:
        with self._lock:
            self._reads += 1
            record = self._records.get(record_id)
            return copy.deepcopy(record) if record is not None else None

    async def get_by_type(self, record_type: str) -> List[StoredRecord]:
        with self._lock:
            self._reads += 1
            records = [copy.deepcopy(r) for r in self._records.values() if r.type == record_type]
        return sorted(records, key=lambda r: r.updated_at)

    async def delete(self, record_id: str) -> bool:
        with self._lock:
            if record_id in self._records:
                del self._records[record_id]
                self._deletes += 1
                return True
            return False

    async def delete_by_type(self, record_type: str) -> int:
        with self._lock:
            ids = [record_id for record_id, r in self._records.items() if r.type == record_type]
            for record_id in ids:
                del self._records[record_id]
            self._deletes += len(ids)
            return len(ids)

    async def close(self) -> None:
        with self._lock:
            self._records.clear()

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "name": self.name,
                "records": len(self._records),
                "max_records": self._max_records,
                "reads": self._reads,
                "writes": self._writes,
                "deletes": self._deletes,
            }
