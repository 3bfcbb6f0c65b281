"""
Record Storage

Storage backends (in-memory and Redis) behind the SessionStore used for
sessions and results.
"""

from selfassess.storage.base import StorageBackend, StoredRecord
from selfassess.storage.memory import MemoryStorageBackend
from selfassess.storage.store import SessionStore, SESSION_RECORD, RESULT_RECORD

__all__ = [
    'StorageBackend', 'StoredRecord', 'MemoryStorageBackend',
    'SessionStore', 'SESSION_RECORD', 'RESULT_RECORD',
]
