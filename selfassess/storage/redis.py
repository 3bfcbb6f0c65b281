"""
Redis Storage Backend Module

Durable storage backend on Redis. Each record is a JSON string under
``<prefix>record:<id>``; a set ``<prefix>type:<type>`` indexes ids by type.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import redis.asyncio as aioredis
from redis.exceptions import ResponseError

from selfassess.common.config import RedisConfig
from selfassess.common.error_handling import StorageQuotaExceededError
from selfassess.storage.base import StorageBackend, StoredRecord

logger = logging.getLogger(__name__)


class RedisStorageBackend(StorageBackend):
    """
    Redis storage backend implementation.

    Redis errors propagate to the SessionStore, which retries writes and
    converts failures into storage errors. An out-of-memory refusal is
    reported as StorageQuotaExceededError.
    """

    def __init__(
        self,
        redis_client: Optional[aioredis.Redis] = None,
        config: Optional[RedisConfig] = None,
        key_prefix: str = "selfassess:",
        name: str = "redis"
    ):
        """
        Initialize the Redis backend.

        Args:
            redis_client: Optional existing asyncio Redis client
            config: Connection settings used when no client is given
            key_prefix: Prefix for all Redis keys
            name: Name for this backend
        """
        self._key_prefix = key_prefix
        self._name = name

        if redis_client is not None:
            self._redis = redis_client
        else:
            config = config or RedisConfig()
            self._redis = aioredis.Redis.from_url(
                config.connection_string,
                socket_connect_timeout=config.connection_timeout,
                decode_responses=True
            )

        self._reads = 0
        self._writes = 0

    @property
    def name(self) -> str:
        return self._name

    def _record_key(self, record_id: str) -> str:
        return f"{self._key_prefix}record:{record_id}"

    def _type_key(self, record_type: str) -> str:
        return f"{self._key_prefix}type:{record_type}"

    @staticmethod
    def _decode(raw: Any) -> Optional[StoredRecord]:
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return StoredRecord.from_dict(json.loads(raw))

    async def connect(self) -> None:
        await self._redis.ping()
        logger.info(f"Connected to Redis storage backend '{self.name}'")

    async def put(self, record: StoredRecord) -> None:
        payload = json.dumps(record.to_dict(), ensure_ascii=False)
        try:
            await self._redis.set(self._record_key(record.id), payload)
            await self._redis.sadd(self._type_key(record.type), record.id)
        except ResponseError as e:
            if "OOM" in str(e):
                raise StorageQuotaExceededError(record_id=record.id, cause=e)
            raise
        self._writes += 1

    async def get(self, record_id: str) -> Optional[StoredRecord]:
        self._reads += 1
        return self._decode(await self._redis.get(self._record_key(record_id)))

    async def get_by_type(self, record_type: str) -> List[StoredRecord]:
        self._reads += 1
        ids = sorted(await self._redis.smembers(self._type_key(record_type)))
        if not ids:
            return []

        values = await self._redis.mget([self._record_key(record_id) for record_id in ids])
        records = []
        stale = []
        for record_id, raw in zip(ids, values):
            record = self._decode(raw)
            if record is None:
                stale.append(record_id)
            else:
                records.append(record)

        if stale:
            logger.debug(f"Dropping {len(stale)} stale ids from index {record_type}")
            await self._redis.srem(self._type_key(record_type), *stale)

        return sorted(records, key=lambda r: r.updated_at)

    async def delete(self, record_id: str) -> bool:
        record = await self.get(record_id)
        if record is None:
            return False
        await self._redis.delete(self._record_key(record_id))
        await self._redis.srem(self._type_key(record.type), record_id)
        return True

    async def delete_by_type(self, record_type: str) -> int:
        ids = list(await self._redis.smembers(self._type_key(record_type)))
        if not ids:
            return 0
        deleted = await self._redis.delete(*[self._record_key(record_id) for record_id in ids])
        await self._redis.delete(self._type_key(record_type))
        return int(deleted)

    async def close(self) -> None:
        await self._redis.aclose()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "key_prefix": self._key_prefix,
            "reads": self._reads,
            "writes": self._writes,
        }
