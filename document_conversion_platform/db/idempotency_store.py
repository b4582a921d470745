"""
Idempotency store - key/value records with expiry used to track per-file
processing state across every process sharing one Redis instance.

Every operation swallows transport errors and reports them through its return
value so callers can apply a fail-closed policy:
- writes and deletes return False
- reads return UNAVAILABLE
"""
import enum
import logging
from abc import ABC, abstractmethod

import redis

logger = logging.getLogger(__name__)


class _Unavailable(enum.Enum):
    token = "UNAVAILABLE"

    def __repr__(self):
        return "UNAVAILABLE"


# Returned by read operations when the store cannot be reached
UNAVAILABLE = _Unavailable.token


class IdempotencyStore(ABC):
    """Key/value store with atomic set-if-absent and per-key expiry"""

    @abstractmethod
    def set_if_absent(self, key, value, ttl):
        """Write value under key only if key does not exist. Returns True if written."""

    @abstractmethod
    def set(self, key, value, ttl):
        """Unconditionally write value under key. Returns True if written."""

    @abstractmethod
    def exists(self, key):
        """Return True/False, or UNAVAILABLE if the store cannot be reached."""

    @abstractmethod
    def get(self, key):
        """Return the stored value, None if absent, or UNAVAILABLE."""

    @abstractmethod
    def delete(self, key):
        """Remove key. Returns True if a key was removed."""

    def open(self):
        pass

    def close(self):
        pass

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class RedisIdempotencyStore(IdempotencyStore):
    """Redis-backed idempotency store with an explicitly managed connection pool"""

    def __init__(self, host="localhost", port=6379, db=0, max_connections=50):
        """
        Args:
            host: Redis host
            port: Redis port
            db: Redis database index
            max_connections: Upper bound of the shared connection pool
        """
        self.host = host
        self.port = port
        self.db = db
        self.max_connections = max_connections
        self._pool = None
        self._client = None

    def open(self):
        """Create the connection pool shared by every component of the process"""
        if self._pool is None:
            self._pool = redis.ConnectionPool(
                host=self.host,
                port=self.port,
                db=self.db,
                max_connections=self.max_connections,
                decode_responses=True
            )
            self._client = redis.StrictRedis(connection_pool=self._pool)
            logger.info(f"event=store_opened host={self.host} port={self.port} db={self.db}")

    def close(self):
        """Disconnect every pooled connection"""
        if self._pool is not None:
            self._pool.disconnect()
            self._pool = None
            self._client = None
            logger.info("event=store_closed")

    @property
    def client(self):
        """Redis client bound to the shared pool (the store must be open)"""
        if self._client is None:
            raise RuntimeError("Idempotency store is not open")
        return self._client

    def ping(self):
        """Check connectivity to Redis"""
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            logger.error(f"event=store_error op=ping error={e}")
            return False

    def set_if_absent(self, key, value, ttl):
        try:
            # SET NX EX is atomic: exactly one concurrent writer succeeds
            return self.client.set(key, value, nx=True, ex=int(ttl)) is not None
        except redis.RedisError as e:
            logger.error(f"event=store_error op=set_if_absent key={key} error={e}")
            return False

    def set(self, key, value, ttl):
        try:
            return self.client.set(key, value, ex=int(ttl)) is not None
        except redis.RedisError as e:
            logger.error(f"event=store_error op=set key={key} error={e}")
            return False

    def exists(self, key):
        try:
            return self.client.exists(key) > 0
        except redis.RedisError as e:
            logger.error(f"event=store_error op=exists key={key} error={e}")
            return UNAVAILABLE

    def get(self, key):
        try:
            return self.client.get(key)
        except redis.RedisError as e:
            logger.error(f"event=store_error op=get key={key} error={e}")
            return UNAVAILABLE

    def delete(self, key):
        try:
            return self.client.delete(key) == 1
        except redis.RedisError as e:
            logger.error(f"event=store_error op=delete key={key} error={e}")
            return False
