"""
Redis manager used for schedule and conversation-session persistence.

Wraps a synchronous ``redis.Redis`` client with tracing spans, JSON document
helpers and an optimistic ``WATCH``/``MULTI`` transaction helper. Async callers
go through the ``*_async`` wrappers, which run the blocking client in a worker
thread.
"""

from __future__ import annotations

import asyncio
import json
import os
from typing import Any, Callable, Dict, List, Optional

import redis
from opentelemetry import trace
from opentelemetry.trace import SpanKind, Status, StatusCode
from redis.exceptions import WatchError

from utils.ml_logging import get_logger

Document = Dict[str, Any]
Mutator = Callable[[Optional[Document]], Optional[Document]]
PipelineHook = Callable[[Any, Optional[Document], Document], None]


class RedisTransactionConflict(RuntimeError):
    """Raised when an optimistic transaction keeps losing the WATCH race."""


class RedisManager:
    """
    RedisManager provides JSON document storage and compare-and-set updates
    on top of Azure Cache for Redis (or any Redis endpoint).
    """

    def __init__(
        self,
        host: Optional[str] = None,
        access_key: Optional[str] = None,
        port: Optional[int] = None,
        db: int = 0,
        ssl: bool = True,
        key_prefix: str = "murphy",
        max_watch_retries: int = 10,
    ):
        """
        Initialize the Redis connection.

        Args:
            host: Redis host address, optionally ``host:port``
            access_key: Redis access key
            port: Redis port number
            db: Redis database number
            ssl: Whether to use SSL/TLS
            key_prefix: Namespace prepended to every key
            max_watch_retries: Attempts before a transaction gives up

        Environment Variables:
            REDIS_HOST, REDIS_ACCESS_KEY, REDIS_PORT
        """
        self.logger = get_logger("redis.manager")
        self.host = host or os.getenv("REDIS_HOST")
        self.access_key = access_key or os.getenv("REDIS_ACCESS_KEY")
        self.port = port if isinstance(port, int) else int(os.getenv("REDIS_PORT", 6380))
        self.db = db
        self.ssl = ssl
        self.key_prefix = key_prefix
        self.max_watch_retries = max_watch_retries
        self.tracer = trace.get_tracer(__name__)

        if not self.host:
            raise ValueError(
                "Redis host must be provided either as argument or environment variable."
            )
        if ":" in self.host:
            host_parts = self.host.rsplit(":", 1)
            if host_parts[1].isdigit():
                self.host = host_parts[0]
                self.port = int(host_parts[1])

        self._create_client()

    def _create_client(self) -> None:
        common_config = {
            "host": self.host,
            "port": self.port,
            "db": self.db,
            "ssl": self.ssl,
            "decode_responses": True,
            "socket_keepalive": True,
            "health_check_interval": 30,
            "socket_connect_timeout": 5.0,
            "socket_timeout": 5.0,
            "max_connections": 50,
            "client_name": "murphy-outreach",
        }
        self.redis_client = redis.Redis(password=self.access_key, **common_config)
        self.logger.info(
            "Redis connection initialized (host=%s port=%s key=%s)",
            self.host,
            self.port,
            bool(self.access_key),
        )

    def _redis_span(self, name: str, op: Optional[str] = None):
        return self.tracer.start_as_current_span(
            name,
            kind=SpanKind.CLIENT,
            attributes={
                "peer.service": "redis",
                "server.address": self.host,
                "server.port": self.port,
                "db.system": "redis",
                **({"db.operation": op} if op else {}),
            },
        )

    def key(self, *parts: str) -> str:
        return ":".join((self.key_prefix, *parts))

    # ═══════════════════════════════════════════════════════════════════════════
    # BASIC OPERATIONS
    # ═══════════════════════════════════════════════════════════════════════════

    def ping(self) -> bool:
        with self._redis_span("Redis.PING"):
            return bool(self.redis_client.ping())

    def get_json(self, key: str) -> Optional[Document]:
        with self._redis_span("Redis.GET", op="GET"):
            raw = self.redis_client.get(key)
        return json.loads(raw) if raw else None

    def claim_key(self, key: str, ttl_seconds: int) -> bool:
        """SET NX EX marker; True only for the first caller within the TTL."""
        with self._redis_span("Redis.SETNX", op="SET"):
            return bool(self.redis_client.set(key, "1", nx=True, ex=ttl_seconds))

    def mget_json(self, keys: List[str]) -> List[Document]:
        if not keys:
            return []
        with self._redis_span("Redis.MGET", op="MGET"):
            raws = self.redis_client.mget(keys)
        return [json.loads(raw) for raw in raws if raw]

    def delete(self, *keys: str) -> int:
        with self._redis_span("Redis.DEL", op="DEL"):
            return int(self.redis_client.delete(*keys))

    def remove_from_set(self, key: str, *members: str) -> int:
        with self._redis_span("Redis.SREM", op="SREM"):
            return int(self.redis_client.srem(key, *members))

    def set_members(self, key: str) -> List[str]:
        with self._redis_span("Redis.SMEMBERS", op="SMEMBERS"):
            return sorted(self.redis_client.smembers(key))

    # ═══════════════════════════════════════════════════════════════════════════
    # OPTIMISTIC TRANSACTIONS
    # ═══════════════════════════════════════════════════════════════════════════

    def transaction(
        self,
        key: str,
        mutate: Mutator,
        on_commit: Optional[PipelineHook] = None,
    ) -> Optional[Document]:
        """
        Read-modify-write a JSON document under ``WATCH``.

        ``mutate`` receives the current document (or None) and returns the new
        document, or None to abort without writing. ``on_commit`` may queue
        extra commands (index maintenance) in the same ``MULTI`` block.
        Returns the committed document, or None when aborted.
        """
        with self._redis_span("Redis.TRANSACTION", op="MULTI") as span:
            span.set_attribute("db.redis.key", key)
            for attempt in range(1, self.max_watch_retries + 1):
                with self.redis_client.pipeline() as pipe:
                    try:
                        pipe.watch(key)
                        raw = pipe.get(key)
                        current = json.loads(raw) if raw else None
                        updated = mutate(current)
                        if updated is None:
                            pipe.unwatch()
                            return None
                        pipe.multi()
                        pipe.set(key, json.dumps(updated))
                        if on_commit is not None:
                            on_commit(pipe, current, updated)
                        pipe.execute()
                        span.set_attribute("db.redis.attempts", attempt)
                        return updated
                    except WatchError:
                        self.logger.debug("WATCH conflict on %s (attempt %d)", key, attempt)
                        continue
            error = RedisTransactionConflict(f"gave up on {key} after {self.max_watch_retries} attempts")
            span.record_exception(error)
            span.set_status(Status(StatusCode.ERROR, str(error)))
            raise error

    # ═══════════════════════════════════════════════════════════════════════════
    # ASYNC WRAPPERS
    # ═══════════════════════════════════════════════════════════════════════════

    async def ping_async(self) -> bool:
        try:
            return await asyncio.to_thread(self.ping)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error("Redis ping failed: %s", e)
            return False

    def close(self) -> None:
        try:
            self.redis_client.close()
        except Exception as e:
            self.logger.warning("Error closing Redis client: %s", e)
