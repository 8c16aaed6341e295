"""
Password reset token storage.

Tokens are single-use and expire after a fixed lifetime. ``consume`` is an
atomic check-and-delete: a token can be redeemed at most once, even when
two confirmations race.

Two implementations:

- InMemoryResetTokenStore: per-process dict guarded by an asyncio.Lock
- RedisResetTokenStore: shared between workers, SET EX + GETDEL

Only a SHA-256 digest of each token is used as the key, so a dump of the
store cannot be replayed.
"""

import asyncio
import hashlib
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)

REDIS_KEY_PREFIX = "identity-gateway:reset:"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def token_digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class PendingResetToken:
    """A reset token that has been issued and not yet redeemed."""

    token: str
    subject_id: str
    issued_at: datetime


@dataclass(frozen=True)
class _Entry:
    subject_id: str
    issued_at: datetime
    expires_at: datetime


class ResetTokenStore(ABC):
    """Interface for reset token stores."""

    @abstractmethod
    async def put(self, token: str, subject_id: str, ttl_seconds: int) -> None:
        """Record a newly issued token for ``ttl_seconds``."""

    @abstractmethod
    async def consume(self, token: str) -> Optional[PendingResetToken]:
        """
        Remove and return a live token.

        Returns:
            The pending token, or None if unknown, already used or expired
        """

    async def close(self) -> None:
        return None


class InMemoryResetTokenStore(ResetTokenStore):
    """
    In-memory TTL store for reset tokens.

    Expired entries are dropped when touched, on every ``put`` and by
    ``purge_expired``, so tokens that are never redeemed do not accumulate.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._entries: Dict[str, _Entry] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    def _evict_expired(self, now: datetime) -> int:
        # caller holds self._lock
        expired = [key for key, entry in self._entries.items() if now > entry.expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    async def put(self, token: str, subject_id: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

        now = self._clock()
        async with self._lock:
            evicted = self._evict_expired(now)
            self._entries[token_digest(token)] = _Entry(
                subject_id=subject_id,
                issued_at=now,
                expires_at=now + timedelta(seconds=ttl_seconds),
            )

        if evicted:
            logger.debug(f"Evicted {evicted} expired reset tokens")

    async def consume(self, token: str) -> Optional[PendingResetToken]:
        async with self._lock:
            entry = self._entries.pop(token_digest(token), None)

        if entry is None:
            return None

        if self._clock() > entry.expires_at:
            logger.info("Expired reset token presented", extra={"subject_id": entry.subject_id})
            return None

        return PendingResetToken(token=token, subject_id=entry.subject_id, issued_at=entry.issued_at)

    async def purge_expired(self) -> int:
        """
        Drop every expired entry.

        Returns:
            Number of entries removed
        """
        async with self._lock:
            purged = self._evict_expired(self._clock())

        if purged:
            logger.debug(f"Purged {purged} expired reset tokens")
        return purged

    def __len__(self) -> int:
        return len(self._entries)


class RedisResetTokenStore(ResetTokenStore):
    """
    Redis-backed reset token store.

    Expiry is delegated to Redis key TTLs; GETDEL makes redemption atomic
    across workers. Values are JSON ``{"subject_id", "issued_at"}``.
    """

    def __init__(
        self,
        redis_url: str,
        client: Optional[redis.Redis] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.redis_url = redis_url
        self.redis: redis.Redis = client or redis.from_url(
            redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            health_check_interval=30,
        )
        self._clock = clock

    @staticmethod
    def _key(token: str) -> str:
        return f"{REDIS_KEY_PREFIX}{token_digest(token)}"

    async def put(self, token: str, subject_id: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

        value = json.dumps({"subject_id": subject_id, "issued_at": self._clock().isoformat()})
        await self.redis.set(self._key(token), value, ex=ttl_seconds)

    async def consume(self, token: str) -> Optional[PendingResetToken]:
        raw = await self.redis.getdel(self._key(token))
        if not raw:
            return None

        try:
            data = json.loads(raw)
            return PendingResetToken(
                token=token,
                subject_id=data["subject_id"],
                issued_at=datetime.fromisoformat(data["issued_at"]),
            )
        except (ValueError, KeyError, TypeError):
            logger.error("Discarding unreadable reset token entry")
            return None

    async def close(self) -> None:
        await self.redis.aclose()
        logger.info("Reset token store connection closed")


def create_reset_token_store(redis_url: Optional[str]) -> ResetTokenStore:
    """Pick the store implementation for the configured URL."""
    if redis_url:
        logger.info("Using Redis reset token store")
        return RedisResetTokenStore(redis_url)
    return InMemoryResetTokenStore()


__all__ = [
    "PendingResetToken",
    "ResetTokenStore",
    "InMemoryResetTokenStore",
    "RedisResetTokenStore",
    "create_reset_token_store",
]
