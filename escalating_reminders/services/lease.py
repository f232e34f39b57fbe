"""Escalation leases.

A lease is an exclusive, time-bounded claim on one escalation state,
held while a worker advances it. A crashed holder's lease simply expires;
the next worker can retry because tier dispatch is idempotent.

Redis is the shared lease store across processes (SET NX PX to acquire,
WATCH/MULTI compare-and-set to renew or release). The in-memory guard
serves single-process deployments and tests.
"""

import time
import uuid
from typing import Protocol

import redis.asyncio as aioredis
from redis.exceptions import WatchError

from escalating_reminders.config import settings
from escalating_reminders.logging_config import get_logger

logger = get_logger(__name__)

_LEASE_PREFIX = "escalation:lease:"


class LeaseGuard(Protocol):
    async def acquire(self, state_id: uuid.UUID, owner_token: str, ttl: float) -> bool:
        ...

    async def renew(self, state_id: uuid.UUID, owner_token: str, ttl: float) -> bool:
        ...

    async def release(self, state_id: uuid.UUID, owner_token: str) -> None:
        ...


def new_owner_token() -> str:
    """Generate a unique token identifying one lease holder."""
    return uuid.uuid4().hex


class InMemoryLeaseGuard:
    """Process-local lease table using the monotonic clock."""

    def __init__(self) -> None:
        # {state_id: (owner_token, expires_at_monotonic)}
        self._leases: dict[uuid.UUID, tuple[str, float]] = {}

    def _current_owner(self, state_id: uuid.UUID) -> str | None:
        lease = self._leases.get(state_id)
        if lease is None:
            return None
        owner, expires_at = lease
        if time.monotonic() >= expires_at:
            self._leases.pop(state_id, None)
            return None
        return owner

    async def acquire(self, state_id: uuid.UUID, owner_token: str, ttl: float) -> bool:
        if self._current_owner(state_id) is not None:
            return False
        self._leases[state_id] = (owner_token, time.monotonic() + ttl)
        return True

    async def renew(self, state_id: uuid.UUID, owner_token: str, ttl: float) -> bool:
        if self._current_owner(state_id) != owner_token:
            return False
        self._leases[state_id] = (owner_token, time.monotonic() + ttl)
        return True

    async def release(self, state_id: uuid.UUID, owner_token: str) -> None:
        if self._current_owner(state_id) == owner_token:
            self._leases.pop(state_id, None)


class RedisLeaseGuard:
    """Lease table shared by all workers through Redis."""

    def __init__(self, client: aioredis.Redis):
        self._client = client

    @staticmethod
    def _key(state_id: uuid.UUID) -> str:
        return f"{_LEASE_PREFIX}{state_id}"

    async def acquire(self, state_id: uuid.UUID, owner_token: str, ttl: float) -> bool:
        # SET NX: only succeeds if no unexpired lease exists (atomic)
        result = await self._client.set(
            self._key(state_id),
            owner_token,
            px=max(1, int(ttl * 1000)),
            nx=True,
        )
        return bool(result)

    async def _compare_and_set(
        self,
        state_id: uuid.UUID,
        owner_token: str,
        ttl: float | None,
    ) -> bool:
        key = self._key(state_id)
        async with self._client.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                current = await pipe.get(key)
                if isinstance(current, bytes):
                    current = current.decode()
                if current != owner_token:
                    await pipe.unwatch()
                    return False
                pipe.multi()
                if ttl is None:
                    pipe.delete(key)
                else:
                    pipe.set(key, owner_token, px=max(1, int(ttl * 1000)))
                await pipe.execute()
                return True
            except WatchError:
                # Lease changed hands between WATCH and EXEC
                return False

    async def renew(self, state_id: uuid.UUID, owner_token: str, ttl: float) -> bool:
        return await self._compare_and_set(state_id, owner_token, ttl)

    async def release(self, state_id: uuid.UUID, owner_token: str) -> None:
        released = await self._compare_and_set(state_id, owner_token, None)
        if not released:
            logger.debug(
                "Lease already expired or taken over at release",
                escalation_state_id=str(state_id),
            )


_lease_guard: LeaseGuard | None = None


def get_lease_guard() -> LeaseGuard:
    """Get or create the configured lease guard."""
    global _lease_guard
    if _lease_guard is None:
        if settings.escalation_lease_backend == "memory":
            _lease_guard = InMemoryLeaseGuard()
        else:
            _lease_guard = RedisLeaseGuard(
                aioredis.from_url(
                    settings.redis_url,
                    decode_responses=True,
                    socket_connect_timeout=2,
                    socket_timeout=2,
                )
            )
    return _lease_guard
