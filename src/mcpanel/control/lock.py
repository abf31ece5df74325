"""System-wide mutual exclusion for server actions, stored in the parameter store.

The lock is a single parameter holding ``{"action": ..., "timestamp": ms}``.
Creation uses create-if-absent, so two processes racing for it resolve to one
winner. The store has no TTL; a lock older than its action's expected duration
is treated as abandoned and deleted on read.
"""

import json
import logging
import time
from contextlib import asynccontextmanager

from mcpanel.control.state import LockRecord
from mcpanel.errors import ConflictError, ParameterAlreadyExists
from mcpanel.providers.base import SERVER_ACTION_PARAM, Provider

logger = logging.getLogger(__name__)


MINUTE_MS = 60 * 1000
STALE_AFTER_MS = {
    "start": 5 * MINUTE_MS,
    "stop": 5 * MINUTE_MS,
    "resume": 10 * MINUTE_MS,
    "hibernate": 10 * MINUTE_MS,
    "backup": 60 * MINUTE_MS,
    "restore": 60 * MINUTE_MS,
}
DEFAULT_STALE_AFTER_MS = 30 * MINUTE_MS


def stale_after_ms(action: str) -> int:
    return STALE_AFTER_MS.get(action, DEFAULT_STALE_AFTER_MS)


class ActionLock:
    def __init__(self, provider: Provider, clock=time.time):
        self.provider = provider
        self.clock = clock

    def _now_ms(self) -> int:
        return round(self.clock() * 1000)

    def _parse(self, value: str | None) -> LockRecord | None:
        if not value:
            return None
        try:
            data = json.loads(value)
            return LockRecord(action=str(data["action"]), acquired_at_ms=int(data["timestamp"]))
        except (ValueError, TypeError, KeyError):
            return None

    async def current_action(self) -> LockRecord | None:
        """Return the live lock, deleting it first if it is stale or unreadable."""
        value = await self.provider.get_parameter(SERVER_ACTION_PARAM)
        if value is None:
            return None
        record = self._parse(value)
        if record is None:
            logger.warning("Clearing unreadable action marker: %r", value)
            await self.provider.delete_parameter(SERVER_ACTION_PARAM)
            return None
        age_ms = self._now_ms() - record.acquired_at_ms
        if age_ms > stale_after_ms(record.action):
            logger.info("Clearing stale action marker: %s (%d ms old)", record.action, age_ms)
            await self.provider.delete_parameter(SERVER_ACTION_PARAM)
            return None
        return record

    async def acquire(self, action: str) -> LockRecord:
        record = LockRecord(action=action, acquired_at_ms=self._now_ms())
        value = json.dumps({"action": record.action, "timestamp": record.acquired_at_ms})
        for attempt in range(2):
            try:
                await self.provider.put_parameter(SERVER_ACTION_PARAM, value, overwrite=False)
            except ParameterAlreadyExists:
                current = await self.current_action()
                if current is not None:
                    raise ConflictError(current.action, requested=action)
                if attempt == 0:
                    logger.debug("Action marker cleared while acquiring %s; retrying", action)
                    continue
                raise ConflictError("unknown", requested=action)
            logger.info("Acquired lock for: %s", action)
            return record

    async def release(self) -> None:
        try:
            await self.provider.delete_parameter(SERVER_ACTION_PARAM)
            logger.info("Released lock")
        except Exception:
            logger.warning("Failed to release action lock", exc_info=True)

    @asynccontextmanager
    async def hold(self, action: str):
        record = await self.acquire(action)
        try:
            yield record
        finally:
            await self.release()

    async def with_lock(self, action: str, body):
        """Run the coroutine function ``body`` while holding the lock for ``action``."""
        async with self.hold(action):
            return await body()
