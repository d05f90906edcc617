"""
ShipLog — OAuth state store.

Holds the one-time ``state`` tokens issued when a user starts the GitHub
sign-in flow. Entries expire after a TTL and a background task sweeps
them; the owning application starts and stops that task in its lifespan.
"""

from __future__ import annotations

import asyncio
import secrets
import time
from dataclasses import dataclass

from shiplog.utils.logging import logger


@dataclass
class StateEntry:
    created_at: float
    expires_at: float


class OAuthStateStore:
    """In-memory, TTL-bounded store of pending OAuth states."""

    def __init__(self, ttl_seconds: float = 600.0):
        self.ttl_seconds = ttl_seconds
        self._entries: dict[str, StateEntry] = {}
        self._sweeper: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def issue(self) -> str:
        state = secrets.token_urlsafe(24)
        now = time.monotonic()
        self._entries[state] = StateEntry(created_at=now, expires_at=now + self.ttl_seconds)
        return state

    def consume(self, state: str | None) -> bool:
        """Remove ``state`` and report whether it was live. Each state works once."""
        if not state:
            return False
        entry = self._entries.pop(state, None)
        if entry is None:
            return False
        return entry.expires_at > time.monotonic()

    def sweep(self) -> int:
        now = time.monotonic()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    async def _sweep_forever(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            removed = self.sweep()
            if removed:
                logger.info("  OAuth state sweep removed %d expired entries", removed)

    def start(self, interval: float = 60.0) -> None:
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_forever(interval))

    async def stop(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None
        self._entries.clear()
