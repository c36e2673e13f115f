"""Client-side sync for an open connection.

Re-fetches the connection on a fixed interval and replaces the cached copy
only when the server's updated_at moved. Clients never merge: they send
discrete actions and take whatever the server returns.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable
from uuid import UUID

import httpx

from careconnect.core.config import settings

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 15.0


class ConnectionSyncPoller:
    """Poll GET /connections/{id} and keep the latest copy."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        connection_id: UUID | str,
        *,
        interval: float | None = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        on_change: Callable[[dict[str, Any]], None] | None = None,
    ) -> None:
        self._client = client
        self.connection_id = str(connection_id)
        self.interval = settings.SYNC_POLL_INTERVAL_SECONDS if interval is None else interval
        self.timeout = timeout
        self.on_change = on_change
        self.cached: dict[str, Any] | None = None
        self._stopped = asyncio.Event()

    @property
    def cursor(self) -> str | None:
        return self.cached.get("updated_at") if self.cached else None

    def seed(self, connection: dict[str, Any]) -> None:
        """Start from a copy the caller already has (e.g. a mutation response)."""
        self.cached = connection

    async def poll_once(self) -> bool:
        """Fetch once. Returns True when the cached copy was replaced."""
        params = {"since": self.cursor} if self.cursor else None
        try:
            response = await self._client.get(
                f"/connections/{self.connection_id}",
                params=params,
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            logger.warning("connection poll failed, keeping cached copy: %s", exc)
            return False

        if response.status_code == 304:
            return False
        if response.status_code != 200:
            logger.warning(
                "connection poll returned %s, keeping cached copy", response.status_code
            )
            return False

        fresh = response.json()
        if self.cached is not None and fresh.get("updated_at") == self.cursor:
            return False
        self.cached = fresh
        if self.on_change:
            self.on_change(fresh)
        return True

    async def run(self, max_polls: int | None = None) -> None:
        """Poll until stop() is called (or max_polls is reached)."""
        self._stopped.clear()
        polls = 0
        while not self._stopped.is_set():
            await self.poll_once()
            polls += 1
            if max_polls is not None and polls >= max_polls:
                break
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    def stop(self) -> None:
        self._stopped.set()
