"""Connectivity detection for the device."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

import httpx

from ...config import settings

logger = logging.getLogger(__name__)

ONLINE = "online"
OFFLINE = "offline"

NetworkListener = Callable[[str], None]


def _healthy(response: httpx.Response) -> bool:
    # a misconfigured URL can still answer 200 with an HTML page
    try:
        data = response.json()
    except ValueError:
        return False
    return isinstance(data, dict) and data.get("success", True) is not False


class NetworkMonitor:
    """Tracks whether the device can reach the route service.

    The platform reports transitions through :meth:`set_online`; an optional
    probe loop derives the same signal from the route service health endpoint.
    Listeners are called only when the state actually changes.
    """

    def __init__(self, online: bool = True, probe_url: str | None = None, probe_timeout: float = 5.0) -> None:
        self._online = online
        self._listeners: list[NetworkListener] = []
        self.probe_url = probe_url
        self.probe_timeout = probe_timeout
        self._probe_task: asyncio.Task | None = None

    def is_online(self) -> bool:
        return self._online

    def on_network_change(self, callback: NetworkListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def set_online(self, online: bool) -> bool:
        """Apply a connectivity signal; return True when it was a transition."""
        if online == self._online:
            return False
        self._online = online
        status = ONLINE if online else OFFLINE
        logger.info(f"Network status changed: {status}")
        for callback in list(self._listeners):
            try:
                callback(status)
            except Exception:
                logger.exception(f"Network listener failed while handling '{status}'")
        return True

    async def probe(self) -> bool:
        """Check reachability of the probe URL and apply the result."""
        if not self.probe_url:
            return self._online
        try:
            async with httpx.AsyncClient(timeout=self.probe_timeout) as client:
                response = await client.get(self.probe_url)
            reachable = response.is_success and _healthy(response)
        except httpx.HTTPError as exc:
            logger.debug(f"Connectivity probe failed: {exc}")
            reachable = False
        self.set_online(reachable)
        return reachable

    async def _probe_loop(self, interval: float) -> None:
        while True:
            await self.probe()
            await asyncio.sleep(interval)

    def start_probing(self, interval: float | None = None) -> None:
        interval = settings.network_probe_interval_seconds if interval is None else interval
        if not self.probe_url or interval <= 0 or self._probe_task is not None:
            return
        self._probe_task = asyncio.get_running_loop().create_task(self._probe_loop(interval))

    async def stop_probing(self) -> None:
        task, self._probe_task = self._probe_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
