"""Periodic traffic checks for an active journey."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from ...config import settings
from ...schemas.routing import TrafficCheckResponse
from ..geolocation import GeolocationProvider, try_locate
from ..routing.route_client import RouteServiceClient, RouteServiceError, RouteServiceRateLimited

logger = logging.getLogger(__name__)

TrafficResultHandler = Callable[[str, TrafficCheckResponse], Awaitable[None] | None]
TrafficErrorHandler = Callable[[str, str], None]


class TrafficMonitor:
    """Checks traffic immediately and then on a fixed interval while started.

    Results and errors go to the supplied handlers; the monitor never touches
    journey state.
    """

    def __init__(
        self,
        client: RouteServiceClient,
        geolocation: GeolocationProvider,
        on_result: TrafficResultHandler,
        on_error: TrafficErrorHandler,
        interval: float | None = None,
    ) -> None:
        self.client = client
        self.geolocation = geolocation
        self.on_result = on_result
        self.on_error = on_error
        self.interval = interval if interval is not None else settings.traffic_check_interval_seconds
        self.route_id: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self.last_result: Optional[TrafficCheckResponse] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, route_id: str) -> None:
        if self.running and self.route_id == route_id:
            return
        self.stop()
        self.route_id = route_id
        self._task = asyncio.get_running_loop().create_task(self._loop(route_id))
        logger.info(f"Traffic monitoring started for route {route_id} (every {self.interval:.0f}s)")

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            logger.info(f"Traffic monitoring stopped for route {self.route_id}")
        self.route_id = None

    async def aclose(self) -> None:
        task = self._task
        self.stop()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _loop(self, route_id: str) -> None:
        while True:
            await self.check(route_id)
            await asyncio.sleep(self.interval)

    async def check(self, route_id: str) -> Optional[TrafficCheckResponse]:
        location = await try_locate(self.geolocation)
        try:
            result = await self.client.check_traffic(route_id, current_location=location, check_all_segments=True)
        except RouteServiceRateLimited as exc:
            self.on_error(route_id, f"Traffic check rate limited: {exc}")
            return None
        except (RouteServiceError, ConnectionError) as exc:
            self.on_error(route_id, f"Traffic check failed: {exc}")
            return None

        self.last_result = result
        outcome = self.on_result(route_id, result)
        if asyncio.iscoroutine(outcome):
            await outcome
        return result
