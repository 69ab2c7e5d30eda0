"""Wiring of the device-side services for one driver."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .config import settings
from .persistence.storage import DeviceStorage
from .services.geolocation import GeolocationProvider, configured_geolocation
from .services.journey.tracker import JourneyTracker
from .services.routing.route_client import RouteServiceClient
from .services.sync.network import NetworkMonitor
from .services.sync.queue import OfflineQueue

logger = logging.getLogger(__name__)


@dataclass
class DriverRuntime:
    storage: DeviceStorage
    network: NetworkMonitor
    queue: OfflineQueue
    client: RouteServiceClient
    geolocation: GeolocationProvider
    tracker: JourneyTracker

    async def start(self) -> None:
        self.tracker.attach()
        self.network.start_probing()
        logger.info(f"Driver runtime started for {self.tracker.driver_id}")

    async def aclose(self) -> None:
        await self.tracker.close()
        await self.network.stop_probing()
        await self.client.aclose()


def build_runtime(driver_id: str | None = None) -> DriverRuntime:
    driver_id = driver_id or settings.driver_id
    if not driver_id:
        raise ValueError("Driver id is not configured. Set COURIER_DRIVER_ID.")
    client = RouteServiceClient()
    storage = DeviceStorage()
    network = NetworkMonitor(online=True, probe_url=f"{client.base_url}/ai-routes/health")
    queue = OfflineQueue(storage, network)
    geolocation = configured_geolocation()
    tracker = JourneyTracker(driver_id, client, queue, geolocation, storage=storage)
    return DriverRuntime(
        storage=storage,
        network=network,
        queue=queue,
        client=client,
        geolocation=geolocation,
        tracker=tracker,
    )
