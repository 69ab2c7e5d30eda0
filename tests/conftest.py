from pathlib import Path

import pytest

from src.courier.models.domain import Coordinates, LocationUpdateRequest, StopCompletionRequest
from src.courier.persistence.storage import DeviceStorage
from src.courier.schemas.routing import (
    DriverRoutesResponse,
    ReoptimizeResponse,
    RouteOrderResponse,
    RouteStatusResponse,
    StartJourneyResponse,
    TrafficCheckResponse,
)
from src.courier.services.geolocation import POSITION_UNAVAILABLE, GeolocationError, StaticGeolocation
from src.courier.services.journey.tracker import JourneyTracker
from src.courier.services.sync.network import NetworkMonitor
from src.courier.services.sync.queue import OfflineQueue

DRIVER_ID = "DRV-7"

ROUTES = [
    {
        "session": "Lunch",
        "route_id": "R-LUNCH",
        "stops": [
            {"delivery_id": "D1", "stop_order": 1, "delivery_name": "Asha", "planned_stop_id": "p-1"},
            {"delivery_id": "D2", "stop_order": 2, "delivery_name": "Ravi"},
            {"delivery_id": "D3", "stop_order": 3, "delivery_name": "Meera", "planned_stop_id": "p-9"},
        ],
        "map_links": ["https://maps.example.com/lunch"],
    },
    {
        "session": "Dinner",
        "route_id": "R-DINNER",
        "stops": [
            {"delivery_id": "D4", "stop_order": 1, "delivery_name": "Kiran", "planned_stop_id": "p-20"},
        ],
        "map_links": [],
    },
]


class FakeRouteClient:
    """In-memory stand-in for RouteServiceClient that records every call."""

    def __init__(self):
        self.calls = []
        self.failures = {}
        self.routes = [dict(item) for item in ROUTES]
        self.statuses = {}
        self.orders = {}
        self.assigned_route_id = None
        self.traffic = TrafficCheckResponse()
        self.closed = False
        self.gates = {}

    def _record(self, name, payload):
        self.calls.append((name, payload))
        error = self.failures.get(name)
        if error is not None:
            raise error

    async def _gate(self, name):
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()

    def count(self, name):
        return sum(1 for call, _ in self.calls if call == name)

    def payloads(self, name):
        return [payload for call, payload in self.calls if call == name]

    async def aclose(self):
        self.closed = True

    async def get_driver_routes(self, driver_id, date=None):
        self._record("get_driver_routes", {"driver_id": driver_id, "date": date})
        return DriverRoutesResponse(driver_id=driver_id, data=self.routes)

    async def start_journey(self, driver_id, route_id=None):
        self._record("start_journey", {"driver_id": driver_id, "route_id": route_id})
        return StartJourneyResponse(
            route_id=self.assigned_route_id or route_id,
            driver_id=driver_id,
            message="Journey started successfully",
        )

    async def mark_stop_reached(self, request):
        payload = request.to_payload() if isinstance(request, StopCompletionRequest) else dict(request)
        self._record("mark_stop_reached", payload)
        await self._gate("mark_stop_reached")
        return {"success": True}

    async def complete_session(self, route_id, session=None):
        self._record("complete_session", {"route_id": route_id, "session": session})
        return {"success": True, "message": "Session completed"}

    async def update_geo_location(self, request):
        payload = request.to_payload() if isinstance(request, LocationUpdateRequest) else dict(request)
        self._record("update_geo_location", payload)
        await self._gate("update_geo_location")
        return {"success": True}

    async def get_route_status(self, route_id, driver_id=None):
        self._record("get_route_status", {"route_id": route_id})
        return self.statuses.get(route_id) or RouteStatusResponse(route_id=route_id)

    async def get_route_order(self, route_id):
        self._record("get_route_order", {"route_id": route_id})
        return RouteOrderResponse(route_id=route_id, stops=self.orders.get(route_id, []))

    async def check_traffic(self, route_id, current_location=None, check_all_segments=True):
        self._record("check_traffic", {"route_id": route_id, "current_location": current_location})
        return self.traffic

    async def reoptimize_route(self, route_id, current_location=None):
        self._record("reoptimize_route", {"route_id": route_id})
        return ReoptimizeResponse(message="Route reoptimized", reoptimized=True)


class FailingGeolocation:
    async def get_current_position(self, enable_high_accuracy=True, timeout=8.0, maximum_age=0.0):
        raise GeolocationError(POSITION_UNAVAILABLE)


@pytest.fixture
def fake_client() -> FakeRouteClient:
    return FakeRouteClient()


@pytest.fixture
def storage(tmp_path: Path) -> DeviceStorage:
    return DeviceStorage(root=tmp_path)


@pytest.fixture
def network() -> NetworkMonitor:
    return NetworkMonitor(online=True)


@pytest.fixture
def offline_queue(storage: DeviceStorage, network: NetworkMonitor) -> OfflineQueue:
    return OfflineQueue(storage, network, max_retries=5)


@pytest.fixture
def device_location() -> StaticGeolocation:
    return StaticGeolocation(Coordinates(latitude=12.9716, longitude=77.5946))


@pytest.fixture
def make_tracker(fake_client, offline_queue, device_location):
    def factory(geolocation=None, queue=None) -> JourneyTracker:
        return JourneyTracker(
            DRIVER_ID,
            fake_client,
            queue or offline_queue,
            geolocation or device_location,
            traffic_interval=300,
        )

    return factory


@pytest.fixture
def failing_geolocation() -> FailingGeolocation:
    return FailingGeolocation()
