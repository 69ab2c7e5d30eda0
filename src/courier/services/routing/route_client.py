"""HTTP client for the delivery platform's route and journey endpoints."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from ...config import settings
from ...models.domain import Coordinates, LocationUpdateRequest, StopCompletionRequest
from ...schemas.routing import (
    DriverRoutesResponse,
    ReoptimizeResponse,
    RouteOrderResponse,
    RouteStatusResponse,
    StartJourneyResponse,
    TrafficCheckResponse,
)

logger = logging.getLogger(__name__)


class RouteServiceError(Exception):
    """The route service rejected a request or replied with ``success: false``."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RouteServiceRateLimited(RouteServiceError):
    """The route service replied with HTTP 429."""


def _error_message(response: httpx.Response, fallback: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"{fallback} (HTTP {response.status_code})"
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or fallback)
    return fallback


class RouteServiceClient:
    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url or settings.route_service_base_url
        if not self.base_url:
            raise ValueError("Route service base URL is not configured.")
        self.timeout = timeout if timeout is not None else settings.route_service_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.route_service_max_retries
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else settings.route_service_backoff_seconds
        )
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout, connect=10.0),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(self, method: str, path: str, **kwargs: Any) -> dict:
        try:
            response = await self._client.request(method, path, **kwargs)
        except (httpx.ConnectError, httpx.NetworkError, httpx.TimeoutException) as exc:
            raise ConnectionError(f"Failed to reach route service at {self.base_url}: {exc}") from exc

        if response.status_code == 429:
            raise RouteServiceRateLimited(
                _error_message(response, "Too many requests. Please wait before trying again."),
                status_code=429,
            )
        if response.status_code >= 400:
            raise RouteServiceError(
                _error_message(response, f"{method} {path} failed"),
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise RouteServiceError(f"{method} {path} returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise RouteServiceError(f"{method} {path} returned an unexpected payload")
        if data.get("success") is False:
            raise RouteServiceError(str(data.get("message") or data.get("error") or f"{method} {path} failed"))
        return data

    async def _get(self, path: str, params: dict | None = None) -> dict:
        """GET with retry; reads are safe to repeat."""
        attempt = 0
        while True:
            try:
                return await self._send("GET", path, params=params)
            except RouteServiceRateLimited:
                raise
            except RouteServiceError as exc:
                if exc.status_code is None or exc.status_code < 500:
                    raise
                attempt += 1
                if attempt > self.max_retries:
                    raise
                await asyncio.sleep(self.backoff_seconds * attempt)
            except ConnectionError as exc:
                attempt += 1
                if attempt > self.max_retries:
                    raise
                wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                logger.debug(f"Route service unreachable, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries}): {exc}")
                await asyncio.sleep(wait_time)

    async def _post(self, path: str, body: dict) -> dict:
        return await self._send("POST", path, json=body)

    async def get_driver_routes(self, driver_id: str, date: str | None = None) -> DriverRoutesResponse:
        params = {"date": date} if date else None
        data = await self._get(f"/delivery-executives/get-routes/{driver_id}", params=params)
        return _parse(DriverRoutesResponse, data)

    async def start_journey(self, driver_id: str, route_id: str | None = None) -> StartJourneyResponse:
        body: dict[str, Any] = {"driver_id": driver_id}
        if route_id:
            body["route_id"] = route_id
        data = await self._post("/ai-routes/journey/start", body)
        return _parse(StartJourneyResponse, data)

    async def mark_stop_reached(self, request: StopCompletionRequest | dict) -> dict:
        body = request.to_payload() if isinstance(request, StopCompletionRequest) else dict(request)
        if not body.get("route_id") or (body.get("planned_stop_id") is None and body.get("stop_order") is None):
            raise ValueError("route_id and planned_stop_id (or stop_order) are required")
        return await self._post("/ai-routes/journey/mark-stop", body)

    async def complete_session(self, route_id: str, session: str | None = None) -> dict:
        body: dict[str, Any] = {"route_id": route_id}
        if session:
            body["session"] = session
        return await self._post("/ai-routes/driver-session/complete", body)

    async def update_geo_location(self, request: LocationUpdateRequest | dict) -> dict:
        body = request.to_payload() if isinstance(request, LocationUpdateRequest) else dict(request)
        return await self._post("/ai-routes/address/update-geo-location", body)

    async def get_route_status(self, route_id: str, driver_id: str | None = None) -> RouteStatusResponse:
        params = {"driver_id": driver_id} if driver_id else None
        data = await self._get(f"/ai-routes/route/{route_id}/status", params=params)
        return _parse(RouteStatusResponse, data)

    async def get_route_order(self, route_id: str) -> RouteOrderResponse:
        data = await self._get(f"/ai-routes/journey/route-order/{route_id}")
        return _parse(RouteOrderResponse, data)

    async def check_traffic(
        self,
        route_id: str,
        current_location: Optional[Coordinates] = None,
        check_all_segments: bool = True,
    ) -> TrafficCheckResponse:
        body: dict[str, Any] = {"route_id": route_id, "check_all_segments": check_all_segments}
        if current_location is not None:
            body["current_location"] = current_location.as_wire()
        data = await self._post("/ai-routes/journey/check-traffic", body)
        return _parse(TrafficCheckResponse, data)

    async def reoptimize_route(self, route_id: str, current_location: Optional[Coordinates] = None) -> ReoptimizeResponse:
        body: dict[str, Any] = {"route_id": route_id}
        if current_location is not None:
            body["current_location"] = current_location.as_wire()
        data = await self._post("/ai-routes/route/reoptimize", body)
        return _parse(ReoptimizeResponse, data)


def _parse(model, data: dict):
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise RouteServiceError(f"Unexpected {model.__name__} payload: {exc}") from exc


async def check_health(base_url: str | None = None, timeout: float = 5.0) -> bool:
    """Check route service health via its health endpoint."""
    base = base_url or settings.route_service_base_url
    if not base:
        return False
    try:
        async with httpx.AsyncClient(base_url=base, timeout=timeout) as client:
            response = await client.get("/ai-routes/health")
        response.raise_for_status()
        data = response.json()
        return isinstance(data, dict) and data.get("success", True) is not False
    except httpx.HTTPError:
        return False
    except ValueError:
        return False
