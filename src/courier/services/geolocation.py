"""Device geolocation providers."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol

from ..config import settings
from ..models.domain import Coordinates

logger = logging.getLogger(__name__)

# Error codes follow the browser geolocation API.
PERMISSION_DENIED = 1
POSITION_UNAVAILABLE = 2
TIMEOUT = 3

_ERROR_MESSAGES = {
    PERMISSION_DENIED: "Location permission denied",
    POSITION_UNAVAILABLE: "Location information is unavailable",
    TIMEOUT: "Location request timed out",
}


class GeolocationError(Exception):
    def __init__(self, code: int, message: str | None = None) -> None:
        super().__init__(message or _ERROR_MESSAGES.get(code, "Unknown geolocation error"))
        self.code = code


class GeolocationProvider(Protocol):
    async def get_current_position(
        self,
        enable_high_accuracy: bool = True,
        timeout: float = 8.0,
        maximum_age: float = 0.0,
    ) -> Coordinates:
        ...


class StaticGeolocation:
    """Reports a fixed position, or POSITION_UNAVAILABLE when none is configured."""

    def __init__(self, coordinates: Optional[Coordinates] = None) -> None:
        self.coordinates = coordinates

    def update(self, coordinates: Optional[Coordinates]) -> None:
        self.coordinates = coordinates

    async def get_current_position(
        self,
        enable_high_accuracy: bool = True,
        timeout: float = 8.0,
        maximum_age: float = 0.0,
    ) -> Coordinates:
        if self.coordinates is None:
            raise GeolocationError(POSITION_UNAVAILABLE)
        return self.coordinates


def configured_geolocation() -> StaticGeolocation:
    if settings.device_latitude is None or settings.device_longitude is None:
        return StaticGeolocation()
    return StaticGeolocation(Coordinates(settings.device_latitude, settings.device_longitude))


async def locate(provider: GeolocationProvider, timeout: float | None = None) -> Coordinates:
    """Ask the provider for a position, enforcing the timeout on our side as well."""
    timeout = settings.geolocation_timeout_seconds if timeout is None else timeout
    try:
        return await asyncio.wait_for(
            provider.get_current_position(
                enable_high_accuracy=settings.geolocation_high_accuracy,
                timeout=timeout,
                maximum_age=settings.geolocation_maximum_age_seconds,
            ),
            timeout=timeout,
        )
    except asyncio.TimeoutError as exc:
        raise GeolocationError(TIMEOUT) from exc


async def try_locate(provider: GeolocationProvider, timeout: float | None = None) -> Optional[Coordinates]:
    """Best-effort variant of :func:`locate`: returns None instead of raising."""
    try:
        return await locate(provider, timeout)
    except GeolocationError as exc:
        logger.warning(f"Proceeding without location: {exc}")
        return None
