import asyncio

import pytest

from src.courier.models.domain import Coordinates
from src.courier.services.geolocation import (
    POSITION_UNAVAILABLE,
    TIMEOUT,
    GeolocationError,
    StaticGeolocation,
    locate,
    try_locate,
)


class SlowGeolocation:
    async def get_current_position(self, enable_high_accuracy=True, timeout=8.0, maximum_age=0.0):
        await asyncio.sleep(10)
        return Coordinates(0.0, 0.0)


def test_static_provider_reports_configured_position():
    provider = StaticGeolocation(Coordinates(12.0, 77.0))

    assert asyncio.run(locate(provider)) == Coordinates(12.0, 77.0)

    provider.update(None)
    with pytest.raises(GeolocationError) as excinfo:
        asyncio.run(locate(provider))
    assert excinfo.value.code == POSITION_UNAVAILABLE


def test_slow_provider_times_out():
    with pytest.raises(GeolocationError) as excinfo:
        asyncio.run(locate(SlowGeolocation(), timeout=0.01))

    assert excinfo.value.code == TIMEOUT
    assert str(excinfo.value) == "Location request timed out"


def test_try_locate_returns_none_on_failure():
    assert asyncio.run(try_locate(SlowGeolocation(), timeout=0.01)) is None
    assert asyncio.run(try_locate(StaticGeolocation())) is None
