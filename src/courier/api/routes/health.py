"""Health endpoints."""

from __future__ import annotations

from fastapi import APIRouter, status

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
def health_root() -> dict:
    """Simple health check endpoint that doesn't require any dependencies."""
    return {"status": "ok"}


def _get_route_service_health_check():
    """Lazy import to avoid startup failures."""
    from ...services.routing.route_client import check_health as route_service_health_check
    return route_service_health_check


@router.get("/health/route-service", status_code=status.HTTP_200_OK)
async def health_route_service() -> dict:
    """Check reachability of the delivery platform's route service."""
    try:
        route_service_health_check = _get_route_service_health_check()
        status_flag = await route_service_health_check()
        return {"service": "route-service", "healthy": status_flag}
    except Exception as e:
        return {"service": "route-service", "healthy": False, "error": str(e)}
