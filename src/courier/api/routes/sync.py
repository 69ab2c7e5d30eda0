"""Offline queue endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from ...runtime import DriverRuntime
from ...schemas.journey import NetworkSignal
from ..dependencies import get_runtime

router = APIRouter(prefix="/sync", tags=["sync"])


@router.get("/status", status_code=status.HTTP_200_OK)
def sync_status(runtime: DriverRuntime = Depends(get_runtime)) -> dict:
    return runtime.queue.sync_status()


@router.get("/queue", status_code=status.HTTP_200_OK)
def queued_actions(runtime: DriverRuntime = Depends(get_runtime)) -> list[dict]:
    return [action.to_dict() for action in runtime.queue.list_queued()]


@router.post("/drain", status_code=status.HTTP_200_OK)
async def drain(runtime: DriverRuntime = Depends(get_runtime)) -> dict:
    """Replay queued actions now."""
    result = await runtime.tracker.sync()
    return result.to_dict()


@router.get("/failed", status_code=status.HTTP_200_OK)
def failed_actions(runtime: DriverRuntime = Depends(get_runtime)) -> list[dict]:
    return [action.to_dict() for action in runtime.queue.list_failed()]


@router.post("/failed/{action_id}/requeue", status_code=status.HTTP_200_OK)
def requeue_failed(action_id: str, runtime: DriverRuntime = Depends(get_runtime)) -> dict:
    if not runtime.queue.requeue_failed(action_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Failed action {action_id} not found",
        )
    return {"success": True, "message": f"Action {action_id} queued for another sync attempt"}


@router.post("/network", status_code=status.HTTP_200_OK)
async def network_signal(payload: NetworkSignal, runtime: DriverRuntime = Depends(get_runtime)) -> dict:
    """Platform connectivity signal from the device shell."""
    changed = runtime.network.set_online(payload.status == "online")
    return {"status": payload.status, "changed": changed}
