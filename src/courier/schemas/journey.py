"""Request/response schemas for the on-device journey API."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from ..models.domain import StopStatus


class StopPayload(BaseModel):
    delivery_id: Optional[str] = None
    stop_order: Optional[int] = None
    delivery_name: Optional[str] = None
    session: Optional[str] = None
    planned_stop_id: Optional[str] = None
    address_id: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    original: Optional[dict] = Field(default=None, description="Record the stop was derived from, if any.")


class StartJourneyRequest(BaseModel):
    route_id: Optional[str] = None


class MarkStopRequest(BaseModel):
    stop: StopPayload
    status: StopStatus = StopStatus.DELIVERED
    comments: Optional[str] = Field(default=None, max_length=500)


class EndSessionRequest(BaseModel):
    route_id: Optional[str] = None
    session: Optional[str] = None


class SelectSessionRequest(BaseModel):
    session: str = Field(..., min_length=1)


class LoadRoutesRequest(BaseModel):
    date: Optional[str] = Field(default=None, description="Delivery date (YYYY-MM-DD); defaults to today on the server.")


class UpdateLocationRequest(BaseModel):
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    use_device_location: bool = Field(
        default=False,
        description="Capture coordinates from the device instead of using latitude/longitude.",
    )
    address_id: Optional[str] = None
    delivery_item_id: Optional[str] = None
    order_id: Optional[str] = None
    menu_item_id: Optional[str] = None
    delivery_date: Optional[str] = None
    session: Optional[str] = None


class NetworkSignal(BaseModel):
    status: Literal["online", "offline"]


class OutcomeModel(BaseModel):
    status: str
    message: str
    pending_sync: bool
    action_id: Optional[str] = None
    data: dict = Field(default_factory=dict)


class JourneyStateModel(BaseModel):
    driver_id: str
    selected_session: Optional[str]
    phase: str
    active_route_id: Optional[str]
    marked_stops: List[str]
    completed_sessions: List[str]
    sessions: dict
    is_online: bool
    traffic_monitoring: bool
    last_traffic_check: Optional[dict] = None
