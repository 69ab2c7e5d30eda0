"""Route service reply schemas."""

from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ServiceReply(BaseModel):
    model_config = ConfigDict(extra="allow")

    success: bool = True
    message: Optional[str] = None


class DriverRouteModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    session: str
    route_id: Optional[str] = None
    stops: List[dict] = Field(default_factory=list)
    map_links: List[str] = Field(default_factory=list)


class DriverRoutesResponse(ServiceReply):
    driver_id: Optional[str] = None
    data: List[DriverRouteModel] = Field(default_factory=list)


class StartJourneyResponse(ServiceReply):
    route_id: Optional[str] = None
    driver_id: Optional[str] = None
    start_time: Optional[str] = None


class MarkedStopModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    session: Optional[str] = None
    planned_stop_id: Optional[str] = None
    stop_order: Optional[int] = None
    delivery_status: Optional[str] = None

    @field_validator("planned_stop_id", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> Optional[str]:
        return None if value is None else str(value)


class RouteStatusResponse(ServiceReply):
    route_id: Optional[str] = None
    is_journey_started: bool = False
    marked_stops: List[MarkedStopModel] = Field(default_factory=list)
    completed_sessions: List[str] = Field(default_factory=list)

    @field_validator("completed_sessions", mode="before")
    @classmethod
    def _drop_empty_sessions(cls, value: Any) -> list:
        return [item for item in value or [] if item]


class RouteOrderStopModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    planned_stop_id: Optional[str] = None
    stop_order: Optional[int] = None
    delivery_name: Optional[str] = None
    delivery_id: Optional[str] = None
    status: Optional[str] = None

    @field_validator("delivery_id", "planned_stop_id", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> Optional[str]:
        return None if value is None else str(value)


class RouteOrderResponse(ServiceReply):
    route_id: Optional[str] = None
    stops: List[RouteOrderStopModel] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _accept_route_order_key(cls, data: Any) -> Any:
        if isinstance(data, dict) and "stops" not in data and "route_order" in data:
            data = {**data, "stops": data["route_order"] or []}
        return data


class TrafficCheckResponse(ServiceReply):
    heavy_traffic_detected: bool = False
    reoptimized: bool = False
    updated_route_order: Optional[List[RouteOrderStopModel]] = None
    reoptimization_result: Optional[dict] = None


class ReoptimizeResponse(ServiceReply):
    reoptimized: Optional[bool] = None
