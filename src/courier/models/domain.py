"""Domain models for delivery routes, journey state and queued actions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def normalize_session(session: Optional[str]) -> str:
    return (session or "").strip().lower()


class ActionType(str, Enum):
    START_JOURNEY = "START_JOURNEY"
    MARK_STOP = "MARK_STOP"
    UPDATE_LOCATION = "UPDATE_LOCATION"
    END_SESSION = "END_SESSION"


class StopStatus(str, Enum):
    DELIVERED = "Delivered"
    CUSTOMER_UNAVAILABLE = "CUSTOMER_UNAVAILABLE"


class OutcomeStatus(str, Enum):
    COMPLETED = "completed"
    QUEUED = "queued"
    NOOP = "noop"
    REJECTED = "rejected"
    FAILED = "failed"


class JourneyPhase(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    JOURNEY_ACTIVE = "JOURNEY_ACTIVE"
    SESSION_COMPLETED = "SESSION_COMPLETED"


@dataclass(slots=True)
class Coordinates:
    latitude: float
    longitude: float

    def as_wire(self) -> dict[str, float]:
        return {"lat": self.latitude, "lng": self.longitude}


@dataclass(slots=True)
class Stop:
    """A delivery stop as presented to the driver."""

    delivery_id: Optional[str]
    stop_order: Optional[int]
    delivery_name: Optional[str] = None
    session: Optional[str] = None
    planned_stop_id: Optional[str] = None
    address_id: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    raw: dict = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: dict, session: Optional[str] = None) -> "Stop":
        stop_order = record.get("stop_order")
        try:
            stop_order = int(stop_order) if stop_order is not None else None
        except (TypeError, ValueError):
            stop_order = None
        delivery_id = record.get("delivery_id")
        address_id = record.get("address_id")
        return cls(
            delivery_id=str(delivery_id) if delivery_id is not None else None,
            stop_order=stop_order,
            delivery_name=record.get("delivery_name") or record.get("customer_name"),
            session=record.get("session") or session,
            planned_stop_id=record.get("planned_stop_id"),
            address_id=str(address_id) if address_id is not None else None,
            latitude=record.get("latitude"),
            longitude=record.get("longitude"),
            raw=dict(record),
        )


@dataclass(slots=True)
class SessionRoute:
    """One delivery session (breakfast, lunch, dinner) with its own route."""

    session: str
    route_id: Optional[str]
    stops: list[Stop] = field(default_factory=list)
    map_links: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "session": self.session,
            "route_id": self.route_id,
            "stops": [dict(stop.raw) for stop in self.stops],
            "map_links": list(self.map_links),
        }

    @classmethod
    def from_dict(cls, session: str, data: dict) -> "SessionRoute":
        return cls(
            session=normalize_session(session),
            route_id=data.get("route_id"),
            stops=[Stop.from_record(item, session=normalize_session(session)) for item in data.get("stops") or []],
            map_links=list(data.get("map_links") or []),
        )


@dataclass(slots=True)
class CachedRouteSnapshot:
    sessions: dict[str, SessionRoute]
    driver_id: Optional[str]
    cached_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict:
        return {
            "sessions": {name: route.to_dict() for name, route in self.sessions.items()},
            "driver_id": self.driver_id,
            "cached_at": self.cached_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CachedRouteSnapshot":
        sessions = {
            normalize_session(name): SessionRoute.from_dict(name, route)
            for name, route in (data.get("sessions") or {}).items()
        }
        return cls(
            sessions=sessions,
            driver_id=data.get("driver_id"),
            cached_at=data.get("cached_at") or utc_now_iso(),
        )


@dataclass(slots=True)
class QueuedAction:
    id: str
    type: ActionType
    payload: dict
    enqueued_at: str
    retry_count: int = 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "payload": self.payload,
            "enqueued_at": self.enqueued_at,
            "retry_count": self.retry_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "QueuedAction":
        return cls(
            id=data["id"],
            type=ActionType(data["type"]),
            payload=dict(data.get("payload") or {}),
            enqueued_at=data.get("enqueued_at") or utc_now_iso(),
            retry_count=int(data.get("retry_count") or 0),
        )


@dataclass(slots=True)
class JourneyState:
    active_route_id: Optional[str] = None
    marked_stops: set[str] = field(default_factory=set)
    completed_sessions: set[str] = field(default_factory=set)

    def to_dict(self) -> dict:
        return {
            "active_route_id": self.active_route_id,
            "marked_stops": sorted(self.marked_stops),
            "completed_sessions": sorted(self.completed_sessions),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "JourneyState":
        return cls(
            active_route_id=data.get("active_route_id"),
            marked_stops=set(data.get("marked_stops") or []),
            completed_sessions={normalize_session(s) for s in data.get("completed_sessions") or [] if s},
        )


@dataclass(slots=True)
class StopCompletionRequest:
    route_id: str
    driver_id: str
    delivery_id: Optional[str]
    status: StopStatus
    planned_stop_id: Optional[str] = None
    stop_order: Optional[int] = None
    session: Optional[str] = None
    comments: Optional[str] = None
    current_location: Optional[Coordinates] = None
    completed_at: str = field(default_factory=utc_now_iso)

    def to_payload(self) -> dict:
        payload: dict[str, Any] = {
            "route_id": self.route_id,
            "driver_id": self.driver_id,
            "delivery_id": self.delivery_id,
            "status": self.status.value,
            "completed_at": self.completed_at,
        }
        if self.planned_stop_id:
            payload["planned_stop_id"] = self.planned_stop_id
        elif self.stop_order is not None:
            payload["stop_order"] = self.stop_order
        if self.session:
            payload["session"] = self.session
        if self.comments and self.comments.strip():
            payload["comments"] = self.comments.strip()[:500]
        if self.current_location is not None:
            payload["current_location"] = self.current_location.as_wire()
        return payload


@dataclass(slots=True)
class LocationUpdateRequest:
    """Correction of a delivery address's coordinates.

    Either ``address_id`` or the order reference (order id, menu item id,
    delivery date and session) identifies the address.
    """

    latitude: float
    longitude: float
    address_id: Optional[str] = None
    delivery_item_id: Optional[str] = None
    order_id: Optional[str] = None
    menu_item_id: Optional[str] = None
    delivery_date: Optional[str] = None
    session: Optional[str] = None
    requested_at: str = field(default_factory=utc_now_iso)

    def __post_init__(self) -> None:
        if not -90.0 <= self.latitude <= 90.0 or not -180.0 <= self.longitude <= 180.0:
            raise ValueError("Invalid latitude or longitude values")
        if not (self.address_id or self.delivery_item_id or (self.order_id and self.menu_item_id)):
            raise ValueError("address_id, delivery_item_id or order_id with menu_item_id is required")

    def to_payload(self) -> dict:
        payload: dict[str, Any] = {"geo_location": f"{self.latitude},{self.longitude}"}
        for key in ("address_id", "delivery_item_id", "order_id", "menu_item_id", "delivery_date", "session"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        return payload


@dataclass(slots=True)
class ActionOutcome:
    status: OutcomeStatus
    message: str
    action_id: Optional[str] = None
    data: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status in (OutcomeStatus.COMPLETED, OutcomeStatus.QUEUED, OutcomeStatus.NOOP)

    @property
    def pending_sync(self) -> bool:
        return self.status is OutcomeStatus.QUEUED
