"""Stop identity resolution.

Stop order shifts when a route is reoptimized; the planned stop id does not.
Marks are therefore keyed by planned stop id whenever one can be found and by
stop order only as a last resort.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

from ...models.domain import Stop, normalize_session
from ...schemas.routing import MarkedStopModel, RouteOrderStopModel


def _clean(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def find_planned_stop_id(stop: Stop, route_order: Sequence[RouteOrderStopModel] = ()) -> Optional[str]:
    """Look for a planned stop id on the stop, its records, then the route order listing."""
    original = stop.raw.get("original") if isinstance(stop.raw.get("original"), dict) else {}
    for candidate in (stop.planned_stop_id, stop.raw.get("planned_stop_id"), original.get("planned_stop_id")):
        planned = _clean(candidate)
        if planned:
            return planned

    if stop.delivery_id:
        for entry in route_order:
            if entry.planned_stop_id and entry.delivery_id == stop.delivery_id:
                return entry.planned_stop_id
    if stop.delivery_name:
        name = stop.delivery_name.strip().lower()
        for entry in route_order:
            if entry.planned_stop_id and (entry.delivery_name or "").strip().lower() == name:
                return entry.planned_stop_id
    if stop.stop_order is not None:
        for entry in route_order:
            if entry.planned_stop_id and entry.stop_order == stop.stop_order:
                return entry.planned_stop_id
    return None


def stop_identifier(stop: Stop, route_order: Sequence[RouteOrderStopModel] = ()) -> Optional[str]:
    planned = find_planned_stop_id(stop, route_order)
    if planned:
        return planned
    if stop.stop_order is not None:
        return str(stop.stop_order)
    return None


def marked_entry_identifier(entry: MarkedStopModel, route_order: Iterable[RouteOrderStopModel] = ()) -> Optional[str]:
    """Identifier for a server-reported mark, translating bare stop orders when possible."""
    planned = _clean(entry.planned_stop_id)
    if planned:
        return planned
    if entry.stop_order is None:
        return None
    for order_entry in route_order:
        if order_entry.stop_order == entry.stop_order and order_entry.planned_stop_id:
            return order_entry.planned_stop_id
    return str(entry.stop_order)


def stop_key(route_id: str, session: Optional[str], identifier: str) -> str:
    return f"{route_id}_{normalize_session(session)}_{identifier}"
