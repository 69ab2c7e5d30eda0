"""Journey and stop state for a delivery executive.

The tracker owns which route is active, which stops are marked and which
sessions are completed. Local actions update that state optimistically (and
persist it); server status is merged in, never allowed to erase local marks.
Expected conditions (offline, violated preconditions, remote failures) come
back as :class:`ActionOutcome` values rather than exceptions.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Callable, Optional

from ...models.domain import (
    ActionOutcome,
    ActionType,
    CachedRouteSnapshot,
    JourneyPhase,
    JourneyState,
    LocationUpdateRequest,
    OutcomeStatus,
    QueuedAction,
    SessionRoute,
    Stop,
    StopCompletionRequest,
    StopStatus,
    normalize_session,
)
from ...persistence.storage import DeviceStorage, StorageError
from ...schemas.routing import RouteOrderStopModel, RouteStatusResponse, TrafficCheckResponse
from ..geolocation import GeolocationError, GeolocationProvider, locate, try_locate
from ..routing.route_client import RouteServiceClient, RouteServiceError, RouteServiceRateLimited
from ..sync.network import ONLINE
from ..sync.queue import DrainResult, OfflineQueue
from .stops import find_planned_stop_id, marked_entry_identifier, stop_identifier, stop_key
from .traffic import TrafficMonitor

logger = logging.getLogger(__name__)

Notifier = Callable[[str, str], None]

_REMOTE_ERRORS = (RouteServiceError, ConnectionError, ValueError)


def _state_key(driver_id: str) -> str:
    return "journey_state_" + re.sub(r"[^A-Za-z0-9_.-]", "_", driver_id)


def _parse_stop_status(value: StopStatus | str) -> Optional[StopStatus]:
    if isinstance(value, StopStatus):
        return value
    try:
        return StopStatus(value)
    except ValueError:
        pass
    try:
        return StopStatus[str(value).upper()]
    except KeyError:
        return None


class JourneyTracker:
    def __init__(
        self,
        driver_id: str,
        client: RouteServiceClient,
        queue: OfflineQueue,
        geolocation: GeolocationProvider,
        storage: DeviceStorage | None = None,
        traffic_interval: float | None = None,
    ) -> None:
        if not driver_id:
            raise ValueError("driver_id is required")
        self.driver_id = driver_id
        self.client = client
        self.queue = queue
        self.geolocation = geolocation
        self.storage = storage or queue.storage
        self.state = self._load_state()
        self.sessions: dict[str, SessionRoute] = {}
        self.selected_session: Optional[str] = None
        self.route_orders: dict[str, list[RouteOrderStopModel]] = {}
        self.traffic = TrafficMonitor(
            client,
            geolocation,
            on_result=self._on_traffic_result,
            on_error=self._on_traffic_error,
            interval=traffic_interval,
        )
        self._pending_marks: set[str] = set()
        self._replayed_routes: dict[str, str] = {}
        self._listeners: list[Notifier] = []
        self._sync_task: Optional[asyncio.Task] = None
        self._unsubscribe_network: Optional[Callable[[], None]] = None

    # lifecycle

    def attach(self) -> None:
        """Start reacting to connectivity transitions."""
        if self._unsubscribe_network is None:
            self._unsubscribe_network = self.queue.on_network_change(self._on_network_change)

    async def close(self) -> None:
        if self._unsubscribe_network is not None:
            self._unsubscribe_network()
            self._unsubscribe_network = None
        await self.traffic.aclose()
        task, self._sync_task = self._sync_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def subscribe(self, listener: Notifier) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, level: str, message: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(level, message)
            except Exception:
                logger.exception("Journey notification listener failed")

    def _report(self, status: OutcomeStatus, message: str, **kwargs) -> ActionOutcome:
        outcome = ActionOutcome(status=status, message=message, **kwargs)
        if status in (OutcomeStatus.FAILED, OutcomeStatus.REJECTED):
            logger.warning(f"[{self.driver_id}] {message}")
            self._notify("error", message)
        elif status is OutcomeStatus.QUEUED:
            logger.info(f"[{self.driver_id}] {message}")
            self._notify("warning", message)
        else:
            logger.info(f"[{self.driver_id}] {message}")
            self._notify("info" if status is OutcomeStatus.NOOP else "success", message)
        return outcome

    # persistence

    def _load_state(self) -> JourneyState:
        try:
            data = self.storage.get(_state_key(self.driver_id))
        except StorageError as exc:
            logger.error(f"Could not read journey state, starting fresh: {exc}")
            return JourneyState()
        return JourneyState.from_dict(data) if isinstance(data, dict) else JourneyState()

    def _persist(self) -> None:
        try:
            self.storage.set(_state_key(self.driver_id), self.state.to_dict())
        except StorageError as exc:
            logger.warning(f"Journey state kept in memory only: {exc}")

    # lookups

    def is_online(self) -> bool:
        return self.queue.is_online()

    def resolve_route_id(self, session: Optional[str] = None, fallback: bool = True) -> Optional[str]:
        name = normalize_session(session if session is not None else self.selected_session)
        route = self.sessions.get(name)
        if route is not None and route.route_id:
            return route.route_id
        if not fallback:
            return None
        if self.state.active_route_id:
            return self.state.active_route_id
        return next((item.route_id for item in self.sessions.values() if item.route_id), None)

    def phase(self, session: Optional[str] = None) -> JourneyPhase:
        name = normalize_session(session if session is not None else self.selected_session)
        if name and name in self.state.completed_sessions:
            return JourneyPhase.SESSION_COMPLETED
        route_id = self.resolve_route_id(name)
        if self.state.active_route_id and self.state.active_route_id == route_id:
            return JourneyPhase.JOURNEY_ACTIVE
        return JourneyPhase.NOT_STARTED

    def stop_key_for(self, stop: Stop) -> Optional[str]:
        session = normalize_session(stop.session or self.selected_session)
        route_id = self.resolve_route_id(session)
        if not route_id:
            return None
        identifier = stop_identifier(stop, self.route_orders.get(route_id, ()))
        if identifier is None:
            return None
        return stop_key(route_id, session, identifier)

    def is_marked(self, stop: Stop) -> bool:
        key = self.stop_key_for(stop)
        return key is not None and key in self.state.marked_stops

    # routes

    def _apply_snapshot(self, snapshot: CachedRouteSnapshot) -> None:
        self.sessions = dict(snapshot.sessions)
        if self.selected_session not in self.sessions:
            self.selected_session = next(iter(self.sessions), None)

    async def load_routes(self, date: str | None = None) -> ActionOutcome:
        """Fetch today's session routes, falling back to the cached snapshot."""
        error: Optional[str] = None
        if self.is_online():
            try:
                response = await self.client.get_driver_routes(self.driver_id, date=date)
            except _REMOTE_ERRORS as exc:
                error = str(exc)
                logger.warning(f"Route fetch failed, trying cached snapshot: {exc}")
            else:
                snapshot = CachedRouteSnapshot(
                    sessions={
                        normalize_session(item.session): SessionRoute.from_dict(item.session, item.model_dump())
                        for item in response.data
                    },
                    driver_id=self.driver_id,
                )
                self.queue.cache_snapshot(snapshot.to_dict())
                self._apply_snapshot(snapshot)
                await self.refresh_status()
                self._resume_traffic()
                message = "Routes loaded successfully!" if snapshot.sessions else "No routes assigned for today"
                return self._report(OutcomeStatus.COMPLETED, message, data={"source": "live"})

        cached = self.queue.get_cached_snapshot()
        if cached is None:
            message = error or "You are offline and no cached routes are available"
            return self._report(OutcomeStatus.FAILED, f"Failed to fetch routes: {message}")
        snapshot = CachedRouteSnapshot.from_dict(cached)
        self._apply_snapshot(snapshot)
        return self._report(
            OutcomeStatus.COMPLETED,
            f"Showing cached routes from {snapshot.cached_at}",
            data={"source": "cache", "cached_at": snapshot.cached_at},
        )

    async def select_session(self, session: str) -> ActionOutcome:
        name = normalize_session(session)
        if name not in self.sessions:
            return self._report(OutcomeStatus.REJECTED, f"No route loaded for session '{session}'")
        self.selected_session = name
        await self.refresh_status()
        return self._report(OutcomeStatus.COMPLETED, f"Switched to {name} session")

    # reconciliation

    async def refresh_status(self) -> Optional[RouteStatusResponse]:
        """Pull the route order and canonical status for the selected session's route."""
        route_id = self.resolve_route_id()
        if not route_id or not self.is_online():
            return None
        try:
            order = await self.client.get_route_order(route_id)
            self.route_orders[route_id] = order.stops
        except _REMOTE_ERRORS as exc:
            logger.warning(f"Route order unavailable for {route_id}: {exc}")
        try:
            status = await self.client.get_route_status(route_id, driver_id=self.driver_id)
        except _REMOTE_ERRORS as exc:
            logger.warning(f"Route status unavailable for {route_id}: {exc}")
            return None
        self.apply_server_status(status)
        return status

    def apply_server_status(self, status: RouteStatusResponse) -> None:
        """Merge server status into local state without dropping local marks."""
        route_id = status.route_id
        if route_id:
            order = self.route_orders.get(route_id, ())
            for entry in status.marked_stops:
                identifier = marked_entry_identifier(entry, order)
                if identifier is not None:
                    self.state.marked_stops.add(stop_key(route_id, entry.session, identifier))
        for session in status.completed_sessions:
            self.state.completed_sessions.add(normalize_session(session))

        selected_route = self.resolve_route_id(fallback=False)
        selected = normalize_session(self.selected_session)
        if route_id and route_id == selected_route:
            if status.is_journey_started and selected not in self.state.completed_sessions:
                self.state.active_route_id = route_id
        self._clear_finished_active_route()
        self._persist()

    def _clear_finished_active_route(self) -> None:
        active = self.state.active_route_id
        if not active:
            return
        for name in self.state.completed_sessions:
            route = self.sessions.get(name)
            if route is not None and route.route_id == active:
                self.state.active_route_id = None
                self.traffic.stop()
                return

    # journey transitions

    async def start_journey(self, route_id: str | None = None) -> ActionOutcome:
        session = normalize_session(self.selected_session)
        route_id = route_id or self.resolve_route_id(session)
        if not route_id:
            return self._report(
                OutcomeStatus.REJECTED,
                "Cannot start journey: no route is assigned to the selected session",
            )
        if session and session in self.state.completed_sessions:
            return self._report(OutcomeStatus.REJECTED, f"Cannot start journey: the {session} session is already completed")
        if self.state.active_route_id == route_id:
            return self._report(OutcomeStatus.NOOP, "Journey already started")

        previous = self.state.active_route_id
        self.state.active_route_id = route_id
        self._persist()

        if not self.is_online():
            action_id = self.queue.enqueue(
                ActionType.START_JOURNEY,
                {"driver_id": self.driver_id, "route_id": route_id, "session": session or None},
            )
            if action_id is None:
                self._rollback_start(route_id, previous)
                return self._report(OutcomeStatus.FAILED, "Could not save journey start for sync; please try again")
            return self._report(
                OutcomeStatus.QUEUED,
                "Journey started offline; it will sync when you are back online",
                action_id=action_id,
                data={"route_id": route_id},
            )

        try:
            response = await self.client.start_journey(self.driver_id, route_id)
        except _REMOTE_ERRORS as exc:
            self._rollback_start(route_id, previous)
            return self._report(OutcomeStatus.FAILED, f"Failed to start journey: {exc}")

        confirmed = response.route_id or route_id
        if confirmed != route_id and self.state.active_route_id == route_id:
            self._adopt_route_id(route_id, confirmed)
        self.traffic.start(confirmed)
        return self._report(
            OutcomeStatus.COMPLETED,
            response.message or "Journey started successfully",
            data={"route_id": confirmed},
        )

    def _rollback_start(self, route_id: str, previous: Optional[str]) -> None:
        if self.state.active_route_id == route_id:
            self.state.active_route_id = previous
            self._persist()

    def _adopt_route_id(self, old: str, new: str) -> None:
        logger.info(f"Route service assigned route {new} in place of {old}")
        for route in self.sessions.values():
            if route.route_id == old:
                route.route_id = new
        if self.state.active_route_id == old:
            self.state.active_route_id = new
        prefix = f"{old}_"
        self.state.marked_stops = {
            f"{new}_{key[len(prefix):]}" if key.startswith(prefix) else key for key in self.state.marked_stops
        }
        if old in self.route_orders:
            self.route_orders[new] = self.route_orders.pop(old)
        self.queue.rewrite_route(old, new)
        self._persist()

    async def mark_stop(
        self,
        stop: Stop,
        status: StopStatus | str = StopStatus.DELIVERED,
        comments: str | None = None,
    ) -> ActionOutcome:
        parsed = _parse_stop_status(status)
        if parsed is None:
            return self._report(OutcomeStatus.REJECTED, f"Unknown stop status '{status}'")
        status = parsed

        session = normalize_session(stop.session or self.selected_session)
        if not session:
            return self._report(OutcomeStatus.REJECTED, "Cannot mark stop: the stop has no delivery session")
        if session in self.state.completed_sessions:
            return self._report(
                OutcomeStatus.REJECTED,
                f"Cannot mark stop: the {session} session is already completed",
            )
        route_id = self.resolve_route_id(session)
        if not route_id:
            return self._report(OutcomeStatus.REJECTED, f"Cannot mark stop: no route id found for the {session} session")

        order = self.route_orders.get(route_id, ())
        planned_stop_id = find_planned_stop_id(stop, order)
        identifier = stop_identifier(stop, order)
        if identifier is None:
            return self._report(OutcomeStatus.REJECTED, "Cannot mark stop: it has neither a planned stop id nor a stop order")

        key = stop_key(route_id, session, identifier)
        if key in self.state.marked_stops or key in self._pending_marks:
            return self._report(OutcomeStatus.NOOP, "Stop is already marked")

        self._pending_marks.add(key)
        try:
            location = await try_locate(self.geolocation)
            if session in self.state.completed_sessions:
                return self._report(
                    OutcomeStatus.REJECTED,
                    f"Cannot mark stop: the {session} session is already completed",
                )
            request = StopCompletionRequest(
                route_id=route_id,
                driver_id=self.driver_id,
                delivery_id=stop.delivery_id,
                status=status,
                planned_stop_id=planned_stop_id,
                stop_order=stop.stop_order,
                session=session,
                comments=comments,
                current_location=location,
            )
            label = "delivered" if status is StopStatus.DELIVERED else "customer unavailable"

            if not self.is_online():
                action_id = self.queue.enqueue(ActionType.MARK_STOP, request.to_payload())
                if action_id is None:
                    return self._report(OutcomeStatus.FAILED, "Could not save stop update for sync; please try again")
                self.state.marked_stops.add(key)
                self._persist()
                return self._report(
                    OutcomeStatus.QUEUED,
                    f"Stop marked {label} offline; queued for sync",
                    action_id=action_id,
                    data={"stop_key": key},
                )

            try:
                await self.client.mark_stop_reached(request)
            except _REMOTE_ERRORS as exc:
                return self._report(OutcomeStatus.FAILED, f"Failed to mark stop: {exc}")
            self.state.marked_stops.add(key)
            self._persist()
            return self._report(OutcomeStatus.COMPLETED, f"Stop marked {label}", data={"stop_key": key})
        finally:
            self._pending_marks.discard(key)

    async def end_session(self, route_id: str | None = None, session: str | None = None) -> ActionOutcome:
        name = normalize_session(session or self.selected_session)
        if not name:
            return self._report(OutcomeStatus.REJECTED, "Cannot end session: no session selected")
        if name in self.state.completed_sessions:
            return self._report(OutcomeStatus.NOOP, f"The {name} session is already completed")
        route_id = route_id or self.resolve_route_id(name)
        if not route_id:
            return self._report(OutcomeStatus.REJECTED, f"Cannot end session: no route id found for the {name} session")

        previous_active = self.state.active_route_id
        self.state.completed_sessions.add(name)
        if previous_active == route_id:
            self.state.active_route_id = None
            self.traffic.stop()
        self._persist()

        if not self.is_online():
            action_id = self.queue.enqueue(
                ActionType.END_SESSION,
                {"driver_id": self.driver_id, "route_id": route_id, "session": name},
            )
            if action_id is None:
                self._rollback_end(name, route_id, previous_active)
                return self._report(OutcomeStatus.FAILED, "Could not save session completion for sync; please try again")
            return self._report(
                OutcomeStatus.QUEUED,
                f"{name.title()} session ended offline; queued for sync",
                action_id=action_id,
            )

        try:
            response = await self.client.complete_session(route_id, name)
        except _REMOTE_ERRORS as exc:
            self._rollback_end(name, route_id, previous_active)
            return self._report(OutcomeStatus.FAILED, f"Failed to end session: {exc}")
        return self._report(
            OutcomeStatus.COMPLETED,
            response.get("message") or f"{name.title()} session completed",
            data={"route_id": route_id},
        )

    def _rollback_end(self, session: str, route_id: str, previous_active: Optional[str]) -> None:
        self.state.completed_sessions.discard(session)
        if previous_active == route_id and self.state.active_route_id is None:
            self.state.active_route_id = previous_active
            if self.is_online():
                self.traffic.start(previous_active)
        self._persist()

    # address coordinates

    async def update_location(self, request: LocationUpdateRequest) -> ActionOutcome:
        if not self.is_online():
            action_id = self.queue.enqueue(ActionType.UPDATE_LOCATION, request.to_payload())
            if action_id is None:
                return self._report(OutcomeStatus.FAILED, "Could not save location update for sync; please try again")
            return self._report(OutcomeStatus.QUEUED, "Location saved offline; queued for sync", action_id=action_id)
        try:
            await self.client.update_geo_location(request)
        except _REMOTE_ERRORS as exc:
            return self._report(OutcomeStatus.FAILED, f"Failed to update location: {exc}")
        return self._report(OutcomeStatus.COMPLETED, "Location updated successfully")

    async def capture_location_for(self, **target) -> ActionOutcome:
        """Record the device's current position as the coordinates of an address."""
        try:
            position = await locate(self.geolocation)
        except GeolocationError as exc:
            return self._report(OutcomeStatus.FAILED, f"Unable to get your location: {exc}")
        try:
            request = LocationUpdateRequest(latitude=position.latitude, longitude=position.longitude, **target)
        except ValueError as exc:
            return self._report(OutcomeStatus.REJECTED, str(exc))
        return await self.update_location(request)

    # traffic

    async def reoptimize(self) -> ActionOutcome:
        route_id = self.state.active_route_id or self.resolve_route_id()
        if not route_id:
            return self._report(OutcomeStatus.REJECTED, "Cannot reoptimize: no route is selected")
        if not self.is_online():
            return self._report(OutcomeStatus.REJECTED, "Cannot reoptimize while offline")
        location = await try_locate(self.geolocation)
        try:
            response = await self.client.reoptimize_route(route_id, current_location=location)
        except RouteServiceRateLimited as exc:
            return self._report(OutcomeStatus.FAILED, f"Reoptimization rate limited: {exc}")
        except _REMOTE_ERRORS as exc:
            return self._report(OutcomeStatus.FAILED, f"Failed to reoptimize route: {exc}")
        try:
            order = await self.client.get_route_order(route_id)
            self.route_orders[route_id] = order.stops
        except _REMOTE_ERRORS as exc:
            logger.warning(f"Route order not refreshed after reoptimization: {exc}")
        return self._report(OutcomeStatus.COMPLETED, response.message or "Route reoptimized")

    async def _on_traffic_result(self, route_id: str, result: TrafficCheckResponse) -> None:
        if result.updated_route_order:
            self.route_orders[route_id] = list(result.updated_route_order)
        if result.heavy_traffic_detected and result.reoptimized:
            self._notify("warning", "Heavy traffic detected; your route has been reoptimized")
        elif result.heavy_traffic_detected:
            self._notify("warning", "Heavy traffic detected on your route")
        else:
            logger.debug(f"Traffic normal on route {route_id}")

    def _on_traffic_error(self, route_id: str, message: str) -> None:
        logger.warning(f"[{route_id}] {message}")
        self._notify("error", message)

    def _resume_traffic(self) -> None:
        active = self.state.active_route_id
        if active and self.is_online() and not self.traffic.running:
            self.traffic.start(active)

    # offline replay

    def _rewrite_route(self, payload: dict) -> dict:
        route_id = payload.get("route_id")
        if route_id in self._replayed_routes:
            return {**payload, "route_id": self._replayed_routes[route_id]}
        return payload

    async def execute_queued(self, action: QueuedAction) -> dict:
        """Send one queued action to the route service; raises on failure."""
        payload = self._rewrite_route(action.payload)
        if action.type is ActionType.START_JOURNEY:
            response = await self.client.start_journey(payload["driver_id"], payload.get("route_id"))
            queued_route = payload.get("route_id")
            if response.route_id and queued_route and response.route_id != queued_route:
                self._replayed_routes[queued_route] = response.route_id
                self._adopt_route_id(queued_route, response.route_id)
        elif action.type is ActionType.MARK_STOP:
            await self.client.mark_stop_reached(payload)
        elif action.type is ActionType.UPDATE_LOCATION:
            await self.client.update_geo_location(payload)
        elif action.type is ActionType.END_SESSION:
            await self.client.complete_session(payload["route_id"], payload.get("session"))
        else:
            raise ValueError(f"Unsupported queued action type: {action.type}")
        return {"success": True}

    async def sync(self) -> DrainResult:
        """Replay queued actions, then re-read server status."""
        result = await self.queue.drain(self.execute_queued)
        if result.skipped:
            return result
        if result.synced:
            self._notify("success", f"Synced {result.synced} offline action(s)")
        for action in result.failed_actions:
            self._notify("error", f"Offline {action.type.value} action could not be synced and was set aside")
        await self.refresh_status()
        return result

    def _on_network_change(self, status: str) -> None:
        if status != ONLINE:
            self.traffic.stop()
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Back online outside an event loop; sync will run on the next request")
            return
        if self._sync_task is None or self._sync_task.done():
            self._sync_task = loop.create_task(self.sync())
            self._sync_task.add_done_callback(self._report_sync_failure)
        self._resume_traffic()

    def _report_sync_failure(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background sync failed: {exc}", exc_info=exc)
            self._notify("error", f"Offline sync failed: {exc}")

    # views

    def snapshot(self) -> dict:
        last = self.traffic.last_result
        return {
            "driver_id": self.driver_id,
            "selected_session": self.selected_session,
            "phase": self.phase().value,
            "active_route_id": self.state.active_route_id,
            "marked_stops": sorted(self.state.marked_stops),
            "completed_sessions": sorted(self.state.completed_sessions),
            "sessions": {name: route.to_dict() for name, route in self.sessions.items()},
            "is_online": self.is_online(),
            "traffic_monitoring": self.traffic.running,
            "last_traffic_check": last.model_dump() if last is not None else None,
        }
