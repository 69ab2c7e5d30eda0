"""Durable queue of mutating actions captured while the device is offline."""

from __future__ import annotations

import logging
import random
import string
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from ...config import settings
from ...models.domain import ActionType, QueuedAction, utc_now_iso
from ...persistence.storage import DeviceStorage, StorageError, StorageQuotaExceeded
from .network import NetworkMonitor

logger = logging.getLogger(__name__)

ROUTES_CACHE_KEY = "offline_routes_cache"
ACTIONS_QUEUE_KEY = "offline_actions_queue"
FAILED_ACTIONS_KEY = "offline_failed_actions"
LAST_SYNC_KEY = "offline_last_sync"

Executor = Callable[[QueuedAction], Awaitable[Any]]


@dataclass(slots=True)
class DrainResult:
    synced: int = 0
    failed: int = 0
    failed_actions: list[QueuedAction] = field(default_factory=list)
    skipped: bool = False
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "synced": self.synced,
            "failed": self.failed,
            "failed_actions": [action.to_dict() for action in self.failed_actions],
            "skipped": self.skipped,
            "reason": self.reason,
        }


def _new_action_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"action_{int(time.time() * 1000)}_{suffix}"


def _succeeded(result: Any) -> bool:
    if result is False:
        return False
    if isinstance(result, dict) and result.get("success") is False:
        return False
    return True


class OfflineQueue:
    """Snapshot cache plus FIFO action queue with bounded replay."""

    def __init__(
        self,
        storage: DeviceStorage,
        network: NetworkMonitor,
        max_retries: int | None = None,
    ) -> None:
        self.storage = storage
        self.network = network
        self.max_retries = max_retries if max_retries is not None else settings.queue_max_retries
        self._draining = False

    # connectivity

    def is_online(self) -> bool:
        return self.network.is_online()

    def on_network_change(self, callback: Callable[[str], None]) -> Callable[[], None]:
        return self.network.on_network_change(callback)

    @property
    def sync_in_progress(self) -> bool:
        return self._draining

    # route snapshot

    def cache_snapshot(self, data: dict) -> bool:
        """Replace the stored route snapshot.

        Returns False instead of raising when the store cannot take it; the
        snapshot is a display cache, not a record of truth.
        """
        try:
            self.storage.set(ROUTES_CACHE_KEY, data)
            return True
        except StorageQuotaExceeded:
            logger.warning("Device storage quota exceeded. Clearing route snapshot and retrying...")
        except StorageError as exc:
            logger.error(f"Error caching route snapshot: {exc}")
            return False

        if not self.clear_snapshot():
            return False
        try:
            self.storage.set(ROUTES_CACHE_KEY, data)
            return True
        except StorageError as exc:
            logger.error(f"Failed to cache route snapshot after clearing: {exc}")
            return False

    def get_cached_snapshot(self) -> Optional[dict]:
        try:
            cached = self.storage.get(ROUTES_CACHE_KEY)
        except StorageError as exc:
            logger.error(f"Error reading cached route snapshot: {exc}")
            return None
        return cached if isinstance(cached, dict) else None

    def clear_snapshot(self) -> bool:
        try:
            self.storage.remove(ROUTES_CACHE_KEY)
            return True
        except StorageError as exc:
            logger.error(f"Error clearing route snapshot: {exc}")
            return False

    # action queue

    def _load(self, key: str) -> list[QueuedAction]:
        try:
            raw = self.storage.get(key, default=[])
        except StorageError as exc:
            logger.error(f"Error reading {key}: {exc}")
            return []
        actions = []
        for item in raw or []:
            try:
                actions.append(QueuedAction.from_dict(item))
            except (KeyError, ValueError, TypeError) as exc:
                logger.warning(f"Discarding unreadable entry in {key}: {exc}")
        return actions

    def _save(self, key: str, actions: list[QueuedAction]) -> None:
        self.storage.set(key, [action.to_dict() for action in actions])

    def enqueue(self, action_type: ActionType, payload: dict) -> Optional[str]:
        """Append an action; return its id, or None when it could not be persisted."""
        action = QueuedAction(
            id=_new_action_id(),
            type=ActionType(action_type),
            payload=dict(payload),
            enqueued_at=utc_now_iso(),
            retry_count=0,
        )
        queue = self.list_queued()
        queue.append(action)
        try:
            self._save(ACTIONS_QUEUE_KEY, queue)
        except StorageQuotaExceeded:
            logger.warning(f"Device storage quota exceeded. Cannot queue {action.type.value} action.")
            return None
        except StorageError as exc:
            logger.error(f"Error queueing {action.type.value} action: {exc}")
            return None
        logger.info(f"Queued {action.type.value} action {action.id} for sync")
        return action.id

    def list_queued(self) -> list[QueuedAction]:
        return self._load(ACTIONS_QUEUE_KEY)

    def get(self, action_id: str) -> Optional[QueuedAction]:
        return next((action for action in self.list_queued() if action.id == action_id), None)

    def remove(self, action_id: str) -> bool:
        queue = self.list_queued()
        filtered = [action for action in queue if action.id != action_id]
        if len(filtered) == len(queue):
            return False
        self._save(ACTIONS_QUEUE_KEY, filtered)
        return True

    def bump_retry(self, action_id: str) -> Optional[int]:
        """Increment the retry count of a queued action and return the new count."""
        queue = self.list_queued()
        new_count = None
        for action in queue:
            if action.id == action_id:
                action.retry_count += 1
                new_count = action.retry_count
                break
        if new_count is None:
            return None
        self._save(ACTIONS_QUEUE_KEY, queue)
        return new_count

    def clear_queue(self) -> None:
        self.storage.remove(ACTIONS_QUEUE_KEY)

    def rewrite_route(self, old_route_id: str, new_route_id: str) -> int:
        """Point queued actions at a route id the server assigned on replay."""
        queue = self.list_queued()
        changed = 0
        for action in queue:
            if action.payload.get("route_id") == old_route_id:
                action.payload["route_id"] = new_route_id
                changed += 1
        if not changed:
            return 0
        try:
            self._save(ACTIONS_QUEUE_KEY, queue)
        except StorageError as exc:
            logger.error(f"Could not rewrite queued actions from route {old_route_id} to {new_route_id}: {exc}")
            return 0
        return changed

    # failed set

    def _demote(self, action: QueuedAction) -> None:
        """Take an exhausted action out of the queue, keeping it in the failed set when storage allows."""
        failed = self.list_failed()
        if all(item.id != action.id for item in failed):
            failed.append(action)
            try:
                self._save(FAILED_ACTIONS_KEY, failed)
            except StorageError as exc:
                logger.error(f"Could not record failed action {action.id}; dropping it: {exc}")
        try:
            self.remove(action.id)
        except StorageError as exc:
            logger.error(f"Could not remove failed action {action.id} from the queue: {exc}")
        logger.warning(
            f"Action {action.id} ({action.type.value}) failed {action.retry_count} times; moved to failed set"
        )

    def list_failed(self) -> list[QueuedAction]:
        return self._load(FAILED_ACTIONS_KEY)

    def requeue_failed(self, action_id: str) -> bool:
        """Move a failed action back to the end of the queue with its retry count reset."""
        failed = self.list_failed()
        action = next((item for item in failed if item.id == action_id), None)
        if action is None:
            return False
        action.retry_count = 0
        queue = self.list_queued()
        queue.append(action)
        self._save(ACTIONS_QUEUE_KEY, queue)
        self._save(FAILED_ACTIONS_KEY, [item for item in failed if item.id != action_id])
        return True

    def clear_failed(self) -> None:
        self.storage.remove(FAILED_ACTIONS_KEY)

    # replay

    async def drain(self, execute: Executor) -> DrainResult:
        """Replay queued actions one at a time, oldest first.

        A call made while another drain is running returns immediately with
        ``skipped=True``. The flag is set before the first ``await``.
        """
        if self._draining:
            logger.info("Sync already in progress")
            return DrainResult(skipped=True, reason="in_progress")
        if not self.is_online():
            return DrainResult(skipped=True, reason="offline")

        self._draining = True
        result = DrainResult()
        try:
            for action_id in [action.id for action in self.list_queued()]:
                # re-read so payload rewrites made by earlier replays are seen
                action = self.get(action_id)
                if action is None:
                    continue
                if action.retry_count >= self.max_retries:
                    self._demote(action)
                    result.failed_actions.append(action)
                    result.failed += 1
                    continue

                try:
                    outcome = await execute(action)
                    succeeded = _succeeded(outcome)
                except Exception as exc:
                    logger.error(f"Error syncing action {action.id}: {exc}")
                    succeeded = False

                try:
                    if succeeded:
                        self.remove(action.id)
                        result.synced += 1
                        continue
                    retry_count = self.bump_retry(action.id)
                except StorageError as exc:
                    logger.error(f"Could not update queued action {action.id} after replay: {exc}")
                    continue

                if retry_count is not None and retry_count >= self.max_retries:
                    action.retry_count = retry_count
                    self._demote(action)
                    result.failed_actions.append(action)
                    result.failed += 1

            try:
                self.storage.set(LAST_SYNC_KEY, utc_now_iso())
            except StorageError as exc:
                logger.warning(f"Could not record last sync time: {exc}")
        finally:
            self._draining = False

        if result.synced or result.failed:
            logger.info(f"Sync finished: {result.synced} synced, {result.failed} permanently failed")
        return result

    def sync_status(self) -> dict:
        try:
            last_sync = self.storage.get(LAST_SYNC_KEY)
        except StorageError:
            last_sync = None
        return {
            "is_online": self.is_online(),
            "queue_length": len(self.list_queued()),
            "failed_count": len(self.list_failed()),
            "sync_in_progress": self._draining,
            "last_sync": last_sync,
        }
