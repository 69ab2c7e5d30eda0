import asyncio

from src.courier.models.domain import ActionType
from src.courier.persistence.storage import DeviceStorage, StorageError, StorageQuotaExceeded
from src.courier.services.sync.network import NetworkMonitor
from src.courier.services.sync.queue import FAILED_ACTIONS_KEY, LAST_SYNC_KEY, ROUTES_CACHE_KEY, OfflineQueue


class QuotaStorage(DeviceStorage):
    """Storage that refuses writes of the route snapshot above a size."""

    def __init__(self, root, snapshot_limit):
        super().__init__(root=root, quota_bytes=0)
        self.snapshot_limit = snapshot_limit
        self.removed = []

    def set(self, key, value):
        if key == ROUTES_CACHE_KEY and len(str(value)) > self.snapshot_limit:
            raise StorageQuotaExceeded("full")
        super().set(key, value)

    def remove(self, key):
        self.removed.append(key)
        super().remove(key)


class BrokenStorage(DeviceStorage):
    def set(self, key, value):
        raise StorageQuotaExceeded("full")


def _queue(tmp_path, online=True, storage=None):
    return OfflineQueue(storage or DeviceStorage(root=tmp_path), NetworkMonitor(online=online), max_retries=5)


def test_enqueue_assigns_ids_and_keeps_fifo_order(tmp_path):
    queue = _queue(tmp_path)

    first = queue.enqueue(ActionType.START_JOURNEY, {"route_id": "R1"})
    second = queue.enqueue(ActionType.MARK_STOP, {"route_id": "R1", "planned_stop_id": "p-1"})

    assert first.startswith("action_") and first != second
    queued = queue.list_queued()
    assert [action.id for action in queued] == [first, second]
    assert all(action.retry_count == 0 for action in queued)
    assert queue.get(second).payload["planned_stop_id"] == "p-1"

    assert queue.bump_retry(first) == 1
    assert queue.bump_retry("missing") is None
    assert queue.remove(first) is True
    assert queue.remove(first) is False
    assert [action.id for action in queue.list_queued()] == [second]


def test_queue_survives_reload(tmp_path):
    queue = _queue(tmp_path)
    action_id = queue.enqueue(ActionType.END_SESSION, {"route_id": "R1", "session": "lunch"})

    reloaded = _queue(tmp_path)

    assert [action.id for action in reloaded.list_queued()] == [action_id]
    assert reloaded.list_queued()[0].type is ActionType.END_SESSION


def test_enqueue_returns_none_when_storage_full(tmp_path):
    queue = _queue(tmp_path, storage=BrokenStorage(root=tmp_path))

    assert queue.enqueue(ActionType.MARK_STOP, {"route_id": "R1"}) is None


def test_drain_replays_in_fifo_order_and_empties_queue(tmp_path):
    queue = _queue(tmp_path)
    ids = [queue.enqueue(ActionType.MARK_STOP, {"n": n}) for n in range(3)]
    seen = []

    async def execute(action):
        # later actions answer faster; order must still hold
        await asyncio.sleep(0.01 * (3 - action.payload["n"]))
        seen.append(action.id)
        return {"success": True}

    result = asyncio.run(queue.drain(execute))

    assert seen == ids
    assert result.synced == 3
    assert result.failed == 0
    assert queue.list_queued() == []
    assert queue.sync_status()["last_sync"] is not None


def test_drain_is_skipped_while_offline(tmp_path):
    queue = _queue(tmp_path, online=False)
    queue.enqueue(ActionType.MARK_STOP, {"n": 1})
    calls = []

    async def execute(action):
        calls.append(action)
        return True

    result = asyncio.run(queue.drain(execute))

    assert result.skipped is True
    assert result.reason == "offline"
    assert calls == []
    assert len(queue.list_queued()) == 1


def test_failing_action_is_attempted_at_most_max_retries_times(tmp_path):
    queue = _queue(tmp_path)
    action_id = queue.enqueue(ActionType.MARK_STOP, {"route_id": "R1"})
    attempts = []

    async def execute(action):
        attempts.append(action.id)
        raise ConnectionError("route service down")

    async def scenario():
        results = [await queue.drain(execute) for _ in range(7)]
        return results

    results = asyncio.run(scenario())

    assert len(attempts) == 5
    assert queue.list_queued() == []
    failed = queue.list_failed()
    assert [action.id for action in failed] == [action_id]
    assert failed[0].retry_count == 5
    assert [r.failed for r in results] == [0, 0, 0, 0, 1, 0, 0]
    assert results[4].failed_actions[0].id == action_id


def test_false_and_unsuccessful_envelope_count_as_failures(tmp_path):
    queue = _queue(tmp_path)
    queue.enqueue(ActionType.MARK_STOP, {"kind": "false"})
    queue.enqueue(ActionType.MARK_STOP, {"kind": "envelope"})

    async def execute(action):
        return False if action.payload["kind"] == "false" else {"success": False, "message": "nope"}

    result = asyncio.run(queue.drain(execute))

    assert result.synced == 0
    assert [action.retry_count for action in queue.list_queued()] == [1, 1]


def test_failure_does_not_block_later_actions(tmp_path):
    queue = _queue(tmp_path)
    queue.enqueue(ActionType.MARK_STOP, {"ok": False})
    good = queue.enqueue(ActionType.MARK_STOP, {"ok": True})

    async def execute(action):
        if not action.payload["ok"]:
            raise ConnectionError("down")
        return {"success": True}

    result = asyncio.run(queue.drain(execute))

    assert result.synced == 1
    assert good not in [action.id for action in queue.list_queued()]


def test_concurrent_drain_is_skipped_and_never_double_sends(tmp_path):
    queue = _queue(tmp_path)
    queue.enqueue(ActionType.MARK_STOP, {"n": 1})
    queue.enqueue(ActionType.MARK_STOP, {"n": 2})
    sent = []

    async def scenario():
        release = asyncio.Event()

        async def execute(action):
            sent.append(action.id)
            await release.wait()
            return {"success": True}

        first = asyncio.create_task(queue.drain(execute))
        await asyncio.sleep(0)
        assert queue.sync_in_progress is True
        second = await queue.drain(execute)
        release.set()
        return await first, second

    first, second = asyncio.run(scenario())

    assert second.skipped is True
    assert second.reason == "in_progress"
    assert first.synced == 2
    assert len(sent) == len(set(sent)) == 2
    assert queue.sync_in_progress is False


def test_requeue_failed_moves_action_back_with_reset_retries(tmp_path):
    queue = _queue(tmp_path)
    action_id = queue.enqueue(ActionType.UPDATE_LOCATION, {"address_id": "A1"})

    async def execute(action):
        return False

    async def scenario():
        for _ in range(5):
            await queue.drain(execute)

    asyncio.run(scenario())
    assert queue.sync_status()["failed_count"] == 1

    assert queue.requeue_failed(action_id) is True
    assert queue.requeue_failed(action_id) is False
    assert queue.list_failed() == []
    assert queue.list_queued()[0].retry_count == 0

    queue.clear_queue()
    assert queue.sync_status()["queue_length"] == 0


def test_cache_snapshot_clears_old_snapshot_and_retries_on_quota(tmp_path):
    storage = QuotaStorage(tmp_path, snapshot_limit=100)
    queue = _queue(tmp_path, storage=storage)

    assert queue.cache_snapshot({"sessions": {}, "cached_at": "t1"}) is True
    assert queue.cache_snapshot({"sessions": {"lunch": "x" * 500}}) is False

    assert ROUTES_CACHE_KEY in storage.removed
    assert queue.get_cached_snapshot() is None


def test_cache_snapshot_failure_does_not_raise_or_corrupt(tmp_path):
    queue = _queue(tmp_path, storage=BrokenStorage(root=tmp_path))

    assert queue.cache_snapshot({"sessions": {}}) is False
    assert queue.get_cached_snapshot() is None


def test_last_sync_write_failure_does_not_abort_drain(tmp_path):
    class NoLastSync(DeviceStorage):
        def set(self, key, value):
            if key == LAST_SYNC_KEY:
                raise StorageError("read-only")
            super().set(key, value)

    queue = _queue(tmp_path, storage=NoLastSync(root=tmp_path))
    queue.enqueue(ActionType.MARK_STOP, {"n": 1})

    async def execute(action):
        return {"success": True}

    result = asyncio.run(queue.drain(execute))

    assert result.synced == 1
    assert queue.sync_in_progress is False


class NoFailedSetStorage(DeviceStorage):
    def set(self, key, value):
        if key == FAILED_ACTIONS_KEY:
            raise StorageQuotaExceeded("full")
        super().set(key, value)


def test_exhausted_action_leaves_queue_when_failed_set_cannot_be_written(tmp_path):
    queue = _queue(tmp_path, storage=NoFailedSetStorage(root=tmp_path))
    bad = queue.enqueue(ActionType.MARK_STOP, {"ok": False})
    good = queue.enqueue(ActionType.MARK_STOP, {"ok": True})
    attempts = []

    async def execute(action):
        attempts.append(action.id)
        return action.payload["ok"]

    async def scenario():
        return [await queue.drain(execute) for _ in range(7)]

    results = asyncio.run(scenario())

    assert attempts.count(bad) == 5
    assert attempts.count(good) == 1
    assert queue.list_queued() == []
    assert results[4].failed == 1
    assert queue.sync_in_progress is False


def test_action_at_retry_ceiling_is_set_aside_without_replay(tmp_path):
    queue = _queue(tmp_path)
    action_id = queue.enqueue(ActionType.END_SESSION, {"route_id": "R1", "session": "lunch"})
    for _ in range(5):
        queue.bump_retry(action_id)
    calls = []

    async def execute(action):
        calls.append(action.id)
        return True

    result = asyncio.run(queue.drain(execute))

    assert calls == []
    assert result.failed == 1
    assert [action.id for action in queue.list_failed()] == [action_id]
    assert queue.list_queued() == []


def test_rewrite_route_updates_stored_payloads(tmp_path):
    queue = _queue(tmp_path)
    queue.enqueue(ActionType.MARK_STOP, {"route_id": "R-OLD", "planned_stop_id": "p-1"})
    queue.enqueue(ActionType.UPDATE_LOCATION, {"address_id": "A-1"})
    queue.enqueue(ActionType.END_SESSION, {"route_id": "R-OLD", "session": "lunch"})

    assert queue.rewrite_route("R-OLD", "R-NEW") == 2
    assert queue.rewrite_route("R-OLD", "R-NEW") == 0

    reloaded = _queue(tmp_path)
    assert [action.payload.get("route_id") for action in reloaded.list_queued()] == ["R-NEW", None, "R-NEW"]
