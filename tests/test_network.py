import asyncio

import httpx

from src.courier.services.sync import network as network_module
from src.courier.services.sync.network import OFFLINE, ONLINE, NetworkMonitor


def test_listeners_fire_only_on_transitions():
    monitor = NetworkMonitor(online=True)
    events = []
    monitor.on_network_change(events.append)

    assert monitor.set_online(True) is False
    assert monitor.set_online(False) is True
    assert monitor.set_online(False) is False
    assert monitor.set_online(True) is True

    assert events == [OFFLINE, ONLINE]
    assert monitor.is_online() is True


def test_failing_listener_does_not_stop_others():
    monitor = NetworkMonitor(online=False)
    events = []

    def broken(status):
        raise RuntimeError("listener bug")

    monitor.on_network_change(broken)
    monitor.on_network_change(events.append)

    monitor.set_online(True)

    assert events == [ONLINE]


def test_unsubscribe_stops_notifications():
    monitor = NetworkMonitor()
    events = []
    unsubscribe = monitor.on_network_change(events.append)

    unsubscribe()
    unsubscribe()
    monitor.set_online(False)

    assert events == []


def _patch_async_client(monkeypatch, handler):
    real_client = httpx.AsyncClient

    def factory(*args, **kwargs):
        kwargs["transport"] = httpx.MockTransport(handler)
        return real_client(*args, **kwargs)

    monkeypatch.setattr(network_module.httpx, "AsyncClient", factory)


def test_probe_marks_offline_when_service_unreachable(monkeypatch):
    def handler(request):
        raise httpx.ConnectError("no route to host", request=request)

    _patch_async_client(monkeypatch, handler)
    monitor = NetworkMonitor(online=True, probe_url="http://route-service.test/ai-routes/health")

    assert asyncio.run(monitor.probe()) is False
    assert monitor.is_online() is False


def test_probe_marks_online_when_service_answers(monkeypatch):
    _patch_async_client(monkeypatch, lambda request: httpx.Response(200, json={"success": True}))
    monitor = NetworkMonitor(online=False, probe_url="http://route-service.test/ai-routes/health")

    assert asyncio.run(monitor.probe()) is True
    assert monitor.is_online() is True


def test_probe_without_url_keeps_current_state():
    monitor = NetworkMonitor(online=False)

    assert asyncio.run(monitor.probe()) is False
    assert monitor.is_online() is False


def test_missing_health_endpoint_counts_as_offline(monkeypatch):
    _patch_async_client(monkeypatch, lambda request: httpx.Response(404, json={"message": "Not Found"}))
    monitor = NetworkMonitor(online=True, probe_url="http://route-service.test/wrong-prefix/ai-routes/health")

    assert asyncio.run(monitor.probe()) is False
    assert monitor.is_online() is False


def test_unhealthy_or_non_json_health_reply_counts_as_offline(monkeypatch):
    replies = iter([
        httpx.Response(200, json={"success": False, "message": "degraded"}),
        httpx.Response(200, text="<html>login</html>"),
    ])
    _patch_async_client(monkeypatch, lambda request: next(replies))
    monitor = NetworkMonitor(online=True, probe_url="http://route-service.test/ai-routes/health")

    assert asyncio.run(monitor.probe()) is False
    monitor.set_online(True)
    assert asyncio.run(monitor.probe()) is False
