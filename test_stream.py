"""
Tests for the shared stream plumbing: bounded caches, fetch throttle,
frame parsing, WebSocket loop, supervision and config helpers.
Run: python3 test_stream.py   (or pytest)
"""
import asyncio
import importlib
import io
import json
import logging
import os
import sys
import time
from types import SimpleNamespace

import aiohttp
from aiohttp import web
from aiohttp.test_utils import TestServer

# Ensure project root is on path
sys.path.insert(0, ".")

import config
from feeds import constants as defaults
from feeds.cache import BoundedSet
from feeds.emitter import Emitter
from feeds.events import MonitorStats, TokenLaunchEvent, Venue
from feeds.stream import (
    TRANSPORT_ERRORS,
    StreamMonitor,
    is_subscription_ack,
    mask_url,
    notification_value,
)
from feeds.throttle import FetchThrottle
from main import check_connection, format_stats, supervise


def run(coro):
    return asyncio.run(coro)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class ScriptedMonitor(StreamMonitor):
    """Each connection attempt plays the next outcome (None = clean close)."""

    venue = Venue.PUMP_FUN
    program_id = "TestProgram1111111111111111111111111111111"

    def __init__(self, outcomes: list):
        super().__init__("wss://example.invalid", error_delay=0, reconnect_pause=0)
        self.outcomes = list(outcomes)
        self.attempts = 0

    async def _connect_and_listen(self):
        self.attempts += 1
        outcome = self.outcomes.pop(0)
        if not self.outcomes:
            self._running = False
        if outcome is not None:
            raise outcome

    async def handle_logs(self, signature, logs):
        return False


class RecordingMonitor(StreamMonitor):
    """Real connection loop; remembers every (signature, logs) routed to it."""

    venue = Venue.PUMP_FUN
    program_id = "TestProgram1111111111111111111111111111111"

    def __init__(self, wss_url: str):
        super().__init__(wss_url, error_delay=0, reconnect_pause=0)
        self.seen: list[tuple[str, list]] = []

    async def handle_logs(self, signature, logs):
        self.seen.append((signature, logs))
        return True


class FakeWebSocket:
    """Plays a fixed list of frames to _connect_and_listen."""

    def __init__(self, frames: list):
        self.frames = list(frames)
        self.sent: list[dict] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def send_json(self, data):
        self.sent.append(data)

    def exception(self):
        return ConnectionResetError("reset by peer")

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self.frames:
            raise StopAsyncIteration
        return self.frames.pop(0)


class FakeSession:
    closed = False

    def __init__(self, frames: list):
        self.ws = FakeWebSocket(frames)

    def ws_connect(self, url, **kwargs):
        return self.ws


def frame(msg_type, data=None):
    return SimpleNamespace(type=msg_type, data=data)


NOTIFICATION = {
    "jsonrpc": "2.0",
    "method": "logsNotification",
    "params": {"result": {"value": {"signature": "sigLive1", "err": None, "logs": ["Program log: hi"]}}},
}


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.messages: list[str] = []

    def emit(self, record):
        self.messages.append(record.getMessage())


# ══════════════════════════════════════════════════════════════
#  BOUNDED CACHE
# ══════════════════════════════════════════════════════════════


def test_bounded_set_fifo_eviction():
    cache = BoundedSet(max_size=300, keep=150)
    for i in range(301):
        cache.add(f"sig{i}")
        assert len(cache) <= 300, "Size must never exceed max_size after add"
    assert len(cache) == 150
    assert "sig300" in cache
    assert "sig151" in cache
    assert "sig150" not in cache
    assert "sig0" not in cache


def test_bounded_set_add_reports_new():
    cache = BoundedSet(max_size=10)
    assert cache.add("mint") is True
    assert cache.add("mint") is False
    assert len(cache) == 1


def test_bounded_set_rejects_bad_bounds():
    for max_size, keep in ((0, 0), (10, 11), (10, -1)):
        try:
            BoundedSet(max_size, keep)
        except ValueError:
            continue
        raise AssertionError(f"BoundedSet({max_size}, {keep}) should be rejected")


# ══════════════════════════════════════════════════════════════
#  FETCH THROTTLE
# ══════════════════════════════════════════════════════════════


def test_throttle_min_interval():
    clock = FakeClock()
    throttle = FetchThrottle(max_in_flight=3, min_interval=0.5, clock=clock)
    assert throttle.try_acquire() is True
    clock.now += 0.2
    assert throttle.try_acquire() is False, "Second start within 500ms must be rejected"
    clock.now += 0.4
    assert throttle.try_acquire() is True
    assert throttle.in_flight == 2


def test_throttle_concurrency_ceiling():
    clock = FakeClock()
    throttle = FetchThrottle(max_in_flight=3, min_interval=0.5, clock=clock)
    for _ in range(3):
        assert throttle.try_acquire() is True
        clock.now += 1.0
    assert throttle.try_acquire() is False, "Fourth in-flight fetch must be rejected"
    throttle.release()
    assert throttle.try_acquire() is True


def test_throttle_release_floor():
    throttle = FetchThrottle()
    throttle.release()
    assert throttle.in_flight == 0


# ══════════════════════════════════════════════════════════════
#  FRAME PARSING
# ══════════════════════════════════════════════════════════════


def test_subscription_ack_detection():
    assert is_subscription_ack({"result": 12345}) is True
    assert is_subscription_ack({"result": True}) is False
    assert is_subscription_ack({"result": {"value": 1}}) is False
    assert is_subscription_ack({}) is False


def test_notification_value():
    frame = {"params": {"result": {"value": {"signature": "abc", "logs": ["x"]}}}}
    assert notification_value(frame) == ("abc", ["x"])
    assert notification_value({"params": {"result": {"value": {"signature": "abc"}}}}) is None
    assert notification_value({"params": {"result": {"value": {"signature": 1, "logs": []}}}}) is None
    assert notification_value({"params": "oops"}) is None
    assert notification_value({}) is None


# ══════════════════════════════════════════════════════════════
#  RECONNECT LOOP + SUPERVISION
# ══════════════════════════════════════════════════════════════


def test_reconnects_after_transport_error_and_close():
    monitor = ScriptedMonitor([aiohttp.ClientConnectionError("refused"), None, None])
    run(monitor.start())
    assert monitor.attempts == 3
    assert monitor.stats.connected is False


def test_defect_escapes_reconnect_loop():
    monitor = ScriptedMonitor([RuntimeError("bug")])
    try:
        run(monitor.start())
    except RuntimeError:
        pass
    else:
        raise AssertionError("Non-transport errors must reach the supervisor")
    assert monitor.attempts == 1


def test_supervisor_restarts_crashed_monitor():
    class CrashOnce:
        def __init__(self):
            self.starts = 0

        async def start(self):
            self.starts += 1
            if self.starts == 1:
                raise RuntimeError("boom")

    monitor = CrashOnce()
    run(supervise("test", monitor, restart_delay=0))
    assert monitor.starts == 2


def test_health_check_failure_is_not_fatal():
    class DeadRpc:
        http_url = "https://rpc.example.invalid/?api-key=secret"
        timeout = 1.0

        async def get_slot(self):
            raise aiohttp.ClientConnectionError("unreachable")

    assert run(check_connection(DeadRpc())) is None


# ══════════════════════════════════════════════════════════════
#  WEBSOCKET CONNECTION
# ══════════════════════════════════════════════════════════════


def test_websocket_subscribe_route_and_reconnect():
    async def go():
        subscribes = []
        reconnected = asyncio.Event()

        async def handler(request):
            ws = web.WebSocketResponse()
            await ws.prepare(request)
            subscribes.append(await ws.receive_json())
            if len(subscribes) >= 2:
                reconnected.set()
            await ws.send_json({"jsonrpc": "2.0", "result": 42, "id": 1})
            await ws.send_json(NOTIFICATION)
            await ws.close()
            return ws

        app = web.Application()
        app.router.add_get("/", handler)
        server = TestServer(app)
        await server.start_server()
        monitor = RecordingMonitor(config.normalize_ws_url(str(server.make_url("/"))))
        task = asyncio.create_task(monitor.start())
        try:
            await asyncio.wait_for(reconnected.wait(), timeout=5)
        finally:
            await monitor.stop()
            await asyncio.wait_for(asyncio.gather(task, return_exceptions=True), timeout=5)
            await server.close()
        return monitor, subscribes

    monitor, subscribes = run(go())
    assert len(subscribes) >= 2, "Server closing the socket must lead to a reconnect"
    assert all(req == monitor.subscribe_request() for req in subscribes), (
        "Exactly one logsSubscribe per connection"
    )
    assert subscribes[0]["params"] == [
        {"mentions": [RecordingMonitor.program_id]},
        {"commitment": "confirmed"},
    ]
    assert monitor.seen == [("sigLive1", ["Program log: hi"])], "Same signature after reconnect is deduped"
    assert monitor.stats.connections >= 2
    assert monitor.stats.connected is False


def test_error_frame_becomes_transport_error():
    async def go():
        monitor = RecordingMonitor("wss://example.invalid")
        monitor._running = True
        monitor._session = FakeSession([
            frame(aiohttp.WSMsgType.TEXT, json.dumps(NOTIFICATION)),
            frame(aiohttp.WSMsgType.ERROR),
            frame(aiohttp.WSMsgType.TEXT, "never read"),
        ])
        try:
            await monitor._connect_and_listen()
        except TRANSPORT_ERRORS as e:
            return monitor, e
        return monitor, None

    monitor, error = run(go())
    assert isinstance(error, aiohttp.ClientError), "ERROR frame must raise ClientError for the backoff"
    assert monitor._session.ws.sent == [monitor.subscribe_request()]
    assert monitor.seen == [("sigLive1", ["Program log: hi"])]
    assert monitor.stats.messages == 1


def test_close_frame_ends_connection():
    async def go():
        monitor = RecordingMonitor("wss://example.invalid")
        monitor._running = True
        monitor._session = FakeSession([
            frame(aiohttp.WSMsgType.CLOSE),
            frame(aiohttp.WSMsgType.TEXT, json.dumps(NOTIFICATION)),
        ])
        await monitor._connect_and_listen()
        return monitor

    monitor = run(go())
    assert monitor.seen == [], "Frames after CLOSE are not routed"
    assert monitor.stats.messages == 0
    assert monitor.stats.connections == 1


# ══════════════════════════════════════════════════════════════
#  EMITTER / STATS / CONFIG
# ══════════════════════════════════════════════════════════════


def test_emitter_writes_ca_line():
    sink = io.StringIO()
    event = TokenLaunchEvent(
        contract_address="MintAddr111",
        signature="SigAbcdefgh123",
        venue=Venue.PUMP_FUN,
        timestamp=int(time.time()),
    )
    Emitter(sink).emit(event)
    assert sink.getvalue() == "CA: MintAddr111\n"
    assert event.short_signature == "SigAbcde"


def test_emitter_log_line_names_venue():
    handler = ListHandler()
    log = logging.getLogger("emitter")
    old_level = log.level
    log.addHandler(handler)
    log.setLevel(logging.INFO)
    try:
        event = TokenLaunchEvent(
            contract_address="MintAddr111",
            signature="SigAbcdefgh123",
            venue=Venue.RAYDIUM,
            timestamp=int(time.time()),
        )
        Emitter(io.StringIO()).emit(event, tag="NEW")
        Emitter(io.StringIO()).emit(event)
    finally:
        log.removeHandler(handler)
        log.setLevel(old_level)
    assert handler.messages == [
        "[RAYDIUM BUY - NEW] Mint: MintAddr111 | TX: SigAbcde",
        "[RAYDIUM BUY] Mint: MintAddr111 | TX: SigAbcde",
    ]


def test_stats_record_event():
    stats = MonitorStats()
    assert stats.summary()["last"] == "never"
    assert "candidates" not in stats.summary(), "Enrichment counters belong to RaydiumStats"
    stats.record_event()
    assert stats.events == 1
    assert stats.last_event_at is not None


def test_format_stats_line():
    line = format_stats("pump", {"connected": True, "msgs": 3, "last": "never"})
    assert line == "[stats] pump connected=True msgs=3 last=never"


def test_config_throttle_defaults():
    names = (
        "FETCH_DELAY_MS",
        "MIN_FETCH_INTERVAL_MS",
        "MAX_PENDING_FETCHES",
        "REQUEST_TIMEOUT_S",
        "RATE_LIMIT_PENALTY_S",
    )
    saved = {name: os.environ.pop(name) for name in names if name in os.environ}
    try:
        importlib.reload(config)
        assert config.FETCH_DELAY_S == defaults.FETCH_DELAY_S
        assert config.MIN_FETCH_INTERVAL_S == defaults.MIN_FETCH_INTERVAL_S
        assert config.MAX_PENDING_FETCHES == defaults.MAX_PENDING_FETCHES
        assert config.REQUEST_TIMEOUT_S == defaults.REQUEST_TIMEOUT_S
        assert config.RATE_LIMIT_PENALTY_S == defaults.RATE_LIMIT_PENALTY_S

        os.environ["FETCH_DELAY_MS"] = "250"
        os.environ["MAX_PENDING_FETCHES"] = "5"
        importlib.reload(config)
        assert config.FETCH_DELAY_S == 0.25
        assert config.MAX_PENDING_FETCHES == 5
    finally:
        for name in names:
            os.environ.pop(name, None)
        os.environ.update(saved)
        importlib.reload(config)


def test_url_helpers():
    assert config.normalize_ws_url("https://mainnet.helius-rpc.com/?api-key=k") == (
        "wss://mainnet.helius-rpc.com/?api-key=k"
    )
    assert config.normalize_ws_url("http://localhost:8899") == "ws://localhost:8899"
    assert config.normalize_ws_url("wss://api.mainnet-beta.solana.com") == (
        "wss://api.mainnet-beta.solana.com"
    )
    assert config.derive_http_url("wss://api.mainnet-beta.solana.com") == (
        "https://api.mainnet-beta.solana.com"
    )
    assert config.derive_http_url("ws://localhost:8900") == "http://localhost:8900"
    assert mask_url("wss://x.helius-rpc.com/?api-key=secret") == (
        "wss://x.helius-rpc.com/?api-key=***masked***"
    )
    assert mask_url("wss://api.mainnet-beta.solana.com") == "wss://api.mainnet-beta.solana.com"


# ══════════════════════════════════════════════════════════════
#  RUN ALL TESTS
# ══════════════════════════════════════════════════════════════

if __name__ == "__main__":
    passed = 0
    failed = 0

    def run_test(name, func):
        global passed, failed
        try:
            func()
            print(f"  PASS  {name}")
            passed += 1
        except Exception as e:
            print(f"  FAIL  {name}: {e}")
            failed += 1

    print("\n── Cache / Throttle Tests ──")
    run_test("bounded_set_fifo_eviction", test_bounded_set_fifo_eviction)
    run_test("bounded_set_add_reports_new", test_bounded_set_add_reports_new)
    run_test("bounded_set_rejects_bad_bounds", test_bounded_set_rejects_bad_bounds)
    run_test("throttle_min_interval", test_throttle_min_interval)
    run_test("throttle_concurrency_ceiling", test_throttle_concurrency_ceiling)
    run_test("throttle_release_floor", test_throttle_release_floor)

    print("\n── Stream Tests ──")
    run_test("subscription_ack_detection", test_subscription_ack_detection)
    run_test("notification_value", test_notification_value)
    run_test("reconnects_after_transport_error_and_close", test_reconnects_after_transport_error_and_close)
    run_test("defect_escapes_reconnect_loop", test_defect_escapes_reconnect_loop)
    run_test("supervisor_restarts_crashed_monitor", test_supervisor_restarts_crashed_monitor)
    run_test("health_check_failure_is_not_fatal", test_health_check_failure_is_not_fatal)

    print("\n── WebSocket Tests ──")
    run_test("websocket_subscribe_route_and_reconnect", test_websocket_subscribe_route_and_reconnect)
    run_test("error_frame_becomes_transport_error", test_error_frame_becomes_transport_error)
    run_test("close_frame_ends_connection", test_close_frame_ends_connection)

    print("\n── Emitter / Config Tests ──")
    run_test("emitter_writes_ca_line", test_emitter_writes_ca_line)
    run_test("emitter_log_line_names_venue", test_emitter_log_line_names_venue)
    run_test("stats_record_event", test_stats_record_event)
    run_test("format_stats_line", test_format_stats_line)
    run_test("url_helpers", test_url_helpers)
    run_test("config_throttle_defaults", test_config_throttle_defaults)

    print(f"\n{'='*50}")
    print(f"Results: {passed} passed, {failed} failed out of {passed + failed}")
    if failed:
        sys.exit(1)
    else:
        print("All tests passed!")
