"""
Shared WebSocket logsSubscribe monitor.

Flow per connection:
  1. Open WebSocket, send logsSubscribe for one program id
  2. Read frames; acks ({"result": <id>}) are logged
  3. logsNotification → (signature, logs) → skip if already processed
  4. Venue subclass inspects the logs (decode / classify / enrich)
  5. On close or transport error: back off, reconnect, forever

Venue subclasses set the class attributes below and implement
``handle_logs``. Uses raw WebSocket via aiohttp.
"""
import asyncio
import json
import logging

import aiohttp

from feeds.cache import BoundedSet
from feeds.constants import COMMITMENT
from feeds.emitter import Emitter
from feeds.events import MonitorStats, Venue

# Connection-level failures that trigger reconnect-with-backoff. Anything
# else escaping a connection is a bug and is left to the task supervisor.
TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)


def mask_url(url: str) -> str:
    """Hide the API key in provider URLs before logging them."""
    if "api-key=" in url:
        head, sep, _ = url.partition("api-key=")
        return f"{head}{sep}***masked***"
    return url


def notification_value(data: dict) -> tuple[str, list] | None:
    """Pull (signature, logs) out of a logsNotification, or None."""
    params = data.get("params")
    if not isinstance(params, dict):
        return None
    result = params.get("result")
    if not isinstance(result, dict):
        return None
    value = result.get("value")
    if not isinstance(value, dict):
        return None
    signature = value.get("signature")
    logs = value.get("logs")
    if not isinstance(signature, str) or not isinstance(logs, list):
        return None
    return signature, logs


def is_subscription_ack(data: dict) -> bool:
    result = data.get("result")
    return isinstance(result, (int, float)) and not isinstance(result, bool)


class StreamMonitor:
    """Base class: connection supervision, routing and dedup for one venue."""

    venue: Venue
    program_id: str
    subscribe_id: int = 1
    error_delay: float = 5.0
    reconnect_pause: float = 1.0
    stats_class: type[MonitorStats] = MonitorStats

    def __init__(
        self,
        wss_url: str,
        emitter: Emitter | None = None,
        processed: BoundedSet | None = None,
        error_delay: float | None = None,
        reconnect_pause: float | None = None,
    ):
        self.wss_url = wss_url
        self.emitter = emitter or Emitter()
        if processed is None:
            processed = BoundedSet(1000, name="signatures")
        self.processed = processed
        if error_delay is not None:
            self.error_delay = error_delay
        if reconnect_pause is not None:
            self.reconnect_pause = reconnect_pause
        self.stats = self.stats_class()
        self.log = logging.getLogger(f"{self.venue.value.lower()}_monitor")
        self._session: aiohttp.ClientSession | None = None
        self._running = False

    # ── Venue strategy ─────────────────────────────────────────

    def subscribe_request(self) -> dict:
        return {
            "jsonrpc": "2.0",
            "id": self.subscribe_id,
            "method": "logsSubscribe",
            "params": [
                {"mentions": [self.program_id]},
                {"commitment": COMMITMENT},
            ],
        }

    async def handle_logs(self, signature: str, logs: list) -> bool:
        """
        Inspect one transaction's log lines.

        Return True once the signature must never be looked at again.
        """
        raise NotImplementedError

    async def _on_start(self):
        pass

    async def _on_stop(self):
        pass

    # ── Lifecycle ──────────────────────────────────────────────

    async def start(self):
        """Connect and stream until stop(); reconnects on every failure."""
        self._running = True
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=30)
        )
        self.log.info(f"Starting {self.venue} monitor ({self.program_id})")
        try:
            await self._on_start()
            while self._running:
                try:
                    await self._connect_and_listen()
                    self.log.info("WebSocket connection ended, reconnecting...")
                except TRANSPORT_ERRORS as e:
                    self.log.error(f"{self.venue} WebSocket error: {e!r}")
                    self.log.info(f"Reconnecting in {self.error_delay:g}s...")
                    await asyncio.sleep(self.error_delay)
                finally:
                    self.stats.connected = False
                if self._running:
                    await asyncio.sleep(self.reconnect_pause)
        finally:
            await self._on_stop()
            if self._session and not self._session.closed:
                await self._session.close()

    async def stop(self):
        self._running = False
        if self._session and not self._session.closed:
            await self._session.close()

    async def _connect_and_listen(self):
        """Single WebSocket connection lifecycle."""
        self.log.info(f"Connecting to WebSocket: {mask_url(self.wss_url)}")

        async with self._session.ws_connect(
            self.wss_url,
            heartbeat=30,
            max_msg_size=0,  # no limit
        ) as ws:
            await ws.send_json(self.subscribe_request())
            self.stats.connected = True
            self.stats.connections += 1
            self.log.info(f"Subscribed to {self.venue} program logs")

            async for msg in ws:
                if not self._running:
                    break
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self.handle_message(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    raise aiohttp.ClientError(f"WebSocket read error: {ws.exception()!r}")
                elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED):
                    self.log.info("WebSocket connection closed")
                    break

    # ── Routing ────────────────────────────────────────────────

    async def handle_message(self, text: str):
        """Route one text frame. Never raises for bad frames."""
        self.stats.messages += 1
        try:
            data = json.loads(text)
        except ValueError as e:
            self.stats.errors += 1
            self.log.warning(f"Error processing WebSocket message: invalid JSON ({e})")
            return

        try:
            await self._route(data)
        except Exception as e:
            self.stats.errors += 1
            self.log.warning(f"Error processing WebSocket message: {e!r}")

    async def _route(self, data):
        if not isinstance(data, dict):
            return

        if is_subscription_ack(data):
            self.log.info(f"Subscription confirmed with ID: {data['result']}")
            return

        notification = notification_value(data)
        if notification is None:
            return
        signature, logs = notification

        if signature in self.processed:
            return

        if await self.handle_logs(signature, logs):
            self.processed.add(signature)
