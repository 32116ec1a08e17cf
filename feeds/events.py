"""
Launch event types and per-monitor counters.
"""
import time
from dataclasses import dataclass, field
from enum import Enum


class Venue(Enum):
    PUMP_FUN = "PUMP"
    RAYDIUM = "RAYDIUM"

    def __str__(self) -> str:
        return self.value


class DecodeError(ValueError):
    """Binary event payload is truncated or malformed."""


@dataclass(frozen=True)
class TokenLaunchEvent:
    """A detected token (new Pump.fun mint or Raydium LaunchLab buy)."""

    contract_address: str    # SPL token mint (base58)
    signature: str           # originating transaction
    venue: Venue
    timestamp: int           # unix seconds, wall clock at detection
    name: str | None = None
    symbol: str | None = None
    creator: str | None = None

    @property
    def short_signature(self) -> str:
        return self.signature[:8]


@dataclass
class MonitorStats:
    """
    Running counters for one stream monitor.

    Logged periodically by main; nothing reads them for control flow.
    """

    started_at: float = field(default_factory=time.time)
    connected: bool = False
    connections: int = 0
    messages: int = 0
    events: int = 0
    errors: int = 0
    last_event_at: float | None = None

    @property
    def uptime(self) -> float:
        return time.time() - self.started_at

    def record_event(self):
        self.events += 1
        self.last_event_at = time.time()

    def summary(self) -> dict:
        last = (
            f"{time.time() - self.last_event_at:.0f}s ago"
            if self.last_event_at is not None
            else "never"
        )
        return {
            "connected": self.connected,
            "conns": self.connections,
            "up": f"{self.uptime:.0f}s",
            "msgs": self.messages,
            "events": self.events,
            "errors": self.errors,
            "last": last,
        }


@dataclass
class RaydiumStats(MonitorStats):
    """MonitorStats plus the getTransaction enrichment counters."""

    candidates: int = 0
    throttled: int = 0
    fetches: int = 0
    fetch_failures: int = 0
    rate_limited: int = 0
    not_buy: int = 0
    no_transfer: int = 0

    def summary(self) -> dict:
        summary = super().summary()
        summary.update(
            candidates=self.candidates,
            throttled=self.throttled,
            fetches=self.fetches,
            failed=self.fetch_failures,
            rate_limited=self.rate_limited,
            not_buy=self.not_buy,
            no_transfer=self.no_transfer,
        )
        return summary
