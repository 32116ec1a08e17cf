"""
Output stage: one "CA: <mint>" line per event for the downstream
consumer, plus a human-readable log line.
"""
import logging
import sys
from typing import TextIO

from feeds.events import TokenLaunchEvent, Venue

logger = logging.getLogger("emitter")


class Emitter:
    def __init__(self, sink: TextIO | None = None):
        # Resolved lazily so tests / redirections of sys.stdout are honoured
        self._sink = sink

    @property
    def sink(self) -> TextIO:
        return self._sink if self._sink is not None else sys.stdout

    def emit(self, event: TokenLaunchEvent, tag: str | None = None):
        sink = self.sink
        sink.write(f"CA: {event.contract_address}\n")
        sink.flush()

        if event.venue is Venue.RAYDIUM:
            label = f"{event.venue} BUY - {tag}" if tag else f"{event.venue} BUY"
            logger.info(
                f"[{label}] Mint: {event.contract_address} | TX: {event.short_signature}"
            )
            return

        logger.info(
            f"[{event.venue}] {event.name or 'Unknown'} ({event.symbol or '???'}) | "
            f"CA: {event.contract_address} | "
            f"Creator: {event.creator or 'Unknown'} | TX: {event.short_signature}"
        )
