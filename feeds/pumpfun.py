"""
Pump.fun new-token monitor.

Detects token creation via logsSubscribe on the Pump.fun program.
Flow:
  1. Subscribe to logs mentioning PUMP_FUN_PROGRAM
  2. For each log line "Program data: <base64>" → decode
  3. First 8 bytes == CreateEvent discriminator → decode the event
  4. Emit the mint (first CreateEvent per signature only)

CreateEvent layout (Anchor / borsh, little-endian):
    0-7      : discriminator
    u32+utf8 : name
    u32+utf8 : symbol
    u32+utf8 : uri (skipped)
    32 bytes : mint
    32 bytes : bonding curve (skipped)
    32 bytes : creator
"""
import base64
import binascii
import struct
import time

import base58

from feeds.cache import BoundedSet
from feeds.constants import (
    DISCRIMINATOR_LENGTH,
    PROGRAM_DATA_PREFIX,
    PUBKEY_LENGTH,
    PUMP_CREATE_EVENT_DISCRIMINATOR,
    PUMP_ERROR_DELAY_S,
    PUMP_FUN_PROGRAM,
    PUMP_RECONNECT_PAUSE_S,
    PUMP_SIGNATURE_CACHE_KEEP,
    PUMP_SIGNATURE_CACHE_MAX,
    PUMP_SUBSCRIBE_ID,
)
from feeds.emitter import Emitter
from feeds.events import DecodeError, TokenLaunchEvent, Venue
from feeds.stream import StreamMonitor


class _Reader:
    """Bounds-checked cursor over a borsh buffer."""

    def __init__(self, data: bytes, offset: int = 0):
        self.data = data
        self.offset = offset

    def take(self, n: int, what: str) -> bytes:
        if self.offset + n > len(self.data):
            raise DecodeError(
                f"Invalid data length for {what}: need {n} bytes at offset "
                f"{self.offset}, have {len(self.data) - self.offset}"
            )
        chunk = self.data[self.offset:self.offset + n]
        self.offset += n
        return chunk

    def u32(self, what: str) -> int:
        return struct.unpack("<I", self.take(4, f"{what} length"))[0]

    def string(self, what: str) -> str:
        raw = self.take(self.u32(what), what)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"Invalid UTF-8 in {what}: {e}") from e

    def skip_bytes(self, what: str):
        self.take(self.u32(what), what)

    def pubkey(self, what: str) -> str:
        return base58.b58encode(self.take(PUBKEY_LENGTH, what)).decode("ascii")


def decode_create_event(data: bytes, signature: str) -> TokenLaunchEvent:
    """Decode a CreateEvent payload (discriminator included). Raises DecodeError."""
    reader = _Reader(data, DISCRIMINATOR_LENGTH)
    name = reader.string("name")
    symbol = reader.string("symbol")
    reader.skip_bytes("uri")
    mint = reader.pubkey("mint")
    reader.take(PUBKEY_LENGTH, "bonding curve")
    creator = reader.pubkey("creator")

    return TokenLaunchEvent(
        contract_address=mint,
        signature=signature,
        venue=Venue.PUMP_FUN,
        timestamp=int(time.time()),
        name=name,
        symbol=symbol,
        creator=creator,
    )


def parse_create_event(line: str, signature: str) -> TokenLaunchEvent | None:
    """
    Return the CreateEvent carried by one log line, or None if the line
    holds no (decodable) CreateEvent. Raises DecodeError for a payload
    that has the discriminator but a broken body.
    """
    if PROGRAM_DATA_PREFIX not in line:
        return None
    payload = line.split(PROGRAM_DATA_PREFIX, 1)[1].strip()
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        return None
    if len(data) < DISCRIMINATOR_LENGTH:
        return None
    if data[:DISCRIMINATOR_LENGTH] != PUMP_CREATE_EVENT_DISCRIMINATOR:
        return None
    return decode_create_event(data, signature)


class PumpFunMonitor(StreamMonitor):
    """Emits the mint of every new Pump.fun token."""

    venue = Venue.PUMP_FUN
    program_id = PUMP_FUN_PROGRAM
    subscribe_id = PUMP_SUBSCRIBE_ID
    error_delay = PUMP_ERROR_DELAY_S
    reconnect_pause = PUMP_RECONNECT_PAUSE_S

    def __init__(self, wss_url: str, emitter: Emitter | None = None, **kwargs):
        kwargs.setdefault(
            "processed",
            BoundedSet(
                PUMP_SIGNATURE_CACHE_MAX,
                PUMP_SIGNATURE_CACHE_KEEP,
                name="pump signatures",
            ),
        )
        super().__init__(wss_url, emitter=emitter, **kwargs)

    async def handle_logs(self, signature: str, logs: list) -> bool:
        for line in logs:
            if not isinstance(line, str):
                continue
            try:
                event = parse_create_event(line, signature)
            except DecodeError as e:
                self.stats.errors += 1
                self.log.warning(f"Bad CreateEvent in {signature[:8]}: {e}")
                continue
            if event is None:
                continue

            self.emitter.emit(event)
            self.stats.record_event()
            return True

        return False
