"""
Raydium LaunchLab buy monitor.

Detects buys of LaunchLab tokens via logsSubscribe on the LaunchLab program.
Flow:
  1. Subscribe to logs mentioning RAYDIUM_LAUNCHLAB_PROGRAM
  2. Cheap filter on log text: a buy marker + a depth-1 LaunchLab invoke
  3. Throttle admits? → queue signature for enrichment (else drop it)
  4. Fetch worker: getTransaction(jsonParsed), confirm a LaunchLab
     instruction whose data starts with a buy discriminator
  5. Mint = transferChecked signed by the LaunchLab vault authority
     (top-level instructions first, then innerInstructions)
  6. Emit the mint, tagged NEW on first sighting

Candidates are marked processed whether or not the throttle admitted
them; a throttled buy is dropped, not retried.
"""
import asyncio
import base64
import binascii
import time

from feeds.cache import BoundedSet
from feeds.constants import (
    BUY_LOG_MARKERS,
    DISCRIMINATOR_LENGTH,
    FETCH_DELAY_S,
    LAUNCHLAB_BUY_DISCRIMINATORS,
    MAX_PENDING_FETCHES,
    MIN_FETCH_INTERVAL_S,
    RATE_LIMIT_PENALTY_S,
    RAYDIUM_ERROR_DELAY_S,
    RAYDIUM_LAUNCHLAB_AUTHORITY,
    RAYDIUM_LAUNCHLAB_PROGRAM,
    RAYDIUM_RECONNECT_PAUSE_S,
    RAYDIUM_SEEN_MINTS_KEEP,
    RAYDIUM_SEEN_MINTS_MAX,
    RAYDIUM_SIGNATURE_CACHE_KEEP,
    RAYDIUM_SIGNATURE_CACHE_MAX,
    RAYDIUM_SUBSCRIBE_ID,
    REQUEST_TIMEOUT_S,
    SPL_TOKEN_PROGRAM_NAME,
    TOP_LEVEL_INVOKE_MARKER,
    TRANSFER_CHECKED,
)
from feeds.emitter import Emitter
from feeds.events import RaydiumStats, TokenLaunchEvent, Venue
from feeds.rpc import RateLimitedError, RpcError, SolanaRpcClient
from feeds.stream import TRANSPORT_ERRORS, StreamMonitor
from feeds.throttle import FetchThrottle


# ═══════════════════════════════════════════════════════════════
#  STAGE 1: log heuristic (no I/O)
# ═══════════════════════════════════════════════════════════════


def is_buy_candidate(logs: list, program_id: str = RAYDIUM_LAUNCHLAB_PROGRAM) -> bool:
    """
    True if some line names a buy instruction AND some line shows the
    program invoked at depth 1. The two may be on different lines, in
    any order. False positives are expected; stage 2 re-checks.
    """
    has_buy_marker = False
    has_top_level_invoke = False
    for line in logs:
        if not isinstance(line, str):
            continue
        if any(marker in line for marker in BUY_LOG_MARKERS):
            has_buy_marker = True
        if TOP_LEVEL_INVOKE_MARKER in line and program_id in line:
            has_top_level_invoke = True
        if has_buy_marker and has_top_level_invoke:
            return True
    return False


# ═══════════════════════════════════════════════════════════════
#  STAGE 2: parsed transaction checks
# ═══════════════════════════════════════════════════════════════


def is_buy_instruction(data) -> bool:
    """Base64 instruction data starting with buy_exact_in / buy_exact_out."""
    if not isinstance(data, str):
        return False
    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        return False
    return (
        len(raw) >= DISCRIMINATOR_LENGTH
        and raw[:DISCRIMINATOR_LENGTH] in LAUNCHLAB_BUY_DISCRIMINATORS
    )


def top_level_instructions(tx) -> list:
    transaction = tx.get("transaction") if isinstance(tx, dict) else None
    message = transaction.get("message") if isinstance(transaction, dict) else None
    instructions = message.get("instructions") if isinstance(message, dict) else None
    return instructions if isinstance(instructions, list) else []


def inner_instructions(tx) -> list:
    """Flatten meta.innerInstructions (CPIs) into one list, in order."""
    meta = tx.get("meta") if isinstance(tx, dict) else None
    groups = meta.get("innerInstructions") if isinstance(meta, dict) else None
    if not isinstance(groups, list):
        return []
    flat = []
    for group in groups:
        if not isinstance(group, dict):
            continue
        instructions = group.get("instructions")
        if isinstance(instructions, list):
            flat.extend(instructions)
    return flat


def has_buy_instruction(instructions: list, program_id: str = RAYDIUM_LAUNCHLAB_PROGRAM) -> bool:
    for ix in instructions:
        if not isinstance(ix, dict):
            continue
        if ix.get("programId") == program_id and is_buy_instruction(ix.get("data")):
            return True
    return False


def find_authority_transfer_mint(
    instructions: list, authority: str = RAYDIUM_LAUNCHLAB_AUTHORITY
) -> str | None:
    """Mint of the first spl-token transferChecked signed by ``authority``."""
    for ix in instructions:
        if not isinstance(ix, dict) or ix.get("program") != SPL_TOKEN_PROGRAM_NAME:
            continue
        parsed = ix.get("parsed")
        if not isinstance(parsed, dict) or parsed.get("type") != TRANSFER_CHECKED:
            continue
        info = parsed.get("info")
        if not isinstance(info, dict) or info.get("authority") != authority:
            continue
        mint = info.get("mint")
        if isinstance(mint, str) and mint:
            return mint
    return None


class NotABuy(Exception):
    """Candidate transaction has no LaunchLab buy instruction."""


class TransferNotFound(Exception):
    """Confirmed buy without the expected authority transferChecked."""


def extract_buy_mint(tx: dict) -> str:
    """
    Confirm ``tx`` is a LaunchLab buy and return the bought mint.

    The buy must be a top-level instruction. The vault transfer is usually
    a CPI of that buy, so inner instructions are searched when the top
    level has none.

    Raises NotABuy or TransferNotFound.
    """
    instructions = top_level_instructions(tx)
    if not has_buy_instruction(instructions):
        raise NotABuy()
    mint = find_authority_transfer_mint(instructions)
    if mint is None:
        mint = find_authority_transfer_mint(inner_instructions(tx))
    if mint is None:
        raise TransferNotFound()
    return mint


# ═══════════════════════════════════════════════════════════════
#  MONITOR
# ═══════════════════════════════════════════════════════════════


class RaydiumBuyMonitor(StreamMonitor):
    """Emits the mint of every confirmed LaunchLab buy (throttled)."""

    venue = Venue.RAYDIUM
    program_id = RAYDIUM_LAUNCHLAB_PROGRAM
    subscribe_id = RAYDIUM_SUBSCRIBE_ID
    error_delay = RAYDIUM_ERROR_DELAY_S
    reconnect_pause = RAYDIUM_RECONNECT_PAUSE_S
    stats_class = RaydiumStats

    def __init__(
        self,
        wss_url: str,
        rpc: SolanaRpcClient,
        emitter: Emitter | None = None,
        throttle: FetchThrottle | None = None,
        seen_mints: BoundedSet | None = None,
        fetch_delay: float = FETCH_DELAY_S,
        request_timeout: float = REQUEST_TIMEOUT_S,
        rate_limit_penalty: float = RATE_LIMIT_PENALTY_S,
        **kwargs,
    ):
        kwargs.setdefault(
            "processed",
            BoundedSet(
                RAYDIUM_SIGNATURE_CACHE_MAX,
                RAYDIUM_SIGNATURE_CACHE_KEEP,
                name="raydium signatures",
            ),
        )
        super().__init__(wss_url, emitter=emitter, **kwargs)
        self.rpc = rpc
        self.throttle = throttle or FetchThrottle(MAX_PENDING_FETCHES, MIN_FETCH_INTERVAL_S)
        if seen_mints is None:
            seen_mints = BoundedSet(
                RAYDIUM_SEEN_MINTS_MAX, RAYDIUM_SEEN_MINTS_KEEP, name="seen mints"
            )
        self.seen_mints = seen_mints
        self.fetch_delay = fetch_delay
        self.request_timeout = request_timeout
        self.rate_limit_penalty = rate_limit_penalty
        # Admission keeps in-flight <= max_in_flight, so put_nowait never blocks
        self.fetch_queue: asyncio.Queue[str] = asyncio.Queue(
            maxsize=self.throttle.max_in_flight
        )
        self._workers: list[asyncio.Task] = []

    # ── Worker pool ────────────────────────────────────────────

    async def _on_start(self):
        self.log.info(f"Authority: {RAYDIUM_LAUNCHLAB_AUTHORITY}")
        self.log.info(
            f"Fetch delay: {self.fetch_delay * 1000:.0f}ms | "
            f"Timeout: {self.request_timeout:g}s | "
            f"Max concurrent: {self.throttle.max_in_flight}"
        )
        self.start_workers()

    async def _on_stop(self):
        await self.stop_workers()

    def start_workers(self):
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._fetch_worker(i), name=f"raydium_fetch_{i}")
            for i in range(self.throttle.max_in_flight)
        ]

    async def stop_workers(self):
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        # Queued signatures never reached enrich(); give their slots back
        while not self.fetch_queue.empty():
            self.fetch_queue.get_nowait()
            self.fetch_queue.task_done()
            self.throttle.release()

    async def _fetch_worker(self, worker_id: int):
        while True:
            signature = await self.fetch_queue.get()
            try:
                await self.enrich(signature)
            except Exception:
                self.stats.errors += 1
                self.log.exception(f"Fetch worker {worker_id} failed on {signature}")
            finally:
                self.fetch_queue.task_done()

    # ── Routing ────────────────────────────────────────────────

    async def handle_logs(self, signature: str, logs: list) -> bool:
        if not is_buy_candidate(logs, self.program_id):
            return False

        self.stats.candidates += 1
        if self.throttle.try_acquire():
            self.log.info(f"Found BUY transaction: {signature}")
            self.fetch_queue.put_nowait(signature)
        else:
            self.stats.throttled += 1
            self.log.debug(f"Skipping transaction due to throttling: {signature}")
        return True

    # ── Enrichment ─────────────────────────────────────────────

    async def enrich(self, signature: str):
        """Fetch, verify and emit one admitted candidate. Releases the throttle."""
        try:
            await asyncio.sleep(self.fetch_delay)
            self.stats.fetches += 1
            tx = await self._fetch_transaction(signature)
            if tx is None:
                return
            try:
                mint = extract_buy_mint(tx)
            except NotABuy:
                self.stats.not_buy += 1
                self.log.debug(f"Not a BUY transaction: {signature}")
                return
            except TransferNotFound:
                self.stats.no_transfer += 1
                self.log.warning(
                    f"No LaunchLab transferChecked found in BUY transaction: {signature}"
                )
                return
            self.handle_buy_mint(mint, signature)
        finally:
            self.throttle.release()

    async def _fetch_transaction(self, signature: str) -> dict | None:
        try:
            tx = await asyncio.wait_for(
                self.rpc.get_transaction(signature), timeout=self.request_timeout
            )
        except RateLimitedError:
            self.stats.rate_limited += 1
            self.log.warning(
                f"Rate limited - backing off {self.rate_limit_penalty:g}s"
            )
            await asyncio.sleep(self.rate_limit_penalty)
            return None
        except (RpcError, *TRANSPORT_ERRORS) as e:
            self.stats.fetch_failures += 1
            self.log.debug(f"Failed to fetch transaction {signature}: {e!r}")
            return None

        if tx is None:
            self.stats.fetch_failures += 1
            self.log.debug(f"Transaction not available yet: {signature}")
        return tx

    def handle_buy_mint(self, mint: str, signature: str):
        is_new = self.seen_mints.add(mint)
        event = TokenLaunchEvent(
            contract_address=mint,
            signature=signature,
            venue=Venue.RAYDIUM,
            timestamp=int(time.time()),
        )
        self.emitter.emit(event, tag="NEW" if is_new else None)
        self.stats.record_event()
