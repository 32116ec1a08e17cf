"""
Solana Launch Feed — Main Orchestrator.

Runs two independent logsSubscribe monitors:
  - Pump.fun:        every new token (CreateEvent)
  - Raydium LaunchLab: every confirmed BUY (throttled getTransaction)

Each detected contract address is printed to stdout as "CA: <mint>";
logs go to stderr.

Usage:
    python main.py                       # reads .env
    SOLANA_WS_URL=wss://... python main.py
"""
import asyncio
import logging
import signal as signal_module
import sys

import config
from feeds.emitter import Emitter
from feeds.pumpfun import PumpFunMonitor
from feeds.raydium import RaydiumBuyMonitor
from feeds.rpc import RpcError, SolanaRpcClient
from feeds.stream import TRANSPORT_ERRORS, StreamMonitor, mask_url
from feeds.throttle import FetchThrottle

# ── Logging ──
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s | %(name)-15s | %(levelname)-5s | %(message)s",
    datefmt="%H:%M:%S",
    stream=sys.stderr,
)
logger = logging.getLogger("main")
logging.getLogger("aiohttp").setLevel(logging.WARNING)
logging.getLogger("asyncio").setLevel(logging.WARNING)


async def supervise(name: str, monitor: StreamMonitor, restart_delay: float):
    """
    Keep one monitor alive. A crash restarts that monitor only;
    a clean return (after stop()) ends supervision.
    """
    while True:
        try:
            await monitor.start()
            logger.info(f"{name} monitor stopped")
            return
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"{name} monitor crashed, restarting in {restart_delay:g}s")
            await asyncio.sleep(restart_delay)


async def check_connection(rpc: SolanaRpcClient) -> int | None:
    """getSlot round trip before streaming; failure is only a warning."""
    try:
        slot = await asyncio.wait_for(rpc.get_slot(), timeout=rpc.timeout)
    except (RpcError, *TRANSPORT_ERRORS) as e:
        logger.warning(f"RPC health check failed ({mask_url(rpc.http_url)}): {e!r}")
        return None
    logger.info(f"RPC reachable | slot {slot}")
    return slot


def format_stats(name: str, summary: dict) -> str:
    fields = " ".join(f"{key}={value}" for key, value in summary.items())
    return f"[stats] {name} {fields}"


def describe_provider(ws_url: str) -> str:
    if "helius-rpc.com" in ws_url:
        return "Helius WebSocket"
    if "api.mainnet-beta.solana.com" in ws_url:
        return "public Solana WebSocket (rate limited, consider a dedicated provider)"
    return "custom WebSocket endpoint"


class LaunchFeed:
    """Main application — wires up both monitors and supervises them."""

    def __init__(self):
        self.emitter = Emitter()
        self.rpc = SolanaRpcClient(config.SOLANA_RPC_URL, timeout=config.REQUEST_TIMEOUT_S)
        self.monitors: dict[str, StreamMonitor] = {}

        if config.PUMP_ENABLED:
            self.monitors["pump"] = PumpFunMonitor(config.SOLANA_WS_URL, emitter=self.emitter)
        if config.RAYDIUM_ENABLED:
            self.monitors["raydium"] = RaydiumBuyMonitor(
                config.SOLANA_WS_URL,
                rpc=self.rpc,
                emitter=self.emitter,
                throttle=FetchThrottle(
                    max_in_flight=config.MAX_PENDING_FETCHES,
                    min_interval=config.MIN_FETCH_INTERVAL_S,
                ),
                fetch_delay=config.FETCH_DELAY_S,
                request_timeout=config.REQUEST_TIMEOUT_S,
                rate_limit_penalty=config.RATE_LIMIT_PENALTY_S,
            )

        self._shutdown = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    async def start(self):
        logger.info("=" * 60)
        logger.info("  SOLANA LAUNCH FEED")
        logger.info(f"  WebSocket:  {mask_url(config.SOLANA_WS_URL)}")
        logger.info(f"  Provider:   {describe_provider(config.SOLANA_WS_URL)}")
        logger.info(f"  Pump.fun:   {'CreateEvent' if 'pump' in self.monitors else 'DISABLED'}")
        logger.info(f"  Raydium:    {'LaunchLab BUY' if 'raydium' in self.monitors else 'DISABLED'}")
        logger.info("=" * 60)

        if not self.monitors:
            logger.error("No monitors enabled (PUMP_ENABLED / RAYDIUM_ENABLED)")
            return

        if "raydium" in self.monitors:
            await check_connection(self.rpc)

        self._tasks = [
            asyncio.create_task(
                supervise(name, monitor, config.RESTART_DELAY_S), name=f"{name}_monitor"
            )
            for name, monitor in self.monitors.items()
        ]
        if config.STATS_INTERVAL_S > 0:
            self._tasks.append(asyncio.create_task(self._stats_loop(), name="stats"))

        logger.info("All systems running. Waiting for new tokens...")
        await self._shutdown.wait()
        await self._teardown()

    def request_shutdown(self):
        self._shutdown.set()

    async def _teardown(self):
        logger.info("Shutting down...")
        for monitor in self.monitors.values():
            await monitor.stop()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.rpc.close()
        logger.info("Goodbye.")

    async def _stats_loop(self):
        while True:
            await asyncio.sleep(config.STATS_INTERVAL_S)
            for name, monitor in self.monitors.items():
                logger.info(format_stats(name, monitor.stats.summary()))


async def main():
    feed = LaunchFeed()
    loop = asyncio.get_running_loop()
    for sig in (signal_module.SIGINT, signal_module.SIGTERM):
        loop.add_signal_handler(sig, feed.request_shutdown)
    await feed.start()


if __name__ == "__main__":
    asyncio.run(main())
