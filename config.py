"""
Configuration loader — reads .env and exposes all settings.
"""
import os
from dotenv import load_dotenv

from feeds import constants as defaults

load_dotenv()


def normalize_ws_url(url: str) -> str:
    """Accept an http(s) RPC URL and turn it into its ws(s) form."""
    if url.startswith(("wss://", "ws://")):
        return url
    return url.replace("https://", "wss://", 1).replace("http://", "ws://", 1)


def derive_http_url(ws_url: str) -> str:
    """HTTP JSON-RPC endpoint paired with a ws(s) endpoint."""
    return ws_url.replace("wss://", "https://", 1).replace("ws://", "http://", 1)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


# ── Solana RPC ─────────────────────────────────────────────────
# Helius recommended (api-key in the query string is masked in logs).
SOLANA_WS_URL = normalize_ws_url(
    os.getenv("SOLANA_WS_URL", "wss://api.mainnet-beta.solana.com")
)
# getTransaction goes over HTTP; derived from the WS URL unless set
SOLANA_RPC_URL = os.getenv("SOLANA_RPC_URL") or derive_http_url(SOLANA_WS_URL)

# ── Monitors ───────────────────────────────────────────────────
PUMP_ENABLED = _env_bool("PUMP_ENABLED", "true")
RAYDIUM_ENABLED = _env_bool("RAYDIUM_ENABLED", "true")

# ── Raydium enrichment throttle ────────────────────────────────
# Every buy candidate costs one getTransaction call. Public endpoints
# rate limit hard, so fetches are paced and capped. Defaults live in
# feeds/constants.py.
FETCH_DELAY_S = float(os.getenv("FETCH_DELAY_MS", defaults.FETCH_DELAY_S * 1000)) / 1000
MIN_FETCH_INTERVAL_S = (
    float(os.getenv("MIN_FETCH_INTERVAL_MS", defaults.MIN_FETCH_INTERVAL_S * 1000)) / 1000
)
MAX_PENDING_FETCHES = int(os.getenv("MAX_PENDING_FETCHES", defaults.MAX_PENDING_FETCHES))
REQUEST_TIMEOUT_S = float(os.getenv("REQUEST_TIMEOUT_S", defaults.REQUEST_TIMEOUT_S))
RATE_LIMIT_PENALTY_S = float(os.getenv("RATE_LIMIT_PENALTY_S", defaults.RATE_LIMIT_PENALTY_S))

# ── Supervision ────────────────────────────────────────────────
# Delay before restarting a monitor task that crashed
RESTART_DELAY_S = float(os.getenv("RESTART_DELAY_S", "5"))
# Periodic per-monitor stats line; 0 disables
STATS_INTERVAL_S = int(os.getenv("STATS_INTERVAL_S", "300"))

# ── Logging ────────────────────────────────────────────────────
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
