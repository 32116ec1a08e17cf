"""
Solana program IDs, discriminators and log markers for launch detection.

Pump.fun:  CreateEvent emitted as "Program data: <base64>" in tx logs.
Raydium:   LaunchLab buy_exact_in / buy_exact_out instructions.
"""

# ═══════════════════════════════════════════════════════════════
#  PROGRAM IDS
# ═══════════════════════════════════════════════════════════════

# Pump.fun bonding-curve program (token creation)
PUMP_FUN_PROGRAM = "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P"

# Raydium LaunchLab program (bonding-curve launches on Raydium)
RAYDIUM_LAUNCHLAB_PROGRAM = "LanMV9sAd7wArD4vJFi2qDdfnVhFxYSUg6eADduJ3uj"

# LaunchLab vault authority. Signs the transferChecked that moves the
# bought token out of the pool vault, so it tells us which mint was bought.
RAYDIUM_LAUNCHLAB_AUTHORITY = "WLHv2UAZm6z4KyaaELi5pjdbJh6RESMva1Rnn8pJVVh"

# ═══════════════════════════════════════════════════════════════
#  ANCHOR DISCRIMINATORS (first 8 bytes of event / instruction data)
# ═══════════════════════════════════════════════════════════════

PUMP_CREATE_EVENT_DISCRIMINATOR = bytes([27, 114, 169, 77, 222, 235, 99, 118])

LAUNCHLAB_BUY_EXACT_IN_DISCRIMINATOR = bytes([250, 234, 13, 123, 213, 156, 19, 236])
LAUNCHLAB_BUY_EXACT_OUT_DISCRIMINATOR = bytes([24, 211, 116, 40, 105, 3, 153, 56])

LAUNCHLAB_BUY_DISCRIMINATORS = (
    LAUNCHLAB_BUY_EXACT_IN_DISCRIMINATOR,
    LAUNCHLAB_BUY_EXACT_OUT_DISCRIMINATOR,
)

DISCRIMINATOR_LENGTH = 8
PUBKEY_LENGTH = 32

# ═══════════════════════════════════════════════════════════════
#  LOG MARKERS
#
#  Anchor programs log "Program log: Instruction: BuyExactIn" and
#  the instruction name in snake case; either name marks a buy.
#  The outer (depth 1) invoke line proves LaunchLab was called
#  directly rather than via CPI from some other program.
# ═══════════════════════════════════════════════════════════════

PROGRAM_DATA_PREFIX = "Program data: "
BUY_LOG_MARKERS = ("buy_exact_in", "buy_exact_out")
TOP_LEVEL_INVOKE_MARKER = "invoke [1]"

# ═══════════════════════════════════════════════════════════════
#  PARSED INSTRUCTION FIELDS (getTransaction jsonParsed)
# ═══════════════════════════════════════════════════════════════

SPL_TOKEN_PROGRAM_NAME = "spl-token"
TRANSFER_CHECKED = "transferChecked"

# ═══════════════════════════════════════════════════════════════
#  JSON-RPC
# ═══════════════════════════════════════════════════════════════

COMMITMENT = "confirmed"
RPC_RATE_LIMIT_CODE = 429

# logsSubscribe request ids per venue
PUMP_SUBSCRIBE_ID = 2
RAYDIUM_SUBSCRIBE_ID = 4

# ═══════════════════════════════════════════════════════════════
#  MONITOR TUNING DEFAULTS
# ═══════════════════════════════════════════════════════════════

# Pump.fun: reconnect after 5s on error, 1s pause between every cycle
PUMP_ERROR_DELAY_S = 5.0
PUMP_RECONNECT_PAUSE_S = 1.0
PUMP_SIGNATURE_CACHE_MAX = 1000
PUMP_SIGNATURE_CACHE_KEEP = 500

# Raydium: heavier monitor, slower reconnect
RAYDIUM_ERROR_DELAY_S = 10.0
RAYDIUM_RECONNECT_PAUSE_S = 2.0
RAYDIUM_SIGNATURE_CACHE_MAX = 300
RAYDIUM_SIGNATURE_CACHE_KEEP = 150
RAYDIUM_SEEN_MINTS_MAX = 2000
RAYDIUM_SEEN_MINTS_KEEP = 1000

# getTransaction enrichment throttle
FETCH_DELAY_S = 0.8           # pacing sleep before every fetch
MIN_FETCH_INTERVAL_S = 0.5    # min time between fetch starts
MAX_PENDING_FETCHES = 3       # fetches in flight (queued + running)
REQUEST_TIMEOUT_S = 5.0
RATE_LIMIT_PENALTY_S = 5.0
