"""
Application constants.

Centralized constants for the tracker.
"""

# ========================================================================
# CHAIN INGESTION CONSTANTS
# ========================================================================

# Blocks at depth <= CONFIRMATION_DEPTH below head are never emitted
CONFIRMATION_DEPTH = 6

# Listener polling
LISTENER_POLL_INTERVAL = 30.0  # seconds between head polls
LISTENER_MAX_BLOCK_RANGE = 2000  # blocks per eth_getLogs request (safe for public RPC)

# RPC timeouts (in seconds)
RPC_TIMEOUT = 30.0
BLOCK_TIMESTAMP_CACHE_SIZE = 4096  # cached block headers per chain

# ========================================================================
# POINTS CONSTANTS
# ========================================================================

POINTS_DEFAULT_RATE = 0.05
POINTS_DEFAULT_INTERVAL_MINUTES = 60
POINTS_FIRST_CALC_LOOKBACK_HOURS = 24  # bounded first-time backfill
TOKEN_DECIMALS = 18

# Backfill slice granularity by gap size (minutes)
BACKFILL_SLICE_SMALL = 15  # gap <= 1 hour
BACKFILL_SLICE_MEDIUM = 60  # gap <= 24 hours
BACKFILL_SLICE_LARGE = 360  # longer gaps
BACKFILL_MANUAL_SLICE = 60  # `backfill points` / `backfill scan`

# ========================================================================
# BROKER CONSTANTS
# ========================================================================

POINTS_QUEUE_NAME = "points.calculate"
POINTS_ACTOR_NAME = "calculate_points"
BROKER_OPERATION_TIMEOUT = 30.0
POINTS_TASK_MAX_RETRIES = 5
POINTS_TASK_MIN_BACKOFF_MS = 1000  # 1 second
POINTS_TASK_MAX_BACKOFF_MS = 60000  # 1 minute
POINTS_TASK_TIME_LIMIT_MS = 120_000  # 2 minutes

# ========================================================================
# HEALTH CONSTANTS
# ========================================================================

HEALTH_LAG_THRESHOLD_HOURS = 2.0  # chain / user considered behind
HEALTH_POINTS_AVG_LAG_HOURS = 24.0  # points system unhealthy above this
HEALTH_CHAIN_SEVERE_LAG_HOURS = 24.0
HEALTH_POINTS_SEVERE_LAG_HOURS = 48.0

HEALTH_BASELINE_SCORE = 100
HEALTH_PENALTY_STORE_DOWN = 50
HEALTH_PENALTY_CHAIN_UNHEALTHY = 20
HEALTH_PENALTY_CHAIN_SEVERE_LAG = 10
HEALTH_PENALTY_POINTS_UNHEALTHY = 30
HEALTH_PENALTY_POINTS_SEVERE_LAG = 20

TRACKED_TABLES = (
    "chain_status",
    "user_balances",
    "balance_changes",
    "user_points",
    "points_calculation_history",
)

# ========================================================================
# EXIT CODES
# ========================================================================

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_STARTUP_ERROR = 2
EXIT_UNHEALTHY = 3
