import os

LEDGER_PROVIDER = os.getenv("LEDGER_PROVIDER", "stub").lower()

# Base mainnet
RPC_URL = os.getenv("RPC_URL", "https://mainnet.base.org")
CHAIN_ID = int(os.getenv("CHAIN_ID", "8453"))
CONTRACT_ADDRESS = os.getenv(
    "CONTRACT_ADDRESS", "0xD9361b16aaD90B23929E571564668b542aC7F4a9"
)

# Without a key the service is read-only.
WALLET_PRIVATE_KEY = os.getenv("WALLET_PRIVATE_KEY", "")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+pysqlite:///./predikt.db")

LOG_LEVEL = os.getenv("LOG_LEVEL", "info").lower()

LEADERBOARD_DEFAULT_LIMIT = int(os.getenv("LEADERBOARD_DEFAULT_LIMIT", "20"))
CACHE_TTL_SECS = float(os.getenv("CACHE_TTL_SECS", "15"))
# Per-item queries (battle, user, leaderboard limit) re-run by refresh()
QUERY_CACHE_MAX = int(os.getenv("QUERY_CACHE_MAX", "64"))
MIN_BATTLE_DURATION_SECS = int(os.getenv("MIN_BATTLE_DURATION_SECS", "3600"))

# --- Gas budgets per mutating call ---
GAS_CREATE = int(os.getenv("GAS_CREATE", "500000"))
GAS_ACCEPT = int(os.getenv("GAS_ACCEPT", "300000"))
GAS_RESOLVE = int(os.getenv("GAS_RESOLVE", "300000"))
GAS_CANCEL = int(os.getenv("GAS_CANCEL", "200000"))

TX_RECEIPT_TIMEOUT_SECS = float(os.getenv("TX_RECEIPT_TIMEOUT_SECS", "180"))

# Create-form field limits
PREDICTION_MAX_LEN = 150
DESCRIPTION_MAX_LEN = 500

if CACHE_TTL_SECS < 0:
    CACHE_TTL_SECS = 0.0

if LEADERBOARD_DEFAULT_LIMIT < 1:
    LEADERBOARD_DEFAULT_LIMIT = 20

if QUERY_CACHE_MAX < 1:
    QUERY_CACHE_MAX = 64
