"""
Shared constants for the Kanshi indexer.

Default endpoints, storage keys and numeric limits used across all modules.
"""

# ---------------------------------------------------------------------------
# Numeric Constants
# ---------------------------------------------------------------------------

MAX_U64 = 2**64 - 1
FELT_MAX = 2**251 + 17 * 2**192  # Starknet field prime (exclusive upper bound)
FELT_HEX_WIDTH = 64

# ---------------------------------------------------------------------------
# Stream Provider (Apibara DNA)
# ---------------------------------------------------------------------------

STREAM_ENDPOINTS = {
    "mainnet": "wss://mainnet.starknet.a5a.ch",
    "sepolia": "wss://sepolia.starknet.a5a.ch",
}

INDEXING_STREAM_CHUNK_SIZE = 32

# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

DEFAULT_STORAGE_URL = "redis://127.0.0.1:6379"
DEFAULT_CHECKPOINT_PATH = "indexer_state.json"
DEFAULT_CHECKPOINT_KEY = "kanshi:indexer_state"
KV_TABLE_NAME = "key_value_store"
POSTGRES_SCHEMES = ("postgres", "postgresql")
