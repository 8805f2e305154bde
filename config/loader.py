"""
Configuration loader for the Kanshi indexer.

Settings are resolved with the precedence CLI flag > environment variable >
config/app.json > built-in default. `.env` files are honoured via python-dotenv.

Usage:
    from config.loader import get_config, collect_settings

    config = get_config()
    stream_cfg = config.get_stream_config()
    raw = collect_settings(sys.argv[1:])
"""

from __future__ import annotations

import argparse
import json
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from dotenv import load_dotenv

from shared.constants import (
    DEFAULT_CHECKPOINT_KEY,
    DEFAULT_CHECKPOINT_PATH,
    DEFAULT_STORAGE_URL,
    INDEXING_STREAM_CHUNK_SIZE,
    STREAM_ENDPOINTS,
)
from shared.types import DataFinality, HeaderMode, NetworkName, OverflowPolicy

load_dotenv()

# Resolve config directory relative to this file
_CONFIG_DIR = Path(__file__).parent
_PROJECT_ROOT = _CONFIG_DIR.parent


def _load_json(filepath: Path) -> Dict[str, Any]:
    """Load a JSON config file. Returns empty dict if file doesn't exist."""
    try:
        with open(filepath, "r") as f:
            return json.load(f)
    except FileNotFoundError:
        print(f"[CONFIG_WARN] Config file not found: {filepath}")
        return {}
    except json.JSONDecodeError as e:
        print(f"[CONFIG_ERROR] Invalid JSON in {filepath}: {e}")
        return {}


def get_env_var(var_name: str, default_value: Any, var_type: type) -> Any:
    """Get environment variable with type conversion and fallback."""
    value = os.getenv(var_name, None)
    if value is None:
        return default_value
    try:
        if var_type == bool:
            return value.lower() in ("true", "1", "yes")
        return var_type(value)
    except (ValueError, TypeError):
        return default_value


class ConfigLoader:
    """
    Central configuration manager for the indexer.

    Loads config/app.json once; section accessors are cached via @lru_cache.
    """

    _instance: Optional["ConfigLoader"] = None

    def __init__(self):
        self._config_dir = _CONFIG_DIR
        self._project_root = _PROJECT_ROOT

    @classmethod
    def get_instance(cls) -> "ConfigLoader":
        """Singleton accessor."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @property
    def project_root(self) -> Path:
        return self._project_root

    # ------------------------------------------------------------------
    # Section loaders (cached)
    # ------------------------------------------------------------------

    @lru_cache(maxsize=1)
    def get_app_config(self) -> Dict[str, Any]:
        """Load general application settings."""
        return _load_json(self._config_dir / "app.json")

    @lru_cache(maxsize=1)
    def get_logging_config(self) -> Dict[str, Any]:
        return self.get_app_config().get("logging", {})

    @lru_cache(maxsize=1)
    def get_stream_config(self) -> Dict[str, Any]:
        """Stream provider endpoints and WebSocket tuning."""
        return self.get_app_config().get("stream", {})

    @lru_cache(maxsize=1)
    def get_storage_config(self) -> Dict[str, Any]:
        return self.get_app_config().get("storage", {})

    @lru_cache(maxsize=1)
    def get_checkpoint_config(self) -> Dict[str, Any]:
        return self.get_app_config().get("checkpoint", {})

    @lru_cache(maxsize=1)
    def get_handoff_config(self) -> Dict[str, Any]:
        """Hand-off queue bound and overflow policy."""
        return self.get_app_config().get("handoff", {})

    @lru_cache(maxsize=1)
    def get_supervisor_config(self) -> Dict[str, Any]:
        """Restart and backoff policy for the indexer task."""
        return self.get_app_config().get("supervisor", {})

    def get_stream_endpoint(self, network: str) -> str:
        endpoints = self.get_stream_config().get("endpoints", {})
        return endpoints.get(network, STREAM_ENDPOINTS.get(network, ""))

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        """Clear all cached configurations (useful for testing)."""
        for method_name in dir(self):
            method = getattr(self, method_name)
            if hasattr(method, "cache_clear"):
                method.cache_clear()


# ---------------------------------------------------------------------------
# Module-level convenience functions
# ---------------------------------------------------------------------------


def get_config() -> ConfigLoader:
    """Get the singleton ConfigLoader instance."""
    return ConfigLoader.get_instance()


# ---------------------------------------------------------------------------
# Runtime settings (CLI + environment)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IndexerSettings:
    """Validated settings for one indexer process."""

    storage_url: str
    apibara_key: str
    network: NetworkName
    contract_address: str
    starting_block: int
    stream_url: str
    checkpoint_backend: str = "file"
    checkpoint_path: str = DEFAULT_CHECKPOINT_PATH
    checkpoint_key: str = DEFAULT_CHECKPOINT_KEY
    finality: DataFinality = DataFinality.PENDING
    header_mode: HeaderMode = HeaderMode.WEAK
    batch_size: int = INDEXING_STREAM_CHUNK_SIZE
    queue_maxsize: int = 0
    queue_policy: OverflowPolicy = OverflowPolicy.BLOCK
    queue_put_timeout: float | None = None
    max_restarts: int = 5


# (dest, flags, env vars in lookup order, help)
_OPTIONS: list[tuple[str, tuple[str, ...], tuple[str, ...], str]] = [
    ("storage_url", ("--storage-url", "--redis-url"), ("STORAGE_URL", "REDIS_URL"),
     "Storage connection URL (redis://... or postgres://...)"),
    ("apibara_key", ("--apibara-key",), ("APIBARA_KEY",), "Stream provider API key"),
    ("network", ("--network",), ("NETWORK",), "Network to index (mainnet or sepolia)"),
    ("contract_address", ("--contract-address",), ("CONTRACT_ADDRESS",),
     "Contract address to listen to (hex felt)"),
    ("starting_block", ("--starting-block",), ("STARTING_BLOCK",), "Default starting block"),
    ("stream_url", ("--stream-url",), ("STREAM_URL",), "Override the stream endpoint"),
    ("checkpoint_backend", ("--checkpoint-backend",), ("CHECKPOINT_BACKEND",),
     "Where to keep the checkpoint (file or storage)"),
    ("checkpoint_path", ("--checkpoint-path",), ("CHECKPOINT_PATH", "WRITE_PATH"),
     "Checkpoint file path (file backend)"),
    ("checkpoint_key", ("--checkpoint-key",), ("CHECKPOINT_KEY",),
     "Checkpoint key (storage backend)"),
    ("finality", ("--finality",), ("FINALITY",), "Stream finality (pending or accepted)"),
    ("queue_maxsize", ("--queue-maxsize",), ("QUEUE_MAXSIZE",),
     "Hand-off queue bound (0 = unbounded)"),
    ("queue_policy", ("--queue-policy",), ("QUEUE_POLICY",),
     "Overflow policy for a bounded queue (block or drop_oldest)"),
    ("queue_put_timeout", ("--queue-put-timeout",), ("QUEUE_PUT_TIMEOUT",),
     "Seconds a blocked enqueue may wait before failing"),
    ("max_restarts", ("--max-restarts",), ("MAX_RESTARTS",),
     "Consecutive indexer restarts before giving up"),
]


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kanshi",
        description="Welcome to Kanshi!! Streams Starknet events into a local pipeline.",
    )
    for dest, flags, env_vars, help_text in _OPTIONS:
        parser.add_argument(
            *flags, dest=dest, default=None, help=f"{help_text} [env: {', '.join(env_vars)}]"
        )
    return parser


def _defaults_from_app_config(cfg: ConfigLoader) -> Dict[str, Any]:
    stream_cfg = cfg.get_stream_config()
    checkpoint_cfg = cfg.get_checkpoint_config()
    handoff_cfg = cfg.get_handoff_config()
    return {
        "storage_url": cfg.get_storage_config().get("url", DEFAULT_STORAGE_URL),
        "apibara_key": None,
        "network": "mainnet",
        "contract_address": None,
        "starting_block": 0,
        "stream_url": None,
        "checkpoint_backend": checkpoint_cfg.get("backend", "file"),
        "checkpoint_path": checkpoint_cfg.get("path", DEFAULT_CHECKPOINT_PATH),
        "checkpoint_key": checkpoint_cfg.get("key", DEFAULT_CHECKPOINT_KEY),
        "finality": stream_cfg.get("finality", "pending"),
        "header_mode": stream_cfg.get("header_mode", "weak"),
        "batch_size": stream_cfg.get("batch_size", INDEXING_STREAM_CHUNK_SIZE),
        "queue_maxsize": handoff_cfg.get("maxsize", 0),
        "queue_policy": handoff_cfg.get("overflow_policy", "block"),
        "queue_put_timeout": handoff_cfg.get("put_timeout_seconds"),
        "max_restarts": cfg.get_supervisor_config().get("max_restarts", 5),
    }


def collect_settings(argv: Sequence[str] | None = None) -> Dict[str, Any]:
    """
    Gather raw (unvalidated) settings from CLI, environment and app.json.

    Values are returned as found; config.validate converts and checks them.
    """
    args = build_arg_parser().parse_args(argv)
    raw = _defaults_from_app_config(get_config())
    for dest, _flags, env_vars, _help in _OPTIONS:
        cli_value = getattr(args, dest)
        if cli_value is not None:
            raw[dest] = cli_value
            continue
        for env_var in env_vars:
            env_value = get_env_var(env_var, None, str)
            if env_value is not None:
                raw[dest] = env_value
                break
    return raw
