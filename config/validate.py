"""
Settings validation for the Kanshi indexer.

Converts raw settings into an IndexerSettings instance, collecting every
problem before raising so the operator sees all of them at once.
Run at startup to fail fast on misconfiguration.
"""

from typing import Any, Callable

from config.loader import IndexerSettings, get_config
from shared.constants import MAX_U64
from shared.conversions import felt_to_hex
from shared.exceptions import ConfigurationError
from shared.types import DataFinality, HeaderMode, NetworkName, OverflowPolicy

CHECKPOINT_BACKENDS = ("file", "storage")


class ConfigValidationError(ConfigurationError):
    """Raised when a required setting is missing or invalid."""

    pass


def _convert(
    raw: dict[str, Any],
    key: str,
    converter: Callable[[Any], Any],
    errors: list[str],
) -> Any:
    value = raw.get(key)
    try:
        return converter(value)
    except (ValueError, TypeError) as exc:
        errors.append(f"{key}: {exc}")
        return None


def _required_str(value: Any) -> str:
    if value is None or not str(value).strip():
        raise ValueError("is required")
    return str(value).strip()


def _block_number(value: Any) -> int:
    number = int(str(value).strip())
    if number < 0 or number > MAX_U64:
        raise ValueError(f"must be an unsigned 64-bit integer, got {value}")
    return number


def _non_negative_int(value: Any) -> int:
    number = int(str(value).strip())
    if number < 0:
        raise ValueError(f"must be >= 0, got {value}")
    return number


def _positive_int(value: Any) -> int:
    number = int(str(value).strip())
    if number <= 0:
        raise ValueError(f"must be > 0, got {value}")
    return number


def _optional_timeout(value: Any) -> float | None:
    if value is None or str(value).strip() == "":
        return None
    seconds = float(value)
    if seconds <= 0:
        raise ValueError(f"must be > 0, got {value}")
    return seconds


def _checkpoint_backend(value: Any) -> str:
    backend = str(value).strip().lower()
    if backend not in CHECKPOINT_BACKENDS:
        raise ValueError(f"must be one of {', '.join(CHECKPOINT_BACKENDS)}, got {value}")
    return backend


def _contract_address(value: Any) -> str:
    return felt_to_hex(_required_str(value))


def validate_settings(raw: dict[str, Any]) -> IndexerSettings:
    """
    Validate raw settings (see config.loader.collect_settings).

    Raises ConfigValidationError listing every invalid or missing key.
    """
    errors: list[str] = []

    apibara_key = _convert(raw, "apibara_key", _required_str, errors)
    storage_url = _convert(raw, "storage_url", _required_str, errors)
    network = _convert(raw, "network", lambda v: NetworkName.from_str(str(v)), errors)
    contract_address = _convert(raw, "contract_address", _contract_address, errors)
    starting_block = _convert(raw, "starting_block", _block_number, errors)
    checkpoint_backend = _convert(raw, "checkpoint_backend", _checkpoint_backend, errors)
    checkpoint_path = _convert(raw, "checkpoint_path", _required_str, errors)
    checkpoint_key = _convert(raw, "checkpoint_key", _required_str, errors)
    finality = _convert(raw, "finality", lambda v: DataFinality.from_str(str(v)), errors)
    header_mode = _convert(raw, "header_mode", lambda v: HeaderMode(str(v).lower()), errors)
    batch_size = _convert(raw, "batch_size", _positive_int, errors)
    queue_maxsize = _convert(raw, "queue_maxsize", _non_negative_int, errors)
    queue_policy = _convert(raw, "queue_policy", lambda v: OverflowPolicy(str(v).lower()), errors)
    queue_put_timeout = _convert(raw, "queue_put_timeout", _optional_timeout, errors)
    max_restarts = _convert(raw, "max_restarts", _non_negative_int, errors)

    stream_url = raw.get("stream_url")
    if not stream_url and network is not None:
        stream_url = get_config().get_stream_endpoint(network.value)
        if not stream_url:
            errors.append(f"stream_url: no endpoint configured for {network.value}")

    if errors:
        lines = ["Configuration validation failed:"]
        for error in errors:
            lines.append(f"    - {error}")
        raise ConfigValidationError("\n".join(lines))

    return IndexerSettings(
        storage_url=storage_url,
        apibara_key=apibara_key,
        network=network,
        contract_address=contract_address,
        starting_block=starting_block,
        stream_url=stream_url,
        checkpoint_backend=checkpoint_backend,
        checkpoint_path=checkpoint_path,
        checkpoint_key=checkpoint_key,
        finality=finality,
        header_mode=header_mode,
        batch_size=batch_size,
        queue_maxsize=queue_maxsize,
        queue_policy=queue_policy,
        queue_put_timeout=queue_put_timeout,
        max_restarts=max_restarts,
    )
