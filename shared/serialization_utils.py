"""
Serialization utilities for the Kanshi indexer.

Provides JSON encoding for Decimal, bytes, Enum and dataclass values so that
arbitrary structured objects can be handed to the object store.

Usage:
    from shared.serialization_utils import JSONValueEncoder
    json.dumps(data, cls=JSONValueEncoder)
"""

import dataclasses
import json
from decimal import Decimal
from enum import Enum
from json import JSONEncoder
from typing import Any


class JSONValueEncoder(JSONEncoder):
    """JSON encoder handling Decimal, bytes, Enum and dataclass instances."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, (bytes, bytearray)):
            return "0x" + obj.hex()
        if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
            return dataclasses.asdict(obj)
        if isinstance(obj, (set, frozenset)):
            return sorted(obj)
        return super().default(obj)


def dumps(value: Any) -> str:
    """Serialize a value to compact JSON (raises TypeError/ValueError)."""
    return json.dumps(value, cls=JSONValueEncoder, separators=(",", ":"), allow_nan=False)
