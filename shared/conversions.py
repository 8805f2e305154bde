"""
Starknet field element (felt) helpers.

Felts arrive from the stream as 0x-prefixed hex strings of varying width.
Addresses are normalized to the full 64-digit form so filters and decoded
events compare equal regardless of leading zeros.
"""

from __future__ import annotations

from shared.constants import FELT_HEX_WIDTH, FELT_MAX


def parse_felt(value: str | int) -> int:
    """Parse a hex string (or int) into a felt integer. Raises ValueError."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid felt: {value!r}")
    if isinstance(value, int):
        number = value
    elif not isinstance(value, str):
        raise ValueError(f"Invalid felt: {value!r}")
    else:
        cleaned = value.strip().lower()
        if cleaned.startswith("0x"):
            cleaned = cleaned[2:]
        if not cleaned or len(cleaned) > FELT_HEX_WIDTH:
            raise ValueError(f"Invalid felt hex: {value!r}")
        number = int(cleaned, 16)
    if number < 0 or number >= FELT_MAX:
        raise ValueError(f"Felt out of range: {value!r}")
    return number


def felt_to_hex(value: str | int) -> str:
    """Render a felt as 0x + 64 lowercase hex digits."""
    return f"0x{parse_felt(value):0{FELT_HEX_WIDTH}x}"


def felt_to_string(value: str | int) -> str:
    """
    Decode a Cairo short string (felt-packed ASCII).

    Returns the hex form unchanged if the bytes are not printable UTF-8.
    """
    hex_form = felt_to_hex(value)
    number = parse_felt(value)
    raw = number.to_bytes((number.bit_length() + 7) // 8, "big")
    try:
        decoded = raw.decode("utf-8").strip("\x00")
    except UnicodeDecodeError:
        return hex_form
    if not decoded.strip() or not decoded.isprintable():
        return hex_form
    return decoded
