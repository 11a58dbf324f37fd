# helper/hexutil.py
from __future__ import annotations

from typing import Any


def normalize_hex(value: Any) -> str:
    """
    Normalize an identifier (hash, address, session id) to a lowercase,
    '0x'-prefixed hex string.

    - bytes / bytearray (including HexBytes) are hex-encoded.
    - int values are encoded as 32-byte words (bytes32 session ids).
    - str values accept an optional '0x' / '0X' prefix and surrounding
      whitespace; the remaining characters must be valid hex.

    Raises ValueError for anything else. Every identifier entering the
    engine goes through here, so equality comparisons between event
    arguments, view results and caller input are exact.
    """
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()

    if isinstance(value, bool):
        raise ValueError(f"Expected hex identifier, got bool: {value!r}")

    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"Negative identifier: {value}")
        return "0x" + format(value, "064x")

    if not isinstance(value, str):
        raise ValueError(f"Expected hex string, got {type(value).__name__}: {value!r}")

    s = value.strip()
    if s.startswith(("0x", "0X")):
        s = s[2:]

    # int(s, 16) would also accept '_' separators and signs
    if not s or any(c not in "0123456789abcdefABCDEF" for c in s):
        raise ValueError(f"Not a valid hex string: {value!r}")

    return "0x" + s.lower()


def short_hex(value: str, width: int = 10) -> str:
    """Abbreviate a long hex string for log lines."""
    if len(value) <= width + 4:
        return value
    return f"{value[:width]}…{value[-4:]}"
