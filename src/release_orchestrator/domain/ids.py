"""Run identifiers: ``run-<ULID>``, sortable by creation time."""

from __future__ import annotations

import secrets
import time
from collections.abc import Callable
from typing import Final

CROCKFORD_BASE32_ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ULID_LENGTH: Final[int] = 26
ULID_RANDOM_BYTES: Final[int] = 10
ULID_MAX_TIMESTAMP_MS: Final[int] = (1 << 48) - 1
RUN_ID_PREFIX: Final[str] = "run"

_SEPARATOR: Final[str] = "-"
_DECODE_TABLE: Final[dict[str, int]] = {
    char: index for index, char in enumerate(CROCKFORD_BASE32_ALPHABET)
}

_RandBytes = Callable[[int], bytes]


def generate_ulid(
    *,
    timestamp_ms: int | None = None,
    randbytes: _RandBytes | None = None,
) -> str:
    """Generate a ULID as a 26-character uppercase Crockford Base32 string."""
    ts_ms = time.time_ns() // 1_000_000 if timestamp_ms is None else timestamp_ms
    if not isinstance(ts_ms, int) or not 0 <= ts_ms <= ULID_MAX_TIMESTAMP_MS:
        raise ValueError(f"timestamp_ms out of range: expected 0..{ULID_MAX_TIMESTAMP_MS}")
    provider = secrets.token_bytes if randbytes is None else randbytes
    random_bytes = bytes(provider(ULID_RANDOM_BYTES))
    if len(random_bytes) != ULID_RANDOM_BYTES:
        raise ValueError(f"randbytes must return exactly {ULID_RANDOM_BYTES} bytes")

    value = (ts_ms << 80) | int.from_bytes(random_bytes, "big")
    chars = ["0"] * ULID_LENGTH
    for index in range(ULID_LENGTH - 1, -1, -1):
        chars[index] = CROCKFORD_BASE32_ALPHABET[value & 0b11111]
        value >>= 5
    return "".join(chars)


def generate_run_id(*, timestamp_ms: int | None = None, randbytes: _RandBytes | None = None) -> str:
    ulid = generate_ulid(timestamp_ms=timestamp_ms, randbytes=randbytes)
    return f"{RUN_ID_PREFIX}{_SEPARATOR}{ulid}"


def validate_run_id(id_str: str) -> None:
    """Raise ``ValueError`` unless ``id_str`` is ``run-<ULID>``."""
    if not isinstance(id_str, str):
        raise ValueError(f"run id must be a string, got {type(id_str).__name__}")
    lead = f"{RUN_ID_PREFIX}{_SEPARATOR}"
    if not id_str.startswith(lead):
        raise ValueError(f"expected prefix '{lead}'")
    ulid = id_str[len(lead) :]
    if len(ulid) != ULID_LENGTH:
        raise ValueError(f"ulid length must be {ULID_LENGTH}, got {len(ulid)}")
    for index, char in enumerate(ulid):
        if char.upper() not in _DECODE_TABLE:
            raise ValueError(f"invalid ULID character {char!r} at index {index}")
    if _DECODE_TABLE[ulid[0].upper()] > 7:
        raise ValueError("ulid overflow: value exceeds maximum 128-bit ULID")


def short_id(id_str: str) -> str:
    """Return the last 8 characters of an ID for compact display."""
    if len(id_str) < 8:
        raise ValueError("id must be at least 8 characters")
    return id_str[-8:]


__all__ = [
    "RUN_ID_PREFIX",
    "ULID_LENGTH",
    "generate_run_id",
    "generate_ulid",
    "short_id",
    "validate_run_id",
]
