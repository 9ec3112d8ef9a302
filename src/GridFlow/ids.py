"""Identity and time sources injected into migrations and the index.

Two generators are provided:
- ``SequentialIdGenerator``: ``<prefix>_<n>`` with per-prefix counters. Counters
  are persisted by the importer so later runs continue the sequence.
- ``UlidIdGenerator``: ``<prefix>_<ULID>`` (Crockford base32, 48-bit ms
  timestamp + 80-bit randomness).
"""

from __future__ import annotations

import os
import re
import time
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Final, Protocol

if TYPE_CHECKING:  # pragma: no cover
    from GridFlow.config import Settings

Clock = Callable[[], str]

_ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_SEQUENTIAL_RE = re.compile(r"^(?P<prefix>[A-Za-z][A-Za-z0-9]*)_(?P<n>\d+)$")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class IdGenerator(Protocol):
    def next_id(self, prefix: str) -> str: ...

    def reserve(self, existing_id: str) -> None: ...

    def counters(self) -> dict[str, int]: ...


class SequentialIdGenerator:
    """Monotonic per-prefix counters; never hands out a reserved id."""

    def __init__(self, counters: Mapping[str, int] | None = None):
        self._counters: dict[str, int] = {}
        for prefix, value in (counters or {}).items():
            try:
                self._counters[str(prefix)] = max(0, int(value))
            except (TypeError, ValueError):
                continue

    def next_id(self, prefix: str) -> str:
        n = self._counters.get(prefix, 0) + 1
        self._counters[prefix] = n
        return f"{prefix}_{n}"

    def reserve(self, existing_id: str) -> None:
        m = _SEQUENTIAL_RE.match(str(existing_id))
        if not m:
            return
        prefix, n = m.group("prefix"), int(m.group("n"))
        if n > self._counters.get(prefix, 0):
            self._counters[prefix] = n

    def counters(self) -> dict[str, int]:
        return dict(self._counters)


def _encode_base32(value: int, length: int) -> str:
    chars: list[str] = []
    for _ in range(length):
        value, rem = divmod(value, 32)
        chars.append(_ALPHABET[rem])
    chars.reverse()
    return "".join(chars)


def generate_ulid(ts_ms: int | None = None) -> str:
    """Generate a 26-char ULID string."""
    if ts_ms is None:
        ts_ms = int(time.time() * 1000)
    ts = ts_ms & ((1 << 48) - 1)
    rnd = int.from_bytes(os.urandom(10), "big")
    return _encode_base32((ts << 80) | rnd, 26)


def is_ulid(s: str) -> bool:
    if len(s) != 26 or not s[0].isdigit():
        return False
    return all(ch in _ALPHABET for ch in s)


class UlidIdGenerator:
    """Random, time-ordered ids; reservations are unnecessary."""

    def next_id(self, prefix: str) -> str:
        return f"{prefix}_{generate_ulid()}"

    def reserve(self, existing_id: str) -> None:
        return None

    def counters(self) -> dict[str, int]:
        return {}


def make_id_generator(
    settings: Settings | None = None, counters: Mapping[str, int] | None = None
) -> IdGenerator:
    strategy = settings.id_strategy if settings is not None else "sequential"
    if strategy == "ulid":
        return UlidIdGenerator()
    return SequentialIdGenerator(counters)


__all__ = [
    "Clock",
    "IdGenerator",
    "SequentialIdGenerator",
    "UlidIdGenerator",
    "generate_ulid",
    "is_ulid",
    "make_id_generator",
    "utc_now_iso",
]
