"""Per-peer position history.

A `PeerLocationHistory` keeps the most recent position fixes reported for one
mesh peer, ordered by timestamp. Fixes can arrive late over the mesh, so
`append` inserts at the sorted position instead of blindly appending; the
prediction models rely on the non-decreasing timestamp order.

Timestamps are milliseconds since the Unix epoch.
"""

from __future__ import annotations

import bisect
import threading
import time
from dataclasses import dataclass
from math import isfinite
from typing import Iterator, List, Optional

DEFAULT_MAX_ENTRIES = 100


def wall_clock_ms() -> int:
    return time.time_ns() // 1_000_000


@dataclass(frozen=True)
class PeerLocationEntry:
    peer_id: str
    latitude: float
    longitude: float
    timestamp: int  # ms epoch
    altitude: Optional[float] = None
    speed: Optional[float] = None  # m/s, as reported by the device
    track: Optional[float] = None  # degrees, as reported by the device


class PeerLocationHistory:
    """Time-ordered, bounded sequence of fixes for a single peer.

    Reads and writes take a per-history lock, so a prediction worker never
    sees the timestamp index and the entry list out of step.
    """

    def __init__(self, peer_id: str, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.peer_id = str(peer_id)
        self.max_entries = int(max_entries)
        self._entries: List[PeerLocationEntry] = []
        self._stamps: List[int] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __iter__(self) -> Iterator[PeerLocationEntry]:
        return iter(self.entries)

    @property
    def entries(self) -> List[PeerLocationEntry]:
        with self._lock:
            return list(self._entries)

    def append(self, entry: PeerLocationEntry) -> None:
        """Insert `entry` keeping timestamps non-decreasing.

        Entries with equal timestamps keep their arrival order. When the
        history exceeds `max_entries` the oldest fixes are dropped. Raises
        ValueError for a fix of another peer or with non-finite coordinates.
        """
        if entry.peer_id != self.peer_id:
            raise ValueError(f"entry for peer {entry.peer_id!r} appended to history of {self.peer_id!r}")
        if not (isfinite(entry.latitude) and isfinite(entry.longitude)):
            raise ValueError(f"non-finite fix for peer {self.peer_id!r}: ({entry.latitude}, {entry.longitude})")
        ts = int(entry.timestamp)
        with self._lock:
            idx = bisect.bisect_right(self._stamps, ts)
            self._stamps.insert(idx, ts)
            self._entries.insert(idx, entry)
            overflow = len(self._entries) - self.max_entries
            if overflow > 0:
                del self._entries[:overflow]
                del self._stamps[:overflow]

    def recent_entries(self, max_age_minutes: int, now_ms: Optional[int] = None) -> List[PeerLocationEntry]:
        """Entries with timestamp in [now - max_age, now], oldest first."""
        now = wall_clock_ms() if now_ms is None else int(now_ms)
        cutoff = now - int(max_age_minutes) * 60 * 1000
        with self._lock:
            lo = bisect.bisect_left(self._stamps, cutoff)
            hi = bisect.bisect_right(self._stamps, now)
            return self._entries[lo:hi]

    def latest_entry(self) -> Optional[PeerLocationEntry]:
        with self._lock:
            return self._entries[-1] if self._entries else None

    def second_latest_entry(self) -> Optional[PeerLocationEntry]:
        with self._lock:
            return self._entries[-2] if len(self._entries) >= 2 else None

    def is_chronological(self) -> bool:
        with self._lock:
            stamps = list(self._stamps)
        return all(a <= b for a, b in zip(stamps, stamps[1:]))

    def prune_older_than(self, cutoff_ms: int) -> int:
        """Drop fixes strictly older than `cutoff_ms`; returns how many were removed."""
        with self._lock:
            idx = bisect.bisect_left(self._stamps, int(cutoff_ms))
            if idx:
                del self._entries[:idx]
                del self._stamps[:idx]
            return idx


__all__ = ["PeerLocationEntry", "PeerLocationHistory", "DEFAULT_MAX_ENTRIES", "wall_clock_ms"]
