# src/track/store.py
from __future__ import annotations

import logging
import threading
from math import isfinite
from typing import Dict, List, Optional

from .history import DEFAULT_MAX_ENTRIES, PeerLocationEntry, PeerLocationHistory, wall_clock_ms

LOG = logging.getLogger("track.store")


class HistoryStore:
    """Process-wide map of peer id -> PeerLocationHistory.

    The location source writes through `record`; prediction workers read
    histories via `get`. Pruning is the owner's job, never the engine's.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        self.max_entries = int(max_entries)
        self._histories: Dict[str, PeerLocationHistory] = {}
        self._lock = threading.Lock()

    def record(self, entry: PeerLocationEntry) -> Optional[PeerLocationHistory]:
        """Add `entry` to its peer's history and return that history.

        A fix with non-finite coordinates is logged and dropped; the peer's
        existing history (or None) is returned unchanged.
        """
        if not (isfinite(entry.latitude) and isfinite(entry.longitude)):
            LOG.error("invalid fix for peer %s: lat=%s lon=%s", entry.peer_id, entry.latitude, entry.longitude)
            return self.get(entry.peer_id)
        with self._lock:
            hist = self._histories.get(entry.peer_id)
            if hist is None:
                hist = PeerLocationHistory(entry.peer_id, max_entries=self.max_entries)
                self._histories[entry.peer_id] = hist
                LOG.debug("new peer history: %s", entry.peer_id)
            hist.append(entry)
            return hist

    def get(self, peer_id: str) -> Optional[PeerLocationHistory]:
        with self._lock:
            return self._histories.get(peer_id)

    def remove(self, peer_id: str) -> bool:
        with self._lock:
            return self._histories.pop(peer_id, None) is not None

    def peers(self) -> List[str]:
        with self._lock:
            return sorted(self._histories)

    def cleanup_old_entries(self, max_age_minutes: int = 60, now_ms: Optional[int] = None) -> int:
        """Prune fixes older than `max_age_minutes`; drop peers left empty.

        Returns the number of fixes removed.
        """
        now = wall_clock_ms() if now_ms is None else int(now_ms)
        cutoff = now - int(max_age_minutes) * 60 * 1000
        removed = 0
        with self._lock:
            for peer_id in list(self._histories):
                hist = self._histories[peer_id]
                removed += hist.prune_older_than(cutoff)
                if len(hist) == 0:
                    del self._histories[peer_id]
        if removed:
            LOG.info("pruned %d stale fixes (cutoff=%d)", removed, cutoff)
        return removed


__all__ = ["HistoryStore"]
