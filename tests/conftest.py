from typing import Iterable, List, Optional, Sequence, Tuple

import pytest

from src.predict import geodesy
from src.track.history import PeerLocationEntry, PeerLocationHistory

T0_MS = 1_700_000_000_000
LAT0 = 52.0
LON0 = 13.0


def straight_track(
    peer_id: str = "peer-1",
    n: int = 5,
    step_m: float = 50.0,
    step_s: float = 10.0,
    heading_deg: float = 0.0,
    lat0: float = LAT0,
    lon0: float = LON0,
    t0_ms: int = T0_MS,
) -> List[PeerLocationEntry]:
    """n fixes moving step_m every step_s seconds along a constant heading."""
    out = []
    lat, lon = lat0, lon0
    for i in range(n):
        out.append(PeerLocationEntry(peer_id, lat, lon, t0_ms + int(i * step_s * 1000)))
        lat, lon = geodesy.destination(lat, lon, step_m, heading_deg)
    return out


def track_from_legs(
    legs: Sequence[Tuple[float, float]],
    peer_id: str = "peer-1",
    step_s: float = 10.0,
    lat0: float = LAT0,
    lon0: float = LON0,
    t0_ms: int = T0_MS,
) -> List[PeerLocationEntry]:
    """Fixes produced by walking (distance_m, heading_deg) legs, one per step."""
    out = [PeerLocationEntry(peer_id, lat0, lon0, t0_ms)]
    lat, lon = lat0, lon0
    for i, (dist, brg) in enumerate(legs, start=1):
        lat, lon = geodesy.destination(lat, lon, dist, brg)
        out.append(PeerLocationEntry(peer_id, lat, lon, t0_ms + int(i * step_s * 1000)))
    return out


def history_of(entries: Iterable[PeerLocationEntry], peer_id: Optional[str] = None) -> PeerLocationHistory:
    entries = list(entries)
    hist = PeerLocationHistory(peer_id or entries[0].peer_id)
    for e in entries:
        hist.append(e)
    return hist


@pytest.fixture
def north_history() -> PeerLocationHistory:
    # 5 fixes over 40 s, due north at 5 m/s
    return history_of(straight_track())
