"""Motion statistics shared by the prediction models.

Segment = the straight hop between two consecutive fixes. Every model derives
its speed/heading evidence from segments, so the GPS-glitch rules live here:

- dt <= 0                 -> dropped (duplicate or out-of-order timestamp)
- speed > 100 m/s         -> dropped (teleport / reacquisition jump)
- distance > 10_000 m     -> dropped
- non-finite distance     -> dropped (NaN or infinite coordinates)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from math import isfinite, sqrt
from typing import List, Optional, Sequence, Tuple

from src.track.history import PeerLocationEntry, PeerLocationHistory

from . import geodesy
from .types import PredictionConfig

LOG = logging.getLogger("predict.motion")

MAX_REASONABLE_SPEED_MPS = 100.0
MAX_SEGMENT_DISTANCE_M = 10_000.0
MAX_PREDICTION_DISTANCE_M = 50_000.0
MIN_MOVING_SPEED_MPS = 0.1

HEADING_UNC_BOUNDS = (1.0, 45.0)
SPEED_UNC_BOUNDS = (0.05, 0.5)
DEFAULT_HEADING_UNC_DEG = 15.0
DEFAULT_SPEED_UNC = 0.2


@dataclass(frozen=True)
class Segment:
    speed_mps: float
    heading_deg: float
    dt_s: float
    distance_m: float


@dataclass(frozen=True)
class SegmentStats:
    mean_speed: float
    speed_variance: float
    mean_heading: float
    heading_variance: float
    count: int


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def recent_window(
    history: PeerLocationHistory,
    config: PredictionConfig,
    now_ms: Optional[int],
    tag: str,
) -> Optional[List[PeerLocationEntry]]:
    """Recent fixes usable for prediction, or None when there are too few."""
    recent = history.recent_entries(config.max_history_age_minutes, now_ms=now_ms)
    if len(recent) < config.min_history_entries:
        LOG.debug("%s: peer %s has %d recent fixes (< %d)", tag, history.peer_id, len(recent), config.min_history_entries)
        return None
    if any(b.timestamp < a.timestamp for a, b in zip(recent, recent[1:])):
        LOG.error("%s: peer %s history is not chronological", tag, history.peer_id)
        return None
    return recent


def segments(entries: Sequence[PeerLocationEntry]) -> List[Segment]:
    """Consecutive-pair segments with GPS glitches removed."""
    out: List[Segment] = []
    for prev, cur in zip(entries, entries[1:]):
        dt = (cur.timestamp - prev.timestamp) / 1000.0
        if dt <= 0:
            continue
        d = geodesy.distance(prev.latitude, prev.longitude, cur.latitude, cur.longitude)
        if not isfinite(d):
            LOG.warning("segment rejected: non-finite fix at ts=%d", cur.timestamp)
            continue
        speed = d / dt
        if speed > MAX_REASONABLE_SPEED_MPS or d > MAX_SEGMENT_DISTANCE_M:
            LOG.warning(
                "segment rejected: %.0f m in %.2f s (%.1f m/s) at ts=%d",
                d, dt, speed, cur.timestamp,
            )
            continue
        brg = geodesy.bearing(prev.latitude, prev.longitude, cur.latitude, cur.longitude)
        out.append(Segment(speed, brg, dt, d))
    return out


def segment_stats(segs: Sequence[Segment]) -> Optional[SegmentStats]:
    if not segs:
        return None
    speeds = [s.speed_mps for s in segs]
    headings = [s.heading_deg for s in segs]
    mean_speed = sum(speeds) / len(speeds)
    speed_var = sum((v - mean_speed) ** 2 for v in speeds) / len(speeds)
    return SegmentStats(
        mean_speed=mean_speed,
        speed_variance=speed_var,
        mean_heading=geodesy.circular_mean(headings),
        heading_variance=geodesy.heading_variance(headings),
        count=len(segs),
    )


def uncertainties(stats: Optional[SegmentStats]) -> Tuple[float, float]:
    """(heading uncertainty in degrees, relative speed uncertainty).

    Fewer than two segments carry no spread information, so defaults apply.
    """
    if stats is None or stats.count < 2:
        return DEFAULT_HEADING_UNC_DEG, DEFAULT_SPEED_UNC
    heading_unc = _clamp(sqrt(stats.heading_variance), *HEADING_UNC_BOUNDS)
    if stats.mean_speed > 0.0:
        speed_unc = _clamp(sqrt(stats.speed_variance) / stats.mean_speed, *SPEED_UNC_BOUNDS)
    else:
        speed_unc = DEFAULT_SPEED_UNC
    return heading_unc, speed_unc


def filter_gps_jumps(entries: Sequence[PeerLocationEntry]) -> List[PeerLocationEntry]:
    """Drop fixes that could only be reached at an impossible speed.

    Each fix is compared with the last fix that was kept, so a single bad
    sample does not also take out the good sample after it. Fixes with
    non-finite coordinates are dropped outright.
    """
    usable = [e for e in entries if isfinite(e.latitude) and isfinite(e.longitude)]
    if len(usable) < len(entries):
        LOG.warning("dropped %d non-finite fixes", len(entries) - len(usable))
    if len(usable) < 2:
        return usable
    kept = [usable[0]]
    for cur in usable[1:]:
        prev = kept[-1]
        dt = (cur.timestamp - prev.timestamp) / 1000.0
        if dt <= 0:
            continue
        d = geodesy.distance(prev.latitude, prev.longitude, cur.latitude, cur.longitude)
        if d / dt > MAX_REASONABLE_SPEED_MPS:
            LOG.warning("GPS jump dropped: %.0f m in %.2f s at ts=%d", d, dt, cur.timestamp)
            continue
        kept.append(cur)
    return kept


def velocity_from_last_two(entries: Sequence[PeerLocationEntry]) -> Optional[Tuple[float, float]]:
    """(speed m/s, heading deg) between the two most recent fixes."""
    if len(entries) < 2:
        return None
    prev, cur = entries[-2], entries[-1]
    dt = (cur.timestamp - prev.timestamp) / 1000.0
    if dt <= 0:
        return None
    d = geodesy.distance(prev.latitude, prev.longitude, cur.latitude, cur.longitude)
    return d / dt, geodesy.bearing(prev.latitude, prev.longitude, cur.latitude, cur.longitude)


def validate_speed(speed: float, horizon_s: float, context: str) -> float:
    """Clamp a reported speed to plausible values for the given horizon."""
    if not isfinite(speed):
        LOG.warning("%s: invalid speed %s", context, speed)
        return 0.0
    out = speed
    if 0.0 < out < MIN_MOVING_SPEED_MPS:
        out = MIN_MOVING_SPEED_MPS
    if out > MAX_REASONABLE_SPEED_MPS:
        LOG.warning("%s: speed %.1f m/s capped at %.0f", context, out, MAX_REASONABLE_SPEED_MPS)
        out = MAX_REASONABLE_SPEED_MPS
    if horizon_s > 0 and out * horizon_s > MAX_PREDICTION_DISTANCE_M:
        out = MAX_PREDICTION_DISTANCE_M / horizon_s
        LOG.debug("%s: speed reduced to %.2f m/s to keep horizon distance <= %.0f m", context, out, MAX_PREDICTION_DISTANCE_M)
    return out


__all__ = [
    "Segment",
    "SegmentStats",
    "recent_window",
    "segments",
    "segment_stats",
    "uncertainties",
    "filter_gps_jumps",
    "velocity_from_last_two",
    "validate_speed",
]
