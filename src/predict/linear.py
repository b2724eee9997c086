"""Linear (moving-average) peer location prediction.

The peer is assumed to keep moving at the average speed and circular-mean
heading of its recent segments. Confidence is the mean of four factors, each
in [0, 1]:

- speed consistency     1 / (1 + var(speed) / mean(speed)^2)
- heading consistency   1 / (1 + var(heading) / 360)
- heading uncertainty   1 - heading_unc / 45
- speed uncertainty     1 - speed_unc
"""

from __future__ import annotations

import logging
from typing import Optional

from src.track.history import PeerLocationHistory, wall_clock_ms

from . import geodesy, motion
from .errors import DegenerateGeometryError, require_finite
from .types import LatLng, LocationPrediction, PredictionConfig, PredictionModel, VelocityVector

LOG = logging.getLogger("predict.linear")


def linear_confidence(stats: motion.SegmentStats) -> float:
    heading_unc, speed_unc = motion.uncertainties(stats)
    if stats.mean_speed > 0.0:
        speed_consistency = 1.0 / (1.0 + stats.speed_variance / (stats.mean_speed ** 2))
    else:
        # Every segment is stationary, which is perfectly consistent.
        speed_consistency = 1.0
    heading_consistency = 1.0 / (1.0 + stats.heading_variance / 360.0)
    heading_factor = 1.0 - heading_unc / motion.HEADING_UNC_BOUNDS[1]
    speed_factor = 1.0 - speed_unc
    conf = (speed_consistency + heading_consistency + heading_factor + speed_factor) / 4.0
    return max(0.0, min(1.0, conf))


def predict_linear(
    history: PeerLocationHistory,
    config: PredictionConfig,
    now_ms: Optional[int] = None,
) -> Optional[LocationPrediction]:
    """Forecast the peer's position `config.prediction_horizon_minutes` ahead.

    Returns None when there is not enough usable history or the geometry
    degenerates; never raises for data problems.
    """
    now = wall_clock_ms() if now_ms is None else int(now_ms)
    try:
        recent = motion.recent_window(history, config, now, "LINEAR")
        if recent is None:
            return None
        entries = motion.filter_gps_jumps(recent)
        if len(entries) < config.min_history_entries:
            LOG.warning(
                "LINEAR: peer %s has %d fixes after jump filtering (< %d)",
                history.peer_id, len(entries), config.min_history_entries,
            )
            return None

        stats = motion.segment_stats(motion.segments(entries))
        if stats is None:
            LOG.warning("LINEAR: peer %s has no usable segments", history.peer_id)
            return None

        require_finite("linear velocity", stats.mean_speed, stats.mean_heading)

        latest = entries[-1]
        horizon_s = config.horizon_seconds
        target = geodesy.destination(
            latest.latitude, latest.longitude, stats.mean_speed * horizon_s, stats.mean_heading
        )
        if target is None:
            LOG.warning("LINEAR: invalid projection for peer %s", history.peer_id)
            return None

        heading_unc, speed_unc = motion.uncertainties(stats)
        confidence = linear_confidence(stats)
        speed = motion.validate_speed(stats.mean_speed, horizon_s, "LINEAR")
        LOG.debug(
            "LINEAR: peer=%s segs=%d speed=%.2f heading=%.1f unc=(%.1f deg, %.0f%%) conf=%.2f",
            history.peer_id, stats.count, speed, stats.mean_heading, heading_unc, speed_unc * 100, confidence,
        )

        return LocationPrediction(
            peer_id=history.peer_id,
            predicted_location=LatLng(*target),
            predicted_timestamp=now,
            target_timestamp=recent[-1].timestamp + config.horizon_ms,
            confidence=confidence,
            velocity=VelocityVector(speed, stats.mean_heading, heading_unc),
            prediction_model=PredictionModel.LINEAR,
        )
    except DegenerateGeometryError as e:
        LOG.warning("LINEAR: %s", e)
        return None
    except Exception:
        LOG.exception("LINEAR: prediction failed for peer %s", history.peer_id)
        return None


__all__ = ["predict_linear", "linear_confidence"]
