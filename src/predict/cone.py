"""Confidence cone geometry.

Every generator walks ``CONE_STEPS`` equal increments from the latest fix to
the horizon and returns index-aligned centre/left/right polylines
(``CONE_STEPS + 1`` points each). A generator returns None rather than a cone
with a missing or non-finite point.
"""

from __future__ import annotations

import logging
from math import atan, cos, degrees, isfinite, radians, sin, sqrt
from typing import List, Optional

import numpy as np

from src.track.history import PeerLocationHistory

from . import geodesy, kalman, motion
from .particle import ParticleSwarm
from .types import ConfidenceCone, LatLng, LocationPrediction, PredictionConfig

LOG = logging.getLogger("predict.cone")

CONE_STEPS = 10
GENERIC_ANGLE_BOUNDS = (5.0, 45.0)
LINEAR_ANGLE_BOUNDS = (2.0, 60.0)
LINEAR_SPEED_SIGMA = 2.0
KALMAN_SIGMA = 2.0
PARTICLE_PERCENTILES = (0.10, 0.90)


class _ConeBuilder:
    """Collects cone points; `ok` goes False on the first unusable point."""

    def __init__(self) -> None:
        self.center: List[LatLng] = []
        self.left: List[LatLng] = []
        self.right: List[LatLng] = []
        self.ok = True

    def add(self, center, left, right) -> None:
        if center is None or left is None or right is None:
            self.ok = False
            return
        self.center.append(LatLng(*center))
        self.left.append(LatLng(*left))
        self.right.append(LatLng(*right))

    def build(self, confidence: float, max_distance_m: float, tag: str, peer_id: str) -> Optional[ConfidenceCone]:
        if not self.ok or len(self.center) != CONE_STEPS + 1:
            LOG.warning("%s: cone for peer %s has an invalid point", tag, peer_id)
            return None
        LOG.debug("%s: cone for peer %s, %d points, max %.0f m", tag, peer_id, len(self.center), max_distance_m)
        return ConfidenceCone(self.center, self.left, self.right, confidence, max_distance_m)


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def _finite_point(lat: float, lon: float) -> Optional[geodesy.LatLon]:
    if not (isfinite(lat) and isfinite(lon)):
        return None
    return lat, lon


def _progress():
    return (i / CONE_STEPS for i in range(CONE_STEPS + 1))


def generic_cone_angle(confidence: float, heading_unc_deg: float, progress: float) -> float:
    angle = heading_unc_deg * (1.0 + 0.5 * progress) * 2.0 * (1.0 - confidence)
    return _clamp(angle, *GENERIC_ANGLE_BOUNDS)


def linear_cone_angle(heading_unc_deg: float, speed_unc: float, speed_mps: float, progress: float) -> float:
    """Heading and speed uncertainty combined in quadrature, widening with progress."""
    speed_angle = atan(speed_unc) if speed_mps > motion.MIN_MOVING_SPEED_MPS else 0.0
    total = sqrt(radians(heading_unc_deg) ** 2 + speed_angle ** 2)
    return _clamp(degrees(total) * (1.0 + 0.3 * progress), *LINEAR_ANGLE_BOUNDS)


def generate_confidence_cone(
    prediction: LocationPrediction,
    history: PeerLocationHistory,
    config: PredictionConfig,
) -> Optional[ConfidenceCone]:
    """Model-agnostic cone from the prediction's velocity and confidence."""
    latest = history.latest_entry()
    velocity = prediction.velocity
    if latest is None or velocity is None:
        return None

    b = _ConeBuilder()
    for p in _progress():
        dist = velocity.speed_mps * p * config.horizon_seconds
        angle = generic_cone_angle(prediction.confidence, velocity.heading_uncertainty_deg, p)
        b.add(
            geodesy.destination(latest.latitude, latest.longitude, dist, velocity.heading_deg),
            geodesy.destination(latest.latitude, latest.longitude, dist, velocity.heading_deg - angle),
            geodesy.destination(latest.latitude, latest.longitude, dist, velocity.heading_deg + angle),
        )
    return b.build(prediction.confidence, velocity.speed_mps * config.horizon_seconds, "CONE", prediction.peer_id)


def generate_linear_confidence_cone(
    prediction: LocationPrediction,
    history: PeerLocationHistory,
    config: PredictionConfig,
) -> Optional[ConfidenceCone]:
    """Cone whose length spans the 2-sigma speed interval.

    The centre runs from the 2-sigma-low distance to the predicted distance;
    the boundaries run from the low to the high distance at ± the linear
    cone angle. Uncertainties are recomputed from the same recent window the
    prediction used (anchored at `prediction.predicted_timestamp`), with GPS
    jumps removed.
    """
    velocity = prediction.velocity
    if velocity is None:
        return None
    recent = motion.recent_window(history, config, prediction.predicted_timestamp, "LINEAR_CONE")
    if recent is None:
        return None
    entries = motion.filter_gps_jumps(recent)
    if not entries:
        return None
    heading_unc, speed_unc = motion.uncertainties(motion.segment_stats(motion.segments(entries)))
    origin = entries[-1]

    horizon_s = config.horizon_seconds
    speed = velocity.speed_mps
    predicted_dist = speed * horizon_s
    max_dist = (speed + LINEAR_SPEED_SIGMA * speed * speed_unc) * horizon_s
    min_dist = max(0.0, speed - LINEAR_SPEED_SIGMA * speed * speed_unc) * horizon_s

    b = _ConeBuilder()
    for p in _progress():
        edge_dist = min_dist + (max_dist - min_dist) * p
        center_dist = min_dist + (predicted_dist - min_dist) * p
        angle = linear_cone_angle(heading_unc, speed_unc, speed, p)
        b.add(
            geodesy.destination(origin.latitude, origin.longitude, center_dist, velocity.heading_deg),
            geodesy.destination(origin.latitude, origin.longitude, edge_dist, velocity.heading_deg - angle),
            geodesy.destination(origin.latitude, origin.longitude, edge_dist, velocity.heading_deg + angle),
        )
    return b.build(prediction.confidence, max_dist, "LINEAR_CONE", prediction.peer_id)


def generate_kalman_confidence_cone(
    prediction: LocationPrediction,
    config: PredictionConfig,
) -> Optional[ConfidenceCone]:
    """Cone from the covariance of the attached filter state.

    Each step re-runs the predict step from the filtered state; the
    boundaries sit 2 sigma of the cross-track position covariance either side
    of the filter track.
    """
    state = prediction.kalman_state
    if state is None:
        LOG.debug("KALMAN_CONE: prediction for peer %s has no filter state", prediction.peer_id)
        return None

    b = _ConeBuilder()
    for p in _progress():
        step = kalman.kalman_predict(state, p * config.horizon_seconds)
        _, heading = kalman.velocity_mps(step)
        sigma = kalman.cross_track_sigma_m(*kalman.position_variance_m2(step), heading)
        center = (step.lat, geodesy.normalize_longitude(step.lon))
        b.add(
            _finite_point(*center),
            geodesy.offset_point(*center, heading, -KALMAN_SIGMA * sigma),
            geodesy.offset_point(*center, heading, KALMAN_SIGMA * sigma),
        )
    if not b.ok:
        return b.build(prediction.confidence, 0.0, "KALMAN_CONE", prediction.peer_id)
    first, last = b.center[0], b.center[-1]
    max_dist = geodesy.distance(first.lat, first.lon, last.lat, last.lon)
    return b.build(prediction.confidence, max_dist, "KALMAN_CONE", prediction.peer_id)


def _cross_track_m(swarm: ParticleSwarm, mean_lat: float, mean_lon: float, heading_deg: float) -> np.ndarray:
    """Signed offsets (m, positive = right of heading) of each particle from the mean."""
    north = (swarm.lat - mean_lat) * geodesy.METERS_PER_DEG
    east = (swarm.lon - mean_lon) * geodesy.METERS_PER_DEG * cos(radians(mean_lat))
    h = radians(heading_deg)
    return east * cos(h) - north * sin(h)


def generate_particle_confidence_cone(
    prediction: LocationPrediction,
    swarm: Optional[ParticleSwarm],
    config: PredictionConfig,
) -> Optional[ConfidenceCone]:
    """Empirical cone from the replayed swarm.

    At each step the swarm is propagated, the weighted mean becomes the centre
    point, and the weighted 10th/90th percentiles of the cross-track offsets
    (perpendicular to the predicted heading) give the boundaries.
    """
    velocity = prediction.velocity
    if swarm is None or len(swarm) == 0 or velocity is None:
        return None
    heading = velocity.heading_deg
    lo_p, hi_p = PARTICLE_PERCENTILES

    b = _ConeBuilder()
    for p in _progress():
        step = swarm.advanced(p * config.horizon_seconds)
        if not step.all_finite():
            b.add(None, None, None)
            break
        mlat, mlon = step.mean_position()
        offsets = _cross_track_m(step, mlat, mlon, heading).tolist()
        weights = step.weight.tolist()
        lo = geodesy.weighted_percentile(offsets, weights, lo_p)
        hi = geodesy.weighted_percentile(offsets, weights, hi_p)
        center = _finite_point(mlat, mlon)
        b.add(
            center,
            geodesy.offset_point(mlat, mlon, heading, lo),
            geodesy.offset_point(mlat, mlon, heading, hi),
        )
    if not b.ok:
        return b.build(prediction.confidence, 0.0, "PARTICLE_CONE", prediction.peer_id)
    first, last = b.center[0], b.center[-1]
    max_dist = geodesy.distance(first.lat, first.lon, last.lat, last.lon)
    return b.build(prediction.confidence, max_dist, "PARTICLE_CONE", prediction.peer_id)


__all__ = [
    "CONE_STEPS",
    "generic_cone_angle",
    "linear_cone_angle",
    "generate_confidence_cone",
    "generate_linear_confidence_cone",
    "generate_kalman_confidence_cone",
    "generate_particle_confidence_cone",
]
