"""Constant-velocity Kalman filter in raw lat/lon degree space.

State per axis is (position, velocity) with velocity in deg/s, so no
re-projection is needed between steps. Each axis is filtered independently:

    predict(dt):  pos += v * dt            posVar += velVar * dt^2
    update(z):    K = posVar / (posVar + R) pos += K * (z - pos)   posVar *= (1 - K)

There is no process-noise term, and the update corrects position only: the
velocity estimate and its variance are carried forward unchanged from the
two-fix initialisation.

Noise assumptions (1 sigma): GPS position 50 m, initial velocity 5 m/s.
Metres are converted to degrees with the longitude axis scaled by 1/cos(lat).
"""

from __future__ import annotations

import logging
from dataclasses import replace
from math import atan2, cos, degrees, radians, sin, sqrt
from typing import Optional, Sequence, Tuple

from src.track.history import PeerLocationEntry, PeerLocationHistory, wall_clock_ms

from . import geodesy, motion
from .errors import DegenerateGeometryError, require_finite
from .types import KalmanState, LatLng, LocationPrediction, PredictionConfig, PredictionModel, VelocityVector

LOG = logging.getLogger("predict.kalman")

POSITION_SIGMA_M = 50.0
VELOCITY_SIGMA_MPS = 5.0
MEASUREMENT_SIGMA_M = 50.0

MAX_POSITION_UNCERTAINTY_M = 1000.0
MAX_VELOCITY_UNCERTAINTY_MPS = 50.0


def _lat_scale() -> float:
    return geodesy.METERS_PER_DEG


def _lon_scale(lat_deg: float) -> float:
    return geodesy.METERS_PER_DEG * cos(radians(lat_deg))


def initial_state(entries: Sequence[PeerLocationEntry]) -> Optional[KalmanState]:
    """Seed the filter at the first fix with velocity from the last two fixes."""
    vel = motion.velocity_from_last_two(entries)
    if vel is None:
        return None
    speed, heading = vel
    first, latest = entries[0], entries[-1]
    lat_m = _lat_scale()
    lon_m = _lon_scale(latest.latitude)
    return KalmanState(
        lat=first.latitude,
        lon=first.longitude,
        v_lat=speed * cos(radians(heading)) / lat_m,
        v_lon=speed * sin(radians(heading)) / lon_m,
        p_lat=(POSITION_SIGMA_M / lat_m) ** 2,
        p_lon=(POSITION_SIGMA_M / lon_m) ** 2,
        p_v_lat=(VELOCITY_SIGMA_MPS / lat_m) ** 2,
        p_v_lon=(VELOCITY_SIGMA_MPS / lon_m) ** 2,
    )


def kalman_predict(state: KalmanState, dt: float) -> KalmanState:
    return replace(
        state,
        lat=state.lat + state.v_lat * dt,
        lon=state.lon + state.v_lon * dt,
        p_lat=state.p_lat + state.p_v_lat * dt * dt,
        p_lon=state.p_lon + state.p_v_lon * dt * dt,
    )


def kalman_update(state: KalmanState, measured_lat: float, measured_lon: float) -> KalmanState:
    r_lat = (MEASUREMENT_SIGMA_M / _lat_scale()) ** 2
    r_lon = (MEASUREMENT_SIGMA_M / _lon_scale(state.lat)) ** 2
    k_lat = state.p_lat / (state.p_lat + r_lat)
    k_lon = state.p_lon / (state.p_lon + r_lon)
    return replace(
        state,
        lat=state.lat + k_lat * (measured_lat - state.lat),
        lon=state.lon + k_lon * (measured_lon - state.lon),
        p_lat=(1.0 - k_lat) * state.p_lat,
        p_lon=(1.0 - k_lon) * state.p_lon,
    )


def replay(state: KalmanState, entries: Sequence[PeerLocationEntry]) -> KalmanState:
    """Run predict->update over every consecutive pair with dt > 0."""
    for prev, cur in zip(entries, entries[1:]):
        dt = (cur.timestamp - prev.timestamp) / 1000.0
        if dt <= 0:
            continue
        state = kalman_update(kalman_predict(state, dt), cur.latitude, cur.longitude)
    return state


def velocity_mps(state: KalmanState) -> Tuple[float, float]:
    """(speed m/s, heading deg [0, 360)) of the filter velocity."""
    north = state.v_lat * _lat_scale()
    east = state.v_lon * _lon_scale(state.lat)
    return sqrt(north * north + east * east), (degrees(atan2(east, north)) + 360.0) % 360.0


def position_variance_m2(state: KalmanState) -> Tuple[float, float]:
    """(north, east) position variances in m²."""
    return state.p_lat * _lat_scale() ** 2, state.p_lon * _lon_scale(state.lat) ** 2


def velocity_variance_m2(state: KalmanState) -> Tuple[float, float]:
    return state.p_v_lat * _lat_scale() ** 2, state.p_v_lon * _lon_scale(state.lat) ** 2


def cross_track_sigma_m(var_north: float, var_east: float, heading_deg: float) -> float:
    """1 sigma of a diagonal covariance along the axis perpendicular to heading."""
    h = radians(heading_deg)
    return sqrt(var_north * sin(h) ** 2 + var_east * cos(h) ** 2)


def heading_uncertainty(state: KalmanState) -> float:
    """Heading 1 sigma (deg) from the cross-track part of the velocity covariance."""
    speed, heading = velocity_mps(state)
    if speed < motion.MIN_MOVING_SPEED_MPS:
        return motion.HEADING_UNC_BOUNDS[1]
    sigma = cross_track_sigma_m(*velocity_variance_m2(state), heading)
    unc = degrees(atan2(sigma, speed))
    return max(motion.HEADING_UNC_BOUNDS[0], min(motion.HEADING_UNC_BOUNDS[1], unc))


def kalman_confidence(state: KalmanState) -> float:
    pos_unc = sqrt(sum(position_variance_m2(state)))
    vel_unc = sqrt(sum(velocity_variance_m2(state)))
    pos_conf = 1.0 - min(pos_unc / MAX_POSITION_UNCERTAINTY_M, 1.0)
    vel_conf = 1.0 - min(vel_unc / MAX_VELOCITY_UNCERTAINTY_MPS, 1.0)
    return (pos_conf + vel_conf) / 2.0


def predict_kalman_filter(
    history: PeerLocationHistory,
    config: PredictionConfig,
    now_ms: Optional[int] = None,
) -> Optional[LocationPrediction]:
    """Filter the recent track and forecast it over the configured horizon.

    The returned prediction carries the filtered state at the latest fix in
    `kalman_state`, which `generate_kalman_confidence_cone` propagates again.
    """
    now = wall_clock_ms() if now_ms is None else int(now_ms)
    try:
        recent = motion.recent_window(history, config, now, "KALMAN")
        if recent is None:
            return None
        entries = motion.filter_gps_jumps(recent)
        if len(entries) < config.min_history_entries:
            LOG.warning(
                "KALMAN: peer %s has %d fixes after jump filtering (< %d)",
                history.peer_id, len(entries), config.min_history_entries,
            )
            return None

        state = initial_state(entries)
        if state is None:
            LOG.warning("KALMAN: could not initialise state for peer %s", history.peer_id)
            return None

        filtered = replay(state, entries)
        forecast = kalman_predict(filtered, config.horizon_seconds)
        require_finite("kalman forecast", forecast.lat, forecast.lon, forecast.p_lat, forecast.p_lon)

        speed, heading = velocity_mps(forecast)
        require_finite("kalman velocity", speed, heading)
        speed = motion.validate_speed(speed, config.horizon_seconds, "KALMAN")
        confidence = kalman_confidence(forecast)
        heading_unc = heading_uncertainty(forecast)
        LOG.debug(
            "KALMAN: peer=%s fixes=%d pos=(%.6f, %.6f) speed=%.2f heading=%.1f conf=%.2f",
            history.peer_id, len(entries), forecast.lat, forecast.lon, speed, heading, confidence,
        )

        return LocationPrediction(
            peer_id=history.peer_id,
            predicted_location=LatLng(forecast.lat, geodesy.normalize_longitude(forecast.lon)),
            predicted_timestamp=now,
            target_timestamp=recent[-1].timestamp + config.horizon_ms,
            confidence=confidence,
            velocity=VelocityVector(speed, heading, heading_unc),
            prediction_model=PredictionModel.KALMAN_FILTER,
            kalman_state=filtered,
        )
    except DegenerateGeometryError as e:
        LOG.warning("KALMAN: %s", e)
        return None
    except Exception:
        LOG.exception("KALMAN: prediction failed for peer %s", history.peer_id)
        return None


__all__ = [
    "initial_state",
    "kalman_predict",
    "kalman_update",
    "replay",
    "velocity_mps",
    "heading_uncertainty",
    "kalman_confidence",
    "cross_track_sigma_m",
    "position_variance_m2",
    "predict_kalman_filter",
]
