"""Particle filter peer location prediction.

A swarm of weighted (position, velocity) hypotheses is replayed through the
recent track and then propagated over the horizon. It copes better than the
Kalman model with erratic movement because nothing assumes Gaussian errors.

Swarm lifecycle for one call:

1. Initial velocity from the last two fixes. 100 particles are spawned near
   the latest fix (±10 m), with ±0.5 m/s speed and ±10° heading jitter.
   Each particle is then rewound along its own velocity to the start of the
   replay window, so a particle whose velocity matches the track lands back
   on the latest fix once replay is done.
2. Replay: advance by v*dt, weight by exp(-d²/2σ²) (σ = 40 m) against the
   measured fix, renormalise (uniform reset on underflow) and resample
   (multinomial on cumulative weights) when the effective count 1/Σw² < 50.
3. Forecast: every particle moves by v*horizon; no reweighting.

The swarm is stored column-wise in numpy arrays; `particles()` gives the
per-particle view.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from math import atan2, cos, degrees, radians, sqrt
from typing import List, Optional, Sequence, Tuple

import numpy as np

from src.track.history import PeerLocationEntry, PeerLocationHistory, wall_clock_ms

from . import geodesy, motion
from .errors import DegenerateGeometryError, require_finite
from .types import LatLng, LocationPrediction, Particle, PredictionConfig, PredictionModel, VelocityVector

LOG = logging.getLogger("predict.particle")

N_PARTICLES = 100
POSITION_JITTER_M = 10.0
SPEED_JITTER_MPS = 0.5
HEADING_JITTER_DEG = 10.0
MEASUREMENT_SIGMA_M = 40.0
RESAMPLE_THRESHOLD = 50.0
MAX_SPREAD_M2 = 250_000.0


def _haversine_m(lat1: np.ndarray, lon1: np.ndarray, lat2, lon2) -> np.ndarray:
    """Vectorised great-circle distance (metres)."""
    p1 = np.radians(lat1)
    p2 = np.radians(lat2)
    dphi = p2 - p1
    dlmb = np.radians(np.asarray(lon2) - lon1)
    a = np.sin(dphi / 2.0) ** 2 + np.cos(p1) * np.cos(p2) * np.sin(dlmb / 2.0) ** 2
    a = np.clip(a, 0.0, 1.0)
    return geodesy.EARTH_RADIUS_M * 2.0 * np.arctan2(np.sqrt(a), np.sqrt(1.0 - a))


@dataclass
class ParticleSwarm:
    lat: np.ndarray
    lon: np.ndarray
    v_lat: np.ndarray  # deg/s
    v_lon: np.ndarray  # deg/s
    weight: np.ndarray
    ref_lat: float  # latitude the deg/s <-> m/s longitude scaling refers to
    resamples: int = field(default=0)

    def __len__(self) -> int:
        return int(self.lat.shape[0])

    def copy(self) -> "ParticleSwarm":
        return ParticleSwarm(
            self.lat.copy(), self.lon.copy(), self.v_lat.copy(), self.v_lon.copy(),
            self.weight.copy(), self.ref_lat, self.resamples,
        )

    def particles(self) -> List[Particle]:
        return [
            Particle(float(a), float(b), float(c), float(d), float(w))
            for a, b, c, d, w in zip(self.lat, self.lon, self.v_lat, self.v_lon, self.weight)
        ]

    def advance(self, dt: float) -> None:
        self.lat += self.v_lat * dt
        self.lon += self.v_lon * dt

    def advanced(self, dt: float) -> "ParticleSwarm":
        out = self.copy()
        out.advance(dt)
        return out

    def reweight(self, meas_lat: float, meas_lon: float, sigma_m: float = MEASUREMENT_SIGMA_M) -> None:
        d = _haversine_m(self.lat, self.lon, meas_lat, meas_lon)
        self.weight *= np.exp(-(d * d) / (2.0 * sigma_m * sigma_m))

    def normalize(self) -> bool:
        """Scale weights to sum to 1. Falls back to uniform; returns False then."""
        total = float(self.weight.sum())
        if total > 0.0 and np.isfinite(total):
            self.weight /= total
            return True
        LOG.debug("particle weights underflowed (total=%s); resetting to uniform", total)
        self.weight = np.full(len(self), 1.0 / len(self))
        return False

    def effective_count(self) -> float:
        return 1.0 / float(np.sum(self.weight * self.weight))

    def resample(self, rng: np.random.Generator) -> None:
        """Multinomial resampling by cumulative-weight selection."""
        n = len(self)
        cumulative = np.cumsum(self.weight)
        total = float(cumulative[-1])
        if not (total > 0.0 and np.isfinite(total)):
            self.weight = np.full(n, 1.0 / n)
            return
        draws = rng.uniform(0.0, total, size=n)
        idx = np.minimum(np.searchsorted(cumulative, draws, side="left"), n - 1)
        self.lat = self.lat[idx]
        self.lon = self.lon[idx]
        self.v_lat = self.v_lat[idx]
        self.v_lon = self.v_lon[idx]
        self.weight = np.full(n, 1.0 / n)
        self.resamples += 1

    def mean_position(self) -> Tuple[float, float]:
        w = self.weight / self.weight.sum()
        return float(np.dot(w, self.lat)), float(np.dot(w, self.lon))

    def mean_velocity_mps(self) -> Tuple[float, float]:
        """(speed m/s, heading deg) of the weighted mean velocity."""
        w = self.weight / self.weight.sum()
        north = float(np.dot(w, self.v_lat)) * geodesy.METERS_PER_DEG
        east = float(np.dot(w, self.v_lon)) * geodesy.METERS_PER_DEG * cos(radians(self.ref_lat))
        return sqrt(north * north + east * east), (degrees(atan2(east, north)) + 360.0) % 360.0

    def spread_m2(self) -> float:
        """Weighted mean squared distance from the weighted mean position."""
        mlat, mlon = self.mean_position()
        d = _haversine_m(self.lat, self.lon, mlat, mlon)
        w = self.weight / self.weight.sum()
        return float(np.dot(w, d * d))

    def all_finite(self) -> bool:
        return bool(
            np.all(np.isfinite(self.lat)) and np.all(np.isfinite(self.lon))
            and np.all(np.isfinite(self.v_lat)) and np.all(np.isfinite(self.v_lon))
        )


def spawn_swarm(
    entries: Sequence[PeerLocationEntry],
    rng: np.random.Generator,
    n: int = N_PARTICLES,
) -> Optional[ParticleSwarm]:
    vel = motion.velocity_from_last_two(entries)
    if vel is None:
        return None
    speed0, heading0 = vel
    latest = entries[-1]
    lat0, lon0 = latest.latitude, latest.longitude

    lat_jit = rng.uniform(-1.0, 1.0, n) * geodesy.meters_to_lat_deg(POSITION_JITTER_M)
    lon_jit = rng.uniform(-1.0, 1.0, n) * geodesy.meters_to_lon_deg(POSITION_JITTER_M, lat0)
    speeds = np.maximum(speed0 + rng.uniform(-SPEED_JITTER_MPS, SPEED_JITTER_MPS, n), 0.0)
    headings = np.radians(heading0 + rng.uniform(-HEADING_JITTER_DEG, HEADING_JITTER_DEG, n))
    v_lat = speeds * np.cos(headings) / geodesy.METERS_PER_DEG
    v_lon = speeds * np.sin(headings) / (geodesy.METERS_PER_DEG * cos(radians(lat0)))

    rewind_s = (latest.timestamp - entries[0].timestamp) / 1000.0
    return ParticleSwarm(
        lat=lat0 + lat_jit - v_lat * rewind_s,
        lon=lon0 + lon_jit - v_lon * rewind_s,
        v_lat=v_lat,
        v_lon=v_lon,
        weight=np.full(n, 1.0 / n),
        ref_lat=lat0,
    )


def replay(swarm: ParticleSwarm, entries: Sequence[PeerLocationEntry], rng: np.random.Generator) -> ParticleSwarm:
    """Sequential importance resampling over the recent fixes (in place)."""
    for prev, cur in zip(entries, entries[1:]):
        dt = (cur.timestamp - prev.timestamp) / 1000.0
        if dt <= 0:
            continue
        swarm.advance(dt)
        swarm.reweight(cur.latitude, cur.longitude)
        swarm.normalize()
        if swarm.effective_count() < RESAMPLE_THRESHOLD:
            swarm.resample(rng)
    return swarm


def particle_confidence(forecast: ParticleSwarm) -> float:
    return 1.0 - min(forecast.spread_m2() / MAX_SPREAD_M2, 1.0)


def predict_particle_filter(
    history: PeerLocationHistory,
    config: PredictionConfig,
    now_ms: Optional[int] = None,
    rng: Optional[np.random.Generator] = None,
) -> Optional[Tuple[LocationPrediction, ParticleSwarm]]:
    """Particle-filter forecast plus the replayed swarm at the latest fix.

    The swarm is returned because the particle cone needs the raw
    distribution. Pass a seeded `rng` for reproducible results.
    """
    now = wall_clock_ms() if now_ms is None else int(now_ms)
    rng = np.random.default_rng() if rng is None else rng
    try:
        recent = motion.recent_window(history, config, now, "PARTICLE")
        if recent is None:
            return None
        entries = motion.filter_gps_jumps(recent)
        if len(entries) < config.min_history_entries:
            LOG.warning(
                "PARTICLE: peer %s has %d fixes after jump filtering (< %d)",
                history.peer_id, len(entries), config.min_history_entries,
            )
            return None

        swarm = spawn_swarm(entries, rng)
        if swarm is None:
            LOG.warning("PARTICLE: no initial velocity for peer %s", history.peer_id)
            return None

        replay(swarm, entries, rng)
        if not swarm.all_finite():
            raise DegenerateGeometryError("particle swarm went non-finite during replay")

        forecast = swarm.advanced(config.horizon_seconds)
        if not forecast.all_finite():
            raise DegenerateGeometryError("particle swarm went non-finite during forecast")

        pred_lat, pred_lon = forecast.mean_position()
        speed, heading = forecast.mean_velocity_mps()
        require_finite("particle prediction", pred_lat, pred_lon, speed, heading)
        confidence = particle_confidence(forecast)
        require_finite("particle confidence", confidence)

        heading_unc, _ = motion.uncertainties(motion.segment_stats(motion.segments(entries)))
        speed = motion.validate_speed(speed, config.horizon_seconds, "PARTICLE")
        LOG.debug(
            "PARTICLE: peer=%s fixes=%d resamples=%d neff=%.1f speed=%.2f heading=%.1f conf=%.2f",
            history.peer_id, len(entries), swarm.resamples, swarm.effective_count(), speed, heading, confidence,
        )

        prediction = LocationPrediction(
            peer_id=history.peer_id,
            predicted_location=LatLng(pred_lat, geodesy.normalize_longitude(pred_lon)),
            predicted_timestamp=now,
            target_timestamp=recent[-1].timestamp + config.horizon_ms,
            confidence=confidence,
            velocity=VelocityVector(speed, heading, heading_unc),
            prediction_model=PredictionModel.PARTICLE_FILTER,
        )
        return prediction, swarm
    except DegenerateGeometryError as e:
        LOG.warning("PARTICLE: %s", e)
        return None
    except Exception:
        LOG.exception("PARTICLE: prediction failed for peer %s", history.peer_id)
        return None


__all__ = [
    "ParticleSwarm",
    "N_PARTICLES",
    "spawn_swarm",
    "replay",
    "particle_confidence",
    "predict_particle_filter",
]
