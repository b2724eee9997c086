# src/predict/types.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from .geodesy import distance


class PredictionModel(str, Enum):
    LINEAR = "LINEAR"
    KALMAN_FILTER = "KALMAN_FILTER"
    PARTICLE_FILTER = "PARTICLE_FILTER"

    @classmethod
    def parse(cls, name: "str | PredictionModel") -> "PredictionModel":
        """Accept enum members, names ("KALMAN_FILTER") and short forms ("kalman")."""
        if isinstance(name, PredictionModel):
            return name
        key = str(name).strip().upper()
        aliases = {"KALMAN": "KALMAN_FILTER", "PARTICLE": "PARTICLE_FILTER"}
        key = aliases.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"unknown prediction model: {name}") from None


@dataclass(frozen=True)
class PredictionConfig:
    prediction_horizon_minutes: int = 5
    min_history_entries: int = 3
    max_history_age_minutes: int = 30

    def __post_init__(self) -> None:
        if int(self.prediction_horizon_minutes) < 1:
            raise ValueError("prediction_horizon_minutes must be >= 1")
        if int(self.min_history_entries) < 2:
            raise ValueError("min_history_entries must be >= 2")
        if int(self.max_history_age_minutes) < 1:
            raise ValueError("max_history_age_minutes must be >= 1")

    @property
    def horizon_seconds(self) -> float:
        return self.prediction_horizon_minutes * 60.0

    @property
    def horizon_ms(self) -> int:
        return int(self.prediction_horizon_minutes) * 60 * 1000


@dataclass(frozen=True)
class LatLng:
    lat: float
    lon: float

    def as_tuple(self) -> Tuple[float, float]:
        return (self.lat, self.lon)


@dataclass(frozen=True)
class VelocityVector:
    speed_mps: float
    heading_deg: float  # [0, 360)
    heading_uncertainty_deg: float


@dataclass(frozen=True)
class KalmanState:
    """Constant-velocity filter state in raw degree space.

    Velocities are deg/s; p_* are variances (deg² and (deg/s)²).
    """
    lat: float
    lon: float
    v_lat: float
    v_lon: float
    p_lat: float
    p_lon: float
    p_v_lat: float
    p_v_lon: float


@dataclass
class Particle:
    lat: float
    lon: float
    v_lat: float  # deg/s
    v_lon: float  # deg/s
    weight: float


@dataclass(frozen=True)
class LocationPrediction:
    peer_id: str
    predicted_location: LatLng
    predicted_timestamp: int  # ms, when the prediction was computed
    target_timestamp: int  # ms, latest fix + horizon
    confidence: float
    velocity: Optional[VelocityVector]
    prediction_model: PredictionModel = PredictionModel.LINEAR
    kalman_state: Optional[KalmanState] = None  # KALMAN_FILTER only

    def to_dict(self) -> dict:
        out = {
            "peer_id": self.peer_id,
            "model": self.prediction_model.value,
            "lat": self.predicted_location.lat,
            "lon": self.predicted_location.lon,
            "predicted_ts_ms": self.predicted_timestamp,
            "target_ts_ms": self.target_timestamp,
            "confidence": self.confidence,
        }
        if self.velocity is not None:
            out["velocity"] = {
                "mps": self.velocity.speed_mps,
                "heading_deg": self.velocity.heading_deg,
                "heading_unc_deg": self.velocity.heading_uncertainty_deg,
            }
        return out


@dataclass(frozen=True)
class ConfidenceCone:
    center_line: List[LatLng] = field(default_factory=list)
    left_boundary: List[LatLng] = field(default_factory=list)
    right_boundary: List[LatLng] = field(default_factory=list)
    confidence_level: float = 0.0
    max_distance_m: float = 0.0

    def half_widths(self) -> List[float]:
        """Half of the left-to-right span at each step, metres."""
        return [
            0.5 * (distance(c.lat, c.lon, l.lat, l.lon) + distance(c.lat, c.lon, r.lat, r.lon))
            for c, l, r in zip(self.center_line, self.left_boundary, self.right_boundary)
        ]

    def to_dict(self) -> dict:
        return {
            "center": [p.as_tuple() for p in self.center_line],
            "left": [p.as_tuple() for p in self.left_boundary],
            "right": [p.as_tuple() for p in self.right_boundary],
            "confidence": self.confidence_level,
            "max_distance_m": self.max_distance_m,
        }


__all__ = [
    "PredictionModel",
    "PredictionConfig",
    "LatLng",
    "VelocityVector",
    "KalmanState",
    "Particle",
    "LocationPrediction",
    "ConfidenceCone",
]
