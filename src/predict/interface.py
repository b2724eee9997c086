# src/predict/interface.py
from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Dict, Iterable, Optional, Union

import numpy as np

from src.track.history import PeerLocationHistory

from .types import ConfidenceCone, LocationPrediction, PredictionConfig, PredictionModel

if TYPE_CHECKING:
    from .particle import ParticleSwarm

LOG = logging.getLogger("predict.interface")

ModelName = Union[str, PredictionModel]


class Predictor:
    """One prediction model plus its matching cone generator.

    The particle model keeps the swarm from the last `predict` per peer so
    that `cone` can use the raw distribution.
    """

    def __init__(self, model: ModelName = "linear", rng: Optional[np.random.Generator] = None):
        self.model = PredictionModel.parse(model)
        self.rng = rng
        self._swarms: Dict[str, ParticleSwarm] = {}
        self._lock = threading.Lock()
        if self.model is PredictionModel.LINEAR:
            from .linear import predict_linear
            self._impl = predict_linear
        elif self.model is PredictionModel.KALMAN_FILTER:
            from .kalman import predict_kalman_filter
            self._impl = predict_kalman_filter
        elif self.model is PredictionModel.PARTICLE_FILTER:
            from .particle import predict_particle_filter
            self._impl = predict_particle_filter
        else:  # pragma: no cover - parse() rejects anything else
            raise ValueError(f"unknown prediction model: {model}")

    def predict(
        self,
        history: PeerLocationHistory,
        config: PredictionConfig,
        now_ms: Optional[int] = None,
    ) -> Optional[LocationPrediction]:
        """Return the model's prediction for `history`, or None."""
        if self.model is not PredictionModel.PARTICLE_FILTER:
            return self._impl(history, config, now_ms=now_ms)
        out = self._impl(history, config, now_ms=now_ms, rng=self.rng)
        with self._lock:
            if out is None:
                self._swarms.pop(history.peer_id, None)
                return None
            prediction, swarm = out
            self._swarms[history.peer_id] = swarm
        return prediction

    def cone(
        self,
        prediction: LocationPrediction,
        history: PeerLocationHistory,
        config: PredictionConfig,
    ) -> Optional[ConfidenceCone]:
        """Cone for `prediction` from the generator matching its model.

        Falls back to the generic cone when the model-specific state (filter
        state or swarm) is not available.
        """
        from . import cone as cones

        kind = prediction.prediction_model
        out: Optional[ConfidenceCone] = None
        if kind is PredictionModel.LINEAR:
            out = cones.generate_linear_confidence_cone(prediction, history, config)
        elif kind is PredictionModel.KALMAN_FILTER:
            if prediction.kalman_state is not None:
                out = cones.generate_kalman_confidence_cone(prediction, config)
        elif kind is PredictionModel.PARTICLE_FILTER:
            with self._lock:
                swarm = self._swarms.get(prediction.peer_id)
            if swarm is not None:
                out = cones.generate_particle_confidence_cone(prediction, swarm, config)
        if out is None:
            LOG.debug("no %s cone for peer %s; using generic cone", kind.value, prediction.peer_id)
            out = cones.generate_confidence_cone(prediction, history, config)
        return out

    def forget(self, peer_id: str) -> None:
        with self._lock:
            self._swarms.pop(peer_id, None)

    def retain(self, peer_ids: Iterable[str]) -> int:
        """Drop kept swarms of peers not in `peer_ids`; returns how many went.

        Call with `HistoryStore.peers()` after pruning so swarms do not
        outlive their histories.
        """
        keep = set(peer_ids)
        with self._lock:
            stale = [p for p in self._swarms if p not in keep]
            for p in stale:
                del self._swarms[p]
        if stale:
            LOG.debug("dropped %d particle swarms", len(stale))
        return len(stale)
