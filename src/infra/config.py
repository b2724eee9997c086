from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from src.infra import paths
from src.predict.types import PredictionConfig, PredictionModel

LOG = logging.getLogger("infra.config")

_DEFAULTS: Dict[str, Any] = {
    "horizon_minutes": 5,
    "min_history_entries": 3,
    "max_history_age_minutes": 30,
    "model": "linear",
    "history_max_entries": 100,
    "particle_seed": None,
}


@dataclass(frozen=True)
class PredictionSettings:
    config: PredictionConfig = field(default_factory=PredictionConfig)
    model: PredictionModel = PredictionModel.LINEAR
    history_max_entries: int = 100
    particle_seed: Optional[int] = None


def _as_int(key: str, value: Any) -> int:
    # bool is an int subclass; `horizon_minutes: yes` is a typo, not 1.
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"prediction.{key} must be an integer, got {value!r}")
    return value


def settings_from_dict(raw: Optional[Dict[str, Any]]) -> PredictionSettings:
    """Build settings from the `prediction:` mapping; unknown keys are ignored."""
    section = dict(_DEFAULTS)
    if raw:
        if not isinstance(raw, dict):
            raise ValueError("prediction section must be a mapping")
        unknown = sorted(set(raw) - set(_DEFAULTS))
        if unknown:
            LOG.warning("ignoring unknown prediction keys: %s", ", ".join(unknown))
        section.update({k: v for k, v in raw.items() if k in _DEFAULTS})

    config = PredictionConfig(
        prediction_horizon_minutes=_as_int("horizon_minutes", section["horizon_minutes"]),
        min_history_entries=_as_int("min_history_entries", section["min_history_entries"]),
        max_history_age_minutes=_as_int("max_history_age_minutes", section["max_history_age_minutes"]),
    )
    cap = _as_int("history_max_entries", section["history_max_entries"])
    if cap < config.min_history_entries:
        raise ValueError("prediction.history_max_entries must be >= min_history_entries")
    seed = section["particle_seed"]
    if seed is not None:
        seed = _as_int("particle_seed", seed)
    return PredictionSettings(
        config=config,
        model=PredictionModel.parse(section["model"]),
        history_max_entries=cap,
        particle_seed=seed,
    )


def load_prediction_settings(path: Union[str, Path, None] = None) -> PredictionSettings:
    """Read `config.yaml` (repo root by default); a missing file means defaults.

    Raises:
        ValueError: malformed YAML structure or out-of-range values.
    """
    cfg_path = Path(path) if path is not None else paths.CONFIG_PATH
    if not cfg_path.exists():
        LOG.info("no config at %s; using defaults", cfg_path)
        return settings_from_dict(None)
    try:
        loaded = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"{cfg_path}: invalid YAML: {e}") from e
    if not isinstance(loaded, dict):
        raise ValueError(f"{cfg_path}: top level must be a mapping")
    return settings_from_dict(loaded.get("prediction"))


__all__ = ["PredictionSettings", "settings_from_dict", "load_prediction_settings"]
