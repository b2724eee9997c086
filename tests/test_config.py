from pathlib import Path

import pytest

from src.infra.config import load_prediction_settings
from src.predict.types import PredictionModel


def test_repo_config_loads():
    s = load_prediction_settings(Path(__file__).resolve().parents[1] / "config.yaml")
    assert s.model is PredictionModel.LINEAR
    assert s.config.prediction_horizon_minutes == 5
    assert s.config.min_history_entries == 3
    assert s.config.max_history_age_minutes == 30
    assert s.history_max_entries == 100
    assert s.particle_seed is None


def test_missing_file_falls_back_to_defaults(tmp_path: Path):
    s = load_prediction_settings(tmp_path / "nope.yaml")
    assert s.model is PredictionModel.LINEAR
    assert s.config.prediction_horizon_minutes == 5


def test_partial_section_overrides(tmp_path: Path):
    cfg = tmp_path / "config.yaml"
    cfg.write_text(
        "prediction:\n"
        "  horizon_minutes: 2\n"
        "  model: particle\n"
        "  particle_seed: 42\n"
        "other:\n"
        "  ignored: true\n",
        encoding="utf-8",
    )
    s = load_prediction_settings(cfg)
    assert s.config.prediction_horizon_minutes == 2
    assert s.config.min_history_entries == 3
    assert s.model is PredictionModel.PARTICLE_FILTER
    assert s.particle_seed == 42


@pytest.mark.parametrize(
    "body",
    [
        "prediction:\n  horizon_minutes: 0\n",
        "prediction:\n  horizon_minutes: five\n",
        "prediction:\n  min_history_entries: true\n",
        "prediction:\n  model: neural\n",
        "prediction:\n  history_max_entries: 2\n",
        "- just\n- a list\n",
        "prediction: [1, 2]\n",
        "prediction: {horizon_minutes: 5\n",
    ],
)
def test_bad_values_raise(tmp_path: Path, body):
    cfg = tmp_path / "config.yaml"
    cfg.write_text(body, encoding="utf-8")
    with pytest.raises(ValueError):
        load_prediction_settings(cfg)
