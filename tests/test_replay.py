import json
import logging
from pathlib import Path

from src.predict.replay import main

from conftest import straight_track


def _write_track(path: Path) -> None:
    lines = []
    for e in straight_track("alpha", n=5) + straight_track("bravo", n=5, heading_deg=90.0, lat0=48.0):
        lines.append(json.dumps({"peer_id": e.peer_id, "lat": e.latitude, "lon": e.longitude, "ts_ms": e.timestamp}))
    lines.insert(3, "not json at all")
    lines.insert(5, "still not json")
    lines.insert(7, json.dumps({"peer_id": "charlie", "lat": 1.0}))
    lines.insert(8, json.dumps([1, 2, 3]))
    lines.insert(9, json.dumps({"peer_id": "delta", "lat": 95.0, "lon": 0.0, "ts_ms": 1}))
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _write_config(path: Path, model: str) -> None:
    path.write_text(
        "prediction:\n"
        "  horizon_minutes: 5\n"
        "  min_history_entries: 3\n"
        "  max_history_age_minutes: 10\n"
        f"  model: {model}\n"
        "  particle_seed: 99\n",
        encoding="utf-8",
    )


def _rows(path: Path):
    return [json.loads(s) for s in path.read_text(encoding="utf-8").splitlines() if s.strip()]


def test_replay_writes_predictions_with_cones(tmp_path: Path, caplog):
    track = tmp_path / "track.jsonl"
    cfg = tmp_path / "config.yaml"
    out = tmp_path / "out" / "predictions.jsonl"
    metrics = tmp_path / "metrics.json"
    _write_track(track)
    _write_config(cfg, "linear")

    caplog.set_level(logging.WARNING)
    rc = main(["--track", str(track), "--out", str(out), "--config", str(cfg), "--metrics", str(metrics)])
    assert rc == 0

    rows = _rows(out)
    # fixes 3..5 of each peer produce a prediction
    assert len(rows) == 6
    assert {r["peer_id"] for r in rows} == {"alpha", "bravo"}
    for r in rows:
        assert r["model"] == "LINEAR"
        assert 0.0 <= r["confidence"] <= 1.0
        assert r["cone"] is not None
        assert len(r["cone"]["center"]) == len(r["cone"]["left"]) == len(r["cone"]["right"])

    # identical parse errors are reported once
    json_warnings = [m for m in caplog.messages if m.startswith("Skipping malformed JSON line: Expecting value")]
    assert len(json_warnings) == 1
    assert any("missing field" in m for m in caplog.messages)
    assert any("out of range" in m for m in caplog.messages)

    snap = json.loads(metrics.read_text(encoding="utf-8"))
    lin = snap["prediction_latency"]["LINEAR"]
    assert lin["n"] == 10
    assert lin["predicted"] == 6 and lin["skipped"] == 4

    # fixes 4..5 of each peer are scored against the forecast made one fix
    # earlier: 1500 m ahead of a peer that then moved 50 m
    err = snap["prediction_error"]["LINEAR"]
    assert err["n"] == 4
    assert abs(err["mean_m"] - 1450.0) < 10.0
    assert abs(err["p95_m"] - 1450.0) < 10.0


def test_seeded_particle_replay_is_reproducible(tmp_path: Path):
    track = tmp_path / "track.jsonl"
    cfg = tmp_path / "config.yaml"
    _write_track(track)
    _write_config(cfg, "particle")

    out_a = tmp_path / "a.jsonl"
    out_b = tmp_path / "b.jsonl"
    assert main(["--track", str(track), "--out", str(out_a), "--config", str(cfg)]) == 0
    assert main(["--track", str(track), "--out", str(out_b), "--config", str(cfg)]) == 0
    assert out_a.read_text(encoding="utf-8") == out_b.read_text(encoding="utf-8")
    assert all(r["model"] == "PARTICLE_FILTER" for r in _rows(out_a))


def test_model_override_and_missing_track(tmp_path: Path):
    track = tmp_path / "track.jsonl"
    cfg = tmp_path / "config.yaml"
    out = tmp_path / "p.jsonl"
    _write_track(track)
    _write_config(cfg, "linear")

    assert main(["--track", str(track), "--out", str(out), "--config", str(cfg), "--model", "kalman"]) == 0
    assert all(r["model"] == "KALMAN_FILTER" for r in _rows(out))

    assert main(["--track", str(tmp_path / "missing.jsonl"), "--out", str(out), "--config", str(cfg)]) == 2
    assert main(["--track", str(track), "--out", str(out), "--config", str(cfg), "--model", "ml"]) == 2
