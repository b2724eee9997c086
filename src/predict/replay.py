from __future__ import annotations

import argparse
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Set

import numpy as np

from src.infra import paths
from src.infra.config import PredictionSettings, load_prediction_settings
from src.predict import geodesy
from src.predict.interface import Predictor
from src.predict.types import LocationPrediction, PredictionModel
from src.track.history import PeerLocationEntry
from src.track.store import HistoryStore
from src.utils.metrics import PredictionMetrics, measure_prediction

# -----------------------------------------------------------------------------
# replay: feed a recorded track (JSONL) through the prediction engine.
#  - Input lines: {"peer_id": str, "lat": float, "lon": float, "ts_ms": int}
#    optional "alt", "speed", "track"
#  - One prediction attempt per peer after every accepted fix, evaluated at
#    the fix time so a replay is reproducible
#  - Output lines: prediction dict + "cone" (or null)
#  - Each new fix is scored against the peer's previous prediction (metres)
#  - Never crash on malformed input; warn once per error kind
# -----------------------------------------------------------------------------

LOG = logging.getLogger("predict.replay")


def _warn_once(warned: Set[str], msg: str) -> None:
    if msg not in warned:
        warned.add(msg)
        LOG.warning(msg)


def _opt_float(raw: Dict[str, Any], key: str) -> Optional[float]:
    v = raw.get(key)
    return None if v is None else float(v)


def parse_entry(raw: Dict[str, Any], warned: Set[str]) -> Optional[PeerLocationEntry]:
    """Validate one decoded line; None (plus a one-time warning) if unusable."""
    try:
        peer_id = str(raw["peer_id"])
        lat = float(raw["lat"])
        lon = float(raw["lon"])
        ts_ms = int(raw["ts_ms"])
    except KeyError as e:
        _warn_once(warned, f"Skipping track line: missing field {e}")
        return None
    except (TypeError, ValueError) as e:
        _warn_once(warned, f"Skipping track line: bad value ({e})")
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        _warn_once(warned, "Skipping track line: coordinates out of range")
        return None
    try:
        return PeerLocationEntry(
            peer_id=peer_id,
            latitude=lat,
            longitude=lon,
            timestamp=ts_ms,
            altitude=_opt_float(raw, "alt"),
            speed=_opt_float(raw, "speed"),
            track=_opt_float(raw, "track"),
        )
    except (TypeError, ValueError) as e:
        _warn_once(warned, f"Skipping track line: bad optional field ({e})")
        return None


def iter_track(path: Path, warned: Set[str]) -> Iterator[PeerLocationEntry]:
    with path.open("r", encoding="utf-8") as fp:
        for line in fp:
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError as e:
                _warn_once(warned, f"Skipping malformed JSON line: {e.msg}")
                continue
            if not isinstance(obj, dict):
                _warn_once(warned, "Skipping malformed JSON line: not an object")
                continue
            entry = parse_entry(obj, warned)
            if entry is not None:
                yield entry


def replay_track(
    track_path: str | Path,
    out_path: str | Path,
    settings: PredictionSettings,
    metrics: Optional[PredictionMetrics] = None,
) -> int:
    """Replay a track file and write predictions; returns the number written."""
    rng = np.random.default_rng(settings.particle_seed)
    predictor = Predictor(settings.model, rng=rng)
    store = HistoryStore(max_entries=settings.history_max_entries)
    config = settings.config
    metrics = metrics if metrics is not None else PredictionMetrics()
    warned: Set[str] = set()
    last_prediction: Dict[str, LocationPrediction] = {}

    out = Path(out_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    written = 0
    seen = 0
    with out.open("w", encoding="utf-8") as fp:
        for entry in iter_track(Path(track_path), warned):
            seen += 1
            history = store.record(entry)
            if history is None:
                continue
            previous = last_prediction.pop(entry.peer_id, None)
            if previous is not None:
                loc = previous.predicted_location
                error_m = geodesy.distance(loc.lat, loc.lon, entry.latitude, entry.longitude)
                metrics.record_error(previous.prediction_model.value, error_m)
                LOG.debug("replay: peer %s error %.0f m", entry.peer_id, error_m)
            prediction, ms = measure_prediction(predictor.predict, history, config, now_ms=entry.timestamp)
            metrics.record(settings.model.value, ms, prediction is not None)
            if prediction is None:
                continue
            last_prediction[entry.peer_id] = prediction
            cone = predictor.cone(prediction, history, config)
            row = prediction.to_dict()
            row["cone"] = cone.to_dict() if cone is not None else None
            fp.write(json.dumps(row) + "\n")
            written += 1

    stats = metrics.latency_ms.get(settings.model.value)
    LOG.info(
        "replay: %d fixes, %d peers, %d predictions (%s) p50=%s ms p95=%s ms",
        seen, len(store.peers()), written, settings.model.value,
        None if stats is None else round(stats.p50(), 3),
        None if stats is None else round(stats.p95(), 3),
    )
    errors = metrics.error_m.get(settings.model.value)
    if errors is not None:
        LOG.info(
            "replay: prediction error mean=%.0f m p50=%.0f m p95=%.0f m (n=%d)",
            errors.mean(), errors.p50(), errors.p95(), len(errors),
        )
    return written


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Replay a recorded peer track through the location predictor")
    p.add_argument("--track", type=str, required=True, help="Input JSONL of peer fixes")
    p.add_argument("--out", type=str, default=str(paths.PREDICTIONS), help="Output JSONL of predictions")
    p.add_argument("--config", type=str, default=str(paths.CONFIG_PATH), help="Path to config.yaml")
    p.add_argument("--model", type=str, default=None,
                   help="Override model: linear | kalman | particle")
    p.add_argument("--seed", type=int, default=None, help="Override particle filter seed")
    p.add_argument("--metrics", type=str, default=None, help="Write latency metrics JSON here")
    p.add_argument("--log-level", type=str, default="INFO", help="Logging level (e.g., INFO, DEBUG)")
    return p


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.INFO))

    try:
        settings = load_prediction_settings(args.config)
        overrides: Dict[str, Any] = {}
        if args.model is not None:
            overrides["model"] = PredictionModel.parse(args.model)
        if args.seed is not None:
            overrides["particle_seed"] = int(args.seed)
        if overrides:
            settings = replace(settings, **overrides)
    except ValueError as e:
        LOG.error("replay: bad configuration: %s", e)
        return 2

    track = Path(args.track)
    if not track.exists():
        LOG.error("replay: track file not found: %s", track)
        return 2

    metrics = PredictionMetrics(Path(args.metrics)) if args.metrics else PredictionMetrics()
    try:
        replay_track(track, args.out, settings, metrics)
    except OSError as e:
        LOG.error("replay failed: %s", e)
        return 2
    if args.metrics:
        metrics.flush()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
