from __future__ import annotations
import json, time
from pathlib import Path
from collections import deque
from typing import Deque, Dict, Optional

from src.infra import paths

LARGE_ERROR_M = 1000.0  # reported as "over_1km"


class RollingStats:
    """Rolling window of samples with nearest-rank p50/p95."""
    def __init__(self, maxlen: int = 500):
        self.values: Deque[float] = deque(maxlen=maxlen)

    def add(self, v: float) -> None:
        self.values.append(float(v))

    def __len__(self) -> int:
        return len(self.values)

    def percentile(self, q: float) -> Optional[float]:
        if not self.values: return None
        arr = sorted(self.values)
        return arr[int(q * (len(arr) - 1))]

    def mean(self) -> Optional[float]:
        if not self.values: return None
        return sum(self.values) / len(self.values)

    def p50(self) -> Optional[float]:
        return self.percentile(0.5)

    def p95(self) -> Optional[float]:
        return self.percentile(0.95)


class PredictionMetrics:
    """Per-model prediction latency, hit/miss counts (miss = no prediction) and
    prediction error: distance from the last prediction to the next actual fix."""
    def __init__(self, path: Path = paths.METRICS, window: int = 500):
        self.path = path
        self.window = window
        self.latency_ms: Dict[str, RollingStats] = {}
        self.predicted: Dict[str, int] = {}
        self.skipped: Dict[str, int] = {}
        self.error_m: Dict[str, RollingStats] = {}
        self.large_errors: Dict[str, int] = {}

    def record(self, model: str, ms: float, produced: bool) -> None:
        self.latency_ms.setdefault(model, RollingStats(self.window)).add(ms)
        bucket = self.predicted if produced else self.skipped
        bucket[model] = bucket.get(model, 0) + 1

    def record_error(self, model: str, error_m: float) -> None:
        self.error_m.setdefault(model, RollingStats(self.window)).add(error_m)
        if error_m > LARGE_ERROR_M:
            self.large_errors[model] = self.large_errors.get(model, 0) + 1

    def snapshot(self) -> dict:
        models = {}
        for name, stats in sorted(self.latency_ms.items()):
            models[name] = {
                "p50_ms": stats.p50(),
                "p95_ms": stats.p95(),
                "n": len(stats),
                "predicted": self.predicted.get(name, 0),
                "skipped": self.skipped.get(name, 0),
            }
        errors = {}
        for name, stats in sorted(self.error_m.items()):
            errors[name] = {
                "mean_m": stats.mean(),
                "p50_m": stats.p50(),
                "p95_m": stats.p95(),
                "n": len(stats),
                "over_1km": self.large_errors.get(name, 0),
            }
        return {"updated_ns": time.time_ns(), "prediction_latency": models, "prediction_error": errors}

    def flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self.snapshot(), indent=2), encoding="utf-8")


def measure_prediction(fn, *args, **kwargs):
    """Call fn and return (result, elapsed_ms)."""
    t0 = time.perf_counter()
    out = fn(*args, **kwargs)
    ms = (time.perf_counter() - t0) * 1000.0
    return out, ms
