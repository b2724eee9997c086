# src/predict/errors.py
"""Failure kinds inside the prediction engine.

None of these escape a `predict_*` call: each model converts them into a
"no prediction this cycle" result (``None``) and logs why.
"""

from __future__ import annotations

from math import isfinite


class PredictionError(Exception):
    pass


class DegenerateGeometryError(PredictionError):
    """Geodesy or filter math produced NaN/inf."""


def require_finite(what: str, *vals: float) -> None:
    if not all(isfinite(v) for v in vals):
        raise DegenerateGeometryError(f"non-finite {what}: {vals}")


__all__ = ["PredictionError", "DegenerateGeometryError", "require_finite"]
