from pathlib import Path

# Repo root (two levels above src/infra)
ROOT = Path(__file__).resolve().parents[2]

CONFIG_PATH = ROOT / "config.yaml"

# Common output locations
OUT = ROOT / "out"
PREDICTIONS = OUT / "predictions.jsonl"
METRICS = OUT / "metrics.json"
