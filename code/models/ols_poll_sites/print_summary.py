from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Dict

ARTIFACTS_DIR = Path(
    os.getenv("POLL_SITE_MODELS_DIR", Path(__file__).resolve().parents[3] / "reports" / "models")
)
MODELS = ("population", "full")


def load_metrics(artifacts_dir: Path = ARTIFACTS_DIR) -> Dict:
    metrics_path = artifacts_dir / "metrics.json"
    with metrics_path.open() as fh:
        return json.load(fh)


def parse_p_values(summary_text: str) -> Dict[str, float]:
    """term -> P>|t| from the coefficient block of a statsmodels OLS summary."""
    lines = summary_text.splitlines()
    header = next((i for i, line in enumerate(lines) if "P>|t|" in line), None)
    if header is None:
        return {}

    p_values: Dict[str, float] = {}
    # the header is followed by a dashed rule; rows run until the next "=" rule
    for line in lines[header + 2:]:
        row = line.strip()
        if not row or row.startswith("="):
            break
        term, *values = row.split()
        if len(values) != 6:
            continue
        try:
            p_values[term] = float(values[3])
        except ValueError:
            continue
    return p_values


def load_p_values(model: str, artifacts_dir: Path = ARTIFACTS_DIR) -> Dict[str, float]:
    summary_path = artifacts_dir / f"ols_summary_{model}.txt"
    with summary_path.open() as fh:
        return parse_p_values(fh.read())


def format_float(value: float) -> str:
    return f"{value:.3f}"


def main() -> None:
    metrics = load_metrics()
    models = metrics.get("models", {})

    print("Poll Sites vs. Population OLS Summary")
    print("=" * 40)
    geo = metrics.get("geocoding", {})
    print(f"Geocoded poll sites: {geo.get('resolved')}/{geo.get('missing')} "
          f"(corrected on retry: {geo.get('corrected')})")
    joins = metrics.get("joins", {})
    print(f"Tracts: {joins.get('summary_tracts')}  Poll sites: {joins.get('sites')}")

    for key in MODELS:
        if key not in models:
            continue
        m = models[key]
        print(f"\n{m['name']}")
        for stat in ("rsquared", "rsquared_adj", "fvalue", "f_pvalue"):
            print(f"  - {stat.replace('_', ' ')}: {format_float(m[stat])}")
        print(f"  - observations: {m['nobs']}")

        p_values = load_p_values(key)
        if p_values:
            print("  Coefficient P-Values:")
            for feature, p_value in p_values.items():
                print(f"    - {feature}: {format_float(p_value)}")


if __name__ == "__main__":
    main()
