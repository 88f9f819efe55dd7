from pathlib import Path
from typing import Any, Dict, List

import pandas as pd

from .models import OlsResult


def build_summary(
    quality: Dict[str, Any],
    geocoding: Dict[str, Any],
    joins: Dict[str, Any],
    models: Dict[str, OlsResult],
) -> Dict[str, Any]:
    return {
        "quality": quality,
        "geocoding": geocoding,
        "joins": joins,
        "models": {k: v.as_dict() for k, v in models.items()},
    }


def _quality_lines(quality: Dict[str, Any]) -> List[str]:
    lines = []
    for name, q in quality.items():
        lines.append(
            f"- **{name}**: {q['rows']} rows, {q['duplicate_rows']} duplicate rows"
            + (f", {q['duplicate_keys']} duplicate keys ({', '.join(q['key'])})" if "key" in q else "")
        )
        for col, n in q.get("missing", {}).items():
            lines.append(f"  - `{col}` missing: {n}")
        if q.get("unknown_boroughs"):
            lines.append(f"  - unrecognized boroughs: {', '.join(q['unknown_boroughs'])}")
    return lines


def _coef_table(res: OlsResult) -> List[str]:
    lines = ["| term | coef | std err | t | P>\\|t\\| |", "|---|---:|---:|---:|---:|"]
    for term, coef in res.params.items():
        lines.append(
            f"| {term} | {coef:.6g} | {res.bse[term]:.4g} | {res.tvalues[term]:.3f} | {res.pvalues[term]:.4g} |"
        )
    return lines


def render_markdown(summary: Dict[str, Any], models: Dict[str, OlsResult], figures: List[Path]) -> str:
    geo = summary["geocoding"]
    joins = summary["joins"]
    out = ["# Poll sites and population by census tract, New York City", ""]

    out += ["## Data quality", ""] + _quality_lines(summary["quality"]) + [""]

    out += [
        "## Geocoding", "",
        f"- poll sites without coordinates: {geo['missing']}",
        f"- failed first pass: {geo['first_pass_failed']}",
        f"- corrected from the address table: {geo['corrected']}",
        f"- resolved: {geo['resolved']}",
    ]
    for bad, good in geo.get("corrections_applied", {}).items():
        out.append(f"  - `{bad}` -> `{good}`")
    out.append("")

    out += [
        "## Spatial join", "",
        f"- tracts: {joins['tracts']}",
        f"- poll sites: {joins['sites']}",
        f"- joined rows: {joins['rows']}",
        f"- tracts without a poll site: {joins['empty_tracts']}",
        f"- tracts in summary: {joins.get('summary_tracts', '')}",
        "",
    ]
    crosstab = joins.get("crosstab")
    if crosstab:
        table = pd.DataFrame(crosstab)
        out.append("| " + " | ".join(table.columns) + " |")
        out.append("|" + "---|" * len(table.columns))
        for row in table.itertuples(index=False):
            out.append("| " + " | ".join(str(v) for v in row) + " |")
        out.append("")

    out += ["## Regression models", ""]
    for key, res in models.items():
        out += [
            f"### {res.name}", "",
            f"n = {res.nobs}, R² = {res.rsquared:.4f}, adjusted R² = {res.rsquared_adj:.4f}, "
            f"F = {res.fvalue:.3f} (p = {res.f_pvalue:.4g})", "",
        ]
        out += [f"- {note}" for note in res.notes] + ([""] if res.notes else [])
        out += _coef_table(res) + [""]

    if figures:
        out += ["## Figures", ""]
        out += [f"![{p.stem}](figures/{p.name})" for p in figures]
        out.append("")
    return "\n".join(out)


def write_model_artifacts(models: Dict[str, OlsResult], out_dir: Path) -> Dict[str, Path]:
    """ols_summary_<model>.txt per model, read back by print_summary.py."""
    out_dir.mkdir(parents=True, exist_ok=True)
    paths = {}
    for key, res in models.items():
        p = out_dir / f"ols_summary_{key}.txt"
        p.write_text(res.summary, encoding="utf-8")
        paths[key] = p
    return paths
