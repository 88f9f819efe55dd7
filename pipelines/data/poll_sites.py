from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pandas as pd
from loguru import logger

from nyc_poll_sites.analysis.config import COLS
from nyc_poll_sites.config import BOROUGHS
from .io import read_any, require_columns, stdcols

TEXT_COLUMNS = [COLS.site_id, COLS.site_name, COLS.borough, COLS.street_number, COLS.street_name, COLS.city, COLS.postcode]


def coerce_poll_sites(df: pd.DataFrame) -> pd.DataFrame:
    out = stdcols(df)
    require_columns(out, COLS.poll_site_columns, "poll sites")
    for c in TEXT_COLUMNS:
        col = out[c].astype("string").str.strip()
        out[c] = col.mask(col.isin({"", "nan", "NaN", "None"}), pd.NA)
    out[COLS.borough] = out[COLS.borough].str.upper().str.replace(r"\s+", " ", regex=True)
    for c in (COLS.lat, COLS.lon):
        out[c] = pd.to_numeric(out[c], errors="coerce").astype(float)
    return out.reset_index(drop=True)


def load_poll_sites(path: Path) -> pd.DataFrame:
    # Text columns stay text: street numbers like "47-01" and ZIPs must not become floats.
    raw = read_any(Path(path), dtype={c: str for c in TEXT_COLUMNS})
    sites = coerce_poll_sites(raw)
    logger.info(f"Loaded {len(sites)} poll sites from {path}")
    return sites


def quality_report(df: pd.DataFrame, key: Optional[Sequence[str]] = None, name: str = "table") -> Dict:
    """
    Diagnostics only: full-row duplicates, duplicate keys, per-column missing counts.
    Geometry columns are skipped for the duplicate test.
    """
    plain = df.drop(columns=[c for c in df.columns if c == "geometry"])
    report: Dict = {
        "name": name,
        "rows": int(len(df)),
        "duplicate_rows": int(plain.duplicated().sum()),
        "missing": {c: int(v) for c, v in df.isna().sum().items() if v},
    }
    if key:
        key = list(key)
        report["key"] = key
        report["duplicate_keys"] = int(df.duplicated(subset=key).sum())

    logger.info(
        f"[quality] {name}: rows={report['rows']} duplicate_rows={report['duplicate_rows']}"
        + (f" duplicate_keys={report['duplicate_keys']}" if key else "")
    )
    if report["missing"]:
        logger.info(f"[quality] {name} missing values: {report['missing']}")
    return report


def poll_site_quality(sites: pd.DataFrame) -> Dict:
    report = quality_report(sites, key=[COLS.site_id], name="poll_sites")
    unknown: List[str] = sorted(set(sites[COLS.borough].dropna()) - set(BOROUGHS))
    report["unknown_boroughs"] = unknown
    if unknown:
        logger.warning(f"[quality] poll sites with unrecognized BOROUGH values: {unknown}")
    return report


def demographic_quality(demo: pd.DataFrame) -> Dict:
    """One record per (tract, variable) is expected; duplicates are reported, not removed."""
    report = quality_report(demo, key=[COLS.geoid, COLS.variable], name="demographics")
    if report["duplicate_keys"]:
        logger.warning(f"[quality] {report['duplicate_keys']} duplicate (GEOID, variable) demographic records")
    return report
