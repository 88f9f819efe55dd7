import numpy as np
import pandas as pd
from typing import List

from .config import COLS, RACE_EST_COLS, RACE_PCT_COLS

SUMMARY_COLUMNS: List[str] = (
    [COLS.geoid, COLS.estimate, COLS.poll_site_count, COLS.income_to_poverty, COLS.race_total]
    + RACE_PCT_COLS
    + RACE_EST_COLS
)


def count_poll_sites(merged: pd.DataFrame) -> pd.DataFrame:
    """
    poll_site_count = number of non-null SITE_NAME values per GEOID, so a tract that
    only carries the single null row from the left join counts 0, not 1.
    """
    df = merged.copy()
    df[COLS.poll_site_count] = df.groupby(COLS.geoid)[COLS.site_name].transform("count").astype(int)

    per_tract = df.groupby(COLS.geoid).agg(rows=(COLS.poll_site_count, "size"), n=(COLS.poll_site_count, "first"))
    empty = per_tract["n"] == 0
    if int(per_tract["n"].sum()) != int(per_tract["rows"].sum()) - int(empty.sum()):
        raise ValueError("Poll-site counts do not match the fan-out rows of the spatial join.")
    if (per_tract.loc[empty, "rows"] != 1).any():
        raise ValueError("A tract without poll sites appears on more than one row.")
    return df


def constant_within_tract(df: pd.DataFrame, cols: List[str]) -> List[str]:
    """Columns that take more than one value inside some GEOID group."""
    nunique = df.groupby(COLS.geoid)[cols].nunique(dropna=False)
    return [c for c in cols if (nunique[c] > 1).any()]


def collapse_to_tracts(counted: pd.DataFrame) -> pd.DataFrame:
    """
    One row per tract. Dropping duplicates is only valid because every kept column
    is constant within a tract, so that is checked first.
    """
    keep = [c for c in SUMMARY_COLUMNS if c in counted.columns]
    varying = constant_within_tract(counted, keep)
    if varying:
        raise ValueError(f"Tract-level fields vary within a GEOID and cannot be collapsed: {varying}")

    summary = pd.DataFrame(counted[keep]).drop_duplicates()
    summary = summary.sort_values(COLS.geoid).reset_index(drop=True)
    if len(summary) != counted[COLS.geoid].nunique():
        raise ValueError(
            f"Collapse produced {len(summary)} rows for {counted[COLS.geoid].nunique()} distinct tracts."
        )
    return summary


def check_race_totals(summary: pd.DataFrame, tol: float = 1e-6) -> None:
    est_sum = summary[RACE_EST_COLS].sum(axis=1, min_count=1).fillna(0).to_numpy(dtype=float)
    total = summary[COLS.race_total].fillna(0).to_numpy(dtype=float)
    if not np.allclose(est_sum, total, atol=tol):
        raise ValueError("Race estimates do not sum to the tract race total.")

    has_total = total > 0
    pct_sum = summary.loc[has_total, RACE_PCT_COLS].sum(axis=1).to_numpy(dtype=float)
    if not np.allclose(pct_sum, 100.0, atol=1e-4):
        raise ValueError("Race percentages do not sum to 100 for some tracts.")

    # percentages are estimate / total * 100 for each category
    for est, pct in zip(RACE_EST_COLS, RACE_PCT_COLS):
        expected = summary.loc[has_total, est].to_numpy(dtype=float) / total[has_total] * 100
        got = summary.loc[has_total, pct].to_numpy(dtype=float)
        if not np.allclose(np.nan_to_num(expected), np.nan_to_num(got), atol=1e-9):
            raise ValueError(f"{pct} is not {est} / race_total * 100.")


def model_frame(summary: pd.DataFrame, columns: List[str]) -> pd.DataFrame:
    """Complete cases over the response and every covariate."""
    frame = summary[[COLS.poll_site_count] + columns].apply(pd.to_numeric, errors="coerce")
    return frame.replace([np.inf, -np.inf], np.nan).dropna().astype(float)
