"""Poll-site counts and the one-row-per-tract summary."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from nyc_poll_sites.analysis.config import RACE_EST_COLS, RACE_PCT_COLS
from nyc_poll_sites.analysis.features import (
    SUMMARY_COLUMNS,
    check_race_totals,
    collapse_to_tracts,
    constant_within_tract,
    count_poll_sites,
    model_frame,
)


def _merged_rows() -> pd.DataFrame:
    """Three tracts: two sites, one site, none (the single null row of a left join)."""
    race = {c: [10.0] * 4 for c in RACE_EST_COLS}
    pct = {c: [100.0 / len(RACE_PCT_COLS)] * 4 for c in RACE_PCT_COLS}
    return pd.DataFrame({
        "GEOID": ["36005000100", "36005000100", "36047000200", "36061000300"],
        "SITE_NUMBER": ["S1", "S2", "S3", None],
        "SITE_NAME": ["PS 1", "PS 2", "PS 3", None],
        "estimate": [1200.0, 1200.0, 800.0, 50.0],
        "income_to_poverty": [300.0, 300.0, 150.0, np.nan],
        "race_total": [80.0] * 4,
        **race,
        **pct,
    })


def test_count_poll_sites_counts_non_null_sites() -> None:
    counted = count_poll_sites(_merged_rows())

    counts = counted.groupby("GEOID")["poll_site_count"].first().to_dict()
    assert counts == {"36005000100": 2, "36047000200": 1, "36061000300": 0}
    assert len(counted) == 4


def test_collapse_to_tracts_gives_one_row_per_tract() -> None:
    summary = collapse_to_tracts(count_poll_sites(_merged_rows()))

    assert summary["GEOID"].tolist() == ["36005000100", "36047000200", "36061000300"]
    assert summary["poll_site_count"].tolist() == [2, 1, 0]
    assert list(summary.columns) == SUMMARY_COLUMNS
    assert "SITE_NAME" not in summary.columns
    # missing covariates stay missing
    assert pd.isna(summary.loc[2, "income_to_poverty"])


def test_collapse_to_tracts_rejects_varying_tract_fields() -> None:
    rows = _merged_rows()
    rows.loc[1, "estimate"] = 1300.0
    counted = count_poll_sites(rows)

    assert constant_within_tract(counted, ["estimate", "income_to_poverty"]) == ["estimate"]
    with pytest.raises(ValueError, match="vary within a GEOID"):
        collapse_to_tracts(counted)


def test_check_race_totals_accepts_consistent_summary() -> None:
    summary = collapse_to_tracts(count_poll_sites(_merged_rows()))
    check_race_totals(summary)


def test_check_race_totals_rejects_bad_percentages() -> None:
    summary = collapse_to_tracts(count_poll_sites(_merged_rows()))
    summary.loc[0, RACE_PCT_COLS[0]] += 5.0
    with pytest.raises(ValueError, match="sum to 100"):
        check_race_totals(summary)


def test_model_frame_keeps_complete_cases() -> None:
    summary = collapse_to_tracts(count_poll_sites(_merged_rows()))

    frame = model_frame(summary, ["estimate", "income_to_poverty"])

    assert len(frame) == 2
    assert list(frame.columns) == ["poll_site_count", "estimate", "income_to_poverty"]
    assert (frame.dtypes == float).all()
