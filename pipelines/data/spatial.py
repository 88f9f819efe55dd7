from __future__ import annotations

import geopandas as gpd
import pandas as pd
from loguru import logger

from nyc_poll_sites.analysis.config import CENSUS_VARS, COLS, RACE_EST_COLS, RaceCategory
from nyc_poll_sites.config import SITE_CRS
from .io import assert_same_crs, require_columns
from .sanity import check_merge_cardinality, check_spatial_join

SITE_FIELDS = [COLS.site_id, COLS.site_name, COLS.borough, COLS.address]


def poll_sites_to_points(sites: pd.DataFrame, crs=SITE_CRS) -> gpd.GeoDataFrame:
    """Point geometry from (Longitude, Latitude) in the CRS the coordinates were published in."""
    require_columns(sites, [COLS.lat, COLS.lon], "poll sites")
    missing = sites[COLS.lat].isna() | sites[COLS.lon].isna()
    if missing.any():
        raise ValueError(f"{int(missing.sum())} poll sites still lack coordinates; geocode before building points.")
    if crs is None:
        raise ValueError("A CRS is required to build poll-site points.")
    geom = gpd.points_from_xy(sites[COLS.lon].astype(float), sites[COLS.lat].astype(float), crs=crs)
    return gpd.GeoDataFrame(sites.copy(), geometry=geom, crs=crs)


def join_tracts_poll_sites(tracts: gpd.GeoDataFrame, points: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """
    Left point-in-polygon join keeping every tract: a tract with N sites yields N rows,
    a tract with none yields one row with null site fields.
    """
    assert_same_crs(tracts, points, "join_tracts_poll_sites")
    keep = [c for c in SITE_FIELDS if c in points.columns] + ["geometry"]
    joined = gpd.sjoin(tracts, points[keep], how="left", predicate="contains")
    joined = joined.drop(columns=["index_right"], errors="ignore")
    joined = joined.sort_values([COLS.geoid, COLS.site_id], na_position="last", kind="mergesort").reset_index(drop=True)
    check_spatial_join(tracts, points, joined)
    return joined


def pivot_race(demo: pd.DataFrame) -> pd.DataFrame:
    """
    Long race rows -> one row per tract: est_<category>, race_total and
    pct_<category> = estimate / race_total * 100 (NaN where race_total is 0).
    """
    race_codes = CENSUS_VARS.race
    rows = demo[demo[COLS.variable].isin(list(race_codes))].copy()
    rows["category"] = rows[COLS.variable].map(lambda v: race_codes[v].estimate_col)

    wide = rows.pivot(index=COLS.geoid, columns="category", values=COLS.estimate)
    wide = wide.reindex(columns=RACE_EST_COLS)
    wide.columns.name = None

    total = wide[RACE_EST_COLS].sum(axis=1, min_count=1)
    wide[COLS.race_total] = total
    safe_total = total.where(total > 0)
    for cat in RaceCategory:
        wide[cat.pct_col] = wide[cat.estimate_col] / safe_total * 100
    return wide.reset_index()


def income_table(demo: pd.DataFrame) -> pd.DataFrame:
    rows = demo[demo[COLS.variable] == CENSUS_VARS.income_to_poverty]
    out = rows[[COLS.geoid, COLS.estimate]].rename(columns={COLS.estimate: COLS.income_to_poverty})
    return out.reset_index(drop=True)


def merge_demographics(joined: pd.DataFrame, race: pd.DataFrame, income: pd.DataFrame) -> pd.DataFrame:
    """Full outer joins on GEOID, flagging which source each GEOID came from."""
    left = joined.assign(in_spatial=True)
    r = race.assign(in_race=True)
    i = income.assign(in_income=True)

    merged = left.merge(r, on=COLS.geoid, how="outer", validate="many_to_one")
    merged = merged.merge(i, on=COLS.geoid, how="outer", validate="many_to_one")
    for flag in ("in_spatial", "in_race", "in_income"):
        merged[flag] = merged[flag].fillna(False).astype(bool)

    merged = merged.sort_values([COLS.geoid, COLS.site_id], na_position="last", kind="mergesort").reset_index(drop=True)
    check_merge_cardinality(joined, race, income, merged)

    only_demo = int((~merged["in_spatial"]).sum())
    if only_demo:
        logger.warning(f"{only_demo} GEOIDs appear in the demographic tables but not in the tract layer")
    return merged

