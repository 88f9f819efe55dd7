from __future__ import annotations

from contextlib import contextmanager
from typing import Dict, Iterator

import duckdb
import pandas as pd
from loguru import logger

from nyc_poll_sites.analysis.config import COLS


def _plain(df: pd.DataFrame) -> pd.DataFrame:
    """DuckDB cannot scan shapely objects; drop geometry before registering."""
    return pd.DataFrame(df.drop(columns=[c for c in df.columns if c == "geometry"]))


@contextmanager
def frames_db(**frames: pd.DataFrame) -> Iterator[duckdb.DuckDBPyConnection]:
    con = duckdb.connect()
    try:
        for name, df in frames.items():
            con.register(name, _plain(df))
        yield con
    finally:
        con.close()


def check_spatial_join(tracts: pd.DataFrame, sites: pd.DataFrame, joined: pd.DataFrame) -> Dict[str, int]:
    """
    Left join tracts -> poll sites:
      rows == sum over tracts of max(1, sites in tract), every tract kept,
      every poll site assigned to exactly one tract.
    """
    g, s = COLS.geoid, COLS.site_id
    with frames_db(tracts=tracts, sites=sites, joined=joined) as con:
        expected = con.execute(f"""
            SELECT COALESCE(SUM(GREATEST(n, 1)), 0) FROM (
                SELECT t.{g}, COUNT(j.{s}) AS n
                FROM tracts t
                LEFT JOIN joined j ON j.{g} = t.{g}
                GROUP BY t.{g}
            )
        """).fetchone()[0]
        rows = con.execute("SELECT COUNT(*) FROM joined").fetchone()[0]
        if rows != expected:
            raise ValueError(f"Spatial join produced {rows} rows; expected {expected} (one per site, one per empty tract).")

        dropped_tracts = con.execute(f"""
            SELECT COUNT(*) FROM tracts t
            WHERE NOT EXISTS (SELECT 1 FROM joined j WHERE j.{g} = t.{g})
        """).fetchone()[0]
        if dropped_tracts:
            raise ValueError(f"{dropped_tracts} tracts missing from the spatial join output.")

        unassigned = con.execute(f"""
            SELECT s.{s} FROM sites s
            WHERE NOT EXISTS (SELECT 1 FROM joined j WHERE j.{s} = s.{s})
        """).df()
        if not unassigned.empty:
            raise ValueError(
                f"{len(unassigned)} poll sites fell inside no tract polygon: "
                f"{unassigned[s].astype(str).head(20).tolist()}"
            )

        multi = con.execute(f"""
            SELECT {s}, COUNT(*) AS n FROM joined
            WHERE {s} IS NOT NULL
            GROUP BY {s} HAVING COUNT(*) > 1
        """).df()
        if not multi.empty:
            raise ValueError(f"{len(multi)} poll sites matched more than one tract: {multi[s].astype(str).head(20).tolist()}")

        empty = con.execute(f"SELECT COUNT(DISTINCT {g}) FROM joined WHERE {s} IS NULL").fetchone()[0]

    stats = {"rows": int(rows), "tracts": int(len(tracts)), "sites": int(len(sites)), "empty_tracts": int(empty)}
    logger.info(f"[sanity] spatial join ok: {stats}")
    return stats


def merge_crosstab(merged: pd.DataFrame, indicators=("in_spatial", "in_race", "in_income")) -> pd.DataFrame:
    """Distinct GEOIDs per combination of source flags (the 'in'-flag cross-tabulation)."""
    flags = ", ".join(indicators)
    with frames_db(merged=merged) as con:
        return con.execute(f"""
            SELECT {flags}, COUNT(DISTINCT {COLS.geoid}) AS tracts, COUNT(*) AS rows
            FROM merged
            GROUP BY {flags}
            ORDER BY {flags}
        """).df()


def check_merge_cardinality(
    spatial: pd.DataFrame,
    race: pd.DataFrame,
    income: pd.DataFrame,
    merged: pd.DataFrame,
) -> pd.DataFrame:
    """
    Full outer joins on GEOID must keep the union of identifiers, and each GEOID
    must appear exactly as often as in the spatial join (once if absent there).
    """
    g = COLS.geoid
    with frames_db(spatial=spatial, race=race, income=income, merged=merged) as con:
        dup = con.execute(f"""
            SELECT (SELECT COUNT(*) - COUNT(DISTINCT {g}) FROM race)
                 + (SELECT COUNT(*) - COUNT(DISTINCT {g}) FROM income)
        """).fetchone()[0]
        if dup:
            raise ValueError(f"Demographic tables are not one row per tract ({dup} extra rows).")

        mismatched = con.execute(f"""
            WITH ids AS (
                SELECT {g} FROM spatial UNION SELECT {g} FROM race UNION SELECT {g} FROM income
            ),
            expected AS (
                SELECT ids.{g}, GREATEST(COUNT(s.{g}), 1) AS n
                FROM ids LEFT JOIN spatial s ON s.{g} = ids.{g}
                GROUP BY ids.{g}
            ),
            actual AS (
                SELECT {g}, COUNT(*) AS n FROM merged GROUP BY {g}
            )
            SELECT e.{g}, e.n AS expected, COALESCE(a.n, 0) AS actual
            FROM expected e FULL OUTER JOIN actual a ON a.{g} = e.{g}
            WHERE COALESCE(a.n, 0) <> COALESCE(e.n, 0)
        """).df()
        if not mismatched.empty:
            raise ValueError(f"Demographic merge changed tract cardinality for {len(mismatched)} GEOIDs:\n{mismatched.head(20)}")

    table = merge_crosstab(merged)
    logger.info(f"[sanity] demographic merge ok:\n{table.to_string(index=False)}")
    return table


def check_collapse(merged: pd.DataFrame, summary: pd.DataFrame) -> None:
    g = COLS.geoid
    with frames_db(merged=merged, summary=summary) as con:
        n_ids, n_rows = con.execute(f"SELECT COUNT(DISTINCT {g}), COUNT(*) FROM summary").fetchone()
        expected = con.execute(f"SELECT COUNT(DISTINCT {g}) FROM merged").fetchone()[0]
    if n_rows != n_ids:
        raise ValueError(f"Tract summary has {n_rows} rows for {n_ids} tracts; collapse left duplicates.")
    if n_ids != expected:
        raise ValueError(f"Tract summary covers {n_ids} tracts; merged table had {expected}.")
    logger.info(f"[sanity] tract summary ok: {n_ids} tracts")
