from __future__ import annotations

from typing import Iterable, List, Optional

import geopandas as gpd
import pandas as pd
import requests
from loguru import logger

from nyc_poll_sites.analysis.config import CENSUS_VARS, COLS
from nyc_poll_sites.config import (
    ACS_DATASET,
    ACS_YEAR,
    BOROUGH_COUNTY_FIPS,
    CENSUS_API_BASE_URL,
    CENSUS_API_KEY,
    STATE_FIPS,
    TRACT_SHAPES_URL,
)
from .io import ensure_crs, require_columns
from .keys import build_tract_geoid, county_from_geoid, normalize_tract_geoid

NYC_COUNTIES: List[str] = list(BOROUGH_COUNTY_FIPS.values())


def fetch_acs_tracts(
    variables: Iterable[str],
    year: int = ACS_YEAR,
    state: str = STATE_FIPS,
    counties: Iterable[str] = NYC_COUNTIES,
    api_key: Optional[str] = CENSUS_API_KEY,
    timeout: int = 60,
) -> pd.DataFrame:
    """
    Tract-level ACS estimates in long format: GEOID, NAME, variable, estimate, moe.
    One request per county; any HTTP failure is fatal.
    """
    variables = list(variables)
    fields = []
    for v in variables:
        fields += [f"{v}E", f"{v}M"]
    url = f"{CENSUS_API_BASE_URL}/{year}/{ACS_DATASET}"

    frames = []
    for county in counties:
        params = {
            "get": ",".join(["NAME"] + fields),
            "for": "tract:*",
            "in": f"state:{state} county:{county}",
        }
        if api_key:
            params["key"] = api_key

        logger.info(f"Fetching ACS {year} tracts: state={state} county={county} variables={len(variables)}")
        try:
            response = requests.get(url, params=params, timeout=timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Census API request failed: {e}")
            raise

        if not data or len(data) < 2:
            raise ValueError(f"No rows returned from Census API for county {county}: {url}")
        frames.append(pd.DataFrame(data[1:], columns=data[0]))

    wide = pd.concat(frames, ignore_index=True)
    return acs_wide_to_long(wide, variables)


def acs_wide_to_long(wide: pd.DataFrame, variables: Iterable[str]) -> pd.DataFrame:
    variables = list(variables)
    require_columns(wide, ["state", "county", "tract", "NAME"], "ACS response")
    geoid = build_tract_geoid(wide["state"], wide["county"], wide["tract"])

    require_columns(wide, [f"{v}E" for v in variables], "ACS response")

    rows = []
    for v in variables:
        moe = wide[f"{v}M"] if f"{v}M" in wide.columns else pd.Series(float("nan"), index=wide.index)
        rows.append(pd.DataFrame({
            COLS.geoid: geoid,
            COLS.name: wide["NAME"],
            COLS.variable: v,
            COLS.estimate: pd.to_numeric(wide[f"{v}E"], errors="coerce").astype(float),
            COLS.moe: pd.to_numeric(moe, errors="coerce").astype(float),
        }))
    long = pd.concat(rows, ignore_index=True)

    # ACS encodes suppressed values with large negative sentinels (-666666666 etc.)
    for c in (COLS.estimate, COLS.moe):
        long.loc[long[c] < 0, c] = float("nan")
    return long.sort_values([COLS.geoid, COLS.variable]).reset_index(drop=True)


def fetch_tract_shapes(year: int = ACS_YEAR, state: str = STATE_FIPS, counties: Iterable[str] = NYC_COUNTIES) -> gpd.GeoDataFrame:
    url = TRACT_SHAPES_URL.format(year=year, state=state)
    logger.info(f"Reading tract boundaries: {url}")
    shapes = ensure_crs(gpd.read_file(url))
    shapes = shapes.rename(columns={c: c.upper() for c in shapes.columns if c != "geometry"})
    require_columns(shapes, [COLS.geoid], "tract boundaries")
    shapes[COLS.geoid] = normalize_tract_geoid(shapes[COLS.geoid])
    shapes = shapes[county_from_geoid(shapes[COLS.geoid]).isin(list(counties))]
    return shapes[[COLS.geoid, "geometry"]].reset_index(drop=True)


def build_population_tracts(shapes: gpd.GeoDataFrame, population_long: pd.DataFrame) -> gpd.GeoDataFrame:
    """CensusTract layer: GEOID, NAME, estimate, moe, geometry (one row per tract)."""
    pop = population_long[population_long[COLS.variable] == CENSUS_VARS.population]
    pop = pop[[COLS.geoid, COLS.name, COLS.estimate, COLS.moe]]
    tracts = shapes.merge(pop, on=COLS.geoid, how="left", validate="one_to_one")
    missing = int(tracts[COLS.estimate].isna().sum())
    if missing:
        logger.warning(f"{missing} tract polygons have no population estimate")
    tracts = gpd.GeoDataFrame(tracts, geometry="geometry", crs=shapes.crs)
    return tracts[[COLS.geoid, COLS.name, COLS.estimate, COLS.moe, "geometry"]].sort_values(COLS.geoid).reset_index(drop=True)


def load_population_tracts(year: int = ACS_YEAR) -> gpd.GeoDataFrame:
    shapes = fetch_tract_shapes(year=year)
    population = fetch_acs_tracts([CENSUS_VARS.population], year=year)
    tracts = build_population_tracts(shapes, population)
    logger.info(f"Loaded {len(tracts)} census tracts with population")
    return tracts


def load_demographics(year: int = ACS_YEAR) -> pd.DataFrame:
    demo = fetch_acs_tracts(CENSUS_VARS.demographic, year=year)
    logger.info(f"Loaded {len(demo)} demographic records ({demo[COLS.geoid].nunique()} tracts)")
    return demo


def prepare_tracts(tracts: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """Normalize a locally supplied tract layer (GEOID/estimate/geometry)."""
    tracts = ensure_crs(tracts)
    require_columns(tracts, [COLS.geoid, COLS.estimate, "geometry"], "tracts")
    out = tracts.copy()
    out[COLS.geoid] = normalize_tract_geoid(out[COLS.geoid])
    out[COLS.estimate] = pd.to_numeric(out[COLS.estimate], errors="coerce")
    if COLS.name not in out.columns:
        out[COLS.name] = None
    if COLS.moe not in out.columns:
        out[COLS.moe] = float("nan")
    out = out[[COLS.geoid, COLS.name, COLS.estimate, COLS.moe, "geometry"]]
    return out.sort_values(COLS.geoid).reset_index(drop=True)


def prepare_demographics(demo: pd.DataFrame) -> pd.DataFrame:
    """Normalize a locally supplied long demographic table."""
    require_columns(demo, [COLS.geoid, COLS.variable, COLS.estimate], "demographics")
    out = demo.copy()
    out[COLS.geoid] = normalize_tract_geoid(out[COLS.geoid])
    # tidycensus-style codes carry no E/M suffix; strip one if present
    out[COLS.variable] = out[COLS.variable].astype("string").str.strip().str.replace(r"[EM]$", "", regex=True)
    out[COLS.estimate] = pd.to_numeric(out[COLS.estimate], errors="coerce")
    if COLS.moe not in out.columns:
        out[COLS.moe] = float("nan")
    if COLS.name not in out.columns:
        out[COLS.name] = None
    return out[[COLS.geoid, COLS.name, COLS.variable, COLS.estimate, COLS.moe]]
