"""Synthetic tracts, demographics and poll sites shared by the test modules."""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
from shapely.geometry import box

from nyc_poll_sites.analysis.config import CENSUS_VARS

CRS = "EPSG:4269"
COUNTIES = ["005", "047", "061", "081", "085"]
COUNTY_BOROUGH = {"005": "BRONX", "047": "BROOKLYN", "061": "MANHATTAN", "081": "QUEENS", "085": "STATEN ISLAND"}
N_TRACTS = 30
CELL = 0.01
X0, Y0 = -74.0, 40.6

# (street name as published, street name after ordinal repair)
MISSING_STREETS = [
    ("144 St", "144th St"),
    ("W 111 Ave", "W 111th Ave"),
    ("Beach 102 St", "Beach 102nd St"),
    ("3 Ave", "3rd Ave"),
]
BAD_ADDRESS_INDEX = 2
CORRECTED_ADDRESS = "102-00 Shore Front Pkwy, Queens, NY 11694"


def tract_geoid(i: int) -> str:
    return "36" + COUNTIES[i % 5] + f"{i + 1:04d}00"


def tract_box(i: int):
    x = X0 + i * CELL
    return box(x, Y0, x + CELL, Y0 + CELL)


def tract_population(i: int) -> float:
    return float(500 + 400 * i)


def sites_in_tract(i: int) -> int:
    return int(tract_population(i) // 3000) + (i % 2)


def make_tracts(crs: str = CRS) -> gpd.GeoDataFrame:
    rows = [
        {"GEOID": tract_geoid(i), "NAME": f"Census Tract {i + 1}", "estimate": tract_population(i),
         "moe": 50.0, "geometry": tract_box(i)}
        for i in range(N_TRACTS)
    ]
    return gpd.GeoDataFrame(rows, geometry="geometry", crs=crs)


def race_estimates(i: int) -> List[float]:
    return [float((k + 1) * 10 + (i * (k + 3)) % 17) for k in range(8)]


def make_demographics() -> pd.DataFrame:
    rows = []
    for i in range(N_TRACTS):
        g = tract_geoid(i)
        rows.append({"GEOID": g, "NAME": f"Census Tract {i + 1}", "variable": CENSUS_VARS.income_to_poverty,
                     "estimate": float(100 + 13 * i + (i * i) % 7), "moe": 5.0})
        for code, est in zip(CENSUS_VARS.race, race_estimates(i)):
            rows.append({"GEOID": g, "NAME": f"Census Tract {i + 1}", "variable": code, "estimate": est, "moe": 3.0})
    return pd.DataFrame(rows)


def make_poll_sites() -> Tuple[pd.DataFrame, Dict[str, Tuple[float, float]]]:
    """
    Poll sites with coordinates at tract-interior offsets. The first four sites of the
    largest tracts lose their coordinates; the returned dict is what a geocoder
    knows (repaired address -> lat/lon), deliberately missing one address.
    """
    rows = []
    j = 0
    for i in range(N_TRACTS):
        x = X0 + i * CELL + CELL / 2
        y = Y0 + CELL / 2
        for k in range(sites_in_tract(i)):
            rows.append({
                "SITE_NUMBER": f"S{j:03d}",
                "SITE_NAME": f"PS {j}",
                "BOROUGH": COUNTY_BOROUGH[COUNTIES[i % 5]],
                "STREET_NUMBER": str(j + 1),
                "STREET_NAME": "Main St",
                "CITY": "New York",
                "POSTCODE": "10027",
                "Latitude": y + 0.001 * k,
                "Longitude": x + 0.001 * k,
            })
            j += 1
    sites = pd.DataFrame(rows)

    known: Dict[str, Tuple[float, float]] = {}
    missing_idx = list(sites.index[-len(MISSING_STREETS):])
    for n, (idx, (raw, fixed)) in enumerate(zip(missing_idx, MISSING_STREETS)):
        lat, lon = sites.at[idx, "Latitude"], sites.at[idx, "Longitude"]
        sites.at[idx, "STREET_NAME"] = raw
        sites.at[idx, "Latitude"] = np.nan
        sites.at[idx, "Longitude"] = np.nan
        address = f"{sites.at[idx, 'STREET_NUMBER']} {fixed}, New York, NY 10027"
        if n == BAD_ADDRESS_INDEX:
            known[CORRECTED_ADDRESS] = (lat, lon)
        else:
            known[address] = (lat, lon)
    return sites, known


def bad_address(sites: pd.DataFrame) -> str:
    idx = sites.index[-len(MISSING_STREETS):][BAD_ADDRESS_INDEX]
    return f"{sites.at[idx, 'STREET_NUMBER']} {MISSING_STREETS[BAD_ADDRESS_INDEX][1]}, New York, NY 10027"


class FakeGeocoder:
    def __init__(self, known: Dict[str, Tuple[float, float]]):
        self.known = dict(known)
        self.calls: List[str] = []

    def __call__(self, address: str) -> Optional[Tuple[float, float]]:
        self.calls.append(address)
        return self.known.get(address)


@pytest.fixture
def tracts() -> gpd.GeoDataFrame:
    return make_tracts()


@pytest.fixture
def demographics() -> pd.DataFrame:
    return make_demographics()


@pytest.fixture
def poll_sites():
    return make_poll_sites()


@pytest.fixture
def corrections(poll_sites) -> Dict[str, str]:
    sites, _ = poll_sites
    return {bad_address(sites): CORRECTED_ADDRESS}


@pytest.fixture
def geocoder(poll_sites) -> FakeGeocoder:
    _, known = poll_sites
    return FakeGeocoder(known)


@pytest.fixture
def repaired_streets():
    return [fixed for _, fixed in MISSING_STREETS]
