from __future__ import annotations
import pandas as pd

TRACT_GEOID_WIDTH = 11

def normalize_tract_geoid(s: pd.Series) -> pd.Series:
    """Digits only, zero-padded to the 11-character state+county+tract key."""
    x = s.astype("string").str.strip().str.replace(r"\.0$", "", regex=True)
    x = x.str.replace(r"[^0-9]", "", regex=True)
    x = x.where(x.str.len() > 0, pd.NA)
    return x.str.zfill(TRACT_GEOID_WIDTH)

def build_tract_geoid(state: pd.Series, county: pd.Series, tract: pd.Series) -> pd.Series:
    st = state.astype("string").str.strip().str.zfill(2)
    co = county.astype("string").str.strip().str.zfill(3)
    tr = tract.astype("string").str.strip().str.zfill(6)
    return (st + co + tr).astype("string")

def county_from_geoid(geoid: pd.Series) -> pd.Series:
    return geoid.astype("string").str.slice(2, 5)

def normalize_postcode(s: pd.Series) -> pd.Series:
    """ZIP codes read as floats (10027.0) or short ints back to 5-digit strings."""
    x = s.astype("string").str.strip().str.replace(r"\.0$", "", regex=True)
    x = x.str.replace(r"[^0-9]", "", regex=True)
    x = x.where(x.str.len() > 0, pd.NA)
    return x.str.slice(0, 5).str.zfill(5)
