#!/usr/bin/env python3
from __future__ import annotations
import json
from pathlib import Path
from typing import Dict

import pandas as pd
import geopandas as gpd

SUPPORTED_GEO = (".shp", ".gpkg", ".geojson", ".json", ".zip", ".parquet", ".pq")

def mkdir_p(p: Path) -> None:
    p.mkdir(parents=True, exist_ok=True)

def stdcols(df: pd.DataFrame) -> pd.DataFrame:
    """Strip stray whitespace from headers; case is kept because the source files use fixed names."""
    df = df.copy()
    df.columns = [c.strip() for c in df.columns]
    return df

def read_any(path: Path, dtype=None):
    path = Path(path)
    ext = path.suffix.lower()
    if ext in (".parquet", ".pq"):
        try:
            return gpd.read_parquet(path)
        except ValueError:
            # plain Parquet without geo metadata
            return pd.read_parquet(path)
    if ext == ".feather":
        return pd.read_feather(path)
    if ext in (".csv", ".tsv"):
        sep = "\t" if ext == ".tsv" else ","
        return pd.read_csv(path, sep=sep, dtype=dtype)
    if ext in SUPPORTED_GEO:
        return gpd.read_file(path)
    raise ValueError(f"Unsupported input file type: {path}")

def require_columns(df: pd.DataFrame, required, name: str) -> None:
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"{name} missing columns: {missing}")

def ensure_crs(gdf: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    if gdf.crs is None:
        raise ValueError("GeoDataFrame has no CRS. Please set CRS on input data.")
    return gdf

def assert_same_crs(left: gpd.GeoDataFrame, right: gpd.GeoDataFrame, where: str = "") -> None:
    if left.crs is None or right.crs is None:
        raise ValueError(f"{where}: both layers need a CRS (left={left.crs}, right={right.crs}).")
    if left.crs != right.crs:
        raise ValueError(
            f"{where}: CRS mismatch ({left.crs.to_string()} vs {right.crs.to_string()}); "
            "a spatial join across reference systems would misassign points."
        )

def write_parquet(df, path: Path) -> None:
    mkdir_p(path.parent)
    df.to_parquet(path, index=False)

def write_json(obj: Dict, path: Path) -> None:
    mkdir_p(path.parent)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, default=str)

def load_address_corrections(path: Path | None) -> Dict[str, str]:
    """Read a {bad address: corrected address} JSON object; a missing file means no corrections."""
    if path is None or not Path(path).exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Address corrections file must hold a JSON object: {path}")
    return {str(k): str(v) for k, v in data.items()}
