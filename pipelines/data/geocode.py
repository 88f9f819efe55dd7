from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Tuple

import pandas as pd
import requests
from loguru import logger
from tqdm import tqdm

from nyc_poll_sites.analysis.config import COLS
from nyc_poll_sites.config import GEOCODER_BENCHMARK, GEOCODER_URL, GEOCODE_SLEEP_S
from .addresses import repair_addresses

LatLon = Tuple[float, float]
Geocoder = Callable[[str], Optional[LatLon]]


class UnresolvedAddressError(ValueError):
    """Raised when addresses still fail after the correction-table retry."""

    def __init__(self, rows: pd.DataFrame):
        self.rows = rows
        listing = rows.to_string(max_rows=25)
        super().__init__(f"{len(rows)} poll-site addresses could not be geocoded after one corrected retry:\n{listing}")


def _safe_float(v) -> Optional[float]:
    try:
        if v is None:
            return None
        x = float(v)
    except (TypeError, ValueError):
        return None
    return x if pd.notna(x) else None


class CensusGeocoder:
    """
    One-line address lookup against the U.S. Census Geocoder (no API key).
    Returns (lat, lon) for the first match, None when nothing matched.
    """

    def __init__(
        self,
        url: str = GEOCODER_URL,
        benchmark: str = GEOCODER_BENCHMARK,
        session: Optional[requests.Session] = None,
        timeout: int = 30,
        sleep_s: float = GEOCODE_SLEEP_S,
    ):
        self.url = url
        self.benchmark = benchmark
        self.session = session or requests.Session()
        self.timeout = timeout
        self.sleep_s = sleep_s

    def __call__(self, address: str) -> Optional[LatLon]:
        params = {"address": address, "benchmark": self.benchmark, "format": "json"}
        try:
            resp = self.session.get(self.url, params=params, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Geocoder request failed for '{address}': {e}")
            raise
        finally:
            if self.sleep_s:
                time.sleep(self.sleep_s)

        matches = (((data or {}).get("result") or {}).get("addressMatches") or [])
        if not matches:
            return None
        coords = matches[0].get("coordinates") or {}
        lat, lon = _safe_float(coords.get("y")), _safe_float(coords.get("x"))
        if lat is None or lon is None:
            return None
        return lat, lon


@dataclass
class GeocodeReport:
    missing: int = 0
    first_pass_failed: int = 0
    corrected: int = 0
    resolved: int = 0
    failed_addresses: List[str] = field(default_factory=list)
    corrections_applied: Dict[str, str] = field(default_factory=dict)

    def as_dict(self) -> Dict:
        return {
            "missing": self.missing,
            "first_pass_failed": self.first_pass_failed,
            "corrected": self.corrected,
            "resolved": self.resolved,
            "failed_addresses": list(self.failed_addresses),
            "corrections_applied": dict(self.corrections_applied),
        }


def geocode_addresses(addresses: pd.Series, geocoder: Geocoder, desc: str = "Geocoding") -> pd.DataFrame:
    """
    Resolve each address; output keeps the input index with lat/lon (NaN on failure).
    Each distinct address is looked up once.
    """
    unique = list(dict.fromkeys(a for a in addresses.dropna().tolist()))
    results: Dict[str, Optional[LatLon]] = {}
    for addr in tqdm(unique, desc=desc, disable=not unique):
        results[addr] = geocoder(addr)

    lat, lon = [], []
    for addr in addresses.tolist():
        hit = results.get(addr) if isinstance(addr, str) else None
        lat.append(hit[0] if hit else float("nan"))
        lon.append(hit[1] if hit else float("nan"))
    return pd.DataFrame({COLS.lat: lat, COLS.lon: lon}, index=addresses.index)


def missing_coordinates(df: pd.DataFrame) -> pd.Series:
    return df[COLS.lat].isna() | df[COLS.lon].isna()


def geocode_missing(
    sites: pd.DataFrame,
    geocoder: Geocoder,
    corrections: Optional[Mapping[str, str]] = None,
) -> Tuple[pd.DataFrame, GeocodeReport]:
    """
    Fill Latitude/Longitude for poll sites that lack them.

    Rows without coordinates get their street names repaired and a postal address
    assembled, then go to the geocoder. Failures are looked up in `corrections`
    (bad address -> corrected address) and re-submitted exactly once. Anything
    still unresolved raises UnresolvedAddressError. Row order and index are kept.
    """
    corrections = dict(corrections or {})
    out = sites.copy()
    report = GeocodeReport()

    todo = missing_coordinates(out)
    report.missing = int(todo.sum())
    logger.info(f"Poll sites missing coordinates: {report.missing}/{len(out)}")
    if not todo.any():
        return out, report

    repaired = repair_addresses(out.loc[todo])
    if COLS.address not in out.columns:
        out[COLS.address] = pd.Series(pd.NA, index=out.index, dtype="string")
    out.loc[todo, COLS.street_name] = repaired[COLS.street_name]
    out.loc[todo, COLS.address] = repaired[COLS.address]

    first = geocode_addresses(repaired[COLS.address], geocoder)
    out.loc[todo, [COLS.lat, COLS.lon]] = first[[COLS.lat, COLS.lon]].to_numpy()

    failed_idx = first.index[first[COLS.lat].isna() | first[COLS.lon].isna()]
    report.first_pass_failed = len(failed_idx)
    report.failed_addresses = repaired.loc[failed_idx, COLS.address].astype(str).tolist()

    if len(failed_idx):
        logger.warning(f"{len(failed_idx)} addresses failed the first geocoding pass: {report.failed_addresses}")
        retry = repaired.loc[failed_idx, COLS.address].astype("string")
        fixed = retry.map(lambda a: corrections.get(a, a))
        changed = fixed != retry
        report.corrected = int(changed.sum())
        report.corrections_applied = dict(zip(retry[changed].tolist(), fixed[changed].tolist()))
        out.loc[failed_idx, COLS.address] = fixed

        second = geocode_addresses(fixed, geocoder, desc="Geocoding (corrected)")
        out.loc[failed_idx, [COLS.lat, COLS.lon]] = second[[COLS.lat, COLS.lon]].to_numpy()

    still = missing_coordinates(out)
    report.resolved = report.missing - int(still.sum())
    if still.any():
        cols = [c for c in [COLS.site_id, COLS.site_name, COLS.borough, COLS.address] if c in out.columns]
        raise UnresolvedAddressError(out.loc[still, cols])

    logger.info(
        f"Geocoded {report.resolved}/{report.missing} poll sites "
        f"({report.first_pass_failed} needed a retry, {report.corrected} corrected)"
    )
    return out, report
