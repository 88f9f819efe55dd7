#!/usr/bin/env python3
# poll_site_pipeline.py
# NYC poll sites vs. census tract population:
# - Stage 1: load + quality-check inputs, geocode poll sites missing coordinates
# - Stage 2: spatial join to tracts, merge demographics, count, fit OLS, map, report
# - Outputs: tract_summary.{parquet,csv}, OLS summaries, figures, poll_site_report.md

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import geopandas as gpd
import pandas as pd
from loguru import logger

from nyc_poll_sites import config
from nyc_poll_sites.analysis.config import COLS
from nyc_poll_sites.analysis.features import check_race_totals, collapse_to_tracts, count_poll_sites
from nyc_poll_sites.analysis.models import OlsResult, fit_models
from nyc_poll_sites.analysis.report import build_summary, render_markdown, write_model_artifacts
from pipelines.data.census import load_demographics, load_population_tracts, prepare_demographics, prepare_tracts
from pipelines.data.geocode import CensusGeocoder, Geocoder, geocode_missing
from pipelines.data.io import load_address_corrections, mkdir_p, read_any, write_json, write_parquet
from pipelines.data.poll_sites import demographic_quality, load_poll_sites, poll_site_quality, quality_report
from pipelines.data.sanity import check_collapse, merge_crosstab
from pipelines.data.spatial import (
    income_table,
    join_tracts_poll_sites,
    merge_demographics,
    pivot_race,
    poll_sites_to_points,
)


@dataclass
class EtlResult:
    sites: pd.DataFrame
    tracts: gpd.GeoDataFrame
    demographics: pd.DataFrame
    quality: Dict = field(default_factory=dict)
    geocoding: Dict = field(default_factory=dict)


@dataclass
class FinalResult:
    summary: pd.DataFrame
    models: Dict[str, OlsResult]
    joins: Dict
    figures: List[Path] = field(default_factory=list)


# ========================== Stage 1: ETL ==========================
def run_etl(
    poll_sites_path: Path,
    geocoder: Geocoder,
    corrections: Optional[Mapping[str, str]] = None,
    tracts: Optional[gpd.GeoDataFrame] = None,
    demographics: Optional[pd.DataFrame] = None,
    acs_year: int = config.ACS_YEAR,
    interim_dir: Optional[Path] = None,
) -> EtlResult:
    logger.info("========== Stage 1: ETL ==========")

    sites = load_poll_sites(poll_sites_path)
    tracts = prepare_tracts(tracts) if tracts is not None else load_population_tracts(acs_year)
    demographics = prepare_demographics(demographics) if demographics is not None else load_demographics(acs_year)

    quality = {
        "poll_sites": poll_site_quality(sites),
        "tracts": quality_report(tracts, key=[COLS.geoid], name="tracts"),
        "demographics": demographic_quality(demographics),
    }
    if quality["tracts"]["duplicate_keys"]:
        raise ValueError(f"Tract layer has {quality['tracts']['duplicate_keys']} duplicate GEOIDs.")

    sites, report = geocode_missing(sites, geocoder, corrections)

    if interim_dir is not None:
        write_parquet(sites, interim_dir / config.GEOCODED_SITES_PARQUET.name)
        write_parquet(tracts, interim_dir / config.TRACTS_PARQUET.name)
        write_parquet(demographics, interim_dir / config.DEMOGRAPHICS_PARQUET.name)
        logger.info(f"[ETL] interim tables written to {interim_dir}")

    logger.info("========== ETL complete ==========")
    return EtlResult(sites, tracts, demographics, quality, report.as_dict())


# =================== Stage 2: Build tract summary ===================
def build_final(
    sites: pd.DataFrame,
    tracts: gpd.GeoDataFrame,
    demographics: pd.DataFrame,
    figures_dir: Optional[Path] = None,
) -> FinalResult:
    logger.info("========== Stage 2: Build tract summary ==========")

    points = poll_sites_to_points(sites)
    joined = join_tracts_poll_sites(tracts, points)

    race = pivot_race(demographics)
    income = income_table(demographics)
    merged = merge_demographics(joined, race, income)

    counted = count_poll_sites(merged)
    summary = collapse_to_tracts(counted)
    check_collapse(merged, summary)
    check_race_totals(summary)

    n_source = tracts[COLS.geoid].nunique()
    joins = {
        "tracts": int(n_source),
        "sites": int(len(points)),
        "rows": int(len(joined)),
        "empty_tracts": int((joined[COLS.site_id].isna()).sum()),
        "summary_tracts": int(len(summary)),
        "crosstab": _crosstab(merged),
    }
    if len(summary) != n_source:
        logger.warning(f"Summary has {len(summary)} tracts; the tract layer has {n_source}")

    models = fit_models(summary)

    figures: List[Path] = []
    if figures_dir is not None:
        from pipelines.data.maps import render_figures

        figures = render_figures(tracts, points, summary, models, figures_dir)

    return FinalResult(summary, models, joins, figures)


def _crosstab(merged: pd.DataFrame) -> List[Dict]:
    # round-trip through JSON so numpy scalars become plain Python values
    return json.loads(merge_crosstab(merged).to_json(orient="records"))


def _under(out_dir: Path, path: Path) -> Path:
    """Re-root a project path (data/processed/..., reports/...) under out_dir."""
    return out_dir / path.relative_to(config.PROJ_ROOT)


def write_outputs(etl: EtlResult, final: FinalResult, out_dir: Path) -> Dict[str, Path]:
    summary_pq = _under(out_dir, config.TRACT_SUMMARY_PARQUET)
    summary_csv = _under(out_dir, config.TRACT_SUMMARY_CSV)
    models_dir = _under(out_dir, config.MODEL_ARTIFACTS_DIR)
    report_md = _under(out_dir, config.REPORT_MD)
    mkdir_p(summary_pq.parent)

    write_parquet(final.summary, summary_pq)
    final.summary.to_csv(summary_csv, index=False)

    write_model_artifacts(final.models, models_dir)
    summary = build_summary(etl.quality, etl.geocoding, final.joins, final.models)
    write_json(summary, models_dir / "metrics.json")

    report_md.write_text(render_markdown(summary, final.models, final.figures), encoding="utf-8")
    logger.info(f"Saved:\n  {summary_pq}\n  {summary_csv}\n  {report_md}")
    return {"summary_parquet": summary_pq, "summary_csv": summary_csv, "report": report_md}


# =============================== CLI ===============================
def main(argv: Optional[List[str]] = None) -> None:
    ap = argparse.ArgumentParser(description="NYC poll sites vs. census tract population")
    ap.add_argument("--poll-sites", type=Path, default=config.POLL_SITES_CSV, help="Poll-site CSV")
    ap.add_argument("--tracts", type=Path, default=None,
                    help="Local tract layer with GEOID/estimate/geometry (default: Census API + boundary file)")
    ap.add_argument("--demographics", type=Path, default=None,
                    help="Local long-format demographic table GEOID/variable/estimate/moe (default: Census API)")
    ap.add_argument("--address-corrections", type=Path, default=config.ADDRESS_CORRECTIONS_FILE,
                    help="JSON object mapping failed addresses to corrected ones")
    ap.add_argument("--acs-year", type=int, default=config.ACS_YEAR)
    ap.add_argument("--out-dir", type=Path, default=config.PROJ_ROOT, help="Root for data/ and reports/")
    ap.add_argument("--skip-maps", action="store_true", help="Do not render figures")
    args = ap.parse_args(argv)

    tracts = read_any(args.tracts) if args.tracts else None
    demographics = read_any(args.demographics, dtype={COLS.geoid: str}) if args.demographics else None

    etl = run_etl(
        args.poll_sites,
        geocoder=CensusGeocoder(),
        corrections=load_address_corrections(args.address_corrections),
        tracts=tracts,
        demographics=demographics,
        acs_year=args.acs_year,
        interim_dir=_under(args.out_dir, config.INTERIM_DATA_DIR),
    )
    figures_dir = None if args.skip_maps else _under(args.out_dir, config.FIGURES_DIR)
    final = build_final(etl.sites, etl.tracts, etl.demographics, figures_dir=figures_dir)
    write_outputs(etl, final, args.out_dir)


if __name__ == "__main__":
    main()
