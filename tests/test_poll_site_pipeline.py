"""End-to-end ETL, tract summary, outputs and the CLI on synthetic inputs."""

from __future__ import annotations

import importlib.util
import json
from pathlib import Path

import pandas as pd
import pytest

import poll_site_pipeline
from poll_site_pipeline import build_final, run_etl, write_outputs
from pipelines.data.geocode import UnresolvedAddressError

PRINT_SUMMARY = Path(__file__).resolve().parents[1] / "code" / "models" / "ols_poll_sites" / "print_summary.py"


def _create_mock_inputs(tmp_path: Path, poll_sites, tracts, demographics, corrections) -> dict:
    sites, _ = poll_sites
    raw = tmp_path / "raw"
    raw.mkdir()

    sites_csv = raw / "poll_sites.csv"
    sites.to_csv(sites_csv, index=False)
    tracts_pq = raw / "tracts.parquet"
    tracts.to_parquet(tracts_pq, index=False)
    demo_csv = raw / "demographics.csv"
    demographics.to_csv(demo_csv, index=False)
    corrections_json = raw / "address_corrections.json"
    corrections_json.write_text(json.dumps(corrections), encoding="utf-8")

    return {"sites": sites_csv, "tracts": tracts_pq, "demographics": demo_csv, "corrections": corrections_json}


def _load_print_summary():
    spec = importlib.util.spec_from_file_location("print_summary", PRINT_SUMMARY)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_end_to_end_pipeline(tmp_path, poll_sites, tracts, demographics, corrections, geocoder) -> None:
    paths = _create_mock_inputs(tmp_path, poll_sites, tracts, demographics, corrections)
    sites, _ = poll_sites
    interim = tmp_path / "data" / "interim"

    etl = run_etl(
        paths["sites"],
        geocoder=geocoder,
        corrections=corrections,
        tracts=tracts,
        demographics=demographics,
        interim_dir=interim,
    )

    assert etl.geocoding["resolved"] == 4
    assert etl.geocoding["corrected"] == 1
    assert etl.quality["poll_sites"]["rows"] == len(sites)
    assert etl.quality["poll_sites"]["missing"]["Latitude"] == 4
    assert etl.quality["poll_sites"]["unknown_boroughs"] == []
    assert etl.quality["demographics"]["duplicate_keys"] == 0
    for name in ("poll_sites_geocoded", "tracts_population", "tract_demographics_long"):
        assert (interim / f"{name}.parquet").exists()

    final = build_final(etl.sites, etl.tracts, etl.demographics, figures_dir=tmp_path / "reports" / "figures")

    summary = final.summary
    assert len(summary) == len(tracts)
    assert summary["GEOID"].is_unique
    assert int(summary["poll_site_count"].sum()) == len(sites)
    counts = summary.set_index("GEOID")["poll_site_count"]
    assert counts[tracts["GEOID"].iloc[0]] == 0
    assert final.joins["empty_tracts"] == int((counts == 0).sum())
    assert final.joins["rows"] == int(counts.clip(lower=1).sum())
    assert set(final.models) == {"population", "full"}
    assert len(final.figures) == 6
    assert all(p.exists() for p in final.figures)

    outputs = write_outputs(etl, final, tmp_path)

    written = pd.read_csv(outputs["summary_csv"], dtype={"GEOID": str})
    assert written["GEOID"].tolist() == summary["GEOID"].tolist()
    report = outputs["report"].read_text(encoding="utf-8")
    for heading in ("## Data quality", "## Geocoding", "## Spatial join", "## Regression models", "## Figures"):
        assert heading in report
    assert report.count("tracts with every Model B covariate present") == 2
    assert "omitted reference group pct_nh_white" in report
    metrics = json.loads((tmp_path / "reports" / "models" / "metrics.json").read_text())
    assert metrics["models"]["full"]["nobs"] == len(tracts)
    assert metrics["geocoding"]["corrections_applied"] == corrections


def test_build_final_is_idempotent(tmp_path, poll_sites, tracts, demographics, corrections, geocoder) -> None:
    paths = _create_mock_inputs(tmp_path, poll_sites, tracts, demographics, corrections)
    etl = run_etl(paths["sites"], geocoder=geocoder, corrections=corrections, tracts=tracts, demographics=demographics)

    first = build_final(etl.sites, etl.tracts, etl.demographics)
    second = build_final(etl.sites, etl.tracts, etl.demographics)

    pd.testing.assert_frame_equal(first.summary, second.summary)
    assert first.joins == second.joins


def test_build_final_rejects_projected_tract_layer(tmp_path, poll_sites, tracts, demographics, corrections, geocoder) -> None:
    paths = _create_mock_inputs(tmp_path, poll_sites, tracts, demographics, corrections)
    etl = run_etl(paths["sites"], geocoder=geocoder, corrections=corrections, tracts=tracts, demographics=demographics)

    with pytest.raises(ValueError, match="CRS mismatch"):
        build_final(etl.sites, etl.tracts.to_crs("EPSG:2263"), etl.demographics)


def test_run_etl_fails_on_unresolved_addresses(tmp_path, poll_sites, tracts, demographics, corrections, geocoder) -> None:
    paths = _create_mock_inputs(tmp_path, poll_sites, tracts, demographics, corrections)
    with pytest.raises(UnresolvedAddressError):
        run_etl(paths["sites"], geocoder=geocoder, corrections={}, tracts=tracts, demographics=demographics)


def test_run_etl_rejects_duplicate_tracts(tmp_path, poll_sites, tracts, demographics, corrections, geocoder) -> None:
    paths = _create_mock_inputs(tmp_path, poll_sites, tracts, demographics, corrections)
    doubled = pd.concat([tracts, tracts.iloc[[0]]], ignore_index=True)
    with pytest.raises(ValueError, match="duplicate GEOIDs"):
        run_etl(paths["sites"], geocoder=geocoder, corrections=corrections, tracts=doubled, demographics=demographics)


def test_cli_and_print_summary(tmp_path, monkeypatch, capsys, poll_sites, tracts, demographics, corrections, geocoder) -> None:
    paths = _create_mock_inputs(tmp_path, poll_sites, tracts, demographics, corrections)
    monkeypatch.setattr(poll_site_pipeline, "CensusGeocoder", lambda: geocoder)
    out_dir = tmp_path / "out"

    poll_site_pipeline.main([
        "--poll-sites", str(paths["sites"]),
        "--tracts", str(paths["tracts"]),
        "--demographics", str(paths["demographics"]),
        "--address-corrections", str(paths["corrections"]),
        "--out-dir", str(out_dir),
        "--skip-maps",
    ])

    models_dir = out_dir / "reports" / "models"
    assert (out_dir / "data" / "processed" / "tract_summary.parquet").exists()
    assert (out_dir / "data" / "interim" / "poll_sites_geocoded.parquet").exists()
    assert (models_dir / "ols_summary_population.txt").exists()
    assert not (out_dir / "reports" / "figures").exists()

    monkeypatch.setenv("POLL_SITE_MODELS_DIR", str(models_dir))
    print_summary = _load_print_summary()

    metrics = print_summary.load_metrics()
    p_values = print_summary.load_p_values("population")
    assert set(p_values) == {"const", "estimate"}
    assert p_values["estimate"] == pytest.approx(metrics["models"]["population"]["pvalues"]["estimate"], abs=1e-3)

    print_summary.main()
    printed = capsys.readouterr().out
    assert "Poll Sites vs. Population OLS Summary" in printed
    assert "Geocoded poll sites: 4/4" in printed
