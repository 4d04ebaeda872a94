import numpy as np
import pandas as pd
import pytest

from conftest import URL_HEADER, make_derived, make_listing
from deliver import (
    CATEGORICAL_COLUMNS,
    TABLE_FILES,
    deliver_report,
    export_tables,
    load_table,
    plot_ppsf_by_beds,
    plot_ppsf_by_beds_baths,
    render_charts,
    render_report,
)
from transform import run_transformation, summarize_by_beds, summarize_by_beds_baths


@pytest.fixture
def results(raw_listings):
    return run_transformation(raw_listings)


@pytest.fixture
def summaries():
    derived = make_derived([
        (2019, 3, 2, 300000, 1500),
        (2020, 3, 2, 310000, 1500),
        (2020, 3, 2, 320000, 1400),
        (2021, 3, 2.5, 360000, 1600),
        (2020, 3, 2.5, 350000, 1600),
        (2020, 4, 3, 500000, 2500),
        (2021, 4, 3, 520000, 2500),
        (2019, 4, 3, 480000, 2500),
    ])
    return summarize_by_beds(derived), summarize_by_beds_baths(derived)


def test_export_writes_all_tables(results, tmp_path):
    paths = export_tables(results, tmp_path / "out")

    assert set(paths) == set(TABLE_FILES)
    for name, filename in TABLE_FILES.items():
        assert (tmp_path / "out" / filename).exists()
        assert len(pd.read_csv(paths[name])) == len(results[name])


@pytest.mark.parametrize("name", ["raw", "normalized", "by_beds", "by_beds_baths"])
def test_export_round_trip(results, tmp_path, name):
    paths = export_tables(results, tmp_path)
    loaded = load_table(paths[name])

    expected = results[name].copy()
    for col in CATEGORICAL_COLUMNS:
        if col in expected.columns:
            expected[col] = expected[col].astype(str)

    pd.testing.assert_frame_equal(
        loaded.sort_values(list(loaded.columns)).reset_index(drop=True),
        expected[loaded.columns].sort_values(list(loaded.columns)).reset_index(drop=True),
        check_dtype=False,
        check_like=True,
    )


def test_derived_round_trip_keeps_labels(results, tmp_path):
    paths = export_tables(results, tmp_path)
    loaded = load_table(paths["derived"])

    assert loaded["beds"].tolist() == ["3", "3", "3"]
    assert loaded["baths"].tolist() == ["2", "2.5", "2"]
    assert loaded["beds_baths"].tolist() == results["derived"]["beds_baths"].tolist()
    assert loaded["ppsf"].tolist() == results["derived"]["ppsf"].tolist()


def test_round_trip_keeps_na_like_text(tmp_path):
    raw = pd.DataFrame([
        make_listing(LOCATION="N/A", ADDRESS="NULL"),
        make_listing(
            **{
                "LOCATION": "NA", "ADDRESS": "14 Oak Ln", "MLS#": "MDFR1002",
                URL_HEADER: "https://www.redfin.com/PA/Jenkintown/14-Oak-Ln-19046/home/1002",
            }
        ),
    ])
    results = run_transformation(raw)
    paths = export_tables(results, tmp_path)

    assert load_table(paths["raw"])["LOCATION"].tolist() == ["N/A", "NA"]
    normalized = load_table(paths["normalized"])
    assert normalized["location"].tolist() == ["N/A", "NA"]
    assert normalized["address"].tolist() == ["NULL", "14 OAK LN"]
    assert load_table(paths["derived"])["location"].tolist() == ["N/A", "NA"]


def test_round_trip_keeps_empty_cells_missing(results, tmp_path):
    paths = export_tables(results, tmp_path)
    raw = load_table(paths["raw"])

    assert raw["LOCATION"].isna().sum() == results["raw"]["LOCATION"].isna().sum()
    assert raw["HOA/MONTH"].isna().sum() == results["raw"]["HOA/MONTH"].isna().sum()


def test_missing_bed_group_round_trips_and_plots(tmp_path):
    by_beds = summarize_by_beds(make_derived([
        (2020, 3, 2, 300000, 1500),
        (2020, np.nan, 2, 330000, 1100),
    ]))
    by_beds.to_csv(tmp_path / "a.csv", index=False)
    loaded = load_table(tmp_path / "a.csv")

    assert loaded["beds"].tolist()[0] == "3"
    assert pd.isna(loaded["beds"].tolist()[1])
    assert plot_ppsf_by_beds(loaded, tmp_path / "a.png") is not None


def test_plots_are_written(summaries, tmp_path):
    by_beds, by_beds_baths = summaries

    path_a = plot_ppsf_by_beds(by_beds, tmp_path / "a.png", ylim=(100, 400))
    path_b = plot_ppsf_by_beds_baths(by_beds_baths, tmp_path / "b.png")

    assert path_a.exists() and path_a.stat().st_size > 0
    assert path_b.exists() and path_b.stat().st_size > 0


def test_plots_accept_reloaded_tables(summaries, tmp_path):
    by_beds, by_beds_baths = summaries
    by_beds.to_csv(tmp_path / "a.csv", index=False)
    by_beds_baths.to_csv(tmp_path / "b.csv", index=False)

    assert plot_ppsf_by_beds(load_table(tmp_path / "a.csv"), tmp_path / "a.png") is not None
    assert plot_ppsf_by_beds_baths(load_table(tmp_path / "b.csv"), tmp_path / "b.png") is not None


def test_empty_tables_are_not_plotted(tmp_path):
    empty = summarize_by_beds(make_derived([]))

    assert plot_ppsf_by_beds(empty, tmp_path / "a.png") is None
    assert not (tmp_path / "a.png").exists()


def test_render_charts(results, tmp_path):
    charts = render_charts(results, tmp_path)

    assert set(charts) == {"by_beds", "by_beds_baths"}
    assert all(path.exists() for path in charts.values())


def test_render_report(results):
    stats = {"row_counts": {"raw": 7, "derived": 3}, "execution_time": "0.1s"}
    html = render_report(results, stats, {"Regions": "7735"}, {"by_beds": "ppsf_by_beds.png"})

    assert "Redfin PPSF Trends" in html
    assert "$242.31" in html
    assert 'src="ppsf_by_beds.png"' in html
    assert "raw: 7 rows" in html


def test_render_report_without_data():
    empty = summarize_by_beds(make_derived([]))
    html = render_report(
        {"by_beds": empty, "by_beds_baths": empty},
        {"row_counts": {}, "execution_time": "0.0s"},
        {},
    )

    assert "No sold listings matched the query." in html


def test_deliver_report_writes_file(results, tmp_path):
    stats = {"row_counts": {"raw": 7}, "execution_time": "0.1s"}
    path = deliver_report(results, stats, {}, {"by_beds": tmp_path / "ppsf_by_beds.png"}, tmp_path)

    assert path == tmp_path / "report.html"
    assert 'src="ppsf_by_beds.png"' in path.read_text()
