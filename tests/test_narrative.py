from __future__ import annotations

from datetime import datetime

from outbreak_engine.attack_rates import compute_attack_rates
from outbreak_engine.crosstab.tabulate import build_crosstabs
from outbreak_engine.epicurve.binning import build_epicurve
from outbreak_engine.epicurve.milestones import detect_milestones, estimate_exposure_window
from outbreak_engine.records import make_record
from outbreak_engine.report.narrative import render_narrative

RECORDS = [
    make_record(1, onset="2024-01-01", ill="Yes", sex="F"),
    make_record(2, onset="2024-01-02", ill="Yes", sex="M"),
    make_record(3, onset="2024-01-02", ill="No", sex="F"),
    make_record(4, onset=None, ill="No", sex="M"),
]


def test_narrative_summarises_every_analysis() -> None:
    curve = build_epicurve(RECORDS, "onset", "daily")
    exposure = estimate_exposure_window(RECORDS, "onset", "Salmonella", method="point-source")

    text = render_narrative(
        curve,
        detect_milestones(RECORDS, "onset", curve),
        exposure=exposure,
        attack_rates=compute_attack_rates(RECORDS, "ill", ["Yes"]),
        crosstabs=build_crosstabs(RECORDS, ["ill"], "sex"),
        row_labels={"ill": "Ill"},
        col_label="Sex",
        generated_at=datetime(2024, 1, 10, 9, 30),
    )

    assert text.startswith("Outbreak summary\n================\nGenerated: 2024-01-10 09:30\n")
    assert "Records: 4 total, 3 with a usable onset date" in text
    assert "(1 excluded for a missing or unparsable date)" in text
    assert "Peak: 2 cases in the bin starting Jan 2." in text
    assert "First case: 2024-01-01. Last case: 2024-01-02." in text
    assert "Salmonella (point-source): 2023-12-29 to 2024-01-01" in text
    assert "Incubation 0.5-3 days (typically 1)." in text
    assert "- Overall: 2/4 = 50.00% (95% CI " in text
    assert "- Ill by Sex: 4 records, 2 x 2 cells, 4 small cells\n" in text
    assert "Cells with counts below 5 may give unstable percentages." in text
    assert text.endswith("\n")


def test_narrative_without_dates_or_optional_sections() -> None:
    records = [make_record(1, onset=None)]
    curve = build_epicurve(records, "onset", "daily")

    text = render_narrative(
        curve,
        detect_milestones(records, "onset", curve),
        title="Harbor cafe",
        generated_at=datetime(2024, 1, 10),
    )

    assert text.startswith("Harbor cafe\n===========\n")
    assert "No records had a usable onset date." in text
    assert "First case" not in text
    assert "Exposure window" not in text
    assert "Attack rates" not in text
    assert "Two-way tables" not in text


def test_inverted_exposure_window_is_called_out() -> None:
    records = [make_record(1, onset="2024-01-01"), make_record(2, onset="2024-01-09")]
    curve = build_epicurve(records, "onset", "daily")
    exposure = estimate_exposure_window(records, "onset", "Norovirus", method="case-span")

    text = render_narrative(curve, detect_milestones(records, "onset"), exposure=exposure)

    assert "The window is inverted" in text
