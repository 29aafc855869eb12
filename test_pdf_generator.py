"""
Tests for the yard report PDF.

Usage: pytest test_pdf_generator.py
"""

from datetime import date

import pytest

from dealer_portal.date_utils import DateWindow
from dealer_portal.normalization import CustomerType
from dealer_portal.pdf_generator import (
    YardReportPDFGenerator,
    build_yard_report,
    format_age_days,
    format_currency,
    generate_yard_report_pdf,
)

WINDOW = DateWindow.preset("30d", date(2024, 3, 15))

YARD = [
    {"chassis": "SRC001", "model": "SRC19", "customer": "", "type": CustomerType.STOCK,
     "received_at": "2024-03-01T00:00:00", "days_in_yard": 14},
    {"chassis": "NGB002", "model": "NGB21", "customer": "Jo & Sam", "type": CustomerType.CUSTOMER,
     "received_at": "2023-09-01T00:00:00", "days_in_yard": 196},
]


@pytest.fixture
def report():
    tiers = {
        "tiers": [{"code": "A1", "name": "A1 Core", "actual": 1, "target": 2, "minimum": 3,
                   "ceiling": None, "status": "under"}],
        "unassigned": 1,
    }
    return build_yard_report([], YARD, [], "acme-rv", WINDOW, tiers)


def test_build_yard_report_sorts_longest_stay_first(report):
    assert [e["chassis"] for e in report["yard"]] == ["NGB002", "SRC001"]
    assert report["kpis"]["yard_stock"]["total"] == 2
    assert {b["label"]: b["count"] for b in report["buckets"]} == {
        "0-30": 1, "31-90": 0, "91-180": 0, "180+": 1,
    }


def test_html_escapes_text(report):
    html = YardReportPDFGenerator("A&B Caravans", "Last 30 days")._build_html(
        report, {"kpis": True, "buckets": True, "tiers": True, "yard_list": True}
    )
    assert "A&amp;B Caravans" in html
    assert "Jo &amp; Sam" in html
    assert "UNDER" in html


def test_sections_can_be_left_out(report):
    html = YardReportPDFGenerator("Acme RV", "Last 30 days")._build_html(report, {"yard_list": True})
    assert "Tier Targets" not in html
    assert "Yard List" in html


def test_generate_writes_pdf(report, tmp_path):
    output = tmp_path / "report.pdf"
    buffer = generate_yard_report_pdf("Acme RV", "Last 30 days", report, output_path=str(output))
    assert buffer.getvalue().startswith(b"%PDF")
    assert output.read_bytes() == buffer.getvalue()


def test_formatters():
    assert format_currency(45990) == "A$45,990.00"
    assert format_currency(None) == "-"
    assert format_age_days(0) == "Today"
    assert format_age_days(1) == "1 day"
    assert format_age_days("12") == "12 days"
    assert format_age_days(None) == "-"
