"""
Tests for record normalization.

Usage: pytest test_normalization.py
"""

from datetime import datetime

import pytest

from dealer_portal.normalization import (
    CustomerType,
    build_model_meta,
    classify_customer_type,
    coalesce,
    dealer_config_payload,
    extract_latest_wholesale,
    extract_vin,
    index_by_chassis,
    normalize_date_input,
    normalize_dealer_configs,
    normalize_handovers,
    normalize_invoices,
    normalize_pgi_records,
    normalize_schedule,
    normalize_show_orders,
    normalize_show_tasks,
    normalize_shows,
    normalize_team_members,
    normalize_yard_sizes,
    normalize_yard_stock,
    parse_price,
    snapshot_to_rows,
    to_number,
)

NOW = datetime(2024, 3, 15, 12, 0)


# =============================================================================
# GENERIC HELPERS
# =============================================================================

def test_coalesce_skips_none_and_blank():
    record = {"a": None, "b": "  ", "c": 0, "d": "x"}
    assert coalesce(record, ("a", "b", "c", "d")) == 0
    assert coalesce(record, ("a", "b"), "fallback") == "fallback"
    assert coalesce("not a dict", ("a",), "fallback") == "fallback"


@pytest.mark.parametrize("raw,expected", [
    ("12", 12.0),
    ("1,250.5", 1250.5),
    (7, 7.0),
    ("abc", 0.0),
    (None, 0.0),
    (True, 0.0),
    (float("nan"), 0.0),
])
def test_to_number(raw, expected):
    assert to_number(raw) == expected


def test_parse_price():
    assert parse_price("$45,990.00") == 45990.0
    assert parse_price("n/a") is None
    assert parse_price(None) is None


def test_snapshot_to_rows_map_and_list():
    rows = snapshot_to_rows({"k1": {"name": "a"}, "k2": {"id": "override", "name": "b"}, "bad": 3})
    assert [r["id"] for r in rows] == ["k1", "override"]

    rows = snapshot_to_rows([None, {"name": "a"}, {"id": "x"}])
    assert [r["id"] for r in rows] == ["1", "x"]


def test_snapshot_to_rows_blank_override_keeps_key():
    rows = snapshot_to_rows({"k1": {"orderId": ""}}, "orderId")
    assert rows[0]["orderId"] == "k1"


# =============================================================================
# CUSTOMER TYPE
# =============================================================================

@pytest.mark.parametrize("raw_type,customer,expected", [
    ("Stock", "", CustomerType.STOCK),
    ("dealer stock", "John Smith", CustomerType.STOCK),
    ("customer", "", CustomerType.CUSTOMER),
    ("Retail", "", CustomerType.CUSTOMER),
    ("demo", "", CustomerType.CUSTOMER),
    ("", "Acme Stock", CustomerType.STOCK),
    (None, "John Smith", CustomerType.CUSTOMER),
    (None, None, CustomerType.CUSTOMER),
    (42, None, CustomerType.CUSTOMER),
])
def test_classify_customer_type_is_total(raw_type, customer, expected):
    assert classify_customer_type(raw_type, customer) is expected


def test_customer_type_prints_as_value():
    assert str(CustomerType.STOCK) == "Stock"
    assert CustomerType.STOCK == "Stock"


# =============================================================================
# SCHEDULE
# =============================================================================

SCHEDULE = [
    {"Chassis": "ABC123", "Customer": "Acme Stock", "Dealer": "Acme RV", "Regent Production": "Not Started"},
    {"Customer": "Pending", "Dealer": "Acme RV"},
    {"Chassis": "DEF456", "Customer": "", "Dealer": "Acme RV"},
    {"Chassis": "GHI789", "Customer": "Jo", "Dealer": "Acme RV", "Regent Production": "Finished"},
    None,
]


def test_normalize_schedule_default_excludes():
    assert [o["Chassis"] for o in normalize_schedule(SCHEDULE)] == ["ABC123"]


def test_normalize_schedule_include_flags():
    rows = normalize_schedule(SCHEDULE, include_no_chassis=True, include_no_customer=True)
    assert len(rows) == 3
    assert "Chassis" not in rows[1]
    assert len(normalize_schedule(SCHEDULE, True, True, True)) == 4


def test_index_by_chassis():
    assert set(index_by_chassis(normalize_schedule(SCHEDULE, True, True, True))) == {"ABC123", "DEF456", "GHI789"}


# =============================================================================
# YARD STOCK
# =============================================================================

def test_extract_vin_nested():
    assert extract_vin({"vinNumber": " VIN1 "}) == "VIN1"
    assert extract_vin({"chassis": {"vin": "VIN2"}}) == "VIN2"
    assert extract_vin({}) is None


def test_extract_latest_wholesale_prefers_newest():
    record = {
        "a": {"wholesalepo": "$40,000", "updatedAt": "2024-01-01T00:00:00Z"},
        "b": {"wholesalePo": 42000, "updatedAt": "2024-02-01T00:00:00Z"},
    }
    assert extract_latest_wholesale(record) == 42000.0
    assert extract_latest_wholesale(None) is None


def test_build_model_meta_defaults_unknown():
    meta = build_model_meta([{"Model": "SRC19", "Model Range": "SRC", "Layout": ""}])
    assert meta["src19"]["model_range"] == "SRC"
    assert meta["src19"]["layout"] == "Unknown"


def test_normalize_yard_stock_joins_schedule_and_meta():
    yard = {
        "ABC123": {"receivedAt": "2024-03-05T12:00:00", "model": "old", "wholesalepo": "50000"},
        "HIST1": {"history": True},
        "dealer-chassis": {"ABC123": {"wholesalepo": 51000, "updatedAt": "2024-03-01T00:00:00Z"}},
    }
    schedule = {"ABC123": {"Chassis": "ABC123", "Customer": "Acme Stock", "Model": "SRC19"}}
    meta = build_model_meta([{"Model": "SRC19", "Model Range": "SRC"}])

    entries = normalize_yard_stock(yard, schedule, meta, "acme-rv", NOW)

    assert len(entries) == 1
    entry = entries[0]
    assert entry["model"] == "SRC19"
    assert entry["type"] is CustomerType.STOCK
    assert entry["days_in_yard"] == 10
    assert entry["model_range"] == "SRC"
    assert entry["axle"] == "Unknown"
    assert entry["wholesale_price"] == 51000.0
    assert entry["dealer_slug"] == "acme-rv"


def test_normalize_yard_stock_received_now_is_zero_days():
    entries = normalize_yard_stock({"X1": {"receivedAt": NOW.isoformat()}}, now=NOW)
    assert entries[0]["days_in_yard"] == 0


def test_normalize_yard_stock_non_dict():
    assert normalize_yard_stock(None) == []


# =============================================================================
# PGI, HANDOVER & INVOICES
# =============================================================================

def test_pgi_history_hidden_by_default():
    snapshot = {
        "A1": {"PGIDate": "01/03/2024", "dealer": "Acme RV"},
        "A2": {"pgidate": "02/03/2024", "history": True},
    }
    rows = normalize_pgi_records(snapshot)
    assert [r["chassis"] for r in rows] == ["A1"]
    assert rows[0]["pgi_date"] == "01/03/2024"
    assert len(normalize_pgi_records(snapshot, include_history=True)) == 2


def test_handover_falls_back_to_created_at_and_dealer_name():
    rows = normalize_handovers({"C1": {"createdAt": "2024-03-01T00:00:00Z", "dealerName": "Acme RV"}})
    assert rows[0]["handover_at"] == "2024-03-01T00:00:00Z"
    assert rows[0]["dealer_slug"] == "acme-rv"


def test_normalize_date_input_shapes():
    assert normalize_date_input(0.0) == "1970-01-01T00:00:00.000Z"
    assert normalize_date_input(1000) == "1970-01-01T00:16:40.000Z"
    assert normalize_date_input({"_seconds": 60}) == "1970-01-01T00:01:00.000Z"
    assert normalize_date_input("2024-03-01") == "2024-03-01"
    assert normalize_date_input(None) == ""


def test_invoice_unwraps_source():
    rows = normalize_invoices({
        "inv1": {"_source": {"chassisNumber": "ABC123", "POFinalInvoiceValue": "45000", "grSONetValue": 52000}},
    }, "acme-rv")
    assert rows[0]["chassis"] == "ABC123"
    assert rows[0]["purchase_price"] == 45000.0
    assert rows[0]["final_sale_price"] == 52000.0
    assert rows[0]["location_name"] == "acme-rv"


# =============================================================================
# YARD SIZES & DEALER CONFIGS
# =============================================================================

def test_yard_sizes_read_any_min_volume_alias():
    sizes = normalize_yard_sizes([
        {"dealer": "Acme RV", "Min Van Volumn": "12"},
        {"name": "Geelong", "minVanVolume": 8},
        {"dealer": "Broken", "min": "lots"},
    ])
    assert sizes["acme-rv"]["min_volume"] == 12
    assert sizes["geelong"]["min_volume"] == 8
    assert sizes["broken"]["min_volume"] == 0


def test_dealer_config_round_trip_through_payload():
    configs = normalize_dealer_configs({
        "vic-group": {
            "name": "VIC Group", "code": "ABC123", "isGroup": True,
            "includedDealers": {"0": "acme-rv", "1": "geelong"},
        },
        "acme-rv": {"name": "Acme RV", "code": "x1y2z3", "isActive": False},
    })
    group = configs["vic-group"]
    assert group["code"] == "abc123"
    assert group["included_dealers"] == ["acme-rv", "geelong"]
    assert configs["acme-rv"]["is_active"] is False
    assert configs["acme-rv"]["included_dealers"] == []

    payload = dealer_config_payload(group)
    assert payload["isGroup"] is True
    assert payload["includedDealers"] == ["acme-rv", "geelong"]


def test_dealer_config_powerbi_url_defaults_to_blank():
    configs = normalize_dealer_configs({
        "acme-rv": {"name": "Acme RV", "powerbiUrl": "https://app.powerbi.com/view?r=abc"},
        "geelong": {"name": "Geelong"},
    })
    assert configs["acme-rv"]["powerbi_url"] == "https://app.powerbi.com/view?r=abc"
    assert configs["geelong"]["powerbi_url"] == ""


# =============================================================================
# SHOWS
# =============================================================================

def test_show_orders_list_rows_fall_back_to_index_id():
    orders = normalize_show_orders([
        {"orderId": "SO-1", "dealerConfirm": True, "chassisNumber": "ABC123"},
        {"model": "orphan"},
    ])
    # list rows fall back to their index as the id
    assert [o["order_id"] for o in orders] == ["SO-1", "1"]
    assert orders[0]["dealer_confirm"] is True


def test_show_tasks_status_and_required_ids():
    tasks = normalize_show_tasks({
        "t1": {"eventId": "e1", "status": "in_progress"},
        "t2": {"status": "done"},
    })
    assert len(tasks) == 1
    assert tasks[0]["status"] == "In Progress"


def test_shows_resolve_handover_dealer_and_key_ids():
    shows = normalize_shows({"s1": {"name": "Expo", "Handover Dealer": " Acme RV "}})
    assert shows[0]["id"] == "s1"
    assert shows[0]["handover_dealer"] == "Acme RV"


def test_team_members():
    members = normalize_team_members({"m1": {"memberName": "Sam", "email": "sam@example.com", "activeFlag": "1"}})
    assert members[0]["member_name"] == "Sam"
    assert members[0]["active_flag"] == 1
