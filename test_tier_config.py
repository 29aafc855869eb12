"""
Tests for tier targets and layout resolution.

Usage: pytest test_tier_config.py
"""

import pytest

from dealer_portal.normalization import CustomerType
from dealer_portal.tier_config import (
    DEFAULT_SHARE_TARGETS,
    compute_tier_status,
    compute_tier_targets,
    effective_targets,
    layout_payload,
    normalize_layout,
    resolve_dealer_layout,
    round_half_up,
    settings_payload,
    tier_for_model,
)

LAYOUT = {
    "tiers": [
        {"code": "B1", "name": "B1 Niche", "models": ["NGB21"], "sortOrder": 2},
        {"code": "A1", "name": "A1 Core", "models": {"0": "SRC19", "1": "src21"}, "sortOrder": 1},
    ],
}


def entry(model):
    return {"chassis": model + "-X", "model": model, "type": CustomerType.STOCK}


# =============================================================================
# TARGETS
# =============================================================================

@pytest.mark.parametrize("value,expected", [(2.5, 3), (2.4, 2), (0.5, 1), (0, 0)])
def test_round_half_up(value, expected):
    assert round_half_up(value) == expected


def test_compute_tier_targets_rounds_half_up():
    assert compute_tier_targets(5, {"A": 0.5}) == {"A": 3}
    assert compute_tier_targets(10) == {"A1": 4, "A1+": 3, "A2": 2, "B1": 1}
    assert compute_tier_targets("junk", {"A": 0.5}) == {"A": 0}


def test_effective_targets_merges_stored_values():
    merged = effective_targets({
        "tierTargets": {"A1": {"minimum": "5"}, "C9": {"label": "Custom", "ceiling": 2}},
        "shareTargets": {"A1": 0.6, "A2": 4},
    })
    assert merged["tier_targets"]["A1"]["minimum"] == 5
    assert merged["tier_targets"]["A1"]["label"] == "Core"
    assert merged["tier_targets"]["C9"] == {"label": "Custom", "role": "", "minimum": 0, "ceiling": 2}
    assert merged["share_targets"]["A1"] == 0.6
    # out-of-range shares are ignored
    assert merged["share_targets"]["A2"] == DEFAULT_SHARE_TARGETS["A2"]


def test_effective_targets_defaults_without_settings():
    assert effective_targets(None)["share_targets"] == DEFAULT_SHARE_TARGETS


def test_settings_payload_is_camel_case():
    merged = effective_targets(None)
    payload = settings_payload(merged["tier_targets"], merged["share_targets"])
    assert payload["tierTargets"]["B1"]["ceiling"] == 1
    assert "ceiling" not in payload["tierTargets"]["A1"]
    assert effective_targets(payload) == merged


# =============================================================================
# LAYOUTS
# =============================================================================

def test_normalize_layout_orders_tiers_and_flattens_models():
    layout = normalize_layout(LAYOUT)
    assert [t["code"] for t in layout["tiers"]] == ["A1", "B1"]
    assert layout["tiers"][0]["models"] == ["SRC19", "src21"]
    assert normalize_layout("nope") is None


def test_layout_payload_keeps_sort_order():
    payload = layout_payload(normalize_layout(LAYOUT))
    assert [t["sortOrder"] for t in payload["tiers"]] == [1, 2]


def test_resolve_prefers_dealer_layout():
    resolved = resolve_dealer_layout(LAYOUT, {"tiers": [{"code": "A2"}]})
    assert resolved["source"] == "dealer"
    assert resolved["default_layout"]["tiers"][0]["code"] == "A2"


def test_resolve_falls_back_to_default_then_none():
    assert resolve_dealer_layout(None, LAYOUT)["source"] == "default"
    resolved = resolve_dealer_layout(None, None)
    assert resolved["source"] == "none"
    assert resolved["layout"] is None


def test_tier_for_model_is_case_insensitive():
    layout = normalize_layout(LAYOUT)
    assert tier_for_model(layout, "SRC21") == "A1"
    assert tier_for_model(layout, "XYZ") is None
    assert tier_for_model(None, "SRC21") is None


# =============================================================================
# STATUS
# =============================================================================

def test_compute_tier_status_under_over_ok():
    layout = normalize_layout(LAYOUT)
    yard = [entry("SRC19")] * 4 + [entry("NGB21")] * 2 + [entry("OTHER")]

    status = compute_tier_status(layout, yard, min_volume=10)
    rows = {row["code"]: row for row in status["tiers"]}

    assert rows["A1"]["actual"] == 4
    assert rows["A1"]["target"] == 4
    assert rows["A1"]["status"] == "ok"
    assert rows["B1"]["status"] == "over"
    assert status["unassigned"] == 1


def test_compute_tier_status_under_minimum():
    layout = normalize_layout(LAYOUT)
    status = compute_tier_status(layout, [entry("SRC19")], min_volume=0)
    rows = {row["code"]: row for row in status["tiers"]}
    assert rows["A1"]["target"] == 0
    assert rows["A1"]["minimum"] == 3
    assert rows["A1"]["status"] == "under"


def test_compute_tier_status_without_layout():
    status = compute_tier_status(None, [entry("SRC19")])
    assert status == {"tiers": [], "unassigned": 1}
