"""
Tests for dealer slug and access-code helpers.

Usage: pytest test_dealer_utils.py
"""

import re

import pytest

from dealer_portal.dealer_utils import (
    ACCESS_CODE_LENGTH,
    build_access_slug,
    dealer_header_html,
    generate_access_code,
    is_price_enabled_dealer,
    is_secondhand_chassis,
    normalize_dealer_slug,
    prettify_slug,
    resolve_dealer_access,
    slugify_name,
    split_access_slug,
    unique_slugs,
)


# =============================================================================
# SLUGS
# =============================================================================

@pytest.mark.parametrize("slug", ["acme-rv", "geelong", "st-james", "sydney-rv-centre"])
def test_access_code_suffix_is_ignored(slug):
    assert normalize_dealer_slug(slug + "-abc123") == normalize_dealer_slug(slug)


def test_normalize_lowercases_and_handles_none():
    assert normalize_dealer_slug("Acme-RV-ABC123") == "acme-rv"
    assert normalize_dealer_slug(None) == ""


@pytest.mark.parametrize("name", [
    "Acme RV",
    "  St. James Caravans ",
    "Snowy River (Geelong)!",
    "---weird---name---",
    "ÄÖÜ Motors",
    "",
])
def test_slugify_is_idempotent_and_clean(name):
    slug = slugify_name(name)
    assert slugify_name(slug) == slug
    assert re.fullmatch(r"[a-z0-9-]*", slug)
    assert not slug.startswith("-")
    assert not slug.endswith("-")


def test_slugify_examples():
    assert slugify_name("Acme RV") == "acme-rv"
    assert slugify_name("St. James") == "st-james"
    assert slugify_name(None) == ""


def test_prettify_slug():
    assert prettify_slug("st-james") == "St James"
    assert prettify_slug("acme-rv") == "Acme Rv"
    assert prettify_slug("") == ""


def test_unique_slugs_keeps_first_occurrence():
    assert unique_slugs(["Acme RV", "acme rv", "", "Geelong"]) == ["acme-rv", "geelong"]


# =============================================================================
# ACCESS CODES
# =============================================================================

def test_generated_code_shape():
    code = generate_access_code()
    assert len(code) == ACCESS_CODE_LENGTH
    assert re.fullmatch(r"[a-z0-9]+", code)


def test_split_round_trips_build():
    assert split_access_slug(build_access_slug("acme-rv", "x1y2z3")) == ("acme-rv", "x1y2z3")
    assert split_access_slug("acme-rv") == ("acme-rv", None)


@pytest.fixture
def configs():
    return {
        "acme-rv": {"slug": "acme-rv", "name": "Acme RV", "code": "x1y2z3", "is_active": True},
        "closed": {"slug": "closed", "name": "Closed", "code": "aaaaaa", "is_active": False},
    }


def test_resolve_dealer_access_matches_code(configs):
    assert resolve_dealer_access(configs, "acme-rv-x1y2z3")["name"] == "Acme RV"


@pytest.mark.parametrize("raw", ["acme-rv-zzzzzz", "acme-rv", "closed-aaaaaa", "unknown-x1y2z3", None])
def test_resolve_dealer_access_rejects(configs, raw):
    assert resolve_dealer_access(configs, raw) is None


# =============================================================================
# DEALER/CHASSIS FLAGS
# =============================================================================

def test_price_enabled_dealer_ignores_access_code():
    assert is_price_enabled_dealer("geelong")
    assert is_price_enabled_dealer("geelong-abc123")
    assert not is_price_enabled_dealer("acme-rv")


@pytest.mark.parametrize("chassis,expected", [
    ("LRV24001", True),
    ("nab25123", True),
    ("SRC23999", True),
    ("SRC22999", False),
    ("ABC123", False),
    ("", False),
    (None, False),
])
def test_secondhand_chassis(chassis, expected):
    assert is_secondhand_chassis(chassis) is expected


def test_dealer_header_escapes_markup():
    assert dealer_header_html("A&B <Caravans>") == '<p class="main-header">A&amp;B &lt;Caravans&gt;</p>'
    assert dealer_header_html(None) == '<p class="main-header"></p>'
