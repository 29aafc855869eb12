"""
Dealer Identity Helpers

Slug handling for dealer URLs. A dealer (or dealer group) is addressed as
``{slug}-{code}`` where the code is a 6 character lowercase alphanumeric
token used for obscurity only.
"""

import random
import re
import string
from html import escape
from typing import Dict, Iterable, Optional, Tuple

ACCESS_CODE_LENGTH = 6
ACCESS_CODE_ALPHABET = string.ascii_lowercase + string.digits

# Dealers whose yard views show wholesale pricing
PRICE_ENABLED_DEALERS = frozenset({
    "frankston",
    "geelong",
    "launceston",
    "st-james",
    "traralgon",
})

_ACCESS_SUFFIX_RE = re.compile(r"^(.*?)-([a-z0-9]{6})$")
_NON_SLUG_RE = re.compile(r"[^a-z0-9]+")
_SECONDHAND_RE = re.compile(r"^[LNS][A-Z]{2}(?:23|24|25)\d+$")


def _to_str(value) -> str:
    return "" if value is None else str(value)


def normalize_dealer_slug(raw: Optional[str]) -> str:
    """
    Strip a trailing access code from a dealer slug.

    Args:
        raw: Slug as it appears in the URL (e.g. 'acme-rv-x1y2z3')

    Returns:
        Lowercased slug without the access code suffix (e.g. 'acme-rv')
    """
    slug = _to_str(raw).lower()
    match = _ACCESS_SUFFIX_RE.match(slug)
    return match.group(1) if match else slug


def slugify_name(name: Optional[str]) -> str:
    """Convert a free-text dealer name to a URL slug."""
    slug = _NON_SLUG_RE.sub("-", _to_str(name).lower())
    return slug.strip("-")


def prettify_slug(slug: Optional[str]) -> str:
    """
    Turn a slug back into a display name.

    Lossy: 'st-james' becomes 'St James', punctuation is not recovered.
    """
    text = _to_str(slug).replace("-", " ").strip()
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), text)


def generate_access_code() -> str:
    """Generate a random 6 character access code."""
    return "".join(random.choice(ACCESS_CODE_ALPHABET) for _ in range(ACCESS_CODE_LENGTH))


def build_access_slug(slug: str, code: str) -> str:
    return f"{slug}-{code}"


def split_access_slug(raw: Optional[str]) -> Tuple[str, Optional[str]]:
    """
    Split a URL slug into (dealer_slug, access_code).

    The code is None when the slug carries no suffix.
    """
    slug = _to_str(raw).lower()
    match = _ACCESS_SUFFIX_RE.match(slug)
    if match:
        return match.group(1), match.group(2)
    return slug, None


def resolve_dealer_access(
    configs: Dict[str, Dict],
    raw_slug: Optional[str]
) -> Optional[Dict]:
    """
    Find the dealer config addressed by a ``{slug}-{code}`` URL.

    Args:
        configs: Normalized dealer configs keyed by slug
        raw_slug: Slug from the URL, including the access code

    Returns:
        The matching active config, or None if the slug is unknown,
        inactive, or the code does not match
    """
    slug, code = split_access_slug(raw_slug)
    if not slug or not code:
        return None

    config = configs.get(slug)
    if not config or not config.get("is_active", True):
        return None

    if _to_str(config.get("code")).lower() != code:
        return None

    return config


def is_price_enabled_dealer(slug: Optional[str]) -> bool:
    return normalize_dealer_slug(slug) in PRICE_ENABLED_DEALERS


def is_secondhand_chassis(chassis: Optional[str]) -> bool:
    """Secondhand units use an L/N/S prefix followed by a 23-25 year code."""
    if not chassis:
        return False
    return bool(_SECONDHAND_RE.match(str(chassis).upper()))


def unique_slugs(names: Iterable[str]) -> list:
    """Slugify names, dropping blanks and duplicates while keeping order."""
    seen = []
    for name in names:
        slug = slugify_name(name)
        if slug and slug not in seen:
            seen.append(slug)
    return seen


def dealer_header_html(name: str) -> str:
    """Page header markup for a dealer name read from the database."""
    return f'<p class="main-header">{escape(name or "")}</p>'
