"""
Tier Targets

Default tier policy, layout resolution and target-vs-actual computation for
dealer yards. A tier (A1 Core, A1+ Flagship, ...) is a group of models with
a minimum unit count, an optional ceiling and a share of the yard's
minimum van volume.
"""

import copy
import math
from typing import Any, Dict, List, Optional
import logging

from dealer_portal.normalization import to_number, to_str

logger = logging.getLogger(__name__)

DEFAULT_TIER_TARGETS = {
    "A1": {"label": "Core", "role": "Never run dry; keep multiple couple options visible.", "minimum": 3},
    "A1+": {"label": "Flagship", "role": "Prioritise showcase quality; always have a demo.", "minimum": 1},
    "A2": {"label": "Supporting", "role": "Fill structural gaps like family bunk and hybrid.", "minimum": 1},
    "B1": {"label": "Niche", "role": "Tightly control volume; refresh quickly.", "minimum": 0, "ceiling": 1},
}

DEFAULT_SHARE_TARGETS = {"A1": 0.4, "A1+": 0.3, "A2": 0.2, "B1": 0.1}

DEFAULT_LAYOUT = {
    "tiers": [
        {
            "code": "A1",
            "name": "A1 Core",
            "description": "Anchor range that keeps the yard balanced and never runs dry.",
            "models": [],
            "sort_order": 1,
        },
        {
            "code": "A1+",
            "name": "A1+ Flagship",
            "description": "Hero pieces for showcase and demo stock.",
            "models": [],
            "sort_order": 2,
        },
        {
            "code": "A2",
            "name": "A2 Supporting",
            "description": "Structural fillers like family bunk and hybrid coverage.",
            "models": [],
            "sort_order": 3,
        },
        {
            "code": "B1",
            "name": "B1 Niche",
            "description": "Controlled bets and fast refresh experiments.",
            "models": [],
            "sort_order": 4,
        },
    ],
}


def round_half_up(value: float) -> int:
    """Round .5 upwards (Python's round() would give round(2.5) == 2)."""
    return int(math.floor(value + 0.5))


# =============================================================================
# SETTINGS
# =============================================================================

def effective_targets(settings: Optional[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """
    Merge stored tier settings over the defaults.

    Args:
        settings: Value of ``tierConfig/settings`` (may be None)

    Returns:
        {'tier_targets': {...}, 'share_targets': {...}}
    """
    settings = settings if isinstance(settings, dict) else {}

    tier_targets = copy.deepcopy(DEFAULT_TIER_TARGETS)
    for tier, stored in (settings.get("tierTargets") or {}).items():
        if not isinstance(stored, dict):
            continue
        merged = dict(tier_targets.get(tier, {"label": tier, "role": "", "minimum": 0}))
        for key in ("label", "role"):
            if stored.get(key):
                merged[key] = to_str(stored[key])
        if stored.get("minimum") is not None:
            merged["minimum"] = max(0, int(to_number(stored["minimum"])))
        if stored.get("ceiling") is not None and to_str(stored["ceiling"]).strip() != "":
            merged["ceiling"] = max(0, int(to_number(stored["ceiling"])))
        tier_targets[tier] = merged

    share_targets = dict(DEFAULT_SHARE_TARGETS)
    for tier, pct in (settings.get("shareTargets") or {}).items():
        value = to_number(pct)
        if 0 <= value <= 1:
            share_targets[tier] = value

    return {"tier_targets": tier_targets, "share_targets": share_targets}


def settings_payload(tier_targets: Dict[str, Dict[str, Any]], share_targets: Dict[str, float]) -> Dict[str, Any]:
    """Stored camelCase shape of the tier settings."""
    targets = {}
    for tier, target in tier_targets.items():
        entry = {
            "label": target.get("label", tier),
            "role": target.get("role", ""),
            "minimum": int(target.get("minimum", 0)),
        }
        if target.get("ceiling") is not None:
            entry["ceiling"] = int(target["ceiling"])
        targets[tier] = entry

    return {
        "tierTargets": targets,
        "shareTargets": {tier: float(pct) for tier, pct in share_targets.items()},
    }


def compute_tier_targets(min_volume: Any, share_targets: Optional[Dict[str, float]] = None) -> Dict[str, int]:
    """
    Target unit count per tier for a yard.

    Args:
        min_volume: The yard's minimum van volume
        share_targets: Tier -> share (0-1); defaults are used when None

    Returns:
        Tier -> round(min_volume * share)
    """
    baseline = to_number(min_volume)
    shares = share_targets if share_targets is not None else DEFAULT_SHARE_TARGETS
    return {tier: round_half_up(baseline * to_number(pct)) for tier, pct in shares.items()}


# =============================================================================
# LAYOUTS
# =============================================================================

def normalize_layout(raw: Any) -> Optional[Dict[str, Any]]:
    """Normalize a stored layout, ordering tiers by sort order."""
    if not isinstance(raw, dict):
        return None

    tiers_raw = raw.get("tiers") or []
    if isinstance(tiers_raw, dict):
        tiers_raw = list(tiers_raw.values())

    tiers = []
    for index, tier in enumerate(tiers_raw):
        if not isinstance(tier, dict) or not to_str(tier.get("code")):
            continue
        models = tier.get("models") or []
        if isinstance(models, dict):
            models = list(models.values())
        sort_order = tier.get("sortOrder", tier.get("sort_order"))
        tiers.append({
            "code": to_str(tier.get("code")),
            "name": to_str(tier.get("name") or tier.get("code")),
            "description": to_str(tier.get("description")),
            "models": [to_str(m) for m in models if to_str(m).strip()],
            "sort_order": int(to_number(sort_order)) if sort_order is not None else index + 1,
        })

    tiers.sort(key=lambda t: t["sort_order"])
    return {
        "tiers": tiers,
        "slug": to_str(raw.get("slug")),
        "updated_at": to_str(raw.get("updatedAt")),
    }


def layout_payload(layout: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "tiers": [
            {
                "code": tier["code"],
                "name": tier.get("name", tier["code"]),
                "description": tier.get("description", ""),
                "models": list(tier.get("models") or []),
                "sortOrder": tier.get("sort_order", index + 1),
            }
            for index, tier in enumerate(layout.get("tiers") or [])
        ],
    }


def resolve_dealer_layout(
    dealer_layout: Any,
    default_layout: Any
) -> Dict[str, Any]:
    """
    Pick the layout a dealer should use.

    Returns:
        {'layout', 'default_layout', 'source'} where source is 'dealer',
        'default' or 'none'
    """
    dealer = normalize_layout(dealer_layout)
    default = normalize_layout(default_layout)

    if dealer:
        source = "dealer"
    elif default:
        source = "default"
    else:
        source = "none"

    return {"layout": dealer or default, "default_layout": default, "source": source}


def tier_for_model(layout: Optional[Dict[str, Any]], model: Any) -> Optional[str]:
    """Tier code whose model list contains the model (case-insensitive)."""
    name = to_str(model).strip().lower()
    if not layout or not name:
        return None
    for tier in layout.get("tiers") or []:
        if name in (m.strip().lower() for m in tier.get("models") or []):
            return tier["code"]
    return None


# =============================================================================
# TARGET VS ACTUAL
# =============================================================================

def compute_tier_status(
    layout: Optional[Dict[str, Any]],
    yard_entries: List[Dict[str, Any]],
    tier_targets: Optional[Dict[str, Dict[str, Any]]] = None,
    share_targets: Optional[Dict[str, float]] = None,
    min_volume: Any = 0
) -> Dict[str, Any]:
    """
    Compare each tier's yard count with its policy.

    Args:
        layout: Resolved dealer layout (None gives no tier rows)
        yard_entries: Normalized yard list
        tier_targets: Tier -> {label, role, minimum, ceiling}
        share_targets: Tier -> share of min_volume
        min_volume: The yard's minimum van volume

    Returns:
        Dictionary with 'tiers' (one row per layout tier with actual, target,
        minimum, ceiling, status) and 'unassigned' (units whose model is in
        no tier)
    """
    tier_targets = tier_targets or DEFAULT_TIER_TARGETS
    targets = compute_tier_targets(min_volume, share_targets)

    actual = {}
    unassigned = 0
    for entry in yard_entries:
        code = tier_for_model(layout, entry.get("model"))
        if code is None:
            unassigned += 1
        else:
            actual[code] = actual.get(code, 0) + 1

    rows = []
    for tier in (layout or {}).get("tiers") or []:
        code = tier["code"]
        policy = tier_targets.get(code, {})
        minimum = int(policy.get("minimum", 0))
        ceiling = policy.get("ceiling")
        count = actual.get(code, 0)
        target = targets.get(code, 0)

        if count < max(minimum, target):
            status = "under"
        elif ceiling is not None and count > ceiling:
            status = "over"
        else:
            status = "ok"

        rows.append({
            "code": code,
            "name": tier.get("name", code),
            "label": policy.get("label", ""),
            "role": policy.get("role", ""),
            "models": tier.get("models", []),
            "actual": count,
            "target": target,
            "minimum": minimum,
            "ceiling": ceiling,
            "status": status,
        })

    logger.debug(f"Tier status: {len(rows)} tiers, {unassigned} unassigned units")
    return {"tiers": rows, "unassigned": unassigned}
