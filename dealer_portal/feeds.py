"""
Data Feeds

Typed subscriptions and write operations over the dealer portal's database
paths. Each ``subscribe_*`` function normalizes the raw snapshot before
handing it to the callback and returns the Subscription, which doubles as
its unsubscribe function.

Paths:
    schedule                                  production schedule
    yardstock/{dealer}/{chassis}              units in a dealer's yard
    yardpending/{dealer}/{chassis}            manual yard additions awaiting approval
    pgirecord/{chassis}                       units on the road
    handover/{dealer}/{chassis}               units handed to customers
    yardnewvaninvoice/{dealer}                new van invoices
    stockorder, reallocation                  factory inventory stock
    dealerConfigs/{slug}                      dealer access configuration
    tierConfig/settings, tierConfig/defaultLayout, tierConfig/dealerLayouts/{slug}
    yardsize, modelanalysis                   reference tables
    showOrders, showTasks, shows, teamMembers show logistics (separate database)
"""

import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
import logging

from dealer_portal.dealer_utils import generate_access_code, slugify_name, unique_slugs
from dealer_portal.firebase_client import FirebaseContext, FirebaseError, Subscription
from dealer_portal.normalization import (
    coalesce,
    dealer_config_payload,
    normalize_dealer_config,
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
)
from dealer_portal.tier_config import layout_payload, resolve_dealer_layout, settings_payload

logger = logging.getLogger(__name__)

Callback = Callable[[Any], None]
ErrorCallback = Optional[Callable[[Exception], None]]

PGI_DATE_KEYS = ("pgidate", "PGIDate", "pgIDate", "PgiDate")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _require(value: str, name: str):
    if not value:
        raise ValueError(f"{name} is required")


# =============================================================================
# SUBSCRIPTIONS
# =============================================================================

def subscribe_to_schedule(
    ctx: FirebaseContext,
    callback: Callback,
    include_no_chassis: bool = False,
    include_no_customer: bool = False,
    include_finished: bool = False,
    on_error: ErrorCallback = None
) -> Subscription:
    """Schedule rows, filtered as requested by the include_* flags."""
    return ctx.subscribe(
        "schedule",
        lambda raw: callback(normalize_schedule(
            raw, include_no_chassis, include_no_customer, include_finished
        )),
        on_error
    )


def subscribe_to_yard_stock(
    ctx: FirebaseContext,
    dealer_slug: str,
    callback: Callback,
    on_error: ErrorCallback = None
) -> Subscription:
    """
    Raw yard map for one dealer (chassis -> record, always a dict).

    Yard entries depend on the schedule and model analysis as well, so the
    caller joins them with ``normalize_yard_stock``.
    """
    _require(dealer_slug, "dealer_slug")
    return ctx.subscribe(
        f"yardstock/{dealer_slug}",
        lambda raw: callback(raw if isinstance(raw, dict) else {}),
        on_error
    )


def subscribe_to_pgi_records(ctx: FirebaseContext, callback: Callback, on_error: ErrorCallback = None) -> Subscription:
    return ctx.subscribe("pgirecord", lambda raw: callback(normalize_pgi_records(raw)), on_error)


def subscribe_to_handovers(
    ctx: FirebaseContext,
    dealer_slug: str,
    callback: Callback,
    on_error: ErrorCallback = None
) -> Subscription:
    _require(dealer_slug, "dealer_slug")
    return ctx.subscribe(f"handover/{dealer_slug}", lambda raw: callback(normalize_handovers(raw)), on_error)


def subscribe_to_yard_invoices(
    ctx: FirebaseContext,
    dealer_slug: str,
    callback: Callback,
    on_error: ErrorCallback = None
) -> Subscription:
    _require(dealer_slug, "dealer_slug")
    return ctx.subscribe(
        f"yardnewvaninvoice/{dealer_slug}",
        lambda raw: callback(normalize_invoices(raw, dealer_slug)),
        on_error
    )


def subscribe_to_stock(ctx: FirebaseContext, callback: Callback, on_error: ErrorCallback = None) -> Subscription:
    return ctx.subscribe("stockorder", lambda raw: callback(raw if isinstance(raw, dict) else {}), on_error)


def subscribe_to_reallocation(ctx: FirebaseContext, callback: Callback, on_error: ErrorCallback = None) -> Subscription:
    return ctx.subscribe("reallocation", lambda raw: callback(raw if isinstance(raw, dict) else {}), on_error)


def subscribe_to_dealer_config(
    ctx: FirebaseContext,
    slug: str,
    callback: Callback,
    on_error: ErrorCallback = None
) -> Subscription:
    """Single dealer config, or None when the slug has no config."""
    _require(slug, "slug")
    return ctx.subscribe(
        f"dealerConfigs/{slug}",
        lambda raw: callback(normalize_dealer_config(slug, raw) if isinstance(raw, dict) else None),
        on_error
    )


def subscribe_all_dealer_configs(ctx: FirebaseContext, callback: Callback, on_error: ErrorCallback = None) -> Subscription:
    return ctx.subscribe("dealerConfigs", lambda raw: callback(normalize_dealer_configs(raw)), on_error)


def load_tier_settings(ctx: FirebaseContext) -> Dict[str, Any]:
    """Read tier settings, falling back to the legacy ``tierConfig`` root."""
    settings = ctx.get("tierConfig/settings")
    if isinstance(settings, dict):
        return settings
    legacy = ctx.get("tierConfig")
    return legacy if isinstance(legacy, dict) else {}


def subscribe_to_tier_config(ctx: FirebaseContext, callback: Callback, on_error: ErrorCallback = None) -> Subscription:
    """
    Tier settings as a dict.

    When ``tierConfig/settings`` does not exist yet the legacy root is read
    once instead.
    """
    state = {"emitted": False}

    def handle(raw):
        if isinstance(raw, dict):
            state["emitted"] = True
            callback(raw)
        elif not state["emitted"]:
            state["emitted"] = True
            legacy = ctx.get("tierConfig")
            callback(legacy if isinstance(legacy, dict) else {})

    return ctx.subscribe("tierConfig/settings", handle, on_error)


class _LayoutSubscription:
    """Two subscriptions (dealer + default layout) behind one unsubscribe."""

    def __init__(self, subscriptions):
        self._subscriptions = subscriptions

    def unsubscribe(self):
        for subscription in self._subscriptions:
            subscription.unsubscribe()

    __call__ = unsubscribe


def subscribe_to_dealer_layout(
    ctx: FirebaseContext,
    slug: str,
    callback: Callback,
    on_error: ErrorCallback = None
) -> _LayoutSubscription:
    """Resolved layout for a dealer: dealer layout, else default, else none."""
    _require(slug, "slug")
    lock = threading.Lock()
    latest = {"dealer": None, "default": None}

    def emit(which, raw):
        with lock:
            latest[which] = raw
            callback(resolve_dealer_layout(latest["dealer"], latest["default"]))

    return _LayoutSubscription([
        ctx.subscribe(f"tierConfig/dealerLayouts/{slug}", lambda raw: emit("dealer", raw), on_error),
        ctx.subscribe("tierConfig/defaultLayout", lambda raw: emit("default", raw), on_error),
    ])


def subscribe_to_yard_size(ctx: FirebaseContext, callback: Callback, on_error: ErrorCallback = None) -> Subscription:
    return ctx.subscribe("yardsize", lambda raw: callback(normalize_yard_sizes(raw)), on_error)


def subscribe_to_model_analysis(ctx: FirebaseContext, callback: Callback, on_error: ErrorCallback = None) -> Subscription:
    """Raw model analysis rows (list or map); see ``build_model_meta``."""
    return ctx.subscribe("modelanalysis", lambda raw: callback(raw or []), on_error)


def subscribe_to_show_orders(ctx: FirebaseContext, callback: Callback, on_error: ErrorCallback = None) -> Subscription:
    return ctx.subscribe("showOrders", lambda raw: callback(normalize_show_orders(raw)), on_error)


def subscribe_to_show_tasks(ctx: FirebaseContext, callback: Callback, on_error: ErrorCallback = None) -> Subscription:
    return ctx.subscribe("showTasks", lambda raw: callback(normalize_show_tasks(raw)), on_error)


def subscribe_to_shows(ctx: FirebaseContext, callback: Callback, on_error: ErrorCallback = None) -> Subscription:
    return ctx.subscribe("shows", lambda raw: callback(normalize_shows(raw)), on_error)


def fetch_team_members(ctx: FirebaseContext) -> list:
    return normalize_team_members(ctx.get("teamMembers"))


# =============================================================================
# YARD WRITES
# =============================================================================

def receive_chassis_to_yard(
    ctx: FirebaseContext,
    dealer_slug: str,
    chassis: str,
    pgi_data: Optional[Dict[str, Any]]
) -> Dict[str, Any]:
    """
    Move an on-the-road unit into a dealer's yard.

    Copies the PGI record into ``yardstock/{dealer}/{chassis}`` as Stock,
    then deletes ``pgirecord/{chassis}``.

    Returns:
        The yard record that was written
    """
    _require(dealer_slug, "dealer_slug")
    _require(chassis, "chassis")

    source = dict(pgi_data) if isinstance(pgi_data, dict) else {}
    record = dict(source)
    record.update({
        "receivedAt": _now_iso(),
        "from_pgidate": coalesce(source, PGI_DATE_KEYS),
        "dealer": source.get("dealer"),
        "model": source.get("model"),
        "customer": source.get("customer"),
        "type": "Stock",
    })

    ctx.set(f"yardstock/{dealer_slug}/{chassis}", record)
    ctx.remove(f"pgirecord/{chassis}")
    logger.info(f"Received {chassis} into {dealer_slug} yard")
    return record


def mark_pgi_history(ctx: FirebaseContext, chassis: str, history: bool = True):
    """Hide (or unhide) a PGI record without deleting it."""
    _require(chassis, "chassis")
    ctx.update(f"pgirecord/{chassis}", {"history": history})


def dispatch_from_yard(ctx: FirebaseContext, dealer_slug: str, chassis: str):
    _require(dealer_slug, "dealer_slug")
    _require(chassis, "chassis")
    ctx.remove(f"yardstock/{dealer_slug}/{chassis}")
    logger.info(f"Dispatched {chassis} from {dealer_slug} yard")


def save_handover(ctx: FirebaseContext, dealer_slug: str, chassis: str, data: Dict[str, Any]):
    """Record a handover, then remove the unit from the yard."""
    _require(dealer_slug, "dealer_slug")
    _require(chassis, "chassis")

    payload = dict(data)
    payload.setdefault("chassis", chassis)
    payload.setdefault("dealerSlug", dealer_slug)
    payload.setdefault("handoverAt", _now_iso())
    payload.setdefault("createdAt", _now_iso())

    ctx.set(f"handover/{dealer_slug}/{chassis}", payload)
    ctx.remove(f"yardstock/{dealer_slug}/{chassis}")
    logger.info(f"Handed over {chassis} for {dealer_slug}")


def add_manual_chassis_to_yard_pending(
    ctx: FirebaseContext,
    dealer_slug: str,
    chassis: str,
    model: Optional[str] = None,
    vin_number: Optional[str] = None,
    wholesale_po: Optional[float] = None,
    received_at: Optional[str] = None,
    unit_type: Optional[str] = None
) -> Dict[str, Any]:
    """Queue a manually entered unit for yard approval."""
    _require(dealer_slug, "dealer_slug")
    _require(chassis, "chassis")

    record = {
        "chassis": chassis,
        "requestedAt": _now_iso(),
        "receivedAt": received_at,
        "dealerSlug": dealer_slug,
        "dealer": dealer_slug,
        "model": model,
        "customer": None,
        "manual": True,
        "type": unit_type,
        "status": "pending",
        "vinNumber": vin_number,
        "vinnumber": vin_number,
        "wholesalePo": wholesale_po,
        "wholesalepo": wholesale_po,
    }
    ctx.set(f"yardpending/{dealer_slug}/{chassis}", record)
    return record


def order_stock_unit(ctx: FirebaseContext, chassis: str, ordered_by: str):
    """Mark a factory stock unit as ordered so it leaves the inventory table."""
    _require(chassis, "chassis")
    ctx.update(f"stockorder/{chassis}", {
        "ordered": True,
        "orderedBy": ordered_by,
        "orderedAt": _now_iso(),
    })


# =============================================================================
# CONFIG WRITES
# =============================================================================

def save_dealer_config(
    ctx: FirebaseContext,
    name: str,
    code: Optional[str] = None,
    is_active: bool = True,
    powerbi_url: str = "",
    existing: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Create or update a dealer config keyed by the slugified name.

    A new access code is generated when none is given.

    Returns:
        The normalized config that was written
    """
    slug = slugify_name(name)
    _require(slug, "name")

    now = _now_iso()
    config = {
        "slug": slug,
        "name": name,
        "code": code or (existing or {}).get("code") or generate_access_code(),
        "is_active": is_active,
        "powerbi_url": powerbi_url,
        "is_group": False,
        "included_dealers": [],
        "created_at": (existing or {}).get("created_at") or now,
        "updated_at": now,
    }
    ctx.set(f"dealerConfigs/{slug}", dealer_config_payload(config))
    logger.info(f"Saved dealer config {slug}")
    return config


def save_group_config(
    ctx: FirebaseContext,
    name: str,
    included_dealers: list,
    code: Optional[str] = None,
    is_active: bool = True,
    existing: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Create or update a dealer group that shares one access code."""
    slug = slugify_name(name)
    _require(slug, "name")
    if not included_dealers:
        raise ValueError("A dealer group needs at least one member dealer")

    now = _now_iso()
    config = {
        "slug": slug,
        "name": name,
        "code": code or (existing or {}).get("code") or generate_access_code(),
        "is_active": is_active,
        "powerbi_url": (existing or {}).get("powerbi_url", ""),
        "is_group": True,
        "included_dealers": unique_slugs(included_dealers),
        "created_at": (existing or {}).get("created_at") or now,
        "updated_at": now,
    }
    ctx.set(f"dealerConfigs/{slug}", dealer_config_payload(config))
    logger.info(f"Saved dealer group {slug} with {len(config['included_dealers'])} members")
    return config


def remove_dealer_config(ctx: FirebaseContext, slug: str):
    _require(slug, "slug")
    ctx.remove(f"dealerConfigs/{slug}")


def update_dealer_active_status(ctx: FirebaseContext, slug: str, is_active: bool):
    _require(slug, "slug")
    ctx.update(f"dealerConfigs/{slug}", {"isActive": is_active, "updatedAt": _now_iso()})


def update_dealer_powerbi_url(ctx: FirebaseContext, slug: str, url: str):
    _require(slug, "slug")
    ctx.update(f"dealerConfigs/{slug}", {"powerbiUrl": url, "updatedAt": _now_iso()})


def save_tier_settings(
    ctx: FirebaseContext,
    tier_targets: Dict[str, Dict[str, Any]],
    share_targets: Dict[str, float]
) -> Dict[str, Any]:
    """Merge new tier settings over the stored ones."""
    existing = ctx.get("tierConfig/settings")
    payload = dict(existing) if isinstance(existing, dict) else {}
    payload.update(settings_payload(tier_targets, share_targets))
    payload["updatedAt"] = _now_iso()
    ctx.set("tierConfig/settings", payload)
    return payload


def save_dealer_layout(ctx: FirebaseContext, slug: str, layout: Dict[str, Any]):
    _require(slug, "slug")
    payload = layout_payload(layout)
    payload.update({"slug": slug, "updatedAt": _now_iso()})
    ctx.set(f"tierConfig/dealerLayouts/{slug}", payload)


def save_default_layout(ctx: FirebaseContext, layout: Dict[str, Any]):
    payload = layout_payload(layout)
    payload["updatedAt"] = _now_iso()
    ctx.set("tierConfig/defaultLayout", payload)


def update_show_order(ctx: FirebaseContext, order_id: str, updates: Dict[str, Any]):
    """
    Patch a show order. Confirming an order stamps ``dealerConfirmAt``.

    Args:
        ctx: Context for the show database
        order_id: Order key
        updates: camelCase fields to change
    """
    _require(order_id, "order_id")
    payload = dict(updates)
    payload["updatedAt"] = _now_iso()
    if updates.get("dealerConfirm"):
        payload["dealerConfirmAt"] = _now_iso()
    ctx.update(f"showOrders/{order_id}", payload)


# =============================================================================
# LIVE FEEDS
# =============================================================================

class LiveFeeds:
    """
    Latest value of several subscriptions, readable from any thread.

    Feeds that have not delivered yet read as their default, so views can
    render from whatever subset has arrived.

    Usage:
        >>> feeds = LiveFeeds()
        >>> feeds.attach("pgi", lambda cb, err: subscribe_to_pgi_records(ctx, cb, err), [])
        >>> feeds.get("pgi")
        []
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._values = {}
        self._defaults = {}
        self._errors = {}
        self._subscriptions = {}

    def attach(
        self,
        name: str,
        subscribe: Callable[[Callback, ErrorCallback], Any],
        default: Any = None
    ):
        """
        Start a feed.

        Args:
            name: Feed name used with ``get``
            subscribe: Called with (callback, on_error); returns the subscription
            default: Value reported until the first delivery
        """
        if name in self._subscriptions:
            return

        with self._lock:
            self._defaults[name] = default

        def store(value):
            with self._lock:
                self._values[name] = value
                self._errors.pop(name, None)

        def fail(error):
            logger.error(f"Feed '{name}' failed: {error}")
            with self._lock:
                # Reads fall back to the default until the stream delivers again
                self._values.pop(name, None)
                self._errors[name] = str(error)

        self._subscriptions[name] = subscribe(store, fail)

    def get(self, name: str, default: Any = None) -> Any:
        with self._lock:
            if name in self._values:
                return self._values[name]
            return self._defaults.get(name, default)

    def loaded(self, name: str) -> bool:
        with self._lock:
            return name in self._values

    def errors(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._errors)

    def detach(self, name: str):
        subscription = self._subscriptions.pop(name, None)
        if subscription is not None:
            subscription.unsubscribe()
        with self._lock:
            self._values.pop(name, None)
            self._defaults.pop(name, None)
            self._errors.pop(name, None)

    def close(self):
        for name in list(self._subscriptions):
            self.detach(name)


def load_once(ctx: FirebaseContext, path: str, default: Any = None) -> Any:
    """One-shot read that reports failures as the default value."""
    try:
        value = ctx.get(path)
    except FirebaseError as e:
        logger.error(f"Failed to read {path}: {e}")
        return default
    return default if value is None else value
