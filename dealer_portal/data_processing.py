"""
Data Processing Module

Derives the dealer portal's views from normalized rows: dealer scoping,
faceted filtering, KPI counts, risk flags, time-bucketed series, days in
yard buckets and stock analysis.

Every function here is pure. It reads the rows it is given plus the filter
parameters and returns fresh lists/dicts; nothing is cached between calls.
Malformed fields fall back to 'Unknown', 0, None or '-' and never raise.
"""

from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union
import logging

from dealer_portal.date_utils import (
    DateWindow,
    days_from_today,
    parse_dd_mm_yyyy,
    parse_flexible_date,
    parse_iso_datetime,
    start_of_week_monday,
    weeks_until,
)
from dealer_portal.dealer_utils import is_secondhand_chassis, slugify_name
from dealer_portal.normalization import (
    UNKNOWN,
    CustomerType,
    clean_label,
    has_text,
    parse_price,
    to_str,
)

logger = logging.getLogger(__name__)

ALL = "all"

Field = Union[str, Callable[[Dict[str, Any]], Any]]

RED_UNSIGNED_DAYS = 14
RED_EMPTY_WEEKS = 22
ON_THE_ROAD_SOON_DAYS = 3

UNSIGNED_SEARCH_FIELDS = (
    "Chassis",
    "Customer",
    "Model",
    "Forecast Production Date",
    "Dealer",
)

YARD_RANGE_BUCKETS = [
    ("0-30", 0, 30),
    ("31-90", 31, 90),
    ("91-180", 91, 180),
    ("180+", 181, 9999),
]

LENGTH_BUCKETS = [
    ("<=5.00m", 0.0, 5.0),
    ("5.01-7.00m", 5.01, 7.0),
    (">=7.01m", 7.01, 100.0),
]

PRODUCTION_SORT_ORDER = {
    "Ready for Dispatch": 1,
    "Production Commenced Regent": 2,
    "Van Arrived": 3,
    "Van on the sea": 4,
    "Production Commenced Longtree": 5,
    "Not Started": 6,
    "": 7,
}

SNOWY_STOCK = "Snowy Stock"

_FAR_FUTURE = datetime(9999, 12, 31)


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def _field_value(row: Dict[str, Any], field: Field) -> Any:
    if callable(field):
        return field(row)
    return row.get(field)


def count_by(rows: Iterable[Dict[str, Any]], field: Field) -> List[Dict[str, Any]]:
    """
    Count rows by a label, sorted by count descending.

    Returns:
        List of {'name', 'value'} dicts (blank labels count as 'Unknown')
    """
    counts = defaultdict(int)
    for row in rows:
        counts[clean_label(_field_value(row, field))] += 1
    return [
        {"name": name, "value": value}
        for name, value in sorted(counts.items(), key=lambda item: -item[1])
    ]


def month_key(value: datetime) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def month_label(value: datetime) -> str:
    return value.strftime("%b %Y")


# =============================================================================
# DEALER SCOPING
# =============================================================================

def scope_to_dealer(
    records: Iterable[Dict[str, Any]],
    dealer_slug: str,
    field: Field = "Dealer"
) -> List[Dict[str, Any]]:
    """Keep records whose slugified dealer name matches the dealer slug."""
    return [r for r in records if slugify_name(_field_value(r, field)) == dealer_slug]


def resolve_current_dealer(config: Optional[Dict[str, Any]], selected: Optional[str] = None) -> str:
    """
    Resolve which single dealer a view should be scoped to.

    Args:
        config: Normalized dealer config (possibly a group)
        selected: Member slug chosen in navigation, if any

    Returns:
        For a group, the selected member when it belongs to the group, else
        the first member ('' for an empty group). For a dealer, its own slug.
    """
    if not config:
        return ""

    if not config.get("is_group"):
        return config.get("slug", "")

    members = config.get("included_dealers") or []
    if selected and selected in members:
        return selected
    return members[0] if members else ""


# =============================================================================
# FACETED FILTERING
# =============================================================================

def matches_search(row: Dict[str, Any], search: Optional[str], fields: Sequence[Field]) -> bool:
    """Case-insensitive substring match against the joined searched fields."""
    term = to_str(search).strip().lower()
    if not term:
        return True
    haystack = " ".join(to_str(_field_value(row, f)) for f in fields).lower()
    return term in haystack


def apply_facets(
    rows: Iterable[Dict[str, Any]],
    facets: Optional[Dict[Field, Any]] = None,
    search: Optional[str] = None,
    search_fields: Sequence[Field] = ()
) -> List[Dict[str, Any]]:
    """
    Intersect exact-match facets with a free-text search.

    Args:
        rows: Rows to filter
        facets: Field (or extractor callable) -> wanted value. None and
            'all' values are skipped.
        search: Free text, matched as a substring
        search_fields: Fields the free text is searched in

    Returns:
        Rows passing every active facet and the search
    """
    active = [
        (field, to_str(wanted))
        for field, wanted in (facets or {}).items()
        if wanted is not None and to_str(wanted).lower() != ALL
    ]

    filtered = []
    for row in rows:
        if any(to_str(_field_value(row, field)) != wanted for field, wanted in active):
            continue
        if not matches_search(row, search, search_fields):
            continue
        filtered.append(row)
    return filtered


def model_range_of(chassis: Any) -> str:
    """Model range code: first three chassis characters, uppercased."""
    return to_str(chassis)[:3].upper()


# =============================================================================
# INVENTORY STOCK
# =============================================================================

def production_sort_order(status: Any) -> int:
    return PRODUCTION_SORT_ORDER.get(to_str(status), 999)


def display_model(model: str) -> str:
    if model.startswith("NG") and len(model) > 2:
        return model[:2]
    return model


def _is_ordered(details: Dict[str, Any]) -> bool:
    if to_str(details.get("ordered")).lower() == "true":
        return True
    return has_text(details.get("orderedBy")) or has_text(details.get("orderedby"))


def _reallocated_away(reallocation: Any) -> bool:
    if not isinstance(reallocation, dict) or not reallocation:
        return False
    latest = list(reallocation.values())[-1]
    target = to_str(latest.get("reallocatedTo")) if isinstance(latest, dict) else ""
    return bool(target) and target != SNOWY_STOCK


def inventory_stock_rows(
    stock_snapshot: Any,
    reallocation_snapshot: Any = None,
    schedule: Optional[Iterable[Dict[str, Any]]] = None
) -> List[Dict[str, Any]]:
    """
    Build the factory inventory stock table.

    Units are skipped when already ordered, SRM chassis, reallocated to a
    dealer other than Snowy Stock, or finished in production.

    Returns:
        Rows sorted by production stage
    """
    if not isinstance(stock_snapshot, dict):
        return []

    reallocations = reallocation_snapshot if isinstance(reallocation_snapshot, dict) else {}
    production = {}
    for order in schedule or []:
        chassis = to_str(order.get("Chassis"))
        status = order.get("Regent Production")
        if chassis and has_text(status) and chassis not in production:
            production[chassis] = to_str(status)

    rows = []
    for chassis, details in stock_snapshot.items():
        details = details if isinstance(details, dict) else {}
        chassis = str(chassis)

        if _is_ordered(details) or chassis.startswith("SRM"):
            continue
        if _reallocated_away(reallocations.get(chassis)):
            continue

        status = production.get(chassis, "Not Started")
        if status.strip().lower() in ("finished", "finish"):
            continue

        model = chassis[:3]
        rows.append({
            "chassis": chassis,
            "model": model,
            "display_model": display_model(model),
            "model_range": model_range_of(chassis),
            "regent_production": status,
            "colour_theme": to_str(details.get("colour theme")),
            "decals": to_str(details.get("decals")),
            "exterior_colour": to_str(details.get("exterior colour")),
            "raw": details,
        })

    return sort_inventory_rows(rows)


def sort_inventory_rows(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(rows, key=lambda r: production_sort_order(r.get("regent_production")))


def inventory_facet_options(rows: Iterable[Dict[str, Any]]) -> Dict[str, List[str]]:
    """Distinct, sorted values for each inventory facet."""
    options = defaultdict(set)
    for row in rows:
        for facet in ("model_range", "display_model", "regent_production",
                      "colour_theme", "decals", "exterior_colour"):
            value = to_str(row.get(facet))
            if value:
                options[facet].add(value)
    return {facet: sorted(values) for facet, values in options.items()}


def _inventory_search_text(row: Dict[str, Any]) -> str:
    raw = row.get("raw") or {}
    raw_values = " ".join(to_str(v) for v in raw.values()) if isinstance(raw, dict) else ""
    return f"{row.get('display_model', '')} {row.get('chassis', '')} {row.get('regent_production', '')} {raw_values}"


def filter_inventory_rows(
    rows: Iterable[Dict[str, Any]],
    model_range: str = ALL,
    model: str = ALL,
    status: str = ALL,
    colour_theme: str = ALL,
    decals: str = ALL,
    exterior_colour: str = ALL,
    search: str = ""
) -> List[Dict[str, Any]]:
    return apply_facets(
        rows,
        {
            "model_range": model_range,
            "display_model": model,
            "regent_production": status,
            "colour_theme": colour_theme,
            "decals": decals,
            "exterior_colour": exterior_colour,
        },
        search,
        (_inventory_search_text,)
    )


# =============================================================================
# KPI COUNTS
# =============================================================================

def current_yard_stock(entries: Iterable[Dict[str, Any]]) -> Dict[str, int]:
    """Stock/customer split of the yard right now (not date-windowed)."""
    stock = customer = total = 0
    for entry in entries:
        total += 1
        if entry.get("type") == CustomerType.STOCK:
            stock += 1
        elif entry.get("type") == CustomerType.CUSTOMER:
            customer += 1
    return {"stock": stock, "customer": customer, "total": total}


def on_the_road(
    pgi_rows: Iterable[Dict[str, Any]],
    dealer_slug: str,
    window: Optional[DateWindow] = None
) -> List[Dict[str, Any]]:
    """PGI'd units for a dealer whose PGI date falls in the window."""
    rows = []
    for row in pgi_rows:
        if row.get("history"):
            continue
        if slugify_name(row.get("dealer")) != dealer_slug:
            continue
        if window is not None and not window.contains(parse_dd_mm_yyyy(row.get("pgi_date"))):
            continue
        rows.append(row)
    return rows


def waiting_for_receiving(
    on_road: Iterable[Dict[str, Any]],
    yard_entries: Iterable[Dict[str, Any]],
    handovers: Iterable[Dict[str, Any]]
) -> List[Dict[str, Any]]:
    """On-the-road units not yet in the yard and not yet handed over."""
    seen = {to_str(e.get("chassis")).upper() for e in yard_entries}
    seen.update(to_str(h.get("chassis")).upper() for h in handovers)

    waiting = []
    for row in on_road:
        chassis = to_str(row.get("chassis")).upper()
        if chassis and chassis not in seen:
            waiting.append(row)
    return waiting


def dealer_handovers(handovers: Iterable[Dict[str, Any]], dealer_slug: str) -> List[Dict[str, Any]]:
    return [h for h in handovers if h.get("dealer_slug") == dealer_slug]


def process_yard_kpis(
    pgi_rows: List[Dict[str, Any]],
    yard_entries: List[Dict[str, Any]],
    handovers: List[Dict[str, Any]],
    dealer_slug: str,
    window: DateWindow
) -> Dict[str, Any]:
    """
    Compute the yard KPI cards.

    Args:
        pgi_rows: Normalized PGI records (all dealers)
        yard_entries: Normalized yard list for the dealer
        handovers: Normalized handover rows
        dealer_slug: Dealer being viewed
        window: KPI date window

    Returns:
        Dictionary with pgi_count, received_count, handover_count,
        secondhand_count (all windowed) and yard_stock (current, unwindowed)
    """
    logger.info(f"Processing yard KPIs for {dealer_slug} ({window.label})")

    own_handovers = [
        h for h in dealer_handovers(handovers, dealer_slug)
        if window.contains(parse_iso_datetime(h.get("handover_at")))
    ]

    return {
        "pgi_count": len(on_the_road(pgi_rows, dealer_slug, window)),
        "received_count": sum(
            1 for e in yard_entries if window.contains(parse_iso_datetime(e.get("received_at")))
        ),
        "handover_count": len(own_handovers),
        "secondhand_count": sum(1 for h in own_handovers if is_secondhand_chassis(h.get("chassis"))),
        "yard_stock": current_yard_stock(yard_entries),
    }


# =============================================================================
# RISK FLAGS
# =============================================================================

def is_unsigned(order: Dict[str, Any]) -> bool:
    """Chassis assigned but signed plans not received."""
    if not has_text(order.get("Chassis")):
        return False
    signed = to_str(order.get("Signed Plans Received")).strip().lower()
    return signed in ("", "no")


def is_red_unsigned(order: Dict[str, Any], today: Optional[date] = None) -> bool:
    if not is_unsigned(order):
        return False
    days = days_from_today(order.get("Forecast Production Date"), today)
    return days is not None and days <= RED_UNSIGNED_DAYS


def is_empty_slot(order: Dict[str, Any]) -> bool:
    """A production slot allocated to a dealer with no chassis key at all."""
    return has_text(order.get("Dealer")) and "Chassis" not in order


def is_red_empty(order: Dict[str, Any], today: Optional[date] = None) -> bool:
    if not is_empty_slot(order):
        return False
    weeks = weeks_until(order.get("Forecast Production Date"), today)
    return weeks is not None and weeks < RED_EMPTY_WEEKS


def is_on_the_road_soon(order: Dict[str, Any], today: Optional[date] = None) -> bool:
    """Due to leave the factory within three days and not yet in production."""
    target = order.get("Request Delivery Date")
    if not has_text(target):
        target = order.get("Forecast Production Date")
    days = days_from_today(target, today)
    if days is None or days > ON_THE_ROAD_SOON_DAYS:
        return False

    status = to_str(order.get("Regent Production")).strip().lower()
    return not status or "pgi" in status or "dispatch" in status


def process_unsigned_summary(
    orders: Iterable[Dict[str, Any]],
    search: str = "",
    today: Optional[date] = None
) -> Dict[str, Any]:
    """
    Group a dealer's schedule into unsigned and empty-slot lists.

    Args:
        orders: Schedule rows for the dealer (loaded with include_no_chassis
            and include_no_customer so empty slots are present)
        search: Free text matched against chassis, customer, model,
            forecast date and dealer
        today: Reference day (defaults to today)

    Returns:
        Dictionary with unsigned/red_unsigned/empty/red_empty row lists and
        a counts dict
    """
    orders = [o for o in orders if matches_search(o, search, UNSIGNED_SEARCH_FIELDS)]

    unsigned = sort_orders([o for o in orders if is_unsigned(o)])
    empty = sort_orders([o for o in orders if is_empty_slot(o)])
    red_unsigned = [o for o in unsigned if is_red_unsigned(o, today)]
    red_empty = [o for o in empty if is_red_empty(o, today)]

    return {
        "unsigned": unsigned,
        "red_unsigned": red_unsigned,
        "empty": empty,
        "red_empty": red_empty,
        "counts": {
            "unsigned": len(unsigned),
            "red_unsigned": len(red_unsigned),
            "empty": len(empty),
            "red_empty": len(red_empty),
        },
    }


def sort_orders(orders: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Sort by forecast production date (unreadable dates last), then Index1, Rank1, Rank2."""
    def key(order):
        forecast = parse_dd_mm_yyyy(order.get("Forecast Production Date")) or _FAR_FUTURE
        return (
            forecast,
            to_str(order.get("Index1")),
            to_str(order.get("Rank1")),
            to_str(order.get("Rank2")),
        )

    return sorted(orders, key=key)


# =============================================================================
# TIME-BUCKETED SERIES
# =============================================================================

def bucket_by_month(
    rows: Iterable[Dict[str, Any]],
    date_field: Field,
    window: Optional[DateWindow] = None,
    parser: Callable[[Any], Optional[datetime]] = parse_flexible_date
) -> List[Dict[str, Any]]:
    """
    Count rows per calendar month inside a window.

    Returns:
        List of {'key': 'YYYY-MM', 'label': 'Jan 2024', 'count'} sorted by key
    """
    buckets = {}
    for row in rows:
        value = parser(_field_value(row, date_field))
        if value is None:
            continue
        if window is not None and not window.contains(value):
            continue
        key = month_key(value)
        if key not in buckets:
            buckets[key] = {
                "key": key,
                "label": month_label(datetime(value.year, value.month, 1)),
                "count": 0,
            }
        buckets[key]["count"] += 1

    return [buckets[k] for k in sorted(buckets)]


def back_compute_levels(net_by_week: Sequence[int], current_total: int) -> List[int]:
    """
    Reconstruct stock levels from the current total and weekly net changes.

    The level for week i is the current total minus every net change that
    happened after week i, floored at 0. The last week equals the current
    total.
    """
    levels = []
    later = 0
    for net in reversed(net_by_week):
        levels.append(max(0, current_total - later))
        later += net
    levels.reverse()
    return levels


def bucket_by_week(
    received_dates: Iterable[Optional[datetime]],
    handover_dates: Iterable[Optional[datetime]],
    current_total: int,
    weeks: int = 10,
    today: Optional[date] = None
) -> List[Dict[str, Any]]:
    """
    Trailing weekly stock-level series ending with the current week.

    Args:
        received_dates: When each yard unit was received
        handover_dates: When each unit was handed over
        current_total: Units in the yard now
        weeks: Number of weeks in the series
        today: Reference day (defaults to today)

    Returns:
        Oldest-first list of {'week': 'MM/DD', 'start', 'received',
        'handovers', 'net', 'level'}
    """
    anchor = start_of_week_monday(today or date.today())
    starts = [anchor - timedelta(days=7 * i) for i in range(weeks - 1, -1, -1)]

    def per_week(dates):
        counts = [0] * weeks
        for value in dates:
            if value is None:
                continue
            for i, start in enumerate(starts):
                if start <= value < start + timedelta(days=7):
                    counts[i] += 1
                    break
        return counts

    received = per_week(received_dates)
    handed = per_week(handover_dates)
    net = [r - h for r, h in zip(received, handed)]
    levels = back_compute_levels(net, current_total)

    return [
        {
            "week": start.strftime("%m/%d"),
            "start": start,
            "received": received[i],
            "handovers": handed[i],
            "net": net[i],
            "level": levels[i],
        }
        for i, start in enumerate(starts)
    ]


def process_yard_trends(
    yard_entries: List[Dict[str, Any]],
    handovers: List[Dict[str, Any]],
    dealer_slug: str,
    window: DateWindow,
    today: Optional[date] = None
) -> Dict[str, Any]:
    """Monthly received/handover counts in the window plus the 10 week stock trend."""
    own_handovers = dealer_handovers(handovers, dealer_slug)
    return {
        "received_monthly": bucket_by_month(yard_entries, "received_at", window, parse_iso_datetime),
        "handovers_monthly": bucket_by_month(own_handovers, "handover_at", window, parse_iso_datetime),
        "stock_levels": bucket_by_week(
            (parse_iso_datetime(e.get("received_at")) for e in yard_entries),
            (parse_iso_datetime(h.get("handover_at")) for h in own_handovers),
            len(yard_entries),
            today=today
        ),
    }


# =============================================================================
# DAYS IN YARD
# =============================================================================

def days_in_yard_bucket(days: Any) -> str:
    """Bucket label for a days-in-yard value. Every value lands in exactly one bucket."""
    try:
        value = int(days)
    except (TypeError, ValueError):
        value = 0
    value = max(0, value)
    for label, low, high in YARD_RANGE_BUCKETS:
        if low <= value <= high:
            return label
    return YARD_RANGE_BUCKETS[-1][0]


def count_yard_buckets(entries: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    counts = {label: 0 for label, _, _ in YARD_RANGE_BUCKETS}
    for entry in entries:
        counts[days_in_yard_bucket(entry.get("days_in_yard"))] += 1
    return [{"label": label, "count": counts[label]} for label, _, _ in YARD_RANGE_BUCKETS]


def filter_yard_list(
    entries: Iterable[Dict[str, Any]],
    bucket: Optional[str] = None,
    model_range: str = ALL,
    customer_type: str = ALL,
    search: str = "",
    sort: Optional[str] = None
) -> List[Dict[str, Any]]:
    """
    Filter the yard list the way the yard page's charts drive it.

    Args:
        bucket: Days-in-yard bucket label, or None for all
        model_range: Model range classification, or 'all'
        customer_type: 'Stock', 'Customer', or 'all'
        search: Chassis substring (case-insensitive)
        sort: 'asc' or 'desc' on days in yard, None keeps input order
    """
    rows = apply_facets(
        entries,
        {
            (lambda e: days_in_yard_bucket(e.get("days_in_yard"))): bucket,
            "model_range": model_range,
            (lambda e: to_str(e.get("type"))): customer_type,
        },
        search,
        ("chassis",)
    )
    if sort in ("asc", "desc"):
        rows = sorted(rows, key=lambda e: e.get("days_in_yard") or 0, reverse=(sort == "desc"))
    return rows


# =============================================================================
# STOCK ANALYSIS
# =============================================================================

def height_category(value: Any) -> str:
    text = to_str(value).strip().lower()
    if not text or text == UNKNOWN.lower():
        return UNKNOWN
    if "pop" in text:
        return "Pop-top"
    return "Full Height"


def parse_length(value: Any) -> Optional[float]:
    text = "".join(ch for ch in to_str(value) if ch.isdigit() or ch == ".")
    return parse_price(text)


def process_stock_analysis(entries: Iterable[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    """
    Break down stock units (not customer units) by classification.

    Returns:
        Dictionary of category -> list of {'name', 'value'}
    """
    stock = [e for e in entries if e.get("type") == CustomerType.STOCK]

    heights = defaultdict(int)
    for entry in stock:
        heights[height_category(entry.get("height"))] += 1

    lengths = [0] * len(LENGTH_BUCKETS)
    for entry in stock:
        length = parse_length(entry.get("length"))
        if length is None:
            continue
        for i, (_, low, high) in enumerate(LENGTH_BUCKETS):
            if low <= length <= high:
                lengths[i] += 1
                break

    return {
        "range": count_by(stock, "model_range"),
        "function": count_by(stock, "function_name"),
        "layout": count_by(stock, "layout"),
        "axle": count_by(stock, "axle"),
        "length": [
            {"name": label, "value": lengths[i]}
            for i, (label, _, _) in enumerate(LENGTH_BUCKETS)
        ],
        "height": [{"name": name, "value": value} for name, value in heights.items()],
    }


def stock_analysis_table(entries: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Per-model stock/customer/total counts, largest total first."""
    table = defaultdict(lambda: {"stock": 0, "customer": 0})
    for entry in entries:
        model = clean_label(entry.get("model"))
        if entry.get("type") == CustomerType.STOCK:
            table[model]["stock"] += 1
        else:
            table[model]["customer"] += 1

    rows = [
        {"model": model, "stock": c["stock"], "customer": c["customer"], "total": c["stock"] + c["customer"]}
        for model, c in table.items()
    ]
    return sorted(rows, key=lambda r: -r["total"])


def model_range_cards(orders: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Order counts per chassis prefix, split by stock vs customer orders."""
    cards = {}
    for order in orders:
        chassis = to_str(order.get("Chassis"))
        if not chassis:
            continue
        prefix = model_range_of(chassis)
        card = cards.setdefault(prefix, {"prefix": prefix, "total": 0, "stock": 0, "customer": 0})
        card["total"] += 1
        if to_str(order.get("Customer")).lower().endswith("stock"):
            card["stock"] += 1
        else:
            card["customer"] += 1

    return sorted(cards.values(), key=lambda c: -c["total"])
