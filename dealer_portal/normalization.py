"""
Record Normalization Module

Turns raw database snapshots into canonical row dictionaries.

Snapshots arrive either as lists or as key -> record maps, and the same
field shows up under several historical names (``wholesalepo`` vs
``wholesalePO``, ``handoverAt`` vs ``createdAt``). Each canonical field is
resolved through an ordered alias table by ``coalesce``. Normalizers never
raise on malformed input: bad values fall back to "", 0, None or False.
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence
import logging

from dealer_portal.date_utils import days_since, parse_iso_datetime
from dealer_portal.dealer_utils import slugify_name

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"


# =============================================================================
# ALIAS TABLES
# =============================================================================

VIN_ALIASES = ("vinNumber", "VinNumber", "vinnumber", "VINNumber", "vin", "VIN")
VIN_NESTED = ("chassis", "Chassis", "vehicle", "Vehicle")

WHOLESALE_ALIASES = ("wholesalepo", "wholesalePo", "wholesalePO", "price", "amount")
WHOLESALE_TIMESTAMP_ALIASES = ("updatedAt", "createdAt", "handoverAt", "timestamp")

PGI_DATE_ALIASES = ("pgidate", "pgiDate", "PGIDate")

HANDOVER_DATE_ALIASES = ("handoverAt", "createdAt")

INVOICE_ALIASES = {
    "chassis": ("chassis", "Chassis", "chassisNumber"),
    "invoice_date": (
        "invoiceDate", "InvoiceDate", "invoice_date",
        "handoverAt", "HandoverAt",
        "grDate", "GRDate",
        "pgiDateGRSO", "PGIDateGRSO",
        "createdAt", "CreatedAt",
    ),
    "created_on": ("createdOn", "createdAt", "CreatedAt"),
    "pgi_date": ("pgiDateGRSO", "PGIDateGRSO", "pgiDate"),
    "purchase_price": ("poFinalInvoiceValue", "POFinalInvoiceValue"),
    "final_sale_price": ("grSONetValue", "GRSONetValue"),
    "discount": ("totalSurchargeSO", "TotalSurchargeSO", "zg00Amount", "ZG00Amount"),
    "customer": ("customer", "billToParty"),
    "model": ("model",),
}

MIN_VOLUME_ALIASES = (
    "Min Van Volumn", "Min Van Volume",
    "min_van_volumn", "min_van_volume",
    "minVanVolume", "minVanVolumn",
    "min_van", "minimum_van_volume",
    "Min", "MIN", "min",
)
YARD_LABEL_ALIASES = ("dealer", "dealerName", "yard", "name")

HANDOVER_DEALER_ALIASES = (
    "handoverDealer", "handoverdealer", "handover_dealer",
    "handover dealer", "Handover Dealer",
)

MODEL_META_FIELDS = {
    "model_range": "Model Range",
    "function_name": "Function",
    "layout": "Layout",
    "axle": "Axle",
    "length": "Length",
    "height": "Height",
}

TASK_STATUS_ALIASES = {
    "not started": "Not Started",
    "not_started": "Not Started",
    "notstarted": "Not Started",
    "in progress": "In Progress",
    "in_progress": "In Progress",
    "inprogress": "In Progress",
    "done": "Done",
    "finished": "Done",
    "complete": "Done",
    "completed": "Done",
}

FINISHED_STATUSES = ("finished", "finish")

_PRICE_STRIP_RE = re.compile(r"[^\d.-]")


# =============================================================================
# GENERIC HELPERS
# =============================================================================

def to_str(value: Any) -> str:
    return "" if value is None else str(value)


def has_text(value: Any) -> bool:
    return value is not None and str(value).strip() != ""


def clean_label(value: Any, fallback: str = UNKNOWN) -> str:
    text = to_str(value).strip()
    return text or fallback


def coalesce(record: Any, aliases: Sequence[str], default: Any = None) -> Any:
    """
    Return the first alias value that is neither None nor an empty string.

    Args:
        record: Source dictionary (anything else yields the default)
        aliases: Candidate keys in priority order
        default: Value returned when no candidate is present
    """
    if not isinstance(record, dict):
        return default

    for key in aliases:
        value = record.get(key)
        if value is None:
            continue
        if isinstance(value, str) and value.strip() == "":
            continue
        return value

    return default


def to_number(value: Any) -> float:
    """Numeric coercion where anything unreadable becomes 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(str(value).strip().replace(",", "")) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number or number in (float("inf"), float("-inf")):
        return 0.0
    return number


def parse_price(value: Any) -> Optional[float]:
    """Parse a price such as '$45,990.00', returning None when nothing numeric is left."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if value == value else None
    text = _PRICE_STRIP_RE.sub("", str(value))
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1", "y")
    return bool(value)


def iter_records(snapshot: Any) -> Iterator[Dict[str, Any]]:
    """Yield the dict records of a list or map snapshot, skipping holes."""
    if isinstance(snapshot, dict):
        values: Iterable = snapshot.values()
    elif isinstance(snapshot, list):
        values = snapshot
    else:
        return

    for value in values:
        if isinstance(value, dict):
            yield value


def snapshot_to_rows(
    snapshot: Any,
    id_field: str = "id",
    override_fields: Sequence[str] = ()
) -> List[Dict[str, Any]]:
    """
    Convert a list or map snapshot to a list of rows that each carry an id.

    Map form: each (key, value) becomes ``{id_field: key, **value}``. A
    non-empty ``id_field`` or override field inside the value wins over the
    key. List form: rows without an id get their position as the id.

    Args:
        snapshot: Raw value from the database
        id_field: Name of the id field on the output rows
        override_fields: Extra fields that can carry the id, in priority order

    Returns:
        List of row dictionaries (non-dict entries are skipped)
    """
    rows = []
    candidates = (id_field,) + tuple(override_fields)

    if isinstance(snapshot, dict):
        for key, value in snapshot.items():
            if not isinstance(value, dict):
                continue
            row = {id_field: str(key)}
            row.update(value)
            row[id_field] = to_str(coalesce(value, candidates, key))
            rows.append(row)

    elif isinstance(snapshot, list):
        for index, value in enumerate(snapshot):
            if not isinstance(value, dict):
                continue
            row = dict(value)
            row[id_field] = to_str(coalesce(value, candidates, index))
            rows.append(row)

    return rows


# =============================================================================
# CUSTOMER TYPE
# =============================================================================

class CustomerType(str, Enum):
    """Whether a yard unit is dealer stock or sold to a customer"""
    STOCK = "Stock"
    CUSTOMER = "Customer"

    def __str__(self):
        return self.value


def classify_customer_type(raw_type: Any, customer: Any = None) -> CustomerType:
    """
    Classify a yard unit as Stock or Customer.

    Args:
        raw_type: The record's own ``type`` value, if any
        customer: Customer name, used only when no type is recorded

    Returns:
        CustomerType for every input. An explicit type containing 'stock'
        is Stock. 'customer', 'retail' or anything else is Customer. With no
        type, a customer name ending in 'stock' (e.g. 'Acme Stock') is Stock.
    """
    kind = to_str(raw_type).strip().lower()

    if not kind:
        if to_str(customer).strip().lower().endswith("stock"):
            return CustomerType.STOCK
        return CustomerType.CUSTOMER

    if "stock" in kind:
        return CustomerType.STOCK

    return CustomerType.CUSTOMER


# =============================================================================
# SCHEDULE
# =============================================================================

def is_finished(order: Dict[str, Any]) -> bool:
    return to_str(order.get("Regent Production")).strip().lower() in FINISHED_STATUSES


def filter_schedule(
    orders: Iterable[Dict[str, Any]],
    include_no_chassis: bool = False,
    include_no_customer: bool = False,
    include_finished: bool = False
) -> List[Dict[str, Any]]:
    """
    Drop schedule rows without a chassis, without a customer, or finished.

    Each flag lifts one of the three exclusions.
    """
    kept = []
    for order in orders:
        if not include_no_chassis and not has_text(order.get("Chassis")):
            continue
        if not include_no_customer and not has_text(order.get("Customer")):
            continue
        if not include_finished and is_finished(order):
            continue
        kept.append(order)
    return kept


def normalize_schedule(
    snapshot: Any,
    include_no_chassis: bool = False,
    include_no_customer: bool = False,
    include_finished: bool = False
) -> List[Dict[str, Any]]:
    """
    Normalize the schedule feed.

    Rows keep their original keys ('Chassis', 'Forecast Production Date',
    ...) because key presence matters: an empty production slot is a row
    with no 'Chassis' key at all.
    """
    orders = [dict(record) for record in iter_records(snapshot)]
    kept = filter_schedule(orders, include_no_chassis, include_no_customer, include_finished)
    logger.debug(f"Schedule normalized: kept {len(kept)} of {len(orders)} rows")
    return kept


def index_by_chassis(orders: Iterable[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    indexed = {}
    for order in orders:
        chassis = to_str(order.get("Chassis")).strip()
        if chassis:
            indexed[chassis] = order
    return indexed


# =============================================================================
# YARD STOCK
# =============================================================================

def extract_vin(source: Any) -> Optional[str]:
    """Find a VIN on a record, looking inside nested chassis/vehicle objects."""
    if source is None:
        return None

    if not isinstance(source, dict):
        text = str(source).strip()
        return text or None

    for key in VIN_ALIASES:
        candidate = source.get(key)
        if candidate is not None and str(candidate).strip():
            return str(candidate).strip()

    for key in VIN_NESTED:
        nested = source.get(key)
        if isinstance(nested, dict):
            vin = extract_vin(nested)
            if vin:
                return vin

    return None


def _collect_wholesale(source: Any, out: list, order: list):
    if source is None:
        return

    if isinstance(source, list):
        for entry in source:
            _collect_wholesale(entry, out, order)
        return

    if not isinstance(source, dict):
        price = parse_price(source)
        if price is not None:
            out.append((float("-inf"), order[0], price))
            order[0] += 1
        return

    price = parse_price(coalesce(source, WHOLESALE_ALIASES))
    if price is not None:
        stamp = float("-inf")
        for key in WHOLESALE_TIMESTAMP_ALIASES:
            parsed = parse_iso_datetime(source.get(key))
            if parsed is not None:
                stamp = parsed.timestamp()
                break
        out.append((stamp, order[0], price))
        order[0] += 1

    for value in source.values():
        _collect_wholesale(value, out, order)


def extract_latest_wholesale(record: Any) -> Optional[float]:
    """
    Pick the most recent wholesale price from a (possibly nested) record.

    Candidates are ordered by timestamp; ties go to the one found last.
    """
    if not record:
        return None

    candidates = []
    _collect_wholesale(record, candidates, [0])
    if not candidates:
        return None

    return max(candidates, key=lambda c: (c[0], c[1]))[2]


def build_model_meta(model_analysis: Any) -> Dict[str, Dict[str, str]]:
    """
    Build the model -> classification lookup from the model analysis table.

    Returns:
        Dict keyed by lowercased model name with model_range, function_name,
        layout, axle, length, height (each defaulting to 'Unknown')
    """
    meta = {}
    for row in iter_records(model_analysis):
        model = to_str(row.get("Model")).strip().lower()
        if not model:
            continue
        meta[model] = {
            field: clean_label(row.get(source))
            for field, source in MODEL_META_FIELDS.items()
        }
    return meta


def normalize_yard_stock(
    yard_snapshot: Any,
    schedule_by_chassis: Optional[Dict[str, Dict]] = None,
    model_meta: Optional[Dict[str, Dict[str, str]]] = None,
    dealer_slug: str = "",
    now: Optional[datetime] = None
) -> List[Dict[str, Any]]:
    """
    Build the yard list for one dealer.

    Args:
        yard_snapshot: Value of ``yardstock/{dealer_slug}`` (chassis -> record)
        schedule_by_chassis: Schedule rows keyed by chassis, preferred for
            customer and model
        model_meta: Output of ``build_model_meta``
        dealer_slug: Dealer the yard belongs to
        now: Reference time for days in yard (defaults to now)

    Returns:
        List of yard entry dictionaries
    """
    if not isinstance(yard_snapshot, dict):
        return []

    schedule_by_chassis = schedule_by_chassis or {}
    model_meta = model_meta or {}
    wholesale_records = yard_snapshot.get("dealer-chassis") or yard_snapshot.get("dealerChassis") or {}

    entries = []
    for chassis, record in yard_snapshot.items():
        if chassis in ("dealer-chassis", "dealerChassis"):
            continue
        if not isinstance(record, dict):
            record = {}
        if to_bool(record.get("history")):
            continue

        schedule = schedule_by_chassis.get(chassis) or {}
        customer = to_str(coalesce(schedule, ("Customer",), record.get("customer")))
        model = to_str(coalesce(schedule, ("Model",), record.get("model")))
        meta = model_meta.get(model.strip().lower(), {})

        wholesale = None
        if isinstance(wholesale_records, dict):
            wholesale = extract_latest_wholesale(wholesale_records.get(chassis))
        if wholesale is None:
            wholesale = parse_price(coalesce(record, WHOLESALE_ALIASES))

        received_at = record.get("receivedAt")

        entries.append({
            "chassis": chassis,
            "vin_number": extract_vin(record),
            "received_at": received_at,
            "model": model,
            "customer": customer,
            "type": classify_customer_type(coalesce(record, ("type", "Type")), customer),
            "days_in_yard": days_since(received_at, now),
            "model_range": meta.get("model_range", UNKNOWN),
            "function_name": meta.get("function_name", UNKNOWN),
            "layout": meta.get("layout", UNKNOWN),
            "axle": meta.get("axle", UNKNOWN),
            "length": meta.get("length", UNKNOWN),
            "height": meta.get("height", UNKNOWN),
            "wholesale_price": wholesale,
            "dealer_slug": dealer_slug,
        })

    return entries


# =============================================================================
# PGI, HANDOVER & INVOICES
# =============================================================================

def normalize_pgi_records(snapshot: Any, include_history: bool = False) -> List[Dict[str, Any]]:
    """
    Normalize ``pgirecord`` (chassis -> record) into on-the-road rows.

    Records flagged ``history`` are hidden unless include_history is set.
    """
    rows = []
    if not isinstance(snapshot, dict):
        return rows

    for chassis, record in snapshot.items():
        if not isinstance(record, dict):
            continue
        history = to_bool(record.get("history"))
        if history and not include_history:
            continue
        rows.append({
            "chassis": str(chassis),
            "pgi_date": to_str(coalesce(record, PGI_DATE_ALIASES, "")),
            "dealer": to_str(record.get("dealer")),
            "model": to_str(record.get("model")),
            "customer": to_str(record.get("customer")),
            "history": history,
            "raw": record,
        })
    return rows


def normalize_handovers(snapshot: Any) -> List[Dict[str, Any]]:
    """Normalize ``handover/{dealer}`` (chassis -> record) into rows."""
    rows = []
    if not isinstance(snapshot, dict):
        return rows

    for chassis, record in snapshot.items():
        if not isinstance(record, dict):
            record = {}
        rows.append({
            "chassis": str(chassis),
            "handover_at": coalesce(record, HANDOVER_DATE_ALIASES),
            "dealer_slug": slugify_name(coalesce(record, ("dealerSlug", "dealerName"), "")),
            "dealer_name": to_str(record.get("dealerName")),
            "customer": to_str(record.get("customer")),
            "model": to_str(record.get("model")),
        })
    return rows


def normalize_date_input(value: Any) -> str:
    """
    Normalize the timestamp shapes found in invoice payloads to ISO text.

    Numbers below 1e12 are epoch seconds, larger ones milliseconds.
    Firestore-style ``{seconds}``/``{_seconds}`` objects are supported.
    Strings pass through unchanged.
    """
    if value is None or value == "" or isinstance(value, bool):
        return ""

    seconds = None
    if isinstance(value, (int, float)):
        seconds = value if value < 1e12 else value / 1000.0
    elif isinstance(value, dict):
        seconds = value.get("seconds") or value.get("_seconds")
        if not seconds:
            return ""

    if seconds is not None:
        try:
            stamp = datetime.fromtimestamp(float(seconds), tz=timezone.utc)
        except (OverflowError, OSError, ValueError, TypeError):
            return ""
        return stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")

    return str(value)


def normalize_invoice(key: str, payload: Any, dealer_slug: str = "") -> Dict[str, Any]:
    """Normalize one ``yardnewvaninvoice`` record (unwrapping ``_source``)."""
    source = payload if isinstance(payload, dict) else {}
    wrapped = source.get("_source")
    if isinstance(wrapped, dict):
        source = wrapped

    return {
        "id": str(key),
        "chassis": to_str(coalesce(source, INVOICE_ALIASES["chassis"], "")),
        "created_on": normalize_date_input(coalesce(source, INVOICE_ALIASES["created_on"])),
        "invoice_date": normalize_date_input(coalesce(source, INVOICE_ALIASES["invoice_date"])),
        "pgi_date": normalize_date_input(coalesce(source, INVOICE_ALIASES["pgi_date"])),
        "purchase_price": to_number(coalesce(source, INVOICE_ALIASES["purchase_price"])),
        "final_sale_price": to_number(coalesce(source, INVOICE_ALIASES["final_sale_price"])),
        "discount": to_number(coalesce(source, INVOICE_ALIASES["discount"])),
        "customer": to_str(coalesce(source, INVOICE_ALIASES["customer"], "")),
        "model": to_str(coalesce(source, INVOICE_ALIASES["model"], "")),
        "location_name": to_str(source.get("locationName") or dealer_slug),
    }


def normalize_invoices(snapshot: Any, dealer_slug: str = "") -> List[Dict[str, Any]]:
    if not isinstance(snapshot, dict):
        return []
    return [normalize_invoice(key, payload, dealer_slug) for key, payload in snapshot.items()]


# =============================================================================
# YARD SIZES
# =============================================================================

def resolve_min_volume(record: Any) -> int:
    """Minimum van volume for a yard, read through every historical field name."""
    value = to_number(coalesce(record, MIN_VOLUME_ALIASES))
    return max(0, int(value))


def normalize_yard_sizes(snapshot: Any) -> Dict[str, Dict[str, Any]]:
    """
    Normalize ``yardsize`` into ``{dealer_slug: {label, min_volume}}``.

    The slug comes from the record's dealer name, falling back to its key.
    """
    sizes = {}
    if isinstance(snapshot, dict):
        items = snapshot.items()
    elif isinstance(snapshot, list):
        items = enumerate(snapshot)
    else:
        return sizes

    for key, record in items:
        if not isinstance(record, dict):
            continue
        label = to_str(coalesce(record, YARD_LABEL_ALIASES, str(key)))
        slug = slugify_name(label)
        if not slug:
            continue
        sizes[slug] = {
            "label": label,
            "min_volume": resolve_min_volume(record),
        }
    return sizes


# =============================================================================
# DEALER CONFIGS
# =============================================================================

def normalize_dealer_config(slug: str, record: Any) -> Dict[str, Any]:
    record = record if isinstance(record, dict) else {}
    is_group = to_bool(record.get("isGroup"))
    included = record.get("includedDealers") or []
    if isinstance(included, dict):
        included = list(included.values())

    return {
        "slug": to_str(record.get("slug") or slug),
        "name": to_str(record.get("name")),
        "code": to_str(record.get("code")).lower(),
        "is_active": to_bool(record.get("isActive", True)),
        "powerbi_url": to_str(record.get("powerbiUrl")),
        "is_group": is_group,
        "included_dealers": [to_str(s) for s in included if has_text(s)] if is_group else [],
        "created_at": to_str(record.get("createdAt")),
        "updated_at": to_str(record.get("updatedAt")),
    }


def normalize_dealer_configs(snapshot: Any) -> Dict[str, Dict[str, Any]]:
    if not isinstance(snapshot, dict):
        return {}
    return {
        slug: normalize_dealer_config(slug, record)
        for slug, record in snapshot.items()
        if isinstance(record, dict)
    }


def dealer_config_payload(config: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a normalized dealer config back to its stored camelCase shape."""
    payload = {
        "slug": config.get("slug", ""),
        "name": config.get("name", ""),
        "code": config.get("code", ""),
        "isActive": bool(config.get("is_active", True)),
        "powerbiUrl": config.get("powerbi_url", ""),
        "createdAt": config.get("created_at", ""),
        "updatedAt": config.get("updated_at", ""),
    }
    if config.get("is_group"):
        payload["isGroup"] = True
        payload["includedDealers"] = list(config.get("included_dealers") or [])
    return payload


# =============================================================================
# SHOWS
# =============================================================================

def normalize_show_orders(snapshot: Any) -> List[Dict[str, Any]]:
    """Normalize ``showOrders``; orders without an id are dropped."""
    orders = []
    for item in snapshot_to_rows(snapshot, "orderId", ("id",)):
        order_id = to_str(item.get("orderId") or item.get("id"))
        if not order_id:
            continue
        orders.append({
            "order_id": order_id,
            "show_id": to_str(item.get("showId")),
            "date": to_str(item.get("date")),
            "model": to_str(item.get("model")),
            "order_type": to_str(item.get("orderType")),
            "status": to_str(item.get("status")),
            "salesperson": to_str(item.get("salesperson")),
            "chassis_number": to_str(item.get("chassisNumber")),
            "customer_name": to_str(item.get("customerName") or item.get("customer")),
            "dealer_confirm": bool(item.get("dealerConfirm")),
            "dealer_confirm_at": to_str(item.get("dealerConfirmAt")),
            "dealer_notes": to_str(item.get("dealerNotes")),
        })
    return orders


def normalize_task_status(status: Any) -> str:
    """Map task status spellings to Not Started / In Progress / Done."""
    text = to_str(status).strip()
    if not text:
        return ""
    return TASK_STATUS_ALIASES.get(text.lower(), text)


def normalize_show_tasks(snapshot: Any) -> List[Dict[str, Any]]:
    """Normalize ``showTasks``; tasks need both an id and an event id."""
    tasks = []
    for item in snapshot_to_rows(snapshot, "id", ("taskId",)):
        task = {
            "id": to_str(item.get("id") or item.get("taskId")),
            "event_id": to_str(item.get("eventId") or item.get("showId")),
            "task_name": to_str(item.get("taskName") or item.get("name")),
            "status": normalize_task_status(item.get("status")),
            "assigned_to": to_str(item.get("assignedTo") or item.get("assignee")),
            "due_date": to_str(item.get("dueDate")),
            "notes": to_str(item.get("notes")),
        }
        if task["id"] and task["event_id"]:
            tasks.append(task)
    return tasks


def resolve_handover_dealer(item: Dict[str, Any]) -> str:
    for key in HANDOVER_DEALER_ALIASES:
        value = item.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def normalize_shows(snapshot: Any) -> List[Dict[str, Any]]:
    shows = []
    for item in snapshot_to_rows(snapshot, "id", ("showId",)):
        shows.append({
            "id": item["id"],
            "name": to_str(item.get("name")),
            "dealership": to_str(item.get("dealership")),
            "handover_dealer": resolve_handover_dealer(item),
            "site_location": to_str(item.get("siteLocation")),
            "start_date": to_str(item.get("startDate")),
            "finish_date": to_str(item.get("finishDate")),
            "caravans_on_display": to_number(item.get("caravansOnDisplay")),
            "status": to_str(item.get("status")),
        })
    return shows


def normalize_team_members(snapshot: Any) -> List[Dict[str, Any]]:
    members = []
    for row in snapshot_to_rows(snapshot, "id"):
        members.append({
            "id": row["id"],
            "member_id": to_str(row.get("memberId")),
            "member_name": to_str(coalesce(row, ("memberName", "name"), "")),
            "email": to_str(row.get("email")),
            "role": to_str(row.get("role")),
            "active_flag": int(to_number(row.get("activeFlag"))),
        })
    return members
