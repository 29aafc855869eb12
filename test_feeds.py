"""
Tests for data feeds and write operations.

A fake context captures subscriptions and writes; tests push snapshots
through the captured callbacks.

Usage: pytest test_feeds.py
"""

import threading
from datetime import date

import pytest

from dealer_portal.data_processing import is_red_unsigned, is_unsigned, scope_to_dealer
from dealer_portal.date_utils import DateWindow, filter_by_date_field
from dealer_portal.feeds import (
    LiveFeeds,
    add_manual_chassis_to_yard_pending,
    dispatch_from_yard,
    load_once,
    load_tier_settings,
    mark_pgi_history,
    order_stock_unit,
    receive_chassis_to_yard,
    save_dealer_config,
    save_dealer_layout,
    save_default_layout,
    save_group_config,
    save_handover,
    save_tier_settings,
    subscribe_to_dealer_config,
    subscribe_to_dealer_layout,
    subscribe_to_schedule,
    subscribe_to_show_tasks,
    subscribe_to_tier_config,
    subscribe_to_yard_invoices,
    update_dealer_powerbi_url,
    update_show_order,
)
from dealer_portal.firebase_client import FirebaseError
from dealer_portal.tier_config import effective_targets, normalize_layout


class FakeSubscription:
    def __init__(self, path, callback, on_error):
        self.path = path
        self.callback = callback
        self.on_error = on_error
        self.active = True

    def unsubscribe(self):
        self.active = False


class FakeContext:
    def __init__(self, data=None):
        self.data = dict(data or {})
        self.subscriptions = []
        self.writes = []

    def subscribe(self, path, callback, on_error=None):
        subscription = FakeSubscription(path, callback, on_error)
        self.subscriptions.append(subscription)
        return subscription

    def emit(self, path, value):
        for subscription in self.subscriptions:
            if subscription.path == path and subscription.active:
                subscription.callback(value)

    def get(self, path):
        value = self.data.get(path)
        if isinstance(value, Exception):
            raise value
        return value

    def set(self, path, value):
        self.writes.append(("set", path, value))

    def update(self, path, values):
        self.writes.append(("update", path, values))

    def remove(self, path):
        self.writes.append(("remove", path))


@pytest.fixture
def ctx():
    return FakeContext()


# =============================================================================
# SUBSCRIPTIONS
# =============================================================================

def test_schedule_feed_end_to_end(ctx):
    received = []
    subscribe_to_schedule(ctx, received.append)
    ctx.emit("schedule", None)
    ctx.emit("schedule", [
        {
            "Chassis": "ABC123",
            "Customer": "Acme Stock",
            "Dealer": "Acme RV",
            "Signed Plans Received": "",
            "Forecast Production Date": "01/01/2099",
        },
        {"Chassis": "XYZ999", "Customer": "Jo", "Dealer": "Geelong"},
    ])

    assert len(received) == 2
    assert received[0] == []
    orders = received[1]
    assert [o["Chassis"] for o in orders] == ["ABC123", "XYZ999"]
    order = orders[0]
    assert is_unsigned(order)
    assert not is_red_unsigned(order)
    assert scope_to_dealer(orders, "acme-rv") == [order]


def test_schedule_feed_handles_missing_node(ctx):
    received = []
    subscribe_to_schedule(ctx, received.append)
    ctx.emit("schedule", None)
    assert received == [[]]


def test_dealer_config_feed_reports_missing_as_none(ctx):
    received = []
    subscribe_to_dealer_config(ctx, "acme-rv", received.append)
    ctx.emit("dealerConfigs/acme-rv", None)
    ctx.emit("dealerConfigs/acme-rv", {"name": "Acme RV", "code": "X1Y2Z3"})
    assert received[0] is None
    assert received[1]["code"] == "x1y2z3"


def test_invoice_feed_requires_dealer(ctx):
    with pytest.raises(ValueError):
        subscribe_to_yard_invoices(ctx, "", print)


def test_invoice_feed_filtered_by_window(ctx):
    received = []
    subscribe_to_yard_invoices(ctx, "acme-rv", received.append)
    ctx.emit("yardnewvaninvoice/acme-rv", {
        "inv1": {"_source": {"chassis": "ABC123", "invoiceDate": "2024-03-10", "grSONetValue": 65000}},
        "inv2": {"chassis": "XYZ999", "invoiceDate": "2023-11-01"},
    })

    window = DateWindow.preset("30d", date(2024, 3, 15))
    invoices = filter_by_date_field(received[-1], "invoice_date", window)
    assert [i["chassis"] for i in invoices] == ["ABC123"]
    assert invoices[0]["final_sale_price"] == 65000
    assert invoices[0]["location_name"] == "acme-rv"


def test_tier_config_falls_back_to_legacy_root():
    ctx = FakeContext({"tierConfig": {"shareTargets": {"A1": 0.5}}})
    received = []
    subscribe_to_tier_config(ctx, received.append)
    ctx.emit("tierConfig/settings", None)
    ctx.emit("tierConfig/settings", {"shareTargets": {"A1": 0.7}})
    assert received == [{"shareTargets": {"A1": 0.5}}, {"shareTargets": {"A1": 0.7}}]
    assert effective_targets(received[0])["share_targets"]["A1"] == 0.5


def test_load_tier_settings_prefers_settings_node():
    assert load_tier_settings(FakeContext({"tierConfig/settings": {"a": 1}, "tierConfig": {"b": 2}})) == {"a": 1}
    assert load_tier_settings(FakeContext({"tierConfig": {"b": 2}})) == {"b": 2}
    assert load_tier_settings(FakeContext()) == {}


def test_dealer_layout_combines_both_paths(ctx):
    received = []
    subscription = subscribe_to_dealer_layout(ctx, "acme-rv", received.append)

    ctx.emit("tierConfig/defaultLayout", {"tiers": [{"code": "A1", "models": ["SRC19"]}]})
    assert received[-1]["source"] == "default"

    ctx.emit("tierConfig/dealerLayouts/acme-rv", {"tiers": [{"code": "B1"}]})
    assert received[-1]["source"] == "dealer"
    assert received[-1]["layout"]["tiers"][0]["code"] == "B1"

    subscription()
    assert not any(s.active for s in ctx.subscriptions)


def test_dealer_layout_deliveries_stay_in_order(ctx):
    received = []
    pending = []

    def on_layout(resolved):
        received.append(resolved["source"])
        if len(received) == 1:
            # A second stream's change waits for this delivery to finish
            other = threading.Thread(
                target=ctx.emit,
                args=("tierConfig/dealerLayouts/acme-rv", {"tiers": [{"code": "B1"}]})
            )
            other.start()
            other.join(0.2)
            assert other.is_alive()
            pending.append(other)

    subscribe_to_dealer_layout(ctx, "acme-rv", on_layout)
    ctx.emit("tierConfig/defaultLayout", {"tiers": [{"code": "A1", "models": ["SRC19"]}]})
    pending[0].join(2)

    assert received == ["default", "dealer"]


# =============================================================================
# YARD WRITES
# =============================================================================

def test_receive_chassis_writes_yard_then_deletes_pgi(ctx):
    record = receive_chassis_to_yard(ctx, "acme-rv", "ABC123", {
        "PGIDate": "01/03/2024", "dealer": "Acme RV", "model": "SRC19", "customer": "Jo",
    })

    assert ctx.writes[0] == ("set", "yardstock/acme-rv/ABC123", record)
    assert ctx.writes[1] == ("remove", "pgirecord/ABC123")
    assert record["from_pgidate"] == "01/03/2024"
    assert record["type"] == "Stock"
    assert record["receivedAt"].endswith("Z")


def test_receive_chassis_validates_keys(ctx):
    with pytest.raises(ValueError):
        receive_chassis_to_yard(ctx, "acme-rv", "", {})
    assert ctx.writes == []


def test_handover_writes_record_and_clears_yard(ctx):
    save_handover(ctx, "acme-rv", "ABC123", {"customer": "Jo", "handoverAt": "2024-03-01T00:00:00.000Z"})
    op, path, payload = ctx.writes[0]
    assert (op, path) == ("set", "handover/acme-rv/ABC123")
    assert payload["handoverAt"] == "2024-03-01T00:00:00.000Z"
    assert payload["dealerSlug"] == "acme-rv"
    assert ctx.writes[1] == ("remove", "yardstock/acme-rv/ABC123")


def test_simple_yard_writes(ctx):
    mark_pgi_history(ctx, "ABC123")
    dispatch_from_yard(ctx, "acme-rv", "ABC123")
    order_stock_unit(ctx, "SRC001", "Acme RV")
    assert ctx.writes[0] == ("update", "pgirecord/ABC123", {"history": True})
    assert ctx.writes[1] == ("remove", "yardstock/acme-rv/ABC123")
    assert ctx.writes[2][2]["orderedBy"] == "Acme RV"


def test_manual_chassis_goes_to_pending(ctx):
    record = add_manual_chassis_to_yard_pending(ctx, "acme-rv", "ABC123", model="SRC19", wholesale_po=45000)
    assert ctx.writes == [("set", "yardpending/acme-rv/ABC123", record)]
    assert record["status"] == "pending"
    assert record["wholesalepo"] == 45000


# =============================================================================
# CONFIG WRITES
# =============================================================================

def test_save_dealer_config_generates_code(ctx):
    config = save_dealer_config(ctx, "Acme RV")
    op, path, payload = ctx.writes[0]
    assert path == "dealerConfigs/acme-rv"
    assert len(config["code"]) == 6
    assert payload["code"] == config["code"]
    assert payload["isGroup"] is False


def test_save_dealer_config_keeps_existing_code(ctx):
    config = save_dealer_config(ctx, "Acme RV", existing={"code": "abc123", "created_at": "then"})
    assert config["code"] == "abc123"
    assert config["created_at"] == "then"


def test_group_config_requires_members(ctx):
    with pytest.raises(ValueError):
        save_group_config(ctx, "VIC Group", [])
    config = save_group_config(ctx, "VIC Group", ["Acme RV", "geelong", "acme rv", ""])
    assert config["included_dealers"] == ["acme-rv", "geelong"]


def test_save_tier_settings_merges_existing():
    ctx = FakeContext({"tierConfig/settings": {"notes": "keep"}})
    merged = effective_targets(None)
    payload = save_tier_settings(ctx, merged["tier_targets"], merged["share_targets"])
    assert payload["notes"] == "keep"
    assert "updatedAt" in payload
    assert ctx.writes[0][1] == "tierConfig/settings"


def test_confirming_show_order_stamps_time(ctx):
    update_show_order(ctx, "SO-1", {"dealerConfirm": True})
    update_show_order(ctx, "SO-2", {"dealerNotes": "x"})
    assert "dealerConfirmAt" in ctx.writes[0][2]
    assert "dealerConfirmAt" not in ctx.writes[1][2]


# =============================================================================
# LIVE FEEDS
# =============================================================================

def test_live_feeds_default_until_first_value(ctx):
    feeds = LiveFeeds()
    feeds.attach("schedule", lambda cb, err: subscribe_to_schedule(ctx, cb, on_error=err), [])
    assert feeds.get("schedule") == []
    assert not feeds.loaded("schedule")

    ctx.emit("schedule", [{"Chassis": "A1", "Customer": "Jo"}])
    assert feeds.loaded("schedule")
    assert feeds.get("schedule")[0]["Chassis"] == "A1"


def test_live_feeds_record_errors_and_close(ctx):
    feeds = LiveFeeds()
    feeds.attach("schedule", lambda cb, err: subscribe_to_schedule(ctx, cb, on_error=err), [])
    feeds.attach("schedule", lambda cb, err: pytest.fail("attached twice"), [])

    ctx.emit("schedule", [{"Chassis": "A1", "Customer": "Jo"}])
    ctx.subscriptions[0].on_error(FirebaseError("denied"))
    assert feeds.errors() == {"schedule": "denied"}
    assert feeds.get("schedule") == []
    assert not feeds.loaded("schedule")

    ctx.emit("schedule", [{"Chassis": "A2", "Customer": "Jo"}])
    assert feeds.get("schedule")[0]["Chassis"] == "A2"
    assert feeds.errors() == {}

    feeds.close()
    assert not ctx.subscriptions[0].active
    assert feeds.get("schedule") is None


def test_load_once_returns_default_on_failure():
    ctx = FakeContext({"yardsize": FirebaseError("down"), "shows": {"s1": {}}})
    assert load_once(ctx, "yardsize", []) == []
    assert load_once(ctx, "missing", {}) == {}
    assert load_once(ctx, "shows") == {"s1": {}}


def test_show_tasks_feed_normalizes(ctx):
    received = []
    subscribe_to_show_tasks(ctx, received.append)
    ctx.emit("showTasks", {"t1": {"eventId": "s1", "status": "done"}, "t2": {"status": "done"}})
    assert [t["id"] for t in received[-1]] == ["t1"]
    assert received[-1][0]["status"] == "Done"


def test_layout_writes_use_camel_case(ctx):
    layout = normalize_layout({"tiers": [{"code": "A1", "models": ["SRC19"], "sortOrder": 1}]})
    save_default_layout(ctx, layout)
    save_dealer_layout(ctx, "acme-rv", layout)

    _, path, payload = ctx.writes[0]
    assert path == "tierConfig/defaultLayout"
    assert payload["tiers"] == [{"code": "A1", "name": "A1", "description": "", "models": ["SRC19"], "sortOrder": 1}]

    _, path, payload = ctx.writes[1]
    assert path == "tierConfig/dealerLayouts/acme-rv"
    assert payload["slug"] == "acme-rv"
    assert "updatedAt" in payload


def test_powerbi_url_update(ctx):
    update_dealer_powerbi_url(ctx, "acme-rv", "https://app.powerbi.com/x")
    op, path, values = ctx.writes[0]
    assert (op, path) == ("update", "dealerConfigs/acme-rv")
    assert values["powerbiUrl"] == "https://app.powerbi.com/x"
