"""
Dealer Portal - Streamlit App

Dealer and admin portal over the production schedule, yard stock, PGI and
handover feeds. Dealers open the portal with ``?dealer={slug}-{code}``;
admins sign in with ``PORTAL_ADMIN_PASSWORD``.
"""

import base64
import os
from datetime import datetime, timedelta

import streamlit as st
import streamlit.components.v1 as components
import pandas as pd
from dotenv import load_dotenv

from dealer_portal.firebase_client import FirebaseContext, FirebaseError, ConfigError
from dealer_portal.dealer_utils import (
    build_access_slug,
    dealer_header_html,
    is_price_enabled_dealer,
    prettify_slug,
    resolve_dealer_access,
)
from dealer_portal.date_utils import (
    DateWindow,
    PRESET_DAYS,
    filter_by_date_field,
    format_date_only,
    format_days_escaped,
)
from dealer_portal.normalization import (
    build_model_meta,
    filter_schedule,
    index_by_chassis,
    normalize_dealer_configs,
    normalize_yard_stock,
)
from dealer_portal.data_processing import (
    ALL,
    YARD_RANGE_BUCKETS,
    count_yard_buckets,
    filter_inventory_rows,
    filter_yard_list,
    inventory_facet_options,
    inventory_stock_rows,
    is_on_the_road_soon,
    model_range_cards,
    on_the_road,
    process_stock_analysis,
    process_unsigned_summary,
    process_yard_kpis,
    process_yard_trends,
    resolve_current_dealer,
    scope_to_dealer,
    stock_analysis_table,
    waiting_for_receiving,
)
from dealer_portal.tier_config import DEFAULT_LAYOUT, compute_tier_status, effective_targets, normalize_layout
from dealer_portal.feeds import (
    LiveFeeds,
    add_manual_chassis_to_yard_pending,
    dispatch_from_yard,
    fetch_team_members,
    load_once,
    mark_pgi_history,
    order_stock_unit,
    receive_chassis_to_yard,
    remove_dealer_config,
    save_dealer_config,
    save_dealer_layout,
    save_default_layout,
    save_group_config,
    save_handover,
    save_tier_settings,
    subscribe_all_dealer_configs,
    subscribe_to_dealer_layout,
    subscribe_to_handovers,
    subscribe_to_model_analysis,
    subscribe_to_pgi_records,
    subscribe_to_reallocation,
    subscribe_to_schedule,
    subscribe_to_show_orders,
    subscribe_to_show_tasks,
    subscribe_to_shows,
    subscribe_to_stock,
    subscribe_to_tier_config,
    subscribe_to_yard_size,
    subscribe_to_yard_invoices,
    subscribe_to_yard_stock,
    update_dealer_active_status,
    update_dealer_powerbi_url,
    update_show_order,
)
from dealer_portal.exports import CSV_MIME, XLSX_MIME, ExportError, build_workbook, export_filename, to_csv_text
from dealer_portal.order_confirmation import PDFAssetContext, generate_order_confirmation
from dealer_portal.pdf_generator import (
    PDFGenerationError,
    build_yard_report,
    format_age_days,
    format_currency,
    generate_yard_report_pdf,
)
import logging

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

load_dotenv()

# Page config
st.set_page_config(
    page_title="Dealer Portal",
    page_icon="🚐",
    layout="wide",
    initial_sidebar_state="expanded"
)

# Custom CSS for styling
st.markdown("""
<style>
    .main-header {
        font-size: 2.2rem;
        color: #212e47;
        font-weight: bold;
    }
    .red-flag {
        color: #d32f2f;
        font-weight: bold;
    }
</style>
""", unsafe_allow_html=True)

YARD_COLUMNS = [
    ("Chassis", "chassis"), ("VIN", "vin_number"), ("Model", "model"), ("Customer", "customer"),
    ("Type", "type"), ("Received", "received_at"), ("Days In Yard", "days_in_yard"),
    ("Range", "model_range"), ("Function", "function_name"), ("Layout", "layout"),
]
ORDER_COLUMNS = [
    "Chassis", "Customer", "Model", "Model Year", "Forecast Production Date",
    "Regent Production", "Signed Plans Received", "Purchase Order Sent", "Dealer",
]
PGI_COLUMNS = [("Chassis", "chassis"), ("PGI Date", "pgi_date"), ("Model", "model"), ("Customer", "customer")]
INVOICE_COLUMNS = [
    ("Chassis", "chassis"), ("Invoice Date", "invoice_date"), ("Model", "model"), ("Customer", "customer"),
    ("Purchase Price", "purchase_price"), ("Sale Price", "final_sale_price"), ("Discount", "discount"),
]
INVENTORY_COLUMNS = [
    ("Chassis", "chassis"), ("Model", "display_model"), ("Range", "model_range"),
    ("Production", "regent_production"), ("Colour Theme", "colour_theme"),
    ("Decals", "decals"), ("Exterior Colour", "exterior_colour"),
]
LOGO_PATH = os.getenv("PORTAL_LOGO_PATH")


# =============================================================================
# HELPERS
# =============================================================================

def frame(rows, columns):
    """DataFrame with (header, key) columns in order."""
    headers = [c if isinstance(c, str) else c[0] for c in columns]
    keys = [c if isinstance(c, str) else c[1] for c in columns]
    return pd.DataFrame([[str(r.get(k, "") if r.get(k) is not None else "") for k in keys] for r in rows],
                        columns=headers)


def export_buttons(rows, columns, entity_label, dealer_name, key):
    """CSV + XLSX download buttons for a row set."""
    col1, col2 = st.columns(2)
    try:
        with col1:
            st.download_button(
                "📥 CSV",
                to_csv_text(rows, columns),
                export_filename(entity_label, dealer_name, "csv"),
                CSV_MIME,
                key=f"{key}_csv"
            )
        with col2:
            st.download_button(
                "📥 Excel",
                build_workbook(rows, columns, entity_label),
                export_filename(entity_label, dealer_name, "xlsx"),
                XLSX_MIME,
                key=f"{key}_xlsx"
            )
    except ExportError as e:
        st.error(f"Export failed: {e}")


def window_selector(key):
    """Preset or custom date window; each key keeps its own selection."""
    preset = st.selectbox("Period", options=list(PRESET_DAYS) + ["custom"], index=0, key=f"{key}_period")
    if preset != "custom":
        return DateWindow.preset(preset)

    col1, col2 = st.columns(2)
    with col1:
        custom_start = st.date_input("From", value=datetime.now().date() - timedelta(days=30), key=f"{key}_from")
    with col2:
        custom_end = st.date_input("To", value=datetime.now().date(), key=f"{key}_to")
    return DateWindow.custom(custom_start.isoformat(), custom_end.isoformat())


def start_dealer_feeds(feeds, ctx, dealer_slug):
    """Attach every feed the dealer views read."""
    feeds.attach("schedule", lambda cb, err: subscribe_to_schedule(ctx, cb, True, True, False, err), [])
    feeds.attach("yard", lambda cb, err: subscribe_to_yard_stock(ctx, dealer_slug, cb, err), {})
    feeds.attach("pgi", lambda cb, err: subscribe_to_pgi_records(ctx, cb, err), [])
    feeds.attach("handovers", lambda cb, err: subscribe_to_handovers(ctx, dealer_slug, cb, err), [])
    feeds.attach("model_analysis", lambda cb, err: subscribe_to_model_analysis(ctx, cb, err), [])
    feeds.attach("stock", lambda cb, err: subscribe_to_stock(ctx, cb, err), {})
    feeds.attach("reallocation", lambda cb, err: subscribe_to_reallocation(ctx, cb, err), {})
    feeds.attach("yard_sizes", lambda cb, err: subscribe_to_yard_size(ctx, cb, err), {})
    feeds.attach("tier_settings", lambda cb, err: subscribe_to_tier_config(ctx, cb, err), {})
    feeds.attach("layout", lambda cb, err: subscribe_to_dealer_layout(ctx, dealer_slug, cb, err), None)
    feeds.attach("invoices", lambda cb, err: subscribe_to_yard_invoices(ctx, dealer_slug, cb, err), [])


# =============================================================================
# SESSION STATE INITIALIZATION
# =============================================================================

if 'ctx' not in st.session_state:
    try:
        st.session_state.ctx = FirebaseContext.from_env()
    except ConfigError as e:
        st.error(f"Configuration error: {e}")
        st.stop()

if 'feeds' not in st.session_state:
    st.session_state.feeds = LiveFeeds()
    st.session_state.feeds.attach(
        "dealer_configs",
        lambda cb, err: subscribe_all_dealer_configs(st.session_state.ctx, cb, err),
        {}
    )

if 'feeds_dealer' not in st.session_state:
    st.session_state.feeds_dealer = None

if 'is_admin' not in st.session_state:
    st.session_state.is_admin = False

ctx = st.session_state.ctx
feeds = st.session_state.feeds

configs = feeds.get("dealer_configs", {})
if not feeds.loaded("dealer_configs"):
    configs = normalize_dealer_configs(load_once(ctx, "dealerConfigs", {}))

access = resolve_dealer_access(configs, st.query_params.get("dealer"))


# =============================================================================
# SIDEBAR - ACCESS & FILTERS
# =============================================================================

with st.sidebar:
    st.markdown('<p class="main-header">🚐 Dealer Portal</p>', unsafe_allow_html=True)
    st.markdown("---")

    selected_member = None
    if access:
        st.subheader(access["name"])
        if access.get("is_group"):
            selected_member = st.selectbox(
                "Dealer",
                options=access.get("included_dealers") or [],
                format_func=lambda s: configs.get(s, {}).get("name") or prettify_slug(s)
            )
    elif not st.session_state.is_admin:
        st.subheader("Admin Sign In")
        password = st.text_input("Password", type="password")
        if st.button("Sign in", type="primary", use_container_width=True):
            expected = os.getenv("PORTAL_ADMIN_PASSWORD")
            if expected and password == expected:
                st.session_state.is_admin = True
                st.rerun()
            else:
                st.error("Incorrect password")
    else:
        st.success("Signed in as admin")
        if st.button("Sign out", use_container_width=True):
            st.session_state.is_admin = False
            st.rerun()

    st.markdown("---")
    st.subheader("Date Range")

    window = window_selector("kpi")

    report_period = f"{format_date_only(window.start)} to {format_date_only(window.end)}"

    st.markdown("---")
    if st.button("🔄 Refresh", use_container_width=True):
        st.rerun()

    for name, message in feeds.errors().items():
        st.warning(f"Feed '{name}' unavailable: {message}")


# =============================================================================
# ADMIN VIEW
# =============================================================================

def render_admin():
    st.markdown('<p class="main-header">Dealer Administration</p>', unsafe_allow_html=True)

    tab1, tab2, tab3, tab4 = st.tabs(["🏪 Dealers", "👥 Groups", "🎯 Tier Settings", "🎪 Show Orders"])

    with tab1:
        dealers = [c for c in configs.values() if not c.get("is_group")]
        st.markdown(f"### Dealers ({len(dealers)})")

        for config in sorted(dealers, key=lambda c: c["name"].lower()):
            with st.expander(f"{config['name']} ({'active' if config['is_active'] else 'inactive'})"):
                st.code(f"?dealer={build_access_slug(config['slug'], config['code'])}")
                col1, col2 = st.columns(2)
                with col1:
                    if st.button("Toggle active", key=f"toggle_{config['slug']}"):
                        try:
                            update_dealer_active_status(ctx, config["slug"], not config["is_active"])
                            st.success("Updated")
                        except FirebaseError as e:
                            st.error(f"Update failed: {e}")
                with col2:
                    if st.button("Delete", key=f"delete_{config['slug']}"):
                        try:
                            remove_dealer_config(ctx, config["slug"])
                            st.success("Deleted")
                        except FirebaseError as e:
                            st.error(f"Delete failed: {e}")
                url = st.text_input("PowerBI URL", value=config.get("powerbi_url", ""), key=f"pbi_{config['slug']}")
                if url != config.get("powerbi_url", "") and st.button("Save URL", key=f"pbi_save_{config['slug']}"):
                    try:
                        update_dealer_powerbi_url(ctx, config["slug"], url.strip())
                        st.success("PowerBI URL saved")
                    except FirebaseError as e:
                        st.error(f"Update failed: {e}")

        st.markdown("#### Add or update dealer")
        with st.form("dealer_form"):
            name = st.text_input("Dealer name")
            powerbi_url = st.text_input("PowerBI URL")
            regenerate = st.checkbox("Generate a new access code")
            if st.form_submit_button("Save dealer", type="primary"):
                existing = next((c for c in configs.values() if c["name"] == name), None)
                try:
                    saved = save_dealer_config(
                        ctx, name, None if regenerate else (existing or {}).get("code"),
                        powerbi_url=powerbi_url, existing=existing
                    )
                    st.success(f"Saved. Access link: ?dealer={build_access_slug(saved['slug'], saved['code'])}")
                except (FirebaseError, ValueError) as e:
                    st.error(f"Save failed: {e}")

    with tab2:
        groups = [c for c in configs.values() if c.get("is_group")]
        st.markdown(f"### Dealer Groups ({len(groups)})")
        for group in groups:
            members = ", ".join(configs.get(s, {}).get("name") or prettify_slug(s) for s in group["included_dealers"])
            st.write(f"**{group['name']}**: {members}")
            st.code(f"?dealer={build_access_slug(group['slug'], group['code'])}")

        with st.form("group_form"):
            group_name = st.text_input("Group name")
            members = st.multiselect(
                "Member dealers",
                options=sorted(c["slug"] for c in configs.values() if not c.get("is_group")),
                format_func=lambda s: configs[s]["name"]
            )
            if st.form_submit_button("Save group", type="primary"):
                existing = next((c for c in groups if c["name"] == group_name), None)
                try:
                    save_group_config(ctx, group_name, members, existing=existing)
                    st.success("Group saved")
                except (FirebaseError, ValueError) as e:
                    st.error(f"Save failed: {e}")

    with tab3:
        targets = effective_targets(load_once(ctx, "tierConfig/settings", {}))
        st.markdown("### Tier Settings")
        with st.form("tier_form"):
            tier_targets = {}
            share_targets = {}
            for tier, target in targets["tier_targets"].items():
                col1, col2, col3 = st.columns(3)
                with col1:
                    minimum = st.number_input(f"{tier} minimum", min_value=0, value=int(target["minimum"]))
                with col2:
                    ceiling = st.number_input(f"{tier} ceiling (0 = none)", min_value=0,
                                              value=int(target.get("ceiling") or 0))
                with col3:
                    share = st.number_input(f"{tier} share", min_value=0.0, max_value=1.0, step=0.05,
                                            value=float(targets["share_targets"].get(tier, 0)))
                tier_targets[tier] = dict(target, minimum=minimum, ceiling=ceiling or None)
                share_targets[tier] = share
            if st.form_submit_button("Save tier settings", type="primary"):
                try:
                    save_tier_settings(ctx, tier_targets, share_targets)
                    st.success("Tier settings saved")
                except FirebaseError as e:
                    st.error(f"Save failed: {e}")

        st.markdown("### Tier Layouts")
        dealer_slugs = sorted(c["slug"] for c in configs.values() if not c.get("is_group"))
        scope = st.selectbox(
            "Layout for",
            options=["default"] + dealer_slugs,
            format_func=lambda s: "Default layout" if s == "default" else configs[s]["name"]
        )
        path = "tierConfig/defaultLayout" if scope == "default" else f"tierConfig/dealerLayouts/{scope}"
        stored = normalize_layout(load_once(ctx, path))
        if stored is None and scope != "default":
            stored = normalize_layout(load_once(ctx, "tierConfig/defaultLayout"))
        layout = stored or normalize_layout(DEFAULT_LAYOUT)

        with st.form("layout_form"):
            tiers = []
            for tier in layout["tiers"]:
                models = st.text_input(
                    f"{tier['name']} models (comma separated)",
                    value=", ".join(tier["models"]),
                    key=f"layout_{scope}_{tier['code']}"
                )
                tiers.append(dict(tier, models=[m.strip() for m in models.split(",") if m.strip()]))
            if st.form_submit_button("Save layout", type="primary"):
                try:
                    if scope == "default":
                        save_default_layout(ctx, {"tiers": tiers})
                    else:
                        save_dealer_layout(ctx, scope, {"tiers": tiers})
                    st.success("Layout saved")
                except FirebaseError as e:
                    st.error(f"Save failed: {e}")

    with tab4:
        render_show_orders()


def render_show_orders():
    st.markdown("### Show Orders")
    try:
        show_ctx = st.session_state.get("show_ctx") or FirebaseContext.from_env("SHOW_FIREBASE_")
    except ConfigError as e:
        st.warning(f"Show database not configured: {e}")
        return
    st.session_state.show_ctx = show_ctx

    feeds.attach("show_orders", lambda cb, err: subscribe_to_show_orders(show_ctx, cb, err), [])
    feeds.attach("shows", lambda cb, err: subscribe_to_shows(show_ctx, cb, err), [])
    feeds.attach("show_tasks", lambda cb, err: subscribe_to_show_tasks(show_ctx, cb, err), [])

    orders = feeds.get("show_orders", [])
    shows = {s["id"]: s for s in feeds.get("shows", [])}
    if not orders:
        st.info("No show orders yet.")
        return

    st.dataframe(pd.DataFrame([{k: v for k, v in o.items()} for o in orders]), use_container_width=True)

    order_id = st.selectbox("Order", options=[o["order_id"] for o in orders])
    order = next(o for o in orders if o["order_id"] == order_id)
    show = shows.get(order["show_id"], {})
    dealer_name = show.get("handover_dealer") or show.get("dealership") or ""
    tasks = [t for t in feeds.get("show_tasks", []) if t["event_id"] == order["show_id"]]
    if tasks:
        st.markdown(f"#### Show tasks ({len(tasks)})")
        st.dataframe(
            pd.DataFrame(tasks)[["task_name", "status", "assigned_to", "due_date"]],
            use_container_width=True, hide_index=True
        )

    notes = st.text_area("Dealer notes", value=order["dealer_notes"])

    col1, col2 = st.columns(2)
    with col1:
        if st.button("✅ Confirm order", type="primary"):
            try:
                update_show_order(show_ctx, order_id, {"dealerConfirm": True, "dealerNotes": notes})
                st.success("Order confirmed")
            except FirebaseError as e:
                st.error(f"Confirm failed: {e}")
    with col2:
        if st.button("📄 Confirmation PDF"):
            try:
                recipient = next(
                    (m for m in fetch_team_members(show_ctx) if m["member_name"] == order["salesperson"]),
                    None
                )
            except FirebaseError as e:
                st.error(f"Could not load team members: {e}")
                recipient = None
            uri = generate_order_confirmation(
                dict(order, dealer_notes=notes), dealer_name, show.get("name", ""), recipient,
                context=PDFAssetContext(logo_path=LOGO_PATH)
            )
            st.download_button(
                "📥 Download confirmation",
                base64.b64decode(uri.split(",", 1)[1]),
                f"Show_Order_{order_id}.pdf",
                "application/pdf"
            )


# =============================================================================
# DEALER VIEW
# =============================================================================

def render_dealer(dealer_slug, dealer_name):
    if st.session_state.feeds_dealer != dealer_slug:
        for name in ("schedule", "yard", "pgi", "handovers", "model_analysis", "stock",
                     "reallocation", "yard_sizes", "tier_settings", "layout", "invoices"):
            feeds.detach(name)
        start_dealer_feeds(feeds, ctx, dealer_slug)
        st.session_state.feeds_dealer = dealer_slug

    schedule_all = feeds.get("schedule", [])
    orders = scope_to_dealer(filter_schedule(schedule_all), dealer_slug)
    slots = scope_to_dealer(schedule_all, dealer_slug)
    yard_entries = normalize_yard_stock(
        feeds.get("yard", {}),
        index_by_chassis(schedule_all),
        build_model_meta(feeds.get("model_analysis", [])),
        dealer_slug
    )
    pgi_rows = feeds.get("pgi", [])
    handovers = feeds.get("handovers", [])

    kpis = process_yard_kpis(pgi_rows, yard_entries, handovers, dealer_slug, window)
    targets = effective_targets(feeds.get("tier_settings", {}))
    layout = feeds.get("layout") or {}
    min_volume = feeds.get("yard_sizes", {}).get(dealer_slug, {}).get("min_volume", 0)
    tier_status = compute_tier_status(
        layout.get("layout"), yard_entries, targets["tier_targets"], targets["share_targets"], min_volume
    )

    st.markdown(dealer_header_html(dealer_name), unsafe_allow_html=True)

    tabs = st.tabs([
        "📊 Summary", "🚚 On The Road", "🏕️ Yard", "✍️ Unsigned & Empty",
        "📦 Inventory Stock", "📈 Stock Analysis", "🎯 Tier Targets", "📄 Report",
        "🧾 Invoices", "📉 Dashboard",
    ])

    # TAB 1: SUMMARY
    with tabs[0]:
        col1, col2, col3, col4, col5 = st.columns(5)
        col1.metric("Dispatched (PGI)", kpis["pgi_count"])
        col2.metric("Received", kpis["received_count"])
        col3.metric("Handovers", kpis["handover_count"])
        col4.metric("Secondhand", kpis["secondhand_count"])
        col5.metric("Yard Stock", kpis["yard_stock"]["total"],
                    delta=f"{kpis['yard_stock']['stock']} stock / {kpis['yard_stock']['customer']} customer",
                    delta_color="off")

        trends = process_yard_trends(yard_entries, handovers, dealer_slug, window)
        st.markdown("#### Stock level (10 weeks)")
        st.line_chart(pd.DataFrame(trends["stock_levels"]).set_index("week")[["level"]])

        col1, col2 = st.columns(2)
        with col1:
            st.markdown("#### Received by month")
            if trends["received_monthly"]:
                st.bar_chart(pd.DataFrame(trends["received_monthly"]).set_index("label")[["count"]])
        with col2:
            st.markdown("#### Handovers by month")
            if trends["handovers_monthly"]:
                st.bar_chart(pd.DataFrame(trends["handovers_monthly"]).set_index("label")[["count"]])

        st.markdown("#### Orders by model range")
        st.dataframe(pd.DataFrame(model_range_cards(orders)), use_container_width=True)

    # TAB 2: ON THE ROAD
    with tabs[1]:
        leaving_soon = [o for o in orders if is_on_the_road_soon(o)]
        if leaving_soon:
            st.markdown(f"#### Leaving the factory soon ({len(leaving_soon)})")
            st.dataframe(frame(leaving_soon, ORDER_COLUMNS), use_container_width=True)

        road_window = window_selector("road")
        waiting = waiting_for_receiving(on_the_road(pgi_rows, dealer_slug, road_window), yard_entries, handovers)
        st.markdown(f"### Waiting for receiving ({len(waiting)})")
        for row in waiting:
            col1, col2, col3 = st.columns([3, 1, 1])
            col1.write(
                f"**{row['chassis']}** · {row['model'] or '-'} · PGI {row['pgi_date'] or '-'}"
                f" · {format_days_escaped(row['pgi_date'])} days on the road"
            )
            if col2.button("Receive", key=f"receive_{row['chassis']}"):
                try:
                    receive_chassis_to_yard(ctx, dealer_slug, row["chassis"], row["raw"])
                    st.success(f"{row['chassis']} received")
                except FirebaseError as e:
                    st.error(f"Receive failed: {e}")
            if col3.button("Hide", key=f"hide_{row['chassis']}"):
                try:
                    mark_pgi_history(ctx, row["chassis"])
                except FirebaseError as e:
                    st.error(f"Update failed: {e}")
        export_buttons(waiting, PGI_COLUMNS, "On The Road", dealer_name, "pgi")

    # TAB 3: YARD
    with tabs[2]:
        col1, col2, col3, col4 = st.columns(4)
        with col1:
            bucket = st.selectbox("Days in yard", [ALL] + [b[0] for b in YARD_RANGE_BUCKETS])
        with col2:
            model_range = st.selectbox("Range", [ALL] + sorted({e["model_range"] for e in yard_entries}))
        with col3:
            customer_type = st.selectbox("Type", [ALL, "Stock", "Customer"])
        with col4:
            search = st.text_input("Search chassis")

        rows = filter_yard_list(yard_entries, None if bucket == ALL else bucket, model_range,
                                customer_type, search, "desc")

        st.bar_chart(pd.DataFrame(count_yard_buckets(yard_entries)).set_index("label"))

        table = frame(rows, YARD_COLUMNS)
        table["In Yard"] = [format_age_days(r["days_in_yard"]) for r in rows]
        if is_price_enabled_dealer(dealer_slug):
            table["Wholesale"] = [format_currency(r["wholesale_price"]) for r in rows]
        st.dataframe(table, use_container_width=True)
        export_buttons(rows, YARD_COLUMNS, "Yard Stock", dealer_name, "yard")

        with st.expander("Record handover / add unit"):
            col1, col2 = st.columns(2)
            with col1:
                with st.form("handover_form"):
                    handover_chassis = st.selectbox("Chassis", [e["chassis"] for e in yard_entries])
                    handover_customer = st.text_input("Customer")
                    record_handover = st.form_submit_button("Record handover")
                    dispatch = st.form_submit_button("Dispatch from yard")
                    if record_handover and handover_chassis:
                        try:
                            save_handover(ctx, dealer_slug, handover_chassis, {
                                "customer": handover_customer.strip(),
                                "dealerName": dealer_name,
                            })
                            st.success(f"{handover_chassis} handed over")
                        except FirebaseError as e:
                            st.error(f"Handover failed: {e}")
                    elif dispatch and handover_chassis:
                        try:
                            dispatch_from_yard(ctx, dealer_slug, handover_chassis)
                            st.success(f"{handover_chassis} dispatched")
                        except FirebaseError as e:
                            st.error(f"Dispatch failed: {e}")
            with col2:
                with st.form("manual_unit_form"):
                    manual_chassis = st.text_input("Chassis number")
                    manual_model = st.text_input("Model")
                    manual_vin = st.text_input("VIN")
                    if st.form_submit_button("Request yard addition"):
                        try:
                            add_manual_chassis_to_yard_pending(
                                ctx, dealer_slug, manual_chassis.strip().upper(),
                                model=manual_model.strip() or None, vin_number=manual_vin.strip() or None
                            )
                            st.success("Sent for approval")
                        except (FirebaseError, ValueError) as e:
                            st.error(f"Request failed: {e}")

    # TAB 4: UNSIGNED & EMPTY
    with tabs[3]:
        search = st.text_input("Search orders")
        summary = process_unsigned_summary(slots, search)
        counts = summary["counts"]
        col1, col2, col3, col4 = st.columns(4)
        col1.metric("Unsigned", counts["unsigned"])
        col2.metric("Red (unsigned)", counts["red_unsigned"])
        col3.metric("Empty slots", counts["empty"])
        col4.metric("Red (empty)", counts["red_empty"])

        st.markdown("#### Unsigned orders")
        st.dataframe(frame(summary["unsigned"], ORDER_COLUMNS), use_container_width=True)
        export_buttons(summary["unsigned"], ORDER_COLUMNS, "Unsigned", dealer_name, "unsigned")

        st.markdown("#### Empty slots")
        st.dataframe(frame(summary["empty"], ORDER_COLUMNS), use_container_width=True)

    # TAB 5: INVENTORY STOCK
    with tabs[4]:
        stock_rows = inventory_stock_rows(feeds.get("stock", {}), feeds.get("reallocation", {}), schedule_all)
        options = inventory_facet_options(stock_rows)
        col1, col2, col3 = st.columns(3)
        with col1:
            inv_range = st.selectbox("Range", [ALL] + options.get("model_range", []), key="inv_range")
        with col2:
            inv_model = st.selectbox("Model", [ALL] + options.get("display_model", []), key="inv_model")
        with col3:
            inv_status = st.selectbox("Production", [ALL] + options.get("regent_production", []), key="inv_status")
        inv_search = st.text_input("Search stock", key="inv_search")

        rows = filter_inventory_rows(stock_rows, inv_range, inv_model, inv_status, search=inv_search)
        st.dataframe(frame(rows, INVENTORY_COLUMNS), use_container_width=True)

        to_order = st.selectbox("Order unit", [""] + [r["chassis"] for r in rows])
        if to_order and st.button("🛒 Order this unit", type="primary"):
            try:
                order_stock_unit(ctx, to_order, dealer_name)
                st.success(f"{to_order} ordered")
            except FirebaseError as e:
                st.error(f"Order failed: {e}")
        export_buttons(rows, INVENTORY_COLUMNS, "Inventory Stock", dealer_name, "inventory")

    # TAB 6: STOCK ANALYSIS
    with tabs[5]:
        analysis = process_stock_analysis(yard_entries)
        col1, col2 = st.columns(2)
        for index, (category, counts) in enumerate(analysis.items()):
            with (col1 if index % 2 == 0 else col2):
                st.markdown(f"#### By {category}")
                if counts:
                    st.bar_chart(pd.DataFrame(counts).set_index("name"))
        st.markdown("#### By model")
        st.dataframe(pd.DataFrame(stock_analysis_table(yard_entries)), use_container_width=True)

    # TAB 7: TIER TARGETS
    with tabs[6]:
        source = layout.get("source", "none")
        if source == "none" or not tier_status["tiers"]:
            st.info("No tier layout configured for this dealer.")
        else:
            st.caption(f"Layout source: {source} · Min van volume: {min_volume}")
            st.dataframe(pd.DataFrame(tier_status["tiers"]).drop(columns=["models"]), use_container_width=True)
            st.write(f"Units outside any tier: {tier_status['unassigned']}")

    # TAB 8: REPORT
    with tabs[7]:
        st.markdown("### 📄 Yard Report")
        st.write(f"**Dealer:** {dealer_name}")
        st.write(f"**Period:** {report_period}")

        if st.button("🎨 Generate PDF", type="primary"):
            try:
                with st.spinner("Generating PDF report..."):
                    report = build_yard_report(pgi_rows, yard_entries, handovers, dealer_slug, window, tier_status)
                    pdf_buffer = generate_yard_report_pdf(dealer_name, report_period, report)

                    st.success("✓ PDF generated successfully!")

                    st.download_button(
                        label="📥 Download PDF Report",
                        data=pdf_buffer,
                        file_name=export_filename("Yard Report", dealer_name, "pdf"),
                        mime="application/pdf",
                        type="primary"
                    )
            except PDFGenerationError as e:
                st.error(f"Error generating PDF: {e}")
                logger.exception("PDF generation failed")

    # TAB 9: INVOICES
    with tabs[8]:
        invoices = filter_by_date_field(feeds.get("invoices", []), "invoice_date", window)
        st.markdown(f"### New van invoices ({len(invoices)})")
        st.caption(f"Invoiced {report_period}")
        st.dataframe(frame(invoices, INVOICE_COLUMNS), use_container_width=True)
        export_buttons(invoices, INVOICE_COLUMNS, "Invoices", dealer_name, "invoices")

    # TAB 10: DASHBOARD
    with tabs[9]:
        powerbi_url = configs.get(dealer_slug, {}).get("powerbi_url", "")
        if powerbi_url:
            components.iframe(powerbi_url, height=720, scrolling=True)
        else:
            st.info("No PowerBI dashboard is configured for this dealer yet. Contact your administrator.")


# =============================================================================
# MAIN CONTENT AREA
# =============================================================================

if access:
    dealer_slug = resolve_current_dealer(access, selected_member)
    if not dealer_slug:
        st.warning("This dealer group has no member dealers.")
    else:
        render_dealer(dealer_slug, configs.get(dealer_slug, {}).get("name") or prettify_slug(dealer_slug))
elif st.session_state.is_admin:
    render_admin()
else:
    st.markdown('<p class="main-header">Access Restricted</p>', unsafe_allow_html=True)
    st.info("Open the portal with your dealer link, or sign in as admin in the sidebar.")
