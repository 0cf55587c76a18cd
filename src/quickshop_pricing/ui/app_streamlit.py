"""
Streamlit live cart preview for the QuickShop discount engine.

Features:
- Tabbed interface for Cart Preview, Catalog, Rules and System Info
- Customer context and coupon codes in the sidebar
- Editable cart with data grid
- Per-line and per-discount breakdown with the resolution trace
"""
import streamlit as st
import pandas as pd
import sys
from pathlib import Path
from datetime import datetime, timezone

# Add src to path for imports
src_path = Path(__file__).parent.parent.parent
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from quickshop_pricing.config.settings import get_settings
from quickshop_pricing.data.catalog import Catalog
from quickshop_pricing.engine import CustomerContext, DiscountEngine, EvaluationContext, InvalidCartError
from quickshop_pricing.engine.rule_parser import describe_rule, format_amount
from quickshop_pricing.services.rules_service import RulesService


st.set_page_config(
    page_title="QuickShop Discount Preview",
    layout="wide",
    initial_sidebar_state="expanded"
)


@st.cache_resource
def get_settings_cached():
    """Get cached settings."""
    return get_settings()


@st.cache_resource
def get_engine():
    """Get cached engine instance."""
    return DiscountEngine.from_settings(get_settings_cached())


@st.cache_resource
def get_catalog():
    """Get cached catalog."""
    return Catalog.from_csv(get_settings_cached().catalog_csv)


try:
    settings = get_settings_cached()
    engine = get_engine()
    catalog = get_catalog()
    rules_service = RulesService(settings.rules_csv, settings.compiled_rules, catalog)
except Exception as e:
    st.error(f"System Error: {e}")
    st.stop()


# ============================================================================
# SIDEBAR: Customer Context
# ============================================================================
with st.sidebar:
    st.header("👤 Customer Context")

    with st.container(border=True):
        customer_id = st.text_input("Customer ID", value="C-1001")
        is_member = st.checkbox("Club member")
        is_first_order = st.checkbox("First order")
        loyalty_tier = st.selectbox("Loyalty tier", ["", "silver", "gold", "platinum"])
        tags_text = st.text_input("Customer tags", placeholder="vip; staff")

    with st.container(border=True):
        codes_text = st.text_input("Coupon codes", placeholder="WELCOME20")
        shipping = st.number_input("Shipping (minor units)", min_value=0, value=2500, step=100)

    st.divider()

    if engine.rules:
        st.success(f"🔧 **{len(engine.rules)} Rules Loaded**")
    else:
        st.warning("⚠️ No rules compiled")

customer = CustomerContext(
    customer_id=customer_id or None,
    tags=tuple(t.strip() for t in tags_text.split(';') if t.strip()),
    loyalty_tier=loyalty_tier or None,
    is_first_order=is_first_order,
    is_member=is_member,
)


# ============================================================================
# MAIN CONTENT: TABBED INTERFACE
# ============================================================================
st.title("QuickShop Discount Preview")
st.caption(f"v1.0 | Currency {settings.currency} | {datetime.now().strftime('%Y-%m-%d')}")

tab1, tab2, tab3, tab4 = st.tabs(["🛒 Cart Preview", "📚 Catalog", "🔧 Rules", "📊 System"])


# ============================================================================
# TAB 1: CART PREVIEW
# ============================================================================
with tab1:
    if 'cart' not in st.session_state:
        st.session_state.cart = {}

    col1, col2 = st.columns([1.8, 1.2], gap="large")

    with col1:
        st.subheader("Add Items")

        with st.container(border=True):
            labels = [f"{sku} | {row['name']}" for sku, row in catalog.frame.iterrows()]
            selected_option = st.selectbox("Search Product", options=labels, label_visibility="collapsed")
            selected_sku = selected_option.split(" | ")[0] if selected_option else None

            c1, c2 = st.columns([1, 4])
            with c1:
                quantity = st.number_input("Qty", min_value=1, value=1, step=1)
            with c2:
                st.write("")
                st.write("")
                if st.button("➕ Add to Cart", type="primary") and selected_sku:
                    st.session_state.cart[selected_sku] = st.session_state.cart.get(selected_sku, 0) + int(quantity)
                    st.rerun()

    result = None
    with col2:
        st.subheader("Cart Summary")

        with st.container(border=True):
            if st.session_state.cart:
                cart, cart_warnings = catalog.build_cart(st.session_state.cart, settings.currency, customer)
                context = EvaluationContext(
                    now=datetime.now(timezone.utc),
                    redeemed_codes=tuple(c.strip() for c in codes_text.split(',') if c.strip()),
                    customer=customer,
                    shipping_amount=int(shipping),
                )
                try:
                    result = engine.calculate(cart, context)
                except InvalidCartError as e:
                    st.error(f"Cart rejected: {e}")

                if result:
                    m1, m2 = st.columns(2)
                    m1.metric("Total", format_amount(result.grand_total))
                    m2.metric("Items", cart.item_count)

                    if result.discount_total:
                        pct = result.discount_total / result.subtotal * 100
                        st.markdown(f":green[**You Save: {format_amount(result.discount_total)} ({pct:.1f}%)**]")
                    if result.free_shipping:
                        st.markdown(":green[**Free shipping**]")

                    for warning in cart_warnings + result.warnings:
                        st.warning(warning)

                if st.button("🗑️ Clear", use_container_width=True):
                    st.session_state.cart = {}
                    st.rerun()
            else:
                st.info("🛒 Cart is empty")

    if st.session_state.cart:
        st.markdown("### 📝 Edit Line Items")

        edited_df = st.data_editor(
            pd.DataFrame([{'SKU': sku, 'Quantity': qty} for sku, qty in st.session_state.cart.items()]),
            use_container_width=True,
            column_config={
                "SKU": st.column_config.TextColumn("SKU", disabled=True),
                "Quantity": st.column_config.NumberColumn("Quantity", min_value=0, step=1)
            },
            hide_index=True,
            key="cart_editor"
        )

        if st.button("💾 Update Quantities"):
            st.session_state.cart = {
                row['SKU']: int(row['Quantity']) for _, row in edited_df.iterrows() if row['Quantity'] > 0
            }
            st.rerun()

    if result:
        st.divider()
        st.markdown("### 💸 Line Breakdown")
        st.dataframe(pd.DataFrame([{
            'Line': line.line_id,
            'Name': line.name,
            'Qty': line.quantity,
            'Unit Price': format_amount(line.unit_price),
            'Original': format_amount(line.original_total),
            'Discount': format_amount(line.discount_total),
            'Final': format_amount(line.final_total),
            'Rules': ", ".join(line.applied_rule_ids),
        } for line in result.lines]), use_container_width=True, hide_index=True)

        if result.applied_discounts:
            st.markdown("### 🏷️ Applied Discounts")
            st.dataframe(pd.DataFrame([{
                'Rule': d.rule_id,
                'Title': d.title,
                'Type': d.kind.value,
                'Amount': format_amount(d.amount),
                'Code': d.code or "",
                'Free Shipping': d.free_shipping,
                'Description': d.description,
            } for d in result.applied_discounts]), use_container_width=True, hide_index=True)

        with st.expander("🔍 Resolution Trace"):
            st.text(result.get_trace_text())


# ============================================================================
# TAB 2: CATALOG EXPLORER
# ============================================================================
with tab2:
    st.subheader("📚 Product Catalog")
    search_term = st.text_input("Search Catalog", placeholder="Enter SKU or name...", label_visibility="collapsed")
    display_catalog = catalog.search(search_term, limit=500).copy()
    display_catalog.insert(0, 'SKU', display_catalog.index)
    st.dataframe(display_catalog, use_container_width=True, hide_index=True)
    st.caption(f"Total SKUs: {len(catalog):,} | Visible: {len(display_catalog):,}")


# ============================================================================
# TAB 3: RULES
# ============================================================================
with tab3:
    st.subheader("🔧 Discount Rules")
    rules = rules_service.list_rules()
    if rules:
        st.dataframe(pd.DataFrame([{
            'ID': rule.rule_id,
            'Title': rule.title,
            'Priority': rule.priority,
            'Type': rule.kind.value,
            'Offer': describe_rule(rule),
            'Code': rule.code or "(automatic)",
            'Stackable': rule.stackable,
            'Active': rule.active,
        } for rule in rules]), use_container_width=True, hide_index=True)
    else:
        st.info("No compiled rules.")


# ============================================================================
# TAB 4: SYSTEM INFO
# ============================================================================
with tab4:
    st.header("System Status")
    stats = rules_service.get_stats()
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Rules", stats['total'])
    c2.metric("Active", stats['active'])
    c3.metric("Expired", stats['expired'])
    c4.metric("Catalog SKUs", f"{len(catalog):,}")

    if stats['by_type']:
        st.dataframe(
            pd.DataFrame([{'Type': k, 'Rules': v} for k, v in sorted(stats['by_type'].items())]),
            use_container_width=True, hide_index=True,
        )

    if st.button("🔨 Recompile Rules", type="secondary"):
        with st.spinner("Compiling..."):
            success, errors = rules_service.compile_rules()
            if success:
                engine.reload_data()
                st.toast("Rules compiled successfully!")
                st.rerun()
            for err in errors:
                st.error(err)
