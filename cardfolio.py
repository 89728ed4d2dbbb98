import streamlit as st
import pandas as pd

from state import PortfolioState, TargetError

# ── Constants (all in config.py) ──────────────────────────────────────────────
from config import (
    ALLOCATION_PRESETS, ALLOCATION_PRESET_INFO, ALLOCATION_KEYS,
    ERA_PRESETS, ERA_INFO, ERAS,
    CONTRIBUTION_PRESETS, TIMELINE_PRESETS,
    DEFAULT_MONTHLY_BUDGET, DEFAULT_TARGET_MONTHS,
)

# ── UI helpers & components (all in ui_components.py) ─────────────────────────
from ui_components import (
    xe, fmt_dollar, fmt_pct, era_label,
    color_pnl_cell, color_health_score, color_allocation_status,
    items_table, bucket_table, column_mapping_table,
    status_chip_html, insight_card_html, _pnl_chip,
    upload_token, uploader_key, is_new_upload, reset_uploader, validation_error_markdown,
)

# ── Analytics engine (pure Python, no Streamlit dependency) ───────────────────
from mechanics import (
    allocation_status, health_score_grade, simulate_rebalance_plan,
    get_newer_era_status, calculate_days_since_last_action,
    calculate_trading_frequency, calculate_cagr, filter_winners,
)

# ==========================================
# Cardfolio v1.0
# ==========================================
#
# Collectible card portfolio analyzer. Upload a collection export (CSV) and
# get allocation, era mix, concentration, health score, profit milestones
# and rebalancing guidance. Everything runs locally in the Streamlit
# session; nothing is sent anywhere.
# ==========================================

APP_VERSION = "v1.0"

_ALLOCATION_NAMES = {'sealed': 'Sealed', 'slabs': 'Slabs', 'raw_cards': 'Raw Cards'}


def _get_state() -> PortfolioState:
    if 'portfolio' not in st.session_state:
        st.session_state['portfolio'] = PortfolioState()
    return st.session_state['portfolio']


def main():
    st.set_page_config(page_title="Cardfolio", layout="wide")
    st.markdown("""
        <style>
        .stApp { background-color: #0a0e17; color: #c9d1d9; }
        div[data-testid="stMetricValue"] { font-size: 1.4rem !important; color: #00cc96; font-weight: 600; }
        div[data-testid="stMetricLabel"] { color: #8b949e; font-size: 0.78rem !important; text-transform: uppercase; letter-spacing: 0.05em; }
        [data-testid="stExpander"] { background: #111827; border-radius: 10px;
            border: 1px solid #1f2937; margin-bottom: 8px; }
        .stTabs [data-baseweb="tab-list"] { gap: 8px; border-bottom: 1px solid #1f2937; }
        .stTabs [data-baseweb="tab"] { background-color: #0f1520;
            border-radius: 6px 6px 0px 0px; padding: 10px 20px; font-size: 0.9rem; }
        </style>
    """, unsafe_allow_html=True)

    state = _get_state()

    st.title(f'🃏 Cardfolio {APP_VERSION}')

    with st.sidebar:
        st.header('⚙️ Data Control')
        uploaded_file = st.file_uploader('Upload collection CSV', type='csv',
                                         key=uploader_key(st.session_state))
        if uploaded_file is not None:
            _raw = uploaded_file.getvalue()
            if is_new_upload(st.session_state, upload_token(uploaded_file.name, _raw)):
                state.upload_file(_raw, uploaded_file.name)
        if state.has_data and st.button('Clear portfolio'):
            state.clear_data()
            reset_uploader(st.session_state)
            st.rerun()

        st.markdown('---')
        st.header('🎯 Targets')
        _presets = list(ALLOCATION_PRESETS)
        _preset = st.selectbox(
            'Allocation strategy', _presets,
            index=_presets.index(state.allocation_preset),
            format_func=lambda p: f'{ALLOCATION_PRESET_INFO[p][0]} ({ALLOCATION_PRESET_INFO[p][1]})',
        )
        if _preset != state.allocation_preset:
            state.set_allocation_preset(_preset)
        if _preset == 'custom':
            _render_custom_target(state)

        _era_presets = list(ERA_PRESETS)
        _era_preset = st.selectbox(
            'Era strategy', _era_presets, index=_era_presets.index(state.era_preset),
            format_func=str.title,
        )
        if _era_preset != state.era_preset:
            state.set_era_preset(_era_preset)
        if _era_preset == 'custom':
            _render_custom_era_target(state)

    validation = state.validation
    if validation is not None:
        for w in validation.warnings:
            st.warning(w)
        if validation.errors:
            st.error(validation_error_markdown(validation.errors, state.has_data))
            if not state.has_data and state.column_mapping is not None:
                st.markdown('**Column detection**')
                st.dataframe(column_mapping_table(state.column_mapping),
                             width='stretch', hide_index=True)

    if not state.has_data:
        st.markdown("""
        <div style="max-width:760px;margin:2rem auto 0 auto;">
        <p style="color:#8b949e;font-size:0.95rem;line-height:1.7;">
        Upload a CSV export of your collection using the sidebar to get started.
        Columns are detected by name, so exports from most trackers work as-is:
        you need a <b style="color:#c9d1d9;">product name</b>,
        a <b style="color:#c9d1d9;">quantity</b> and a
        <b style="color:#c9d1d9;">market price</b>. Average cost, grade, card number,
        set and date added unlock the rest of the analysis.
        </p>
        <p style="color:#6e7681;font-size:0.85rem;">
        This tool is for personal record-keeping only. It is not financial advice.
        </p>
        </div>
        """, unsafe_allow_html=True)
        st.stop()

    # ── TABS ───────────────────────────────────────────────────────────────────────
    tab0, tab1, tab2, tab3, tab4, tab5 = st.tabs([
        '📊 Dashboard',
        '🕰️ Era Allocation',
        '⚖️ Rebalance',
        '💡 Insights',
        '🏆 Winners',
        '📋 Holdings',
    ])

    with tab0: render_dashboard(state)
    with tab1: render_era_tab(state)
    with tab2: render_rebalance_tab(state)
    with tab3: render_insights_tab(state)
    with tab4: render_winners_tab(state)
    with tab5: render_holdings_tab(state)


# ══════════════════════════════════════════════════════════════════════════════
# SIDEBAR FORMS
# ══════════════════════════════════════════════════════════════════════════════

def _render_custom_target(state):
    cur = state.allocation_target.as_dict()
    vals = {k: st.number_input(f'{_ALLOCATION_NAMES[k]} %', 0, 100, int(cur[k]), key=f'tgt_{k}')
            for k in ALLOCATION_KEYS}
    if st.button('Apply allocation', key='apply_alloc'):
        try:
            state.set_custom_target(vals)
        except TargetError as e:
            st.error(str(e))


def _render_custom_era_target(state):
    cur = state.era_target.as_dict()
    vals = {k: st.number_input(f'{era_label(k)} %', 0, 100, int(cur[k]), key=f'era_{k}')
            for k in ERAS}
    if st.button('Apply era mix', key='apply_era'):
        try:
            state.set_custom_era_target(vals)
        except TargetError as e:
            st.error(str(e))


# ══════════════════════════════════════════════════════════════════════════════
# TAB RENDER FUNCTIONS
# ══════════════════════════════════════════════════════════════════════════════

def render_dashboard(state):
    """Dashboard — headline metrics, status chips, health breakdown, allocation, concentration."""
    summary = state.summary
    m1, m2, m3, m4 = st.columns(4)
    m1.metric('Market Value', fmt_dollar(summary.total_market_value))
    m2.metric('Cost Basis',   fmt_dollar(summary.total_cost_basis))
    m3.metric('Unrealized P/L', fmt_dollar(summary.unrealized_pl),
              fmt_pct(summary.unrealized_pl_percent, signed=True))
    m4.metric('In Profit', f'{summary.holdings_in_profit_count} / {summary.total_holdings}',
              fmt_pct(summary.holdings_in_profit_percent))

    st.markdown(''.join(status_chip_html(c) for c in state.status_chips),
                unsafe_allow_html=True)

    health = state.health
    st.subheader(f'🩺 Health Score: {health.overall} — {health_score_grade(health.overall)}')
    health_df = pd.DataFrame([
        {'Component': 'Asset Allocation', 'Weight': '45%', 'Score': health.asset_allocation},
        {'Component': 'Era Balance',      'Weight': '35%', 'Score': health.era_balance},
        {'Component': 'Concentration',    'Weight': '20%', 'Score': health.concentration},
    ])
    st.dataframe(health_df.style.map(color_health_score, subset=['Score'])
                 .format({'Score': '{:.0f}'}), width='stretch', hide_index=True)

    col_a, col_b = st.columns(2, gap='medium')
    with col_a:
        st.markdown('#### Asset Allocation')
        alloc_df = bucket_table(state.allocation.buckets(), state.allocation_target.as_dict(),
                                _ALLOCATION_NAMES.get, allocation_status)
        st.dataframe(alloc_df.style.map(color_allocation_status, subset=['Status'])
                     .format({'Value': fmt_dollar, 'Current %': '{:.1f}', 'Target %': '{:.0f}'}),
                     width='stretch', hide_index=True)
    with col_b:
        st.markdown('#### Concentration')
        conc = state.concentration
        conc_df = pd.DataFrame([
            {'Slice': 'Top holding',  'Share %': conc.top1_percent, 'Holdings': conc.top1_name},
            {'Slice': 'Top 3',        'Share %': conc.top3_percent, 'Holdings': ', '.join(conc.top3_names)},
            {'Slice': 'Top 5',        'Share %': conc.top5_percent, 'Holdings': ', '.join(conc.top5_names)},
            {'Slice': 'Largest set',  'Share %': conc.top_set_percent, 'Holdings': conc.top_set_name},
        ])
        st.dataframe(conc_df.style.format({'Share %': '{:.1f}'}),
                     width='stretch', hide_index=True)

    analysis = state.strengths_weaknesses
    if analysis:
        st.markdown('#### 🔍 Portfolio Analysis')
        col_s, col_w = st.columns(2, gap='medium')
        for col, kind, title in ((col_s, 'strength', '✅ Strengths'),
                                 (col_w, 'weakness', '⚠️ Areas to Watch')):
            points = [p.text for p in analysis if p.type == kind]
            if points:
                col.markdown(f'**{title}**\n\n' + '\n'.join(f'- {t}' for t in points))

    items = state.items
    days = calculate_days_since_last_action(items, state.reference_date)
    st.caption(
        f'Last addition: {"no dated items" if days < 0 else f"{days} days ago"} · '
        f'Trading frequency: {calculate_trading_frequency(items)}'
    )

    milestones = state.milestones
    if milestones:
        st.markdown('#### 🚀 Profit Milestones')
        ms_df = pd.DataFrame([{
            'Product':        m.item.product_name,
            'Gain %':         m.item.gain_percent,
            'Milestone':      f'{m.milestone}%+',
            'Sell Half Qty':  m.sell_half_units_sold,
            'Sell Half P/L':  m.sell_half_profit,
            'Remaining':      m.sell_half_units_remaining,
        } for m in milestones])
        st.dataframe(ms_df.style.format({'Gain %': '{:.0f}%', 'Sell Half P/L': fmt_dollar})
                     .map(color_pnl_cell, subset=['Sell Half P/L']),
                     width='stretch', hide_index=True)


def render_era_tab(state):
    """Era Allocation — era buckets vs target, newer-era status and warnings."""
    era = state.era_allocation
    text, status = get_newer_era_status(era)
    (st.success if status == 'healthy' else st.warning if status == 'high' else st.info)(text)
    for w in state.era_warnings:
        if w.type.startswith('newer_era'):
            continue
        (st.warning if w.severity == 'warning' else st.info)(w.message)

    era_df = bucket_table(era.buckets(), state.era_target.as_dict(), era_label)
    era_df.insert(1, 'Years', [ERA_INFO[k]['years'] for k in ERAS])
    st.dataframe(era_df.style.format({'Value': fmt_dollar, 'Current %': '{:.1f}',
                                      'Target %': '{:.0f}'}),
                 width='stretch', hide_index=True)


def _plan_frame(plan, label_fn):
    return pd.DataFrame([{
        'Bucket':           label_fn(r.key),
        'Current':          r.current_value,
        'Target':           r.target_value,
        'Gap':              r.delta,
        'Monthly Share':    r.monthly_share,
        'Months':           r.months_needed,
        'Required / Month': r.required_monthly,
        'Status':           'Overweight' if r.is_overweight else
                            'Underweight' if r.is_underweight else 'Balanced',
    } for r in plan.rows])


def render_rebalance_tab(state):
    """Rebalance — trim/redirect suggestions and the contribution plan simulator."""
    suggestions = state.rebalance_suggestions
    if suggestions:
        for s in suggestions:
            st.markdown(_pnl_chip(s.action.title(), s.amount) + ' ' + xe(s.reason),
                        unsafe_allow_html=True)
    else:
        st.success('Every asset category is within 10 points of target.')

    st.markdown('---')
    c1, c2, c3 = st.columns(3)
    budget = c1.select_slider('Monthly budget', options=list(CONTRIBUTION_PRESETS),
                              value=DEFAULT_MONTHLY_BUDGET, format_func=lambda v: fmt_dollar(v, 0))
    months = c2.select_slider('Timeline (months)', options=list(TIMELINE_PRESETS),
                              value=DEFAULT_TARGET_MONTHS)
    axis = c3.radio('Rebalance by', ['Asset type', 'Era'], horizontal=True)

    total = state.summary.total_market_value
    if axis == 'Asset type':
        plan = simulate_rebalance_plan(state.allocation.buckets(), state.allocation_target,
                                       total, budget, months)
        plan_df = _plan_frame(plan, _ALLOCATION_NAMES.get)
    else:
        plan = simulate_rebalance_plan(state.era_allocation.buckets(), state.era_target,
                                       total, budget, months)
        plan_df = _plan_frame(plan, era_label)

    p1, p2 = st.columns(2)
    p1.metric(f'Monthly needed to balance in {months} months', fmt_dollar(plan.total_monthly_required))
    p2.metric(f'Months to balance at {fmt_dollar(budget, 0)}/month', plan.estimated_months_to_balance)
    _money = ['Current', 'Target', 'Gap', 'Monthly Share', 'Required / Month']
    st.dataframe(plan_df.style.format({c: fmt_dollar for c in _money}),
                 width='stretch', hide_index=True)


def render_insights_tab(state):
    """Insights — prioritised observations with dismiss buttons."""
    insights = state.insights
    if not insights:
        st.info('No active insights. Check back after your next upload.')
        return
    for ins in insights:
        col_card, col_btn = st.columns([10, 1])
        col_card.markdown(insight_card_html(ins), unsafe_allow_html=True)
        if col_btn.button('✕', key=f'dismiss_{ins.id}', help='Dismiss'):
            state.dismiss_insight(ins.id)
            st.rerun()


def render_winners_tab(state):
    """Winners — per-item gain table with performance filter and CAGR."""
    c1, c2 = st.columns(2)
    perf = c1.selectbox('Show', ['all', 'winners', 'underperforming', '100', '200', '500'],
                        format_func=lambda v: f'Gain ≥ {v}%' if v.isdigit() else v.title())
    sort_field = c2.selectbox('Sort by', ['gain_percent', 'profit_dollars', 'total_market_value'],
                              format_func=lambda v: v.replace('_', ' ').title())
    rows = filter_winners(state.items, perf, sort_field)
    if not rows:
        st.info('No holdings match this filter.')
        return
    win_df = pd.DataFrame([{
        'Product': it.product_name,
        'Set':     it.category,
        'Value':   it.total_market_value,
        'P/L':     it.profit_dollars,
        'Gain %':  it.gain_percent,
        'CAGR %':  calculate_cagr(it, state.reference_date),
    } for it in rows])
    st.dataframe(win_df.style.map(color_pnl_cell, subset=['P/L', 'Gain %'])
                 .format({'Value': fmt_dollar, 'P/L': fmt_dollar, 'Gain %': '{:.1f}',
                          'CAGR %': '{:.1f}'}, na_rep='—'),
                 width='stretch', hide_index=True)


def render_holdings_tab(state):
    """Holdings — the full parsed item list."""
    df = items_table(state.items)
    st.dataframe(df.style.map(color_pnl_cell, subset=['P/L', 'Gain %'])
                 .format({'Market Price': fmt_dollar, 'Avg Cost': fmt_dollar, 'Value': fmt_dollar,
                          'P/L': fmt_dollar, 'Gain %': '{:.1f}', 'Weight %': '{:.2f}'}),
                 width='stretch', hide_index=True)


main()
