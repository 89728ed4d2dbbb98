"""
Cardfolio — UI Components
==========================
Pure visual helpers: HTML snippets, DataFrame builders and stylers.
No business logic or math lives here — these functions only produce
strings, DataFrames, and style values for rendering.

Dependencies: pandas (for isna / DataFrame), config (for era display names).
The upload bookkeeping helpers work on any mapping, so st.session_state or a
plain dict.
"""

import hashlib
import html as _html

import pandas as pd

from config import ERA_INFO, FIELD_LABELS, CANONICAL_FIELDS, REQUIRED_FIELDS


# ── XSS safety ────────────────────────────────────────────────────────────────

def xe(s):
    """Escape a string for safe HTML interpolation. Prevents XSS from CSV data."""
    return _html.escape(str(s), quote=True)


# ── Formatting ────────────────────────────────────────────────────────────────

def fmt_dollar(val, decimals=2):
    """
    Format a dollar value with sign, commas, and configurable decimal places.
    Negative values render as '-$1,234.56' (not '$-1,234.56').

    Examples:
        fmt_dollar(1234.56)   → '$1,234.56'
        fmt_dollar(-99.5)     → '-$99.50'
        fmt_dollar(1500, 0)   → '$1,500'
    """
    fmt = f'{{:,.{decimals}f}}'
    if val >= 0:
        return f'${fmt.format(val)}'
    return f'-${fmt.format(abs(val))}'

def fmt_pct(val, decimals=1, signed=False):
    """'12.3%', or '+12.3%' / '-4.0%' with signed=True."""
    if signed and val > 0:
        return f'+{val:.{decimals}f}%'
    return f'{val:.{decimals}f}%'

def era_label(key):
    return ERA_INFO[key]['name']


# ── DataFrame stylers ─────────────────────────────────────────────────────────

def color_pnl_cell(val):
    """Green/red colouring for P/L columns in st.dataframe."""
    if not isinstance(val, (int, float)) or pd.isna(val): return ''
    return 'color: #00cc96' if val > 0 else 'color: #ef553b' if val < 0 else ''

def color_health_score(v):
    """Green / amber / red for 0–100 health scores."""
    if not isinstance(v, (int, float)) or pd.isna(v): return ''
    if v >= 80: return 'color: #00cc96; font-weight: bold'
    if v >= 65: return 'color: #58a6ff'
    if v >= 50: return 'color: #ffa500'
    return 'color: #ef553b'

def color_allocation_status(v):
    if v == 'On target':     return 'color: #00cc96'
    if v == 'Slightly over': return 'color: #ffa500'
    if v == 'Slightly under': return 'color: #58a6ff'
    return ''


# ── DataFrame builders ────────────────────────────────────────────────────────

def items_table(items):
    """Holdings table for st.dataframe — one row per item, display column names."""
    return pd.DataFrame([{
        'Product':      it.product_name,
        'Set':          it.category,
        'Type':         it.asset_type,
        'Grade':        it.grade,
        'Qty':          it.quantity,
        'Market Price': it.market_price,
        'Avg Cost':     it.average_cost_paid,
        'Value':        it.total_market_value,
        'P/L':          it.profit_dollars,
        'Gain %':       it.gain_percent,
        'Weight %':     it.portfolio_weight_percent,
        'Liquidity':    it.liquidity_tier,
    } for it in items])

def bucket_table(buckets, targets, label_fn=str, status_fn=None):
    """Current vs target table for allocation or era buckets."""
    rows = []
    for key, stat in buckets.items():
        row = {
            'Bucket':    label_fn(key),
            'Value':     stat.value,
            'Current %': stat.percent,
            'Target %':  targets[key],
            'Holdings':  stat.count,
        }
        if status_fn is not None:
            row['Status'] = status_fn(stat.percent, targets[key])
        rows.append(row)
    return pd.DataFrame(rows)

def column_mapping_table(mapping):
    """
    Diagnostic shown when an import fails: every canonical field, the header
    it matched (or a dash), and whether the field is required.
    """
    return pd.DataFrame([{
        'Field':    FIELD_LABELS[f],
        'Matched header': mapping.detected.get(f) or '—',
        'Required': 'Yes' if f in REQUIRED_FIELDS else '',
    } for f in CANONICAL_FIELDS])


# ── Inline HTML components ────────────────────────────────────────────────────

_CHIP_COLORS = {
    'warning': ('#ffa500', 'rgba(255,165,0,0.1)',   'rgba(255,165,0,0.25)'),
    'success': ('#00cc96', 'rgba(0,204,150,0.1)',   'rgba(0,204,150,0.25)'),
    'primary': ('#58a6ff', 'rgba(88,166,255,0.12)', 'rgba(88,166,255,0.25)'),
}

_PRIORITY_COLORS = {'high': '#ef553b', 'medium': '#ffa500', 'low': '#58a6ff'}

def status_chip_html(chip):
    """Inline HTML badge for one StatusChip; tooltip goes in the title attribute."""
    fg, bg, border = _CHIP_COLORS.get(chip.type, _CHIP_COLORS['primary'])
    return (
        f'<span title="{xe(chip.tooltip)}" style="display:inline-block;'
        f'font-size:0.72rem;font-weight:600;padding:3px 10px;border-radius:20px;'
        f'text-transform:uppercase;letter-spacing:0.06em;white-space:nowrap;'
        f'margin:2px 6px 2px 0;background:{bg};color:{fg};border:1px solid {border};">'
        f'{xe(chip.label)}</span>'
    )

def insight_card_html(insight):
    """Bordered card for one insight; the border colour follows its priority."""
    col = _PRIORITY_COLORS.get(insight.priority, '#8b949e')
    return (
        f'<div style="background:#111827;border:1px solid #1f2937;'
        f'border-left:3px solid {col};border-radius:8px;padding:10px 14px;margin-bottom:6px;">'
        f'<div style="color:{col};font-size:0.7rem;text-transform:uppercase;'
        f'letter-spacing:0.05em;margin-bottom:4px;">'
        f'{xe(insight.type)} · {xe(insight.priority)}</div>'
        f'<div style="color:#c9d1d9;font-size:0.9rem;">{xe(insight.message)}</div>'
        f'</div>'
    )

def _pnl_chip(label, val):
    """Inline HTML chip: labelled P/L value with sign colour."""
    col  = '#00cc96' if val >= 0 else '#ef553b'
    sign = '+' if val >= 0 else '-'
    return (
        f'<span style="display:inline-flex;align-items:center;gap:5px;'
        f'background:rgba(255,255,255,0.04);border:1px solid #1f2937;'
        f'border-radius:6px;padding:3px 10px;margin:2px 4px 2px 0;font-size:0.78rem;">'
        f'<span style="color:#6b7280;">{xe(label)}</span>'
        f'<span style="color:{col};font-family:monospace;font-weight:600;">'
        f'{sign}${abs(val):,.2f}</span>'
        f'</span>'
    )


# ── Upload bookkeeping ────────────────────────────────────────────────────────
# `session` is st.session_state in the app and a plain dict in tests.

def upload_token(name, raw):
    """Identity of one uploaded file: name, size and content hash."""
    return (name, len(raw), hashlib.sha256(raw).hexdigest())


def uploader_key(session):
    return f"uploader_{session.setdefault('uploader_gen', 0)}"


def is_new_upload(session, token):
    """True once per distinct file; records the token as seen."""
    if session.get('upload_token') == token:
        return False
    session['upload_token'] = token
    return True


def reset_uploader(session):
    """Forget the last upload and move the file widget to a fresh key, which empties it."""
    session.pop('upload_token', None)
    session['uploader_gen'] = session.get('uploader_gen', 0) + 1


def validation_error_markdown(errors, has_data):
    """
    Markdown body for st.error. Plain text, not HTML-escaped, since
    st.error renders markdown rather than raw HTML.
    """
    heading = ('Some rows could not be imported.' if has_data
               else 'The file could not be imported.')
    return f'❌ **{heading}**\n\n' + '\n'.join(f'- {e}' for e in errors)
