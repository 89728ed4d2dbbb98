"""
Cardfolio — Asset Classification
=================================
Deterministic heuristics that turn per-item attributes into an asset type,
a liquidity tier, and an era bucket. No Streamlit dependency, no pandas
frames — plain functions over strings and numbers.

Public API
----------
  classify_asset_type(grade, card_number)                          → 'Sealed' | 'Slab' | 'Raw Card'
  classify_liquidity_tier(asset_type, value, quantity, name)       → 'High' | 'Medium' | 'Low'
  classify_item_era(item, reference_date=None)                     → era key

Every table these functions read lives in config.py and is scanned in order.
"""

from __future__ import annotations

from typing import Any, Optional

import pandas as pd

from config import (
    ASSET_SEALED, ASSET_SLAB, ASSET_RAW,
    UNGRADED_TOKENS,
    LIQUIDITY_HIGH, LIQUIDITY_MEDIUM, LIQUIDITY_LOW,
    RAW_HIGH_LIQUIDITY_VALUE, HIGH_DEMAND_SEALED, LOW_LIQUIDITY_QTY, BULK_MARKERS,
    ERA_SETS, ERA_KEYWORDS, ERA_CURRENT, ERA_ULTRA_MODERN,
    CURRENT_WINDOW_MONTHS,
)


# ── Asset type ────────────────────────────────────────────────────────────────

def is_ungraded(grade: Optional[str]) -> bool:
    """True for an empty grade or one of the explicit 'not graded' tokens."""
    g = (grade or '').strip().lower()
    return g == '' or g in UNGRADED_TOKENS


def classify_asset_type(grade: Optional[str], card_number: Optional[str]) -> str:
    """
    Slab if graded; otherwise Raw Card when there is a card number; otherwise
    Sealed. A grade always wins over a card number, and an ungraded item needs
    a card number to count as a single card rather than a sealed product.
    """
    if not is_ungraded(grade):
        return ASSET_SLAB
    if (card_number or '').strip():
        return ASSET_RAW
    return ASSET_SEALED


# ── Liquidity ─────────────────────────────────────────────────────────────────

def classify_liquidity_tier(asset_type: str, market_value: float,
                            quantity: float, product_name: str) -> str:
    """Coarse estimate of how quickly a holding could be sold near its mark."""
    name = (product_name or '').lower()
    if asset_type == ASSET_SLAB:
        return LIQUIDITY_HIGH
    if asset_type == ASSET_RAW and market_value > RAW_HIGH_LIQUIDITY_VALUE:
        return LIQUIDITY_HIGH
    if asset_type == ASSET_SEALED and any(p in name for p in HIGH_DEMAND_SEALED):
        return LIQUIDITY_MEDIUM
    if quantity > LOW_LIQUIDITY_QTY:
        return LIQUIDITY_LOW
    if any(m in name for m in BULK_MARKERS):
        return LIQUIDITY_LOW
    return LIQUIDITY_MEDIUM


# ── Era ───────────────────────────────────────────────────────────────────────

def _match_set_table(category: str, product_name: str) -> Optional[str]:
    """
    First era whose literal set list matches. A set matches when the category
    contains the set name, the set name contains the (non-empty) category, or
    the product name contains the set name.
    """
    for era, sets in ERA_SETS.items():
        for set_name in sets:
            if category and (set_name in category or category in set_name):
                return era
            if set_name in product_name:
                return era
    return None


def _match_keywords(search_text: str) -> Optional[str]:
    for era, keywords in ERA_KEYWORDS.items():
        if any(k in search_text for k in keywords):
            return era
    return None


def is_within_current_window(date_added: Optional[pd.Timestamp],
                             reference_date: Optional[pd.Timestamp] = None) -> bool:
    if date_added is None or pd.isna(date_added):
        return False
    now = reference_date if reference_date is not None else pd.Timestamp.now()
    return date_added >= now - pd.DateOffset(months=CURRENT_WINDOW_MONTHS)


def classify_item_era(item: Any, reference_date: Optional[pd.Timestamp] = None) -> str:
    """
    Era bucket for one holding.

    Precedence:
      1. Set-name tables, era by era.
      2. Keyword fallback, vintage → classic → modern → ultra_modern.
      3. `current` when date_added falls in the last CURRENT_WINDOW_MONTHS.
      4. `ultra_modern` default.

    A recently bought vintage or keyword-identified product keeps its release
    era. A recent item with no identifying text becomes `current`; an old one
    defaults to ultra_modern.
    """
    category     = (getattr(item, 'category', '') or '').strip().lower()
    product_name = (getattr(item, 'product_name', '') or '').strip().lower()

    era = _match_set_table(category, product_name)
    if era is not None:
        return era

    era = _match_keywords(f'{category} {product_name}')
    if era is not None:
        return era

    if is_within_current_window(getattr(item, 'date_added', None), reference_date):
        return ERA_CURRENT
    return ERA_ULTRA_MODERN
