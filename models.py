"""
Cardfolio — Data Models
========================
Single source of truth for all dataclasses and named tuples used across
the application. No Streamlit dependency — fully importable from any
module including tests and ingestion.

Classes
-------
  ParsedCSV             Output of ingestion.parse_csv() — header row + row dicts
  ColumnMapping         Detected header for every canonical field (None = unmatched)
  ValidationResult      is_valid / errors / warnings for one import attempt
  PortfolioItem         One owned holding; derived fields computed on construction
  ImportResult          Output of ingestion.process_portfolio_data()
  AllocationTarget      Sealed / slabs / raw-card target percentages
  EraAllocationTarget   Five-era target percentages
  (aggregates)          PortfolioSummary, AllocationBreakdown, ConcentrationRisk,
                        PositionConcentration, EraAllocationBreakdown,
                        HealthScoreBreakdown, ProfitMilestone, RebalanceSuggestion,
                        RebalancePlan, EraHealthWarning, Insight, StatusChip,
                        AnalysisPoint
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, InitVar
from typing import Optional, NamedTuple, Literal

import pandas as pd

from classification import classify_asset_type, classify_liquidity_tier


AssetType     = Literal['Sealed', 'Slab', 'Raw Card']
LiquidityTier = Literal['High', 'Medium', 'Low']
Priority      = Literal['high', 'medium', 'low']


# ── Ingestion output ──────────────────────────────────────────────────────────

class ParsedCSV(NamedTuple):
    """
    Output of ingestion.parse_csv() — purely structural, no semantics.

    Fields
    ------
    headers  Header cells in file order, trimmed.
    rows     One dict per data line keyed by the literal header text.
             Rows shorter than the header are padded with ''.
    """
    headers: tuple[str, ...]
    rows:    tuple[dict[str, str], ...]


class ColumnMapping(NamedTuple):
    """
    Result of column detection. Produced even when required fields are
    missing, so the upload surface can show which headers exist and which
    canonical fields did or didn't match.
    """
    headers:  tuple[str, ...]
    detected: dict[str, Optional[str]]

    def missing(self, required) -> list[str]:
        return [f for f in required if not self.detected.get(f)]


class ValidationResult(NamedTuple):
    is_valid: bool
    errors:   tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()


# ── Holding model ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PortfolioItem:
    """
    One owned holding — one non-blank CSV row.

    Only the raw inputs are accepted by the constructor. Every derived and
    classification field is computed in __post_init__ and cannot be set
    independently, so the arithmetic always agrees with the inputs.

    portfolio_total is the summed market value of the whole import. It is
    only needed for portfolio_weight_percent; ingestion builds each item with
    the default and then re-issues it via dataclasses.replace() once the
    final total is known.

    Fields
    ------
    id                       Unique per import (not stable across imports)
    total_market_value       quantity × market_price
    total_cost_basis         quantity × average_cost_paid
    profit_dollars           total_market_value − total_cost_basis
    gain_percent             profit / cost basis × 100 (0 without a basis)
    portfolio_weight_percent share of the import's total market value
    asset_type               Sealed / Slab / Raw Card
    liquidity_tier           High / Medium / Low
    """
    id:                str
    product_name:      str
    category:          str
    quantity:          float
    market_price:      float
    average_cost_paid: float = 0.0
    grade:             str = ''
    card_number:       str = ''
    date_added:        Optional[pd.Timestamp] = None
    portfolio_total:   InitVar[float] = 0.0

    total_market_value:       float = field(init=False)
    total_cost_basis:         float = field(init=False)
    profit_dollars:           float = field(init=False)
    gain_percent:             float = field(init=False)
    portfolio_weight_percent: float = field(init=False)
    asset_type:               AssetType = field(init=False)
    liquidity_tier:           LiquidityTier = field(init=False)

    def __post_init__(self, portfolio_total: float) -> None:
        market_value = self.quantity * self.market_price
        cost_basis   = self.quantity * self.average_cost_paid
        profit       = market_value - cost_basis
        asset_type   = classify_asset_type(self.grade, self.card_number)
        derived = {
            'total_market_value':       market_value,
            'total_cost_basis':         cost_basis,
            'profit_dollars':           profit,
            'gain_percent':             profit / cost_basis * 100 if cost_basis > 0 else 0.0,
            'portfolio_weight_percent': (market_value / portfolio_total * 100
                                         if portfolio_total > 0 else 0.0),
            'asset_type':               asset_type,
            'liquidity_tier':           classify_liquidity_tier(
                                            asset_type, market_value,
                                            self.quantity, self.product_name),
        }
        for name, value in derived.items():
            object.__setattr__(self, name, value)


class ImportResult(NamedTuple):
    """Output of ingestion.process_portfolio_data() — always returned, never raised."""
    items:            tuple[PortfolioItem, ...]
    validation:       ValidationResult
    detected_columns: Optional[ColumnMapping]


# ── Targets ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class AllocationTarget:
    sealed:    float
    slabs:     float
    raw_cards: float

    def as_dict(self) -> dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @property
    def total(self) -> float:
        return sum(self.as_dict().values())


@dataclass(frozen=True)
class EraAllocationTarget:
    vintage:      float
    classic:      float
    modern:       float
    ultra_modern: float
    current:      float

    def as_dict(self) -> dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @property
    def total(self) -> float:
        return sum(self.as_dict().values())


# ── Aggregates ────────────────────────────────────────────────────────────────

class BucketStat(NamedTuple):
    value:   float
    percent: float
    count:   int


class PortfolioSummary(NamedTuple):
    total_market_value:         float
    total_cost_basis:           float
    unrealized_pl:              float
    unrealized_pl_percent:      float
    holdings_in_profit_count:   int
    holdings_in_profit_percent: float
    total_holdings:             int


@dataclass(frozen=True)
class AllocationBreakdown:
    sealed:    BucketStat
    slabs:     BucketStat
    raw_cards: BucketStat

    def buckets(self) -> dict[str, BucketStat]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class EraAllocationBreakdown:
    vintage:      BucketStat
    classic:      BucketStat
    modern:       BucketStat
    ultra_modern: BucketStat
    current:      BucketStat

    def buckets(self) -> dict[str, BucketStat]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


class ConcentrationRisk(NamedTuple):
    """Row-level concentration: each CSV row is ranked on its own."""
    top1_percent:    float
    top1_name:       str
    top3_percent:    float
    top3_names:      tuple[str, ...]
    top5_percent:    float
    top5_names:      tuple[str, ...]
    top_set_percent: float
    top_set_name:    str


class PositionConcentration(NamedTuple):
    """Concentration by position — rows sharing a product name are summed first."""
    top1_value:   float
    top1_percent: float
    top3_value:   float
    top3_percent: float
    top5_value:   float
    top5_percent: float
    positions:    tuple[tuple[str, float, float], ...]   # (name, value, quantity), value desc


class HealthScoreBreakdown(NamedTuple):
    overall:          int
    asset_allocation: float
    era_balance:      float
    concentration:    float


class ProfitMilestone(NamedTuple):
    item:                      PortfolioItem
    milestone:                 int
    sell_half_profit:          float
    sell_half_units_sold:      int
    sell_half_units_remaining: float


class RebalanceSuggestion(NamedTuple):
    category: str
    action:   Literal['sell', 'redirect']
    amount:   float
    reason:   str


class RebalancePlanRow(NamedTuple):
    key:              str
    current_value:    float
    current_percent:  float
    target_percent:   float
    target_value:     float
    delta:            float
    delta_percent:    float
    monthly_share:    float
    required_monthly: float
    months_needed:    int
    is_overweight:    bool
    is_underweight:   bool


class RebalancePlan(NamedTuple):
    rows:                     tuple[RebalancePlanRow, ...]
    total_monthly_required:   float
    estimated_months_to_balance: int


class EraHealthWarning(NamedTuple):
    type:     Literal['current_high', 'newer_era_high', 'newer_era_low', 'older_era_low']
    message:  str
    severity: Literal['warning', 'info']


@dataclass(frozen=True)
class Insight:
    """
    One prioritised observation. The id is stable for a given trigger
    (e.g. 'insight-profit-500') so a dismissal survives recomputation.
    """
    id:        str
    type:      Literal['profit', 'concentration', 'rebalance', 'patience', 'allocation', 'loss']
    priority:  Priority
    message:   str
    timestamp: pd.Timestamp
    related_item_ids: tuple[str, ...] = ()


class StatusChip(NamedTuple):
    id:      str
    label:   str
    type:    Literal['warning', 'success', 'primary']
    tooltip: str


class AnalysisPoint(NamedTuple):
    text: str
    type: Literal['strength', 'weakness']
