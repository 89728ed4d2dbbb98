"""
Cardfolio — Pure Math / Analytics Engine
=========================================
All computation that turns a collection of PortfolioItems into aggregate
figures: totals, allocation, concentration, era mix, health scores, profit
milestones and rebalancing. No Streamlit dependency — fully importable and
testable without a running server.

Every function is pure: it reads items (and, where noted, a target) and
returns a fresh aggregate. Nothing here mutates an item or caches state.

Public API
----------
  items_frame(items)                                  → DataFrame (one row per item)
  calculate_portfolio_summary(items)                  → PortfolioSummary
  calculate_allocation_breakdown(items)               → AllocationBreakdown
  calculate_concentration_risk(items)                 → ConcentrationRisk
  calculate_position_concentration(items)             → PositionConcentration
  calculate_era_allocation_breakdown(items, ref)      → EraAllocationBreakdown
  calculate_era_health_score(era)                     → float  [50, 100]
  calculate_concentration_health_score(positions)     → float  [50, 100]
  calculate_asset_health_score(allocation)            → float  [50, 100]
  calculate_health_score_breakdown(items, ref)        → HealthScoreBreakdown
  health_score_grade(score)                           → str
  find_profit_milestones(items)                       → list[ProfitMilestone]
  generate_rebalance_suggestions(alloc, target, tot)  → list[RebalanceSuggestion]
  allocation_status(current, target)                  → str
  simulate_rebalance_plan(buckets, target, total, …)  → RebalancePlan
  generate_era_health_warnings(era)                   → list[EraHealthWarning]
  get_newer_era_status(era)                           → (text, status)
  calculate_days_since_last_action(items, ref)        → int
  calculate_trading_frequency(items)                  → 'low' | 'medium' | 'high'
  calculate_cagr(item, ref)                           → float | None
  filter_winners(items, performance, sort_field, …)   → list[PortfolioItem]
"""

from __future__ import annotations

import math
from typing import Iterable, Mapping, Optional, Sequence, Union

import pandas as pd

from models import (
    PortfolioItem, BucketStat, PortfolioSummary, AllocationBreakdown,
    ConcentrationRisk, PositionConcentration, EraAllocationBreakdown,
    HealthScoreBreakdown, ProfitMilestone, RebalanceSuggestion,
    RebalancePlanRow, RebalancePlan, EraHealthWarning,
    AllocationTarget, EraAllocationTarget,
)
from config import (
    ASSET_BUCKETS, ALLOCATION_KEYS, ALLOCATION_LABELS,
    ERAS, NEWER_ERAS, OLDER_ERAS,
    ERA_VINTAGE, ERA_CLASSIC, ERA_CURRENT,
    MILESTONE_THRESHOLDS,
    HEALTH_FLOOR, HEALTH_CEILING,
    HEALTH_WEIGHT_ASSET, HEALTH_WEIGHT_ERA, HEALTH_WEIGHT_CONCENTRATION,
    CONCENTRATION_BANDS, CONCENTRATION_WEIGHTS,
    ASSET_SEALED_TIERS, ASSET_SEALED_BASE, ASSET_RAW_CAP, ASSET_SLAB_CAP,
    HEALTH_GRADES, HEALTH_GRADE_FLOOR,
    REBALANCE_BAND_PCT, ALLOCATION_ON_TARGET_PCT,
    REBALANCE_PLAN_DEADBAND, DEFAULT_MONTHLY_BUDGET, DEFAULT_TARGET_MONTHS,
    FREQUENCY_HIGH, FREQUENCY_MEDIUM,
    ERA_CURRENT_HIGH_PCT, ERA_NEWER_LOW_PCT, ERA_NEWER_HIGH_PCT, ERA_OLDER_LOW_PCT,
)
from classification import classify_item_era


_ITEM_COLUMNS = [
    'id', 'product_name', 'category', 'quantity', 'market_price',
    'average_cost_paid', 'total_market_value', 'total_cost_basis',
    'profit_dollars', 'gain_percent', 'asset_type', 'liquidity_tier', 'date_added',
]


def items_frame(items: Iterable[PortfolioItem]) -> pd.DataFrame:
    """One row per item, in input order. Always has the full column set, even when empty."""
    return pd.DataFrame(
        [{c: getattr(it, c) for c in _ITEM_COLUMNS} for it in items],
        columns=_ITEM_COLUMNS,
    )


def _pct(part: float, whole: float) -> float:
    return part / whole * 100 if whole > 0 else 0.0


def _clamp(score: float) -> float:
    return max(HEALTH_FLOOR, min(HEALTH_CEILING, score))


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


# ── Summary & allocation ──────────────────────────────────────────────────────

def calculate_portfolio_summary(items: Sequence[PortfolioItem]) -> PortfolioSummary:
    df = items_frame(items)
    total_value = float(df['total_market_value'].sum())
    total_cost  = float(df['total_cost_basis'].sum())
    unrealized  = total_value - total_cost
    in_profit   = int((df['profit_dollars'] > 0).sum())
    return PortfolioSummary(
        total_market_value=total_value,
        total_cost_basis=total_cost,
        unrealized_pl=unrealized,
        unrealized_pl_percent=_pct(unrealized, total_cost),
        holdings_in_profit_count=in_profit,
        holdings_in_profit_percent=in_profit / len(df) * 100 if len(df) else 0.0,
        total_holdings=len(df),
    )


def _bucket_stats(df: pd.DataFrame, key_col: str, keys: Sequence[str]) -> dict[str, BucketStat]:
    total = float(df['total_market_value'].sum())
    grouped = df.groupby(key_col, sort=False)['total_market_value'].agg(['sum', 'count'])
    stats = {}
    for k in keys:
        if k in grouped.index:
            value = float(grouped.at[k, 'sum'])
            count = int(grouped.at[k, 'count'])
        else:
            value, count = 0.0, 0
        stats[k] = BucketStat(value=value, percent=_pct(value, total), count=count)
    return stats


def calculate_allocation_breakdown(items: Sequence[PortfolioItem]) -> AllocationBreakdown:
    """Group by asset type into the sealed / slabs / raw_cards buckets."""
    df = items_frame(items)
    df['bucket'] = df['asset_type'].map(dict(ASSET_BUCKETS))
    return AllocationBreakdown(**_bucket_stats(df, 'bucket', ALLOCATION_KEYS))


# ── Concentration ─────────────────────────────────────────────────────────────

def calculate_concentration_risk(items: Sequence[PortfolioItem]) -> ConcentrationRisk:
    """
    Row-level concentration: items ranked by total market value (ties keep
    file order) plus the single category with the largest aggregate value.
    """
    df = items_frame(items)
    total = float(df['total_market_value'].sum())
    ranked = df.sort_values('total_market_value', ascending=False, kind='mergesort')

    top = {n: ranked.head(n) for n in (1, 3, 5)}
    by_set = df.groupby('category', sort=False)['total_market_value'].sum()
    if by_set.empty:
        top_set_name, top_set_value = 'Unknown', 0.0
    else:
        top_set_name, top_set_value = by_set.idxmax(), float(by_set.max())

    return ConcentrationRisk(
        top1_percent=_pct(float(top[1]['total_market_value'].sum()), total),
        top1_name=top[1]['product_name'].iloc[0] if len(top[1]) else 'N/A',
        top3_percent=_pct(float(top[3]['total_market_value'].sum()), total),
        top3_names=tuple(top[3]['product_name']),
        top5_percent=_pct(float(top[5]['total_market_value'].sum()), total),
        top5_names=tuple(top[5]['product_name']),
        top_set_percent=_pct(top_set_value, total),
        top_set_name=top_set_name,
    )


def calculate_position_concentration(items: Sequence[PortfolioItem]) -> PositionConcentration:
    """
    Concentration by position: rows with the exact same product name are one
    position, so their value and quantity are summed before ranking.
    """
    df = items_frame(items)
    total = float(df['total_market_value'].sum())
    positions = (
        df.groupby('product_name', sort=False)[['total_market_value', 'quantity']]
        .sum()
        .sort_values('total_market_value', ascending=False, kind='mergesort')
    )
    values = positions['total_market_value']
    top1, top3, top5 = (float(values.head(n).sum()) for n in (1, 3, 5))
    return PositionConcentration(
        top1_value=top1, top1_percent=_pct(top1, total),
        top3_value=top3, top3_percent=_pct(top3, total),
        top5_value=top5, top5_percent=_pct(top5, total),
        positions=tuple(
            (name, float(row.total_market_value), float(row.quantity))
            for name, row in positions.iterrows()
        ),
    )


# ── Era allocation ────────────────────────────────────────────────────────────

def calculate_era_allocation_breakdown(items: Sequence[PortfolioItem],
                                       reference_date: Optional[pd.Timestamp] = None
                                       ) -> EraAllocationBreakdown:
    """Classify every item by era; all five buckets are always present."""
    df = items_frame(items)
    df['era'] = [classify_item_era(it, reference_date) for it in items]
    return EraAllocationBreakdown(**_bucket_stats(df, 'era', ERAS))


# ── Health scores ─────────────────────────────────────────────────────────────

def calculate_era_health_score(era: EraAllocationBreakdown) -> float:
    """
    Era balance score, floor 50.

    Start at 50. Vintage share: ≥20% +15, ≥10% +10, ≥5% +5.
    Newer-era share (modern + ultra_modern + current): 45–55% +10,
    ≤70% +5, ≤85% +0, above 85% −5 (below 45% adds nothing).
    No classic at all −5. With at least four eras holding ≥1% each, a score
    still under 55 is lifted to 55.
    """
    pct = {k: b.percent for k, b in era.buckets().items()}
    score = 50.0

    vintage = pct[ERA_VINTAGE]
    if vintage >= 20:
        score += 15
    elif vintage >= 10:
        score += 10
    elif vintage >= 5:
        score += 5

    newer = sum(pct[k] for k in NEWER_ERAS)
    if 45 <= newer <= 55:
        score += 10
    elif 55 < newer <= 70:
        score += 5
    elif newer > 85:
        score -= 5

    if pct[ERA_CLASSIC] == 0:
        score -= 5

    if sum(1 for p in pct.values() if p >= 1) >= 4 and score < 55:
        score = 55

    return _clamp(score)


def _band_score(pct: float, bands: tuple[float, float, float]) -> float:
    """
    Piecewise-linear curve shared by the top-1/3/5 scores:
      ≤ b1   95 → 90
      ≤ b2   85 → 75
      ≤ b3   75 → 65
      above  60 → 50 (reached at 100%)
    """
    b1, b2, b3 = bands
    if pct <= b1:
        return 95 - (pct / b1) * 5
    if pct <= b2:
        return 85 - (pct - b1) / (b2 - b1) * 10
    if pct <= b3:
        return 75 - (pct - b2) / (b3 - b2) * 10
    return max(50.0, 60 - (pct - b3) / (100 - b3) * 10)


def calculate_concentration_health_score(positions: PositionConcentration) -> float:
    """Weighted top-1 / top-3 / top-5 position scores (0.40 / 0.35 / 0.25), floor 50."""
    pct = {1: positions.top1_percent, 3: positions.top3_percent, 5: positions.top5_percent}
    score = sum(
        CONCENTRATION_WEIGHTS[n] * _band_score(pct[n], CONCENTRATION_BANDS[n])
        for n in (1, 3, 5)
    )
    return _clamp(score)


def calculate_asset_health_score(allocation: AllocationBreakdown) -> float:
    """
    Asset allocation score, floor 50. Tiered on sealed share, then capped for
    raw-heavy (raw > 60%, sealed < 40% → 60) and slab-heavy (slabs > 70%,
    sealed < 25% → 65) portfolios. Sealed-heavy mixes always score highest.
    """
    sealed = allocation.sealed.percent
    slabs  = allocation.slabs.percent
    raw    = allocation.raw_cards.percent

    score = float(ASSET_SEALED_BASE)
    for threshold, tier_score in ASSET_SEALED_TIERS:
        if sealed >= threshold:
            score = float(tier_score)
            break

    if raw > 60 and sealed < 40:
        score = min(score, ASSET_RAW_CAP)
    if slabs > 70 and sealed < 25:
        score = min(score, ASSET_SLAB_CAP)
    return _clamp(score)


def calculate_health_score_breakdown(items: Sequence[PortfolioItem],
                                     reference_date: Optional[pd.Timestamp] = None
                                     ) -> HealthScoreBreakdown:
    asset = calculate_asset_health_score(calculate_allocation_breakdown(items))
    era   = calculate_era_health_score(calculate_era_allocation_breakdown(items, reference_date))
    conc  = calculate_concentration_health_score(calculate_position_concentration(items))
    overall = round_half_up(
        HEALTH_WEIGHT_ASSET * asset
        + HEALTH_WEIGHT_ERA * era
        + HEALTH_WEIGHT_CONCENTRATION * conc
    )
    return HealthScoreBreakdown(
        overall=overall, asset_allocation=asset, era_balance=era, concentration=conc,
    )


def health_score_grade(score: float) -> str:
    for threshold, label in HEALTH_GRADES:
        if score >= threshold:
            return label
    return HEALTH_GRADE_FLOOR


# ── Profit milestones ─────────────────────────────────────────────────────────

def find_profit_milestones(items: Sequence[PortfolioItem]) -> list[ProfitMilestone]:
    """
    Items at or above 200% gain, tagged with the highest threshold crossed,
    plus a sell-half simulation: sell floor(quantity / 2) units at the current
    price and report the profit over their cost and the units left.
    Sorted by gain percent, highest first.
    """
    milestones = []
    for it in items:
        tier = next((t for t in MILESTONE_THRESHOLDS if it.gain_percent >= t), None)
        if tier is None:
            continue
        sold = math.floor(it.quantity / 2)
        milestones.append(ProfitMilestone(
            item=it,
            milestone=tier,
            sell_half_profit=sold * it.market_price - sold * it.average_cost_paid,
            sell_half_units_sold=sold,
            sell_half_units_remaining=it.quantity - sold,
        ))
    return sorted(milestones, key=lambda m: m.item.gain_percent, reverse=True)


# ── Rebalancing ───────────────────────────────────────────────────────────────

def _target_dict(target: Union[AllocationTarget, Mapping[str, float]]) -> dict[str, float]:
    return target.as_dict() if hasattr(target, 'as_dict') else dict(target)


def generate_rebalance_suggestions(allocation: AllocationBreakdown,
                                   target: Union[AllocationTarget, Mapping[str, float]],
                                   total_value: float) -> list[RebalanceSuggestion]:
    """
    One suggestion per asset bucket more than 10 points off target:
    overweight → trim ('sell'), underweight → direct new capital ('redirect').
    amount = |gap| / 100 × total value.
    """
    targets = _target_dict(target)
    suggestions = []
    for key, stat in allocation.buckets().items():
        diff   = stat.percent - targets[key]
        amount = abs(diff) / 100 * total_value
        label  = ALLOCATION_LABELS[key]
        if diff > REBALANCE_BAND_PCT:
            suggestions.append(RebalanceSuggestion(
                category=key, action='sell', amount=amount,
                reason=f'Consider trimming {label} — currently '
                       f'{round_half_up(diff)}% above target allocation.',
            ))
        elif diff < -REBALANCE_BAND_PCT:
            suggestions.append(RebalanceSuggestion(
                category=key, action='redirect', amount=amount,
                reason=f'Consider redirecting capital into {label} — currently '
                       f'{round_half_up(abs(diff))}% below target.',
            ))
    return suggestions


def allocation_status(current: float, target: float) -> str:
    diff = current - target
    if abs(diff) <= ALLOCATION_ON_TARGET_PCT:
        return 'On target'
    return 'Slightly over' if diff > 0 else 'Slightly under'


def simulate_rebalance_plan(buckets: Mapping[str, BucketStat],
                            target: Union[AllocationTarget, EraAllocationTarget, Mapping[str, float]],
                            total_value: float,
                            monthly_budget: float = DEFAULT_MONTHLY_BUDGET,
                            target_months: int = DEFAULT_TARGET_MONTHS) -> RebalancePlan:
    """
    Plan for reaching a target mix with new money only (nothing is sold).

    Works for both asset buckets and era buckets — pass breakdown.buckets()
    and the matching target. Per bucket:
      target_value     = target% × total_value
      delta            = target_value − current value
      monthly_share    = delta / total underweight × monthly_budget  (underweight only)
      months_needed    = ceil(delta / monthly_share)
      required_monthly = delta / target_months                        (underweight only)
    """
    targets = _target_dict(target)
    deltas = {k: targets[k] / 100 * total_value - b.value for k, b in buckets.items()}
    total_underweight = sum(d for d in deltas.values() if d > 0)

    rows = []
    for key, stat in buckets.items():
        target_value  = targets[key] / 100 * total_value
        delta         = deltas[key]
        delta_percent = targets[key] - stat.percent
        monthly_share = (delta / total_underweight * monthly_budget
                         if delta_percent > 0 and total_underweight > 0 else 0.0)
        monthly_share = max(0.0, monthly_share)
        required      = max(0.0, delta / target_months) if delta > 0 and target_months > 0 else 0.0
        months        = math.ceil(delta / monthly_share) if delta > 0 and monthly_share > 0 else 0
        rows.append(RebalancePlanRow(
            key=key,
            current_value=stat.value,
            current_percent=stat.percent,
            target_percent=targets[key],
            target_value=target_value,
            delta=delta,
            delta_percent=delta_percent,
            monthly_share=monthly_share,
            required_monthly=required,
            months_needed=months,
            is_overweight=delta < -REBALANCE_PLAN_DEADBAND,
            is_underweight=delta > REBALANCE_PLAN_DEADBAND,
        ))
    return RebalancePlan(
        rows=tuple(rows),
        total_monthly_required=sum(r.required_monthly for r in rows),
        estimated_months_to_balance=max((r.months_needed for r in rows), default=0),
    )


# ── Era warnings ──────────────────────────────────────────────────────────────

def _newer_era_percent(era: EraAllocationBreakdown) -> float:
    b = era.buckets()
    return sum(b[k].percent for k in NEWER_ERAS)


def generate_era_health_warnings(era: EraAllocationBreakdown) -> list[EraHealthWarning]:
    b = era.buckets()
    warnings = []
    if b[ERA_CURRENT].percent > ERA_CURRENT_HIGH_PCT:
        warnings.append(EraHealthWarning(
            'current_high',
            'Current exposure is above 10% — portfolio is more speculative.',
            'warning',
        ))
    newer = _newer_era_percent(era)
    if newer > ERA_NEWER_HIGH_PCT:
        warnings.append(EraHealthWarning('newer_era_high', 'Newer-era exposure: High risk', 'warning'))
    elif newer < ERA_NEWER_LOW_PCT:
        warnings.append(EraHealthWarning(
            'newer_era_low', 'Newer-era exposure: Lower growth / more conservative', 'info',
        ))
    if sum(b[k].percent for k in OLDER_ERAS) < ERA_OLDER_LOW_PCT:
        warnings.append(EraHealthWarning(
            'older_era_low',
            'Older-era exposure is low — portfolio may be less durable.',
            'warning',
        ))
    return warnings


def get_newer_era_status(era: EraAllocationBreakdown) -> tuple[str, str]:
    newer = _newer_era_percent(era)
    if ERA_NEWER_LOW_PCT <= newer <= ERA_NEWER_HIGH_PCT:
        return 'Newer-era exposure: Healthy', 'healthy'
    if newer > ERA_NEWER_HIGH_PCT:
        return 'Newer-era exposure: High risk', 'high'
    return 'Newer-era exposure: Lower growth / more conservative', 'low'


# ── Activity signals ──────────────────────────────────────────────────────────

def _dated(items: Iterable[PortfolioItem]) -> list[pd.Timestamp]:
    return [it.date_added for it in items if it.date_added is not None]


def calculate_days_since_last_action(items: Sequence[PortfolioItem],
                                     reference_date: Optional[pd.Timestamp] = None) -> int:
    """Whole days since the most recent date_added; -1 when no item is dated."""
    dates = _dated(items)
    if not dates:
        return -1
    now = reference_date if reference_date is not None else pd.Timestamp.now()
    return int((now - max(dates)) // pd.Timedelta(days=1))


def calculate_trading_frequency(items: Sequence[PortfolioItem]) -> str:
    dates = sorted(_dated(items))
    if len(dates) < 2:
        return 'low'
    span_days = (dates[-1] - dates[0]) / pd.Timedelta(days=1)
    if span_days <= 0:
        return 'low'
    per_month = len(dates) / span_days * 30
    if per_month > FREQUENCY_HIGH:
        return 'high'
    if per_month > FREQUENCY_MEDIUM:
        return 'medium'
    return 'low'


# ── Winners ───────────────────────────────────────────────────────────────────

def calculate_cagr(item: PortfolioItem,
                   reference_date: Optional[pd.Timestamp] = None) -> Optional[float]:
    """
    Compound annual growth rate (percent) over whole years held.
    None without a date, without a cost basis, or inside the first year.
    """
    if item.date_added is None or item.total_cost_basis <= 0:
        return None
    now = reference_date if reference_date is not None else pd.Timestamp.now()
    years = int((now - item.date_added).days // 365)
    if years < 1:
        return None
    ratio = item.total_market_value / item.total_cost_basis
    return (ratio ** (1 / years) - 1) * 100


_WINNER_SORT_FIELDS = {
    'gain_percent', 'profit_dollars', 'total_market_value', 'quantity',
    'market_price', 'total_cost_basis',
}


def filter_winners(items: Sequence[PortfolioItem],
                   performance: Union[str, float] = 'all',
                   sort_field: str = 'gain_percent',
                   descending: bool = True) -> list[PortfolioItem]:
    """
    Winners table rows. performance is 'all', 'winners' (gain > 0),
    'underperforming' (gain < 0), or a minimum gain percent.
    """
    if sort_field not in _WINNER_SORT_FIELDS:
        raise ValueError(f'Unknown sort field: {sort_field!r}')
    if performance == 'all':
        rows = list(items)
    elif performance == 'winners':
        rows = [it for it in items if it.gain_percent > 0]
    elif performance == 'underperforming':
        rows = [it for it in items if it.gain_percent < 0]
    else:
        rows = [it for it in items if it.gain_percent >= float(performance)]
    return sorted(rows, key=lambda it: getattr(it, sort_field), reverse=descending)
