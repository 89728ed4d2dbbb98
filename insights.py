"""
Cardfolio — Insights, Status Chips & Portfolio Analysis
========================================================
Turns the aggregates from mechanics.py into short natural-language
observations. Pure functions: the caller passes every aggregate in, so the
same snapshot always yields the same list (apart from the timestamp).

Insight ids are stable per trigger so a dismissal made by the user survives
the next recomputation of the same snapshot.
"""

from __future__ import annotations

from typing import Mapping, Optional, Sequence, Union

import pandas as pd

from models import (
    PortfolioItem, PortfolioSummary, ConcentrationRisk, ProfitMilestone,
    AllocationBreakdown, AllocationTarget, Insight, StatusChip, AnalysisPoint,
)
from mechanics import (
    generate_rebalance_suggestions, calculate_days_since_last_action, round_half_up,
)
from config import (
    MILESTONE_THRESHOLDS, ALLOCATION_LABELS, LIQUIDITY_LOW,
    INSIGHT_TOP1_PCT, INSIGHT_TOP3_PCT, INSIGHT_ALLOCATION_GAP_PCT,
    INSIGHT_PATIENCE_DAYS, INSIGHT_REBALANCE_MIN_VALUE, INSIGHT_REBALANCE_MAX_AMOUNT,
    LOW_LIQUIDITY_WARN_PCT,
    STRONG_RETURN_PCT, WEAK_RETURN_PCT, HIGH_WIN_RATE_PCT, LOW_WIN_RATE_PCT,
    DIVERSIFIED_TOP1_PCT, HIGH_TOP1_PCT, MODERATE_TOP1_PCT, DIVERSE_SET_COUNT,
    DEEP_LOSS_PCT, ALLOCATION_OFF_PCT,
)


PRIORITY_ORDER = {'high': 0, 'medium': 1, 'low': 2}

_MILESTONE_MESSAGES = {
    500: 'exceeded 500% gains — historically an excellent point to consider locking in profits.',
    300: 'exceeded 300% gains — consider whether partial profit-taking aligns with your goals.',
    200: 'reached the 200% gain milestone — a good time to review your position.',
}

_CHIP_NAMES = {'sealed': 'Sealed', 'slabs': 'Slabs', 'raw_cards': 'Raw Cards'}


def _holdings(n: int) -> str:
    return f"{n} holding{'s have' if n > 1 else ' has'}"


def _targets(target: Union[AllocationTarget, Mapping[str, float]]) -> dict[str, float]:
    return target.as_dict() if hasattr(target, 'as_dict') else dict(target)


def _by_tier(milestones: Sequence[ProfitMilestone]) -> dict[int, list[ProfitMilestone]]:
    return {t: [m for m in milestones if m.milestone == t] for t in MILESTONE_THRESHOLDS}


def generate_insights(items: Sequence[PortfolioItem],
                      summary: PortfolioSummary,
                      concentration: ConcentrationRisk,
                      milestones: Sequence[ProfitMilestone],
                      allocation: AllocationBreakdown,
                      target: Union[AllocationTarget, Mapping[str, float]],
                      reference_date: Optional[pd.Timestamp] = None) -> list[Insight]:
    """
    Prioritised observations, high → medium → low. Within a priority the
    trigger order below is kept (the sort is stable).

    Triggers
    --------
      profit        one per milestone tier present                  high
      concentration top-1 > 20% (high); top-3 > 40% (medium)        high / medium
      allocation    per bucket more than 15 points off target       medium over / low under
      patience      no additions for more than 60 days              low
      rebalance     largest redirect suggestion, portfolio > $1000  medium
    """
    now = reference_date if reference_date is not None else pd.Timestamp.now()
    insights: list[Insight] = []

    def add(id_, type_, priority, message, related=()):
        insights.append(Insight(
            id=id_, type=type_, priority=priority, message=message,
            timestamp=now, related_item_ids=tuple(related),
        ))

    # Profit
    for tier, hits in _by_tier(milestones).items():
        if hits:
            add(f'insight-profit-{tier}', 'profit', 'high',
                f'{_holdings(len(hits))} {_MILESTONE_MESSAGES[tier]}',
                (m.item.id for m in hits))

    # Concentration
    if concentration.top1_percent > INSIGHT_TOP1_PCT:
        add('insight-concentration-top1', 'concentration', 'high',
            f'Your top position ({concentration.top1_name}) represents '
            f'{concentration.top1_percent:.1f}% of your portfolio — consider whether '
            f'this concentration aligns with your risk tolerance.')
    if concentration.top3_percent > INSIGHT_TOP3_PCT:
        add('insight-concentration-top3', 'concentration', 'medium',
            f'Your top 3 holdings represent {concentration.top3_percent:.1f}% of '
            f'portfolio value — diversification could reduce position-specific risk.')

    # Allocation
    targets = _targets(target)
    for key, stat in allocation.buckets().items():
        diff = stat.percent - targets[key]
        if abs(diff) <= INSIGHT_ALLOCATION_GAP_PCT:
            continue
        label = ALLOCATION_LABELS[key]
        if diff > 0:
            add(f'insight-allocation-{key}', 'allocation', 'medium',
                f'Your {label} allocation is {round_half_up(diff)}% above target — '
                f'redirecting new capital elsewhere could improve balance.')
        else:
            add(f'insight-allocation-{key}', 'allocation', 'low',
                f'Your {label} allocation is {round_half_up(abs(diff))}% below target — '
                f'consider directing your next purchase here.')

    # Patience
    days = calculate_days_since_last_action(items, now)
    if days > INSIGHT_PATIENCE_DAYS:
        add('insight-patience', 'patience', 'low',
            f'No additions in {days} days — long-term investors historically '
            f'outperform frequent traders. Your patience is an edge.')

    # Rebalance
    if summary.total_market_value > INSIGHT_REBALANCE_MIN_VALUE:
        redirects = [s for s in generate_rebalance_suggestions(
                         allocation, targets, summary.total_market_value)
                     if s.action == 'redirect']
        if redirects:
            best = max(redirects, key=lambda s: s.amount)
            amount = min(INSIGHT_REBALANCE_MAX_AMOUNT, round_half_up(best.amount))
            add('insight-rebalance', 'rebalance', 'medium',
                f'Redirecting your next ${amount:,} into {ALLOCATION_LABELS[best.category]} '
                f'would move you closer to your target allocation.')

    return sorted(insights, key=lambda i: PRIORITY_ORDER[i.priority])


def build_status_chips(items: Sequence[PortfolioItem],
                       concentration: ConcentrationRisk,
                       milestones: Sequence[ProfitMilestone],
                       allocation: AllocationBreakdown,
                       target: Union[AllocationTarget, Mapping[str, float]]) -> list[StatusChip]:
    """Compact dashboard badges. Falls back to a single 'healthy' chip."""
    chips: list[StatusChip] = []
    targets = _targets(target)

    overweight = next(
        ((k, b.percent - targets[k]) for k, b in allocation.buckets().items()
         if b.percent - targets[k] > INSIGHT_ALLOCATION_GAP_PCT),
        None,
    )
    if overweight:
        key, diff = overweight
        name = _CHIP_NAMES[key]
        chips.append(StatusChip(
            'overweight', f'Overweight {name}', 'warning',
            f'Your {name.lower()} allocation is {round_half_up(diff)}% above your target. '
            f'Consider redirecting new capital elsewhere.',
        ))

    if concentration.top1_percent > INSIGHT_TOP1_PCT:
        chips.append(StatusChip(
            'concentration', 'High Concentration', 'warning',
            f'Your top position ({concentration.top1_name}) represents '
            f'{concentration.top1_percent:.1f}% of your portfolio.',
        ))

    tiers = _by_tier(milestones)
    top_tier = next((t for t in MILESTONE_THRESHOLDS if tiers[t]), None)
    if top_tier is not None:
        n = len(tiers[top_tier])
        chips.append(StatusChip(
            f'milestone-{top_tier}', f'{n} at {top_tier}%+',
            'primary' if top_tier == min(MILESTONE_THRESHOLDS) else 'success',
            f'{_holdings(n)} {_MILESTONE_MESSAGES[top_tier]}',
        ))

    total = sum(it.total_market_value for it in items)
    low = sum(it.total_market_value for it in items if it.liquidity_tier == LIQUIDITY_LOW)
    low_pct = low / total * 100 if total > 0 else 0.0
    if low_pct > LOW_LIQUIDITY_WARN_PCT:
        chips.append(StatusChip(
            'low-liquidity', 'Low Liquidity', 'warning',
            f'{low_pct:.0f}% of your portfolio is in low-liquidity assets. '
            f'These may take longer to sell at fair value.',
        ))

    if not chips:
        chips.append(StatusChip(
            'healthy', 'Portfolio Healthy', 'success',
            'No significant risks or opportunities detected. Your portfolio is well-balanced.',
        ))
    return chips


def _plural(n: int, noun: str) -> str:
    return f"{n} {noun}{'s' if n > 1 else ''}"


def build_strengths_weaknesses(items: Sequence[PortfolioItem],
                               summary: PortfolioSummary,
                               concentration: ConcentrationRisk,
                               allocation: AllocationBreakdown,
                               target: Union[AllocationTarget, Mapping[str, float]]
                               ) -> list[AnalysisPoint]:
    """
    Portfolio analysis panel: strengths first, then areas to watch.
    Empty for an empty portfolio.
    """
    if not items:
        return []
    points: list[AnalysisPoint] = []

    def strength(text):
        points.append(AnalysisPoint(text, 'strength'))

    def weakness(text):
        points.append(AnalysisPoint(text, 'weakness'))

    pl_pct  = summary.unrealized_pl_percent
    win_pct = summary.holdings_in_profit_percent
    top1    = concentration.top1_percent

    if pl_pct > STRONG_RETURN_PCT:
        strength(f'Strong overall returns (+{pl_pct:.1f}%)')
    elif pl_pct > 0:
        strength(f'Positive portfolio performance (+{pl_pct:.1f}%)')
    if win_pct >= HIGH_WIN_RATE_PCT:
        strength(f'High win rate ({win_pct:.0f}% of holdings profitable)')
    if top1 < DIVERSIFIED_TOP1_PCT:
        strength('Well-diversified holdings')
    sets = len({it.category for it in items})
    if sets >= DIVERSE_SET_COUNT:
        strength(f'Good category diversity ({sets} sets)')
    # Only the two highest milestone tiers count, highest first.
    for tier in MILESTONE_THRESHOLDS[:2]:
        n = sum(1 for it in items if it.gain_percent >= tier)
        if n:
            strength(f'{_plural(n, "holding")} at {tier}%+ gains')
            break

    if pl_pct < WEAK_RETURN_PCT:
        weakness(f'Portfolio down {abs(pl_pct):.1f}%')
    if top1 > HIGH_TOP1_PCT:
        weakness(f'High concentration risk ({top1:.1f}% in single position)')
    elif top1 > MODERATE_TOP1_PCT:
        weakness(f'Moderate concentration ({top1:.1f}% in top holding)')
    deep = sum(1 for it in items if it.gain_percent <= DEEP_LOSS_PCT)
    if deep:
        weakness(f'{_plural(deep, "position")} down {abs(DEEP_LOSS_PCT)}%+')
    if win_pct < LOW_WIN_RATE_PCT:
        weakness(f'Low win rate ({win_pct:.0f}% profitable)')
    targets = _targets(target)
    if max(abs(b.percent - targets[k]) for k, b in allocation.buckets().items()) > ALLOCATION_OFF_PCT:
        weakness('Allocation significantly off-target')

    return points
