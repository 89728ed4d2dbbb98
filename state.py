"""
Cardfolio — Portfolio State Holder
===================================
The only stateful actor in the app. Owns the current import snapshot, the
allocation and era targets, and the set of dismissed insights. Every
aggregate is re-derived from the current snapshot on read; nothing derived
is stored.

Uploads replace the snapshot by swapping a single reference, so a reader
always sees the items, validation and column mapping of one import together.

No Streamlit dependency — cardfolio.py keeps one instance in st.session_state.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional, Union

import pandas as pd

from models import (
    PortfolioItem, ImportResult, ValidationResult, ColumnMapping,
    AllocationTarget, EraAllocationTarget,
)
from ingestion import process_portfolio_data, decode_upload, CSVEncodingError
from mechanics import (
    calculate_portfolio_summary, calculate_allocation_breakdown,
    calculate_concentration_risk, calculate_position_concentration,
    calculate_era_allocation_breakdown, calculate_health_score_breakdown,
    find_profit_milestones, generate_rebalance_suggestions,
    generate_era_health_warnings,
)
from insights import generate_insights, build_status_chips, build_strengths_weaknesses
from config import (
    ALLOCATION_PRESETS, DEFAULT_ALLOCATION_PRESET,
    ERA_PRESETS, DEFAULT_ERA_PRESET,
    ALLOCATION_KEYS, ERAS, TARGET_TOTAL,
)

logger = logging.getLogger(__name__)

SaveHook = Callable[[tuple[PortfolioItem, ...]], None]

# One worker keeps saves in upload order.
_SAVE_EXECUTOR = ThreadPoolExecutor(max_workers=1, thread_name_prefix='cardfolio-save')


def _run_save_hook(hook: SaveHook, items: tuple[PortfolioItem, ...]) -> None:
    try:
        hook(items)
    except Exception:
        logger.warning('Portfolio save hook failed; continuing without persistence',
                       exc_info=True)


class TargetError(ValueError):
    """A custom allocation or era target was rejected. Message is user-facing."""


@dataclass(frozen=True)
class Snapshot:
    """One import, swapped in and out as a unit."""
    items:            tuple[PortfolioItem, ...] = ()
    validation:       Optional[ValidationResult] = None
    column_mapping:   Optional[ColumnMapping] = None
    file_name:        str = ''


def _validate_target(values: Mapping[str, float], keys: tuple[str, ...]) -> dict[str, float]:
    unknown = set(values) - set(keys)
    if unknown:
        raise TargetError(f'Unknown target key(s): {", ".join(sorted(unknown))}')
    missing = [k for k in keys if k not in values]
    if missing:
        raise TargetError(f'Missing target key(s): {", ".join(missing)}')
    clean = {k: float(values[k]) for k in keys}
    negative = [k for k, v in clean.items() if v < 0]
    if negative:
        raise TargetError(f'Target percentages cannot be negative: {", ".join(negative)}')
    total = sum(clean.values())
    if abs(total - TARGET_TOTAL) > 1e-6:
        raise TargetError(f'Target percentages must sum to {TARGET_TOTAL} (got {total:g})')
    return clean


@dataclass
class PortfolioState:
    """
    Context holder for the dashboard.

    Write operations: upload_data, upload_file, clear_data, set_allocation_preset,
    set_custom_target, set_era_preset, set_custom_era_target, dismiss_insight.
    Everything else is a read-only property computed from the current snapshot.

    save_hook, when set, is called with the new items after every successful
    upload. It runs on a background worker so the upload returns without
    waiting; a failure is logged and never reaches the caller. last_save holds
    the Future of the most recent call.
    """
    save_hook:           Optional[SaveHook] = None
    reference_date:      Optional[pd.Timestamp] = None
    snapshot:            Snapshot = field(default_factory=Snapshot)
    allocation_preset:   str = DEFAULT_ALLOCATION_PRESET
    allocation_target:   AllocationTarget = field(
        default_factory=lambda: AllocationTarget(**ALLOCATION_PRESETS[DEFAULT_ALLOCATION_PRESET]))
    era_preset:          str = DEFAULT_ERA_PRESET
    era_target:          EraAllocationTarget = field(
        default_factory=lambda: EraAllocationTarget(**ERA_PRESETS[DEFAULT_ERA_PRESET]))
    dismissed_insights:  frozenset[str] = frozenset()
    custom_allocation_target: AllocationTarget = field(
        default_factory=lambda: AllocationTarget(**ALLOCATION_PRESETS['custom']))
    custom_era_target:   EraAllocationTarget = field(
        default_factory=lambda: EraAllocationTarget(**ERA_PRESETS['custom']))
    last_save:           Optional[Future] = field(default=None, repr=False, compare=False)

    # ── Writes ────────────────────────────────────────────────────────────────

    def upload_data(self, text: str, file_name: str = '',
                    column_override: Optional[Mapping[str, str]] = None) -> ImportResult:
        """Parse CSV text and replace the current snapshot with the result."""
        result = process_portfolio_data(text, column_override)
        self.snapshot = Snapshot(
            items=tuple(result.items),
            validation=result.validation,
            column_mapping=result.detected_columns,
            file_name=file_name,
        )
        self.dismissed_insights = frozenset()
        logger.info('Loaded %s: %d items, %d errors',
                    file_name or '<upload>', len(result.items), len(result.validation.errors))
        if result.items:
            self._save(self.snapshot.items)
        return result

    def upload_file(self, raw: bytes, file_name: str = '',
                    column_override: Optional[Mapping[str, str]] = None) -> ImportResult:
        """Decode uploaded bytes, then upload_data. Undecodable files become a validation error."""
        try:
            text = decode_upload(raw)
        except CSVEncodingError as exc:
            result = ImportResult(
                items=(), validation=ValidationResult(False, (str(exc),)), detected_columns=None,
            )
            self.snapshot = Snapshot(validation=result.validation, file_name=file_name)
            self.dismissed_insights = frozenset()
            logger.warning('Rejected %s: %s', file_name or '<upload>', exc)
            return result
        return self.upload_data(text, file_name, column_override)

    def clear_data(self) -> None:
        self.snapshot = Snapshot()
        self.dismissed_insights = frozenset()
        logger.info('Portfolio cleared')

    def set_allocation_preset(self, preset: str) -> None:
        if preset not in ALLOCATION_PRESETS:
            raise TargetError(f'Unknown allocation preset: {preset!r}')
        if preset == 'custom':
            self.allocation_target = self.custom_allocation_target
        else:
            self.allocation_target = AllocationTarget(**ALLOCATION_PRESETS[preset])
        self.allocation_preset = preset

    def set_custom_target(self, values: Union[AllocationTarget, Mapping[str, float]]) -> None:
        if isinstance(values, AllocationTarget):
            values = values.as_dict()
        self.custom_allocation_target = AllocationTarget(**_validate_target(values, ALLOCATION_KEYS))
        self.allocation_target = self.custom_allocation_target
        self.allocation_preset = 'custom'

    def set_era_preset(self, preset: str) -> None:
        if preset not in ERA_PRESETS:
            raise TargetError(f'Unknown era preset: {preset!r}')
        if preset == 'custom':
            self.era_target = self.custom_era_target
        else:
            self.era_target = EraAllocationTarget(**ERA_PRESETS[preset])
        self.era_preset = preset

    def set_custom_era_target(self, values: Union[EraAllocationTarget, Mapping[str, float]]) -> None:
        if isinstance(values, EraAllocationTarget):
            values = values.as_dict()
        self.custom_era_target = EraAllocationTarget(**_validate_target(values, ERAS))
        self.era_target = self.custom_era_target
        self.era_preset = 'custom'

    def dismiss_insight(self, insight_id: str) -> None:
        self.dismissed_insights = self.dismissed_insights | {insight_id}

    def _save(self, items: tuple[PortfolioItem, ...]) -> None:
        if self.save_hook is None:
            return
        self.last_save = _SAVE_EXECUTOR.submit(_run_save_hook, self.save_hook, items)

    # ── Reads ─────────────────────────────────────────────────────────────────

    @property
    def items(self) -> tuple[PortfolioItem, ...]:
        return self.snapshot.items

    @property
    def validation(self) -> Optional[ValidationResult]:
        return self.snapshot.validation

    @property
    def column_mapping(self) -> Optional[ColumnMapping]:
        return self.snapshot.column_mapping

    @property
    def has_data(self) -> bool:
        return bool(self.snapshot.items)

    @property
    def summary(self):
        return calculate_portfolio_summary(self.items)

    @property
    def allocation(self):
        return calculate_allocation_breakdown(self.items)

    @property
    def concentration(self):
        return calculate_concentration_risk(self.items)

    @property
    def position_concentration(self):
        return calculate_position_concentration(self.items)

    @property
    def era_allocation(self):
        return calculate_era_allocation_breakdown(self.items, self.reference_date)

    @property
    def health(self):
        return calculate_health_score_breakdown(self.items, self.reference_date)

    @property
    def milestones(self):
        return find_profit_milestones(self.items)

    @property
    def rebalance_suggestions(self):
        return generate_rebalance_suggestions(
            self.allocation, self.allocation_target, self.summary.total_market_value)

    @property
    def era_warnings(self):
        return generate_era_health_warnings(self.era_allocation)

    @property
    def insights(self):
        """Current insights with dismissed ids filtered out."""
        items = self.items
        if not items:
            return []
        all_insights = generate_insights(
            items, calculate_portfolio_summary(items), calculate_concentration_risk(items),
            find_profit_milestones(items), calculate_allocation_breakdown(items),
            self.allocation_target, self.reference_date,
        )
        return [i for i in all_insights if i.id not in self.dismissed_insights]

    @property
    def status_chips(self):
        items = self.items
        return build_status_chips(
            items, calculate_concentration_risk(items), find_profit_milestones(items),
            calculate_allocation_breakdown(items), self.allocation_target,
        )

    @property
    def strengths_weaknesses(self):
        items = self.items
        return build_strengths_weaknesses(
            items, calculate_portfolio_summary(items), calculate_concentration_risk(items),
            calculate_allocation_breakdown(items), self.allocation_target,
        )
