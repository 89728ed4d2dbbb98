"""
Cardfolio Test Suite
====================
Tests call the real app functions directly — ingestion.process_portfolio_data(),
classify_item_era(), calculate_health_score_breakdown(), generate_insights() —
so there is no parallel reimplementation that can silently drift out of sync.

No Streamlit server required. Run with:
    pytest test_cardfolio.py

All fixtures are small inline CSV strings or hand-built items; every
date-dependent check pins reference_date so results never depend on today.
"""

import os
import sys
import threading
from dataclasses import fields

import pandas as pd
import pytest

# ── Paths ──────────────────────────────────────────────────────────────────────
_HERE = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, _HERE)

import ingestion
from ingestion import (
    sanitize_numeric, parse_date, parse_csv, parse_csv_line, decode_upload,
    find_column, detect_column_mappings, process_portfolio_data,
    CSVValueError, CSVStructureError, CSVEncodingError,
)
from classification import (
    classify_asset_type, classify_liquidity_tier, classify_item_era,
)
from models import (
    PortfolioItem, BucketStat, AllocationBreakdown, EraAllocationBreakdown,
    PositionConcentration, AllocationTarget, EraAllocationTarget,
)
from mechanics import (
    calculate_portfolio_summary, calculate_allocation_breakdown,
    calculate_concentration_risk, calculate_position_concentration,
    calculate_era_allocation_breakdown, calculate_era_health_score,
    calculate_concentration_health_score, calculate_asset_health_score,
    calculate_health_score_breakdown, health_score_grade,
    find_profit_milestones, generate_rebalance_suggestions, allocation_status,
    simulate_rebalance_plan, generate_era_health_warnings, get_newer_era_status,
    calculate_days_since_last_action, calculate_trading_frequency,
    calculate_cagr, filter_winners, round_half_up,
)
from insights import generate_insights, build_status_chips, build_strengths_weaknesses
from state import PortfolioState, TargetError
from ui_components import (
    upload_token, uploader_key, is_new_upload, reset_uploader, validation_error_markdown,
)
from config import (
    FIELD_PRODUCT_NAME, FIELD_CATEGORY, FIELD_QUANTITY, FIELD_MARKET_PRICE,
    FIELD_AVG_COST, FIELD_CARD_NUMBER, ALLOCATION_PRESETS, ERA_PRESETS,
)


REF = pd.Timestamp('2026-06-15')

FULL_HEADER = 'Product Name,Set,Quantity,Market Price,Average Cost Paid,Grade,Card Number,Date Added'


def make_item(name='Item', category='', qty=1, price=100.0, cost=100.0,
              grade='', card_number='', date_added=None, item_id=None, total=0.0):
    return PortfolioItem(
        id=item_id or f'item-{name}',
        product_name=name, category=category,
        quantity=qty, market_price=price, average_cost_paid=cost,
        grade=grade, card_number=card_number,
        date_added=date_added, portfolio_total=total,
    )

def bucket(pct, value=None, count=1):
    return BucketStat(value=pct if value is None else value, percent=pct, count=count)

def era_breakdown(vintage=0, classic=0, modern=0, ultra_modern=0, current=0):
    return EraAllocationBreakdown(
        vintage=bucket(vintage), classic=bucket(classic), modern=bucket(modern),
        ultra_modern=bucket(ultra_modern), current=bucket(current),
    )

def allocation(sealed=0, slabs=0, raw_cards=0, total=100.0):
    return AllocationBreakdown(
        sealed=bucket(sealed, sealed / 100 * total),
        slabs=bucket(slabs, slabs / 100 * total),
        raw_cards=bucket(raw_cards, raw_cards / 100 * total),
    )


# ══════════════════════════════════════════════════════════════════════════════
# 1. SANITIZER
# ══════════════════════════════════════════════════════════════════════════════

def test_sanitize_currency_and_thousands():
    assert sanitize_numeric('$1,234.56') == pytest.approx(1234.56)
    assert sanitize_numeric('€ 12') == 12.0
    assert sanitize_numeric(' £1 000 ') == 1000.0

def test_sanitize_empty_and_dash_are_zero():
    assert sanitize_numeric('') == 0
    assert sanitize_numeric('-') == 0
    assert sanitize_numeric(None) == 0
    assert sanitize_numeric('  $ ') == 0

def test_sanitize_numbers_pass_through():
    assert sanitize_numeric(7) == 7
    assert sanitize_numeric(2.5) == 2.5
    assert sanitize_numeric(float('nan')) == 0

def test_sanitize_rejects_text_and_names_raw_value():
    with pytest.raises(CSVValueError) as exc:
        sanitize_numeric('abc')
    assert exc.value.raw_value == 'abc'
    assert 'abc' in str(exc.value)

def test_sanitize_rejects_nan_spelling():
    with pytest.raises(CSVValueError):
        sanitize_numeric('nan')

def test_sanitize_rejects_digit_separators():
    with pytest.raises(CSVValueError) as exc:
        sanitize_numeric('1_000')
    assert exc.value.raw_value == '1_000'

def test_parse_date_is_best_effort():
    assert parse_date('') is None
    assert parse_date('   ') is None
    assert parse_date('not a date') is None
    assert parse_date('2024-03-01') == pd.Timestamp('2024-03-01')


# ══════════════════════════════════════════════════════════════════════════════
# 2. TOKENIZER
# ══════════════════════════════════════════════════════════════════════════════

def test_csv_line_quotes_and_trimming():
    assert parse_csv_line('a, "b, c" ,d') == ['a', 'b, c', 'd']
    assert parse_csv_line('"say ""hi""",x') == ['say "hi"', 'x']
    assert parse_csv_line('a,,') == ['a', '', '']

def test_parse_csv_drops_blank_lines_and_pads_short_rows():
    parsed = parse_csv('A,B,C\r\n\r\n1,2\n\n  \n4,5,6\n')
    assert parsed.headers == ('A', 'B', 'C')
    assert len(parsed.rows) == 2
    assert parsed.rows[0] == {'A': '1', 'B': '2', 'C': ''}
    assert parsed.rows[1]['C'] == '6'

def test_parse_csv_needs_header_and_one_row():
    with pytest.raises(CSVStructureError):
        parse_csv('Product Name,Quantity\n\n')
    with pytest.raises(CSVStructureError):
        parse_csv('')

def test_decode_upload_drops_bom_and_rejects_bad_bytes():
    assert decode_upload('\ufeffName,Qty\n'.encode('utf-8')) == 'Name,Qty\n'
    with pytest.raises(CSVEncodingError):
        decode_upload(b'\xff\xfe\x00bad')


# ══════════════════════════════════════════════════════════════════════════════
# 3. COLUMN MAPPER
# ══════════════════════════════════════════════════════════════════════════════

def test_exact_match_beats_substring():
    headers = ['Purchase Price', 'Market Price', 'Name']
    assert find_column(headers, FIELD_MARKET_PRICE) == 'Market Price'
    assert find_column(headers, FIELD_AVG_COST) == 'Purchase Price'

def test_substring_fallback_both_directions():
    headers = ['Card Name', 'Set', 'Qty', 'TCGplayer Market Price', 'Avg Cost']
    assert find_column(headers, FIELD_PRODUCT_NAME) == 'Card Name'
    assert find_column(headers, FIELD_MARKET_PRICE) == 'TCGplayer Market Price'
    assert find_column(headers, FIELD_CATEGORY) == 'Set'
    assert find_column(headers, FIELD_QUANTITY) == 'Qty'
    assert find_column(headers, FIELD_AVG_COST) == 'Avg Cost'
    # 'Card Name' must not be taken for the card number
    assert find_column(headers, FIELD_CARD_NUMBER) is None

def test_case_insensitive_and_trimmed():
    assert find_column(['  PRODUCT NAME ', 'QTY'], FIELD_PRODUCT_NAME) == '  PRODUCT NAME '

def test_detect_mappings_without_data_rows():
    mapping = detect_column_mappings('Name,Qty\n')
    assert mapping.headers == ('Name', 'Qty')
    assert mapping.detected[FIELD_PRODUCT_NAME] == 'Name'
    assert mapping.detected[FIELD_MARKET_PRICE] is None


# ══════════════════════════════════════════════════════════════════════════════
# 4. CLASSIFICATION
# ══════════════════════════════════════════════════════════════════════════════

def test_asset_type_rules():
    assert classify_asset_type('PSA 10', '') == 'Slab'
    assert classify_asset_type('', '057/189') == 'Raw Card'
    assert classify_asset_type('', '') == 'Sealed'
    assert classify_asset_type('Ungraded', '123') == 'Raw Card'
    assert classify_asset_type('N/A', '') == 'Sealed'
    assert classify_asset_type('BGS 9.5', '4/102') == 'Slab'

def test_liquidity_tiers():
    assert classify_liquidity_tier('Slab', 10, 1, 'Pikachu') == 'High'
    assert classify_liquidity_tier('Raw Card', 60, 1, 'Charizard') == 'High'
    assert classify_liquidity_tier('Raw Card', 40, 1, 'Charizard') == 'Medium'
    assert classify_liquidity_tier('Sealed', 150, 20, 'Evolving Skies Booster Box') == 'Medium'
    assert classify_liquidity_tier('Sealed', 30, 12, 'Sleeved Booster') == 'Low'
    assert classify_liquidity_tier('Raw Card', 20, 1, 'Energy bulk') == 'Low'

def test_era_set_table_wins_over_recent_date():
    item = make_item(category='Base Set', date_added=REF - pd.DateOffset(months=1))
    assert classify_item_era(item, REF) == 'vintage'

def test_era_product_name_set_match():
    item = make_item(name='Evolving Skies Booster Box', category='')
    assert classify_item_era(item, REF) == 'ultra_modern'

def test_era_keyword_fallback():
    item = make_item(name='1st Edition Charizard', category='Misc')
    assert classify_item_era(item, REF) == 'vintage'

def test_era_date_window_then_default():
    recent = make_item(name='', category='', date_added=REF - pd.DateOffset(months=3))
    old    = make_item(name='', category='', date_added=REF - pd.DateOffset(years=2))
    undated = make_item(name='', category='')
    assert classify_item_era(recent, REF) == 'current'
    assert classify_item_era(old, REF) == 'ultra_modern'
    assert classify_item_era(undated, REF) == 'ultra_modern'


# ══════════════════════════════════════════════════════════════════════════════
# 5. IMPORT PIPELINE
# ══════════════════════════════════════════════════════════════════════════════

SAMPLE_CSV = '\n'.join([
    FULL_HEADER,
    'Base Set Charizard,Base Set,1,"$1,200.00",$150,PSA 9,4/102,2021-05-01',
    'Evolving Skies Booster Box,Evolving Skies,2,$650,$300,,,2022-01-10',
    'Umbreon VMAX,Evolving Skies,1,$420,$90,,215/203,2023-08-20',
    ',,,,,,,',
    'Paldea Evolved ETB,Paldea Evolved,3,$55,$50,,,2026-04-01',
])

def test_import_sample_portfolio():
    result = process_portfolio_data(SAMPLE_CSV)
    assert result.validation.is_valid
    assert result.validation.errors == ()
    assert len(result.items) == 4
    zard = result.items[0]
    assert zard.asset_type == 'Slab'
    assert zard.total_market_value == pytest.approx(1200)
    assert zard.profit_dollars == pytest.approx(1050)
    assert zard.gain_percent == pytest.approx(700)
    assert result.items[1].asset_type == 'Sealed'
    assert result.items[2].asset_type == 'Raw Card'
    assert result.items[3].date_added == pd.Timestamp('2026-04-01')

def test_weights_sum_to_100():
    items = process_portfolio_data(SAMPLE_CSV).items
    assert sum(it.portfolio_weight_percent for it in items) == pytest.approx(100)

def test_weights_zero_when_total_is_zero():
    csv = 'Product Name,Quantity,Market Price\nA,1,0\nB,0,5\n'
    result = process_portfolio_data(csv)
    assert len(result.items) == 2
    assert all(it.portfolio_weight_percent == 0 for it in result.items)

def test_import_is_idempotent_apart_from_ids():
    def strip(result):
        return [tuple(getattr(it, f.name) for f in fields(it) if f.name != 'id')
                for it in result.items]
    a = process_portfolio_data(SAMPLE_CSV)
    b = process_portfolio_data(SAMPLE_CSV)
    assert strip(a) == strip(b)
    assert a.validation == b.validation
    assert len({it.id for it in a.items}) == len(a.items)

def test_missing_required_column():
    result = process_portfolio_data('Name,Qty\nCharizard,1\n')
    assert result.items == ()
    assert not result.validation.is_valid
    assert 'Market Price' in result.validation.errors[0]
    assert '"Name"' in result.validation.errors[0]
    assert result.detected_columns.detected[FIELD_PRODUCT_NAME] == 'Name'

def test_mixed_validity_rows():
    csv = 'Product Name,Quantity,Market Price\nA,1,10\nB,1,N/A$$\nC,2,5\n'
    result = process_portfolio_data(csv)
    assert [it.product_name for it in result.items] == ['A', 'C']
    assert len(result.validation.errors) == 1
    assert result.validation.errors[0].startswith('Row 3:')
    assert 'N/A$$' in result.validation.errors[0]
    assert not result.validation.is_valid

def test_missing_cost_column_is_a_warning():
    result = process_portfolio_data('Product Name,Quantity,Market Price\nA,1,10\n')
    assert result.validation.is_valid
    assert any('cost' in w.lower() for w in result.validation.warnings)
    assert result.items[0].gain_percent == 0

def test_negative_quantity_is_row_error():
    result = process_portfolio_data('Product Name,Quantity,Market Price\nA,-1,10\nB,1,10\n')
    assert len(result.items) == 1
    assert result.validation.errors[0].startswith('Row 2:')

def test_structural_failure_returns_result():
    result = process_portfolio_data('Product Name,Quantity,Market Price\n')
    assert result.items == ()
    assert not result.validation.is_valid
    assert result.detected_columns is not None

def test_no_valid_items():
    result = process_portfolio_data('Product Name,Quantity,Market Price\n  ,1,10\n')
    assert result.items == ()
    assert 'No valid items found in the CSV file' in result.validation.errors

def test_unreadable_date_warns():
    csv = 'Product Name,Quantity,Market Price,Date Added\nA,1,10,someday\n'
    result = process_portfolio_data(csv)
    assert result.items[0].date_added is None
    assert result.validation.is_valid
    assert any('date' in w for w in result.validation.warnings)

def test_integrity_mismatch_is_reported(monkeypatch):
    monkeypatch.setattr(ingestion, 'INTEGRITY_TOLERANCE', -1)
    result = process_portfolio_data(SAMPLE_CSV)
    assert len(result.items) == 4
    assert result.validation.is_valid is False
    assert result.validation.errors[0].startswith('Data parsing mismatch')

def test_column_override():
    csv = 'Col1,Col2,Col3\nCharizard,2,$10\n'
    override = {FIELD_PRODUCT_NAME: 'Col1', FIELD_QUANTITY: 'Col2', FIELD_MARKET_PRICE: 'Col3'}
    result = process_portfolio_data(csv, override)
    assert len(result.items) == 1
    assert result.items[0].total_market_value == pytest.approx(20)


# ══════════════════════════════════════════════════════════════════════════════
# 6. AGGREGATES
# ══════════════════════════════════════════════════════════════════════════════

def test_summary():
    items = [make_item('A', price=200, cost=100), make_item('B', price=50, cost=100),
             make_item('C', price=100, cost=0)]
    s = calculate_portfolio_summary(items)
    assert s.total_market_value == 350
    assert s.total_cost_basis == 200
    assert s.unrealized_pl == 150
    assert s.unrealized_pl_percent == pytest.approx(75)
    assert s.holdings_in_profit_count == 2
    assert s.total_holdings == 3

def test_summary_empty():
    s = calculate_portfolio_summary([])
    assert s.total_market_value == 0
    assert s.unrealized_pl_percent == 0
    assert s.holdings_in_profit_percent == 0

def test_allocation_breakdown():
    items = [make_item('Box', price=600), make_item('Slab', price=300, grade='PSA 10'),
             make_item('Raw', price=100, card_number='1/100')]
    a = calculate_allocation_breakdown(items)
    assert a.sealed.percent == pytest.approx(60)
    assert a.slabs.percent == pytest.approx(30)
    assert a.raw_cards.value == 100
    assert a.raw_cards.count == 1

def test_concentration_five_equal_items():
    items = [make_item(f'Card {i}', price=100) for i in range(5)]
    c = calculate_concentration_risk(items)
    assert c.top1_percent == pytest.approx(20)
    assert c.top3_percent == pytest.approx(60)
    assert c.top5_percent == pytest.approx(100)

def test_concentration_top_set():
    items = [make_item('A', category='Jungle', price=100), make_item('B', category='Fossil', price=80),
             make_item('C', category='Fossil', price=80)]
    c = calculate_concentration_risk(items)
    assert c.top_set_name == 'Fossil'
    assert c.top_set_percent == pytest.approx(61.538, abs=0.01)
    assert c.top1_name == 'A'

def test_concentration_empty():
    c = calculate_concentration_risk([])
    assert c.top1_percent == 0
    assert c.top1_name == 'N/A'
    assert c.top_set_name == 'Unknown'

def test_position_concentration_merges_duplicate_names():
    items = [make_item('A', price=100, item_id='1'), make_item('A', price=100, item_id='2'),
             make_item('B', price=150)]
    p = calculate_position_concentration(items)
    assert p.top1_value == 200
    assert p.top1_percent == pytest.approx(200 / 350 * 100)
    assert p.positions[0] == ('A', 200.0, 2.0)

def test_era_breakdown_always_has_five_buckets():
    e = calculate_era_allocation_breakdown([], REF)
    assert set(e.buckets()) == {'vintage', 'classic', 'modern', 'ultra_modern', 'current'}
    assert all(b.value == 0 and b.percent == 0 for b in e.buckets().values())


# ══════════════════════════════════════════════════════════════════════════════
# 7. HEALTH SCORES
# ══════════════════════════════════════════════════════════════════════════════

def test_era_health_score_bonuses():
    assert calculate_era_health_score(era_breakdown(20, 15, 20, 25, 20)) == 70
    assert calculate_era_health_score(era_breakdown(10, 40, 25, 25, 0)) == 70

def test_era_health_score_floor():
    assert calculate_era_health_score(era_breakdown(ultra_modern=100)) == 50
    assert calculate_era_health_score(era_breakdown()) == 50

def test_era_health_score_four_era_lift():
    assert calculate_era_health_score(era_breakdown(2, 0, 1, 95, 2)) == 55

def test_concentration_health_score_curve():
    diversified = PositionConcentration(0, 10, 0, 20, 0, 30, ())
    assert calculate_concentration_health_score(diversified) == pytest.approx(90)
    single = PositionConcentration(0, 100, 0, 100, 0, 100, ())
    assert calculate_concentration_health_score(single) == pytest.approx(50)
    empty = PositionConcentration(0, 0, 0, 0, 0, 0, ())
    assert calculate_concentration_health_score(empty) == pytest.approx(95)

def test_asset_health_score_tiers_and_caps():
    assert calculate_asset_health_score(allocation(100, 0, 0)) == 95
    assert calculate_asset_health_score(allocation(55, 25, 20)) == 90
    assert calculate_asset_health_score(allocation(30, 0, 70)) == 60
    assert calculate_asset_health_score(allocation(20, 80, 0)) == 60
    assert calculate_asset_health_score(allocation(0, 0, 100)) == 60

@pytest.mark.parametrize('items', [
    [],
    [make_item('Lone raw', price=5000, card_number='1/1')],
    [make_item('Slab', price=1, grade='PSA 1')],
    [make_item(f'Box {i}', price=100, category='Base Set') for i in range(20)],
])
def test_health_scores_never_below_floor(items):
    h = calculate_health_score_breakdown(items, REF)
    for score in (h.asset_allocation, h.era_balance, h.concentration):
        assert 50 <= score <= 100
    assert isinstance(h.overall, int)
    assert 50 <= h.overall <= 100

def test_health_grade():
    assert health_score_grade(85) == 'Excellent'
    assert health_score_grade(65) == 'Good'
    assert health_score_grade(50) == 'Fair'
    assert health_score_grade(40) == 'Needs Attention'
    assert health_score_grade(10) == 'At Risk'

def test_round_half_up():
    assert round_half_up(54.5) == 55
    assert round_half_up(54.49) == 54


# ══════════════════════════════════════════════════════════════════════════════
# 8. MILESTONES & REBALANCING
# ══════════════════════════════════════════════════════════════════════════════

def test_milestone_takes_highest_tier():
    item = make_item('Big winner', qty=3, price=7.12, cost=1)
    assert item.gain_percent == pytest.approx(612)
    (m,) = find_profit_milestones([item])
    assert m.milestone == 500
    assert m.sell_half_units_sold == 1
    assert m.sell_half_units_remaining == 2
    assert m.sell_half_profit == pytest.approx(6.12)

def test_milestones_sorted_and_filtered():
    items = [make_item('A', price=300, cost=100), make_item('B', price=150, cost=100),
             make_item('C', price=450, cost=100)]
    ms = find_profit_milestones(items)
    assert [m.item.product_name for m in ms] == ['C', 'A']
    assert [m.milestone for m in ms] == [300, 200]

def test_rebalance_suggestions():
    s = generate_rebalance_suggestions(allocation(80, 10, 10), ALLOCATION_PRESETS['balanced'], 10000)
    assert [(x.category, x.action) for x in s] == [('sealed', 'sell'), ('slabs', 'redirect')]
    assert s[0].amount == pytest.approx(3000)
    assert s[1].amount == pytest.approx(2000)

def test_no_suggestion_inside_band():
    target = AllocationTarget(50, 30, 20)
    assert generate_rebalance_suggestions(allocation(55, 25, 20), target, 10000) == []

def test_allocation_status():
    assert allocation_status(52, 50) == 'On target'
    assert allocation_status(60, 50) == 'Slightly over'
    assert allocation_status(40, 50) == 'Slightly under'

def test_rebalance_plan():
    buckets = {'sealed': BucketStat(7000, 70, 1), 'slabs': BucketStat(2000, 20, 1),
               'raw_cards': BucketStat(1000, 10, 1)}
    plan = simulate_rebalance_plan(buckets, AllocationTarget(50, 30, 20), 10000,
                                   monthly_budget=500, target_months=6)
    rows = {r.key: r for r in plan.rows}
    assert rows['sealed'].is_overweight and rows['sealed'].monthly_share == 0
    assert rows['slabs'].is_underweight
    assert rows['slabs'].monthly_share == pytest.approx(250)
    assert rows['raw_cards'].months_needed == 4
    assert rows['raw_cards'].required_monthly == pytest.approx(1000 / 6)
    assert plan.estimated_months_to_balance == 4
    assert plan.total_monthly_required == pytest.approx(2000 / 6)

def test_rebalance_plan_for_eras():
    e = era_breakdown(0, 0, 0, 100, 0)
    plan = simulate_rebalance_plan(e.buckets(), EraAllocationTarget(**ERA_PRESETS['balanced']), 100)
    assert [r.key for r in plan.rows] == ['vintage', 'classic', 'modern', 'ultra_modern', 'current']
    assert sum(r.monthly_share for r in plan.rows) == pytest.approx(500)


# ══════════════════════════════════════════════════════════════════════════════
# 9. ERA WARNINGS, ACTIVITY, WINNERS
# ══════════════════════════════════════════════════════════════════════════════

def test_era_warnings():
    kinds = {w.type for w in generate_era_health_warnings(era_breakdown(5, 5, 20, 50, 20))}
    assert kinds == {'current_high', 'newer_era_high', 'older_era_low'}
    assert {w.type for w in generate_era_health_warnings(era_breakdown(30, 30, 20, 20, 0))} == {'newer_era_low'}

def test_newer_era_status():
    assert get_newer_era_status(era_breakdown(25, 25, 20, 25, 5))[1] == 'healthy'
    assert get_newer_era_status(era_breakdown(10, 10, 30, 50, 0))[1] == 'high'
    assert get_newer_era_status(era_breakdown(40, 30, 30, 0, 0))[1] == 'low'

def test_days_since_last_action():
    items = [make_item('A', date_added=REF - pd.Timedelta(days=90)),
             make_item('B', date_added=REF - pd.Timedelta(days=45))]
    assert calculate_days_since_last_action(items, REF) == 45
    assert calculate_days_since_last_action([make_item('C')], REF) == -1

def test_trading_frequency():
    base = pd.Timestamp('2026-01-01')
    busy = [make_item(f'I{i}', date_added=base + pd.Timedelta(days=i * 2)) for i in range(15)]
    steady = [make_item(f'I{i}', date_added=base + pd.Timedelta(days=i * 6)) for i in range(6)]
    assert calculate_trading_frequency(busy) == 'high'
    assert calculate_trading_frequency(steady) == 'medium'
    assert calculate_trading_frequency(busy[:1]) == 'low'

def test_cagr():
    item = make_item('A', price=400, cost=100, date_added=REF - pd.Timedelta(days=731))
    assert calculate_cagr(item, REF) == pytest.approx(100)
    assert calculate_cagr(make_item('B', date_added=REF - pd.Timedelta(days=100)), REF) is None
    assert calculate_cagr(make_item('C', cost=0, date_added=REF - pd.Timedelta(days=800)), REF) is None

def test_filter_winners():
    items = [make_item('A', price=150), make_item('B', price=50), make_item('C', price=400)]
    assert [i.product_name for i in filter_winners(items, 'winners')] == ['C', 'A']
    assert [i.product_name for i in filter_winners(items, 'underperforming')] == ['B']
    assert [i.product_name for i in filter_winners(items, 100)] == ['C']
    assert [i.product_name for i in filter_winners(items, 'all', 'total_market_value', False)] == ['B', 'A', 'C']
    with pytest.raises(ValueError):
        filter_winners(items, 'all', 'id')


# ══════════════════════════════════════════════════════════════════════════════
# 10. INSIGHTS & STATUS CHIPS
# ══════════════════════════════════════════════════════════════════════════════

def _insight_inputs(items):
    return (items, calculate_portfolio_summary(items), calculate_concentration_risk(items),
            find_profit_milestones(items), calculate_allocation_breakdown(items))

def _lone_box():
    return [make_item('Evolving Skies Booster Box', price=2000, cost=300,
                      date_added=REF - pd.Timedelta(days=100))]

def test_insights_priority_order_and_ids():
    insights = generate_insights(*_insight_inputs(_lone_box()), AllocationTarget(50, 30, 20), REF)
    assert [i.id for i in insights] == [
        'insight-profit-500', 'insight-concentration-top1',
        'insight-allocation-sealed', 'insight-rebalance',
        'insight-allocation-slabs', 'insight-allocation-raw_cards', 'insight-patience',
    ]
    assert [i.priority for i in insights] == ['high'] * 2 + ['medium'] * 2 + ['low'] * 3
    rebalance = next(i for i in insights if i.id == 'insight-rebalance')
    assert '$600' in rebalance.message
    assert 'graded cards' in rebalance.message
    assert insights[0].related_item_ids == ('item-Evolving Skies Booster Box',)

def test_insight_ids_are_stable():
    target = AllocationTarget(50, 30, 20)
    a = generate_insights(*_insight_inputs(_lone_box()), target, REF)
    b = generate_insights(*_insight_inputs(_lone_box()), target, REF + pd.Timedelta(days=1))
    assert [i.id for i in a] == [i.id for i in b]

def test_top3_insight_without_top1():
    items = [make_item(f'C{i}', price=p) for i, p in enumerate([18, 17, 16, 10, 10, 10, 10, 9])]
    insights = generate_insights(*_insight_inputs(items), AllocationTarget(100, 0, 0), REF)
    ids = [i.id for i in insights]
    assert 'insight-concentration-top3' in ids
    assert 'insight-concentration-top1' not in ids

def test_top1_and_top3_insights_fire_together():
    items = ([make_item('A', price=30), make_item('B', price=20), make_item('C', price=10)]
             + [make_item(f'D{i}', price=40 / 7) for i in range(7)])
    insights = generate_insights(*_insight_inputs(items), AllocationTarget(100, 0, 0), REF)
    by_id = {i.id: i for i in insights}
    assert by_id['insight-concentration-top1'].priority == 'high'
    assert by_id['insight-concentration-top3'].priority == 'medium'
    assert '60.0%' in by_id['insight-concentration-top3'].message

def test_status_chips_for_lone_box():
    items = _lone_box()
    chips = build_status_chips(items, calculate_concentration_risk(items),
                               find_profit_milestones(items), calculate_allocation_breakdown(items),
                               AllocationTarget(50, 30, 20))
    assert [c.id for c in chips] == ['overweight', 'concentration', 'milestone-500']

def test_status_chips_healthy():
    items = ([make_item(f'Booster Box {i}') for i in range(5)]
             + [make_item(f'Slab {i}', grade='PSA 10') for i in range(3)]
             + [make_item(f'Raw {i}', card_number=f'{i}/100') for i in range(2)])
    chips = build_status_chips(items, calculate_concentration_risk(items),
                               find_profit_milestones(items), calculate_allocation_breakdown(items),
                               AllocationTarget(50, 30, 20))
    assert [c.id for c in chips] == ['healthy']

def test_low_liquidity_chip():
    items = [make_item('Bulk lot', qty=20, price=10), make_item('Booster Box', price=100)]
    chips = build_status_chips(items, calculate_concentration_risk(items), [],
                               calculate_allocation_breakdown(items), AllocationTarget(100, 0, 0))
    assert 'low-liquidity' in [c.id for c in chips]

def _analysis(items, target=AllocationTarget(100, 0, 0)):
    return build_strengths_weaknesses(
        items, calculate_portfolio_summary(items), calculate_concentration_risk(items),
        calculate_allocation_breakdown(items), target)

def test_analysis_strengths():
    items = [make_item(f'Box {i}', category=f'Set {i % 5}', price=150) for i in range(8)]
    assert _analysis(items) == [
        ('Strong overall returns (+50.0%)', 'strength'),
        ('High win rate (100% of holdings profitable)', 'strength'),
        ('Well-diversified holdings', 'strength'),
        ('Good category diversity (5 sets)', 'strength'),
    ]

def test_analysis_weaknesses():
    items = [make_item('A', price=50), make_item('B', price=60), make_item('C', price=100)]
    assert _analysis(items, AllocationTarget(50, 30, 20)) == [
        ('Portfolio down 30.0%', 'weakness'),
        ('High concentration risk (47.6% in single position)', 'weakness'),
        ('2 positions down 30%+', 'weakness'),
        ('Low win rate (0% profitable)', 'weakness'),
        ('Allocation significantly off-target', 'weakness'),
    ]

def test_analysis_modest_return_and_moderate_concentration():
    items = [make_item('Top', price=22, cost=20)] + [make_item(f'O{i}', price=13, cost=13) for i in range(6)]
    texts = [p.text for p in _analysis(items)]
    assert 'Positive portfolio performance (+2.0%)' in texts
    assert 'Moderate concentration (22.0% in top holding)' in texts
    assert not any(t.startswith('High concentration') for t in texts)

@pytest.mark.parametrize('prices, expected', [
    ([600, 600, 450], '2 holdings at 500%+ gains'),
    ([450], '1 holding at 300%+ gains'),
])
def test_analysis_milestone_strength(prices, expected):
    items = [make_item(f'M{i}', price=p) for i, p in enumerate(prices)]
    texts = [p.text for p in _analysis(items)]
    assert expected in texts
    assert sum('%+ gains' in t for t in texts) == 1

def test_analysis_empty_portfolio():
    assert _analysis([]) == []


# ══════════════════════════════════════════════════════════════════════════════
# 11. STATE HOLDER
# ══════════════════════════════════════════════════════════════════════════════

def test_upload_swaps_snapshot():
    state = PortfolioState(reference_date=REF)
    state.upload_data(SAMPLE_CSV, 'sample.csv')
    first = state.snapshot
    assert len(state.items) == 4
    state.upload_data('Product Name,Quantity,Market Price\nA,1,10\n')
    assert state.snapshot is not first
    assert len(first.items) == 4
    assert [it.product_name for it in state.items] == ['A']

def test_failed_upload_replaces_old_items():
    state = PortfolioState(reference_date=REF)
    state.upload_data(SAMPLE_CSV)
    state.upload_data('Name,Qty\nA,1\n')
    assert state.items == ()
    assert not state.validation.is_valid
    assert state.column_mapping.detected[FIELD_PRODUCT_NAME] == 'Name'

def test_upload_file_rejects_undecodable_bytes():
    state = PortfolioState()
    result = state.upload_file(b'\xff\xfe\x00bad', 'bad.csv')
    assert not result.validation.is_valid
    assert state.items == ()

def test_clear_data():
    state = PortfolioState()
    state.upload_data(SAMPLE_CSV)
    state.clear_data()
    assert not state.has_data
    assert state.validation is None

def test_dismiss_insight_and_reset_on_upload():
    state = PortfolioState(reference_date=REF)
    state.upload_data(SAMPLE_CSV)
    first = state.insights[0].id
    state.dismiss_insight(first)
    assert first not in [i.id for i in state.insights]
    state.upload_data(SAMPLE_CSV)
    assert first in [i.id for i in state.insights]

def test_presets_and_custom_targets():
    state = PortfolioState()
    assert state.allocation_target == AllocationTarget(50, 30, 20)
    state.set_allocation_preset('conservative')
    assert state.allocation_target.sealed == 70
    state.set_custom_target({'sealed': 40, 'slabs': 40, 'raw_cards': 20})
    assert state.allocation_preset == 'custom'
    assert state.allocation_target.total == 100
    state.set_era_preset('aggressive')
    assert state.era_target.total == 100

@pytest.mark.parametrize('values', [
    {'sealed': 50, 'slabs': 30, 'raw_cards': 30},
    {'sealed': 120, 'slabs': -20, 'raw_cards': 0},
    {'sealed': 50, 'slabs': 50},
    {'sealed': 50, 'slabs': 30, 'raw_cards': 10, 'bulk': 10},
])
def test_invalid_custom_target_leaves_state_unchanged(values):
    state = PortfolioState()
    before = state.allocation_target
    with pytest.raises(TargetError):
        state.set_custom_target(values)
    assert state.allocation_target == before

def test_invalid_era_target_and_preset():
    state = PortfolioState()
    with pytest.raises(TargetError):
        state.set_custom_era_target({'vintage': 100})
    with pytest.raises(TargetError):
        state.set_era_preset('yolo')
    with pytest.raises(TargetError):
        state.set_allocation_preset('yolo')

def test_save_hook_failure_is_swallowed(caplog):
    def broken(items):
        raise RuntimeError('backend down')
    state = PortfolioState(save_hook=broken)
    result = state.upload_data(SAMPLE_CSV)
    state.last_save.result(timeout=5)
    assert result.validation.is_valid
    assert len(state.items) == 4
    assert 'save hook failed' in caplog.text

def test_save_hook_receives_items():
    saved = []
    state = PortfolioState(save_hook=saved.append)
    state.upload_data(SAMPLE_CSV)
    state.last_save.result(timeout=5)
    assert saved == [state.items]

def test_slow_save_hook_does_not_block_upload():
    release = threading.Event()
    def slow(items):
        release.wait(timeout=5)
    state = PortfolioState(save_hook=slow)
    result = state.upload_data(SAMPLE_CSV)
    assert result.validation.is_valid
    assert not state.last_save.done()
    release.set()
    state.last_save.result(timeout=5)

def test_custom_target_survives_preset_switch():
    state = PortfolioState()
    state.set_custom_target({'sealed': 40, 'slabs': 40, 'raw_cards': 20})
    state.set_allocation_preset('conservative')
    state.set_allocation_preset('custom')
    assert state.allocation_target == AllocationTarget(40, 40, 20)
    era = {'vintage': 10, 'classic': 10, 'modern': 30, 'ultra_modern': 40, 'current': 10}
    state.set_custom_era_target(era)
    state.set_era_preset('aggressive')
    state.set_era_preset('custom')
    assert state.era_target.as_dict() == era

def test_strengths_weaknesses_follow_snapshot():
    state = PortfolioState(reference_date=REF)
    assert state.strengths_weaknesses == []
    state.upload_data(SAMPLE_CSV)
    assert state.strengths_weaknesses

def test_derived_reads_follow_snapshot():
    state = PortfolioState(reference_date=REF)
    state.upload_data(SAMPLE_CSV)
    assert state.summary.total_holdings == 4
    assert state.era_allocation.vintage.count == 1
    assert 50 <= state.health.overall <= 100
    assert state.status_chips


# ══════════════════════════════════════════════════════════════════════════════
# 12. UPLOAD BOOKKEEPING
# ══════════════════════════════════════════════════════════════════════════════

def test_same_file_imports_once():
    session = {}
    token = upload_token('cards.csv', SAMPLE_CSV.encode())
    assert is_new_upload(session, token)
    assert not is_new_upload(session, token)

def test_corrected_file_with_same_name_and_size_is_new():
    session = {}
    a = upload_token('cards.csv', b'Product Name,Quantity,Market Price\nA,1,10\n')
    b = upload_token('cards.csv', b'Product Name,Quantity,Market Price\nA,1,20\n')
    assert a[:2] == b[:2]
    assert is_new_upload(session, a)
    assert is_new_upload(session, b)

def test_clear_stays_cleared_until_next_upload():
    session = {}
    state = PortfolioState()
    key = uploader_key(session)
    token = upload_token('cards.csv', SAMPLE_CSV.encode())
    if is_new_upload(session, token):
        state.upload_data(SAMPLE_CSV)
    state.clear_data()
    reset_uploader(session)
    assert uploader_key(session) != key
    assert 'upload_token' not in session
    assert not state.has_data

def test_validation_error_markdown():
    errors = ['Missing required column(s): Market Price. Detected headers: "Name", "Qty"']
    text = validation_error_markdown(errors, has_data=False)
    assert 'The file could not be imported.' in text
    assert '"Name"' in text
    assert '&quot;' not in text
    assert 'Some rows could not be imported.' in validation_error_markdown(['Row 3: bad'], True)
