"""
Cardfolio — Data Ingestion
===========================
Pure Python CSV import pipeline. No Streamlit dependency — fully importable
and testable without a running server.

Public API
----------
  decode_upload(file_bytes)                         → str
  parse_csv(text)                                   → ParsedCSV(headers, rows)
  detect_column_mappings(text)                      → ColumnMapping
  process_portfolio_data(text, column_override)     → ImportResult(items, validation, detected_columns)

Internal helpers (also importable for use in analysis functions and tests)
  sanitize_numeric(val)                             → float
  parse_date(val)                                   → pd.Timestamp | None
  parse_csv_line(line)                              → list[str]
  find_column(headers, field)                       → str | None
  map_columns(headers)                              → ColumnMapping
"""

from __future__ import annotations

import logging
import math
import re
import uuid
from dataclasses import replace
from typing import Any, Mapping, Optional

import pandas as pd

from config import (
    CANONICAL_FIELDS, COLUMN_SYNONYMS, REQUIRED_FIELDS,
    FIELD_PRODUCT_NAME, FIELD_CATEGORY, FIELD_QUANTITY, FIELD_MARKET_PRICE,
    FIELD_AVG_COST, FIELD_GRADE, FIELD_CARD_NUMBER, FIELD_DATE_ADDED,
    CURRENCY_SYMBOLS, THOUSANDS_SEP, EMPTY_NUMERIC_TOKENS,
    DEFAULT_CATEGORY,
    INTEGRITY_TOLERANCE,
)
from models import ParsedCSV, ColumnMapping, ValidationResult, PortfolioItem, ImportResult

logger = logging.getLogger(__name__)


# ── CSV parse exceptions ──────────────────────────────────────────────────────

class CSVParseError(Exception):
    """Base exception for all ingestion failures.
    Caught at the process_portfolio_data() boundary and turned into a
    validation message. All subclasses carry a message safe to show directly
    to the user."""


class CSVEncodingError(CSVParseError):
    """Upload bytes could not be decoded as UTF-8 text."""


class CSVStructureError(CSVParseError):
    """File has fewer than two non-blank lines — no header, or no data rows."""


class CSVValueError(CSVParseError):
    """A numeric cell could not be converted to a number.
    raw_value is the cell exactly as it appeared in the file, so the caller
    can report the originating row."""

    def __init__(self, message: str, raw_value: Any = None):
        super().__init__(message)
        self.raw_value = raw_value


# ── Cell-level helpers ────────────────────────────────────────────────────────

_STRIP_TABLE = str.maketrans('', '', CURRENCY_SYMBOLS + THOUSANDS_SEP)
_LINE_BREAK  = re.compile(r'\r?\n')


def sanitize_numeric(val: Any) -> float:
    """
    Parse a spreadsheet cell like '$1,234.56' to float.

    None / '' → 0. Numbers pass through (NaN → 0). Strings lose currency
    symbols, thousands separators and all whitespace; '' or '-' after
    stripping → 0. Anything else that float() rejects raises CSVValueError.
    """
    if val is None or (isinstance(val, str) and val == ''):
        return 0.0
    if isinstance(val, bool):
        return float(val)
    if isinstance(val, (int, float)):
        return 0.0 if math.isnan(val) else float(val)

    cleaned = ''.join(str(val).translate(_STRIP_TABLE).split())
    if cleaned in EMPTY_NUMERIC_TOKENS:
        return 0.0
    # float() also takes '1_000' digit grouping; a spreadsheet cell never does.
    if '_' in cleaned:
        raise CSVValueError(f"Cannot parse numeric value: '{val}'", raw_value=val)
    try:
        parsed = float(cleaned)
    except ValueError:
        raise CSVValueError(f"Cannot parse numeric value: '{val}'", raw_value=val) from None
    # float() accepts 'nan' / 'inf' spellings; a spreadsheet cell never means those.
    if not math.isfinite(parsed):
        raise CSVValueError(f"Cannot parse numeric value: '{val}'", raw_value=val)
    return parsed


def parse_date(val: Any) -> Optional[pd.Timestamp]:
    """
    Best-effort date parse. Blank → None; unparseable → None (never raises).
    Timezone-aware values are converted to naive UTC so every date compares
    against every other without mixed-tz errors.
    """
    if val is None:
        return None
    text = str(val).strip()
    if not text:
        return None
    ts = pd.to_datetime(text, errors='coerce')
    if pd.isna(ts):
        return None
    if ts.tzinfo is not None:
        ts = ts.tz_convert('UTC').tz_localize(None)
    return ts


# ── Tokenizer ─────────────────────────────────────────────────────────────────

def decode_upload(file_bytes: bytes) -> str:
    """Decode uploaded bytes as UTF-8 (a leading BOM is dropped)."""
    try:
        return file_bytes.decode('utf-8-sig')
    except UnicodeDecodeError:
        raise CSVEncodingError(
            "File is not valid UTF-8. This usually means the CSV was opened "
            "in Excel and re-saved with a different encoding. "
            "Re-export it from your collection tracker, or save it as 'CSV UTF-8'."
        ) from None


def _non_blank_lines(text: str) -> list[str]:
    return [ln for ln in _LINE_BREAK.split(text) if ln.strip() != '']


def parse_csv_line(line: str) -> list[str]:
    """
    Split one CSV line into trimmed fields.

    A doubled quote inside a quoted field is a literal quote; any other quote
    toggles the in-quotes state; a comma separates fields only outside quotes.
    """
    fields: list[str] = []
    current: list[str] = []
    in_quotes = False
    i = 0
    n = len(line)
    while i < n:
        ch = line[i]
        if ch == '"' and in_quotes and i + 1 < n and line[i + 1] == '"':
            current.append('"')
            i += 1
        elif ch == '"':
            in_quotes = not in_quotes
        elif ch == ',' and not in_quotes:
            fields.append(''.join(current).strip())
            current = []
        else:
            current.append(ch)
        i += 1
    fields.append(''.join(current).strip())
    return fields


def parse_csv(text: str) -> ParsedCSV:
    """
    Split raw file text into a header row and row dicts keyed by header text.

    Raises
    ------
    CSVStructureError — fewer than two non-blank lines.
    """
    lines = _non_blank_lines(text)
    if len(lines) < 2:
        raise CSVStructureError('CSV file must contain headers and at least one data row')

    headers = tuple(parse_csv_line(lines[0]))
    rows = []
    for line in lines[1:]:
        values = parse_csv_line(line)
        rows.append({h: (values[i] if i < len(values) else '') for i, h in enumerate(headers)})
    return ParsedCSV(headers=headers, rows=tuple(rows))


# ── Column mapper ─────────────────────────────────────────────────────────────

def find_column(headers, field: str) -> Optional[str]:
    """
    Return the header that best matches a canonical field, or None.

    Pass 1 — exact case-insensitive match, synonyms in listed order.
    Pass 2 — substring containment in either direction, synonyms in listed
    order, headers in file order. Blank headers never match in pass 2.
    """
    headers    = list(headers)
    normalized = [h.strip().lower() for h in headers]
    synonyms   = COLUMN_SYNONYMS.get(field, ())

    for syn in synonyms:
        for orig, norm in zip(headers, normalized):
            if norm == syn:
                return orig

    for syn in synonyms:
        for orig, norm in zip(headers, normalized):
            if norm and (syn in norm or norm in syn):
                return orig
    return None


def map_columns(headers) -> ColumnMapping:
    headers = tuple(headers)
    detected = {f: find_column(headers, f) for f in CANONICAL_FIELDS}
    logger.debug('Column mapping for headers %s: %s', headers, detected)
    return ColumnMapping(headers=headers, detected=detected)


def detect_column_mappings(text: str) -> ColumnMapping:
    """
    Column mapping for a file, computable even when the file has no data rows
    or required fields are missing — the upload surface uses it to explain
    failures (which headers exist, which canonical fields matched).
    """
    lines = _non_blank_lines(text)
    headers = parse_csv_line(lines[0]) if lines else []
    return map_columns(headers)


def _override_mapping(headers, column_override: Mapping[str, Optional[str]]) -> ColumnMapping:
    detected = {f: column_override.get(f) or None for f in CANONICAL_FIELDS}
    return ColumnMapping(headers=tuple(headers), detected=detected)


def _missing_columns_error(mapping: ColumnMapping, missing: list[str]) -> str:
    labels = ', '.join(REQUIRED_FIELDS[f] for f in missing)
    found  = ', '.join(f'"{h}"' for h in mapping.headers) or '(none)'
    return f'Missing required column(s): {labels}. Detected headers: {found}'


# ── Row → item ────────────────────────────────────────────────────────────────

def _cell(row: Mapping[str, str], header: Optional[str]) -> str:
    if not header:
        return ''
    return row.get(header, '') or ''


def _non_negative(value: float, label: str, raw: Any) -> float:
    if value < 0:
        raise CSVValueError(f"{label} cannot be negative: '{raw}'", raw_value=raw)
    return value


def build_item(row: Mapping[str, str], mapping: ColumnMapping, item_id: str) -> PortfolioItem:
    """
    Build one PortfolioItem from a row dict. Raises CSVValueError when a
    numeric cell is unparseable or negative; the caller owns the row number.
    """
    cols = mapping.detected
    raw_qty   = _cell(row, cols.get(FIELD_QUANTITY))
    raw_price = _cell(row, cols.get(FIELD_MARKET_PRICE))
    raw_cost  = _cell(row, cols.get(FIELD_AVG_COST))

    quantity   = _non_negative(sanitize_numeric(raw_qty),   'Quantity',     raw_qty)
    price      = _non_negative(sanitize_numeric(raw_price), 'Market price', raw_price)
    avg_cost   = _non_negative(sanitize_numeric(raw_cost),  'Average cost', raw_cost)

    return PortfolioItem(
        id=item_id,
        product_name=_cell(row, cols.get(FIELD_PRODUCT_NAME)),
        category=_cell(row, cols.get(FIELD_CATEGORY)) or DEFAULT_CATEGORY,
        quantity=quantity,
        market_price=price,
        average_cost_paid=avg_cost,
        grade=_cell(row, cols.get(FIELD_GRADE)),
        card_number=_cell(row, cols.get(FIELD_CARD_NUMBER)),
        date_added=parse_date(_cell(row, cols.get(FIELD_DATE_ADDED))),
    )


# ── Public entry point ────────────────────────────────────────────────────────

def process_portfolio_data(text: str,
                           column_override: Optional[Mapping[str, Optional[str]]] = None
                           ) -> ImportResult:
    """
    Turn raw CSV text into classified PortfolioItems plus a validation report.

    Steps
    -----
    1. Tokenize. A structural failure returns at once with no items.
    2. Resolve the column mapping (or use column_override verbatim).
    3. Missing Product Name / Quantity / Market Price columns → invalid,
       no items; the error lists the missing fields and the actual headers.
    4. Build one item per row with a non-blank product name. A row whose
       numeric cell fails to parse is skipped with a 'Row N: ...' error
       (N counts the header as row 1) and the import continues.
    5. Re-issue every item with its portfolio weight against the final total.
    6. Cross-check the running total against a batch re-sum (0.1% tolerance).
    7. No items → 'No valid items found in the CSV file'.

    Never raises for data-shape problems — every anticipated failure becomes
    a ValidationResult entry. is_valid is False whenever any error exists.
    """
    errors:   list[str] = []
    warnings: list[str] = []

    # ── Step 1: structure ──────────────────────────────────────────────────
    try:
        parsed = parse_csv(text)
    except CSVParseError as exc:
        logger.warning('CSV import rejected: %s', exc)
        return ImportResult(
            items=(),
            validation=ValidationResult(False, (str(exc),), ()),
            detected_columns=detect_column_mappings(text),
        )

    # ── Steps 2–3: columns ─────────────────────────────────────────────────
    if column_override is not None:
        mapping = _override_mapping(parsed.headers, column_override)
    else:
        mapping = map_columns(parsed.headers)

    missing = mapping.missing(REQUIRED_FIELDS)
    if missing:
        msg = _missing_columns_error(mapping, missing)
        logger.warning('CSV import rejected: %s', msg)
        return ImportResult(
            items=(),
            validation=ValidationResult(False, (msg,), ()),
            detected_columns=mapping,
        )

    if not mapping.detected.get(FIELD_AVG_COST):
        warnings.append(
            'No cost column detected — average cost paid defaults to $0 and '
            'profit metrics are disabled for this import.'
        )

    # ── Step 4: rows ───────────────────────────────────────────────────────
    import_token = uuid.uuid4().hex[:8]
    name_col = mapping.detected[FIELD_PRODUCT_NAME]
    date_col = mapping.detected.get(FIELD_DATE_ADDED)

    items: list[PortfolioItem] = []
    running_total = 0.0
    skipped_blank = 0
    bad_dates     = 0
    for index, row in enumerate(parsed.rows):
        if not _cell(row, name_col).strip():
            skipped_blank += 1
            continue
        try:
            item = build_item(row, mapping, item_id=f'item-{index}-{import_token}')
        except CSVValueError as exc:
            errors.append(f'Row {index + 2}: {exc}')
            logger.warning('Skipping row %d: %s', index + 2, exc)
            continue
        if date_col and _cell(row, date_col).strip() and item.date_added is None:
            bad_dates += 1
        items.append(item)
        running_total += item.total_market_value

    if bad_dates:
        warnings.append(
            f'{bad_dates} row(s) have a date that could not be read; '
            'those items are treated as undated.'
        )

    # ── Step 5: weights against the final total ────────────────────────────
    items = [replace(it, portfolio_total=running_total) for it in items]

    # ── Step 6: integrity cross-check ──────────────────────────────────────
    recalculated = sum(it.total_market_value for it in items)
    tolerance    = running_total * INTEGRITY_TOLERANCE
    if abs(recalculated - running_total) > tolerance:
        msg = (f'Data parsing mismatch: aggregated total (${recalculated:,.2f}) '
               f'differs from running sum (${running_total:,.2f})')
        errors.append(msg)
        logger.error(msg)

    # ── Step 7: empty result ───────────────────────────────────────────────
    if not items:
        errors.append('No valid items found in the CSV file')

    logger.info(
        'Imported %d item(s) from %d row(s): %d blank, %d error(s), total $%.2f',
        len(items), len(parsed.rows), skipped_blank, len(errors), running_total,
    )
    return ImportResult(
        items=tuple(items),
        validation=ValidationResult(not errors, tuple(errors), tuple(warnings)),
        detected_columns=mapping,
    )
