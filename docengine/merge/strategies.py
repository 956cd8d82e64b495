"""Fold one chunk's extracted fields into the fields accumulated so far.

Each document type names a strategy and the fields it treats specially
(see ``MergeRules``). All functions here are pure: inputs are never
mutated and the same arguments always give the same result.
"""

import copy
import logging
import re
from typing import Any

from docengine.agents.models import INTERNAL_KEYS
from docengine.core.config import DocumentRegistry, MergeRules, load_document_registry

logger = logging.getLogger(__name__)

_NUMBER_NOISE_RE = re.compile(r"[,\s₹$€£]|^(?:rs\.?|inr)", re.IGNORECASE)


# ── Public API ───────────────────────────────────────────────────────


def merge_fields(
    existing: dict | None,
    incoming: dict,
    document_type: str,
    registry: DocumentRegistry | None = None,
) -> dict:
    """Merge ``incoming`` chunk fields into ``existing`` for ``document_type``."""
    registry = registry or load_document_registry()
    rules = registry.merge_rules(document_type)
    existing = existing or {}

    if incoming.get("parse_error"):
        if existing:
            logger.info("Chunk result unparseable, keeping %d accumulated fields", len(existing))
            return copy.deepcopy(existing)
        return copy.deepcopy(incoming)

    new_fields = _normalize_numbers(_strip_internal(incoming), rules)

    if not existing or existing.get("parse_error"):
        return new_fields

    reducer = _REDUCERS[rules.strategy]
    return reducer(copy.deepcopy(existing), new_fields, rules)


# ── Reducers ─────────────────────────────────────────────────────────


def merge_ledger(merged: dict, new: dict, rules: MergeRules) -> dict:
    """Statements with line items: lists grow, balances track the latest page."""
    for field in rules.list_fields:
        if isinstance(new.get(field), list):
            merged[field] = _as_list(merged.get(field)) + new[field]

    for field in rules.latest_fields:
        if not _is_blank(new.get(field)):
            merged[field] = new[field]

    for field in rules.first_seen_fields:
        if _is_blank(merged.get(field)) and not _is_blank(new.get(field)):
            merged[field] = new[field]

    special = set(rules.list_fields) | set(rules.latest_fields) | set(rules.first_seen_fields)
    _fill_blanks(merged, new, skip=special)
    return merged


def merge_sectioned_report(merged: dict, new: dict, rules: MergeRules) -> dict:
    """Reports split in sections: score once, entries appended, totals summed."""
    for field in rules.first_seen_fields:
        if _is_blank(merged.get(field)) and not _is_blank(new.get(field)):
            merged[field] = new[field]

    for field in rules.list_fields:
        if isinstance(new.get(field), list):
            merged[field] = _as_list(merged.get(field)) + new[field]

    for field in rules.sum_fields:
        if _is_number(new.get(field)):
            merged[field] = (_to_number(merged.get(field)) or 0) + new[field]

    for field in rules.max_fields:
        if _is_number(new.get(field)):
            merged[field] = max(_to_number(merged.get(field)) or 0, new[field])

    for field in rules.text_fields:
        value = new.get(field)
        if isinstance(value, str) and value:
            if merged.get(field):
                merged[field] = f"{merged[field]}{rules.text_separator}{value}"
            else:
                merged[field] = value

    special = (
        set(rules.first_seen_fields)
        | set(rules.list_fields)
        | set(rules.sum_fields)
        | set(rules.max_fields)
        | set(rules.text_fields)
    )
    _fill_blanks(merged, new, skip=special)
    return merged


def merge_single_statement(merged: dict, new: dict, rules: MergeRules) -> dict:
    """Fields that appear once: the first real value wins."""
    _fill_blanks(merged, new)
    return merged


def merge_generic(merged: dict, new: dict, rules: MergeRules) -> dict:
    """Lists concatenate; scalars keep the first real value."""
    for key, value in new.items():
        if isinstance(value, list):
            merged[key] = _as_list(merged.get(key)) + value
    _fill_blanks(merged, new, skip={k for k, v in new.items() if isinstance(v, list)})
    return merged


_REDUCERS = {
    "ledger": merge_ledger,
    "sectioned_report": merge_sectioned_report,
    "single_statement": merge_single_statement,
    "generic": merge_generic,
}


# ── Helpers ──────────────────────────────────────────────────────────


def _is_blank(value: Any) -> bool:
    """None, empty string and zero count as 'not supplied'."""
    if value is None or value == "":
        return True
    return isinstance(value, (int, float)) and value == 0


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _to_number(value: Any) -> int | float | None:
    if _is_number(value):
        return value
    if isinstance(value, str):
        cleaned = _NUMBER_NOISE_RE.sub("", value.strip())
        if not cleaned:
            return None
        try:
            number = float(cleaned)
        except ValueError:
            return None
        return int(number) if number.is_integer() and "." not in cleaned else number
    return None


def _as_list(value: Any) -> list:
    return list(value) if isinstance(value, list) else []


def _fill_blanks(merged: dict, new: dict, skip: set[str] = frozenset()) -> None:
    for key, value in new.items():
        if key in skip or _is_blank(value):
            continue
        if _is_blank(merged.get(key)):
            merged[key] = value


def _strip_internal(fields: dict) -> dict:
    return {k: copy.deepcopy(v) for k, v in fields.items() if k not in INTERNAL_KEYS}


def _normalize_numbers(fields: dict, rules: MergeRules) -> dict:
    """Coerce numeric strings in designated numeric fields ("1,20,000.50" → 120000.5)."""
    for field in rules.numeric_fields:
        value = fields.get(field)
        if isinstance(value, str):
            number = _to_number(value)
            if number is not None:
                fields[field] = number
    return fields
