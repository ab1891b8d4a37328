"""
Field normalization: raw rows -> typed requester / provider / work unit records.

Malformed cells never abort a batch. Each one degrades to an empty or default
value and leaves a NormalizationNote behind; only a header that lacks required
columns raises.

Grammars:
- comma lists: split on ",", trim, drop empty tokens
- numeric lists, first structurally matching syntax wins:
    "a-b" inclusive range (at most MAX_PHASE_SPAN phases), "[..]" literal array,
    "1, 2, x" comma integers
- attribute maps: JSON object text, anything else becomes {}
- integers: blank/unparsable -> 0, non-integral -> rounded half-up
"""

from __future__ import annotations

import json
import logging
import math
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import MissingColumnsError
from .models import RECORD_TYPES, EntityKind, NormalizationNote
from .rules import MAX_PHASE_SPAN, REQUIRED_COLUMNS

logger = logging.getLogger(__name__)

RANGE_PATTERN = re.compile(r"^(\d+)\s*-\s*(\d+)$")
INTEGER_PATTERN = re.compile(r"^[+-]?\d+$")

# (value, issue, action); issue is None when the cell was clean
Parsed = Tuple[Any, Optional[str], Optional[str]]


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def round_half_up(number: float) -> int:
    return int(math.floor(number + 0.5))


def _as_phase(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and INTEGER_PATTERN.match(value.strip()):
        return int(value.strip())
    return None


# --- grammars ---


def _text(value: Any) -> Parsed:
    if _is_blank(value):
        return "", None, None
    return str(value).strip(), None, None


def _integer(value: Any) -> Parsed:
    if _is_blank(value):
        return 0, "blank_number", "defaulted_to_0"
    if isinstance(value, bool):
        return 0, "not_a_number", "defaulted_to_0"
    if isinstance(value, int):
        return value, None, None

    if isinstance(value, float):
        number = value
    else:
        text = str(value).strip()
        if INTEGER_PATTERN.match(text):
            return int(text), None, None
        try:
            number = float(text)
        except ValueError:
            return 0, "not_a_number", "defaulted_to_0"

    if not math.isfinite(number):
        return 0, "not_a_number", "defaulted_to_0"
    if number.is_integer():
        return int(number), None, None
    rounded = round_half_up(number)
    return rounded, "non_integer", f"rounded_to_{rounded}"


def _comma_list(value: Any) -> Parsed:
    if _is_blank(value):
        return [], None, None
    if isinstance(value, (list, tuple)):
        tokens = [str(item).strip() for item in value if not _is_blank(item)]
    else:
        tokens = [token.strip() for token in str(value).split(",")]
    return [token for token in tokens if token], None, None


def _numeric_list(value: Any) -> Parsed:
    if _is_blank(value):
        return [], None, None

    if isinstance(value, (list, tuple)):
        phases = [_as_phase(item) for item in value]
        kept = [p for p in phases if p is not None]
        if len(kept) != len(phases):
            return kept, "non_numeric_tokens", "dropped"
        return kept, None, None

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        phase = _as_phase(value)
        if phase is None:
            return [], "not_a_number", "defaulted_to_empty"
        return [phase], None, None

    text = str(value).strip()

    # (a) inclusive range
    match = RANGE_PATTERN.match(text)
    if match:
        start, end = int(match.group(1)), int(match.group(2))
        if end < start:
            return [], "inverted_range", "defaulted_to_empty"
        if end - start + 1 > MAX_PHASE_SPAN:
            return [], "oversized_range", "defaulted_to_empty"
        return list(range(start, end + 1)), None, None

    # (b) bracketed literal array
    if text.startswith("["):
        try:
            items = json.loads(text)
        except ValueError:
            return [], "malformed_array", "defaulted_to_empty"
        if not isinstance(items, list):
            return [], "malformed_array", "defaulted_to_empty"
        return _numeric_list(items)

    # (c) comma-separated integers
    tokens = [token.strip() for token in text.split(",") if token.strip()]
    kept = [int(token) for token in tokens if INTEGER_PATTERN.match(token)]
    if len(kept) != len(tokens):
        return kept, "non_numeric_tokens", "dropped"
    return kept, None, None


def _attributes(value: Any) -> Parsed:
    if _is_blank(value):
        return {}, None, None
    if isinstance(value, dict):
        return dict(value), None, None
    try:
        parsed = json.loads(str(value))
    except ValueError:
        return {}, "malformed_json", "defaulted_to_empty"
    if not isinstance(parsed, dict):
        return {}, "not_an_object", "defaulted_to_empty"
    return parsed, None, None


GRAMMARS = {
    "PriorityLevel": _integer,
    "MaxLoadPerPhase": _integer,
    "Duration": _integer,
    "MaxConcurrent": _integer,
    "RequestedTaskIDs": _comma_list,
    "Skills": _comma_list,
    "RequiredSkills": _comma_list,
    "AvailableSlots": _numeric_list,
    "PreferredPhases": _numeric_list,
    "AttributesJSON": _attributes,
}


def parse_comma_list(value: Any) -> List[str]:
    return _comma_list(value)[0]


def parse_numeric_list(value: Any) -> List[int]:
    return _numeric_list(value)[0]


def parse_attributes(value: Any) -> Dict[str, Any]:
    return _attributes(value)[0]


def parse_integer(value: Any) -> int:
    return _integer(value)[0]


def normalize_field(kind: EntityKind, column: str, value: Any) -> Tuple[Any, Optional[NormalizationNote]]:
    """Coerce one cell of `column` through its grammar."""
    grammar = GRAMMARS.get(column, _text)
    parsed, issue, action = grammar(value)
    if issue is None:
        return parsed, None
    shown = None if value is None else str(value)[:80]
    return parsed, NormalizationNote(entity_kind=kind, column=column, issue=issue, value=shown, action=action)


# --- records ---


def _canonical(column: str) -> str:
    return re.sub(r"[^a-z0-9]", "", column.lower())


def resolve_header(kind: EntityKind, header: Iterable[str]) -> Dict[str, str]:
    """
    Map known columns to the header names actually present.

    Raises MissingColumnsError when a required column cannot be found.
    """
    columns = RECORD_TYPES[kind].COLUMNS
    present = {_canonical(name): name for name in header}
    resolved = {}
    for column in columns:
        found = present.get(_canonical(column))
        if found is not None:
            resolved[column] = found

    missing = [column for column in REQUIRED_COLUMNS[kind.value] if column not in resolved]
    if missing:
        raise MissingColumnsError(kind.value, missing)
    return resolved


def normalize_record(
    kind: EntityKind,
    raw: Dict[str, Any],
    row: Optional[int] = None,
    header_map: Optional[Dict[str, str]] = None,
):
    """Build one typed record from a raw row. Returns (record, notes)."""
    record_type = RECORD_TYPES[kind]
    if header_map is None:
        header_map = {column: column for column in record_type.COLUMNS}

    values = {}
    notes: List[NormalizationNote] = []
    for column, attribute in record_type.COLUMNS.items():
        source = header_map.get(column)
        cell = raw.get(source) if source is not None else None
        values[attribute], note = normalize_field(kind, column, cell)
        if note is not None:
            note.row = row
            notes.append(note)

    return record_type(**values), notes


def normalize_requester(raw: Dict[str, Any]):
    return normalize_record(EntityKind.REQUESTER, raw)[0]


def normalize_provider(raw: Dict[str, Any]):
    return normalize_record(EntityKind.PROVIDER, raw)[0]


def normalize_work_unit(raw: Dict[str, Any]):
    return normalize_record(EntityKind.WORK_UNIT, raw)[0]


def normalize_rows(kind: EntityKind, header: Sequence[str], rows: Iterable[Dict[str, Any]]):
    """
    Normalize every row of one upload.

    Returns (records, notes). An upload with no header at all yields nothing;
    one whose header lacks a required column raises MissingColumnsError.
    """
    if not header:
        return [], []

    header_map = resolve_header(kind, header)
    records = []
    notes: List[NormalizationNote] = []
    for i, raw in enumerate(rows):
        record, record_notes = normalize_record(kind, raw, row=i, header_map=header_map)
        records.append(record)
        notes.extend(record_notes)

    if notes:
        logger.info("normalized %d %s rows, %d cell(s) degraded", len(records), kind.value, len(notes))
    return records, notes
