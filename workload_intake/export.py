"""
Export bundle and per-collection CSV rendering.

Nothing is exported while an error-severity diagnostic remains; warnings and
info never block.
"""

from __future__ import annotations

import csv
import io
import json
from datetime import datetime, timezone
from typing import Optional

from .errors import ExportBlockedError
from .models import Dataset, EntityKind, ExportBundle, ExportMetadata, RECORD_TYPES
from .rules import NORMALIZED_DELIMITER, SCHEMA_VERSION, TARGET_ENCODING
from .validate import summarize, validate_dataset


def _ensure_exportable(dataset: Dataset):
    # stored session diagnostics may predate edits and single fixes
    summary = summarize(validate_dataset(dataset.requesters, dataset.providers, dataset.work_units))
    if not summary.passed:
        raise ExportBlockedError(summary.errors)
    return summary


def build_export(dataset: Dataset, now: Optional[datetime] = None) -> ExportBundle:
    summary = _ensure_exportable(dataset)
    now = now or datetime.now(timezone.utc)
    return ExportBundle(
        clients=dataset.requesters,
        workers=dataset.providers,
        tasks=dataset.work_units,
        rules=dataset.rules,
        prioritization=dataset.weights,
        metadata=ExportMetadata(
            export_timestamp=now.isoformat(),
            schema_version=SCHEMA_VERSION,
            validation_passed=summary.passed,
            total_errors=summary.errors,
            total_warnings=summary.warnings,
        ),
    )


def _cell(value) -> str:
    if isinstance(value, dict):
        return json.dumps(value, sort_keys=True) if value else ""
    if isinstance(value, list):
        if value and all(isinstance(v, int) for v in value):
            return json.dumps(value)
        return ",".join(str(v) for v in value)
    return str(value)


def render_csv(dataset: Dataset, kind: EntityKind) -> bytes:
    """
    One collection as UTF-8 (with BOM) CSV, columns in upload layout.

    Numeric lists are written in bracketed form so they re-ingest unchanged.
    """
    _ensure_exportable(dataset)
    columns = RECORD_TYPES[kind].COLUMNS

    outp = io.StringIO(newline="")
    writer = csv.writer(outp, delimiter=NORMALIZED_DELIMITER, lineterminator="\n")
    writer.writerow(list(columns))
    for record in dataset.collection(kind):
        writer.writerow([_cell(getattr(record, attribute)) for attribute in columns.values()])
    return outp.getvalue().encode(TARGET_ENCODING)
