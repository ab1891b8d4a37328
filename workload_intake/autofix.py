"""
Auto-fix resolution.

A fix is a whole-field replacement computed from the diagnostic and the
current value of the field. Resolution is deterministic and idempotent:
resolving against an already valid value yields that same value.

Applying a fix drops the satisfied diagnostic from the outstanding list
without re-running validation; callers re-validate to confirm global
consistency.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

from .models import Dataset, Diagnostic, EntityKind, FieldUpdate, FixResult
from .normalize import round_half_up
from .rules import (
    DEFAULT_AVAILABLE_SLOTS,
    MAX_PHASE_SPAN,
    MIN_CONCURRENT,
    MIN_DURATION,
    MIN_LOAD_PER_PHASE,
    PRIORITY_MAX,
    PRIORITY_MIN,
)
from .validate import locate

logger = logging.getLogger(__name__)

MANUAL_REVIEW = "manual review required"


def clamp_priority(value) -> int:
    return max(PRIORITY_MIN, min(PRIORITY_MAX, round_half_up(value)))


def _reduce_load(record) -> int:
    slots = len(set(record.available_slots))
    return max(MIN_LOAD_PER_PHASE, min(record.max_load_per_phase, slots))


def _extend_slots(record) -> Optional[List[int]]:
    if record.max_load_per_phase > MAX_PHASE_SPAN:
        return None
    slots = sorted(set(record.available_slots))
    if len(slots) >= record.max_load_per_phase:
        return list(record.available_slots)
    next_phase = (slots[-1] if slots else 0) + 1
    while len(slots) < record.max_load_per_phase:
        slots.append(next_phase)
        next_phase += 1
    return slots


class FixResolver:
    """
    Computes and applies field fixes.

    overload_policy decides how "MaxLoadPerPhase exceeds available slots" is
    repaired: "reduce-load" lowers the load to the slot count, "extend-slots"
    appends consecutive phases after the last one (declining loads above
    MAX_PHASE_SPAN), "none" declines.
    """

    def __init__(self, overload_policy: str = "reduce-load"):
        self.overload_policy = overload_policy

    def resolve(self, diagnostic: Diagnostic, dataset: Dataset) -> Optional[FieldUpdate]:
        if not diagnostic.auto_fix_available:
            return None

        row, record = locate(dataset.collection(diagnostic.entity_kind), diagnostic)
        if record is None:
            return None

        computed = self._compute(diagnostic, record)
        if computed is None:
            return None
        field, value = computed
        return FieldUpdate(
            entity_kind=diagnostic.entity_kind,
            entity_id=diagnostic.entity_id,
            row=row,
            field=field,
            value=value,
        )

    def _compute(self, diagnostic: Diagnostic, record) -> Optional[Tuple[str, object]]:
        kind, field, defect = diagnostic.entity_kind, diagnostic.field, diagnostic.defect

        if kind is EntityKind.REQUESTER:
            if field == "PriorityLevel" and defect == "out-of-range":
                return field, clamp_priority(record.priority_level)
            if field == "RequestedTaskIDs" and defect.startswith("dangling-ref:"):
                dangling = defect.split(":", 1)[1]
                return field, [task_id for task_id in record.requested_task_ids if task_id != dangling]

        if kind is EntityKind.PROVIDER:
            if field == "AvailableSlots" and defect == "empty":
                return field, list(record.available_slots) or list(DEFAULT_AVAILABLE_SLOTS)
            if field == "MaxLoadPerPhase" and defect == "below-minimum":
                return field, max(MIN_LOAD_PER_PHASE, record.max_load_per_phase)
            if field == "MaxLoadPerPhase" and defect == "exceeds-availability":
                if self.overload_policy == "reduce-load":
                    return field, _reduce_load(record)
                if self.overload_policy == "extend-slots":
                    slots = _extend_slots(record)
                    return None if slots is None else ("AvailableSlots", slots)
                return None

        if kind is EntityKind.WORK_UNIT and defect == "below-minimum":
            if field == "Duration":
                return field, max(MIN_DURATION, record.duration)
            if field == "MaxConcurrent":
                return field, max(MIN_CONCURRENT, record.max_concurrent)

        return None

    def apply(self, dataset: Dataset, diagnostic: Diagnostic, outstanding: Sequence[Diagnostic]) -> FixResult:
        update = self.resolve(diagnostic, dataset)
        if update is None:
            return FixResult(
                diagnostic_id=diagnostic.id,
                applied=False,
                reason=MANUAL_REVIEW,
                outstanding=list(outstanding),
            )

        apply_update(dataset, update)
        logger.info("applied fix %s -> %s", diagnostic.id, update.field)
        return FixResult(
            diagnostic_id=diagnostic.id,
            applied=True,
            update=update,
            outstanding=[d for d in outstanding if d.id != diagnostic.id],
        )

    def apply_all(self, dataset: Dataset, diagnostics: Sequence[Diagnostic]) -> Tuple[List[FixResult], List[Diagnostic]]:
        """Apply every auto-fixable diagnostic in order; returns (results, still outstanding)."""
        outstanding = list(diagnostics)
        results = []
        for diagnostic in diagnostics:
            if not diagnostic.auto_fix_available:
                continue
            result = self.apply(dataset, diagnostic, outstanding)
            outstanding = result.outstanding
            results.append(result)
        return results, outstanding


def apply_update(dataset: Dataset, update: FieldUpdate) -> None:
    """Write a whole-field replacement into the record it names."""
    records = dataset.collection(update.entity_kind)
    record = records[update.row]
    setattr(record, record.COLUMNS[update.field], update.value)

