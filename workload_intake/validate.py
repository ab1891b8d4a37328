"""
Validation engine.

validate_dataset() is a pure function of its inputs: lookup sets are built once
per call and passed down, nothing is cached between runs. Diagnostics come out
in a fixed order (requesters, providers, work units, capacity; rows in upload
order, checks in the order below) so two runs over the same data are equal.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Iterable, List, NamedTuple, Optional, Sequence, Set, Tuple

from .capacity import analyze_capacity
from .models import (
    DefectCategory,
    Diagnostic,
    EntityKind,
    Provider,
    Requester,
    Severity,
    ValidationSummary,
    WorkUnit,
)
from .rules import MIN_CONCURRENT, MIN_DURATION, MIN_LOAD_PER_PHASE, PRIORITY_MAX, PRIORITY_MIN


class Lookups(NamedTuple):
    work_unit_ids: FrozenSet[str]
    provider_skills: FrozenSet[str]


class EntityRef(NamedTuple):
    entity_id: str  # shown to users
    key: str  # unique within the collection, used in diagnostic ids
    occurrence: int  # 1 for the first row carrying entity_id
    blank: bool = False


def build_lookups(providers: Sequence[Provider], work_units: Sequence[WorkUnit]) -> Lookups:
    return Lookups(
        work_unit_ids=frozenset(unit.task_id for unit in work_units if unit.task_id),
        provider_skills=frozenset(skill for provider in providers for skill in provider.skills),
    )


def diagnostic_id(kind: EntityKind, entity_key: str, field: str, defect: str) -> str:
    return f"{kind.value}:{entity_key}:{field}:{defect}"


def _free_key(base: str, taken: Set[str]) -> str:
    key, n = base, 1
    while key in taken:
        n += 1
        key = f"{base}#{n}"
    taken.add(key)
    return key


def entity_refs(records: Sequence) -> List[EntityRef]:
    """
    Assign every row a key that is unique within the collection.

    The first row carrying an id is keyed by the id itself. Later rows sharing
    it get "id#n", blank ids get "row-i"; a synthesized key that equals a real
    id (or another synthesized key) is suffixed again until it is free.
    """
    taken: Set[str] = {record.entity_id for record in records if record.entity_id}
    seen: Dict[str, int] = {}
    refs = []
    for i, record in enumerate(records):
        entity_id = record.entity_id
        if not entity_id:
            refs.append(EntityRef(f"row-{i}", _free_key(f"row-{i}", taken), 1, blank=True))
            continue
        seen[entity_id] = seen.get(entity_id, 0) + 1
        n = seen[entity_id]
        key = entity_id if n == 1 else _free_key(f"{entity_id}#{n}", taken)
        refs.append(EntityRef(entity_id, key, n))
    return refs


def _diagnostic(
    kind: EntityKind,
    ref: EntityRef,
    row: int,
    field: str,
    defect: str,
    severity: Severity,
    category: DefectCategory,
    message: str,
    suggestion: Optional[str] = None,
    fixable: bool = False,
) -> Diagnostic:
    return Diagnostic(
        id=diagnostic_id(kind, ref.key, field, defect),
        severity=severity,
        category=category,
        entity_kind=kind,
        entity_id=ref.entity_id,
        field=field,
        defect=defect,
        message=message,
        suggestion=suggestion,
        auto_fix_available=fixable,
        row=row,
    )


def _identity_checks(kind: EntityKind, label: str, id_column: str, ref: EntityRef, row: int) -> List[Diagnostic]:
    if ref.blank:
        return [_diagnostic(
            kind, ref, row, id_column, "missing-id", Severity.ERROR, DefectCategory.STRUCTURAL,
            f"{label} in row {row + 1} has no {id_column}",
            suggestion=f"Give every {label.lower()} a unique {id_column}",
        )]
    if ref.occurrence > 1:
        return [_diagnostic(
            kind, ref, row, id_column, "duplicate", Severity.ERROR, DefectCategory.STRUCTURAL,
            f"Duplicate {label} ID: {ref.entity_id}",
            suggestion=f"Ensure each {label.lower()} has a unique ID",
        )]
    return []


def _at_least(kind, ref, row, field, value, minimum, noun) -> List[Diagnostic]:
    if value >= minimum:
        return []
    return [_diagnostic(
        kind, ref, row, field, "below-minimum", Severity.ERROR, DefectCategory.STRUCTURAL,
        f"{field} must be at least {minimum}{noun}, got: {value}",
        suggestion=f"Set {field} to a positive integer",
        fixable=True,
    )]


def validate_requesters(requesters: Sequence[Requester], lookups: Lookups) -> List[Diagnostic]:
    kind = EntityKind.REQUESTER
    diagnostics: List[Diagnostic] = []
    for row, (requester, ref) in enumerate(zip(requesters, entity_refs(requesters))):
        diagnostics.extend(_identity_checks(kind, "Client", "ClientID", ref, row))

        if not PRIORITY_MIN <= requester.priority_level <= PRIORITY_MAX:
            diagnostics.append(_diagnostic(
                kind, ref, row, "PriorityLevel", "out-of-range", Severity.ERROR, DefectCategory.STRUCTURAL,
                f"Priority level must be between {PRIORITY_MIN}-{PRIORITY_MAX}, got: {requester.priority_level}",
                suggestion=f"Set priority level to a value between {PRIORITY_MIN} and {PRIORITY_MAX}",
                fixable=True,
            ))

        for task_id in _unique(requester.requested_task_ids):
            if task_id in lookups.work_unit_ids:
                continue
            diagnostics.append(_diagnostic(
                kind, ref, row, "RequestedTaskIDs", f"dangling-ref:{task_id}",
                Severity.ERROR, DefectCategory.REFERENTIAL,
                f'Referenced task ID "{task_id}" does not exist',
                suggestion="Remove invalid task ID or add the corresponding task",
                fixable=True,
            ))
    return diagnostics


def validate_providers(providers: Sequence[Provider], overload_fixable: bool = True) -> List[Diagnostic]:
    kind = EntityKind.PROVIDER
    diagnostics: List[Diagnostic] = []
    for row, (provider, ref) in enumerate(zip(providers, entity_refs(providers))):
        diagnostics.extend(_identity_checks(kind, "Worker", "WorkerID", ref, row))

        if not provider.available_slots:
            diagnostics.append(_diagnostic(
                kind, ref, row, "AvailableSlots", "empty", Severity.ERROR, DefectCategory.STRUCTURAL,
                "AvailableSlots must be a non-empty list of phase numbers",
                suggestion="Add at least one available phase slot",
                fixable=True,
            ))

        diagnostics.extend(_at_least(
            kind, ref, row, "MaxLoadPerPhase", provider.max_load_per_phase, MIN_LOAD_PER_PHASE, "",
        ))

        if provider.max_load_per_phase > len(provider.available_slots):
            diagnostics.append(_diagnostic(
                kind, ref, row, "MaxLoadPerPhase", "exceeds-availability",
                Severity.WARNING, DefectCategory.CAPACITY,
                f"MaxLoadPerPhase ({provider.max_load_per_phase}) exceeds number of available slots "
                f"({len(provider.available_slots)})",
                suggestion="Reduce MaxLoadPerPhase or add more available slots",
                fixable=overload_fixable,
            ))
    return diagnostics


def validate_work_units(work_units: Sequence[WorkUnit], lookups: Lookups) -> List[Diagnostic]:
    kind = EntityKind.WORK_UNIT
    diagnostics: List[Diagnostic] = []
    for row, (unit, ref) in enumerate(zip(work_units, entity_refs(work_units))):
        diagnostics.extend(_identity_checks(kind, "Task", "TaskID", ref, row))
        diagnostics.extend(_at_least(kind, ref, row, "Duration", unit.duration, MIN_DURATION, " phase"))
        diagnostics.extend(_at_least(kind, ref, row, "MaxConcurrent", unit.max_concurrent, MIN_CONCURRENT, ""))

        # global coverage only: a skill held solely in phases this task never runs in still counts
        for skill in _unique(unit.required_skills):
            if skill in lookups.provider_skills:
                continue
            diagnostics.append(_diagnostic(
                kind, ref, row, "RequiredSkills", f"missing-skill:{skill}",
                Severity.ERROR, DefectCategory.REFERENTIAL,
                f'Required skill "{skill}" is not available in any worker',
                suggestion="Add a worker with this skill or remove the skill requirement",
            ))

        if not unit.preferred_phases:
            diagnostics.append(_diagnostic(
                kind, ref, row, "PreferredPhases", "empty", Severity.INFO, DefectCategory.STRUCTURAL,
                "PreferredPhases is empty; the task does not count towards any phase demand",
                suggestion="List preferred phases as a range (1-3), an array ([1,3]) or a comma list",
            ))
    return diagnostics


def validate_dataset(
    requesters: Sequence[Requester],
    providers: Sequence[Provider],
    work_units: Sequence[WorkUnit],
    overload_fixable: bool = True,
) -> List[Diagnostic]:
    lookups = build_lookups(providers, work_units)
    return (
        validate_requesters(requesters, lookups)
        + validate_providers(providers, overload_fixable=overload_fixable)
        + validate_work_units(work_units, lookups)
        + analyze_capacity(providers, work_units)
    )


def summarize(diagnostics: Iterable[Diagnostic]) -> ValidationSummary:
    diagnostics = list(diagnostics)
    errors = sum(1 for d in diagnostics if d.severity is Severity.ERROR)
    warnings = sum(1 for d in diagnostics if d.severity is Severity.WARNING)
    info = sum(1 for d in diagnostics if d.severity is Severity.INFO)
    return ValidationSummary(errors=errors, warnings=warnings, info=info, passed=errors == 0)


def _unique(items: Iterable[str]) -> List[str]:
    seen = set()
    out = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


def locate(records: Sequence, diagnostic: Diagnostic) -> Tuple[Optional[int], Optional[object]]:
    """Find the row a diagnostic points at, by key rather than bare id."""
    for row, ref in enumerate(entity_refs(records)):
        if diagnostic_id(diagnostic.entity_kind, ref.key, diagnostic.field, diagnostic.defect) == diagnostic.id:
            return row, records[row]
    return None, None
