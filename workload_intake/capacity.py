"""Per-phase supply vs demand across providers and work units."""

from __future__ import annotations

from typing import Dict, List, NamedTuple, Sequence

from .models import DefectCategory, Diagnostic, EntityKind, Provider, Severity, WorkUnit


class PhaseLoad(NamedTuple):
    phase: int
    supply: int
    demand: int

    @property
    def saturated(self) -> bool:
        return self.demand > self.supply


def phase_load(providers: Sequence[Provider], work_units: Sequence[WorkUnit]) -> List[PhaseLoad]:
    """
    Supply and demand for every phase a work unit prefers, ascending by phase.

    supply[p] is the summed MaxLoadPerPhase of providers available in p,
    demand[p] the summed Duration of work units preferring p. A phase listed
    twice by one entity counts once.
    """
    supply: Dict[int, int] = {}
    for provider in providers:
        for phase in set(provider.available_slots):
            supply[phase] = supply.get(phase, 0) + provider.max_load_per_phase

    demand: Dict[int, int] = {}
    for unit in work_units:
        for phase in set(unit.preferred_phases):
            demand[phase] = demand.get(phase, 0) + unit.duration

    return [PhaseLoad(phase, supply.get(phase, 0), demand[phase]) for phase in sorted(demand)]


def analyze_capacity(providers: Sequence[Provider], work_units: Sequence[WorkUnit]) -> List[Diagnostic]:
    diagnostics = []
    for load in phase_load(providers, work_units):
        if not load.saturated:
            continue
        entity_id = f"phase-{load.phase}"
        diagnostics.append(Diagnostic(
            id=f"{EntityKind.WORK_UNIT.value}:{entity_id}:PreferredPhases:phase-saturation",
            severity=Severity.WARNING,
            category=DefectCategory.CAPACITY,
            entity_kind=EntityKind.WORK_UNIT,
            entity_id=entity_id,
            field="PreferredPhases",
            defect="phase-saturation",
            message=f"Phase {load.phase} is oversaturated: demand {load.demand} > supply {load.supply}",
            suggestion="Add more workers to this phase or adjust task preferences",
            auto_fix_available=False,
        ))
    return diagnostics
