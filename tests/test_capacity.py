from workload_intake.capacity import analyze_capacity, phase_load
from workload_intake.models import DefectCategory, Provider, Severity, WorkUnit


def test_single_saturated_phase():
    providers = [Provider(WorkerID="W1", AvailableSlots=[1], MaxLoadPerPhase=2)]
    units = [WorkUnit(TaskID="T1", Duration=3, PreferredPhases=[1], MaxConcurrent=1)]

    diagnostics = analyze_capacity(providers, units)

    assert len(diagnostics) == 1
    d = diagnostics[0]
    assert d.entity_id == "phase-1"
    assert d.severity is Severity.WARNING
    assert d.category is DefectCategory.CAPACITY
    assert d.auto_fix_available is False
    assert "demand 3 > supply 2" in d.message


def test_supply_and_demand_are_summed():
    providers = [
        Provider(WorkerID="W1", AvailableSlots=[1, 2], MaxLoadPerPhase=2),
        Provider(WorkerID="W2", AvailableSlots=[2, 3], MaxLoadPerPhase=1),
    ]
    units = [
        WorkUnit(TaskID="T1", Duration=2, PreferredPhases=[1, 2]),
        WorkUnit(TaskID="T2", Duration=2, PreferredPhases=[2, 4]),
    ]

    loads = phase_load(providers, units)

    assert [(l.phase, l.supply, l.demand) for l in loads] == [(1, 2, 2), (2, 3, 4), (4, 0, 2)]
    assert [d.entity_id for d in analyze_capacity(providers, units)] == ["phase-2", "phase-4"]


def test_phases_without_demand_are_not_reported():
    providers = [Provider(WorkerID="W1", AvailableSlots=[5], MaxLoadPerPhase=1)]
    units = [WorkUnit(TaskID="T1", Duration=1, PreferredPhases=[1])]
    assert [l.phase for l in phase_load(providers, units)] == [1]


def test_repeated_phase_counts_once_per_entity():
    providers = [Provider(WorkerID="W1", AvailableSlots=[1, 1], MaxLoadPerPhase=1)]
    units = [WorkUnit(TaskID="T1", Duration=1, PreferredPhases=[1, 1])]
    assert analyze_capacity(providers, units) == []
