import pytest

from workload_intake.autofix import MANUAL_REVIEW, FixResolver, clamp_priority
from workload_intake.models import Dataset, Provider, Requester, WorkUnit
from workload_intake.validate import validate_dataset


def validate(dataset, **kwargs):
    return validate_dataset(dataset.requesters, dataset.providers, dataset.work_units, **kwargs)


def find(diagnostics, defect, field=None):
    return next(d for d in diagnostics if d.defect == defect and (field is None or d.field == field))


def messy_dataset():
    return Dataset(
        requesters=[
            Requester(ClientID="C1", PriorityLevel=0, RequestedTaskIDs=["T1", "T99", "T2"]),
            Requester(ClientID="C2", PriorityLevel=6, RequestedTaskIDs=["T1"]),
            Requester(ClientID="C2", PriorityLevel=3, RequestedTaskIDs=[]),
        ],
        providers=[
            Provider(WorkerID="W1", Skills=["python"], AvailableSlots=[], MaxLoadPerPhase=2),
            Provider(WorkerID="W2", Skills=["sql"], AvailableSlots=[1, 2], MaxLoadPerPhase=0),
            Provider(WorkerID="W3", Skills=["python"], AvailableSlots=[1], MaxLoadPerPhase=3),
        ],
        work_units=[
            WorkUnit(TaskID="T1", Duration=0, RequiredSkills=["python"], PreferredPhases=[1], MaxConcurrent=0),
            WorkUnit(TaskID="T2", Duration=2, RequiredSkills=["rust"], PreferredPhases=[2], MaxConcurrent=1),
        ],
    )


@pytest.mark.parametrize("value,expected", [(0, 1), (-3, 1), (6, 5), (9, 5), (3, 3), (2.5, 3), (4.4, 4)])
def test_clamp_priority(value, expected):
    assert clamp_priority(value) == expected


@pytest.mark.parametrize("priority,expected", [(0, 1), (6, 5)])
def test_priority_fix_clamps(priority, expected):
    dataset = Dataset(requesters=[Requester(ClientID="C1", PriorityLevel=priority)])
    diagnostic = find(validate(dataset), "out-of-range")

    result = FixResolver().apply(dataset, diagnostic, [diagnostic])

    assert result.applied is True
    assert dataset.requesters[0].priority_level == expected
    assert result.outstanding == []
    assert validate(dataset) == []


def test_dangling_reference_fix_removes_only_that_id():
    dataset = messy_dataset()
    diagnostics = validate(dataset)
    diagnostic = find(diagnostics, "dangling-ref:T99")

    result = FixResolver().apply(dataset, diagnostic, diagnostics)

    assert result.update.field == "RequestedTaskIDs"
    assert dataset.requesters[0].requested_task_ids == ["T1", "T2"]
    assert diagnostic.id not in {d.id for d in result.outstanding}
    assert len(result.outstanding) == len(diagnostics) - 1


def test_provider_fixes():
    dataset = messy_dataset()
    diagnostics = validate(dataset)
    resolver = FixResolver()

    resolver.apply(dataset, find(diagnostics, "empty", "AvailableSlots"), diagnostics)
    resolver.apply(dataset, find(diagnostics, "below-minimum", "MaxLoadPerPhase"), diagnostics)

    assert dataset.providers[0].available_slots == [1]
    assert dataset.providers[1].max_load_per_phase == 1


def test_work_unit_fixes():
    dataset = messy_dataset()
    diagnostics = validate(dataset)
    resolver = FixResolver()

    resolver.apply(dataset, find(diagnostics, "below-minimum", "Duration"), diagnostics)
    resolver.apply(dataset, find(diagnostics, "below-minimum", "MaxConcurrent"), diagnostics)

    assert dataset.work_units[0].duration == 1
    assert dataset.work_units[0].max_concurrent == 1


def test_overload_reduce_load_policy():
    dataset = Dataset(providers=[Provider(WorkerID="W1", AvailableSlots=[1, 2], MaxLoadPerPhase=5)])
    diagnostic = find(validate(dataset), "exceeds-availability")

    update = FixResolver("reduce-load").resolve(diagnostic, dataset)

    assert update.field == "MaxLoadPerPhase"
    assert update.value == 2


def test_overload_extend_slots_policy():
    dataset = Dataset(providers=[Provider(WorkerID="W1", AvailableSlots=[2, 4], MaxLoadPerPhase=4)])
    diagnostic = find(validate(dataset), "exceeds-availability")

    FixResolver("extend-slots").apply(dataset, diagnostic, [diagnostic])

    assert dataset.providers[0].available_slots == [2, 4, 5, 6]
    assert dataset.providers[0].max_load_per_phase == 4
    assert validate(dataset) == []


def test_overload_none_policy_declines():
    dataset = Dataset(providers=[Provider(WorkerID="W1", AvailableSlots=[1], MaxLoadPerPhase=3)])
    diagnostic = find(validate(dataset), "exceeds-availability")

    result = FixResolver("none").apply(dataset, diagnostic, [diagnostic])

    assert result.applied is False
    assert result.reason == MANUAL_REVIEW
    assert result.outstanding == [diagnostic]
    assert dataset.providers[0].max_load_per_phase == 3


def test_non_fixable_diagnostics_decline():
    dataset = messy_dataset()
    diagnostics = validate(dataset)
    resolver = FixResolver()

    for defect in ("duplicate", "missing-skill:rust"):
        diagnostic = find(diagnostics, defect)
        result = resolver.apply(dataset, diagnostic, diagnostics)
        assert result.applied is False
        assert result.reason == MANUAL_REVIEW
        assert len(result.outstanding) == len(diagnostics)


def test_fix_targets_the_duplicate_row_it_names():
    dataset = messy_dataset()
    diagnostic = find(validate(dataset), "out-of-range")
    assert diagnostic.entity_id == "C1"

    dataset.requesters[2].priority_level = 9
    second = next(d for d in validate(dataset) if d.id == "requester:C2#2:PriorityLevel:out-of-range")
    FixResolver().apply(dataset, second, [second])

    assert dataset.requesters[1].priority_level == 6
    assert dataset.requesters[2].priority_level == 5


def test_resolve_is_idempotent():
    dataset = messy_dataset()
    diagnostics = validate(dataset)
    resolver = FixResolver()

    for diagnostic in diagnostics:
        first = resolver.resolve(diagnostic, dataset)
        if first is None:
            continue
        resolver.apply(dataset, diagnostic, diagnostics)
        again = resolver.resolve(diagnostic, dataset)
        assert again.value == first.value


def test_fast_path_agrees_with_full_revalidation():
    dataset = messy_dataset()
    diagnostics = validate(dataset)
    resolver = FixResolver()

    results, outstanding = resolver.apply_all(dataset, diagnostics)
    rerun = validate(dataset)

    assert all(r.applied for r in results)
    fixed_ids = {r.diagnostic_id for r in results}
    assert not fixed_ids & {d.id for d in rerun}
    # everything the fast path still lists that was not capacity-derived is confirmed by the rerun
    assert {d.id for d in outstanding if d.category.value != "capacity"} == {
        d.id for d in rerun if d.category.value != "capacity"
    }


def test_apply_all_clears_every_fixed_kind():
    dataset = messy_dataset()
    resolver = FixResolver()

    resolver.apply_all(dataset, validate(dataset))
    rerun = validate(dataset)

    assert not [d for d in rerun if d.auto_fix_available]
    remaining = {d.defect for d in rerun}
    assert "duplicate" in remaining
    assert "missing-skill:rust" in remaining


def test_fix_on_blank_row_does_not_touch_row_named_like_it():
    dataset = Dataset(requesters=[
        Requester(ClientID="row-1", PriorityLevel=3),
        Requester(ClientID="", PriorityLevel=9),
    ])
    diagnostics = validate(dataset)
    diagnostic = find(diagnostics, "out-of-range")

    result = FixResolver().apply(dataset, diagnostic, diagnostics)

    assert result.applied is True
    assert result.update.row == 1
    assert [r.priority_level for r in dataset.requesters] == [3, 5]
    assert not [d for d in validate(dataset) if d.defect == "out-of-range"]
    assert {d.id for d in result.outstanding} == {d.id for d in validate(dataset)}


def test_extend_slots_declines_huge_load():
    dataset = Dataset(providers=[Provider(WorkerID="W1", AvailableSlots=[1], MaxLoadPerPhase=10 ** 9)])
    diagnostic = find(validate(dataset), "exceeds-availability")

    result = FixResolver("extend-slots").apply(dataset, diagnostic, [diagnostic])

    assert result.applied is False
    assert result.reason == MANUAL_REVIEW
    assert dataset.providers[0].available_slots == [1]
