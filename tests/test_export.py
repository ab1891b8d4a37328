import csv
import io
from datetime import datetime, timezone

import pytest

from workload_intake.errors import ExportBlockedError
from workload_intake.export import build_export, render_csv
from workload_intake.ingest import read_table
from workload_intake.models import CoRunRule, Dataset, EntityKind, Provider, Requester, WorkUnit
from workload_intake.normalize import normalize_rows
from workload_intake.validate import validate_dataset


def clean_dataset():
    return Dataset(
        requesters=[Requester(ClientID="C1", ClientName="Acme", PriorityLevel=3, RequestedTaskIDs=["T1"],
                              AttributesJSON={"location": "NY"})],
        providers=[Provider(WorkerID="W1", Skills=["python", "ml"], AvailableSlots=[1, 2], MaxLoadPerPhase=2)],
        work_units=[WorkUnit(TaskID="T1", Duration=1, RequiredSkills=["python"], PreferredPhases=[1, 2],
                             MaxConcurrent=1)],
        rules=[CoRunRule(type="coRun", id="r1", name="pair", tasks=["T1", "T2"])],
    )


def diagnostics_for(dataset):
    return validate_dataset(dataset.requesters, dataset.providers, dataset.work_units)


def test_export_blocked_while_errors_remain():
    dataset = clean_dataset()
    dataset.requesters[0].priority_level = 9

    with pytest.raises(ExportBlockedError) as excinfo:
        build_export(dataset)
    assert excinfo.value.total_errors == 1

    with pytest.raises(ExportBlockedError):
        render_csv(dataset, EntityKind.REQUESTER)


def test_warnings_do_not_block_export():
    dataset = clean_dataset()
    dataset.providers[0].max_load_per_phase = 3
    diagnostics = diagnostics_for(dataset)
    assert [d.severity.value for d in diagnostics] == ["warning"]

    bundle = build_export(dataset)

    assert bundle.metadata.validation_passed is True
    assert bundle.metadata.total_warnings == 1


def test_bundle_layout():
    dataset = clean_dataset()
    now = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    payload = build_export(dataset, now=now).model_dump(mode="json", by_alias=True)

    assert set(payload) == {"clients", "workers", "tasks", "rules", "prioritization", "metadata"}
    assert payload["clients"][0]["ClientID"] == "C1"
    assert payload["tasks"][0]["PreferredPhases"] == [1, 2]
    assert payload["rules"][0]["type"] == "coRun"
    assert payload["prioritization"]["priorityLevel"] == 0.25
    assert payload["metadata"] == {
        "exportTimestamp": "2024-01-02T03:04:05+00:00",
        "schemaVersion": "1.0.0",
        "validationPassed": True,
        "totalErrors": 0,
        "totalWarnings": 0,
    }


def test_csv_uses_upload_columns():
    raw = render_csv(clean_dataset(), EntityKind.PROVIDER)

    assert raw.startswith(b"\xef\xbb\xbf")
    rows = list(csv.reader(io.StringIO(raw.decode("utf-8-sig"))))
    assert rows[0][:4] == ["WorkerID", "WorkerName", "Skills", "AvailableSlots"]
    assert rows[1][:5] == ["W1", "", "python,ml", "[1, 2]", "2"]


def test_csv_reingests_to_the_same_records():
    dataset = clean_dataset()

    for kind in EntityKind:
        raw = render_csv(dataset, kind)
        table = read_table(f"{kind.value}.csv", raw, kind)
        records, notes = normalize_rows(kind, table.header, table.rows)
        assert records == dataset.collection(kind)
        assert notes == []
