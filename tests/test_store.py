import threading

import pytest

from workload_intake.autofix import FixResolver
from workload_intake.errors import DatasetNotFoundError, EntityNotFoundError
from workload_intake.models import Dataset, Requester
from workload_intake.store import DatasetStore


def make_session():
    store = DatasetStore(FixResolver())
    return store, store.create(Dataset(requesters=[Requester(ClientID="C1", PriorityLevel=9)]), dataset_id="d1")


def test_create_validates_and_get_returns_session():
    store, session = make_session()
    assert store.get("d1") is session
    assert [d.id for d in session.diagnostics] == ["requester:C1:PriorityLevel:out-of-range"]
    with pytest.raises(DatasetNotFoundError):
        store.get("missing")


def test_find_waits_for_writers():
    _, session = make_session()
    target = "requester:C1:PriorityLevel:out-of-range"
    found = []

    session.lock.acquire()
    reader = threading.Thread(target=lambda: found.append(session.find(target)))
    reader.start()
    reader.join(timeout=0.2)
    assert reader.is_alive()
    assert found == []

    session.lock.release()
    reader.join(timeout=5)
    assert [d.id for d in found] == [target]

    with pytest.raises(EntityNotFoundError):
        session.find("requester:C9:PriorityLevel:out-of-range")


def test_edit_goes_through_field_grammars():
    _, session = make_session()
    record, notes = session.edit(session.dataset.requesters[0].KIND, "C1", {"PriorityLevel": "2.5"})
    assert record.priority_level == 3
    assert [n.issue for n in notes] == ["non_integer"]
    with pytest.raises(KeyError):
        session.edit(record.KIND, "C1", {"Colour": "red"})
