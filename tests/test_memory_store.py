# tests/test_memory_store.py
"""
Tests for hl7_inbound_tool.memory_store.
"""

import threading

import pytest

from hl7_inbound_tool.exceptions import ConfigError
from hl7_inbound_tool.memory_store import (
    InMemoryDirectory,
    InMemoryQueue,
    load_directory,
)
from hl7_inbound_tool.ports import (
    ArchiveStore,
    Directory,
    ErrorStore,
    QueueStore,
    RecordStore,
)


def test_memory_stores_satisfy_protocols(queue, archive, errors, directory, records):
    assert isinstance(queue, QueueStore)
    assert isinstance(archive, ArchiveStore)
    assert isinstance(errors, ErrorStore)
    assert isinstance(directory, Directory)
    assert isinstance(records, RecordStore)


# ------------------------------------------------------------------------------
# InMemoryQueue
# ------------------------------------------------------------------------------


def test_queue_hands_out_entries_oldest_first():
    q = InMemoryQueue()
    a = q.add("MSH|a", source="lab", source_key="a")
    b = q.add("MSH|b")
    assert q.next_entry() == a
    assert q.next_entry() == b
    assert q.next_entry() is None
    # claimed entries still count until deleted
    assert len(q) == 2
    q.delete_entry(a)
    q.delete_entry(b)
    assert len(q) == 0


def test_queue_delete_unknown_entry():
    q = InMemoryQueue()
    entry = q.add("MSH|a")
    q.delete_entry(entry)
    with pytest.raises(KeyError):
        q.delete_entry(entry)


def test_queue_never_hands_out_an_entry_twice():
    q = InMemoryQueue()
    for i in range(200):
        q.add(f"MSH|{i}")
    seen = []
    lock = threading.Lock()

    def drain():
        while True:
            entry = q.next_entry()
            if entry is None:
                return
            with lock:
                seen.append(entry.id)

    threads = [threading.Thread(target=drain) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert sorted(seen) == list(range(1, 201))


# ------------------------------------------------------------------------------
# directory loading
# ------------------------------------------------------------------------------


def test_from_mapping_builds_directory():
    d = InMemoryDirectory.from_mapping(
        {
            "forms": [{"id": 12, "name": "Vitals", "encounter_type": 2}],
            "encounter_types": [{"id": 2, "name": "ADULTRETURN"}],
            "users": [{"id": 1, "username": "admin"}],
            "patients": [{"id": 7}],
            "concepts": [{"id": 5089}],
        }
    )
    assert d.get_form(12).encounter_type.name == "ADULTRETURN"
    assert d.get_user(1).username == "admin"
    assert d.get_patient(7).id == 7
    assert d.get_concept(5089).name == ""
    assert d.get_location(1) is None


@pytest.mark.parametrize(
    "data, message",
    [
        ({"doctors": []}, r"^Unknown directory sections: doctors"),
        ({"users": {"id": 1}}, r"^Directory section 'users' must be a list"),
        ({"patients": [{"name": "x"}]}, r"^Invalid patients record"),
        ({"patients": ["7"]}, r"^Invalid patients record"),
        ({"forms": [{"id": 12, "encounter_type": 9}]}, r"^Invalid forms record"),
        ({"users": [{"id": "one"}]}, r"^Invalid users record"),
    ],
)
def test_from_mapping_rejects_bad_data(data, message):
    with pytest.raises(ConfigError, match=message):
        InMemoryDirectory.from_mapping(data)


def test_load_directory_from_yaml(tmp_path):
    p = tmp_path / "dir.yaml"
    p.write_text("locations:\n  - {id: 1, name: Clinic}\n", encoding="utf-8")
    assert load_directory(p).get_location(1).name == "Clinic"


def test_load_directory_empty_file(tmp_path):
    p = tmp_path / "empty.yaml"
    p.write_text("", encoding="utf-8")
    assert load_directory(p).users == {}


def test_load_directory_non_mapping(tmp_path):
    p = tmp_path / "list.yaml"
    p.write_text("- 1\n", encoding="utf-8")
    with pytest.raises(TypeError, match=r"^Directory file must contain a mapping"):
        load_directory(p)
