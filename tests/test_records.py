# tests/test_records.py
"""
Tests for hl7_inbound_tool.records.
"""

from datetime import date, datetime, time

import pytest
from pydantic import ValidationError

from hl7_inbound_tool.records import (
    AggregatedError,
    ArchiveEntry,
    Concept,
    ObservationFailure,
    ObsValue,
    QueueEntry,
)


# ------------------------------------------------------------------------------
# ObsValue
# ------------------------------------------------------------------------------


@pytest.mark.parametrize(
    "kwargs, kind",
    [
        ({"numeric": 98.6}, "numeric"),
        ({"coded": Concept(id=1065, name="YES")}, "coded"),
        ({"datetime_value": datetime(2025, 1, 1, 8, 30)}, "datetime"),
        ({"datetime_value": date(2025, 1, 1)}, "datetime"),
        ({"datetime_value": time(8, 30)}, "datetime"),
        ({"text": ""}, "text"),
    ],
)
def test_obs_value_single_alternative(kwargs, kind):
    v = ObsValue(**kwargs)
    assert v.kind == kind
    assert v.value == next(iter(kwargs.values()))


def test_obs_value_keeps_date_and_time_types():
    assert type(ObsValue(datetime_value=date(2025, 1, 1)).value) is date
    assert type(ObsValue(datetime_value=time(8, 30)).value) is time


def test_obs_value_rejects_two_alternatives():
    with pytest.raises(ValidationError, match=r"exactly one observation value"):
        ObsValue(numeric=1.0, text="one")


def test_obs_value_rejects_no_alternative():
    with pytest.raises(ValidationError, match=r"exactly one observation value"):
        ObsValue()


def test_obs_value_is_frozen():
    v = ObsValue(numeric=1.0)
    with pytest.raises(ValidationError):
        v.text = "x"


# ------------------------------------------------------------------------------
# AggregatedError
# ------------------------------------------------------------------------------


def test_aggregated_error_concatenates_at_the_boundary():
    agg = AggregatedError(
        source="cli",
        source_key="a.hl7",
        failures=(
            ObservationFailure(hl7_fragment="OBX|1|NM", error="OBX1 parse error", error_details="bad 1"),
            ObservationFailure(hl7_fragment="OBX|3|NM", error="OBX3 parse error", error_details="bad 3"),
        ),
    )
    assert agg.hl7_data == "OBX|1|NM\rOBX|3|NM\r"
    assert agg.error == "OBX1 parse error\nOBX3 parse error\n"
    assert agg.error_details == "bad 1\nbad 3\n"


# ------------------------------------------------------------------------------
# ArchiveEntry
# ------------------------------------------------------------------------------


def test_archive_entry_copies_queue_entry():
    entry = QueueEntry(id=4, source="lab", source_key="k1", hl7_data="MSH|^~\\&")
    archived = ArchiveEntry.from_queue_entry(entry)
    assert archived.id is None
    assert (archived.source, archived.source_key, archived.hl7_data) == (
        "lab", "k1", "MSH|^~\\&",
    )
    assert archived.received_at == entry.received_at
    assert archived.archived_at >= entry.received_at
