# src/hl7_inbound_tool/records.py
"""
Record models exchanged between the pipeline and its collaborators.

Directory records (User, Patient, Location, Form, Concept, ...) are owned by
external directories; the pipeline only holds them by reference. Created
records (Encounter, Observation, ConceptProposal) and the queue, archive and
error records are built here and handed to the stores in ports.py.

All models are frozen pydantic models so nothing is mutated after a store
has seen it; stores return assigned identities instead of setting them.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True)


# ------------------------------------------------------------------------------
# queue, archive, errors
# ------------------------------------------------------------------------------


class QueueEntry(_Record):
    """One raw message waiting in the inbound queue."""

    id: Optional[int] = None
    source: str = ""
    source_key: str = ""
    hl7_data: str
    received_at: datetime = Field(default_factory=_utcnow)


class ArchiveEntry(_Record):
    """A successfully processed queue entry, copied into the archive."""

    id: Optional[int] = None
    source: str = ""
    source_key: str = ""
    hl7_data: str
    received_at: datetime
    archived_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def from_queue_entry(cls, entry: QueueEntry) -> "ArchiveEntry":
        return cls(
            source=entry.source,
            source_key=entry.source_key,
            hl7_data=entry.hl7_data,
            received_at=entry.received_at,
        )


class FatalError(_Record):
    """
    A message that could not be processed at all.

    Attributes
    ----------
    hl7_data : str
        The original raw message text.
    stage : str
        Name of the processing state that was reached before the failure.
    error : str
        Short summary (e.g., "Expected PID segment").
    error_details : str
        Message of the underlying cause, or "" when there was none.
    """

    id: Optional[int] = None
    source: str = ""
    source_key: str = ""
    hl7_data: str
    stage: str
    error: str
    error_details: str = ""
    created_at: datetime = Field(default_factory=_utcnow)


class ObservationFailure(_Record):
    """One OBX segment that could not be turned into an observation."""

    hl7_fragment: str
    error: str
    error_details: str = ""


class AggregatedError(_Record):
    """
    All observation failures of one otherwise successful message.

    Failures stay structured; the concatenated display strings used by error
    stores are derived on demand (fragments terminated by CR, summaries and
    details terminated by LF).
    """

    id: Optional[int] = None
    source: str = ""
    source_key: str = ""
    failures: Tuple[ObservationFailure, ...]
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def hl7_data(self) -> str:
        return "".join(f.hl7_fragment + "\r" for f in self.failures)

    @property
    def error(self) -> str:
        return "".join(f.error + "\n" for f in self.failures)

    @property
    def error_details(self) -> str:
        return "".join(f.error_details + "\n" for f in self.failures)


# ------------------------------------------------------------------------------
# directory records
# ------------------------------------------------------------------------------


class User(_Record):
    id: Optional[int] = None
    username: str = ""


class Patient(_Record):
    id: Optional[int] = None


class Location(_Record):
    id: Optional[int] = None
    name: str = ""


class EncounterType(_Record):
    id: Optional[int] = None
    name: str = ""


class Form(_Record):
    id: Optional[int] = None
    name: str = ""
    encounter_type: Optional[EncounterType] = None


class Concept(_Record):
    id: Optional[int] = None
    name: str = ""


class ResolvedContext(_Record):
    """Directory records looked up once per message and shared by every OBX."""

    enterer: User
    patient: Patient
    provider: User
    form: Form
    location: Location


# ------------------------------------------------------------------------------
# created records
# ------------------------------------------------------------------------------


class Encounter(_Record):
    id: Optional[int] = None
    encounter_datetime: datetime
    encounter_type: Optional[EncounterType] = None
    form: Form
    location: Location
    patient: Patient
    provider: User
    creator: User
    date_created: datetime


_VALUE_KINDS = {
    "numeric": "numeric",
    "coded": "coded",
    "datetime_value": "datetime",
    "text": "text",
}


class ObsValue(_Record):
    """
    The value of an observation: exactly one of numeric, coded, datetime
    (a date, time or full timestamp) or text.
    """

    numeric: Optional[float] = None
    coded: Optional[Concept] = None
    datetime_value: Optional[Union[datetime, date, time]] = None
    text: Optional[str] = None

    @model_validator(mode="after")
    def _exactly_one(self) -> "ObsValue":
        present = [name for name in _VALUE_KINDS if getattr(self, name) is not None]
        if len(present) != 1:
            raise ValueError(
                f"exactly one observation value must be set, got {len(present)}"
            )
        return self

    @property
    def kind(self) -> str:
        """One of "numeric", "coded", "datetime", "text"."""
        for name, kind in _VALUE_KINDS.items():
            if getattr(self, name) is not None:
                return kind
        raise AssertionError("unreachable: validated ObsValue has no value")

    @property
    def value(self) -> Union[float, Concept, datetime, date, time, str]:
        for name in _VALUE_KINDS:
            val = getattr(self, name)
            if val is not None:
                return val
        raise AssertionError("unreachable: validated ObsValue has no value")


class Observation(_Record):
    id: Optional[int] = None
    patient: Patient
    concept: Concept
    encounter: Encounter
    obs_datetime: datetime
    location: Location
    creator: User
    value: ObsValue


class ConceptProposal(_Record):
    id: Optional[int] = None
    original_text: str
    state: str = "UNMAPPED"
    encounter: Encounter
    obs_concept: Concept
    creator: User
