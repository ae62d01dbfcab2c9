# src/hl7_inbound_tool/ports.py
"""
Collaborator protocols for the inbound queue processor.

The processor owns none of the persistence: the queue, the archive, the error
bin, the reference directories and the record stores are all supplied by the
caller. Transactions, identity generation and caching are the collaborator's
business. memory_store.py provides in-memory implementations.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from .records import (
    AggregatedError,
    ArchiveEntry,
    Concept,
    ConceptProposal,
    Encounter,
    FatalError,
    Form,
    Location,
    Observation,
    Patient,
    QueueEntry,
    User,
)

__all__ = [
    "QueueStore",
    "ArchiveStore",
    "ErrorStore",
    "Directory",
    "RecordStore",
]


@runtime_checkable
class QueueStore(Protocol):
    """
    Inbound queue.

    next_entry must claim the entry it returns when several workers share
    one queue; the processor never does its own locking.
    """

    def next_entry(self) -> Optional[QueueEntry]:
        """Return the next pending entry, or None when the queue is empty."""
        ...

    def delete_entry(self, entry: QueueEntry) -> None:
        """Remove a processed entry from the queue."""
        ...


@runtime_checkable
class ArchiveStore(Protocol):
    def create_archive(self, entry: ArchiveEntry) -> ArchiveEntry:
        """Persist a processed entry and return it with its identity."""
        ...


@runtime_checkable
class ErrorStore(Protocol):
    def create_fatal_error(self, error: FatalError) -> FatalError:
        """Persist a message that could not be processed."""
        ...

    def create_aggregated_error(self, error: AggregatedError) -> AggregatedError:
        """Persist the observation failures of a processed message."""
        ...


@runtime_checkable
class Directory(Protocol):
    """
    Read-only lookups by integer identifier.

    Each method returns the record or None when no record exists. Lookups may
    raise; the resolver reports that as a resolution failure.
    """

    def get_user(self, user_id: int) -> Optional[User]: ...

    def get_patient(self, patient_id: int) -> Optional[Patient]: ...

    def get_location(self, location_id: int) -> Optional[Location]: ...

    def get_form(self, form_id: int) -> Optional[Form]: ...

    def get_concept(self, concept_id: int) -> Optional[Concept]: ...


@runtime_checkable
class RecordStore(Protocol):
    """
    Creation of clinical records.

    Each method returns the identity assigned to the new record, or None/0
    when nothing was persisted.
    """

    def create_encounter(self, encounter: Encounter) -> Optional[int]: ...

    def create_observation(self, observation: Observation) -> Optional[int]: ...

    def propose_concept(self, proposal: ConceptProposal) -> Optional[int]: ...
