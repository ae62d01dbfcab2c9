# src/hl7_inbound_tool/memory_store.py
"""
In-memory implementations of the collaborator protocols in ports.py.

Used by the test suite and by the CLI for replaying message files. Identities
are assigned from per-store counters starting at 1. The directory can be
seeded from a YAML file:

    users:      [{id: 1, username: admin}]
    patients:   [{id: 7}]
    locations:  [{id: 1, name: Unknown Location}]
    encounter_types: [{id: 2, name: ADULTRETURN}]
    forms:      [{id: 12, name: Vitals, encounter_type: 2}]
    concepts:   [{id: 5089, name: WEIGHT (KG)}]
"""

from __future__ import annotations

import itertools
import threading
from collections import OrderedDict
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import ValidationError

from .exceptions import ConfigError
from .records import (
    AggregatedError,
    ArchiveEntry,
    Concept,
    ConceptProposal,
    Encounter,
    EncounterType,
    FatalError,
    Form,
    Location,
    Observation,
    Patient,
    QueueEntry,
    User,
)


class InMemoryQueue:
    """
    Inbound queue with claim-on-read semantics.

    next_entry moves the oldest pending entry into a claimed set under a lock,
    so several processors can share one queue without handing out the same
    entry twice.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._pending: "OrderedDict[int, QueueEntry]" = OrderedDict()
        self._claimed: Dict[int, QueueEntry] = {}

    def add(self, hl7_data: str, source: str = "", source_key: str = "") -> QueueEntry:
        with self._lock:
            entry = QueueEntry(
                id=next(self._ids),
                source=source,
                source_key=source_key,
                hl7_data=hl7_data,
            )
            self._pending[entry.id] = entry
        return entry

    def next_entry(self) -> Optional[QueueEntry]:
        with self._lock:
            if not self._pending:
                return None
            ident, entry = self._pending.popitem(last=False)
            self._claimed[ident] = entry
            return entry

    def delete_entry(self, entry: QueueEntry) -> None:
        with self._lock:
            if entry.id is None:
                raise KeyError("queue entry has no id")
            if self._claimed.pop(entry.id, None) is None:
                if self._pending.pop(entry.id, None) is None:
                    raise KeyError(f"queue entry {entry.id} not found")

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending) + len(self._claimed)


class InMemoryArchive:
    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.entries: List[ArchiveEntry] = []

    def create_archive(self, entry: ArchiveEntry) -> ArchiveEntry:
        stored = entry.model_copy(update={"id": next(self._ids)})
        self.entries.append(stored)
        return stored


class InMemoryErrorStore:
    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.fatal_errors: List[FatalError] = []
        self.aggregated_errors: List[AggregatedError] = []

    def create_fatal_error(self, error: FatalError) -> FatalError:
        stored = error.model_copy(update={"id": next(self._ids)})
        self.fatal_errors.append(stored)
        return stored

    def create_aggregated_error(self, error: AggregatedError) -> AggregatedError:
        stored = error.model_copy(update={"id": next(self._ids)})
        self.aggregated_errors.append(stored)
        return stored


class InMemoryDirectory:
    """Dictionary-backed reference directory."""

    def __init__(self) -> None:
        self.users: Dict[int, User] = {}
        self.patients: Dict[int, Patient] = {}
        self.locations: Dict[int, Location] = {}
        self.encounter_types: Dict[int, EncounterType] = {}
        self.forms: Dict[int, Form] = {}
        self.concepts: Dict[int, Concept] = {}

    def add_user(self, user_id: int, username: str = "") -> User:
        user = self.users[user_id] = User(id=user_id, username=username)
        return user

    def add_patient(self, patient_id: int) -> Patient:
        patient = self.patients[patient_id] = Patient(id=patient_id)
        return patient

    def add_location(self, location_id: int, name: str = "") -> Location:
        location = self.locations[location_id] = Location(id=location_id, name=name)
        return location

    def add_encounter_type(self, type_id: int, name: str = "") -> EncounterType:
        etype = self.encounter_types[type_id] = EncounterType(id=type_id, name=name)
        return etype

    def add_form(
        self, form_id: int, name: str = "", encounter_type: Optional[int] = None
    ) -> Form:
        etype = None
        if encounter_type is not None:
            etype = self.encounter_types[encounter_type]
        form = self.forms[form_id] = Form(id=form_id, name=name, encounter_type=etype)
        return form

    def add_concept(self, concept_id: int, name: str = "") -> Concept:
        concept = self.concepts[concept_id] = Concept(id=concept_id, name=name)
        return concept

    def get_user(self, user_id: int) -> Optional[User]:
        return self.users.get(user_id)

    def get_patient(self, patient_id: int) -> Optional[Patient]:
        return self.patients.get(patient_id)

    def get_location(self, location_id: int) -> Optional[Location]:
        return self.locations.get(location_id)

    def get_form(self, form_id: int) -> Optional[Form]:
        return self.forms.get(form_id)

    def get_concept(self, concept_id: int) -> Optional[Concept]:
        return self.concepts.get(concept_id)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "InMemoryDirectory":
        """
        Build a directory from a mapping of record lists (see module docstring).

        Raises
        ------
        ConfigError
            If a section is unknown, not a list, or holds invalid records.
        """
        loaders = {
            "users": ("add_user", (("username", ""),)),
            "patients": ("add_patient", ()),
            "locations": ("add_location", (("name", ""),)),
            "encounter_types": ("add_encounter_type", (("name", ""),)),
            "forms": ("add_form", (("name", ""), ("encounter_type", None))),
            "concepts": ("add_concept", (("name", ""),)),
        }
        unknown = sorted(str(k) for k in data if k not in loaders)
        if unknown:
            raise ConfigError(f"Unknown directory sections: {', '.join(unknown)}")

        directory = cls()
        # encounter types first so forms can refer to them
        for section in sorted(loaders, key=lambda s: s != "encounter_types"):
            rows = data.get(section) or []
            if not isinstance(rows, list):
                raise ConfigError(f"Directory section {section!r} must be a list")
            method, extras = loaders[section]
            for row in rows:
                if not isinstance(row, Mapping) or "id" not in row:
                    raise ConfigError(f"Invalid {section} record: {row!r}")
                try:
                    args = [row["id"]] + [row.get(k, default) for k, default in extras]
                    getattr(directory, method)(*args)
                except (KeyError, TypeError, ValidationError) as e:
                    raise ConfigError(f"Invalid {section} record {row!r}: {e}") from e
        return directory


def load_directory(path: Path) -> InMemoryDirectory:
    """
    Load an InMemoryDirectory from a YAML file.

    Raises
    ------
    TypeError
        If the YAML file does not parse to a mapping at the top level.
    ConfigError
        If a section or record is invalid.
    yaml.YAMLError
        If the file is not valid YAML.
    """
    data: Any = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return InMemoryDirectory()
    if not isinstance(data, Mapping):
        raise TypeError(
            f"Directory file must contain a mapping at top level, "
            f"got {type(data).__name__}. "
            f"Directory file: {path}"
        )
    return InMemoryDirectory.from_mapping(data)


class InMemoryRecordStore:
    """Keeps created encounters, observations and concept proposals in lists."""

    def __init__(self) -> None:
        self._encounter_ids = itertools.count(1)
        self._obs_ids = itertools.count(1)
        self._proposal_ids = itertools.count(1)
        self.encounters: List[Encounter] = []
        self.observations: List[Observation] = []
        self.proposals: List[ConceptProposal] = []

    def create_encounter(self, encounter: Encounter) -> Optional[int]:
        ident = next(self._encounter_ids)
        self.encounters.append(encounter.model_copy(update={"id": ident}))
        return ident

    def create_observation(self, observation: Observation) -> Optional[int]:
        ident = next(self._obs_ids)
        self.observations.append(observation.model_copy(update={"id": ident}))
        return ident

    def propose_concept(self, proposal: ConceptProposal) -> Optional[int]:
        ident = next(self._proposal_ids)
        self.proposals.append(proposal.model_copy(update={"id": ident}))
        return ident
