# src/hl7_inbound_tool/processor.py
"""
Inbound HL7 queue processor.

Each queue entry moves through

    RECEIVED -> PARSED -> HEADER_EXTRACTED -> CONTEXT_RESOLVED
             -> ENCOUNTER_CREATED -> OBSERVATIONS_PROCESSED -> ARCHIVED

and any failure before OBSERVATIONS_PROCESSED jumps straight to ERRORED with a
FatalError recording the summary and cause. Failures of individual OBX
segments do not stop the message: they are collected into one
AggregatedError stored next to a normal ARCHIVED outcome. The entry is
removed from the queue on reaching either terminal state.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Tuple

from .config import AppConfig
from .exceptions import EncounterError, ObservationError, ParseError, ResolutionError
from .hl7_parser import ParsedMessage, Segment, SegmentCursor, parse_message
from .ports import ArchiveStore, Directory, ErrorStore, QueueStore, RecordStore
from .record_builder import create_encounter, create_observation
from .records import (
    AggregatedError,
    ArchiveEntry,
    ConceptProposal,
    Encounter,
    FatalError,
    Observation,
    ObservationFailure,
    QueueEntry,
    ResolvedContext,
)
from .resolver import (
    resolve_enterer,
    resolve_form,
    resolve_location,
    resolve_patient,
    resolve_provider,
)

LOG = logging.getLogger(__name__)


# ------------------------------------------------------------------------------
# states and outcomes
# ------------------------------------------------------------------------------


class ProcessingState(str, Enum):
    RECEIVED = "RECEIVED"
    PARSED = "PARSED"
    HEADER_EXTRACTED = "HEADER_EXTRACTED"
    CONTEXT_RESOLVED = "CONTEXT_RESOLVED"
    ENCOUNTER_CREATED = "ENCOUNTER_CREATED"
    OBSERVATIONS_PROCESSED = "OBSERVATIONS_PROCESSED"
    ARCHIVED = "ARCHIVED"
    ERRORED = "ERRORED"


@dataclass
class ProcessingOutcome:
    """
    What happened to one queue entry.

    Attributes
    ----------
    state : ProcessingState
        ARCHIVED or ERRORED once processing has finished.
    stage : ProcessingState
        Last non-terminal state reached; for ERRORED entries this is the
        stage the failure happened after.
    skipped : list of Segment
        OBX segments with an unsupported data type (no record, no error).
    """

    entry_id: Optional[int]
    state: ProcessingState = ProcessingState.RECEIVED
    stage: ProcessingState = ProcessingState.RECEIVED
    encounter: Optional[Encounter] = None
    observations: List[Observation] = field(default_factory=list)
    proposals: List[ConceptProposal] = field(default_factory=list)
    skipped: List[Segment] = field(default_factory=list)
    aggregated_error: Optional[AggregatedError] = None
    fatal_error: Optional[FatalError] = None
    archive_entry: Optional[ArchiveEntry] = None


class _FatalStep(Exception):
    """Internal signal: abort the message with the given summary."""

    def __init__(self, summary: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(summary)
        self.summary = summary
        self.cause = cause


# ------------------------------------------------------------------------------
# class QueueProcessor
# ------------------------------------------------------------------------------


class QueueProcessor:
    """
    Moves inbound queue entries into the archive or the error bin.

    Parameters
    ----------
    queue : QueueStore
        Source of entries; entries are deleted once processed.
    archive : ArchiveStore
        Receives a copy of every successfully processed entry.
    errors : ErrorStore
        Receives fatal errors and aggregated observation errors.
    directory : Directory
        Lookups for users, patients, locations, forms and concepts.
    records : RecordStore
        Creates encounters, observations and concept proposals.
    config : AppConfig, optional
        Supported version/type and the proposed-concept sentinel.
    """

    def __init__(
        self,
        queue: QueueStore,
        archive: ArchiveStore,
        errors: ErrorStore,
        directory: Directory,
        records: RecordStore,
        config: Optional[AppConfig] = None,
    ) -> None:
        self.queue = queue
        self.archive = archive
        self.errors = errors
        self.directory = directory
        self.records = records
        self.config = config or AppConfig()

    # -- driving loop ----------------------------------------------------------

    def process_next(self) -> Optional[ProcessingOutcome]:
        """
        Process the next pending entry.

        Returns
        -------
        ProcessingOutcome or None
            None when the queue was empty.
        """
        entry = self.queue.next_entry()
        if entry is None:
            return None
        return self.process_entry(entry)

    def run(self) -> List[ProcessingOutcome]:
        """
        Process entries until the queue reports empty.

        A collaborator failure while recording an outcome (archive or error
        store unavailable) is logged and ends the run; the entry involved
        stays in the queue.
        """
        outcomes: List[ProcessingOutcome] = []
        try:
            while True:
                outcome = self.process_next()
                if outcome is None:
                    break
                outcomes.append(outcome)
        except Exception:
            LOG.exception("Error while processing HL7 inbound queue")
        LOG.info("Processed %d queue entries", len(outcomes))
        return outcomes

    def start_background(self) -> threading.Thread:
        """Run the queue in a daemon thread and return the started thread."""
        t = threading.Thread(target=self.run, name="hl7-inbound-queue", daemon=True)
        t.start()
        return t

    # -- one entry -------------------------------------------------------------

    def process_entry(self, entry: QueueEntry) -> ProcessingOutcome:
        """
        Process a single queue entry to a terminal state.

        Raises only when a store fails while recording the terminal state.
        """
        outcome = ProcessingOutcome(entry_id=entry.id)
        try:
            self._process(entry, outcome)
        except _FatalStep as f:
            self._set_fatal_error(entry, outcome, f.summary, f.cause)
            return outcome
        except Exception as e:
            self._set_fatal_error(
                entry, outcome, "Unexpected error while processing HL7 message", e
            )
            return outcome

        self._archive(entry, outcome)
        return outcome

    def _process(self, entry: QueueEntry, outcome: ProcessingOutcome) -> None:
        try:
            msg = parse_message(entry.hl7_data)
        except ParseError as e:
            raise _FatalStep("Error parsing HL7 message", e) from e
        outcome.stage = ProcessingState.PARSED

        supported = self.config.supported_version
        if msg.version != supported:
            raise _FatalStep(f"Unsupported version ({supported} only)")

        if msg.message_type != self.config.supported_message_type:
            raise _FatalStep(f'Message type not supported: "{msg.message_type}"')

        self._process_oru(entry, msg, outcome)

    def _process_oru(
        self, entry: QueueEntry, msg: ParsedMessage, outcome: ProcessingOutcome
    ) -> None:
        cursor = msg.cursor()

        evn = self._required_segment(cursor, "EVN")
        pid = self._required_segment(cursor, "PID")
        pv1 = self._required_segment(cursor, "PV1")
        outcome.stage = ProcessingState.HEADER_EXTRACTED

        context = self._resolve_context(msg, evn, pid, pv1)
        outcome.stage = ProcessingState.CONTEXT_RESOLVED

        try:
            encounter = create_encounter(context, evn, pv1, self.records)
        except EncounterError as e:
            raise _FatalStep("Unable to create encounter", e) from e
        outcome.encounter = encounter
        outcome.stage = ProcessingState.ENCOUNTER_CREATED

        failures = self._process_observations(cursor, context, encounter, outcome)
        outcome.stage = ProcessingState.OBSERVATIONS_PROCESSED

        if failures:
            aggregated = AggregatedError(
                source=entry.source,
                source_key=entry.source_key,
                failures=tuple(failures),
            )
            outcome.aggregated_error = self.errors.create_aggregated_error(aggregated)

    @staticmethod
    def _required_segment(cursor: SegmentCursor, type_code: str) -> Segment:
        seg = cursor.next_segment(type_code)
        if seg is None:
            raise _FatalStep(f"Expected {type_code} segment")
        return seg

    def _resolve_context(
        self, msg: ParsedMessage, evn: Segment, pid: Segment, pv1: Segment
    ) -> ResolvedContext:
        d = self.directory
        steps: Tuple[Tuple[str, str, Callable[[], object]], ...] = (
            ("enterer", "Unable to determine the data enterer",
             lambda: resolve_enterer(evn, d)),
            ("patient", "Unable to determine the patient",
             lambda: resolve_patient(pid, d)),
            ("provider", "Unable to determine the provider",
             lambda: resolve_provider(pv1, d)),
            ("form", "Unable to determine form", lambda: resolve_form(msg, d)),
            ("location", "Unable to determine the location",
             lambda: resolve_location(pv1, d)),
        )
        resolved = {}
        for name, summary, resolve in steps:
            try:
                resolved[name] = resolve()
            except ResolutionError as e:
                raise _FatalStep(summary, e) from e
        return ResolvedContext(**resolved)

    def _process_observations(
        self,
        cursor: SegmentCursor,
        context: ResolvedContext,
        encounter: Encounter,
        outcome: ProcessingOutcome,
    ) -> List[ObservationFailure]:
        """Walk OBR groups and their directly following OBX segments."""
        failures: List[ObservationFailure] = []
        while cursor.next_segment("OBR") is not None:
            while cursor.has_next("OBX"):
                obx = cursor.next_segment()
                if obx is None:
                    break
                try:
                    result = create_observation(
                        context, encounter, obx, self.directory, self.records,
                        self.config,
                    )
                except ObservationError as e:
                    LOG.warning("OBX %s failed: %s", obx.field(1), e)
                    failures.append(
                        ObservationFailure(
                            hl7_fragment=obx.to_er7(),
                            error=f"OBX{obx.field(1)} parse error",
                            error_details=str(e),
                        )
                    )
                    continue

                if result.observation is not None:
                    outcome.observations.append(result.observation)
                elif result.proposal is not None:
                    outcome.proposals.append(result.proposal)
                else:
                    outcome.skipped.append(obx)
        return failures

    # -- terminal states -------------------------------------------------------

    def _archive(self, entry: QueueEntry, outcome: ProcessingOutcome) -> None:
        outcome.archive_entry = self.archive.create_archive(
            ArchiveEntry.from_queue_entry(entry)
        )
        self.queue.delete_entry(entry)
        outcome.state = ProcessingState.ARCHIVED
        LOG.info(
            "Archived queue entry %s: encounter %s, %d observation(s), "
            "%d proposal(s), %d failed OBX",
            entry.id,
            outcome.encounter.id if outcome.encounter else None,
            len(outcome.observations),
            len(outcome.proposals),
            len(outcome.aggregated_error.failures) if outcome.aggregated_error else 0,
        )

    def _set_fatal_error(
        self,
        entry: QueueEntry,
        outcome: ProcessingOutcome,
        summary: str,
        cause: Optional[BaseException],
    ) -> None:
        error = FatalError(
            source=entry.source,
            source_key=entry.source_key,
            hl7_data=entry.hl7_data,
            stage=outcome.stage.value,
            error=summary,
            error_details="" if cause is None else str(cause),
        )
        outcome.fatal_error = self.errors.create_fatal_error(error)
        self.queue.delete_entry(entry)
        outcome.state = ProcessingState.ERRORED
        LOG.error("%s (queue entry %s)", summary, entry.id, exc_info=cause)
