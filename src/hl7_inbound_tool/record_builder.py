# src/hl7_inbound_tool/record_builder.py
"""
Construction of the clinical records carried by an ORU message.

create_encounter builds and stores the single encounter of a message;
create_observation builds and stores one observation (or concept proposal)
per OBX segment. Encounter failures are fatal for the message, observation
failures are reported as ObservationError bound to their OBX segment.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .config import AppConfig
from .decoders import DecodeContext, ProposedConcept, get_decoder
from .exceptions import EncounterError, ObservationError
from .hl7_datetime import parse_hl7_timestamp
from .hl7_parser import Segment
from .ports import Directory, RecordStore
from .records import (
    ConceptProposal,
    Encounter,
    ObsValue,
    Observation,
    ResolvedContext,
)
from .resolver import resolve_concept

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuildResult:
    """
    Outcome of one OBX: at most one of observation / proposal is set; neither
    is set when the OBX data type is unsupported and the segment was skipped.
    """

    observation: Optional[Observation] = None
    proposal: Optional[ConceptProposal] = None

    @property
    def skipped(self) -> bool:
        return self.observation is None and self.proposal is None


# ------------------------------------------------------------------------------
# encounter
# ------------------------------------------------------------------------------


def create_encounter(
    context: ResolvedContext,
    evn: Segment,
    pv1: Segment,
    store: RecordStore,
) -> Encounter:
    """
    Build and persist the encounter for a message.

    Parameters
    ----------
    context : ResolvedContext
        Directory records resolved from the message header.
    evn : Segment
        EVN segment; EVN-2 (recorded date/time) becomes date_created.
    pv1 : Segment
        PV1 segment; PV1-44 (admit date/time) becomes encounter_datetime.
    store : RecordStore
        Store that assigns the encounter's identity.

    Returns
    -------
    Encounter
        The stored encounter, carrying its assigned identity.

    Raises
    ------
    EncounterError
        If a date cannot be parsed, the store raises, or the store assigns
        no identity.
    """
    try:
        encounter_datetime = parse_hl7_timestamp(pv1.component(44, 1))
        date_created = parse_hl7_timestamp(evn.component(2, 1))
    except ValueError as e:
        raise EncounterError(f"Invalid encounter date: {e}") from e

    encounter = Encounter(
        encounter_datetime=encounter_datetime,
        encounter_type=context.form.encounter_type,
        form=context.form,
        location=context.location,
        patient=context.patient,
        provider=context.provider,
        creator=context.enterer,
        date_created=date_created,
    )

    try:
        ident = store.create_encounter(encounter)
    except Exception as e:
        raise EncounterError(f"Error saving encounter: {e}") from e
    if not ident:
        raise EncounterError("Invalid encounter")

    LOG.debug("Created encounter %s for patient %s", ident, context.patient.id)
    return encounter.model_copy(update={"id": ident})


# ------------------------------------------------------------------------------
# observations
# ------------------------------------------------------------------------------


def create_observation(
    context: ResolvedContext,
    encounter: Encounter,
    obx: Segment,
    directory: Directory,
    store: RecordStore,
    config: AppConfig = AppConfig(),
) -> BuildResult:
    """
    Build and persist the record for one OBX segment.

    OBX-2 selects the value decoder, OBX-3.1 is the observed concept, OBX-5
    holds the value and OBX-14 the observation time (defaults to the
    encounter's date/time when empty). A coded value whose first component is
    the proposed-concept sentinel yields a ConceptProposal instead of an
    Observation.

    Raises
    ------
    ObservationError
        For any failure while building or storing this OBX; the error keeps a
        reference to the segment.
    """
    try:
        return _build(context, encounter, obx, directory, store, config)
    except Exception as e:
        raise ObservationError(f"{type(e).__name__}: {e}", segment=obx) from e


def _build(
    context: ResolvedContext,
    encounter: Encounter,
    obx: Segment,
    directory: Directory,
    store: RecordStore,
    config: AppConfig,
) -> BuildResult:
    datatype = obx.component(2, 1)
    concept = resolve_concept(obx.component(3, 1), directory)

    raw_time = obx.component(14, 1)
    if raw_time:
        obs_datetime = parse_hl7_timestamp(raw_time)
    else:
        obs_datetime = encounter.encounter_datetime

    ctx = DecodeContext(
        directory=directory,
        proposed_concept_identifier=config.proposed_concept_identifier,
    )
    decoded = get_decoder(datatype)(obx, ctx)

    if decoded is None:
        LOG.warning(
            "Skipping OBX %s: unsupported data type %r", obx.field(1), datatype
        )
        return BuildResult()

    if isinstance(decoded, ProposedConcept):
        return BuildResult(
            proposal=_propose_concept(context, encounter, concept, decoded, store, config)
        )

    return BuildResult(
        observation=_store_observation(
            context, encounter, concept, obs_datetime, decoded, store
        )
    )


def _store_observation(
    context: ResolvedContext,
    encounter: Encounter,
    concept,
    obs_datetime,
    value: ObsValue,
    store: RecordStore,
) -> Observation:
    obs = Observation(
        patient=context.patient,
        concept=concept,
        encounter=encounter,
        obs_datetime=obs_datetime,
        location=encounter.location,
        creator=context.enterer,
        value=value,
    )
    ident = store.create_observation(obs)
    if not ident:
        raise ValueError("observation was not assigned an identity")
    return obs.model_copy(update={"id": ident})


def _propose_concept(
    context: ResolvedContext,
    encounter: Encounter,
    concept,
    proposed: ProposedConcept,
    store: RecordStore,
    config: AppConfig,
) -> ConceptProposal:
    # only the text before a further component separator reaches OBX-5.2
    proposal = ConceptProposal(
        original_text=proposed.original_text,
        state=config.concept_proposal_state,
        encounter=encounter,
        obs_concept=concept,
        creator=context.enterer,
    )
    ident = store.propose_concept(proposal)
    if not ident:
        raise ValueError("concept proposal was not assigned an identity")
    LOG.info(
        "Proposed concept %r for encounter %s", proposed.original_text, encounter.id
    )
    return proposal.model_copy(update={"id": ident})
