# tests/test_record_builder.py
"""
Tests for hl7_inbound_tool.record_builder.
"""

import logging
from datetime import datetime

import pytest

from hl7_inbound_tool.config import AppConfig
from hl7_inbound_tool.exceptions import EncounterError, ObservationError
from hl7_inbound_tool.hl7_parser import parse_message
from hl7_inbound_tool.record_builder import create_encounter, create_observation
from hl7_inbound_tool.records import ResolvedContext

import hl7_samples as S


@pytest.fixture
def context(directory):
    return ResolvedContext(
        enterer=directory.get_user(S.ENTERER_ID),
        patient=directory.get_patient(S.PATIENT_ID),
        provider=directory.get_user(S.PROVIDER_ID),
        form=directory.get_form(S.FORM_ID),
        location=directory.get_location(S.LOCATION_ID),
    )


def _segment(line):
    return parse_message(S.msh() + "\r" + line).segments[1]


@pytest.fixture
def encounter(context, records):
    return create_encounter(context, _segment(S.evn()), _segment(S.pv1()), records)


# ------------------------------------------------------------------------------
# create_encounter
# ------------------------------------------------------------------------------


def test_create_encounter_copies_context(encounter, context, records):
    assert encounter.id == 1
    assert encounter.encounter_datetime == datetime(2025, 1, 1)
    assert encounter.date_created == datetime(2025, 1, 2, 8, 0)
    assert encounter.encounter_type.name == "ADULTRETURN"
    assert encounter.form == context.form
    assert encounter.location == context.location
    assert encounter.patient == context.patient
    assert encounter.provider == context.provider
    assert encounter.creator == context.enterer
    assert records.encounters == [encounter]


def test_create_encounter_rejects_bad_admit_date(context, records):
    with pytest.raises(EncounterError, match=r"^Invalid encounter date"):
        create_encounter(
            context, _segment(S.evn()), _segment(S.pv1(admitted="Jan 1")), records
        )
    assert records.encounters == []


def test_create_encounter_wraps_store_failure(context, records, monkeypatch):
    def boom(encounter):
        raise RuntimeError("disk full")

    monkeypatch.setattr(records, "create_encounter", boom)
    with pytest.raises(EncounterError, match=r"^Error saving encounter: disk full"):
        create_encounter(context, _segment(S.evn()), _segment(S.pv1()), records)


def test_create_encounter_requires_identity(context, records, monkeypatch):
    monkeypatch.setattr(records, "create_encounter", lambda encounter: None)
    with pytest.raises(EncounterError, match=r"^Invalid encounter$"):
        create_encounter(context, _segment(S.evn()), _segment(S.pv1()), records)


# ------------------------------------------------------------------------------
# create_observation
# ------------------------------------------------------------------------------


def _build(context, encounter, directory, records, line, config=AppConfig()):
    return create_observation(
        context, encounter, _segment(line), directory, records, config
    )


def test_numeric_observation(context, encounter, directory, records):
    line = S.obx("1", "NM", f"{S.WEIGHT}^WEIGHT^99DCT", "61.5")
    result = _build(context, encounter, directory, records, line)
    obs = result.observation
    assert result.proposal is None and not result.skipped
    assert obs.id == 1
    assert obs.value.numeric == 61.5
    assert obs.concept.id == S.WEIGHT
    assert obs.patient == context.patient
    assert obs.location == encounter.location
    assert obs.creator == context.enterer
    assert obs.encounter.id == encounter.id
    assert records.observations == [obs]


def test_obs_datetime_defaults_to_encounter_datetime(context, encounter, directory, records):
    line = S.obx("1", "NM", f"{S.WEIGHT}^WEIGHT", "61.5")
    obs = _build(context, encounter, directory, records, line).observation
    assert obs.obs_datetime == encounter.encounter_datetime


def test_obs_datetime_from_obx14(context, encounter, directory, records):
    line = S.obx("1", "NM", f"{S.WEIGHT}^WEIGHT", "61.5", observed="20250101093000")
    obs = _build(context, encounter, directory, records, line).observation
    assert obs.obs_datetime == datetime(2025, 1, 1, 9, 30)


def test_concept_proposal(context, encounter, directory, records):
    line = S.obx("1", "CWE", f"{S.PROBLEM_ADDED}^PROBLEM ADDED", "PROPOSED^chest pain")
    result = _build(context, encounter, directory, records, line)
    assert result.observation is None
    proposal = result.proposal
    assert proposal.id == 1
    assert proposal.original_text == "chest pain"
    assert proposal.state == "UNMAPPED"
    assert proposal.obs_concept.id == S.PROBLEM_ADDED
    assert proposal.creator == context.enterer
    assert records.observations == []
    assert records.proposals == [proposal]


def test_concept_proposal_uses_configured_sentinel_and_state(
    context, encounter, directory, records
):
    config = AppConfig(proposed_concept_identifier="NEW", concept_proposal_state="OPEN")
    line = S.obx("1", "CE", f"{S.PROBLEM_ADDED}^PROBLEM ADDED", "NEW^rash")
    proposal = _build(context, encounter, directory, records, line, config).proposal
    assert (proposal.original_text, proposal.state) == ("rash", "OPEN")


def test_unsupported_type_is_skipped(context, encounter, directory, records, caplog):
    line = S.obx("4", "SN", f"{S.WEIGHT}^WEIGHT", ">^10")
    with caplog.at_level(logging.WARNING, logger="hl7_inbound_tool.record_builder"):
        result = _build(context, encounter, directory, records, line)
    assert result.skipped
    assert records.observations == [] and records.proposals == []
    assert "unsupported data type 'SN'" in caplog.text


def test_bad_value_raises_observation_error(context, encounter, directory, records):
    obx = _segment(S.obx("3", "NM", f"{S.WEIGHT}^WEIGHT", "heavy"))
    with pytest.raises(ObservationError, match=r"^ValueError: ") as ei:
        create_observation(context, encounter, obx, directory, records)
    assert ei.value.segment is obx
    assert isinstance(ei.value.__cause__, ValueError)


def test_unknown_concept_raises_observation_error(context, encounter, directory, records):
    line = S.obx("1", "NM", "4^UNKNOWN", "1")
    with pytest.raises(ObservationError, match=r"^ResolutionError: Could not find concept 4"):
        _build(context, encounter, directory, records, line)


def test_bad_obx14_raises_observation_error(context, encounter, directory, records):
    line = S.obx("1", "NM", f"{S.WEIGHT}^WEIGHT", "1", observed="yesterday")
    with pytest.raises(ObservationError, match=r"invalid HL7 timestamp"):
        _build(context, encounter, directory, records, line)


def test_store_without_identity_raises_observation_error(
    context, encounter, directory, records, monkeypatch
):
    monkeypatch.setattr(records, "create_observation", lambda obs: 0)
    line = S.obx("1", "ST", f"{S.CLINICAL_NOTE}^NOTE", "fine")
    with pytest.raises(ObservationError, match=r"not assigned an identity"):
        _build(context, encounter, directory, records, line)
