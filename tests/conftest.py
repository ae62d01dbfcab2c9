# tests/conftest.py
# Shared directory and store fixtures for the queue processor tests.
import logging
import warnings

import pytest

from hl7_inbound_tool.memory_store import (
    InMemoryArchive,
    InMemoryDirectory,
    InMemoryErrorStore,
    InMemoryQueue,
    InMemoryRecordStore,
)
from hl7_inbound_tool.processor import QueueProcessor

import hl7_samples as S


def pytest_configure(config):
    # Silences Conda warnings during test runs without requiring user config.
    warnings.filterwarnings(
        "ignore",
        category=FutureWarning,
        module=r"conda\..*",
    )
    logging.getLogger("conda.cli.main_config").setLevel(logging.ERROR)


@pytest.fixture(autouse=True)
def _restore_root_logging():
    # cli.main() and configure_logging() replace root handlers
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


@pytest.fixture
def directory():
    d = InMemoryDirectory()
    d.add_user(S.ENTERER_ID, "admin")
    d.add_user(S.PROVIDER_ID, "doc")
    d.add_patient(S.PATIENT_ID)
    d.add_location(S.LOCATION_ID, "Unknown Location")
    d.add_encounter_type(S.ENCOUNTER_TYPE_ID, "ADULTRETURN")
    d.add_form(S.FORM_ID, "Adult Return Visit", S.ENCOUNTER_TYPE_ID)
    d.add_concept(S.WEIGHT, "WEIGHT (KG)")
    d.add_concept(S.PROBLEM_ADDED, "PROBLEM ADDED")
    d.add_concept(S.YES, "YES")
    d.add_concept(S.RETURN_VISIT_DATE, "RETURN VISIT DATE")
    d.add_concept(S.CLINICAL_NOTE, "CLINICAL NOTE")
    d.add_concept(S.MEDICATION_TIME, "MEDICATION TIME")
    d.add_concept(S.LAST_SEEN, "LAST SEEN")
    return d


@pytest.fixture
def queue():
    return InMemoryQueue()


@pytest.fixture
def archive():
    return InMemoryArchive()


@pytest.fixture
def errors():
    return InMemoryErrorStore()


@pytest.fixture
def records():
    return InMemoryRecordStore()


@pytest.fixture
def processor(queue, archive, errors, directory, records):
    return QueueProcessor(
        queue=queue,
        archive=archive,
        errors=errors,
        directory=directory,
        records=records,
    )
