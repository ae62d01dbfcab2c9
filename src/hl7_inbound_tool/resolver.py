# src/hl7_inbound_tool/resolver.py
"""
Resolution of message identifiers against the reference directories.

Every resolver follows the same contract: read one field/component position,
parse it as a positive integer, look it up, and raise ResolutionError when any
step fails. Resolvers have no side effects.

Positions
---------
- enterer  : EVN-5.1  (user directory)
- patient  : PID-3.1  (patient directory)
- provider : PV1-7.1  (user directory)
- location : PV1-3.1  (location directory)
- form     : MSH-21.1 (form directory; the form ID travels as the profile ID)
- concept  : OBX-3.1 or a coded OBX-5.1 (concept directory)
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Optional, TypeVar

from .exceptions import ResolutionError
from .hl7_parser import ParsedMessage, Segment
from .ports import Directory
from .records import Concept, Form, Location, Patient, User

LOG = logging.getLogger(__name__)

R = TypeVar("R")

_INTEGER = re.compile(r"[+-]?\d+", re.ASCII)


# ------------------------------------------------------------------------------
# helpers
# ------------------------------------------------------------------------------


def parse_identifier(raw: str, kind: str) -> int:
    """
    Parse a directory identifier taken from the message.

    Parameters
    ----------
    raw : str
        Wire value (e.g., PID-3.1).
    kind : str
        Human-readable record kind used in error messages.

    Returns
    -------
    int
        The identifier, always positive.

    Raises
    ------
    ResolutionError
        "Invalid <kind> ID" when raw is empty or not an integer,
        "Unable to parse <kind> ID" when it is zero or negative.
    """
    # int() alone would also take "7_0", " 7" and non-ASCII digits
    if not _INTEGER.fullmatch(raw):
        raise ResolutionError(f"Invalid {kind} ID '{raw}'")
    ident = int(raw)
    if ident <= 0:
        raise ResolutionError(f"Unable to parse {kind} ID '{raw}'")
    return ident


def _lookup(kind: str, ident: int, fetch: Callable[[int], Optional[R]]) -> R:
    try:
        record = fetch(ident)
    except Exception as e:
        raise ResolutionError(f"Error retrieving {kind} {ident}: {e}") from e
    if record is None or getattr(record, "id", None) is None:
        raise ResolutionError(f"Could not find {kind} {ident}")
    LOG.debug("Resolved %s %s", kind, ident)
    return record


# ------------------------------------------------------------------------------
# resolvers
# ------------------------------------------------------------------------------


def resolve_enterer(evn: Segment, directory: Directory) -> User:
    """Resolve the data enterer (EVN-5.1, operator ID) to a user."""
    ident = parse_identifier(evn.component(5, 1), "enterer")
    return _lookup("enterer (User)", ident, directory.get_user)


def resolve_patient(pid: Segment, directory: Directory) -> Patient:
    """Resolve PID-3.1 (internal patient ID) to a patient."""
    ident = parse_identifier(pid.component(3, 1), "patient")
    return _lookup("patient", ident, directory.get_patient)


def resolve_provider(pv1: Segment, directory: Directory) -> User:
    """Resolve PV1-7.1 (attending doctor) to a user."""
    ident = parse_identifier(pv1.component(7, 1), "provider")
    return _lookup("provider (User)", ident, directory.get_user)


def resolve_location(pv1: Segment, directory: Directory) -> Location:
    """Resolve PV1-3.1 (assigned patient location) to a location."""
    ident = parse_identifier(pv1.component(3, 1), "location")
    return _lookup("location", ident, directory.get_location)


def resolve_form(msg: ParsedMessage, directory: Directory) -> Form:
    """Resolve the form recorded as the message profile (MSH-21.1)."""
    ident = parse_identifier(msg.header.component(21, 1), "form")
    return _lookup("form", ident, directory.get_form)


def resolve_concept(raw: str, directory: Directory, kind: str = "concept") -> Concept:
    """Resolve a concept ID taken from an OBX segment."""
    ident = parse_identifier(raw, kind)
    return _lookup(kind, ident, directory.get_concept)
