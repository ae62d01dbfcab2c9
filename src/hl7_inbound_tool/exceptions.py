# src/hl7_inbound_tool/exceptions.py
"""
Custom exceptions for hl7_inbound_tool.

All exceptions inherit from HL7InboundError so that callers can catch
pipeline errors without grabbing unrelated built-in exceptions.

Severity is decided by the caller, not the exception type: the queue
processor treats ParseError, ResolutionError and EncounterError as fatal
for the whole message, and ObservationError as fatal for one OBX only.
"""

from __future__ import annotations

from typing import Any, Optional


class HL7InboundError(Exception):
    """Base class for all hl7_inbound_tool exceptions."""

    pass


class ConfigError(HL7InboundError):
    """Raised when a configuration file holds unknown or invalid settings."""

    pass


class ParseError(HL7InboundError):
    """Raised when an HL7 message cannot be parsed correctly."""

    pass


class ResolutionError(HL7InboundError):
    """Raised when an identifier in a message cannot be resolved to a record."""

    pass


class EncounterError(HL7InboundError):
    """Raised when the encounter for a message cannot be created."""

    pass


class ObservationError(HL7InboundError):
    """
    Raised when a single OBX segment cannot be turned into an observation.

    Attributes
    ----------
    segment : Segment or None
        The OBX segment the failure is bound to.
    """

    def __init__(self, message: str, segment: Optional[Any] = None) -> None:
        super().__init__(message)
        self.segment = segment
