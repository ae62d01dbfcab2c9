# src/hl7_inbound_tool/decoders.py
"""
Registry of OBX-5 value decoders keyed by OBX-2 data type code.

Provides:
- a @register(*codes) decorator binding HL7 data type codes to decoders,
- lookup by code, falling back to a no-op decoder for unsupported types,
- listing of supported codes.

A decoder returns one of:
- an ObsValue to store on the observation,
- a ProposedConcept when the coded value carries the proposal sentinel,
- None when the data type is not supported (the OBX is skipped).
Decoders raise freely; the record builder turns any exception into an
ObservationError for that OBX.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union

from .hl7_datetime import parse_hl7_date, parse_hl7_time, parse_hl7_timestamp
from .hl7_parser import Segment
from .ports import Directory
from .records import ObsValue
from .resolver import resolve_concept

VALUE_FIELD = 5


@dataclass(frozen=True)
class ProposedConcept:
    """A coded value that asks for a new concept to be created by a human."""

    original_text: str


@dataclass(frozen=True)
class DecodeContext:
    directory: Directory
    proposed_concept_identifier: str = "PROPOSED"


DecodeResult = Union[ObsValue, ProposedConcept, None]
Decoder = Callable[[Segment, DecodeContext], DecodeResult]

# Map HL7 data type code (OBX-2) to a decoder.
_DECODERS: Dict[str, Decoder] = {}


def register(*codes: str) -> Callable[[Decoder], Decoder]:
    """
    Decorator to register a decoder for one or more OBX-2 data type codes.

    Raises
    ------
    ValueError
        If a code is already registered.
    """

    def _wrap(fn: Decoder) -> Decoder:
        for code in codes:
            if code in _DECODERS:
                raise ValueError(f"Decoder already registered for data type {code!r}")
            _DECODERS[code] = fn
        return fn

    return _wrap


def available_codes() -> List[str]:
    """Sorted list of supported data type codes."""
    return sorted(_DECODERS.keys())


def _no_value(obx: Segment, ctx: DecodeContext) -> DecodeResult:
    # TODO: support RP (reference pointer) and SN (structured numeric)
    return None


def get_decoder(code: str) -> Decoder:
    """Return the decoder for code, or the no-op decoder when unsupported."""
    return _DECODERS.get(code, _no_value)


# ------------------------------------------------------------------------------
# decoders
# ------------------------------------------------------------------------------


@register("NM")
def decode_numeric(obx: Segment, ctx: DecodeContext) -> DecodeResult:
    raw = obx.field(VALUE_FIELD)
    value = float(raw)
    if not math.isfinite(value):
        raise ValueError(f"numeric value must be finite, got {raw!r}")
    return ObsValue(numeric=value)


@register("CWE", "CE")
def decode_coded(obx: Segment, ctx: DecodeContext) -> DecodeResult:
    """
    Coded value: OBX-5.1 is a concept ID, or the proposal sentinel followed by
    the free text to propose in OBX-5.2.
    """
    comps = obx.components(VALUE_FIELD)
    if comps[0] == ctx.proposed_concept_identifier:
        text: Optional[str] = comps[1] if len(comps) > 1 else ""
        if not text:
            raise ValueError("proposed concept carries no original text in OBX-5.2")
        return ProposedConcept(original_text=text)
    concept = resolve_concept(comps[0], ctx.directory, kind="coded value concept")
    return ObsValue(coded=concept)


@register("DT")
def decode_date(obx: Segment, ctx: DecodeContext) -> DecodeResult:
    return ObsValue(datetime_value=parse_hl7_date(obx.field(VALUE_FIELD)))


@register("TS")
def decode_timestamp(obx: Segment, ctx: DecodeContext) -> DecodeResult:
    # TS.2 (degree of precision) is ignored
    return ObsValue(datetime_value=parse_hl7_timestamp(obx.component(VALUE_FIELD, 1)))


@register("TM")
def decode_time(obx: Segment, ctx: DecodeContext) -> DecodeResult:
    return ObsValue(datetime_value=parse_hl7_time(obx.field(VALUE_FIELD)))


@register("ST")
def decode_text(obx: Segment, ctx: DecodeContext) -> DecodeResult:
    return ObsValue(text=obx.field(VALUE_FIELD))
