# src/hl7_inbound_tool/hl7_parser.py
"""
HL7 v2 (ER7) parsing utilities built on hl7apy.

Provides:
- parse_message: raw ER7 text -> immutable ParsedMessage (hl7apy, TOLERANT)
- Segment: positional field/component access with HL7 1-based numbering
- SegmentCursor: forward-only scan over a message's segments
- to_pretty_segments: segment-per-line ER7 strings
- to_dict: map of segment name -> list of ER7 strings

Field and component values come from the hl7apy element tree. Each segment
also keeps its raw line, so ParsedMessage.to_er7() reproduces the input text
for any message that uses a single segment terminator and has no blank lines.
"""

from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from hl7apy.consts import VALIDATION_LEVEL
from hl7apy.exceptions import HL7apyException
from hl7apy.parser import parse_message as _hl7apy_parse_message

from .exceptions import ParseError

# Segment IDs are three characters: an uppercase letter then letters/digits.
_SEGMENT_ID = re.compile(r"^[A-Z][A-Z0-9]{2}$")
_LINE_SPLIT = re.compile(r"\r\n|\r|\n")

HEADER_SEGMENT = "MSH"


# ------------------------------------------------------------------------------
# model
# ------------------------------------------------------------------------------


@dataclass(frozen=True)
class Delimiters:
    """
    Separator characters declared by a message.

    Attributes
    ----------
    field : str
        MSH-1, normally "|".
    component : str
        First encoding character (MSH-2), normally "^".
    repetition : str
        Second encoding character, normally "~".
    escape : str
        Third encoding character, normally "\\".
    subcomponent : str
        Fourth encoding character, normally "&".
    segment : str
        Segment terminator detected in the raw text ("\\r", "\\n" or "\\r\\n").
    """

    field: str = "|"
    component: str = "^"
    repetition: str = "~"
    escape: str = "\\"
    subcomponent: str = "&"
    segment: str = "\r"

    @property
    def encoding_characters(self) -> str:
        return self.component + self.repetition + self.escape + self.subcomponent

    @classmethod
    def from_hl7apy(cls, encoding_chars: Dict[str, str], segment: str) -> "Delimiters":
        """Build from an hl7apy encoding_chars mapping and a detected terminator."""
        return cls(
            field=encoding_chars["FIELD"],
            component=encoding_chars["COMPONENT"],
            repetition=encoding_chars["REPETITION"],
            escape=encoding_chars["ESCAPE"],
            subcomponent=encoding_chars["SUBCOMPONENT"],
            segment=segment,
        )


def _position(name: Optional[str]) -> Optional[int]:
    # hl7apy names fields "<segment>_<n>", e.g. "PID_3"
    if not name:
        return None
    _, _, pos = name.rpartition("_")
    return int(pos) if pos.isdigit() else None


def _er7(x: Any) -> str:
    return x.to_er7()


@dataclass(frozen=True)
class Segment:
    """
    One segment of a parsed message.

    `element` is the hl7apy Segment; `raw` is the segment line exactly as it
    appeared on the wire. HL7 positions are 1-based, and for MSH the field
    separator itself is MSH-1 and the encoding characters are MSH-2.
    """

    raw: str
    delimiters: Delimiters
    element: Any = dataclasses.field(compare=False, repr=False)

    @property
    def type_code(self) -> str:
        return self.element.name

    def field(self, index: int) -> str:
        """
        Return the ER7 value of a 1-based field position.

        Parameters
        ----------
        index : int
            HL7 field number (e.g., 3 for PID-3).

        Returns
        -------
        str
            The field's ER7 value with repetitions joined by the repetition
            separator, or "" when the segment does not carry the field.

        Raises
        ------
        ValueError
            If index is lower than 1.
        """
        if index < 1:
            raise ValueError(f"field index must be >= 1, got {index}")
        if self.type_code == HEADER_SEGMENT and index <= 2:
            if index == 1:
                return self.delimiters.field
            return self.delimiters.encoding_characters

        reps = [_er7(f) for f in self.element.children if _position(f.name) == index]
        return self.delimiters.repetition.join(reps)

    def components(self, index: int) -> List[str]:
        """Return the components of a field, split on the component separator."""
        value = self.field(index)
        # MSH-1 and MSH-2 hold the delimiters themselves and are never split
        if self.type_code == HEADER_SEGMENT and index <= 2:
            return [value]
        return value.split(self.delimiters.component)

    def component(self, index: int, comp_index: int) -> str:
        """
        Return one component of a field, both positions 1-based.

        Missing fields or components yield "" rather than an error.
        """
        if comp_index < 1:
            raise ValueError(f"component index must be >= 1, got {comp_index}")
        comps = self.components(index)
        if comp_index > len(comps):
            return ""
        return comps[comp_index - 1]

    def to_er7(self) -> str:
        return self.raw

    def __str__(self) -> str:
        return self.to_er7()


@dataclass(frozen=True)
class ParsedMessage:
    """
    Immutable parsed message: the header-declared delimiters plus its segments
    in wire order. Use cursor() to obtain a fresh forward cursor for one
    processing pass.
    """

    delimiters: Delimiters
    segments: Tuple[Segment, ...]
    trailing_terminator: bool = False
    element: Any = dataclasses.field(default=None, compare=False, repr=False)

    @property
    def header(self) -> Segment:
        return self.segments[0]

    @property
    def version(self) -> str:
        """MSH-12.1, e.g. "2.5"."""
        return self.header.component(12, 1)

    @property
    def message_type(self) -> str:
        """MSH-9.1, e.g. "ORU"."""
        return self.header.component(9, 1)

    @property
    def trigger_event(self) -> str:
        """MSH-9.2, e.g. "R01"."""
        return self.header.component(9, 2)

    @property
    def control_id(self) -> str:
        return self.header.field(10)

    @property
    def profile_id(self) -> str:
        """MSH-21, the message profile identifier (carries the form ID)."""
        return self.header.field(21)

    def cursor(self) -> "SegmentCursor":
        return SegmentCursor(self.segments)

    def to_er7(self) -> str:
        term = self.delimiters.segment
        text = term.join(seg.to_er7() for seg in self.segments)
        if self.trailing_terminator:
            text += term
        return text


# ------------------------------------------------------------------------------
# cursor
# ------------------------------------------------------------------------------


class SegmentCursor:
    """
    Forward-only position over a sequence of segments.

    The cursor never moves backwards: a search that finds nothing leaves it at
    the end of the message, so segment groups are consumed left-to-right once.
    """

    def __init__(self, segments: Tuple[Segment, ...]) -> None:
        self._segments = segments
        self._pos = 0

    @property
    def position(self) -> int:
        """Index of the next segment to be examined."""
        return self._pos

    def find_next(self, predicate: Callable[[Segment], bool]) -> Optional[int]:
        """
        Advance past the next segment satisfying predicate.

        Returns
        -------
        int or None
            Index of the matching segment, or None when no later segment
            matches (the cursor is then exhausted).
        """
        for idx in range(self._pos, len(self._segments)):
            if predicate(self._segments[idx]):
                self._pos = idx + 1
                return idx
        self._pos = len(self._segments)
        return None

    def next_segment(self, type_code: Optional[str] = None) -> Optional[Segment]:
        """
        Return the next segment, or the next one of a given type.

        Without type_code the cursor advances by exactly one segment.
        With type_code non-matching segments are skipped.
        """
        if type_code is None:
            if self._pos >= len(self._segments):
                return None
            seg = self._segments[self._pos]
            self._pos += 1
            return seg

        idx = self.find_next(lambda s: s.type_code == type_code)
        return None if idx is None else self._segments[idx]

    def has_next(self, type_code: Optional[str] = None) -> bool:
        """Peek: True if the immediately following segment exists (and matches)."""
        if self._pos >= len(self._segments):
            return False
        return type_code is None or self._segments[self._pos].type_code == type_code


# ------------------------------------------------------------------------------
# parsing
# ------------------------------------------------------------------------------


def _detect_terminator(raw: str) -> str:
    """Return the first segment terminator used in raw ("\\r" if none)."""
    m = _LINE_SPLIT.search(raw)
    return m.group(0) if m else "\r"


def _check_header(header: str) -> str:
    """
    Check the raw MSH line before handing the message to hl7apy.

    Returns the field separator.
    """
    if not header.startswith(HEADER_SEGMENT):
        raise ParseError(f"Message must begin with an MSH segment, got {header[:3]!r}")
    if len(header) < 5:
        raise ParseError("MSH segment is too short to declare its delimiters")

    field_sep = header[3]
    if field_sep.isalnum() or field_sep.isspace():
        raise ParseError(f"Invalid field separator {field_sep!r} in MSH-1")

    fields = header.split(field_sep)
    encoding = fields[1]
    if not encoding:
        raise ParseError("MSH-2 encoding characters are missing")
    if len(set(encoding)) != len(encoding):
        raise ParseError(f"MSH-2 encoding characters repeat: {encoding!r}")
    if len(encoding) != 4:
        raise ParseError(f"MSH-2 must declare four encoding characters, got {encoding!r}")

    msg_type = fields[8] if len(fields) > 8 else ""
    if not msg_type.split(encoding[0])[0]:
        raise ParseError("MSH-9 message type is empty")
    return field_sep


def parse_message(raw: str) -> ParsedMessage:
    """
    Parse raw ER7 text into a ParsedMessage.

    Parameters
    ----------
    raw : str
        Raw HL7 v2 message; segments separated by CR, LF or CRLF.

    Returns
    -------
    ParsedMessage
        Segments in wire order with the delimiters declared in MSH.

    Raises
    ------
    TypeError
        If raw is not a string.
    ParseError
        If the text is blank, the MSH header is missing or malformed, a
        segment ID is invalid, MSH-9 carries no message type, or hl7apy
        rejects the message.
    """
    if not isinstance(raw, str):
        raise TypeError(f"raw must be str, got {type(raw).__name__}")
    if raw.strip() == "":
        raise ParseError("raw must be a non-empty HL7 v2 string")

    terminator = _detect_terminator(raw)
    lines = _LINE_SPLIT.split(raw)
    trailing = len(lines) > 1 and lines[-1] == ""
    lines = [line for line in lines if line.strip() != ""]

    field_sep = _check_header(lines[0])
    for line in lines:
        type_code = line.split(field_sep, 1)[0]
        if not _SEGMENT_ID.match(type_code):
            raise ParseError(f"Invalid segment ID {type_code!r}")

    # hl7apy expects CR-separated segments
    try:
        message = _hl7apy_parse_message(
            "\r".join(lines),
            find_groups=False,
            validation_level=VALIDATION_LEVEL.TOLERANT,
        )
    except (HL7apyException, IndexError) as e:
        # malformed headers can also surface as IndexError from hl7apy
        raise ParseError(f"Failed to parse HL7 v2 message: {e}") from e

    children = list(message.children)
    if len(children) != len(lines):
        raise ParseError(
            f"Failed to parse HL7 v2 message: expected {len(lines)} segments, "
            f"got {len(children)}"
        )

    delims = Delimiters.from_hl7apy(message.encoding_chars, terminator)
    segments = tuple(
        Segment(raw=line, delimiters=delims, element=child)
        for line, child in zip(lines, children)
    )
    return ParsedMessage(
        delimiters=delims,
        segments=segments,
        trailing_terminator=trailing,
        element=message,
    )


# ------------------------------------------------------------------------------
# display helpers
# ------------------------------------------------------------------------------


def to_pretty_segments(msg: ParsedMessage) -> List[str]:
    """
    Return a list of ER7 strings, one per segment, in message order.

    Raises
    ------
    TypeError
        If msg is not a ParsedMessage.
    """
    if not isinstance(msg, ParsedMessage):
        raise TypeError(f"msg must be ParsedMessage, got {type(msg).__name__}")

    return [seg.to_er7() for seg in msg.segments]


def to_dict(msg: ParsedMessage) -> Dict[str, Any]:
    """
    Return a dictionary mapping segment name to list of ER7 strings.

    Example: {"MSH": ["MSH|^~\\&|..."], "OBX": ["OBX|1|...", "OBX|2|..."]}
    """
    if not isinstance(msg, ParsedMessage):
        raise TypeError(f"msg must be ParsedMessage, got {type(msg).__name__}")

    out: Dict[str, Any] = {}
    for seg in msg.segments:
        out.setdefault(seg.type_code, []).append(seg.to_er7())
    return out
