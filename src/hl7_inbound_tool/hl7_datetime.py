# src/hl7_inbound_tool/hl7_datetime.py
"""
Parsers for the HL7 v2 date/time data types.

- DT  : YYYY[MM[DD]]                                   -> datetime.date
- TS  : YYYY[MM[DD[HH[MM[SS[.S[S[S[S]]]]]]]]][+/-ZZZZ] -> datetime.datetime
- TM  : HH[MM[SS[.S[S[S[S]]]]]][+/-ZZZZ]               -> datetime.time

Omitted trailing parts default to their lowest value. A UTC offset, when
present, produces a timezone-aware result. Anything else raises ValueError.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

_DT = re.compile(r"^(\d{4})(\d{2})?(\d{2})?$")
_TS = re.compile(
    r"^(\d{4})(?:(\d{2})(?:(\d{2})(?:(\d{2})(?:(\d{2})(?:(\d{2})(?:\.(\d{1,4}))?)?)?)?)?)?"
    r"([+-]\d{4})?$"
)
_TM = re.compile(r"^(\d{2})(?:(\d{2})(?:(\d{2})(?:\.(\d{1,4}))?)?)?([+-]\d{4})?$")


def _offset(raw: Optional[str]) -> Optional[timezone]:
    if not raw:
        return None
    sign = -1 if raw[0] == "-" else 1
    hours, minutes = int(raw[1:3]), int(raw[3:5])
    if hours > 23 or minutes > 59:
        raise ValueError(f"invalid UTC offset {raw!r}")
    return timezone(sign * timedelta(hours=hours, minutes=minutes))


def _micros(frac: Optional[str]) -> int:
    # up to 4 digits of fractional seconds, right-padded to microseconds
    return int(frac.ljust(6, "0")) if frac else 0


def parse_hl7_date(value: str) -> date:
    """
    Parse an HL7 DT value.

    Raises
    ------
    ValueError
        If value is empty or not a valid DT.
    """
    s = (value or "").strip()
    m = _DT.match(s)
    if not m:
        raise ValueError(f"invalid HL7 date {value!r}")
    year, month, day = m.groups()
    return date(int(year), int(month or 1), int(day or 1))


def parse_hl7_timestamp(value: str) -> datetime:
    """
    Parse an HL7 TS/DTM value; date-only values give midnight.

    Raises
    ------
    ValueError
        If value is empty or not a valid TS.
    """
    s = (value or "").strip()
    m = _TS.match(s)
    if not m:
        raise ValueError(f"invalid HL7 timestamp {value!r}")
    year, month, day, hour, minute, second, frac, tz = m.groups()
    return datetime(
        int(year),
        int(month or 1),
        int(day or 1),
        int(hour or 0),
        int(minute or 0),
        int(second or 0),
        _micros(frac),
        tzinfo=_offset(tz),
    )


def parse_hl7_time(value: str) -> time:
    """
    Parse an HL7 TM value.

    Raises
    ------
    ValueError
        If value is empty or not a valid TM.
    """
    s = (value or "").strip()
    m = _TM.match(s)
    if not m:
        raise ValueError(f"invalid HL7 time {value!r}")
    hour, minute, second, frac, tz = m.groups()
    return time(
        int(hour),
        int(minute or 0),
        int(second or 0),
        _micros(frac),
        tzinfo=_offset(tz),
    )
