"""Line classifier for resolver query/completion log lines.

Brief:
  Each datagram received by the ingestion server carries one or more
  newline-separated log lines. Two line shapes are recognised:

    [<YYYY-MM-DD HH:MM:SS> ]dns query from <client>: #<txn> <domain>. <type>
    [<YYYY-MM-DD HH:MM:SS> ]dns done query: #<txn> <domain>. <detail>
    [<YYYY-MM-DD HH:MM:SS> ]dns done query: #<txn> <free text>

  Every other line is unmatched and left for the caller to log and drop.

Inputs:
  - Decoded text lines.

Outputs:
  - QueryEvent / CompletionEvent instances, or None for unmatched lines.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple, Union

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

_TS = r"(?:(?P<ts>\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}) )?"

QUERY_LINE_RE = re.compile(
    r"^" + _TS + r"dns query from (?P<client>.+?): #(?P<txn>[0-9]+) "
    r"(?P<domain>[^ ]+)\. (?P<qtype>\w+(?: \(\d+\))?)\Z",
    re.ASCII,
)

COMPLETION_LINE_RE = re.compile(
    r"^" + _TS + r"dns done query: #(?P<txn>[0-9]+) "
    r"(?:(?P<domain>[^ ]+)\. (?P<detail>.+)|(?P<message>.+))\Z",
    re.ASCII,
)

_TYPE_TOKEN_RE = re.compile(
    r"^(?P<head>\w+)(?: \((?P<number>\d+)\))?\Z", re.ASCII
)


@dataclass(frozen=True)
class QueryEvent:
    """A resolver line reporting that a client issued a query."""

    ts: float
    client: str
    txn_id: int
    domain: str
    type_token: str
    ts_text: Optional[str] = None


@dataclass(frozen=True)
class CompletionEvent:
    """A resolver line reporting the outcome of an earlier query.

    Exactly one of (domain, detail) or message is populated: the
    ``<domain>. <detail>`` shape fills the pair, the free-text shape fills
    ``message``.
    """

    ts: float
    txn_id: int
    domain: Optional[str] = None
    detail: Optional[str] = None
    message: Optional[str] = None
    ts_text: Optional[str] = None

    @property
    def has_detail(self) -> bool:
        return self.detail is not None


ClassifiedLine = Union[QueryEvent, CompletionEvent]


def parse_timestamp(text: Optional[str], now: Optional[float] = None) -> float:
    """Brief: Parse a ``YYYY-MM-DD HH:MM:SS`` prefix as local time.

    Inputs:
      - text: Captured timestamp text, or None when the line had none.
      - now: Optional fallback epoch seconds (defaults to time.time()).

    Outputs:
      - float epoch seconds; the fallback when text is missing or does not
        describe a real calendar time (e.g. month 13).
    """

    fallback = time.time() if now is None else float(now)
    if not text:
        return fallback
    try:
        return datetime.strptime(text, TIMESTAMP_FORMAT).timestamp()
    except (ValueError, OverflowError, OSError):
        return fallback


def split_type_token(token: str) -> Tuple[str, Optional[int]]:
    """Brief: Separate the symbolic head of a type token from its number.

    Inputs:
      - token: ``"A"``, ``"UNKNOWN (65399)"``, etc.

    Outputs:
      - (head, number): number is None when no parenthesized suffix exists.
        Tokens that do not match the expected shape are returned as-is with
        no number.
    """

    match = _TYPE_TOKEN_RE.match(token or "")
    if not match:
        return token or "", None
    number = match.group("number")
    return match.group("head"), int(number) if number is not None else None


def classify_line(line: str, now: Optional[float] = None) -> Optional[ClassifiedLine]:
    """Brief: Classify one log line.

    Inputs:
      - line: Single log line without its newline.
      - now: Optional epoch seconds used when the line carries no usable
        timestamp.

    Outputs:
      - QueryEvent, CompletionEvent, or None when the line matches neither
        shape.

    Example:
      >>> ev = classify_line("dns query from 10.0.0.5: #42 example.com. A")
      >>> (ev.client, ev.txn_id, ev.domain, ev.type_token)
      ('10.0.0.5', 42, 'example.com', 'A')
    """

    m = QUERY_LINE_RE.match(line)
    if m:
        ts_text = m.group("ts")
        return QueryEvent(
            ts=parse_timestamp(ts_text, now),
            client=m.group("client"),
            txn_id=int(m.group("txn")),
            domain=m.group("domain"),
            type_token=m.group("qtype"),
            ts_text=ts_text,
        )

    m = COMPLETION_LINE_RE.match(line)
    if m:
        ts_text = m.group("ts")
        return CompletionEvent(
            ts=parse_timestamp(ts_text, now),
            txn_id=int(m.group("txn")),
            domain=m.group("domain"),
            detail=m.group("detail"),
            message=m.group("message"),
            ts_text=ts_text,
        )

    return None


def split_datagram(text: str) -> List[str]:
    """Brief: Split a decoded datagram into non-empty log lines.

    Inputs:
      - text: Decoded datagram payload.

    Outputs:
      - List of lines in arrival order; trailing newlines, carriage returns
        and blank lines are dropped.
    """

    lines: List[str] = []
    for raw in text.rstrip("\n").split("\n"):
        line = raw.rstrip("\r")
        if line.strip():
            lines.append(line)
    return lines
