"""Resolver log-line parsing and query/completion correlation.

Inputs:
  - Decoded log lines or raw datagrams from the ingestion server.

Outputs:
  - Classified events, resolved record types, and the LineDispatcher that
    writes them to an event store.
"""

from .classifier import CompletionEvent, QueryEvent, classify_line, split_datagram
from .correlation import CorrelationTable
from .dispatcher import LineDispatcher
from .qtypes import DNS_TYPES, UNKNOWN_TYPE, resolve_type

__all__ = [
    "CompletionEvent",
    "CorrelationTable",
    "DNS_TYPES",
    "LineDispatcher",
    "QueryEvent",
    "UNKNOWN_TYPE",
    "classify_line",
    "resolve_type",
    "split_datagram",
]
