"""Record-type resolution for resolver log tokens.

Brief:
  Resolver log lines carry the query type either as a symbolic mnemonic
  (``A``, ``AAAA``, ``HTTPS``) or, for types the resolver does not know by
  name, as ``UNKNOWN (<number>)``. This module maps either form to a
  canonical type name plus a ``blocked`` flag.

Inputs:
  - Raw type tokens captured by dnslogd.ingest.classifier.

Outputs:
  - resolve_type(): (canonical_name, blocked) tuples.
"""

from __future__ import annotations

import re
from typing import Dict, Optional, Tuple

UNKNOWN_TYPE = "UNKNOWN"

DNS_TYPES: Dict[int, str] = {
    1: "A",
    2: "NS",
    5: "CNAME",
    6: "SOA",
    12: "PTR",
    15: "MX",
    16: "TXT",
    28: "AAAA",
    33: "SRV",
    35: "NAPTR",
    39: "DNAME",
    41: "OPT",
    43: "DS",
    46: "RRSIG",
    47: "NSEC",
    48: "DNSKEY",
    50: "NSEC3",
    51: "NSEC3PARAM",
    52: "TLSA",
    53: "SMIMEA",
    55: "HIP",
    59: "CDS",
    60: "CDNSKEY",
    61: "OPENPGPKEY",
    62: "CSYNC",
    63: "ZONEMD",
    64: "SVCB",
    65: "HTTPS",
    99: "SPF",
    108: "EUI48",
    109: "EUI64",
    257: "CAA",
}

DNS_TYPE_NAMES = frozenset(DNS_TYPES.values())

_NUMERIC_SUFFIX = re.compile(r"\(([^)]*)\)")
_ASCII_NUMBER = re.compile(r"[0-9]+")


def type_name_for_number(number: int) -> Optional[str]:
    """Return the canonical mnemonic for a numeric type, or None."""

    return DNS_TYPES.get(number)


def extract_type_number(token: str) -> Optional[int]:
    """Brief: Pull the numeric code out of an ``UNKNOWN (n)`` token.

    Inputs:
      - token: Raw type token, e.g. ``"UNKNOWN (65)"``.

    Outputs:
      - int when the first parenthesized group holds a decimal integer,
        otherwise None (no parentheses, empty group, non-numeric or non-ASCII digits).
    """

    match = _NUMERIC_SUFFIX.search(token or "")
    if not match:
        return None
    text = match.group(1).strip()
    if not _ASCII_NUMBER.fullmatch(text):
        return None
    return int(text)


def resolve_type(token: Optional[str]) -> Tuple[str, bool]:
    """Brief: Map a raw type token to ``(canonical_name, blocked)``.

    Inputs:
      - token: Type token from a query line. May be a mnemonic (``"AAAA"``),
        an unknown-type form (``"UNKNOWN (65399)"``), or empty.

    Outputs:
      - (name, blocked):
        - Known mnemonic: (token, False).
        - ``UNKNOWN (n)`` with n in DNS_TYPES: (DNS_TYPES[n], False).
        - ``UNKNOWN`` with a missing, unparsable, or unlisted number, or an
          empty token: ("UNKNOWN", True).
        - Any other bareword: (token, False). The resolver emits a handful of
          meta types (ANY, AXFR, IXFR) that are valid but not tabled.

    Example:
      >>> resolve_type("UNKNOWN (65)")
      ('HTTPS', False)
      >>> resolve_type("UNKNOWN (65399)")
      ('UNKNOWN', True)
    """

    raw = (token or "").strip()
    if not raw:
        return UNKNOWN_TYPE, True

    if raw in DNS_TYPE_NAMES:
        return raw, False

    if raw.startswith(UNKNOWN_TYPE):
        number = extract_type_number(raw)
        if number is None:
            return UNKNOWN_TYPE, True
        name = type_name_for_number(number)
        if name is None:
            return UNKNOWN_TYPE, True
        return name, False

    return raw, False
