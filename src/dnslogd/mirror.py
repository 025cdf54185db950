"""Append-only mirror of raw ingested datagrams.

Inputs:
  - file_path: where to append JSON-lines records.

Outputs:
  - DatagramMirror whose write() appends one record per datagram.

Notes:
  - This is a diagnostic side channel for replaying or inspecting what the
    resolver actually sent. Failures mark the mirror unhealthy and are
    logged; they never affect ingestion.
"""

from __future__ import annotations

import json
import logging
import os
import socket
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from . import DNSLOGD_VERSION

logger = logging.getLogger(__name__)


class DatagramMirror:
    """JSON-lines file recording every raw datagram.

    Inputs (constructor):
        file_path: Path to the mirror file. Parent directories are created
            if they do not already exist.

    Outputs:
        DatagramMirror instance. A header line marking the start of the
        session is written on open.
    """

    def __init__(self, file_path: str) -> None:
        self._healthy = False
        self._fh = None

        path = os.path.abspath(os.path.expanduser(str(file_path)))
        self._file_path = path
        dir_path = os.path.dirname(path)
        try:
            if dir_path:
                os.makedirs(dir_path, exist_ok=True)
            self._fh = open(path, "a", encoding="utf-8")
        except OSError:
            logger.exception("Failed to open datagram mirror %s for appending", path)
            return

        try:
            hostname = socket.gethostname()
        except OSError:  # pragma: no cover
            hostname = "unknown-host"

        header = {
            "log_start": datetime.now(timezone.utc).isoformat(),
            "version": f"v{DNSLOGD_VERSION}",
            "hostname": hostname,
        }
        try:
            self._fh.write(json.dumps(header, separators=(",", ":")) + "\n")
            self._fh.flush()
        except OSError:  # pragma: no cover
            logger.exception("Failed to write datagram mirror header")
            return

        self._healthy = True

    @property
    def file_path(self) -> str:
        return self._file_path

    def health_check(self) -> bool:
        return bool(self._healthy and self._fh is not None)

    def write(self, data: Union[bytes, str], peer: Optional[str] = None) -> None:
        """Brief: Append one datagram record.

        Inputs:
            data: Raw datagram payload; bytes are decoded as UTF-8 with
                replacement so the record is always valid JSON.
            peer: Optional sender address.

        Outputs:
            None.
        """

        if not self.health_check():
            return

        if isinstance(data, (bytes, bytearray, memoryview)):
            text = bytes(data).decode("utf-8", errors="replace")
        else:
            text = str(data)

        record: Dict[str, Any] = {"ts": time.time(), "peer": peer, "data": text}
        try:
            self._fh.write(json.dumps(record, separators=(",", ":")) + "\n")
            self._fh.flush()
        except (OSError, ValueError):
            logger.exception("Failed to append datagram to mirror %s", self._file_path)
            self._healthy = False

    def close(self) -> None:
        try:
            if self._fh is not None:
                self._fh.flush()
                self._fh.close()
        except (OSError, ValueError):  # pragma: no cover
            logger.exception("Failed to close datagram mirror %s", self._file_path)
        finally:
            self._healthy = False
