"""Abstract base classes for query-event store backends.

This module defines:

- EventStoreBackendConfig: Pydantic model describing the configured backend
  (backend identifier plus backend-specific config).
- EventStoreError: Raised by backends when a write or read fails.
- BaseEventStore: Interface the ingestion dispatcher and retention sweeper
  write through. Concrete backends must subclass it and implement every
  method.

The ingestion core only inserts rows, sets a row's result once, and deletes
rows older than a cutoff. The read helpers (select_events, get_event) exist
for downstream reporting and for tests.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


def normalize_domain(domain: str) -> str:
    """Return domain without surrounding whitespace or trailing dot."""

    return (domain or "").strip().rstrip(".")


def normalize_paging(page: Any, page_size: Any, default_size: int = 20) -> Tuple[int, int]:
    """Brief: Coerce page/page_size query parameters to sane integers.

    Inputs:
      - page: Requested page (1-based); invalid or < 1 becomes 1.
      - page_size: Requested page size; invalid becomes default_size, < 1
        becomes 1.

    Outputs:
      - (page, page_size) tuple of ints.
    """

    try:
        page_i = int(page)
    except (TypeError, ValueError):
        page_i = 1
    if page_i < 1:
        page_i = 1

    try:
        page_size_i = int(page_size)
    except (TypeError, ValueError):
        page_size_i = default_size
    if page_size_i < 1:
        page_size_i = 1
    return page_i, page_size_i


def total_pages(total: int, page_size: int) -> int:
    if page_size <= 0:
        return 0
    return (total + page_size - 1) // page_size


class EventStoreBackendConfig(BaseModel):
    """Brief: Typed configuration model for the event store backend.

    Inputs (constructor fields):
      - backend: Short alias (for example, "sqlite", "memory") or a
        fully-qualified dotted import path to a BaseEventStore subclass.
      - config: Free-form mapping of backend-specific options (for example,
        db_path for SQLite). Concrete backends validate these themselves.

    Outputs:
      - EventStoreBackendConfig instance with normalized types.
    """

    model_config = ConfigDict(extra="allow")

    backend: str = Field(default="sqlite", description="Backend alias or dotted import path")
    config: Dict[str, Any] = Field(
        default_factory=dict,
        description="Backend-specific configuration options",
    )


class EventStoreError(Exception):
    """Brief: Event store operation failure.

    Inputs:
      - message: description of the failed operation.

    Outputs:
      - Exception instance; the original driver error is chained as
        ``__cause__``.
    """


class BaseEventStore:
    """Brief: Base class for query-event store backends.

    Implementations are responsible for:
      - Assigning a stable integer id to each inserted event.
      - Setting an event's result at most once.
      - Deleting events older than a cutoff timestamp.

    Inputs (constructor):
      - **config: Backend-specific configuration mapping.

    Outputs:
      - Initialized backend instance when implemented by a subclass.

    Notes:
      - Methods raise EventStoreError on failure; callers decide whether the
        failure is fatal (it never is in the ingestion path).
    """

    # Extra aliases accepted by the backend registry in addition to the one
    # derived from the class name.
    aliases: tuple = ()

    # Defaults merged under the user's backend config by the loader.
    default_config: Dict[str, Any] = {}

    def __init__(self, **config: object) -> None:  # pragma: no cover - interface only
        raise NotImplementedError("BaseEventStore.__init__ must be implemented")

    # ------------------------------------------------------------------
    # Health and lifecycle
    # ------------------------------------------------------------------
    def health_check(self) -> bool:  # pragma: no cover - interface only
        """Brief: Return True when the underlying backend is usable."""

        raise NotImplementedError("health_check() must be implemented by a subclass")

    def close(self) -> None:  # pragma: no cover - interface only
        """Brief: Close the backend and release any associated resources."""

        raise NotImplementedError("close() must be implemented by a subclass")

    # ------------------------------------------------------------------
    # Write API used by the ingestion core
    # ------------------------------------------------------------------
    def insert_event(
        self,
        ts: float,
        client: str,
        domain: str,
        qtype: str,
        blocked: bool,
    ) -> int:  # pragma: no cover - interface only
        """Brief: Append a query event and return its identifier.

        Inputs:
          - ts: Event time as Unix timestamp (float seconds).
          - client: Client address string.
          - domain: Queried name without trailing dot.
          - qtype: Canonical record type name.
          - blocked: True when the type could not be resolved.

        Outputs:
          - int: identifier assigned to the new event.
        """

        raise NotImplementedError("insert_event() must be implemented by a subclass")

    def update_result(
        self, event_id: int, result: Optional[str]
    ) -> bool:  # pragma: no cover - interface only
        """Brief: Record the completion outcome for an event.

        Inputs:
          - event_id: Identifier returned by insert_event().
          - result: Completion detail, or None for a failed/blocked query
            with no detail.

        Outputs:
          - bool: True when an uncompleted event was updated; False when no
            such event exists (purged, unknown, or already completed).
        """

        raise NotImplementedError("update_result() must be implemented by a subclass")

    def delete_older_than(self, cutoff_ts: float) -> int:  # pragma: no cover - interface only
        """Brief: Delete every event with ts strictly before cutoff_ts.

        Outputs:
          - int: number of deleted events.
        """

        raise NotImplementedError(
            "delete_older_than() must be implemented by a subclass"
        )

    # ------------------------------------------------------------------
    # Read helpers for reporting consumers
    # ------------------------------------------------------------------
    def get_event(self, event_id: int) -> Optional[Dict[str, Any]]:  # pragma: no cover - interface only
        """Brief: Return a single event as a dict, or None when absent."""

        raise NotImplementedError("get_event() must be implemented by a subclass")

    def select_events(
        self,
        client: Optional[str] = None,
        domain: Optional[str] = None,
        qtype: Optional[str] = None,
        blocked: Optional[bool] = None,
        start_ts: Optional[float] = None,
        end_ts: Optional[float] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Dict[str, Any]:  # pragma: no cover - interface only
        """Brief: Select events with basic filtering and pagination.

        Outputs:
          - Dict with keys total, page, page_size, total_pages and items
            (newest first).
        """

        raise NotImplementedError("select_events() must be implemented by a subclass")

    def count_events(self) -> int:  # pragma: no cover - interface only
        """Brief: Return the number of stored events."""

        raise NotImplementedError("count_events() must be implemented by a subclass")
