"""Query-event store backend abstraction layer.

Inputs:
  - None directly; this package is imported by code that needs the store
    interface or wants a configured backend instance.

Outputs:
  - Exposes the base interface, the configuration model, and
    load_event_store_backend() which builds a backend from ``store`` config.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Union

from .base import BaseEventStore, EventStoreBackendConfig, EventStoreError
from .registry import get_event_store_class

__all__ = [
    "BaseEventStore",
    "EventStoreBackendConfig",
    "EventStoreError",
    "load_event_store_backend",
]

logger = logging.getLogger(__name__)


def load_event_store_backend(
    cfg: Optional[Union[Dict[str, Any], EventStoreBackendConfig]],
) -> BaseEventStore:
    """Brief: Construct the configured event store backend.

    Inputs:
      - cfg: ``store`` config mapping (``{"backend": ..., "config": {...}}``),
        an EventStoreBackendConfig, or None for the SQLite default.

    Outputs:
      - BaseEventStore instance. The backend's default_config is merged under
        the user-provided options.

    Raises:
      - pydantic.ValidationError for malformed config, KeyError/TypeError for
        unknown backends, EventStoreError when the backend cannot open its
        storage.

    Example:
      >>> store = load_event_store_backend({"backend": "memory"})
      >>> store.insert_event(0.0, "10.0.0.5", "example.com", "A", False)
      1
    """

    if isinstance(cfg, EventStoreBackendConfig):
        model = cfg
    else:
        model = EventStoreBackendConfig(**(cfg or {}))

    cls = get_event_store_class(model.backend)
    options: Dict[str, Any] = dict(getattr(cls, "default_config", {}) or {})
    options.update(model.config or {})

    logger.debug("Creating %s event store with %s", cls.__name__, options)
    return cls(**options)
