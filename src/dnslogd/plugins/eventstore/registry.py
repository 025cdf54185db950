"""Registry and alias resolution for event store backends.

Inputs:
  - None directly; helper functions are used by load_event_store_backend() to
    discover BaseEventStore implementations and resolve backend identifiers.

Outputs:
  - discover_event_stores(): Build a mapping of normalized aliases to
    BaseEventStore subclasses by walking dnslogd.plugins.eventstore.* modules.
  - get_event_store_class(): Resolve a backend identifier to a concrete
    BaseEventStore subclass, supporting both aliases and dotted import paths.
"""

from __future__ import annotations

import difflib
import functools
import importlib
import inspect
import pkgutil
import re
from typing import Dict, Iterable, Type

from .base import BaseEventStore

_CAMEL_1 = re.compile(r"(.)([A-Z][a-z]+)")
_CAMEL_2 = re.compile(r"([a-z0-9])([A-Z])")

DEFAULT_PACKAGE = "dnslogd.plugins.eventstore"


@functools.lru_cache(maxsize=1024)
def _camel_to_snake(name: str) -> str:
    s1 = _CAMEL_1.sub(r"\1_\2", name)
    s2 = _CAMEL_2.sub(r"\1_\2", s1)
    return s2.lower()


def _default_alias_for(cls: Type[BaseEventStore]) -> str:
    """Brief: Derive a default alias for a BaseEventStore subclass.

    Inputs:
      - cls: Concrete BaseEventStore subclass.

    Outputs:
      - snake_case alias derived from the class name with the EventStore or
        Store suffix stripped (SqliteEventStore -> "sqlite").
    """

    name = cls.__name__
    for suffix in ("EventStore", "Store"):
        if name.endswith(suffix):
            name = name[: -len(suffix)]
            break
    return _camel_to_snake(name)


def _normalize(alias: str) -> str:
    return alias.strip().lower().replace("-", "_")


def _iter_backend_modules(package_name: str = DEFAULT_PACKAGE) -> Iterable[str]:
    pkg = importlib.import_module(package_name)
    for modinfo in pkgutil.walk_packages(pkg.__path__, pkg.__name__ + "."):
        yield modinfo.name


@functools.lru_cache(maxsize=8)
def discover_event_stores(
    package_name: str = DEFAULT_PACKAGE,
) -> Dict[str, Type[BaseEventStore]]:
    """Brief: Discover BaseEventStore subclasses and register them by alias.

    Inputs:
      - package_name: Package path to scan for backends.

    Outputs:
      - Dict mapping normalized aliases to classes.

    Raises:
      - ValueError when two different classes claim the same alias.
    """

    registry: Dict[str, Type[BaseEventStore]] = {}

    for modname in _iter_backend_modules(package_name):
        module = importlib.import_module(modname)

        for _, obj in inspect.getmembers(module, inspect.isclass):
            if not issubclass(obj, BaseEventStore) or obj is BaseEventStore:
                continue

            claimed = set(_normalize(a) for a in (getattr(obj, "aliases", ()) or ()))
            claimed.add(_normalize(_default_alias_for(obj)))

            for alias in claimed:
                if not alias:
                    continue
                if alias in registry and registry[alias] is not obj:
                    other = registry[alias]
                    raise ValueError(
                        "Duplicate event store alias '%s' claimed by %s.%s and %s.%s"
                        % (
                            alias,
                            obj.__module__,
                            obj.__name__,
                            other.__module__,
                            other.__name__,
                        )
                    )
                registry[alias] = obj

    return registry


def get_event_store_class(
    identifier: str, registry: Dict[str, Type[BaseEventStore]] | None = None
) -> Type[BaseEventStore]:
    """Brief: Resolve identifier to a BaseEventStore subclass.

    Inputs:
      - identifier: Dotted import path ("pkg.mod.Class") or alias.
      - registry: Optional precomputed alias registry.

    Outputs:
      - BaseEventStore subclass corresponding to the identifier.

    Raises:
      - ValueError/TypeError when a dotted path is invalid or does not name a
        BaseEventStore subclass; KeyError for unknown aliases.
    """

    ident = str(identifier or "").strip()
    if "." in ident:
        modname, _, classname = ident.rpartition(".")
        if not modname or not classname:
            raise ValueError(f"Invalid event store path '{identifier}'")
        module = importlib.import_module(modname)
        cls = getattr(module, classname)
        if not (inspect.isclass(cls) and issubclass(cls, BaseEventStore)):
            raise TypeError(f"{identifier} is not a BaseEventStore subclass")
        return cls

    reg = registry or discover_event_stores()
    key = _normalize(ident)
    try:
        return reg[key]
    except KeyError:
        suggestions = difflib.get_close_matches(key, list(reg.keys()), n=3)
        raise KeyError(
            "Unknown event store alias '%s'. Known aliases: %s. Suggestions: %s"
            % (identifier, ", ".join(sorted(reg.keys())), suggestions)
        )
