"""JSON Schema-based validation for the dnslogd YAML configuration.

The schema document lives in ``assets/config-schema.json``. Before
validation the parsed mapping is normalized: ``vars`` are expanded into the
rest of the config and shorthand forms are rewritten into the shapes the
schema describes.
"""

from __future__ import annotations

import copy
import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from jsonschema import Draft202012Validator, ValidationError
from jsonschema.exceptions import SchemaError

logger = logging.getLogger(__name__)

VAR_KEY_RE = re.compile(r"[A-Z_][A-Z0-9_]*")
_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)\}")

UNKNOWN_KEY_POLICIES = ("ignore", "warn", "error")


def is_var_key(key: Any) -> bool:
    """Brief: True when key is an ALL_UPPERCASE variable name.

    Inputs:
      - key: Candidate variable name.

    Outputs:
      - bool: True when key is a str matching [A-Z_][A-Z0-9_]*.
    """

    return isinstance(key, str) and bool(VAR_KEY_RE.fullmatch(key))


def _scalar_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, (int, float, str)):
        return str(value)
    return json.dumps(value)


class VariableExpander:
    """Brief: Resolve ``vars`` entries and substitute them into config values.

    Inputs (constructor):
      - variables: mapping of ALL_UPPERCASE names to YAML values. Values may
        reference other variables.

    Outputs:
      - VariableExpander; call expand() on any config node.

    Notes:
      - A string that is exactly ``$KEY`` or ``${KEY}`` is replaced by the
        variable's value (which may be a list or mapping). A list item of that
        form whose value is a list is spliced into the surrounding list.
      - ``${KEY}`` inside a longer string is replaced by the value's text.
        Unknown names are left as-is.
      - Cycles between variables raise ValueError.
    """

    def __init__(self, variables: Dict[str, Any]) -> None:
        for key in variables:
            if not isinstance(key, str):
                raise ValueError("config.vars keys must be strings")
            if not is_var_key(key):
                raise ValueError(
                    f"config.vars key {key!r} must be ALL_UPPERCASE and match [A-Z_][A-Z0-9_]*"
                )
        self.variables = variables
        self._resolved: Dict[str, Any] = {}

    def resolve_all(self) -> Dict[str, Any]:
        for key in self.variables:
            self.resolve(key, [])
        return dict(self._resolved)

    def resolve(self, key: str, chain: List[str]) -> Any:
        if key in self._resolved:
            return self._resolved[key]
        if key in chain:
            cycle = " -> ".join(chain + [key])
            raise ValueError(f"config.vars contains a cycle: {cycle}")
        if key not in self.variables:
            raise KeyError(key)

        value = self.expand(self.variables[key], chain + [key])
        self._resolved[key] = value
        return value

    def whole_node_name(self, text: str) -> Optional[str]:
        if text.startswith("${") and text.endswith("}"):
            name = text[2:-1]
        elif text.startswith("$"):
            name = text[1:]
        else:
            return None
        return name if name in self.variables else None

    def expand(self, node: Any, chain: Optional[List[str]] = None) -> Any:
        chain = chain or []
        if isinstance(node, str):
            return self._expand_text(node, chain)
        if isinstance(node, list):
            items: List[Any] = []
            for item in node:
                spliced = isinstance(item, str) and self.whole_node_name(item)
                value = self.expand(item, chain)
                if spliced and isinstance(value, list):
                    items.extend(value)
                else:
                    items.append(value)
            return items
        if isinstance(node, dict):
            return {k: self.expand(v, chain) for k, v in node.items()}
        return node

    def _expand_text(self, text: str, chain: List[str]) -> Any:
        name = self.whole_node_name(text)
        if name is not None:
            return copy.deepcopy(self.resolve(name, chain))

        def _sub(match: "re.Match[str]") -> str:
            try:
                return _scalar_text(self.resolve(match.group(1), chain))
            except KeyError:
                return match.group(0)

        return _VAR_PATTERN.sub(_sub, text)


def _normalize_variables_for_validation(cfg: Dict[str, Any]) -> None:
    """Brief: Expand top-level ``vars`` into the config and remove the group.

    Inputs:
      - cfg: Parsed YAML configuration mapping (mutated in-place).

    Outputs:
      - None.

    Notes:
      - Keys are never substituted, only values.
      - The ``vars`` group is removed so the schema does not need to describe
        arbitrary user variables.
    """

    variables = cfg.get("vars")
    if variables is None:
        cfg.pop("vars", None)
        return
    if not isinstance(variables, dict):
        raise ValueError("config.vars must be a mapping when present")

    expander = VariableExpander(variables)
    expander.resolve_all()
    for key in list(cfg.keys()):
        if key == "vars":
            continue
        cfg[key] = expander.expand(cfg[key])
    cfg.pop("vars", None)


def _normalize_store_config_for_validation(cfg: Dict[str, Any]) -> None:
    """Brief: Accept ``store: <alias>`` and ``store.config: null`` shorthands.

    Inputs:
      - cfg: Parsed YAML configuration mapping (mutated in-place).

    Outputs:
      - None.
    """

    store = cfg.get("store")
    if isinstance(store, str):
        cfg["store"] = {"backend": store}
        return
    if isinstance(store, dict) and "config" in store and store["config"] is None:
        store.pop("config")


def _normalize_mirror_config_for_validation(cfg: Dict[str, Any]) -> None:
    """Brief: Accept ``mirror: true|false`` and ``mirror: <path>`` shorthands."""

    mirror = cfg.get("mirror")
    if isinstance(mirror, bool):
        cfg["mirror"] = {"enabled": mirror}
    elif isinstance(mirror, str):
        cfg["mirror"] = {"enabled": True, "file": mirror}


def get_default_schema_path() -> Path:
    """Brief: Resolve the default JSON Schema path for configuration.

    Inputs:
      - None.

    Outputs:
      - Path to ``assets/config-schema.json`` in the nearest ancestor
        directory that has one (the source checkout), or the expected
        location relative to the project root when none is found.
    """

    here = Path(__file__).resolve()
    for ancestor in here.parents:
        candidate = ancestor / "assets" / "config-schema.json"
        if candidate.is_file():
            return candidate
    return here.parents[3] / "assets" / "config-schema.json"


def _load_schema(schema_path: Optional[Path] = None) -> Dict[str, Any]:
    path = schema_path or get_default_schema_path()
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def _format_errors(errors: List[ValidationError], *, config_path: Optional[str]) -> str:
    """Brief: Format jsonschema validation errors into a human-readable string.

    Inputs:
      - errors: List of jsonschema.ValidationError instances.
      - config_path: Optional path to the YAML config being validated.

    Outputs:
      - Multi-line string: a header naming the config followed by one
        ``- <instance path>: <message>`` line per error.
    """

    lines: List[str] = [f"Invalid configuration in {config_path or '<config dict>'}:"]
    for err in errors:
        where = "/".join(str(p) for p in err.path) or "<root>"
        schema_where = "/".join(str(p) for p in err.schema_path)
        lines.append(f"- {where}: {err.message} (schema: {schema_where})")
    return "\n".join(lines)


def _split_extra_property_errors(
    errors: List[ValidationError],
) -> Tuple[List[ValidationError], List[ValidationError]]:
    extra: List[ValidationError] = []
    other: List[ValidationError] = []
    for err in errors:
        if getattr(err, "validator", None) in {
            "additionalProperties",
            "unevaluatedProperties",
        }:
            extra.append(err)
        else:
            other.append(err)
    return extra, other


def validate_config(
    cfg: Dict[str, Any],
    *,
    schema_path: Optional[Path] = None,
    config_path: Optional[str] = "./config/config.yaml",
    unknown_keys: str = "warn",
) -> None:
    """Brief: Normalize and validate a parsed YAML configuration mapping.

    Inputs:
      - cfg: Dict loaded from YAML (mutated in-place by normalization).
      - schema_path: Optional explicit path to the JSON Schema file.
      - config_path: Path of the YAML file, used only for error messages.
      - unknown_keys: Policy for keys the schema does not describe:
        "ignore", "warn" (default: log and continue) or "error".

    Outputs:
      - None on success.

    Raises:
      - ValueError: when validation fails (or unknown keys are present with
        unknown_keys="error"), or when ``vars`` are malformed or cyclic.

    Example:
      >>> import yaml
      >>> data = yaml.safe_load("listen: {host: 127.0.0.1, port: 5354}")
      >>> validate_config(data)  # does not raise for valid config
    """

    if unknown_keys not in UNKNOWN_KEY_POLICIES:
        raise ValueError(
            f"unknown_keys policy must be 'ignore', 'warn', or 'error', got {unknown_keys!r}"
        )

    _normalize_variables_for_validation(cfg)
    _normalize_store_config_for_validation(cfg)
    _normalize_mirror_config_for_validation(cfg)

    effective_schema_path = schema_path or get_default_schema_path()
    if not effective_schema_path.is_file():
        logger.warning(
            "Configuration schema file %s not found; skipping JSON Schema validation",
            effective_schema_path,
        )
        return None

    try:
        schema = _load_schema(effective_schema_path)
        validator = Draft202012Validator(schema)
    except (OSError, json.JSONDecodeError, SchemaError) as exc:
        logger.warning(
            "Failed to load configuration schema at %s: %s; skipping JSON Schema validation",
            effective_schema_path,
            exc,
        )
        return None

    errors = sorted(validator.iter_errors(cfg), key=lambda e: [str(p) for p in e.path])
    if not errors:
        return None

    extra_errors, other_errors = _split_extra_property_errors(errors)
    if other_errors:
        raise ValueError(
            _format_errors(other_errors + extra_errors, config_path=config_path)
        )

    message = _format_errors(extra_errors, config_path=config_path)
    if unknown_keys == "error":
        raise ValueError(message)
    if unknown_keys == "warn":
        logger.warning(message)
    return None

