"""Configuration parsing helpers for the dnslogd CLI.

Brief:
  Reads the YAML config file, merges variables from config/env/CLI, runs
  schema validation (which expands variables), layers the result over the
  built-in defaults and applies CLI overrides.

Inputs:
  - YAML config paths, CLI variable assignments and override values.

Outputs:
  - A fully populated configuration dict.
"""

from __future__ import annotations

import copy
import logging
import os
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .config_schema import is_var_key, validate_config

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/config.yaml"
CONFIG_ENV_VAR = "DNSLOGD_CONFIG"

DEFAULT_CONFIG: Dict[str, Any] = {
    "listen": {"host": "0.0.0.0", "port": 5354, "max_datagram_bytes": 65535},
    "store": {"backend": "sqlite", "config": {"db_path": "./data/dnslogs.db"}},
    "retention": {
        "window_seconds": 86400,
        "sweep_interval_seconds": 3600,
        "sweep_on_start": False,
    },
    "correlation": {
        "pending_ttl_seconds": 0,
        "expiry_check_seconds": 60,
        "drop_self_referential_results": False,
    },
    "mirror": {"enabled": False, "file": "./data/raw-datagrams.jsonl"},
    "logging": {"level": "info", "stderr": True, "file": None, "syslog": False},
}


def _parse_yaml_value(text: str) -> Any:
    """Parse a CLI/environment variable value as YAML, keeping the raw text on error."""

    try:
        return yaml.safe_load(text)
    except yaml.YAMLError:
        return text


def parse_config_variables(
    cfg: Dict[str, Any],
    *,
    cli_vars: Optional[List[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """Brief: Merge config/environment/CLI variables into cfg['vars'].

    Inputs:
      - cfg: Parsed YAML configuration mapping (mutated in-place).
      - cli_vars: Optional list of CLI ``KEY=YAML`` assignments.
      - environ: Optional environment mapping (defaults to os.environ).

    Outputs:
      - dict: The merged variables mapping stored back onto cfg['vars'].

    Precedence:
      - CLI (-v/--var) overrides environment overrides config-file vars.

    Notes:
      - Every ALL_UPPERCASE environment name is merged; names the config
        never references are simply not substituted.

    Example:
      >>> cfg = {'vars': {'PORT': 5354}}
      >>> parse_config_variables(cfg, cli_vars=['PORT=6000'], environ={})['PORT']
      6000
    """

    base = cfg.get("vars")
    if base is None:
        merged: Dict[str, Any] = {}
    elif isinstance(base, dict):
        merged = dict(base)
    else:
        raise ValueError("config.vars must be a mapping when present")

    env = os.environ if environ is None else environ
    for key, value in env.items():
        if is_var_key(key):
            merged[key] = _parse_yaml_value(str(value))

    for assignment in cli_vars or []:
        if "=" not in assignment:
            raise ValueError(
                f"Invalid -v/--var value (expected KEY=YAML), got: {assignment!r}"
            )
        key, raw = assignment.split("=", 1)
        key = key.strip()
        if not is_var_key(key):
            raise ValueError(
                f"Invalid variable name {key!r} (must be ALL_UPPERCASE and match [A-Z_][A-Z0-9_]*)"
            )
        merged[key] = _parse_yaml_value(raw)

    cfg["vars"] = merged
    return merged


def deep_merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Brief: Recursively merge override onto a deep copy of base.

    Inputs:
      - base: Mapping of defaults.
      - override: Mapping whose values win; nested mappings are merged.

    Outputs:
      - dict: New merged mapping (inputs are not mutated).
    """

    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = deep_merge(out[key], value)
        else:
            out[key] = copy.deepcopy(value)
    return out


def resolve_config_path(
    explicit: Optional[str], environ: Optional[Mapping[str, str]] = None
) -> str:
    """Pick the config path: --config, then $DNSLOGD_CONFIG, then config/config.yaml."""

    if explicit:
        return explicit
    env = os.environ if environ is None else environ
    return env.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH


def parse_config_file(
    config_path: str,
    *,
    cli_vars: Optional[List[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
    missing_ok: bool = True,
) -> Dict[str, Any]:
    """Brief: Read, variable-merge, validate and default-fill a YAML config file.

    Inputs:
      - config_path: Path to the YAML configuration file.
      - cli_vars: Optional list of CLI ``KEY=YAML`` assignments.
      - environ: Optional environment mapping (defaults to os.environ).
      - missing_ok: When True a missing file yields the defaults.

    Outputs:
      - dict: Configuration with every top-level section populated.

    Raises:
      - ValueError: when the YAML is malformed, the root is not a mapping,
        variables are invalid or schema validation fails.
      - FileNotFoundError: when the file is missing and missing_ok is False.
    """

    if os.path.isfile(config_path):
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ValueError(f"Failed to parse {config_path}: {exc}") from exc
    elif missing_ok:
        logger.info("Config file %s not found; using defaults", config_path)
        raw = {}
    else:
        raise FileNotFoundError(config_path)

    cfg = raw if raw is not None else {}
    if not isinstance(cfg, dict):
        raise ValueError("Configuration root must be a mapping")

    parse_config_variables(cfg, cli_vars=list(cli_vars or []), environ=environ)
    validate_config(cfg, config_path=config_path)
    merged = deep_merge(DEFAULT_CONFIG, cfg)
    # A configured store section replaces the default one as a whole.
    if isinstance(cfg.get("store"), dict):
        merged["store"] = {
            "backend": cfg["store"].get("backend", "sqlite"),
            "config": copy.deepcopy(cfg["store"].get("config") or {}),
        }
    return merged


def apply_cli_overrides(
    cfg: Dict[str, Any],
    *,
    listen_host: Optional[str] = None,
    listen_port: Optional[int] = None,
    db_path: Optional[str] = None,
    log_level: Optional[str] = None,
) -> Dict[str, Any]:
    """Brief: Apply command-line overrides onto a parsed config (in-place).

    Inputs:
      - cfg: Config dict as returned by parse_config_file().
      - listen_host/listen_port: Override listen.host / listen.port.
      - db_path: Override store.config.db_path.
      - log_level: Override logging.level.

    Outputs:
      - dict: The same cfg, for chaining.
    """

    listen = cfg.setdefault("listen", {})
    if listen_host:
        listen["host"] = listen_host
    if listen_port is not None:
        listen["port"] = int(listen_port)
    if db_path:
        store = cfg.setdefault("store", {})
        store_cfg = store.get("config")
        if not isinstance(store_cfg, dict):
            store_cfg = {}
            store["config"] = store_cfg
        store_cfg["db_path"] = db_path
    if log_level:
        cfg.setdefault("logging", {})["level"] = log_level
    return cfg
