from __future__ import annotations

import argparse
import logging
import signal
import threading
from typing import Any, Dict, List, Optional

from . import DNSLOGD_VERSION
from .config.config_parser import (
    CONFIG_ENV_VAR,
    DEFAULT_CONFIG_PATH,
    apply_cli_overrides,
    parse_config_file,
    resolve_config_path,
)
from .config.logging_config import init_logging
from .ingest.dispatcher import LineDispatcher
from .mirror import DatagramMirror
from .plugins.eventstore import EventStoreError, load_event_store_backend
from .retention import RetentionSweeper
from .servers.udp_server import IngestServer


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dnslogd",
        description="Collect resolver query log lines over UDP into an event store",
    )
    parser.add_argument(
        "--config",
        default=None,
        help=f"Path to YAML config (default: ${CONFIG_ENV_VAR} or {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument("--listen-host", default=None, help="Override listen.host")
    parser.add_argument(
        "--listen-port", type=int, default=None, help="Override listen.port"
    )
    parser.add_argument(
        "--db-path", default=None, help="Override store.config.db_path"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["debug", "info", "warn", "error", "crit"],
        help="Override logging.level",
    )
    parser.add_argument(
        "-v",
        "--var",
        action="append",
        default=[],
        metavar="KEY=YAML",
        help="Set a config variable (repeatable); overrides env and config vars",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {DNSLOGD_VERSION}"
    )
    return parser


def load_config(args: argparse.Namespace) -> Dict[str, Any]:
    """
    Brief: Build the effective configuration from parsed CLI arguments.

    Inputs:
      - args: Namespace from _build_arg_parser().

    Outputs:
      - dict: Config with defaults filled in and CLI overrides applied.

    Raises:
      - ValueError: invalid YAML, variables or schema.
    """
    path = resolve_config_path(args.config)
    cfg = parse_config_file(path, cli_vars=args.var)
    return apply_cli_overrides(
        cfg,
        listen_host=args.listen_host,
        listen_port=args.listen_port,
        db_path=args.db_path,
        log_level=args.log_level,
    )


def build_dispatcher(store, cfg: Dict[str, Any]) -> LineDispatcher:
    corr = cfg.get("correlation") or {}
    return LineDispatcher(
        store,
        drop_self_referential_results=bool(
            corr.get("drop_self_referential_results", False)
        ),
        pending_ttl_seconds=float(corr.get("pending_ttl_seconds", 0) or 0),
        expiry_check_seconds=float(corr.get("expiry_check_seconds", 60) or 0),
    )


def build_sweeper(store, cfg: Dict[str, Any]) -> RetentionSweeper:
    ret = cfg.get("retention") or {}
    return RetentionSweeper(
        store,
        window_seconds=float(ret.get("window_seconds", 86400)),
        interval_seconds=float(ret.get("sweep_interval_seconds", 3600)),
    )


def main(argv: List[str] | None = None) -> int:
    """
    Main entry point for the resolver log collector.
    Parses arguments, loads configuration, opens the event store, starts the
    retention sweeper and serves UDP until a termination signal arrives.

    Args:
        argv: Command-line arguments.

    Returns:
        An exit code: 0 after a signal-driven shutdown, 1 on configuration
        errors, store open failures or when the UDP socket cannot be bound.

    Example use:
        CLI:
            PYTHONPATH=src python -m dnslogd --config config/config.yaml
    """
    args = _build_arg_parser().parse_args(argv)

    try:
        cfg = load_config(args)
    except (ValueError, OSError) as exc:
        print(str(exc))
        return 1

    init_logging(cfg.get("logging"))
    logger = logging.getLogger("dnslogd.main")
    logger.info("dnslogd v%s starting", DNSLOGD_VERSION)

    try:
        store = load_event_store_backend(cfg.get("store"))
    except (EventStoreError, KeyError, TypeError, ValueError) as exc:
        logger.error("Failed to open event store: %s", exc)
        return 1
    logger.info("Using %s event store", type(store).__name__)

    mirror: Optional[DatagramMirror] = None
    mirror_cfg = cfg.get("mirror") or {}
    if mirror_cfg.get("enabled"):
        mirror = DatagramMirror(mirror_cfg.get("file", "./data/raw-datagrams.jsonl"))
        logger.info("Mirroring raw datagrams to %s", mirror.file_path)

    dispatcher = build_dispatcher(store, cfg)
    sweeper = build_sweeper(store, cfg)

    listen = cfg.get("listen") or {}
    host = str(listen.get("host", "0.0.0.0"))
    port = int(listen.get("port", 5354))
    try:
        server = IngestServer(
            host,
            port,
            dispatcher,
            mirror=mirror,
            max_datagram_bytes=int(listen.get("max_datagram_bytes", 65535)),
        )
    except OSError as exc:
        logger.error("Failed to bind UDP %s:%d: %s", host, port, exc)
        if mirror is not None:
            mirror.close()
        store.close()
        return 1

    if (cfg.get("retention") or {}).get("sweep_on_start"):
        sweeper.sweep_once()
    sweeper.start()

    shutdown_event = threading.Event()

    def _request_shutdown(signum, _frame) -> None:
        name = signal.Signals(signum).name
        if not shutdown_event.is_set():
            logger.info("Received %s, shutting down", name)
        shutdown_event.set()

    previous_handlers: Dict[int, Any] = {}
    for sig in (signal.SIGTERM, signal.SIGINT, getattr(signal, "SIGHUP", None)):
        if sig is None:
            continue
        try:
            previous_handlers[sig] = signal.signal(sig, _request_shutdown)
        except (ValueError, OSError):
            logger.warning("Could not install handler for %s", sig)

    bound_host, bound_port = server.address
    logger.info("Listening for resolver logs on udp://%s:%d", bound_host, bound_port)
    udp_thread = server.start(name="dnslogd-udp")

    exit_code = 0
    try:
        while not shutdown_event.wait(0.5):
            if not udp_thread.is_alive():
                logger.error("UDP server thread exited unexpectedly")
                exit_code = 1
                break
    except KeyboardInterrupt:
        logger.info("Received interrupt, shutting down")
    finally:
        try:
            server.shutdown()
        except Exception:
            logger.exception("Error while shutting down UDP server")
        udp_thread.join(timeout=5.0)

        logger.info("Stopping retention sweeper")
        sweeper.stop()

        if mirror is not None:
            mirror.close()

        logger.info("Closing event store")
        try:
            store.close()
        except EventStoreError:
            logger.exception("Error while closing event store")

        for sig, handler in previous_handlers.items():
            if handler is None:
                continue
            try:
                signal.signal(sig, handler)
            except (ValueError, OSError):  # pragma: no cover - platform specific
                logger.debug("Could not restore handler for %s", sig)

    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())  # pragma: no cover
