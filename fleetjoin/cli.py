"""fleetjoin command line.

    fleetjoin [--config PATH] bootstrap [--region R] [--log-level L] [--status-dir D]
    fleetjoin [--config PATH] user-data [--install-spec S]
    fleetjoin [--config PATH] tags [--asg NAME]

``bootstrap`` exits 0 once the node is joined, 1 if the attempt aborted
and 2 on configuration errors.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from collections.abc import Sequence
from pathlib import Path

from loguru import logger

from fleetjoin.config import BootstrapConfig, RawConfig, load_config
from fleetjoin.coordinator import BootstrapOutcome, BootstrapState
from fleetjoin.exceptions import ConfigurationError
from fleetjoin.launch import asg_tags, render_user_data, worker_tags
from fleetjoin.logging import setup_logging, teardown_logging
from fleetjoin.module import build_coordinator
from fleetjoin.status import write_status

log = logger.bind(component="cli")

EXIT_JOINED = 0
EXIT_ABORTED = 1
EXIT_CONFIG = 2


def _overrides(args: argparse.Namespace) -> RawConfig:
    raw: RawConfig = {}
    if getattr(args, "region", None):
        raw.setdefault("cluster", {})["region"] = args.region
    if getattr(args, "log_level", None):
        raw.setdefault("logging", {})["level"] = args.log_level
    if getattr(args, "status_dir", None):
        raw.setdefault("status", {})["dir"] = args.status_dir
    return raw


def _load(args: argparse.Namespace) -> BootstrapConfig:
    path = Path(args.config) if args.config else None
    return load_config(path, env=os.environ, overrides=_overrides(args))


def _run(config: BootstrapConfig) -> BootstrapOutcome:
    try:
        coordinator = build_coordinator(config)
    except Exception as e:
        log.exception("Could not set up the bootstrap components")
        return BootstrapOutcome(
            state=BootstrapState.ABORTED,
            transitions=(BootstrapState.INIT, BootstrapState.ABORTED),
            error=e,
        )
    return coordinator.run()


def _bootstrap(config: BootstrapConfig, args: argparse.Namespace) -> int:
    logger.remove()
    handler_ids = setup_logging(config.log)
    try:
        outcome = _run(config)
        try:
            marker = write_status(config.status_dir, outcome)
        except OSError as e:
            # The node's membership does not depend on the marker
            log.error("Could not write status marker to {dir}: {err}", dir=config.status_dir, err=e)
        else:
            log.info("Bootstrap finished: {state} ({marker})", state=outcome.state, marker=marker)
    finally:
        teardown_logging(handler_ids)
    return EXIT_JOINED if outcome.joined else EXIT_ABORTED


def _user_data(config: BootstrapConfig, args: argparse.Namespace) -> int:
    print(render_user_data(config, install_spec=args.install_spec))
    return 0


def _tags(config: BootstrapConfig, args: argparse.Namespace) -> int:
    tags = worker_tags(config)
    payload = asg_tags(args.asg, tags) if args.asg else tags
    print(json.dumps(payload, indent=2, sort_keys=not args.asg))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fleetjoin", description="Worker bootstrap and cluster join")
    parser.add_argument("--config", type=str, default=None, help="Path to fleetjoin.toml")
    sub = parser.add_subparsers(dest="command", required=True)

    boot = sub.add_parser("bootstrap", help="Install deps, find the master and join the cluster")
    boot.add_argument("--region", type=str, default=None)
    boot.add_argument("--log-level", type=str.upper, default=None, choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    boot.add_argument("--status-dir", type=str, default=None)
    boot.set_defaults(handler=_bootstrap)

    user_data = sub.add_parser("user-data", help="Print the worker launch user data")
    user_data.add_argument("--install-spec", type=str, default="fleetjoin", help="pip requirement for fleetjoin")
    user_data.set_defaults(handler=_user_data)

    tags = sub.add_parser("tags", help="Print the tags propagated to launched workers")
    tags.add_argument("--asg", type=str, default=None, help="Format for CreateOrUpdateTags on this group")
    tags.set_defaults(handler=_tags)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = _load(args)
    except ConfigurationError as e:
        print(f"fleetjoin: {e}", file=sys.stderr)
        return EXIT_CONFIG
    return args.handler(config, args)


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
