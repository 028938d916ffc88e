"""Entry point for running the Controller as a module.

Usage:
    python -m Controller --run-once
    python -m Controller --run-once --namespace team-a --plan nightly
    python -m Controller --loop
    python -m Controller --apply plan.json --run-once
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from Controller.config import ControllerConfig
from Controller.controller import Controller
from protocol.errors import HibernatorError


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Controller — off-hours hibernation reconciler")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--run-once",
        action="store_true",
        help="Reconcile every plan once and exit",
    )
    mode.add_argument(
        "--loop",
        action="store_true",
        help="Reconcile continuously until interrupted",
    )
    parser.add_argument(
        "--namespace",
        default=None,
        help="Namespace to reconcile (default: CTRL_NAMESPACE or 'default')",
    )
    parser.add_argument(
        "--plan",
        default=None,
        help="Only reconcile this plan",
    )
    parser.add_argument(
        "--apply",
        action="append",
        default=[],
        metavar="FILE",
        help="Apply a plan or schedule exception JSON document before reconciling",
    )
    args = parser.parse_args(argv)

    if not args.run_once and not args.loop and not args.apply:
        parser.print_help()
        print("\nError: --run-once, --loop, or --apply is required")
        return 1

    config = ControllerConfig.from_env()
    ctrl = Controller(config)

    for path in args.apply:
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
            ctrl.apply(data)
        except (OSError, json.JSONDecodeError, HibernatorError) as exc:
            ctrl.log.error("Cannot apply %s: %s", path, exc)
            return 1

    if args.loop:
        try:
            ctrl.run_forever(namespace=args.namespace, plan=args.plan)
        except KeyboardInterrupt:
            ctrl.log.info("Interrupted, exiting")
        return 0
    if args.run_once:
        success = ctrl.run_once(namespace=args.namespace, plan=args.plan)
        return 0 if success else 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
