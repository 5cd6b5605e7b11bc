#!/usr/bin/env python3
"""
Roll an ECS container fleet onto the latest approved node image.

The autoscaling group is doubled with nodes built from a fresh launch
definition, the old nodes are drained once the new ones are healthy and
registered, and the group is scaled back once load balancer targets have
converged.
"""

import argparse
import logging
import os
import signal
import threading
from typing import Any, Dict, Optional, Sequence

from rich.console import Console
from rich.logging import RichHandler

from ecs_client.exceptions import UpgradeError
from ecs_client.models import UpgradePhase
from ecs_client.upgrade import FleetUpgrader
from ecs_client.utils.config import ConfigError, load_upgrade_config
from ecs_client.utils.display import (
    display_configuration_info,
    display_report,
    display_success,
    display_warning,
)
from ecs_client.utils.session import create_aws_client, display_connection_info

console = Console()
logger = logging.getLogger(__name__)


def configure_logging(verbose: bool = False) -> None:
    """Configure standard logging with rich handler."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True)],
    )
    # botocore is extremely chatty at DEBUG
    logging.getLogger("botocore").setLevel(logging.INFO if verbose else logging.WARNING)


def parse_arguments(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Set up and parse CLI arguments."""
    parser = argparse.ArgumentParser(
        description="Replace every node of an ECS autoscaling group with one running the latest AMI.",
    )
    parser.add_argument("--fleet", dest="fleet_name", help="Autoscaling group name (env: ECS_ASG).")
    parser.add_argument("--cluster", dest="cluster_name", help="ECS cluster name (env: ECS_CLUSTER).")
    parser.add_argument(
        "--launch-template",
        dest="use_launch_template",
        action="store_true",
        default=None,
        help="Provision a new launch template version instead of a launch configuration "
        "(env: ECS_LAUNCHTEMPLATE=true).",
    )
    parser.add_argument("--region", help="AWS region (env: AWS_REGION).")
    parser.add_argument("--profile", dest="profile_name", help="AWS named profile (env: AWS_PROFILE).")
    parser.add_argument("--config", dest="config_file", help="Optional YAML configuration file.")
    parser.add_argument(
        "--poll-interval",
        type=float,
        help="Seconds between polls for every gate (default: 30).",
    )
    parser.add_argument(
        "--max-attempts",
        type=int,
        help="Polls before a gate gives up (default: 25).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Resolve the new image and report the plan without changing anything.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging (env: DEBUG=true).",
    )
    return parser.parse_args(argv)


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    return {
        "fleet_name": args.fleet_name,
        "cluster_name": args.cluster_name,
        "use_launch_template": args.use_launch_template,
        "dry_run": args.dry_run,
        "region": args.region,
        "profile_name": args.profile_name,
        "poll_interval": args.poll_interval,
        "max_attempts": args.max_attempts,
    }


def install_cancel_handlers(cancel_event: threading.Event) -> Dict[int, Any]:
    """Route SIGINT/SIGTERM to ``cancel_event`` so waits stop at the next poll."""

    def _handler(signum, frame):
        logger.warning("Received %s, cancelling at the next poll or phase", signal.Signals(signum).name)
        cancel_event.set()

    previous: Dict[int, Any] = {}
    if threading.current_thread() is not threading.main_thread():
        return previous
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, _handler)
    return previous


def restore_signal_handlers(previous: Dict[int, Any]) -> None:
    for signum, handler in previous.items():
        # None means the handler was not installed from Python.
        signal.signal(signum, handler if handler is not None else signal.SIG_DFL)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_arguments(argv)
    verbose = args.verbose or os.environ.get("DEBUG", "").strip().lower() == "true"
    configure_logging(verbose=verbose)

    try:
        config = load_upgrade_config(args.config_file, overrides=_overrides(args))
    except ConfigError as e:
        console.print(f"Error: {e}")
        return 1

    display_configuration_info(config)

    client = create_aws_client(
        region=config.aws.region,
        profile_name=config.aws.profile_name,
        max_attempts=config.aws.max_attempts,
    )
    if client is None or not display_connection_info(client):
        console.print("Error: could not connect to AWS")
        return 1

    cancel_event = threading.Event()
    previous_handlers = install_cancel_handlers(cancel_event)
    upgrader = FleetUpgrader.from_client(config, client, cancel_event=cancel_event)
    try:
        report = upgrader.run()
    except UpgradeError as e:
        display_report(upgrader.report)
        console.print(f"Error: {e}")
        return 1
    finally:
        restore_signal_handlers(previous_handlers)

    display_report(report)
    if report.phase == UpgradePhase.UP_TO_DATE:
        display_success("ECS cluster already running latest AMI")
    elif report.phase == UpgradePhase.PLANNED:
        display_success("Dry run complete; no changes made")
    elif report.undrained_members:
        display_warning(
            f"Upgrade complete, but {len(report.undrained_members)} node(s) still ran tasks when retired"
        )
    else:
        display_success(f"✓ {config.fleet_name} upgraded to {report.new_identifier}")
    return 0


def run() -> int:
    """Console script entry point."""
    try:
        return main()
    except KeyboardInterrupt:
        console.print("\n[yellow]Upgrade interrupted by user.[/yellow]")
        return 1


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(run())
