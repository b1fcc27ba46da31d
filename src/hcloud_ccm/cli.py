"""Command-line interface for hcloud-ccm.

This module provides the main entry point and argument parsing for the
hcloud-ccm process.
"""

import argparse
import dataclasses
import logging
import platform
import signal
import sys
import threading
from pathlib import Path

from hcloud_ccm._version import __version__
from hcloud_ccm.config.security import mask_token
from hcloud_ccm.errors import HcloudCCMError, format_error_for_user, get_exit_code

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser.

    Returns:
        Configured ArgumentParser instance.
    """
    parser = argparse.ArgumentParser(
        prog="hcloud-ccm",
        description="hcloud cloud controller with hot reloadable API credentials",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  hcloud-ccm                       Run until SIGINT/SIGTERM
  hcloud-ccm --check               Load credentials, verify them and exit
  hcloud-ccm --root-dir /tmp/root  Read credentials from /tmp/root/etc/hetzner-secret
  hcloud-ccm --metrics-port 9100   Serve Prometheus metrics on port 9100
  hcloud-ccm --audit-log audit.jsonl --show-audit 20

Environment:
  HCLOUD_TOKEN, HCLOUD_ENDPOINT, HCLOUD_DEBUG, HCLOUD_METRICS_ENABLED,
  HCLOUD_METRICS_ADDRESS, HCLOUD_HOT_RELOAD_ENABLED, HCLOUD_CREDENTIALS_DEBOUNCE,
  ROBOT_ENABLED, ROBOT_USER_NAME, ROBOT_PASSWORD, ROBOT_ENDPOINT, ROBOT_CACHE_TIMEOUT
""",
    )
    parser.add_argument(
        "--root-dir",
        default="/",
        metavar="DIR",
        help="Root below which etc/hetzner-secret holds the credential files (default: /)",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Load and verify credentials, print the reload counters and exit",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        metavar="PORT",
        help="Serve Prometheus metrics on this port (overrides HCLOUD_METRICS_ADDRESS)",
    )
    parser.add_argument(
        "--no-verify",
        action="store_true",
        help="Skip the initial request that verifies the hcloud token",
    )
    parser.add_argument(
        "--audit-log",
        metavar="PATH",
        help="Write a JSON-lines audit log of credential and API events to PATH",
    )
    parser.add_argument(
        "--show-audit",
        type=int,
        nargs="?",
        const=20,
        metavar="N",
        help="Show the last N audit log entries (default: 20) and exit",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--version", "-V", action="store_true", help="Show version and exit")
    return parser


def print_version() -> None:
    """Print version and system information."""
    print(
        f"hcloud-ccm {__version__} "
        f"(Python {sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}, "
        f"{platform.system()} {platform.machine()})"
    )


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )


def describe_cloud(cloud) -> list:
    """Describe the running clients without revealing credentials."""
    lines = [
        f"hcloud endpoint:  {cloud.hcloud.endpoint}",
        f"hcloud token:     {mask_token(cloud.hcloud.token)}",
    ]
    if cloud.robot is not None:
        lines.append(f"robot endpoint:   {cloud.robot.client.endpoint}")
        lines.append(f"robot user:       {mask_token(cloud.robot.client.username, 2, 2)}")
        lines.append(f"robot cache ttl:  {cloud.robot.cache.ttl:g}s")
    else:
        lines.append("robot:            disabled")
    lines.append(f"credentials dir:  {cloud.credentials_dir}")
    lines.append(f"hot reload:       {'active' if cloud.hot_reload_active else 'inactive'}")
    if cloud.metrics_server is not None:
        host, port = cloud.metrics_server.address
        lines.append(f"metrics:          http://{host}:{port}/metrics")
    for api, counts in cloud.reload_counters().items():
        label = f"{api} reloads:"
        lines.append(f"{label:<18}{counts['reloads']} ({counts['errors']} errors)")
    return lines


def show_audit(limit: int) -> None:
    from hcloud_ccm.config.audit import read_audit_log

    entries = read_audit_log(limit=limit)
    if not entries:
        print("No audit log entries found.")
        return
    print(f"Audit Log ({len(entries)} entries)")
    for entry in entries:
        status = "ok" if entry.get("success", True) else "FAILED"
        print(
            f"  {entry.get('timestamp', '?')}  {entry.get('event', '?'):<26} "
            f"{status:<6} {entry.get('message', '')}"
        )


def wait_for_shutdown() -> None:
    """Block until SIGINT or SIGTERM."""
    stop = threading.Event()

    def _handle(signum, frame):
        logger.info("Received %s, shutting down", signal.Signals(signum).name)
        stop.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)
    while not stop.is_set():
        stop.wait(1.0)


def main(argv=None) -> None:
    """Main entry point for the hcloud-ccm CLI.

    Parses arguments, loads settings from the environment and runs the
    credential watches until interrupted.
    """
    from hcloud_ccm.cloud import new_cloud
    from hcloud_ccm.config.settings import load_settings

    parser = create_parser()
    args = parser.parse_args(argv)

    if args.version:
        print_version()
        return

    if args.audit_log:
        from hcloud_ccm.config.audit import enable_audit_logging

        enable_audit_logging(Path(args.audit_log))

    if args.show_audit is not None:
        show_audit(args.show_audit)
        return

    try:
        settings = load_settings()
        setup_logging(args.verbose or settings.debug)

        if args.check:
            settings = dataclasses.replace(
                settings, metrics_enabled=False, hot_reload_enabled=False
            )
        elif args.metrics_port is not None:
            host, _ = settings.metrics_address
            settings = dataclasses.replace(
                settings, metrics_enabled=True, metrics_address=(host, args.metrics_port)
            )

        cloud = new_cloud(settings, root_dir=args.root_dir, verify=not args.no_verify)
    except HcloudCCMError as e:
        print(format_error_for_user(e, verbose=args.verbose), file=sys.stderr)
        if not args.verbose and e.get_suggestion():
            print(f"Suggestion: {e.get_suggestion()}", file=sys.stderr)
        sys.exit(get_exit_code(e))

    with cloud:
        for line in describe_cloud(cloud):
            print(line)
        if args.check:
            return
        sys.stdout.flush()
        wait_for_shutdown()


__all__ = [
    "create_parser",
    "describe_cloud",
    "main",
    "print_version",
    "setup_logging",
    "wait_for_shutdown",
]
