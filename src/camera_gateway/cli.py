"""CLI entry point for camera-gateway.

Provides the ``camera-gateway`` console script with subcommands:

- ``serve``: run the gateway (default if no subcommand)
- ``devices``: enumerate cameras and print their info as JSON

Usage::

    # Run against a local broker with one simulated camera
    camera-gateway

    # Simulated and ASI cameras, remote broker
    camera-gateway serve --host broker.local --mode hybrid

    # What would the gateway see?
    camera-gateway devices --mode hardware
"""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Sequence
from typing import TextIO

from camera_gateway import __version__
from camera_gateway.devices import DeviceRegistry
from camera_gateway.drivers import DriverFactory
from camera_gateway.observability import configure_logging
from camera_gateway.server import (
    add_driver_arguments,
    add_logging_arguments,
    build_driver_config,
)


def list_devices(args: argparse.Namespace, out: TextIO | None = None) -> int:
    """Enumerate devices once and print their DeviceInfo as a JSON list.

    Returns:
        0, also when no device is found.
    """
    configure_logging(level=args.log_level, json_format=args.json_logs)
    registry = DeviceRegistry(
        DriverFactory(build_driver_config(args)).create_camera_drivers()
    )
    handles = registry.build()
    try:
        listing = [
            {"kind": handle.kind.value, **handle.info.to_dict()} for handle in handles
        ]
    finally:
        for handle in handles:
            handle.capability.close()

    print(json.dumps(listing, indent=2), file=out or sys.stdout)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Main CLI entry point for camera-gateway.

    Dispatches to subcommands:
    - ``devices``: enumerate and print devices
    - ``serve`` or no subcommand: run the gateway (delegates to
      ``server.main()``, which has its own argument parser)

    Returns:
        Exit code 0 for success.

    Raises:
        SystemExit: On --help or argument parsing errors.
    """
    if argv is None:
        argv = sys.argv[1:]
    argv = list(argv)

    parser = argparse.ArgumentParser(
        prog="camera-gateway",
        description="Camera gateway - remote camera control over MQTT",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    devices_parser = subparsers.add_parser(
        "devices", help="Enumerate cameras and print their info as JSON"
    )
    add_driver_arguments(devices_parser)
    add_logging_arguments(devices_parser)

    # Pass-through to server.main()
    subparsers.add_parser(
        "serve", help="Run the gateway (default if no subcommand)", add_help=False
    )

    if argv and argv[0] == "devices":
        return list_devices(parser.parse_args(argv))

    if argv and argv[0] == "serve":
        argv = argv[1:]
    elif argv and argv[0] in ("-h", "--help", "--version"):
        parser.parse_args(argv)

    from camera_gateway.server import main as server_main

    server_main(argv)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
