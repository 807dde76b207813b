"""Gateway process: argument parsing, device enumeration and the serve loop.

Run with ``python -m camera_gateway.server`` or the ``camera-gateway``
console script. SIGINT and SIGTERM stop the gateway gracefully: capture
streams end, in-flight commands drain, devices are closed.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import signal
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from camera_gateway.config import (
    DEFAULT_COMMAND_TOPIC,
    DEFAULT_INIT_TOPIC,
    DEFAULT_RESPONSE_TOPIC,
    DEFAULT_WORKER_THREADS,
    GatewayConfig,
    TopicConfig,
)
from camera_gateway.devices import DeviceRegistry
from camera_gateway.drivers import DriverConfig, DriverFactory, DriverMode
from camera_gateway.gateway import GatewayRuntime
from camera_gateway.observability import configure_logging, get_logger
from camera_gateway.transport import MqttSettings, MqttTransport, Transport

logger = get_logger(__name__)


def add_driver_arguments(parser: argparse.ArgumentParser) -> None:
    """Options selecting which devices are enumerated."""
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in DriverMode],
        default=DriverMode.DIGITAL_TWIN.value,
        help=(
            "Device kinds: 'digital_twin' for simulated cameras (default), "
            "'hardware' for ZWO ASI cameras, 'hybrid' for both"
        ),
    )
    parser.add_argument(
        "--twin-count",
        type=int,
        default=1,
        help="Number of simulated cameras (default: 1)",
    )
    parser.add_argument(
        "--twin-images",
        type=Path,
        default=None,
        help="Image file or directory served by simulated cameras",
    )
    parser.add_argument(
        "--simulate-exposure",
        action="store_true",
        help="Simulated cameras sleep for the exposure time per frame",
    )
    parser.add_argument(
        "--asi-library",
        type=Path,
        default=None,
        help="Path to libASICamera2 (default: $ZWO_ASI_LIB or bundled SDK)",
    )


def add_logging_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        default="INFO",
        help="Log level (default: INFO)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit one JSON object per log line",
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse gateway command line arguments.

    Args:
        argv: Arguments without the program name; None reads sys.argv.

    Raises:
        SystemExit: On --help or invalid arguments.
    """
    parser = argparse.ArgumentParser(
        prog="camera-gateway",
        description="Camera gateway - remote camera control over MQTT",
    )
    parser.add_argument(
        "--host", default="localhost", help="MQTT broker host (default: localhost)"
    )
    parser.add_argument(
        "--port", type=int, default=1883, help="MQTT broker port (default: 1883)"
    )
    parser.add_argument(
        "--client-id",
        default="camera-gateway",
        help="MQTT client id (default: camera-gateway)",
    )
    parser.add_argument(
        "--keepalive",
        type=int,
        default=20,
        help="MQTT keepalive in seconds (default: 20)",
    )
    parser.add_argument("--username", default=None, help="MQTT user name")
    parser.add_argument("--password", default=None, help="MQTT password")
    parser.add_argument(
        "--command-topic",
        default=DEFAULT_COMMAND_TOPIC,
        help=f"Topic for device commands (default: {DEFAULT_COMMAND_TOPIC})",
    )
    parser.add_argument(
        "--init-topic",
        default=DEFAULT_INIT_TOPIC,
        help=f"Topic for re-enumeration requests (default: {DEFAULT_INIT_TOPIC})",
    )
    parser.add_argument(
        "--response-topic",
        default=DEFAULT_RESPONSE_TOPIC,
        help=f"Topic for all responses (default: {DEFAULT_RESPONSE_TOPIC})",
    )
    add_driver_arguments(parser)
    parser.add_argument(
        "--workers",
        type=int,
        default=DEFAULT_WORKER_THREADS,
        help=f"Threads for blocking device calls (default: {DEFAULT_WORKER_THREADS})",
    )
    parser.add_argument(
        "--backpressure",
        action="store_true",
        help="Wait for broker acknowledgement of each frame before the next",
    )
    add_logging_arguments(parser)
    return parser.parse_args(argv)


def build_driver_config(args: argparse.Namespace) -> DriverConfig:
    if args.twin_count < 0:
        raise ValueError(f"--twin-count must not be negative, got {args.twin_count}")
    return DriverConfig(
        mode=DriverMode(args.mode),
        twin_camera_count=args.twin_count,
        twin_image_path=args.twin_images,
        twin_simulate_exposure=args.simulate_exposure,
        asi_library_path=args.asi_library,
    )


def build_config(args: argparse.Namespace) -> GatewayConfig:
    """Translate parsed arguments into a GatewayConfig.

    Raises:
        ValueError: If a numeric option is out of range.
    """
    if args.workers < 1:
        raise ValueError(f"--workers must be at least 1, got {args.workers}")
    return GatewayConfig(
        mqtt=MqttSettings(
            host=args.host,
            port=args.port,
            client_id=args.client_id,
            keepalive=args.keepalive,
            username=args.username,
            password=args.password,
        ),
        topics=TopicConfig(
            command=args.command_topic,
            init=args.init_topic,
            response=args.response_topic,
        ),
        drivers=build_driver_config(args),
        worker_threads=args.workers,
        capture_backpressure=args.backpressure,
        log_level=args.log_level,
        json_logs=args.json_logs,
    )


async def run_gateway(
    config: GatewayConfig,
    transport: Transport | None = None,
    stop: asyncio.Event | None = None,
) -> None:
    """Enumerate devices and serve until stopped.

    Args:
        config: Gateway settings.
        transport: Transport to serve on; an MqttTransport for
            ``config.mqtt`` when None.
        stop: Ends the gateway when set. SIGINT/SIGTERM set it where the
            loop supports signal handlers.
    """
    loop = asyncio.get_running_loop()
    executor = ThreadPoolExecutor(
        max_workers=config.worker_threads, thread_name_prefix="camera-gateway"
    )
    if transport is None:
        transport = MqttTransport(config.mqtt, executor=executor)
    if stop is None:
        stop = asyncio.Event()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            logger.debug("Signal handlers unavailable", signal=sig.name)

    registry = DeviceRegistry(DriverFactory(config.drivers).create_camera_drivers())
    await loop.run_in_executor(executor, registry.build)

    runtime = GatewayRuntime(transport, registry, config, executor=executor)
    serve_task: asyncio.Task[None] | None = None
    try:
        await runtime.start()
        serve_task = asyncio.create_task(runtime.serve(), name="gateway-serve")
        stop_task = asyncio.create_task(stop.wait(), name="gateway-stop")
        await asyncio.wait(
            {serve_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
        )
        stop_task.cancel()
    finally:
        await runtime.shutdown()
        if serve_task is not None and not serve_task.done():
            serve_task.cancel()
            await asyncio.gather(serve_task, return_exceptions=True)
        executor.shutdown(wait=False)
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.remove_signal_handler(sig)
        logger.info("Gateway stopped")


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point: parse arguments, configure logging, run the gateway."""
    args = parse_args(argv)
    configure_logging(level=args.log_level, json_format=args.json_logs)
    config = build_config(args)

    logger.info(
        "Starting camera gateway",
        broker=f"{config.mqtt.host}:{config.mqtt.port}",
        mode=config.drivers.mode.value,
    )
    asyncio.run(run_gateway(config))


if __name__ == "__main__":  # pragma: no cover
    main()
