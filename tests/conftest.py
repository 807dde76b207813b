"""Pytest configuration and fixtures for camera-gateway tests.

Fixtures build the gateway from small simulated cameras so capture tests
move kilobytes per frame instead of megabytes, and wire it to a
LoopbackTransport so tests can inject commands and read responses
without a broker.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from concurrent.futures import ThreadPoolExecutor

import pytest
import pytest_asyncio

from camera_gateway.config import GatewayConfig
from camera_gateway.devices import DeviceKind, DeviceRegistry
from camera_gateway.drivers.cameras import DigitalTwinCameraDriver
from camera_gateway.gateway import GatewayRuntime
from camera_gateway.observability import reset_logging
from camera_gateway.transport import LoopbackTransport
from tests.helpers import SMALL_CAMERA, SMALL_COOLED_CAMERA


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    """Give every test a fresh package logger configuration."""
    reset_logging()
    yield
    reset_logging()


@pytest.fixture
def twin_driver() -> DigitalTwinCameraDriver:
    """Two small simulated cameras: index 0 plain, index 1 coolable."""
    return DigitalTwinCameraDriver(cameras={0: SMALL_CAMERA, 1: SMALL_COOLED_CAMERA})


@pytest.fixture
def registry(twin_driver: DigitalTwinCameraDriver) -> DeviceRegistry:
    """Registry built from ``twin_driver``."""
    registry = DeviceRegistry([(DeviceKind.SIMULATED, twin_driver)])
    registry.build()
    return registry


@pytest.fixture
def executor() -> Iterator[ThreadPoolExecutor]:
    pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="test-gateway")
    yield pool
    pool.shutdown(wait=True)


@pytest_asyncio.fixture
async def transport() -> AsyncIterator[LoopbackTransport]:
    transport = LoopbackTransport()
    yield transport
    await transport.close()


@pytest_asyncio.fixture
async def runtime(
    transport: LoopbackTransport,
    registry: DeviceRegistry,
    executor: ThreadPoolExecutor,
) -> AsyncIterator[GatewayRuntime]:
    """Started runtime; tests feed it with ``runtime.handle_message``."""
    runtime = GatewayRuntime(
        transport,
        registry,
        GatewayConfig(shutdown_timeout_s=2.0),
        executor=executor,
    )
    await runtime.start()
    yield runtime
    await runtime.shutdown()
