"""Gateway runtime: transport subscription, decoding and task spawning.

Each inbound message becomes one asyncio task, so a capture stream or a
slow device never holds up commands for other devices. Commands for the
same device are ordered by their device lock: tasks start in arrival
order and queue on the lock before their first capability call.

Example:
    runtime = GatewayRuntime(MqttTransport(settings), registry, config)
    await runtime.start()
    try:
        await runtime.serve()
    finally:
        await runtime.shutdown()
"""

from __future__ import annotations

import asyncio
import dataclasses
from concurrent.futures import Executor, ThreadPoolExecutor

from camera_gateway.config import GatewayConfig
from camera_gateway.devices.registry import DeviceHandle, DeviceRegistry
from camera_gateway.gateway.capture import CaptureStream
from camera_gateway.gateway.dispatcher import CommandDispatcher, CommandParameterError
from camera_gateway.observability import GatewayStats, LogContext, get_logger
from camera_gateway.protocol import (
    CommandCode,
    CommandEnvelope,
    EnvelopeDecodeError,
    ResponseEnvelope,
    decode_command,
    encode_response,
)
from camera_gateway.transport import InboundMessage, Transport

logger = get_logger(__name__)


class GatewayRuntime:
    """Connects a transport to the command dispatcher."""

    def __init__(
        self,
        transport: Transport,
        registry: DeviceRegistry,
        config: GatewayConfig | None = None,
        executor: Executor | None = None,
        stats: GatewayStats | None = None,
    ) -> None:
        """Create the runtime.

        Args:
            transport: Connected or unconnected transport; start() connects.
            registry: Built device registry.
            config: Gateway settings; defaults apply when None.
            executor: Pool for blocking calls. When None the runtime creates
                one sized by ``config.worker_threads`` and shuts it down.
            stats: Statistics sink; a new collector when None.
        """
        self.config = config or GatewayConfig()
        self.transport = transport
        self.registry = registry
        self.stats = stats or GatewayStats()
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self.config.worker_threads,
            thread_name_prefix="camera-gateway",
        )
        self._capture = CaptureStream(
            self.publish_response,
            executor=self._executor,
            stats=self.stats,
            backpressure=self.config.capture_backpressure,
        )
        self.dispatcher = CommandDispatcher(
            registry,
            self._capture,
            executor=self._executor,
            stats=self.stats,
        )
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def executor(self) -> Executor:
        return self._executor

    @property
    def pending(self) -> int:
        """Number of commands still being handled."""
        return len(self._tasks)

    async def start(self) -> None:
        """Connect the transport and subscribe to the command topics."""
        topics = self.config.topics
        await self.transport.connect()
        await self.transport.subscribe(topics.command)
        await self.transport.subscribe(topics.init)
        logger.info(
            "Gateway started",
            command_topic=topics.command,
            init_topic=topics.init,
            response_topic=topics.response,
            num_devices=len(self.registry),
        )

    async def publish_response(
        self, response: ResponseEnvelope, wait: bool = False
    ) -> None:
        """Encode and publish one response on the response topic."""
        await self.transport.publish(
            self.config.topics.response, encode_response(response), wait=wait
        )

    def handle_message(self, message: InboundMessage) -> asyncio.Task[None] | None:
        """Decode one message and spawn the task that handles it.

        Returns:
            The spawned task, or None when the message was dropped.
        """
        try:
            envelope = decode_command(message.payload)
        except EnvelopeDecodeError as e:
            logger.warning(
                "Dropping undecodable message", topic=message.topic, error=str(e)
            )
            return None

        if message.topic == self.config.topics.init:
            envelope = dataclasses.replace(envelope, cmd_idx=int(CommandCode.INIT))

        handle = self.registry.lookup(envelope.camera_idx)
        task = asyncio.create_task(
            self._process(envelope, handle),
            name=f"command-{envelope.transaction_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _process(
        self, envelope: CommandEnvelope, handle: DeviceHandle | None
    ) -> None:
        with LogContext(
            transaction_id=envelope.transaction_id,
            camera_idx=envelope.camera_idx,
            cmd=envelope.command.name,
        ):
            try:
                response = await self.dispatcher.dispatch(envelope, handle)
                await self.publish_response(response)
            except CommandParameterError as e:
                logger.warning("Dropping command with invalid parameters", error=str(e))
            except asyncio.CancelledError:
                logger.info("Command cancelled")
                raise
            except Exception:
                logger.exception("Command failed")

    async def serve(self) -> None:
        """Handle messages until the transport closes."""
        async for message in self.transport.messages():
            self.handle_message(message)
        logger.info("Transport closed, no more messages")

    async def run(self) -> None:
        """start() then serve()."""
        await self.start()
        await self.serve()

    async def shutdown(self) -> None:
        """Stop streams, drain in-flight commands, release devices and transport."""
        logger.info("Gateway shutting down", pending=len(self._tasks))
        for handle in self.registry:
            handle.capture.cancel()

        if self._tasks:
            _, still_running = await asyncio.wait(
                set(self._tasks), timeout=self.config.shutdown_timeout_s
            )
            for task in still_running:
                task.cancel()
            if still_running:
                logger.warning("Cancelled unfinished commands", count=len(still_running))
                await asyncio.gather(*still_running, return_exceptions=True)

        await self.registry.close(self._executor)
        await self.transport.close()
        if self._owns_executor:
            self._executor.shutdown(wait=False)

        logger.info("Gateway statistics", **self.stats.to_dict())
