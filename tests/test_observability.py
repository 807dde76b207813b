"""Tests for the observability module (logging and statistics)."""

from __future__ import annotations

import asyncio
import io
import json
import logging
import sys
import threading

import pytest

from camera_gateway.observability.logging import (
    ROOT_LOGGER_NAME,
    JSONFormatter,
    LogContext,
    StructuredFormatter,
    StructuredLogger,
    _format_value,
    configure_logging,
    current_context,
    get_logger,
    reset_logging,
)
from camera_gateway.observability.stats import (
    DeviceStatsCollector,
    GatewayStats,
    StatsSummary,
    _percentile,
)


def _record(msg: str = "Test message", **structured) -> logging.LogRecord:
    record = logging.LogRecord(
        name="camera_gateway.test",
        level=logging.INFO,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )
    if structured:
        record.structured_data = structured
    return record


# =============================================================================
# Structured Logging Tests
# =============================================================================


class TestStructuredFormatter:
    """Tests for StructuredFormatter."""

    def test_appends_fields(self) -> None:
        """Verifies structured fields follow the message as key=value.

        Arrangement:
        Record with transaction_id and camera_idx fields.

        Action:
        format() with the default format string.

        Assertion Strategy:
        Output ends with ``| transaction_id=t-1 camera_idx=0`` and keeps
        the base message.
        """
        output = StructuredFormatter().format(
            _record("Dispatching", transaction_id="t-1", camera_idx=0)
        )
        assert "INFO - Dispatching" in output
        assert output.endswith("| transaction_id=t-1 camera_idx=0")

    def test_no_fields_no_separator(self) -> None:
        assert "|" not in StructuredFormatter().format(_record())

    def test_include_structured_false(self) -> None:
        formatter = StructuredFormatter(include_structured=False)
        assert "camera_idx" not in formatter.format(_record(camera_idx=1))

    def test_custom_format_string(self) -> None:
        formatter = StructuredFormatter(fmt="%(levelname)s:%(message)s")
        assert formatter.format(_record("hi", k="v")) == "INFO:hi | k=v"


class TestJSONFormatter:
    """Tests for JSONFormatter."""

    def test_fields_at_top_level(self) -> None:
        data = json.loads(JSONFormatter().format(_record("Frame", size=12)))
        assert data["message"] == "Frame"
        assert data["level"] == "INFO"
        assert data["logger"] == "camera_gateway.test"
        assert data["size"] == 12
        assert data["timestamp"].endswith("+00:00")

    def test_exception_included(self) -> None:
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = _record("Failed")
            record.exc_info = sys.exc_info()
        data = json.loads(JSONFormatter().format(record))
        assert "RuntimeError: boom" in data["exception"]

    def test_unserializable_value_uses_str(self) -> None:
        data = json.loads(JSONFormatter().format(_record(topic=object())))
        assert data["topic"].startswith("<object object")


class TestFormatValue:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (None, "null"),
            ("camera/instr", "camera/instr"),
            ("Test Camera", '"Test Camera"'),
            (42, "42"),
            (0.5, "0.5"),
            ({"a": 1}, '{"a": 1}'),
            ([1, 2], "[1, 2]"),
        ],
    )
    def test_rendering(self, value, expected: str) -> None:
        assert _format_value(value) == expected


class TestLogContext:
    """Tests for LogContext."""

    def test_nested_contexts_merge_and_restore(self) -> None:
        """Inner contexts add and override fields, exit restores them.

        Arrangement:
        Outer context with transaction_id and cmd, inner overriding cmd.

        Action:
        Read current_context() at each level.

        Assertion Strategy:
        Merged inside, outer values after inner exit, empty at the end.
        """
        with LogContext(transaction_id="t-1", cmd="GET_ROI"):
            with LogContext(cmd="SET_ROI", camera_idx=0):
                assert current_context() == {
                    "transaction_id": "t-1",
                    "cmd": "SET_ROI",
                    "camera_idx": 0,
                }
            assert current_context() == {"transaction_id": "t-1", "cmd": "GET_ROI"}
        assert current_context() == {}

    def test_restored_on_exception(self) -> None:
        with pytest.raises(ValueError):
            with LogContext(camera_idx=3):
                raise ValueError("bad")
        assert current_context() == {}

    def test_exit_without_enter(self) -> None:
        LogContext(a=1).__exit__(None, None, None)
        assert current_context() == {}

    @pytest.mark.asyncio
    async def test_isolated_between_tasks(self) -> None:
        """Each asyncio task sees only the fields it set."""
        seen: dict[str, dict] = {}
        gate = asyncio.Event()

        async def handler(txn: str) -> None:
            with LogContext(transaction_id=txn):
                await gate.wait()
                seen[txn] = current_context()

        tasks = [asyncio.create_task(handler(t)) for t in ("a", "b")]
        await asyncio.sleep(0)
        gate.set()
        await asyncio.gather(*tasks)

        assert seen == {"a": {"transaction_id": "a"}, "b": {"transaction_id": "b"}}


class TestStructuredLogger:
    """Tests for StructuredLogger."""

    @pytest.fixture
    def logger_and_stream(self):
        """StructuredLogger at DEBUG writing to a StringIO."""
        stream = io.StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(StructuredFormatter())

        logger = StructuredLogger("test_logger")
        logger.setLevel(logging.DEBUG)
        logger.addHandler(handler)
        logger.propagate = False

        yield logger, stream

        logger.handlers.clear()

    def test_kwargs_become_fields(self, logger_and_stream) -> None:
        logger, stream = logger_and_stream
        logger.info("Frame published", camera_idx=0, size=2048)
        output = stream.getvalue()
        assert "camera_idx=0" in output
        assert "size=2048" in output

    def test_context_included_and_overridden(self, logger_and_stream) -> None:
        logger, stream = logger_and_stream
        with LogContext(transaction_id="t-7", cmd="GET_INFO"):
            logger.warning("Handling", cmd="SET_ROI")
        output = stream.getvalue()
        assert "transaction_id=t-7" in output
        assert "cmd=SET_ROI" in output
        assert "cmd=GET_INFO" not in output

    def test_percent_args(self, logger_and_stream) -> None:
        logger, stream = logger_and_stream
        logger.debug("Device %d of %d", 1, 2)
        assert "Device 1 of 2" in stream.getvalue()

    def test_exception_has_traceback(self, logger_and_stream) -> None:
        logger, stream = logger_and_stream
        try:
            raise RuntimeError("usb reset")
        except RuntimeError:
            logger.exception("Command failed", camera_idx=1)
        output = stream.getvalue()
        assert "Traceback" in output
        assert "camera_idx=1" in output

    def test_level_filtering(self, logger_and_stream) -> None:
        logger, stream = logger_and_stream
        logger.setLevel(logging.ERROR)
        logger.info("quiet")
        logger.error("loud")
        assert "quiet" not in stream.getvalue()
        assert "loud" in stream.getvalue()


class TestConfigureLogging:
    """Tests for configure_logging and reset_logging."""

    def test_package_logger_writes_to_stream(self) -> None:
        stream = io.StringIO()
        configure_logging(stream=stream)

        get_logger("camera_gateway.test").info("Gateway started", num_devices=2)

        assert "Gateway started | num_devices=2" in stream.getvalue()
        assert logging.getLogger(ROOT_LOGGER_NAME).propagate is False

    def test_json_format(self) -> None:
        stream = io.StringIO()
        configure_logging(json_format=True, stream=stream, force=True)

        get_logger("camera_gateway.json").info("Frame", size=4)

        line = json.loads(stream.getvalue().strip())
        assert line["size"] == 4

    def test_idempotent_without_force(self) -> None:
        first, second = io.StringIO(), io.StringIO()
        configure_logging(stream=first)
        configure_logging(stream=second)

        get_logger("camera_gateway.idem").info("once")

        assert "once" in first.getvalue()
        assert second.getvalue() == ""
        assert len(logging.getLogger(ROOT_LOGGER_NAME).handlers) == 1

    def test_level_by_name(self) -> None:
        stream = io.StringIO()
        configure_logging(level="warning", stream=stream, force=True)
        logger = get_logger("camera_gateway.level")

        logger.info("hidden")
        logger.warning("shown")

        assert "hidden" not in stream.getvalue()
        assert "shown" in stream.getvalue()

    def test_reset_removes_handlers(self) -> None:
        configure_logging(stream=io.StringIO())
        reset_logging()
        assert logging.getLogger(ROOT_LOGGER_NAME).handlers == []

    def test_get_logger_configures_lazily(self) -> None:
        get_logger("camera_gateway.lazy")
        assert len(logging.getLogger(ROOT_LOGGER_NAME).handlers) == 1

    def test_concurrent_configuration(self) -> None:
        threads = [
            threading.Thread(target=configure_logging, kwargs={"stream": io.StringIO()})
            for _ in range(8)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(logging.getLogger(ROOT_LOGGER_NAME).handlers) == 1


# =============================================================================
# Statistics Tests
# =============================================================================


class TestStatsSummary:
    def test_to_dict_copies_counts(self) -> None:
        summary = StatsSummary(camera_idx=0, command_counts={"GET_ROI": 1})
        data = summary.to_dict()
        data["command_counts"]["GET_ROI"] = 99
        assert summary.command_counts == {"GET_ROI": 1}
        assert data["last_activity"] is None


class TestDeviceStatsCollector:
    """Tests for DeviceStatsCollector."""

    def test_command_outcomes(self) -> None:
        """Failures are counted per category, successes ignore error_type.

        Arrangement:
        Collector for device 2.

        Action:
        Three commands: two successes, one device_error failure.

        Assertion Strategy:
        Totals, success rate, per-command and per-error counts.
        """
        collector = DeviceStatsCollector(2)
        collector.record_command("GET_ROI", 1.0, True)
        collector.record_command("SET_ROI", 3.0, False, "device_error")
        collector.record_command("GET_ROI", 2.0, True, "ignored")

        summary = collector.get_summary()

        assert summary.camera_idx == 2
        assert summary.total_commands == 3
        assert summary.failed_commands == 1
        assert summary.success_rate == pytest.approx(2 / 3)
        assert summary.command_counts == {"GET_ROI": 2, "SET_ROI": 1}
        assert summary.error_counts == {"device_error": 1}
        assert summary.min_duration_ms == 1.0
        assert summary.max_duration_ms == 3.0
        assert summary.avg_duration_ms == 2.0
        assert summary.last_activity is not None

    def test_frames(self) -> None:
        collector = DeviceStatsCollector(0)
        collector.record_frame(100)
        collector.record_frame(50)
        summary = collector.get_summary()
        assert summary.frames_published == 2
        assert summary.frame_bytes == 150
        assert summary.total_commands == 0

    def test_window_limits_latency_not_totals(self) -> None:
        collector = DeviceStatsCollector(0, window_size=2)
        for duration in (100.0, 1.0, 2.0):
            collector.record_command("GET_ROI", duration, True)
        summary = collector.get_summary()
        assert summary.total_commands == 3
        assert summary.max_duration_ms == 2.0

    def test_reset(self) -> None:
        collector = DeviceStatsCollector(0)
        collector.record_command("GET_ROI", 1.0, False, "device_error")
        collector.record_frame(10)
        collector.reset()
        summary = collector.get_summary()
        assert summary.total_commands == 0
        assert summary.frames_published == 0
        assert summary.error_counts == {}
        assert summary.last_activity is None

    def test_thread_safety(self) -> None:
        collector = DeviceStatsCollector(0)

        def work() -> None:
            for _ in range(500):
                collector.record_command("GET_ROI", 0.1, True)
                collector.record_frame(1)

        threads = [threading.Thread(target=work) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        summary = collector.get_summary()
        assert summary.total_commands == 2000
        assert summary.frame_bytes == 2000


class TestGatewayStats:
    def test_collectors_created_on_demand(self) -> None:
        stats = GatewayStats()
        stats.record_command(1, "GET_INFO", 0.4, success=True)
        stats.record_frame(3, 10)
        assert sorted(stats.get_all_summaries()) == [1, 3]

    def test_reset_one_device(self) -> None:
        stats = GatewayStats()
        stats.record_command(0, "GET_ROI", 1.0, True)
        stats.record_command(1, "GET_ROI", 1.0, True)

        stats.reset(0)
        stats.reset(9)

        assert stats.get_summary(0).total_commands == 0
        assert stats.get_summary(1).total_commands == 1

    def test_reset_all(self) -> None:
        stats = GatewayStats()
        stats.record_command(0, "GET_ROI", 1.0, True)
        stats.record_frame(1, 5)
        stats.reset()
        assert all(s.total_commands == 0 for s in stats.get_all_summaries().values())
        assert stats.get_summary(1).frames_published == 0

    def test_to_dict_is_json_serializable(self) -> None:
        stats = GatewayStats()
        stats.record_command(0, "GET_INFO", 0.4, success=True)
        data = json.loads(json.dumps(stats.to_dict()))
        assert data["devices"]["0"]["total_commands"] == 1
        assert "timestamp" in data


class TestPercentile:
    @pytest.mark.parametrize(
        ("data", "p", "expected"),
        [
            ([], 95, 0.0),
            ([5.0], 95, 5.0),
            ([1.0, 2.0, 3.0, 4.0, 5.0], 50, 3.0),
            ([1.0, 2.0, 3.0], 0, 1.0),
            ([1.0, 2.0, 3.0], 100, 3.0),
            ([100.0, 150.0, 200.0], 95, 195.0),
        ],
    )
    def test_values(self, data: list[float], p: float, expected: float) -> None:
        assert _percentile(data, p) == pytest.approx(expected)

    @pytest.mark.parametrize("p", [-1, 101])
    def test_out_of_range(self, p: float) -> None:
        with pytest.raises(ValueError):
            _percentile([1.0], p)
