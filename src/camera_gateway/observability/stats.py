"""Per-device command and frame statistics.

Tracks, for every device index the gateway has served:
- Command outcomes (count, failures, failure categories)
- Command latency over a rolling window (min, max, avg, p95)
- Frames published by capture streams and their total payload size

Collectors are shared between the event loop and executor threads, so every
mutation happens under a threading.Lock.

Example:
    stats = GatewayStats()
    stats.record_command(camera_idx=0, cmd="GET_ROI", duration_ms=1.2, success=True)
    stats.record_frame(camera_idx=0, size_bytes=2_494_848)

    summary = stats.get_summary(camera_idx=0)
    print(f"{summary.frames_published} frames, p95 {summary.p95_duration_ms:.1f}ms")
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

#: Number of command records kept per device for latency statistics.
DEFAULT_STATS_WINDOW_SIZE: int = 1000


def _utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


@dataclass
class StatsSummary:
    """Snapshot of one device's statistics.

    Attributes:
        camera_idx: Registry index of the device.
        total_commands: Commands dispatched to the device.
        failed_commands: Commands that produced an error outcome.
        success_rate: Fraction of successful commands (0.0 when idle).
        min_duration_ms: Fastest command in the window.
        max_duration_ms: Slowest command in the window.
        avg_duration_ms: Mean command duration in the window.
        p95_duration_ms: 95th percentile command duration in the window.
        command_counts: Commands seen, keyed by command name.
        error_counts: Failures keyed by error category.
        frames_published: Frames sent by capture streams.
        frame_bytes: Sum of raw frame sizes sent.
        last_activity: Time of the most recent command or frame.
        uptime_seconds: Time since the collector was created or reset.
    """

    camera_idx: int
    total_commands: int = 0
    failed_commands: int = 0
    success_rate: float = 0.0
    min_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    avg_duration_ms: float = 0.0
    p95_duration_ms: float = 0.0
    command_counts: dict[str, int] = field(default_factory=dict)
    error_counts: dict[str, int] = field(default_factory=dict)
    frames_published: int = 0
    frame_bytes: int = 0
    last_activity: datetime | None = None
    uptime_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable copy of the summary."""
        return {
            "camera_idx": self.camera_idx,
            "total_commands": self.total_commands,
            "failed_commands": self.failed_commands,
            "success_rate": self.success_rate,
            "min_duration_ms": self.min_duration_ms,
            "max_duration_ms": self.max_duration_ms,
            "avg_duration_ms": self.avg_duration_ms,
            "p95_duration_ms": self.p95_duration_ms,
            "command_counts": self.command_counts.copy(),
            "error_counts": self.error_counts.copy(),
            "frames_published": self.frames_published,
            "frame_bytes": self.frame_bytes,
            "last_activity": (
                self.last_activity.isoformat() if self.last_activity else None
            ),
            "uptime_seconds": self.uptime_seconds,
        }


@dataclass
class CommandRecord:
    """One dispatched command."""

    timestamp: float  # monotonic
    cmd: str
    duration_ms: float
    success: bool
    error_type: str | None = None


class DeviceStatsCollector:
    """Statistics for a single device index.

    Cumulative counters cover the collector's whole lifetime; latency
    figures come from the rolling window of recent commands only.
    """

    def __init__(
        self,
        camera_idx: int,
        window_size: int = DEFAULT_STATS_WINDOW_SIZE,
    ) -> None:
        self.camera_idx = camera_idx
        self._records: deque[CommandRecord] = deque(maxlen=window_size)
        self._command_counts: dict[str, int] = {}
        self._error_counts: dict[str, int] = {}
        self._total = 0
        self._failed = 0
        self._frames = 0
        self._frame_bytes = 0
        self._start_time = time.monotonic()
        self._last_activity: datetime | None = None
        self._lock = threading.Lock()

    def record_command(
        self,
        cmd: str,
        duration_ms: float,
        success: bool,
        error_type: str | None = None,
    ) -> None:
        """Record the outcome of one dispatched command.

        Args:
            cmd: Command name, e.g. "SET_ROI".
            duration_ms: Wall time spent in the handler.
            success: False when the response reported an error.
            error_type: Failure category such as "device_error"; ignored
                for successes.
        """
        record = CommandRecord(
            timestamp=time.monotonic(),
            cmd=cmd,
            duration_ms=duration_ms,
            success=success,
            error_type=error_type,
        )

        with self._lock:
            self._records.append(record)
            self._total += 1
            self._command_counts[cmd] = self._command_counts.get(cmd, 0) + 1
            if not success:
                self._failed += 1
                if error_type:
                    self._error_counts[error_type] = (
                        self._error_counts.get(error_type, 0) + 1
                    )
            self._last_activity = _utc_now()

    def record_frame(self, size_bytes: int) -> None:
        """Record one frame published by a capture stream."""
        with self._lock:
            self._frames += 1
            self._frame_bytes += size_bytes
            self._last_activity = _utc_now()

    def get_summary(self) -> StatsSummary:
        """Compute a snapshot of current statistics.

        State is copied under the lock and the sort for p95 runs outside it.
        """
        with self._lock:
            total = self._total
            failed = self._failed
            command_counts = self._command_counts.copy()
            error_counts = self._error_counts.copy()
            frames = self._frames
            frame_bytes = self._frame_bytes
            last_activity = self._last_activity
            start_time = self._start_time
            durations = [r.duration_ms for r in self._records]

        if durations:
            min_dur = min(durations)
            max_dur = max(durations)
            avg_dur = sum(durations) / len(durations)
            p95_dur = _percentile(sorted(durations), 95)
        else:
            min_dur = max_dur = avg_dur = p95_dur = 0.0

        return StatsSummary(
            camera_idx=self.camera_idx,
            total_commands=total,
            failed_commands=failed,
            success_rate=(total - failed) / total if total > 0 else 0.0,
            min_duration_ms=min_dur,
            max_duration_ms=max_dur,
            avg_duration_ms=avg_dur,
            p95_duration_ms=p95_dur,
            command_counts=command_counts,
            error_counts=error_counts,
            frames_published=frames,
            frame_bytes=frame_bytes,
            last_activity=last_activity,
            uptime_seconds=time.monotonic() - start_time,
        )

    def reset(self) -> None:
        """Clear all counters and restart the uptime clock."""
        with self._lock:
            self._records.clear()
            self._command_counts.clear()
            self._error_counts.clear()
            self._total = 0
            self._failed = 0
            self._frames = 0
            self._frame_bytes = 0
            self._start_time = time.monotonic()
            self._last_activity = None


class GatewayStats:
    """Thread-safe container of per-device collectors.

    Collectors are created lazily on first record, so indices that were
    never addressed do not appear in summaries.

    Usage:
        stats = GatewayStats()
        stats.record_command(1, "GET_INFO", 0.4, success=True)
        stats.to_dict()["devices"]["1"]["total_commands"]  # 1
    """

    def __init__(self, window_size: int = DEFAULT_STATS_WINDOW_SIZE) -> None:
        self._window_size = window_size
        self._collectors: dict[int, DeviceStatsCollector] = {}
        self._lock = threading.Lock()

    def _get_collector(self, camera_idx: int) -> DeviceStatsCollector:
        with self._lock:
            if camera_idx not in self._collectors:
                self._collectors[camera_idx] = DeviceStatsCollector(
                    camera_idx, self._window_size
                )
            return self._collectors[camera_idx]

    def record_command(
        self,
        camera_idx: int,
        cmd: str,
        duration_ms: float,
        success: bool,
        error_type: str | None = None,
    ) -> None:
        """Record a command outcome for ``camera_idx``."""
        self._get_collector(camera_idx).record_command(
            cmd, duration_ms, success, error_type
        )

    def record_frame(self, camera_idx: int, size_bytes: int) -> None:
        """Record a frame published for ``camera_idx``."""
        self._get_collector(camera_idx).record_frame(size_bytes)

    def get_summary(self, camera_idx: int) -> StatsSummary:
        """Return the summary for one device (zeroed if never seen)."""
        return self._get_collector(camera_idx).get_summary()

    def get_all_summaries(self) -> dict[int, StatsSummary]:
        """Return summaries for every device that has recorded activity."""
        with self._lock:
            collectors = list(self._collectors.items())
        return {idx: collector.get_summary() for idx, collector in collectors}

    def reset(self, camera_idx: int | None = None) -> None:
        """Reset one device's collector, or all of them when None."""
        with self._lock:
            if camera_idx is not None:
                if camera_idx in self._collectors:
                    self._collectors[camera_idx].reset()
            else:
                for collector in self._collectors.values():
                    collector.reset()

    def to_dict(self) -> dict[str, Any]:
        """Export all summaries keyed by string device index."""
        return {
            "devices": {
                str(idx): summary.to_dict()
                for idx, summary in self.get_all_summaries().items()
            },
            "timestamp": _utc_now().isoformat(),
        }


def _percentile(sorted_data: list[float], p: float) -> float:
    """Linearly interpolated percentile of ascending ``sorted_data``.

    Args:
        sorted_data: Values sorted ascending. Empty input gives 0.0.
        p: Percentile in [0, 100].

    Returns:
        Interpolated value, matching numpy's "linear" method.

    Raises:
        ValueError: If p is outside [0, 100].

    Example:
        >>> _percentile([1.0, 2.0, 3.0, 4.0, 5.0], 50)
        3.0
        >>> _percentile([100.0, 150.0, 200.0], 95)
        195.0
    """
    if not 0 <= p <= 100:
        raise ValueError(f"Percentile must be between 0 and 100, got {p}")

    if not sorted_data:
        return 0.0

    k = (len(sorted_data) - 1) * (p / 100)
    floor_idx = int(k)
    ceil_idx = min(floor_idx + 1, len(sorted_data) - 1)

    if floor_idx == ceil_idx:
        return sorted_data[floor_idx]

    fraction = k - floor_idx
    return sorted_data[floor_idx] * (1 - fraction) + sorted_data[ceil_idx] * fraction
