"""Observability for camera-gateway: structured logging and device stats.

Example:
    from camera_gateway.observability import LogContext, get_logger

    logger = get_logger(__name__)

    with LogContext(transaction_id="t-1", camera_idx=0):
        logger.info("Dispatching", cmd="GET_INFO")

Statistics Example:
    from camera_gateway.observability import GatewayStats

    stats = GatewayStats()
    stats.record_command(0, "GET_INFO", duration_ms=0.8, success=True)
    print(stats.get_summary(0).success_rate)
"""

from camera_gateway.observability.logging import (
    JSONFormatter,
    LogContext,
    StructuredFormatter,
    StructuredLogger,
    configure_logging,
    get_logger,
    reset_logging,
)
from camera_gateway.observability.stats import (
    GatewayStats,
    StatsSummary,
)

__all__ = [
    # Logging
    "JSONFormatter",
    "LogContext",
    "StructuredFormatter",
    "StructuredLogger",
    "configure_logging",
    "get_logger",
    "reset_logging",
    # Statistics
    "GatewayStats",
    "StatsSummary",
]
