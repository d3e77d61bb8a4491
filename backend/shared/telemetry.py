"""Telemetry sink abstraction for fire-and-forget engine events.

Events are advisory: a sink that raises must never fail the operation that
emitted the event, so engine code always goes through emit_safely.
"""

from typing import Any, Protocol

import structlog

logger = structlog.get_logger()


class TelemetrySink(Protocol):
    """Protocol for emitting named events with keyword context."""

    def emit(self, event: str, **fields: Any) -> None: ...  # noqa: ANN401


class LogTelemetrySink:
    """Writes each event as one structured log line."""

    def __init__(self, level: str = "info") -> None:
        self._log = getattr(logger, level)

    def emit(self, event: str, **fields: Any) -> None:  # noqa: ANN401
        self._log(event, **fields)


class NullTelemetrySink:
    def emit(self, event: str, **fields: Any) -> None:  # noqa: ANN401
        pass


def emit_safely(sink: TelemetrySink, event: str, **fields: Any) -> None:  # noqa: ANN401
    """Emit an event, containing any failure raised by the sink."""
    try:
        sink.emit(event, **fields)
    except Exception:  # noqa: BLE001
        logger.warning("telemetry sink failed", telemetry_event=event, exc_info=True)
