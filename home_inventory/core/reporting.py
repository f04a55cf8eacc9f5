"""
Error reporting sink.

Warnings and exceptions that operators should see (identity conflicts,
IdP outages, inactive users) go through an ``ErrorReporter``. Reporting is
fire-and-forget: a failing reporter must never break the calling flow.
"""

from typing import Any, Literal, Protocol

from home_inventory.core.logging import get_logger

ReportLevel = Literal["info", "warning", "error"]


class ErrorReporter(Protocol):
    """Structured warning/exception sink."""

    def capture_message(self, message: str, level: ReportLevel = "warning", **extra: Any) -> None:
        ...

    def capture_exception(self, exc: BaseException, **extra: Any) -> None:
        ...


class LogReporter:
    """ErrorReporter that forwards to structlog."""

    def __init__(self, logger_name: str = "home_inventory.reporting") -> None:
        self._logger = get_logger(logger_name)

    def capture_message(self, message: str, level: ReportLevel = "warning", **extra: Any) -> None:
        try:
            getattr(self._logger, level)("reported_message", report=message, **extra)
        except Exception:  # noqa: BLE001
            pass

    def capture_exception(self, exc: BaseException, **extra: Any) -> None:
        try:
            self._logger.error(
                "reported_exception",
                error_type=type(exc).__name__,
                error=str(exc),
                exc_info=exc,
                **extra,
            )
        except Exception:  # noqa: BLE001
            pass
