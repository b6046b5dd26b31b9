"""Structured logging and per-operation discovery counters.

Events are snake_case names with key-value context:

    logger = get_logger(__name__)
    with log_context(datasource_id=ds_id, phase="pk_match"):
        logger.info("candidate_rejected", column="orders.status", reason="orphans")

`configure_logging` picks a console renderer for terminals or JSON lines for
log shippers. Counters for the running discovery operation live in a
ContextVar, so concurrent runs in different tasks never mix their numbers,
and every event logged inside an operation is tagged with its name.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import MutableMapping
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any, cast

import structlog
from structlog.typing import FilteringBoundLogger

_run_context: ContextVar[dict[str, Any] | None] = ContextVar("run_context", default=None)


@dataclass
class DiscoveryMetricsCollector:
    """Counts what one discovery operation did against the customer database."""

    operation: str
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None

    tables_processed: int = 0
    columns_considered: int = 0
    join_analyses: int = 0
    join_failures: int = 0
    relationships_written: int = 0
    timings: dict[str, float] = field(default_factory=dict)

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at or datetime.now(UTC)
        return (end - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        summary = asdict(self)
        del summary["started_at"], summary["finished_at"]
        summary["duration_seconds"] = self.duration_seconds
        return summary


_metrics: ContextVar[DiscoveryMetricsCollector | None] = ContextVar(
    "discovery_metrics", default=None
)


def start_discovery_metrics(operation: str) -> DiscoveryMetricsCollector:
    metrics = DiscoveryMetricsCollector(operation=operation)
    _metrics.set(metrics)
    return metrics


def get_discovery_metrics() -> DiscoveryMetricsCollector | None:
    return _metrics.get()


def end_discovery_metrics() -> DiscoveryMetricsCollector | None:
    """Close the running collection and log its summary."""
    metrics = _metrics.get()
    if metrics is None:
        return None
    metrics.finished_at = datetime.now(UTC)
    _metrics.set(None)
    get_logger(__name__).debug("discovery_metrics", **metrics.to_dict())
    return metrics


def increment_join_analysis(failed: bool = False) -> None:
    if metrics := _metrics.get():
        metrics.join_analyses += 1
        metrics.join_failures += int(failed)


def increment_relationship_written() -> None:
    if metrics := _metrics.get():
        metrics.relationships_written += 1


def record_tables_processed(count: int) -> None:
    if metrics := _metrics.get():
        metrics.tables_processed += count


def record_columns_considered(count: int) -> None:
    if metrics := _metrics.get():
        metrics.columns_considered += count


def record_operation_timing(operation: str, seconds: float) -> None:
    """Add seconds to the cumulative time spent in operation."""
    if metrics := _metrics.get():
        metrics.timings[operation] = metrics.timings.get(operation, 0.0) + seconds


def _add_run_context(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    if context := _run_context.get():
        event_dict.update(context)
    return event_dict


def _add_operation(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    if metrics := _metrics.get():
        event_dict["_operation"] = metrics.operation
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    log_format: str = "console",
    show_timestamps: bool = True,
    color: bool = True,
) -> None:
    """Set up structlog for the process and route stdlib logging to stderr.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        log_format: "console" for people, "json" for machines
        show_timestamps: Prefix events with an ISO UTC timestamp
        color: Colored console output
    """
    level = getattr(logging, log_level.upper())
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_run_context,
        _add_operation,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if show_timestamps:
        processors.insert(0, structlog.processors.TimeStamper(fmt="iso", utc=True))

    if log_format == "json":
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=color, exception_formatter=structlog.dev.plain_traceback
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
    # sqlalchemy and aiosqlite log through the stdlib
    logging.basicConfig(
        format="%(message)s",
        level=level,
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )


def get_logger(name: str | None = None) -> FilteringBoundLogger:
    return cast(FilteringBoundLogger, structlog.get_logger(name))


@contextmanager
def log_context(**context: Any):
    """Attach context to every event logged inside the block; blocks nest."""
    token = _run_context.set({**(_run_context.get() or {}), **context})
    try:
        yield
    finally:
        _run_context.reset(token)
