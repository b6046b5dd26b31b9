"""Phase framework for running discovery inside a workflow.

An orchestrator hands each phase a PhaseContext for one datasource and gets
back a PhaseResult it can log, show, or feed to the next phase.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

from keygraph.core.config import Settings, get_settings

if TYPE_CHECKING:
    import duckdb
    from sqlalchemy.ext.asyncio import AsyncSession


class PhaseStatus(str, Enum):
    """Outcome of a phase run."""

    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class PhaseContext:
    """Connections and options for one datasource.

    `session` reads and writes schema metadata, `duckdb_conn` holds the
    customer tables joins are measured on. Without explicit `settings` the
    process-wide settings apply.
    """

    session: AsyncSession
    duckdb_conn: duckdb.DuckDBPyConnection
    datasource_id: str
    settings: Settings | None = None
    config: dict[str, Any] = field(default_factory=dict)
    previous_outputs: dict[str, dict[str, Any]] = field(default_factory=dict)

    def resolved_settings(self) -> Settings:
        return self.settings or get_settings()

    def option(self, key: str, default: Any = None) -> Any:
        """Config value for key; None counts as unset."""
        value = self.config.get(key)
        return default if value is None else value

    def get_output(self, phase_name: str, key: str, default: Any = None) -> Any:
        return self.previous_outputs.get(phase_name, {}).get(key, default)


@dataclass
class PhaseResult:
    """What a phase did. `error` carries the skip reason for skipped phases."""

    status: PhaseStatus
    outputs: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    error: str | None = None
    duration_seconds: float = 0.0

    candidates_evaluated: int = 0
    relationships_written: int = 0

    @property
    def ok(self) -> bool:
        return self.status != PhaseStatus.FAILED

    @classmethod
    def success(
        cls,
        outputs: dict[str, Any],
        *,
        warnings: list[str] | None = None,
        candidates_evaluated: int = 0,
        relationships_written: int = 0,
    ) -> PhaseResult:
        return cls(
            status=PhaseStatus.COMPLETED,
            outputs=outputs,
            warnings=warnings or [],
            candidates_evaluated=candidates_evaluated,
            relationships_written=relationships_written,
        )

    @classmethod
    def failed(cls, error: str) -> PhaseResult:
        return cls(status=PhaseStatus.FAILED, error=error)

    @classmethod
    def skipped(cls, reason: str) -> PhaseResult:
        return cls(status=PhaseStatus.SKIPPED, error=reason)


class Phase(Protocol):
    """A unit of work an orchestrator can schedule.

    `outputs` names the keys the phase writes into PhaseResult.outputs, so a
    later phase can read them back through PhaseContext.get_output.
    """

    name: str
    description: str
    outputs: tuple[str, ...]

    async def should_skip(self, ctx: PhaseContext) -> str | None: ...

    async def run(self, ctx: PhaseContext) -> PhaseResult: ...
