"""Shared run wrapper for phases."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod

from keygraph.core.logging import get_logger, log_context
from keygraph.pipeline.base import PhaseContext, PhaseResult

logger = get_logger(__name__)


class BasePhase(ABC):
    """Checks the skip condition, times the phase and records its failures.

    Subclasses set `name`, `description` and `outputs` and implement `_run`.
    Any Exception from `should_skip` or `_run` becomes a failed result; task
    cancellation is not an Exception and reaches the caller.
    """

    name: str
    description: str
    outputs: tuple[str, ...] = ()

    async def should_skip(self, ctx: PhaseContext) -> str | None:
        return None

    async def run(self, ctx: PhaseContext) -> PhaseResult:
        started = time.monotonic()
        with log_context(phase=self.name, datasource_id=ctx.datasource_id):
            try:
                reason = await self.should_skip(ctx)
                if reason is not None:
                    logger.info("phase_skipped", reason=reason)
                    result = PhaseResult.skipped(reason)
                else:
                    result = await self._run(ctx)
            except Exception as e:
                logger.exception("phase_failed", error=str(e))
                result = PhaseResult.failed(str(e))

        result.duration_seconds = time.monotonic() - started
        logger.info(
            "phase_finished",
            phase=self.name,
            status=result.status.value,
            duration_seconds=round(result.duration_seconds, 3),
        )
        return result

    @abstractmethod
    async def _run(self, ctx: PhaseContext) -> PhaseResult: ...
