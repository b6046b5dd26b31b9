"""Pipeline phases wrapping relationship discovery."""

from keygraph.pipeline.base import Phase, PhaseContext, PhaseResult, PhaseStatus

__all__ = ["Phase", "PhaseContext", "PhaseResult", "PhaseStatus"]
