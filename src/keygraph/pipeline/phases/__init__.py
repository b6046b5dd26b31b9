"""Pipeline phase implementations."""

from keygraph.pipeline.phases.base import BasePhase
from keygraph.pipeline.phases.relationship_discovery_phase import RelationshipDiscoveryPhase

__all__ = ["BasePhase", "RelationshipDiscoveryPhase"]
