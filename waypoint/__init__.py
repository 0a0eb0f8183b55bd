"""Waypoint: checkpoint persistence and migration for workspace agents."""

__version__ = "0.3.0"

# Branded types for type-safe IDs
from waypoint.types import AgentId, CheckpointId, WorkspaceId

__all__ = [
    "__version__",
    "AgentId",
    "CheckpointId",
    "WorkspaceId",
]
