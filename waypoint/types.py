"""Branded identifier types.

NewType wrappers keep checkpoint, workspace and agent ids from being mixed up
at call sites. They are plain strings at runtime.
"""

from typing import NewType

CheckpointId = NewType("CheckpointId", str)
WorkspaceId = NewType("WorkspaceId", str)
AgentId = NewType("AgentId", str)
