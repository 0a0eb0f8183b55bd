"""Checkpoint service: the entry point for callers.

Wraps the scoped stores, the global registry and the migration coordinator
behind one object bound to a storage root. Every operation returns a Result;
errors are never raised or dropped.

The ``*_response`` helpers shape results for the HTTP layer:

    create  -> {"checkpointId": id}
    list    -> {"checkpoints": [entry, ...]}
    restore -> {"checkpoint": record}
"""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

from waypoint.config import (
    WaypointConfig,
    get_config,
    get_global_checkpoints_dir,
    get_storage_dir,
    get_workspaces_dir,
)
from waypoint.errors import Result, WaypointError, err, ok
from waypoint.migration import MigrationCoordinator, MigrationReport
from waypoint.models import (
    CheckpointDraft,
    CheckpointRecord,
    IndexEntry,
    Scope,
    entry_to_dict,
    now_iso,
    record_to_payload,
    validate_scope,
)
from waypoint.registry import GlobalCheckpointRegistry
from waypoint.store import ScopedCheckpointStore
from waypoint.types import CheckpointId

logger = logging.getLogger(__name__)


class CheckpointService:
    """Save, list, restore and delete checkpoints under one storage root."""

    def __init__(
        self,
        storage_dir: Path | None = None,
        config: WaypointConfig | None = None,
        clock: Callable[[], str] = now_iso,
    ):
        self.storage_dir = Path(storage_dir) if storage_dir else get_storage_dir()
        self.config = config or get_config(self.storage_dir)
        self.workspaces_dir = get_workspaces_dir(self.storage_dir)
        self._clock = clock
        self.registry = GlobalCheckpointRegistry(
            get_global_checkpoints_dir(self.storage_dir), self.config, clock
        )

    def store_for(self, scope: Scope) -> Result[ScopedCheckpointStore, WaypointError]:
        """The store of a scope, or ValidationError for unsafe ids."""
        validated = validate_scope(scope)
        if validated.is_err():
            return err(validated.unwrap_err())
        return ok(ScopedCheckpointStore(scope, self.workspaces_dir, self.config, self._clock))

    # ------------------------------------------------------------------
    # Scoped checkpoints
    # ------------------------------------------------------------------

    def save_checkpoint(
        self,
        scope: Scope,
        draft: CheckpointDraft | dict[str, Any],
    ) -> Result[CheckpointId, WaypointError]:
        """Save a conversation snapshot for a scope.

        Args:
            scope: Owning workspace and agent
            draft: A CheckpointDraft or a raw API create payload
        """
        store = self.store_for(scope)
        if store.is_err():
            return err(store.unwrap_err())

        if not isinstance(draft, CheckpointDraft):
            parsed = CheckpointDraft.from_payload(draft)
            if parsed.is_err():
                return err(parsed.unwrap_err())
            draft = parsed.unwrap()

        return store.unwrap().save(draft)

    def list_checkpoints(
        self,
        scope: Scope,
        limit: int | None = None,
    ) -> Result[list[IndexEntry], WaypointError]:
        """List a scope's checkpoints, newest first (empty for an unknown scope)."""
        store = self.store_for(scope)
        if store.is_err():
            return err(store.unwrap_err())
        return ok(store.unwrap().list(limit))

    def restore_checkpoint(
        self,
        scope: Scope,
        checkpoint_id: str,
    ) -> Result[CheckpointRecord, WaypointError]:
        """Load a checkpoint for restoring; the stored copy is not modified."""
        store = self.store_for(scope)
        if store.is_err():
            return err(store.unwrap_err())
        return store.unwrap().get(checkpoint_id)

    def delete_checkpoint(
        self,
        scope: Scope,
        checkpoint_id: str,
    ) -> Result[CheckpointId, WaypointError]:
        """Delete a scoped checkpoint. A migrated copy in the registry is kept."""
        store = self.store_for(scope)
        if store.is_err():
            return err(store.unwrap_err())
        return store.unwrap().delete(checkpoint_id)

    # ------------------------------------------------------------------
    # Global registry
    # ------------------------------------------------------------------

    def list_global_checkpoints(self, limit: int | None = None) -> list[IndexEntry]:
        return self.registry.list(limit)

    def restore_global_checkpoint(self, checkpoint_id: str) -> Result[CheckpointRecord, WaypointError]:
        return self.registry.get(checkpoint_id)

    def delete_global_checkpoint(self, checkpoint_id: str) -> Result[CheckpointId, WaypointError]:
        return self.registry.delete(checkpoint_id)

    def migrate(self) -> Result[MigrationReport, WaypointError]:
        """Copy every scoped checkpoint not yet in the registry into it."""
        coordinator = MigrationCoordinator(self.workspaces_dir, self.registry, self._clock)
        return coordinator.run()


def create_response(checkpoint_id: str) -> dict[str, Any]:
    return {"checkpointId": checkpoint_id}


def list_response(entries: list[IndexEntry]) -> dict[str, Any]:
    return {"checkpoints": [entry_to_dict(e) for e in entries]}


def restore_response(record: CheckpointRecord) -> dict[str, Any]:
    return {"checkpoint": record_to_payload(record)}
