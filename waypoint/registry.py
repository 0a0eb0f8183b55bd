"""Global checkpoint registry.

One store at ``<storage>/checkpoints/`` that is not bound to any scope.
Records copied in by migration carry a ``Provenance`` naming the workspace and
agent they came from; the same provenance fields are projected into the index
so listings can show the origin without opening documents.

Migration writes documents one by one with ``import_record`` and commits them
to the index in batches with ``merge_entries``, so the index is rewritten
once per batch instead of once per record.
"""

import logging
from collections.abc import Callable, Iterable
from pathlib import Path

from waypoint.config import WaypointConfig, get_global_checkpoints_dir
from waypoint.errors import Result, WaypointError, err, ok
from waypoint.locking import exclusive_section
from waypoint.models import (
    CheckpointDraft,
    CheckpointRecord,
    IndexEntry,
    Provenance,
    Scope,
    build_record,
    entry_for_record,
    generate_checkpoint_id,
    now_iso,
    validate_draft,
)
from waypoint.store import CheckpointStore
from waypoint.types import CheckpointId

logger = logging.getLogger(__name__)


class GlobalCheckpointRegistry(CheckpointStore):
    """Checkpoints consolidated across all scopes."""

    def __init__(
        self,
        root: Path | None = None,
        config: WaypointConfig | None = None,
        clock: Callable[[], str] = now_iso,
    ):
        super().__init__(root or get_global_checkpoints_dir(), config, clock)

    def save(
        self,
        draft: CheckpointDraft,
        source: Scope | None = None,
    ) -> Result[CheckpointId, WaypointError]:
        """Save a new checkpoint directly into the registry.

        Args:
            draft: The save request
            source: Scope the conversation belongs to, recorded as provenance
                with no migration time
        """
        validated = validate_draft(draft, self.config.recognized_models)
        if validated.is_err():
            return err(validated.unwrap_err())

        provenance = None
        if source is not None:
            provenance = Provenance(
                source_workspace_id=source.workspace_id,
                source_agent_id=source.agent_id,
            )
        record = build_record(draft, generate_checkpoint_id(), self._clock(), provenance)
        return self._save_record(record)

    def import_record(
        self,
        record: CheckpointRecord,
        provenance: Provenance,
    ) -> Result[IndexEntry, WaypointError]:
        """Write a copy of ``record`` stamped with ``provenance``.

        The index is not touched; pass the returned entry to merge_entries().
        An unindexed document left by an interrupted run is overwritten.
        """
        imported = CheckpointRecord(
            id=record.id,
            name=record.name,
            created_at=record.created_at,
            messages=record.messages,
            description=record.description,
            agent_name=record.agent_name,
            agent_title=record.agent_title,
            selected_model=record.selected_model,
            metadata=dict(record.metadata),
            provenance=provenance,
        )
        written = self._write_record(imported)
        if written.is_err():
            return err(written.unwrap_err())
        return ok(entry_for_record(imported))

    def merge_entries(self, entries: Iterable[IndexEntry]) -> Result[int, WaypointError]:
        """Add entries whose id is not yet indexed, then sort and write the index.

        The index is always written back, so merging nothing re-sorts it.

        Returns:
            Number of entries added
        """
        try:
            with exclusive_section(self.lock_path):
                current = self.read_index()
                if current.is_err():
                    return err(current.unwrap_err())

                merged = current.unwrap()
                seen = {e.id for e in merged}
                added = 0
                for entry in entries:
                    if entry.id in seen:
                        continue
                    seen.add(entry.id)
                    merged.append(entry)
                    added += 1

                written = self._write_index(merged)
                if written.is_err():
                    return err(written.unwrap_err())
        except OSError as e:
            return err(self._lock_failed(e))

        logger.debug(f"Merged {added} entries into {self.index_path}")
        return ok(added)

    def known_ids(self) -> set[str]:
        """Ids currently listed in the registry index."""
        return {e.id for e in self.list(limit=0)}
