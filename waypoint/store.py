"""Checkpoint stores for Waypoint.

A store is a directory holding one JSON document per checkpoint
(``<id>.json``) and an ``index.json`` listing their ``IndexEntry``
projections, newest first. ``CheckpointStore`` implements the shared
mechanics; ``ScopedCheckpointStore`` binds it to one (workspace, agent) scope.

Write protocol:
1. the record document is published atomically under its id, failing if the
   id is already taken
2. inside the store's exclusive section the index is re-read, the new entry
   is merged in and the index is written back atomically

If step 2 fails the record document is removed again, so a failed save leaves
nothing behind.

Read policy: ``get()`` reads the record document directly and never consults
the index. ``list()`` fails open: a missing or unparsable index lists as empty
(with a warning) and the file is left untouched for inspection.
``rebuild_index()`` is the explicit, operator-invoked repair.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from pathlib import Path

from waypoint.atomic import write_json_document
from waypoint.config import (
    INDEX_FILENAME,
    LOCK_FILENAME,
    RECORD_SUFFIX,
    WaypointConfig,
    get_workspaces_dir,
)
from waypoint.errors import (
    NotFoundError,
    Result,
    StorageError,
    WaypointError,
    err,
    ok,
)
from waypoint.locking import exclusive_section
from waypoint.models import (
    CheckpointDraft,
    CheckpointRecord,
    IndexEntry,
    Scope,
    build_record,
    entry_for_record,
    entry_from_dict,
    entry_to_dict,
    generate_checkpoint_id,
    is_valid_identifier,
    now_iso,
    record_from_dict,
    record_to_dict,
    sort_entries,
    validate_draft,
)
from waypoint.types import CheckpointId

logger = logging.getLogger(__name__)


def scope_dir(workspaces_dir: Path, scope: Scope) -> Path:
    """Directory of the checkpoint store owned by a scope.

    Raises:
        ValueError: if the scope ids are not path-safe
    """
    if not (is_valid_identifier(scope.workspace_id) and is_valid_identifier(scope.agent_id)):
        raise ValueError(f"Invalid scope: {scope}")
    return workspaces_dir / scope.workspace_id / "agents" / scope.agent_id / "checkpoints"


class CheckpointStore:
    """Index + per-record JSON documents under one directory."""

    def __init__(
        self,
        root: Path,
        config: WaypointConfig | None = None,
        clock: Callable[[], str] = now_iso,
    ):
        self.root = Path(root)
        self.config = config or WaypointConfig()
        self._clock = clock

    @property
    def index_path(self) -> Path:
        return self.root / INDEX_FILENAME

    @property
    def lock_path(self) -> Path:
        return self.root / LOCK_FILENAME

    def record_path(self, checkpoint_id: str) -> Path:
        return self.root / f"{checkpoint_id}{RECORD_SUFFIX}"

    def _is_record_id(self, checkpoint_id: str) -> bool:
        # The index shares the record suffix, never treat it as a record
        return is_valid_identifier(checkpoint_id) and self.record_path(checkpoint_id) != self.index_path

    def exists(self) -> bool:
        return self.root.is_dir()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.root})"

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read_index(self) -> Result[list[IndexEntry], StorageError]:
        """Read the index document as stored.

        A missing index is an empty store; an unreadable or unparsable one is
        an error. Individual entries without a usable id are dropped with a
        warning.
        """
        if not self.index_path.exists():
            return ok([])

        try:
            data = json.loads(self.index_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            return err(
                StorageError(
                    code="INDEX_CORRUPT",
                    message=f"Index {self.index_path} is not valid JSON: {e}",
                    context={"path": str(self.index_path)},
                )
            )
        except (OSError, UnicodeDecodeError) as e:
            return err(
                StorageError(
                    code="INDEX_READ_FAILED",
                    message=f"Failed to read index {self.index_path}: {e}",
                    context={"path": str(self.index_path)},
                )
            )

        if not isinstance(data, list):
            return err(
                StorageError(
                    code="INDEX_CORRUPT",
                    message=f"Index {self.index_path} is not a list of entries",
                    context={"path": str(self.index_path)},
                )
            )

        entries = []
        for item in data:
            entry = entry_from_dict(item)
            if entry is None:
                logger.warning(f"Dropping malformed index entry in {self.index_path}: {item!r}")
                continue
            entries.append(entry)
        return ok(entries)

    def list(self, limit: int | None = None) -> list[IndexEntry]:
        """List checkpoints, most recent first.

        Args:
            limit: Maximum entries to return (default: config list_limit; 0 or
                less returns all)

        Returns:
            Index entries; empty if the index is missing or unreadable
        """
        result = self.read_index()
        if result.is_err():
            logger.warning(f"Listing {self.root} as empty: {result.unwrap_err().message}")
            return []

        entries = sort_entries(result.unwrap())
        if limit is None:
            limit = self.config.list_limit
        return entries[:limit] if limit > 0 else entries

    def get(self, checkpoint_id: str) -> Result[CheckpointRecord, WaypointError]:
        """Load a full record by id, straight from its document."""
        path = self.record_path(checkpoint_id) if self._is_record_id(checkpoint_id) else None
        if path is None or not path.is_file():
            return err(
                NotFoundError(
                    code="CHECKPOINT_NOT_FOUND",
                    message=f"Checkpoint '{checkpoint_id}' not found in {self.root}",
                    context={"id": checkpoint_id, "store": str(self.root)},
                )
            )

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            return err(
                StorageError(
                    code="RECORD_CORRUPT",
                    message=f"Checkpoint {path} is not valid JSON: {e}",
                    context={"id": checkpoint_id, "path": str(path)},
                )
            )
        except (OSError, UnicodeDecodeError) as e:
            return err(
                StorageError(
                    code="RECORD_READ_FAILED",
                    message=f"Failed to read checkpoint {path}: {e}",
                    context={"id": checkpoint_id, "path": str(path)},
                )
            )

        parsed = record_from_dict(data)
        if parsed.is_err():
            return err(
                StorageError(
                    code="RECORD_MALFORMED",
                    message=f"Checkpoint {path} is malformed: {parsed.unwrap_err().message}",
                    context={"id": checkpoint_id, "path": str(path)},
                )
            )

        record = parsed.unwrap()
        if record.id != checkpoint_id:
            return err(
                StorageError(
                    code="RECORD_MALFORMED",
                    message=f"Checkpoint {path} holds id '{record.id}'",
                    context={"id": checkpoint_id, "path": str(path)},
                )
            )
        return ok(record)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _write_record(self, record: CheckpointRecord, replace: bool = True) -> Result[Path, StorageError]:
        return write_json_document(
            self.record_path(record.id),
            record_to_dict(record),
            mode=self.config.file_mode,
            indent=self.config.json_indent,
            replace=replace,
        )

    def _write_index(self, entries: list[IndexEntry]) -> Result[Path, StorageError]:
        return write_json_document(
            self.index_path,
            [entry_to_dict(e) for e in sort_entries(entries)],
            mode=self.config.file_mode,
            indent=self.config.json_indent,
        )

    def _lock_failed(self, e: OSError) -> StorageError:
        return StorageError(
            code="INDEX_LOCK_FAILED",
            message=f"Failed to lock index of {self.root}: {e}",
            context={"path": str(self.lock_path)},
        )

    def _append_entry(self, entry: IndexEntry) -> Result[IndexEntry, WaypointError]:
        """Merge one entry into the index inside the exclusive section."""
        try:
            with exclusive_section(self.lock_path):
                current = self.read_index()
                if current.is_err():
                    # Never overwrite an index we could not read
                    return err(current.unwrap_err())

                entries = current.unwrap()
                if any(e.id == entry.id for e in entries):
                    return err(
                        StorageError(
                            code="DUPLICATE_ID",
                            message=f"Checkpoint '{entry.id}' is already indexed in {self.root}",
                            context={"id": entry.id},
                        )
                    )

                entries.append(entry)
                written = self._write_index(entries)
                if written.is_err():
                    return err(written.unwrap_err())
        except OSError as e:
            return err(self._lock_failed(e))

        return ok(entry)

    def _save_record(self, record: CheckpointRecord) -> Result[CheckpointId, WaypointError]:
        """Persist a new record document, then index it."""
        path = self.record_path(record.id)
        # Records are immutable: the id is claimed by the publish itself
        written = self._write_record(record, replace=False)
        if written.is_err():
            error = written.unwrap_err()
            if error.code == "DOCUMENT_EXISTS":
                return err(
                    StorageError(
                        code="DUPLICATE_ID",
                        message=f"Checkpoint '{record.id}' already exists in {self.root}",
                        context={"id": record.id},
                    )
                )
            return err(error)

        appended = self._append_entry(entry_for_record(record))
        if appended.is_err():
            logger.warning(
                f"Index update failed for {record.id}, removing its document: "
                f"{appended.unwrap_err().message}"
            )
            self._discard_record(path)
            return err(appended.unwrap_err())

        logger.info(f"Saved checkpoint {record.id} ({record.message_count} messages) in {self.root}")
        return ok(record.id)

    def _discard_record(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Failed to remove unindexed checkpoint {path}: {e}")

    def delete(self, checkpoint_id: str) -> Result[CheckpointId, WaypointError]:
        """Delete a checkpoint's index entry and document.

        Both steps run inside the exclusive section. The entry goes first: if
        the index cannot be written the document is left alone, and if the
        document cannot be removed the entry is put back. Succeeds if either
        of the two existed, so a half-consistent store is repaired for this id.
        A corrupt index is left untouched and only the document is removed.
        """
        not_found = NotFoundError(
            code="CHECKPOINT_NOT_FOUND",
            message=f"Checkpoint '{checkpoint_id}' not found in {self.root}",
            context={"id": checkpoint_id, "store": str(self.root)},
        )
        if not self._is_record_id(checkpoint_id) or not self.exists():
            return err(not_found)

        try:
            with exclusive_section(self.lock_path):
                current = self.read_index()
                entries: list[IndexEntry] = []
                if current.is_err():
                    error = current.unwrap_err()
                    if error.code != "INDEX_CORRUPT":
                        return err(error)
                    logger.warning(f"Leaving corrupt index untouched: {error.message}")
                else:
                    entries = current.unwrap()

                remaining = [e for e in entries if e.id != checkpoint_id]
                removed_entry = len(remaining) != len(entries)
                if removed_entry:
                    written = self._write_index(remaining)
                    if written.is_err():
                        return err(written.unwrap_err())

                removed_record = False
                try:
                    self.record_path(checkpoint_id).unlink()
                    removed_record = True
                except FileNotFoundError:
                    pass
                except OSError as e:
                    if removed_entry:
                        restored = self._write_index(entries)
                        if restored.is_err():
                            logger.error(
                                f"Could not restore index entry {checkpoint_id} in {self.root}: "
                                f"{restored.unwrap_err().message}"
                            )
                    return err(
                        StorageError(
                            code="RECORD_DELETE_FAILED",
                            message=f"Failed to delete checkpoint {checkpoint_id}: {e}",
                            context={"id": checkpoint_id},
                        )
                    )
        except OSError as e:
            return err(self._lock_failed(e))

        if not removed_record and not removed_entry:
            return err(not_found)

        if removed_record != removed_entry:
            logger.warning(
                f"Checkpoint {checkpoint_id} in {self.root} was only partially present "
                f"(document={removed_record}, index entry={removed_entry})"
            )
        logger.info(f"Deleted checkpoint {checkpoint_id} from {self.root}")
        return ok(CheckpointId(checkpoint_id))

    def rebuild_index(self) -> Result[int, WaypointError]:
        """Rewrite the index from the record documents on disk.

        Recovers entries lost to crashes or external writers and replaces a
        corrupt index. Malformed documents are skipped with a warning.

        Returns:
            Number of entries in the rebuilt index
        """
        if not self.exists():
            return err(
                NotFoundError(
                    code="STORE_NOT_FOUND",
                    message=f"No checkpoint store at {self.root}",
                    context={"store": str(self.root)},
                )
            )

        try:
            with exclusive_section(self.lock_path):
                entries = []
                for path in sorted(self.root.glob(f"*{RECORD_SUFFIX}")):
                    if path.name == INDEX_FILENAME:
                        continue
                    loaded = self.get(path.stem)
                    if loaded.is_err():
                        logger.warning(f"Skipping {path} during reindex: {loaded.unwrap_err().message}")
                        continue
                    entries.append(entry_for_record(loaded.unwrap()))

                written = self._write_index(entries)
                if written.is_err():
                    return err(written.unwrap_err())
        except OSError as e:
            return err(self._lock_failed(e))

        logger.info(f"Rebuilt index of {self.root}: {len(entries)} entries")
        return ok(len(entries))


class ScopedCheckpointStore(CheckpointStore):
    """Checkpoints owned by one (workspace, agent) scope."""

    def __init__(
        self,
        scope: Scope,
        workspaces_dir: Path | None = None,
        config: WaypointConfig | None = None,
        clock: Callable[[], str] = now_iso,
    ):
        self.scope = scope
        super().__init__(scope_dir(workspaces_dir or get_workspaces_dir(), scope), config, clock)

    def save(self, draft: CheckpointDraft) -> Result[CheckpointId, WaypointError]:
        """Validate a save request and persist it as a new checkpoint.

        Returns:
            Ok(new checkpoint id), or Err(ValidationError) before any I/O,
            or Err(StorageError) if nothing could be persisted
        """
        validated = validate_draft(draft, self.config.recognized_models)
        if validated.is_err():
            return err(validated.unwrap_err())

        record = build_record(draft, generate_checkpoint_id(), self._clock())
        return self._save_record(record)
