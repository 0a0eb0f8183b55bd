"""Migration of scoped checkpoints into the global registry.

Walks ``<workspaces>/<ws>/agents/<agent>/checkpoints/`` for every scope, copies
each indexed record the registry does not list yet, and stamps the copy with
its origin. Scoped stores are only read.

Durability unit is one scope: a scope's copies are committed to the global
index together after the scope has been processed. A run interrupted between
scopes leaves the registry consistent with the scopes already committed, and
re-running picks up where it stopped. Re-running over an unchanged tree adds
nothing.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from waypoint.errors import MigrationPartialFailure, Result, WaypointError, err, ok
from waypoint.models import IndexEntry, Provenance, Scope, is_valid_identifier, now_iso
from waypoint.registry import GlobalCheckpointRegistry
from waypoint.store import ScopedCheckpointStore
from waypoint.types import AgentId, WorkspaceId

logger = logging.getLogger(__name__)


@dataclass
class MigrationReport:
    """Counters of one migration run."""

    scopes_discovered: int = 0
    records_discovered: int = 0
    migrated: int = 0
    already_present: int = 0
    skipped: int = 0
    failures: list[MigrationPartialFailure] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scopes_discovered": self.scopes_discovered,
            "records_discovered": self.records_discovered,
            "migrated": self.migrated,
            "already_present": self.already_present,
            "skipped": self.skipped,
            "failures": [
                {"code": f.code, "message": f.message, **f.context} for f in self.failures
            ],
        }


def discover_scopes(workspaces_dir: Path) -> list[Scope]:
    """Find every scope with a checkpoints directory, in sorted order."""
    workspaces_dir = Path(workspaces_dir)
    if not workspaces_dir.is_dir():
        return []

    scopes = []
    for workspace in sorted(workspaces_dir.iterdir()):
        if not workspace.is_dir() or not is_valid_identifier(workspace.name):
            continue
        agents_dir = workspace / "agents"
        if not agents_dir.is_dir():
            continue
        for agent in sorted(agents_dir.iterdir()):
            if not is_valid_identifier(agent.name):
                continue
            if (agent / "checkpoints").is_dir():
                scopes.append(Scope(WorkspaceId(workspace.name), AgentId(agent.name)))
    return scopes


class MigrationCoordinator:
    """Copies every scoped checkpoint into the global registry once."""

    def __init__(
        self,
        workspaces_dir: Path,
        registry: GlobalCheckpointRegistry,
        clock: Callable[[], str] = now_iso,
    ):
        self.workspaces_dir = Path(workspaces_dir)
        self.registry = registry
        self._clock = clock

    def run(self) -> Result[MigrationReport, WaypointError]:
        """Run a migration pass.

        Returns:
            Ok(MigrationReport), or Err if the global index cannot be read or
            a scope's batch cannot be committed (earlier scopes stay committed)
        """
        current = self.registry.read_index()
        if current.is_err():
            # Merging into an index we cannot read would discard it
            return err(current.unwrap_err())
        migrated_ids = {e.id for e in current.unwrap()}

        scopes = discover_scopes(self.workspaces_dir)
        report = MigrationReport(scopes_discovered=len(scopes))
        logger.info(f"Migrating {len(scopes)} scopes from {self.workspaces_dir} into {self.registry.root}")

        for scope in scopes:
            batch = self._migrate_scope(scope, migrated_ids, report)
            if not batch:
                continue
            merged = self.registry.merge_entries(batch)
            if merged.is_err():
                logger.error(f"Aborting migration at {scope}: {merged.unwrap_err().message}")
                return err(merged.unwrap_err())
            logger.info(f"Committed {merged.unwrap()} checkpoints from {scope}")

        # Leave the global index sorted even when nothing was added
        final = self.registry.merge_entries([])
        if final.is_err():
            return err(final.unwrap_err())

        logger.info(
            f"Migration complete: {report.migrated} migrated, "
            f"{report.already_present} already present, {report.skipped} skipped"
        )
        return ok(report)

    def _migrate_scope(
        self,
        scope: Scope,
        migrated_ids: set[str],
        report: MigrationReport,
    ) -> list[IndexEntry]:
        store = ScopedCheckpointStore(scope, self.workspaces_dir, self.registry.config)
        index = store.read_index()
        if index.is_err():
            logger.warning(f"Skipping unreadable index of {scope}: {index.unwrap_err().message}")
            return []

        entries = index.unwrap()
        report.records_discovered += len(entries)

        batch = []
        for entry in entries:
            if entry.id in migrated_ids:
                report.already_present += 1
                continue

            loaded = store.get(entry.id)
            if loaded.is_err():
                self._skip(report, scope, entry.id, loaded.unwrap_err())
                continue

            provenance = Provenance(
                source_workspace_id=scope.workspace_id,
                source_agent_id=scope.agent_id,
                migrated_at=self._clock(),
            )
            imported = self.registry.import_record(loaded.unwrap(), provenance)
            if imported.is_err():
                self._skip(report, scope, entry.id, imported.unwrap_err())
                continue

            migrated_ids.add(entry.id)
            batch.append(imported.unwrap())
            report.migrated += 1
            logger.debug(f"Migrated {entry.id} from {scope}")

        return batch

    def _skip(
        self,
        report: MigrationReport,
        scope: Scope,
        checkpoint_id: str,
        cause: WaypointError,
    ) -> None:
        failure = MigrationPartialFailure(
            code="RECORD_SKIPPED",
            message=f"Checkpoint {checkpoint_id} in {scope} skipped: {cause.message}",
            context={
                "id": checkpoint_id,
                "workspace_id": scope.workspace_id,
                "agent_id": scope.agent_id,
                "cause": cause.code,
            },
        )
        logger.warning(failure.message)
        report.failures.append(failure)
        report.skipped += 1
