"""Tests for waypoint.service module."""

from pathlib import Path

import pytest

from waypoint.config import WaypointConfig
from waypoint.errors import NotFoundError, ValidationError
from waypoint.models import Scope
from waypoint.service import CheckpointService, create_response, list_response, restore_response

SCOPE = Scope("ws-1", "react-expert")


@pytest.fixture
def service(storage_dir: Path, clock) -> CheckpointService:
    return CheckpointService(storage_dir, clock=clock)


class TestScopedOperations:
    """save/list/restore/delete through the service."""

    def test_lifecycle_from_payload(self, service: CheckpointService, payload):
        """A raw API payload can be saved, listed, restored and deleted."""
        checkpoint_id = service.save_checkpoint(SCOPE, payload).unwrap()

        entries = service.list_checkpoints(SCOPE).unwrap()
        assert [e.id for e in entries] == [checkpoint_id]

        record = service.restore_checkpoint(SCOPE, checkpoint_id).unwrap()
        assert record.name == "React Helper Expert"
        assert len(record.messages) == 4

        assert service.delete_checkpoint(SCOPE, checkpoint_id).is_ok()
        assert service.list_checkpoints(SCOPE).unwrap() == []

    def test_accepts_draft(self, service: CheckpointService, draft):
        """A CheckpointDraft works as well as a payload."""
        assert service.save_checkpoint(SCOPE, draft).is_ok()

    def test_invalid_payload(self, service: CheckpointService, payload):
        """Validation errors come back as values."""
        del payload["name"]

        error = service.save_checkpoint(SCOPE, payload).unwrap_err()

        assert isinstance(error, ValidationError)
        assert "Missing required field: name" in error.message

    def test_invalid_scope(self, service: CheckpointService, payload):
        """Unsafe scope ids are ValidationErrors on every operation."""
        bad = Scope("../etc", "agent")

        assert isinstance(service.save_checkpoint(bad, payload).unwrap_err(), ValidationError)
        assert isinstance(service.list_checkpoints(bad).unwrap_err(), ValidationError)
        assert isinstance(service.restore_checkpoint(bad, "x").unwrap_err(), ValidationError)
        assert isinstance(service.delete_checkpoint(bad, "x").unwrap_err(), ValidationError)

    def test_scopes_are_isolated(self, service: CheckpointService, payload):
        """A checkpoint is only visible in the scope that saved it."""
        checkpoint_id = service.save_checkpoint(SCOPE, payload).unwrap()
        other = Scope("ws-1", "python-expert")

        assert service.list_checkpoints(other).unwrap() == []
        assert isinstance(service.restore_checkpoint(other, checkpoint_id).unwrap_err(), NotFoundError)

    def test_loads_config_from_storage(self, storage_dir: Path, payload):
        """The storage root's waypoint.yaml governs validation."""
        WaypointConfig(recognized_models=["gemini"]).save(storage_dir)
        service = CheckpointService(storage_dir)

        assert service.save_checkpoint(SCOPE, payload).is_err()
        payload["selectedModel"] = "gemini"
        assert service.save_checkpoint(SCOPE, payload).is_ok()


class TestGlobalOperations:
    """Registry access and migration through the service."""

    def test_migrate_then_browse(self, service: CheckpointService, payload):
        """Migrated checkpoints are listed, restorable and deletable globally."""
        checkpoint_id = service.save_checkpoint(SCOPE, payload).unwrap()

        report = service.migrate().unwrap()

        assert report.migrated == 1
        entries = service.list_global_checkpoints()
        assert entries[0].id == checkpoint_id
        assert entries[0].source_workspace_id == "ws-1"
        record = service.restore_global_checkpoint(checkpoint_id).unwrap()
        assert record.provenance.source_agent_id == "react-expert"

        assert service.delete_global_checkpoint(checkpoint_id).is_ok()
        assert service.list_global_checkpoints() == []

    def test_scoped_delete_keeps_migrated_copy(self, service: CheckpointService, payload):
        """Deleting the scoped original does not remove the global copy."""
        checkpoint_id = service.save_checkpoint(SCOPE, payload).unwrap()
        service.migrate().unwrap()

        service.delete_checkpoint(SCOPE, checkpoint_id).unwrap()

        assert service.restore_global_checkpoint(checkpoint_id).is_ok()

    def test_global_restore_unknown(self, service: CheckpointService):
        """Unknown global ids are NotFound."""
        assert isinstance(service.restore_global_checkpoint("missing").unwrap_err(), NotFoundError)


class TestResponses:
    """API response shaping."""

    def test_create_response(self):
        """Create returns the new id under checkpointId."""
        assert create_response("abc") == {"checkpointId": "abc"}

    def test_list_and_restore_responses(self, service: CheckpointService, payload):
        """List and restore wrap their payloads."""
        checkpoint_id = service.save_checkpoint(SCOPE, payload).unwrap()

        listed = list_response(service.list_checkpoints(SCOPE).unwrap())
        restored = restore_response(service.restore_checkpoint(SCOPE, checkpoint_id).unwrap())

        assert listed["checkpoints"][0]["id"] == checkpoint_id
        assert listed["checkpoints"][0]["message_count"] == 4
        assert restored["checkpoint"]["id"] == checkpoint_id
        assert restored["checkpoint"]["agentTitle"] == "Expert"
        assert len(restored["checkpoint"]["messages"]) == 4
