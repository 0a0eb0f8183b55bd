"""Checkpoint data model for Waypoint.

A checkpoint is an immutable snapshot of an agent conversation: the ordered
messages plus the agent identity and model that produced them. Each record is
stored as one JSON document named after its id; stores keep a compact index of
``IndexEntry`` projections so listing never loads message payloads.

Records in the global registry carry a ``Provenance`` (originating workspace
and agent, and the migration time). Scoped records have ``provenance=None``;
the same ``CheckpointRecord`` type serves both.

Legacy: documents written by the original web application (camelCase agent
fields, ``created_at`` and provenance nested in ``metadata``) are still
readable.
"""

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from waypoint.errors import Result, ValidationError, err, ok
from waypoint.types import AgentId, CheckpointId, WorkspaceId

logger = logging.getLogger(__name__)


MESSAGE_ROLES = ("user", "assistant", "system", "tool")

# Path-safe identifiers: no separators, no leading dot (rules out "." and "..")
_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def is_valid_identifier(value: Any) -> bool:
    """Check that a workspace, agent or checkpoint id is safe to use as a path part."""
    return isinstance(value, str) and len(value) <= 200 and bool(_IDENTIFIER_RE.match(value))


def generate_checkpoint_id() -> CheckpointId:
    """Generate a random 128-bit checkpoint id (uuid4, hex form)."""
    return CheckpointId(uuid.uuid4().hex)


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(UTC).isoformat()


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass(frozen=True)
class Scope:
    """The (workspace, agent) pair that owns one checkpoint store."""

    workspace_id: WorkspaceId
    agent_id: AgentId

    def __str__(self) -> str:
        return f"{self.workspace_id}/{self.agent_id}"


def validate_scope(scope: Scope) -> Result[Scope, ValidationError]:
    """Reject scopes whose ids are not path-safe."""
    bad = [
        name
        for name, value in (("workspace_id", scope.workspace_id), ("agent_id", scope.agent_id))
        if not is_valid_identifier(value)
    ]
    if bad:
        return err(
            ValidationError(
                code="INVALID_SCOPE",
                message=f"Invalid {' and '.join(bad)} in scope {scope}",
                context={"workspace_id": scope.workspace_id, "agent_id": scope.agent_id},
            )
        )
    return ok(scope)


@dataclass(frozen=True)
class Message:
    """One conversation turn."""

    role: str
    content: str
    timestamp: str = ""
    id: str | None = None
    metadata: dict = field(default_factory=dict)  # model, session_id, usage

    @property
    def session_id(self) -> str | None:
        return self.metadata.get("session_id")


@dataclass(frozen=True)
class Provenance:
    """Where a global record came from."""

    source_workspace_id: str
    source_agent_id: str
    migrated_at: str | None = None  # None when saved directly into the registry


@dataclass(frozen=True)
class CheckpointRecord:
    """A saved conversation snapshot."""

    id: CheckpointId
    name: str
    created_at: str
    messages: tuple[Message, ...]

    description: str = ""
    agent_name: str = ""
    agent_title: str = ""
    selected_model: str = ""
    metadata: dict = field(default_factory=dict)  # message_count, last_session_id, tags, ...

    provenance: Provenance | None = None

    @property
    def message_count(self) -> int:
        return len(self.messages)

    @property
    def tags(self) -> tuple[str, ...]:
        return tuple(self.metadata.get("tags") or ())


@dataclass(frozen=True)
class IndexEntry:
    """Listing projection of a record."""

    id: CheckpointId
    name: str
    created_at: str
    message_count: int = 0
    model: str = ""
    description: str = ""
    agent_name: str = ""
    agent_title: str = ""
    tags: tuple[str, ...] = ()

    source_workspace_id: str | None = None
    source_agent_id: str | None = None
    migrated_at: str | None = None


@dataclass(frozen=True)
class CheckpointDraft:
    """A save request, before validation and id assignment."""

    name: str
    messages: tuple[Message, ...]
    selected_model: str
    description: str = ""
    agent_name: str = ""
    agent_title: str = ""
    metadata: dict = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> Result["CheckpointDraft", ValidationError]:
        """Parse an API create payload.

        Accepts the API shape ``{name, description?, messages, agentName,
        agentTitle, selectedModel, metadata?}``; snake_case keys work too.
        Only structure is checked here, see validate_draft() for the rules.
        """
        if not isinstance(payload, dict):
            return err(
                ValidationError(
                    code="INVALID_PAYLOAD",
                    message="Checkpoint request must be a JSON object",
                    context={"type": type(payload).__name__},
                )
            )

        raw_messages = payload.get("messages")
        if raw_messages is None:
            raw_messages = []
        if not isinstance(raw_messages, list):
            return err(
                ValidationError(
                    code="INVALID_PAYLOAD",
                    message="'messages' must be a list",
                    context={"type": type(raw_messages).__name__},
                )
            )

        messages = []
        for position, raw in enumerate(raw_messages):
            message = message_from_dict(raw)
            if message is None:
                return err(
                    ValidationError(
                        code="INVALID_MESSAGE",
                        message=f"Message {position} must be an object with string role and content",
                        context={"position": position},
                    )
                )
            messages.append(message)

        metadata = payload.get("metadata") or {}
        if not isinstance(metadata, dict):
            return err(
                ValidationError(
                    code="INVALID_PAYLOAD",
                    message="'metadata' must be an object",
                    context={"type": type(metadata).__name__},
                )
            )

        return ok(
            cls(
                name=_str_field(payload, "name"),
                messages=tuple(messages),
                selected_model=_str_field(payload, "selectedModel", "selected_model"),
                description=_str_field(payload, "description"),
                agent_name=_str_field(payload, "agentName", "agent_name"),
                agent_title=_str_field(payload, "agentTitle", "agent_title"),
                metadata=dict(metadata),
            )
        )


def _str_field(data: dict, *keys: str) -> str:
    """First non-None value among keys, as a string ('' if absent)."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value if isinstance(value, str) else str(value)
    return ""


def validate_draft(
    draft: CheckpointDraft,
    recognized_models: list[str] | tuple[str, ...],
) -> Result[CheckpointDraft, ValidationError]:
    """Check a save request before any I/O.

    Collects every problem rather than stopping at the first one.
    """
    errors: list[str] = []

    if not draft.name.strip():
        errors.append("Missing required field: name")

    if not draft.messages:
        errors.append("Missing required field: messages")

    for position, message in enumerate(draft.messages):
        if message.role not in MESSAGE_ROLES:
            errors.append(f"Message {position} has unknown role '{message.role}'")

    if draft.selected_model not in recognized_models:
        errors.append(
            f"Unrecognized model '{draft.selected_model}' "
            f"(expected one of: {', '.join(recognized_models)})"
        )

    if errors:
        return err(
            ValidationError(
                code="VALIDATION_FAILED",
                message="; ".join(errors),
                context={"errors": errors},
            )
        )
    return ok(draft)


def build_record(
    draft: CheckpointDraft,
    checkpoint_id: CheckpointId,
    created_at: str,
    provenance: Provenance | None = None,
) -> CheckpointRecord:
    """Turn a validated draft into a record, deriving the metadata summary."""
    metadata = dict(draft.metadata)
    metadata["message_count"] = len(draft.messages)

    tags = metadata.get("tags") or []
    metadata["tags"] = [str(t) for t in tags] if isinstance(tags, (list, tuple)) else [str(tags)]

    if not metadata.get("last_session_id"):
        session_ids = [m.session_id for m in draft.messages if m.session_id]
        metadata["last_session_id"] = session_ids[-1] if session_ids else None

    return CheckpointRecord(
        id=checkpoint_id,
        name=draft.name.strip(),
        created_at=created_at,
        messages=draft.messages,
        description=draft.description,
        agent_name=draft.agent_name,
        agent_title=draft.agent_title,
        selected_model=draft.selected_model,
        metadata=metadata,
        provenance=provenance,
    )


# ============================================================================
# Serialization
# ============================================================================


def message_to_dict(message: Message) -> dict[str, Any]:
    data: dict[str, Any] = {}
    if message.id is not None:
        data["id"] = message.id
    data["role"] = message.role
    data["content"] = message.content
    data["timestamp"] = message.timestamp
    if message.metadata:
        data["metadata"] = message.metadata
    return data


def message_from_dict(data: Any) -> Message | None:
    """Parse one message; None if it is not an object with string role/content."""
    if not isinstance(data, dict):
        return None
    role = data.get("role")
    content = data.get("content")
    if not isinstance(role, str) or not isinstance(content, str):
        return None

    metadata = data.get("metadata")
    message_id = data.get("id")
    return Message(
        role=role,
        content=content,
        timestamp=str(data.get("timestamp") or ""),
        id=str(message_id) if message_id is not None else None,
        metadata=dict(metadata) if isinstance(metadata, dict) else {},
    )


def record_to_dict(record: CheckpointRecord) -> dict[str, Any]:
    """Serialize a record to its stored document shape."""
    data: dict[str, Any] = {
        "id": record.id,
        "name": record.name,
        "description": record.description,
        "created_at": record.created_at,
        "agent_name": record.agent_name,
        "agent_title": record.agent_title,
        "selected_model": record.selected_model,
        "messages": [message_to_dict(m) for m in record.messages],
        "metadata": record.metadata,
    }
    if record.provenance is not None:
        data["source_workspace_id"] = record.provenance.source_workspace_id
        data["source_agent_id"] = record.provenance.source_agent_id
        data["migrated_at"] = record.provenance.migrated_at
    return data


def record_from_dict(data: Any) -> Result[CheckpointRecord, ValidationError]:
    """Parse a stored record document (current or legacy shape)."""
    if not isinstance(data, dict):
        return err(ValidationError(code="RECORD_MALFORMED", message="Record must be a JSON object"))

    checkpoint_id = data.get("id")
    if not is_valid_identifier(checkpoint_id):
        return err(
            ValidationError(
                code="RECORD_MALFORMED",
                message=f"Record has an invalid id: {checkpoint_id!r}",
            )
        )

    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        return err(
            ValidationError(
                code="RECORD_MALFORMED",
                message=f"Record {checkpoint_id} has no name",
                context={"id": checkpoint_id},
            )
        )

    raw_messages = data.get("messages")
    if not isinstance(raw_messages, list):
        return err(
            ValidationError(
                code="RECORD_MALFORMED",
                message=f"Record {checkpoint_id} has no message list",
                context={"id": checkpoint_id},
            )
        )
    messages = [message_from_dict(m) for m in raw_messages]
    if any(m is None for m in messages):
        return err(
            ValidationError(
                code="RECORD_MALFORMED",
                message=f"Record {checkpoint_id} contains a malformed message",
                context={"id": checkpoint_id},
            )
        )

    metadata = data.get("metadata")
    metadata = dict(metadata) if isinstance(metadata, dict) else {}

    # Legacy documents keep created_at and provenance inside metadata
    created_at = data.get("created_at") or metadata.get("created_at") or ""
    source_workspace_id = data.get("source_workspace_id") or metadata.get("source_workspace_id")
    source_agent_id = data.get("source_agent_id") or metadata.get("source_agent_id")
    migrated_at = data.get("migrated_at") or metadata.get("migrated_at")

    provenance = None
    if source_workspace_id and source_agent_id:
        provenance = Provenance(
            source_workspace_id=str(source_workspace_id),
            source_agent_id=str(source_agent_id),
            migrated_at=str(migrated_at) if migrated_at else None,
        )

    return ok(
        CheckpointRecord(
            id=CheckpointId(checkpoint_id),
            name=name,
            created_at=str(created_at),
            messages=tuple(messages),
            description=_str_field(data, "description"),
            agent_name=_str_field(data, "agent_name", "agentName"),
            agent_title=_str_field(data, "agent_title", "agentTitle"),
            selected_model=_str_field(data, "selected_model", "selectedModel"),
            metadata=metadata,
            provenance=provenance,
        )
    )


def record_to_payload(record: CheckpointRecord) -> dict[str, Any]:
    """Render a record in the API dialect (camelCase agent fields)."""
    payload: dict[str, Any] = {
        "id": record.id,
        "name": record.name,
        "description": record.description,
        "created_at": record.created_at,
        "messages": [message_to_dict(m) for m in record.messages],
        "agentName": record.agent_name,
        "agentTitle": record.agent_title,
        "selectedModel": record.selected_model,
        "metadata": record.metadata,
    }
    if record.provenance is not None:
        payload["source_workspace_id"] = record.provenance.source_workspace_id
        payload["source_agent_id"] = record.provenance.source_agent_id
        payload["migrated_at"] = record.provenance.migrated_at
    return payload


def entry_for_record(record: CheckpointRecord) -> IndexEntry:
    """Derive the index projection of a record."""
    provenance = record.provenance
    return IndexEntry(
        id=record.id,
        name=record.name,
        created_at=record.created_at,
        message_count=record.message_count,
        model=record.selected_model,
        description=record.description,
        agent_name=record.agent_name,
        agent_title=record.agent_title,
        tags=record.tags,
        source_workspace_id=provenance.source_workspace_id if provenance else None,
        source_agent_id=provenance.source_agent_id if provenance else None,
        migrated_at=provenance.migrated_at if provenance else None,
    )


def entry_to_dict(entry: IndexEntry) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": entry.id,
        "name": entry.name,
        "description": entry.description,
        "created_at": entry.created_at,
        "message_count": entry.message_count,
        "model": entry.model,
        "agent_name": entry.agent_name,
        "agent_title": entry.agent_title,
        "tags": list(entry.tags),
        "source_workspace_id": entry.source_workspace_id,
        "source_agent_id": entry.source_agent_id,
        "migrated_at": entry.migrated_at,
    }
    # Scoped entries carry no provenance, keep their documents lean
    return {k: v for k, v in data.items() if v is not None}


def entry_from_dict(data: Any) -> IndexEntry | None:
    """Parse one index entry; None if it has no usable id."""
    if not isinstance(data, dict) or not is_valid_identifier(data.get("id")):
        return None

    tags = data.get("tags") or ()
    message_count = data.get("message_count")
    return IndexEntry(
        id=CheckpointId(data["id"]),
        name=_str_field(data, "name"),
        created_at=_str_field(data, "created_at"),
        message_count=message_count if isinstance(message_count, int) else 0,
        model=_str_field(data, "model"),
        description=_str_field(data, "description"),
        agent_name=_str_field(data, "agent_name"),
        agent_title=_str_field(data, "agent_title"),
        tags=tuple(str(t) for t in tags) if isinstance(tags, (list, tuple)) else (),
        source_workspace_id=data.get("source_workspace_id"),
        source_agent_id=data.get("source_agent_id"),
        migrated_at=data.get("migrated_at"),
    )


_OLDEST = datetime.min.replace(tzinfo=UTC)


def sort_entries(entries: list[IndexEntry]) -> list[IndexEntry]:
    """Sort newest first by created_at; unparsable timestamps go last."""

    def key(entry: IndexEntry) -> tuple[bool, datetime]:
        parsed = parse_timestamp(entry.created_at)
        return (parsed is not None, parsed or _OLDEST)

    return sorted(entries, key=key, reverse=True)
