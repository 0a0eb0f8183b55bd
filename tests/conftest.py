"""Shared fixtures: a conversation with the React helper agent."""

from datetime import datetime, timedelta
from pathlib import Path

import pytest

from waypoint.models import CheckpointDraft, Message


def react_messages() -> list[dict]:
    """Four turns of a session with metadata, as the web application sends them."""
    usage = {"input_tokens": 120, "output_tokens": 340}
    return [
        {
            "id": "msg-1",
            "role": "user",
            "content": "How do I memoize a component in React?",
            "timestamp": "2025-01-15T10:00:00.000Z",
        },
        {
            "id": "msg-2",
            "role": "assistant",
            "content": "Wrap it in React.memo and keep its props stable.",
            "timestamp": "2025-01-15T10:00:05.000Z",
            "metadata": {"model": "claude", "session_id": "session-a", "usage": usage},
        },
        {
            "id": "msg-3",
            "role": "user",
            "content": "And callbacks passed as props?",
            "timestamp": "2025-01-15T10:01:00.000Z",
        },
        {
            "id": "msg-4",
            "role": "assistant",
            "content": "Use useCallback so the reference survives re-renders.",
            "timestamp": "2025-01-15T10:01:04.000Z",
            "metadata": {"model": "claude", "session_id": "session-b", "usage": usage},
        },
    ]


@pytest.fixture
def storage_dir(tmp_path: Path) -> Path:
    path = tmp_path / "storage"
    path.mkdir()
    return path


@pytest.fixture
def workspaces_dir(storage_dir: Path) -> Path:
    return storage_dir / "workspaces"


@pytest.fixture
def payload() -> dict:
    """API create payload for the React helper conversation."""
    return {
        "name": "React Helper Expert",
        "description": "Memoization walkthrough",
        "messages": react_messages(),
        "agentName": "React Helper",
        "agentTitle": "Expert",
        "selectedModel": "claude",
        "metadata": {"tags": ["react"]},
    }


@pytest.fixture
def draft(payload: dict) -> CheckpointDraft:
    return CheckpointDraft.from_payload(payload).unwrap()


def make_draft(name: str, model: str = "claude", turns: int = 2) -> CheckpointDraft:
    """A minimal valid draft with ``turns`` alternating messages."""
    messages = tuple(
        Message(role="user" if i % 2 == 0 else "assistant", content=f"{name} turn {i}")
        for i in range(turns)
    )
    return CheckpointDraft(
        name=name,
        messages=messages,
        selected_model=model,
        agent_name="Helper",
        agent_title="Assistant",
    )


class FixedClock:
    """Clock returning increasing timestamps one minute apart."""

    def __init__(self, start: str = "2025-01-15T10:00:00+00:00"):
        self._next = datetime.fromisoformat(start)
        self._step = timedelta(minutes=1)

    def __call__(self) -> str:
        value = self._next.isoformat()
        self._next += self._step
        return value


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()
