"""Shared test fixtures for backend tests.

Provides step/gap/decomposition factories, in-memory and SQLite stores,
and mock LLM helpers so tests never touch real LLM APIs.
"""

import json
import sys
from collections.abc import Generator
from typing import Any

import pytest

# Ensure the backend package root is on sys.path so that absolute imports
# like ``from analysis.repair import ...`` resolve correctly when running
# pytest from the repository root.
_backend_root = str(
    __import__("pathlib").Path(__file__).resolve().parent.parent
)
if _backend_root not in sys.path:
    sys.path.insert(0, _backend_root)

from analysis.scoring import compute_health  # noqa: E402
from llm.client import LLMResponse  # noqa: E402
from models.database import (  # noqa: E402
    MemoryKeyValueStore,
    SQLiteKeyValueStore,
    reset_memory_store,
)
from models.schemas import (  # noqa: E402
    Decomposition,
    Gap,
    GapType,
    Layer,
    LLMMetrics,
    Severity,
    Step,
)

# ---------------------------------------------------------------------------
# Graph Factories
# ---------------------------------------------------------------------------


def make_step(
    step_id: str,
    dependencies: list[str] | None = None,
    *,
    name: str | None = None,
    owner: str | None = None,
    layer: Layer = Layer.HUMAN,
    automation_score: int | float = 50,
    tools: list[str] | None = None,
) -> Step:
    """Create a Step with sensible defaults."""
    return Step(
        id=step_id,
        name=name or f"Step {step_id}",
        description=f"Description of {step_id}",
        owner=owner,
        layer=layer,
        tools=tools or [],
        automation_score=automation_score,
        dependencies=dependencies or [],
    )


def make_gap(
    gap_type: GapType = GapType.BOTTLENECK,
    step_ids: list[str] | None = None,
    severity: Severity = Severity.MEDIUM,
) -> Gap:
    """Create a Gap with sensible defaults."""
    return Gap(
        type=gap_type,
        severity=severity,
        step_ids=step_ids or [],
        description=f"{gap_type} gap",
        suggestion="Fix it",
    )


def make_decomposition(
    steps: list[Step] | None = None,
    gaps: list[Gap] | None = None,
    *,
    decomposition_id: str = "dec_1",
    title: str = "Invoice Approval",
    team_size: int | None = None,
    parent_id: str | None = None,
) -> Decomposition:
    """Create a scored Decomposition from already-valid steps and gaps."""
    steps = steps if steps is not None else [make_step("a"), make_step("b", ["a"])]
    gaps = gaps if gaps is not None else [make_gap(step_ids=["b"])]
    return Decomposition(
        id=decomposition_id,
        title=title,
        steps=steps,
        gaps=gaps,
        health=compute_health(steps, gaps, team_size),
        parent_id=parent_id,
    )


def decomposition_payload(
    steps: list[dict[str, Any]] | None = None,
    gaps: list[dict[str, Any]] | None = None,
    title: str = "Invoice Approval",
) -> dict[str, Any]:
    """Build a camelCase decomposition payload as the model would emit it."""
    if steps is None:
        steps = [
            {
                "id": "receive", "name": "Receive invoice", "description": "Inbox",
                "owner": "Clerk", "layer": "human", "automationScore": 40,
                "dependencies": [],
            },
            {
                "id": "approve", "name": "Approve invoice", "description": "Sign-off",
                "owner": "Manager", "layer": "human", "automationScore": 10,
                "dependencies": ["receive"],
            },
        ]
    if gaps is None:
        gaps = [
            {
                "type": "bottleneck", "severity": "high", "stepIds": ["approve"],
                "description": "Single approver", "suggestion": "Add a delegate",
            },
        ]
    return {"title": title, "steps": steps, "gaps": gaps}


# ---------------------------------------------------------------------------
# Mock LLM helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def mock_llm_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set USE_MOCK_LLM=true in the environment."""
    monkeypatch.setenv("USE_MOCK_LLM", "true")


def make_llm_response(
    content: str | dict[str, Any] = "",
    finish_reason: str = "stop",
    model: str = "mock",
) -> LLMResponse:
    """Create an LLMResponse with sensible defaults. Dicts are JSON-encoded."""
    if isinstance(content, dict):
        content = json.dumps(content)
    return LLMResponse(
        content=content,
        finish_reason=finish_reason,
        metrics=LLMMetrics(model=model, input_tokens=10, output_tokens=20, latency_ms=100),
    )


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_memory_store() -> Generator[None, None, None]:
    """Give every test a fresh process-wide memory store."""
    reset_memory_store()
    yield
    reset_memory_store()


@pytest.fixture()
def memory_store() -> MemoryKeyValueStore:
    """Return an isolated MemoryKeyValueStore."""
    return MemoryKeyValueStore()


@pytest.fixture()
async def sqlite_store(tmp_path: Any) -> SQLiteKeyValueStore:
    """Return an initialized SQLite store in a temporary directory."""
    store = SQLiteKeyValueStore(str(tmp_path / "data" / "test.db"))
    await store.init()
    return store
