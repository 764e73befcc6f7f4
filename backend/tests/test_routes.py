"""Tests for api/routes.py -- HTTP endpoint handlers.

Uses FastAPI TestClient (backed by httpx) with a real DecompositionService
over a MockLLMClient and an in-memory store. No real LLM calls are made.
"""

from collections.abc import Generator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from analysis_cache import AnalysisCache
from api.routes import (
    get_decomposition_service,
    reset_dependencies,
    router,
    set_decomposition_service,
    set_share_store,
    set_workflow_store,
)
from decompose import DecompositionService
from llm import MockLLMClient
from models.database import MemoryKeyValueStore
from models.schemas import CostContext
from tests.conftest import (
    decomposition_payload,
    make_decomposition,
    make_llm_response,
    make_step,
)
from workflow_store import ShareStore, WorkflowStore

DESCRIPTION = "Invoices arrive by email, a clerk logs them, a manager approves."

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def workflows(memory_store: MemoryKeyValueStore) -> WorkflowStore:
    return WorkflowStore(memory_store)


@pytest.fixture()
def shares(memory_store: MemoryKeyValueStore) -> ShareStore:
    return ShareStore(memory_store)


@pytest.fixture()
def app(
    memory_store: MemoryKeyValueStore, workflows: WorkflowStore, shares: ShareStore
) -> Generator[FastAPI, None, None]:
    """App wired to a canned mock model; each test may swap the service."""
    app = FastAPI()
    app.include_router(router)
    reset_dependencies()
    set_workflow_store(workflows, backend="memory")
    set_share_store(shares)
    set_decomposition_service(
        DecompositionService(
            MockLLMClient(default_model="mock-model"),
            cache=AnalysisCache(memory_store),
            workflow_store=workflows,
        )
    )
    yield app
    reset_dependencies()


@pytest.fixture()
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c


def _use_responses(workflows: WorkflowStore, *contents: Any) -> MockLLMClient:
    llm_client = MockLLMClient(responses=[make_llm_response(content) for content in contents])
    set_decomposition_service(DecompositionService(llm_client, workflow_store=workflows))
    return llm_client


def _json(model: Any) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True)


# =========================================================================
# Health Check
# =========================================================================


class TestHealthCheck:
    """GET /health."""

    def test_health_returns_200(self, client: TestClient) -> None:
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert "timestamp" in data
        assert data["version"] == "0.1.0"
        assert data["storage_backend"] == "memory"

    def test_unhealthy_without_service(self, client: TestClient) -> None:
        reset_dependencies()

        data = client.get("/health").json()

        assert data["status"] == "unhealthy"
        assert data["storage_backend"] == "none"


# =========================================================================
# Decompose
# =========================================================================


class TestDecompose:
    """POST /api/decompose."""

    def test_decompose_success(self, client: TestClient, workflows: WorkflowStore) -> None:
        _use_responses(workflows, decomposition_payload())

        resp = client.post("/api/decompose", json={"description": DESCRIPTION})

        assert resp.status_code == 200
        data = resp.json()
        assert data["decomposition"]["title"] == "Invoice Approval"
        assert [step["id"] for step in data["decomposition"]["steps"]] == ["receive", "approve"]
        assert data["decomposition"]["steps"][0]["automationScore"] == 40
        assert data["decomposition"]["gaps"][0]["stepIds"] == ["approve"]
        assert data["decomposition"]["health"]["confidence"]["level"] == "inferred"
        assert data["metadata"]["cacheHit"] is False
        assert data["metadata"]["modelUsed"] == "mock"

    def test_camel_case_request_fields(self, client: TestClient, workflows: WorkflowStore) -> None:
        _use_responses(workflows, decomposition_payload())

        resp = client.post(
            "/api/decompose",
            json={
                "description": DESCRIPTION,
                "stages": [{"name": "Receive", "owner": "Clerk"}],
                "costContext": {"teamSize": 3, "hourlyRate": 40},
                "skipCache": True,
            },
        )

        assert resp.status_code == 200
        health = resp.json()["decomposition"]["health"]
        assert health["teamSize"] == 3
        assert health["confidence"]["level"] == "high"

    def test_repeat_request_is_cache_hit(self, client: TestClient) -> None:
        first = client.post("/api/decompose", json={"description": DESCRIPTION}).json()
        second = client.post("/api/decompose", json={"description": DESCRIPTION}).json()

        assert second["metadata"]["cacheHit"] is True
        assert second["decomposition"]["id"] != first["decomposition"]["id"]
        assert second["decomposition"]["steps"] == first["decomposition"]["steps"]

    def test_decomposition_is_stored(self, client: TestClient) -> None:
        decomposition_id = client.post(
            "/api/decompose", json={"description": DESCRIPTION}
        ).json()["decomposition"]["id"]

        resp = client.get(f"/api/workflows/{decomposition_id}")

        assert resp.status_code == 200
        assert resp.json()["description"] == DESCRIPTION
        assert resp.json()["version"] == 1

    def test_empty_description_rejected(self, client: TestClient) -> None:
        resp = client.post("/api/decompose", json={"description": ""})
        assert resp.status_code == 422

    def test_missing_description_rejected(self, client: TestClient) -> None:
        resp = client.post("/api/decompose", json={"context": "no description"})
        assert resp.status_code == 422

    def test_invalid_team_size_rejected(self, client: TestClient) -> None:
        resp = client.post(
            "/api/decompose",
            json={"description": DESCRIPTION, "costContext": {"teamSize": 0}},
        )
        assert resp.status_code == 422

    def test_unparseable_model_output_is_502(
        self, client: TestClient, workflows: WorkflowStore
    ) -> None:
        _use_responses(workflows, "Sorry, I can't help with that.")

        resp = client.post("/api/decompose", json={"description": DESCRIPTION})

        assert resp.status_code == 502
        assert "unreadable" in resp.json()["detail"]

    def test_schema_invalid_model_output_is_502(
        self, client: TestClient, workflows: WorkflowStore
    ) -> None:
        _use_responses(workflows, {"title": "No steps"})

        resp = client.post("/api/decompose", json={"description": DESCRIPTION})

        assert resp.status_code == 502
        detail = resp.json()["detail"]
        assert "schema" in detail["message"]
        assert detail["errors"]

    def test_unexpected_failure_is_500(self, client: TestClient) -> None:
        service = MagicMock()
        service.model = "broken"
        service.decompose = AsyncMock(side_effect=RuntimeError("provider down"))
        set_decomposition_service(service)

        resp = client.post("/api/decompose", json={"description": DESCRIPTION})

        assert resp.status_code == 500
        assert "provider down" in resp.json()["detail"]

    def test_service_must_be_configured(self) -> None:
        reset_dependencies()
        with pytest.raises(RuntimeError, match="not configured"):
            get_decomposition_service()


# =========================================================================
# Workflows
# =========================================================================


class TestWorkflows:
    """GET/DELETE /api/workflows."""

    async def _seed(self, workflows: WorkflowStore) -> None:
        await workflows.record(make_decomposition(decomposition_id="wf_1"), "invoices by email")
        await workflows.record(
            make_decomposition(decomposition_id="wf_2", title="Onboarding"),
            "new hires get laptops",
        )

    async def test_list_workflows(self, client: TestClient, workflows: WorkflowStore) -> None:
        await self._seed(workflows)

        resp = client.get("/api/workflows")

        assert resp.status_code == 200
        assert {workflow["id"] for workflow in resp.json()} == {"wf_1", "wf_2"}
        assert "createdAt" in resp.json()[0]

    async def test_search_workflows(self, client: TestClient, workflows: WorkflowStore) -> None:
        await self._seed(workflows)

        resp = client.get("/api/workflows", params={"search": "LAPTOPS"})

        assert [workflow["id"] for workflow in resp.json()] == ["wf_2"]

    def test_list_empty(self, client: TestClient) -> None:
        assert client.get("/api/workflows").json() == []

    async def test_get_workflow(self, client: TestClient, workflows: WorkflowStore) -> None:
        await self._seed(workflows)

        resp = client.get("/api/workflows/wf_1")

        assert resp.status_code == 200
        assert resp.json()["decomposition"]["title"] == "Invoice Approval"

    def test_get_workflow_not_found(self, client: TestClient) -> None:
        resp = client.get("/api/workflows/missing")

        assert resp.status_code == 404
        assert resp.json()["detail"] == "Workflow missing not found"

    async def test_delete_workflow(self, client: TestClient, workflows: WorkflowStore) -> None:
        await self._seed(workflows)

        resp = client.delete("/api/workflows/wf_1")

        assert resp.status_code == 200
        assert resp.json() == {"message": "Workflow wf_1 deleted"}
        assert client.get("/api/workflows/wf_1").status_code == 404

    def test_delete_workflow_not_found(self, client: TestClient) -> None:
        assert client.delete("/api/workflows/missing").status_code == 404


# =========================================================================
# Shares
# =========================================================================


class TestShares:
    """POST/GET/DELETE /api/shares and GET /api/share/{token}."""

    async def _seed(self, workflows: WorkflowStore) -> None:
        await workflows.record(
            make_decomposition(decomposition_id="wf_1"),
            "invoices by email",
            CostContext(team_size=4, hourly_rate=80),
        )

    async def test_create_share(self, client: TestClient, workflows: WorkflowStore) -> None:
        await self._seed(workflows)

        resp = client.post(
            "/api/shares",
            json={"workflowId": "wf_1", "label": "For finance", "expiresInDays": 7},
        )

        assert resp.status_code == 201
        data = resp.json()
        assert data["workflowId"] == "wf_1"
        assert data["label"] == "For finance"
        assert data["expiresAt"] is not None
        assert data["accessCount"] == 0
        assert data["url"] == f"/share/{data['token']}"

    def test_create_share_for_missing_workflow(self, client: TestClient) -> None:
        resp = client.post("/api/shares", json={"workflowId": "missing"})

        assert resp.status_code == 404
        assert resp.json()["detail"] == "Workflow missing not found"

    @pytest.mark.parametrize("days", [0, 366])
    async def test_create_share_expiry_bounds(
        self, client: TestClient, workflows: WorkflowStore, days: int
    ) -> None:
        await self._seed(workflows)

        resp = client.post("/api/shares", json={"workflowId": "wf_1", "expiresInDays": days})

        assert resp.status_code == 422

    async def test_list_shares(
        self, client: TestClient, workflows: WorkflowStore, shares: ShareStore
    ) -> None:
        await self._seed(workflows)
        link = await shares.create("wf_1", label="Team")
        await shares.create("wf_other")

        resp = client.get("/api/shares", params={"workflowId": "wf_1"})

        assert resp.status_code == 200
        assert [share["token"] for share in resp.json()["shares"]] == [link.token]

    def test_list_shares_requires_workflow_id(self, client: TestClient) -> None:
        assert client.get("/api/shares").status_code == 422

    async def test_open_shared_workflow(
        self, client: TestClient, workflows: WorkflowStore, shares: ShareStore
    ) -> None:
        await self._seed(workflows)
        link = await shares.create("wf_1", label="For finance")

        resp = client.get(f"/api/share/{link.token}")

        assert resp.status_code == 200
        data = resp.json()
        assert data["share"] == {"label": "For finance", "expiresAt": None}
        assert data["workflow"]["id"] == "wf_1"
        assert data["workflow"]["version"] == 1
        assert data["workflow"]["decomposition"]["title"] == "Invoice Approval"
        assert "description" not in data["workflow"]
        assert "costContext" not in data["workflow"]
        assert (await shares.get(link.token)).access_count == 2

    def test_open_unknown_token(self, client: TestClient) -> None:
        assert client.get("/api/share/nope").status_code == 404

    async def test_open_share_of_deleted_workflow(
        self, client: TestClient, shares: ShareStore
    ) -> None:
        link = await shares.create("wf_gone")

        resp = client.get(f"/api/share/{link.token}")

        assert resp.status_code == 404
        assert resp.json()["detail"] == "Workflow not found"

    async def test_revoke_share(self, client: TestClient, shares: ShareStore) -> None:
        link = await shares.create("wf_1")

        resp = client.delete(f"/api/shares/{link.token}")

        assert resp.status_code == 200
        assert resp.json() == {"deleted": True}
        assert client.get(f"/api/share/{link.token}").status_code == 404
        assert client.delete(f"/api/shares/{link.token}").status_code == 404

    async def test_deleting_workflow_revokes_its_shares(
        self, client: TestClient, workflows: WorkflowStore, shares: ShareStore
    ) -> None:
        await self._seed(workflows)
        await shares.create("wf_1")
        await shares.create("wf_1")
        kept = await shares.create("wf_other")

        assert client.delete("/api/workflows/wf_1").status_code == 200

        assert await shares.list_for_workflow("wf_1") == []
        assert [link.token for link in await shares.list_for_workflow("wf_other")] == [kept.token]


# =========================================================================
# Layout
# =========================================================================


class TestLayout:
    """GET /api/workflows/{id}/layout and POST /api/layout."""

    async def test_workflow_layout(self, client: TestClient, workflows: WorkflowStore) -> None:
        await workflows.record(make_decomposition(decomposition_id="wf_1"), "desc")

        resp = client.get("/api/workflows/wf_1/layout")

        assert resp.status_code == 200
        data = resp.json()
        assert {node["id"]: node["depth"] for node in data["nodes"]} == {"a": 0, "b": 1}
        assert data["criticalPath"] == ["a", "b"]
        assert data["edges"][0]["id"] == "a-b"
        assert data["horizontalSpacing"] > 0

    async def test_workflow_layout_with_hover(
        self, client: TestClient, workflows: WorkflowStore
    ) -> None:
        steps = [make_step("a"), make_step("b", ["a"]), make_step("x")]
        await workflows.record(make_decomposition(steps, decomposition_id="wf_1"), "desc")

        resp = client.get("/api/workflows/wf_1/layout", params={"hovered": "a"})

        dimmed = {node["id"]: node["dimmed"] for node in resp.json()["nodes"]}
        assert dimmed == {"a": False, "b": False, "x": True}

    def test_workflow_layout_not_found(self, client: TestClient) -> None:
        assert client.get("/api/workflows/missing/layout").status_code == 404

    def test_layout_ad_hoc_steps(self, client: TestClient) -> None:
        steps = [make_step("a"), make_step("b", ["a"]), make_step("c", ["b"])]

        resp = client.post(
            "/api/layout",
            json={"steps": [_json(step) for step in steps], "hoveredStepId": None},
        )

        assert resp.status_code == 200
        assert resp.json()["criticalPath"] == ["a", "b", "c"]

    def test_layout_empty(self, client: TestClient) -> None:
        resp = client.post("/api/layout", json={"steps": []})

        assert resp.status_code == 200
        assert resp.json()["nodes"] == []
        assert resp.json()["criticalPath"] == []

    def test_layout_rejects_invalid_step(self, client: TestClient) -> None:
        resp = client.post("/api/layout", json={"steps": [{"id": "a"}]})
        assert resp.status_code == 422


# =========================================================================
# Compare
# =========================================================================


class TestCompare:
    """POST /api/compare."""

    def test_compare(self, client: TestClient) -> None:
        before = make_decomposition(decomposition_id="v1")
        after = make_decomposition(
            [make_step("a"), make_step("b", ["a"]), make_step("c", ["b"])],
            [],
            decomposition_id="v2",
            parent_id="v1",
        )

        resp = client.post("/api/compare", json={"before": _json(before), "after": _json(after)})

        assert resp.status_code == 200
        data = resp.json()
        assert [step["id"] for step in data["added"]] == ["c"]
        assert len(data["gapsResolved"]) == 1
        assert data["summary"] == "1 step(s) added, 1 gap(s) resolved."
        assert data["healthDelta"]["complexity"] > 0

    def test_compare_requires_both_sides(self, client: TestClient) -> None:
        before = make_decomposition()
        resp = client.post("/api/compare", json={"before": _json(before)})
        assert resp.status_code == 422
