"""Persistence of analyzed workflows and their share links.

Each successful decomposition is stored as a ``Workflow`` record under
``workflow:{id}`` in a KeyValueStore. Re-analyses are new records that point
at their parent and carry the next version number; stored records are never
modified in place.

Share links live under ``share:{token}`` in the same store. A link with an
expiry is written with a matching TTL and is treated as missing once expired.
"""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import structlog
from pydantic import ValidationError

from models.database import KeyValueStore
from models.schemas import CostContext, Decomposition, ShareLink, Workflow

logger = structlog.get_logger(__name__)

WORKFLOW_KEY_PREFIX = "workflow:"
SHARE_KEY_PREFIX = "share:"
SECONDS_PER_DAY = 24 * 60 * 60


def _now() -> datetime:
    return datetime.now(UTC)


class WorkflowStore:
    """CRUD for Workflow records over a KeyValueStore.

    Attributes:
        store: Backend holding the serialized workflows.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    @staticmethod
    def _key(workflow_id: str) -> str:
        return f"{WORKFLOW_KEY_PREFIX}{workflow_id}"

    async def save(self, workflow: Workflow) -> None:
        """Insert or replace a workflow record."""
        await self.store.set(self._key(workflow.id), workflow.model_dump_json(by_alias=True))
        logger.debug("workflow_saved", workflow_id=workflow.id, version=workflow.version)

    async def get(self, workflow_id: str) -> Workflow | None:
        """Return the workflow, or None if missing or unreadable."""
        raw = await self.store.get(self._key(workflow_id))
        if raw is None:
            return None
        try:
            return Workflow.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(
                "workflow_record_invalid",
                workflow_id=workflow_id,
                error_count=e.error_count(),
            )
            return None

    async def list_workflows(self, search: str | None = None) -> list[Workflow]:
        """List workflows, newest first.

        Args:
            search: Optional case-insensitive substring matched against the
                decomposition title and the original description.
        """
        workflows: list[Workflow] = []
        for key in await self.store.keys(WORKFLOW_KEY_PREFIX):
            workflow = await self.get(key.removeprefix(WORKFLOW_KEY_PREFIX))
            if workflow is not None:
                workflows.append(workflow)

        if search:
            query = search.lower()
            workflows = [
                workflow
                for workflow in workflows
                if query in workflow.decomposition.title.lower()
                or query in workflow.description.lower()
            ]

        workflows.sort(key=lambda workflow: workflow.created_at, reverse=True)
        return workflows

    async def delete(self, workflow_id: str) -> bool:
        """Delete a workflow. Returns True if it existed."""
        deleted = await self.store.delete(self._key(workflow_id))
        if deleted:
            logger.info("workflow_deleted", workflow_id=workflow_id)
        return deleted

    async def record(
        self,
        decomposition: Decomposition,
        description: str,
        cost_context: CostContext | None = None,
    ) -> Workflow:
        """Persist a new decomposition as a workflow.

        The workflow id is the decomposition id. When the decomposition has a
        parent that is still stored, the version continues from it.

        Returns:
            The saved Workflow.
        """
        version = 1
        if decomposition.parent_id:
            parent = await self.get(decomposition.parent_id)
            if parent is not None:
                version = parent.version + 1
            else:
                logger.warning(
                    "workflow_parent_missing",
                    workflow_id=decomposition.id,
                    parent_id=decomposition.parent_id,
                )

        now = _now().isoformat()
        workflow = Workflow(
            id=decomposition.id,
            decomposition=decomposition,
            description=description,
            created_at=now,
            updated_at=now,
            parent_id=decomposition.parent_id,
            version=version,
            cost_context=cost_context,
        )
        await self.save(workflow)
        return workflow


class ShareStore:
    """Read-only share links over a KeyValueStore.

    Attributes:
        store: Backend holding the serialized links.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    @staticmethod
    def _key(token: str) -> str:
        return f"{SHARE_KEY_PREFIX}{token}"

    @staticmethod
    def _is_expired(link: ShareLink, now: datetime) -> bool:
        return link.expires_at is not None and datetime.fromisoformat(link.expires_at) <= now

    async def _load(self, token: str) -> ShareLink | None:
        raw = await self.store.get(self._key(token))
        if raw is None:
            return None
        try:
            return ShareLink.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("share_record_invalid", token=token, error_count=e.error_count())
            return None

    async def create(
        self,
        workflow_id: str,
        label: str | None = None,
        expires_in_days: int | None = None,
    ) -> ShareLink:
        """Create a link to a workflow.

        Args:
            workflow_id: Workflow the link exposes. Existence is checked by the caller.
            label: Optional display label.
            expires_in_days: Lifetime in days; None never expires.
        """
        now = _now()
        ttl_seconds = expires_in_days * SECONDS_PER_DAY if expires_in_days else None
        link = ShareLink(
            token=str(uuid4()),
            workflow_id=workflow_id,
            label=label,
            created_at=now.isoformat(),
            expires_at=(now + timedelta(seconds=ttl_seconds)).isoformat() if ttl_seconds else None,
        )
        await self.store.set(self._key(link.token), link.model_dump_json(by_alias=True), ttl_seconds)
        logger.info(
            "share_created",
            token=link.token,
            workflow_id=workflow_id,
            expires_in_days=expires_in_days,
        )
        return link

    async def get(self, token: str) -> ShareLink | None:
        """Resolve a token and count the access.

        Expired links are deleted and reported as missing. The access count
        is updated best-effort; a failed write still returns the link.
        """
        link = await self._load(token)
        if link is None:
            return None

        now = _now()
        if self._is_expired(link, now):
            await self.store.delete(self._key(token))
            logger.info("share_expired", token=token, workflow_id=link.workflow_id)
            return None

        link = link.model_copy(
            update={"access_count": link.access_count + 1, "last_accessed_at": now.isoformat()}
        )
        ttl_seconds = None
        if link.expires_at is not None:
            remaining = datetime.fromisoformat(link.expires_at) - now
            ttl_seconds = max(1, int(remaining.total_seconds()))
        try:
            await self.store.set(self._key(token), link.model_dump_json(by_alias=True), ttl_seconds)
        except Exception as e:
            logger.warning("share_access_update_failed", token=token, error=str(e))
        return link

    async def list_for_workflow(self, workflow_id: str) -> list[ShareLink]:
        """Unexpired links for one workflow, newest first. Does not count access."""
        now = _now()
        links: list[ShareLink] = []
        for key in await self.store.keys(SHARE_KEY_PREFIX):
            token = key.removeprefix(SHARE_KEY_PREFIX)
            link = await self._load(token)
            if link is None or link.workflow_id != workflow_id:
                continue
            if self._is_expired(link, now):
                await self.store.delete(key)
                continue
            links.append(link)

        links.sort(key=lambda link: link.created_at, reverse=True)
        return links

    async def delete(self, token: str) -> bool:
        """Revoke a link. Returns True if it existed."""
        deleted = await self.store.delete(self._key(token))
        if deleted:
            logger.info("share_revoked", token=token)
        return deleted

    async def delete_for_workflow(self, workflow_id: str) -> int:
        """Revoke every link to a workflow, expired or not. Returns the count."""
        revoked = 0
        for key in await self.store.keys(SHARE_KEY_PREFIX):
            link = await self._load(key.removeprefix(SHARE_KEY_PREFIX))
            if link is not None and link.workflow_id == workflow_id:
                if await self.store.delete(key):
                    revoked += 1
        return revoked
