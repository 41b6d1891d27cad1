"""
Platform API client — the endpoints the publish target is built on.

A thin, endpoint-aware layer over :class:`RequestPipeline`: it knows the
paths of the deployment platform's user, team, project and deployment APIs,
and nothing about documents. Every call inherits the pipeline's rate
limiting, retry policy and error taxonomy.

Endpoints::

    GET    /v2/user
    GET    /v2/teams
    GET    /v9/projects            POST /v9/projects
    GET    /v9/projects/{name}     DELETE /v9/projects/{name}
    POST   /v13/deployments        GET  /v13/deployments/{id}

Batch helpers process items sequentially, collect per-item failures instead
of aborting, and publish a ``batch.progress`` event after every item.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

from deploystore.core.errors import DeploymentError, DeployStoreError, TimeoutError
from deploystore.core.events import BATCH_PROGRESS
from deploystore.core.logging import get_logger
from deploystore.remote.pipeline import RequestPipeline

logger = get_logger(__name__)

USER_ENDPOINT = "/v2/user"
TEAMS_ENDPOINT = "/v2/teams"
PROJECTS_ENDPOINT = "/v9/projects"
DEPLOYMENTS_ENDPOINT = "/v13/deployments"

READY = "READY"
ERROR = "ERROR"


@dataclass
class BatchFailure:
    item: str
    error: str


@dataclass
class BatchResult:
    """Outcome of a batch operation."""

    succeeded: list[Any] = field(default_factory=list)
    failed: list[BatchFailure] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)

    @property
    def ok(self) -> bool:
        return not self.failed


class PlatformClient:
    """Platform endpoints used by the remote store and by collaborators."""

    def __init__(self, pipeline: RequestPipeline):
        self.pipeline = pipeline
        self.session = pipeline.session

    # ── User & team ──────────────────────────────────────────────────────

    async def get_user(self) -> dict[str, Any]:
        return await self.pipeline.request(USER_ENDPOINT)

    async def get_teams(self) -> dict[str, Any]:
        return await self.pipeline.request(TEAMS_ENDPOINT)

    # ── Projects ─────────────────────────────────────────────────────────

    async def list_projects(self) -> dict[str, Any]:
        return await self.pipeline.request(PROJECTS_ENDPOINT)

    async def get_project(self, name: str) -> dict[str, Any]:
        return await self.pipeline.request(f"{PROJECTS_ENDPOINT}/{quote(name)}")

    async def create_project(self, name: str) -> dict[str, Any]:
        return await self.pipeline.request(PROJECTS_ENDPOINT, method="POST", json={"name": name})

    async def delete_project(self, name: str) -> Any:
        return await self.pipeline.request(f"{PROJECTS_ENDPOINT}/{quote(name)}", method="DELETE")

    # ── Deployments ──────────────────────────────────────────────────────

    async def create_deployment(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self.pipeline.request(DEPLOYMENTS_ENDPOINT, method="POST", json=payload)

    async def get_deployment(self, deployment_id: str) -> dict[str, Any]:
        return await self.pipeline.request(f"{DEPLOYMENTS_ENDPOINT}/{quote(deployment_id)}")

    async def wait_for_deployment(
        self,
        deployment_id: str,
        *,
        max_wait: float | None = None,
        poll_interval: float | None = None,
    ) -> dict[str, Any]:
        """Poll a deployment until it is READY.

        Raises:
            DeploymentError: the platform reports ``readyState == "ERROR"``
            TimeoutError: not READY within ``max_wait`` seconds
        """
        settings = self.session.settings
        max_wait = settings.deployment_wait_timeout if max_wait is None else max_wait
        poll_interval = settings.deployment_poll_interval if poll_interval is None else poll_interval
        clock = self.session.clock
        started = clock()

        while clock() - started < max_wait:
            deployment = await self.get_deployment(deployment_id)
            state = deployment.get("readyState")
            if state == READY:
                return deployment
            if state == ERROR:
                raise DeploymentError(f"Deployment {deployment_id} failed").with_context(
                    operation="wait_for_deployment",
                )
            logger.debug("deployment_pending", deployment_id=deployment_id, state=state)
            await self.session.sleep(poll_interval)

        raise TimeoutError(
            f"Deployment {deployment_id} not ready after {max_wait:.0f}s",
        ).with_context(operation="wait_for_deployment")

    # ── Batch operations ─────────────────────────────────────────────────

    async def delete_projects(self, names: Sequence[str]) -> BatchResult:
        """Delete several projects, continuing past individual failures."""

        async def delete(name: str) -> str:
            await self.delete_project(name)
            return name

        return await self._run_batch("delete_projects", names, delete)

    async def deploy_projects(self, names: Sequence[str], payload: dict[str, Any]) -> BatchResult:
        """Create one deployment per project name from a shared payload."""

        async def deploy(name: str) -> dict[str, Any]:
            deployment = await self.create_deployment({**payload, "name": name})
            return {"project": name, "deployment": deployment}

        return await self._run_batch("deploy_projects", names, deploy)

    async def _run_batch(
        self,
        operation: str,
        items: Sequence[str],
        action: Callable[[str], Awaitable[Any]],
    ) -> BatchResult:
        result = BatchResult()
        total = len(items)
        for n, item in enumerate(items, start=1):
            ok = True
            try:
                result.succeeded.append(await action(item))
            except DeployStoreError as e:
                ok = False
                result.failed.append(BatchFailure(item=item, error=e.message))
                logger.warning("batch_item_failed", operation=operation, item=item, error=e.message)
            await self.session.emit(
                BATCH_PROGRESS, "platform", operation=operation, n=n, total=total, item=item, ok=ok
            )
        return result


__all__ = ["PlatformClient", "BatchResult", "BatchFailure"]
