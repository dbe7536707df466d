from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import httpx

from notifier.auth.access import Caller
from notifier.config import Settings
from notifier.errors import DownstreamUnavailable
from notifier.schemas.notification import NotificationCreate


logger = logging.getLogger(__name__)


@dataclass
class EnrichmentResult:
    task: dict[str, Any] = field(default_factory=dict)
    recipient: dict[str, Any] = field(default_factory=dict)
    project: dict[str, Any] = field(default_factory=dict)


def forwarded_headers(caller: Caller) -> dict[str, str]:
    headers = {
        "Authorization": caller.authorization,
        "X-User-Id": caller.subject_id,
        "X-User-Role": caller.raw_role,
    }
    return {key: value for key, value in headers.items() if value}


class ServiceLookup:
    """Best-effort ``GET {base_url}/{resource}/{id}`` against one producer service.

    ``fetch`` never raises for downstream trouble: not-found, access denied,
    timeouts and malformed bodies all resolve to an empty record. There are no
    retries.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        name: str,
        base_url: str,
        resource: str,
        timeout: float,
    ) -> None:
        self._client = client
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.resource = resource
        self.timeout = timeout

    def url_for(self, entity_id: str) -> str:
        return f"{self.base_url}/{self.resource}/{quote(entity_id, safe='')}"

    async def fetch(self, entity_id: str | None, caller: Caller) -> dict[str, Any]:
        if not entity_id:
            return {}
        try:
            return await asyncio.wait_for(self._get(entity_id, caller), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Timed out fetching %s %s after %.1fs", self.name, entity_id, self.timeout)
        except DownstreamUnavailable as exc:
            logger.warning("Failed to fetch %s %s: %s", self.name, entity_id, exc)
        return {}

    async def _get(self, entity_id: str, caller: Caller) -> dict[str, Any]:
        try:
            res = await self._client.get(self.url_for(entity_id), headers=forwarded_headers(caller))
            res.raise_for_status()
            body = res.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise DownstreamUnavailable(str(exc) or exc.__class__.__name__) from exc
        if not isinstance(body, dict):
            raise DownstreamUnavailable(f"expected a JSON object, got {type(body).__name__}")
        logger.debug("Enriched %s %s with %s", self.name, entity_id, body)
        return body


class EnrichmentClientSet:
    def __init__(self, *, tasks: ServiceLookup, users: ServiceLookup, projects: ServiceLookup) -> None:
        self.tasks = tasks
        self.users = users
        self.projects = projects

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient, settings: Settings) -> EnrichmentClientSet:
        timeout = settings.ENRICHMENT_TIMEOUT_SECONDS
        return cls(
            tasks=ServiceLookup(
                client, name="task", base_url=settings.TASK_SERVICE_URL, resource="tasks", timeout=timeout
            ),
            users=ServiceLookup(
                client, name="user", base_url=settings.USER_SERVICE_URL, resource="users", timeout=timeout
            ),
            projects=ServiceLookup(
                client, name="project", base_url=settings.PROJECT_SERVICE_URL, resource="projects", timeout=timeout
            ),
        )

    async def enrich(self, request: NotificationCreate, caller: Caller) -> EnrichmentResult:
        # Fan out, then wait for every lookup to settle before composing.
        results = await asyncio.gather(
            self.tasks.fetch(request.task_id, caller),
            self.users.fetch(request.recipient_user_id, caller),
            self.projects.fetch(request.project_id, caller),
            return_exceptions=True,
        )
        task, recipient, project = (_settled(result) for result in results)
        return EnrichmentResult(task=task, recipient=recipient, project=project)


def _settled(result: dict[str, Any] | BaseException) -> dict[str, Any]:
    if isinstance(result, BaseException):
        if not isinstance(result, Exception):
            raise result
        logger.warning("Enrichment lookup failed unexpectedly: %r", result)
        return {}
    return result
