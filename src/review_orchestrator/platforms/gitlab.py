import logging
from typing import Any
from urllib.parse import quote
import httpx
from .base import GitPlatform, PublishResult
from review_orchestrator.errors import (
    InfrastructureError,
    NotFoundError,
    PublishUnavailableError,
    UnauthorizedError,
)
from review_orchestrator.models.review import FileDiff
from review_orchestrator.review.parser import file_diffs_from_changes


logger = logging.getLogger(__name__)

MARKER_PREFIX = "<!-- review-orchestrator:"


def idempotency_marker(idempotency_key: str) -> str:
    return f"{MARKER_PREFIX}{idempotency_key} -->"


def _raise_for_status(response: httpx.Response, what: str) -> None:
    status = response.status_code
    if status == 404:
        raise NotFoundError(f"{what}: not found")
    if status in (401, 403):
        raise UnauthorizedError(f"{what}: unauthorized ({status})")
    if status >= 400:
        raise InfrastructureError(f"{what}: HTTP {status}")


class GitLabClient(GitPlatform):
    def __init__(self, token: str, base_url: str = "https://gitlab.com"):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.api_url = f"{self.base_url}/api/v4"

    def _headers(self) -> dict[str, str]:
        return {"PRIVATE-TOKEN": self.token}

    async def _get(self, path: str, what: str, params: dict[str, Any] | None = None) -> httpx.Response:
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(
                    f"{self.api_url}{path}",
                    params=params,
                    headers=self._headers(),
                    timeout=30.0,
                )
        except httpx.TransportError as e:
            raise InfrastructureError(f"{what}: GitLab unreachable: {e}") from e
        _raise_for_status(response, what)
        return response

    async def get_mr_changes(self, project_id: int, mr_iid: int) -> dict[str, Any]:
        response = await self._get(
            f"/projects/{project_id}/merge_requests/{mr_iid}/changes",
            f"MR !{mr_iid} changes",
        )
        return response.json()

    async def fetch_diff(self, project_id: int, mr_iid: int) -> list[FileDiff]:
        mr_data = await self.get_mr_changes(project_id, mr_iid)
        return file_diffs_from_changes(mr_data.get("changes", []))

    async def get_file_content(self, project_id: int, file_path: str, ref: str) -> str:
        encoded_path = quote(file_path, safe="")
        response = await self._get(
            f"/projects/{project_id}/repository/files/{encoded_path}/raw",
            f"File {file_path}@{ref}",
            params={"ref": ref},
        )
        return response.text

    async def fetch_rules(self, project_id: int, path: str, branch: str) -> str | None:
        try:
            return await self.get_file_content(project_id, path, branch)
        except NotFoundError:
            return None

    async def get_repo_config(self, project_id: int, ref: str) -> str | None:
        """Get .ai-review.yaml content, returns None if not found."""
        try:
            return await self.get_file_content(project_id, ".ai-review.yaml", ref)
        except NotFoundError:
            return None

    async def publish_comment(
        self,
        project_id: int,
        mr_iid: int,
        idempotency_key: str,
        body: str,
    ) -> PublishResult:
        marker = idempotency_marker(idempotency_key)
        notes_url = f"{self.api_url}/projects/{project_id}/merge_requests/{mr_iid}/notes"
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(
                    notes_url,
                    headers=self._headers(),
                    params={"per_page": 100, "sort": "desc", "order_by": "created_at"},
                    timeout=30.0,
                )
                self._check_publish_response(response, mr_iid)
                if any(marker in (note.get("body") or "") for note in response.json()):
                    logger.info(f"Review for {idempotency_key} already posted, skipping")
                    return PublishResult.CONFLICT

                response = await client.post(
                    notes_url,
                    headers=self._headers(),
                    json={"body": f"{body}\n{marker}"},
                    timeout=30.0,
                )
                self._check_publish_response(response, mr_iid)
        except httpx.TransportError as e:
            raise PublishUnavailableError(f"GitLab unreachable: {e}") from e

        return PublishResult.POSTED

    def _check_publish_response(self, response: httpx.Response, mr_iid: int) -> None:
        if response.status_code >= 500 or response.status_code == 429:
            raise PublishUnavailableError(f"MR !{mr_iid} notes: HTTP {response.status_code}")
        _raise_for_status(response, f"MR !{mr_iid} notes")

    async def get_project_by_path(self, path: str) -> dict[str, Any]:
        """Get project info by path (e.g., 'user/repo')."""
        encoded_path = quote(path, safe="")
        response = await self._get(f"/projects/{encoded_path}", f"Project {path}")
        return response.json()

    async def get_mr_info(self, project_id: int, mr_iid: int) -> dict[str, Any]:
        """Get MR info including branches and head sha."""
        response = await self._get(
            f"/projects/{project_id}/merge_requests/{mr_iid}",
            f"MR !{mr_iid}",
        )
        return response.json()
