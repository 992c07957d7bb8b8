"""GitHub contents client for the block library of the target repository."""

from __future__ import annotations

import base64
from typing import Any, Dict, List, Optional

import httpx
from loguru import logger

from config.settings import settings
from models.errors import RemoteCallFailed


class SourceRepositoryClient:
    """
    Read-mostly wrapper around the GitHub REST API.

    Public repositories need no token, so requests are unauthenticated. Every
    block lives in its own directory under ``settings.artifacts_path``.
    """

    DEFAULT_HEADERS = {
        "User-Agent": "block-importer/1.0",
        "Accept": "application/vnd.github.v3+json",
    }

    def __init__(
        self,
        api_base: Optional[str] = None,
        timeout: int = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._api_base = (api_base or settings.github_api_base).rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "SourceRepositoryClient":
        self._client = httpx.AsyncClient(
            headers=self.DEFAULT_HEADERS,
            timeout=self._timeout,
            follow_redirects=True,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def parse_repo(repository_ref: str) -> Dict[str, str]:
        owner, _, repo = repository_ref.partition("/")
        return {"owner": owner, "repo": repo}

    async def _request(self, endpoint: str) -> Any:
        assert self._client is not None, "Use as async context manager."
        url = f"{self._api_base}{endpoint}"
        try:
            response = await self._client.get(url)
        except httpx.RequestError as exc:
            raise RemoteCallFailed(f"GitHub request failed: {exc}") from exc
        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = None
            message = body.get("message") if isinstance(body, dict) else None
            raise RemoteCallFailed(
                message or f"GitHub API error: {response.status_code}",
                status=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteCallFailed(
                f"GitHub returned a non-JSON body for {endpoint}",
                status=response.status_code,
            ) from exc

    async def list_artifacts(self, repository_ref: str) -> List[Dict[str, str]]:
        """List block directories as ``{name, path, url}``; a missing folder is empty."""
        ref = self.parse_repo(repository_ref)
        try:
            contents = await self._request(
                f"/repos/{ref['owner']}/{ref['repo']}/contents/{settings.artifacts_path}"
            )
        except RemoteCallFailed as exc:
            if exc.status == 404:
                logger.info(f"No {settings.artifacts_path}/ folder in {repository_ref} yet")
                return []
            raise
        if not isinstance(contents, list):
            # A single object means the path is a file, not a folder.
            logger.warning(f"{settings.artifacts_path} in {repository_ref} is not a directory")
            return []
        return [
            {"name": item["name"], "path": item["path"], "url": item.get("html_url", "")}
            for item in contents
            if isinstance(item, dict) and item.get("type") == "dir" and item.get("name") and item.get("path")
        ]

    async def validate_repo(self, repository_ref: str) -> bool:
        """True when the repository exists and is readable."""
        ref = self.parse_repo(repository_ref)
        try:
            await self._request(f"/repos/{ref['owner']}/{ref['repo']}")
            return True
        except RemoteCallFailed as exc:
            logger.warning(f"Repository validation failed for {repository_ref}: {exc}")
            return False

    async def get_default_branch(self, repository_ref: str) -> str:
        ref = self.parse_repo(repository_ref)
        info = await self._request(f"/repos/{ref['owner']}/{ref['repo']}")
        return info["default_branch"]

    async def get_file_content(self, repository_ref: str, path: str) -> Optional[str]:
        """Decoded content of a file, or None when GitHub returns no inline content."""
        ref = self.parse_repo(repository_ref)
        info = await self._request(f"/repos/{ref['owner']}/{ref['repo']}/contents/{path}")
        content = info.get("content") if isinstance(info, dict) else None
        if not content:
            return None
        return base64.b64decode(content).decode("utf-8")
