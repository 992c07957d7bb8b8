"""Async client for the block generation worker.

Wraps the generation, preview-push, finalize, winner-selection, design-system,
page-analysis and page-composition endpoints and normalises their success and
error shapes: every failure surfaces as ``RemoteCallFailed`` carrying the
worker's ``error`` message, or ``"HTTP <status>"`` when the body has none.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional

import httpx
from loguru import logger

from config.settings import settings
from models.errors import RemoteCallFailed
from models.workflow import Config, GeneratedArtifact, PreviewVariant, SectionDescriptor

DEFAULT_WINNER = {"option": 1, "iteration": 1}


class RemoteServiceClient:
    """Stateless request/response wrapper; the worker URL is resolved per call from the config."""

    DEFAULT_HEADERS = {
        "User-Agent": "block-importer/1.0",
        "Accept": "application/json",
    }

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._default_url = base_url or settings.service_url
        self._timeout = timeout or settings.service_timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "RemoteServiceClient":
        self._ensure_client()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers=self.DEFAULT_HEADERS,
                timeout=self._timeout,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    def _base_url(self, config: Config) -> str:
        return (config.service_endpoint_override or self._default_url).rstrip("/")

    @staticmethod
    def _github(config: Config, use_server_token: bool = False) -> Dict[str, Any]:
        github: Dict[str, Any] = {"owner": config.owner, "repo": config.repo}
        if use_server_token:
            github["useServerToken"] = True
        return github

    @staticmethod
    def _content(config: Config) -> Dict[str, Any]:
        return {"org": config.content_org, "site": config.content_site}

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
        return f"HTTP {response.status_code}"

    async def _post(
        self,
        config: Config,
        path: str,
        *,
        json_body: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, Any]] = None,
        failure_message: str = "Request failed",
    ) -> Dict[str, Any]:
        client = self._ensure_client()
        url = f"{self._base_url(config)}{path}"
        attempts = max(1, settings.service_max_retries + 1)
        for attempt in range(1, attempts + 1):
            try:
                logger.debug(f"POST {url} (attempt {attempt})")
                response = await client.post(url, json=json_body, data=data, files=files)
                break
            except httpx.ConnectError as exc:
                # The request never reached the worker, so resending is safe.
                logger.warning(f"[attempt {attempt}] Connection error for {url}: {exc}")
                if attempt == attempts:
                    raise RemoteCallFailed(f"Service unreachable: {exc}") from exc
                await asyncio.sleep(attempt * settings.service_retry_delay_seconds)
            except httpx.HTTPError as exc:
                logger.error(f"Request error for {url}: {exc}")
                raise RemoteCallFailed(f"Request to {path} failed: {exc}") from exc

        if response.is_error:
            message = self._error_message(response)
            logger.warning(f"HTTP {response.status_code} from {path}: {message}")
            raise RemoteCallFailed(message, status=response.status_code)

        try:
            body = response.json()
        except ValueError:
            body = {}
        if isinstance(body, dict) and body.get("success") is False:
            raise RemoteCallFailed(str(body.get("error") or failure_message), status=response.status_code)
        return body if isinstance(body, dict) else {"data": body}

    # ── Single-element generation ─────────────────────────────────────────────

    async def generate(
        self,
        config: Config,
        url: str,
        screenshot: bytes,
        xpath: Optional[str] = None,
        markup: Optional[str] = None,
        background_image_refs: Optional[List[Any]] = None,
        refinement_count: Optional[int] = None,
    ) -> GeneratedArtifact:
        """POST /block-generate-full (multipart)."""
        refinements = settings.generation_refinements if refinement_count is None else refinement_count
        data: Dict[str, Any] = {"url": url, "refinements": str(refinements)}
        if xpath:
            data["xpath"] = xpath
        if markup:
            data["html"] = markup
        if background_image_refs:
            data["backgroundImages"] = json.dumps(background_image_refs)
        if not xpath and not markup:
            logger.warning("generate called without xpath or markup; the worker will likely reject it")
        files = {"screenshot": ("element.png", screenshot, "image/png")} if screenshot else None

        logger.info(f"Generating block for {url} (screenshot {len(screenshot or b'')} bytes)")
        body = await self._post(
            config,
            "/block-generate-full",
            data=data,
            files=files,
            failure_message="Block generation failed",
        )
        # Refinement runs may answer with the iteration list only; the last one wins.
        iterations = body.get("iterations") or []
        if not body.get("blockName") and iterations:
            body = {**body, **iterations[-1]}
        if not body.get("blockName"):
            raise RemoteCallFailed("Block generation returned no block")
        return GeneratedArtifact(
            artifact_name=body["blockName"],
            markup=body.get("html") or "",
            style=body.get("css") or "",
            behavior=body.get("js") or "",
        )

    async def push_preview(
        self,
        config: Config,
        session_id: str,
        artifact: GeneratedArtifact,
        option: int = 1,
        iteration: int = 1,
    ) -> PreviewVariant:
        """POST /block-variant-push; returns the pushed variant's preview location."""
        body = await self._post(
            config,
            "/block-variant-push",
            json_body={
                "sessionId": session_id,
                "blockName": artifact.artifact_name,
                "option": option,
                "iteration": iteration,
                "html": artifact.markup,
                "css": artifact.style,
                "js": artifact.behavior,
                "github": self._github(config, use_server_token=True),
                "da": self._content(config),
            },
        )
        variant = body.get("variant") or {}
        return PreviewVariant(
            preview_url=variant.get("previewUrl"),
            branch_ref=variant.get("branch"),
            content_path=variant.get("daPath"),
        )

    async def finalize(
        self,
        config: Config,
        session_id: str,
        artifact_name: str,
        winner: Optional[Dict[str, int]] = None,
    ) -> Dict[str, Any]:
        """POST /block-finalize (merge the winning variant)."""
        return await self._post(
            config,
            "/block-finalize",
            json_body={
                "sessionId": session_id,
                "blockName": artifact_name,
                "winner": winner or DEFAULT_WINNER,
                "github": self._github(config, use_server_token=True),
                "da": self._content(config),
            },
        )

    async def select_winner(
        self,
        config: Config,
        screenshot: bytes,
        variants: List[Dict[str, Any]],
    ) -> Dict[str, Any]:
        """POST /block-winner: let the vision service pick among variants."""
        blocks = [
            {
                "html": variant.get("markup", variant.get("html")),
                "css": variant.get("style", variant.get("css")),
                "js": variant.get("behavior", variant.get("js")),
                "blockName": variant.get("artifactName", variant.get("blockName")),
                "optionIndex": index,
                "previewUrl": variant.get("previewUrl"),
            }
            for index, variant in enumerate(variants)
        ]
        logger.info(f"Comparing {len(blocks)} variants")
        return await self._post(
            config,
            "/block-winner",
            data={"blocks": json.dumps(blocks)},
            files={"screenshot": ("original.png", screenshot, "image/png")},
        )

    # ── Design system ─────────────────────────────────────────────────────────

    async def import_design_system(
        self,
        config: Config,
        url: str,
        session_id: str,
        generate_preview: bool = True,
    ) -> Dict[str, Any]:
        """POST /design-system-import; returns ``{extractedDesign, preview, github}``."""
        return await self._post(
            config,
            "/design-system-import",
            json_body={
                "url": url,
                "sessionId": session_id,
                "generatePreview": generate_preview,
                "github": self._github(config),
                "da": self._content(config),
            },
        )

    async def finalize_design_system(self, config: Config, branch_ref: str) -> Dict[str, Any]:
        return await self._post(
            config,
            "/design-system-finalize",
            json_body={"branch": branch_ref, "github": self._github(config)},
        )

    # ── Page import ───────────────────────────────────────────────────────────

    async def analyze_page(self, config: Config, url: str) -> Dict[str, Any]:
        """POST /analyze; returns ``{blocks, screenshot, title}``."""
        return await self._post(config, "/analyze", json_body={"url": url})

    async def generate_for_section(
        self,
        config: Config,
        url: str,
        section: SectionDescriptor,
        session_id: str,
    ) -> Dict[str, Any]:
        """POST /generate-block-for-section (standalone generation with its own preview branch)."""
        vertical = section.vertical_range
        return await self._post(
            config,
            "/generate-block-for-section",
            json_body={
                "url": url,
                "sectionName": section.name,
                "sectionDescription": section.description,
                "sectionType": section.type,
                "sectionHtml": section.markup_snippet,
                "yStart": vertical.start if vertical else None,
                "yEnd": vertical.end if vertical else None,
                "sessionId": session_id,
                "github": self._github(config),
                "da": self._content(config),
            },
            failure_message="Block generation failed",
        )

    async def compose_page(
        self,
        config: Config,
        url: str,
        sections: List[SectionDescriptor],
        title: Optional[str],
        session_id: str,
        accepted_artifacts: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """POST /compose-page; returns ``{previewUrl, daPath, branch, blocksGenerated}``."""
        return await self._post(
            config,
            "/compose-page",
            json_body={
                "url": url,
                "sections": [section.to_wire() for section in sections],
                "pageTitle": title,
                "sessionId": session_id,
                "acceptedBlocks": accepted_artifacts or {},
                "github": self._github(config),
                "da": self._content(config),
            },
        )

    async def finalize_page(self, config: Config, branch_ref: str) -> Dict[str, Any]:
        """POST /page-finalize (merge the page branch)."""
        return await self._post(
            config,
            "/page-finalize",
            json_body={"branch": branch_ref, "github": self._github(config)},
        )

    async def reject_page(self, config: Config, branch_ref: str) -> Dict[str, Any]:
        """POST /page-reject (delete the page branch)."""
        return await self._post(
            config,
            "/page-reject",
            json_body={"branch": branch_ref, "github": self._github(config)},
        )
