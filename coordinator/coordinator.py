"""Orchestration coordinator.

Answers the typed request/response protocol used by the control surface
(sidebar) and the page agent, and drives the block import workflows:

    single element   selecting → screenshot → crop → generate → preview push → preview
    design system    import → token normalisation → result
    page import      analyze → per-section generation → compose → finalize / reject

The process may be torn down between any two messages. Nothing a workflow
needs survives in memory between activations: each handler works from its
request arguments plus the persisted records in the ``StateStore``. The
``state`` record is a projection of the most recent foreground workflow, not
a concurrency primitive; callers running concurrent workflows (per-section
generation) carry their own ``sessionId``.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from loguru import logger
from pydantic import ValidationError

from bridge.page_agent import AgentMessage, PageAgentBridge
from clients.repository_client import SourceRepositoryClient
from clients.service_client import DEFAULT_WINNER, RemoteServiceClient
from config.settings import settings
from coordinator.events import (
    GENERATION_COMPLETE,
    GENERATION_ERROR,
    GENERATION_PROGRESS,
    SECTION_SELECTED,
    SELECTION_COMPLETE,
    EventBus,
)
from coordinator.heartbeat import Heartbeat
from models.errors import CaptureFailed, CoordinatorError, NoTargetPage
from models.messages import (
    REQUEST_MODELS,
    REQUEST_TYPES,
    AcceptBlock,
    AnalyzePage,
    CancelSectionSelection,
    CancelSelection,
    ClearState,
    ComposePage,
    ElementSelected,
    FinalizeDesignSystem,
    FinalizePage,
    GenerateBlock,
    GenerateBlockForSection,
    GetBlocks,
    GetConfig,
    GetState,
    ImportDesignSystem,
    Message,
    OpenSidebar,
    RejectBlock,
    RejectDesignSystem,
    RejectPage,
    SaveConfig,
    SectionSelected,
    StartSectionSelection,
    StartSelection,
    parse_request,
)
from models.workflow import (
    CleanupOutcome,
    Config,
    ElementSelection,
    PixelBounds,
    PreviewData,
    StageStatus,
    WorkflowState,
    WorkflowStatus,
)
from storage.state_store import CONFIG_KEY, STATE_KEY, StateStore
from utils.helpers import build_preview_url, generate_session_id, normalize_design_tokens

Response = Dict[str, Any]


class Coordinator:
    """Restart-tolerant controller owning every write to the workflow state."""

    # Every request model has exactly one handler (checked at import time below).
    HANDLERS: Dict[type, str] = {
        StartSelection: "_start_selection",
        CancelSelection: "_cancel_selection",
        StartSectionSelection: "_start_section_selection",
        CancelSectionSelection: "_cancel_selection",
        SectionSelected: "_section_selected",
        ElementSelected: "_element_selected",
        GenerateBlock: "_generate_block",
        AcceptBlock: "_accept_block",
        RejectBlock: "_reject_block",
        ImportDesignSystem: "_import_design_system",
        FinalizeDesignSystem: "_finalize_design_system",
        RejectDesignSystem: "_reject_design_system",
        AnalyzePage: "_analyze_page",
        GenerateBlockForSection: "_generate_block_for_section",
        ComposePage: "_compose_page",
        FinalizePage: "_finalize_page",
        RejectPage: "_reject_page",
        OpenSidebar: "_open_sidebar",
        GetBlocks: "_get_blocks",
        GetState: "_get_state",
        ClearState: "_clear_state",
        GetConfig: "_get_config",
        SaveConfig: "_save_config",
    }

    def __init__(
        self,
        store: Optional[StateStore] = None,
        service: Optional[RemoteServiceClient] = None,
        bridge: Optional[PageAgentBridge] = None,
        repository_factory: Callable[[], SourceRepositoryClient] = SourceRepositoryClient,
        heartbeat: Optional[Heartbeat] = None,
        events: Optional[EventBus] = None,
    ) -> None:
        self._store = store or StateStore()
        self._service = service or RemoteServiceClient()
        self._bridge = bridge
        self._repository_factory = repository_factory
        self._heartbeat = heartbeat or Heartbeat()
        self.events = events or EventBus()
        self._background: Set[asyncio.Task] = set()
        if bridge is not None:
            bridge.on_message(self.handle)

    @property
    def browser_attached(self) -> bool:
        return self._bridge is not None

    async def close(self) -> None:
        await self.drain()
        await self._service.aclose()

    # ── Protocol entry point ──────────────────────────────────────────────────

    async def handle(self, message: Dict[str, Any], sender: Any = None) -> Response:
        """
        Answer one inbound message.

        ``sender`` is the page the message came from when the page agent sent
        it through the page binding, otherwise None.
        """
        message_type = message.get("type") if isinstance(message, dict) else None
        if message_type not in REQUEST_TYPES:
            logger.warning(f"Unknown message type: {message_type!r}")
            return {"error": "Unknown message type"}

        try:
            request = parse_request(message)
        except ValidationError as exc:
            first = exc.errors()[0]
            location = ".".join(str(part) for part in first.get("loc", ())[1:])
            logger.warning(f"Invalid {message_type} message: {exc}")
            return {"success": False, "error": f"Invalid message: {location} {first.get('msg', '')}".strip()}

        logger.info(f"{message_type} received")
        handler = getattr(self, self.HANDLERS[type(request)])
        try:
            return await handler(request, sender)
        except CoordinatorError as exc:
            logger.error(f"{message_type} failed: {exc}")
            return {"success": False, "error": str(exc)}
        except Exception as exc:
            logger.exception(f"{message_type} failed unexpectedly")
            return {"success": False, "error": str(exc) or type(exc).__name__}

    async def drain(self) -> None:
        """Wait for workflows started in the background (ELEMENT_SELECTED)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # ── Persistence helpers ───────────────────────────────────────────────────

    def _load_config(self) -> Config:
        return Config.model_validate(self._store.get(CONFIG_KEY))

    def _require_config(self) -> Config:
        return self._load_config().require_complete()

    def _load_state(self) -> WorkflowState:
        record = self._store.get(STATE_KEY)
        if not record:
            return WorkflowState()
        try:
            return WorkflowState.model_validate(record)
        except ValidationError as exc:
            logger.warning(f"Discarding unreadable state record: {exc}")
            return WorkflowState()

    def _save_state(self, state: WorkflowState) -> WorkflowState:
        # Full record each time: a new workflow replaces, never merges into, the old one.
        record = self._store.set(STATE_KEY, state.to_record())
        return state.model_copy(update={"updated_at": record["updatedAt"]})

    def _require_bridge(self) -> PageAgentBridge:
        if self._bridge is None:
            raise NoTargetPage("No browser connected")
        return self._bridge

    # ── Selection control ─────────────────────────────────────────────────────

    async def _start_selection(self, request: StartSelection, sender: Any) -> Response:
        bridge = self._require_bridge()
        target = await bridge.find_target_page()
        # The previous record stays intact unless the selector is actually running.
        await bridge.install(target.page, "selector")
        self._save_state(WorkflowState.fresh(generate_session_id()))
        return {"success": True}

    async def _start_section_selection(self, request: StartSectionSelection, sender: Any) -> Response:
        bridge = self._require_bridge()
        target = await bridge.find_target_page()
        await bridge.install(target.page, "selector")
        await bridge.send(target.page, AgentMessage.ENTER_SECTION_MODE)
        return {"success": True}

    async def _cancel_selection(self, request: Message, sender: Any) -> Response:
        if self._bridge is not None:
            try:
                target = await self._bridge.find_target_page()
                await self._bridge.send(target.page, AgentMessage.CANCEL)
            except NoTargetPage:
                logger.info("Cancel requested with no target page open")
        if isinstance(request, CancelSelection) and self._load_state().status == WorkflowStatus.SELECTING:
            self._save_state(WorkflowState.fresh(None, status=WorkflowStatus.IDLE))
        return {"success": True}

    async def _section_selected(self, request: SectionSelected, sender: Any) -> Response:
        self.events.publish(SECTION_SELECTED, data=request.data)
        return {"success": True}

    async def _open_sidebar(self, request: OpenSidebar, sender: Any) -> Response:
        bridge = self._require_bridge()
        target = await bridge.find_target_page()
        await bridge.install(target.page, "sidebar")
        await asyncio.sleep(settings.sidebar_open_delay_seconds)
        await bridge.send(target.page, AgentMessage.OPEN)
        return {"success": True}

    # ── Single-element generation ─────────────────────────────────────────────

    async def _element_selected(self, request: ElementSelected, sender: Any) -> Response:
        # Answer the page agent at once; the workflow reports through events and state.
        self._spawn(self.generate_from_selection(request.url, request.data, page=sender))
        return {"success": True}

    async def _generate_block(self, request: GenerateBlock, sender: Any) -> Response:
        return await self.generate_from_selection(request.url, request.element_data, session_id=request.session_id)

    async def generate_from_selection(
        self,
        url: Optional[str],
        selection: ElementSelection,
        session_id: Optional[str] = None,
        page: Any = None,
    ) -> Response:
        """
        Run the single-element workflow to ``preview`` or ``error``.

        Every stage transition is persisted before listeners hear about it.
        The heartbeat is held for the whole run and released on every exit.
        """
        session_id = session_id or generate_session_id()
        state = self._save_state(WorkflowState.fresh(session_id))
        try:
            async with self._heartbeat.hold():
                state = self._save_state(state.generating())
                self.events.publish(SELECTION_COMPLETE, sessionId=session_id)

                config = self._require_config()
                if page is None:
                    target = await self._require_bridge().find_target_page()
                    page, url = target.page, url or target.url
                url = url or page.url
                screenshot = await self._capture(page, selection.pixel_bounds)

                state = self._save_state(
                    state.advance(
                        screenshot=StageStatus.COMPLETE,
                        html=StageStatus.COMPLETE,
                        generate=StageStatus.ACTIVE,
                    )
                )
                self._publish_progress(state)

                artifact = await self._service.generate(
                    config,
                    url,
                    screenshot,
                    xpath=selection.xpath,
                    markup=selection.serialized_markup,
                    background_image_refs=selection.background_image_refs,
                )

                state = self._save_state(state.advance(generate=StageStatus.COMPLETE, preview=StageStatus.ACTIVE))
                self._publish_progress(state, artifactName=artifact.artifact_name)

                variant = await self._service.push_preview(config, session_id, artifact)
                preview = PreviewData(
                    artifact_name=artifact.artifact_name,
                    markup=artifact.markup,
                    style=artifact.style,
                    behavior=artifact.behavior,
                    preview_url=variant.preview_url
                    or build_preview_url(
                        artifact.artifact_name,
                        config.content_org,
                        config.content_site,
                        settings.preview_host,
                        branch_ref=variant.branch_ref,
                        content_path=variant.content_path,
                    ),
                    branch_ref=variant.branch_ref,
                )
                state = self._save_state(state.completed(preview))
        except Exception as exc:
            return self._fail(state, exc)

        logger.success(f"Block '{preview.artifact_name}' ready for preview: {preview.preview_url}")
        self.events.publish(GENERATION_COMPLETE, sessionId=session_id, data=preview.to_record())
        return {"success": True, "sessionId": session_id, **preview.to_record()}

    async def _capture(self, page: Any, bounds: Optional[PixelBounds]) -> bytes:
        bridge = self._require_bridge()
        image = await bridge.capture_visible(page)
        if bounds is not None:
            image = await bridge.crop(page, image, bounds)
        if not image:
            raise CaptureFailed("Screenshot capture returned no image")
        logger.info(f"Screenshot captured ({len(image)} bytes, cropped={bounds is not None})")
        return image

    def _publish_progress(self, state: WorkflowState, **extra: Any) -> None:
        self.events.publish(
            GENERATION_PROGRESS,
            sessionId=state.session_id,
            progress=state.to_record()["progress"],
            **extra,
        )

    def _fail(self, state: WorkflowState, exc: Exception) -> Response:
        message = self._failure_message(exc, "Block generation")
        try:
            self._save_state(state.failed(message))
        except Exception:
            logger.exception(f"Could not persist error state for session {state.session_id}")
        self.events.publish(GENERATION_ERROR, sessionId=state.session_id, error=message)
        return {"success": False, "error": message}

    @staticmethod
    def _failure_message(exc: Exception, workflow: str) -> str:
        if isinstance(exc, CoordinatorError):
            logger.error(f"{workflow} failed: {exc}")
        else:
            logger.exception(f"{workflow} failed unexpectedly")
        return str(exc) or f"{workflow} failed"

    # ── Acceptance & rejection ────────────────────────────────────────────────

    async def _accept_block(self, request: AcceptBlock, sender: Any) -> Response:
        config = self._require_config()
        # Single-variant flow: the winner is always option 1 of iteration 1.
        await self._service.finalize(config, request.session_id, request.artifact_name, DEFAULT_WINNER)
        logger.success(f"Block '{request.artifact_name}' finalized (session {request.session_id})")
        return {"success": True}

    async def _reject_block(self, request: RejectBlock, sender: Any) -> Response:
        await self._cleanup("block branch", request.branch_ref or request.session_id)
        return {"success": True}

    async def _cleanup(
        self,
        subject: str,
        ref: Optional[str],
        action: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> CleanupOutcome:
        """Best-effort cleanup; the outcome is logged and never fails the caller."""
        if action is None or not ref:
            outcome = CleanupOutcome(
                performed=False,
                detail=f"{subject} {ref or '(unknown)'} left for server-side expiry",
            )
        else:
            try:
                await action()
                outcome = CleanupOutcome(performed=True, detail=f"{subject} {ref} deleted")
            except Exception as exc:
                outcome = CleanupOutcome(performed=False, detail=f"{subject} {ref} cleanup failed: {exc}")
        logger.bind(cleanup=outcome.to_record()).info(f"Cleanup: {outcome.detail}")
        return outcome

    # ── Long-running auxiliary workflows ──────────────────────────────────────

    async def _run_workflow(
        self,
        name: str,
        session_id: Optional[str],
        body: Callable[[], Awaitable[Response]],
    ) -> Response:
        """Hold the heartbeat around ``body`` and turn any failure into a failure payload."""
        try:
            async with self._heartbeat.hold():
                return await body()
        except Exception as exc:
            message = self._failure_message(exc, name)
            self.events.publish(GENERATION_ERROR, workflow=name, sessionId=session_id, error=message)
            return {"success": False, "error": message}

    async def _import_design_system(self, request: ImportDesignSystem, sender: Any) -> Response:
        session_id = generate_session_id()

        async def body() -> Response:
            config = self._require_config()
            result = await self._service.import_design_system(config, request.url, session_id, generate_preview=True)
            preview = result.get("preview") or {}
            github = result.get("github") or {}
            tokens = normalize_design_tokens(result.get("extractedDesign"))
            logger.info(
                f"Design system imported: {len(tokens['colors'])} colors, {len(tokens['fonts'])} fonts"
            )
            return {
                "success": True,
                "sessionId": session_id,
                "tokens": tokens,
                "styleGuideUrl": preview.get("previewUrl"),
                "commitUrl": github.get("commitUrl"),
                "branchRef": github.get("branch") or preview.get("branch"),
            }

        return await self._run_workflow("Design system import", session_id, body)

    async def _finalize_design_system(self, request: FinalizeDesignSystem, sender: Any) -> Response:
        config = self._require_config()
        await self._service.finalize_design_system(config, request.branch_ref)
        logger.success(f"Design system branch {request.branch_ref} finalized")
        return {"success": True}

    async def _reject_design_system(self, request: RejectDesignSystem, sender: Any) -> Response:
        await self._cleanup("design system branch", request.branch_ref)
        return {"success": True}

    async def _analyze_page(self, request: AnalyzePage, sender: Any) -> Response:
        async def body() -> Response:
            result = await self._service.analyze_page(self._load_config(), request.url)
            sections = result.get("blocks") or []
            logger.info(f"Page analysis found {len(sections)} sections on {request.url}")
            return {
                "success": True,
                "sections": sections,
                "screenshot": result.get("screenshot"),
                "pageTitle": result.get("title"),
            }

        return await self._run_workflow("Page analysis", None, body)

    async def _generate_block_for_section(self, request: GenerateBlockForSection, sender: Any) -> Response:
        # Independent session per section; the shared state record is left alone.
        session_id = generate_session_id()

        async def body() -> Response:
            config = self._require_config()
            result = await self._service.generate_for_section(config, request.url, request.section, session_id)
            return {
                "success": True,
                "sessionId": session_id,
                "sectionIndex": request.section_index,
                "artifactName": result.get("blockName"),
                "previewUrl": result.get("previewUrl"),
                "branchRef": result.get("branch"),
                "markup": result.get("html"),
                "style": result.get("css"),
                "behavior": result.get("js"),
            }

        return await self._run_workflow("Section block generation", session_id, body)

    async def _compose_page(self, request: ComposePage, sender: Any) -> Response:
        session_id = generate_session_id()

        async def body() -> Response:
            config = self._require_config()
            result = await self._service.compose_page(
                config,
                request.url,
                request.sections,
                request.title,
                session_id,
                request.accepted_artifacts,
            )
            return {
                "success": True,
                "sessionId": session_id,
                "previewUrl": result.get("previewUrl"),
                "contentPath": result.get("daPath"),
                "branchRef": result.get("branch"),
                "generatedCount": result.get("blocksGenerated", 0),
            }

        return await self._run_workflow("Page composition", session_id, body)

    async def _finalize_page(self, request: FinalizePage, sender: Any) -> Response:
        config = self._require_config()
        result = await self._service.finalize_page(config, request.branch_ref)
        return {
            "success": True,
            "commitSha": result.get("commitSha"),
            "commitUrl": result.get("commitUrl"),
        }

    async def _reject_page(self, request: RejectPage, sender: Any) -> Response:
        branch_ref = request.branch_ref

        async def delete_branch() -> None:
            await self._service.reject_page(self._require_config(), branch_ref)

        await self._cleanup("page branch", branch_ref, delete_branch)
        return {"success": True}

    # ── Library & state access ────────────────────────────────────────────────

    async def _get_blocks(self, request: GetBlocks, sender: Any) -> Response:
        config = self._load_config()
        if not config.repository_ref:
            return {"blocks": []}
        try:
            async with self._repository_factory() as repository:
                blocks = await repository.list_artifacts(config.repository_ref)
        except CoordinatorError as exc:
            logger.error(f"Failed to get blocks: {exc}")
            return {"blocks": []}
        except Exception:
            logger.exception("Failed to get blocks")
            return {"blocks": []}
        return {"blocks": blocks}

    async def _get_state(self, request: GetState, sender: Any) -> Response:
        return {"success": True, "state": self._load_state().to_record()}

    async def _clear_state(self, request: ClearState, sender: Any) -> Response:
        self._save_state(WorkflowState())
        return {"success": True}

    async def _get_config(self, request: GetConfig, sender: Any) -> Response:
        return {"success": True, "config": self._load_config().to_record()}

    async def _save_config(self, request: SaveConfig, sender: Any) -> Response:
        record = self._store.set(CONFIG_KEY, request.config.to_record())
        logger.info(f"Config saved for {request.config.repository_ref}")
        return {"success": True, "config": record}


_unhandled = [model.__name__ for model in REQUEST_MODELS if model not in Coordinator.HANDLERS]
if _unhandled:
    raise RuntimeError(f"Request types without a handler: {', '.join(_unhandled)}")
