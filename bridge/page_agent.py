"""Page agent bridge.

Installs the page-embedded agent (selection overlay or sidebar) into a page of
a running Chromium reached over CDP, delivers control messages to it, and
relays the agent's own messages back to the coordinator through an exposed
binding. Screenshot cropping runs inside the page so the page's device pixel
ratio is applied where the pixels were rendered.

Start the browser with remote debugging enabled:
    google-chrome --remote-debugging-port=9222
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from loguru import logger
from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from config.settings import settings
from models.errors import CaptureFailed, InjectionFailed, NoTargetPage
from models.workflow import PixelBounds
from utils.helpers import decode_data_url, encode_data_url

MessageHandler = Callable[[Dict[str, Any], Any], Awaitable[Dict[str, Any]]]

# Style first, then behavior.
AGENT_ASSETS: Dict[str, Tuple[List[str], List[str]]] = {
    "selector": (["selector.css"], ["xpath-generator.js", "selector.js"]),
    "sidebar": (["sidebar.css"], ["sidebar.js"]),
}


class AgentMessage(str, Enum):
    """Control messages understood by the installed agent."""

    OPEN = "open"
    ENTER_SECTION_MODE = "enter-section-mode"
    CANCEL = "cancel"


# Message types as the agent scripts dispatch them.
_AGENT_MESSAGE_TYPES = {
    AgentMessage.OPEN: "OPEN_SIDEBAR",
    AgentMessage.ENTER_SECTION_MODE: "START_SECTION_MODE",
    AgentMessage.CANCEL: "CANCEL_SELECTION",
}

SEND_SCRIPT = """(message) => {
  window.postMessage({ source: 'block-importer', ...message }, '*');
  return true;
}"""

FOCUS_SCRIPT = "() => document.visibilityState === 'visible' && document.hasFocus()"

CROP_SCRIPT = """async ({ image, bounds }) => {
  const img = new Image();
  await new Promise((resolve, reject) => {
    img.onload = resolve;
    img.onerror = () => reject(new Error('screenshot could not be decoded'));
    img.src = image;
  });
  const dpr = window.devicePixelRatio || 1;
  const canvas = document.createElement('canvas');
  canvas.width = Math.round(bounds.width * dpr);
  canvas.height = Math.round(bounds.height * dpr);
  canvas.getContext('2d').drawImage(
    img,
    bounds.x * dpr, bounds.y * dpr, bounds.width * dpr, bounds.height * dpr,
    0, 0, canvas.width, canvas.height,
  );
  return canvas.toDataURL('image/png');
}"""


@dataclass
class PageInfo:
    """An open page as seen by target selection."""

    page: Any
    url: str
    focused: bool = False
    last_accessed: float = 0.0


def is_content_url(url: Optional[str], internal_prefixes: Optional[List[str]] = None) -> bool:
    """True for ordinary web pages; False for browser-internal and extension pages."""
    if not url:
        return False
    prefixes = settings.internal_url_prefixes if internal_prefixes is None else internal_prefixes
    return not any(url.startswith(prefix) for prefix in prefixes)


def select_target_page(
    pages: List[PageInfo],
    internal_prefixes: Optional[List[str]] = None,
) -> Optional[PageInfo]:
    """Focused content page if there is one, else the most recently accessed content page."""
    focused = next((info for info in pages if info.focused), None)
    if focused and is_content_url(focused.url, internal_prefixes):
        return focused
    candidates = [info for info in pages if is_content_url(info.url, internal_prefixes)]
    if not candidates:
        return None
    return max(candidates, key=lambda info: info.last_accessed)


class PageAgentBridge:
    """Playwright-backed installation of, and messaging with, the page agent."""

    BINDING_NAME = "blockImporterSend"

    def __init__(
        self,
        cdp_endpoint: Optional[str] = None,
        assets_dir: Optional[str] = None,
        internal_prefixes: Optional[List[str]] = None,
        context: Optional[BrowserContext] = None,
        focus_timeout: Optional[float] = None,
    ) -> None:
        self._cdp_endpoint = cdp_endpoint or settings.cdp_endpoint
        self._assets_dir = Path(assets_dir or settings.agent_assets_dir)
        self._internal_prefixes = internal_prefixes
        self._focus_timeout = focus_timeout or settings.focus_check_timeout_seconds
        self._context = context
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._handler: Optional[MessageHandler] = None
        self._last_accessed: Dict[Any, float] = {}
        if context is not None:
            self._watch_context(context)

    async def __aenter__(self) -> "PageAgentBridge":
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # ── Connection ────────────────────────────────────────────────────────────

    async def connect(self) -> None:
        if self._context is not None:
            return
        self._playwright = await async_playwright().start()
        logger.info(f"Connecting to browser at {self._cdp_endpoint}")
        self._browser = await self._playwright.chromium.connect_over_cdp(self._cdp_endpoint)
        contexts = self._browser.contexts
        self._context = contexts[0] if contexts else await self._browser.new_context()
        self._watch_context(self._context)
        await self._context.expose_binding(self.BINDING_NAME, self._on_agent_message)
        logger.info(f"Connected: {len(self._context.pages)} open pages")

    async def close(self) -> None:
        # Connected over CDP: closing the Browser object only drops the
        # connection, the user's browser keeps running.
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    def on_message(self, handler: MessageHandler) -> None:
        """Register the coordinator entry point for messages sent by the agent."""
        self._handler = handler

    def _watch_context(self, context: Any) -> None:
        for page in context.pages:
            self._watch_page(page)
        context.on("page", self._watch_page)

    def _watch_page(self, page: Any) -> None:
        self._touch(page)
        page.on("framenavigated", lambda frame: self._touch(page) if frame == page.main_frame else None)
        page.on("close", lambda _: self._last_accessed.pop(page, None))

    def _touch(self, page: Any) -> None:
        self._last_accessed[page] = time.monotonic()

    async def _on_agent_message(self, source: Dict[str, Any], message: Dict[str, Any]) -> Dict[str, Any]:
        page = source.get("page")
        if page is not None:
            self._touch(page)
        if self._handler is None:
            logger.warning(f"Agent message dropped, no handler registered: {message.get('type')}")
            return {"success": False, "error": "Coordinator not ready"}
        return await self._handler(message, page)

    # ── Target selection ──────────────────────────────────────────────────────

    async def pages(self) -> List[PageInfo]:
        if self._context is None:
            return []
        infos: List[PageInfo] = []
        for page in self._context.pages:
            focused = False
            if is_content_url(page.url, self._internal_prefixes):
                try:
                    focused = bool(
                        await asyncio.wait_for(page.evaluate(FOCUS_SCRIPT), timeout=self._focus_timeout)
                    )
                except asyncio.TimeoutError:
                    # A page blocked by a dialog never answers.
                    logger.warning(f"Focus check timed out for {page.url}")
                except PlaywrightError as exc:
                    logger.debug(f"Focus check failed for {page.url}: {exc}")
            infos.append(
                PageInfo(
                    page=page,
                    url=page.url,
                    focused=focused,
                    last_accessed=self._last_accessed.get(page, 0.0),
                )
            )
        return infos

    async def find_target_page(self) -> PageInfo:
        target = select_target_page(await self.pages(), self._internal_prefixes)
        if target is None:
            raise NoTargetPage()
        logger.info(f"Using target page: {target.url}")
        return target

    # ── Agent installation & messaging ────────────────────────────────────────

    async def install(self, page: Any, agent: str = "selector") -> None:
        """Two-phase install: stylesheets first, then scripts."""
        styles, scripts = AGENT_ASSETS[agent]
        try:
            for name in styles:
                await page.add_style_tag(path=str(self._asset(name)))
            for name in scripts:
                await page.add_script_tag(path=str(self._asset(name)))
        except PlaywrightError as exc:
            logger.warning(f"Failed to install {agent} agent into {page.url}: {exc}")
            raise InjectionFailed(f"Could not install {agent} agent: {exc}") from exc
        self._touch(page)
        logger.info(f"Installed {agent} agent into {page.url}")

    def _asset(self, name: str) -> Path:
        path = self._assets_dir / name
        if not path.is_file():
            raise InjectionFailed(f"Agent asset not found: {path}")
        return path

    async def send(self, page: Any, message: AgentMessage) -> None:
        """Deliver a control message; delivery failures are logged, not raised."""
        try:
            await page.evaluate(SEND_SCRIPT, {"type": _AGENT_MESSAGE_TYPES[message]})
        except PlaywrightError as exc:
            logger.warning(f"Could not deliver '{message.value}' to {page.url}: {exc}")

    # ── Capture ───────────────────────────────────────────────────────────────

    async def capture_visible(self, page: Any) -> bytes:
        """PNG of the page's visible viewport."""
        try:
            return await page.screenshot(type="png", full_page=False)
        except PlaywrightError as exc:
            raise CaptureFailed(f"Screenshot capture failed: {exc}") from exc

    async def crop(self, page: Any, image: bytes, bounds: PixelBounds) -> bytes:
        """Crop ``image`` to ``bounds`` (CSS pixels) inside the page's rendering context."""
        try:
            data_url = await page.evaluate(
                CROP_SCRIPT,
                {"image": encode_data_url(image), "bounds": bounds.model_dump()},
            )
        except PlaywrightError as exc:
            raise CaptureFailed(f"Screenshot crop failed: {exc}") from exc
        if not data_url:
            raise CaptureFailed("Screenshot crop returned no image")
        return decode_data_url(data_url)
