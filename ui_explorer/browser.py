"""Playwright-backed browser sessions.

All runtime-level browser operations go through :class:`PageSession`, which
owns one page, the console/network logs recorded from its events, and the
translation of Playwright errors into the explorer's error taxonomy.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from playwright.async_api import (
    Browser,
    BrowserContext,
    ConsoleMessage,
    Error as PlaywrightError,
    Page,
    Playwright,
    Request,
    Response,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from .errors import (
    ActionTimeoutError,
    BrowserActionError,
    NavigationError,
    SessionCrashedError,
)
from .knowledge import Action, ActionType, PageObservation, Viewport

logger = logging.getLogger(__name__)

_CRASH_MARKERS = ("Target page, context or browser has been closed", "Browser has been closed", "Target closed", "crashed")


@dataclass
class NetworkEntry:
    url: str
    method: str
    resource_type: str
    started_at: float
    status: Optional[int] = None
    error: Optional[str] = None
    duration_ms: Optional[float] = None


@dataclass
class ConsoleEntry:
    message: str
    url: str = ""


OBSERVE_JS = """
(ignoreSelectors) => {
  const INTERACTIVE = 'a[href], button, input, select, textarea, summary, [onclick], [contenteditable="true"],' +
    '[role="button"], [role="link"], [role="tab"], [role="menuitem"], [role="checkbox"], [role="switch"], [role="option"]';
  const generatedId = (id) => !id || /^:r\\w*:$/.test(id) || /\\d{4,}/.test(id) || /[0-9a-f]{8}-[0-9a-f]{4}-/i.test(id);

  function cssPath(el) {
    if (el.id && !generatedId(el.id)) return '#' + CSS.escape(el.id);
    const testId = el.getAttribute('data-testid');
    if (testId) return `[data-testid="${testId}"]`;
    const name = el.getAttribute('name');
    if (name && ['input', 'select', 'textarea', 'button'].includes(el.tagName.toLowerCase())) {
      const sel = `${el.tagName.toLowerCase()}[name="${name}"]`;
      if (document.querySelectorAll(sel).length === 1) return sel;
    }
    const parts = [];
    let node = el;
    while (node && node.nodeType === 1 && node !== document.body) {
      if (node.id && !generatedId(node.id) && node !== el) {
        parts.unshift('#' + CSS.escape(node.id));
        break;
      }
      const tag = node.tagName.toLowerCase();
      const siblings = node.parentElement
        ? Array.from(node.parentElement.children).filter((s) => s.tagName === node.tagName)
        : [];
      parts.unshift(siblings.length > 1 ? `${tag}:nth-of-type(${siblings.indexOf(node) + 1})` : tag);
      node = node.parentElement;
    }
    if (node === document.body) parts.unshift('body');
    return parts.join(' > ');
  }

  function isVisible(el) {
    const rect = el.getBoundingClientRect();
    if (rect.width === 0 || rect.height === 0) return false;
    const style = window.getComputedStyle(el);
    return style.visibility !== 'hidden' && style.display !== 'none' && parseFloat(style.opacity || '1') > 0;
  }

  let modal = null;
  for (const dlg of document.querySelectorAll('dialog[open], [role="dialog"], [role="alertdialog"], [aria-modal="true"]')) {
    if (isVisible(dlg)) {
      modal = dlg.getAttribute('aria-label') || dlg.id || dlg.getAttribute('role') || 'dialog';
      break;
    }
  }

  const elements = [];
  for (const el of document.querySelectorAll(INTERACTIVE)) {
    const tag = el.tagName.toLowerCase();
    elements.push({
      tag,
      selector: cssPath(el),
      text: (el.innerText || el.value || '').trim().slice(0, 100),
      role: el.getAttribute('role') || '',
      type: tag === 'input' ? (el.getAttribute('type') || 'text') : '',
      name: el.getAttribute('name') || '',
      id: el.id || '',
      href: el.getAttribute('href') || '',
      ariaLabel: el.getAttribute('aria-label') || '',
      placeholder: el.getAttribute('placeholder') || '',
      testId: el.getAttribute('data-testid') || '',
      classes: Array.from(el.classList),
      options: tag === 'select' ? Array.from(el.options).filter((o) => !o.disabled).map((o) => o.value) : [],
      visible: isVisible(el),
      enabled: !el.disabled && el.getAttribute('aria-disabled') !== 'true',
      matchedIgnore: ignoreSelectors.filter((s) => { try { return el.closest(s) !== null; } catch (e) { return false; } }),
    });
  }
  return { url: location.href, title: document.title, modal, elements };
}
"""


class PageSession:
    """One live page driven by a single control flow.

    The console and network logs accumulate for the lifetime of the session;
    the crawler clears them once per visited-state validation pass.
    """

    def __init__(self, page: Page, timeout_ms: int = 10000) -> None:
        self.page = page
        self.timeout_ms = timeout_ms
        self.console_errors: List[ConsoleEntry] = []
        self.network_log: List[NetworkEntry] = []
        self._pending: Dict[int, NetworkEntry] = {}
        page.on("console", self._on_console)
        page.on("pageerror", self._on_page_error)
        page.on("request", self._on_request)
        page.on("response", self._on_response)
        page.on("requestfailed", self._on_request_failed)

    # --- properties -------------------------------------------------------
    @property
    def url(self) -> str:
        return self.page.url

    async def title(self) -> str:
        return await self._guard("read title", self.page.title())

    # --- navigation -------------------------------------------------------
    async def set_viewport(self, viewport: Viewport) -> None:
        await self._guard("resize viewport", self.page.set_viewport_size({"width": viewport.width, "height": viewport.height}))

    async def navigate(self, url: str, wait_for_network_idle: bool = True) -> None:
        wait_until = "networkidle" if wait_for_network_idle else "load"
        try:
            await self.page.goto(url, timeout=self.timeout_ms, wait_until=wait_until)
        except PlaywrightTimeoutError as exc:
            raise NavigationError(f"Navigation to {url} timed out after {self.timeout_ms}ms") from exc
        except PlaywrightError as exc:
            self._raise_if_crashed(exc)
            raise NavigationError(f"Navigation to {url} failed: {exc}") from exc

    async def settle(self, wait_for_network_idle: bool = True, delay_ms: int = 0) -> None:
        if wait_for_network_idle:
            try:
                await self.page.wait_for_load_state("networkidle", timeout=self.timeout_ms)
            except PlaywrightTimeoutError:
                logger.debug("Network did not go idle within %sms on %s", self.timeout_ms, self.url)
        if delay_ms:
            await self.page.wait_for_timeout(delay_ms)

    # --- interaction ------------------------------------------------------
    async def perform(self, action: Action) -> None:
        locator = self.page.locator(action.selector).first
        timeout = self.timeout_ms
        what = action.describe()
        await self._guard(what, locator.wait_for(state="visible", timeout=timeout))
        if action.type == ActionType.FILL:
            coro = locator.fill(action.value or "", timeout=timeout)
        elif action.type == ActionType.SELECT:
            coro = locator.select_option(action.value or "", timeout=timeout)
        elif action.type == ActionType.CHECK:
            coro = locator.check(timeout=timeout)
        elif action.type == ActionType.UNCHECK:
            coro = locator.uncheck(timeout=timeout)
        elif action.type == ActionType.HOVER:
            coro = locator.hover(timeout=timeout)
        elif action.type == ActionType.KEYPRESS:
            coro = locator.press(action.value or "Enter", timeout=timeout)
        elif action.type == ActionType.UPLOAD:
            coro = locator.set_input_files(action.value or [], timeout=timeout)
        else:
            coro = locator.click(timeout=timeout)
        await self._guard(what, coro)
        await self._close_popups()

    async def click(self, selector: str, timeout_ms: Optional[int] = None) -> None:
        await self._guard(f"click {selector}", self.page.click(selector, timeout=timeout_ms or self.timeout_ms))

    async def fill(self, selector: str, value: str, timeout_ms: Optional[int] = None) -> None:
        await self._guard(f"fill {selector}", self.page.fill(selector, value, timeout=timeout_ms or self.timeout_ms))

    async def select(self, selector: str, value: str, timeout_ms: Optional[int] = None) -> None:
        await self._guard(
            f"select {selector}", self.page.select_option(selector, value, timeout=timeout_ms or self.timeout_ms)
        )

    async def wait_for(self, selector: str, timeout_ms: Optional[int] = None) -> None:
        await self._guard(
            f"wait for {selector}", self.page.wait_for_selector(selector, timeout=timeout_ms or self.timeout_ms)
        )

    async def delay(self, ms: int) -> None:
        await self.page.wait_for_timeout(ms)

    # --- observation ------------------------------------------------------
    async def observe(self, ignore: Sequence[str] = ()) -> PageObservation:
        raw = await self._guard("observe page", self.page.evaluate(OBSERVE_JS, list(ignore)))
        return PageObservation.from_dict(raw)

    async def is_visible(self, selector: str) -> bool:
        return await self._guard(f"visibility of {selector}", self.page.locator(selector).first.is_visible())

    async def count(self, selector: str) -> int:
        return await self._guard(f"count {selector}", self.page.locator(selector).count())

    async def text_content(self, selector: str) -> str:
        return await self._guard(
            f"text of {selector}", self.page.locator(selector).first.inner_text(timeout=self.timeout_ms)
        )

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self._guard("evaluate script", self.page.evaluate(script, arg))

    async def screenshot(self, path: str) -> None:
        await self._guard("screenshot", self.page.screenshot(path=path, full_page=True))

    def viewport_size(self) -> Optional[Dict[str, int]]:
        return self.page.viewport_size

    # --- logs -------------------------------------------------------------
    def network_since(self, mark: int) -> List[NetworkEntry]:
        return list(self.network_log[mark:])

    def network_mark(self) -> int:
        return len(self.network_log)

    def clear_logs(self) -> None:
        self.console_errors.clear()
        self.network_log.clear()
        self._pending.clear()

    async def close(self) -> None:
        try:
            await self.page.close()
        except PlaywrightError as exc:
            logger.debug("Page close failed: %s", exc)

    # ------------------------------------------------------------------
    async def _guard(self, what: str, coro: Any) -> Any:
        try:
            return await coro
        except PlaywrightTimeoutError as exc:
            raise ActionTimeoutError(f"{what} timed out after {self.timeout_ms}ms") from exc
        except PlaywrightError as exc:
            self._raise_if_crashed(exc)
            raise BrowserActionError(f"{what} failed: {exc.message}") from exc

    @staticmethod
    def _raise_if_crashed(exc: PlaywrightError) -> None:
        if any(marker in str(exc) for marker in _CRASH_MARKERS):
            raise SessionCrashedError(str(exc)) from exc

    async def _close_popups(self) -> None:
        """Close tabs the action opened so the session stays single-page."""
        for other in self.page.context.pages:
            if other is not self.page:
                try:
                    await other.close()
                except PlaywrightError as exc:
                    logger.debug("Could not close popup %s: %s", other.url, exc)

    def _on_console(self, msg: ConsoleMessage) -> None:
        if msg.type == "error":
            self.console_errors.append(ConsoleEntry(message=msg.text, url=(msg.location or {}).get("url", "")))

    def _on_page_error(self, error: Any) -> None:
        self.console_errors.append(ConsoleEntry(message=str(error), url=self.page.url))

    def _on_request(self, request: Request) -> None:
        entry = NetworkEntry(
            url=request.url, method=request.method, resource_type=request.resource_type, started_at=time.time()
        )
        self._pending[id(request)] = entry
        self.network_log.append(entry)

    def _on_response(self, response: Response) -> None:
        entry = self._pending.pop(id(response.request), None)
        if entry is not None:
            entry.status = response.status
            entry.duration_ms = (time.time() - entry.started_at) * 1000

    def _on_request_failed(self, request: Request) -> None:
        entry = self._pending.pop(id(request), None)
        if entry is None:
            entry = NetworkEntry(request.url, request.method, request.resource_type, time.time())
            self.network_log.append(entry)
        entry.error = request.failure or "Request failed"
        entry.duration_ms = (time.time() - entry.started_at) * 1000


class PlaywrightBrowser:
    """Launches a browser and context; hands out one :class:`PageSession` per task."""

    def __init__(
        self,
        browser: str = "chromium",
        headless: bool = True,
        storage_state: Optional[str] = None,
        cookies: Optional[Iterable[Dict[str, Any]]] = None,
        extra_http_headers: Optional[Dict[str, str]] = None,
        timeout_ms: int = 10000,
    ) -> None:
        self.browser_name = browser
        self.headless = headless
        self.storage_state = storage_state
        self.cookies = list(cookies or [])
        self.extra_http_headers = dict(extra_http_headers or {})
        self.timeout_ms = timeout_ms
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self.browser_context: Optional[BrowserContext] = None

    async def __aenter__(self) -> "PlaywrightBrowser":
        self._playwright = await async_playwright().start()
        launcher = getattr(self._playwright, self.browser_name)
        self._browser = await launcher.launch(headless=self.headless)
        options: Dict[str, Any] = {}
        if self.storage_state:
            options["storage_state"] = self.storage_state
        if self.extra_http_headers:
            options["extra_http_headers"] = self.extra_http_headers
        self.browser_context = await self._browser.new_context(**options)
        if self.cookies:
            await self.browser_context.add_cookies(self.cookies)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.browser_context:
            await self.browser_context.close()
            self.browser_context = None
        if self._browser:
            await self._browser.close()
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

    async def new_session(self, viewport: Viewport) -> PageSession:
        if self.browser_context is None:
            raise RuntimeError("PlaywrightBrowser must be entered before creating sessions")
        try:
            page = await self.browser_context.new_page()
        except PlaywrightError as exc:
            raise SessionCrashedError(f"Cannot open a new page: {exc}") from exc
        session = PageSession(page, timeout_ms=self.timeout_ms)
        await session.set_viewport(viewport)
        return session
