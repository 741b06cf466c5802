"""Out-of-band liveness checks for the anchors of a page."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlparse

import httpx

from ..knowledge import Issue, IssueType, Severity, ValidatorResult
from .base import compile_patterns, matches_any

logger = logging.getLogger(__name__)

WORKERS = 5
USER_AGENT = "UI-Explorer Link Checker/1.0"

EXTRACT_LINKS_JS = """
() => {
  const skip = ['#', 'mailto:', 'tel:', 'javascript:', 'data:'];
  const links = [];
  document.querySelectorAll('a[href]').forEach((anchor, index) => {
    const href = anchor.getAttribute('href');
    if (!href || skip.some((p) => href.startsWith(p))) return;
    let url;
    try { url = new URL(href, location.href); } catch (e) { return; }
    let selector;
    if (anchor.id) selector = '#' + CSS.escape(anchor.id);
    else if (anchor.getAttribute('data-testid')) selector = `[data-testid="${anchor.getAttribute('data-testid')}"]`;
    else selector = `a[href="${href}"]`;
    links.push({
      href: url.href,
      text: (anchor.innerText || href).trim().slice(0, 50),
      selector,
      external: url.origin !== location.origin,
    });
  });
  return links;
}
"""


@dataclass(frozen=True)
class LinkInfo:
    href: str
    text: str = ""
    selector: str = "a"
    external: bool = False


@dataclass
class LinkCheck:
    link: LinkInfo
    status: Optional[int] = None
    error: Optional[str] = None
    redirects: List[str] = field(default_factory=list)
    duration_ms: float = 0.0


class BrokenLinksValidator:
    """HEAD every link (GET when HEAD is refused) with a fixed pool of workers.

    Results are cached per URL for the lifetime of the validator, so a link
    shared by many states is probed once per run.
    """

    name = "broken_links"

    def __init__(
        self,
        check_internal: bool = True,
        check_external: bool = False,
        timeout: float = 5000,
        ignore_patterns: Optional[Iterable[Any]] = None,
        follow_redirects: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.check_internal = check_internal
        self.check_external = check_external
        self.timeout = timeout
        self.ignore_patterns = compile_patterns(ignore_patterns or ())
        self.follow_redirects = follow_redirects
        self._transport = transport
        self._cache: Dict[str, LinkCheck] = {}

    async def validate(self, session: Any, viewport: str) -> ValidatorResult:
        start = time.perf_counter()
        links = [l for l in await self.extract_links(session) if self.should_check(l, session.url)]
        issues = await self.check_links(links, viewport)
        return ValidatorResult(self.name, issues, (time.perf_counter() - start) * 1000)

    async def extract_links(self, session: Any) -> List[LinkInfo]:
        raw = await session.evaluate(EXTRACT_LINKS_JS)
        return [
            LinkInfo(href=item["href"], text=item.get("text", ""), selector=item.get("selector", "a"), external=bool(item.get("external")))
            for item in raw or []
        ]

    def should_check(self, link: LinkInfo, page_url: str) -> bool:
        if link.external and not self.check_external:
            return False
        if not link.external and not self.check_internal:
            return False
        if matches_any(self.ignore_patterns, link.href):
            return False
        target, page = urlparse(link.href), urlparse(page_url)
        if not target.scheme.startswith("http"):
            return False
        # same document, only the fragment differs
        return not (target.netloc == page.netloc and target.path == page.path and target.query == page.query)

    async def check_links(self, links: Iterable[LinkInfo], viewport: str) -> List[Issue]:
        queue: "asyncio.Queue[LinkInfo]" = asyncio.Queue()
        for link in links:
            queue.put_nowait(link)
        if queue.empty():
            return []
        results: List[LinkCheck] = []

        async with httpx.AsyncClient(
            timeout=self.timeout / 1000,
            follow_redirects=self.follow_redirects,
            headers={"User-Agent": USER_AGENT},
            transport=self._transport,
        ) as client:

            async def worker() -> None:
                while True:
                    try:
                        link = queue.get_nowait()
                    except asyncio.QueueEmpty:
                        return
                    try:
                        results.append(await self.check_link(client, link))
                    finally:
                        queue.task_done()

            await asyncio.gather(*(worker() for _ in range(min(WORKERS, queue.qsize()))))

        issues = []
        for result in results:
            issue = self.to_issue(result, viewport)
            if issue is not None:
                issues.append(issue)
        return issues

    async def check_link(self, client: httpx.AsyncClient, link: LinkInfo) -> LinkCheck:
        cached = self._cache.get(link.href)
        if cached is not None:
            return replace(cached, link=link)
        result = LinkCheck(link=link)
        start = time.perf_counter()
        try:
            response = await client.head(link.href)
            if response.status_code == 405:
                response = await client.get(link.href)
            result.status = response.status_code
            result.redirects = [str(r.url) for r in response.history]
        except httpx.TimeoutException:
            result.error = "Timeout"
        except httpx.TransportError as exc:
            result.error = f"Connection failed: {exc}"
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            result.error = f"Request failed: {exc}"
        result.duration_ms = (time.perf_counter() - start) * 1000
        logger.debug("Link %s -> %s", link.href, result.status or result.error)
        self._cache[link.href] = result
        return result

    def to_issue(self, result: LinkCheck, viewport: str) -> Optional[Issue]:
        link, status, error = result.link, result.status, result.error
        if status is not None and 200 <= status < 400:
            return None

        if error == "Timeout":
            severity, rule = Severity.MODERATE, "link-timeout"
            description = f'Link timed out after {self.timeout:.0f}ms: "{link.text}"'
        elif error:
            severity, rule = Severity.SERIOUS, "link-connection-error"
            description = f'Link connection failed: "{link.text}" ({error})'
        elif status == 404:
            severity, rule = Severity.SERIOUS, "broken-link-404"
            description = f'Broken link (404 Not Found): "{link.text}"'
        elif status is not None and status >= 500:
            severity, rule = Severity.CRITICAL, "broken-link-server-error"
            description = f'Link returns server error ({status}): "{link.text}"'
        elif status is not None and status >= 400:
            severity, rule = Severity.MODERATE, "broken-link-client-error"
            description = f'Link returns error ({status}): "{link.text}"'
        else:
            severity, rule = Severity.MINOR, "link-unknown-status"
            description = f'Link returned unexpected status: "{link.text}"'

        return Issue(
            type=IssueType.NETWORK,
            severity=severity,
            rule=rule,
            description=description,
            elements=(link.selector,),
            help_url="https://developer.mozilla.org/en-US/docs/Web/HTTP/Status",
            viewport=viewport,
            details={
                "href": link.href,
                "status": status,
                "error": error,
                "external": link.external,
                "duration_ms": result.duration_ms,
                "redirects": result.redirects,
            },
        )

    def clear_cache(self) -> None:
        self._cache.clear()
