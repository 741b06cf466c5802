"""Classify the requests a page made: failures, HTTP errors, slow responses, mixed content."""

from __future__ import annotations

import time
from typing import Any, Iterable, List, Optional
from urllib.parse import urlparse

from ..knowledge import Issue, IssueType, Severity, ValidatorResult
from .base import compile_patterns, matches_any

TRACKED_TYPES = ("xhr", "fetch", "document", "stylesheet", "script", "image")

_STATUS_TEXT = {
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    408: "Request Timeout",
    429: "Too Many Requests",
    500: "Internal Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
    504: "Gateway Timeout",
}


def _resource_severity(resource_type: str, failed: bool) -> Severity:
    if resource_type in ("script", "stylesheet", "document"):
        return Severity.CRITICAL if failed else Severity.SERIOUS
    if resource_type in ("xhr", "fetch"):
        return Severity.SERIOUS
    if resource_type in ("image", "font"):
        return Severity.MODERATE
    return Severity.MINOR


def truncate_url(url: str, limit: int = 60) -> str:
    if len(url) <= limit:
        return url
    parsed = urlparse(url)
    path = parsed.path + (f"?{parsed.query}" if parsed.query else "")
    if parsed.scheme and len(path) > limit - 10:
        return f"{parsed.scheme}://{parsed.netloc}/...{path[-30:]}"
    return url[: limit - 3] + "..."


class NetworkValidator:
    name = "network"

    def __init__(
        self,
        max_response_time: float = 5000,
        fail_on_error: bool = False,
        ignore_patterns: Optional[Iterable[Any]] = None,
        track_resource_types: Iterable[str] = TRACKED_TYPES,
        check_mixed_content: bool = True,
    ) -> None:
        self.max_response_time = max_response_time
        self.fail_on_error = fail_on_error
        self.ignore_patterns = compile_patterns(ignore_patterns or ())
        self.track_resource_types = set(track_resource_types)
        self.check_mixed_content = check_mixed_content

    async def validate(self, session: Any, viewport: str) -> ValidatorResult:
        start = time.perf_counter()
        page_is_https = session.url.startswith("https://")
        issues: List[Issue] = []
        for entry in session.network_log:
            if not self._tracked(entry):
                continue
            issues.extend(self.analyze(entry, viewport, page_is_https))
        return ValidatorResult(self.name, issues, (time.perf_counter() - start) * 1000)

    def analyze(self, entry: Any, viewport: str, page_is_https: bool = False) -> List[Issue]:
        issues: List[Issue] = []
        details = {
            "url": entry.url,
            "method": entry.method,
            "status": entry.status,
            "resource_type": entry.resource_type,
            "duration_ms": entry.duration_ms,
        }
        short = truncate_url(entry.url)

        if entry.error:
            issues.append(
                Issue(
                    type=IssueType.NETWORK,
                    severity=_resource_severity(entry.resource_type, failed=True),
                    rule="network-request-failed",
                    description=f"Network request failed: {short} ({entry.error})",
                    viewport=viewport,
                    help_url="https://developer.chrome.com/docs/devtools/network/reference/",
                    details={**details, "error": entry.error},
                )
            )

        if entry.status is not None and entry.status >= 400:
            server_error = entry.status >= 500
            severity = Severity.CRITICAL if server_error else _resource_severity(entry.resource_type, failed=False)
            if self.fail_on_error and not server_error and severity != Severity.CRITICAL:
                severity = Severity.SERIOUS
            issues.append(
                Issue(
                    type=IssueType.NETWORK,
                    severity=severity,
                    rule="network-server-error" if server_error else "network-client-error",
                    description=f"{entry.method} {short} returned {entry.status} {_STATUS_TEXT.get(entry.status, '')}".rstrip(),
                    viewport=viewport,
                    help_url=f"https://developer.mozilla.org/en-US/docs/Web/HTTP/Status/{entry.status}",
                    details=details,
                )
            )

        if entry.duration_ms is not None and entry.duration_ms > self.max_response_time:
            issues.append(
                Issue(
                    type=IssueType.NETWORK,
                    severity=Severity.MINOR,
                    rule="network-slow-response",
                    description=f"Slow response ({entry.duration_ms:.0f}ms): {short}",
                    viewport=viewport,
                    help_url="https://web.dev/performance/",
                    details={**details, "threshold_ms": self.max_response_time},
                )
            )

        if self.check_mixed_content and page_is_https and entry.url.startswith("http://"):
            blockable = entry.resource_type in ("script", "stylesheet", "xhr", "fetch")
            issues.append(
                Issue(
                    type=IssueType.NETWORK,
                    severity=Severity.SERIOUS if blockable else Severity.MODERATE,
                    rule="mixed-content",
                    description=f"Mixed content: {entry.resource_type} loaded over HTTP on HTTPS page",
                    viewport=viewport,
                    help_url="https://developer.mozilla.org/en-US/docs/Web/Security/Mixed_content",
                    details={"url": entry.url, "resource_type": entry.resource_type, "blockable": blockable},
                )
            )
        return issues

    def _tracked(self, entry: Any) -> bool:
        resource_type = entry.resource_type if entry.resource_type in TRACKED_TYPES + ("font",) else "other"
        if resource_type not in self.track_resource_types:
            return False
        return not matches_any(self.ignore_patterns, entry.url)
