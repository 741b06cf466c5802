"""Report JavaScript errors logged to the console while a state was reached."""

from __future__ import annotations

import time
from typing import Any, Iterable, Optional

from ..knowledge import Issue, IssueType, Severity, ValidatorResult
from .base import compile_patterns, matches_any


class ConsoleValidator:
    name = "console"

    def __init__(self, fail_on_error: bool = False, ignore_patterns: Optional[Iterable[Any]] = None) -> None:
        self.fail_on_error = fail_on_error
        self.ignore_patterns = compile_patterns(ignore_patterns or ())

    async def validate(self, session: Any, viewport: str) -> ValidatorResult:
        start = time.perf_counter()
        severity = Severity.CRITICAL if self.fail_on_error else Severity.SERIOUS
        issues = []
        seen = set()
        for entry in session.console_errors:
            if entry.message in seen or matches_any(self.ignore_patterns, entry.message):
                continue
            seen.add(entry.message)
            issues.append(
                Issue(
                    type=IssueType.CONSOLE,
                    severity=severity,
                    rule="console-error",
                    description=f"Console error: {entry.message[:200]}",
                    viewport=viewport,
                    help_url="https://developer.chrome.com/docs/devtools/console/",
                    details={"message": entry.message, "url": entry.url},
                )
            )
        return ValidatorResult(self.name, issues, (time.perf_counter() - start) * 1000)
