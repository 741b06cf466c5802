"""Match performed actions to schemas and evaluate their expected side-effects."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Any, Awaitable, Dict, List, Mapping, Optional, Sequence, Union

from .adapters.base import AdapterRegistry
from .errors import BrowserActionError
from .knowledge import Action, VerificationResult, VerificationType
from .schemas import ActionExpectation, ActionSchema, ApiExpectation, UiExpectation, compile_pattern

logger = logging.getLogger(__name__)


class ExpectationEngine:
    """Evaluate the expectations of a matched :class:`ActionSchema`.

    Every expectation yields its own :class:`VerificationResult`; a failing
    or raising check never hides the outcome of the others. Adapter checks
    are read-only and run concurrently; page checks run one after the other
    on the single live session.
    """

    def __init__(self, schemas: Sequence[ActionSchema], registry: AdapterRegistry) -> None:
        self.schemas = list(schemas)
        self.registry = registry

    async def find_schema(self, action: Action, url: str) -> Optional[ActionSchema]:
        for schema in self.schemas:
            if await schema.match.matches(action, url):
                return schema
        return None

    async def verify(
        self,
        expects: Sequence[ActionExpectation],
        session: Any,
        pre_snapshots: Optional[Mapping[str, Any]] = None,
        post_snapshots: Optional[Mapping[str, Any]] = None,
        network: Sequence[Any] = (),
    ) -> List[VerificationResult]:
        pre = pre_snapshots or {}
        post = post_snapshots or {}
        slots: List[Union[VerificationResult, Awaitable[VerificationResult]]] = []

        for expectation in expects:
            if expectation.database is not None:
                db = expectation.database
                payload: Dict[str, Any] = db.as_expects()
                payload["before"] = pre.get(db.adapter)
                payload["after"] = post.get(db.adapter)
                slots.append(self.registry.verify(db.adapter, db.change, payload, VerificationType.DATABASE))
            if expectation.service is not None:
                svc = expectation.service
                payload = dict(svc.expects)
                payload["before"] = pre.get(svc.adapter)
                slots.append(self.registry.verify(svc.adapter, svc.action, payload, VerificationType.SERVICE))
            if expectation.api is not None:
                slots.append(self.check_api(expectation.api, network))
            if expectation.ui is not None:
                slots.extend(await self.check_ui(expectation.ui, session))

        pending = [(i, s) for i, s in enumerate(slots) if not isinstance(s, VerificationResult)]
        if pending:
            outcomes = await asyncio.gather(*(s for _, s in pending), return_exceptions=True)
            for (i, _), outcome in zip(pending, outcomes):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    outcome = VerificationResult(
                        passed=False,
                        message=f"Verification raised: {outcome}",
                        type=VerificationType.SERVICE,
                        details={"error": repr(outcome)},
                    )
                slots[i] = outcome
        return list(slots)  # type: ignore[arg-type]

    # ------------------------------------------------------------------
    async def check_ui(self, ui: UiExpectation, session: Any) -> List[VerificationResult]:
        results: List[VerificationResult] = []

        for selector in ui.visible:
            start = time.perf_counter()
            try:
                visible = await session.is_visible(selector)
            except BrowserActionError as exc:
                results.append(_ui_result(False, f"Element {selector} could not be checked: {exc}", "visible", "error", start))
                continue
            message = f"Element {selector} is visible" if visible else f"Element {selector} is not visible"
            results.append(_ui_result(visible, message, "visible", "visible" if visible else "hidden", start))

        for selector in ui.hidden:
            start = time.perf_counter()
            try:
                visible = await session.is_visible(selector)
            except BrowserActionError:
                # an element that cannot be found is hidden
                visible = False
            message = f"Element {selector} is still visible" if visible else f"Element {selector} is hidden"
            results.append(_ui_result(not visible, message, "hidden", "visible" if visible else "hidden", start))

        for selector, pattern in ui.text.items():
            start = time.perf_counter()
            regex = compile_pattern(pattern)
            try:
                text = await session.text_content(selector)
            except BrowserActionError as exc:
                results.append(_ui_result(False, f"Text of {selector} could not be read: {exc}", regex.pattern, None, start))
                continue
            passed = bool(regex.search(text or ""))
            message = (
                f"Text of {selector} matches {regex.pattern!r}"
                if passed
                else f"Text of {selector} ({_clip(text)!r}) does not match {regex.pattern!r}"
            )
            results.append(_ui_result(passed, message, regex.pattern, text, start))

        if ui.url is not None:
            start = time.perf_counter()
            regex = compile_pattern(ui.url)
            current = session.url
            passed = bool(regex.search(current))
            message = f"URL matches {regex.pattern}" if passed else f"URL {current} does not match {regex.pattern}"
            results.append(_ui_result(passed, message, regex.pattern, current, start))

        if ui.title is not None:
            start = time.perf_counter()
            regex = compile_pattern(ui.title)
            try:
                title = await session.title()
            except BrowserActionError as exc:
                results.append(_ui_result(False, f"Title could not be read: {exc}", regex.pattern, None, start))
            else:
                passed = bool(regex.search(title or ""))
                message = (
                    f"Title matches {regex.pattern!r}" if passed else f"Title {title!r} does not match {regex.pattern!r}"
                )
                results.append(_ui_result(passed, message, regex.pattern, title, start))

        return results

    @staticmethod
    def check_api(api: ApiExpectation, network: Sequence[Any]) -> VerificationResult:
        """Judge the requests seen since the action started against one API expectation."""
        # a plain string is a URL substring, a compiled pattern a regex
        endpoint = api.endpoint if isinstance(api.endpoint, str) else api.endpoint.pattern
        regex = re.compile(re.escape(api.endpoint)) if isinstance(api.endpoint, str) else api.endpoint
        candidates = [
            entry
            for entry in network
            if regex.search(entry.url) and (api.method is None or entry.method.upper() == api.method)
        ]
        label = f"{api.method or 'ANY'} {endpoint}"
        expected: Dict[str, Any] = {"endpoint": endpoint, "method": api.method}
        if api.status is not None:
            expected["status"] = api.status
        if api.max_response_time_ms is not None:
            expected["max_response_time_ms"] = api.max_response_time_ms

        if not candidates:
            return VerificationResult(
                passed=False,
                message=f"No request matching {label} was made",
                type=VerificationType.API,
                expected=expected,
                actual=None,
            )

        allowed = _allowed_statuses(api.status)
        failures: List[str] = []
        for entry in candidates:
            problems = []
            if entry.status is None:
                problems.append(f"failed ({entry.error or 'no response'})")
            elif allowed is not None and entry.status not in allowed:
                problems.append(f"status {entry.status}")
            elif allowed is None and entry.status >= 400:
                problems.append(f"status {entry.status}")
            if (
                api.max_response_time_ms is not None
                and entry.duration_ms is not None
                and entry.duration_ms > api.max_response_time_ms
            ):
                problems.append(f"took {entry.duration_ms:.0f}ms")
            if not problems:
                return VerificationResult(
                    passed=True,
                    message=f"{label} responded with {entry.status}",
                    type=VerificationType.API,
                    expected=expected,
                    actual={"url": entry.url, "status": entry.status, "duration_ms": entry.duration_ms},
                )
            failures.append(f"{entry.url}: {', '.join(problems)}")

        last = candidates[-1]
        return VerificationResult(
            passed=False,
            message=f"{label} did not meet expectations: {'; '.join(failures[:3])}",
            type=VerificationType.API,
            expected=expected,
            actual={"url": last.url, "status": last.status, "duration_ms": last.duration_ms},
        )


def _allowed_statuses(status: Any) -> Optional[List[int]]:
    if status is None:
        return None
    if isinstance(status, int):
        return [status]
    return [int(s) for s in status]


def _ui_result(passed: bool, message: str, expected: Any, actual: Any, start: float) -> VerificationResult:
    return VerificationResult(
        passed=passed,
        message=message,
        type=VerificationType.UI,
        expected=expected,
        actual=actual,
        duration_ms=(time.perf_counter() - start) * 1000,
    )


def _clip(text: Optional[str], limit: int = 60) -> str:
    text = text or ""
    return text if len(text) <= limit else text[: limit - 3] + "..."
