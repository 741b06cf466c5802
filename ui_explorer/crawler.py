"""Breadth-first state-graph crawler – the exploration driver of UI Explorer."""

from __future__ import annotations

import logging
import os
import time
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Set
from urllib.parse import urlparse

from .action_catalog import ActionCatalog
from .adapters import AdapterRegistry, default_registry
from .config import ExplorerConfig
from .errors import BrowserActionError, ExplorerError, SessionCrashedError, SetupStepError
from .expectations import ExpectationEngine
from .fingerprint import Fingerprinter
from .input_generator import InputTextGenerator, resolve_test_data
from .knowledge import (
    VIEWPORTS,
    Action,
    ActionType,
    AppState,
    Coverage,
    DiscoveredAction,
    ExplorationResult,
    ExplorationSummary,
    ExplorationTask,
    Issue,
    PageObservation,
    StateGraph,
    StateTransition,
    VerificationResult,
    VerificationType,
)
from .replay import replay_path
from .schemas import ActionSchema, SetupStep
from .validators import Validator, build_validators

logger = logging.getLogger(__name__)

SETUP_STEP_TIMEOUT_MS = 5000


@dataclass
class CrawlEvent:
    """Progress notification: ``start``, ``state:discovered``, ``state:visited``,
    ``action:start``, ``action:complete``, ``action:error``, ``progress``, ``complete``."""

    type: str
    data: Dict[str, Any] = field(default_factory=dict)


EventHandler = Callable[[CrawlEvent], None]


class Crawler:
    """Owns the frontier, the visited set and the state graph of one run.

    ``browser`` hands out sessions (``await browser.new_session(viewport)``);
    every task gets a fresh one, drives it single-flow and closes it.
    """

    def __init__(
        self,
        config: ExplorerConfig,
        browser: Any,
        registry: Optional[AdapterRegistry] = None,
        validators: Optional[Sequence[Validator]] = None,
        input_generator: Optional[InputTextGenerator] = None,
        screenshot_dir: Optional[str] = None,
    ) -> None:
        self.config = config
        self.browser = browser
        self.settings = config.exploration
        self.registry = registry if registry is not None else default_registry()
        self.validators = list(validators) if validators is not None else build_validators(config.validators)
        self.input_generator = input_generator or InputTextGenerator()
        self.screenshot_dir = screenshot_dir

        self.fingerprinter = Fingerprinter(include_query=self.settings.include_query)
        self.catalog = ActionCatalog(max_actions=self.settings.max_actions_per_state)
        self.engine = ExpectationEngine(config.action_schemas, self.registry)

        self.graph = StateGraph()
        self.visited: Set[str] = set()
        self.frontier: Deque[ExplorationTask] = deque()
        self.coverage = Coverage()

        self._origins = {urlparse(u).netloc for u in [config.base_url, *config.start_urls]}
        self._discovered: Set[str] = set()
        self._urls: Set[str] = set()
        self._handlers: List[EventHandler] = []
        self._cancelled = False

    # ------------------------------------------------------------------
    def on(self, handler: EventHandler) -> EventHandler:
        self._handlers.append(handler)
        return handler

    def cancel(self) -> None:
        """Stop before the next task is dequeued; the running task completes."""
        self._cancelled = True

    # ------------------------------------------------------------------
    async def explore(self) -> ExplorationResult:
        start = time.perf_counter()
        self._emit("start", base_url=self.config.base_url)
        await self.registry.connect_all(self.config.adapters)
        try:
            for url in self.config.start_urls:
                for viewport in self.settings.viewports:
                    self.frontier.append(ExplorationTask(url=url, path=(), depth=0, viewport=viewport))

            while self.frontier:
                if self._cancelled:
                    logger.info("Exploration cancelled with %d task(s) pending", len(self.frontier))
                    break
                task = self.frontier.popleft()
                if task.depth > self.settings.max_depth:
                    logger.debug("Dropping task at depth %d (max %d)", task.depth, self.settings.max_depth)
                    continue
                if len(self.visited) >= self.settings.max_states:
                    logger.info("State limit of %d reached – stopping", self.settings.max_states)
                    break
                await self._explore_task(task)
                self._emit(
                    "progress",
                    visited=len(self.visited),
                    queued=len(self.frontier),
                    issues=len(self.graph.issues()),
                )
        finally:
            await self.registry.disconnect_all()
            self.graph.freeze()

        result = self._build_result((time.perf_counter() - start) * 1000)
        self._emit("complete", result=result)
        return result

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------
    async def _explore_task(self, task: ExplorationTask) -> None:
        session = await self.browser.new_session(VIEWPORTS[task.viewport])
        try:
            await self._explore_in_session(session, task)
        finally:
            await session.close()

    async def _explore_in_session(self, session: Any, task: ExplorationTask) -> None:
        if not await self._restore(session, task):
            return

        observation = await self._observe(session)
        if observation is None:
            return
        snapshots = await self.registry.capture_all()
        state = self.fingerprinter.capture(observation, task.viewport, snapshots)
        if state.id in self.visited:
            logger.debug("State %s already visited – discarding task for %s", state.id, task.url)
            return

        self.visited.add(state.id)
        self._urls.add(state.url)
        state = await self._screenshot(session, state)
        issues = await self._run_validators(session, state)
        session.clear_logs()
        self.graph.add_state(state, issues, start=task.depth == 0)
        logger.info("Visited state %s (%s, %s) with %d issue(s)", state.id, state.url, task.viewport, len(issues))
        self._emit("state:visited", state=state, issues=issues)

        discovered = await self._with_fill_values(observation, self.catalog.discover(observation, self.config.ignore))
        self.coverage.actions_discovered += len(discovered)
        matched = []
        candidates: List[DiscoveredAction] = []
        for action in discovered:
            schema = await self.engine.find_schema(action, state.url)
            if schema is not None:
                matched.append(action.key)
                if schema.destructive and not action.destructive:
                    action = replace(action, destructive=True)
            candidates.append(action)
        plan = self.catalog.prioritize(candidates, matched)

        for index, action in enumerate(plan):
            await self._explore_action(session, state, action, task)
            if index == len(plan) - 1:
                break
            # reset: back to the task's state before the next candidate
            if not await self._restore(session, task):
                logger.warning(
                    "Could not reset to %s after %s – ending task early", task.url, action.describe()
                )
                break

    async def _restore(self, session: Any, task: ExplorationTask) -> bool:
        """Navigate to the task URL, run global setup and replay the task's path."""
        try:
            await session.navigate(task.url, self.settings.wait_for_network_idle)
            await self._run_setup(session, self.config.setup)
        except (BrowserActionError, SetupStepError) as exc:
            logger.warning("Cannot open %s: %s", task.url, exc)
            return False
        if task.path:
            replayed = await replay_path(
                session, task.path, self.settings.wait_for_network_idle, self.settings.action_delay_ms
            )
            if replayed < len(task.path):
                logger.warning(
                    "Path for %s truncated after %d/%d step(s); continuing from reached state",
                    task.url,
                    replayed,
                    len(task.path),
                )
        return True

    async def _observe(self, session: Any) -> Optional[PageObservation]:
        try:
            return await session.observe(self.config.ignore)
        except BrowserActionError as exc:
            logger.warning("Observation failed on %s: %s", session.url, exc)
            return None

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------
    async def _explore_action(
        self, session: Any, state: AppState, action: DiscoveredAction, task: ExplorationTask
    ) -> None:
        self._emit("action:start", action=action, from_state=state.id)
        started = time.perf_counter()
        schema = await self.engine.find_schema(action, session.url)
        # everything that touched the page, in order, so replay reproduces the target state
        performed: List[Action] = []

        try:
            pre = await self.registry.capture_all()
            mark = session.network_mark()
            if schema is not None:
                performed.extend(await self._run_setup(session, schema.setup))
            await session.perform(action)
            performed.append(action.as_action())
            await session.settle(self.settings.wait_for_network_idle, self.settings.action_delay_ms)

            verifications: List[VerificationResult] = []
            expects = list(schema.expects) if schema is not None else []
            if schema is not None and schema.follow_up is not None:
                follow_up = await self._run_follow_up(session, schema.follow_up)
                if follow_up is None:
                    verifications.append(
                        VerificationResult(
                            passed=False,
                            message=f"Follow-up action for {schema.name()} was not found after {action.describe()}",
                            type=VerificationType.UI,
                            expected=schema.follow_up.name(),
                        )
                    )
                else:
                    performed.extend(follow_up)
                    expects.extend(schema.follow_up.expects)

            observation = await session.observe(self.config.ignore)
            post = await self.registry.capture_all()
            target = self.fingerprinter.capture(observation, task.viewport, post)
            if expects:
                verifications.extend(
                    await self.engine.verify(expects, session, pre, post, session.network_since(mark))
                )
        except SessionCrashedError:
            raise
        except ExplorerError as exc:
            logger.warning("Action %s failed on %s: %s", action.describe(), state.url, exc)
            transition = StateTransition(
                from_state=state.id,
                to_state=state.id,
                action=action.as_action(),
                viewport=task.viewport,
                success=False,
                error=str(exc),
                duration_ms=(time.perf_counter() - started) * 1000,
                schema=schema.name() if schema is not None else None,
            )
            self._record(transition, schema)
            self._emit("action:error", action=action, error=exc, transition=transition)
            return

        transition = StateTransition(
            from_state=state.id,
            to_state=target.id,
            action=action.as_action(),
            viewport=task.viewport,
            verifications=verifications,
            duration_ms=(time.perf_counter() - started) * 1000,
            schema=schema.name() if schema is not None else None,
        )
        self._record(transition, schema)
        self._emit("action:complete", transition=transition)
        self._maybe_enqueue(target, task, performed)

    def _maybe_enqueue(self, target: AppState, task: ExplorationTask, performed: List[Action]) -> None:
        if target.id in self.visited or target.id in self._discovered:
            return
        if len(self.visited) >= self.settings.max_states:
            # the current task drains its remaining actions, nothing new is scheduled
            return
        if self.settings.same_origin_only and urlparse(target.url).netloc not in self._origins:
            logger.info("Not following %s – outside the explored origin", target.url)
            return
        self._discovered.add(target.id)
        # the path replays from the task URL, so the new task keeps it as its navigation origin
        self.frontier.append(
            ExplorationTask(
                url=task.url,
                path=task.path + tuple(performed),
                depth=task.depth + 1,
                viewport=task.viewport,
            )
        )
        self._emit("state:discovered", state=target, depth=task.depth + 1)

    def _record(self, transition: StateTransition, schema: Optional[ActionSchema]) -> None:
        self.graph.add_transition(transition)
        self.coverage.actions_executed += 1
        if schema is not None:
            self.coverage.schemas_matched += 1

    async def _run_follow_up(self, session: Any, schema: ActionSchema) -> Optional[List[Action]]:
        """Perform the first action matching ``schema``; return its setup steps and the action, or None."""
        observation = await session.observe(self.config.ignore)
        for candidate in self.catalog.discover(observation, self.config.ignore):
            if await schema.match.matches(candidate, session.url):
                steps = await self._run_setup(session, schema.setup)
                await session.perform(candidate)
                await session.settle(self.settings.wait_for_network_idle, self.settings.action_delay_ms)
                return steps + [candidate.as_action()]
        return None

    async def _run_setup(self, session: Any, steps: Sequence[SetupStep]) -> List[Action]:
        """Run ``steps`` and return the page interactions that succeeded, as replayable actions.

        Waits and delays are not returned; replay settles after every step.
        """
        executed: List[Action] = []
        for step in steps:
            try:
                if step.delay_ms:
                    await session.delay(step.delay_ms)
                if step.wait_for:
                    await session.wait_for(step.wait_for, SETUP_STEP_TIMEOUT_MS)
                if step.click:
                    await session.click(step.click, SETUP_STEP_TIMEOUT_MS)
                    executed.append(Action(ActionType.CLICK, step.click))
                if step.fill:
                    value = resolve_test_data(step.value or "", self.config.test_data)
                    await session.fill(step.fill, value, SETUP_STEP_TIMEOUT_MS)
                    executed.append(Action(ActionType.FILL, step.fill, value=value))
                if step.select:
                    value = resolve_test_data(step.value or "", self.config.test_data)
                    await session.select(step.select, value, SETUP_STEP_TIMEOUT_MS)
                    executed.append(Action(ActionType.SELECT, step.select, value=value))
            except BrowserActionError as exc:
                if step.optional:
                    logger.debug("Optional setup step %s failed: %s", step, exc)
                    continue
                raise SetupStepError(step, exc) from exc
        return executed

    async def _with_fill_values(
        self, observation: PageObservation, actions: List[DiscoveredAction]
    ) -> List[DiscoveredAction]:
        elements = {e.selector: e for e in observation.elements}
        out = []
        for action in actions:
            if action.type == ActionType.FILL and action.value is None and action.selector in elements:
                value = await self.input_generator.generate(observation, elements[action.selector])
                action = replace(action, value=value)
            out.append(action)
        return out

    # ------------------------------------------------------------------
    # Per-state side work
    # ------------------------------------------------------------------
    async def _run_validators(self, session: Any, state: AppState) -> List[Issue]:
        issues: List[Issue] = []
        for validator in self.validators:
            try:
                result = await validator.validate(session, state.viewport)
            except SessionCrashedError:
                raise
            except Exception as exc:
                logger.warning("Validator %s failed on %s: %s", validator.name, state.url, exc)
                continue
            logger.debug("%s: %d issue(s) in %.0fms", result.validator, len(result.issues), result.duration_ms)
            issues.extend(replace(i, state_id=state.id, viewport=i.viewport or state.viewport) for i in result.issues)
        return issues

    async def _screenshot(self, session: Any, state: AppState) -> AppState:
        if not self.screenshot_dir or not self.config.output.screenshots:
            return state
        directory = os.path.join(self.screenshot_dir, "screenshots")
        os.makedirs(directory, exist_ok=True)
        path = os.path.join(directory, f"{state.id}.{self.config.output.screenshot_format}")
        try:
            await session.screenshot(path)
        except BrowserActionError as exc:
            logger.warning("Screenshot of %s failed: %s", state.url, exc)
            return state
        return replace(state, screenshot=path)

    # ------------------------------------------------------------------
    def _emit(self, event_type: str, **data: Any) -> None:
        event = CrawlEvent(event_type, data)
        for handler in self._handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", event_type)

    def _build_result(self, duration_ms: float) -> ExplorationResult:
        transitions = self.graph.transitions()
        verifications = self.graph.verifications()
        issues = self.graph.issues()
        self.coverage.urls_covered = sorted(self._urls)
        passed = sum(1 for v in verifications if v.passed)
        summary = ExplorationSummary(
            states_explored=len(self.graph),
            actions_performed=len(transitions),
            actions_failed=sum(1 for t in transitions if not t.success),
            issues_found=len(issues),
            verifications_passed=passed,
            verifications_failed=len(verifications) - passed,
            duration_ms=duration_ms,
            coverage=self.coverage,
            cancelled=self._cancelled,
        )
        return ExplorationResult(graph=self.graph, summary=summary, issues=issues, verifications=verifications)
