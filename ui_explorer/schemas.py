"""Action schemas: declarative contracts binding an action pattern to its expected side-effects.

Schemas are configuration. They are read-only during a run and matched first
wins in declaration order. A matcher is a closed set of criteria (selector
substring, label pattern, ARIA role, URL context) plus one escape hatch, the
``custom`` predicate. The predicate is arbitrary code: it cannot be
serialised or sandboxed, so :func:`schema_from_dict` refuses it and it can
only be supplied from Python.
"""

from __future__ import annotations

import inspect
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Pattern, Sequence, Union

from .errors import ConfigError
from .knowledge import Action

TextPattern = Union[str, Pattern[str]]
CustomMatcher = Callable[[Action, str], Union[bool, Awaitable[bool]]]

CHANGE_KINDS = ("insert", "update", "delete", "unchanged")
HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")


def compile_pattern(pattern: TextPattern, flags: int = 0) -> Pattern[str]:
    if isinstance(pattern, str):
        return re.compile(pattern, flags)
    return pattern


@dataclass
class ActionMatcher:
    selector: Optional[str] = None
    text: Optional[TextPattern] = None
    role: Optional[str] = None
    context: Optional[TextPattern] = None
    custom: Optional[CustomMatcher] = None

    async def matches(self, action: Action, url: str) -> bool:
        if self.selector and self.selector not in action.selector:
            return False
        if self.text is not None and not compile_pattern(self.text, re.IGNORECASE).search(action.label):
            return False
        if self.role and action.role != self.role:
            return False
        if self.context is not None and not compile_pattern(self.context).search(url):
            return False
        if self.custom is not None:
            result = self.custom(action, url)
            if inspect.isawaitable(result):
                result = await result
            if not result:
                return False
        return True


@dataclass
class SetupStep:
    """One pre-action step. Exactly one of fill/click/select/wait_for is normally set."""

    fill: Optional[str] = None
    click: Optional[str] = None
    select: Optional[str] = None
    value: Optional[str] = None
    wait_for: Optional[str] = None
    delay_ms: Optional[int] = None
    optional: bool = False


@dataclass
class DatabaseExpectation:
    table: str
    change: str
    where: Dict[str, Any] = field(default_factory=dict)
    count: Optional[int] = None
    values: Dict[str, Any] = field(default_factory=dict)
    adapter: str = "supabase"

    def as_expects(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "change": self.change,
            "where": dict(self.where),
            "count": self.count,
            "values": dict(self.values),
        }


@dataclass
class ApiExpectation:
    endpoint: TextPattern
    method: Optional[str] = None
    status: Union[int, Sequence[int], None] = None
    max_response_time_ms: Optional[float] = None


@dataclass
class UiExpectation:
    visible: List[str] = field(default_factory=list)
    hidden: List[str] = field(default_factory=list)
    text: Dict[str, TextPattern] = field(default_factory=dict)
    url: Optional[TextPattern] = None
    title: Optional[TextPattern] = None


@dataclass
class ServiceExpectation:
    adapter: str
    action: str
    expects: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ActionExpectation:
    database: Optional[DatabaseExpectation] = None
    api: Optional[ApiExpectation] = None
    ui: Optional[UiExpectation] = None
    service: Optional[ServiceExpectation] = None


@dataclass
class ActionSchema:
    match: ActionMatcher
    setup: List[SetupStep] = field(default_factory=list)
    expects: List[ActionExpectation] = field(default_factory=list)
    destructive: bool = False
    follow_up: Optional["ActionSchema"] = None
    description: str = ""

    def name(self) -> str:
        if self.description:
            return self.description
        m = self.match
        text = m.text.pattern if hasattr(m.text, "pattern") else m.text
        return f"schema(selector={m.selector!r}, text={text!r}, role={m.role!r})"


# ---------------------------------------------------------------------------
# Loading from external configuration
# ---------------------------------------------------------------------------


def schemas_from_list(items: Sequence[Dict[str, Any]]) -> List[ActionSchema]:
    return [schema_from_dict(item) for item in items]


def schema_from_dict(data: Dict[str, Any], _nested: bool = False) -> ActionSchema:
    if not isinstance(data, dict):
        raise ConfigError(f"Action schema must be an object, got {type(data).__name__}")
    match_data = data.get("match") or {}
    if "custom" in match_data:
        raise ConfigError("Custom matcher predicates cannot be loaded from configuration")
    unknown = set(match_data) - {"selector", "text", "role", "context"}
    if unknown:
        raise ConfigError(f"Unknown matcher fields: {sorted(unknown)}")

    follow_up = None
    if data.get("followUp") or data.get("follow_up"):
        if _nested:
            raise ConfigError("followUp schemas may only be nested one level deep")
        follow_up = schema_from_dict(data.get("followUp") or data.get("follow_up"), _nested=True)

    return ActionSchema(
        match=ActionMatcher(
            selector=match_data.get("selector"),
            text=match_data.get("text"),
            role=match_data.get("role"),
            context=match_data.get("context"),
        ),
        setup=[setup_step_from_dict(s) for s in data.get("setup", [])],
        expects=[_expectation_from_dict(e) for e in data.get("expects", [])],
        destructive=bool(data.get("destructive", False)),
        follow_up=follow_up,
        description=data.get("description", ""),
    )


def setup_step_from_dict(data: Dict[str, Any]) -> SetupStep:
    return SetupStep(
        fill=data.get("fill"),
        click=data.get("click"),
        select=data.get("select"),
        value=data.get("value"),
        wait_for=data.get("waitFor", data.get("wait_for")),
        delay_ms=data.get("delay", data.get("delay_ms")),
        optional=bool(data.get("optional", False)),
    )


def _require(data: Dict[str, Any], section: str, *keys: str) -> None:
    missing = [k for k in keys if not data.get(k)]
    if missing:
        raise ConfigError(f"{section} expectation is missing {', '.join(missing)}")


def _expectation_from_dict(data: Dict[str, Any]) -> ActionExpectation:
    expectation = ActionExpectation()
    if "database" in data:
        db = data["database"]
        _require(db, "database", "table")
        if db.get("change") not in CHANGE_KINDS:
            raise ConfigError(f"Database change must be one of {CHANGE_KINDS}, got {db.get('change')!r}")
        expectation.database = DatabaseExpectation(
            table=db["table"],
            change=db["change"],
            where=dict(db.get("where") or {}),
            count=db.get("count"),
            values=dict(db.get("values") or {}),
            adapter=db.get("adapter", "supabase"),
        )
    if "api" in data:
        api = data["api"]
        _require(api, "api", "endpoint")
        method = api.get("method")
        if method is not None and method.upper() not in HTTP_METHODS:
            raise ConfigError(f"Unsupported HTTP method {method!r}")
        expectation.api = ApiExpectation(
            endpoint=api["endpoint"],
            method=method.upper() if method else None,
            status=api.get("status"),
            max_response_time_ms=api.get("maxResponseTime", api.get("max_response_time_ms")),
        )
    if "ui" in data:
        ui = data["ui"]
        expectation.ui = UiExpectation(
            visible=list(ui.get("visible", [])),
            hidden=list(ui.get("hidden", [])),
            text=dict(ui.get("text", {})),
            url=ui.get("url"),
            title=ui.get("title"),
        )
    if "service" in data:
        svc = data["service"]
        _require(svc, "service", "adapter", "action")
        expectation.service = ServiceExpectation(
            adapter=svc["adapter"],
            action=svc["action"],
            expects=dict(svc.get("expects") or {}),
        )
    return expectation
