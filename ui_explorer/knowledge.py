"""Data structures that form the *knowledge* backbone of UI Explorer.

An exploration run produces a :class:`StateGraph`: nodes are :class:`AppState`
snapshots keyed by their fingerprint id, edges are :class:`StateTransition`
records of one executed :class:`Action` together with the verification
results of the side-effects it was expected to have.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import networkx as nx


class ActionType(str, Enum):
    """Supported interaction primitives on the Web side."""

    CLICK = "click"
    FILL = "fill"
    SELECT = "select"
    CHECK = "check"
    UNCHECK = "uncheck"
    KEYPRESS = "keypress"
    HOVER = "hover"
    UPLOAD = "upload"


class Severity(str, Enum):
    CRITICAL = "critical"
    SERIOUS = "serious"
    MODERATE = "moderate"
    MINOR = "minor"


class IssueType(str, Enum):
    ACCESSIBILITY = "accessibility"
    RESPONSIVE = "responsive"
    CONSOLE = "console"
    NETWORK = "network"
    DATABASE = "database"
    API = "api"
    SERVICE = "service"
    FUNCTIONAL = "functional"


class VerificationType(str, Enum):
    DATABASE = "database"
    API = "api"
    UI = "ui"
    SERVICE = "service"


@dataclass(frozen=True)
class Viewport:
    name: str
    width: int
    height: int


VIEWPORTS: Dict[str, Viewport] = {
    "mobile": Viewport("mobile", 375, 667),
    "tablet": Viewport("tablet", 768, 1024),
    "desktop": Viewport("desktop", 1280, 720),
}


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class Action:
    """A replayable interaction.

    Only the textual description of the target is kept (a CSS selector), never
    a live element handle. Two actions are equal when their type, selector and
    value are equal; the label is informational.
    """

    type: ActionType
    selector: str
    label: str = ""
    value: Optional[str] = None
    tag: str = ""
    role: str = ""
    destructive: bool = False

    @property
    def key(self) -> Tuple[str, str, Optional[str]]:
        return (self.type.value, self.selector, self.value)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Action):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def describe(self) -> str:
        label = self.label or self.selector
        return f"{self.type.value} '{label}'"

    def to_json(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "selector": self.selector,
            "label": self.label,
            "value": self.value,
            "tag": self.tag,
            "role": self.role,
            "destructive": self.destructive,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Action":
        return cls(
            type=ActionType(data["type"]),
            selector=data["selector"],
            label=data.get("label", ""),
            value=data.get("value"),
            tag=data.get("tag", ""),
            role=data.get("role", ""),
            destructive=bool(data.get("destructive", False)),
        )


@dataclass(frozen=True, eq=False)
class DiscoveredAction(Action):
    """An action found on a live page, with its visibility at discovery time."""

    visible: bool = True
    enabled: bool = True

    def as_action(self) -> Action:
        return Action(
            type=self.type,
            selector=self.selector,
            label=self.label,
            value=self.value,
            tag=self.tag,
            role=self.role,
            destructive=self.destructive,
        )


# ---------------------------------------------------------------------------
# Page observations
# ---------------------------------------------------------------------------


@dataclass
class ElementInfo:
    """One interactive DOM element as reported by the in-page observation script."""

    tag: str
    selector: str
    text: str = ""
    role: str = ""
    input_type: str = ""
    name: str = ""
    element_id: str = ""
    href: str = ""
    aria_label: str = ""
    placeholder: str = ""
    test_id: str = ""
    classes: Tuple[str, ...] = ()
    options: Tuple[str, ...] = ()
    visible: bool = True
    enabled: bool = True
    matched_ignore: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ElementInfo":
        return cls(
            tag=str(data.get("tag", "")).lower(),
            selector=data.get("selector", ""),
            text=data.get("text", "") or "",
            role=data.get("role", "") or "",
            input_type=(data.get("type", "") or "").lower(),
            name=data.get("name", "") or "",
            element_id=data.get("id", "") or "",
            href=data.get("href", "") or "",
            aria_label=data.get("ariaLabel", "") or "",
            placeholder=data.get("placeholder", "") or "",
            test_id=data.get("testId", "") or "",
            classes=tuple(data.get("classes", []) or ()),
            options=tuple(data.get("options", []) or ()),
            visible=bool(data.get("visible", True)),
            enabled=bool(data.get("enabled", True)),
            matched_ignore=tuple(data.get("matchedIgnore", []) or ()),
        )


@dataclass
class PageObservation:
    url: str
    title: str = ""
    modal: Optional[str] = None
    elements: List[ElementInfo] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PageObservation":
        return cls(
            url=data.get("url", ""),
            title=data.get("title", "") or "",
            modal=data.get("modal"),
            elements=[ElementInfo.from_dict(e) for e in data.get("elements", [])],
        )


# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TableSnapshot:
    row_count: int
    checksum: Optional[str] = None
    recent_rows: Tuple[Dict[str, Any], ...] = field(default=(), compare=False)


@dataclass(frozen=True)
class DatabaseSnapshot:
    tables: Dict[str, TableSnapshot] = field(default_factory=dict)


@dataclass(frozen=True)
class AuthState:
    is_authenticated: bool
    user_id: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None


@dataclass(frozen=True)
class AppState:
    """Point-in-time snapshot of UI and backend. Immutable once built."""

    id: str
    url: str
    pathname: str
    title: str
    dom_fingerprint: str
    viewport: str
    modal: Optional[str] = None
    db_snapshot: Optional[DatabaseSnapshot] = None
    auth_state: Optional[AuthState] = None
    timestamp: float = field(default_factory=time.time, compare=False)
    screenshot: Optional[str] = field(default=None, compare=False)

    def to_json(self) -> Dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Findings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Issue:
    type: IssueType
    severity: Severity
    rule: str
    description: str
    elements: Tuple[str, ...] = ()
    help_url: Optional[str] = None
    state_id: Optional[str] = None
    viewport: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict, compare=False)

    def to_json(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        data["severity"] = self.severity.value
        data["elements"] = list(self.elements)
        return data


@dataclass
class VerificationResult:
    passed: bool
    message: str
    type: VerificationType
    expected: Any = None
    actual: Any = None
    details: Dict[str, Any] = field(default_factory=dict)
    duration_ms: Optional[float] = None

    def to_json(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        return data


@dataclass
class ValidatorResult:
    validator: str
    issues: List[Issue] = field(default_factory=list)
    duration_ms: float = 0.0


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------


@dataclass
class StateTransition:
    from_state: str
    to_state: str
    action: Action
    viewport: str
    verifications: List[VerificationResult] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)
    success: bool = True
    error: Optional[str] = None
    duration_ms: float = 0.0
    schema: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        return {
            "from_state": self.from_state,
            "to_state": self.to_state,
            "action": self.action.to_json(),
            "viewport": self.viewport,
            "verifications": [v.to_json() for v in self.verifications],
            "timestamp": self.timestamp,
            "success": self.success,
            "error": self.error,
            "duration_ms": self.duration_ms,
            "schema": self.schema,
        }


@dataclass
class StateNode:
    state: AppState
    issues: List[Issue] = field(default_factory=list)
    transitions: List[StateTransition] = field(default_factory=list)


class StateGraph:
    """Directed multigraph connecting app states via executed actions.

    Grows monotonically during a run and is frozen when the run completes.
    Edges may point at states that were never visited (the state cap was hit
    before their task was dequeued); such targets carry no node object.
    """

    def __init__(self) -> None:
        self._g: nx.MultiDiGraph = nx.MultiDiGraph()
        self.start_states: List[str] = []
        self.started_at: float = time.time()
        self.finished_at: Optional[float] = None
        self._frozen = False

    # --- state helpers ----------------------------------------------------
    def add_state(self, state: AppState, issues: List[Issue], start: bool = False) -> StateNode:
        self._check_mutable()
        node = StateNode(state=state, issues=list(issues))
        self._g.add_node(state.id, obj=node)
        if start and state.id not in self.start_states:
            self.start_states.append(state.id)
        return node

    def has_state(self, state_id: str) -> bool:
        return state_id in self._g and "obj" in self._g.nodes[state_id]

    def get_node(self, state_id: str) -> Optional[StateNode]:
        if self.has_state(state_id):
            return self._g.nodes[state_id]["obj"]
        return None

    def nodes(self) -> List[StateNode]:
        return [data["obj"] for _, data in self._g.nodes(data=True) if "obj" in data]

    def __len__(self) -> int:
        return len(self.nodes())

    # --- edge helpers -----------------------------------------------------
    def add_transition(self, transition: StateTransition) -> None:
        self._check_mutable()
        node = self.get_node(transition.from_state)
        if node is None:
            raise KeyError(f"Unknown source state {transition.from_state}")
        node.transitions.append(transition)
        self._g.add_edge(
            transition.from_state,
            transition.to_state,
            key=len(node.transitions) - 1,
            obj=transition,
        )

    def transitions(self) -> List[StateTransition]:
        return [t for node in self.nodes() for t in node.transitions]

    def issues(self) -> List[Issue]:
        return [i for node in self.nodes() for i in node.issues]

    def verifications(self) -> List[VerificationResult]:
        return [v for t in self.transitions() for v in t.verifications]

    # --- lifecycle --------------------------------------------------------
    def freeze(self) -> None:
        self.finished_at = time.time()
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def _check_mutable(self) -> None:
        if self._frozen:
            raise RuntimeError("State graph is frozen; the run has completed")

    # convenience ----------------------------------------------------------
    def to_networkx(self) -> nx.MultiDiGraph:
        return self._g

    def to_json(self) -> Dict[str, Any]:
        return {
            "start_states": list(self.start_states),
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "states": {
                node.state.id: {
                    "state": node.state.to_json(),
                    "issues": [i.to_json() for i in node.issues],
                    "transitions": [t.to_json() for t in node.transitions],
                }
                for node in self.nodes()
            },
        }


# ---------------------------------------------------------------------------
# Frontier and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExplorationTask:
    url: str
    path: Tuple[Action, ...]
    depth: int
    viewport: str


@dataclass
class Coverage:
    urls_covered: List[str] = field(default_factory=list)
    actions_discovered: int = 0
    actions_executed: int = 0
    schemas_matched: int = 0


@dataclass
class ExplorationSummary:
    states_explored: int
    actions_performed: int
    actions_failed: int
    issues_found: int
    verifications_passed: int
    verifications_failed: int
    duration_ms: float
    coverage: Coverage
    cancelled: bool = False


@dataclass
class ExplorationResult:
    graph: StateGraph
    summary: ExplorationSummary
    issues: List[Issue]
    verifications: List[VerificationResult]

    def to_json(self) -> Dict[str, Any]:
        return {
            "summary": asdict(self.summary),
            "issues": [i.to_json() for i in self.issues],
            "verifications": [v.to_json() for v in self.verifications],
            "graph": self.graph.to_json(),
        }
