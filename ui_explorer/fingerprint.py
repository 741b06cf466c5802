"""Turn a raw page/backend observation into an :class:`AppState` with a stable identity."""

from __future__ import annotations

import hashlib
import json
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlparse

from .knowledge import (
    AppState,
    AuthState,
    DatabaseSnapshot,
    ElementInfo,
    PageObservation,
    TableSnapshot,
)

# Classes that flip on every render or interaction and say nothing about the
# structure of the page.
_CHURN_CLASS = re.compile(
    r"(^|[-_])(anim|animate|animated|animating|transition|fade|fading|enter|leave|"
    r"active|hover|focus|focused|loading|pulse|spin|ripple|visible|hidden|show|open)([-_]|$)",
    re.IGNORECASE,
)
# CSS-in-JS / CSS-modules hashes: css-1x2y3z, sc-bdVaJa, Button_root__3xYz1
_HASHED_CLASS = re.compile(r"^(css|sc|jsx|emotion)-[\w-]+$|__[\w-]*\d[\w-]*$|^[a-z]{1,3}-[0-9a-f]{5,}$", re.IGNORECASE)
# Generated ids: React useId (:r1:), uuids, long numeric runs
_GENERATED_ID = re.compile(r"^:r\w*:$|[0-9a-f]{8}-[0-9a-f]{4}-|\d{4,}", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")

_MAX_TEXT = 80
_MAX_ELEMENTS = 512


class Fingerprinter:
    """Deterministic state identity over URL, viewport, DOM shape and backend shape.

    The DOM digest only looks at the currently interactive elements and at
    attributes that survive a fresh render, so a page that merely re-rendered
    (new animation classes, new generated ids) collapses into the state it
    was before. When adapter snapshots are passed in, their table row counts
    and auth state become part of the identity as well; the same UI is then a
    different node than in a run without adapters.
    """

    def __init__(self, include_query: bool = True) -> None:
        self.include_query = include_query

    # ------------------------------------------------------------------
    def capture(
        self,
        observation: PageObservation,
        viewport: str,
        adapter_snapshots: Optional[Mapping[str, Any]] = None,
    ) -> AppState:
        url_key = self.url_key(observation.url)
        dom_digest = self.dom_digest(observation)
        db_snapshot, auth_state = self._backend_state(adapter_snapshots or {})
        backend_digest = self.backend_digest(adapter_snapshots or {})
        state_id = self._identity(url_key, viewport, dom_digest, backend_digest)
        return AppState(
            id=state_id,
            url=observation.url,
            pathname=url_key,
            title=observation.title,
            dom_fingerprint=dom_digest,
            viewport=viewport,
            modal=observation.modal,
            db_snapshot=db_snapshot,
            auth_state=auth_state,
        )

    def signature(
        self,
        observation: PageObservation,
        viewport: str,
        adapter_snapshots: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """Return the identity `capture` would assign, without building a state."""
        return self._identity(
            self.url_key(observation.url),
            viewport,
            self.dom_digest(observation),
            self.backend_digest(adapter_snapshots or {}),
        )

    # ------------------------------------------------------------------
    def url_key(self, url: str) -> str:
        parsed = urlparse(url)
        key = parsed.path or "/"
        if self.include_query and parsed.query:
            key += "?" + "&".join(sorted(parsed.query.split("&")))
        # hash routes (#/settings, #!/settings) are navigation in SPAs, plain anchors are not
        fragment = parsed.fragment
        if fragment.startswith("/") or fragment.startswith("!/"):
            key += "#" + fragment.lstrip("!")
        return key

    def dom_digest(self, observation: PageObservation) -> str:
        parts: List[str] = [f"modal={observation.modal or ''}"]
        for element in observation.elements[:_MAX_ELEMENTS]:
            if not element.visible:
                continue
            parts.append(self._element_signature(element))
        return _sha256("\n".join(parts))[:16]

    def backend_digest(self, adapter_snapshots: Mapping[str, Any]) -> str:
        if not adapter_snapshots:
            return ""
        canon: Dict[str, Any] = {}
        for name in sorted(adapter_snapshots):
            snapshot = adapter_snapshots[name]
            if not isinstance(snapshot, Mapping):
                canon[name] = snapshot
                continue
            entry: Dict[str, Any] = {}
            tables = snapshot.get("tables")
            if isinstance(tables, Mapping):
                # sampled rows are excluded: they change with every insert timestamp
                entry["tables"] = {
                    t: (info.get("row_count") if isinstance(info, Mapping) else info)
                    for t, info in sorted(tables.items())
                }
            if "auth" in snapshot:
                entry["auth"] = snapshot["auth"]
            for key, value in sorted(snapshot.items()):
                if key not in ("tables", "auth", "recent_rows"):
                    entry[key] = value
            canon[name] = entry
        return _sha256(json.dumps(canon, sort_keys=True, default=str))[:16]

    # ------------------------------------------------------------------
    def _element_signature(self, element: ElementInfo) -> str:
        text = _WHITESPACE.sub(" ", element.text).strip()[:_MAX_TEXT]
        element_id = "" if _GENERATED_ID.search(element.element_id or "") else element.element_id
        href = ""
        if element.href:
            parsed = urlparse(element.href)
            href = parsed.path if (parsed.scheme or parsed.netloc) else element.href.split("?")[0]
        classes = sorted(c for c in element.classes if self._stable_class(c))
        fields = (
            element.tag,
            element.role,
            element.input_type,
            text,
            element_id,
            element.name,
            href,
            element.aria_label,
            element.test_id,
            element.placeholder,
            ".".join(classes),
            "" if element.enabled else "disabled",
        )
        return "|".join(fields)

    @staticmethod
    def _stable_class(name: str) -> bool:
        return bool(name) and not _CHURN_CLASS.search(name) and not _HASHED_CLASS.search(name)

    @staticmethod
    def _identity(url_key: str, viewport: str, dom_digest: str, backend_digest: str) -> str:
        combined = f"{url_key}|{viewport}|{dom_digest}|{backend_digest}"
        return _sha256(combined)[:16]

    @staticmethod
    def _backend_state(
        adapter_snapshots: Mapping[str, Any],
    ) -> Tuple[Optional[DatabaseSnapshot], Optional[AuthState]]:
        tables: Dict[str, TableSnapshot] = {}
        auth: Optional[AuthState] = None
        for snapshot in adapter_snapshots.values():
            if not isinstance(snapshot, Mapping):
                continue
            for table, info in (snapshot.get("tables") or {}).items():
                if isinstance(info, Mapping):
                    tables[table] = TableSnapshot(
                        row_count=int(info.get("row_count", 0)),
                        checksum=info.get("checksum"),
                        recent_rows=tuple(info.get("recent_rows") or ()),
                    )
            raw_auth = snapshot.get("auth")
            if isinstance(raw_auth, Mapping) and auth is None:
                auth = AuthState(
                    is_authenticated=bool(raw_auth.get("is_authenticated")),
                    user_id=raw_auth.get("user_id"),
                    email=raw_auth.get("email"),
                    role=raw_auth.get("role"),
                )
        return (DatabaseSnapshot(tables=tables) if tables else None), auth


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
