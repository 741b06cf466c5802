"""Validator plugin contract."""

from __future__ import annotations

import re
from typing import Any, Iterable, List, Pattern, Protocol, runtime_checkable

from ..knowledge import ValidatorResult


@runtime_checkable
class Validator(Protocol):
    """Inspects the current page of a session and reports issues.

    Validators must not change the target application. They may read the
    console and network logs the session has gathered since the last clear.
    """

    name: str

    async def validate(self, session: Any, viewport: str) -> ValidatorResult: ...


def compile_patterns(patterns: Iterable[Any]) -> List[Pattern[str]]:
    return [re.compile(p) if isinstance(p, str) else p for p in patterns]


def matches_any(patterns: Iterable[Pattern[str]], text: str) -> bool:
    return any(p.search(text) for p in patterns)
