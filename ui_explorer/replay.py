"""Backtrack-by-replay: re-execute a recorded action path on a fresh page."""

from __future__ import annotations

import logging
from typing import Any, Sequence

from .errors import BrowserActionError, SetupStepError
from .knowledge import Action

logger = logging.getLogger(__name__)


async def replay_path(
    session: Any,
    path: Sequence[Action],
    wait_for_network_idle: bool = True,
    delay_ms: int = 0,
) -> int:
    """Replay ``path`` step by step and return how many steps succeeded.

    The first failing step abandons the rest of the path; the page is left in
    whatever state the successful prefix reached. Only a crashed session
    propagates.
    """
    for index, action in enumerate(path):
        try:
            await session.perform(action)
            await session.settle(wait_for_network_idle, delay_ms)
        except (BrowserActionError, SetupStepError) as exc:
            logger.warning(
                "Replay stopped at step %d/%d (%s) on %s: %s",
                index + 1,
                len(path),
                action.describe(),
                session.url,
                exc,
            )
            return index
    return len(path)
