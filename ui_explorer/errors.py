"""Exception taxonomy used across the explorer.

Only :class:`AdapterConnectionError` and :class:`SessionCrashedError` are
allowed to leave the crawl loop; everything else is turned into data (a failed
transition, a failed verification or a logged skip).
"""


class ExplorerError(Exception):
    """Base class for every error raised by ui_explorer."""


class ConfigError(ExplorerError):
    """Invalid configuration or schema input."""


class BrowserActionError(ExplorerError):
    """A single browser interaction failed (missing, detached, not actionable)."""


class ActionTimeoutError(BrowserActionError):
    """A bounded wait expired."""


class NavigationError(BrowserActionError):
    """The page could not be navigated to the requested URL."""


class SessionCrashedError(ExplorerError):
    """The browser or page went away; the run cannot continue."""


class SetupStepError(ExplorerError):
    """A required setup step of an action schema failed."""

    def __init__(self, step, cause: Exception) -> None:
        super().__init__(f"Setup step {step!r} failed: {cause}")
        self.step = step
        self.cause = cause


class AdapterError(ExplorerError):
    """A backend adapter call failed."""


class AdapterConnectionError(AdapterError):
    """A configured adapter could not connect; fatal to the run."""
