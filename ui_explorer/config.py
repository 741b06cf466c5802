"""Run configuration: defaults, per-section merging and JSON loading."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv

from .errors import ConfigError
from .knowledge import VIEWPORTS
from .schemas import ActionSchema, SetupStep, setup_step_from_dict, schemas_from_list

logger = logging.getLogger(__name__)

_ENV_REF = re.compile(r"\$\{(\w+)\}")
_CAMEL = re.compile(r"(?<!^)(?=[A-Z])")

BROWSERS = ("chromium", "firefox", "webkit")


def _snake(name: str) -> str:
    return _CAMEL.sub("_", name).lower()


def _snake_keys(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {_snake(k): v for k, v in data.items()}


@dataclass
class ExplorationSettings:
    max_depth: int = 10
    max_states: int = 500
    max_actions_per_state: int = 50
    timeout_ms: int = 10000
    viewports: List[str] = field(default_factory=lambda: ["mobile", "desktop"])
    wait_for_network_idle: bool = True
    action_delay_ms: int = 100
    include_query: bool = True
    # links leaving the start origin are recorded but never followed
    same_origin_only: bool = True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExplorationSettings":
        values = _snake_keys(data)
        # the JSON format names these without the unit suffix
        if "timeout" in values:
            values["timeout_ms"] = values.pop("timeout")
        if "action_delay" in values:
            values["action_delay_ms"] = values.pop("action_delay")
        settings = _build(cls, values, "exploration")
        unknown = [v for v in settings.viewports if v not in VIEWPORTS]
        if unknown:
            raise ConfigError(f"Unknown viewports {unknown}; expected some of {sorted(VIEWPORTS)}")
        if settings.max_depth < 0 or settings.max_states < 1 or settings.max_actions_per_state < 1:
            raise ConfigError("exploration limits must be positive")
        return settings


DEFAULT_VALIDATORS: Dict[str, Dict[str, Any]] = {
    "accessibility": {"enabled": True, "ignored_rules": []},
    "responsive": {
        "enabled": True,
        "check_overflow": True,
        "check_touch_targets": True,
        "min_touch_target": 44,
        "check_truncation": True,
    },
    "console": {"enabled": True, "fail_on_error": False, "ignore_patterns": []},
    "network": {
        "enabled": True,
        "max_response_time": 5000,
        "fail_on_error": False,
        "ignore_patterns": [],
        "check_mixed_content": True,
    },
    "broken_links": {
        "enabled": False,
        "check_internal": True,
        "check_external": False,
        "timeout": 5000,
        "ignore_patterns": [],
        "follow_redirects": True,
    },
}


@dataclass
class ValidatorSettings:
    """Options per validator name; each section merges over its defaults."""

    options: Dict[str, Dict[str, Any]] = field(
        default_factory=lambda: {name: dict(opts) for name, opts in DEFAULT_VALIDATORS.items()}
    )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ValidatorSettings":
        settings = cls()
        for name, opts in data.items():
            key = _snake(name)
            if key not in DEFAULT_VALIDATORS:
                raise ConfigError(f"Unknown validator {name!r}; expected one of {sorted(DEFAULT_VALIDATORS)}")
            if isinstance(opts, bool):
                opts = {"enabled": opts}
            opts = _snake_keys(opts)
            unknown = set(opts) - set(DEFAULT_VALIDATORS[key])
            if unknown:
                raise ConfigError(f"Unknown {name} validator settings: {sorted(unknown)}")
            settings.options[key].update(opts)
        return settings

    def enabled(self, name: str) -> bool:
        return bool(self.options.get(name, {}).get("enabled", False))

    def get(self, name: str) -> Dict[str, Any]:
        return dict(self.options.get(name, {}))


@dataclass
class OutputSettings:
    dir: str = "./ui-explorer-reports"
    screenshots: bool = True
    screenshot_format: str = "png"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OutputSettings":
        settings = _build(cls, _snake_keys(data), "output")
        if settings.screenshot_format not in ("png", "jpeg"):
            raise ConfigError(f"screenshotFormat must be png or jpeg, got {settings.screenshot_format!r}")
        return settings


@dataclass
class ExplorerConfig:
    base_url: str
    start_urls: List[str] = field(default_factory=list)
    auth: Optional[str] = None
    cookies: List[Dict[str, Any]] = field(default_factory=list)
    extra_http_headers: Dict[str, str] = field(default_factory=dict)
    adapters: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    action_schemas: List[ActionSchema] = field(default_factory=list)
    test_data: Dict[str, Any] = field(default_factory=dict)
    validators: ValidatorSettings = field(default_factory=ValidatorSettings)
    exploration: ExplorationSettings = field(default_factory=ExplorationSettings)
    ignore: List[str] = field(default_factory=list)
    setup: List[SetupStep] = field(default_factory=list)
    headless: bool = True
    browser: str = "chromium"
    output: OutputSettings = field(default_factory=OutputSettings)

    def __post_init__(self) -> None:
        if not self.base_url:
            raise ConfigError("baseUrl is required")
        if self.browser not in BROWSERS:
            raise ConfigError(f"browser must be one of {BROWSERS}, got {self.browser!r}")
        if not self.start_urls:
            self.start_urls = [self.base_url]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExplorerConfig":
        """Build a config from the JSON shape, merging each section over its defaults."""
        values = _snake_keys(data)
        if "extra_h_t_t_p_headers" in values:
            values["extra_http_headers"] = values.pop("extra_h_t_t_p_headers")
        adapters = values.get("adapters") or {}
        if not isinstance(adapters, Mapping) or not all(isinstance(c, Mapping) for c in adapters.values()):
            raise ConfigError("adapters must map adapter names to config objects")
        return cls(
            base_url=values.get("base_url", ""),
            start_urls=list(values.get("start_urls") or []),
            auth=values.get("auth"),
            cookies=list(values.get("cookies") or []),
            extra_http_headers=dict(values.get("extra_http_headers") or {}),
            adapters={name: dict(conf) for name, conf in adapters.items()},
            action_schemas=schemas_from_list(values.get("action_schemas") or []),
            test_data=dict(values.get("test_data") or {}),
            validators=ValidatorSettings.from_dict(values.get("validators") or {}),
            exploration=ExplorationSettings.from_dict(values.get("exploration") or {}),
            ignore=list(values.get("ignore") or []),
            setup=[setup_step_from_dict(s) for s in values.get("setup") or []],
            headless=bool(values.get("headless", True)),
            browser=values.get("browser", "chromium"),
            output=OutputSettings.from_dict(values.get("output") or {}),
        )


def expand_env(value: Any) -> Any:
    """Replace ``${VAR}`` references in every string of a JSON-like value."""
    if isinstance(value, str):

        def _sub(match: "re.Match[str]") -> str:
            name = match.group(1)
            if name not in os.environ:
                raise ConfigError(f"Environment variable {name} is referenced in the config but not set")
            return os.environ[name]

        return _ENV_REF.sub(_sub, value)
    if isinstance(value, list):
        return [expand_env(v) for v in value]
    if isinstance(value, dict):
        return {k: expand_env(v) for k, v in value.items()}
    return value


def load_config(path: str) -> ExplorerConfig:
    load_dotenv()
    try:
        with open(path, "r", encoding="utf-8") as fh:
            raw = json.load(fh)
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Config file {path} is not valid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")
    logger.debug("Loaded config from %s", path)
    return ExplorerConfig.from_dict(expand_env(raw))


def _build(cls, values: Dict[str, Any], section: str):
    known = {f.name for f in fields(cls)}
    unknown = set(values) - known
    if unknown:
        raise ConfigError(f"Unknown {section} settings: {sorted(unknown)}")
    return cls(**values)
