"""Per-state validators and the factory that builds the enabled set."""

from typing import List

from .accessibility import AccessibilityValidator
from .base import Validator
from .broken_links import BrokenLinksValidator
from .console import ConsoleValidator
from .network import NetworkValidator
from .responsive import ResponsiveValidator


def build_validators(settings) -> List[Validator]:
    """Instantiate every validator enabled in a :class:`ValidatorSettings`."""
    validators: List[Validator] = []
    if settings.enabled("accessibility"):
        opts = settings.get("accessibility")
        validators.append(AccessibilityValidator(ignored_rules=opts.get("ignored_rules")))
    if settings.enabled("responsive"):
        opts = settings.get("responsive")
        validators.append(
            ResponsiveValidator(
                check_overflow=opts.get("check_overflow", True),
                check_touch_targets=opts.get("check_touch_targets", True),
                min_touch_target=opts.get("min_touch_target", 44),
                check_truncation=opts.get("check_truncation", True),
            )
        )
    if settings.enabled("console"):
        opts = settings.get("console")
        validators.append(
            ConsoleValidator(fail_on_error=opts.get("fail_on_error", False), ignore_patterns=opts.get("ignore_patterns"))
        )
    if settings.enabled("network"):
        opts = settings.get("network")
        validators.append(
            NetworkValidator(
                max_response_time=opts.get("max_response_time", 5000),
                fail_on_error=opts.get("fail_on_error", False),
                ignore_patterns=opts.get("ignore_patterns"),
                check_mixed_content=opts.get("check_mixed_content", True),
            )
        )
    if settings.enabled("broken_links"):
        opts = settings.get("broken_links")
        validators.append(
            BrokenLinksValidator(
                check_internal=opts.get("check_internal", True),
                check_external=opts.get("check_external", False),
                timeout=opts.get("timeout", 5000),
                ignore_patterns=opts.get("ignore_patterns"),
                follow_redirects=opts.get("follow_redirects", True),
            )
        )
    return validators


__all__ = [
    "AccessibilityValidator",
    "BrokenLinksValidator",
    "ConsoleValidator",
    "NetworkValidator",
    "ResponsiveValidator",
    "Validator",
    "build_validators",
]
