"""Layout probes: horizontal overflow, small touch targets, truncated text."""

from __future__ import annotations

import time
from typing import Any, List

from ..knowledge import Issue, IssueType, Severity, ValidatorResult

OVERFLOW_JS = """
(vw) => {
  const maxWidth = Math.max(document.documentElement.scrollWidth, document.body ? document.body.scrollWidth : 0);
  const offenders = [];
  for (const el of document.querySelectorAll('body *')) {
    const rect = el.getBoundingClientRect();
    if (rect.width > 0 && rect.right > vw + 10) {
      let selector = el.tagName.toLowerCase();
      if (el.id) selector = '#' + el.id;
      else if (typeof el.className === 'string' && el.className.trim()) selector += '.' + el.className.trim().split(/\\s+/)[0];
      offenders.push({ selector, overflow: Math.round(rect.right - vw) });
      if (offenders.length >= 10) break;
    }
  }
  return { maxWidth, offenders };
}
"""

TOUCH_TARGETS_JS = """
(min) => {
  const small = [];
  const sel = 'button, a, input, select, textarea, [role="button"], [role="link"], [tabindex]:not([tabindex="-1"])';
  for (const el of document.querySelectorAll(sel)) {
    const rect = el.getBoundingClientRect();
    if (rect.width === 0 || rect.height === 0) continue;
    if (!el.offsetParent && getComputedStyle(el).position !== 'fixed') continue;
    if (rect.width >= min && rect.height >= min) continue;
    let selector = el.tagName.toLowerCase();
    if (el.id) selector = '#' + el.id;
    else if (el.getAttribute('data-testid')) selector = `[data-testid="${el.getAttribute('data-testid')}"]`;
    small.push({
      selector,
      width: Math.round(rect.width),
      height: Math.round(rect.height),
      label: el.getAttribute('aria-label') || (el.innerText || '').trim().slice(0, 30) || selector,
    });
  }
  return small;
}
"""

TRUNCATION_JS = """
() => {
  const out = [];
  for (const el of document.querySelectorAll('body *')) {
    const style = getComputedStyle(el);
    if (style.textOverflow === 'ellipsis' && style.overflow === 'hidden' && el.scrollWidth > el.clientWidth) {
      out.push(el.id ? '#' + el.id : el.tagName.toLowerCase());
      if (out.length >= 10) break;
    }
  }
  return out;
}
"""


class ResponsiveValidator:
    name = "responsive"

    def __init__(
        self,
        check_overflow: bool = True,
        check_touch_targets: bool = True,
        min_touch_target: int = 44,
        check_truncation: bool = True,
    ) -> None:
        self.check_overflow = check_overflow
        self.check_touch_targets = check_touch_targets
        self.min_touch_target = min_touch_target
        self.check_truncation = check_truncation

    async def validate(self, session: Any, viewport: str) -> ValidatorResult:
        start = time.perf_counter()
        issues: List[Issue] = []
        size = session.viewport_size()
        if not size:
            return ValidatorResult(self.name, issues, 0.0)

        if self.check_overflow:
            width = size["width"]
            overflow = await session.evaluate(OVERFLOW_JS, width)
            if overflow["maxWidth"] > width + 10:
                issues.append(
                    Issue(
                        type=IssueType.RESPONSIVE,
                        severity=Severity.SERIOUS,
                        rule="no-horizontal-scroll",
                        description=(
                            f"Page has horizontal overflow at {width}px width "
                            f"(content is {overflow['maxWidth']}px)"
                        ),
                        elements=tuple(o["selector"] for o in overflow["offenders"]),
                        viewport=viewport,
                        details={"viewport_width": width, "content_width": overflow["maxWidth"]},
                    )
                )

        # touch targets only matter where there is no mouse
        if self.check_touch_targets and viewport == "mobile":
            m = self.min_touch_target
            for target in await session.evaluate(TOUCH_TARGETS_JS, m):
                issues.append(
                    Issue(
                        type=IssueType.RESPONSIVE,
                        severity=Severity.MODERATE,
                        rule="touch-target-size",
                        description=(
                            f"Touch target \"{target['label']}\" is {target['width']}x{target['height']}px "
                            f"(minimum {m}x{m}px)"
                        ),
                        elements=(target["selector"],),
                        viewport=viewport,
                        details=target,
                    )
                )

        if self.check_truncation:
            truncated = await session.evaluate(TRUNCATION_JS)
            if truncated:
                issues.append(
                    Issue(
                        type=IssueType.RESPONSIVE,
                        severity=Severity.MINOR,
                        rule="text-truncation",
                        description=f"{len(truncated)} element(s) have truncated text",
                        elements=tuple(truncated),
                        viewport=viewport,
                    )
                )

        return ValidatorResult(self.name, issues, (time.perf_counter() - start) * 1000)
