"""Lightweight in-page accessibility probes.

Not a full rule engine: a handful of WCAG checks that need nothing but the DOM
(image alternatives, accessible names of controls, form labels, document
language and title).
"""

from __future__ import annotations

import time
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..knowledge import Issue, IssueType, Severity, ValidatorResult

PROBE_JS = """
() => {
  const sel = (el) => {
    if (el.id) return '#' + CSS.escape(el.id);
    if (el.getAttribute('data-testid')) return `[data-testid="${el.getAttribute('data-testid')}"]`;
    if (el.getAttribute('name')) return `${el.tagName.toLowerCase()}[name="${el.getAttribute('name')}"]`;
    return el.tagName.toLowerCase();
  };
  const shown = (el) => {
    const r = el.getBoundingClientRect();
    const s = getComputedStyle(el);
    return r.width > 0 && r.height > 0 && s.visibility !== 'hidden' && s.display !== 'none';
  };
  const named = (el) => !!((el.innerText || '').trim() || el.getAttribute('aria-label') ||
    el.getAttribute('aria-labelledby') || el.getAttribute('title') ||
    el.querySelector('img[alt]:not([alt=""]), svg title'));
  const out = { 'image-alt': [], 'button-name': [], 'link-name': [], 'label': [] };
  for (const img of document.querySelectorAll('img')) {
    if (shown(img) && !img.hasAttribute('alt') && img.getAttribute('role') !== 'presentation') out['image-alt'].push(sel(img));
  }
  for (const b of document.querySelectorAll('button, [role="button"], input[type="submit"], input[type="button"]')) {
    if (!shown(b)) continue;
    if (b.tagName === 'INPUT' ? !(b.value || b.getAttribute('aria-label')) : !named(b)) out['button-name'].push(sel(b));
  }
  for (const a of document.querySelectorAll('a[href]')) {
    if (shown(a) && !named(a)) out['link-name'].push(sel(a));
  }
  const skip = ['hidden', 'submit', 'button', 'reset', 'image'];
  for (const f of document.querySelectorAll('input, select, textarea')) {
    if (!shown(f) || skip.includes((f.getAttribute('type') || '').toLowerCase())) continue;
    const labelled = (f.id && document.querySelector(`label[for="${CSS.escape(f.id)}"]`)) || f.closest('label') ||
      f.getAttribute('aria-label') || f.getAttribute('aria-labelledby') || f.getAttribute('title');
    if (!labelled) out['label'].push(sel(f));
  }
  return {
    rules: out,
    lang: document.documentElement.getAttribute('lang') || '',
    title: (document.title || '').trim(),
  };
}
"""

# rule -> (severity, description, help)
RULES: Dict[str, Tuple[Severity, str, str]] = {
    "image-alt": (Severity.CRITICAL, "Images must have alternate text", "https://dequeuniversity.com/rules/axe/4.8/image-alt"),
    "button-name": (Severity.CRITICAL, "Buttons must have discernible text", "https://dequeuniversity.com/rules/axe/4.8/button-name"),
    "link-name": (Severity.SERIOUS, "Links must have discernible text", "https://dequeuniversity.com/rules/axe/4.8/link-name"),
    "label": (Severity.CRITICAL, "Form elements must have labels", "https://dequeuniversity.com/rules/axe/4.8/label"),
    "html-has-lang": (Severity.SERIOUS, "<html> element must have a lang attribute", "https://dequeuniversity.com/rules/axe/4.8/html-has-lang"),
    "document-title": (Severity.SERIOUS, "Documents must have a <title> element", "https://dequeuniversity.com/rules/axe/4.8/document-title"),
}


class AccessibilityValidator:
    name = "accessibility"

    def __init__(self, ignored_rules: Optional[Iterable[str]] = None) -> None:
        self.ignored_rules = set(ignored_rules or ())

    async def validate(self, session: Any, viewport: str) -> ValidatorResult:
        start = time.perf_counter()
        probe = await session.evaluate(PROBE_JS)
        found: Dict[str, List[str]] = {rule: list(els) for rule, els in (probe.get("rules") or {}).items() if els}
        if not probe.get("lang"):
            found["html-has-lang"] = ["html"]
        if not probe.get("title"):
            found["document-title"] = ["html"]

        issues = []
        for rule, elements in found.items():
            if rule in self.ignored_rules or rule not in RULES:
                continue
            severity, description, help_url = RULES[rule]
            issues.append(
                Issue(
                    type=IssueType.ACCESSIBILITY,
                    severity=severity,
                    rule=rule,
                    description=description,
                    elements=tuple(elements[:20]),
                    help_url=help_url,
                    viewport=viewport,
                    details={"count": len(elements)},
                )
            )
        return ValidatorResult(self.name, issues, (time.perf_counter() - start) * 1000)
