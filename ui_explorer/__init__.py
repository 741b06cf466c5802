"""UI Explorer: explore a running web application as a state graph and judge every transition.

Key sub-modules:

knowledge.py        – Core data models: actions, app states, issues, verification results and the state graph.
fingerprint.py      – State identity over URL, viewport, interactive-DOM shape and backend snapshots.
action_catalog.py   – Candidate action discovery and exploration-order prioritisation.
input_generator.py  – Values for input boxes (heuristics, optional LLM) and test-data placeholders.
schemas.py          – Declarative action schemas: matchers, setup steps and expected side-effects.
expectations.py     – Evaluation of schema expectations against pre/post snapshots and the live page.
adapters/           – Backend verifiers (database, payments, AI service) and their registry.
validators/         – Per-state checks (accessibility, layout, console, network, broken links).
browser.py          – Playwright sessions; every runtime-level browser operation goes through them.
replay.py           – Backtrack-by-replay of recorded action paths.
crawler.py          – The breadth-first exploration loop.
report.py           – result.json and GraphML output.
"""

from .config import ExplorerConfig, load_config
from .crawler import Crawler, CrawlEvent
from .knowledge import ExplorationResult

__all__ = ["Crawler", "CrawlEvent", "ExplorationResult", "ExplorerConfig", "load_config"]
