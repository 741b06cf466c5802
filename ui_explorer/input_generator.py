"""Content-aware input text for fill actions, and ``{{testData.KEY}}`` resolution."""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Callable, Dict, Mapping, Optional, Union

from openai import AsyncOpenAI, OpenAIError

from .knowledge import ElementInfo, PageObservation

logger = logging.getLogger(__name__)

TestDataValue = Union[str, int, float, bool, Callable[[], Any]]

_PLACEHOLDER = re.compile(r"\{\{testData\.(\w+)\}\}")


def resolve_test_data(value: str, test_data: Optional[Mapping[str, TestDataValue]]) -> str:
    """Substitute ``{{testData.KEY}}`` placeholders.

    Callables in the table are invoked once per placeholder occurrence; keys
    missing from the table are left untouched.
    """
    if not test_data or not value:
        return value

    def _sub(match: "re.Match[str]") -> str:
        key = match.group(1)
        if key not in test_data:
            return match.group(0)
        generator = test_data[key]
        if callable(generator):
            return str(generator())
        return str(generator)

    return _PLACEHOLDER.sub(_sub, value)


class InputTextGenerator:
    """Pick a plausible value for an input box.

    Heuristics on the element's type/name/placeholder cover the common cases.
    When an OpenAI key is configured the model is asked for a value that fits
    the page; any failure falls back to the heuristic. Values are cached per
    selector so a path replays with exactly the values it was recorded with.
    """

    def __init__(
        self,
        openai_api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self._model = model
        api_key = openai_api_key or os.getenv("OPENAI_API_KEY", "")
        self._client = client or (AsyncOpenAI(api_key=api_key) if api_key else None)
        self._cache: Dict[str, str] = {}
        self.token_usage: int = 0

    async def generate(self, observation: PageObservation, element: ElementInfo) -> str:
        if element.selector in self._cache:
            return self._cache[element.selector]
        value = None
        if self._client is not None:
            value = await self._ask_model(observation, element)
        if not value:
            value = self.heuristic(element)
        self._cache[element.selector] = value
        return value

    # ------------------------------------------------------------------
    @staticmethod
    def heuristic(element: ElementInfo) -> str:
        hint = " ".join(
            (element.input_type, element.name, element.placeholder, element.aria_label, element.element_id)
        ).lower()
        if element.input_type == "email" or "email" in hint or "e-mail" in hint:
            return "test@example.com"
        if element.input_type == "password" or "password" in hint:
            return "Test-Passw0rd!"
        if element.input_type == "tel" or "phone" in hint or "tel" in hint.split():
            return "123-456-7890"
        if element.input_type == "url" or "website" in hint or "url" in hint.split():
            return "https://example.com"
        if element.input_type == "number" or any(w in hint for w in ("amount", "quantity", "count", "age")):
            return "42"
        if element.input_type == "date":
            return "2024-01-15"
        if element.input_type == "search" or "search" in hint:
            return "test"
        if "name" in hint:
            return "Jane Doe"
        return "sample text"

    async def _ask_model(self, observation: PageObservation, element: ElementInfo) -> Optional[str]:
        context = "\n".join(
            f"<{e.tag}> {e.aria_label or e.text or e.placeholder}".strip()
            for e in observation.elements[:40]
        )
        prompt = (
            f"Now suppose you are analysing a web page titled {observation.title!r} "
            f"with the following interactive elements:\n{context}\n\n"
            f"For the input element (type={element.input_type or 'text'}, name={element.name!r}, "
            f"placeholder={element.placeholder!r}, label={element.aria_label!r}) please generate an "
            "example of possible input. The input should be short and precise and must follow "
            "any semantic clues in the UI (e.g. email / phone).\n\n"
            'Please respond in JSON: {"Input text": "<generated input>"}'
        )
        try:
            resp = await self._client.chat.completions.create(
                model=self._model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=32,
                temperature=0,
            )
        except OpenAIError as exc:
            logger.warning("Input generation failed for %s: %s", element.selector, exc)
            return None
        self.token_usage += resp.usage.total_tokens if resp.usage else 0
        content = (resp.choices[0].message.content or "").strip()
        json_str = re.sub(r"```[a-zA-Z]*", "", content).strip("` \n")
        try:
            parsed = json.loads(json_str)
        except json.JSONDecodeError:
            val = re.sub(r"^input text\s*:\s*", "", json_str, flags=re.I)
            return val.strip().strip('"') or None
        if isinstance(parsed, dict):
            return str(parsed.get("Input text", "")) or None
        return None
