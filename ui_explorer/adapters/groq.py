"""AI-service verifier for OpenAI-compatible inference APIs (Groq by default)."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from openai import AsyncOpenAI

from ..knowledge import VerificationResult, VerificationType

logger = logging.getLogger(__name__)

GROQ_BASE_URL = "https://api.groq.com/openai/v1"


class GroqAdapter:
    """Checks that the AI backend the application depends on is up and answering.

    Config keys: ``apiKey`` (or ``api_key``), optional ``baseUrl`` and
    ``model`` (default model for ``responds`` checks).
    """

    name = "groq"

    def __init__(self, client: Optional[AsyncOpenAI] = None) -> None:
        self._client = client
        self._owns_client = client is None
        self.model: Optional[str] = None
        self.models: List[str] = []

    async def connect(self, config: Mapping[str, Any]) -> None:
        if self._client is None:
            key = config.get("apiKey") or config.get("api_key")
            if not key:
                raise ValueError("groq adapter needs 'apiKey'")
            self._client = AsyncOpenAI(api_key=key, base_url=config.get("baseUrl", GROQ_BASE_URL))
        self.model = config.get("model")
        self.models = await self._list_models()
        logger.debug("AI service exposes %d models", len(self.models))

    async def capture_state(self) -> Dict[str, Any]:
        # model churn is not UI-relevant state; only report reachability
        return {"reachable": bool(await self._list_models())}

    async def verify(self, action: str, expects: Mapping[str, Any]) -> VerificationResult:
        if action == "model_available":
            model = expects.get("model") or self.model
            models = await self._list_models()
            passed = model in models
            return VerificationResult(
                passed=passed,
                message=f"Model {model!r} is {'available' if passed else 'not available'}",
                type=VerificationType.SERVICE,
                expected=model,
                actual=models[:20],
            )
        if action == "responds":
            model = expects.get("model") or self.model
            prompt = expects.get("prompt", "Reply with the single word: pong")
            contains = str(expects.get("contains", "")).lower()
            resp = await self._client.chat.completions.create(
                model=model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=int(expects.get("maxTokens", 16)),
                temperature=0,
            )
            content = (resp.choices[0].message.content or "").strip()
            passed = bool(content) and contains in content.lower()
            return VerificationResult(
                passed=passed,
                message=f"Model {model!r} {'answered' if passed else 'did not answer as expected'}",
                type=VerificationType.SERVICE,
                expected=contains or "non-empty answer",
                actual=content[:200],
            )
        return VerificationResult(
            passed=False,
            message=f"Unknown AI service action {action!r}",
            type=VerificationType.SERVICE,
        )

    async def disconnect(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.close()
        self._client = None

    async def _list_models(self) -> List[str]:
        page = await self._client.models.list()
        return [m.id for m in page.data]
