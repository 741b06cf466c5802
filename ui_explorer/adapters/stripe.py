"""Payments verifier backed by the Stripe REST API."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

import httpx

from ..knowledge import VerificationResult, VerificationType

logger = logging.getLogger(__name__)

STRIPE_API = "https://api.stripe.com/v1"

# action -> (list endpoint, snapshot key, status implied by the action)
_ACTIONS: Dict[str, Tuple[str, str, Optional[str]]] = {
    "payment_intent_created": ("/payment_intents", "latest_payment_intent", None),
    "payment_succeeded": ("/payment_intents", "latest_payment_intent", "succeeded"),
    "charge_succeeded": ("/charges", "latest_charge", "succeeded"),
    "refund_created": ("/refunds", "latest_refund", None),
}


class StripeAdapter:
    """Detect objects created by an action by diffing against the pre-action snapshot.

    Config keys: ``secretKey`` (or ``secret_key``), optional ``apiBase`` and
    ``timeout``. Expectations may constrain ``amount``, ``currency``,
    ``status`` and ``metadata`` (subset match).
    """

    name = "stripe"

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def connect(self, config: Mapping[str, Any]) -> None:
        key = config.get("secretKey") or config.get("secret_key")
        if not key:
            raise ValueError("stripe adapter needs 'secretKey'")
        self._client = httpx.AsyncClient(
            base_url=config.get("apiBase", STRIPE_API),
            auth=(key, ""),
            timeout=float(config.get("timeout", 10)),
            transport=self._transport,
        )
        try:
            resp = await self._client.get("/balance")
            resp.raise_for_status()
        except httpx.HTTPError:
            await self.disconnect()
            raise

    async def capture_state(self) -> Dict[str, Any]:
        snapshot: Dict[str, Any] = {}
        endpoints = {endpoint: key for endpoint, key, _ in _ACTIONS.values()}
        for endpoint, key in endpoints.items():
            objects = await self._list(endpoint, limit=1)
            snapshot[key] = objects[0]["id"] if objects else None
        return snapshot

    async def verify(self, action: str, expects: Mapping[str, Any]) -> VerificationResult:
        if action not in _ACTIONS:
            return VerificationResult(
                passed=False,
                message=f"Unknown stripe action {action!r}; expected one of {sorted(_ACTIONS)}",
                type=VerificationType.SERVICE,
            )
        endpoint, key, implied_status = _ACTIONS[action]
        before = expects.get("before") if isinstance(expects.get("before"), Mapping) else {}
        since_id = before.get(key)
        created = await self._created_since(endpoint, since_id)

        wanted = {k: expects[k] for k in ("amount", "currency", "status") if k in expects}
        if implied_status and "status" not in wanted:
            wanted["status"] = implied_status
        metadata = expects.get("metadata") or {}
        hits = [
            obj
            for obj in created
            if all(obj.get(k) == v for k, v in wanted.items())
            and all((obj.get("metadata") or {}).get(k) == v for k, v in metadata.items())
        ]
        passed = bool(hits)
        return VerificationResult(
            passed=passed,
            message=(
                f"Stripe {action}: {len(hits)} of {len(created)} new object(s) match {wanted or 'any'}"
            ),
            type=VerificationType.SERVICE,
            expected={**wanted, **({"metadata": dict(metadata)} if metadata else {})},
            actual=[{k: o.get(k) for k in ("id", "amount", "currency", "status")} for o in created[:5]],
        )

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    async def _created_since(self, endpoint: str, since_id: Optional[str]) -> List[Dict[str, Any]]:
        # lists are newest first; everything before the remembered id is new
        objects = await self._list(endpoint, limit=25)
        created: List[Dict[str, Any]] = []
        for obj in objects:
            if since_id is not None and obj.get("id") == since_id:
                break
            created.append(obj)
        return created

    async def _list(self, endpoint: str, limit: int) -> List[Dict[str, Any]]:
        if self._client is None:
            raise RuntimeError("stripe adapter is not connected")
        resp = await self._client.get(endpoint, params={"limit": limit})
        resp.raise_for_status()
        return list(resp.json().get("data", []))
