"""Database/auth verifier backed by a Supabase (PostgREST) REST endpoint."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Mapping, Optional

import httpx

from ..knowledge import VerificationResult, VerificationType

logger = logging.getLogger(__name__)

_CONTENT_RANGE = re.compile(r"/(\d+|\*)$")


def format_where(where: Mapping[str, Any]) -> str:
    if not where:
        return "(any row)"
    return " AND ".join(f"{k}={v!r}" for k, v in where.items())


def _filter_value(value: Any) -> str:
    if value is None:
        return "is.null"
    if isinstance(value, bool):
        return "is.true" if value else "is.false"
    return f"eq.{value}"


class SupabaseAdapter:
    """Row-count snapshots and insert/update/delete checks over PostgREST.

    Config keys: ``url``, ``serviceKey`` (or ``service_key``), optional
    ``tables`` (defaults to every table the API exposes), ``sampleRows``
    (recent rows kept per table, default 0), ``orderBy`` for sampling and
    ``timeout`` in seconds.
    """

    name = "supabase"

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self.tables: List[str] = []
        self.sample_rows = 0
        self.order_by = "created_at"

    # ------------------------------------------------------------------
    async def connect(self, config: Mapping[str, Any]) -> None:
        url = config.get("url")
        key = config.get("serviceKey") or config.get("service_key")
        if not url or not key:
            raise ValueError("supabase adapter needs 'url' and 'serviceKey'")
        self._client = httpx.AsyncClient(
            base_url=f"{str(url).rstrip('/')}/rest/v1",
            headers={"apikey": key, "Authorization": f"Bearer {key}"},
            timeout=float(config.get("timeout", 10)),
            transport=self._transport,
        )
        self.sample_rows = int(config.get("sampleRows", config.get("sample_rows", 0)))
        self.order_by = config.get("orderBy", config.get("order_by", "created_at"))
        try:
            resp = await self._client.get("/")
            resp.raise_for_status()
            configured = config.get("tables")
            if configured:
                self.tables = list(configured)
            else:
                spec = resp.json() if resp.content else {}
                self.tables = sorted((spec.get("definitions") or {}).keys())
        except (httpx.HTTPError, ValueError):
            # the registry only disconnects adapters that connected
            await self.disconnect()
            raise
        logger.debug("Supabase adapter tracking tables: %s", self.tables)

    async def capture_state(self) -> Dict[str, Any]:
        tables: Dict[str, Any] = {}
        for table in self.tables:
            entry: Dict[str, Any] = {"row_count": await self.count_rows(table)}
            if self.sample_rows:
                entry["recent_rows"] = await self._fetch(
                    table, {}, limit=self.sample_rows, order=f"{self.order_by}.desc"
                )
            tables[table] = entry
        return {"tables": tables}

    async def verify(self, action: str, expects: Mapping[str, Any]) -> VerificationResult:
        table = expects["table"]
        where: Mapping[str, Any] = expects.get("where") or {}
        count = expects.get("count")
        values: Mapping[str, Any] = expects.get("values") or {}
        before = self._snapshot_count(expects.get("before"), table)
        clause = f"{table} where {format_where(where)}"

        matching = await self.count_rows(table, where)
        total = self._snapshot_count(expects.get("after"), table)
        if total is None and before is not None:
            total = await self.count_rows(table)
        delta = (total - before) if (total is not None and before is not None) else None
        details = {"table": table, "where": dict(where), "matching": matching, "before": before, "after": total}

        if action == "insert":
            if count is None:
                passed = matching >= 1
            elif delta is not None:
                passed = delta == count and (matching >= 1 or not where)
            else:
                passed = matching >= count
            expected = f"row inserted into {clause}" if count is None else f"{count} row(s) inserted into {clause}"
            actual = f"{matching} matching row(s)" + (f", row count change {delta:+d}" if delta is not None else "")
        elif action == "delete":
            if count is not None and delta is not None:
                passed = -delta == count and (matching == 0 or not where)
            else:
                passed = matching == 0
            expected = f"no rows in {clause}"
            actual = f"{matching} matching row(s)" + (f", row count change {delta:+d}" if delta is not None else "")
        elif action == "update":
            rows = await self._fetch(table, where, limit=100)
            mismatched = [r for r in rows if any(r.get(k) != v for k, v in values.items())]
            passed = bool(rows) and not mismatched
            expected = f"rows in {clause} with {dict(values)}"
            actual = f"{len(rows)} matching row(s), {len(mismatched)} with other values"
            details["mismatched"] = mismatched[:5]
        elif action == "unchanged":
            if before is None:
                return VerificationResult(
                    passed=False,
                    message=f"No pre-action row count for {table}; cannot verify it is unchanged",
                    type=VerificationType.DATABASE,
                    details=details,
                )
            passed = delta == 0
            expected = f"{table} row count {before}"
            actual = f"{table} row count {total}"
        else:
            return VerificationResult(
                passed=False,
                message=f"Unknown database change {action!r} for {clause}",
                type=VerificationType.DATABASE,
            )

        verdict = "passed" if passed else "failed"
        return VerificationResult(
            passed=passed,
            message=f"Database {action} check {verdict} for {clause}: expected {expected}, found {actual}",
            type=VerificationType.DATABASE,
            expected=expected,
            actual=actual,
            details=details,
        )

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    async def count_rows(self, table: str, where: Optional[Mapping[str, Any]] = None) -> int:
        params = {"select": "*", "limit": "1"}
        params.update({k: _filter_value(v) for k, v in (where or {}).items()})
        resp = await self._require_client().get(
            f"/{table}", params=params, headers={"Prefer": "count=exact"}
        )
        resp.raise_for_status()
        match = _CONTENT_RANGE.search(resp.headers.get("content-range", ""))
        if match and match.group(1) != "*":
            return int(match.group(1))
        return len(resp.json())

    async def _fetch(
        self, table: str, where: Mapping[str, Any], limit: int, order: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        params = {"select": "*", "limit": str(limit)}
        if order:
            params["order"] = order
        params.update({k: _filter_value(v) for k, v in where.items()})
        resp = await self._require_client().get(f"/{table}", params=params)
        resp.raise_for_status()
        return list(resp.json())

    @staticmethod
    def _snapshot_count(before: Any, table: str) -> Optional[int]:
        if not isinstance(before, Mapping):
            return None
        info = (before.get("tables") or {}).get(table)
        if isinstance(info, Mapping) and "row_count" in info:
            return int(info["row_count"])
        return None

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("supabase adapter is not connected")
        return self._client
