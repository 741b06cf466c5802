"""Backend adapter contract and the registry that owns the connected adapters."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, runtime_checkable

from ..errors import AdapterConnectionError
from ..knowledge import VerificationResult, VerificationType

logger = logging.getLogger(__name__)


@runtime_checkable
class Adapter(Protocol):
    """Capability set every backend verifier implements.

    ``capture_state`` and ``verify`` are read-only against the target system.
    """

    name: str

    async def connect(self, config: Mapping[str, Any]) -> None: ...

    async def capture_state(self) -> Dict[str, Any]: ...

    async def verify(self, action: str, expects: Mapping[str, Any]) -> VerificationResult: ...

    async def disconnect(self) -> None: ...


AdapterFactory = Callable[[], Adapter]


class AdapterRegistry:
    """Holds the connected adapters of one run.

    Connect failures are fatal (misconfiguration). Capture and verify failures
    are downgraded: a capture failure drops that adapter's snapshot, a verify
    failure becomes a failed :class:`VerificationResult`.
    """

    def __init__(self, factories: Optional[Mapping[str, AdapterFactory]] = None) -> None:
        self._factories: Dict[str, AdapterFactory] = dict(factories or {})
        self._adapters: Dict[str, Adapter] = {}

    # ------------------------------------------------------------------
    def register(self, adapter: Adapter) -> None:
        self._adapters[adapter.name] = adapter

    def get(self, name: str) -> Optional[Adapter]:
        return self._adapters.get(name)

    def all(self) -> List[Adapter]:
        return list(self._adapters.values())

    def __len__(self) -> int:
        return len(self._adapters)

    # ------------------------------------------------------------------
    async def connect_all(self, configs: Mapping[str, Mapping[str, Any]]) -> None:
        """Create and connect one adapter per configured name.

        An adapter whose config sets ``optional: true`` is skipped with a
        warning when it cannot connect; any other failure disconnects what was
        already connected and raises :class:`AdapterConnectionError`.
        """
        for name, config in configs.items():
            optional = bool(config.get("optional", False))
            factory = self._factories.get(config.get("type", name))
            if factory is None:
                await self.disconnect_all()
                raise AdapterConnectionError(f"No adapter implementation registered for {name!r}")
            adapter = factory()
            adapter.name = name
            try:
                await adapter.connect(config)
            except Exception as exc:
                if optional:
                    logger.warning("Optional adapter %s failed to connect: %s", name, exc)
                    continue
                await self.disconnect_all()
                raise AdapterConnectionError(f"Adapter {name!r} failed to connect: {exc}") from exc
            logger.info("Adapter %s connected", name)
            self.register(adapter)

    async def capture_all(self) -> Dict[str, Any]:
        if not self._adapters:
            return {}
        names = list(self._adapters)
        results = await asyncio.gather(
            *(self._adapters[n].capture_state() for n in names), return_exceptions=True
        )
        snapshots: Dict[str, Any] = {}
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning("Adapter %s failed to capture state: %s", name, result)
                continue
            snapshots[name] = result
        return snapshots

    async def verify(self, name: str, action: str, expects: Mapping[str, Any], kind: VerificationType) -> VerificationResult:
        adapter = self._adapters.get(name)
        if adapter is None:
            return VerificationResult(
                passed=False,
                message=f"No adapter named {name!r} is connected; cannot verify {action!r}",
                type=kind,
                expected=dict(expects),
            )
        start = time.perf_counter()
        try:
            result = await adapter.verify(action, expects)
        except Exception as exc:
            logger.warning("Adapter %s failed to verify %s: %s", name, action, exc)
            return VerificationResult(
                passed=False,
                message=f"Adapter {name!r} raised while verifying {action!r}: {exc}",
                type=kind,
                expected=dict(expects),
                details={"error": repr(exc)},
                duration_ms=(time.perf_counter() - start) * 1000,
            )
        if result.duration_ms is None:
            result.duration_ms = (time.perf_counter() - start) * 1000
        return result

    async def disconnect_all(self) -> None:
        for name, adapter in list(self._adapters.items()):
            try:
                await adapter.disconnect()
            except Exception as exc:
                logger.warning("Adapter %s failed to disconnect cleanly: %s", name, exc)
        self._adapters.clear()
