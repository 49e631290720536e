# src/deployflow/core/adapters/registry.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from deployflow.core.adapters.base import CommandRunner, StepAdapter
from deployflow.core.adapters.commands import BUILTIN_ADAPTERS, GateAdapter
from deployflow.core.exceptions import UnknownAdapterKindError


class DuplicateAdapterKindError(ValueError):
    """Dois adapters registrados para o mesmo `kind`."""


@dataclass
class AdapterRegistry:
    """
    Registro de adapters indexado por `kind`.

    Invariantes:
        - Cada `kind` possui no máximo um adapter
        - A ordem de registro é preservada em `kinds()`
    """

    _adapters: Dict[str, StepAdapter] = field(default_factory=dict, init=False, repr=False)

    def register(self, adapter: StepAdapter) -> None:
        kind = getattr(adapter, "kind", None)
        if not isinstance(kind, str) or not kind.strip():
            raise ValueError("adapter.kind must be a non-empty string")
        if kind in self._adapters:
            raise DuplicateAdapterKindError(f"Duplicate adapter kind: {kind}")
        self._adapters[kind] = adapter

    def get(self, kind: str) -> StepAdapter:
        try:
            return self._adapters[kind]
        except KeyError:
            raise UnknownAdapterKindError(
                message=f"No adapter registered for kind '{kind}'",
                details={"kind": kind, "available": self.kinds()},
            ) from None

    def kinds(self) -> List[str]:
        return list(self._adapters)

    def __contains__(self, kind: object) -> bool:
        return kind in self._adapters


def default_registry(runner: Optional[CommandRunner] = None) -> AdapterRegistry:
    """Registry com todos os adapters embutidos; `runner` substitui `subprocess.run` (testes)."""
    registry = AdapterRegistry()
    for adapter_cls in BUILTIN_ADAPTERS:
        registry.register(adapter_cls(runner=runner))
    registry.register(GateAdapter())
    return registry
