# src/deployflow/core/pipeline/context.py
"""
Contexto de execução de uma run.

O RunContext carrega a identidade da run, a configuração resolvida e o
ambiente explícito (credenciais, endpoints) entregue aos adapters, e
funciona como o log estruturado da execução.

Invariantes:
    - Logs sempre incluem `run_id`, `step_id` e timestamp UTC
    - Warnings são agrupados por `step_id`
    - Nenhum estado global: cada run possui seu próprio contexto

Limites explícitos:
    - Não executa Steps
    - Não persiste dados (o Engine copia warnings para o RunRecord)
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List


@dataclass
class RunContext:
    """
    Contexto compartilhado entre Engine e adapters durante uma run.

    Adapters executam em threads de trabalho; `log` e `add_warning` são
    seguros para chamadas concorrentes.
    """

    run_id: str
    created_at: datetime
    config: Dict[str, Any]
    env: Dict[str, str] = field(default_factory=dict)
    meta: Dict[str, Any] = field(default_factory=dict)
    events: List[Dict[str, Any]] = field(default_factory=list, init=False)
    warnings: Dict[str, List[str]] = field(default_factory=dict, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    # -----------------------------
    # Logging & warnings
    # -----------------------------
    def log(self, *, step_id: str, level: str, message: str, **extra: Any) -> None:
        event = {
            "run_id": self.run_id,
            "step_id": step_id,
            "level": level,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        event.update(extra)
        with self._lock:
            self.events.append(event)

    def add_warning(self, *, step_id: str, message: str) -> None:
        with self._lock:
            self.warnings.setdefault(step_id, []).append(message)

    def pop_warnings(self, step_id: str) -> List[str]:
        with self._lock:
            return self.warnings.pop(step_id, [])

    def events_for(self, step_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(e) for e in self.events if e.get("step_id") == step_id]
