# src/deployflow/core/pipeline/types.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class StepStatus(str, Enum):
    """
    Estados de um Step dentro de um RunRecord.

    Transições permitidas (aplicadas exclusivamente pelo Engine):
        - PENDING  → RUNNING    (dispatch)
        - RUNNING  → SUCCEEDED | FAILED (resultado do adapter / gate)
        - PENDING  → SKIPPED    (dependência falhou, pipeline interrompido
                                 ou Step desabilitado)
        - RUNNING  → PENDING    (resume após crash)
        - FAILED | SKIPPED → PENDING (resume com retry ou após cancelamento)

    Os valores são strings para serialização direta em JSON.
    """
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (StepStatus.SUCCEEDED, StepStatus.FAILED, StepStatus.SKIPPED)


class PipelineState(str, Enum):
    """Estado agregado de uma run: ACTIVE, HALTED (gate obrigatório falhou ou cancelamento) ou COMPLETED."""
    ACTIVE = "active"
    HALTED = "halted"
    COMPLETED = "completed"


class SkipReason(str, Enum):
    """
    Motivo registrado quando um Step termina em SKIPPED.

    DISABLED conta como dependência satisfeita para os Steps seguintes;
    UPSTREAM_FAILED e HALTED propagam o skip.
    """
    DISABLED = "disabled"
    UPSTREAM_FAILED = "upstream_failed"
    HALTED = "halted"


@dataclass(frozen=True)
class GateSpec:
    """
    Declaração de Policy Gate associada a um Step.

    Campos:
        - policy: nome da policy registrada (ex.: `max_severity`)
        - threshold: limite configurado (ex.: `HIGH`, `80`)
        - advisory: falha é registrada mas não interrompe o pipeline
        - source: Step cuja saída é avaliada (default: o próprio Step)
    """
    policy: str
    threshold: Any = None
    advisory: bool = False
    source: Optional[str] = None


@dataclass(frozen=True)
class StepSpec:
    """
    Definição imutável de um Step do pipeline.

    Um Step envolve uma única invocação de ferramenta externa através do
    adapter registrado para `kind`.

    Campos:
        - id: identificador único no pipeline
        - label: rótulo humano
        - kind: tipo de adapter (provision, scan, build, push, deploy, ...)
        - params: parâmetros de entrada ordenados (nome → valor); valores
          podem conter referências `${env:NOME}` e `${steps.<id>.output}`
        - depends_on: Steps upstream
        - idempotent: pode ser reexecutado com segurança após interrupção
        - transient: falhas são consideradas transitórias (elegível a retry)
        - retries: número de retries específico do Step (sobrepõe o config)
        - timeout_seconds: duração máxima do Step
        - continue_on_failure: executa mesmo se uma dependência falhar
        - enabled: Steps desabilitados iniciam como SKIPPED
        - gate: Policy Gate opcional aplicado à saída

    Invariantes:
        - Imutável após a construção do grafo
        - `params` preserva a ordem de declaração
    """
    id: str
    kind: str
    label: str = ""
    params: Dict[str, Any] = field(default_factory=dict)
    depends_on: Tuple[str, ...] = ()
    idempotent: bool = True
    transient: bool = False
    retries: Optional[int] = None
    timeout_seconds: Optional[float] = None
    continue_on_failure: bool = False
    enabled: bool = True
    gate: Optional[GateSpec] = None

    @property
    def display_name(self) -> str:
        return self.label or self.id


@dataclass(frozen=True)
class AdapterResult:
    """
    Resultado de uma invocação de adapter.

    Falha de ferramenta (exit code != 0, achados de scan, binário ausente)
    é um resultado normal com `success=False`, nunca uma exceção.
    """
    success: bool
    output: str = ""
    error_detail: Optional[str] = None
    exit_code: Optional[int] = None
    duration_ms: int = 0
    timed_out: bool = False


@dataclass(frozen=True)
class PolicyResult:
    """
    Veredito de um Policy Gate.

    Campos:
        - passed: True quando a saída satisfaz o threshold
        - reason: explicação legível
        - policy: nome da policy avaliada
        - advisory: se a falha deve ou não interromper o pipeline
        - observed: valores extraídos da saída (ex.: contagem por severidade)
    """
    passed: bool
    reason: str
    policy: str = ""
    advisory: bool = False
    observed: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "reason": self.reason,
            "policy": self.policy,
            "advisory": self.advisory,
            "observed": dict(self.observed),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PolicyResult":
        return cls(
            passed=bool(data.get("passed")),
            reason=str(data.get("reason", "")),
            policy=str(data.get("policy", "")),
            advisory=bool(data.get("advisory", False)),
            observed=dict(data.get("observed", {}) or {}),
        )
