# src/deployflow/core/errors.py
"""
Payload canônico de erro por Step.

Falhas de adapter e de Policy Gate são resultados normais da execução:
não sobem como exceção, mas são registradas no RunRecord como um
`DeployflowErrorPayload` serializável.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional


# ---------------------------------------------------------------------------
# Payload canônico
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DeployflowErrorPayload:
    """
    Payload canônico de erro do deployflow.

    Campos:
    - type: código estável do erro (não é texto livre)
    - message: mensagem curta, humana e objetiva
    - details: dados estruturados relevantes para diagnóstico
    - hint: ação sugerida ao operador (onde corrigir)
    """

    type: str
    message: str
    details: Dict[str, Any]
    hint: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Retorna representação serializável do erro."""
        return asdict(self)


# ---------------------------------------------------------------------------
# Catálogo canônico de tipos de erro (v1)
# ---------------------------------------------------------------------------

ADAPTER_FAILED = "ADAPTER_FAILED"
ADAPTER_EXCEPTION = "ADAPTER_EXCEPTION"
TIMEOUT_EXCEEDED = "TimeoutExceeded"
POLICY_FAILURE = "POLICY_FAILURE"


# ---------------------------------------------------------------------------
# Helpers de fábrica
# ---------------------------------------------------------------------------

def adapter_failed(
    *,
    step: str,
    kind: str,
    error_detail: Optional[str],
    exit_code: Optional[int] = None,
    attempts: int = 1,
    hint: str = "Inspecione a saída capturada do Step e a ferramenta externa invocada.",
) -> DeployflowErrorPayload:
    return DeployflowErrorPayload(
        type=ADAPTER_FAILED,
        message=f"Step '{step}' falhou ({kind})",
        details={
            "step": step,
            "kind": kind,
            "exit_code": exit_code,
            "attempts": attempts,
            "error_detail": error_detail,
        },
        hint=hint,
    )


def adapter_exception(
    *,
    step: str,
    exc: BaseException,
    hint: str = "O adapter levantou exceção inesperada; verifique a implementação do adapter.",
) -> DeployflowErrorPayload:
    return DeployflowErrorPayload(
        type=ADAPTER_EXCEPTION,
        message=str(exc) or "Erro inesperado durante execução do adapter",
        details={
            "step": step,
            "exception_class": exc.__class__.__name__,
        },
        hint=hint,
    )


def timeout_exceeded(
    *,
    step: str,
    timeout_seconds: float,
    hint: str = "Aumente `timeout_seconds` do Step ou investigue a ferramenta externa.",
) -> DeployflowErrorPayload:
    return DeployflowErrorPayload(
        type=TIMEOUT_EXCEEDED,
        message=f"Step '{step}' excedeu {timeout_seconds}s",
        details={"step": step, "timeout_seconds": timeout_seconds},
        hint=hint,
    )


def policy_failure(
    *,
    step: str,
    policy: str,
    reason: str,
    observed: Optional[Dict[str, Any]] = None,
    hint: str = "Corrija os achados reportados ou marque o gate como advisory.",
) -> DeployflowErrorPayload:
    return DeployflowErrorPayload(
        type=POLICY_FAILURE,
        message=reason,
        details={"step": step, "policy": policy, "observed": dict(observed or {})},
        hint=hint,
    )
