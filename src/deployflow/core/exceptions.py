# src/deployflow/core/exceptions.py
"""
Exceções canônicas do deployflow.

Hierarquia:
    - DefinitionError   → pipeline inválido; nenhum Step é executado
    - PersistenceError  → State Store indisponível; fatal para a run
    - RunNotFoundError  → run inexistente no State Store
    - DeadlockError     → nenhum Step pronto com Steps ainda não terminais

Falhas de adapter e de Policy Gate NÃO são exceções: são registradas
no RunRecord e conduzem as transições da máquina de estados.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True, eq=False)
class DeployflowException(Exception):
    """Base class para exceções internas do deployflow.

    Importante:
    - Sempre carregar dados estruturados em `details`
    - Mensagem deve ser curta e humana
    """

    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    hint: Optional[str] = None

    def __str__(self) -> str:  # pragma: no cover
        return self.message


# ---------------------------------------------------------------------------
# Definição do pipeline
# ---------------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class DefinitionError(DeployflowException):
    """Definição de pipeline inválida (detectada antes de qualquer execução)."""


@dataclass(frozen=True, eq=False)
class CycleDetectedError(DefinitionError):
    """O grafo de dependências contém ciclo."""


@dataclass(frozen=True, eq=False)
class UnknownDependencyError(DefinitionError):
    """Um Step referencia um Step inexistente (ou que não é ancestral)."""


@dataclass(frozen=True, eq=False)
class DuplicateStepIdError(DefinitionError):
    """Dois Steps declaram o mesmo identificador."""


@dataclass(frozen=True, eq=False)
class MissingParameterError(DefinitionError):
    """Parâmetro obrigatório do adapter ausente ou referência de ambiente não resolvida."""


@dataclass(frozen=True, eq=False)
class UnknownAdapterKindError(DefinitionError):
    """Nenhum adapter registrado para o `kind` do Step."""


@dataclass(frozen=True, eq=False)
class UnknownPolicyError(DefinitionError):
    """Policy de gate não registrada."""


@dataclass(frozen=True, eq=False)
class InvalidPipelineDocumentError(DefinitionError):
    """Documento de pipeline estruturalmente inválido."""


# ---------------------------------------------------------------------------
# State Store / Engine
# ---------------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class PersistenceError(DeployflowException):
    """Falha ao persistir ou ler um RunRecord."""


@dataclass(frozen=True, eq=False)
class RunNotFoundError(DeployflowException):
    """RunRecord inexistente para o run_id informado."""


@dataclass(frozen=True, eq=False)
class DeadlockError(DeployflowException):
    """Nenhum Step pronto, nenhum em execução e ainda existem Steps não terminais."""
