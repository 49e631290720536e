# src/deployflow/core/adapters/__init__.py
"""
Step Adapters do deployflow.

Cada adapter envolve uma ferramenta externa (terraform, git, trivy,
docker, helm, kubectl) atrás de um contrato uniforme:

    execute(step, inputs, ctx) -> AdapterResult

Efeitos colaterais (processos, rede, arquivos) ficam confinados aqui.
"""

from .base import BaseAdapter, CommandAdapter, CommandOutcome, StepAdapter, run_command
from .commands import (
    BuildAdapter,
    CheckoutAdapter,
    DeployAdapter,
    GateAdapter,
    MonitorAdapter,
    ProvisionAdapter,
    PushAdapter,
    ScanAdapter,
    ShellAdapter,
)
from .registry import AdapterRegistry, DuplicateAdapterKindError, default_registry

__all__ = [
    "BaseAdapter",
    "CommandAdapter",
    "CommandOutcome",
    "StepAdapter",
    "run_command",
    "BuildAdapter",
    "CheckoutAdapter",
    "DeployAdapter",
    "GateAdapter",
    "MonitorAdapter",
    "ProvisionAdapter",
    "PushAdapter",
    "ScanAdapter",
    "ShellAdapter",
    "AdapterRegistry",
    "DuplicateAdapterKindError",
    "default_registry",
]
