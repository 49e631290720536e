# src/deployflow/core/engine/__init__.py
"""
Engine do deployflow.

Componentes principais:
    - planner → PipelineGraph: validação estrutural, ordem topológica
      determinística e cálculo de Steps prontos
    - engine  → execução concorrente, retomável e auditável de Steps

Princípios fundamentais:
    - Planejamento e execução são responsabilidades separadas
    - A ordem topológica é determinística para o mesmo documento
    - Nenhuma decisão silenciosa: todo desvio vira evento no RunRecord
"""

from .engine import Engine, RunResult
from .planner import PipelineGraph, plan_execution

__all__ = ["Engine", "RunResult", "PipelineGraph", "plan_execution"]
