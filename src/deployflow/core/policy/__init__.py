# src/deployflow/core/policy/__init__.py
"""Policy Gate do deployflow (avaliação pass/fail de saídas de Steps)."""

from .gate import BUILTIN_POLICIES, SEVERITY_ORDER, PolicyGate, count_severities

__all__ = ["BUILTIN_POLICIES", "SEVERITY_ORDER", "PolicyGate", "count_severities"]
