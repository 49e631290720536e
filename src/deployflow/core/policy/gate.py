# src/deployflow/core/policy/gate.py
"""
Policy Gate: veredito pass/fail sobre a saída capturada de um Step.

Policies são funções puras `(output, threshold) -> PolicyResult`:

    - max_severity        → falha se houver achado com severidade >= threshold
                            (LOW < MEDIUM < HIGH < CRITICAL; default HIGH)
    - quality_gate        → passa se o status reportado for OK/PASSED
    - min_score           → passa se o score numérico for >= threshold
    - output_matches      → passa se a regex `threshold` casar com a saída
    - output_not_matches  → passa se a regex `threshold` NÃO casar

O gate não decide o efeito do veredito: o Engine interrompe o pipeline
ou, para gates advisory, apenas registra o resultado.
"""

from __future__ import annotations

import json
import re
from typing import Any, Callable, Dict, Iterator, Mapping, Optional

from deployflow.core.exceptions import DefinitionError, UnknownPolicyError
from deployflow.core.pipeline.types import PolicyResult, StepSpec

PolicyFn = Callable[[str, Any], PolicyResult]

SEVERITY_ORDER: Dict[str, int] = {"UNKNOWN": 0, "LOW": 1, "MEDIUM": 2, "HIGH": 3, "CRITICAL": 4}

_SUMMARY = re.compile(r"\b(CRITICAL|HIGH|MEDIUM|LOW|UNKNOWN)\s*:\s*(\d+)")
_TOKEN = re.compile(r"\b(CRITICAL|HIGH|MEDIUM|LOW)\b")
_QG_TEXT = re.compile(r"QUALITY GATE STATUS:\s*([A-Za-z_]+)", re.IGNORECASE)
_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")
_PASSING_STATUSES = {"OK", "PASSED", "PASS", "SUCCESS"}


def _try_json(output: str) -> Any:
    text = (output or "").strip()
    if not text or text[0] not in "[{":
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


def _walk(obj: Any) -> Iterator[Dict[str, Any]]:
    if isinstance(obj, dict):
        yield obj
        for v in obj.values():
            yield from _walk(v)
    elif isinstance(obj, list):
        for v in obj:
            yield from _walk(v)


def count_severities(output: str) -> Dict[str, int]:
    """
    Conta achados por severidade.

    JSON: toda chave `severity`/`Severity` com valor textual (formato trivy
    `Results[].Vulnerabilities[].Severity` incluso). Texto: resumos
    `HIGH: 2` quando presentes; caso contrário, tokens de severidade.
    """
    counts = {name: 0 for name in SEVERITY_ORDER}
    data = _try_json(output)

    if data is not None:
        for node in _walk(data):
            for key in ("severity", "Severity"):
                value = node.get(key)
                if isinstance(value, str):
                    sev = value.upper()
                    counts[sev if sev in counts else "UNKNOWN"] += 1
        return counts

    summaries = _SUMMARY.findall(output or "")
    if summaries:
        for sev, n in summaries:
            counts[sev] += int(n)
        return counts

    for sev in _TOKEN.findall(output or ""):
        counts[sev] += 1
    return counts


def _severity_threshold(threshold: Any) -> str:
    sev = str(threshold or "HIGH").upper()
    if sev not in SEVERITY_ORDER or sev == "UNKNOWN":
        raise DefinitionError(
            message=f"Invalid severity threshold '{threshold}'",
            details={"threshold": threshold, "allowed": ["LOW", "MEDIUM", "HIGH", "CRITICAL"]},
        )
    return sev


def max_severity_policy(output: str, threshold: Any) -> PolicyResult:
    limit = _severity_threshold(threshold)
    counts = count_severities(output)
    blocking = {
        sev: n for sev, n in counts.items()
        if n and SEVERITY_ORDER[sev] >= SEVERITY_ORDER[limit]
    }
    observed = {"counts": counts, "threshold": limit}
    if blocking:
        found = ", ".join(f"{n} {sev}" for sev, n in sorted(blocking.items(), key=lambda kv: -SEVERITY_ORDER[kv[0]]))
        return PolicyResult(passed=False, reason=f"found {found} (threshold {limit})", observed=observed)
    return PolicyResult(passed=True, reason=f"no findings at severity >= {limit}", observed=observed)


def _quality_status(output: str) -> Optional[str]:
    data = _try_json(output)
    if isinstance(data, dict):
        for path in (("projectStatus", "status"), ("qualityGate", "status"), ("status",)):
            node: Any = data
            for part in path:
                node = node.get(part) if isinstance(node, dict) else None
            if isinstance(node, str):
                return node.upper()
        return None
    m = _QG_TEXT.search(output or "")
    return m.group(1).upper() if m else None


def quality_gate_policy(output: str, threshold: Any) -> PolicyResult:
    status = _quality_status(output)
    if status is None:
        return PolicyResult(passed=False, reason="no quality gate status found in output", observed={})
    passed = status in _PASSING_STATUSES
    verdict = "passed" if passed else "failed"
    return PolicyResult(passed=passed, reason=f"quality gate {verdict} (status {status})", observed={"status": status})


def _score(output: str) -> Optional[float]:
    data = _try_json(output)
    if data is not None:
        for node in _walk(data):
            value = node.get("score")
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return float(value)
        return None
    m = _NUMBER.search(output or "")
    return float(m.group(0)) if m else None


def min_score_policy(output: str, threshold: Any) -> PolicyResult:
    limit = float(threshold)
    score = _score(output)
    if score is None:
        return PolicyResult(passed=False, reason="no score found in output", observed={"threshold": limit})
    observed = {"score": score, "threshold": limit}
    if score >= limit:
        return PolicyResult(passed=True, reason=f"score {score:g} >= {limit:g}", observed=observed)
    return PolicyResult(passed=False, reason=f"score {score:g} < {limit:g}", observed=observed)


def output_matches_policy(output: str, threshold: Any) -> PolicyResult:
    found = re.search(str(threshold), output or "", re.MULTILINE) is not None
    reason = f"pattern {threshold!r} {'found' if found else 'not found'}"
    return PolicyResult(passed=found, reason=reason, observed={"matched": found})


def output_not_matches_policy(output: str, threshold: Any) -> PolicyResult:
    found = re.search(str(threshold), output or "", re.MULTILINE) is not None
    reason = f"pattern {threshold!r} {'found' if found else 'not found'}"
    return PolicyResult(passed=not found, reason=reason, observed={"matched": found})


BUILTIN_POLICIES: Dict[str, PolicyFn] = {
    "max_severity": max_severity_policy,
    "quality_gate": quality_gate_policy,
    "min_score": min_score_policy,
    "output_matches": output_matches_policy,
    "output_not_matches": output_not_matches_policy,
}


class PolicyGate:
    """
    Avaliador de gates declarados nos Steps.

    Invariantes:
        - `evaluate` é determinístico para a mesma saída e threshold
        - `validate` falha antes da execução para policy desconhecida ou
          threshold inválido
    """

    def __init__(self, policies: Optional[Mapping[str, PolicyFn]] = None):
        self._policies: Dict[str, PolicyFn] = dict(BUILTIN_POLICIES if policies is None else policies)

    def validate(self, step: StepSpec) -> None:
        gate = step.gate
        if gate is None:
            return
        if gate.policy not in self._policies:
            raise UnknownPolicyError(
                message=f"Step '{step.id}' uses unknown policy '{gate.policy}'",
                details={"step": step.id, "policy": gate.policy, "available": sorted(self._policies)},
            )
        if gate.policy == "max_severity":
            _severity_threshold(gate.threshold)
        elif gate.policy == "min_score":
            try:
                float(gate.threshold)
            except (TypeError, ValueError):
                raise DefinitionError(
                    message=f"Step '{step.id}': min_score requires a numeric threshold",
                    details={"step": step.id, "threshold": gate.threshold},
                ) from None
        elif gate.policy in ("output_matches", "output_not_matches"):
            try:
                re.compile(str(gate.threshold))
            except re.error as e:
                raise DefinitionError(
                    message=f"Step '{step.id}': invalid pattern {gate.threshold!r}: {e}",
                    details={"step": step.id, "threshold": gate.threshold},
                ) from None

    def evaluate(self, step: StepSpec, output: str) -> PolicyResult:
        """Aplica o gate do Step à saída capturada. Step sem gate sempre passa."""
        gate = step.gate
        if gate is None:
            return PolicyResult(passed=True, reason="no gate declared")
        result = self._policies[gate.policy](output or "", gate.threshold)
        return PolicyResult(
            passed=result.passed,
            reason=result.reason,
            policy=gate.policy,
            advisory=gate.advisory,
            observed=dict(result.observed),
        )
