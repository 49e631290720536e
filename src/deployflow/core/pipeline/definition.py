# src/deployflow/core/pipeline/definition.py
"""
Loader do documento declarativo de pipeline.

Formato (YAML ou JSON):

    pipeline: webapp-deploy
    description: ...
    steps:
      - id: scan
        label: Vulnerability scan
        kind: scan
        depends_on: [checkout]
        params: {target: ./app}
        transient: false
        retries: 2
        timeout_seconds: 600
        idempotent: true
        continue_on_failure: false
        enabled: true
        gate: {policy: max_severity, threshold: HIGH, advisory: false}

Chaves desconhecidas são rejeitadas: um erro de digitação em `depends_on`
não pode virar silenciosamente um Step sem dependências.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from deployflow.core.config.errors import ConfigError
from deployflow.core.config.hashing import compute_document_hash
from deployflow.core.config.loader import read_structured_file
from deployflow.core.exceptions import InvalidPipelineDocumentError
from deployflow.core.pipeline.types import GateSpec, StepSpec

_STEP_KEYS = {
    "id",
    "label",
    "kind",
    "params",
    "depends_on",
    "idempotent",
    "transient",
    "retries",
    "timeout_seconds",
    "continue_on_failure",
    "enabled",
    "gate",
}
_GATE_KEYS = {"policy", "threshold", "advisory", "source"}
_ROOT_KEYS = {"pipeline", "description", "steps"}


@dataclass(frozen=True)
class PipelineDefinition:
    """Documento de pipeline já validado estruturalmente (ainda não é um grafo)."""
    name: str
    steps: List[StepSpec]
    description: str = ""
    document_hash: str = ""


def _fail(message: str, **details: Any) -> InvalidPipelineDocumentError:
    return InvalidPipelineDocumentError(message=message, details=details)


def _as_bool(raw: Dict[str, Any], key: str, default: bool, where: str) -> bool:
    value = raw.get(key, default)
    if not isinstance(value, bool):
        raise _fail(f"{where}: '{key}' must be a boolean", field=key)
    return value


def _parse_gate(raw: Any, where: str) -> Optional[GateSpec]:
    if raw is None:
        return None
    if isinstance(raw, str):
        return GateSpec(policy=raw)
    if not isinstance(raw, dict):
        raise _fail(f"{where}: 'gate' must be a mapping")
    unknown = set(raw) - _GATE_KEYS
    if unknown:
        raise _fail(f"{where}: unknown gate keys {sorted(unknown)}", keys=sorted(unknown))
    policy = raw.get("policy")
    if not isinstance(policy, str) or not policy:
        raise _fail(f"{where}: gate.policy must be a non-empty string")
    source = raw.get("source")
    if source is not None and not isinstance(source, str):
        raise _fail(f"{where}: gate.source must be a step id")
    return GateSpec(
        policy=policy,
        threshold=raw.get("threshold"),
        advisory=_as_bool(raw, "advisory", False, where),
        source=source,
    )


def _parse_step(raw: Any, idx: int) -> StepSpec:
    where = f"steps[{idx}]"
    if not isinstance(raw, dict):
        raise _fail(f"{where} must be a mapping", position=idx)

    unknown = set(raw) - _STEP_KEYS
    if unknown:
        raise _fail(f"{where}: unknown keys {sorted(unknown)}", position=idx, keys=sorted(unknown))

    sid = raw.get("id")
    if not isinstance(sid, str) or not sid.strip():
        raise _fail(f"{where}: 'id' must be a non-empty string", position=idx)
    where = f"step '{sid}'"

    kind = raw.get("kind")
    if not isinstance(kind, str) or not kind.strip():
        raise _fail(f"{where}: 'kind' must be a non-empty string", step=sid)

    params = raw.get("params") or {}
    if not isinstance(params, dict):
        raise _fail(f"{where}: 'params' must be a mapping", step=sid)

    deps = raw.get("depends_on") or []
    if isinstance(deps, str):
        deps = [deps]
    if not isinstance(deps, list) or not all(isinstance(d, str) for d in deps):
        raise _fail(f"{where}: 'depends_on' must be a list of step ids", step=sid)

    retries = raw.get("retries")
    if retries is not None and (isinstance(retries, bool) or not isinstance(retries, int) or retries < 0):
        raise _fail(f"{where}: 'retries' must be a non-negative integer", step=sid)

    timeout = raw.get("timeout_seconds")
    if timeout is not None:
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            raise _fail(f"{where}: 'timeout_seconds' must be a positive number", step=sid)
        timeout = float(timeout)

    return StepSpec(
        id=sid,
        kind=kind,
        label=str(raw.get("label") or ""),
        params=dict(params),
        depends_on=tuple(deps),
        idempotent=_as_bool(raw, "idempotent", True, where),
        transient=_as_bool(raw, "transient", False, where),
        retries=retries,
        timeout_seconds=timeout,
        continue_on_failure=_as_bool(raw, "continue_on_failure", False, where),
        enabled=_as_bool(raw, "enabled", True, where),
        gate=_parse_gate(raw.get("gate"), where),
    )


def parse_pipeline(document: Any) -> PipelineDefinition:
    """
    Converte um documento já carregado em `PipelineDefinition`.

    Raises:
        InvalidPipelineDocumentError: Estrutura inválida.
    """
    if not isinstance(document, dict):
        raise _fail(f"Pipeline document root must be a mapping, got {type(document).__name__}")

    unknown = set(document) - _ROOT_KEYS
    if unknown:
        raise _fail(f"Unknown pipeline keys {sorted(unknown)}", keys=sorted(unknown))

    name = document.get("pipeline")
    if not isinstance(name, str) or not name.strip():
        raise _fail("'pipeline' must be a non-empty string")

    raw_steps = document.get("steps")
    if not isinstance(raw_steps, list) or not raw_steps:
        raise _fail("'steps' must be a non-empty list")

    return PipelineDefinition(
        name=name,
        description=str(document.get("description") or ""),
        steps=[_parse_step(raw, idx) for idx, raw in enumerate(raw_steps)],
        document_hash=compute_document_hash(document),
    )


def load_pipeline(path: Union[str, Path]) -> PipelineDefinition:
    """Lê e valida um documento de pipeline a partir do disco."""
    try:
        document = read_structured_file(path)
    except (ConfigError, yaml.YAMLError, ValueError) as e:
        raise InvalidPipelineDocumentError(message=str(e), details={"path": str(path)}) from e
    return parse_pipeline(document)
