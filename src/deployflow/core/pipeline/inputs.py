# src/deployflow/core/pipeline/inputs.py
"""
Resolução de parâmetros de Steps.

Valores de `params` podem conter referências:
    - `${env:NOME}`              → variável de ambiente (credenciais, endpoints)
    - `${env:NOME:-default}`     → idem, com valor default
    - `${steps.<id>.output}`     → saída capturada de um Step upstream

A resolução é pura: o ambiente e as saídas são passados explicitamente;
nada aqui lê `os.environ` nem o State Store.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Iterator, List, Mapping, Tuple

from deployflow.core.exceptions import MissingParameterError

_REF = re.compile(r"\$\{(?:env:(?P<env>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<default>[^}]*))?|steps\.(?P<step>[^.}]+)\.output)\}")


def _walk_strings(value: Any) -> Iterator[str]:
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for v in value.values():
            yield from _walk_strings(v)
    elif isinstance(value, (list, tuple)):
        for v in value:
            yield from _walk_strings(v)


def step_references(params: Mapping[str, Any]) -> List[str]:
    """Retorna os ids de Steps referenciados via `${steps.<id>.output}`, em ordem e sem repetição."""
    found: List[str] = []
    for text in _walk_strings(dict(params)):
        for m in _REF.finditer(text):
            sid = m.group("step")
            if sid and sid not in found:
                found.append(sid)
    return found


def env_references(params: Mapping[str, Any]) -> List[Tuple[str, bool]]:
    """Retorna pares (nome, possui_default) das referências de ambiente."""
    found: List[Tuple[str, bool]] = []
    for text in _walk_strings(dict(params)):
        for m in _REF.finditer(text):
            name = m.group("env")
            if name:
                item = (name, m.group("default") is not None)
                if item not in found:
                    found.append(item)
    return found


def missing_env(params: Mapping[str, Any], env: Mapping[str, str]) -> List[str]:
    """Variáveis referenciadas sem default e ausentes em `env`."""
    return [name for name, has_default in env_references(params) if not has_default and name not in env]


def _resolve_value(value: Any, *, step_id: str, env: Mapping[str, str], outputs: Mapping[str, str]) -> Any:
    if isinstance(value, dict):
        return {k: _resolve_value(v, step_id=step_id, env=env, outputs=outputs) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_resolve_value(v, step_id=step_id, env=env, outputs=outputs) for v in value]
    if not isinstance(value, str):
        return value

    def _sub(m: "re.Match[str]") -> str:
        name = m.group("env")
        if name:
            if name in env:
                return env[name]
            if m.group("default") is not None:
                return m.group("default")
            raise MissingParameterError(
                message=f"Step '{step_id}' references unset environment variable '{name}'",
                details={"step": step_id, "env": name},
                hint="Exporte a variável antes da execução ou declare um default com ${env:NOME:-valor}.",
            )
        sid = m.group("step")
        if sid not in outputs:
            raise MissingParameterError(
                message=f"Step '{step_id}' references output of '{sid}', which is not available",
                details={"step": step_id, "source": sid},
            )
        return outputs[sid]

    return _REF.sub(_sub, value)


def resolve_inputs(
    params: Mapping[str, Any],
    *,
    step_id: str,
    env: Mapping[str, str],
    outputs: Mapping[str, str],
) -> Dict[str, Any]:
    """
    Substitui todas as referências em `params`, preservando a ordem das chaves.

    Raises:
        MissingParameterError: Variável de ambiente sem default ausente,
            ou saída de Step indisponível.
    """
    return {k: _resolve_value(v, step_id=step_id, env=env, outputs=outputs) for k, v in params.items()}
