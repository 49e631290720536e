# src/deployflow/core/adapters/base.py
"""
Contrato de Step Adapter e base para adapters de linha de comando.

Um adapter é a única camada que toca o mundo externo (processos, rede,
arquivos). O Engine apenas chama `execute` e registra o `AdapterResult`.

Regras do contrato:
    - Falha ordinária de ferramenta é resultado (`success=False`), nunca exceção
    - Cada adapter declara `required_params`, validados pelo Engine antes
      de qualquer Step ser executado
    - Credenciais e endpoints chegam por parâmetros ou pelo ambiente da run
"""

from __future__ import annotations

import os
import subprocess
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple, runtime_checkable

from deployflow.core.exceptions import MissingParameterError
from deployflow.core.pipeline.context import RunContext
from deployflow.core.pipeline.types import AdapterResult, StepSpec


@runtime_checkable
class StepAdapter(Protocol):
    """
    Contrato mínimo de um adapter.

    Atributos obrigatórios:
        - kind: tipo de Step atendido (ex.: `build`)
        - required_params: parâmetros que devem estar presentes no Step

    Invariantes:
        - `execute` retorna sempre `AdapterResult`
        - `missing_params` é função pura dos parâmetros declarados
    """
    kind: str
    required_params: Tuple[str, ...]

    def missing_params(self, params: Mapping[str, Any]) -> List[str]:
        ...

    def execute(self, step: StepSpec, inputs: Dict[str, Any], ctx: RunContext) -> AdapterResult:
        ...


@dataclass(frozen=True)
class CommandOutcome:
    returncode: int
    stdout: str = ""
    stderr: str = ""


CommandRunner = Callable[..., CommandOutcome]


def run_command(
    argv: Sequence[str],
    *,
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[str] = None,
    timeout: Optional[float] = None,
) -> CommandOutcome:
    """Runner padrão: `subprocess.run` sem shell, com captura de stdout/stderr."""
    proc = subprocess.run(
        list(argv),
        env=dict(env) if env is not None else None,
        cwd=cwd,
        timeout=timeout,
        capture_output=True,
        text=True,
        check=False,
    )
    return CommandOutcome(returncode=proc.returncode, stdout=proc.stdout or "", stderr=proc.stderr or "")


def check_step_params(adapter: StepAdapter, step: StepSpec) -> None:
    """
    Valida os parâmetros declarados de um Step contra o seu adapter.

    Adapters podem expor `validate_params(step)` para regras além de
    `required_params` (ex.: valores enumerados).

    Raises:
        MissingParameterError: parâmetro obrigatório ausente.
        DefinitionError: valor de parâmetro rejeitado pelo adapter.
    """
    missing = adapter.missing_params(step.params)
    if missing:
        raise MissingParameterError(
            message=f"Step '{step.id}' ({step.kind}) is missing required params {missing}",
            details={"step": step.id, "kind": step.kind, "missing": missing},
        )
    validate_params = getattr(adapter, "validate_params", None)
    if validate_params is not None:
        validate_params(step)


class BaseAdapter:
    """Implementação default de `missing_params` a partir de `required_params`."""

    kind: str = ""
    required_params: Tuple[str, ...] = ()

    def missing_params(self, params: Mapping[str, Any]) -> List[str]:
        return [p for p in self.required_params if params.get(p) in (None, "")]

    def validate_params(self, step: StepSpec) -> None:
        return None


class CommandAdapter(BaseAdapter):
    """
    Adapter que executa uma ou mais invocações de CLI externa em sequência.

    Subclasses implementam `build_commands(step, inputs)`. A primeira
    invocação com exit code != 0 encerra o Step como falha; as saídas
    capturadas são concatenadas na ordem de execução.

    Exceção: em Steps com gate, um exit code != 0 que `reports_verdict`
    reconhece como veredito da própria ferramenta (ex.: quality gate
    reprovado) vira resultado com a saída capturada, e o Policy Gate
    decide o efeito.

    O timeout repassado ao processo é `step.timeout_seconds`; o Engine
    entrega o Step com o timeout efetivo já resolvido.

    Parâmetros comuns a todos os adapters de comando:
        - env: mapa de variáveis extras para o processo
        - cwd: diretório de trabalho
    """

    def __init__(self, runner: Optional[CommandRunner] = None):
        self.runner: CommandRunner = runner or run_command

    def build_commands(self, step: StepSpec, inputs: Dict[str, Any]) -> List[List[str]]:
        raise NotImplementedError

    def reports_verdict(self, argv: Sequence[str], outcome: CommandOutcome) -> bool:
        return False

    def _process_env(self, inputs: Dict[str, Any], ctx: RunContext) -> Dict[str, str]:
        env = dict(ctx.env) if ctx.env else dict(os.environ)
        extra = inputs.get("env") or {}
        env.update({str(k): str(v) for k, v in extra.items()})
        return env

    def execute(self, step: StepSpec, inputs: Dict[str, Any], ctx: RunContext) -> AdapterResult:
        commands = self.build_commands(step, inputs)
        env = self._process_env(inputs, ctx)
        cwd = inputs.get("cwd")
        outputs: List[str] = []
        started = time.monotonic()

        def _elapsed() -> int:
            return int((time.monotonic() - started) * 1000)

        for argv in commands:
            # argv pode conter segredos resolvidos; registra apenas o programa
            ctx.log(step_id=step.id, level="info", message="invoking tool", program=argv[0], args=len(argv) - 1)
            try:
                outcome = self.runner(argv, env=env, cwd=cwd, timeout=step.timeout_seconds)
            except FileNotFoundError:
                return AdapterResult(
                    success=False,
                    output="".join(outputs),
                    error_detail=f"executable not found: {argv[0]}",
                    exit_code=127,
                    duration_ms=_elapsed(),
                )
            except subprocess.TimeoutExpired:
                return AdapterResult(
                    success=False,
                    output="".join(outputs),
                    error_detail=f"{argv[0]} exceeded {step.timeout_seconds}s",
                    duration_ms=_elapsed(),
                    timed_out=True,
                )
            except OSError as e:
                return AdapterResult(
                    success=False,
                    output="".join(outputs),
                    error_detail=f"{argv[0]}: {e}",
                    duration_ms=_elapsed(),
                )

            outputs.append(outcome.stdout)
            if outcome.returncode != 0 and step.gate is not None and self.reports_verdict(argv, outcome):
                # a ferramenta sinaliza o veredito pelo exit code; quem decide é o Policy Gate
                if outcome.stderr:
                    outputs.append(outcome.stderr)
                ctx.log(step_id=step.id, level="info", message="tool reported a verdict", program=argv[0], exit_code=outcome.returncode)
                return AdapterResult(
                    success=True,
                    output="".join(outputs),
                    exit_code=outcome.returncode,
                    duration_ms=_elapsed(),
                )
            if outcome.returncode != 0:
                detail = (outcome.stderr or "").strip() or f"{argv[0]} exited with code {outcome.returncode}"
                ctx.log(step_id=step.id, level="error", message="tool failed", program=argv[0], exit_code=outcome.returncode)
                return AdapterResult(
                    success=False,
                    output="".join(outputs),
                    error_detail=detail,
                    exit_code=outcome.returncode,
                    duration_ms=_elapsed(),
                )

        return AdapterResult(success=True, output="".join(outputs), exit_code=0, duration_ms=_elapsed())
