# src/deployflow/core/engine/engine.py
"""
Engine de execução do deployflow (escalonador + executor).

O Engine percorre o PipelineGraph, despacha Steps prontos para os Step
Adapters em threads de trabalho, aplica o Policy Gate às saídas e
persiste o RunRecord a cada transição.

Decisões arquiteturais:
    - Escritor único: todo RunRecord é mutado apenas na thread de
      escalonamento; workers só devolvem `_Outcome`
    - Persistência acontece antes da próxima decisão de escalonamento
    - Falhas de adapter e de policy viram estado do Step
      (`DeployflowErrorPayload`), nunca exceção
    - Timeout por Step é controlado por deadline; o worker é abandonado,
      não interrompido

Invariantes:
    - Um Step nunca inicia antes de todas as dependências serem terminais
    - Steps SUCCEEDED nunca são reexecutados (inclusive no resume)
    - DefinitionError é levantado antes de qualquer Step executar e sem
      criar RunRecord

Limites explícitos:
    - Não interrompe processos externos em execução (cancelamento é cooperativo)
    - Não coordena múltiplos Engines sobre a mesma run
"""

from __future__ import annotations

import threading
import time
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from deployflow.core.adapters.base import check_step_params
from deployflow.core.adapters.registry import AdapterRegistry
from deployflow.core.config.hashing import compute_config_hash, compute_document_hash
from deployflow.core.config.loader import DEFAULT_CONFIG
from deployflow.core.config.merge import deep_merge
from deployflow.core.errors import (
    DeployflowErrorPayload,
    adapter_exception,
    adapter_failed,
    policy_failure,
    timeout_exceeded,
)
from deployflow.core.exceptions import (
    DeadlockError,
    DefinitionError,
    DeployflowException,
    MissingParameterError,
)
from deployflow.core.pipeline.context import RunContext
from deployflow.core.pipeline.inputs import missing_env, resolve_inputs, step_references
from deployflow.core.pipeline.types import (
    AdapterResult,
    PipelineState,
    PolicyResult,
    SkipReason,
    StepSpec,
    StepStatus,
)
from deployflow.core.policy.gate import PolicyGate
from deployflow.core.state.record import RunRecord
from deployflow.core.state.store import FileStateStore

from .planner import PipelineGraph


@dataclass(frozen=True)
class RunResult:
    """Resultado agregado de uma execução (ou retomada) de pipeline."""

    record: RunRecord
    ctx: Optional[RunContext] = None

    @property
    def run_id(self) -> str:
        return self.record.run_id

    @property
    def state(self) -> PipelineState:
        return self.record.state

    @property
    def succeeded(self) -> bool:
        return self.record.succeeded


@dataclass
class _Outcome:
    """Resultado de um worker: última tentativa + histórico de retries."""

    result: Optional[AdapterResult]
    attempts: int
    exc: Optional[BaseException] = None
    retries: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class _Inflight:
    step: StepSpec
    deadline: float
    timeout_seconds: float


_CANCELLED = "cancelled"


def _new_run_id(created_at: datetime) -> str:
    return f"run-{created_at:%Y%m%dT%H%M%SZ}-{uuid.uuid4().hex[:8]}"


def _graph_hash(graph: PipelineGraph) -> str:
    return compute_document_hash(
        [
            {
                "id": s.id,
                "kind": s.kind,
                "params": s.params,
                "depends_on": list(s.depends_on),
                "gate": None if s.gate is None else [s.gate.policy, s.gate.threshold, s.gate.advisory, s.gate.source],
            }
            for s in graph.order
        ]
    )


class Engine:
    """
    Engine canônico do deployflow.

    Uso típico:
        engine = Engine(graph=graph, adapters=default_registry(), store=FileStateStore(dir))
        result = engine.run()
        result = engine.resume(run_id, retry_failed=True)
    """

    def __init__(
        self,
        *,
        graph: PipelineGraph,
        adapters: AdapterRegistry,
        store: FileStateStore,
        config: Optional[Dict[str, Any]] = None,
        env: Optional[Mapping[str, str]] = None,
        gate: Optional[PolicyGate] = None,
        pipeline_hash: str = "",
        sleep: Callable[[float], None] = time.sleep,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.graph = graph
        self.adapters = adapters
        self.store = store
        self.config: Dict[str, Any] = deep_merge(DEFAULT_CONFIG, config or {})
        self.env: Dict[str, str] = dict(env or {})
        self.gate = gate or PolicyGate()
        self.pipeline_hash = pipeline_hash or _graph_hash(graph)
        self._sleep = sleep
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._cancel = threading.Event()

    # ------------------------------------------------------------------
    # Configuração
    # ------------------------------------------------------------------
    def _engine_cfg(self) -> Dict[str, Any]:
        return self.config.get("engine", {}) or {}

    def _is_enabled(self, step: StepSpec) -> bool:
        steps_cfg = self.config.get("steps", {}) or {}
        step_cfg = steps_cfg.get(step.id, {}) or {}
        return bool(step.enabled) and bool(step_cfg.get("enabled", True))

    def _fail_fast(self) -> bool:
        return bool(self._engine_cfg().get("fail_fast", False))

    def _max_concurrency(self) -> int:
        return max(1, int(self._engine_cfg().get("max_concurrency", 1)))

    def _poll_interval(self) -> float:
        return float(self._engine_cfg().get("poll_interval_seconds", 0.5))

    def _timeout_for(self, step: StepSpec) -> float:
        if step.timeout_seconds is not None:
            return float(step.timeout_seconds)
        return float(self._engine_cfg().get("default_timeout_seconds", 1800.0))

    def _max_attempts(self, step: StepSpec) -> int:
        if not step.transient:
            return 1
        if step.retries is not None:
            return max(1, int(step.retries) + 1)
        retry = self._engine_cfg().get("retry", {}) or {}
        return max(1, int(retry.get("max_attempts", 1)))

    def _backoff(self, attempt: int) -> float:
        retry = self._engine_cfg().get("retry", {}) or {}
        base = float(retry.get("backoff_seconds", 0.0))
        factor = float(retry.get("backoff_factor", 1.0))
        cap = float(retry.get("max_backoff_seconds", base))
        return min(cap, base * factor ** (attempt - 1))

    # ------------------------------------------------------------------
    # Validação (antes de qualquer Step executar)
    # ------------------------------------------------------------------
    def validate(self) -> None:
        """
        Valida adapters, parâmetros, variáveis de ambiente e gates.

        Raises:
            DefinitionError: kind desconhecido, parâmetro obrigatório ausente,
                valor de parâmetro rejeitado pelo adapter, variável de ambiente
                ausente, policy desconhecida ou referência a saída de Step
                desabilitado.
        """
        disabled = {s.id for s in self.graph if not self._is_enabled(s)}
        for step in self.graph:
            adapter = self.adapters.get(step.kind)
            self.gate.validate(step)
            if step.id in disabled:
                continue
            check_step_params(adapter, step)
            unset = missing_env(step.params, self.env)
            if unset:
                raise MissingParameterError(
                    message=f"Step '{step.id}' references unset environment variables {unset}",
                    details={"step": step.id, "env": unset},
                    hint="Exporte as variáveis antes da execução ou declare defaults com ${env:NOME:-valor}.",
                )
            sources = list(step_references(step.params))
            if step.gate is not None and step.gate.source:
                sources.append(step.gate.source)
            for source in sources:
                if source in disabled:
                    raise MissingParameterError(
                        message=f"Step '{step.id}' consumes the output of disabled step '{source}'",
                        details={"step": step.id, "source": source},
                    )

    # ------------------------------------------------------------------
    # API pública
    # ------------------------------------------------------------------
    def cancel(self) -> None:
        """Solicita cancelamento cooperativo: nada novo é despachado."""
        self._cancel.set()

    def run(self, *, run_id: Optional[str] = None, meta: Optional[Dict[str, Any]] = None) -> RunResult:
        self.validate()
        created_at = self._clock()
        record = RunRecord.create(
            run_id=run_id or _new_run_id(created_at),
            pipeline_id=self.graph.name,
            step_ids=self.graph.ids,
            created_at=created_at,
            config_hash=compute_config_hash(self.config),
            pipeline_hash=self.pipeline_hash,
        )
        ctx = self._context(record, meta)
        for step in self.graph:
            if not self._is_enabled(step):
                record.mark_skipped(step.id, ts=created_at, reason=SkipReason.DISABLED)
        self.store.save(record)
        ctx.log(step_id="-", level="info", message="run created", pipeline=self.graph.name)
        return self._execute(record, ctx)

    def resume(self, run_id: str, *, retry_failed: bool = False) -> RunResult:
        """
        Retoma uma run persistida.

        - Steps RUNNING (interrompidos) voltam a PENDING
        - Steps SKIPPED por cancelamento voltam a PENDING
        - Com `retry_failed`, Steps FAILED e Steps SKIPPED por falha ou
          interrupção também voltam a PENDING
        - Steps SUCCEEDED nunca são reexecutados

        Raises:
            RunNotFoundError: run inexistente no store.
            DefinitionError: documento de pipeline diferente do registrado.
        """
        self.validate()
        record = self.store.load(run_id)

        recorded_hash = record.inputs.get("pipeline_hash")
        if recorded_hash and recorded_hash != self.pipeline_hash:
            raise DefinitionError(
                message=f"Run '{run_id}' was created from a different pipeline definition",
                details={"run_id": run_id, "recorded": recorded_hash, "current": self.pipeline_hash},
                hint="Retome a run com o mesmo documento de pipeline usado na criação.",
            )
        if set(record.steps) != set(self.graph.ids):
            raise DefinitionError(
                message=f"Run '{run_id}' does not match the steps of pipeline '{self.graph.name}'",
                details={"run_id": run_id, "recorded": sorted(record.steps), "current": sorted(self.graph.ids)},
            )

        ctx = self._context(record, None)
        ts = self._clock()
        cancelled = record.state == PipelineState.HALTED and record.halt_reason == _CANCELLED
        reset: List[str] = []
        for step in self.graph:
            status = record.status_of(step.id)
            entry = record.step(step.id)
            if status == StepStatus.RUNNING:
                record.reset_pending(step.id, ts=ts, reason="interrupted")
                reset.append(step.id)
                if not step.idempotent:
                    message = "non-idempotent step re-dispatched after interruption"
                    record.add_warning(step.id, message)
                    ctx.log(step_id=step.id, level="warning", message=message)
            elif retry_failed and status == StepStatus.FAILED:
                record.reset_pending(step.id, ts=ts, reason="retry_failed")
                reset.append(step.id)
            elif (
                status == StepStatus.SKIPPED
                and entry.get("skip_reason") == SkipReason.HALTED.value
                and (retry_failed or cancelled)
            ):
                record.reset_pending(step.id, ts=ts, reason="retry_failed" if retry_failed else "cancelled")
                reset.append(step.id)
            elif (
                retry_failed
                and status == StepStatus.SKIPPED
                and entry.get("skip_reason") == SkipReason.UPSTREAM_FAILED.value
            ):
                record.reset_pending(step.id, ts=ts, reason="retry_failed")
                reset.append(step.id)

        pending = record.ids_with_status(StepStatus.PENDING)
        if record.state != PipelineState.ACTIVE and not pending:
            ctx.log(step_id="-", level="info", message="nothing to resume", state=record.state.value)
            return RunResult(record=record, ctx=ctx)

        self.store.clear_cancel(run_id)
        record.reactivate(ts=ts)
        self.store.save(record)
        ctx.log(step_id="-", level="info", message="run resumed", reset=reset)
        return self._execute(record, ctx)

    # ------------------------------------------------------------------
    # Loop de escalonamento
    # ------------------------------------------------------------------
    def _context(self, record: RunRecord, meta: Optional[Dict[str, Any]]) -> RunContext:
        return RunContext(
            run_id=record.run_id,
            created_at=datetime.fromisoformat(record.created_at),
            config=self.config,
            env=self.env,
            meta=dict(meta or {}),
        )

    def _cancel_requested(self, record: RunRecord) -> bool:
        return self._cancel.is_set() or self.store.cancel_requested(record.run_id)

    def _execute(self, record: RunRecord, ctx: RunContext) -> RunResult:
        max_concurrency = self._max_concurrency()
        poll = self._poll_interval()
        running: Dict[Future, _Inflight] = {}
        executors: List[ThreadPoolExecutor] = []

        def _new_executor() -> ThreadPoolExecutor:
            ex = ThreadPoolExecutor(max_workers=max_concurrency, thread_name_prefix=f"deployflow-{record.run_id}")
            executors.append(ex)
            return ex

        executor = _new_executor()
        try:
            while True:
                if record.state == PipelineState.ACTIVE and self._cancel_requested(record):
                    ts = self._clock()
                    record.add_event("cancel_requested", ts=ts)
                    record.halt(ts=ts, reason=_CANCELLED)
                    self.store.save(record)
                    ctx.log(step_id="-", level="warning", message="cancellation requested")

                self._propagate_skips(record)

                if record.state == PipelineState.ACTIVE:
                    for step in self.graph.ready_steps(record):
                        if len(running) >= max_concurrency:
                            break
                        future, inflight = self._dispatch(executor, record, ctx, step)
                        if future is not None:
                            running[future] = inflight
                    # falha de resolução de entrada pode liberar novos skips
                    self._propagate_skips(record)

                if not running:
                    if record.all_terminal():
                        break
                    if record.state == PipelineState.ACTIVE and not self.graph.ready_steps(record):
                        raise DeadlockError(
                            message=f"Run '{record.run_id}' cannot make progress",
                            details={"pending": record.ids_with_status(StepStatus.PENDING)},
                        )
                    continue

                done, _ = wait(list(running), timeout=poll, return_when=FIRST_COMPLETED)
                for future in done:
                    inflight = running.pop(future)
                    self._apply(record, ctx, inflight.step, future.result())

                now = time.monotonic()
                expired = [f for f, inf in running.items() if now >= inf.deadline]
                for future in expired:
                    inflight = running.pop(future)
                    future.cancel()
                    self._apply_timeout(record, ctx, inflight)
                if expired:
                    # workers abandonados continuam ocupando threads do pool antigo
                    executor.shutdown(wait=False)
                    executor = _new_executor()

            record.finish(ts=self._clock())
            self.store.save(record)
            ctx.log(step_id="-", level="info", message="run finished", state=record.state.value)
            return RunResult(record=record, ctx=ctx)
        finally:
            for ex in executors:
                ex.shutdown(wait=False, cancel_futures=True)

    def _propagate_skips(self, record: RunRecord) -> None:
        ts: Optional[datetime] = None
        for step in self.graph:
            if record.status_of(step.id) != StepStatus.PENDING:
                continue
            if record.state == PipelineState.HALTED:
                reason: Optional[SkipReason] = SkipReason.HALTED
            elif step.continue_on_failure:
                reason = None
            else:
                reason = None
                for dep in step.depends_on:
                    status = record.status_of(dep)
                    skip_reason = record.step(dep).get("skip_reason")
                    if status == StepStatus.FAILED or (
                        status == StepStatus.SKIPPED and skip_reason != SkipReason.DISABLED.value
                    ):
                        reason = SkipReason.UPSTREAM_FAILED
                        break
            if reason is None:
                continue
            ts = ts or self._clock()
            record.mark_skipped(step.id, ts=ts, reason=reason)
            self.store.save(record)

    def _dispatch(
        self,
        executor: ThreadPoolExecutor,
        record: RunRecord,
        ctx: RunContext,
        step: StepSpec,
    ) -> Tuple[Optional[Future], Optional[_Inflight]]:
        adapter = self.adapters.get(step.kind)
        ts = self._clock()
        record.mark_running(step.id, ts=ts)
        try:
            inputs = resolve_inputs(step.params, step_id=step.id, env=self.env, outputs=record.outputs())
        except DeployflowException as e:
            payload = self._exception_to_error(step.id, e)
            record.mark_failed(step.id, ts=ts, error=payload.message, error_payload=payload.to_dict())
            self._on_failure(record, ctx, step, ts)
            self.store.save(record)
            return None, None
        self.store.save(record)

        timeout = self._timeout_for(step)
        ctx.log(step_id=step.id, level="info", message="step dispatched", kind=step.kind)
        # o adapter recebe o timeout efetivo para encerrar o processo externo
        future = executor.submit(self._work, adapter, replace(step, timeout_seconds=timeout), inputs, ctx)
        return future, _Inflight(step=step, deadline=time.monotonic() + timeout, timeout_seconds=timeout)

    def _work(self, adapter, step: StepSpec, inputs: Dict[str, Any], ctx: RunContext) -> _Outcome:
        """Executa o adapter com retries (thread de trabalho; não toca o RunRecord)."""
        max_attempts = self._max_attempts(step)
        retries: List[Dict[str, Any]] = []
        attempt = 0
        while True:
            attempt += 1
            result: Optional[AdapterResult] = None
            exc: Optional[BaseException] = None
            try:
                result = adapter.execute(step, inputs, ctx)
            except Exception as e:
                exc = e
            if result is not None and result.success:
                return _Outcome(result=result, attempts=attempt, retries=retries)
            if attempt >= max_attempts or self._cancel.is_set():
                return _Outcome(result=result, attempts=attempt, exc=exc, retries=retries)

            delay = self._backoff(attempt)
            error = str(exc) if exc is not None else (result.error_detail if result else None)
            retries.append({"ts": self._clock(), "attempt": attempt, "delay_seconds": delay, "error": error})
            ctx.log(step_id=step.id, level="warning", message="transient failure, retrying", attempt=attempt, delay=delay)
            self._sleep(delay)

    # ------------------------------------------------------------------
    # Aplicação de resultados (thread de escalonamento)
    # ------------------------------------------------------------------
    def _exception_to_error(self, step_id: str, exc: BaseException) -> DeployflowErrorPayload:
        """Converte exceções em DeployflowErrorPayload (sem stack trace)."""
        if isinstance(exc, DeployflowException):
            return DeployflowErrorPayload(
                type=exc.__class__.__name__,
                message=str(exc) or "Erro de execução",
                details=dict(exc.details or {}),
                hint=exc.hint,
            )
        return adapter_exception(step=step_id, exc=exc)

    def _on_failure(self, record: RunRecord, ctx: RunContext, step: StepSpec, ts: datetime) -> None:
        ctx.log(step_id=step.id, level="error", message="step failed", error=record.step(step.id).get("error"))
        if self._fail_fast():
            record.halt(ts=ts, reason=f"step '{step.id}' failed (fail_fast)")

    def _apply(self, record: RunRecord, ctx: RunContext, step: StepSpec, outcome: _Outcome) -> None:
        for retry in outcome.retries:
            payload = {k: v for k, v in retry.items() if k != "ts"}
            record.add_event("step_retry", ts=retry["ts"], step_id=step.id, payload=payload)

        ts = self._clock()
        warnings = ctx.pop_warnings(step.id)
        result = outcome.result

        if outcome.exc is not None or result is None:
            exc = outcome.exc or RuntimeError("adapter returned no result")
            payload = adapter_exception(step=step.id, exc=exc)
            record.mark_failed(
                step.id,
                ts=ts,
                error=payload.message,
                error_payload=payload.to_dict(),
                attempts=outcome.attempts,
                warnings=warnings,
            )
            self._on_failure(record, ctx, step, ts)
            self.store.save(record)
            return

        if not result.success:
            if result.timed_out:
                payload = timeout_exceeded(step=step.id, timeout_seconds=self._timeout_for(step))
            else:
                payload = adapter_failed(
                    step=step.id,
                    kind=step.kind,
                    error_detail=result.error_detail,
                    exit_code=result.exit_code,
                    attempts=outcome.attempts,
                )
            record.mark_failed(
                step.id,
                ts=ts,
                error=result.error_detail or payload.message,
                error_payload=payload.to_dict(),
                output=result.output,
                attempts=outcome.attempts,
                warnings=warnings,
            )
            self._on_failure(record, ctx, step, ts)
            self.store.save(record)
            return

        policy: Optional[PolicyResult] = None
        if step.gate is not None:
            source = step.gate.source or step.id
            evaluated = result.output if source == step.id else (record.step(source).get("output") or "")
            policy = self.gate.evaluate(step, evaluated)
            record.add_event("policy_evaluated", ts=ts, step_id=step.id, payload=policy.to_dict())
            ctx.log(
                step_id=step.id,
                level="info" if policy.passed else "warning",
                message="policy evaluated",
                policy=policy.policy,
                passed=policy.passed,
                reason=policy.reason,
            )
            if not policy.passed and not policy.advisory:
                payload = policy_failure(
                    step=step.id,
                    policy=policy.policy,
                    reason=policy.reason,
                    observed=policy.observed,
                )
                record.mark_failed(
                    step.id,
                    ts=ts,
                    error=policy.reason,
                    error_payload=payload.to_dict(),
                    output=result.output,
                    attempts=outcome.attempts,
                    policy=policy,
                    warnings=warnings,
                )
                record.halt(ts=ts, reason=f"policy gate '{policy.policy}' failed at step '{step.id}': {policy.reason}")
                self.store.save(record)
                return
            if not policy.passed:
                warnings = list(warnings) + [f"advisory gate '{policy.policy}' failed: {policy.reason}"]

        record.mark_succeeded(
            step.id,
            ts=ts,
            output=result.output,
            attempts=outcome.attempts,
            policy=policy,
            warnings=warnings,
        )
        ctx.log(step_id=step.id, level="info", message="step succeeded", attempts=outcome.attempts)
        self.store.save(record)

    def _apply_timeout(self, record: RunRecord, ctx: RunContext, inflight: _Inflight) -> None:
        step = inflight.step
        ts = self._clock()
        payload = timeout_exceeded(step=step.id, timeout_seconds=inflight.timeout_seconds)
        record.mark_failed(
            step.id,
            ts=ts,
            error=payload.message,
            error_payload=payload.to_dict(),
            attempts=record.step(step.id).get("attempts") or 1,
            warnings=ctx.pop_warnings(step.id),
        )
        ctx.log(step_id=step.id, level="error", message="step timed out", timeout_seconds=inflight.timeout_seconds)
        self._on_failure(record, ctx, step, ts)
        self.store.save(record)
