# src/deployflow/core/state/record.py
"""
RunRecord: registro persistente de uma execução de pipeline.

O RunRecord consolida:
    - identidade da run (run_id, pipeline_id, created_at)
    - estado agregado do pipeline (active | halted | completed)
    - hashes das entradas (configuração e documento de pipeline)
    - estado incremental de cada Step (status, saída, erro, tentativas,
      policy avaliada, warnings)
    - Event Log ordenado (histórico de auditoria)

Decisões arquiteturais:
    - UTC é o timezone canônico para todos os timestamps
    - Toda transição de Step gera exatamente um evento
    - Transições inválidas levantam ValueError (erro de programação do Engine)

Invariantes:
    - `steps` contém exatamente os Steps do grafo, indexados por id
    - `events` nunca é reordenado nem compactado
    - A estrutura é serializável em JSON e reconstruível (round-trip)

Limites explícitos:
    - Não persiste (responsabilidade do State Store)
    - Não decide políticas de execução (responsabilidade do Engine)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from deployflow.core.pipeline.types import PipelineState, PolicyResult, SkipReason, StepStatus

RECORD_VERSION = 1


def _ensure_tzaware_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _iso(dt: datetime) -> str:
    return _ensure_tzaware_utc(dt).isoformat()


def _ms_between(start: datetime, end: datetime) -> int:
    s = _ensure_tzaware_utc(start)
    e = _ensure_tzaware_utc(end)
    return max(0, int((e - s).total_seconds() * 1000))


_ALLOWED = {
    StepStatus.PENDING: {StepStatus.RUNNING, StepStatus.SKIPPED},
    StepStatus.RUNNING: {StepStatus.SUCCEEDED, StepStatus.FAILED, StepStatus.PENDING},
    StepStatus.SUCCEEDED: set(),
    StepStatus.FAILED: {StepStatus.PENDING},
    StepStatus.SKIPPED: {StepStatus.PENDING},
}


def _new_step_entry(step_id: str) -> Dict[str, Any]:
    return {
        "step_id": step_id,
        "status": StepStatus.PENDING.value,
        "attempts": 0,
        "output": "",
        "error": None,
        "error_payload": None,
        "policy": None,
        "skip_reason": None,
        "warnings": [],
        "started_at": None,
        "finished_at": None,
        "duration_ms": None,
    }


@dataclass
class RunRecord:
    """
    Estado persistido de uma run.

    Pertence exclusivamente ao State Store; é mutado somente pelo Engine,
    em uma única thread de escalonamento.
    """

    run_id: str
    pipeline_id: str
    created_at: str
    state: PipelineState = PipelineState.ACTIVE
    inputs: Dict[str, Any] = field(default_factory=dict)
    steps: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    events: List[Dict[str, Any]] = field(default_factory=list)
    halt_reason: Optional[str] = None
    finished_at: Optional[str] = None
    version: int = RECORD_VERSION

    # ------------------------------------------------------------------
    # Criação / serialização
    # ------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        *,
        run_id: str,
        pipeline_id: str,
        step_ids: Iterable[str],
        created_at: datetime,
        config_hash: str = "",
        pipeline_hash: str = "",
    ) -> "RunRecord":
        record = cls(
            run_id=run_id,
            pipeline_id=pipeline_id,
            created_at=_iso(created_at),
            inputs={"config_hash": config_hash, "pipeline_hash": pipeline_hash},
            steps={sid: _new_step_entry(sid) for sid in step_ids},
        )
        record.add_event("run_created", ts=created_at, payload={"pipeline_id": pipeline_id})
        return record

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "run_id": self.run_id,
            "pipeline_id": self.pipeline_id,
            "created_at": self.created_at,
            "finished_at": self.finished_at,
            "state": self.state.value,
            "halt_reason": self.halt_reason,
            "inputs": dict(self.inputs),
            "steps": {k: dict(v) for k, v in self.steps.items()},
            "events": [dict(e) for e in self.events],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunRecord":
        return cls(
            run_id=str(data["run_id"]),
            pipeline_id=str(data.get("pipeline_id", "")),
            created_at=str(data.get("created_at", "")),
            state=PipelineState(data.get("state", PipelineState.ACTIVE.value)),
            inputs=dict(data.get("inputs", {}) or {}),
            steps={k: dict(v) for k, v in (data.get("steps", {}) or {}).items()},
            events=[dict(e) for e in (data.get("events", []) or [])],
            halt_reason=data.get("halt_reason"),
            finished_at=data.get("finished_at"),
            version=int(data.get("version", RECORD_VERSION)),
        )

    # ------------------------------------------------------------------
    # Consulta
    # ------------------------------------------------------------------
    def status_of(self, step_id: str) -> StepStatus:
        return StepStatus(self.steps[step_id]["status"])

    def step(self, step_id: str) -> Dict[str, Any]:
        return self.steps[step_id]

    def ids_with_status(self, status: StepStatus) -> List[str]:
        return [sid for sid in self.steps if self.status_of(sid) == status]

    def all_terminal(self) -> bool:
        return all(self.status_of(sid).is_terminal for sid in self.steps)

    def outputs(self) -> Dict[str, str]:
        """Saídas capturadas dos Steps SUCCEEDED (para `${steps.<id>.output}`)."""
        return {
            sid: entry.get("output") or ""
            for sid, entry in self.steps.items()
            if entry.get("status") == StepStatus.SUCCEEDED.value
        }

    def policy_of(self, step_id: str) -> Optional[PolicyResult]:
        raw = self.steps[step_id].get("policy")
        return PolicyResult.from_dict(raw) if raw else None

    def counts(self) -> Dict[str, int]:
        counts = {s.value: 0 for s in StepStatus}
        for entry in self.steps.values():
            counts[entry["status"]] += 1
        return counts

    @property
    def succeeded(self) -> bool:
        """Run COMPLETED sem nenhum Step FAILED."""
        return self.state == PipelineState.COMPLETED and not self.ids_with_status(StepStatus.FAILED)

    # ------------------------------------------------------------------
    # Event Log
    # ------------------------------------------------------------------
    def add_event(
        self,
        event_type: str,
        *,
        ts: datetime,
        step_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        ev: Dict[str, Any] = {"event_type": event_type, "timestamp": _iso(ts)}
        if step_id is not None:
            ev["step_id"] = step_id
        if payload is not None:
            ev["payload"] = payload
        self.events.append(ev)

    # ------------------------------------------------------------------
    # Transições de Step
    # ------------------------------------------------------------------
    def _transition(self, step_id: str, target: StepStatus) -> Dict[str, Any]:
        entry = self.steps[step_id]
        current = StepStatus(entry["status"])
        if target not in _ALLOWED[current]:
            raise ValueError(f"Invalid transition for step '{step_id}': {current.value} -> {target.value}")
        entry["status"] = target.value
        return entry

    def mark_running(self, step_id: str, *, ts: datetime) -> None:
        entry = self._transition(step_id, StepStatus.RUNNING)
        entry.update(
            {
                "started_at": _iso(ts),
                "finished_at": None,
                "duration_ms": None,
                "error": None,
                "error_payload": None,
                "policy": None,
                "skip_reason": None,
            }
        )
        self.add_event("step_started", ts=ts, step_id=step_id)

    def _finish(self, entry: Dict[str, Any], ts: datetime) -> None:
        started = entry.get("started_at")
        started_dt = datetime.fromisoformat(started) if started else ts
        entry["finished_at"] = _iso(ts)
        entry["duration_ms"] = _ms_between(started_dt, ts)

    def mark_succeeded(
        self,
        step_id: str,
        *,
        ts: datetime,
        output: str,
        attempts: int,
        policy: Optional[PolicyResult] = None,
        warnings: Optional[List[str]] = None,
    ) -> None:
        entry = self._transition(step_id, StepStatus.SUCCEEDED)
        entry.update(
            {
                "output": output,
                "attempts": attempts,
                "policy": policy.to_dict() if policy else None,
                "warnings": list(entry.get("warnings") or []) + list(warnings or []),
            }
        )
        self._finish(entry, ts)
        self.add_event(
            "step_succeeded",
            ts=ts,
            step_id=step_id,
            payload={"attempts": attempts, "duration_ms": entry["duration_ms"]},
        )

    def mark_failed(
        self,
        step_id: str,
        *,
        ts: datetime,
        error: str,
        error_payload: Optional[Dict[str, Any]] = None,
        output: str = "",
        attempts: int = 0,
        policy: Optional[PolicyResult] = None,
        warnings: Optional[List[str]] = None,
    ) -> None:
        entry = self._transition(step_id, StepStatus.FAILED)
        entry.update(
            {
                "output": output,
                "error": error,
                "error_payload": error_payload,
                "attempts": attempts,
                "policy": policy.to_dict() if policy else None,
                "warnings": list(entry.get("warnings") or []) + list(warnings or []),
            }
        )
        self._finish(entry, ts)
        self.add_event(
            "step_failed",
            ts=ts,
            step_id=step_id,
            payload={"error": error, "type": (error_payload or {}).get("type")},
        )

    def mark_skipped(self, step_id: str, *, ts: datetime, reason: SkipReason) -> None:
        entry = self._transition(step_id, StepStatus.SKIPPED)
        entry["skip_reason"] = reason.value
        entry["finished_at"] = _iso(ts)
        self.add_event("step_skipped", ts=ts, step_id=step_id, payload={"reason": reason.value})

    def reset_pending(self, step_id: str, *, ts: datetime, reason: str) -> None:
        entry = self._transition(step_id, StepStatus.PENDING)
        entry.update({"skip_reason": None, "finished_at": None, "duration_ms": None})
        self.add_event("step_reset", ts=ts, step_id=step_id, payload={"reason": reason})

    def add_warning(self, step_id: str, message: str) -> None:
        self.steps[step_id].setdefault("warnings", []).append(message)

    # ------------------------------------------------------------------
    # Estado do pipeline
    # ------------------------------------------------------------------
    def halt(self, *, ts: datetime, reason: str) -> None:
        if self.state == PipelineState.HALTED:
            return
        self.state = PipelineState.HALTED
        self.halt_reason = reason
        self.add_event("run_halted", ts=ts, payload={"reason": reason})

    def reactivate(self, *, ts: datetime) -> None:
        self.state = PipelineState.ACTIVE
        self.halt_reason = None
        self.finished_at = None
        self.add_event("run_resumed", ts=ts)

    def finish(self, *, ts: datetime) -> None:
        if self.state == PipelineState.ACTIVE:
            self.state = PipelineState.COMPLETED
        self.finished_at = _iso(ts)
        self.add_event(
            "run_completed" if self.state == PipelineState.COMPLETED else "run_finished_halted",
            ts=ts,
            payload={"state": self.state.value, "counts": self.counts()},
        )
