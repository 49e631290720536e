# tests/core/engine/test_engine_concurrency.py
"""
Testes de concorrência do Engine.

Invariantes:
    - Steps independentes executam em paralelo, limitados por `max_concurrency`
    - Um Step nunca inicia antes de todas as dependências serem terminais
"""

import threading

import pytest

try:
    from deployflow.core.pipeline.types import AdapterResult, StepStatus
    from tests.fixtures.adapters import ScriptedAdapter, step
except Exception as e:  # noqa: BLE001
    ScriptedAdapter = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if ScriptedAdapter is None:
        pytest.fail(f"Engine test fixtures are not importable. Import error: {_IMPORT_ERR}")


@pytest.mark.parametrize("limit", [1, 2])
def test_max_concurrency_is_respected(make_engine, limit):
    _require_imports()
    roots = ["provision", "checkout", "lint", "docs"]
    fake = ScriptedAdapter(delays={sid: 0.15 for sid in roots})

    result = make_engine(
        [step(sid) for sid in roots],
        adapters=[fake],
        config={"engine": {"max_concurrency": limit}},
    ).run()

    assert result.succeeded
    assert fake.max_active == limit


def test_independent_steps_overlap(make_engine):
    _require_imports()
    barrier = threading.Barrier(2, timeout=5)

    class _Rendezvous(ScriptedAdapter):
        def execute(self, step, inputs, ctx):
            barrier.wait()
            return AdapterResult(success=True, output=step.id)

    result = make_engine([step("scan"), step("quality")], adapters=[_Rendezvous()]).run()

    assert result.record.status_of("scan") == StepStatus.SUCCEEDED
    assert result.record.status_of("quality") == StepStatus.SUCCEEDED


def test_dependencies_finish_before_dependents_start(make_engine):
    _require_imports()
    fake = ScriptedAdapter(delays={"provision": 0.1, "push": 0.05})
    steps = [
        step("provision"),
        step("build"),
        step("push", depends_on=["build"]),
        step("deploy", depends_on=["provision", "push"]),
    ]
    record = make_engine(steps, adapters=[fake]).run().record

    events = record.events
    def _at(event_type, sid):
        return next(i for i, e in enumerate(events) if e["event_type"] == event_type and e.get("step_id") == sid)

    assert _at("step_started", "deploy") > _at("step_succeeded", "provision")
    assert _at("step_started", "deploy") > _at("step_succeeded", "push")
    assert _at("step_started", "push") > _at("step_succeeded", "build")
