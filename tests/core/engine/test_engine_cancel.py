# tests/core/engine/test_engine_cancel.py
"""
Testes de cancelamento cooperativo.

Invariantes:
    - Steps em execução terminam normalmente
    - Nada novo é despachado; Steps PENDING viram SKIPPED (halted)
    - A run termina HALTED e pode ser retomada
"""

import pytest

try:
    from deployflow.core.pipeline.types import PipelineState, StepStatus
    from tests.fixtures.adapters import ScriptedAdapter, step
except Exception as e:  # noqa: BLE001
    ScriptedAdapter = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if ScriptedAdapter is None:
        pytest.fail(f"Engine test fixtures are not importable. Import error: {_IMPORT_ERR}")


def _cancelling_adapter(on_step, trigger):
    class _Cancelling(ScriptedAdapter):
        def execute(self, step, inputs, ctx):
            if step.id == on_step:
                trigger(ctx.run_id)
            return super().execute(step, inputs, ctx)

    return _Cancelling()


STEPS = [step("provision"), step("deploy", depends_on=["provision"]), step("monitor", depends_on=["deploy"])]


def test_engine_cancel_halts_after_running_step(make_engine):
    _require_imports()
    holder = {}
    fake = _cancelling_adapter("provision", lambda run_id: holder["engine"].cancel())
    engine = make_engine(STEPS, adapters=[fake])
    holder["engine"] = engine

    result = engine.run()

    assert result.state == PipelineState.HALTED
    assert result.record.halt_reason == "cancelled"
    assert result.record.status_of("provision") == StepStatus.SUCCEEDED
    for sid in ("deploy", "monitor"):
        assert result.record.step(sid)["skip_reason"] == "halted"
    assert fake.called_ids() == ["provision"]
    assert any(e["event_type"] == "cancel_requested" for e in result.record.events)


def test_store_cancel_marker_is_honoured_and_run_resumes(make_engine, store):
    _require_imports()
    fake = _cancelling_adapter("provision", store.request_cancel)

    first = make_engine(STEPS, adapters=[fake]).run()
    assert first.state == PipelineState.HALTED

    resumed = make_engine(STEPS, adapters=[ScriptedAdapter()]).resume(first.run_id)

    assert resumed.state == PipelineState.COMPLETED
    assert resumed.record.status_of("monitor") == StepStatus.SUCCEEDED
    assert store.cancel_requested(first.run_id) is False
