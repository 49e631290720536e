# tests/core/pipeline/test_graph_ready_steps.py
"""
Testes de `PipelineGraph.ready_steps`.

Um Step está pronto quando está PENDING e todas as dependências estão
SUCCEEDED ou SKIPPED; Steps `continue_on_failure` aceitam dependências
FAILED. O retorno segue a ordem topológica.
"""

from datetime import datetime, timezone

import pytest

try:
    from deployflow.core.engine.planner import PipelineGraph
    from deployflow.core.pipeline.types import SkipReason, StepStatus
    from deployflow.core.state.record import RunRecord
    from tests.fixtures.adapters import step
except Exception as e:  # noqa: BLE001
    PipelineGraph = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None

TS = datetime(2026, 1, 16, tzinfo=timezone.utc)


def _require_imports():
    if PipelineGraph is None:
        pytest.fail(f"PipelineGraph is not importable. Import error: {_IMPORT_ERR}")


def _record(graph):
    return RunRecord.create(run_id="run-x", pipeline_id="p", step_ids=graph.ids, created_at=TS)


def test_roots_are_ready_initially():
    _require_imports()
    graph = PipelineGraph.build([step("a"), step("b"), step("c", depends_on=["a", "b"])])
    assert [s.id for s in graph.ready_steps(_record(graph))] == ["a", "b"]


def test_step_becomes_ready_when_all_dependencies_succeed():
    _require_imports()
    graph = PipelineGraph.build([step("a"), step("b"), step("c", depends_on=["a", "b"])])
    record = _record(graph)
    record.mark_running("a", ts=TS)
    record.mark_succeeded("a", ts=TS, output="", attempts=1)
    assert [s.id for s in graph.ready_steps(record)] == ["b"]

    record.mark_running("b", ts=TS)
    record.mark_succeeded("b", ts=TS, output="", attempts=1)
    assert [s.id for s in graph.ready_steps(record)] == ["c"]


def test_skipped_dependency_counts_as_satisfied():
    _require_imports()
    graph = PipelineGraph.build([step("a"), step("b", depends_on=["a"])])
    record = _record(graph)
    record.mark_skipped("a", ts=TS, reason=SkipReason.DISABLED)
    assert [s.id for s in graph.ready_steps(record)] == ["b"]


def test_failed_dependency_only_satisfies_continue_on_failure():
    _require_imports()
    graph = PipelineGraph.build(
        [
            step("a"),
            step("strict", depends_on=["a"]),
            step("cleanup", depends_on=["a"], continue_on_failure=True),
        ]
    )
    record = _record(graph)
    record.mark_running("a", ts=TS)
    record.mark_failed("a", ts=TS, error="boom")

    assert [s.id for s in graph.ready_steps(record)] == ["cleanup"]
    assert record.status_of("strict") == StepStatus.PENDING
