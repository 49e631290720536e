# tests/core/pipeline/test_definition_loader.py
"""
Testes do loader de documentos de pipeline (YAML/JSON).

Os testes asseguram que:
- documentos válidos viram `PipelineDefinition` com StepSpecs completos
- chaves desconhecidas e tipos inválidos são rejeitados
- os documentos de exemplo do repositório são válidos
"""

import json
from pathlib import Path

import pytest

try:
    from deployflow.core.engine.planner import PipelineGraph
    from deployflow.core.exceptions import InvalidPipelineDocumentError
    from deployflow.core.pipeline.definition import load_pipeline, parse_pipeline
    from deployflow.core.pipeline.types import GateSpec
except Exception as e:  # noqa: BLE001
    load_pipeline = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None

REPO_ROOT = Path(__file__).resolve().parents[3]

DOC = """
pipeline: webapp
description: sample
steps:
  - id: checkout
    kind: checkout
    params: {repository: "https://example.invalid/app.git", dest: src}
  - id: scan
    label: Vulnerability scan
    kind: scan
    depends_on: checkout
    timeout_seconds: 600
    params: {target: src}
  - id: gate
    kind: gate
    depends_on: [scan]
    gate: {policy: max_severity, threshold: HIGH}
    params: {input: "${steps.scan.output}"}
  - id: push
    kind: push
    depends_on: [gate]
    transient: true
    retries: 2
    idempotent: false
    params: {image: registry.invalid/app}
"""


def _require_imports():
    if load_pipeline is None:
        pytest.fail(f"Pipeline loader is not importable. Import error: {_IMPORT_ERR}")


def test_load_yaml_document(tmp_path: Path):
    _require_imports()
    path = tmp_path / "pipeline.yaml"
    path.write_text(DOC, encoding="utf-8")

    definition = load_pipeline(path)

    assert definition.name == "webapp"
    assert [s.id for s in definition.steps] == ["checkout", "scan", "gate", "push"]
    scan = definition.steps[1]
    assert scan.depends_on == ("checkout",)
    assert scan.timeout_seconds == 600.0
    assert scan.label == "Vulnerability scan"
    gate = definition.steps[2]
    assert gate.gate == GateSpec(policy="max_severity", threshold="HIGH")
    push = definition.steps[3]
    assert push.transient and push.retries == 2 and not push.idempotent
    assert len(definition.document_hash) == 64


def test_json_document_with_string_gate():
    _require_imports()
    doc = json.loads(
        json.dumps(
            {
                "pipeline": "p",
                "steps": [{"id": "q", "kind": "scan", "params": {"target": "."}, "gate": "quality_gate"}],
            }
        )
    )
    definition = parse_pipeline(doc)
    assert definition.steps[0].gate == GateSpec(policy="quality_gate")


@pytest.mark.parametrize(
    "doc",
    [
        [],
        {"steps": [{"id": "a", "kind": "shell"}]},
        {"pipeline": "p", "steps": []},
        {"pipeline": "p", "steps": [{"id": "a", "kind": "shell", "dependson": ["b"]}]},
        {"pipeline": "p", "steps": [{"id": "a", "kind": "shell", "retries": -1}]},
        {"pipeline": "p", "steps": [{"id": "a", "kind": "shell", "timeout_seconds": 0}]},
        {"pipeline": "p", "steps": [{"id": "a", "kind": "shell", "transient": "yes"}]},
        {"pipeline": "p", "steps": [{"id": "a", "kind": "shell", "gate": {"policy": "x", "level": 1}}]},
        {"pipeline": "p", "steps": [{"kind": "shell"}]},
        {"pipeline": "p", "stages": []},
    ],
)
def test_invalid_documents_are_rejected(doc):
    _require_imports()
    with pytest.raises(InvalidPipelineDocumentError):
        parse_pipeline(doc)


def test_missing_file_is_invalid_document(tmp_path: Path):
    _require_imports()
    with pytest.raises(InvalidPipelineDocumentError):
        load_pipeline(tmp_path / "missing.yaml")


def test_malformed_yaml_is_invalid_document(tmp_path: Path):
    _require_imports()
    path = tmp_path / "bad.yaml"
    path.write_text("pipeline: [unclosed\n", encoding="utf-8")
    with pytest.raises(InvalidPipelineDocumentError):
        load_pipeline(path)


@pytest.mark.parametrize("name", ["deploy.yaml", "cleanup.yaml"])
def test_bundled_pipelines_are_valid(name):
    _require_imports()
    definition = load_pipeline(REPO_ROOT / "pipelines" / name)
    graph = PipelineGraph.build(definition.steps, name=definition.name)
    assert len(graph) == len(definition.steps)
