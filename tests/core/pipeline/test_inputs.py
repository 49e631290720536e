# tests/core/pipeline/test_inputs.py
"""Testes da resolução de referências `${env:...}` e `${steps.<id>.output}`."""

import pytest

try:
    from deployflow.core.exceptions import MissingParameterError
    from deployflow.core.pipeline.inputs import env_references, missing_env, resolve_inputs, step_references
except Exception as e:  # noqa: BLE001
    resolve_inputs = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if resolve_inputs is None:
        pytest.fail(f"Input resolution is not importable. Import error: {_IMPORT_ERR}")


def test_resolve_env_and_step_outputs_preserving_order():
    _require_imports()
    params = {
        "image": "${env:REGISTRY}/app",
        "tag": "${env:TAG:-latest}",
        "input": "${steps.scan.output}",
        "set": {"token": "${env:TOKEN}"},
        "values": ["a-${env:TAG:-x}.yaml"],
        "wait": True,
    }
    out = resolve_inputs(
        params,
        step_id="deploy",
        env={"REGISTRY": "registry.invalid", "TOKEN": "t0k"},
        outputs={"scan": '{"Results": []}'},
    )

    assert list(out) == list(params)
    assert out["image"] == "registry.invalid/app"
    assert out["tag"] == "latest"
    assert out["input"] == '{"Results": []}'
    assert out["set"] == {"token": "t0k"}
    assert out["values"] == ["a-x.yaml"]
    assert out["wait"] is True


def test_missing_env_without_default_raises():
    _require_imports()
    with pytest.raises(MissingParameterError) as exc:
        resolve_inputs({"image": "${env:REGISTRY}"}, step_id="build", env={}, outputs={})
    assert exc.value.details["env"] == "REGISTRY"


def test_unavailable_step_output_raises():
    _require_imports()
    with pytest.raises(MissingParameterError):
        resolve_inputs({"input": "${steps.scan.output}"}, step_id="gate", env={}, outputs={})


def test_reference_discovery():
    _require_imports()
    params = {"a": "${steps.scan.output} ${steps.scan.output}", "b": ["${env:X}", "${env:Y:-1}"]}
    assert step_references(params) == ["scan"]
    assert env_references(params) == [("X", False), ("Y", True)]
    assert missing_env(params, {}) == ["X"]
    assert missing_env(params, {"X": ""}) == []
