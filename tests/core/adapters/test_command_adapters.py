# tests/core/adapters/test_command_adapters.py
"""
Testes dos adapters de linha de comando embutidos.

Nenhum processo real é executado: um runner falso registra o argv
montado por cada adapter e devolve o `CommandOutcome` configurado.

Invariantes verificados:
    - argv montado conforme os parâmetros resolvidos
    - exit code != 0 vira `success=False`, nunca exceção
    - binário ausente vira exit code 127
    - timeout do processo vira `timed_out=True`
"""

import subprocess

import pytest

try:
    from deployflow.core.adapters.base import CommandOutcome
    from deployflow.core.adapters.commands import (
        BuildAdapter,
        CheckoutAdapter,
        DeployAdapter,
        GateAdapter,
        MonitorAdapter,
        ProvisionAdapter,
        PushAdapter,
        ScanAdapter,
        ShellAdapter,
    )
    from deployflow.core.pipeline.types import StepSpec
except Exception as e:  # noqa: BLE001
    CommandOutcome = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if CommandOutcome is None:
        pytest.fail(f"Adapter modules are not importable. Import error: {_IMPORT_ERR}")


class FakeRunner:
    def __init__(self, outcomes=None, raises=None):
        self.outcomes = list(outcomes or [])
        self.raises = raises
        self.calls = []

    def __call__(self, argv, *, env=None, cwd=None, timeout=None):
        self.calls.append({"argv": list(argv), "env": env, "cwd": cwd, "timeout": timeout})
        if self.raises is not None:
            raise self.raises
        if self.outcomes:
            return self.outcomes.pop(0)
        return CommandOutcome(returncode=0, stdout=f"{argv[0]} ok\n")

    @property
    def argvs(self):
        return [c["argv"] for c in self.calls]


def _run(adapter_cls, params, ctx, *, runner=None, **step_kwargs):
    runner = runner or FakeRunner()
    adapter = adapter_cls(runner=runner)
    spec = StepSpec(id="s", kind=adapter.kind, params=params, **step_kwargs)
    return adapter.execute(spec, dict(params), ctx), runner


def test_provision_runs_init_then_apply(dummy_ctx):
    _require_imports()
    result, runner = _run(ProvisionAdapter, {"workdir": "infra", "vars": {"region": "eu-west-1"}}, dummy_ctx)

    assert result.success is True
    assert runner.argvs == [
        ["terraform", "-chdir=infra", "init", "-input=false", "-no-color"],
        ["terraform", "-chdir=infra", "apply", "-input=false", "-no-color", "-auto-approve", "-var", "region=eu-west-1"],
    ]
    assert result.output == "terraform ok\nterraform ok\n"


def test_provision_destroy_without_init(dummy_ctx):
    _require_imports()
    _, runner = _run(ProvisionAdapter, {"workdir": "infra", "action": "destroy", "init": False}, dummy_ctx)

    assert runner.argvs == [["terraform", "-chdir=infra", "destroy", "-input=false", "-no-color", "-auto-approve"]]


def test_checkout_clones_ref(dummy_ctx):
    _require_imports()
    _, runner = _run(
        CheckoutAdapter,
        {"repository": "https://git.example.com/app.git", "dest": "build/src", "ref": "main"},
        dummy_ctx,
    )
    assert runner.argvs == [
        ["git", "clone", "--depth", "1", "--branch", "main", "https://git.example.com/app.git", "build/src"]
    ]


def test_scan_trivy_defaults(dummy_ctx):
    _require_imports()
    _, runner = _run(ScanAdapter, {"target": "build/src", "severity": ["HIGH", "CRITICAL"]}, dummy_ctx)

    assert runner.argvs == [["trivy", "fs", "--format", "json", "--quiet", "--severity", "HIGH,CRITICAL", "build/src"]]


def test_scan_sonar_requires_project_key():
    _require_imports()
    adapter = ScanAdapter(runner=FakeRunner())

    assert adapter.missing_params({"target": "src", "scanner": "sonar-scanner"}) == ["project_key"]
    assert adapter.missing_params({"target": "src"}) == []


def test_scan_sonar_argv(dummy_ctx):
    _require_imports()
    _, runner = _run(
        ScanAdapter,
        {"target": "src", "scanner": "sonar-scanner", "project_key": "app", "host_url": "https://sonar.local"},
        dummy_ctx,
    )
    assert runner.argvs == [
        [
            "sonar-scanner",
            "-Dsonar.projectKey=app",
            "-Dsonar.sources=src",
            "-Dsonar.qualitygate.wait=true",
            "-Dsonar.host.url=https://sonar.local",
        ]
    ]


def test_build_and_push_use_tagged_image(dummy_ctx):
    _require_imports()
    params = {"image": "registry.local/app", "tag": "1.2.3", "context": "build/src", "build_args": {"VERSION": "1.2.3"}}
    _, build_runner = _run(BuildAdapter, params, dummy_ctx)
    _, push_runner = _run(PushAdapter, params, dummy_ctx)

    assert build_runner.argvs == [
        ["docker", "build", "-t", "registry.local/app:1.2.3", "--build-arg", "VERSION=1.2.3", "build/src"]
    ]
    assert push_runner.argvs == [["docker", "push", "registry.local/app:1.2.3"]]


def test_image_with_explicit_tag_is_kept(dummy_ctx):
    _require_imports()
    _, runner = _run(PushAdapter, {"image": "registry.local:5000/app:edge", "tag": "1.0"}, dummy_ctx)

    assert runner.argvs == [["docker", "push", "registry.local:5000/app:edge"]]


def test_deploy_helm(dummy_ctx):
    _require_imports()
    _, runner = _run(
        DeployAdapter,
        {"release": "app", "chart": "charts/app", "namespace": "prod", "set": {"image.tag": "1.2.3"}},
        dummy_ctx,
    )
    assert runner.argvs == [
        [
            "helm", "upgrade", "--install", "app", "charts/app",
            "--namespace", "prod", "--create-namespace",
            "--set", "image.tag=1.2.3",
            "--wait",
        ]
    ]


def test_deploy_kubectl_and_required_params(dummy_ctx):
    _require_imports()
    adapter = DeployAdapter(runner=FakeRunner())
    assert adapter.missing_params({}) == ["release", "chart"]
    assert adapter.missing_params({"method": "kubectl"}) == ["manifest"]

    _, runner = _run(DeployAdapter, {"method": "kubectl", "manifest": "k8s/app.yaml"}, dummy_ctx)
    assert runner.argvs == [["kubectl", "apply", "-f", "k8s/app.yaml", "--namespace", "default"]]


def test_monitor_adds_repo_when_url_given(dummy_ctx):
    _require_imports()
    _, runner = _run(
        MonitorAdapter,
        {"repo_url": "https://prometheus-community.github.io/helm-charts"},
        dummy_ctx,
    )
    assert runner.argvs[0] == [
        "helm", "repo", "add", "prometheus-community", "https://prometheus-community.github.io/helm-charts"
    ]
    assert runner.argvs[1] == ["helm", "repo", "update"]
    assert runner.argvs[2][:5] == [
        "helm", "upgrade", "--install", "monitoring", "prometheus-community/kube-prometheus-stack"
    ]


def test_shell_splits_string_command(dummy_ctx):
    _require_imports()
    _, runner = _run(ShellAdapter, {"command": "helm uninstall app --namespace prod"}, dummy_ctx)

    assert runner.argvs == [["helm", "uninstall", "app", "--namespace", "prod"]]


def test_process_env_merges_step_env_and_cwd(dummy_ctx):
    _require_imports()
    _, runner = _run(ShellAdapter, {"command": ["env"], "env": {"SONAR_TOKEN": "t0k"}, "cwd": "build"}, dummy_ctx)

    call = runner.calls[0]
    assert call["env"] == {"PATH": "/usr/bin", "SONAR_TOKEN": "t0k"}
    assert call["cwd"] == "build"


def test_nonzero_exit_is_failure_result(dummy_ctx):
    _require_imports()
    runner = FakeRunner(outcomes=[CommandOutcome(returncode=2, stdout="partial", stderr="denied\n")])
    result, _ = _run(PushAdapter, {"image": "app"}, dummy_ctx, runner=runner)

    assert result.success is False
    assert result.exit_code == 2
    assert result.error_detail == "denied"
    assert result.output == "partial"


def test_first_failing_command_stops_sequence(dummy_ctx):
    _require_imports()
    runner = FakeRunner(outcomes=[CommandOutcome(returncode=1)])
    result, _ = _run(ProvisionAdapter, {"workdir": "infra"}, dummy_ctx, runner=runner)

    assert result.success is False
    assert len(runner.calls) == 1
    assert result.error_detail == "terraform exited with code 1"


def test_missing_executable_is_exit_127(dummy_ctx):
    _require_imports()
    result, _ = _run(PushAdapter, {"image": "app"}, dummy_ctx, runner=FakeRunner(raises=FileNotFoundError("docker")))

    assert result.success is False
    assert result.exit_code == 127
    assert "executable not found: docker" in result.error_detail


def test_process_timeout_is_reported(dummy_ctx):
    _require_imports()
    runner = FakeRunner(raises=subprocess.TimeoutExpired(cmd="helm", timeout=5))
    result, _ = _run(DeployAdapter, {"release": "app", "chart": "c"}, dummy_ctx, runner=runner, timeout_seconds=5)

    assert result.success is False
    assert result.timed_out is True
    assert runner.calls[0]["timeout"] == 5


def test_gate_adapter_passes_input_through(dummy_ctx):
    _require_imports()
    adapter = GateAdapter()
    spec = StepSpec(id="gate", kind="gate", params={"input": "{}"})

    result = adapter.execute(spec, {"input": "{}"}, dummy_ctx)

    assert result.success is True
    assert result.output == "{}"
    assert adapter.missing_params({}) == ["input"]
