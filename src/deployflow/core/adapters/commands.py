# src/deployflow/core/adapters/commands.py
"""
Adapters embutidos para as ferramentas da esteira de deploy.

| kind      | ferramenta                               | parâmetros obrigatórios |
|-----------|------------------------------------------|-------------------------|
| provision | terraform                                | workdir                 |
| checkout  | git                                      | repository, dest        |
| scan      | trivy (default) ou sonar-scanner         | target (+ project_key p/ sonar) |
| build     | docker build                             | image                   |
| push      | docker push                              | image                   |
| deploy    | helm upgrade --install ou kubectl apply  | release, chart (helm) / manifest (kubectl) |
| monitor   | helm (kube-prometheus-stack por default) | -                       |
| shell     | argv arbitrário                          | command                 |
| gate      | nenhuma; repassa `input` para o gate     | input                   |

Os adapters apenas montam argv; semântica das ferramentas fica fora do
deployflow.
"""

from __future__ import annotations

import re
import shlex
from typing import Any, Dict, List, Mapping, Sequence

from deployflow.core.adapters.base import BaseAdapter, CommandAdapter, CommandOutcome
from deployflow.core.exceptions import DefinitionError
from deployflow.core.pipeline.context import RunContext
from deployflow.core.pipeline.types import AdapterResult, StepSpec

_QUALITY_GATE_LINE = re.compile(r"QUALITY GATE STATUS:", re.IGNORECASE)


def _pairs(flag: str, mapping: Any) -> List[str]:
    args: List[str] = []
    for key, value in (mapping or {}).items():
        args += [flag, f"{key}={value}"]
    return args


def _image_ref(inputs: Dict[str, Any]) -> str:
    image = str(inputs["image"])
    tag = inputs.get("tag")
    if tag in (None, "") or ":" in image.rsplit("/", 1)[-1]:
        return image
    return f"{image}:{tag}"


class ShellAdapter(CommandAdapter):
    kind = "shell"
    required_params = ("command",)

    def build_commands(self, step: StepSpec, inputs: Dict[str, Any]) -> List[List[str]]:
        command = inputs["command"]
        if isinstance(command, str):
            return [shlex.split(command)]
        return [[str(a) for a in command]]


class ProvisionAdapter(CommandAdapter):
    """terraform init (opcional) + plan/apply/destroy em `workdir`."""

    kind = "provision"
    required_params = ("workdir",)

    def build_commands(self, step: StepSpec, inputs: Dict[str, Any]) -> List[List[str]]:
        base = ["terraform", f"-chdir={inputs['workdir']}"]
        action = str(inputs.get("action") or "apply")
        commands: List[List[str]] = []
        if inputs.get("init", True):
            commands.append(base + ["init", "-input=false", "-no-color"])
        cmd = base + [action, "-input=false", "-no-color"]
        if action in ("apply", "destroy"):
            cmd.append("-auto-approve")
        if inputs.get("var_file"):
            cmd.append(f"-var-file={inputs['var_file']}")
        cmd += _pairs("-var", inputs.get("vars"))
        commands.append(cmd)
        return commands


class CheckoutAdapter(CommandAdapter):
    kind = "checkout"
    required_params = ("repository", "dest")

    def build_commands(self, step: StepSpec, inputs: Dict[str, Any]) -> List[List[str]]:
        cmd = ["git", "clone", "--depth", str(inputs.get("depth") or 1)]
        if inputs.get("ref"):
            cmd += ["--branch", str(inputs["ref"])]
        cmd += [str(inputs["repository"]), str(inputs["dest"])]
        return [cmd]


class ScanAdapter(CommandAdapter):
    """
    Scan de código ou imagem.

    - `scanner: trivy` (default): `mode` fs|image|config, saída JSON para o gate
      `max_severity`.
    - `scanner: sonar-scanner`: aguarda o quality gate do servidor
      (`host_url`, `project_key`; token via `env.SONAR_TOKEN`). Com o gate
      reprovado o sonar-scanner termina com exit code != 0; a linha
      `QUALITY GATE STATUS` vai para o gate `quality_gate` do Step.

    Qualquer outro valor de `scanner` é rejeitado na validação.
    """

    kind = "scan"
    required_params = ("target",)
    scanners = ("trivy", "sonar-scanner")

    def missing_params(self, params: Mapping[str, Any]) -> List[str]:
        missing = super().missing_params(params)
        if params.get("scanner") == "sonar-scanner" and params.get("project_key") in (None, ""):
            missing.append("project_key")
        return missing

    def validate_params(self, step: StepSpec) -> None:
        scanner = step.params.get("scanner")
        if scanner is None or (isinstance(scanner, str) and "${" in scanner):
            return
        if scanner not in self.scanners:
            raise DefinitionError(
                message=f"Step '{step.id}' uses unknown scanner '{scanner}'",
                details={"step": step.id, "scanner": scanner, "available": list(self.scanners)},
            )

    def reports_verdict(self, argv: Sequence[str], outcome: CommandOutcome) -> bool:
        if argv[0] != "sonar-scanner":
            return False
        return _QUALITY_GATE_LINE.search(f"{outcome.stdout}\n{outcome.stderr}") is not None

    def build_commands(self, step: StepSpec, inputs: Dict[str, Any]) -> List[List[str]]:
        scanner = str(inputs.get("scanner") or "trivy")
        target = str(inputs["target"])
        if scanner not in self.scanners:
            raise ValueError(f"unknown scanner '{scanner}'")

        if scanner == "sonar-scanner":
            cmd = [
                "sonar-scanner",
                f"-Dsonar.projectKey={inputs['project_key']}",
                f"-Dsonar.sources={target}",
                "-Dsonar.qualitygate.wait=true",
            ]
            if inputs.get("host_url"):
                cmd.append(f"-Dsonar.host.url={inputs['host_url']}")
            return [cmd]

        cmd = ["trivy", str(inputs.get("mode") or "fs"), "--format", "json", "--quiet"]
        severities = inputs.get("severity")
        if severities:
            if isinstance(severities, (list, tuple)):
                severities = ",".join(str(s) for s in severities)
            cmd += ["--severity", str(severities)]
        cmd.append(target)
        return [cmd]


class BuildAdapter(CommandAdapter):
    kind = "build"
    required_params = ("image",)

    def build_commands(self, step: StepSpec, inputs: Dict[str, Any]) -> List[List[str]]:
        cmd = ["docker", "build", "-t", _image_ref(inputs)]
        if inputs.get("dockerfile"):
            cmd += ["-f", str(inputs["dockerfile"])]
        cmd += _pairs("--build-arg", inputs.get("build_args"))
        cmd.append(str(inputs.get("context") or "."))
        return [cmd]


class PushAdapter(CommandAdapter):
    """docker push; normalmente declarado como `transient: true` no pipeline."""

    kind = "push"
    required_params = ("image",)

    def build_commands(self, step: StepSpec, inputs: Dict[str, Any]) -> List[List[str]]:
        return [["docker", "push", _image_ref(inputs)]]


class DeployAdapter(CommandAdapter):
    kind = "deploy"
    required_params = ()

    def missing_params(self, params: Mapping[str, Any]) -> List[str]:
        method = params.get("method") or "helm"
        needed = ("manifest",) if method == "kubectl" else ("release", "chart")
        return [p for p in needed if params.get(p) in (None, "")]

    def build_commands(self, step: StepSpec, inputs: Dict[str, Any]) -> List[List[str]]:
        namespace = str(inputs.get("namespace") or "default")

        if (inputs.get("method") or "helm") == "kubectl":
            cmd = ["kubectl", "apply", "-f", str(inputs["manifest"]), "--namespace", namespace]
            if inputs.get("kube_context"):
                cmd += ["--context", str(inputs["kube_context"])]
            return [cmd]

        cmd = [
            "helm", "upgrade", "--install",
            str(inputs["release"]), str(inputs["chart"]),
            "--namespace", namespace, "--create-namespace",
        ]
        for values_file in inputs.get("values") or []:
            cmd += ["-f", str(values_file)]
        for key, value in (inputs.get("set") or {}).items():
            cmd += ["--set", f"{key}={value}"]
        if inputs.get("wait", True):
            cmd.append("--wait")
        if inputs.get("kube_context"):
            cmd += ["--kube-context", str(inputs["kube_context"])]
        return [cmd]


class MonitorAdapter(CommandAdapter):
    """Instala a stack de monitoramento via helm (adiciona o repo quando `repo_url` é informado)."""

    kind = "monitor"
    required_params = ()

    def build_commands(self, step: StepSpec, inputs: Dict[str, Any]) -> List[List[str]]:
        chart = str(inputs.get("chart") or "prometheus-community/kube-prometheus-stack")
        commands: List[List[str]] = []
        if inputs.get("repo_url"):
            repo_name = str(inputs.get("repo_name") or chart.split("/", 1)[0])
            commands.append(["helm", "repo", "add", repo_name, str(inputs["repo_url"])])
            commands.append(["helm", "repo", "update"])
        cmd = [
            "helm", "upgrade", "--install",
            str(inputs.get("release") or "monitoring"), chart,
            "--namespace", str(inputs.get("namespace") or "monitoring"), "--create-namespace",
        ]
        for key, value in (inputs.get("set") or {}).items():
            cmd += ["--set", f"{key}={value}"]
        commands.append(cmd)
        return commands


class GateAdapter(BaseAdapter):
    """Não invoca ferramenta: repassa `input` (tipicamente `${steps.scan.output}`) como saída."""

    kind = "gate"
    required_params = ("input",)

    def execute(self, step: StepSpec, inputs: Dict[str, Any], ctx: RunContext) -> AdapterResult:
        value = inputs.get("input")
        return AdapterResult(success=True, output="" if value is None else str(value), exit_code=0)


BUILTIN_ADAPTERS = (
    ProvisionAdapter,
    CheckoutAdapter,
    ScanAdapter,
    BuildAdapter,
    PushAdapter,
    DeployAdapter,
    MonitorAdapter,
    ShellAdapter,
)
