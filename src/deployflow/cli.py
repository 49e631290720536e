# src/deployflow/cli.py
"""
CLI do deployflow.

Subcomandos:
    run <pipeline> [--resume RUN_ID] [--retry-failed] [--concurrency N]
                   [--config PATH] [--state-dir DIR]
    validate <pipeline>
    show <run_id> [--json]
    list
    cancel <run_id>

Códigos de saída:
    0 → run COMPLETED sem Steps FAILED (ou comando auxiliar bem-sucedido)
    1 → run HALTED ou com Steps FAILED
    2 → erro de definição ou de configuração (nenhum Step executado)
    3 → erro de persistência
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any, Dict, List, Optional, Sequence

import yaml

from deployflow import __version__
from deployflow.core.adapters.base import check_step_params
from deployflow.core.adapters.registry import default_registry
from deployflow.core.config import ConfigError, load_config
from deployflow.core.engine import Engine, PipelineGraph
from deployflow.core.exceptions import (
    DeadlockError,
    DefinitionError,
    PersistenceError,
    RunNotFoundError,
)
from deployflow.core.pipeline.definition import load_pipeline
from deployflow.core.policy.gate import PolicyGate
from deployflow.core.state import FileStateStore, RunRecord

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_DEFINITION = 2
EXIT_PERSISTENCE = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="deployflow", description="Declarative deployment pipeline runner")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    def _state_options(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", help="Config override file (YAML or JSON)")
        p.add_argument("--state-dir", help="Directory holding run records")

    run = sub.add_parser("run", help="Run (or resume) a pipeline")
    run.add_argument("pipeline", help="Pipeline document (YAML or JSON)")
    run.add_argument("--resume", metavar="RUN_ID", help="Resume a persisted run")
    run.add_argument("--retry-failed", action="store_true", help="On resume, re-run failed and skipped steps")
    run.add_argument("--concurrency", type=int, help="Maximum number of steps running at once")
    _state_options(run)

    validate = sub.add_parser("validate", help="Validate a pipeline document and print its order")
    validate.add_argument("pipeline")
    validate.add_argument("--config", help="Config override file (YAML or JSON)")

    show = sub.add_parser("show", help="Show a stored run")
    show.add_argument("run_id")
    show.add_argument("--json", action="store_true", help="Print the full run record as JSON")
    _state_options(show)

    lst = sub.add_parser("list", help="List stored runs")
    _state_options(lst)

    cancel = sub.add_parser("cancel", help="Request cancellation of a run")
    cancel.add_argument("run_id")
    _state_options(cancel)

    return parser


def _resolve_config(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if getattr(args, "concurrency", None) is not None:
        if args.concurrency < 1:
            raise ConfigError("--concurrency must be >= 1")
        overrides.setdefault("engine", {})["max_concurrency"] = args.concurrency
    if getattr(args, "state_dir", None):
        overrides.setdefault("state", {})["dir"] = args.state_dir
    return load_config(local_path=getattr(args, "config", None), overrides=overrides)


def _store(config: Dict[str, Any]) -> FileStateStore:
    return FileStateStore((config.get("state", {}) or {}).get("dir", ".deployflow/runs"))


def format_summary(record: RunRecord) -> str:
    """Resumo legível de um RunRecord (uma linha por Step)."""
    lines: List[str] = [
        f"run {record.run_id}  pipeline={record.pipeline_id}  state={record.state.value}",
    ]
    if record.halt_reason:
        lines.append(f"  halted: {record.halt_reason}")
    for step_id, entry in record.steps.items():
        status = entry["status"]
        extra = ""
        if entry.get("skip_reason"):
            extra = f" ({entry['skip_reason']})"
        elif entry.get("error"):
            lines_of_error = entry["error"].strip().splitlines() or [""]
            extra = f" ({lines_of_error[0]})"
        policy = entry.get("policy")
        if policy:
            verdict = "passed" if policy.get("passed") else "failed"
            advisory = ", advisory" if policy.get("advisory") else ""
            extra += f" [gate {policy.get('policy')} {verdict}{advisory}: {policy.get('reason')}]"
        attempts = entry.get("attempts") or 0
        retry = f" attempts={attempts}" if attempts > 1 else ""
        lines.append(f"  {step_id:<24} {status:<10}{retry}{extra}")
    counts = ", ".join(f"{k}={v}" for k, v in record.counts().items() if v)
    lines.append(f"  {counts}")
    return "\n".join(lines)


def _cmd_run(args: argparse.Namespace) -> int:
    config = _resolve_config(args)
    definition = load_pipeline(args.pipeline)
    graph = PipelineGraph.build(definition.steps, name=definition.name)
    engine = Engine(
        graph=graph,
        adapters=default_registry(),
        store=_store(config),
        config=config,
        env=dict(os.environ),
        pipeline_hash=definition.document_hash,
    )
    if args.resume:
        result = engine.resume(args.resume, retry_failed=args.retry_failed)
    else:
        result = engine.run(meta={"pipeline_file": str(args.pipeline)})
    print(format_summary(result.record))
    return EXIT_OK if result.succeeded else EXIT_FAILED


def _cmd_validate(args: argparse.Namespace) -> int:
    load_config(local_path=args.config)
    definition = load_pipeline(args.pipeline)
    graph = PipelineGraph.build(definition.steps, name=definition.name)
    registry = default_registry()
    gate = PolicyGate()
    for step in graph:
        check_step_params(registry.get(step.kind), step)
        gate.validate(step)
    print(f"pipeline {graph.name}: {len(graph)} steps")
    for idx, step in enumerate(graph.order, start=1):
        deps = f"  <- {', '.join(step.depends_on)}" if step.depends_on else ""
        print(f"  {idx:>2}. {step.id} [{step.kind}]{deps}")
    return EXIT_OK


def _cmd_show(args: argparse.Namespace) -> int:
    record = _store(_resolve_config(args)).load(args.run_id)
    if args.json:
        print(json.dumps(record.to_dict(), ensure_ascii=False, indent=2, sort_keys=True))
    else:
        print(format_summary(record))
    return EXIT_OK


def _cmd_list(args: argparse.Namespace) -> int:
    store = _store(_resolve_config(args))
    for run_id in store.list_runs():
        record = store.load(run_id)
        print(f"{run_id}  {record.pipeline_id}  {record.state.value}  {record.created_at}")
    return EXIT_OK


def _cmd_cancel(args: argparse.Namespace) -> int:
    _store(_resolve_config(args)).request_cancel(args.run_id)
    print(f"cancellation requested for {args.run_id}")
    return EXIT_OK


_COMMANDS = {
    "run": _cmd_run,
    "validate": _cmd_validate,
    "show": _cmd_show,
    "list": _cmd_list,
    "cancel": _cmd_cancel,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)
    try:
        return _COMMANDS[args.command](args)
    except (DefinitionError, ConfigError, RunNotFoundError, yaml.YAMLError) as e:
        print(f"error: {e}", file=sys.stderr)
        hint = getattr(e, "hint", None)
        if hint:
            print(f"hint: {hint}", file=sys.stderr)
        return EXIT_DEFINITION
    except PersistenceError as e:
        print(f"persistence error: {e}", file=sys.stderr)
        return EXIT_PERSISTENCE
    except DeadlockError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_FAILED


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main(sys.argv[1:]))
