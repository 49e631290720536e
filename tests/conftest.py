# tests/conftest.py
"""
Fixtures compartilhados para testes do deployflow.

Este módulo define fixtures reutilizáveis que fornecem:
- configurações mínimas e determinísticas (poll curto, backoff zero)
- contexto de execução controlado (RunContext)
- State Store isolado em `tmp_path`
- uma fábrica de Engine sobre adapters roteirizados

Decisões arquiteturais:
    - Adapters reais nunca são usados pelo Engine nos testes; processos
      externos ficam restritos aos testes de adapter e de CLI
    - Imports do core são realizados de forma lazy para melhorar a
      clareza de erros durante falhas de import

Invariantes:
    - Nenhuma fixture depende de variáveis de ambiente do processo
    - Cada teste recebe seu próprio diretório de estado
"""

from datetime import datetime, timezone

import pytest


# =====================================================
# Config
# =====================================================

@pytest.fixture
def project_like_config_yaml() -> str:
    """YAML de overrides semelhante ao uso real (`deployflow.yaml`)."""
    return """
engine:
  max_concurrency: 2
  fail_fast: false
  retry:
    max_attempts: 5
state:
  dir: /var/lib/deployflow/runs
steps:
  monitor:
    enabled: false
""".lstrip()


@pytest.fixture
def fast_config() -> dict:
    """
    Configuração de Engine adequada a testes: poll curto e sem backoff real.

    Returns:
        dict: Overrides aplicados sobre `DEFAULT_CONFIG` pelo Engine.
    """
    return {
        "engine": {
            "max_concurrency": 4,
            "poll_interval_seconds": 0.01,
            "default_timeout_seconds": 30.0,
            "retry": {
                "max_attempts": 3,
                "backoff_seconds": 0.0,
                "backoff_factor": 2.0,
                "max_backoff_seconds": 0.0,
            },
        },
        "steps": {},
    }


# =====================================================
# RunContext / State Store
# =====================================================

@pytest.fixture
def dummy_ctx(fast_config):
    """RunContext determinístico (run_id e created_at fixos)."""
    from deployflow.core.pipeline.context import RunContext

    return RunContext(
        run_id="run-test-001",
        created_at=datetime(2026, 1, 16, 0, 0, 0, tzinfo=timezone.utc),
        config=fast_config,
        env={"PATH": "/usr/bin"},
        meta={"source": "pytest"},
    )


@pytest.fixture
def store(tmp_path):
    from deployflow.core.state.store import FileStateStore

    return FileStateStore(tmp_path / "runs")


# =====================================================
# Engine
# =====================================================

@pytest.fixture
def make_engine(store, fast_config):
    """
    Fábrica de Engine sobre adapters roteirizados.

    Uso:
        engine = make_engine(steps, adapters=[fake], config={...})

    `config` é mesclado sobre `fast_config`; o adapter real `gate` é
    sempre registrado para permitir Steps de gate nos grafos de teste.
    """
    from deployflow.core.adapters.commands import GateAdapter
    from deployflow.core.adapters.registry import AdapterRegistry
    from deployflow.core.config.merge import deep_merge
    from deployflow.core.engine.engine import Engine
    from deployflow.core.engine.planner import PipelineGraph

    def _make(steps, *, adapters=(), config=None, store_=None, name="test-pipeline", **kwargs):
        registry = AdapterRegistry()
        for adapter in adapters:
            registry.register(adapter)
        if "gate" not in registry:
            registry.register(GateAdapter())
        return Engine(
            graph=PipelineGraph.build(steps, name=name),
            adapters=registry,
            store=store_ or store,
            config=deep_merge(fast_config, config or {}),
            **kwargs,
        )

    return _make
