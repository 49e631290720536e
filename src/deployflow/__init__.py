# src/deployflow/__init__.py
"""
deployflow: orquestração declarativa de pipelines de deploy.

Um pipeline de deploy (provisionamento, checkout, scans de segurança,
build e push de imagens, deploy em cluster e monitoramento) é descrito
como um DAG explícito de Steps. O Engine executa Steps independentes em
paralelo, aplica Policy Gates às saídas de scanners e persiste o estado
da run para permitir retomada após falha.

Arquitetura em alto nível:
    - core.pipeline  → tipos, documento de pipeline e contexto de execução
    - core.engine    → PipelineGraph e Engine
    - core.adapters  → Step Adapters
    - core.policy    → Policy Gate
    - core.state     → RunRecord e State Store
    - cli            → interface de linha de comando
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
