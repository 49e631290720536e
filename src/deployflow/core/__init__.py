# src/deployflow/core/__init__.py
"""
Core do deployflow.

Componentes principais:
    - config    → resolução de configuração (merge, leitura YAML/JSON, hashing)
    - pipeline  → tipos, documento de pipeline, entradas e contexto de execução
    - engine    → PipelineGraph (DAG) e execução concorrente e retomável
    - adapters  → integração com ferramentas externas (terraform, git, trivy, docker, helm)
    - policy    → Policy Gate (veredito pass/fail sobre saídas de Steps)
    - state     → RunRecord e State Store (persistência atômica em disco)

Princípios fundamentais:
    - Nenhuma decisão silenciosa: todo desvio é registrado no Event Log
    - Efeitos colaterais ficam confinados aos adapters e ao State Store

Limites explícitos:
    - Não depende da CLI
"""
