# src/deployflow/core/pipeline/__init__.py
"""
# Pipeline Core (deployflow)

Este pacote define as **estruturas fundamentais** de um pipeline de deploy.

Um pipeline é modelado como um **DAG explícito de Steps**, onde:
- cada Step declara identidade, kind (adapter), parâmetros e dependências
- a execução é coordenada exclusivamente pelo Engine
- o log estruturado da run é mediado pelo `RunContext`

## Componentes

- **types**
  - `StepSpec`, `GateSpec`: definição imutável de Steps e gates
  - `StepStatus`, `PipelineState`, `SkipReason`: estados da run
  - `AdapterResult`, `PolicyResult`: resultados de adapter e de policy

- **definition**
  - `load_pipeline` / `parse_pipeline`: documento YAML/JSON → `PipelineDefinition`

- **inputs**
  - resolução de `${env:NOME}` e `${steps.<id>.output}` nos parâmetros

- **context**
  - `RunContext`: identidade da run, configuração, ambiente e log estruturado

## Limites Explícitos

- Não planeja execução (responsabilidade de `core.engine.planner`)
- Não executa ferramentas externas (responsabilidade de `core.adapters`)
"""
