# src/deployflow/core/config/errors.py
"""
Exceções canônicas da camada de configuração do deployflow.

Todas herdam de `ConfigError` e representam violações estruturais
detectadas durante load ou merge, antes de qualquer Step ser executado.

Invariantes:
    - Nenhuma exceção aqui representa falha de Step ou de adapter
"""


class ConfigError(Exception):
    """
    Exceção base para erros de configuração do deployflow.

    Permite captura genérica (ex.: pela CLI, que converte em exit code 2)
    e distingue falhas de configuração de falhas de execução.
    """


class ConfigFileNotFoundError(ConfigError):
    """
    Arquivo de configuração explicitamente informado não existe.

    Decisões arquiteturais:
        - Defaults embutidos dispensam arquivo obrigatório
        - Um caminho informado pelo operador, porém ausente, é erro fatal
    """


class UnsupportedConfigFormatError(ConfigError):
    """
    Formato de arquivo não suportado pelo loader.

    Formatos suportados (v1):
        - YAML (.yaml, .yml)
        - JSON (.json)
    """


class InvalidConfigRootTypeError(ConfigError):
    """O conteúdo raiz do arquivo não é um mapa chave-valor (`dict`)."""


class ConfigTypeConflictError(ConfigError):
    """
    Conflito de tipos entre base e override durante o deep-merge.

    Exemplo de conflito:
        - base:     {"engine": {"max_concurrency": 4}}
        - override: {"engine": "fast"}

    Exceção: int → float é aceito (ex.: `backoff_seconds: 2`).
    """
