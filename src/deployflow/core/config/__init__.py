# src/deployflow/core/config/__init__.py
"""
Camada de configuração do deployflow.

Responsabilidades:
    - Carregamento de arquivos de configuração (YAML/JSON)
    - Resolução da configuração final via deep-merge determinístico
    - Geração de hash canônico para rastreabilidade no RunRecord

Configuração não contém lógica de execução e nunca é um singleton de
processo: o dicionário resolvido é passado explicitamente ao Engine.
"""

from .errors import (
    ConfigError,
    ConfigFileNotFoundError,
    ConfigTypeConflictError,
    InvalidConfigRootTypeError,
    UnsupportedConfigFormatError,
)
from .hashing import compute_config_hash, compute_document_hash
from .loader import DEFAULT_CONFIG, load_config, read_structured_file
from .merge import deep_merge

__all__ = [
    "ConfigError",
    "ConfigFileNotFoundError",
    "ConfigTypeConflictError",
    "InvalidConfigRootTypeError",
    "UnsupportedConfigFormatError",
    "compute_config_hash",
    "compute_document_hash",
    "DEFAULT_CONFIG",
    "load_config",
    "read_structured_file",
    "deep_merge",
]
