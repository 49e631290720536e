# src/deployflow/core/config/loader.py
"""
Loader canônico de configuração do deployflow.

A configuração efetiva é resolvida, em ordem de precedência crescente, a partir de:
    - defaults embutidos (`DEFAULT_CONFIG`) ou um arquivo de defaults
    - um arquivo local de overrides (opcional)
    - overrides programáticos (ex.: flags da CLI como `--concurrency`)

Formatos suportados: YAML (.yaml, .yml) e JSON (.json).

Invariantes:
    - O resultado é sempre um dicionário puro (`dict`)
    - Overrides nunca mutam os defaults
    - A mesma entrada sempre produz a mesma configuração final

Limites explícitos:
    - Não valida semântica de Steps nem do documento de pipeline
    - Não persiste configuração (o hash é registrado no RunRecord pelo Engine)
"""

from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Optional, Union
import json

import yaml  # PyYAML

from .merge import deep_merge
from .errors import (
    ConfigFileNotFoundError,
    InvalidConfigRootTypeError,
    UnsupportedConfigFormatError,
)


DEFAULT_CONFIG: Dict[str, Any] = {
    "engine": {
        "max_concurrency": 4,
        "fail_fast": False,
        "default_timeout_seconds": 1800.0,
        "poll_interval_seconds": 0.5,
        "retry": {
            "max_attempts": 3,
            "backoff_seconds": 2.0,
            "backoff_factor": 2.0,
            "max_backoff_seconds": 60.0,
        },
    },
    "state": {
        "dir": ".deployflow/runs",
    },
    "steps": {},
}


def read_structured_file(path: Union[str, Path]) -> Any:
    """
    Lê um arquivo YAML ou JSON do disco.

    Usado tanto pela configuração quanto pelo loader de documentos de
    pipeline. Arquivos vazios são interpretados como `None`.

    Raises:
        ConfigFileNotFoundError: Se o arquivo não existir.
        UnsupportedConfigFormatError: Se a extensão não for suportada.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigFileNotFoundError(f"Arquivo não encontrado: {path}")

    suffix = path.suffix.lower()

    if suffix in {".yaml", ".yml"}:
        with path.open("r", encoding="utf-8") as f:
            return yaml.safe_load(f)

    if suffix == ".json":
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)

    raise UnsupportedConfigFormatError(f"Formato não suportado: {path.suffix}")


def _load_file(path: Path) -> Dict[str, Any]:
    data = read_structured_file(path)

    if data is None:
        data = {}

    if not isinstance(data, dict):
        raise InvalidConfigRootTypeError(
            f"Config root deve ser dict, recebido: {type(data).__name__}"
        )

    return data


def load_config(
    *,
    defaults_path: Optional[str] = None,
    local_path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Carrega e resolve a configuração efetiva do Engine.

    Política de resolução:
        - Sem `defaults_path`, usa `DEFAULT_CONFIG`
        - `local_path`, quando informado, deve existir
        - `overrides` é aplicado por último

    Args:
        defaults_path: Arquivo de defaults alternativo (opcional).
        local_path: Arquivo local de overrides (opcional).
        overrides: Overrides programáticos já estruturados (opcional).

    Returns:
        Dict[str, Any]: Configuração final resolvida.

    Raises:
        ConfigFileNotFoundError: Se algum arquivo informado não existir.
        UnsupportedConfigFormatError: Se o formato não for suportado.
        InvalidConfigRootTypeError: Se o conteúdo não for um dicionário.
        ConfigTypeConflictError: Se ocorrer conflito estrutural durante o merge.
    """
    if defaults_path is not None:
        effective = deep_merge(DEFAULT_CONFIG, _load_file(Path(defaults_path)))
    else:
        effective = deepcopy(DEFAULT_CONFIG)

    if local_path is not None:
        effective = deep_merge(effective, _load_file(Path(local_path)))

    if overrides:
        effective = deep_merge(effective, overrides)

    return effective
