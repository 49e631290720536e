# src/deployflow/core/config/merge.py
"""
Deep-merge determinístico de configuração.

Política de merge (v1):
    - dict  → merge recursivo por chave
    - list  → sobrescrita total
    - escalar → sobrescrita direta
    - int sobre float (ou vice-versa) → aceito, valor numérico do override
    - conflito de tipos → ConfigTypeConflictError

Nenhum input é mutado.
"""

from copy import deepcopy
from typing import Any, Dict, List

from .errors import ConfigTypeConflictError


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _merge_into(result: Dict[str, Any], override: Dict[str, Any], path: List[str]) -> None:
    for key, override_value in override.items():
        here = path + [str(key)]

        if key not in result or result[key] is None:
            result[key] = deepcopy(override_value)
            continue

        base_value = result[key]

        if isinstance(base_value, dict) and isinstance(override_value, dict):
            nested = deepcopy(base_value)
            _merge_into(nested, override_value, here)
            result[key] = nested
            continue

        if isinstance(override_value, list) and isinstance(base_value, list):
            result[key] = deepcopy(override_value)
            continue

        if _is_number(base_value) and _is_number(override_value):
            result[key] = override_value
            continue

        if type(base_value) is not type(override_value):
            raise ConfigTypeConflictError(
                f"Conflito de tipo em '{'.'.join(here)}': "
                f"{type(base_value).__name__} vs {type(override_value).__name__}"
            )

        result[key] = deepcopy(override_value)


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Combina `base` com `override` e devolve um novo dicionário.

    Args:
        base: Configuração base (ex.: defaults embutidos).
        override: Overrides explícitos (arquivo local, flags da CLI).

    Returns:
        Nova configuração resultante.

    Raises:
        ConfigTypeConflictError: Em conflito estrutural. A mensagem traz o
            caminho pontuado da chave conflitante.
    """
    if not isinstance(base, dict) or not isinstance(override, dict):
        raise ConfigTypeConflictError(
            f"Deep-merge requer dicts no nível raiz, recebido: "
            f"{type(base).__name__} vs {type(override).__name__}"
        )

    result: Dict[str, Any] = deepcopy(base)
    _merge_into(result, override, [])
    return result
