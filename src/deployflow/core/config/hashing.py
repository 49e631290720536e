# src/deployflow/core/config/hashing.py
"""
Hashing canônico para rastreabilidade de runs.

Dois usos:
    - `compute_config_hash`   → identidade da configuração efetiva
    - `compute_document_hash` → identidade do documento de pipeline;
      usado no resume para recusar um RunRecord criado a partir de
      outra definição

Política (v1): JSON canônico (chaves ordenadas, separadores compactos,
UTF-8) + SHA-256. Valores não serializáveis são convertidos via `str`.
"""

import hashlib
import json
from typing import Any, Dict


def _canonical_sha256(obj: Any) -> str:
    canonical_json = json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()


def compute_config_hash(config: Dict[str, Any]) -> str:
    """
    Gera o hash SHA-256 da configuração efetiva.

    Raises:
        TypeError: Se `config` não for dict.
    """
    if not isinstance(config, dict):
        raise TypeError(
            f"Config para hashing deve ser dict, recebido: {type(config).__name__}"
        )
    return _canonical_sha256(config)


def compute_document_hash(document: Any) -> str:
    """Gera o hash SHA-256 de um documento de pipeline já carregado (dict ou list)."""
    if not isinstance(document, (dict, list)):
        raise TypeError(
            f"Documento para hashing deve ser dict ou list, recebido: {type(document).__name__}"
        )
    return _canonical_sha256(document)
