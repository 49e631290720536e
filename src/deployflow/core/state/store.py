# src/deployflow/core/state/store.py
"""
State Store: persistência durável de RunRecords em disco.

Layout:
    <root>/<run_id>.json     → RunRecord serializado
    <root>/<run_id>.cancel   → marcador de cancelamento (opcional)

Decisões arquiteturais:
    - O formato de persistência é JSON com ordenação de chaves estável
    - A escrita é atômica: arquivo temporário no mesmo diretório,
      `fsync` e `os.replace`; um crash no meio da escrita preserva a
      versão anterior
    - Falhas de I/O são normalizadas para PersistenceError

Invariantes:
    - `save` seguido de `load` reconstrói o mesmo RunRecord
    - Um arquivo existente nunca fica parcialmente escrito

Limites explícitos:
    - Não oferece lock entre processos (um Engine por run)
    - Não compacta nem expira runs antigas
"""

from __future__ import annotations

import json
import os
import re
import tempfile
from pathlib import Path
from typing import List, Union

from deployflow.core.exceptions import PersistenceError, RunNotFoundError
from deployflow.core.state.record import RunRecord

_RUN_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class FileStateStore:
    """Store baseado em arquivos JSON, um por run."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def _path(self, run_id: str, suffix: str = ".json") -> Path:
        if not _RUN_ID.match(run_id or ""):
            raise RunNotFoundError(
                message=f"Invalid run id '{run_id}'",
                details={"run_id": run_id},
            )
        return self.root / f"{run_id}{suffix}"

    def save(self, record: RunRecord) -> None:
        path = self._path(record.run_id)
        data = json.dumps(record.to_dict(), ensure_ascii=False, indent=2, sort_keys=True)
        tmp_name = None
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{record.run_id}.", suffix=".tmp", dir=self.root)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as e:
            raise PersistenceError(
                message=f"Failed to persist run '{record.run_id}': {e}",
                details={"run_id": record.run_id, "path": str(path)},
                hint="Check that the state directory is writable and has free space.",
            ) from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)

    def exists(self, run_id: str) -> bool:
        return self._path(run_id).exists()

    def load(self, run_id: str) -> RunRecord:
        path = self._path(run_id)
        if not path.exists():
            raise RunNotFoundError(
                message=f"Run '{run_id}' not found",
                details={"run_id": run_id, "root": str(self.root)},
            )
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return RunRecord.from_dict(data)
        except OSError as e:
            raise PersistenceError(
                message=f"Failed to read run '{run_id}': {e}",
                details={"run_id": run_id, "path": str(path)},
            ) from e
        except (ValueError, KeyError, TypeError) as e:
            raise PersistenceError(
                message=f"Corrupted state for run '{run_id}': {e}",
                details={"run_id": run_id, "path": str(path)},
            ) from e

    def list_runs(self) -> List[str]:
        """Run ids persistidos, do mais antigo para o mais recente (por mtime)."""
        if not self.root.is_dir():
            return []
        files = [p for p in self.root.glob("*.json") if not p.name.startswith(".")]
        files.sort(key=lambda p: (p.stat().st_mtime, p.name))
        return [p.stem for p in files]

    def request_cancel(self, run_id: str) -> None:
        if not self.exists(run_id):
            raise RunNotFoundError(
                message=f"Run '{run_id}' not found",
                details={"run_id": run_id, "root": str(self.root)},
            )
        try:
            self._path(run_id, ".cancel").touch()
        except OSError as e:
            raise PersistenceError(
                message=f"Failed to request cancellation of run '{run_id}': {e}",
                details={"run_id": run_id},
            ) from e

    def cancel_requested(self, run_id: str) -> bool:
        return self._path(run_id, ".cancel").exists()

    def clear_cancel(self, run_id: str) -> None:
        marker = self._path(run_id, ".cancel")
        if marker.exists():
            marker.unlink()
