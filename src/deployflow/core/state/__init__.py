# src/deployflow/core/state/__init__.py
"""State Store e RunRecord do deployflow."""

from .record import RunRecord
from .store import FileStateStore

__all__ = ["RunRecord", "FileStateStore"]
