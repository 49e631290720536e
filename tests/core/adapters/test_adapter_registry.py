# tests/core/adapters/test_adapter_registry.py

import pytest

try:
    from deployflow.core.adapters.commands import GateAdapter
    from deployflow.core.adapters.registry import AdapterRegistry, DuplicateAdapterKindError, default_registry
    from deployflow.core.exceptions import UnknownAdapterKindError
except Exception as e:  # noqa: BLE001
    AdapterRegistry = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if AdapterRegistry is None:
        pytest.fail(f"Adapter registry is not importable. Import error: {_IMPORT_ERR}")


def test_default_registry_kinds():
    _require_imports()
    assert default_registry().kinds() == [
        "provision", "checkout", "scan", "build", "push", "deploy", "monitor", "shell", "gate",
    ]


def test_duplicate_kind_rejected():
    _require_imports()
    registry = AdapterRegistry()
    registry.register(GateAdapter())

    with pytest.raises(DuplicateAdapterKindError):
        registry.register(GateAdapter())


def test_unknown_kind_lists_available():
    _require_imports()
    registry = AdapterRegistry()
    registry.register(GateAdapter())

    with pytest.raises(UnknownAdapterKindError) as exc:
        registry.get("helm")

    assert exc.value.details["available"] == ["gate"]
    assert "gate" in registry
    assert "helm" not in registry
