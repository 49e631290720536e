# tests/test_smoke.py
"""
Testes de sanidade estrutural (smoke tests) do deployflow.

Garantem apenas que o pacote é importável e que o pytest descobre e
executa testes.

Limites explícitos:
    - Não testar lógica de negócio
    - Não acumular asserts funcionais
"""


def test_smoke():
    import deployflow

    assert deployflow.__version__
