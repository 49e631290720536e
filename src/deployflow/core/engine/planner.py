# src/deployflow/core/engine/planner.py
"""
Planejamento do pipeline (DAG).

Este módulo valida a estrutura do pipeline e produz, uma única vez em
tempo de build, uma ordem topológica determinística dos Steps.

Validações estruturais:
    - identificadores não vazios e únicos
    - dependências declaradas resolvíveis
    - ausência de ciclos
    - referências `${steps.<id>.output}` e `gate.source` apontando
      para ancestrais do Step

Decisões arquiteturais:
    - Ordenação topológica determinística (Kahn)
    - Empates entre Steps prontos são resolvidos pela ordem de declaração
    - Erros estruturais são `DefinitionError` e impedem a criação de RunRecord

Limites explícitos:
    - Não executa Steps
    - Não lê nem grava o State Store
"""

from __future__ import annotations

import heapq
from typing import Dict, Iterable, Iterator, List, Set, Tuple

from deployflow.core.exceptions import (
    CycleDetectedError,
    DuplicateStepIdError,
    InvalidPipelineDocumentError,
    UnknownDependencyError,
)
from deployflow.core.pipeline.inputs import step_references
from deployflow.core.pipeline.types import StepSpec, StepStatus


class PipelineGraph:
    """
    Grafo acíclico de Steps com ordem topológica pré-calculada.

    Invariantes:
        - Acíclico
        - Toda dependência resolve para um Step do mesmo grafo
        - `order` respeita as dependências e, em empates, a declaração

    Use `PipelineGraph.build(steps)`; o construtor não valida.
    """

    def __init__(
        self,
        *,
        steps: Dict[str, StepSpec],
        order: List[str],
        children: Dict[str, List[str]],
        name: str = "",
    ):
        self._steps = steps
        self._order = order
        self._children = children
        self.name = name

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------
    @classmethod
    def build(cls, steps: Iterable[StepSpec], *, name: str = "") -> "PipelineGraph":
        """
        Valida os Steps e calcula a ordem topológica.

        Raises:
            InvalidPipelineDocumentError: Step com `id` vazio ou pipeline sem Steps.
            DuplicateStepIdError: `id` repetido.
            UnknownDependencyError: dependência inexistente, ou referência de
                saída/gate a um Step que não é ancestral.
            CycleDetectedError: ciclo no grafo de dependências.
        """
        step_list = list(steps)
        if not step_list:
            raise InvalidPipelineDocumentError(message="Pipeline must declare at least one step")

        by_id: Dict[str, StepSpec] = {}
        position: Dict[str, int] = {}
        for idx, s in enumerate(step_list):
            sid = s.id
            if not isinstance(sid, str) or not sid.strip():
                raise InvalidPipelineDocumentError(
                    message="step.id must be a non-empty string",
                    details={"position": idx},
                )
            if sid in by_id:
                raise DuplicateStepIdError(message=f"Duplicate step id: {sid}", details={"step": sid})
            by_id[sid] = s
            position[sid] = idx

        children: Dict[str, List[str]] = {sid: [] for sid in by_id}
        incoming: Dict[str, int] = {sid: 0 for sid in by_id}
        for sid, s in by_id.items():
            seen: Set[str] = set()
            for dep in s.depends_on:
                if dep not in by_id:
                    raise UnknownDependencyError(
                        message=f"Step '{sid}' depends on unknown step '{dep}'",
                        details={"step": sid, "dependency": dep},
                    )
                if dep in seen:
                    continue
                seen.add(dep)
                children[dep].append(sid)
                incoming[sid] += 1

        ready: List[Tuple[int, str]] = [(position[sid], sid) for sid, c in incoming.items() if c == 0]
        heapq.heapify(ready)
        order: List[str] = []
        while ready:
            _, sid = heapq.heappop(ready)
            order.append(sid)
            for child in children[sid]:
                incoming[child] -= 1
                if incoming[child] == 0:
                    heapq.heappush(ready, (position[child], child))

        if len(order) != len(by_id):
            stuck = sorted((sid for sid, c in incoming.items() if c > 0), key=position.__getitem__)
            raise CycleDetectedError(
                message="Cycle detected in step dependency graph",
                details={"steps": stuck},
            )

        graph = cls(steps=by_id, order=order, children=children, name=name)
        graph._validate_references()
        return graph

    def _validate_references(self) -> None:
        for sid in self._order:
            step = self._steps[sid]
            upstream = self.ancestors(sid)

            for ref in step_references(step.params):
                if ref not in upstream:
                    raise UnknownDependencyError(
                        message=f"Step '{sid}' references output of '{ref}', which is not one of its upstream steps",
                        details={"step": sid, "reference": ref},
                        hint=f"Declare '{ref}' em depends_on de '{sid}' (direta ou transitivamente).",
                    )

            if step.gate is not None and step.gate.source not in (None, sid) and step.gate.source not in upstream:
                raise UnknownDependencyError(
                    message=f"Gate of step '{sid}' evaluates '{step.gate.source}', which is not one of its upstream steps",
                    details={"step": sid, "source": step.gate.source},
                )

    # ------------------------------------------------------------------
    # Consulta
    # ------------------------------------------------------------------
    @property
    def order(self) -> List[StepSpec]:
        return [self._steps[sid] for sid in self._order]

    @property
    def ids(self) -> List[str]:
        return list(self._order)

    def get(self, step_id: str) -> StepSpec:
        return self._steps[step_id]

    def __contains__(self, step_id: object) -> bool:
        return step_id in self._steps

    def __iter__(self) -> Iterator[StepSpec]:
        return iter(self.order)

    def __len__(self) -> int:
        return len(self._steps)

    def ancestors(self, step_id: str) -> Set[str]:
        found: Set[str] = set()
        stack = list(self._steps[step_id].depends_on)
        while stack:
            sid = stack.pop()
            if sid in found:
                continue
            found.add(sid)
            stack.extend(self._steps[sid].depends_on)
        return found

    def descendants(self, step_id: str) -> Set[str]:
        found: Set[str] = set()
        stack = list(self._children[step_id])
        while stack:
            sid = stack.pop()
            if sid in found:
                continue
            found.add(sid)
            stack.extend(self._children[sid])
        return found

    def ready_steps(self, record) -> List[StepSpec]:
        """
        Steps PENDING cujas dependências estão todas SUCCEEDED ou SKIPPED.

        Para Steps `continue_on_failure`, dependências FAILED também
        contam como satisfeitas. O retorno segue a ordem topológica.

        Args:
            record: RunRecord (qualquer objeto com `status_of(step_id)`).
        """
        satisfied = (StepStatus.SUCCEEDED, StepStatus.SKIPPED)
        ready: List[StepSpec] = []
        for sid in self._order:
            if record.status_of(sid) != StepStatus.PENDING:
                continue
            step = self._steps[sid]
            accepted = satisfied + ((StepStatus.FAILED,) if step.continue_on_failure else ())
            if all(record.status_of(dep) in accepted for dep in step.depends_on):
                ready.append(step)
        return ready


def plan_execution(steps: Iterable[StepSpec]) -> List[StepSpec]:
    """Atalho: valida os Steps e retorna a ordem topológica determinística."""
    return PipelineGraph.build(steps).order
