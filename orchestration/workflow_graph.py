"""
Workflow Graph - ordered chain of agent steps linked by `next` pointers

Every edit returns a new WorkflowGraph; a graph is never re-linked in place.
Head and tail are derived from the pointers on demand.
"""

import uuid
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterator, List, Mapping, Optional

from serviceforge.agent_catalog import AgentCatalog
from serviceforge.errors import IntegrityError, ValidationError
from serviceforge.logger_config import get_logger

logger = get_logger("serviceforge.workflow_graph")

# Declared pipeline type while the graph is empty
UNSET = "select"


@dataclass(frozen=True)
class WorkflowStep:
    """One position in the pipeline"""
    id: str
    agent_id: str
    settings: Dict[str, Any] = field(default_factory=dict)
    next: Optional[str] = None


def new_step_id() -> str:
    return f"step-{uuid.uuid4().hex[:12]}"


class WorkflowGraph:
    """
    Immutable pipeline snapshot.

    Args:
        catalog: Agent catalog the steps refer into
        steps: Arena of steps keyed by step id
        input_type: Declared pipeline input type (head agent's input type)
        output_type: Declared pipeline output type (tail agent's output type)
    """

    def __init__(
        self,
        catalog: AgentCatalog,
        steps: Optional[Mapping[str, WorkflowStep]] = None,
        input_type: str = UNSET,
        output_type: str = UNSET
    ):
        self.catalog = catalog
        self._steps: Dict[str, WorkflowStep] = dict(steps or {})
        self.input_type = input_type
        self.output_type = output_type

    @classmethod
    def from_steps(cls, catalog: AgentCatalog, steps: Mapping[str, WorkflowStep]) -> "WorkflowGraph":
        """Build a graph and derive its declared types from the chain"""
        graph = cls(catalog, steps)
        input_type, output_type = graph._derive_types()
        return cls(catalog, steps, input_type, output_type)

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def steps(self) -> Dict[str, WorkflowStep]:
        return dict(self._steps)

    def get(self, step_id: str) -> Optional[WorkflowStep]:
        return self._steps.get(step_id)

    def is_empty(self) -> bool:
        return not self._steps

    def __len__(self) -> int:
        return len(self._steps)

    def __contains__(self, step_id: str) -> bool:
        return step_id in self._steps

    def __iter__(self) -> Iterator[WorkflowStep]:
        return iter(self.ordered_sequence())

    def __repr__(self) -> str:
        return (f"WorkflowGraph(steps={len(self._steps)}, "
                f"input_type={self.input_type!r}, output_type={self.output_type!r})")

    def ordered_sequence(self) -> List[WorkflowStep]:
        """
        Walk the chain from its head.

        Returns:
            Steps in execution order (empty list for an empty graph)

        Raises:
            IntegrityError: ambiguous head, cycle, dangling pointer, or steps
                unreachable from the head
        """
        if not self._steps:
            return []

        referenced = {step.next for step in self._steps.values() if step.next is not None}
        heads = [step_id for step_id in self._steps if step_id not in referenced]
        if len(heads) != 1:
            raise IntegrityError(f"Expected exactly one head step, found {len(heads)}: {heads}")

        sequence: List[WorkflowStep] = []
        visited = set()
        current: Optional[str] = heads[0]
        while current is not None:
            if current in visited:
                raise IntegrityError(f"Cycle detected at step '{current}'")
            step = self._steps.get(current)
            if step is None:
                raise IntegrityError(f"Step '{sequence[-1].id}' points to missing step '{current}'")
            visited.add(current)
            sequence.append(step)
            current = step.next

        if len(sequence) != len(self._steps):
            unreachable = sorted(set(self._steps) - visited)
            raise IntegrityError(f"Steps not reachable from head '{heads[0]}': {unreachable}")
        return sequence

    def head(self) -> Optional[WorkflowStep]:
        sequence = self.ordered_sequence()
        return sequence[0] if sequence else None

    def tail(self) -> Optional[WorkflowStep]:
        sequence = self.ordered_sequence()
        return sequence[-1] if sequence else None

    def agent_ids(self) -> List[str]:
        return [step.agent_id for step in self.ordered_sequence()]

    def agent_for(self, step_id: str):
        step = self._steps.get(step_id)
        return self.catalog.get(step.agent_id) if step else None

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def _with(self, steps: Dict[str, WorkflowStep], input_type: str, output_type: str) -> "WorkflowGraph":
        return WorkflowGraph(self.catalog, steps, input_type, output_type)

    def _derive_types(self, steps: Optional[Dict[str, WorkflowStep]] = None):
        graph = self if steps is None else WorkflowGraph(self.catalog, steps)
        sequence = graph.ordered_sequence()
        if not sequence:
            return UNSET, UNSET
        head_agent = self.catalog.get(sequence[0].agent_id)
        tail_agent = self.catalog.get(sequence[-1].agent_id)
        return (
            head_agent.input_type if head_agent else UNSET,
            tail_agent.output_type if tail_agent else UNSET,
        )

    def _require_step(self, step_id: str) -> WorkflowStep:
        step = self._steps.get(step_id)
        if step is None:
            raise ValidationError(f"Step '{step_id}' is not part of this pipeline")
        return step

    def add_step(
        self,
        agent_id: Any,
        settings: Optional[Mapping[str, Any]] = None,
        step_id: Optional[str] = None
    ) -> "WorkflowGraph":
        """
        Append an agent at the tail.

        Args:
            agent_id: Catalog id of the agent
            settings: Step settings, defaults to the agent's settings schema defaults
            step_id: Explicit id for the new step

        Returns:
            New graph with the step appended
        """
        agent = self.catalog.require(agent_id)
        step_id = step_id or new_step_id()
        if step_id in self._steps:
            raise ValidationError(f"Step id '{step_id}' is already in use")

        step = WorkflowStep(
            id=step_id,
            agent_id=agent.id,
            settings=dict(settings if settings is not None else agent.default_settings()),
        )
        steps = dict(self._steps)

        if not steps:
            steps[step_id] = step
            logger.debug(f"Added first step '{step_id}' ({agent.name})")
            return self._with(steps, agent.input_type, agent.output_type)

        tail = self.tail()
        steps[tail.id] = replace(tail, next=step_id)
        steps[step_id] = step
        logger.debug(f"Appended step '{step_id}' ({agent.name}) after '{tail.id}'")
        return self._with(steps, self.input_type, agent.output_type)

    def remove_step(self, step_id: str) -> "WorkflowGraph":
        """Unlink a step; its predecessor takes over its successor"""
        removed = self._require_step(step_id)
        steps = dict(self._steps)
        del steps[step_id]

        for other in list(steps.values()):
            if other.next == step_id:
                steps[other.id] = replace(other, next=removed.next)
                break

        input_type, output_type = self._derive_types(steps)
        logger.debug(f"Removed step '{step_id}', {len(steps)} remaining")
        return self._with(steps, input_type, output_type)

    def move_up(self, step_id: str) -> "WorkflowGraph":
        """Swap a step with its predecessor; no-op for the head"""
        self._require_step(step_id)
        sequence = self.ordered_sequence()
        index = next(i for i, step in enumerate(sequence) if step.id == step_id)
        if index == 0:
            return self
        return self._swap(sequence, index - 1)

    def move_down(self, step_id: str) -> "WorkflowGraph":
        """Swap a step with its successor; no-op for the tail"""
        self._require_step(step_id)
        sequence = self.ordered_sequence()
        index = next(i for i, step in enumerate(sequence) if step.id == step_id)
        if index == len(sequence) - 1:
            return self
        return self._swap(sequence, index)

    def _swap(self, sequence: List[WorkflowStep], index: int) -> "WorkflowGraph":
        # before -> first -> second -> after  becomes  before -> second -> first -> after
        first, second = sequence[index], sequence[index + 1]
        steps = dict(self._steps)
        steps[first.id] = replace(first, next=second.next)
        steps[second.id] = replace(second, next=first.id)
        if index > 0:
            before = sequence[index - 1]
            steps[before.id] = replace(before, next=second.id)

        input_type, output_type = self._derive_types(steps)
        return self._with(steps, input_type, output_type)

    def update_settings(self, step_id: str, name: str, value: Any) -> "WorkflowGraph":
        step = self._require_step(step_id)
        settings = dict(step.settings)
        settings[name] = value
        steps = dict(self._steps)
        steps[step_id] = replace(step, settings=settings)
        return self._with(steps, self.input_type, self.output_type)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def check_integrity(self) -> bool:
        """
        Verify the structural invariants of the chain.

        Raises:
            IntegrityError: listing every violated invariant
        """
        problems = []
        if not self._steps:
            if self.input_type != UNSET or self.output_type != UNSET:
                problems.append("empty pipeline must have unset declared types")
        else:
            self_loops = [s.id for s in self._steps.values() if s.next == s.id]
            if self_loops:
                problems.append(f"steps point to themselves: {self_loops}")
            merges = [target for target, count in Counter(
                s.next for s in self._steps.values() if s.next is not None
            ).items() if count > 1]
            if merges:
                problems.append(f"steps referenced by more than one predecessor: {merges}")
            tails = [s.id for s in self._steps.values() if s.next is None]
            if len(tails) != 1:
                problems.append(f"expected exactly one tail, found {len(tails)}")

            if not problems:
                try:
                    input_type, output_type = self._derive_types()
                except IntegrityError as e:
                    problems.append(str(e))
                else:
                    if (input_type, output_type) != (self.input_type, self.output_type):
                        problems.append(
                            f"declared types {self.input_type}->{self.output_type} do not match "
                            f"chain types {input_type}->{output_type}"
                        )

        if problems:
            raise IntegrityError("; ".join(problems))
        return True

    def compatibility_problems(self) -> List[str]:
        """Adjacent pairs whose output and input types disagree"""
        problems = []
        sequence = self.ordered_sequence()
        for current, following in zip(sequence, sequence[1:]):
            producer = self.catalog.get(current.agent_id)
            consumer = self.catalog.get(following.agent_id)
            if producer is None or consumer is None:
                continue
            if producer.output_type != consumer.input_type:
                problems.append(
                    f"'{producer.name}' outputs {producer.output_type} but "
                    f"'{consumer.name}' expects {consumer.input_type}"
                )
        return problems

    # ------------------------------------------------------------------
    # Persistence shape
    # ------------------------------------------------------------------

    def to_nodes(self) -> Dict[str, Dict[str, Any]]:
        """
        Re-index the ordered chain to dense keys "0".."n-1".

        Returns:
            Node mapping as stored by the backend
        """
        sequence = self.ordered_sequence()
        nodes = {}
        for index, step in enumerate(sequence):
            agent = self.catalog.get(step.agent_id)
            agent_id: Any = int(step.agent_id) if step.agent_id.isdigit() else step.agent_id
            nodes[str(index)] = {
                "agent_id": agent_id,
                "next": str(index + 1) if index + 1 < len(sequence) else None,
                "settings": dict(step.settings),
                "agent_type": agent.agent_type if agent else "",
            }
        return nodes
