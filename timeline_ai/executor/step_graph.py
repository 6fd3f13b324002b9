"""Step ordering for workflow types.

A workflow type names a set of step ids; each step declares its
dependencies. The execution order is a topological sort of that set,
computed once per workflow type and cached. Dependencies on steps the type
does not include are ignored (e.g. export_video depends on apply_effects,
which quick_edit leaves out). Among steps that are ready at the same time,
the one listed first in the definition runs first.
"""

import logging
import threading
from typing import Sequence

from timeline_ai.executor.schemas import WorkflowStepSpec
from timeline_ai.workflows.schemas import WorkflowDefinitionError

logger = logging.getLogger(__name__)


def resolve_step_order(
    step_ids: Sequence[str], steps: dict[str, WorkflowStepSpec]
) -> list[WorkflowStepSpec]:
    """Topologically sort step_ids (Kahn's algorithm).

    Raises:
        WorkflowDefinitionError: Unknown or duplicate step id, or a cycle
    """
    unknown = [s for s in step_ids if s not in steps]
    if unknown:
        raise WorkflowDefinitionError(f"Unknown workflow steps: {unknown}")
    if len(set(step_ids)) != len(step_ids):
        raise WorkflowDefinitionError(f"Duplicate workflow steps in {list(step_ids)}")

    position = {step_id: i for i, step_id in enumerate(step_ids)}
    deps = {
        step_id: {d for d in steps[step_id].dependencies if d in position}
        for step_id in step_ids
    }

    remaining = set(step_ids)
    order: list[str] = []
    while remaining:
        ready = sorted(
            (s for s in remaining if not deps[s] & remaining),
            key=position.__getitem__,
        )
        if not ready:
            raise WorkflowDefinitionError(
                f"Dependency cycle among steps: {sorted(remaining, key=position.__getitem__)}"
            )
        # One at a time keeps declared order among independent steps
        order.append(ready[0])
        remaining.discard(ready[0])

    return [steps[s] for s in order]


class StepGraph:
    """Caches the resolved step order per workflow type."""

    def __init__(self, steps: dict[str, WorkflowStepSpec]):
        self._steps = steps
        self._orders: dict[str, list[WorkflowStepSpec]] = {}
        self._lock = threading.Lock()

    def execution_order(self, workflow_type: str, step_ids: Sequence[str]) -> list[WorkflowStepSpec]:
        with self._lock:
            cached = self._orders.get(workflow_type)
            if cached is not None:
                return cached
        order = resolve_step_order(step_ids, self._steps)
        with self._lock:
            self._orders[workflow_type] = order
        logger.info(f"Step order for {workflow_type}: {[s.id for s in order]}")
        return order
