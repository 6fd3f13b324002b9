"""Workflow registry for loading workflow definitions."""

import logging
from pathlib import Path
from typing import Optional

import yaml

from .schemas import WorkflowDefinition, WorkflowDefinitionError, WorkflowSummary

logger = logging.getLogger(__name__)


class WorkflowRegistry:
    """Registry for workflow definitions.

    Loads one YAML file per workflow type from the definitions directory.
    """

    def __init__(self, definitions_dir: Optional[Path] = None):
        self.definitions_dir = definitions_dir or (
            Path(__file__).parent / "definitions"
        )
        self._workflows: dict[str, WorkflowDefinition] = {}
        self._loaded = False

    def load(self) -> None:
        """Load all workflow definitions from YAML files."""
        if self._loaded:
            return

        if not self.definitions_dir.exists():
            logger.warning(f"Workflow definitions dir not found: {self.definitions_dir}")
            self._loaded = True
            return

        for yaml_file in sorted(self.definitions_dir.glob("*.yaml")):
            try:
                with open(yaml_file, "r") as f:
                    data = yaml.safe_load(f)
                workflow = WorkflowDefinition.model_validate(data)
                self._workflows[workflow.workflow_type] = workflow
            except Exception as e:
                logger.error(f"Failed to load workflow {yaml_file}: {e}")

        logger.info(f"Loaded {len(self._workflows)} workflow definitions")
        self._loaded = True

    def get(self, workflow_type: str) -> Optional[WorkflowDefinition]:
        """Get a workflow definition by type key."""
        self.load()
        return self._workflows.get(workflow_type)

    def require(self, workflow_type: str) -> WorkflowDefinition:
        workflow = self.get(workflow_type)
        if workflow is None:
            raise WorkflowDefinitionError(f"Unknown workflow type: {workflow_type}")
        return workflow

    def list_definitions(self) -> list[WorkflowDefinition]:
        self.load()
        return list(self._workflows.values())

    def list_all(self) -> list[WorkflowSummary]:
        """List all workflow summaries."""
        self.load()
        return [
            WorkflowSummary(
                workflow_type=w.workflow_type,
                name=w.name,
                description=w.description,
                estimated_duration_min=w.estimated_duration_min,
                complexity=w.complexity,
                supported_inputs=w.supported_inputs,
                outputs=w.outputs,
                step_count=len(w.steps),
            )
            for w in self._workflows.values()
        ]

    def count(self) -> int:
        """Get total number of workflows."""
        self.load()
        return len(self._workflows)

    def reload(self) -> None:
        self._workflows.clear()
        self._loaded = False
        self.load()
