"""
Orchestration Parser - turn a stored mini-service record back into a WorkflowGraph
"""

from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import ValidationError as ModelValidationError

from serviceforge.agent_catalog import AgentCatalog
from serviceforge.api_models import Agent, PipelineNode
from serviceforge.errors import IntegrityError, ValidationError
from serviceforge.logger_config import get_logger

from .workflow_graph import UNSET, WorkflowGraph, WorkflowStep

logger = get_logger("serviceforge.orchestration_parser")


class PipelineParser:
    """Parse stored service records (workflow.nodes keyed by index)"""

    def _nodes(self, service_record: Mapping[str, Any]) -> Dict[str, PipelineNode]:
        workflow = service_record.get("workflow") or {}
        raw_nodes = workflow.get("nodes") or {}
        if not isinstance(raw_nodes, Mapping):
            raise ValidationError("Service workflow nodes must be an object keyed by index")
        try:
            return {str(key): PipelineNode.model_validate(node) for key, node in raw_nodes.items()}
        except ModelValidationError as e:
            raise ValidationError(f"Malformed workflow node: {e}") from e

    def parse_workflow(self, service_record: Mapping[str, Any], catalog: AgentCatalog) -> WorkflowGraph:
        """
        Parse a stored service into a runnable graph.

        Args:
            service_record: Service as returned by the backend:
                {
                    "id": 12,
                    "name": "Podcast Summary",
                    "input_type": "sound",
                    "output_type": "text",
                    "workflow": {
                        "nodes": {
                            "0": {"agent_id": 4, "next": "1", "settings": {}, "agent_type": "transcribe"},
                            "1": {"agent_id": 9, "next": null, "settings": {}, "agent_type": "gemini"}
                        }
                    }
                }
            catalog: Current agent catalog

        Returns:
            WorkflowGraph whose step ids are the stored node keys

        Raises:
            ValidationError: malformed nodes
            IntegrityError: the stored chain is not a single acyclic list
        """
        nodes = self._nodes(service_record)

        # agents deleted from the catalog still run on the backend; keep their tag
        placeholders = []
        for key, node in nodes.items():
            agent_id = str(node.agent_id)
            if agent_id not in catalog and not any(p.id == agent_id for p in placeholders):
                logger.warning(f"Agent {agent_id} of node {key} is not in the catalog, using stored type")
                placeholders.append(Agent.model_validate({
                    "id": agent_id,
                    "name": f"Agent {agent_id}",
                    "agent_type": node.agent_type,
                }))
        if placeholders:
            catalog = AgentCatalog(list(catalog) + placeholders, catalog.capabilities)

        steps = {
            key: WorkflowStep(
                id=key,
                agent_id=str(node.agent_id),
                settings=dict(node.settings),
                next=str(node.next) if node.next is not None else None,
            )
            for key, node in nodes.items()
        }

        graph = WorkflowGraph.from_steps(catalog, steps)
        input_type = service_record.get("input_type") or graph.input_type
        output_type = service_record.get("output_type") or graph.output_type
        if not steps:
            input_type = output_type = UNSET
        logger.debug(f"Parsed service '{service_record.get('name', '?')}' with {len(steps)} steps")
        return WorkflowGraph(catalog, steps, input_type, output_type)

    def validate_workflow(
        self,
        service_record: Mapping[str, Any],
        catalog: Optional[AgentCatalog] = None
    ) -> Tuple[bool, List[str]]:
        """
        Validate a stored service record.

        Args:
            service_record: Service as returned by the backend
            catalog: When given, unknown agents are reported

        Returns:
            Tuple of (is_valid, list_of_errors)
        """
        errors = []

        try:
            nodes = self._nodes(service_record)
        except (ValidationError, ValueError) as e:
            return False, [str(e)]

        if not nodes:
            errors.append("Workflow has no nodes")

        for key, node in nodes.items():
            if node.agent_id in (None, ""):
                errors.append(f"Node {key} has no agent")
            if node.next is not None and str(node.next) not in nodes:
                errors.append(f"Node {key} points to missing node {node.next}")
            elif node.next is not None and str(node.next) == key:
                errors.append(f"Node {key} points to itself")
            if catalog is not None and str(node.agent_id) not in catalog:
                errors.append(f"Node {key} uses unknown agent {node.agent_id}")

        if nodes and not errors:
            try:
                self.parse_workflow(service_record, catalog or AgentCatalog()).ordered_sequence()
            except IntegrityError as e:
                errors.append(f"Could not determine execution order: {e}")

        return len(errors) == 0, errors
