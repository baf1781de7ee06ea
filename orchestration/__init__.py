"""
ServiceForge Orchestration - Pipeline assembly and execution
Workflow graph editing, agent compatibility, capability lookup, dispatch and persistence
"""

from .capabilities import Capability, CapabilityTable, FileInput, Strategy
from .compatibility import compatible_agents, required_input_type, select_agents
from .orchestration_parser import PipelineParser
from .workflow_executor import ExecutionDispatcher, ExecutionRequest, ExecutionResult
from .workflow_graph import UNSET, WorkflowGraph, WorkflowStep
from .workflow_manager import PipelineStore

__all__ = [
    "Capability",
    "CapabilityTable",
    "FileInput",
    "Strategy",
    "compatible_agents",
    "required_input_type",
    "select_agents",
    "PipelineParser",
    "ExecutionDispatcher",
    "ExecutionRequest",
    "ExecutionResult",
    "UNSET",
    "WorkflowGraph",
    "WorkflowStep",
    "PipelineStore",
]

__version__ = "1.0.0"
