"""The AutoFlow workflow: collaborator bundle, graph definition and run service."""

from autoflow.workflow.graph import build_workflow, build_workflow_graph
from autoflow.workflow.pipeline import AutoFlowPipeline
from autoflow.workflow.routing import ResumeRouter, route_after_analysis, route_after_indexing
from autoflow.workflow.service import ConversationNotFoundError, WorkflowService, log_progress

__all__ = [
    "AutoFlowPipeline",
    "ConversationNotFoundError",
    "ResumeRouter",
    "WorkflowService",
    "build_workflow",
    "build_workflow_graph",
    "log_progress",
    "route_after_analysis",
    "route_after_indexing",
]
