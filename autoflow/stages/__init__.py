"""Workflow stages, each created by a factory bound to an AutoFlowPipeline."""

from autoflow.stages.control import intake, pause
from autoflow.stages.delivery import make_change_description_node, make_publish_node, make_review_node
from autoflow.stages.generation import (
    apply_edits,
    make_build_validation_node,
    make_code_generation_node,
    make_test_execution_node,
)
from autoflow.stages.indexing import make_code_indexing_node, make_documentation_node
from autoflow.stages.scoping import (
    make_context_assembly_node,
    make_scope_approval_node,
    make_scope_discovery_node,
)
from autoflow.stages.understanding import (
    make_chat_response_node,
    make_log_analysis_node,
    make_requirement_analysis_node,
)

__all__ = [
    "intake",
    "pause",
    "apply_edits",
    "make_requirement_analysis_node",
    "make_log_analysis_node",
    "make_chat_response_node",
    "make_code_indexing_node",
    "make_documentation_node",
    "make_scope_discovery_node",
    "make_scope_approval_node",
    "make_context_assembly_node",
    "make_code_generation_node",
    "make_build_validation_node",
    "make_test_execution_node",
    "make_review_node",
    "make_change_description_node",
    "make_publish_node",
]
