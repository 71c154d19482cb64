"""Assembly of the AutoFlow workflow graph."""

from typing import TYPE_CHECKING

from autoflow.pipeline import (
    PAUSE_STAGE,
    TERMINAL,
    CompiledPipeline,
    DecisionRouter,
    PipelineGraph,
    RetryController,
)
from autoflow.stages import (
    intake,
    make_build_validation_node,
    make_change_description_node,
    make_chat_response_node,
    make_code_generation_node,
    make_code_indexing_node,
    make_context_assembly_node,
    make_documentation_node,
    make_log_analysis_node,
    make_publish_node,
    make_requirement_analysis_node,
    make_review_node,
    make_scope_approval_node,
    make_scope_discovery_node,
    make_test_execution_node,
    pause,
)
from autoflow.stages.common import (
    BUILD_VALIDATION,
    CANONICAL_ORDER,
    CHANGE_DESCRIPTION,
    CHAT_RESPONSE,
    CODE_GENERATION,
    CODE_INDEXING,
    CONTEXT_ASSEMBLY,
    DOCUMENTATION,
    INTAKE,
    LOG_ANALYSIS,
    PUBLISH,
    REQUIREMENT_ANALYSIS,
    REVIEW,
    SCOPE_APPROVAL,
    SCOPE_DISCOVERY,
    TEST_EXECUTION,
)
from autoflow.workflow.routing import (
    CLASSIFICATION_DESTINATIONS,
    INDEX_DESTINATIONS,
    ResumeRouter,
    route_after_analysis,
    route_after_indexing,
)

if TYPE_CHECKING:
    from autoflow.workflow.pipeline import AutoFlowPipeline


def build_workflow_graph(pipeline: "AutoFlowPipeline") -> PipelineGraph:
    """Declare every stage and transition of the workflow.

    Args:
        pipeline: AutoFlowPipeline whose collaborators the stages use.

    Returns:
        Uncompiled PipelineGraph.
    """
    settings = pipeline.settings
    retry = RetryController(retry_target=CODE_GENERATION, max_attempts=settings.max_attempts)

    graph = PipelineGraph()

    # Add stages
    graph.add_stage(INTAKE, intake)
    graph.add_stage(REQUIREMENT_ANALYSIS, make_requirement_analysis_node(pipeline))
    graph.add_stage(LOG_ANALYSIS, make_log_analysis_node(pipeline))
    graph.add_stage(CODE_INDEXING, make_code_indexing_node(pipeline))
    graph.add_stage(SCOPE_DISCOVERY, make_scope_discovery_node(pipeline))
    graph.add_stage(SCOPE_APPROVAL, make_scope_approval_node(pipeline))
    graph.add_stage(CONTEXT_ASSEMBLY, make_context_assembly_node(pipeline))
    graph.add_stage(CODE_GENERATION, make_code_generation_node(pipeline))
    graph.add_stage(BUILD_VALIDATION, retry.wrap(make_build_validation_node(pipeline), "build_attempt"))
    graph.add_stage(TEST_EXECUTION, make_test_execution_node(pipeline))
    graph.add_stage(REVIEW, retry.wrap(make_review_node(pipeline), "review_attempt"))
    graph.add_stage(CHANGE_DESCRIPTION, make_change_description_node(pipeline))
    graph.add_stage(PUBLISH, make_publish_node(pipeline))
    graph.add_stage(DOCUMENTATION, make_documentation_node(pipeline))
    graph.add_stage(CHAT_RESPONSE, make_chat_response_node(pipeline))
    graph.add_stage(PAUSE_STAGE, pause)

    graph.set_entry(INTAKE)

    # intake -> fresh start or resume point
    graph.add_conditional_edge(INTAKE, ResumeRouter(settings.max_scope_files))

    # requirement analysis -> chat, logs, indexing or pause
    graph.add_conditional_edge(REQUIREMENT_ANALYSIS, route_after_analysis, CLASSIFICATION_DESTINATIONS)
    graph.add_conditional_edge(LOG_ANALYSIS, DecisionRouter(CODE_INDEXING))

    # indexing -> documentation (read-only) or scope discovery/approval
    graph.add_conditional_edge(CODE_INDEXING, route_after_indexing, INDEX_DESTINATIONS)

    graph.add_conditional_edge(SCOPE_DISCOVERY, DecisionRouter(CONTEXT_ASSEMBLY))
    graph.add_conditional_edge(SCOPE_APPROVAL, DecisionRouter(CONTEXT_ASSEMBLY, on_retry=SCOPE_DISCOVERY))
    graph.add_conditional_edge(CONTEXT_ASSEMBLY, DecisionRouter(CODE_GENERATION))
    graph.add_conditional_edge(CODE_GENERATION, DecisionRouter(BUILD_VALIDATION))

    # build and review retry through code generation
    graph.add_conditional_edge(
        BUILD_VALIDATION, DecisionRouter(TEST_EXECUTION, on_retry=CODE_GENERATION)
    )
    graph.add_conditional_edge(TEST_EXECUTION, DecisionRouter(REVIEW))
    graph.add_conditional_edge(REVIEW, DecisionRouter(CHANGE_DESCRIPTION, on_retry=CODE_GENERATION))
    graph.add_conditional_edge(CHANGE_DESCRIPTION, DecisionRouter(PUBLISH))

    # Terminal stages
    graph.add_conditional_edge(PUBLISH, DecisionRouter(TERMINAL))
    graph.add_conditional_edge(DOCUMENTATION, DecisionRouter(TERMINAL))
    graph.add_conditional_edge(CHAT_RESPONSE, DecisionRouter(TERMINAL))
    graph.add_edge(PAUSE_STAGE, TERMINAL)

    return graph


def build_workflow(pipeline: "AutoFlowPipeline") -> CompiledPipeline:
    """Build and compile the workflow once; the result is shared by every run."""
    return build_workflow_graph(pipeline).compile(
        recursion_limit=pipeline.settings.recursion_limit,
        progress_order=CANONICAL_ORDER,
    )
