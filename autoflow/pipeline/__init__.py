"""Pipeline graph engine, decision protocol and shared state."""

from autoflow.pipeline.decision import Decision, DecisionKind
from autoflow.pipeline.engine import TERMINAL, CompiledPipeline, GraphCompileError, PipelineGraph
from autoflow.pipeline.retry import MAX_ATTEMPTS, RetryController, RetryRoute
from autoflow.pipeline.routing import PAUSE_STAGE, DecisionRouter
from autoflow.pipeline.state import PipelineState, PipelineStatus, update

__all__ = [
    "Decision",
    "DecisionKind",
    "PipelineGraph",
    "CompiledPipeline",
    "GraphCompileError",
    "TERMINAL",
    "DecisionRouter",
    "PAUSE_STAGE",
    "RetryController",
    "RetryRoute",
    "MAX_ATTEMPTS",
    "PipelineState",
    "PipelineStatus",
    "update",
]
