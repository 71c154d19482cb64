"""Pipeline state schema threaded through every stage."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from autoflow.pipeline.decision import Decision
from autoflow.schema import (
    BuildResult,
    ChatMessage,
    CodeReview,
    GeneratedEdits,
    IndexingResult,
    LogAnalysis,
    RequirementAnalysis,
    ScopeProposal,
    StructuredContext,
    TestResult,
)


class PipelineStatus(str, Enum):
    """Run status."""

    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def halts(self) -> bool:
        """Whether the engine stops driving stages in this status."""
        return self is not PipelineStatus.RUNNING


class PipelineState(BaseModel):
    """State flowing through the pipeline graph.

    Stages never mutate an instance; they return a partial dict of field
    updates which the engine merges (see ``update``).
    """

    # Inputs
    conversation_id: str
    requirement_text: str
    repo_ref: str
    base_branch: str = "main"
    target_symbol: Optional[str] = None
    logs_pasted: Optional[str] = None
    conversation_history: list[ChatMessage] = Field(default_factory=list)

    # Understanding
    requirement_analysis: Optional[RequirementAnalysis] = None
    log_analysis: Optional[LogAnalysis] = None

    # Indexing
    workspace_ref: Optional[str] = None
    indexing_result: Optional[IndexingResult] = None
    baseline_build: Optional[BuildResult] = None

    # Scope and context
    scope_proposal: Optional[ScopeProposal] = None
    structured_context: Optional[StructuredContext] = None

    # Generation and validation
    generated_edits: Optional[GeneratedEdits] = None
    created_files: list[str] = Field(default_factory=list, description="Workspace files added by generated edits")
    build_result: Optional[BuildResult] = None
    test_result: Optional[TestResult] = None
    review: Optional[CodeReview] = None
    build_attempt: int = Field(default=0, ge=0)
    review_attempt: int = Field(default=0, ge=0)

    # Outputs
    documentation: Optional[str] = None
    change_description: Optional[str] = None
    branch_name: Optional[str] = None
    change_request_url: Optional[str] = None

    # Control
    status: PipelineStatus = PipelineStatus.RUNNING
    last_decision: Optional[Decision] = None
    current_stage: Optional[str] = None
    paused_stage: Optional[str] = None

    def has_logs(self) -> bool:
        return bool(self.logs_pasted and self.logs_pasted.strip())

    def last_user_message(self) -> str:
        for message in reversed(self.conversation_history):
            if message.role == "user":
                return message.content
        return ""

    def user_just_responded(self) -> bool:
        """True when the newest history entry is a human reply to an earlier turn."""
        return (
            len(self.conversation_history) > 1
            and self.conversation_history[-1].role == "user"
        )

    def with_message(self, role: str, content: str) -> list[ChatMessage]:
        """History with one more message appended, for use in a partial update."""
        return [*self.conversation_history, ChatMessage(role=role, content=content)]

    def to_map(self) -> dict[str, Any]:
        """JSON-safe mapping suitable for persistence."""
        return self.model_dump(mode="json")

    @classmethod
    def from_map(cls, data: dict[str, Any]) -> "PipelineState":
        return cls.model_validate(data)


def update(state: PipelineState, partial: dict[str, Any]) -> PipelineState:
    """Merge a partial update into state, returning a new validated state.

    Raises:
        KeyError: If the update names a field PipelineState does not have.
    """
    unknown = set(partial) - set(PipelineState.model_fields)
    if unknown:
        raise KeyError(f"Unknown pipeline state fields: {sorted(unknown)}")
    merged = dict(state)
    merged.update(partial)
    return PipelineState.model_validate(merged)
