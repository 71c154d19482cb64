"""API request and response models."""

from typing import Optional

from pydantic import BaseModel, Field

from autoflow.pipeline import Decision, PipelineStatus
from autoflow.pipeline.state import PipelineState
from autoflow.schema import ChatMessage, ScopeProposal


class StartRequest(BaseModel):
    """Request body for POST /workflows."""

    requirement: str = Field(..., min_length=1, max_length=20000, description="Change request text")
    repo_ref: str = Field(..., min_length=1, max_length=500, description="Repository URL or owner/name")
    conversation_id: Optional[str] = Field(
        default=None, pattern=r"^[A-Za-z0-9_.-]{1,128}$", description="Reuse a client-chosen id"
    )
    base_branch: Optional[str] = None
    target_symbol: Optional[str] = Field(default=None, description="Type or method to focus on")
    logs: Optional[str] = Field(default=None, max_length=100000, description="Pasted error logs")


class ResumeRequest(BaseModel):
    """Request body for POST /workflows/{id}/resume."""

    reply: str = Field(..., min_length=1, max_length=20000)


class WorkflowSummary(BaseModel):
    """What a client needs to show the state of one conversation."""

    conversation_id: str
    status: PipelineStatus
    current_stage: Optional[str] = None
    paused_stage: Optional[str] = None
    last_decision: Optional[Decision] = None
    messages: list[ChatMessage] = Field(default_factory=list)
    scope_proposal: Optional[ScopeProposal] = None
    documentation: Optional[str] = None
    change_request_url: Optional[str] = None

    @classmethod
    def from_state(cls, state: PipelineState) -> "WorkflowSummary":
        return cls(
            conversation_id=state.conversation_id,
            status=state.status,
            current_stage=state.current_stage,
            paused_stage=state.paused_stage,
            last_decision=state.last_decision,
            messages=state.conversation_history,
            scope_proposal=state.scope_proposal,
            documentation=state.documentation,
            change_request_url=state.change_request_url,
        )


class WorkflowResponse(BaseModel):
    """Response body for workflow endpoints."""

    success: bool
    workflow: Optional[WorkflowSummary] = None
    error: Optional[str] = None


class HealthResponse(BaseModel):
    """Response body for /health endpoint."""

    status: str
    version: str
    pipeline_loaded: bool
    llm_provider: str
