"""FastAPI application for starting and resuming AutoFlow runs."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from autoflow import __version__
from autoflow.api.models import (
    HealthResponse,
    ResumeRequest,
    StartRequest,
    WorkflowResponse,
    WorkflowSummary,
)
from autoflow.collaborators import CollaboratorError
from autoflow.config import configure_logging, get_settings
from autoflow.workflow import AutoFlowPipeline, ConversationNotFoundError, WorkflowService

logger = logging.getLogger(__name__)

# Global instances
service: Optional[WorkflowService] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize components on startup."""
    global service

    configure_logging()

    try:
        service = WorkflowService(AutoFlowPipeline.from_settings())
        logger.info("Workflow service ready")
    except (CollaboratorError, OSError, ValueError) as e:
        logger.warning("Failed to initialize workflow service: %s", e)

    yield

    logger.info("Shutting down...")


app = FastAPI(
    title="AutoFlow API",
    description="Agentic pipeline from change requests to pull requests",
    version=__version__,
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _require_service() -> WorkflowService:
    if service is None:
        raise HTTPException(status_code=503, detail="Workflow service not initialized")
    return service


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    settings = get_settings()

    return HealthResponse(
        status="healthy",
        version=__version__,
        pipeline_loaded=service is not None,
        llm_provider=settings.llm_provider.value,
    )


@app.post("/workflows", response_model=WorkflowResponse)
def start_workflow(request: StartRequest):
    """Start a run; returns once it completes, pauses for input or fails."""
    workflows = _require_service()

    try:
        state = workflows.start(
            requirement_text=request.requirement,
            repo_ref=request.repo_ref,
            conversation_id=request.conversation_id,
            base_branch=request.base_branch,
            target_symbol=request.target_symbol,
            logs=request.logs,
        )
        return WorkflowResponse(success=True, workflow=WorkflowSummary.from_state(state))

    except ValueError as e:
        return WorkflowResponse(success=False, error=str(e))


@app.post("/workflows/{conversation_id}/resume", response_model=WorkflowResponse)
def resume_workflow(conversation_id: str, request: ResumeRequest):
    """Resume a paused run with the developer's reply."""
    workflows = _require_service()

    try:
        state = workflows.resume_conversation(conversation_id, request.reply)
        return WorkflowResponse(success=True, workflow=WorkflowSummary.from_state(state))

    except ConversationNotFoundError:
        raise HTTPException(status_code=404, detail=f"Conversation not found: {conversation_id}")
    except ValueError as e:
        return WorkflowResponse(success=False, error=str(e))


@app.get("/workflows/{conversation_id}", response_model=WorkflowResponse)
def get_workflow(conversation_id: str):
    """Get the stored state of a conversation."""
    workflows = _require_service()

    try:
        state = workflows.get(conversation_id)
    except ValueError as e:
        return WorkflowResponse(success=False, error=str(e))

    if state is None:
        raise HTTPException(status_code=404, detail=f"Conversation not found: {conversation_id}")
    return WorkflowResponse(success=True, workflow=WorkflowSummary.from_state(state))
