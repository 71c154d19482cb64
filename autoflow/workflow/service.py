"""Start and resume AutoFlow runs against the shared compiled workflow."""

import logging
import threading
import uuid
from contextlib import contextmanager
from typing import Iterator, Optional

from autoflow.pipeline import PAUSE_STAGE, CompiledPipeline, Decision, PipelineState, PipelineStatus, update
from autoflow.pipeline.engine import ProgressSink
from autoflow.schema import ChatMessage, ProgressEvent
from autoflow.stages.common import wants_abort
from autoflow.store import StateStore
from autoflow.workflow.graph import build_workflow
from autoflow.workflow.pipeline import AutoFlowPipeline

logger = logging.getLogger(__name__)


class ConversationNotFoundError(KeyError):
    """Raised when a conversation id has no stored state."""


def log_progress(event: ProgressEvent) -> None:
    logger.info(
        "[%s] %3d%% %s: %s",
        event.conversation_id,
        event.percent_complete,
        event.stage_name,
        event.message,
    )


class WorkflowService:
    """Runs conversations through one compiled workflow and persists every outcome.

    Resumptions of the same conversation are serialized with a
    per-conversation lock; different conversations run concurrently.
    """

    def __init__(
        self,
        pipeline: AutoFlowPipeline,
        store: Optional[StateStore] = None,
        progress_sink: Optional[ProgressSink] = None,
    ):
        self.pipeline = pipeline
        self.workflow: CompiledPipeline = build_workflow(pipeline)
        self.store = store or StateStore()
        self.progress_sink = progress_sink or log_progress
        # conversation_id -> (lock, holders); entries are dropped once nobody holds them
        self._locks: dict[str, tuple[threading.RLock, int]] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _conversation_lock(self, conversation_id: str) -> Iterator[None]:
        with self._locks_guard:
            lock, holders = self._locks.get(conversation_id, (None, 0))
            lock = lock or threading.RLock()
            self._locks[conversation_id] = (lock, holders + 1)
        try:
            with lock:
                yield
        finally:
            with self._locks_guard:
                lock, holders = self._locks[conversation_id]
                if holders == 1:
                    del self._locks[conversation_id]
                else:
                    self._locks[conversation_id] = (lock, holders - 1)

    def start(
        self,
        requirement_text: str,
        repo_ref: str,
        conversation_id: Optional[str] = None,
        base_branch: Optional[str] = None,
        target_symbol: Optional[str] = None,
        logs: Optional[str] = None,
        progress_sink: Optional[ProgressSink] = None,
    ) -> PipelineState:
        """Start a new run for a requirement.

        Raises:
            ValueError: If the conversation id is already in use.
        """
        conversation_id = conversation_id or uuid.uuid4().hex
        with self._conversation_lock(conversation_id):
            if self.store.exists(conversation_id):
                raise ValueError(f"Conversation already exists: {conversation_id}")

            state = PipelineState(
                conversation_id=conversation_id,
                requirement_text=requirement_text,
                repo_ref=repo_ref,
                base_branch=base_branch or self.pipeline.settings.default_branch,
                target_symbol=target_symbol,
                logs_pasted=logs,
                conversation_history=[ChatMessage(role="user", content=requirement_text)],
            )
            logger.info("[%s] starting run for %s", conversation_id, repo_ref)
            return self._run(state, progress_sink)

    def resume(
        self,
        state: PipelineState,
        human_reply: str,
        progress_sink: Optional[ProgressSink] = None,
    ) -> PipelineState:
        """Continue a paused or failed run with the human's reply.

        Raises:
            ValueError: If the run already completed.
        """
        if state.status == PipelineStatus.COMPLETED:
            raise ValueError(f"Conversation already completed: {state.conversation_id}")

        with self._conversation_lock(state.conversation_id):
            history = state.with_message("user", human_reply)

            if wants_abort(human_reply):
                aborted = update(
                    state,
                    {
                        "conversation_history": history,
                        "status": PipelineStatus.FAILED,
                        "last_decision": Decision.error("Task aborted by the developer"),
                    },
                )
                self.store.save(aborted)
                logger.info("[%s] aborted by developer", state.conversation_id)
                return aborted

            # A stage fault ends the run without passing through the pause stage
            paused_stage = state.paused_stage
            if state.status == PipelineStatus.FAILED and state.current_stage not in (None, PAUSE_STAGE):
                paused_stage = state.current_stage

            resumed = update(
                state,
                {
                    "conversation_history": history,
                    "status": PipelineStatus.RUNNING,
                    "paused_stage": paused_stage,
                    "last_decision": None,
                },
            )
            logger.info("[%s] resuming from %s", state.conversation_id, paused_stage)
            return self._run(resumed, progress_sink)

    def resume_conversation(
        self,
        conversation_id: str,
        human_reply: str,
        progress_sink: Optional[ProgressSink] = None,
    ) -> PipelineState:
        """Load a stored conversation and resume it.

        Raises:
            ConversationNotFoundError: If nothing is stored for the id.
        """
        with self._conversation_lock(conversation_id):
            state = self.store.load(conversation_id)
            if state is None:
                raise ConversationNotFoundError(conversation_id)
            return self.resume(state, human_reply, progress_sink)

    def get(self, conversation_id: str) -> Optional[PipelineState]:
        return self.store.load(conversation_id)

    def _run(self, state: PipelineState, progress_sink: Optional[ProgressSink]) -> PipelineState:
        final = self.workflow.run(state, progress_sink=progress_sink or self.progress_sink)
        self.store.save(final)
        logger.info(
            "[%s] run ended: %s at %s",
            final.conversation_id,
            final.status.value,
            final.current_stage,
        )
        return final
