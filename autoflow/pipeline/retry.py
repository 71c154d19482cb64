"""Bounded retry and escalation for build validation and review."""

import logging
from typing import Optional

from pydantic import BaseModel

from autoflow.pipeline.decision import Decision, DecisionKind
from autoflow.pipeline.engine import StageFn, as_partial
from autoflow.pipeline.state import PipelineState, update

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3

RESUME_OPTIONS = [
    "Reply with guidance to regenerate the change",
    "Reply 'skip' to continue with the current change",
    "Reply 'abort' to stop this task",
]


class RetryRoute(BaseModel):
    """Outcome of a retry check.

    Exactly one of ``retry_target`` and ``ask_human_message`` is set when the
    wrapped stage asked for a retry; neither is set otherwise.
    """

    retry_target: Optional[str] = None
    ask_human_message: Optional[str] = None
    attempts: int = 0


class RetryController:
    """Gate RETRY decisions behind a per-field attempt ceiling.

    The attempt counter records how many retries were granted. A retry is
    granted while the number of failed attempts, including the one being
    judged, stays below ``max_attempts``; the failure that reaches the
    ceiling escalates to the human instead.
    """

    def __init__(self, retry_target: str, max_attempts: int = MAX_ATTEMPTS):
        self.retry_target = retry_target
        self.max_attempts = max_attempts

    def route(self, state: PipelineState, attempt_field: str) -> RetryRoute:
        """Decide between retrying and escalating for the state's last decision."""
        attempts = getattr(state, attempt_field)
        decision = state.last_decision
        if decision is None or decision.kind != DecisionKind.RETRY:
            return RetryRoute(attempts=attempts)

        failed = attempts + 1
        if failed < self.max_attempts:
            logger.info(
                "[%s] %s: retry %d/%d via %s",
                state.conversation_id,
                attempt_field,
                failed,
                self.max_attempts - 1,
                self.retry_target,
            )
            return RetryRoute(retry_target=self.retry_target, attempts=failed)

        logger.warning(
            "[%s] %s: %d failed attempts, escalating", state.conversation_id, attempt_field, failed
        )
        return RetryRoute(
            ask_human_message=self._escalation_message(state, attempt_field, failed),
            attempts=attempts,
        )

    def wrap(self, stage: StageFn, attempt_field: str) -> StageFn:
        """Run ``stage`` and apply ``route`` to the decision it produced."""

        def guarded(state: PipelineState) -> dict:
            partial = as_partial(stage(state))
            outcome = self.route(update(state, partial), attempt_field)
            if outcome.retry_target is not None:
                partial[attempt_field] = outcome.attempts
            elif outcome.ask_human_message is not None:
                partial["last_decision"] = Decision.ask_human(
                    outcome.ask_human_message, questions=list(RESUME_OPTIONS)
                )
            return partial

        guarded.__name__ = getattr(stage, "__name__", "guarded")
        return guarded

    def _escalation_message(self, state: PipelineState, attempt_field: str, failed: int) -> str:
        if attempt_field == "build_attempt":
            log = state.build_result.error_log if state.build_result else ""
            summary = f"**Build Failed After {failed} Attempts**\n\nError:\n```\n{log.strip()}\n```"
        elif attempt_field == "review_attempt":
            issues = state.review.format_issues() if state.review else ""
            summary = f"**Review Still Failing After {failed} Attempts**\n\n{issues}"
        else:
            summary = f"**{attempt_field} exhausted after {failed} attempts**"

        if state.last_decision and state.last_decision.explanation:
            summary += f"\n\n{state.last_decision.explanation}"

        options = "\n".join(f"{i}. {option}" for i, option in enumerate(RESUME_OPTIONS, 1))
        return f"{summary}\n\nOptions:\n{options}"
