"""Stages that read the request: requirement analysis, log analysis and chat replies."""

import logging
from typing import TYPE_CHECKING

from pydantic import ValidationError

from autoflow.collaborators import extract_json
from autoflow.pipeline.decision import Decision
from autoflow.pipeline.state import PipelineState, PipelineStatus
from autoflow.prompts import load_prompt_template
from autoflow.schema import LogAnalysis, RequirementAnalysis, TaskType
from autoflow.stages.common import (
    LOG_ANALYSIS,
    REQUIREMENT_ANALYSIS,
    SCOPE_DISCOVERY,
    format_conversation,
    numbered,
)

if TYPE_CHECKING:
    from autoflow.workflow.pipeline import AutoFlowPipeline

logger = logging.getLogger(__name__)


def fallback_analysis(requirement_text: str, raw_response: str = "") -> RequirementAnalysis:
    """Analysis used when the generated one cannot be parsed."""
    return RequirementAnalysis(
        task_type=TaskType.UNKNOWN,
        domain="general",
        summary=requirement_text,
        detailed_description=raw_response,
        confidence=0.5,
        data_sources=["code"],
        modifies_code=True,
    )


def needs_reanalysis(state: PipelineState) -> bool:
    """Whether the reply answers a pause that the analysis itself led to.

    Besides its own clarifying questions, an empty scope search means the
    analyzed domain matched nothing, so the correction is analyzed again.
    """
    if state.paused_stage == REQUIREMENT_ANALYSIS:
        return True
    return state.paused_stage == SCOPE_DISCOVERY and state.scope_proposal is None


def make_requirement_analysis_node(pipeline: "AutoFlowPipeline"):
    """Create the requirement analysis stage bound to the pipeline."""
    floor = pipeline.settings.requirement_confidence_floor

    def requirement_analysis(state: PipelineState) -> dict:
        if (
            state.requirement_analysis is not None
            and state.user_just_responded()
            and not needs_reanalysis(state)
        ):
            return {"last_decision": Decision.proceed("Requirement already analyzed, continuing")}

        prompt = load_prompt_template("requirement_analysis").format(
            requirement=state.requirement_text,
            target_symbol=state.target_symbol or "none",
            has_logs="yes" if state.has_logs() else "no",
            conversation=format_conversation(state.conversation_history),
        )
        response = pipeline.llm.generate(prompt)
        try:
            analysis = RequirementAnalysis.model_validate(extract_json(response))
        except (ValueError, ValidationError) as e:
            logger.warning("[%s] unparsable requirement analysis: %s", state.conversation_id, e)
            analysis = fallback_analysis(state.requirement_text, response)

        # Questions the human has just answered are not asked again
        if analysis.questions and state.user_just_responded():
            analysis.questions = []

        logger.info(
            "[%s] requirement: type=%s domain=%s confidence=%.2f",
            state.conversation_id,
            analysis.task_type.value,
            analysis.domain,
            analysis.confidence,
        )

        if analysis.confidence < floor:
            message = (
                "**Unclear Requirement**\n\n"
                f"Confidence: {analysis.confidence:.0%}\n\n"
                "**Questions:**\n"
                + (numbered(analysis.questions) or "Could you describe the change in more detail?")
            )
            return {
                "requirement_analysis": analysis,
                "last_decision": Decision.ask_human(message, questions=analysis.questions),
            }

        if analysis.questions and analysis.task_type != TaskType.DOCUMENTATION:
            message = (
                "**Need Clarification**\n\nPlease answer all questions below:\n\n"
                + numbered(analysis.questions)
            )
            return {
                "requirement_analysis": analysis,
                "last_decision": Decision.ask_human(message, questions=analysis.questions),
            }

        analysis.questions = []
        return {
            "requirement_analysis": analysis,
            "last_decision": Decision.proceed("Requirement clear"),
        }

    return requirement_analysis


def make_log_analysis_node(pipeline: "AutoFlowPipeline"):
    """Create the log analysis stage bound to the pipeline."""
    floor = pipeline.settings.log_confidence_floor

    def log_analysis(state: PipelineState) -> dict:
        if not state.has_logs():
            return {"last_decision": Decision.proceed("No logs to analyze")}
        if state.paused_stage == LOG_ANALYSIS and state.user_just_responded():
            return {"last_decision": Decision.proceed("Log questions answered, continuing")}

        prompt = load_prompt_template("log_analysis").format(
            requirement=state.requirement_text,
            logs=state.logs_pasted,
        )
        try:
            analysis = LogAnalysis.model_validate(pipeline.generate_json(prompt))
        except Exception as e:
            # Log analysis only enriches the prompt for code generation
            logger.warning("[%s] log analysis failed: %s", state.conversation_id, e)
            return {"last_decision": Decision.proceed("Could not analyze logs, continuing anyway")}

        if analysis.confidence < floor:
            message = (
                "**Unclear Error from Logs**\n\n"
                f"I found: {analysis.error_type or 'unknown error'}\n"
                f"Location: {analysis.location or 'unknown'}\n"
                f"Hypothesis: {analysis.root_cause_hypothesis or 'none'}\n\n"
                "**Questions:**\n" + (numbered(analysis.questions) or "Can you share more of the log?")
            )
            return {
                "log_analysis": analysis,
                "last_decision": Decision.ask_human(message, questions=analysis.questions),
            }

        return {"log_analysis": analysis, "last_decision": Decision.proceed("Logs analyzed")}

    return log_analysis


def make_chat_response_node(pipeline: "AutoFlowPipeline"):
    """Create the small-talk reply stage bound to the pipeline."""

    def chat_response(state: PipelineState) -> dict:
        prompt = load_prompt_template("chat_response").format(requirement=state.requirement_text)
        try:
            reply = pipeline.llm.generate(prompt).strip()
        except Exception as e:
            logger.warning("[%s] chat reply failed: %s", state.conversation_id, e)
            reply = ""
        reply = reply or "Hello! I'm ready to help with your codebase. What would you like to work on?"
        return {
            "conversation_history": state.with_message("assistant", reply),
            "status": PipelineStatus.COMPLETED,
            "last_decision": Decision.end(reply),
        }

    return chat_response
