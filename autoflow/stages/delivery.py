"""Review, change description and publish stages."""

import logging
from typing import TYPE_CHECKING

from pydantic import ValidationError

from autoflow.collaborators import CollaboratorError
from autoflow.pipeline.decision import Decision
from autoflow.pipeline.retry import RESUME_OPTIONS
from autoflow.pipeline.state import PipelineState, PipelineStatus
from autoflow.prompts import load_prompt_template
from autoflow.schema import CodeReview, GeneratedEdits

if TYPE_CHECKING:
    from autoflow.workflow.pipeline import AutoFlowPipeline

logger = logging.getLogger(__name__)

BRANCH_PREFIX = "autoflow/"
UNPARSED_REVIEW_SCORE = 0.7


def format_edits(edits: GeneratedEdits) -> str:
    parts = []
    for edit in edits.all_edits():
        body = "(deleted)" if edit.op.lower() == "delete" else f"```\n{edit.content}\n```"
        parts.append(f"### {edit.path} ({edit.op})\n{body}")
    return "\n\n".join(parts) or "(no edits)"


def make_review_node(pipeline: "AutoFlowPipeline"):
    """Create the automated review stage bound to the pipeline."""

    def review(state: PipelineState) -> dict:
        if state.generated_edits is None:
            return {"last_decision": Decision.error("Nothing to review: no generated edits")}

        tests = state.test_result
        prompt = load_prompt_template("review").format(
            requirement=state.requirement_text,
            edits=format_edits(state.generated_edits),
            build_passed=bool(state.build_result and state.build_result.success),
            tests_passed=tests.passed if tests else 0,
            tests_failed=tests.failed if tests else 0,
        )
        try:
            result = CodeReview.model_validate(pipeline.generate_json(prompt))
        except (ValueError, ValidationError) as e:
            logger.warning("[%s] unparsable review, approving with warning: %s", state.conversation_id, e)
            result = CodeReview(
                approved=True,
                quality_score=UNPARSED_REVIEW_SCORE,
                summary="Automated review could not be parsed; the change was approved without review. "
                "Please review it manually.",
            )

        logger.info(
            "[%s] review: approved=%s quality=%.2f issues=%d critical=%d",
            state.conversation_id,
            result.approved,
            result.quality_score,
            len(result.issues),
            result.critical_issue_count(),
        )

        if result.approved:
            return {"review": result, "last_decision": Decision.proceed(result.summary or "Review passed")}

        critical = result.critical_issue_count()
        if critical:
            return {
                "review": result,
                "last_decision": Decision.retry(
                    f"Review found {critical} critical issues\n\n{result.format_issues()}"
                ),
            }

        options = "\n".join(f"{i}. {option}" for i, option in enumerate(RESUME_OPTIONS, 1))
        return {
            "review": result,
            "last_decision": Decision.ask_human(
                f"**Review Found Issues**\n\n{result.summary}\n\n{result.format_issues()}\n\nOptions:\n{options}",
                questions=list(RESUME_OPTIONS),
            ),
        }

    return review


def default_description(state: PipelineState) -> str:
    files = [edit.path for edit in state.generated_edits.all_edits()] if state.generated_edits else []
    lines = [f"# AutoFlow: {state.requirement_text.splitlines()[0][:100]}", "", state.requirement_text, ""]
    if state.generated_edits and state.generated_edits.explanation:
        lines += ["## Changes", state.generated_edits.explanation, ""]
    lines += ["## Files changed"] + [f"- {path}" for path in files]
    return "\n".join(lines)


def make_change_description_node(pipeline: "AutoFlowPipeline"):
    """Create the change request description stage bound to the pipeline."""

    def change_description(state: PipelineState) -> dict:
        analysis = state.requirement_analysis
        files = [edit.path for edit in state.generated_edits.all_edits()] if state.generated_edits else []

        prompt = load_prompt_template("change_description").format(
            requirement=state.requirement_text,
            task_type=analysis.task_type.value if analysis else "unknown",
            files_changed="\n".join(f"- {path}" for path in files) or "(none)",
            build_passed=bool(state.build_result and state.build_result.success),
            tests_passed=bool(state.test_result and state.test_result.all_passed),
            quality_score=f"{state.review.quality_score:.2f}" if state.review else "n/a",
        )
        try:
            description = pipeline.llm.generate(prompt).strip()
        except Exception as e:
            logger.warning("[%s] description generation failed: %s", state.conversation_id, e)
            description = ""

        return {
            "change_description": description or default_description(state),
            "last_decision": Decision.proceed("Change description written"),
        }

    return change_description


def make_publish_node(pipeline: "AutoFlowPipeline"):
    """Create the publish stage bound to the pipeline."""

    def publish(state: PipelineState) -> dict:
        if not state.workspace_ref:
            return {"last_decision": Decision.error("Cannot publish without a workspace")}

        branch = f"{BRANCH_PREFIX}{state.conversation_id}"
        description = state.change_description or default_description(state)
        try:
            url = pipeline.publisher.open_change_request(state.workspace_ref, branch, description)
        except CollaboratorError as e:
            return {
                "branch_name": branch,
                "last_decision": Decision.error(
                    f"**Publishing Failed**\n\n{e}\n\nThe changes are still in the workspace on branch {branch}."
                ),
            }

        message = f"**Pull Request Created**\n\n{url}\n\nBranch: {branch}"
        logger.info("[%s] published %s", state.conversation_id, url)
        return {
            "branch_name": branch,
            "change_request_url": url,
            "conversation_history": state.with_message("assistant", message),
            "status": PipelineStatus.COMPLETED,
            "last_decision": Decision.end(message),
        }

    return publish
