"""Code generation, build validation and test execution stages."""

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, NamedTuple

from pydantic import ValidationError

from autoflow.collaborators import CollaboratorError
from autoflow.pipeline.decision import Decision
from autoflow.pipeline.retry import RESUME_OPTIONS
from autoflow.pipeline.state import PipelineState
from autoflow.prompts import load_prompt_template
from autoflow.schema import FileEdit, GeneratedEdits, StructuredContext
from autoflow.stages.common import BUILD_VALIDATION, REVIEW, TEST_EXECUTION

if TYPE_CHECKING:
    from autoflow.workflow.pipeline import AutoFlowPipeline

logger = logging.getLogger(__name__)

MAX_ERROR_LOG_CHARS = 4000


def format_file_contexts(context: StructuredContext) -> str:
    """Render resolved files for the generation prompt."""
    if not context.file_contexts:
        return "(no files resolved)"

    parts = []
    for path, file_context in context.file_contexts.items():
        lines = [f"### {path} ({'existing' if file_context.exists else 'new file'})"]
        if file_context.purpose:
            lines.append(f"Purpose: {file_context.purpose}")
        if file_context.target_methods:
            lines.append(f"Focus on: {', '.join(file_context.target_methods)}")
        if file_context.dependencies:
            lines.append(f"Depends on: {', '.join(file_context.dependencies)}")
        if file_context.dependents:
            lines.append(f"Used by: {', '.join(file_context.dependents)}")
        if file_context.exists:
            lines.append(f"```\n{file_context.current_code}\n```")
        parts.append("\n".join(lines))
    return "\n\n".join(parts)


def _review_feedback(state: PipelineState) -> str:
    parts = []
    if state.review and not state.review.approved:
        parts.append(state.review.format_issues())
    if state.paused_stage in (BUILD_VALIDATION, TEST_EXECUTION, REVIEW) and state.user_just_responded():
        parts.append(f"Developer guidance: {state.last_user_message()}")
    if state.test_result and not state.test_result.all_passed:
        parts.append(f"Failing tests:\n{state.test_result.failures_summary()}")
    return "\n\n".join(parts) or "(none)"


def make_code_generation_node(pipeline: "AutoFlowPipeline"):
    """Create the code generation stage bound to the pipeline."""

    def code_generation(state: PipelineState) -> dict:
        context = state.structured_context
        if context is None:
            return {"last_decision": Decision.error("Code generation needs assembled context")}

        build_errors = "(none)"
        if state.build_result and not state.build_result.success:
            build_errors = state.build_result.error_log[-MAX_ERROR_LOG_CHARS:]

        log_analysis = "(none)"
        if state.log_analysis:
            log_analysis = (
                f"{state.log_analysis.error_type} at {state.log_analysis.location}: "
                f"{state.log_analysis.root_cause_hypothesis}"
            )

        prompt = load_prompt_template("code_generation").format(
            requirement=state.requirement_text,
            domain=context.domain_context.domain,
            files=format_file_contexts(context),
            log_analysis=log_analysis,
            review_feedback=_review_feedback(state),
            build_errors=build_errors,
        )
        try:
            edits = GeneratedEdits.model_validate(pipeline.generate_json(prompt))
        except (ValueError, ValidationError) as e:
            return {"last_decision": Decision.error(f"Could not parse generated code: {e}")}

        if not edits.all_edits():
            return {
                "generated_edits": edits,
                "last_decision": Decision.ask_human(
                    "**No Changes Generated**\n\n"
                    f"{edits.explanation or 'The generator returned no edits.'}\n\n"
                    "Reply with more detail about the expected change.",
                ),
            }

        logger.info(
            "[%s] generated %d edits (%d tests)",
            state.conversation_id,
            len(edits.edits),
            len(edits.tests_added),
        )
        return {
            "generated_edits": edits,
            "last_decision": Decision.proceed(f"Generated {len(edits.all_edits())} file edits"),
        }

    return code_generation


class AppliedEdits(NamedTuple):
    touched: list[str]
    created: list[str]
    removed: list[str]


def apply_edits(workspace: str, edits: list[FileEdit], stale_files: Iterable[str] = ()) -> AppliedEdits:
    """Write or delete files in the workspace.

    Every edit is checked before anything is written, so an invalid edit
    leaves the workspace untouched. Files created by an earlier attempt
    (``stale_files``) that these edits do not write again are removed.

    Returns:
        Touched paths, generated files now in the workspace, and removed stale files

    Raises:
        ValueError: If an edit points outside the workspace or names an unknown op.
    """
    root = Path(workspace).resolve()
    planned = []
    for edit in edits:
        target = (root / edit.path).resolve()
        if not target.is_relative_to(root):
            raise ValueError(f"Edit path is outside the workspace: {edit.path}")
        op = edit.op.lower()
        if op not in ("create", "modify", "delete"):
            raise ValueError(f"Unknown edit op '{edit.op}' for {edit.path}")
        planned.append((edit, op, target))

    stale_files = list(stale_files)
    written = {edit.path for edit, op, _ in planned if op != "delete"}
    removed = []
    for path in stale_files:
        stale = (root / path).resolve()
        if path in written or not stale.is_relative_to(root):
            continue
        stale.unlink(missing_ok=True)
        removed.append(path)

    touched = []
    created = [path for path in stale_files if path in written]
    for edit, op, target in planned:
        if op == "delete":
            target.unlink(missing_ok=True)
        else:
            if not target.exists() and edit.path not in created:
                created.append(edit.path)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(edit.content)
        touched.append(edit.path)
    if removed:
        logger.info("Removed %d files left by an earlier attempt", len(removed))
    return AppliedEdits(touched, created, removed)


def make_build_validation_node(pipeline: "AutoFlowPipeline"):
    """Create the build validation stage bound to the pipeline."""

    def build_validation(state: PipelineState) -> dict:
        if state.generated_edits is None or not state.workspace_ref:
            return {"last_decision": Decision.error("Nothing to build: no generated edits or workspace")}

        try:
            applied = apply_edits(state.workspace_ref, state.generated_edits.all_edits(), state.created_files)
        except (ValueError, OSError) as e:
            return {"last_decision": Decision.error(f"Could not apply generated edits: {e}")}
        updates = {"created_files": applied.created}

        try:
            result = pipeline.builder.build_and_verify(state.workspace_ref)
        except CollaboratorError as e:
            return {**updates, "last_decision": Decision.error(f"**Build Tooling Failed**\n\n{e}")}

        logger.info(
            "[%s] build after %d edits: %s (%d ms)",
            state.conversation_id,
            len(applied.touched),
            "passed" if result.success else "failed",
            result.duration_ms,
        )
        updates["build_result"] = result
        if result.success:
            return {**updates, "last_decision": Decision.proceed("Build passed")}

        return {
            **updates,
            "last_decision": Decision.retry(f"Build failed:\n{result.error_log[-MAX_ERROR_LOG_CHARS:]}"),
        }

    return build_validation


def make_test_execution_node(pipeline: "AutoFlowPipeline"):
    """Create the test execution stage bound to the pipeline."""

    def test_execution(state: PipelineState) -> dict:
        if not state.workspace_ref:
            return {"last_decision": Decision.error("Cannot run tests without a workspace")}

        try:
            result = pipeline.tester.run_tests(state.workspace_ref)
        except CollaboratorError as e:
            return {"last_decision": Decision.error(f"**Test Tooling Failed**\n\n{e}")}

        if result.all_passed:
            return {
                "test_result": result,
                "last_decision": Decision.proceed(f"{result.passed} tests passed"),
            }

        options = "\n".join(f"{i}. {option}" for i, option in enumerate(RESUME_OPTIONS, 1))
        return {
            "test_result": result,
            "last_decision": Decision.ask_human(
                f"**Tests Failing**\n\n{result.failures_summary()}\n\nOptions:\n{options}",
                questions=list(RESUME_OPTIONS),
            ),
        }

    return test_execution
