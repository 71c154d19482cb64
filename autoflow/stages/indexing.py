"""Workspace preparation and the read-only documentation branch."""

import logging
from typing import TYPE_CHECKING

from autoflow.collaborators import CollaboratorError
from autoflow.pipeline.decision import Decision
from autoflow.pipeline.state import PipelineState, PipelineStatus
from autoflow.prompts import load_prompt_template
from autoflow.schema import BuildResult, SearchMatch, TaskType
from autoflow.stages.common import CODE_INDEXING, wants_skip

if TYPE_CHECKING:
    from autoflow.workflow.pipeline import AutoFlowPipeline

logger = logging.getLogger(__name__)


def make_code_indexing_node(pipeline: "AutoFlowPipeline"):
    """Create the workspace/baseline stage bound to the pipeline."""

    def code_indexing(state: PipelineState) -> dict:
        repo = pipeline.repo_scope(state)
        analysis = state.requirement_analysis

        try:
            workspace = pipeline.workspaces.materialize_workspace(state.repo_ref, state.base_branch)
        except CollaboratorError as e:
            return {
                "last_decision": Decision.error(
                    f"**Workspace Unavailable**\n\nCould not check out {state.repo_ref} "
                    f"({state.base_branch}): {e}\n\nCheck the repository URL, branch and credentials."
                )
            }

        try:
            indexing_result = pipeline.indexer.index_workspace(workspace, repo)
        except CollaboratorError as e:
            return {
                "workspace_ref": workspace,
                "last_decision": Decision.error(f"**Indexing Failed**\n\nCould not index {workspace}: {e}"),
            }
        logger.info(
            "[%s] workspace %s: %d files, %d units, %d edges",
            state.conversation_id,
            workspace,
            indexing_result.files_processed,
            indexing_result.units_indexed,
            indexing_result.edges_indexed,
        )
        updates = {"workspace_ref": workspace, "indexing_result": indexing_result}

        forced = state.paused_stage == CODE_INDEXING and wants_skip(state.last_user_message())
        if analysis is not None and (analysis.task_type == TaskType.DOCUMENTATION or analysis.is_read_only()):
            baseline = BuildResult(success=True, error_log="Build skipped for read-only request")
        elif forced:
            baseline = BuildResult(success=True, error_log="Baseline build failure accepted by developer")
        else:
            try:
                baseline = pipeline.builder.build_and_verify(workspace)
            except CollaboratorError as e:
                return {
                    **updates,
                    "last_decision": Decision.error(f"**Build Tooling Failed**\n\n{e}"),
                }
        updates["baseline_build"] = baseline

        if not baseline.success:
            updates["last_decision"] = Decision.ask_human(
                "**Repository Has Compilation Errors**\n\n"
                "Cannot work on a codebase that does not build.\n\n"
                f"**Errors:**\n```\n{baseline.error_log.strip()}\n```\n\n"
                "Options:\n1. Fix the errors on the branch and reply with anything to retry\n"
                "2. Reply 'continue' to work on it anyway (risky)",
                questions=["Fix the errors first", "Continue anyway"],
            )
            return updates

        updates["last_decision"] = Decision.proceed(f"Workspace ready: {workspace}")
        return updates

    return code_indexing


def format_matches(matches: list[SearchMatch]) -> str:
    if not matches:
        return "(no indexed code matched the question)"
    parts = []
    for match in matches:
        header = f"### {match.symbol_name or match.id} ({match.file_path or 'unknown file'}, score {match.score:.2f})"
        parts.append(f"{header}\n{match.snippet}")
    return "\n\n".join(parts)


def make_documentation_node(pipeline: "AutoFlowPipeline"):
    """Create the code explanation stage bound to the pipeline."""
    settings = pipeline.settings

    def documentation(state: PipelineState) -> dict:
        analysis = state.requirement_analysis
        query = analysis.summary if analysis and analysis.summary else state.requirement_text

        vector = pipeline.embedder.embed(query)
        matches = pipeline.search.search(vector, pipeline.repo_scope(state), settings.similarity_top_n)
        matches = sorted(matches, key=lambda m: -m.score)[: settings.max_similarity_chunks]

        prompt = load_prompt_template("documentation").format(
            requirement=state.requirement_text,
            domain=analysis.domain if analysis else "general",
            code=format_matches(matches),
        )
        answer = pipeline.llm.generate(prompt).strip()
        logger.info("[%s] explained using %d code matches", state.conversation_id, len(matches))

        return {
            "documentation": answer,
            "conversation_history": state.with_message("assistant", answer),
            "status": PipelineStatus.COMPLETED,
            "last_decision": Decision.end(answer),
        }

    return documentation
