"""Scope discovery, scope approval and context assembly stages."""

import logging
from typing import TYPE_CHECKING

from autoflow.pipeline.decision import Decision
from autoflow.pipeline.state import PipelineState
from autoflow.prompts import load_prompt_template
from autoflow.schema import RequirementAnalysis
from autoflow.scope import Fallback
from autoflow.stages.common import CONTEXT_ASSEMBLY, SCOPE_APPROVAL, SCOPE_DISCOVERY, is_affirmative

if TYPE_CHECKING:
    from autoflow.workflow.pipeline import AutoFlowPipeline

logger = logging.getLogger(__name__)

APPROVAL_OPTIONS = ["Approve the scope as proposed", "Describe which files to add or remove", "Abort the task"]


def make_scope_discovery_node(pipeline: "AutoFlowPipeline"):
    """Create the scope discovery stage bound to the pipeline."""
    max_files = pipeline.settings.max_scope_files

    def scope_discovery(state: PipelineState) -> dict:
        analysis = state.requirement_analysis or RequirementAnalysis(summary=state.requirement_text)
        repo = pipeline.repo_scope(state)

        candidates = pipeline.selector.collect(analysis, state.requirement_text, repo)
        if not candidates:
            # Retrying with the same inputs cannot change the outcome
            return {
                "scope_proposal": None,
                "last_decision": Decision.ask_human(
                    "**No Classes Found**\n\n"
                    f"No indexed code in '{repo}' matched domain '{analysis.domain}' "
                    f"or the request:\n> {state.requirement_text}\n\n"
                    "Please check:\n"
                    f"1. The checked-out branch of '{repo}' contains the code for this request\n"
                    "2. The domain or class names in the request match the code\n\n"
                    "Reply with a corrected domain or class name and the request is analyzed again.",
                    questions=["Is this the right repository and branch?", "Which domain or class does this concern?"],
                ),
            }

        feedback = state.last_user_message() if state.paused_stage in (SCOPE_DISCOVERY, SCOPE_APPROVAL) else ""
        proposal, result = pipeline.selector.select(state.requirement_text, analysis, candidates, feedback)
        total = proposal.total_file_count()

        if total > max_files:
            logger.warning("[%s] proposed scope of %d files exceeds %d", state.conversation_id, total, max_files)
            return {
                "scope_proposal": proposal,
                "last_decision": Decision.ask_human(
                    f"**Scope Too Large**\n\nThe change touches {total} files; the limit is {max_files}.\n\n"
                    f"{proposal.format_for_approval()}\n\n"
                    "Please split the task into smaller requests, or tell me which files to prioritize.",
                    questions=["Split the task", "Prioritize files"],
                ),
            }

        message = proposal.format_for_approval()
        if isinstance(result, Fallback):
            message = (
                "Automatic file selection failed, so these are the top-ranked candidates.\n\n" + message
            )
        return {
            "scope_proposal": proposal,
            "last_decision": Decision.ask_human(message, questions=APPROVAL_OPTIONS),
        }

    return scope_discovery


def make_scope_approval_node(pipeline: "AutoFlowPipeline"):
    """Create the scope approval stage bound to the pipeline."""

    def scope_approval(state: PipelineState) -> dict:
        proposal = state.scope_proposal
        if proposal is None:
            return {"last_decision": Decision.proceed("No scope proposal to validate")}

        reply = state.last_user_message().strip()
        if not reply:
            return {"last_decision": Decision.ask_human("Please respond to approve or modify the scope.")}

        if is_affirmative(reply):
            return {"last_decision": Decision.proceed("Scope approved")}

        prompt = load_prompt_template("scope_approval").format(
            proposal=proposal.format_for_approval(),
            reply=reply,
        )
        try:
            data = pipeline.generate_json(prompt)
        except Exception as e:
            logger.warning("[%s] could not interpret approval reply: %s", state.conversation_id, e)
            return {
                "last_decision": Decision.ask_human(
                    "**Response Unclear**\n\n"
                    f'I had trouble understanding your response: "{reply}"\n\n'
                    "Please respond clearly:\n"
                    "- Say **'yes'** or **'approved'** to proceed\n"
                    "- Say **'abort'** to cancel\n"
                    "- Describe specific changes if you want modifications",
                    questions=APPROVAL_OPTIONS,
                )
            }

        approved = bool(data.get("approved", False))
        approval_type = str(data.get("approval_type") or data.get("approvalType") or "rejected").lower()
        logger.info("[%s] approval reply read as approved=%s type=%s", state.conversation_id, approved, approval_type)

        if approved and approval_type == "full":
            return {"last_decision": Decision.proceed("Scope approved")}

        if state.paused_stage == SCOPE_APPROVAL:
            # Second round: the reply describes the change, so discovery reruns with it as feedback
            return {"last_decision": Decision.retry(f"Revising scope: {reply}")}

        if approved and approval_type == "partial":
            return {
                "last_decision": Decision.ask_human(
                    "**Modifications Requested**\n\n"
                    "Please specify exactly what should be modified:\n"
                    "- Which files to add or remove?\n"
                    "- What specific changes are needed?\n\n"
                    "Or say 'yes' to continue with the current scope.",
                    questions=APPROVAL_OPTIONS,
                )
            }

        return {
            "last_decision": Decision.ask_human(
                "**Scope Needs Changes**\n\n"
                "Please clarify:\n"
                "- What should be changed?\n"
                "- Which files or components are incorrect?\n\n"
                "Or reply 'abort' to stop this task.",
                questions=APPROVAL_OPTIONS,
            )
        }

    return scope_approval


def make_context_assembly_node(pipeline: "AutoFlowPipeline"):
    """Create the context assembly stage bound to the pipeline."""

    def context_assembly(state: PipelineState) -> dict:
        proposal = state.scope_proposal
        if proposal is None or not state.workspace_ref:
            return {"last_decision": Decision.error("Context assembly needs an approved scope and a workspace")}

        domain = state.requirement_analysis.domain if state.requirement_analysis else "general"
        context = pipeline.assembler.assemble(
            proposal, state.workspace_ref, pipeline.repo_scope(state), domain
        )
        updates = {"structured_context": context}

        if pipeline.assembler.is_confident(context):
            updates["last_decision"] = Decision.proceed(
                f"Context ready for {len(context.file_contexts)} files"
            )
            return updates

        if state.paused_stage == CONTEXT_ASSEMBLY and state.user_just_responded():
            updates["last_decision"] = Decision.proceed(
                f"Continuing with partial context ({context.confidence:.0%}) as requested"
            )
            return updates

        unresolved = "\n".join(f"- {path}" for path in context.unresolved) or "- (none)"
        updates["last_decision"] = Decision.ask_human(
            "**Uncertain Context**\n\n"
            f"Resolved {len(context.file_contexts)} of {len(context.file_contexts) + len(context.unresolved)} files "
            f"(confidence {context.confidence:.0%}).\n\n"
            f"**Could not read:**\n{unresolved}\n\n"
            "Proceed anyway? Reply 'yes' to continue with partial context.",
            questions=["Proceed with partial context", "Abort the task"],
        )
        return updates

    return context_assembly
