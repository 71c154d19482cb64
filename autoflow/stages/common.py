"""Helpers shared by the workflow stages."""

import re

from autoflow.schema import ChatMessage

# Stage names. They must not clash with PipelineState field names.
INTAKE = "intake"
REQUIREMENT_ANALYSIS = "requirement_analyzer"
LOG_ANALYSIS = "log_analyzer"
CODE_INDEXING = "code_indexer"
SCOPE_DISCOVERY = "scope_discovery"
SCOPE_APPROVAL = "scope_approval"
CONTEXT_ASSEMBLY = "context_assembler"
CODE_GENERATION = "code_generator"
BUILD_VALIDATION = "build_validator"
TEST_EXECUTION = "test_runner"
REVIEW = "change_reviewer"
CHANGE_DESCRIPTION = "description_writer"
PUBLISH = "publisher"
DOCUMENTATION = "code_explainer"
CHAT_RESPONSE = "chat_responder"

CANONICAL_ORDER = [
    REQUIREMENT_ANALYSIS,
    LOG_ANALYSIS,
    CODE_INDEXING,
    SCOPE_DISCOVERY,
    SCOPE_APPROVAL,
    CONTEXT_ASSEMBLY,
    CODE_GENERATION,
    BUILD_VALIDATION,
    TEST_EXECUTION,
    REVIEW,
    CHANGE_DESCRIPTION,
    PUBLISH,
]

_AFFIRMATIVE = {"yes", "y", "ok", "okay", "approve", "approved", "continue", "proceed", "go ahead", "lgtm"}
_SKIP = {"skip", "continue", "accept", "keep", "proceed"}
_ABORT = {"abort", "cancel", "stop"}


def normalize_reply(text: str) -> str:
    return re.sub(r"[\s.!]+$", "", text.strip().lower())


def is_affirmative(text: str) -> bool:
    return normalize_reply(text) in _AFFIRMATIVE


def wants_skip(text: str) -> bool:
    return normalize_reply(text) in _SKIP


def wants_abort(text: str) -> bool:
    return normalize_reply(text) in _ABORT


def numbered(items: list[str]) -> str:
    return "\n".join(f"{i}. {item}" for i, item in enumerate(items, 1))


def format_conversation(history: list[ChatMessage]) -> str:
    if not history:
        return "(no previous messages)"
    return "\n".join(f"{message.role.upper()}: {message.content}" for message in history)
