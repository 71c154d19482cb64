"""Scope discovery: candidate collection, adaptive filtering, selection and context assembly."""

from autoflow.scope.context import ContextAssembler
from autoflow.scope.parsing import Fallback, Parsed, ScopeParseResult, ScopeSelection, parse_scope_response
from autoflow.scope.selector import CandidateSelector
from autoflow.scope.threshold import adaptive_threshold

__all__ = [
    "CandidateSelector",
    "ContextAssembler",
    "adaptive_threshold",
    "Parsed",
    "Fallback",
    "ScopeParseResult",
    "ScopeSelection",
    "parse_scope_response",
]
