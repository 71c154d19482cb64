"""Pydantic models for requirements, code units, scope and stage results."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class TaskType(str, Enum):
    """Kinds of requests the requirement analyzer recognizes."""

    BUG_FIX = "bug_fix"
    FEATURE = "feature"
    REFACTOR = "refactor"
    TEST = "test"
    EXPLANATION = "explanation"
    DOCUMENTATION = "documentation"
    CHAT = "chat"
    UNKNOWN = "unknown"


class ChatMessage(BaseModel):
    """Single message in a conversation."""

    role: str = Field(..., description="user, assistant or system")
    content: str
    timestamp: datetime = Field(default_factory=datetime.now)


class RequirementAnalysis(BaseModel):
    """Structured reading of the user's request."""

    task_type: TaskType = TaskType.UNKNOWN
    domain: str = Field(default="general", description="Business domain, e.g. 'order'")
    summary: str = ""
    detailed_description: str = ""
    key_verbs: list[str] = Field(default_factory=list)
    questions: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    data_sources: list[str] = Field(default_factory=list, description="e.g. ['code']")
    modifies_code: bool = False
    needs_approval: bool = False

    def is_read_only(self) -> bool:
        return not self.modifies_code

    def needs_code_context(self) -> bool:
        return "code" in self.data_sources

    def is_casual_chat(self) -> bool:
        """Chat task, or nothing to look at."""
        return self.task_type == TaskType.CHAT or not self.data_sources


class LogAnalysis(BaseModel):
    """Result of analyzing logs pasted with a bug report."""

    error_type: str = ""
    location: str = Field(default="", description="File:line of the failure")
    root_cause_hypothesis: str = ""
    affected_methods: list[str] = Field(default_factory=list)
    questions: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class IndexingResult(BaseModel):
    """Outcome of materializing and indexing the repository."""

    success: bool
    files_processed: int = 0
    units_indexed: int = 0
    edges_indexed: int = 0
    errors: list[str] = Field(default_factory=list)


class CandidateKind(str, Enum):
    """Kind of indexed code unit."""

    TYPE = "type"
    METHOD = "method"
    FIELD = "field"


class CodeUnit(BaseModel):
    """A node of the code knowledge graph."""

    id: str = Field(..., description="Unique unit identifier")
    repo: str = Field(..., description="Repository the unit belongs to")
    qualified_name: str
    kind: CandidateKind = CandidateKind.TYPE
    file_path: str = ""
    domain: Optional[str] = None
    summary: str = ""
    parent_id: Optional[str] = Field(None, description="Owning type for methods and fields")
    dependencies: list[str] = Field(default_factory=list, description="Ids this unit depends on")

    @property
    def simple_name(self) -> str:
        return self.qualified_name.rsplit(".", 1)[-1]

    def to_embedding_text(self) -> str:
        """Generate text for embedding."""
        parts = [self.qualified_name, self.kind.value]
        if self.summary:
            parts.append(self.summary)
        return " ".join(parts)


class SearchMatch(BaseModel):
    """A hit returned by the vector/text search collaborator."""

    id: str
    score: float
    snippet: str = ""
    symbol_name: str = Field("", description="Qualified name of the matched unit")
    kind: Optional[CandidateKind] = None
    file_path: str = ""


class TargetMethod(BaseModel):
    """A sub-unit of a type singled out by similarity search."""

    name: str
    score: float
    kind: CandidateKind = CandidateKind.METHOD
    snippet: str = ""


class Candidate(BaseModel):
    """An indexed code unit considered for inclusion in scope."""

    id: str
    qualified_name: str
    kind: CandidateKind = CandidateKind.TYPE
    file_path: str = ""
    domain_tag: Optional[str] = None
    relevance_score: float = 0.0
    dependency_edges: list[str] = Field(default_factory=list)
    summary: str = ""
    target_methods: list[TargetMethod] = Field(default_factory=list)

    @property
    def simple_name(self) -> str:
        return self.qualified_name.rsplit(".", 1)[-1]

    @classmethod
    def from_unit(cls, unit: CodeUnit, relevance_score: float = 0.0) -> "Candidate":
        return cls(
            id=unit.id,
            qualified_name=unit.qualified_name,
            kind=unit.kind,
            file_path=unit.file_path,
            domain_tag=unit.domain,
            relevance_score=relevance_score,
            dependency_edges=list(unit.dependencies),
            summary=unit.summary,
        )


class FileActionKind(str, Enum):
    """What to do with a file."""

    MODIFY = "modify"
    CREATE = "create"


class FileAction(BaseModel):
    """Describes an action to take on a file."""

    path: str = Field(..., description="File path relative to the repository root")
    kind: FileActionKind
    target_symbol: Optional[str] = None
    target_methods: list[TargetMethod] = Field(default_factory=list)
    reason: str = ""


class ScopeProposal(BaseModel):
    """Proposed set of files for a change, shown to the developer for approval."""

    files_to_modify: list[FileAction] = Field(default_factory=list)
    files_to_create: list[FileAction] = Field(default_factory=list)
    tests_to_update: list[FileAction] = Field(default_factory=list)
    reasoning: str = ""
    estimated_complexity: int = Field(default=5, ge=1, le=10)
    risks: list[str] = Field(default_factory=list)

    def total_file_count(self) -> int:
        return len(self.files_to_modify) + len(self.files_to_create) + len(self.tests_to_update)

    def all_actions(self) -> list[FileAction]:
        return [*self.files_to_modify, *self.files_to_create, *self.tests_to_update]

    def format_for_approval(self) -> str:
        """Render the proposal as a markdown message for the developer."""
        risks = "\n".join(f"- {risk}" for risk in self.risks) if self.risks else "None identified"
        return (
            "**Scope Proposal**\n\n"
            f"**Modify ({len(self.files_to_modify)} files):**\n"
            f"{_format_actions(self.files_to_modify)}\n\n"
            f"**Create ({len(self.files_to_create)} files):**\n"
            f"{_format_actions(self.files_to_create)}\n\n"
            f"**Update Tests ({len(self.tests_to_update)} files):**\n"
            f"{_format_actions(self.tests_to_update)}\n\n"
            f"**Reasoning:**\n{self.reasoning}\n\n"
            f"**Estimated Complexity:** {self.estimated_complexity}/10\n\n"
            f"**Risks:**\n{risks}\n\n"
            "**Approve?** (yes/no/modify)"
        )


def _format_actions(actions: list[FileAction]) -> str:
    if not actions:
        return "  (none)"
    lines = []
    for action in actions:
        line = f"  - {action.path} ({action.reason})"
        if action.target_methods:
            line += " -> " + ", ".join(m.name for m in action.target_methods)
        lines.append(line)
    return "\n".join(lines)


class FileContext(BaseModel):
    """Resolved context for one file in scope."""

    path: str
    current_code: str = ""
    exists: bool = True
    purpose: str = ""
    dependencies: list[str] = Field(default_factory=list)
    dependents: list[str] = Field(default_factory=list)
    target_methods: list[str] = Field(default_factory=list)


class DomainContext(BaseModel):
    """Domain-level business context."""

    domain: str = "unknown"
    business_rules: list[str] = Field(default_factory=list)
    concepts: list[str] = Field(default_factory=list)


class StructuredContext(BaseModel):
    """Complete context for code generation."""

    file_contexts: dict[str, FileContext] = Field(default_factory=dict)
    domain_context: DomainContext = Field(default_factory=DomainContext)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    unresolved: list[str] = Field(default_factory=list)


class FileEdit(BaseModel):
    """A single file edit produced by code generation."""

    path: str
    op: str = Field(default="modify", description="create, modify or delete")
    content: str = ""


class GeneratedEdits(BaseModel):
    """Code generation output."""

    edits: list[FileEdit] = Field(default_factory=list)
    tests_added: list[FileEdit] = Field(default_factory=list)
    explanation: str = ""

    def all_edits(self) -> list[FileEdit]:
        return [*self.edits, *self.tests_added]


class BuildResult(BaseModel):
    """Result of compiling the workspace."""

    success: bool
    error_log: str = ""
    duration_ms: int = 0


class TestResult(BaseModel):
    """Result of running the test suite."""

    __test__ = False

    passed: int = 0
    failed: int = 0
    skipped: int = 0
    failed_names: list[str] = Field(default_factory=list)
    log: str = ""
    success: bool = True

    @property
    def all_passed(self) -> bool:
        return self.success and self.failed == 0

    def failures_summary(self) -> str:
        if not self.failed_names:
            return f"{self.failed} tests failed."
        return f"{len(self.failed_names)} tests failed:\n" + "\n".join(self.failed_names)


class IssueSeverity(str, Enum):
    """Review issue severity."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ReviewIssue(BaseModel):
    """Single review finding."""

    severity: IssueSeverity = IssueSeverity.MEDIUM
    category: str = Field(default="quality", description="security, quality, test or architecture")
    file: str = ""
    line: Optional[int] = None
    description: str = ""
    suggestion: Optional[str] = None


class CodeReview(BaseModel):
    """Automated review of the generated change."""

    approved: bool
    issues: list[ReviewIssue] = Field(default_factory=list)
    quality_score: float = Field(default=0.0, ge=0.0, le=1.0)
    summary: str = ""

    def critical_issue_count(self) -> int:
        return sum(1 for issue in self.issues if issue.severity == IssueSeverity.CRITICAL)

    def format_issues(self) -> str:
        if not self.issues:
            return "No specific issues identified."
        lines = ["**Issues Found:**"]
        for issue in self.issues:
            location = issue.file + (f" (line {issue.line})" if issue.line is not None else "")
            lines.append(f"[{issue.severity.value.upper()}] {issue.description}")
            lines.append(f"  File: {location}")
            if issue.suggestion:
                lines.append(f"  Suggestion: {issue.suggestion}")
        return "\n".join(lines)


class ProgressEvent(BaseModel):
    """Notification emitted once per stage transition."""

    conversation_id: str
    stage_name: str
    percent_complete: int = Field(..., ge=0, le=100)
    message: str
