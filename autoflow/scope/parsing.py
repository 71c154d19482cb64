"""Tagged parse result for the scope-selection generation call."""

from typing import Literal, Union

from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator

from autoflow.collaborators.llm_client import extract_json


class ScopeSelection(BaseModel):
    """Structured output of the scope-selection prompt."""

    files_to_modify: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("files_to_modify", "filesToModify")
    )
    files_to_create: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("files_to_create", "filesToCreate")
    )
    tests_to_update: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("tests_to_update", "testsToUpdate")
    )
    reasoning: str = ""
    estimated_complexity: int = Field(
        default=5, validation_alias=AliasChoices("estimated_complexity", "estimatedComplexity")
    )
    risks: list[str] = Field(default_factory=list)

    @field_validator("files_to_modify", "files_to_create", "tests_to_update", mode="before")
    @classmethod
    def _paths_only(cls, value):
        if not isinstance(value, list):
            return value
        paths = []
        for item in value:
            if isinstance(item, dict):
                item = item.get("path") or item.get("filePath") or item.get("file_path") or ""
            if item:
                paths.append(item)
        return paths


class Parsed(BaseModel):
    """The generation output parsed cleanly."""

    tag: Literal["parsed"] = "parsed"
    selection: ScopeSelection


class Fallback(BaseModel):
    """The generation output was unusable; callers take the degraded path."""

    tag: Literal["fallback"] = "fallback"
    reason: str


ScopeParseResult = Union[Parsed, Fallback]


def parse_scope_response(text: str) -> ScopeParseResult:
    """Parse a scope-selection response without raising."""
    try:
        selection = ScopeSelection.model_validate(extract_json(text))
    except (ValueError, ValidationError) as e:
        return Fallback(reason=(str(e).splitlines() or [type(e).__name__])[0])

    if not (selection.files_to_modify or selection.files_to_create or selection.tests_to_update):
        return Fallback(reason="Response selected no files")
    return Parsed(selection=selection)
