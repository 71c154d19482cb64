"""Prompt templates, overridable by files in the prompts directory."""

from autoflow.config import get_settings

DEFAULT_TEMPLATES = {
    "requirement_analysis": """You are a senior engineer triaging a request against a code repository.

## Request
{requirement}

## Target symbol (optional)
{target_symbol}

## Logs attached
{has_logs}

## Conversation so far
{conversation}

Classify the request and respond in the following JSON format:
{{
    "task_type": "bug_fix | feature | refactor | test | explanation | documentation | chat",
    "domain": "single business domain word, e.g. order, payment, user",
    "summary": "one-sentence summary used for code search",
    "detailed_description": "what needs to be done",
    "key_verbs": ["add", "retry"],
    "questions": ["only questions that block the work"],
    "confidence": 0.0,
    "data_sources": ["code"],
    "modifies_code": true,
    "needs_approval": false
}}

Use an empty "data_sources" list and task_type "chat" for greetings and small talk.
Do not repeat questions the conversation already answers.""",
    "log_analysis": """Analyze the following application logs attached to a bug report.

## Request
{requirement}

## Logs
{logs}

Respond in the following JSON format:
{{
    "error_type": "e.g. NullPointerException",
    "location": "File:line",
    "root_cause_hypothesis": "most likely cause",
    "affected_methods": ["Class.method"],
    "questions": [],
    "confidence": 0.0
}}""",
    "scope_selection": """You are deciding the minimal set of files to change for a request.

## Request
{requirement}

## Summary
{summary}

## Candidate code units (ranked)
{candidates}

## Developer feedback on earlier proposals
{feedback}

Pick only files that must change. Prefer narrowing edits to the listed target methods.
Respond in the following JSON format:
{{
    "files_to_modify": ["path/of/existing/File.java"],
    "files_to_create": ["path/of/new/File.java"],
    "tests_to_update": ["path/of/Test.java"],
    "reasoning": "why these files",
    "estimated_complexity": 5,
    "risks": ["risk"]
}}""",
    "scope_approval": """A developer was shown this proposed change scope:

{proposal}

Their reply was:
"{reply}"

Interpret the reply and respond in the following JSON format:
{{
    "approved": true,
    "approval_type": "full | partial | rejected",
    "confidence": 0.0
}}""",
    "code_generation": """Implement the following request.

## Request
{requirement}

## Domain
{domain}

## Files in scope
{files}

## Log analysis
{log_analysis}

## Review feedback from the previous attempt
{review_feedback}

## Build errors from the previous attempt
{build_errors}

Return complete file contents. Respond in the following JSON format:
{{
    "edits": [{{"path": "relative/path", "op": "create | modify | delete", "content": "full file"}}],
    "tests_added": [{{"path": "relative/path", "op": "create", "content": "full file"}}],
    "explanation": "what changed"
}}""",
    "review": """Review this generated change.

## Request
{requirement}

## Edits
{edits}

## Build passed: {build_passed}
## Tests: {tests_passed} passed, {tests_failed} failed

Respond in the following JSON format:
{{
    "approved": true,
    "issues": [{{"severity": "critical | high | medium | low", "category": "security | quality | test | architecture",
                "file": "path", "line": null, "description": "", "suggestion": ""}}],
    "quality_score": 0.0,
    "summary": "one paragraph for the developer"
}}""",
    "change_description": """Write a pull request description in markdown for this change.
The first line is the title.

## Request
{requirement}

## Task type
{task_type}

## Files changed
{files_changed}

## Build passed: {build_passed}
## Tests passed: {tests_passed}
## Review quality score: {quality_score}""",
    "documentation": """Answer the question using only the code below. Name the classes and methods you rely on.
If no code is listed, say that the repository is not yet indexed.

## Question
{requirement}

## Domain
{domain}

## Relevant code
{code}""",
    "chat_response": """Reply briefly and warmly to this message, and mention that you can explain
a codebase or turn a change request into a pull request.

Message: {requirement}""",
}


def load_prompt_template(name: str) -> str:
    """Load a prompt template from the prompts directory, or the built-in default."""
    prompt_path = get_settings().prompts_dir / f"{name}.txt"
    if prompt_path.exists():
        return prompt_path.read_text()
    return DEFAULT_TEMPLATES[name]
