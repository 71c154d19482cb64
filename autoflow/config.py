"""Configuration management using pydantic-settings."""

import logging
import re
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_MULTI_VALUE_SPLIT = re.compile(r"[|,;]")


class LLMProvider(str, Enum):
    """Supported LLM providers."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # LLM Configuration
    llm_provider: LLMProvider = LLMProvider.ANTHROPIC
    anthropic_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    llm_model: str = "claude-sonnet-4-20250514"
    openai_model: str = "gpt-4o-mini"

    # Embedding Configuration
    embedding_model: str = "all-MiniLM-L6-v2"

    # Workspace indexing
    index_workers: int = 4
    index_test_sources: bool = False

    # Retry / escalation
    max_attempts: int = 3

    # Scope discovery
    max_scope_files: int = 7
    fallback_scope_size: int = 3
    similarity_top_n: int = 20
    max_similarity_chunks: int = 10
    max_similarity_types: int = 3
    significant_gap: float = 0.15
    threshold_floor: float = 0.5
    threshold_ceiling: float = 0.8
    max_prompt_dependencies: int = 5
    snippet_chars: int = 200

    # Confidence floors
    context_confidence_floor: float = 0.9
    requirement_confidence_floor: float = 0.7
    log_confidence_floor: float = 0.7

    # Engine
    recursion_limit: int = 60

    # Workspace / build tooling
    workspace_root: Path = Path("workspaces")
    default_branch: str = "main"
    build_command: str = "mvn -B -q compile"
    test_command: str = "mvn -B test"
    command_timeout_seconds: int = 900

    # Publishing
    github_token: Optional[str] = None
    github_api_url: str = "https://api.github.com"

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    log_level: str = "INFO"

    # Paths
    @property
    def project_root(self) -> Path:
        return Path(__file__).parent.parent

    @property
    def artifacts_dir(self) -> Path:
        return self.project_root / "artifacts"

    @property
    def index_dir(self) -> Path:
        return self.artifacts_dir / "index"

    @property
    def graph_path(self) -> Path:
        return self.artifacts_dir / "graph" / "units.jsonl"

    @property
    def state_dir(self) -> Path:
        return self.artifacts_dir / "state"

    @property
    def prompts_dir(self) -> Path:
        return self.project_root / "prompts"

    def get_llm_api_key(self) -> str:
        """Get the API key for the configured LLM provider."""
        if self.llm_provider == LLMProvider.ANTHROPIC:
            if not self.anthropic_api_key:
                raise ValueError("ANTHROPIC_API_KEY not set")
            return self.anthropic_api_key
        else:
            if not self.openai_api_key:
                raise ValueError("OPENAI_API_KEY not set")
            return self.openai_api_key

    def get_llm_model(self) -> str:
        """Get the model name for the configured LLM provider."""
        if self.llm_provider == LLMProvider.ANTHROPIC:
            return self.llm_model
        return self.openai_model


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Install the process-wide logging format."""
    level_name = (level or get_settings().log_level).upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format=LOG_FORMAT)


def parse_multi_value(value: Optional[str]) -> set[str]:
    """Split a delimiter-joined filter value ("order|payment") into a set.

    Values are lower-cased and stripped; empty parts are dropped.
    """
    if not value:
        return set()
    return {part.strip().lower() for part in _MULTI_VALUE_SPLIT.split(value) if part.strip()}
