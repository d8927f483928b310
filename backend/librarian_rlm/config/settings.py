"""Configuration settings for the Librarian RLM engine."""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RLMSettings(BaseSettings):
    """RLM engine settings."""

    model_config = SettingsConfigDict(
        env_prefix="RLM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Iteration loop
    max_iterations: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Maximum engine iterations before a fallback answer is synthesized",
    )

    # Metadata bounds
    stdout_preview_length: int = Field(
        default=1000,
        ge=100,
        le=20000,
        description="Characters of stdout (tail) included in iteration metadata",
    )
    buffer_preview_length: int = Field(
        default=200,
        ge=10,
        le=200,
        description="Characters of each buffer value included in iteration metadata",
    )
    summary_buffer_preview_length: int = Field(
        default=500,
        ge=50,
        le=5000,
        description="Characters of each buffer value included in the fallback summary",
    )
    summary_stdout_tail_length: int = Field(
        default=2000,
        ge=100,
        le=20000,
        description="Characters of stdout (tail) included in the fallback summary",
    )

    # LLM settings
    default_model: str = Field(
        default="gpt-4.1",
        description="Default LLM model (supports any LiteLLM-compatible model)",
    )
    default_temperature: float = Field(
        default=0.2,
        ge=0.0,
        le=2.0,
        description="Default temperature for the controlling LLM",
    )
    llm_timeout: int = Field(
        default=60,
        ge=1,
        le=600,
        description="Timeout for LLM API calls",
    )
    sub_llm_max_tokens: int = Field(
        default=1024,
        ge=16,
        le=32768,
        description="Max tokens for a single llm_query() answer",
    )

    # LiteLLM settings
    litellm_provider: str = Field(
        default="openai",
        description="LiteLLM provider (openai, anthropic, gemini, etc.)",
    )
    litellm_api_base: Optional[str] = Field(
        default=None,
        description="Custom API base URL for OpenAI/Anthropic compatible endpoints",
    )
    litellm_retry_count: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Number of attempts for failed LLM calls",
    )

    # Trajectory logging
    log_dir: str = Field(
        default="./logs",
        description="Directory for trajectory logs",
    )
    enable_trajectory_logging: bool = Field(
        default=False,
        description="Write one JSONL trajectory file per research session",
    )

    @field_validator("default_model")
    @classmethod
    def validate_model(cls, v: str) -> str:
        """Validate that the model string is not empty."""
        if not v or not v.strip():
            raise ValueError("Model name cannot be empty")
        return v.strip()


class SandboxSettings(BaseSettings):
    """Sandbox-specific settings."""

    model_config = SettingsConfigDict(
        env_prefix="SANDBOX_",
        env_file=".env",
        extra="ignore",
    )

    script_timeout: float = Field(
        default=30.0,
        gt=0,
        le=600,
        description="Wall-clock ceiling for one script execution in seconds",
    )
    max_script_length: int = Field(
        default=100000,
        ge=1000,
        le=1000000,
        description="Maximum script length in characters",
    )

    # Module namespaces scripts may use (subset of the policy's catalogue)
    allowed_modules: List[str] = Field(
        default=[
            "json",
            "re",
            "math",
            "datetime",
            "collections",
            "itertools",
            "functools",
            "statistics",
            "string",
            "textwrap",
            "decimal",
            "fractions",
            "weakref",
            "base64",
            "urllib_parse",
            "asyncio",
        ],
        description="Curated module namespaces available to scripts",
    )

    # Extra names bound to an inert value on top of the built-in deny-list
    blocked_names: List[str] = Field(
        default_factory=list,
        description="Additional names that are bound to None inside scripts",
    )


class RepoSettings(BaseSettings):
    """Repository access bridge settings."""

    model_config = SettingsConfigDict(
        env_prefix="REPO_",
        env_file=".env",
        extra="ignore",
    )

    max_results: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Default cap for find/grep results",
    )
    max_file_size_bytes: int = Field(
        default=2 * 1024 * 1024,
        ge=1024,
        description="Files larger than this are skipped by grep",
    )
    ignored_directories: List[str] = Field(
        default=[
            ".git",
            "node_modules",
            "__pycache__",
            ".venv",
            "venv",
            ".idea",
            ".vscode",
            ".pytest_cache",
            ".mypy_cache",
            "dist",
            "build",
            "out",
            "target",
            "coverage",
        ],
        description="Directory names never listed or searched",
    )


@lru_cache()
def get_settings() -> RLMSettings:
    """Get cached settings instance.

    Returns:
        RLMSettings instance
    """
    return RLMSettings()


@lru_cache()
def get_sandbox_settings() -> SandboxSettings:
    """Get cached sandbox settings instance.

    Returns:
        SandboxSettings instance
    """
    return SandboxSettings()


@lru_cache()
def get_repo_settings() -> RepoSettings:
    """Get cached repository bridge settings instance.

    Returns:
        RepoSettings instance
    """
    return RepoSettings()
