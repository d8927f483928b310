"""Configuration module for the Librarian RLM engine."""

from librarian_rlm.config.settings import (
    RepoSettings,
    RLMSettings,
    SandboxSettings,
    get_repo_settings,
    get_sandbox_settings,
    get_settings,
)

__all__ = [
    "RLMSettings",
    "SandboxSettings",
    "RepoSettings",
    "get_settings",
    "get_sandbox_settings",
    "get_repo_settings",
]
