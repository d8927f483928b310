"""Bridges between scripts and the outside world."""

from librarian_rlm.bridges.llm_query import create_llm_query, wrap_query_output
from librarian_rlm.bridges.repo import LocalRepoBridge, RepoBridge

__all__ = [
    "RepoBridge",
    "LocalRepoBridge",
    "create_llm_query",
    "wrap_query_output",
]
