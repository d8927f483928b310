"""Metadata compression: bounded views of engine state."""

from typing import Optional

from librarian_rlm.config import get_settings
from librarian_rlm.sandbox.utils import stringify_value
from librarian_rlm.types import BufferSummary, EngineState, RLMMetadata

TRUNCATION_MARKER = "... (truncated)"


def build_metadata(
    state: EngineState,
    preview_length: Optional[int] = None,
    error_feedback: Optional[str] = None,
    buffer_preview_length: Optional[int] = None,
) -> RLMMetadata:
    """Project engine state into constant-size metadata.

    Only the tail of stdout and the first characters of each buffer value
    are included. The context itself is reduced to a flag.

    Args:
        state: Current engine state
        preview_length: Max characters of stdout (tail) to include
        error_feedback: One-shot error message for the next prompt
        buffer_preview_length: Max characters per buffer preview

    Returns:
        RLMMetadata
    """
    settings = get_settings()
    if preview_length is None:
        preview_length = settings.stdout_preview_length
    if buffer_preview_length is None:
        buffer_preview_length = settings.buffer_preview_length

    summaries = []
    for key, value in state.buffers.items():
        text = stringify_value(value)
        summaries.append(BufferSummary(key=key, preview=text[:buffer_preview_length], size=len(text)))

    stdout = state.stdout
    return RLMMetadata(
        iteration=state.iteration,
        stdout_preview=stdout[len(stdout) - preview_length:] if len(stdout) > preview_length else stdout,
        stdout_length=len(stdout),
        buffer_keys=list(state.buffers.keys()),
        buffer_summary=summaries,
        has_context=bool(state.context),
        error_feedback=error_feedback,
    )


def summarize_iterations(
    state: EngineState,
    max_iterations: int,
    buffer_preview_length: Optional[int] = None,
    stdout_tail_length: Optional[int] = None,
) -> str:
    """Synthesize the fallback answer used when the iteration cap is hit."""
    settings = get_settings()
    buffer_preview_length = buffer_preview_length or settings.summary_buffer_preview_length
    stdout_tail_length = stdout_tail_length or settings.summary_stdout_tail_length

    parts = [
        f"Max iterations ({max_iterations}) reached.",
        "",
        "=== Iteration Summary ===",
        f"Total iterations: {state.iteration}",
    ]

    parts.extend(["", f"=== Buffers ({len(state.buffers)}) ==="])
    for key, value in state.buffers.items():
        text = stringify_value(value)
        preview = text[:buffer_preview_length]
        if len(text) > buffer_preview_length:
            preview += f"\n{TRUNCATION_MARKER}"
        parts.extend(["", f"{key} ({len(text)} chars):", preview])

    if state.stdout:
        parts.extend(["", "=== Last Output ===", state.stdout[-stdout_tail_length:]])

    return "\n".join(parts)
