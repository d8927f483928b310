"""Completion protocol parser.

Recognizes the textual ``FINAL(...)`` and ``FINAL_VAR(name)`` markers a
controlling model may write in plain prose instead of a script.
"""

import re
from typing import Any, List, Mapping, Optional, Tuple

from librarian_rlm.sandbox.utils import stringify_value
from librarian_rlm.types import FinalOutput

FINAL_PATTERN = re.compile(r"(?<![\w])FINAL\(")
FINAL_VAR_PATTERN = re.compile(r"(?<![\w])FINAL_VAR\(\s*[\"']?(\w+)[\"']?\s*\)")

_QUOTES = "\"'`"


def _find_closing_paren(text: str, start: int) -> Optional[int]:
    """Index of the ``)`` balancing the ``(`` just before ``start``.

    Parentheses inside quoted strings are ignored. Returns None when the
    marker is never closed.
    """
    depth = 1
    quote: Optional[str] = None
    i = start
    while i < len(text):
        ch = text[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in _QUOTES:
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return None


def _find_final_spans(text: str) -> Tuple[Optional[str], List[Tuple[int, int]]]:
    answer: Optional[str] = None
    spans: List[Tuple[int, int]] = []
    pos = 0
    while True:
        match = FINAL_PATTERN.search(text, pos)
        if match is None:
            break
        close = _find_closing_paren(text, match.end())
        if close is None:
            break
        if answer is None:
            answer = text[match.end():close].strip()
        spans.append((match.start(), close + 1))
        pos = close + 1
    return answer, spans


def parse_final_output(text: str) -> FinalOutput:
    """Extract completion markers from free text.

    ``FINAL(...)`` captures everything up to its balanced closing parenthesis
    (newlines included, trimmed). ``FINAL_VAR(name)`` captures a bare
    identifier. When both occur ``FINAL`` provides the answer and the
    variable name is still reported.

    Args:
        text: Model reply

    Returns:
        FinalOutput; ``cleaned_text`` has every marker removed and is trimmed,
        or is the unchanged input when no marker was found
    """
    answer, spans = _find_final_spans(text)

    final_var: Optional[str] = None
    var_match = FINAL_VAR_PATTERN.search(text)
    if var_match:
        final_var = var_match.group(1)
    spans.extend(m.span() for m in FINAL_VAR_PATTERN.finditer(text))

    if not spans:
        return FinalOutput(final_answer=None, cleaned_text=text)

    cleaned = []
    pos = 0
    for start, end in sorted(spans):
        if start < pos:
            continue
        cleaned.append(text[pos:start])
        pos = end
    cleaned.append(text[pos:])

    return FinalOutput(
        final_answer=answer,
        cleaned_text="".join(cleaned).strip(),
        final_var=final_var,
    )


def resolve_final_output(text: str, buffers: Mapping[str, Any]) -> FinalOutput:
    """Parse ``text`` and resolve a ``FINAL_VAR`` against ``buffers``.

    A ``FINAL_VAR`` naming a missing buffer leaves ``final_answer`` unset.
    """
    output = parse_final_output(text)
    if output.final_answer is None and output.final_var is not None:
        if output.final_var in buffers:
            output.final_answer = stringify_value(buffers[output.final_var])
    return output
