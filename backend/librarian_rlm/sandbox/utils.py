"""Helpers exposed to scripts and shared by the sandbox and the engine."""

import json
from typing import Any, List, Optional, Sequence


def stringify_value(value: Any) -> str:
    """Render a value the way completion answers and previews show it.

    Strings pass through unchanged; everything else becomes compact JSON,
    falling back to ``str()`` for objects JSON cannot encode.
    """
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(value)


def chunk(data: Any, size: int) -> List[str]:
    """Split ``str(data)`` into ordered, non-overlapping pieces of ``size`` characters.

    The last piece may be shorter.
    """
    if size < 1:
        raise ValueError(f"chunk size must be a positive integer, got {size}")
    text = str(data)
    return [text[i:i + size] for i in range(0, len(text), size)]


def batch(items: Sequence[Any], size: int) -> List[List[Any]]:
    """Split a sequence into ordered lists of ``size`` items (last may be shorter)."""
    if size < 1:
        raise ValueError(f"batch size must be a positive integer, got {size}")
    items = list(items)
    return [items[i:i + size] for i in range(0, len(items), size)]


class ScriptOutput:
    """Captures ``print()`` calls made by a restricted script.

    RestrictedPython rewrites ``print(...)`` into ``_print._call_print(...)``
    where ``_print = _print_(_getattr_)`` is injected at the top of every
    printing scope, so one instance is handed out to all of them.
    """

    def __init__(self) -> None:
        self.lines: List[str] = []

    def collector(self, _getattr_: Optional[Any] = None) -> "ScriptOutput":
        """Factory bound as ``_print_`` in the script globals."""
        return self

    def _call_print(self, *objects: Any, **kwargs: Any) -> None:
        sep = kwargs.get("sep")
        self.lines.append((" " if sep is None else str(sep)).join(str(o) for o in objects))

    def __call__(self) -> str:
        # Backs the restricted ``printed`` name
        return self.getvalue()

    def getvalue(self) -> str:
        return "\n".join(self.lines)
