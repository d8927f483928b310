"""Repository access bridge.

Scripts see the repository only through the four operations below. Every
result is a JSON-encoded string so the script can print it or ``json.loads``
it, and every path argument is resolved against the bridge root.
"""

import asyncio
import fnmatch
import json
import os
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

import aiofiles
import aiofiles.os
import structlog

from librarian_rlm.config import get_repo_settings
from librarian_rlm.exceptions import PathEscapeError

logger = structlog.get_logger()

# Bytes sniffed for a NUL byte before a file is treated as binary
BINARY_SNIFF_BYTES = 8192

Patterns = Union[str, Sequence[str]]


class RepoBridge(ABC):
    """Abstract repository access bridge.

    Implementations must confine every path to their root and raise
    ``PathEscapeError`` for anything outside it.
    """

    @abstractmethod
    async def list(
        self,
        directory_path: str = ".",
        recursive: bool = False,
        max_depth: int = 1,
        include_hidden: bool = False,
    ) -> str:
        """List directory entries.

        Returns:
            JSON ``{"path", "total", "entries": [{"name", "type", "size"}]}``
        """
        ...

    @abstractmethod
    async def view(self, file_path: str, view_range: Optional[Sequence[int]] = None) -> str:
        """Read a file, optionally a 1-based inclusive line range.

        Returns:
            JSON ``{"path", "total_lines", "start", "end", "content"}``
        """
        ...

    @abstractmethod
    async def find(
        self,
        patterns: Patterns,
        search_path: str = ".",
        exclude: Optional[Patterns] = None,
        max_results: Optional[int] = None,
        recursive: bool = True,
    ) -> str:
        """Find files by glob pattern.

        Returns:
            JSON ``{"matches", "total", "truncated"}``
        """
        ...

    @abstractmethod
    async def grep(
        self,
        query: str,
        search_path: str = ".",
        patterns: Optional[Patterns] = None,
        regex: bool = False,
        case_sensitive: bool = False,
        max_results: Optional[int] = None,
        context_before: int = 0,
        context_after: int = 0,
    ) -> str:
        """Search file contents.

        Returns:
            JSON ``{"matches": [{"file", "line", "column", "text"}], "total", "truncated"}``
        """
        ...


def _as_list(patterns: Optional[Patterns]) -> List[str]:
    if patterns is None:
        return []
    if isinstance(patterns, str):
        return [patterns]
    return [str(p) for p in patterns]


def _matches_any(rel_path: str, patterns: List[str]) -> bool:
    name = rel_path.rsplit("/", 1)[-1]
    for pattern in patterns:
        if "/" in pattern:
            if fnmatch.fnmatch(rel_path, pattern):
                return True
            # "**/x" also matches "x" at the top level
            if pattern.startswith("**/") and fnmatch.fnmatch(rel_path, pattern[3:]):
                return True
        elif fnmatch.fnmatch(name, pattern):
            return True
    return False


class LocalRepoBridge(RepoBridge):
    """Repository bridge over a local directory tree.

    Example:
        ```python
        repo = LocalRepoBridge("/path/to/checkout")
        listing = json.loads(await repo.list("src"))
        ```
    """

    def __init__(
        self,
        root: Union[str, Path],
        max_results: Optional[int] = None,
        max_file_size_bytes: Optional[int] = None,
        ignored_directories: Optional[Sequence[str]] = None,
    ) -> None:
        """Initialize the bridge.

        Args:
            root: Directory every path is confined to
            max_results: Default cap for find/grep
            max_file_size_bytes: Files larger than this are skipped by grep
            ignored_directories: Directory names never listed or searched
        """
        settings = get_repo_settings()

        self.root = Path(root).resolve()
        if not self.root.is_dir():
            raise NotADirectoryError(f"Repository root is not a directory: {root}")

        self.max_results = max_results or settings.max_results
        self.max_file_size_bytes = max_file_size_bytes or settings.max_file_size_bytes
        self.ignored_directories = set(
            ignored_directories if ignored_directories is not None else settings.ignored_directories
        )

        logger.info("repo_bridge_initialized", root=str(self.root))

    # Path handling

    def resolve(self, path: str) -> Path:
        """Resolve ``path`` against the root.

        Raises:
            PathEscapeError: If the resolved path lies outside the root
        """
        target = (self.root / str(path)).resolve()
        if target != self.root and self.root not in target.parents:
            logger.warning("repo_path_escape_blocked", path=str(path))
            raise PathEscapeError(str(path), str(self.root))
        return target

    def relative(self, path: Path) -> str:
        rel = path.relative_to(self.root).as_posix()
        return rel or "."

    def _within_root(self, path: Path) -> bool:
        """True if ``path`` still lies under the root once symlinks are resolved."""
        try:
            target = path.resolve()
        except (OSError, RuntimeError):
            return False
        return target == self.root or self.root in target.parents

    def _is_skipped(self, entry: Path, include_hidden: bool = False) -> bool:
        if entry.name.startswith(".") and not include_hidden:
            return True
        if not self._within_root(entry):
            logger.debug("repo_symlink_outside_root_skipped", path=str(entry))
            return True
        return entry.is_dir() and entry.name in self.ignored_directories

    def _walk_files(self, base: Path, recursive: bool = True) -> Iterator[Path]:
        for dirpath, dirnames, filenames in os.walk(base):
            current = Path(dirpath)
            dirnames[:] = sorted(
                d for d in dirnames
                if recursive and not self._is_skipped(current / d)
            )
            for filename in sorted(filenames):
                path = current / filename
                if not filename.startswith(".") and self._within_root(path):
                    yield path

    def _require_directory(self, path: str) -> Path:
        target = self.resolve(path)
        if not target.exists():
            raise FileNotFoundError(f'Path "{path}" does not exist')
        if not target.is_dir():
            raise NotADirectoryError(f'Path "{path}" is not a directory')
        return target

    # Operations

    async def list(
        self,
        directory_path: str = ".",
        recursive: bool = False,
        max_depth: int = 1,
        include_hidden: bool = False,
    ) -> str:
        """List a directory, optionally descending up to ``max_depth`` levels."""
        base = await asyncio.to_thread(self._require_directory, directory_path)
        depth_limit = max(1, int(max_depth)) if recursive else 1
        entries: List[Dict[str, Any]] = []

        def visit(directory: Path, depth: int) -> None:
            for entry in sorted(directory.iterdir(), key=lambda p: p.name):
                if self._is_skipped(entry, include_hidden):
                    continue
                is_dir = entry.is_dir()
                entries.append({
                    "name": entry.relative_to(base).as_posix(),
                    "type": "directory" if is_dir else "file",
                    "size": None if is_dir else entry.stat().st_size,
                })
                if is_dir and depth < depth_limit:
                    visit(entry, depth + 1)

        await asyncio.to_thread(visit, base, 1)
        logger.debug("repo_list", path=directory_path, total=len(entries))
        return json.dumps({
            "path": self.relative(base),
            "total": len(entries),
            "entries": entries,
        })

    async def view(self, file_path: str, view_range: Optional[Sequence[int]] = None) -> str:
        """Read a file with ``"<n>: <line>"`` numbering."""
        target = self.resolve(file_path)
        if not target.exists():
            raise FileNotFoundError(f'File "{file_path}" does not exist')
        if target.is_dir():
            raise IsADirectoryError(f'Path "{file_path}" is a directory')

        async with aiofiles.open(target, "r", encoding="utf-8", errors="replace") as f:
            content = await f.read()
        lines = content.splitlines()
        total_lines = len(lines)

        start, end = 1, total_lines
        if view_range is not None:
            if len(view_range) != 2:
                raise ValueError("view_range must be [start, end]")
            start, end = int(view_range[0]), int(view_range[1])
            if end == -1:
                end = total_lines
            if start < 1 or end < start:
                raise ValueError(f"Invalid view_range [{view_range[0]}, {view_range[1]}]")
            if total_lines and start > total_lines:
                raise ValueError(
                    f"view_range start {start} is beyond the end of the file ({total_lines} lines)"
                )
            end = min(end, total_lines)

        numbered = "\n".join(f"{n}: {lines[n - 1]}" for n in range(start, end + 1))
        logger.debug("repo_view", path=file_path, start=start, end=end)
        return json.dumps({
            "path": self.relative(target),
            "total_lines": total_lines,
            "start": start,
            "end": end,
            "content": numbered,
        })

    async def find(
        self,
        patterns: Patterns,
        search_path: str = ".",
        exclude: Optional[Patterns] = None,
        max_results: Optional[int] = None,
        recursive: bool = True,
    ) -> str:
        """Find files whose name (or relative path) matches a glob pattern."""
        include = _as_list(patterns)
        if not include:
            raise ValueError("At least one pattern is required")
        excluded = _as_list(exclude)
        limit = max_results or self.max_results
        base = await asyncio.to_thread(self._require_directory, search_path)

        def collect() -> List[str]:
            found = []
            for path in self._walk_files(base, recursive=recursive):
                rel = path.relative_to(base).as_posix()
                if _matches_any(rel, include) and not _matches_any(rel, excluded):
                    found.append(self.relative(path))
            return sorted(found)

        matches = await asyncio.to_thread(collect)

        logger.debug("repo_find", patterns=include, total=len(matches))
        return json.dumps({
            "matches": matches[:limit],
            "total": len(matches),
            "truncated": len(matches) > limit,
        })

    async def grep(
        self,
        query: str,
        search_path: str = ".",
        patterns: Optional[Patterns] = None,
        regex: bool = False,
        case_sensitive: bool = False,
        max_results: Optional[int] = None,
        context_before: int = 0,
        context_after: int = 0,
    ) -> str:
        """Search text files for a literal string or regular expression."""
        if not query:
            raise ValueError('The "query" parameter is required')
        try:
            compiled = re.compile(
                query if regex else re.escape(query),
                0 if case_sensitive else re.IGNORECASE,
            )
        except re.error as e:
            raise ValueError(f"Invalid regex pattern: {e}") from e

        include = _as_list(patterns) or ["*"]
        limit = max_results or self.max_results
        base = await asyncio.to_thread(self._require_directory, search_path)
        candidates = await asyncio.to_thread(
            lambda: [
                path for path in self._walk_files(base)
                if _matches_any(path.relative_to(base).as_posix(), include)
            ]
        )

        matches: List[Dict[str, Any]] = []
        truncated = False
        for path in candidates:
            lines = await self._read_text_lines(path)
            if lines is None:
                continue

            for index, line in enumerate(lines):
                for found in compiled.finditer(line):
                    if len(matches) >= limit:
                        truncated = True
                        break
                    match: Dict[str, Any] = {
                        "file": self.relative(path),
                        "line": index + 1,
                        "column": found.start() + 1,
                        "text": line,
                    }
                    if context_before > 0:
                        match["before"] = lines[max(0, index - context_before):index]
                    if context_after > 0:
                        match["after"] = lines[index + 1:index + 1 + context_after]
                    matches.append(match)
                if truncated:
                    break
            if truncated:
                break

        logger.debug("repo_grep", query=query, total=len(matches), truncated=truncated)
        return json.dumps({
            "matches": matches,
            "total": len(matches),
            "truncated": truncated,
        })

    async def _read_text_lines(self, path: Path) -> Optional[List[str]]:
        """Read a file as lines, or None if it is binary, oversized or unreadable."""
        try:
            stat = await aiofiles.os.stat(path)
            if stat.st_size > self.max_file_size_bytes:
                return None
            async with aiofiles.open(path, "rb") as f:
                data = await f.read()
        except OSError as e:
            logger.debug("repo_read_skipped", path=str(path), error=str(e))
            return None

        if b"\0" in data[:BINARY_SNIFF_BYTES]:
            return None
        return data.decode("utf-8", errors="replace").splitlines()
