"""Filesystem tools confined to a base directory."""

import base64
import fnmatch
from pathlib import Path
from typing import Any, Literal

from chatgate.tools.registry import ToolRegistry

# Cap on entries returned by file_list
MAX_LIST_ENTRIES = 1000


class PathOutsideBaseError(ValueError):
    """A tool path resolved outside the configured base directory."""


def resolve_path(base: Path, path: str) -> Path:
    """Resolve ``path`` relative to ``base`` and refuse escapes.

    Absolute paths are interpreted relative to the base directory as well.

    Raises:
        PathOutsideBaseError: If the resolved path is not inside ``base``
    """
    root = base.resolve()
    candidate = (root / path.lstrip("/")).resolve()
    if candidate != root and not candidate.is_relative_to(root):
        raise PathOutsideBaseError(f"Path is outside the allowed directory: {path}")
    return candidate


def register_filesystem_tools(registry: ToolRegistry, base_path: str | Path) -> None:
    """Register file_read, file_write and file_list on ``registry``.

    Args:
        registry: Registry to add the tools to
        base_path: Directory all paths are resolved against (created if missing)
    """
    base = Path(base_path).expanduser()
    base.mkdir(parents=True, exist_ok=True)

    @registry.tool(description="Read the contents of a file from the local filesystem")
    async def file_read(
        path: str,
        encoding: Literal["utf-8", "base64"] = "utf-8",
        max_lines: int = 0,
    ) -> dict[str, Any]:
        """Read a file.

        Args:
            path: Path to the file to read
            encoding: File encoding
            max_lines: Maximum number of lines to read (0 for all)
        """
        file_path = resolve_path(base, path)
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {path}")
        if not file_path.is_file():
            raise IsADirectoryError(f"Path is not a file: {path}")

        if encoding == "base64":
            return {
                "content": base64.b64encode(file_path.read_bytes()).decode("ascii"),
                "path": path,
                "encoding": encoding,
            }

        content = file_path.read_text(encoding="utf-8", errors="replace")
        if max_lines > 0:
            content = "\n".join(content.split("\n")[:max_lines])

        return {
            "content": content,
            "path": path,
            "encoding": encoding,
            "lines": len(content.split("\n")),
        }

    @registry.tool(description="Write content to a file on the local filesystem", dangerous=True)
    async def file_write(path: str, content: str, append: bool = False) -> dict[str, Any]:
        """Write a file, creating parent directories.

        Args:
            path: Path to the file to write
            content: Content to write to the file
            append: Append to file instead of overwriting
        """
        file_path = resolve_path(base, path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        with open(file_path, "a" if append else "w", encoding="utf-8") as f:
            f.write(content)

        return {"path": path, "written": True, "bytes": len(content.encode("utf-8"))}

    @registry.tool(description="List files and directories in a given path")
    async def file_list(
        path: str,
        recursive: bool = False,
        pattern: str | None = None,
    ) -> dict[str, Any]:
        """List a directory.

        Args:
            path: Directory path to list
            recursive: List files recursively
            pattern: Glob pattern to filter files
        """
        dir_path = resolve_path(base, path)
        if not dir_path.is_dir():
            raise NotADirectoryError(f"Directory not found: {path}")

        children = dir_path.rglob("*") if recursive else dir_path.iterdir()
        entries: list[str] = []
        truncated = False
        for child in sorted(children):
            rel = child.relative_to(dir_path).as_posix()
            if pattern and not fnmatch.fnmatch(child.name, pattern):
                continue
            if len(entries) >= MAX_LIST_ENTRIES:
                truncated = True
                break
            entries.append(rel + "/" if child.is_dir() else rel)

        return {"path": path, "entries": entries, "truncated": truncated}
