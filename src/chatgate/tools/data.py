"""Data conversion and query tools."""

import csv
import io
import json
import re
from typing import Any, Literal

import yaml

from chatgate.tools.registry import ToolRegistry

DataFormat = Literal["json", "csv", "yaml"]

_PATH_TOKEN = re.compile(r"\.([A-Za-z_][\w-]*)|\[(\*|-?\d+|'[^']*'|\"[^\"]*\")\]|\.(\*)")


class QueryError(ValueError):
    """Invalid or unsupported JSONPath expression."""


def parse_data(data: str, fmt: str) -> Any:
    """Decode ``data`` written in ``fmt``."""
    if fmt == "json":
        return json.loads(data)
    if fmt == "yaml":
        return yaml.safe_load(data)
    if fmt == "csv":
        return list(csv.DictReader(io.StringIO(data)))
    raise ValueError(f"Unsupported format: {fmt}")


def dump_data(value: Any, fmt: str) -> str:
    """Encode ``value`` as ``fmt``."""
    if fmt == "json":
        return json.dumps(value, indent=2, ensure_ascii=False, default=str)
    if fmt == "yaml":
        return yaml.safe_dump(value, default_flow_style=False, sort_keys=False)
    if fmt == "csv":
        rows = value if isinstance(value, list) else [value]
        if not all(isinstance(row, dict) for row in rows):
            raise ValueError("CSV output requires an object or a list of objects")
        fieldnames: list[str] = []
        for row in rows:
            for key in row:
                if key not in fieldnames:
                    fieldnames.append(key)
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=fieldnames, lineterminator="\n")
        writer.writeheader()
        writer.writerows(rows)
        return buffer.getvalue()
    raise ValueError(f"Unsupported format: {fmt}")


def _tokenize(query: str) -> list[str | int]:
    """Split a JSONPath subset expression into keys, indexes and ``*``."""
    query = query.strip()
    if not query.startswith("$"):
        raise QueryError(f"Query must start with '$': {query}")

    tokens: list[str | int] = []
    pos = 1
    while pos < len(query):
        match = _PATH_TOKEN.match(query, pos)
        if match is None:
            raise QueryError(f"Unsupported query syntax at position {pos}: {query}")
        key, bracket, star = match.groups()
        if key is not None:
            tokens.append(key)
        elif star is not None:
            tokens.append("*")
        elif bracket == "*":
            tokens.append("*")
        elif bracket[0] in "'\"":
            tokens.append(bracket[1:-1])
        else:
            tokens.append(int(bracket))
        pos = match.end()
    return tokens


def query_data(value: Any, query: str) -> list[Any]:
    """Evaluate a JSONPath subset against ``value``.

    Supports ``$``, ``.key``, ``['key']``, ``[n]`` (negative indexes count
    from the end) and the ``*`` / ``[*]`` wildcard. Missing keys and
    out-of-range indexes produce no match rather than an error.

    Returns:
        All matched values in document order
    """
    matches = [value]
    for token in _tokenize(query):
        next_matches: list[Any] = []
        for current in matches:
            if token == "*":
                if isinstance(current, dict):
                    next_matches.extend(current.values())
                elif isinstance(current, list):
                    next_matches.extend(current)
            elif isinstance(token, int):
                if isinstance(current, list) and -len(current) <= token < len(current):
                    next_matches.append(current[token])
            elif isinstance(current, dict) and token in current:
                next_matches.append(current[token])
        matches = next_matches
    return matches


def register_data_tools(registry: ToolRegistry) -> None:
    """Register data_transform and data_query on ``registry``."""

    @registry.tool(description="Transform data between formats (JSON, CSV, YAML)")
    async def data_transform(data: str, from_format: DataFormat, to_format: DataFormat) -> dict[str, Any]:
        """Convert a document between formats.

        Args:
            data: Data to transform
            from_format: Source format
            to_format: Target format
        """
        value = parse_data(data, from_format)
        return {"format": to_format, "data": dump_data(value, to_format)}

    @registry.tool(description="Query and filter data using JSONPath")
    async def data_query(data: str | dict | list, query: str) -> dict[str, Any]:
        """Run a JSONPath query.

        Args:
            data: JSON data to query
            query: JSONPath query expression
        """
        value = json.loads(data) if isinstance(data, str) else data
        matches = query_data(value, query)
        return {"query": query, "matches": matches, "count": len(matches)}
