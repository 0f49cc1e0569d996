"""Web search and fetch tools."""

import asyncio
import html
import re
from typing import Any

import httpx
from duckduckgo_search import DDGS

from chatgate.tools.registry import ToolRegistry

_DROP_BLOCKS = re.compile(r"<(script|style|noscript)[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)
_TAGS = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")

USER_AGENT = "chatgate/0.1 (+web_fetch)"


def html_to_text(markup: str) -> str:
    """Reduce an HTML document to its visible text."""
    text = _DROP_BLOCKS.sub(" ", markup)
    text = _TAGS.sub(" ", text)
    return _WHITESPACE.sub(" ", html.unescape(text)).strip()


def register_web_tools(registry: ToolRegistry, fetch_timeout: float = 10.0) -> None:
    """Register web_search and web_fetch on ``registry``."""

    @registry.tool(description="Search the web for information")
    async def web_search(query: str, num_results: int = 5) -> dict[str, Any]:
        """Search the web with DuckDuckGo.

        Args:
            query: Search query
            num_results: Number of results to return (1-10)
        """
        num_results = min(max(1, num_results), 10)

        # Run synchronous DDGS in thread pool
        def _search() -> list[dict[str, Any]]:
            with DDGS() as ddgs:
                return list(ddgs.text(query, max_results=num_results))

        raw = await asyncio.to_thread(_search)

        results = [
            {
                "title": item.get("title", ""),
                "url": item.get("href", ""),
                "snippet": item.get("body", ""),
            }
            for item in raw
        ]
        return {"query": query, "results": results}

    @registry.tool(description="Fetch and extract content from a URL")
    async def web_fetch(url: str, extract_text: bool = True, max_length: int = 10000) -> dict[str, Any]:
        """Fetch a web page over HTTP(S).

        Args:
            url: URL to fetch content from
            extract_text: Extract only text content
            max_length: Maximum characters to extract
        """
        if not url.startswith(("http://", "https://")):
            raise ValueError(f"Unsupported URL scheme: {url}")

        async with httpx.AsyncClient(
            timeout=fetch_timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        ) as client:
            response = await client.get(url)
            response.raise_for_status()

        content_type = response.headers.get("content-type", "")
        content = response.text
        if extract_text and "html" in content_type:
            content = html_to_text(content)

        truncated = len(content) > max_length
        return {
            "url": str(response.url),
            "status": response.status_code,
            "content_type": content_type,
            "content": content[:max_length],
            "truncated": truncated,
        }
