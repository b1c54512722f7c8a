"""
Web-related tool implementations.

Provides tools for performing live internet searches using a search
API endpoint and for fetching raw content from a URL. These tools
retrieve data using the `requests` library and return text to the
agent. Web search needs an endpoint; without one its factory raises
and the local tool source leaves the tool out.
"""

import os
from typing import Any, Dict, List, Optional

import requests

from agent_factory.errors import ConfigurationError
from agent_factory.tools.local import ToolTable


class WebSearch:
    """
    Perform live internet searches using a configurable search API.

    The search API should accept query parameters such as `q` and
    optionally `num_results`. API authentication can be provided
    via an environment variable.
    """

    def __init__(self, endpoint: str, api_key_env: str = "SEARCH_API_KEY", timeout: int = 15) -> None:
        self.endpoint = endpoint
        self.api_key_env = api_key_env
        self.timeout = timeout

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "WebSearch":
        endpoint = cfg.get("endpoint") or os.getenv("SEARCH_API_ENDPOINT", "")
        if not endpoint:
            raise ConfigurationError(
                "web_search requires SEARCH_API_ENDPOINT env var or tools.local.web_search.endpoint in config."
            )
        return cls(
            endpoint=endpoint,
            api_key_env=cfg.get("api_key_env", "SEARCH_API_KEY"),
            timeout=int(cfg.get("timeout", 15)),
        )

    def search(self, query: str, num_results: int = 5) -> str:
        """Perform a live web search and summarize the top results."""
        if not query:
            return "web_search: 'query' is required."
        num_results = int(num_results)
        headers: Dict[str, str] = {}
        api_key = os.getenv(self.api_key_env, "")
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        payload = {
            "q": query,
            "num_results": num_results,
        }
        try:
            resp = requests.get(
                self.endpoint,
                params=payload,
                headers=headers,
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            return f"web_search encountered an error while calling the search API: {exc}"
        try:
            data = resp.json()
        except ValueError:
            return resp.text[:4000]
        results = data.get("results") or data.get("data") or []
        lines: List[str] = [f"Search results for: {query}"]
        for idx, r in enumerate(results[:num_results], start=1):
            title = r.get("title") or r.get("name") or "Untitled"
            snippet = r.get("snippet") or r.get("description") or ""
            url = r.get("url") or r.get("link") or ""
            lines.append(f"{idx}. {title}")
            if snippet:
                lines.append(f"   {snippet}")
            if url:
                lines.append(f"   URL: {url}")
        return "\n".join(lines)


def web_fetch(url: str, max_chars: int = 4000, timeout: Optional[int] = 15) -> str:
    """Fetch raw web content from a URL and return the first N characters."""
    if not url:
        return "web_fetch: 'url' is required."
    try:
        resp = requests.get(url, timeout=timeout)
        resp.raise_for_status()
    except requests.RequestException as exc:
        return f"web_fetch encountered an error while fetching URL: {exc}"
    text = resp.text
    if len(text) > int(max_chars):
        text = text[: int(max_chars)] + "\n...[truncated]..."
    return text


def register_web_tools(table: ToolTable, cfg: Dict[str, Any]) -> None:
    search_cfg = cfg.get("web_search") or {}
    if search_cfg.get("enabled", False):
        table.register(
            WebSearch.search,
            name="web_search",
            factory=lambda: WebSearch.from_config(search_cfg),
        )
    fetch_cfg = cfg.get("web_fetch") or {}
    if fetch_cfg.get("enabled", False):
        table.register(web_fetch, name="web_fetch")
