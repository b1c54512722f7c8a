"""
Tool sources.

Tools are named capabilities an agent may invoke. They come from two
kinds of source: in-process functions declared in a registration table
(`local`) and tools listed by external MCP servers (`remote`). Both are
registered in a `ToolSourceRegistry` and looked up by name.
"""

__all__ = [
    "base",
    "local",
    "remote",
    "builtin",
    "files",
    "shell",
    "weather",
    "web",
]
