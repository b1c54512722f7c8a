"""
Agent factory package root.

This package resolves declarative agent descriptions into a model
client, chosen by a chain of provider handlers, and a set of tools
collected from in-process registrations and external MCP servers.
It provides configuration loading utilities, the core routing and
resolution logic, model handlers, and tool sources.
"""

__all__ = [
    "config",
    "core",
    "errors",
    "models",
    "tools",
]
