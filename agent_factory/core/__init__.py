"""
Core logic for the agent factory.

This subpackage provides the router, which picks a model client from
the handler chain, the resolver, which turns tool tokens into tools,
the agent factory and runner, and prompt management utilities.
"""

__all__ = [
    "router",
    "resolver",
    "agent",
    "prompts",
]
