"""
Exception hierarchy for the agent factory.

Only `ChainExhaustedError`, `NoHandlersConfiguredError` and
`ToolResolutionError` are raised to the host. The remaining types are
raised inside a component and caught at its boundary, where they are
logged and the offending handler, connection or tool entry is skipped.
"""

from __future__ import annotations

from typing import Any, Optional


class AgentFactoryError(Exception):
    """Base exception for all agent factory errors."""


class ConfigurationError(AgentFactoryError):
    """Raised when a provider, connection or tool entry is misconfigured."""


class ConstructionError(AgentFactoryError):
    """Raised when a handler fails to construct a model client."""

    def __init__(self, message: str, handler_name: Optional[str] = None) -> None:
        super().__init__(message)
        self.handler_name = handler_name


class ServerConnectionError(AgentFactoryError):
    """Raised when an external tool server cannot be reached."""

    def __init__(self, message: str, connection_name: Optional[str] = None) -> None:
        super().__init__(message)
        self.connection_name = connection_name


class ChainExhaustedError(AgentFactoryError):
    """
    Raised when no handler in the chain produced a client.

    The `outcome` attribute holds the full routing record, including
    every handler that was visited and why it was rejected.
    """

    def __init__(self, outcome: Any) -> None:
        super().__init__(outcome.describe())
        self.outcome = outcome


class NoHandlersConfiguredError(AgentFactoryError):
    """Raised when a router is built without any handlers."""


class ToolResolutionError(AgentFactoryError):
    """Raised when an agent requires tools but no tool source exists."""

    def __init__(self, message: str, agent_name: Optional[str] = None) -> None:
        super().__init__(message)
        self.agent_name = agent_name


class ProviderError(AgentFactoryError):
    """Raised when a provider fails to execute a request."""


class ToolExecutionError(AgentFactoryError):
    """Raised when a tool server reports an error for a tool call."""
