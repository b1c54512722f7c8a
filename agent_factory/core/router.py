"""
Model routing logic.

The router picks a model client for a model name by walking an ordered
chain of handlers. A handler that declines the model is skipped; one that
accepts it but fails to build a client is recorded and the walk goes on
to the next handler. The chain is a tuple fixed at construction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Type

from agent_factory.errors import (
    ChainExhaustedError,
    ConfigurationError,
    ConstructionError,
    NoHandlersConfiguredError,
)
from agent_factory.models.base import ModelClient, ModelClientHandler

logger = logging.getLogger(__name__)

SuccessCallback = Callable[[str, str], None]
FailureCallback = Callable[[str, str, BaseException], None]

DECLINED = "declined model"


@dataclass(frozen=True)
class HandlerAttempt:
    """One visit of the router to a handler."""

    handler_name: str
    model_name: str
    reason: str
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class RoutingOutcome:
    """
    Result of routing one model name through the handler chain.

    On success `client` and `handler_name` are set. On failure both are
    None and `attempts` lists every handler visited with its rejection
    reason.
    """

    model_name: str
    client: Optional[ModelClient] = None
    handler_name: Optional[str] = None
    attempts: Tuple[HandlerAttempt, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.client is not None

    def describe(self) -> str:
        if self.ok:
            return f"Model '{self.model_name}' served by handler '{self.handler_name}'."
        if not self.attempts:
            return f"No handler was tried for model '{self.model_name}'."
        lines = [f"No handler in the chain could create a client for model '{self.model_name}':"]
        for attempt in self.attempts:
            lines.append(f"  - {attempt.handler_name}: {attempt.reason}")
        return "\n".join(lines)


class ModelClientRouter:
    """
    ModelClientRouter tries each configured handler in order until one
    produces a usable client. Routing depends only on the handler chain
    and the model name, so it is safe to call from several threads.
    """

    def __init__(
        self,
        handlers: Sequence[ModelClientHandler],
        on_success: Optional[SuccessCallback] = None,
        on_failure: Optional[FailureCallback] = None,
    ) -> None:
        if not handlers:
            raise NoHandlersConfiguredError("At least one model client handler must be configured.")

        chain: List[ModelClientHandler] = []
        seen = set()
        for handler in handlers:
            if handler.name in seen:
                logger.warning("Handler '%s' appears twice in the chain; keeping the first", handler.name)
                continue
            seen.add(handler.name)
            chain.append(handler)

        self._handlers: Tuple[ModelClientHandler, ...] = tuple(chain)
        self._on_success = on_success
        self._on_failure = on_failure

    @property
    def handlers(self) -> Tuple[ModelClientHandler, ...]:
        return self._handlers

    @property
    def handler_names(self) -> List[str]:
        return [h.name for h in self._handlers]

    def route(self, model_name: str) -> RoutingOutcome:
        """
        Walk the chain for `model_name` and record every handler visited.

        Args:
            model_name: The model name requested by the agent.

        Returns:
            A RoutingOutcome; check `ok` before using `client`.

        Raises:
            ValueError: If the model name is empty.
        """
        if not model_name or not model_name.strip():
            raise ValueError("Model name cannot be empty.")

        logger.debug("Looking for a handler for model '%s'", model_name)
        attempts: List[HandlerAttempt] = []
        for handler in self._handlers:
            try:
                accepted = handler.can_handle(model_name)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Handler '%s' failed while checking model '%s': %s", handler.name, model_name, exc)
                attempts.append(HandlerAttempt(handler.name, model_name, f"check failed: {exc}", exc))
                self._notify_failure(handler.name, model_name, exc)
                continue

            if not accepted:
                attempts.append(HandlerAttempt(handler.name, model_name, DECLINED))
                continue

            try:
                client = handler.create_client(model_name)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Handler '%s' could not create a client for model '%s': %s",
                    handler.name,
                    model_name,
                    exc,
                )
                attempts.append(HandlerAttempt(handler.name, model_name, f"construction failed: {exc}", exc))
                self._notify_failure(handler.name, model_name, exc)
                continue

            if client is None:
                error = ConstructionError("construction returned no client", handler_name=handler.name)
                logger.warning("Handler '%s' returned no client for model '%s'", handler.name, model_name)
                attempts.append(HandlerAttempt(handler.name, model_name, str(error), error))
                self._notify_failure(handler.name, model_name, error)
                continue

            attempts.append(HandlerAttempt(handler.name, model_name, "ok"))
            logger.info("Model '%s' routed to handler '%s'", model_name, handler.name)
            if self._on_success is not None:
                self._on_success(handler.name, model_name)
            return RoutingOutcome(
                model_name=model_name,
                client=client,
                handler_name=handler.name,
                attempts=tuple(attempts),
            )

        outcome = RoutingOutcome(model_name=model_name, attempts=tuple(attempts))
        logger.error(outcome.describe())
        return outcome

    def create_client(self, model_name: str) -> ModelClient:
        """
        Return a client for `model_name` from the first handler that can build one.

        Raises:
            ChainExhaustedError: If every handler declined or failed.
        """
        outcome = self.route(model_name)
        if not outcome.ok:
            raise ChainExhaustedError(outcome)
        return outcome.client

    def candidates(self, model_name: str) -> List[str]:
        """Names of handlers that accept `model_name`, without building clients."""
        names: List[str] = []
        for handler in self._handlers:
            try:
                if handler.can_handle(model_name):
                    names.append(handler.name)
            except Exception as exc:  # noqa: BLE001
                logger.debug("Handler '%s' check failed for '%s': %s", handler.name, model_name, exc)
        return names

    def _notify_failure(self, handler_name: str, model_name: str, exc: BaseException) -> None:
        if self._on_failure is not None:
            self._on_failure(handler_name, model_name, exc)


def build_handler_chain(
    cfg: Dict[str, Any],
    handler_types: Mapping[str, Type[ModelClientHandler]],
) -> List[ModelClientHandler]:
    """
    Build the ordered handler list from the application config.

    The order comes from `provider_chain` when present. Otherwise the
    `default_provider` goes first, followed by every other enabled
    provider in the order it appears under `providers`. Providers that
    are disabled, unknown or fail to load are logged and left out.
    """
    providers_cfg = cfg.get("providers") or {}
    if not isinstance(providers_cfg, dict):
        raise ConfigurationError("'providers' must be a mapping of provider name to settings.")

    chain_cfg = cfg.get("provider_chain")
    if chain_cfg:
        order = [str(name) for name in chain_cfg]
    else:
        order = []
        default = cfg.get("default_provider")
        if default:
            order.append(str(default))
        order.extend(name for name in providers_cfg if name not in order)

    handlers: List[ModelClientHandler] = []
    for provider_name in order:
        if provider_name not in providers_cfg:
            logger.warning("Unknown provider in chain: %s", provider_name)
            continue
        provider_cfg = providers_cfg[provider_name] or {}
        if not provider_cfg.get("enabled", True):
            logger.debug("Provider '%s' is disabled", provider_name)
            continue

        type_key = provider_cfg.get("type", provider_name)
        handler_cls = handler_types.get(type_key)
        if handler_cls is None:
            logger.warning("No handler type '%s' for provider '%s'", type_key, provider_name)
            continue

        try:
            handlers.append(handler_cls.from_config(provider_name, provider_cfg))
        except (ConfigurationError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping misconfigured provider '%s': %s", provider_name, exc)

    return handlers
