"""
Base types for model client handlers.

A handler decides whether it can serve a model name and, if so, builds a
`ModelClient` bound to that model. Handlers are arranged in a chain by
`agent_factory.core.router.ModelClientRouter`.
"""

from __future__ import annotations

import fnmatch
import os
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from agent_factory.errors import ConfigurationError


@dataclass
class ChatResponse:
    """
    Normalized chat response returned by model clients.

    The text attribute contains the plain response text. The raw
    attribute contains provider-specific response data for debugging
    or advanced use.
    """

    text: str
    raw: Any


class ModelClient:
    """
    A chat client bound to one provider and one model.

    Subclasses implement `chat`, which takes OpenAI-style message dicts.
    """

    def __init__(self, provider_name: str, model: str) -> None:
        self.provider_name = provider_name
        self.model = model

    def chat(
        self,
        messages: List[Dict[str, Any]],
        stream: bool = False,
    ) -> ChatResponse:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(provider={self.provider_name!r}, model={self.model!r})"


class ModelClientHandler:
    """
    Abstract base class for provider handlers.

    `can_handle` is a cheap local check (credentials present and the
    model name matches one of the handler's patterns). `create_client`
    does the actual construction and may raise; the router catches the
    error and moves on to the next handler.
    """

    default_models: Tuple[str, ...] = ()

    def __init__(self, name: str, models: Optional[Iterable[str]] = None) -> None:
        self.name = name
        patterns = self.default_models if models is None else models
        self.models: Tuple[str, ...] = tuple(str(m) for m in patterns)

    def can_handle(self, model_name: str) -> bool:
        return self.is_configured() and self.matches_model(model_name)

    def create_client(self, model_name: str) -> ModelClient:
        raise NotImplementedError

    def is_configured(self) -> bool:
        return True

    def matches_model(self, model_name: str) -> bool:
        """Match a model name against the handler's glob patterns, ignoring case."""
        lowered = model_name.lower()
        return any(fnmatch.fnmatchcase(lowered, pattern.lower()) for pattern in self.models)

    @classmethod
    def from_config(cls, name: str, cfg: Dict[str, Any]) -> "ModelClientHandler":
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


def read_secret(env_name: Optional[str], explicit: Optional[str] = None) -> Optional[str]:
    """Return an explicit secret if given, else the value of an environment variable."""
    if explicit:
        return explicit
    if not env_name:
        return None
    return os.getenv(env_name) or None


def parse_model_patterns(cfg: Dict[str, Any]) -> Optional[List[str]]:
    """
    Read the `models` entry of a provider config block.

    Accepts either a list of names/patterns or a mapping whose keys are
    model names (the older layout with per-model metadata).
    """
    models_cfg = cfg.get("models")
    if models_cfg is None:
        return None
    if isinstance(models_cfg, dict):
        names: List[str] = []
        for key, mcfg in models_cfg.items():
            if isinstance(mcfg, dict) and mcfg.get("name"):
                names.append(str(mcfg["name"]))
            else:
                names.append(str(key))
        return names
    if isinstance(models_cfg, (list, tuple)):
        return [str(m) for m in models_cfg]
    raise ConfigurationError(
        f"'models' must be a list or mapping, got {type(models_cfg).__name__}."
    )
