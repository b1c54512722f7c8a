"""
Model client handlers.

This package collects base types in `base.py` and concrete handlers for
OpenAI, Azure OpenAI, GitHub Models, Perplexity (OpenAI-compatible) and
Anthropic. Adding a new provider involves creating a new module that
subclasses `ModelClientHandler` and listing it in `HANDLER_TYPES`.
"""

from agent_factory.models.anthropic_provider import AnthropicHandler
from agent_factory.models.azure_openai_provider import AzureOpenAIHandler
from agent_factory.models.github_models_provider import GitHubModelsHandler
from agent_factory.models.openai_provider import OpenAIHandler
from agent_factory.models.perplexity_provider import PerplexityHandler

# Provider config key -> handler class. A provider block may override the
# class with `type: <key>` to reuse a handler under another name.
HANDLER_TYPES = {
    "openai": OpenAIHandler,
    "azure_openai": AzureOpenAIHandler,
    "github_models": GitHubModelsHandler,
    "perplexity": PerplexityHandler,
    "anthropic": AnthropicHandler,
}

__all__ = [
    "HANDLER_TYPES",
    "AnthropicHandler",
    "AzureOpenAIHandler",
    "GitHubModelsHandler",
    "OpenAIHandler",
    "PerplexityHandler",
]
