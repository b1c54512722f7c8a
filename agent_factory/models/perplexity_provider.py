"""
Perplexity provider implementation.

This provider uses Perplexity's OpenAI-compatible API endpoint to
perform chat completions. It reuses the OpenAI handler with a custom
base URL, API key variable and the `sonar` model family.
"""

from agent_factory.models.openai_provider import OpenAIHandler


class PerplexityHandler(OpenAIHandler):
    """
    PerplexityHandler targets Perplexity's OpenAI-compatible Chat Completions API.
    """

    default_models = ("sonar*", "r1-1776")
    default_api_key_env = "PERPLEXITY_API_KEY"
    default_base_url = "https://api.perplexity.ai"
