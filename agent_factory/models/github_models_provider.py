"""
GitHub Models provider implementation.

GitHub Models exposes an OpenAI-compatible inference endpoint that is
authenticated with a GitHub token. Only models from the marketplace
catalog below are accepted unless the config supplies its own list.
"""

from agent_factory.models.openai_provider import OpenAIHandler


class GitHubModelsHandler(OpenAIHandler):
    """
    GitHubModelsHandler builds OpenAI SDK clients against the GitHub Models endpoint.
    """

    default_models = (
        "gpt-4o",
        "gpt-4o-mini",
        "gpt-4-turbo",
        "gpt-4",
        "gpt-3.5-turbo",
        "o1",
        "o1-mini",
        "o1-preview",
        "phi-3",
        "phi-3.5",
        "llama-3",
        "llama-3.1",
        "llama-3.2",
        "mistral-large",
        "mistral-nemo",
        "cohere-command-r",
        "cohere-command-r-plus",
    )
    default_api_key_env = "GITHUB_TOKEN"
    default_base_url = "https://models.inference.ai.azure.com"
