"""
Azure OpenAI provider implementation.

Azure OpenAI serves models through named deployments, so the handler
accepts any model name once an endpoint and a deployment are
configured. Authentication uses the API key when one is available and
falls back to `DefaultAzureCredential` (Azure CLI, managed identity).
"""

from typing import Any, Dict, List, Optional

from azure.identity import DefaultAzureCredential, get_bearer_token_provider
from openai import AzureOpenAI

from agent_factory.errors import ConstructionError
from agent_factory.models.base import ModelClientHandler, parse_model_patterns, read_secret
from agent_factory.models.openai_provider import OpenAIChatClient

COGNITIVE_SERVICES_SCOPE = "https://cognitiveservices.azure.com/.default"


class AzureOpenAIHandler(ModelClientHandler):
    """
    AzureOpenAIHandler builds clients for a single Azure OpenAI deployment.
    """

    default_models = ("*",)

    def __init__(
        self,
        name: str,
        endpoint: Optional[str],
        deployment_name: Optional[str],
        api_version: str = "2024-10-21",
        api_key_env: str = "AZURE_OPENAI_API_KEY",
        models: Optional[List[str]] = None,
        api_key: Optional[str] = None,
    ) -> None:
        super().__init__(name=name, models=models)
        self.endpoint = endpoint
        self.deployment_name = deployment_name
        self.api_version = api_version
        self.api_key_env = api_key_env
        self.api_key = api_key

    @classmethod
    def from_config(cls, name: str, cfg: Dict[str, Any]) -> "AzureOpenAIHandler":
        return cls(
            name=name,
            endpoint=cfg.get("endpoint") or read_secret(cfg.get("endpoint_env", "AZURE_OPENAI_ENDPOINT")),
            deployment_name=cfg.get("deployment_name")
            or read_secret(cfg.get("deployment_env", "AZURE_OPENAI_DEPLOYMENT")),
            api_version=cfg.get("api_version", "2024-10-21"),
            api_key_env=cfg.get("api_key_env", "AZURE_OPENAI_API_KEY"),
            models=parse_model_patterns(cfg),
            api_key=cfg.get("api_key"),
        )

    def is_configured(self) -> bool:
        return bool(self.endpoint and self.deployment_name)

    def create_client(self, model_name: str) -> OpenAIChatClient:
        if not self.endpoint:
            raise ConstructionError("Azure OpenAI endpoint is not configured", handler_name=self.name)
        if not self.deployment_name:
            raise ConstructionError(
                "Azure OpenAI deployment name is not configured", handler_name=self.name
            )

        api_key = read_secret(self.api_key_env, self.api_key)
        if api_key:
            client = AzureOpenAI(
                azure_endpoint=self.endpoint,
                api_key=api_key,
                api_version=self.api_version,
            )
        else:
            token_provider = get_bearer_token_provider(
                DefaultAzureCredential(), COGNITIVE_SERVICES_SCOPE
            )
            client = AzureOpenAI(
                azure_endpoint=self.endpoint,
                azure_ad_token_provider=token_provider,
                api_version=self.api_version,
            )
        # Requests go to the deployment; the requested model name only selects the handler.
        return OpenAIChatClient(provider_name=self.name, model=self.deployment_name, client=client)
