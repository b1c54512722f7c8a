"""
OpenAI provider implementation.

Wraps the OpenAI Chat Completions API using the official SDK. Supports
non-streaming and streaming responses. The handler accepts a model when
the API key environment variable is set and the model name matches one
of its configured patterns.
"""

from typing import Any, Dict, List, Optional

from openai import OpenAI

from agent_factory.errors import ConstructionError, ProviderError
from agent_factory.models.base import (
    ChatResponse,
    ModelClient,
    ModelClientHandler,
    parse_model_patterns,
    read_secret,
)


class OpenAIChatClient(ModelClient):
    """
    OpenAIChatClient wraps any OpenAI-compatible Chat Completions endpoint.
    """

    def __init__(self, provider_name: str, model: str, client: OpenAI) -> None:
        super().__init__(provider_name=provider_name, model=model)
        self.client = client

    def chat(
        self,
        messages: List[Dict[str, Any]],
        stream: bool = False,
    ) -> ChatResponse:
        try:
            if stream:
                # Streaming: accumulate chunks into a single string for simplicity
                chunks: List[str] = []
                stream_resp = self.client.chat.completions.create(
                    model=self.model, messages=messages, stream=True
                )
                for chunk in stream_resp:
                    if not chunk.choices:
                        continue
                    delta = chunk.choices[0].delta
                    if delta.content:
                        chunks.append(delta.content)
                text = "".join(chunks)
                return ChatResponse(text=text, raw=None)
            # Non-streaming
            resp = self.client.chat.completions.create(model=self.model, messages=messages)
            text = resp.choices[0].message.content or ""
            return ChatResponse(text=text, raw=resp)
        except Exception as exc:  # noqa: BLE001
            raise ProviderError(f"{self.provider_name} provider error: {exc}") from exc


class OpenAIHandler(ModelClientHandler):
    """
    OpenAIHandler builds clients for the OpenAI platform.
    """

    default_models = ("gpt-4o", "gpt-4o-mini", "gpt-4.1*", "gpt-4-turbo", "gpt-4", "gpt-3.5-turbo", "o1*", "o3*", "o4-mini*")
    default_api_key_env = "OPENAI_API_KEY"
    default_base_url: Optional[str] = "https://api.openai.com/v1"

    def __init__(
        self,
        name: str,
        api_key_env: Optional[str] = None,
        base_url: Optional[str] = None,
        models: Optional[List[str]] = None,
        api_key: Optional[str] = None,
    ) -> None:
        super().__init__(name=name, models=models)
        self.api_key_env = api_key_env or self.default_api_key_env
        self.base_url = base_url or self.default_base_url
        self.api_key = api_key

    @classmethod
    def from_config(cls, name: str, cfg: Dict[str, Any]) -> "OpenAIHandler":
        return cls(
            name=name,
            api_key_env=cfg.get("api_key_env"),
            base_url=cfg.get("base_url"),
            models=parse_model_patterns(cfg),
            api_key=cfg.get("api_key"),
        )

    def _api_key(self) -> Optional[str]:
        return read_secret(self.api_key_env, self.api_key)

    def is_configured(self) -> bool:
        return bool(self._api_key())

    def create_client(self, model_name: str) -> OpenAIChatClient:
        api_key = self._api_key()
        if not api_key:
            raise ConstructionError(
                f"Environment variable '{self.api_key_env}' is not set for provider '{self.name}'.",
                handler_name=self.name,
            )
        client = OpenAI(api_key=api_key, base_url=self.base_url)
        return OpenAIChatClient(provider_name=self.name, model=model_name, client=client)
