"""
Anthropic provider implementation.

This provider wraps the Claude API via the official `anthropic` SDK.
It translates OpenAI-style chat messages into the format expected by
Anthropic's Claude models and collects their responses into a string.
"""

from typing import Any, Dict, List, Optional

import anthropic

from agent_factory.errors import ConstructionError, ProviderError
from agent_factory.models.base import (
    ChatResponse,
    ModelClient,
    ModelClientHandler,
    parse_model_patterns,
    read_secret,
)


class AnthropicChatClient(ModelClient):
    """
    AnthropicChatClient wraps the Claude messages API via the official anthropic SDK.
    """

    def __init__(
        self,
        provider_name: str,
        model: str,
        client: anthropic.Anthropic,
        max_tokens: int = 2048,
    ) -> None:
        super().__init__(provider_name=provider_name, model=model)
        self.client = client
        self.max_tokens = max_tokens

    def chat(
        self,
        messages: List[Dict[str, Any]],
        stream: bool = False,
    ) -> ChatResponse:
        # Convert OpenAI chat format to Anthropic format
        system_prompt = ""
        converted: List[Dict[str, Any]] = []
        for msg in messages:
            role = msg.get("role")
            content = msg.get("content", "")
            if role == "system":
                system_prompt += content + "\n"
            elif role == "assistant":
                converted.append({"role": "assistant", "content": content})
            else:
                converted.append({"role": "user", "content": content})
        try:
            if stream:
                chunks: List[str] = []
                stream_resp = self.client.messages.create(
                    model=self.model,
                    system=system_prompt,
                    messages=converted,
                    max_tokens=self.max_tokens,
                    stream=True,
                )
                for event in stream_resp:
                    if event.type == "content_block_delta":
                        text_part = getattr(event.delta, "text", None)
                        if text_part:
                            chunks.append(text_part)
                text = "".join(chunks)
                return ChatResponse(text=text, raw=None)
            resp = self.client.messages.create(
                model=self.model,
                system=system_prompt,
                messages=converted,
                max_tokens=self.max_tokens,
                stream=False,
            )
            parts = []
            for block in resp.content:
                if getattr(block, "type", "") == "text":
                    parts.append(block.text)
            text = "\n".join(parts)
            return ChatResponse(text=text, raw=resp)
        except Exception as exc:  # noqa: BLE001
            raise ProviderError(f"Anthropic provider error: {exc}") from exc


class AnthropicHandler(ModelClientHandler):
    """
    AnthropicHandler accepts Claude model names when an API key is available.
    """

    default_models = ("claude-*",)

    def __init__(
        self,
        name: str,
        api_key_env: str = "ANTHROPIC_API_KEY",
        models: Optional[List[str]] = None,
        max_tokens: int = 2048,
        api_key: Optional[str] = None,
    ) -> None:
        super().__init__(name=name, models=models)
        self.api_key_env = api_key_env
        self.max_tokens = max_tokens
        self.api_key = api_key

    @classmethod
    def from_config(cls, name: str, cfg: Dict[str, Any]) -> "AnthropicHandler":
        return cls(
            name=name,
            api_key_env=cfg.get("api_key_env", "ANTHROPIC_API_KEY"),
            models=parse_model_patterns(cfg),
            max_tokens=int(cfg.get("max_tokens", 2048)),
            api_key=cfg.get("api_key"),
        )

    def is_configured(self) -> bool:
        return bool(read_secret(self.api_key_env, self.api_key))

    def create_client(self, model_name: str) -> AnthropicChatClient:
        api_key = read_secret(self.api_key_env, self.api_key)
        if not api_key:
            raise ConstructionError(
                f"Environment variable '{self.api_key_env}' is not set for provider '{self.name}'.",
                handler_name=self.name,
            )
        client = anthropic.Anthropic(api_key=api_key)
        return AnthropicChatClient(
            provider_name=self.name,
            model=model_name,
            client=client,
            max_tokens=self.max_tokens,
        )
