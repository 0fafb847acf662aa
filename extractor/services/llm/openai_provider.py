from typing import List, Optional

import httpx

from extractor.logging_config import get_logger
from extractor.services.llm.base import LLMProvider, LLMProviderError, LLMResponse

logger = get_logger("llm.openai")


class OpenAIProvider(LLMProvider):
    """OpenAI chat completions provider."""

    def __init__(
        self,
        api_key: str,
        default_model: str = "gpt-4o-mini",
        org_id: Optional[str] = None,
        base_url: str = "https://api.openai.com/v1/chat/completions",
        timeout_seconds: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.org_id = org_id
        self.base_url = base_url
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.1,
        max_tokens: int = 2000,
        json_mode: bool = True,
    ) -> LLMResponse:
        """Generate a completion. Raises LLMProviderError on non-200 answers."""

        model = model or self.default_model

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if self.org_id:
            headers["OpenAI-Organization"] = self.org_id

        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        logger.debug(f"OpenAI request: model={model}, messages_count={len(messages)}")

        with httpx.Client(timeout=self.timeout_seconds, transport=self.transport) as client:
            response = client.post(self.base_url, headers=headers, json=payload)

        logger.debug(f"OpenAI response status: {response.status_code}")

        if response.status_code != 200:
            logger.error(f"OpenAI error: {response.text[:500]}")
            raise LLMProviderError(response.status_code, response.text)

        try:
            data = response.json()
        except ValueError:
            logger.error(f"OpenAI returned a non-JSON body: {response.text[:500]}")
            raise LLMProviderError(response.status_code, response.text)
        if not isinstance(data, dict):
            raise LLMProviderError(response.status_code, response.text)

        content = ""
        if data.get("choices"):
            message = data["choices"][0].get("message") or {}
            content = message.get("content") or ""
        logger.debug(f"OpenAI content: {content[:100] if content else 'EMPTY'}")

        return LLMResponse(
            content=content,
            model=data.get("model", model),
            usage=data.get("usage"),
        )
