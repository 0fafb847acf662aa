from extractor.services.llm.base import LLMProvider, LLMProviderError, LLMResponse
from extractor.services.llm.openai_provider import OpenAIProvider

__all__ = ["LLMProvider", "LLMProviderError", "LLMResponse", "OpenAIProvider"]
