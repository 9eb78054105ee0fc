from linedesk.services.llm.base import LLMProvider, LLMResponse
from linedesk.services.llm.openai_provider import OpenAIProvider

__all__ = ["LLMProvider", "LLMResponse", "OpenAIProvider"]
