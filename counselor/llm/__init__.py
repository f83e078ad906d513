# counselor/llm/__init__.py
from .client import LLMClient, OpenAILLMClient, LLMConfigurationError

__all__ = ["LLMClient", "OpenAILLMClient", "LLMConfigurationError"]
