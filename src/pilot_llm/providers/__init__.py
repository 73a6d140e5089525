"""Provider gateways."""
from pilot_llm.providers.anthropic import AnthropicGateway
from pilot_llm.providers.gemini import GeminiGateway
from pilot_llm.providers.openai import OpenAIGateway

__all__ = ["AnthropicGateway", "GeminiGateway", "OpenAIGateway"]
