"""AI analysis of merged IPO records."""

from .analyzer import SYSTEM_PROMPT, IpoAnalyzer, build_prompt, parse_response
from .providers import GeminiProvider, MistralProvider, OpenAIProvider, build_provider

__all__ = [
    "SYSTEM_PROMPT",
    "GeminiProvider",
    "IpoAnalyzer",
    "MistralProvider",
    "OpenAIProvider",
    "build_prompt",
    "build_provider",
    "parse_response",
]
