"""
Generation backends.
"""

from ragdesk.providers.base import HTTPGenerationBackend
from ragdesk.providers.ollama import OllamaChatBackend
from ragdesk.providers.openai import OpenAICompatibleBackend

__all__ = [
    "HTTPGenerationBackend",
    "OllamaChatBackend",
    "OpenAICompatibleBackend",
]
