"""Configuration and logging utilities."""

from ragdesk.utils.config import (
    AssistantConfig,
    BackendConfig,
    EmbeddingConfig,
    GenerationConfig,
    RetrievalSettings,
    load_config,
)
from ragdesk.utils.logging import get_logger, log_duration, set_log_level

__all__ = [
    "AssistantConfig",
    "BackendConfig",
    "EmbeddingConfig",
    "GenerationConfig",
    "RetrievalSettings",
    "load_config",
    "get_logger",
    "log_duration",
    "set_log_level",
]
