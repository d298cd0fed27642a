"""
Configuration models and loading.
"""

import json
from pathlib import Path
from typing import Literal

import yaml

from pydantic import BaseModel, Field


class Config(BaseModel):
    """Base configuration class."""

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    @classmethod
    def from_file(cls, path: str | Path) -> "Config":
        """Load configuration from file (YAML or JSON)."""
        path = Path(path)

        if path.suffix in (".yaml", ".yml"):
            return cls.from_yaml(path)
        elif path.suffix == ".json":
            with open(path) as f:
                data = json.load(f)
            return cls(**data)
        else:
            raise ValueError(f"Unsupported config file format: {path.suffix}")


class EmbeddingConfig(BaseModel):
    """Embedding service settings."""
    provider: Literal["ollama", "local"] = "ollama"
    base_url: str = "http://127.0.0.1:11434"
    model: str = "all-minilm"
    timeout: float = 30.0


class BackendConfig(BaseModel):
    """One generation backend in the fallback chain."""
    kind: Literal["ollama", "openai"] = "ollama"
    base_url: str = "http://127.0.0.1:11434"
    api_key: str | None = None
    # Model name sent upstream; None sends the requested model
    served_model: str | None = None
    structured: bool = False


def _default_backends() -> list[BackendConfig]:
    return [
        BackendConfig(
            kind="openai",
            base_url="http://127.0.0.1:1234/v1",
            api_key="no-key-needed",
            served_model="loaded-model",
        ),
        BackendConfig(kind="ollama", base_url="http://127.0.0.1:11434"),
    ]


class GenerationConfig(BaseModel):
    """Language model settings."""
    model: str = "qwen2:0.5b"
    fallback_model: str | None = None
    timeout: float = 120.0
    temperature: float = 0.7
    max_tokens: int = 1000
    vision_markers: list[str] = ["llava", "bakllava", "moondream"]
    backends: list[BackendConfig] = Field(default_factory=_default_backends)
    system_prompt: str | None = None


class RetrievalSettings(BaseModel):
    """Retrieval and gating constants."""
    chunk_size: int = Field(default=300, gt=0)
    top_k: int = Field(default=4, ge=1)
    diversity_threshold: float = 0.35
    fallback_threshold: float = 0.3
    max_context_chars: int = Field(default=2500, gt=0)
    min_confidence: int = Field(default=30, ge=0, le=100)


class AssistantConfig(Config):
    """Top-level assistant configuration."""
    table_path: str = "embedding_db/embeddings.json"
    log_level: str = "INFO"
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)


def load_config(path: str | Path = "ragdesk.yaml") -> AssistantConfig:
    """
    Load assistant configuration from file.

    Args:
        path: Path to config file

    Returns:
        AssistantConfig instance, defaults if the file does not exist
    """
    path = Path(path)

    if not path.exists():
        return AssistantConfig()

    return AssistantConfig.from_file(path)
