"""
Test configuration and fixtures.
"""

import pytest

from helpers import VocabularyEmbedding


@pytest.fixture
def vocabulary_embedding():
    return VocabularyEmbedding()


@pytest.fixture
def table_path(tmp_path):
    return tmp_path / "embedding_db" / "embeddings.json"
