"""Source document loading."""

import logging
from pathlib import Path

from .document import Document

logger = logging.getLogger(__name__)


def load_documents(directory: str | Path) -> list[Document]:
    """Read every ``.txt`` file in a directory.

    Files are read as UTF-8 in name order. Empty files are skipped.

    Args:
        directory: Directory holding the source documents

    Returns:
        Documents named after their filenames

    Raises:
        FileNotFoundError: If the directory does not exist
        ValueError: If no non-empty ``.txt`` file is found
    """
    directory = Path(directory)

    if not directory.is_dir():
        raise FileNotFoundError(f"Source documents directory not found: {directory}")

    documents = []
    for path in sorted(directory.glob("*.txt")):
        text = path.read_text(encoding="utf-8")
        if not text.strip():
            logger.warning(f"{path.name} is empty, skipping")
            continue

        documents.append(Document(name=path.name, text=text))
        logger.debug(f"Read {path.name} ({len(text)} characters)")

    if not documents:
        raise ValueError(f"No .txt files found in {directory}")

    logger.info(f"Loaded {len(documents)} source documents from {directory}")
    return documents
