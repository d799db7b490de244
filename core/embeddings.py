"""
embeddings.py
--------------
Optional word-embedding capability for the categorizer's centroid path.

The categorizer only needs an object with `distance(word_a, word_b) -> float`
(cosine distance, 0 = identical). SpacyEmbeddingProvider supplies one from a
spaCy model with word vectors (install: python -m spacy download en_core_web_md).

When spaCy or the model is missing, load_embedding_provider() returns None
and the categorizer simply skips the embedding path.
"""

import logging
from typing import Optional, Protocol

import numpy as np

from config.config_loader import get_categorizer_config

logger = logging.getLogger(__name__)

# Returned when either word has no vector; similarity 1 - 2.0 = -1.0
MAX_COSINE_DISTANCE = 2.0


class EmbeddingProvider(Protocol):
    def distance(self, word_a: str, word_b: str) -> float:
        ...


class SpacyEmbeddingProvider:
    """Cosine distance between spaCy word vectors."""

    def __init__(self, nlp):
        self.nlp = nlp
        self._cache: dict[str, Optional[np.ndarray]] = {}

    def _vector(self, word: str) -> Optional[np.ndarray]:
        if word not in self._cache:
            lexeme = self.nlp.vocab[word]
            self._cache[word] = lexeme.vector if lexeme.has_vector and lexeme.vector_norm > 0 else None
        return self._cache[word]

    def distance(self, word_a: str, word_b: str) -> float:
        vec_a = self._vector(word_a)
        vec_b = self._vector(word_b)
        if vec_a is None or vec_b is None:
            return MAX_COSINE_DISTANCE

        similarity = float(np.dot(vec_a, vec_b) / (np.linalg.norm(vec_a) * np.linalg.norm(vec_b)))
        return 1.0 - similarity


def load_embedding_provider(model_name: str | None = None) -> Optional[SpacyEmbeddingProvider]:
    """
    Loads the configured spaCy model.

    Returns:
        A provider, or None if spaCy or the model is not installed.
    """
    model_name = model_name or get_categorizer_config()["embedding"]["spacy_model"]

    try:
        import spacy
    except ImportError:
        logger.info("spaCy not installed. Embedding centroid matching disabled.")
        return None

    try:
        nlp = spacy.load(model_name)
    except OSError:
        logger.warning(
            f"spaCy model '{model_name}' not found. Install with: python -m spacy download {model_name}"
        )
        return None

    return SpacyEmbeddingProvider(nlp)
