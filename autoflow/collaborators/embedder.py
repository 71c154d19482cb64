"""Sentence-transformers embeddings for requirements and code units."""

import logging
from typing import Optional, Sequence

import numpy as np

from autoflow.config import get_settings
from autoflow.schema import CodeUnit

logger = logging.getLogger(__name__)


class TextEmbedder:
    """Embedder collaborator: unit-length vectors, so inner product is cosine similarity.

    Queries go through ``embed`` and come back as plain float lists; code
    units are embedded in batches as one float32 matrix for the FAISS index.
    """

    def __init__(self, model_name: Optional[str] = None, batch_size: int = 32):
        self.model_name = model_name or get_settings().embedding_model
        self.batch_size = batch_size
        self._model = None

    @property
    def model(self):
        """The sentence-transformers model, loaded on first use."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            logger.info("Loading embedding model %s", self.model_name)
            self._model = SentenceTransformer(self.model_name)
        return self._model

    @property
    def dimension(self) -> int:
        return self.model.get_sentence_embedding_dimension()

    def embed(self, text: str) -> list[float]:
        """Embed one query text."""
        vector = self.model.encode(text, convert_to_numpy=True, normalize_embeddings=True)
        return np.asarray(vector, dtype=np.float32).tolist()

    def embed_batch(self, texts: Sequence[str]) -> np.ndarray:
        """Embed many texts as an (n_texts x dimension) float32 matrix."""
        vectors = self.model.encode(
            list(texts),
            batch_size=self.batch_size,
            convert_to_numpy=True,
            normalize_embeddings=True,
            show_progress_bar=len(texts) > 100,
        )
        return np.asarray(vectors, dtype=np.float32)

    def embed_units(self, units: Sequence[CodeUnit]) -> np.ndarray:
        """Embed code units by their qualified name, kind and summary."""
        return self.embed_batch([unit.to_embedding_text() for unit in units])
