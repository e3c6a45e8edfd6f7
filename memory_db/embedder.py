"""
Embedding generator for the memory stores.

Wraps a sentence-transformers model. Vectors are L2-normalized, which is
what the containers' cosine vector policy expects; the model's dimension is
the default vector size of new indexes.
"""

from sentence_transformers import SentenceTransformer
from typing import List, Optional
import logging

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = "all-MiniLM-L6-v2"
DEFAULT_BATCH_SIZE = 32


class Embedder:
    """Text -> fixed-size vector, one call per text or per batch of rows."""

    def __init__(
        self,
        model_name: str = DEFAULT_EMBEDDING_MODEL,
        device: Optional[str] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        """
        Args:
            model_name: sentence-transformers model ("all-MiniLM-L6-v2" gives 384 dimensions)
            device: "cpu", "cuda", ...; None lets sentence-transformers pick
            batch_size: Default batch size for embed_batch
        """
        logger.info(f"Loading embedding model: {model_name}")
        try:
            self.model = SentenceTransformer(model_name, device=device)
        except Exception as e:
            logger.error(f"Failed to load embedding model {model_name}: {str(e)}")
            raise
        self.model_name = model_name
        self.batch_size = batch_size
        self._dimension: Optional[int] = None
        logger.info(f"✓ Embedding model loaded successfully ({self.get_embedding_dimension()} dimensions)")

    def embed_text(self, text: str) -> List[float]:
        """Embed one query or record text."""
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: List[str], batch_size: Optional[int] = None) -> List[List[float]]:
        """
        Embed several texts (e.g. every row of an imported workbook).

        Empty or None entries are embedded as the empty string so the
        output stays aligned with the input.
        """
        if not texts:
            return []

        vectors = self.model.encode(
            [str(text) if text else "" for text in texts],
            batch_size=batch_size or self.batch_size,
            convert_to_numpy=True,
            normalize_embeddings=True,
            show_progress_bar=False
        )
        logger.debug(f"Embedded {len(texts)} texts with {self.model_name}")
        return vectors.tolist()

    def get_embedding_dimension(self) -> int:
        if self._dimension is None:
            self._dimension = int(self.model.get_sentence_embedding_dimension())
        return self._dimension
