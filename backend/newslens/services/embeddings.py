"""
Embedding service for topic similarity matching.
Used by the canonicalizer to find an existing canonical topic for a new surface.
"""
import asyncio
import hashlib
from typing import Optional

import numpy as np
import structlog
from numpy.typing import NDArray
from tenacity import retry, stop_after_attempt, wait_exponential

from newslens.config import Settings, get_settings
from newslens.core.errors import TransientExternalError
from newslens.core.text import normalize_surface, tokenize

logger = structlog.get_logger(__name__)


class EmbeddingService:
    """
    Service for computing and comparing text embeddings.

    Supports multiple backends:
    1. OpenAI text-embedding-3 (paid, higher quality)
    2. Local sentence-transformers (free, runs on CPU)
    3. Hashed bag of tokens and character trigrams (offline, deterministic)

    Embeddings are normalized vectors that capture semantic meaning.
    Similar texts have similar embeddings (high cosine similarity).
    Any backend failure surfaces as TransientExternalError.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._model = None
        self._openai_client = None
        self._dimension = self.settings.embedding_dimension
        self._backend: Optional[str] = None
        self._init_lock = asyncio.Lock()

    @property
    def backend(self) -> str:
        """Configured backend with `auto` resolved."""
        backend = self.settings.embedding_backend
        if backend == "auto":
            return "openai" if self.settings.openai_api_key else "hash"
        return backend

    @property
    def dimension(self) -> int:
        return self._dimension

    async def initialize(self):
        """Initialize the embedding backend (lazy loading)."""
        async with self._init_lock:
            if self._backend is not None:
                return
            backend = self.backend
            if backend == "openai":
                await self._init_openai()
            elif backend == "local":
                await self._init_local()
            self._backend = backend
            logger.info("embeddings.initialized", backend=backend, dimension=self._dimension)

    async def _init_openai(self):
        """Initialize OpenAI embeddings client."""
        if not self.settings.openai_api_key:
            raise TransientExternalError("OpenAI embedding backend selected but OPENAI_API_KEY is not set")

        from openai import AsyncOpenAI

        self._openai_client = AsyncOpenAI(
            api_key=self.settings.openai_api_key,
            timeout=self.settings.llm_timeout_seconds,
        )
        self._dimension = 1536  # text-embedding-3-small dimension

    async def _init_local(self):
        """Initialize local sentence-transformers model (the `local` extra)."""
        from sentence_transformers import SentenceTransformer

        # Load model in a thread pool to avoid blocking
        loop = asyncio.get_running_loop()
        self._model = await loop.run_in_executor(
            None,
            lambda: SentenceTransformer(self.settings.embedding_model)
        )
        self._dimension = self._model.get_sentence_embedding_dimension()

    async def embed_text(self, text: str) -> NDArray[np.float32]:
        """
        Compute embedding for a single text.

        Returns:
            Normalized embedding vector
        """
        return (await self.embed_texts([text]))[0]

    async def embed_texts(self, texts: list[str]) -> NDArray[np.float32]:
        """
        Compute embeddings for multiple texts (batched for efficiency).

        Returns:
            Array of shape (n_texts, embedding_dim)
        """
        if self._backend is None:
            try:
                await self.initialize()
            except TransientExternalError:
                raise
            except Exception as e:
                raise TransientExternalError(f"embedding backend unavailable: {e}") from e

        if not texts:
            return np.array([], dtype=np.float32).reshape(0, self._dimension)

        if self._backend == "hash":
            return np.array([self._embed_hash(t) for t in texts], dtype=np.float32)

        try:
            if self._backend == "openai":
                embeddings = await asyncio.wait_for(
                    self._embed_openai_batch(texts),
                    timeout=self.settings.llm_timeout_seconds * self.settings.llm_max_attempts,
                )
            else:
                embeddings = await self._embed_local_batch(texts)
        except Exception as e:
            raise TransientExternalError(f"{self._backend} embedding failed: {e}") from e

        return self._normalize_batch(embeddings)

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=1, max=5), reraise=True)
    async def _embed_openai_batch(self, texts: list[str]) -> NDArray[np.float32]:
        """Batch embed using OpenAI API."""
        # OpenAI supports up to 2048 texts per request
        batch_size = 100
        all_embeddings = []

        for i in range(0, len(texts), batch_size):
            batch = texts[i:i + batch_size]
            response = await self._openai_client.embeddings.create(
                model=self.settings.openai_embedding_model,
                input=batch,
            )
            all_embeddings.extend(np.array(d.embedding, dtype=np.float32) for d in response.data)

        return np.array(all_embeddings, dtype=np.float32)

    async def _embed_local_batch(self, texts: list[str]) -> NDArray[np.float32]:
        """Batch embed using local sentence-transformers."""
        loop = asyncio.get_running_loop()
        embeddings = await loop.run_in_executor(
            None,
            lambda: self._model.encode(texts, convert_to_numpy=True, show_progress_bar=False)
        )
        return embeddings.astype(np.float32)

    def _embed_hash(self, text: str) -> NDArray[np.float32]:
        """
        Deterministic embedding from hashed tokens and character trigrams.

        Texts sharing words or spelling fragments land close together, which
        is enough for offline development and tests.
        """
        embedding = np.zeros(self._dimension, dtype=np.float32)
        normalized = normalize_surface(text)

        features = list(tokenize(normalized))
        padded = f" {normalized} "
        features.extend(padded[i:i + 3] for i in range(max(len(padded) - 2, 0)))

        for feature in features:
            digest = hashlib.sha256(feature.encode("utf-8")).digest()
            index = int.from_bytes(digest[:4], "little") % self._dimension
            sign = 1.0 if digest[4] & 1 else -1.0
            embedding[index] += sign

        return self._normalize(embedding)

    def _normalize(self, embedding: NDArray[np.float32]) -> NDArray[np.float32]:
        """Normalize embedding to unit length."""
        norm = np.linalg.norm(embedding)
        if norm > 0:
            return embedding / norm
        return embedding

    def _normalize_batch(self, embeddings: NDArray[np.float32]) -> NDArray[np.float32]:
        """Normalize batch of embeddings."""
        norms = np.linalg.norm(embeddings, axis=1, keepdims=True)
        norms = np.where(norms > 0, norms, 1)  # Avoid division by zero
        return embeddings / norms

    @staticmethod
    def cosine_similarity(a: NDArray[np.float32], b: NDArray[np.float32]) -> float:
        """
        Compute cosine similarity between two embeddings.

        For normalized vectors, this is just the dot product.
        Returns value in [-1, 1], where 1 = identical, 0 = orthogonal, -1 = opposite.
        """
        return float(np.dot(a, b))
