"""OpenAI embedding client."""

import logging
import os
from typing import List, Optional

import numpy as np
import openai
from openai import AsyncOpenAI

from utils.errors import ExternalServiceError
from utils.retry import RetryPolicy, is_retryable_error

logger = logging.getLogger(__name__)


class EmbeddingClient:
    """Embeds text with the OpenAI embeddings API."""

    EMBEDDING_MODEL = "text-embedding-3-small"
    BATCH_SIZE = 100

    def __init__(
        self,
        openai_api_key: Optional[str] = None,
        model: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: float = 30.0
    ):
        """
        Initialize embedding client.

        Args:
            openai_api_key: OpenAI API key. If not provided, uses OPENAI_API_KEY env var.
            model: Embedding model (default: text-embedding-3-small)
            retry_policy: Retry policy for embedding requests
            timeout: Per-request timeout in seconds
        """
        self.api_key = openai_api_key or os.environ.get("OPENAI_API_KEY")
        self.model = model or self.EMBEDDING_MODEL
        self.retry_policy = retry_policy or RetryPolicy()
        self.client: Optional[AsyncOpenAI] = None

        if self.api_key:
            self.client = AsyncOpenAI(api_key=self.api_key, timeout=timeout, max_retries=0)
            logger.info(f"OpenAI client initialized for embeddings ({self.model})")
        else:
            logger.warning("No OpenAI API key provided. Embeddings will be disabled.")

    def is_available(self) -> bool:
        return self.client is not None

    async def _embed_batch(self, batch: List[str]) -> List[np.ndarray]:
        try:
            response = await self.client.embeddings.create(model=self.model, input=batch)
        except openai.OpenAIError as e:
            retryable = isinstance(e, (openai.RateLimitError, openai.APITimeoutError)) or is_retryable_error(e)
            raise ExternalServiceError("embeddings", str(e), retryable=retryable) from e
        return [np.array(item.embedding, dtype=np.float32) for item in response.data]

    async def embed(self, texts: List[str]) -> List[np.ndarray]:
        """Embed a list of texts, batching requests."""
        if not self.client:
            raise ExternalServiceError("embeddings", "OpenAI client not initialized")

        all_embeddings: List[np.ndarray] = []
        for i in range(0, len(texts), self.BATCH_SIZE):
            batch = texts[i:i + self.BATCH_SIZE]
            all_embeddings.extend(await self.retry_policy.run(self._embed_batch, batch))
            if i + self.BATCH_SIZE < len(texts):
                logger.info(f"Embedded {i + self.BATCH_SIZE}/{len(texts)} documents...")
        return all_embeddings

    async def embed_query(self, query: str) -> np.ndarray:
        """Embed a single search query."""
        return (await self.embed([query]))[0]
