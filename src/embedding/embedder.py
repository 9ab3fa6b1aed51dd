# src/embedding/embedder.py
from openai import OpenAI, RateLimitError
from typing import List
from src.config.settings import Settings
from concurrent.futures import ThreadPoolExecutor, as_completed
import time
import logging

logger = logging.getLogger(__name__)


class Embedder:
    """OpenAI embedding client."""

    def __init__(self, config: Settings, client: OpenAI = None):
        self.config = config
        self.client = client or OpenAI(
            api_key=config.openai_api_key,
            base_url=config.openai_base_url,
            timeout=config.embedding_timeout,
            max_retries=0,
        )
        self.model = config.openai_embedding_model
        self.dimension = config.embedding_dimension
        self.max_workers = config.worker_count

    def embed_texts(self, texts: List[str], batch_size: int = 100) -> List[List[float]]:
        """
        Generate embeddings for a list of texts using multithreading.

        Args:
            texts: List of text strings to embed
            batch_size: Number of texts to process per API call (default: 100)

        Returns:
            List of embedding vectors in the same order as input texts
        """
        if not texts:
            return []

        # If texts fit in a single batch, process directly (no threading overhead)
        if len(texts) <= batch_size:
            return self._embed_batch(texts)

        batches = []
        for i in range(0, len(texts), batch_size):
            batches.append((i, texts[i:i + batch_size]))

        results_dict = {}

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_batch = {
                executor.submit(self._embed_batch, batch): batch_idx
                for batch_idx, batch in batches
            }

            for future in as_completed(future_to_batch):
                batch_idx = future_to_batch[future]
                try:
                    results_dict[batch_idx] = future.result()
                except Exception as e:
                    raise RuntimeError(f"Error processing embedding batch starting at index {batch_idx}: {e}") from e

        # Reconstruct results in input order
        all_embeddings = []
        for batch_idx in sorted(results_dict.keys()):
            all_embeddings.extend(results_dict[batch_idx])

        return all_embeddings

    def _embed_batch(self, batch: List[str]) -> List[List[float]]:
        """
        Generate embeddings for a batch of texts.
        Uses exponential backoff retry logic for rate limit errors.

        Args:
            batch: List of text strings to embed

        Returns:
            List of embedding vectors
        """
        max_retries = 5
        base_delay = 1.0

        for attempt in range(max_retries):
            try:
                response = self.client.embeddings.create(
                    model=self.model,
                    input=batch
                )
                break
            except RateLimitError:
                if attempt == max_retries - 1:
                    raise

                delay = base_delay * (2 ** attempt)
                logger.warning(f"Rate limit hit on embedding batch. Retrying in {delay}s... (attempt {attempt + 1}/{max_retries})")
                time.sleep(delay)

        vectors = [item.embedding for item in response.data]
        if len(vectors) != len(batch):
            raise ValueError(f"Embedding API returned {len(vectors)} vectors for {len(batch)} texts")
        for vector in vectors:
            if len(vector) != self.dimension:
                raise ValueError(f"Expected {self.dimension}-dimensional embedding, got {len(vector)}")
        return vectors

    def embed_single(self, text: str) -> List[float]:
        """
        Generate embedding for a single text.

        Args:
            text: Text string to embed

        Returns:
            Embedding vector
        """
        return self._embed_batch([text])[0]
