"""
Embeddings service: text to fixed-length vector.
"""
import asyncio
import hashlib
import json
import warnings
from datetime import timedelta
from functools import lru_cache
from typing import List, Optional

import torch
import redis.asyncio as redis
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type
)

from langchain_community.embeddings import HuggingFaceEmbeddings
from langchain_core.embeddings import Embeddings

from journal_engine.core.config import settings
from journal_engine.core.logging import logger

# Suppress LangChain deprecation warnings
warnings.filterwarnings("ignore", category=DeprecationWarning, module="langchain")

# Initialize Redis client
redis_client = redis.Redis.from_url(settings.REDIS_URL)


class CachedEmbeddings:
    """Wrapper for an embeddings model with Redis caching."""

    namespace = "embeddings_cache:"

    def __init__(self, embeddings: Embeddings, ttl_days: int = 7):
        self.embeddings = embeddings
        self.ttl_days = ttl_days

    def _get_cache_key(self, text: str) -> str:
        """Generate a cache key for the text."""
        # Use hash to avoid key length issues
        text_hash = hashlib.md5(text.encode()).hexdigest()
        return f"{self.namespace}{text_hash}"

    async def _get_from_cache(self, text: str) -> Optional[List[float]]:
        """Get embedding from cache if available."""
        try:
            cached_data = await redis_client.get(self._get_cache_key(text))
            if cached_data:
                return json.loads(cached_data)
            return None
        except redis.RedisError as e:
            logger.warning(f"Error getting from cache: {e}")
            return None

    async def _save_to_cache(self, text: str, embedding: List[float]) -> None:
        """Save embedding to cache."""
        try:
            await redis_client.set(
                self._get_cache_key(text),
                json.dumps(embedding),
                ex=int(timedelta(days=self.ttl_days).total_seconds())
            )
        except redis.RedisError as e:
            logger.warning(f"Error saving to cache: {e}")

    async def embed_query(self, text: str) -> List[float]:
        """Embed a single text with caching."""
        cached = await self._get_from_cache(text)
        if cached is not None:
            logger.debug("Cache hit for query")
            return cached

        # Model inference is synchronous; keep it off the event loop
        loop = asyncio.get_running_loop()
        embedding = await loop.run_in_executor(None, self.embeddings.embed_query, text)

        await self._save_to_cache(text, embedding)
        logger.debug("Generated and cached new embedding")
        return embedding


@lru_cache()
def get_device() -> str:
    """Get the appropriate device (CPU/CUDA) for the embedding model."""
    if torch.cuda.is_available() and settings.USE_GPU:
        logger.info("Using CUDA device for embeddings.")
        return "cuda"
    logger.info("Using CPU device for embeddings.")
    return "cpu"


def load_model(model_name: str, model_kwargs: dict) -> HuggingFaceEmbeddings:
    """
    Load a sentence-transformers model and check its vector size.

    Raises:
        ValueError: If the model does not produce EMBEDDING_DIMENSIONS vectors
    """
    embeddings = HuggingFaceEmbeddings(
        model_name=model_name,
        model_kwargs=model_kwargs,
        encode_kwargs={'normalize_embeddings': True},
    )
    dimensions = embeddings.client.get_sentence_embedding_dimension()
    if dimensions != settings.EMBEDDING_DIMENSIONS:
        raise ValueError(
            f"{model_name} produces {dimensions}-dimensional vectors, "
            f"the embeddings column holds {settings.EMBEDDING_DIMENSIONS}"
        )
    return embeddings


@retry(
    stop=stop_after_attempt(settings.EMBEDDING_RETRY_ATTEMPTS),
    wait=wait_exponential(
        multiplier=settings.EMBEDDING_RETRY_MULTIPLIER,
        min=settings.EMBEDDING_RETRY_MIN_WAIT,
        max=settings.EMBEDDING_RETRY_MAX_WAIT
    ),
    retry=retry_if_exception_type((OSError, RuntimeError))
)
@lru_cache()
def get_embeddings(use_fallback: bool = False) -> CachedEmbeddings:
    """
    Create and return an embeddings model instance with caching.
    Uses lru_cache to ensure only one model is loaded.
    Prioritizes the primary model, then the local fallback model.
    """
    logger.info(f"Attempting to load embeddings model. Fallback: {use_fallback}")
    model_kwargs = {"device": get_device()}

    try:
        if not use_fallback and settings.PRIMARY_EMBEDDING_MODEL_NAME:
            logger.info(f"Loading primary embedding model: {settings.PRIMARY_EMBEDDING_MODEL_NAME}")
            base_embeddings = load_model(settings.PRIMARY_EMBEDDING_MODEL_NAME, model_kwargs)
        elif settings.FALLBACK_EMBEDDING_MODEL_NAME:
            logger.info(f"Loading local fallback model: {settings.FALLBACK_EMBEDDING_MODEL_NAME}")
            base_embeddings = load_model(settings.FALLBACK_EMBEDDING_MODEL_NAME, model_kwargs)
        else:
            logger.error("No embedding models configured.")
            raise ValueError("Embedding model configuration error.")

        return CachedEmbeddings(base_embeddings)

    except Exception as e:
        logger.exception(f"Failed to load embedding model (fallback={use_fallback}): {e}")
        if not use_fallback:
            logger.warning("Attempting to load embeddings with full fallback sequence.")
            return get_embeddings(use_fallback=True)
        raise


async def embed_query(query: str) -> List[float]:
    """
    Embed a single text using the embedding model.
    """
    if not query:
        raise ValueError("Query text cannot be empty")

    embeddings_service = get_embeddings()
    try:
        return await embeddings_service.embed_query(query)
    except Exception as e:
        logger.exception(f"Error embedding query: {e}")
        raise
