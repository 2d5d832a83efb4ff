"""
Language-model service: prompt in, text out.
"""
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, List, Optional

import aiohttp
import redis
import redis.asyncio as redis_async
from langchain_community.cache import RedisCache
from langchain_core.globals import set_llm_cache
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from langchain_core.output_parsers import JsonOutputParser
from langchain_google_genai import ChatGoogleGenerativeAI
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type
)

from journal_engine.core.config import settings
from journal_engine.core.logging import logger


# Initialize Redis clients for caching and async operations
redis_client = redis.Redis.from_url(settings.REDIS_URL)
redis_async_client = redis_async.Redis.from_url(settings.REDIS_URL)

# Configure LangChain caching
set_llm_cache(RedisCache(redis_client))


class RateLimitExceeded(Exception):
    """The per-minute model quota is used up."""


class RateLimiter:
    """Simple rate limiter using Redis."""

    def __init__(self, key_prefix: str, max_requests: int, time_window: int):
        self.key_prefix = key_prefix
        self.max_requests = max_requests
        self.time_window = time_window

    async def acquire(self) -> bool:
        """
        Try to acquire a rate limit token.
        Returns True if acquired, False if rate limited.
        """
        now = datetime.now(timezone.utc).timestamp()
        key = f"{self.key_prefix}:{int(now / self.time_window)}"

        async with redis_async_client.pipeline() as pipe:
            try:
                # Increment counter and set expiry
                await pipe.incr(key)
                await pipe.expire(key, self.time_window)
                result = await pipe.execute()

                current_count = result[0]
                return current_count <= self.max_requests
            except redis.RedisError as e:
                # If Redis fails, allow the request
                logger.warning(f"Rate limiter unavailable, allowing request: {e}")
                return True


# Create rate limiter for Gemini API
gemini_limiter = RateLimiter(
    key_prefix="gemini_rate_limit",
    max_requests=settings.LLM_RATE_LIMIT_PER_MINUTE,
    time_window=60  # per minute
)


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=4, max=10),
    retry=retry_if_exception_type((aiohttp.ClientError, TimeoutError))
)
@lru_cache()
def get_llm(fallback: bool = False) -> BaseChatModel:
    """
    Create and return a Google Gemini LLM instance with fallback options.
    Uses lru_cache to ensure only one LLM client is created per configuration.

    Args:
        fallback: Whether to use fallback model (if primary fails)

    Returns:
        LangChain chat model instance
    """
    try:
        logger.info("Creating Google Gemini LLM client")
        llm = ChatGoogleGenerativeAI(
            model=settings.LLM_MODEL,
            google_api_key=settings.GOOGLE_API_KEY,
            temperature=settings.LLM_TEMPERATURE,
            top_p=0.95,
            top_k=40,
            max_output_tokens=settings.LLM_MAX_OUTPUT_TOKENS,
            retry_on_failure=True,
        )
        return llm
    except Exception as e:
        if not fallback:
            logger.warning(f"Primary LLM failed, trying fallback: {e}")
            return get_llm(fallback=True)
        logger.exception(f"Failed to create LLM client: {e}")
        raise


def _message_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            part if isinstance(part, str) else part.get("text", "")
            for part in content
        )
    return str(content)


async def generate_text(
    prompt: str,
    *,
    system_prompt: Optional[str] = None,
    temperature: Optional[float] = None,
) -> str:
    """
    Generate a single response from the LLM.

    Args:
        prompt: User-side prompt
        system_prompt: Optional system instructions
        temperature: Optional temperature override

    Returns:
        The generated text
    """
    if not await gemini_limiter.acquire():
        raise RateLimitExceeded("Rate limit exceeded")

    messages: List[BaseMessage] = []
    if system_prompt:
        messages.append(SystemMessage(content=system_prompt))
    messages.append(HumanMessage(content=prompt))

    llm = get_llm()
    if temperature is not None:
        llm = llm.bind(temperature=temperature)

    try:
        response = await llm.ainvoke(messages)
    except Exception as e:
        logger.exception(f"Error generating response: {e}")
        raise

    return _message_text(response.content).strip()


def parse_structured_output(text: str) -> Dict[str, Any]:
    """
    Parse a JSON object out of a model response (fenced or bare).

    Raises:
        OutputParserException: If the text holds no JSON
    """
    return JsonOutputParser().parse(text)
