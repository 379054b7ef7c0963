"""LLM API client utilities."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence
from enum import Enum

from openai import (
    AsyncOpenAI,
    APIConnectionError,
    RateLimitError,
    AuthenticationError,
    BadRequestError,
    APIStatusError,
)

logger = logging.getLogger(__name__)

DEFAULT_MODERATION_MODEL = "omni-moderation-latest"


class APIErrorType(Enum):
    """API 错误类型分类。"""
    RATE_LIMIT = "rate_limit"      # 429 - 可重试
    CONNECTION = "connection"       # 网络问题 - 可重试
    AUTH = "auth"                   # 401 - 不可重试
    BAD_REQUEST = "bad_request"     # 400 - 不可重试
    SERVER = "server"               # 500+ - 可重试
    UNKNOWN = "unknown"


def classify_error(error: Exception) -> tuple[APIErrorType, bool]:
    """
    分类 API 错误并判断是否可重试。

    Returns:
        (错误类型, 是否可重试)
    """
    if isinstance(error, RateLimitError):
        return APIErrorType.RATE_LIMIT, True
    elif isinstance(error, APIConnectionError):
        return APIErrorType.CONNECTION, True
    elif isinstance(error, AuthenticationError):
        return APIErrorType.AUTH, False
    elif isinstance(error, BadRequestError):
        return APIErrorType.BAD_REQUEST, False
    elif isinstance(error, APIStatusError):
        # 5xx 错误可重试
        if hasattr(error, 'status_code') and error.status_code >= 500:
            return APIErrorType.SERVER, True
        return APIErrorType.UNKNOWN, False
    else:
        return APIErrorType.UNKNOWN, False


def retry_delay(error_type: APIErrorType, attempt: int) -> int:
    """Backoff in seconds before retry number ``attempt + 1``."""
    if error_type == APIErrorType.RATE_LIMIT:
        # Rate limit 使用更长的退避时间
        return min(2 ** (attempt + 2), 60)  # 4, 8, 16... max 60
    return 2 ** (attempt + 1)  # 2, 4, 8


async def open_chat_stream(
    client: AsyncOpenAI,
    params: Dict[str, Any],
    max_retries: int = 3,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    is_cancelled: Optional[Callable[[], bool]] = None,
):
    """
    Open a streaming chat completion, retrying transient failures.

    Only opening the stream is retried; an error raised while reading the
    stream belongs to the caller.

    Args:
        client: AsyncOpenAI client instance
        params: Keyword arguments for ``chat.completions.create``
        max_retries: Maximum attempts
        sleep: Awaitable used for backoff
        is_cancelled: Checked after each backoff; when it returns True no
            further attempt is made

    Returns:
        The async chunk stream, or None when cancelled during backoff

    Raises:
        The last API error when it is not retryable or retries run out
    """
    last_error: Optional[Exception] = None

    for attempt in range(max_retries):
        try:
            return await client.chat.completions.create(**params, stream=True)

        except Exception as e:
            last_error = e
            error_type, retryable = classify_error(e)

            if not retryable:
                logger.error(f"Non-retryable error ({error_type.value}): {e}")
                raise

            if attempt + 1 >= max_retries:
                break

            delay = retry_delay(error_type, attempt)
            logger.warning(
                f"Retryable error ({error_type.value}): {e}. "
                f"Retry {attempt + 1}/{max_retries} in {delay}s..."
            )
            await sleep(delay)

            if is_cancelled is not None and is_cancelled():
                logger.info("Request cancelled during retry backoff")
                return None

    logger.error(f"All {max_retries} retries failed. Last error: {last_error}")
    raise last_error


async def moderate(
    client: AsyncOpenAI,
    texts: Sequence[str],
    model: str = DEFAULT_MODERATION_MODEL,
) -> List[bool]:
    """Return a flagged marker per input text."""
    response = await client.moderations.create(model=model, input=list(texts))
    return [bool(result.flagged) for result in response.results]


def create_client(
    api_key: str,
    base_url: Optional[str] = None,
    timeout: float = 60.0
) -> AsyncOpenAI:
    """
    Create an AsyncOpenAI client.

    Args:
        api_key: API key for authentication
        base_url: Custom API base URL, None for the official endpoint
        timeout: Default timeout for requests

    Returns:
        Configured AsyncOpenAI client
    """
    return AsyncOpenAI(
        api_key=api_key,
        base_url=base_url,
        timeout=timeout,
    )
