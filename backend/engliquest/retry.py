"""
Bounded retry with exponential backoff for flaky async calls.

Gemini regularly returns transient errors or unparseable output, so every
generation attempt is wrapped here. Attempt n (0-indexed) that fails waits
``base_delay * 2 ** n`` seconds before the next one; there is no jitter.
After ``max_retries`` retries the last error is re-raised.
"""

from __future__ import annotations

import asyncio
import logging
from functools import wraps
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def exponential_backoff(base_delay: float) -> Callable[[int], float]:
	def delay_for(attempt: int) -> float:
		return base_delay * (2 ** attempt)
	return delay_for


async def with_retry(
	operation: Callable[[], Awaitable[T]],
	max_retries: int = 3,
	base_delay: float = 1.0,
	*,
	backoff: Optional[Callable[[int], float]] = None,
	sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
	"""Run ``operation`` up to ``max_retries + 1`` times.

	Args:
		operation: zero-argument coroutine function, called fresh per attempt
		max_retries: retries after the first attempt
		base_delay: seconds, used by the default exponential backoff
		backoff: maps attempt index to delay; overrides ``base_delay``
		sleep: injectable for tests
	"""
	delay_for = backoff or exponential_backoff(base_delay)
	last_error: Optional[BaseException] = None
	for attempt in range(max_retries + 1):
		try:
			return await operation()
		except Exception as exc:
			last_error = exc
			if attempt >= max_retries:
				logger.error("Attempt %d/%d failed, giving up: %s", attempt + 1, max_retries + 1, exc)
				raise
			delay = delay_for(attempt)
			logger.warning("Attempt %d/%d failed: %s. Retrying in %.2fs", attempt + 1, max_retries + 1, exc, delay)
			await sleep(delay)
	# max_retries < 0 never enters the loop
	raise RuntimeError("with_retry called with a negative retry budget") from last_error


def retrying(max_retries: int = 3, base_delay: float = 1.0):
	"""Decorator form of :func:`with_retry` for coroutine functions."""
	def decorator(func):
		@wraps(func)
		async def wrapper(*args, **kwargs):
			return await with_retry(lambda: func(*args, **kwargs), max_retries, base_delay)
		return wrapper
	return decorator
