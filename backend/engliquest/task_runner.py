from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProgressCallback = Callable[[int, int], None]


async def run_with_concurrency_limit(
	tasks: Sequence[Callable[[], Awaitable[T]]],
	limit: int,
	on_progress: Optional[ProgressCallback] = None,
	*,
	fail_fast: bool = True,
) -> List[T]:
	"""Run zero-argument coroutine functions ``limit`` at a time.

	Tasks go out in fixed windows; a window settles completely before the
	next one starts, so at most ``limit`` calls are in flight. Results come
	back in input order. ``on_progress(completed, total)`` fires once per
	finished task, success or failure.

	With ``fail_fast`` the first failure of a window is raised once that
	window settles and later windows never start. Otherwise failed slots are
	logged and left out of the returned list.
	"""
	if limit < 1:
		raise ValueError("limit must be at least 1")
	total = len(tasks)
	failed = object()
	results: List[object] = [failed] * total
	completed = 0

	async def _track(task: Callable[[], Awaitable[T]]) -> T:
		nonlocal completed
		try:
			return await task()
		finally:
			completed += 1
			if on_progress is not None:
				on_progress(completed, total)

	for start in range(0, total, limit):
		window = tasks[start:start + limit]
		settled = await asyncio.gather(*(_track(task) for task in window), return_exceptions=True)
		first_error: Optional[BaseException] = None
		for offset, outcome in enumerate(settled):
			index = start + offset
			if isinstance(outcome, BaseException):
				logger.error("Task %d failed: %s", index, outcome)
				if first_error is None:
					first_error = outcome
				continue
			results[index] = outcome
		if first_error is not None and fail_fast:
			raise first_error

	return [r for r in results if r is not failed]  # type: ignore[misc]
