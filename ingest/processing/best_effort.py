"""Bounded group of non-critical writes whose failures are reported, not raised."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ..core.models import SubRecordResult
from ..shared.text_utils import format_error

logger = logging.getLogger(__name__)


class BestEffortGroup:
    """Runs queued operations concurrently, at most `limit` at a time.

    Every operation yields a SubRecordResult; an exception inside one
    operation never affects the others or the caller.
    """

    def __init__(self, limit: int):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self._semaphore = asyncio.Semaphore(limit)
        self._operations: list[tuple[str, Callable[[], Awaitable[Any]]]] = []

    def add(self, endpoint: str, operation: Callable[[], Awaitable[Any]]) -> None:
        """Queue an operation labelled with the endpoint it writes to."""
        self._operations.append((endpoint, operation))

    def __len__(self) -> int:
        return len(self._operations)

    async def _run_one(self, endpoint: str, operation: Callable[[], Awaitable[Any]]) -> SubRecordResult:
        async with self._semaphore:
            try:
                await operation()
            except Exception as e:
                message = format_error(e)
                logger.debug(f"Best-effort write to {endpoint} failed: {message}")
                return SubRecordResult(endpoint=endpoint, ok=False, error=message)
        return SubRecordResult(endpoint=endpoint, ok=True)

    async def run(self) -> list[SubRecordResult]:
        """Run every queued operation and return their results in queue order."""
        if not self._operations:
            return []
        operations, self._operations = self._operations, []
        return list(await asyncio.gather(*(self._run_one(endpoint, op) for endpoint, op in operations)))
