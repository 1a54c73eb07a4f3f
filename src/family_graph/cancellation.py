"""Caller-supplied cancellation for long traversals."""
from __future__ import annotations

import asyncio
import time

from .exceptions import OperationCancelled


class CancellationToken:
    """Cancellation flag with an optional monotonic deadline.

    Example:
        >>> token = CancellationToken.with_timeout(2.0)
        >>> await engine.get_ancestors(42, generations=10, token=token)
    """

    def __init__(self, deadline: float | None = None) -> None:
        self.deadline = deadline
        self._cancelled = False

    @classmethod
    def with_timeout(cls, seconds: float) -> CancellationToken:
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        if self._cancelled:
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelled("Operation cancelled by caller")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise OperationCancelled("Operation deadline exceeded")


async def checkpoint(token: CancellationToken | None) -> None:
    """Check for cancellation between traversal steps and yield to the loop."""
    if token is not None:
        token.raise_if_cancelled()
    await asyncio.sleep(0)
