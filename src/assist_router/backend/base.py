"""Executor interface shared by provider backends."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import Protocol, TypeVar

from assist_router.errors import RunCancelled
from assist_router.models import ProviderResult, RunOptions

T = TypeVar("T")


class Executor(Protocol):
    """Protocol implemented by backend executors."""

    async def run(self, prompt: str, options: RunOptions) -> ProviderResult:
        """Execute one request and return the normalized result."""


async def wait_or_cancel(seconds: float, cancel_event: asyncio.Event | None) -> None:
    """Sleep for ``seconds`` unless the cancellation token fires first."""

    if cancel_event is None:
        await asyncio.sleep(max(0.0, seconds))
        return
    if cancel_event.is_set():
        raise RunCancelled("Run cancelled by caller.")
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=max(0.0, seconds))
    except TimeoutError:
        return
    raise RunCancelled("Run cancelled by caller.")


def raise_if_cancelled(cancel_event: asyncio.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise RunCancelled("Run cancelled by caller.")


async def race_cancel(awaitable: Awaitable[T], cancel_event: asyncio.Event | None) -> T:
    """Await ``awaitable`` but abort it promptly if the cancellation token fires."""

    if cancel_event is None:
        return await awaitable
    if cancel_event.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise RunCancelled("Run cancelled by caller.")
    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.create_task(cancel_event.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        raise
    finally:
        waiter.cancel()
    if work.done():
        return work.result()
    work.cancel()
    await asyncio.gather(work, return_exceptions=True)
    raise RunCancelled("Run cancelled by caller.")
