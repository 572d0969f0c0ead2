from __future__ import annotations
import asyncio
from typing import Awaitable, Optional, TypeVar

T = TypeVar("T")


class TurnCancelled(asyncio.CancelledError):
    """Raised when the turn's cancellation token fires.

    Subclasses CancelledError so ``except Exception`` fallbacks never absorb it.
    """


def check_cancelled(cancel: Optional[asyncio.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise TurnCancelled("turn cancelled")


async def race_cancel(awaitable: Awaitable[T], cancel: Optional[asyncio.Event]) -> T:
    """Await ``awaitable`` unless ``cancel`` is set first, in which case abandon it."""
    if cancel is None:
        return await awaitable
    if cancel.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise TurnCancelled("turn cancelled")
    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        raise
    finally:
        waiter.cancel()
    if work in done:
        return work.result()
    work.cancel()
    raise TurnCancelled("turn cancelled")


async def sleep_or_cancel(seconds: float, cancel: Optional[asyncio.Event]) -> None:
    """Sleep for ``seconds``; raise TurnCancelled as soon as ``cancel`` is set."""
    if cancel is None:
        await asyncio.sleep(seconds)
        return
    check_cancelled(cancel)
    try:
        await asyncio.wait_for(cancel.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return
    raise TurnCancelled("turn cancelled")
