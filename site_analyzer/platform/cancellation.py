"""
Cancellation and timeout composition.

Every analysis call carries an explicit AnalysisContext (organization scope,
cancellation token, absolute deadline). Awaiting network-bound work goes
through with_cancellation / settle_all so the three stop reasons stay
distinguishable: CancellationError (caller driven), OperationTimeoutError
(deadline driven) and whatever the awaited work raised itself.
"""
import asyncio
import time
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Iterable, Optional, Set, Tuple, TypeVar

from site_analyzer.platform.exceptions import CancellationError, OperationTimeoutError

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation signal shared by a whole call tree."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "Cancelled by caller") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CancellationError(self._reason)


@dataclass(frozen=True)
class AnalysisContext:
    organization_id: Optional[str] = None
    token: CancellationToken = field(default_factory=CancellationToken)
    # Absolute time.monotonic() value, None means unbounded
    deadline: Optional[float] = None

    @classmethod
    def create(
        cls,
        organization_id: Optional[str] = None,
        token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
    ) -> "AnalysisContext":
        context = cls(organization_id=organization_id, token=token or CancellationToken())
        return context.with_timeout(timeout)

    def with_timeout(self, seconds: Optional[float]) -> "AnalysisContext":
        """Child context whose deadline is the earlier of ours and now + seconds."""
        if seconds is None:
            return self
        deadline = time.monotonic() + max(0.0, seconds)
        if self.deadline is not None:
            deadline = min(deadline, self.deadline)
        return replace(self, deadline=deadline)

    def without_deadline(self) -> "AnalysisContext":
        """Same scope and token, unbounded. The caller enforces the deadline."""
        return replace(self, deadline=None)

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def raise_if_cancelled(self) -> None:
        self.token.raise_if_cancelled()


async def cancel_and_wait(tasks: Iterable["asyncio.Future[Any]"]) -> None:
    tasks = list(tasks)
    for task in tasks:
        if not task.done():
            task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)


async def with_cancellation(
    awaitable: Awaitable[T],
    context: AnalysisContext,
    timeout: Optional[float] = None,
) -> T:
    """
    Await `awaitable` until it finishes, the context is cancelled, or the
    effective deadline (earlier of context deadline and `timeout`) passes.

    Raises:
        CancellationError: the token was tripped (wins over a simultaneous timeout)
        OperationTimeoutError: the deadline passed first
    """
    if context.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        context.raise_if_cancelled()

    wait_seconds = context.with_timeout(timeout).remaining()
    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(context.token.wait())
    try:
        await asyncio.wait({task, waiter}, timeout=wait_seconds, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        await cancel_and_wait([task])
        raise
    finally:
        waiter.cancel()

    if context.cancelled:
        await cancel_and_wait([task])
        raise CancellationError(context.token.reason)
    if task.done():
        return task.result()

    await cancel_and_wait([task])
    raise OperationTimeoutError(wait_seconds)


async def settle_all(
    tasks: Iterable["asyncio.Future[Any]"],
    context: AnalysisContext,
    timeout: Optional[float] = None,
) -> Tuple[Set["asyncio.Future[Any]"], Set["asyncio.Future[Any]"]]:
    """
    Wait for every task to settle, bounded by the effective deadline.

    A failing task never interrupts its siblings. Tasks still running when the
    deadline passes are cancelled and returned as the second element.

    Raises:
        CancellationError: the token was tripped; every task is cancelled first
    """
    tasks = set(tasks)
    if not tasks:
        return set(), set()

    scoped = context.with_timeout(timeout)
    waiter = asyncio.ensure_future(context.token.wait())
    pending = set(tasks)
    try:
        while pending and not context.cancelled:
            remaining = scoped.remaining()
            if remaining is not None and remaining <= 0:
                break
            finished, _ = await asyncio.wait(
                pending | {waiter}, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
            )
            if not finished:
                break
            pending -= finished
    except asyncio.CancelledError:
        await cancel_and_wait(tasks)
        raise
    finally:
        waiter.cancel()

    if context.cancelled:
        await cancel_and_wait(tasks)
        raise CancellationError(context.token.reason)

    done = {task for task in tasks if task.done()}
    unsettled = tasks - done
    await cancel_and_wait(unsettled)
    return done, unsettled
