"""
Bounded waits and per-record mutation guards for store calls.

Service methods are plain synchronous SQLAlchemy code; routers run them through
run_bounded() so a slow store never holds a request open past the configured
timeout.

A call that times out keeps running in its worker thread. Until that thread
returns it still owns the request's Session and, for mutations, the guarded
key: run_bounded() hands both over to the thread instead of letting the
request teardown release them underneath it.
"""

import asyncio
import logging
import threading
from contextlib import contextmanager
from functools import partial
from typing import Any, Callable, Iterable, Optional

from sqlalchemy.orm import Session

from ..config import REQUEST_TIMEOUT_SECONDS
from ..database import WORKER_OWNED
from ..errors import MutationInProgressError, OperationTimeoutError

logger = logging.getLogger(__name__)


class _BoundedCall:
    """One blocking call handed to a worker thread"""

    def __init__(self, func, args, kwargs, session: Optional[Session], after: Iterable[Callable[[], None]]):
        self.func = func
        self.args = args
        self.kwargs = kwargs
        self.session = session
        self.after = list(after)
        self._lock = threading.Lock()
        self._started = False
        self._finished = False
        self._abandoned = False

    def run(self):
        with self._lock:
            if self._abandoned:
                # Gave up before the thread picked it up; abandon() already settled
                return None
            self._started = True
        try:
            return self.func(*self.args, **self.kwargs)
        finally:
            with self._lock:
                self._finished = True
                abandoned = self._abandoned
            self._settle(close_session=abandoned)

    def abandon(self) -> None:
        """The waiter stopped waiting; whatever the thread holds is released when it returns"""
        with self._lock:
            if self._finished:
                return
            self._abandoned = True
            started = self._started
            if started and self.session is not None:
                self.session.info[WORKER_OWNED] = True
        if not started:
            self._settle(close_session=False)

    def _settle(self, close_session: bool) -> None:
        if close_session and self.session is not None:
            self.session.close()
        for callback in self.after:
            callback()


async def run_bounded(
    func: Callable[..., Any],
    *args,
    timeout: Optional[float] = None,
    session: Optional[Session] = None,
    after: Iterable[Callable[[], None]] = (),
    **kwargs,
) -> Any:
    """
    Run a blocking call in a worker thread and give up after `timeout` seconds.

    The abandoned call keeps running in its worker thread; its eventual outcome
    is ignored and must not be treated as either success or failure. `session`
    is the Session the call works on: once abandoned, the worker thread closes
    it on return and the request teardown leaves it alone. Each of `after` runs
    exactly once, when the call is over (or will never start).
    """
    limit = REQUEST_TIMEOUT_SECONDS if timeout is None else timeout
    call = _BoundedCall(func, args, kwargs, session, after)
    try:
        return await asyncio.wait_for(asyncio.to_thread(call.run), limit)
    except asyncio.TimeoutError as e:
        call.abandon()
        name = getattr(func, "__qualname__", repr(func))
        logger.error(f"⏱️ {name} exceeded {limit}s and was abandoned")
        raise OperationTimeoutError() from e
    except asyncio.CancelledError:
        call.abandon()
        raise


class MutationLease:
    """A held key; handoff() passes its release to someone else"""

    def __init__(self, guard: "MutationGuard", key: str):
        self.guard = guard
        self.key = key
        self.handed_off = False

    def handoff(self) -> Callable[[], None]:
        self.handed_off = True
        return partial(self.guard.release, self.key)


class MutationGuard:
    """At most one in-flight mutation per key (e.g. a payment id)"""

    def __init__(self, name: str = "mutation"):
        self.name = name
        self._lock = threading.Lock()
        self._in_flight: set[str] = set()

    def is_busy(self, key: str) -> bool:
        with self._lock:
            return key in self._in_flight

    def acquire(self, key: str) -> None:
        with self._lock:
            if key in self._in_flight:
                logger.warning(f"⚠️ Rejected concurrent {self.name} for {key}")
                raise MutationInProgressError(
                    "Another change to this record is still being saved. Please wait and retry."
                )
            self._in_flight.add(key)

    def release(self, key: str) -> None:
        with self._lock:
            self._in_flight.discard(key)

    @contextmanager
    def hold(self, key: str):
        """
        Hold `key` for the block. Pass lease.handoff() to run_bounded(after=...)
        to keep it held until a worker thread is done with the record.
        """
        self.acquire(key)
        lease = MutationLease(self, key)
        try:
            yield lease
        finally:
            if not lease.handed_off:
                self.release(key)


# Singleton guard for payment mutations
payment_mutations = MutationGuard("payment mutation")
