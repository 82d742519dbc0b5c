"""
Session pool for concurrent inference.

This module implements a SessionPool that owns a fixed number of
SessionHandles for one model and leases them to concurrent callers.

The pool supports:
- First-come-first-served leasing through a FIFO wait queue
- Bounded waits; a timed-out waiter is withdrawn without disturbing others
- Retiring a failed handle and reloading a replacement once
- Degraded capacity when a reload fails, exhaustion when none are left
- Thread-safe operations under a single lock
"""

import logging
import os
import threading
from collections import deque
from contextlib import contextmanager
from typing import Callable, Deque, Dict, Iterator, Optional

from textinfer_lite.core.errors import (
    ConfigError,
    InferenceError,
    LeaseTimeout,
    PoolClosed,
    PoolExhausted,
)
from textinfer_lite.session.handle import SessionHandle

logger = logging.getLogger(__name__)

HandleFactory = Callable[[int], SessionHandle]


def resolve_pool_size(requested: int, cpu_count: Optional[int] = None) -> int:
    """Bound the configured concurrency by the available CPUs.

    Args:
        requested: Configured number of concurrent sessions
        cpu_count: Available CPUs, defaults to os.cpu_count()

    Returns:
        Pool size between 1 and the number of CPUs

    Raises:
        ConfigError: If requested is not positive
    """
    if requested <= 0:
        raise ConfigError(f"pool_size must be positive, got {requested}")
    available = cpu_count or os.cpu_count() or 1
    size = min(requested, available)
    if size < requested:
        logger.info(
            "pool_size %d bounded to %d by available CPUs", requested, size
        )
    return size


class _Waiter:
    """A caller blocked in lease(), granted a handle or an error by others."""

    __slots__ = ("event", "handle", "error")

    def __init__(self) -> None:
        self.event = threading.Event()
        self.handle: Optional[SessionHandle] = None
        self.error: Optional[InferenceError] = None


class SessionPool:
    """Fixed-size pool of SessionHandles for one model.

    The free list, the leased set and the wait queue are only touched under
    one lock. A released handle goes straight to the oldest waiter, so a
    newcomer can never cut in front of callers already queued.

    Attributes:
        pool_size: Number of handles the pool was built with
        name: Model name used in log messages
    """

    def __init__(self, factory: HandleFactory, pool_size: int, name: str = "model"):
        """Initialize SessionPool and load every handle.

        Args:
            factory: Creates a loaded SessionHandle for a given handle id
            pool_size: Number of handles, fixed for the pool's lifetime
            name: Model name used in log messages

        Raises:
            ConfigError: If pool_size is not positive or a handle fails to load
        """
        if pool_size <= 0:
            raise ConfigError(f"pool_size must be positive, got {pool_size}")
        self.pool_size = pool_size
        self.name = name
        self._factory = factory

        self.lock = threading.Lock()
        self._idle = threading.Condition(self.lock)
        self._free: Deque[SessionHandle] = deque()
        self._leased: Dict[int, SessionHandle] = {}
        self._waiters: Deque[_Waiter] = deque()
        self._capacity = pool_size
        self._next_id = 0
        self._retired = 0
        self._reloads = 0
        self._closed = False
        self._exhausted = False

        try:
            for _ in range(pool_size):
                self._free.append(self._create())
        except Exception:
            for handle in self._free:
                handle.close()
            raise
        logger.info("Session pool for %s ready with %d handles", name, pool_size)

    def _create(self) -> SessionHandle:
        with self.lock:
            handle_id = self._next_id
            self._next_id += 1
        return self._factory(handle_id)

    def _check_open(self) -> None:
        if self._exhausted:
            raise PoolExhausted(f"All session handles for {self.name} are retired")
        if self._closed:
            raise PoolClosed(f"Session pool for {self.name} is shut down")

    def _hand_off(self, handle: SessionHandle) -> None:
        """Give a handle to the oldest waiter, or put it on the free list.

        Must be called with the lock held.
        """
        if self._waiters:
            waiter = self._waiters.popleft()
            waiter.handle = handle
            self._leased[handle.handle_id] = handle
            waiter.event.set()
        else:
            self._free.append(handle)

    def _fail_waiters(self, error: InferenceError) -> None:
        """Wake every waiter with an error. Must be called with the lock held."""
        while self._waiters:
            waiter = self._waiters.popleft()
            waiter.error = error
            waiter.event.set()

    @property
    def capacity(self) -> int:
        """Handles that can be leased concurrently right now."""
        with self.lock:
            return self._capacity

    @property
    def closed(self) -> bool:
        return self._closed

    def lease(self, timeout: Optional[float] = None) -> SessionHandle:
        """Lease a handle, blocking until one is free.

        Args:
            timeout: Maximum seconds to wait, None waits forever, 0 never waits

        Returns:
            A handle exclusively owned by the caller until release/retire

        Raises:
            LeaseTimeout: If no handle became free within timeout
            PoolExhausted: If every handle has been retired
            PoolClosed: If the pool was shut down
        """
        with self.lock:
            self._check_open()
            if self._free and not self._waiters:
                handle = self._free.popleft()
                self._leased[handle.handle_id] = handle
                return handle
            if timeout is not None and timeout <= 0:
                raise LeaseTimeout(f"No free session handle for {self.name}")
            waiter = _Waiter()
            self._waiters.append(waiter)

        waiter.event.wait(timeout)

        with self.lock:
            if waiter.handle is None and waiter.error is None:
                # Timed out: withdraw, the rest of the queue keeps its order
                self._waiters.remove(waiter)
                raise LeaseTimeout(
                    f"Timed out after {timeout}s waiting for a session handle for {self.name}"
                )
        if waiter.error is not None:
            raise waiter.error
        return waiter.handle

    def release(self, handle: SessionHandle) -> None:
        """Return a healthy handle to the pool.

        Raises:
            ValueError: If the handle is not currently leased from this pool
        """
        with self.lock:
            if self._leased.get(handle.handle_id) is not handle:
                raise ValueError(f"Session handle {handle.handle_id} is not leased")
            del self._leased[handle.handle_id]
            if self._closed:
                handle.close()
            else:
                self._hand_off(handle)
            self._idle.notify_all()

    def retire(self, handle: SessionHandle, reload: bool = True) -> Optional[SessionHandle]:
        """Remove a failed handle and try once to load a replacement.

        Args:
            handle: Leased handle to retire
            reload: Attempt to load a replacement

        Returns:
            The replacement handle (already handed to the pool), or None

        Raises:
            ValueError: If the handle is not currently leased from this pool
            PoolExhausted: If the pool has no handles left
        """
        with self.lock:
            if self._leased.get(handle.handle_id) is not handle:
                raise ValueError(f"Session handle {handle.handle_id} is not leased")
            del self._leased[handle.handle_id]
            self._retired += 1
            closed = self._closed

        logger.warning("Retiring session handle %d of %s", handle.handle_id, self.name)
        try:
            handle.close()
        except Exception as e:
            logger.warning("Closing retired handle %d failed: %s", handle.handle_id, e)

        replacement = None
        if reload and not closed:
            try:
                replacement = self._create()
            except Exception as e:
                logger.error(
                    "Reloading a session for %s failed: %s", self.name, e
                )

        with self.lock:
            self._idle.notify_all()
            if self._closed:
                if replacement is not None:
                    replacement.close()
                return None
            if replacement is not None:
                self._reloads += 1
                self._hand_off(replacement)
                logger.info(
                    "Replaced retired handle %d with handle %d",
                    handle.handle_id, replacement.handle_id,
                )
                return replacement

            self._capacity -= 1
            if self._capacity <= 0:
                self._exhausted = True
                error = PoolExhausted(f"All session handles for {self.name} are retired")
                self._fail_waiters(error)
                logger.error("Session pool for %s exhausted", self.name)
                raise error
            logger.warning(
                "Session pool for %s running at degraded capacity %d/%d",
                self.name, self._capacity, self.pool_size,
            )
            return None

    @contextmanager
    def leased(self, timeout: Optional[float] = None) -> Iterator[SessionHandle]:
        """Lease a handle for the duration of a with block.

        The handle is released on exit, or retired if it became unhealthy.
        """
        handle = self.lease(timeout)
        try:
            yield handle
        finally:
            if handle.healthy:
                self.release(handle)
            else:
                self.retire(handle)

    def get_stats(self) -> Dict[str, float]:
        """Get pool statistics.

        Returns:
            Dictionary with keys:
            - pool_size: Handles the pool was built with
            - capacity: Handles still in service
            - free: Idle handles
            - leased: Handles currently leased
            - waiting: Callers blocked in lease()
            - retired: Handles retired so far
            - reloads: Successful reloads
            - utilization: Fraction of capacity currently leased (0.0 to 1.0)
        """
        with self.lock:
            leased = len(self._leased)
            return {
                "pool_size": self.pool_size,
                "capacity": self._capacity,
                "free": len(self._free),
                "leased": leased,
                "waiting": len(self._waiters),
                "retired": self._retired,
                "reloads": self._reloads,
                "utilization": leased / self._capacity if self._capacity > 0 else 0.0,
            }

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> None:
        """Stop leasing and close every handle.

        Waiters are woken with PoolClosed. Handles still leased are closed
        when they are released.

        Args:
            wait: Wait for outstanding leases to come back first
            timeout: Maximum seconds to wait for outstanding leases
        """
        with self.lock:
            if self._closed:
                return
            self._closed = True
            self._fail_waiters(PoolClosed(f"Session pool for {self.name} is shut down"))
            if wait:
                self._idle.wait_for(lambda: not self._leased, timeout)
            handles = list(self._free)
            self._free.clear()
        for handle in handles:
            handle.close()
        logger.info("Session pool for %s shut down", self.name)
