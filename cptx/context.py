"""
Request-scoped context carrier.

A ``Context`` is an immutable value passed explicitly down the call chain. It
carries arbitrary request-scoped values, an optional deadline, cancellation
signals and at most one transaction handle. Every ``with_*`` call and
``bind_transaction`` return a new child; the parent is never modified, so
branches derived from the same parent cannot observe each other's bindings.

Usage:
    from cptx.context import background

    ctx = background().with_value("request_id", "abc").with_timeout(2.0)
    ctx.check()  # raises ContextCancelled / DeadlineExceeded when done
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable, Hashable, Iterator, List, Mapping, Optional, Tuple

from cptx.errors import ContextCancelled, DeadlineExceeded

if TYPE_CHECKING:
    from cptx.transaction import TransactionHandle

_EMPTY: Mapping[Hashable, Any] = MappingProxyType({})


class _CancelSignal:
    """A one-shot flag that runs its registered callbacks when it is set."""

    __slots__ = ("_event", "_lock", "_callbacks")

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []

    def is_set(self) -> bool:
        return self._event.is_set()

    def set(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def add(self, callback: Callable[[], None]) -> bool:
        """Register ``callback``; returns False, registering nothing, once set."""
        with self._lock:
            if self._event.is_set():
                return False
            self._callbacks.append(callback)
            return True

    def discard(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)


@dataclass(frozen=True, eq=False)
class Context:
    """
    Immutable request-scoped carrier.

    Attributes
    ----------
    transaction : TransactionHandle, optional
        The bound transaction, set only through ``bind_transaction``.
    deadline : float, optional
        Absolute ``time.monotonic()`` instant after which work must abort.
    """

    values: Mapping[Hashable, Any] = field(default_factory=lambda: _EMPTY, repr=False)
    transaction: Optional["TransactionHandle"] = None
    deadline: Optional[float] = None
    cancel_signals: Tuple[_CancelSignal, ...] = field(default=(), repr=False)

    def with_value(self, key: Hashable, value: Any) -> "Context":
        values = dict(self.values)
        values[key] = value
        return replace(self, values=MappingProxyType(values))

    def value(self, key: Hashable, default: Any = None) -> Any:
        return self.values.get(key, default)

    def with_deadline(self, deadline: float) -> "Context":
        """Derive a child that expires at ``deadline`` or at the parent's deadline, whichever is earlier."""
        if self.deadline is not None and self.deadline <= deadline:
            return replace(self)
        return replace(self, deadline=deadline)

    def with_timeout(self, seconds: float) -> "Context":
        return self.with_deadline(time.monotonic() + seconds)

    def with_cancel(self) -> Tuple["Context", Callable[[], None]]:
        """
        Derive a cancellable child.

        Returns
        -------
        tuple
            The child context and a function that cancels it (and every context
            derived from it). Cancelling does not affect the parent.
        """
        signal = _CancelSignal()
        child = replace(self, cancel_signals=self.cancel_signals + (signal,))
        return child, signal.set

    @property
    def cancelled(self) -> bool:
        return any(signal.is_set() for signal in self.cancel_signals)

    @contextmanager
    def on_cancel(self, callback: Callable[[], None]) -> Iterator[None]:
        """
        Run ``callback`` if this context is cancelled while the block executes.

        The callback runs on the thread that cancels, at most once however many
        ancestors are cancelled, and is unregistered when the block exits.

        Raises
        ------
        ContextCancelled
            If the context is already cancelled when the block is entered.
        """
        guard = threading.Lock()

        def fire() -> None:
            if guard.acquire(blocking=False):
                callback()

        registered: List[_CancelSignal] = []
        try:
            for signal in self.cancel_signals:
                if not signal.add(fire):
                    raise ContextCancelled()
                registered.append(signal)
            yield
        finally:
            for signal in registered:
                signal.discard(fire)

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None when there is no deadline."""
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    def check(self) -> None:
        """Raise if the context has been cancelled or its deadline has passed."""
        if self.cancelled:
            raise ContextCancelled()
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise DeadlineExceeded()


_BACKGROUND = Context()


def background() -> Context:
    """Root context: no values, no deadline, never cancelled, no transaction."""
    return _BACKGROUND


def bind_transaction(ctx: Context, handle: "TransactionHandle") -> Context:
    """Return a child of ``ctx`` carrying ``handle``; ``ctx`` itself is unchanged."""
    return replace(ctx, transaction=handle)


def lookup_transaction(ctx: Context) -> Optional["TransactionHandle"]:
    return ctx.transaction


__all__ = ["Context", "background", "bind_transaction", "lookup_transaction"]
