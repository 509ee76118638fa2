"""Cancellation and deadline propagation for blocking operations.

An ``OperationContext`` carries an optional deadline and a cancellation
flag. Child contexts inherit both from their parent: cancelling a parent
cancels every child, and a child's deadline never extends past its
parent's.
"""

import threading
import time
from typing import List, Optional


class ContextError(RuntimeError):
    """Base class for context termination errors."""


class OperationCancelled(ContextError):
    """Raised when an operation's context has been cancelled."""


class DeadlineExceeded(ContextError):
    """Raised when an operation's deadline has passed."""


class OperationContext:
    """Deadline and cancellation scope for one operation."""

    def __init__(
        self,
        deadline: Optional[float] = None,
        parent: Optional["OperationContext"] = None,
    ):
        """Initialize a context.

        Args:
            deadline: Absolute ``time.monotonic()`` value, or None for no deadline
            parent: Context to inherit cancellation and deadline from
        """
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self.deadline = deadline
        self._parent = parent
        self._event = threading.Event()
        self._children: List["OperationContext"] = []
        self._lock = threading.Lock()
        if parent is not None:
            parent._attach(self)

    @classmethod
    def background(cls) -> "OperationContext":
        """Return a root context that is never cancelled and has no deadline."""
        return cls()

    def with_timeout(self, seconds: float) -> "OperationContext":
        """Derive a child context that expires ``seconds`` from now."""
        return OperationContext(deadline=time.monotonic() + seconds, parent=self)

    def _attach(self, child: "OperationContext") -> None:
        with self._lock:
            self._children.append(child)
            cancelled = self._event.is_set()
        if cancelled:
            child.cancel()

    def _detach(self, child: "OperationContext") -> None:
        with self._lock:
            if child in self._children:
                self._children.remove(child)

    def cancel(self) -> None:
        """Cancel this context and all of its children."""
        self._event.set()
        with self._lock:
            children = list(self._children)
        for child in children:
            child.cancel()

    def release(self) -> None:
        """Detach from the parent once the operation is done."""
        if self._parent is not None:
            self._parent._detach(self)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline (never negative), or None."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def check(self) -> None:
        """Raise if the context is cancelled or past its deadline.

        Raises:
            OperationCancelled: If ``cancel()`` was called on this context or a parent
            DeadlineExceeded: If the deadline has passed
        """
        if self.cancelled:
            raise OperationCancelled("operation cancelled")
        if self.expired:
            raise DeadlineExceeded("operation deadline exceeded")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled, the deadline passes or ``timeout`` elapses.

        Returns:
            True if the context was cancelled
        """
        remaining = self.remaining()
        if remaining is not None:
            timeout = remaining if timeout is None else min(timeout, remaining)
        return self._event.wait(timeout)

    def __enter__(self) -> "OperationContext":
        return self

    def __exit__(self, *exc_info) -> None:
        self.cancel()
        self.release()
