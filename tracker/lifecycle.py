"""Cancellation tokens threaded through every async continuation."""

from typing import List, Optional


class CancellationToken:
    """
    One-way liveness flag with parent/child propagation.

    The pipeline controller owns a root token, the scheduler runs under a
    child. Cancelling a parent cancels every child; cancelling a child
    leaves the parent alive.

    Example:
        >>> root = CancellationToken()
        >>> run = root.child()
        >>> root.cancel()
        >>> run.cancelled
        True
    """

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._cancelled = False
        self._children: List["CancellationToken"] = []
        if parent is not None:
            if parent.cancelled:
                self._cancelled = True
            else:
                parent._children.append(self)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def alive(self) -> bool:
        return not self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        children, self._children = self._children, []
        for child in children:
            child.cancel()

    def child(self) -> "CancellationToken":
        return CancellationToken(parent=self)

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self._cancelled})"
