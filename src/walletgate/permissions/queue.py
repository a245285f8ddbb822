"""Per-kind FIFO queue of pending permission requests."""

from collections import deque
from typing import Deque, Generic, List, Optional, Tuple, TypeVar

from loguru import logger

from ..focus import FocusSession
from .models import PermissionKind, PermissionRequest

T = TypeVar("T", bound=PermissionRequest)


class RequestQueue(Generic[T]):
    """
    Ordered queue with at most one request open for decision.

    The head is the only request the presentation layer may act on.
    Emptiness checks and mutations never await, so on a single event loop
    two enqueues can never both observe an empty queue.

    Focus:
    - enqueue() into an empty queue begins a focus session
    - advance() or clear() that empties the queue ends it
    """

    def __init__(self, kind: PermissionKind, focus: FocusSession):
        self.kind = kind
        self._focus = focus
        self._items: Deque[T] = deque()

    def __len__(self) -> int:
        return len(self._items)

    @property
    def items(self) -> Tuple[T, ...]:
        return tuple(self._items)

    @property
    def modal_open(self) -> bool:
        return self._focus.modal_open

    @property
    def focus(self) -> FocusSession:
        return self._focus

    def peek_head(self) -> Optional[T]:
        return self._items[0] if self._items else None

    def enqueue(self, request: T) -> int:
        """
        Append a request to the tail.

        Args:
            request: Request of this queue's kind

        Returns:
            Zero-based position of the request (0 means it is the head)
        """
        if request.kind != self.kind:
            raise ValueError(
                f"Cannot enqueue {request.kind.value} request into {self.kind.value} queue"
            )
        was_empty = not self._items
        self._items.append(request)
        if was_empty:
            self._focus.begin()
        logger.debug(
            f"[{self.kind.value}] Enqueued {request.request_id} (length={len(self._items)})"
        )
        return len(self._items) - 1

    def advance(self) -> Optional[T]:
        """
        Remove the head after the user decided on it.

        Returns:
            The removed head, or None if the queue was already empty
        """
        if not self._items:
            logger.warning(f"[{self.kind.value}] advance() called on an empty queue")
            return None
        head = self._items.popleft()
        if not self._items:
            self._focus.end()
        return head

    def clear(self) -> List[T]:
        """Remove every request. Returns them in queue order."""
        removed = list(self._items)
        self._items.clear()
        if removed:
            self._focus.end()
        return removed
