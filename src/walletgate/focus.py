"""Host-window focus coordination for permission prompts.

Each request queue owns one FocusSession. The session snapshots whether the
host window was already focused when its queue went from empty to
non-empty, requests focus only if it was not, and relinquishes focus on
drain only under the same condition.
"""

import asyncio
from typing import Optional, Protocol, Set

from loguru import logger


class FocusHost(Protocol):
    """Window integration supplied by the host application."""

    async def is_focused(self) -> bool:
        """Return True if the application window currently has focus."""

    async def request_focus(self) -> None:
        """Bring the application window to the foreground."""

    async def relinquish_focus(self) -> None:
        """Return focus to whatever held it before."""


class HeadlessFocusHost:
    """Focus host for deployments without a window (always focused)."""

    async def is_focused(self) -> bool:
        return True

    async def request_focus(self) -> None:
        return None

    async def relinquish_focus(self) -> None:
        return None


class FocusSession:
    """
    Acquire/relinquish sequencing for a single queue.

    begin() and end() are synchronous and schedule the host calls on the
    running loop. Scheduled operations run strictly in issue order, so an
    end() issued while the matching begin() is still waiting on
    is_focused() relinquishes based on that begin()'s snapshot.

    Sessions are independent: each queue keeps its own snapshot and there
    is no shared flag. When prompts of two kinds overlap, the queue that
    drains first may relinquish focus while the other kind's prompt is
    still open. Each session acts only on the snapshot it took itself.

    Host failures are logged; they never propagate to the queue.
    """

    def __init__(self, host: FocusHost, name: str):
        """
        Args:
            host: Window integration
            name: Label used in log messages (the queue kind)
        """
        self._host = host
        self._name = name
        self._lock = asyncio.Lock()
        self._was_originally_focused: Optional[bool] = None
        self._modal_open = False
        self._tasks: Set[asyncio.Task] = set()

    @property
    def was_originally_focused(self) -> Optional[bool]:
        """Snapshot taken at the start of the current session, or None."""
        return self._was_originally_focused

    @property
    def modal_open(self) -> bool:
        return self._modal_open

    def begin(self) -> None:
        """Start a focus session (queue went empty -> non-empty)."""
        self._schedule(self._acquire())

    def end(self) -> None:
        """End the focus session (queue went non-empty -> empty)."""
        self._schedule(self._release())

    async def wait_idle(self) -> None:
        """Wait until every scheduled focus operation has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def _schedule(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _acquire(self) -> None:
        async with self._lock:
            try:
                focused = bool(await self._host.is_focused())
            except Exception as e:
                logger.error(f"[{self._name}] Focus query failed, assuming unfocused: {e}")
                focused = False

            self._was_originally_focused = focused
            if not focused:
                try:
                    await self._host.request_focus()
                    logger.debug(f"[{self._name}] Focus requested")
                except Exception as e:
                    logger.error(f"[{self._name}] Focus request failed: {e}")
            self._modal_open = True

    async def _release(self) -> None:
        async with self._lock:
            if self._was_originally_focused is False:
                try:
                    await self._host.relinquish_focus()
                    logger.debug(f"[{self._name}] Focus relinquished")
                except Exception as e:
                    logger.error(f"[{self._name}] Focus relinquish failed: {e}")
            self._was_originally_focused = None
            self._modal_open = False
