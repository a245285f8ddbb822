"""Bridge between the engine's permission callbacks and the request queues.

Inbound: the engine invokes one callback per request kind. Each accepted
event is enqueued and answered with an asyncio.Future registered in a
pending table keyed by request_id.

Outbound: the presentation layer calls grant()/deny() for the head of a
queue. The bridge relays the decision to the engine's permissions manager,
advances the queue and settles the future: Grant resolves it with
PermissionDecision.GRANTED, Deny rejects it with PermissionDeniedError,
logout rejects every pending future with SessionEndedError.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from loguru import logger

from ..audit import AuditLogger
from ..engine import PermissionsManager
from ..errors import (
    PermissionDeniedError,
    PermissionRelayError,
    QueueProtocolError,
    SessionEndedError,
)
from ..focus import FocusHost, FocusSession
from .models import (
    EVENT_PARSERS,
    MalformedEventError,
    PermissionKind,
    PermissionRequest,
)
from .queue import RequestQueue

CALLBACK_EVENTS: Dict[PermissionKind, str] = {
    PermissionKind.BASKET: "onBasketAccessRequested",
    PermissionKind.CERTIFICATE: "onCertificateAccessRequested",
    PermissionKind.PROTOCOL: "onProtocolPermissionRequested",
}
SPENDING_AUTHORIZATION_EVENT = "onSpendingAuthorizationRequested"


class PermissionDecision(str, Enum):
    """Value a granted request's future resolves to."""

    GRANTED = "granted"


@dataclass
class _PendingRequest:
    request: PermissionRequest
    future: "asyncio.Future[PermissionDecision]"


class PermissionBridge:
    """
    Pending-request table plus the three request queues.

    Features:
    - One RequestQueue and one FocusSession per kind
    - Malformed events dropped silently (logged, no future)
    - Decisions only for the head of a queue
    - Every accepted request settles exactly once
    """

    def __init__(self, focus_host: FocusHost, audit: Optional[AuditLogger] = None):
        """
        Args:
            focus_host: Window integration shared by the three focus sessions
            audit: Optional audit trail for requests and decisions
        """
        self._queues: Dict[PermissionKind, RequestQueue] = {
            kind: RequestQueue(kind, FocusSession(focus_host, kind.value))
            for kind in PermissionKind
        }
        self._pending: Dict[str, _PendingRequest] = {}
        self._permissions: Optional[PermissionsManager] = None
        self._audit = audit

    # ------------------------------------------------------------------
    # Queue access
    # ------------------------------------------------------------------

    def queue(self, kind: PermissionKind) -> RequestQueue:
        return self._queues[PermissionKind(kind)]

    @property
    def basket_queue(self) -> RequestQueue:
        return self._queues[PermissionKind.BASKET]

    @property
    def certificate_queue(self) -> RequestQueue:
        return self._queues[PermissionKind.CERTIFICATE]

    @property
    def protocol_queue(self) -> RequestQueue:
        return self._queues[PermissionKind.PROTOCOL]

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_pending(self, request_id: str) -> bool:
        return request_id in self._pending

    @property
    def is_bound(self) -> bool:
        return self._permissions is not None

    async def wait_for_focus(self) -> None:
        """Wait for every scheduled focus acquire/relinquish to finish."""
        for queue in self._queues.values():
            await queue.focus.wait_idle()

    # ------------------------------------------------------------------
    # Binding
    # ------------------------------------------------------------------

    def callbacks(self) -> Dict[PermissionKind, Callable]:
        return {
            PermissionKind.BASKET: self.on_basket_access_requested,
            PermissionKind.CERTIFICATE: self.on_certificate_access_requested,
            PermissionKind.PROTOCOL: self.on_protocol_permission_requested,
        }

    def bind(
        self,
        permissions: PermissionsManager,
        callbacks: Optional[Dict[PermissionKind, Callable]] = None,
        spending_callback: Optional[Callable] = None,
    ) -> None:
        """
        Register the permission callbacks on the engine's permissions layer.

        Args:
            permissions: Permissions manager that raises the events and
                receives the relayed decisions
            callbacks: Per-kind handlers to bind (defaults to this bridge's)
            spending_callback: Optional pass-through handler for spending
                authorization events, which are not queued here
        """
        callbacks = callbacks or self.callbacks()
        for kind, event_name in CALLBACK_EVENTS.items():
            permissions.bind_callback(event_name, callbacks[kind])
        if spending_callback is not None:
            permissions.bind_callback(SPENDING_AUTHORIZATION_EVENT, spending_callback)
        self._permissions = permissions
        logger.info("Permission callbacks bound to permissions manager")

    def unbind(self) -> None:
        self._permissions = None

    # ------------------------------------------------------------------
    # Inbound callbacks
    # ------------------------------------------------------------------

    def on_basket_access_requested(self, event: Any) -> Optional[asyncio.Future]:
        return self._receive(PermissionKind.BASKET, event)

    def on_certificate_access_requested(self, event: Any) -> Optional[asyncio.Future]:
        return self._receive(PermissionKind.CERTIFICATE, event)

    def on_protocol_permission_requested(self, event: Any) -> Optional[asyncio.Future]:
        return self._receive(PermissionKind.PROTOCOL, event)

    def _receive(self, kind: PermissionKind, event: Any) -> Optional[asyncio.Future]:
        try:
            request = EVENT_PARSERS[kind](event)
        except MalformedEventError as e:
            logger.warning(f"Dropping malformed {kind.value} permission event: {e}")
            return None

        if request.request_id in self._pending:
            logger.warning(
                f"Dropping {kind.value} event with duplicate pending requestID "
                f"{request.request_id}"
            )
            return None

        future = asyncio.get_running_loop().create_future()
        self._pending[request.request_id] = _PendingRequest(request=request, future=future)
        self._queues[kind].enqueue(request)

        if self._audit is not None:
            self._audit.log_request(kind.value, request.request_id, request.originator)
        return future

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def _take_head(self, kind: PermissionKind, request_id: str) -> _PendingRequest:
        queue = self._queues[PermissionKind(kind)]
        head = queue.peek_head()
        if head is None or head.request_id != request_id:
            current = head.request_id if head else None
            raise QueueProtocolError(
                f"{request_id} is not the head of the {queue.kind.value} queue "
                f"(head is {current})"
            )
        queue.advance()
        return self._pending.pop(request_id)

    async def grant(self, kind: PermissionKind, request_id: str) -> bool:
        """
        Grant the head request of a queue.

        If the relay fails or this call is cancelled while relaying, the
        caller's future is rejected with PermissionRelayError.

        Args:
            kind: Queue the request belongs to
            request_id: Must equal the queue head's request_id

        Returns:
            True if the engine accepted the relayed grant

        Raises:
            QueueProtocolError: If request_id is not the current head
        """
        entry = self._take_head(kind, request_id)
        relay_error: Optional[BaseException] = None
        relayed = False
        try:
            await self._relay_grant(request_id)
            relayed = True
        except asyncio.CancelledError as e:
            logger.warning(f"Grant relay for {request_id} was cancelled")
            relay_error = e
            raise
        except Exception as e:
            logger.error(f"Failed to relay grant for {request_id}: {e}")
            relay_error = e
        finally:
            if relayed:
                self._settle(entry, PermissionDecision.GRANTED, granted=True)
            else:
                cause = relay_error or RuntimeError("grant relay interrupted")
                self._settle(entry, PermissionRelayError(request_id, cause), granted=True)
        return relayed

    async def deny(self, kind: PermissionKind, request_id: str) -> bool:
        """
        Deny the head request of a queue.

        The caller's future is rejected with PermissionDeniedError even if
        relaying the denial to the engine fails or is cancelled.

        Returns:
            True if the engine accepted the relayed denial

        Raises:
            QueueProtocolError: If request_id is not the current head
        """
        entry = self._take_head(kind, request_id)
        relay_error: Optional[BaseException] = None
        try:
            await self._relay_deny(request_id)
        except asyncio.CancelledError as e:
            logger.warning(f"Denial relay for {request_id} was cancelled")
            relay_error = e
            raise
        except Exception as e:
            logger.error(f"Failed to relay denial for {request_id}: {e}")
            relay_error = e
        finally:
            self._settle(
                entry, PermissionDeniedError(request_id), granted=False, relay_error=relay_error
            )
        return relay_error is None

    def _settle(
        self,
        entry: _PendingRequest,
        outcome: Any,
        granted: bool,
        relay_error: Optional[BaseException] = None,
    ) -> None:
        if isinstance(outcome, PermissionRelayError):
            relay_error = outcome.cause
        if not entry.future.done():
            if isinstance(outcome, BaseException):
                entry.future.set_exception(outcome)
            else:
                entry.future.set_result(outcome)

        if self._audit is not None:
            self._audit.log_decision(
                entry.request.kind.value,
                entry.request.request_id,
                granted=granted,
                error=(str(relay_error) or type(relay_error).__name__) if relay_error else None,
            )

    async def _relay_grant(self, request_id: str) -> None:
        if self._permissions is None:
            raise RuntimeError("no permissions manager is bound")
        await self._permissions.grant_permission({"requestID": request_id})

    async def _relay_deny(self, request_id: str) -> None:
        if self._permissions is None:
            raise RuntimeError("no permissions manager is bound")
        await self._permissions.deny_permission(request_id)

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def abandon_all(self) -> int:
        """
        Reject every pending request and empty all queues.

        Returns:
            Number of requests abandoned
        """
        for queue in self._queues.values():
            queue.clear()

        pending = list(self._pending.values())
        self._pending.clear()
        for entry in pending:
            if not entry.future.done():
                entry.future.set_exception(SessionEndedError(entry.request.request_id))
            if self._audit is not None:
                self._audit.log_abandoned(entry.request.kind.value, entry.request.request_id)

        self.unbind()
        if pending:
            logger.warning(f"Abandoned {len(pending)} pending permission requests")
        return len(pending)
