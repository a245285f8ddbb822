"""Permission request queues and the engine callback bridge."""

from .bridge import (
    CALLBACK_EVENTS,
    SPENDING_AUTHORIZATION_EVENT,
    PermissionBridge,
    PermissionDecision,
)
from .models import (
    BasketAccessRequest,
    CertificateAccessRequest,
    MalformedEventError,
    PermissionKind,
    PermissionRequest,
    ProtocolAccessRequest,
    ProtocolCategory,
    classify_protocol,
)
from .queue import RequestQueue

__all__ = [
    "CALLBACK_EVENTS",
    "SPENDING_AUTHORIZATION_EVENT",
    "PermissionBridge",
    "PermissionDecision",
    "BasketAccessRequest",
    "CertificateAccessRequest",
    "MalformedEventError",
    "PermissionKind",
    "PermissionRequest",
    "ProtocolAccessRequest",
    "ProtocolCategory",
    "classify_protocol",
    "RequestQueue",
]
