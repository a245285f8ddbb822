"""Permission request models and inbound event parsing."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, FrozenSet, Mapping, Optional, Sequence


class PermissionKind(str, Enum):
    """The three independently queued request kinds."""

    BASKET = "basket"
    CERTIFICATE = "certificate"
    PROTOCOL = "protocol"


class ProtocolCategory(str, Enum):
    """Presentation category derived for protocol requests."""

    IDENTITY = "identity"
    RENEWAL = "renewal"
    BASKET_LIKE = "basket"
    PROTOCOL = "protocol"


IDENTITY_PROTOCOL_NAME = "identity resolution"


class MalformedEventError(ValueError):
    """An inbound engine event lacks a field required to enqueue it."""

    pass


def classify_protocol(protocol_name: str, renewal: bool) -> ProtocolCategory:
    """
    Classify a protocol request for presentation.

    Checks run in order: identity resolution, then renewal, then a
    "basket" substring match. Anything else is a plain protocol request.
    """
    if protocol_name == IDENTITY_PROTOCOL_NAME:
        return ProtocolCategory.IDENTITY
    if renewal:
        return ProtocolCategory.RENEWAL
    if "basket" in protocol_name:
        return ProtocolCategory.BASKET_LIKE
    return ProtocolCategory.PROTOCOL


@dataclass(frozen=True, kw_only=True)
class PermissionRequest:
    """
    Fields shared by every permission request.

    Attributes:
        request_id: Correlation key supplied by the wallet engine
        originator: Identifier of the requesting application
        reason: Human-readable justification, if given
        renewal: True when renewing previously granted access
    """

    kind: ClassVar[PermissionKind]

    request_id: str
    originator: str = ""
    reason: Optional[str] = None
    renewal: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "request_id": self.request_id,
            "originator": self.originator,
            "reason": self.reason,
            "renewal": self.renewal,
        }


@dataclass(frozen=True, kw_only=True)
class BasketAccessRequest(PermissionRequest):
    kind: ClassVar[PermissionKind] = PermissionKind.BASKET

    basket_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["basket_name"] = self.basket_name
        return data


@dataclass(frozen=True, kw_only=True)
class CertificateAccessRequest(PermissionRequest):
    kind: ClassVar[PermissionKind] = PermissionKind.CERTIFICATE

    certificate_type: str = ""
    field_names: FrozenSet[str] = field(default_factory=frozenset)
    verifier_key: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            certificate_type=self.certificate_type,
            field_names=sorted(self.field_names),
            verifier_key=self.verifier_key,
        )
        return data


@dataclass(frozen=True, kw_only=True)
class ProtocolAccessRequest(PermissionRequest):
    kind: ClassVar[PermissionKind] = PermissionKind.PROTOCOL

    security_level: int
    protocol_name: str
    counterparty: Optional[str] = None

    @property
    def category(self) -> ProtocolCategory:
        return classify_protocol(self.protocol_name, self.renewal)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            security_level=self.security_level,
            protocol_name=self.protocol_name,
            counterparty=self.counterparty,
            category=self.category.value,
        )
        return data


# ============================================================================
# INBOUND EVENT PARSING
# ============================================================================
# Events arrive as mappings keyed with the engine's camelCase field names.


def _require_request_id(event: Any) -> str:
    if not isinstance(event, Mapping):
        raise MalformedEventError(f"event must be a mapping, got {type(event).__name__}")
    request_id = event.get("requestID")
    if not request_id or not isinstance(request_id, str):
        raise MalformedEventError("event is missing requestID")
    return request_id


def _common_fields(event: Mapping) -> Dict[str, Any]:
    reason = event.get("reason")
    return {
        "originator": str(event.get("originator") or ""),
        "reason": str(reason) if reason else None,
        "renewal": bool(event.get("renewal", False)),
    }


def parse_basket_event(event: Any) -> BasketAccessRequest:
    request_id = _require_request_id(event)
    basket = event.get("basket")
    return BasketAccessRequest(
        request_id=request_id,
        basket_name=str(basket) if basket else None,
        **_common_fields(event),
    )


def parse_certificate_event(event: Any) -> CertificateAccessRequest:
    request_id = _require_request_id(event)
    certificate = event.get("certificate") or {}
    if not isinstance(certificate, Mapping):
        raise MalformedEventError("certificate must be a mapping")

    fields = certificate.get("fields") or {}
    if isinstance(fields, Mapping):
        field_names = frozenset(str(name) for name in fields.keys())
    elif isinstance(fields, (list, tuple, set, frozenset)):
        field_names = frozenset(str(name) for name in fields)
    else:
        raise MalformedEventError(f"certificate fields must be a mapping or list, got {fields!r}")

    return CertificateAccessRequest(
        request_id=request_id,
        certificate_type=str(certificate.get("certType") or ""),
        field_names=field_names,
        verifier_key=str(certificate.get("verifier") or ""),
        **_common_fields(event),
    )


def parse_protocol_event(event: Any) -> ProtocolAccessRequest:
    """
    Parse a protocol permission event.

    The compound protocolID is a two-element sequence
    [security_level, protocol_name].

    Raises:
        MalformedEventError: If requestID or protocolID is missing or invalid
    """
    request_id = _require_request_id(event)
    protocol_id = event.get("protocolID")
    if not protocol_id:
        raise MalformedEventError("protocol event is missing protocolID")
    if (
        isinstance(protocol_id, (str, bytes))
        or not isinstance(protocol_id, Sequence)
        or len(protocol_id) != 2
    ):
        raise MalformedEventError(f"protocolID must be [level, name], got {protocol_id!r}")

    raw_level, raw_name = protocol_id
    try:
        security_level = int(raw_level)
    except (TypeError, ValueError):
        raise MalformedEventError(f"invalid protocol security level {raw_level!r}")
    if not raw_name or not isinstance(raw_name, str):
        raise MalformedEventError("protocolID is missing the protocol name")

    counterparty = event.get("counterparty")
    return ProtocolAccessRequest(
        request_id=request_id,
        security_level=security_level,
        protocol_name=raw_name,
        counterparty=str(counterparty) if counterparty else None,
        **_common_fields(event),
    )


EVENT_PARSERS = {
    PermissionKind.BASKET: parse_basket_event,
    PermissionKind.CERTIFICATE: parse_certificate_event,
    PermissionKind.PROTOCOL: parse_protocol_event,
}
