"""Tests for the PermissionBridge pending table, decisions and abandonment."""

import asyncio
import json

import pytest

from conftest import FakePermissionsManager
from walletgate.audit import AuditLogger
from walletgate.errors import (
    PermissionDeniedError,
    PermissionRelayError,
    QueueProtocolError,
    SessionEndedError,
)
from walletgate.permissions import (
    CALLBACK_EVENTS,
    SPENDING_AUTHORIZATION_EVENT,
    PermissionBridge,
    PermissionDecision,
    PermissionKind,
)


def basket_event(request_id, **extra):
    return {"requestID": request_id, "originator": "app.example", "basket": "todo", **extra}


def protocol_event(request_id, name="document signing"):
    return {"requestID": request_id, "originator": "app.example", "protocolID": [1, name]}


@pytest.mark.unit
class TestBinding:
    def test_bind_registers_every_event(self, bridge, permissions_manager):
        spending = object()
        bridge.bind(permissions_manager, spending_callback=spending)

        assert set(permissions_manager.handlers) == set(CALLBACK_EVENTS.values()) | {
            SPENDING_AUTHORIZATION_EVENT
        }
        assert permissions_manager.handlers[SPENDING_AUTHORIZATION_EVENT] is spending
        assert bridge.is_bound

    def test_unbind(self, bound_bridge):
        bound_bridge.unbind()
        assert not bound_bridge.is_bound


@pytest.mark.unit
@pytest.mark.asyncio
class TestInbound:
    async def test_accepted_event_returns_pending_future(self, bound_bridge):
        future = bound_bridge.on_basket_access_requested(basket_event("r1"))

        assert isinstance(future, asyncio.Future)
        assert not future.done()
        assert bound_bridge.is_pending("r1")
        assert bound_bridge.basket_queue.peek_head().request_id == "r1"
        await bound_bridge.wait_for_focus()

    async def test_malformed_event_is_dropped(self, bound_bridge, focus_host):
        assert bound_bridge.on_protocol_permission_requested({"requestID": "p1"}) is None
        assert bound_bridge.on_certificate_access_requested({"originator": "x"}) is None
        await bound_bridge.wait_for_focus()

        assert bound_bridge.pending_count == 0
        assert len(bound_bridge.protocol_queue) == 0
        assert focus_host.calls == []

    async def test_wrongly_typed_fields_are_dropped(self, bound_bridge, focus_host):
        protocol = {"requestID": "p1", "protocolID": 5}
        assert bound_bridge.on_protocol_permission_requested(protocol) is None
        assert (
            bound_bridge.on_certificate_access_requested(
                {"requestID": "c1", "certificate": {"certType": "t", "fields": 7}}
            )
            is None
        )
        await bound_bridge.wait_for_focus()

        assert bound_bridge.pending_count == 0
        assert focus_host.calls == []

    async def test_duplicate_pending_request_id_is_dropped(self, bound_bridge):
        first = bound_bridge.on_basket_access_requested(basket_event("dup"))
        second = bound_bridge.on_basket_access_requested(basket_event("dup"))

        assert first is not None
        assert second is None
        assert len(bound_bridge.basket_queue) == 1
        await bound_bridge.wait_for_focus()

    async def test_callbacks_bound_through_engine_enqueue(self, bound_bridge, permissions_manager):
        handler = permissions_manager.handlers[CALLBACK_EVENTS[PermissionKind.PROTOCOL]]
        future = handler(protocol_event("p1"))

        assert future is not None
        assert bound_bridge.protocol_queue.peek_head().request_id == "p1"
        await bound_bridge.wait_for_focus()

    async def test_queues_focus_independently(self, bound_bridge, focus_host):
        bound_bridge.on_basket_access_requested(basket_event("b1"))
        bound_bridge.on_protocol_permission_requested(protocol_event("p1"))
        await bound_bridge.wait_for_focus()

        assert focus_host.count("request_focus") == 2
        assert bound_bridge.basket_queue.modal_open
        assert bound_bridge.protocol_queue.modal_open
        assert not bound_bridge.certificate_queue.modal_open


@pytest.mark.unit
@pytest.mark.asyncio
class TestDecisions:
    async def test_grant_resolves_and_relays(self, bound_bridge, permissions_manager):
        future = bound_bridge.on_basket_access_requested(basket_event("r1"))

        assert await bound_bridge.grant(PermissionKind.BASKET, "r1") is True

        assert await future == PermissionDecision.GRANTED
        permissions_manager.grant_permission.assert_awaited_once_with({"requestID": "r1"})
        assert not bound_bridge.is_pending("r1")
        assert len(bound_bridge.basket_queue) == 0
        await bound_bridge.wait_for_focus()

    async def test_deny_rejects_and_relays(self, bound_bridge, permissions_manager):
        future = bound_bridge.on_basket_access_requested(basket_event("r1"))

        assert await bound_bridge.deny(PermissionKind.BASKET, "r1") is True

        with pytest.raises(PermissionDeniedError):
            await future
        permissions_manager.deny_permission.assert_awaited_once_with("r1")
        await bound_bridge.wait_for_focus()

    async def test_decisions_follow_arrival_order(self, bound_bridge):
        futures = [
            bound_bridge.on_protocol_permission_requested(protocol_event(f"p{i}"))
            for i in range(3)
        ]

        await bound_bridge.grant(PermissionKind.PROTOCOL, "p0")
        await bound_bridge.deny(PermissionKind.PROTOCOL, "p1")
        await bound_bridge.grant(PermissionKind.PROTOCOL, "p2")

        assert futures[0].result() == PermissionDecision.GRANTED
        assert isinstance(futures[1].exception(), PermissionDeniedError)
        assert futures[2].result() == PermissionDecision.GRANTED
        await bound_bridge.wait_for_focus()

    async def test_decision_for_non_head_is_rejected(self, bound_bridge, permissions_manager):
        bound_bridge.on_basket_access_requested(basket_event("a"))
        second = bound_bridge.on_basket_access_requested(basket_event("b"))

        with pytest.raises(QueueProtocolError):
            await bound_bridge.grant(PermissionKind.BASKET, "b")
        with pytest.raises(QueueProtocolError):
            await bound_bridge.deny(PermissionKind.PROTOCOL, "a")

        assert not second.done()
        assert [r.request_id for r in bound_bridge.basket_queue.items] == ["a", "b"]
        permissions_manager.grant_permission.assert_not_awaited()
        await bound_bridge.wait_for_focus()

    async def test_grant_relay_failure_rejects_future(self, bound_bridge, permissions_manager):
        permissions_manager.grant_permission.side_effect = RuntimeError("engine offline")
        future = bound_bridge.on_basket_access_requested(basket_event("r1"))

        assert await bound_bridge.grant(PermissionKind.BASKET, "r1") is False

        with pytest.raises(PermissionRelayError) as exc_info:
            await future
        assert exc_info.value.request_id == "r1"
        assert len(bound_bridge.basket_queue) == 0
        await bound_bridge.wait_for_focus()

    async def test_deny_relay_failure_still_denies(self, bound_bridge, permissions_manager):
        permissions_manager.deny_permission.side_effect = RuntimeError("engine offline")
        future = bound_bridge.on_basket_access_requested(basket_event("r1"))

        assert await bound_bridge.deny(PermissionKind.BASKET, "r1") is False

        with pytest.raises(PermissionDeniedError):
            await future
        await bound_bridge.wait_for_focus()

    async def test_cancelled_grant_relay_still_settles(self, bound_bridge, permissions_manager):
        release = asyncio.Event()

        async def blocked_grant(payload):
            await release.wait()

        permissions_manager.grant_permission.side_effect = blocked_grant
        future = bound_bridge.on_basket_access_requested(basket_event("r1"))

        task = asyncio.create_task(bound_bridge.grant(PermissionKind.BASKET, "r1"))
        await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert future.done()
        assert isinstance(future.exception(), PermissionRelayError)
        assert bound_bridge.pending_count == 0
        assert len(bound_bridge.basket_queue) == 0
        await bound_bridge.wait_for_focus()

    async def test_cancelled_deny_relay_still_denies(self, bound_bridge, permissions_manager):
        release = asyncio.Event()

        async def blocked_deny(request_id):
            await release.wait()

        permissions_manager.deny_permission.side_effect = blocked_deny
        future = bound_bridge.on_basket_access_requested(basket_event("r1"))

        task = asyncio.create_task(bound_bridge.deny(PermissionKind.BASKET, "r1"))
        await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert isinstance(future.exception(), PermissionDeniedError)
        assert bound_bridge.pending_count == 0
        await bound_bridge.wait_for_focus()

    async def test_grant_without_bound_manager(self, bridge):
        future = bridge.on_basket_access_requested(basket_event("r1"))

        assert await bridge.grant(PermissionKind.BASKET, "r1") is False
        assert isinstance(future.exception(), PermissionRelayError)
        await bridge.wait_for_focus()


@pytest.mark.unit
@pytest.mark.asyncio
class TestAbandonAll:
    async def test_abandon_rejects_everything(self, bound_bridge, focus_host):
        futures = [
            bound_bridge.on_basket_access_requested(basket_event("b1")),
            bound_bridge.on_basket_access_requested(basket_event("b2")),
            bound_bridge.on_protocol_permission_requested(protocol_event("p1")),
        ]
        await bound_bridge.wait_for_focus()

        assert bound_bridge.abandon_all() == 3

        for future in futures:
            with pytest.raises(SessionEndedError):
                await future
        assert bound_bridge.pending_count == 0
        assert all(len(bound_bridge.queue(kind)) == 0 for kind in PermissionKind)
        assert not bound_bridge.is_bound

        await bound_bridge.wait_for_focus()
        assert focus_host.count("relinquish_focus") == 2

    async def test_abandon_with_nothing_pending(self, bound_bridge):
        assert bound_bridge.abandon_all() == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_decisions_are_audited(tmp_path, focus_host):
    """Requests, decisions and abandonment are written to the audit trail."""
    audit = AuditLogger(str(tmp_path / "audit.jsonl"))
    bridge = PermissionBridge(focus_host, audit=audit)
    bridge.bind(FakePermissionsManager())

    bridge.on_basket_access_requested(basket_event("r1"))
    bridge.on_basket_access_requested(basket_event("r2"))
    bridge.on_basket_access_requested(basket_event("r3"))
    await bridge.grant(PermissionKind.BASKET, "r1")
    await bridge.deny(PermissionKind.BASKET, "r2")
    bridge.abandon_all()
    await bridge.wait_for_focus()

    records = [json.loads(line) for line in (tmp_path / "audit.jsonl").read_text().splitlines()]
    events = [(r["event"], r["request_id"]) for r in records]
    assert events == [
        ("permission_requested", "r1"),
        ("permission_requested", "r2"),
        ("permission_requested", "r3"),
        ("permission_granted", "r1"),
        ("permission_denied", "r2"),
        ("permission_abandoned", "r3"),
    ]
    assert records[0]["kind"] == "basket"
    assert records[0]["originator"] == "app.example"
