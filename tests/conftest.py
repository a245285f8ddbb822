"""Pytest fixtures and test doubles for the walletgate test suite."""

import asyncio
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock

import httpx
import pytest
from redis import asyncio as aioredis

from walletgate.bootstrap import WalletBootstrap
from walletgate.config import Config, WalletConfig
from walletgate.engine import EngineHandle
from walletgate.notifications import Notifier
from walletgate.permissions import PermissionBridge
from walletgate.redis_client import close_redis_client
from walletgate.store import LocalStore


# ============================================================================
# REDIS FIXTURES
# ============================================================================


@pytest.fixture
async def redis_client():
    """
    Provide a clean Redis connection, skipping when no server answers.

    Cleanup:
        Flushes the database and closes the shared walletgate client
    """
    client = aioredis.from_url(
        Config.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=1,
        socket_timeout=1,
    )
    try:
        await client.ping()
    except (aioredis.ConnectionError, aioredis.TimeoutError, OSError):
        await client.aclose()
        pytest.skip(f"Redis not available at {Config.REDIS_URL}")

    try:
        await client.flushdb()
        yield client
    finally:
        await client.flushdb()
        await client.aclose()
        await close_redis_client()


# ============================================================================
# TEST DOUBLES
# ============================================================================


class MemoryStore(LocalStore):
    """LocalStore kept in a dict so unit tests never touch Redis."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        super().__init__()
        self.data: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> bool:
        self.data[key] = value
        return True

    async def delete(self, key: str) -> bool:
        self.data.pop(key, None)
        return True


class FakeFocusHost:
    """Focus host that records every call in order."""

    def __init__(self, focused: bool = False, delay: float = 0):
        self.focused = focused
        self.delay = delay
        self.calls: List[str] = []

    async def is_focused(self) -> bool:
        self.calls.append("is_focused")
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.focused

    async def request_focus(self) -> None:
        self.calls.append("request_focus")

    async def relinquish_focus(self) -> None:
        self.calls.append("relinquish_focus")

    def count(self, name: str) -> int:
        return self.calls.count(name)


class FakePermissionsManager:
    """Permissions manager that records bound handlers and relayed decisions."""

    def __init__(self):
        self.handlers: Dict[str, Callable] = {}
        self.grant_permission = AsyncMock()
        self.deny_permission = AsyncMock()

    def bind_callback(self, event_name: str, handler: Callable) -> int:
        self.handlers[event_name] = handler
        return len(self.handlers)


class FakeSettingsManager:
    def __init__(self, settings: Optional[Dict[str, Any]] = None):
        self.get = AsyncMock(return_value=settings or {"theme": {"mode": "light"}, "currency": "EUR"})
        self.set = AsyncMock()


class FakeWallet:
    def __init__(self, settings_manager: Optional[FakeSettingsManager] = None):
        self.settings_manager = settings_manager
        self.add_storage_provider = AsyncMock()
        self.load_snapshot = AsyncMock()
        self.save_snapshot = AsyncMock(return_value=b"session-bytes")
        self.is_authenticated = AsyncMock(return_value=False)


class FakeStorage:
    def __init__(self):
        self.make_available = AsyncMock()


class FakeEngineFactory:
    """
    Engine factory producing fakes and counting constructions.

    Attributes:
        wallets: Every wallet created, in order
        create_kwargs: Keyword arguments of each create_wallet call
    """

    def __init__(self):
        self.settings_manager = FakeSettingsManager()
        self.storage = FakeStorage()
        self.permissions = FakePermissionsManager()
        self.wallets: List[FakeWallet] = []
        self.create_kwargs: List[Dict[str, Any]] = []
        self.storage_urls: List[str] = []

    def create_wallet(self, **kwargs) -> FakeWallet:
        self.create_kwargs.append(kwargs)
        wallet = FakeWallet(self.settings_manager)
        self.wallets.append(wallet)
        return wallet

    def create_storage_client(self, wallet, storage_url: str) -> FakeStorage:
        self.storage_urls.append(storage_url)
        return self.storage

    def create_permissions_manager(self, wallet, admin_originator: str) -> FakePermissionsManager:
        return self.permissions


AUTH_INFO = {
    "supportedAuthMethods": ["Twilio"],
    "faucetEnabled": True,
    "faucetAmount": 1000,
}


def auth_info_transport(
    payload: Any = None, status_code: int = 200, calls: Optional[List[httpx.Request]] = None
) -> httpx.MockTransport:
    """MockTransport answering GET /info with a fixed payload."""

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        return httpx.Response(status_code, json=AUTH_INFO if payload is None else payload)

    return httpx.MockTransport(handler)


# ============================================================================
# COMPONENT FIXTURES
# ============================================================================


@pytest.fixture
def focus_host():
    return FakeFocusHost(focused=False)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def notifier():
    return Notifier(history_size=20)


@pytest.fixture
def permissions_manager():
    return FakePermissionsManager()


@pytest.fixture
def bridge(focus_host):
    return PermissionBridge(focus_host)


@pytest.fixture
def bound_bridge(bridge, permissions_manager):
    bridge.bind(permissions_manager)
    return bridge


@pytest.fixture
def engine_factory():
    return FakeEngineFactory()


@pytest.fixture
def wallet_config():
    return WalletConfig(
        wab_url="https://wab.example.test",
        storage_url="https://storage.example.test",
        network="test",
        admin_originator="admin.example.test",
    )


@pytest.fixture
def auth_requests():
    return []


@pytest.fixture
def bootstrap(engine_factory, bridge, store, notifier, wallet_config, auth_requests):
    """WalletBootstrap with every dependency supplied and a mocked auth endpoint."""
    machine = WalletBootstrap(
        engine_factory,
        bridge,
        store,
        notifier,
        config=wallet_config,
        transport=auth_info_transport(calls=auth_requests),
    )
    machine.set_password_retriever(AsyncMock(return_value="hunter2"))
    machine.set_recovery_key_saver(AsyncMock(return_value=True))
    return machine


@pytest.fixture
def engine_handle():
    wallet = FakeWallet(FakeSettingsManager())
    return EngineHandle(
        wallet=wallet,
        permissions_manager=FakePermissionsManager(),
        settings_manager=wallet.settings_manager,
    )
