"""Application assembly: one bootstrap, one bridge, one settings sync."""

import importlib
import os
from typing import Any, Dict, Optional

import httpx
from loguru import logger

from .audit import AuditLogger
from .bootstrap import WalletBootstrap
from .config import WalletConfig, load_wallet_config
from .engine import EngineFactory
from .focus import FocusHost, HeadlessFocusHost
from .notifications import Notifier
from .permissions import PermissionBridge, PermissionKind
from .settings import SettingsSync
from .store import LocalStore

ENGINE_FACTORY_ENV = "WALLETGATE_ENGINE_FACTORY"


class WalletApp:
    """
    Wires the wallet components together.

    The settings sync follows the bootstrap: it adopts the engine's
    settings manager when an engine becomes ready and drops it on logout.
    """

    def __init__(
        self,
        engine_factory: EngineFactory,
        focus_host: Optional[FocusHost] = None,
        store: Optional[LocalStore] = None,
        config: Optional[WalletConfig] = None,
        notifier: Optional[Notifier] = None,
        audit: Optional[AuditLogger] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store = store or LocalStore()
        self.notifier = notifier or Notifier()
        self.audit = audit
        self.bridge = PermissionBridge(focus_host or HeadlessFocusHost(), audit=audit)
        self.settings = SettingsSync(self.store)
        self.bootstrap = WalletBootstrap(
            engine_factory,
            self.bridge,
            self.store,
            self.notifier,
            config=config,
            audit=audit,
            transport=transport,
        )
        self.bootstrap.add_engine_ready_listener(self.settings.on_engine_ready)
        self.bootstrap.add_logout_listener(self.settings.reset)

    async def start(self):
        """Load local settings, then run the bootstrap."""
        await self.settings.load_local()
        return await self.bootstrap.start()

    async def logout(self) -> int:
        return await self.bootstrap.logout()

    def status(self) -> Dict[str, Any]:
        queues = {
            kind.value: [request.to_dict() for request in self.bridge.queue(kind).items]
            for kind in PermissionKind
        }
        return {
            **self.bootstrap.status(),
            "pending_requests": self.bridge.pending_count,
            "queues": queues,
            "settings": self.settings.settings.to_dict(),
        }


def load_engine_factory(spec: Optional[str] = None) -> EngineFactory:
    """
    Import an engine factory from a "module:attribute" reference.

    A class is instantiated with no arguments; any other object is used
    as the factory directly.

    Raises:
        ValueError: If no reference is configured or it cannot be resolved
    """
    spec = spec or os.getenv(ENGINE_FACTORY_ENV)
    if not spec:
        raise ValueError(f"{ENGINE_FACTORY_ENV} is not set (expected 'module:attribute')")
    module_name, _, attr = spec.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Invalid engine factory reference {spec!r} (expected 'module:attribute')")
    try:
        target = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as e:
        raise ValueError(f"Cannot load engine factory {spec!r}: {e}")
    factory = target() if isinstance(target, type) else target
    logger.info(f"Loaded engine factory from {spec}")
    return factory


_wallet_app: Optional[WalletApp] = None


def set_wallet_app(app: Optional[WalletApp]) -> None:
    global _wallet_app
    _wallet_app = app


def get_wallet_app() -> WalletApp:
    """
    Return the process-wide application, building it on first use.

    The engine factory comes from WALLETGATE_ENGINE_FACTORY and the wallet
    inputs from the YAML wallet config.
    """
    global _wallet_app
    if _wallet_app is None:
        _wallet_app = WalletApp(
            load_engine_factory(),
            config=load_wallet_config(),
            audit=AuditLogger(),
        )
    return _wallet_app
