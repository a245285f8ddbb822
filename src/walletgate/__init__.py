"""walletgate - permission arbitration and bootstrap for a wallet engine."""

__version__ = "0.1.0"

from .app import WalletApp, get_wallet_app, set_wallet_app
from .bootstrap import BootstrapDependencies, BootstrapState, WalletBootstrap
from .focus import FocusSession, HeadlessFocusHost
from .permissions import PermissionBridge, PermissionKind, RequestQueue
from .settings import SettingsSync, WalletSettings

__all__ = [
    "WalletApp",
    "get_wallet_app",
    "set_wallet_app",
    "BootstrapDependencies",
    "BootstrapState",
    "WalletBootstrap",
    "FocusSession",
    "HeadlessFocusHost",
    "PermissionBridge",
    "PermissionKind",
    "RequestQueue",
    "SettingsSync",
    "WalletSettings",
]
