"""Contracts for the external wallet engine and its managers.

The engine itself (key derivation, signing, storage replication, broadcast)
lives outside this package. These protocols describe only the surface the
bootstrap state machine and the permission bridge call.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Protocol


class SettingsManager(Protocol):
    async def get(self) -> Mapping[str, Any]:
        """Fetch the user's persisted settings."""

    async def set(self, settings: Mapping[str, Any]) -> None:
        """Persist the user's settings."""


class StorageProvider(Protocol):
    async def make_available(self) -> None:
        """Perform the storage handshake."""


class PermissionsManager(Protocol):
    def bind_callback(self, event_name: str, handler: Callable) -> Any:
        """Register a handler for a permission event."""

    async def grant_permission(self, payload: Dict[str, Any]) -> None:
        """Record a user grant; payload carries only requestID."""

    async def deny_permission(self, request_id: str) -> None:
        """Record a user denial."""


class WalletEngine(Protocol):
    settings_manager: Optional[SettingsManager]

    async def add_storage_provider(self, provider: StorageProvider) -> None:
        """Attach a storage provider to the engine."""

    async def load_snapshot(self, snapshot: bytes) -> None:
        """Restore a serialized session."""

    async def save_snapshot(self) -> bytes:
        """Serialize the current session."""

    async def is_authenticated(self) -> bool:
        """Return True once the user has authenticated."""


class EngineFactory(Protocol):
    """Builds the engine pieces from the chosen configuration."""

    def create_wallet(
        self,
        *,
        network: str,
        wab_url: str,
        auth_method: str,
        admin_originator: str,
        password_retriever: Callable,
        recovery_key_saver: Callable,
    ) -> WalletEngine:
        """Create the storage-backed wallet engine."""

    def create_storage_client(self, wallet: WalletEngine, storage_url: str) -> StorageProvider:
        """Create a client for the remote storage endpoint."""

    def create_permissions_manager(
        self, wallet: WalletEngine, admin_originator: str
    ) -> PermissionsManager:
        """Create the permissions-enforcement layer in front of the wallet."""


@dataclass(frozen=True)
class EngineHandle:
    """The constructed engine and the managers derived from it."""

    wallet: WalletEngine
    permissions_manager: PermissionsManager
    settings_manager: Optional[SettingsManager] = None
