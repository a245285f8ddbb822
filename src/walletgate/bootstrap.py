"""Wallet bootstrap state machine.

UNCONFIGURED -> FETCHING_AUTH_CONFIG -> CONFIG_COMPLETE -> CONSTRUCTING_ENGINE
-> ENGINE_READY -> (SNAPSHOT_RESTORING -> SNAPSHOT_RESTORED | SNAPSHOT_FAILED)
-> AUTHENTICATED

logout() returns any state to UNCONFIGURED. Failures of the auth-info fetch
or of engine construction also fall back to UNCONFIGURED so the user can
retry; a failed snapshot restore leaves the engine usable.
"""

import asyncio
import base64
import binascii
import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

import httpx
from loguru import logger

from .audit import AuditLogger
from .config import SUPPORTED_CHAINS, Config, WalletConfig
from .engine import EngineFactory, EngineHandle
from .errors import (
    AuthInfoFetchError,
    ConfigValidationError,
    EngineConstructionError,
    SnapshotRestoreError,
)
from .notifications import Notifier
from .permissions import PermissionBridge, PermissionKind
from .store import LocalStore


class BootstrapState(str, Enum):
    """Lifecycle states of the wallet bootstrap."""

    UNCONFIGURED = "unconfigured"
    FETCHING_AUTH_CONFIG = "fetching_auth_config"
    CONFIG_COMPLETE = "config_complete"
    CONSTRUCTING_ENGINE = "constructing_engine"
    ENGINE_READY = "engine_ready"
    SNAPSHOT_RESTORING = "snapshot_restoring"
    SNAPSHOT_RESTORED = "snapshot_restored"
    SNAPSHOT_FAILED = "snapshot_failed"
    AUTHENTICATED = "authenticated"


_ENGINE_STATES = {
    BootstrapState.ENGINE_READY,
    BootstrapState.SNAPSHOT_RESTORING,
    BootstrapState.SNAPSHOT_RESTORED,
    BootstrapState.SNAPSHOT_FAILED,
    BootstrapState.AUTHENTICATED,
}


@dataclass(frozen=True)
class AuthInfo:
    """Response of GET {wab_url}/info."""

    supported_auth_methods: List[str]
    faucet_enabled: bool = False
    faucet_amount: float = 0

    @classmethod
    def from_payload(cls, payload: Any) -> "AuthInfo":
        """
        Validate and convert the remote payload.

        Raises:
            AuthInfoFetchError: If the payload does not have the expected shape
        """
        if not isinstance(payload, Mapping):
            raise AuthInfoFetchError("auth info response is not a JSON object")
        methods = payload.get("supportedAuthMethods") or []
        if not isinstance(methods, list):
            raise AuthInfoFetchError("supportedAuthMethods must be a list")
        try:
            faucet_amount = float(payload.get("faucetAmount") or 0)
        except (TypeError, ValueError):
            raise AuthInfoFetchError("faucetAmount must be a number")
        return cls(
            supported_auth_methods=[str(method) for method in methods],
            faucet_enabled=bool(payload.get("faucetEnabled", False)),
            faucet_amount=faucet_amount,
        )


@dataclass
class BootstrapDependencies:
    """
    Everything engine construction needs from the rest of the application.

    Construction refuses to start until is_ready() is True.
    """

    password_retriever: Optional[Callable] = None
    recovery_key_saver: Optional[Callable] = None
    permission_callbacks: Dict[PermissionKind, Callable] = field(default_factory=dict)
    spending_authorization_callback: Optional[Callable] = None

    def missing(self) -> List[str]:
        missing = []
        if self.password_retriever is None:
            missing.append("password_retriever")
        if self.recovery_key_saver is None:
            missing.append("recovery_key_saver")
        for kind in PermissionKind:
            if self.permission_callbacks.get(kind) is None:
                missing.append(f"{kind.value}_permission_callback")
        return missing

    def is_ready(self) -> bool:
        return not self.missing()


class WalletBootstrap:
    """
    Drives configuration, engine construction and snapshot restore.

    Features:
    - Auth-info fetch over httpx with retryable failure
    - Validated configuration with automatic completion
    - At-most-once engine construction guarded by an in-flight task
    - Non-fatal snapshot restore
    - Atomic logout that abandons every pending permission request
    """

    def __init__(
        self,
        engine_factory: EngineFactory,
        bridge: PermissionBridge,
        store: LocalStore,
        notifier: Notifier,
        config: Optional[WalletConfig] = None,
        audit: Optional[AuditLogger] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = Config.AUTH_INFO_TIMEOUT,
    ):
        """
        Args:
            engine_factory: Builds the wallet engine and its managers
            bridge: Permission bridge whose callbacks get bound to the engine
            store: Local store holding the session snapshot
            notifier: User-visible notification channel
            config: Initial wallet inputs (defaults from Config)
            audit: Optional audit trail
            transport: httpx transport override for the auth-info fetch
            timeout: Auth-info request timeout in seconds
        """
        config = config or WalletConfig()
        self._factory = engine_factory
        self._bridge = bridge
        self._store = store
        self.notifier = notifier
        self._audit = audit
        self._transport = transport
        self._timeout = timeout

        self.admin_originator = config.admin_originator
        self.wab_url = config.wab_url
        self.selected_network = config.network
        self.selected_storage_url = config.storage_url
        self.selected_auth_method = ""
        self.auth_info: Optional[AuthInfo] = None

        self.dependencies = BootstrapDependencies(permission_callbacks=bridge.callbacks())
        self.config_complete = False
        self.snapshot_loaded = False
        self.engine: Optional[EngineHandle] = None

        self._state = BootstrapState.UNCONFIGURED
        self.history: List[BootstrapState] = [self._state]
        self._construction: Optional[asyncio.Task] = None
        self._engine_ready_listeners: List[Callable] = []
        self._logout_listeners: List[Callable] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> BootstrapState:
        return self._state

    @property
    def engine_ready(self) -> bool:
        return self.engine is not None and self._state in _ENGINE_STATES

    @property
    def constructing(self) -> bool:
        return self._construction is not None and not self._construction.done()

    @property
    def engine_active(self) -> bool:
        """True once construction has started and until logout."""
        return self.engine is not None or self.constructing

    @property
    def network_label(self) -> str:
        return "mainnet" if self.selected_network == "main" else "testnet"

    def _transition(self, new_state: BootstrapState) -> None:
        if new_state == self._state:
            return
        logger.info(f"Bootstrap state: {self._state.value} -> {new_state.value}")
        self._state = new_state
        self.history.append(new_state)

    def add_engine_ready_listener(self, listener: Callable) -> None:
        """Register a sync or async callable receiving the EngineHandle."""
        self._engine_ready_listeners.append(listener)

    def add_logout_listener(self, listener: Callable) -> None:
        self._logout_listeners.append(listener)

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    def set_password_retriever(self, retriever: Callable) -> None:
        self.dependencies.password_retriever = retriever

    def set_recovery_key_saver(self, saver: Callable) -> None:
        self.dependencies.recovery_key_saver = saver

    def set_spending_authorization_callback(self, callback: Callable) -> None:
        self.dependencies.spending_authorization_callback = callback

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def set_wab_url(self, wab_url: str) -> None:
        """Point at a different auth backend; previously fetched info is dropped."""
        if wab_url != self.wab_url:
            self.wab_url = wab_url
            self.auth_info = None
            self.selected_auth_method = ""

    def select_network(self, network: str) -> None:
        self.selected_network = network

    def set_storage_url(self, storage_url: str) -> None:
        self.selected_storage_url = storage_url

    def select_auth_method(self, method: str) -> None:
        self.selected_auth_method = method

    async def fetch_auth_info(self) -> Optional[AuthInfo]:
        """
        Fetch auth-method metadata from the configured backend.

        On success the info is cached and a single supported method is
        auto-selected. On failure the error is surfaced to the user and the
        state returns to UNCONFIGURED.

        Returns:
            AuthInfo, or None if the fetch failed
        """
        if self.engine_active:
            logger.warning("Ignoring auth info fetch while a wallet engine is active")
            self.notifier.warning("Log out before changing the WAB server.")
            return None

        self._transition(BootstrapState.FETCHING_AUTH_CONFIG)
        url = f"{self.wab_url.rstrip('/')}/info"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
                payload = response.json()
            info = AuthInfo.from_payload(payload)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError, AuthInfoFetchError) as e:
            logger.error(f"Error fetching WAB info from {url}: {e}")
            self.notifier.error(f"Could not fetch WAB info: {e}")
            self._transition(BootstrapState.UNCONFIGURED)
            return None

        self.auth_info = info
        if len(info.supported_auth_methods) == 1:
            self.selected_auth_method = info.supported_auth_methods[0]
        logger.info(f"WAB info fetched: methods={info.supported_auth_methods}")
        self._transition(BootstrapState.UNCONFIGURED)
        return info

    def validate_config(self) -> None:
        """
        Check the minimum inputs for construction.

        Raises:
            ConfigValidationError: For the first missing or invalid field
        """
        if not self.wab_url:
            raise ConfigValidationError("wab_url", "WAB Server URL is required")
        if not self.selected_network:
            raise ConfigValidationError("network", "Network selection is required")
        if self.selected_network not in SUPPORTED_CHAINS:
            raise ConfigValidationError(
                "network", f"Unsupported network {self.selected_network!r}"
            )
        if not self.selected_storage_url:
            raise ConfigValidationError("storage_url", "Storage URL is required")
        if not self.selected_auth_method:
            raise ConfigValidationError(
                "auth_method", "Please select an Auth Method from the WAB info first."
            )

    def _complete_config(self, announce: bool) -> bool:
        try:
            self.validate_config()
        except ConfigValidationError as e:
            self.notifier.error(str(e))
            return False

        self.config_complete = True
        self._transition(BootstrapState.CONFIG_COMPLETE)
        if announce:
            self.notifier.success("Configuration applied successfully!")
        return True

    async def finalize_config(self) -> bool:
        """
        Mark the interactively chosen configuration complete and build.

        Returns:
            True if the configuration was accepted
        """
        if self.engine_active:
            await self.ensure_engine()
            return True
        if not self._complete_config(announce=True):
            return False
        await self.ensure_engine()
        return True

    async def start(self) -> Optional[EngineHandle]:
        """
        Begin the bootstrap.

        A persisted snapshot marks a returning user: configuration is
        treated as complete and construction starts right away. Otherwise
        the auth info is fetched and configuration is completed when every
        required field is present.
        """
        if self.engine_active:
            return await self.ensure_engine()

        if await self._store.has_snapshot():
            logger.info("Persisted snapshot found, skipping interactive configuration")
            self.config_complete = True
            self._transition(BootstrapState.CONFIG_COMPLETE)
            return await self.ensure_engine()

        if not self.config_complete:
            info = await self.fetch_auth_info()
            if info is None:
                return None
            if not self._complete_config(announce=False):
                return None
        return await self.ensure_engine()

    # ------------------------------------------------------------------
    # Engine construction
    # ------------------------------------------------------------------

    async def ensure_engine(self) -> Optional[EngineHandle]:
        """
        Construct the engine at most once.

        Triggers arriving while construction is in flight wait for that
        construction instead of starting another.

        Returns:
            The engine handle, or None if configuration is incomplete,
            dependencies are missing, or construction failed
        """
        if self.engine is not None:
            return self.engine

        if self._construction is None:
            if not self.config_complete:
                logger.debug("Engine construction skipped: configuration incomplete")
                return None
            missing = self.dependencies.missing()
            if missing:
                logger.warning(f"Engine construction waiting on dependencies: {missing}")
                return None
            self._construction = asyncio.ensure_future(self._construct())

        task = self._construction
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                return None
            raise

    async def _construct(self) -> Optional[EngineHandle]:
        this_task = asyncio.current_task()
        try:
            handle = await self._build_engine()
        finally:
            if self._construction is this_task:
                self._construction = None
        if handle is None:
            return None

        await self._announce_engine(handle)
        if self.engine is not handle:
            logger.info("Engine discarded by logout before snapshot restore")
            return None
        await self.restore_snapshot()
        return handle

    async def _build_engine(self) -> Optional[EngineHandle]:
        self._transition(BootstrapState.CONSTRUCTING_ENGINE)
        deps = self.dependencies
        try:
            wallet = self._factory.create_wallet(
                network=self.selected_network,
                wab_url=self.wab_url,
                auth_method=self.selected_auth_method,
                admin_originator=self.admin_originator,
                password_retriever=deps.password_retriever,
                recovery_key_saver=deps.recovery_key_saver,
            )
            storage = self._factory.create_storage_client(wallet, self.selected_storage_url)
            await storage.make_available()
            await wallet.add_storage_provider(storage)
            permissions = self._factory.create_permissions_manager(
                wallet, self.admin_originator
            )
            self._bridge.bind(
                permissions,
                callbacks=deps.permission_callbacks,
                spending_callback=deps.spending_authorization_callback,
            )
        except asyncio.CancelledError:
            self._bridge.unbind()
            logger.info("Engine construction cancelled")
            raise
        except Exception as e:
            self._bridge.unbind()
            error = EngineConstructionError(str(e))
            logger.error(f"Error building wallet: {error}")
            self.notifier.error(f"Failed to build wallet: {error}")
            self.config_complete = False
            self._transition(BootstrapState.UNCONFIGURED)
            return None

        handle = EngineHandle(
            wallet=wallet,
            permissions_manager=permissions,
            settings_manager=getattr(wallet, "settings_manager", None),
        )
        self.engine = handle
        self._transition(BootstrapState.ENGINE_READY)
        logger.info(f"Wallet engine ready on {self.network_label}")
        if self._audit is not None:
            self._audit.log_engine_ready(
                self.selected_network, self.selected_storage_url, self.selected_auth_method
            )
        return handle

    async def _announce_engine(self, handle: EngineHandle) -> None:
        for listener in list(self._engine_ready_listeners):
            try:
                result = listener(handle)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Error in engine-ready listener: {e}")

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    async def restore_snapshot(self) -> bool:
        """
        Load the persisted snapshot into the engine, if one exists.

        A snapshot that cannot be decoded or loaded is deleted and a
        warning is shown; the engine remains usable.

        Returns:
            True if a snapshot was loaded
        """
        engine = self.engine
        if engine is None:
            return False
        encoded = await self._store.get_snapshot()
        if encoded is None:
            return False

        self._transition(BootstrapState.SNAPSHOT_RESTORING)
        try:
            try:
                snapshot = base64.b64decode(encoded, validate=True)
            except (binascii.Error, ValueError) as e:
                raise SnapshotRestoreError(f"snapshot is not valid base64: {e}")
            await engine.wallet.load_snapshot(snapshot)
        except Exception as e:
            logger.error(f"Error loading snapshot: {e}")
            await self._store.clear_snapshot()
            if self.engine is engine:
                self.snapshot_loaded = False
                self._transition(BootstrapState.SNAPSHOT_FAILED)
            self.notifier.warning(f"Couldn't load saved data: {e}")
            return False

        if self.engine is not engine:
            return False
        self.snapshot_loaded = True
        self._transition(BootstrapState.SNAPSHOT_RESTORED)
        logger.info("Snapshot loaded successfully")
        return True

    async def save_snapshot(self) -> bool:
        """Persist the engine's current session as a base64 snapshot."""
        if self.engine is None:
            return False
        try:
            snapshot = await self.engine.wallet.save_snapshot()
        except Exception as e:
            logger.error(f"Error saving snapshot: {e}")
            return False
        return await self._store.save_snapshot(base64.b64encode(bytes(snapshot)).decode("ascii"))

    async def check_authenticated(self) -> bool:
        """Poll the engine and record AUTHENTICATED once it reports a session."""
        engine = self.engine
        if engine is None:
            return False
        try:
            authenticated = bool(await engine.wallet.is_authenticated())
        except Exception as e:
            logger.warning(f"Authentication check failed: {e}")
            return False
        if authenticated and self.engine is engine:
            self._transition(BootstrapState.AUTHENTICATED)
        return authenticated

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    async def logout(self) -> int:
        """
        Reset to UNCONFIGURED.

        All in-memory state (construction, engine handle, queues, pending
        requests, flags) is cleared before the first suspension point; the
        persisted snapshot is removed afterwards.

        Returns:
            Number of pending permission requests that were abandoned
        """
        construction = self._construction
        self._construction = None
        if construction is not None and not construction.done():
            construction.cancel()

        abandoned = self._bridge.abandon_all()
        self.engine = None
        self.config_complete = False
        self.snapshot_loaded = False
        self._transition(BootstrapState.UNCONFIGURED)

        for listener in list(self._logout_listeners):
            try:
                listener()
            except Exception as e:
                logger.error(f"Error in logout listener: {e}")

        if self._audit is not None:
            self._audit.log_logout(abandoned)
        logger.info(f"Logged out ({abandoned} pending requests abandoned)")

        await self._store.clear_snapshot()
        return abandoned

    def status(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "config_complete": self.config_complete,
            "constructing": self.constructing,
            "engine_ready": self.engine_ready,
            "snapshot_loaded": self.snapshot_loaded,
            "network": self.network_label,
            "wab_url": self.wab_url,
            "storage_url": self.selected_storage_url,
            "auth_method": self.selected_auth_method or None,
            "supported_auth_methods": (
                self.auth_info.supported_auth_methods if self.auth_info else []
            ),
            "missing_dependencies": self.dependencies.missing(),
        }
