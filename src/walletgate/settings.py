"""User settings: local persistence and sync through the engine."""

import json
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Optional

from loguru import logger

from .config import Config
from .engine import EngineHandle, SettingsManager
from .errors import SettingsUnavailableError
from .store import LocalStore


DEFAULT_THEME_MODE = "dark"
DEFAULT_CURRENCY = "USD"


@dataclass(frozen=True)
class WalletSettings:
    """
    User-facing wallet settings.

    Attributes:
        theme_mode: Color theme ("light" or "dark")
        currency: Display currency code
        extra: Engine-owned settings carried through untouched
    """

    theme_mode: str = DEFAULT_THEME_MODE
    currency: str = DEFAULT_CURRENCY
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WalletSettings":
        theme = data.get("theme")
        if not isinstance(theme, Mapping):
            theme = {}
        extra = {k: v for k, v in data.items() if k not in ("theme", "currency")}
        return cls(
            theme_mode=str(theme.get("mode") or DEFAULT_THEME_MODE),
            currency=str(data.get("currency") or DEFAULT_CURRENCY),
            extra=extra,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {**self.extra, "theme": {"mode": self.theme_mode}, "currency": self.currency}


DEFAULT_SETTINGS = WalletSettings()


class SettingsSync:
    """
    Holds the active settings and keeps them in sync.

    - Local keys (theme, currency) are written on every local change and
      read once at startup.
    - When an engine becomes ready its settings are fetched once; a failure
      keeps the current values.
    - Changes are pushed through the engine's settings manager when one is
      available.
    """

    def __init__(self, store: LocalStore):
        self._store = store
        self._settings = DEFAULT_SETTINGS
        self._manager: Optional[SettingsManager] = None
        self._loaded_for: Optional[EngineHandle] = None

    @property
    def settings(self) -> WalletSettings:
        return self._settings

    @property
    def has_manager(self) -> bool:
        return self._manager is not None

    async def load_local(self) -> WalletSettings:
        """Apply locally persisted theme and currency, if present."""
        theme = self._read_json_field(await self._store.get(Config.THEME_KEY), "theme")
        currency = self._read_json_field(
            await self._store.get(Config.CURRENCY_KEY), "currency"
        )
        if theme:
            self._settings = replace(self._settings, theme_mode=theme)
        if currency:
            self._settings = replace(self._settings, currency=currency)
        return self._settings

    @staticmethod
    def _read_json_field(raw: Optional[str], key: str) -> Optional[str]:
        if not raw:
            return None
        try:
            value = json.loads(raw).get(key)
        except (ValueError, AttributeError):
            logger.warning(f"Ignoring malformed local {key} setting: {raw!r}")
            return None
        return str(value) if value else None

    async def on_engine_ready(self, handle: EngineHandle) -> None:
        """Adopt the engine's settings manager and fetch settings once."""
        self._manager = handle.settings_manager
        if self._loaded_for is handle:
            return
        self._loaded_for = handle
        if self._manager is None:
            return
        try:
            remote = await self._manager.get()
        except Exception as e:
            logger.debug(f"Unable to load settings, keeping defaults: {e}")
            return
        if self._loaded_for is not handle:
            logger.debug("Discarding settings fetched for an engine that is no longer active")
            return
        if not isinstance(remote, Mapping):
            logger.debug(f"Ignoring non-mapping settings from wallet: {remote!r}")
            return
        self._settings = WalletSettings.from_dict(remote)
        logger.info("Loaded user settings from wallet")

    def reset(self) -> None:
        """Forget the engine's settings manager (logout)."""
        self._manager = None
        self._loaded_for = None

    async def update_settings(self, new_settings: WalletSettings) -> WalletSettings:
        """
        Push settings through the engine and adopt them.

        Raises:
            SettingsUnavailableError: If no engine settings manager is available
        """
        if self._manager is None:
            raise SettingsUnavailableError("The user must be logged in to update settings!")
        await self._manager.set(new_settings.to_dict())
        self._settings = new_settings
        return new_settings

    async def set_theme(self, mode: str) -> WalletSettings:
        await self._store.set(Config.THEME_KEY, json.dumps({"theme": mode}))
        return await self._apply(replace(self._settings, theme_mode=mode))

    async def set_currency(self, currency: str) -> WalletSettings:
        await self._store.set(Config.CURRENCY_KEY, json.dumps({"currency": currency}))
        return await self._apply(replace(self._settings, currency=currency))

    async def _apply(self, new_settings: WalletSettings) -> WalletSettings:
        if self._manager is None:
            self._settings = new_settings
            return new_settings
        return await self.update_settings(new_settings)
