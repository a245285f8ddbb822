"""Tests for WalletSettings and SettingsSync."""

import asyncio
import json

import pytest

from conftest import FakeSettingsManager
from walletgate.config import Config
from walletgate.engine import EngineHandle
from walletgate.errors import SettingsUnavailableError
from walletgate.settings import DEFAULT_SETTINGS, SettingsSync, WalletSettings


@pytest.mark.unit
class TestWalletSettings:
    def test_round_trip_keeps_engine_fields(self):
        data = {"theme": {"mode": "light"}, "currency": "EUR", "permissionMode": "simple"}
        settings = WalletSettings.from_dict(data)

        assert settings.theme_mode == "light"
        assert settings.currency == "EUR"
        assert settings.to_dict() == data

    def test_missing_values_fall_back_to_defaults(self):
        settings = WalletSettings.from_dict({"theme": "light"})
        assert settings.theme_mode == DEFAULT_SETTINGS.theme_mode
        assert settings.currency == DEFAULT_SETTINGS.currency


@pytest.mark.unit
@pytest.mark.asyncio
class TestSettingsSync:
    async def test_load_local_applies_persisted_keys(self, store):
        store.data[Config.THEME_KEY] = json.dumps({"theme": "light"})
        store.data[Config.CURRENCY_KEY] = json.dumps({"currency": "GBP"})
        sync = SettingsSync(store)

        settings = await sync.load_local()

        assert settings.theme_mode == "light"
        assert settings.currency == "GBP"

    async def test_load_local_ignores_malformed_values(self, store):
        store.data[Config.THEME_KEY] = "{not json"
        store.data[Config.CURRENCY_KEY] = json.dumps(["GBP"])
        sync = SettingsSync(store)

        assert await sync.load_local() == DEFAULT_SETTINGS

    async def test_engine_settings_fetched_once_per_engine(self, store, engine_handle):
        sync = SettingsSync(store)

        await sync.on_engine_ready(engine_handle)
        await sync.on_engine_ready(engine_handle)

        engine_handle.settings_manager.get.assert_awaited_once()
        assert sync.settings.theme_mode == "light"
        assert sync.settings.currency == "EUR"
        assert sync.has_manager

    async def test_fetch_failure_keeps_current_settings(self, store, engine_handle):
        engine_handle.settings_manager.get.side_effect = RuntimeError("not authenticated")
        sync = SettingsSync(store)

        await sync.on_engine_ready(engine_handle)

        assert sync.settings == DEFAULT_SETTINGS
        assert sync.has_manager

    async def test_update_requires_manager(self, store):
        sync = SettingsSync(store)
        with pytest.raises(SettingsUnavailableError):
            await sync.update_settings(WalletSettings(currency="EUR"))

    async def test_set_theme_persists_locally_and_pushes(self, store, engine_handle):
        sync = SettingsSync(store)
        await sync.on_engine_ready(engine_handle)

        await sync.set_theme("dark")

        assert json.loads(store.data[Config.THEME_KEY]) == {"theme": "dark"}
        pushed = engine_handle.settings_manager.set.await_args.args[0]
        assert pushed["theme"] == {"mode": "dark"}
        assert pushed["currency"] == "EUR"
        assert sync.settings.theme_mode == "dark"

    async def test_set_currency_without_engine_is_local_only(self, store):
        sync = SettingsSync(store)

        settings = await sync.set_currency("JPY")

        assert settings.currency == "JPY"
        assert json.loads(store.data[Config.CURRENCY_KEY]) == {"currency": "JPY"}

    async def test_reset_forgets_manager_and_refetches_next_engine(self, store, engine_handle):
        sync = SettingsSync(store)
        await sync.on_engine_ready(engine_handle)
        sync.reset()
        assert not sync.has_manager

        manager = FakeSettingsManager({"currency": "CHF"})
        other = EngineHandle(
            wallet=engine_handle.wallet,
            permissions_manager=engine_handle.permissions_manager,
            settings_manager=manager,
        )
        await sync.on_engine_ready(other)

        manager.get.assert_awaited_once()
        assert sync.settings.currency == "CHF"

    async def test_logout_during_fetch_discards_result(self, store, engine_handle):
        gate = asyncio.Event()

        async def slow_get():
            await gate.wait()
            return {"theme": {"mode": "light"}, "currency": "EUR"}

        engine_handle.settings_manager.get.side_effect = slow_get
        sync = SettingsSync(store)

        fetch = asyncio.ensure_future(sync.on_engine_ready(engine_handle))
        await asyncio.sleep(0)
        sync.reset()
        gate.set()
        await fetch

        assert sync.settings == DEFAULT_SETTINGS
        assert not sync.has_manager
