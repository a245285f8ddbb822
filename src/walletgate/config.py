"""Centralized configuration for walletgate."""

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

import yaml
from loguru import logger

SUPPORTED_CHAINS = ("main", "test")


class Config:
    """
    walletgate configuration with environment variable overrides.

    All configuration values are centralized here with sensible defaults.
    Values can be overridden via environment variables.
    """

    @staticmethod
    def _parse_port(port_str: str) -> int:
        """Parse and validate port number from string."""
        try:
            port = int(port_str)
            if not (1 <= port <= 65535):
                raise ValueError(f"Port must be 1-65535, got {port}")
            return port
        except ValueError as e:
            raise ValueError(f"Invalid PORT environment variable: {e}")

    # ========================================================================
    # Console Server Configuration
    # ========================================================================
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = _parse_port.__func__(os.getenv("PORT", "8002"))
    AUDIT_LOG_PATH: str = os.getenv("AUDIT_LOG_PATH", "./permission_audit.jsonl")

    # ========================================================================
    # Wallet Defaults
    # ========================================================================
    WAB_URL: str = os.getenv("WAB_URL", "https://wab.babbage.systems")
    STORAGE_URL: str = os.getenv("STORAGE_URL", "https://storage.babbage.systems")
    DEFAULT_CHAIN: str = os.getenv("DEFAULT_CHAIN", "main")
    ADMIN_ORIGINATOR: str = os.getenv("ADMIN_ORIGINATOR", "admin.walletgate.local")
    AUTH_INFO_TIMEOUT: float = float(os.getenv("AUTH_INFO_TIMEOUT", "10"))
    WALLET_CONFIG_PATH: Optional[str] = os.getenv("WALLET_CONFIG_PATH")

    # ========================================================================
    # Local Persistence Keys
    # ========================================================================
    STORE_PREFIX: str = "walletgate:"
    SNAPSHOT_KEY: str = "snap"
    THEME_KEY: str = "theme"
    CURRENCY_KEY: str = "currency"

    # ========================================================================
    # Redis Configuration
    # ========================================================================
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379")
    REDIS_MAX_CONNECTIONS: int = int(os.getenv("REDIS_MAX_CONNECTIONS", "20"))
    REDIS_SOCKET_CONNECT_TIMEOUT: float = float(
        os.getenv("REDIS_SOCKET_CONNECT_TIMEOUT", "2")
    )
    REDIS_SOCKET_TIMEOUT: float = float(os.getenv("REDIS_SOCKET_TIMEOUT", "2"))
    REDIS_CONNECT_RETRIES: int = int(os.getenv("REDIS_CONNECT_RETRIES", "3"))
    REDIS_CONNECT_RETRY_DELAY: float = float(os.getenv("REDIS_CONNECT_RETRY_DELAY", "0.2"))
    REDIS_CONNECT_RETRY_MAX_DELAY: float = float(
        os.getenv("REDIS_CONNECT_RETRY_MAX_DELAY", "2")
    )
    STORE_SLOW_COMMAND_MS: float = float(os.getenv("STORE_SLOW_COMMAND_MS", "100"))

    # ========================================================================
    # Notifications
    # ========================================================================
    NOTIFICATION_HISTORY: int = 50

    @classmethod
    def validate(cls) -> bool:
        """
        Validate configuration consistency.

        Checks:
        - Endpoint URLs are set
        - DEFAULT_CHAIN is a supported chain
        - Timeouts and pool sizes are > 0

        Returns:
            True if validation passes

        Raises:
            ValueError: If validation fails
        """
        errors = []

        if not cls.WAB_URL:
            errors.append("WAB_URL must be set")
        if not cls.STORAGE_URL:
            errors.append("STORAGE_URL must be set")
        if cls.DEFAULT_CHAIN not in SUPPORTED_CHAINS:
            errors.append(
                f"DEFAULT_CHAIN must be one of {', '.join(SUPPORTED_CHAINS)}, "
                f"got {cls.DEFAULT_CHAIN!r}"
            )
        if not cls.ADMIN_ORIGINATOR:
            errors.append("ADMIN_ORIGINATOR must be set")

        if cls.AUTH_INFO_TIMEOUT <= 0:
            errors.append(f"AUTH_INFO_TIMEOUT must be > 0, got {cls.AUTH_INFO_TIMEOUT}")
        if cls.NOTIFICATION_HISTORY <= 0:
            errors.append(
                f"NOTIFICATION_HISTORY must be > 0, got {cls.NOTIFICATION_HISTORY}"
            )

        # Validate Redis settings
        if cls.REDIS_MAX_CONNECTIONS <= 0:
            errors.append(
                f"REDIS_MAX_CONNECTIONS must be > 0, got {cls.REDIS_MAX_CONNECTIONS}"
            )
        if cls.REDIS_SOCKET_CONNECT_TIMEOUT <= 0:
            errors.append(
                "REDIS_SOCKET_CONNECT_TIMEOUT must be > 0, "
                f"got {cls.REDIS_SOCKET_CONNECT_TIMEOUT}"
            )
        if cls.REDIS_SOCKET_TIMEOUT <= 0:
            errors.append(
                f"REDIS_SOCKET_TIMEOUT must be > 0, got {cls.REDIS_SOCKET_TIMEOUT}"
            )
        if cls.REDIS_CONNECT_RETRIES <= 0:
            errors.append(
                f"REDIS_CONNECT_RETRIES must be > 0, got {cls.REDIS_CONNECT_RETRIES}"
            )

        if errors:
            raise ValueError(f"Config validation failed: {'; '.join(errors)}")

        return True


@dataclass(frozen=True)
class WalletConfig:
    """
    Initial wallet inputs handed to the bootstrap state machine.

    Attributes:
        wab_url: Wallet authentication backend endpoint
        storage_url: Remote storage endpoint for the wallet engine
        network: Chain selection ("main" or "test")
        admin_originator: Originator the permissions layer treats as admin
    """

    wab_url: str = Config.WAB_URL
    storage_url: str = Config.STORAGE_URL
    network: str = Config.DEFAULT_CHAIN
    admin_originator: str = Config.ADMIN_ORIGINATOR


_YAML_KEYS = ("wab_url", "storage_url", "network", "admin_originator")


def _default_config_path() -> Path:
    if Config.WALLET_CONFIG_PATH:
        return Path(Config.WALLET_CONFIG_PATH)
    return Path.cwd() / "config" / "wallet.yaml"


def load_wallet_config(path: Optional[str] = None) -> WalletConfig:
    """
    Load wallet defaults, overlaying an optional YAML file.

    Missing files and unknown keys are tolerated; a malformed file is logged
    and the environment defaults are used.

    Args:
        path: YAML file path. Defaults to WALLET_CONFIG_PATH or
            ./config/wallet.yaml

    Returns:
        WalletConfig with file values applied
    """
    config = WalletConfig()
    config_path = Path(path) if path else _default_config_path()

    if not config_path.exists():
        logger.debug(f"Wallet config not found at {config_path}, using defaults")
        return config

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Failed to read wallet config {config_path}: {e}")
        return config

    if not data:
        return config
    if not isinstance(data, dict):
        logger.error(f"Wallet config {config_path} must be a mapping, ignoring it")
        return config

    overrides = {
        key: str(data[key]) for key in _YAML_KEYS if data.get(key) not in (None, "")
    }
    unknown = set(data) - set(_YAML_KEYS)
    if unknown:
        logger.warning(f"Ignoring unknown wallet config keys: {sorted(unknown)}")

    logger.info(f"Loaded wallet config from {config_path}")
    return replace(config, **overrides)
