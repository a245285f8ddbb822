"""Operator console: FastMCP tools over the wallet application.

Tools:
- get_wallet_status: Bootstrap state, configuration and queue sizes
- list_permission_requests: Head and length of each permission queue
- grant_permission / deny_permission: Decide the head request of a queue
- select_auth_method: Choose auth method and wallet inputs
- finalize_wallet_config: Complete configuration and build the engine
- update_wallet_settings: Change theme and/or currency
- logout_wallet: Reset the session
- recent_notifications: Latest user-visible notifications
"""

import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from loguru import logger

from .app import get_wallet_app, set_wallet_app
from .config import Config
from .errors import QueueProtocolError, WalletGateError
from .permissions import PermissionKind
from .redis_client import check_redis_health, close_redis_client

SERVER_NAME = "WalletConsole"
HOST = Config.HOST
PORT = Config.PORT


@asynccontextmanager
async def lifespan(server):
    """
    Console lifecycle.

    Startup: Redis check (degraded mode keeps running), then wallet bootstrap.
    Shutdown: close the shared Redis client.
    """
    logger.info(f"Starting {SERVER_NAME} server...")
    healthy, message = await check_redis_health()
    if healthy:
        logger.info(message)
    else:
        logger.warning(f"{message}. Local persistence is unavailable.")

    app = get_wallet_app()
    await app.start()
    logger.info(f"{SERVER_NAME} ready (state: {app.bootstrap.state.value})")
    try:
        yield
    finally:
        await close_redis_client()
        logger.info(f"{SERVER_NAME} shut down")


console_server = FastMCP(SERVER_NAME, lifespan=lifespan)


def _parse_kind(kind: str) -> PermissionKind:
    try:
        return PermissionKind(kind.lower())
    except ValueError:
        valid = ", ".join(k.value for k in PermissionKind)
        raise ToolError(f"Invalid permission kind '{kind}'. Valid kinds: {valid}")


@console_server.tool()
async def get_wallet_status() -> Dict[str, Any]:
    """Return the bootstrap state, chosen configuration and pending queues."""
    return get_wallet_app().status()


@console_server.tool()
async def list_permission_requests(kind: Optional[str] = None) -> Dict[str, Any]:
    """
    Show the request awaiting a decision in each permission queue.

    Args:
        kind: Restrict to one queue (basket, certificate, protocol)

    Returns:
        Mapping of kind to {"head": request or None, "length": int}
    """
    app = get_wallet_app()
    kinds = [_parse_kind(kind)] if kind else list(PermissionKind)
    result = {}
    for k in kinds:
        queue = app.bridge.queue(k)
        head = queue.peek_head()
        result[k.value] = {
            "head": head.to_dict() if head is not None else None,
            "length": len(queue),
        }
    return result


@console_server.tool()
async def grant_permission(kind: str, request_id: str) -> str:
    """
    Grant the request at the head of a queue.

    Raises:
        ToolError: If the request is not the head or the engine rejects the grant
    """
    app = get_wallet_app()
    try:
        relayed = await app.bridge.grant(_parse_kind(kind), request_id)
    except QueueProtocolError as e:
        raise ToolError(str(e))
    if not relayed:
        raise ToolError(f"Grant for {request_id} could not be delivered to the wallet")
    return f"Granted {kind} request {request_id}"


@console_server.tool()
async def deny_permission(kind: str, request_id: str) -> str:
    """
    Deny the request at the head of a queue.

    Raises:
        ToolError: If the request is not the head of the queue
    """
    app = get_wallet_app()
    try:
        relayed = await app.bridge.deny(_parse_kind(kind), request_id)
    except QueueProtocolError as e:
        raise ToolError(str(e))
    if not relayed:
        logger.warning(f"Denial of {request_id} was not delivered to the wallet")
    return f"Denied {kind} request {request_id}"


@console_server.tool()
async def select_auth_method(
    method: str,
    network: Optional[str] = None,
    storage_url: Optional[str] = None,
    wab_url: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Choose the auth method and, optionally, the other wallet inputs.

    Changing wab_url discards previously fetched auth info, which is then
    fetched again.
    """
    bootstrap = get_wallet_app().bootstrap
    if wab_url:
        bootstrap.set_wab_url(wab_url)
    if network:
        bootstrap.select_network(network)
    if storage_url:
        bootstrap.set_storage_url(storage_url)
    if bootstrap.auth_info is None:
        if await bootstrap.fetch_auth_info() is None:
            raise ToolError(f"Could not fetch auth info from {bootstrap.wab_url}")
    supported = bootstrap.auth_info.supported_auth_methods
    if method not in supported:
        raise ToolError(f"Unsupported auth method '{method}'. Supported: {', '.join(supported)}")
    bootstrap.select_auth_method(method)
    return bootstrap.status()


@console_server.tool()
async def finalize_wallet_config() -> Dict[str, Any]:
    """
    Mark the configuration complete and build the wallet engine.

    Raises:
        ToolError: If a required input is missing
    """
    bootstrap = get_wallet_app().bootstrap
    try:
        bootstrap.validate_config()
    except WalletGateError as e:
        raise ToolError(str(e))
    await bootstrap.finalize_config()
    return bootstrap.status()


@console_server.tool()
async def update_wallet_settings(
    theme: Optional[str] = None, currency: Optional[str] = None
) -> Dict[str, Any]:
    """Change the theme mode and/or display currency."""
    if theme is None and currency is None:
        raise ToolError("Nothing to update: pass theme and/or currency")
    sync = get_wallet_app().settings
    try:
        if theme is not None:
            await sync.set_theme(theme)
        if currency is not None:
            await sync.set_currency(currency)
    except WalletGateError as e:
        raise ToolError(str(e))
    except Exception as e:
        logger.error(f"Failed to update settings: {e}")
        raise ToolError(f"Failed to update settings: {e}")
    return sync.settings.to_dict()


@console_server.tool()
async def logout_wallet() -> str:
    """Log out: abandon pending requests and clear the saved session."""
    abandoned = await get_wallet_app().logout()
    return f"Logged out ({abandoned} pending requests abandoned)"


@console_server.tool()
async def recent_notifications(limit: int = 10) -> List[Dict[str, Any]]:
    """Return the most recent user-visible notifications, newest last."""
    if limit <= 0:
        raise ToolError("limit must be positive")
    history = get_wallet_app().notifier.history
    return [n.to_dict() for n in history[-limit:]]


def main():
    """
    Entry point for the console server.

    Configures loguru sinks, validates configuration, builds the wallet
    application and serves the console over HTTP/SSE.
    """
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> | <level>{message}</level>",
        level="INFO",
    )
    logger.add(
        "walletgate.log",
        rotation="10 MB",
        retention="7 days",
        compression="zip",
        level="DEBUG",
    )

    try:
        Config.validate()
        set_wallet_app(None)
        get_wallet_app()
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)

    logger.info(f"Starting {SERVER_NAME} on {HOST}:{PORT}...")
    try:
        console_server.run(transport="sse", host=HOST, port=PORT)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Server error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
