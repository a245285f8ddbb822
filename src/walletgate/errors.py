"""Exception taxonomy for the permission bridge and wallet bootstrap."""


class WalletGateError(Exception):
    """Base class for walletgate errors."""

    pass


# ============================================================================
# VALIDATION
# ============================================================================


class ConfigValidationError(WalletGateError):
    """A required wallet configuration field is missing or invalid."""

    def __init__(self, field_name: str, message: str):
        super().__init__(message)
        self.field_name = field_name


# ============================================================================
# TRANSIENT I/O
# ============================================================================


class AuthInfoFetchError(WalletGateError):
    """The remote auth-config endpoint was unreachable or returned non-2xx."""

    pass


class EngineConstructionError(WalletGateError):
    """Wallet engine construction failed at some step."""

    pass


class SnapshotRestoreError(WalletGateError):
    """A persisted session snapshot could not be decoded or loaded."""

    pass


# ============================================================================
# PERMISSION DECISIONS
# ============================================================================


class QueueProtocolError(WalletGateError):
    """Grant/Deny issued for a request that is not the head of its queue."""

    pass


class PermissionDeniedError(WalletGateError):
    """The user denied a permission request."""

    def __init__(self, request_id: str):
        super().__init__(f"Permission request {request_id} was denied")
        self.request_id = request_id


class SessionEndedError(WalletGateError):
    """A pending permission request was abandoned by logout."""

    def __init__(self, request_id: str):
        super().__init__(f"Session ended before request {request_id} was decided")
        self.request_id = request_id


class PermissionRelayError(WalletGateError):
    """Forwarding a decision to the wallet engine failed."""

    def __init__(self, request_id: str, cause: Exception):
        super().__init__(f"Failed to relay decision for {request_id}: {cause}")
        self.request_id = request_id
        self.cause = cause


# ============================================================================
# SETTINGS
# ============================================================================


class SettingsUnavailableError(WalletGateError):
    """Settings were updated without an engine settings manager."""

    pass
