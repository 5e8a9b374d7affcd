"""
Error taxonomy for the trading agent.

Every failure that crosses a component boundary is one of these. The auth
flow captures them into its context, the engine turns them into status
events, and the HTTP layer maps them to JSON error bodies.
"""

from typing import Any, Optional


class AgentError(Exception):
    """Base exception for all agent errors"""

    code: str = "AGENT_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class NoWalletConnected(AgentError):
    code = "NO_WALLET_CONNECTED"

    def __init__(self, message: str = "No wallet connected", details: Optional[dict[str, Any]] = None):
        super().__init__(message, details)


class NoActiveSession(AgentError):
    code = "NO_ACTIVE_SESSION"

    def __init__(self, message: str = "No active session", details: Optional[dict[str, Any]] = None):
        super().__init__(message, details)


class InvalidAddress(AgentError):
    code = "INVALID_ADDRESS"


class InsufficientBalance(AgentError):
    code = "INSUFFICIENT_BALANCE"


class EmptyContractSet(AgentError):
    code = "EMPTY_CONTRACT_SET"

    def __init__(
        self,
        message: str = "Session must specify at least one allowed contract",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, details)


class SignatureDeclined(AgentError):
    """The owner refused to sign. Shown to the user, never retried."""

    code = "SIGNATURE_DECLINED"

    def __init__(self, message: str = "Signature request was declined", details: Optional[dict[str, Any]] = None):
        super().__init__(message, details)


class NetworkError(AgentError):
    """Timeout or unreachable host"""

    code = "NETWORK_ERROR"


class VenueRejected(AgentError):
    """The venue answered with a structured error (bad nonce, bad invite code...)"""

    code = "VENUE_REJECTED"

    def __init__(self, message: str, status: int, payload: Any = None):
        super().__init__(message, {"status": status, "payload": payload})
        self.status = status
        self.payload = payload


class EncryptionFailure(AgentError):
    code = "ENCRYPTION_FAILURE"


class PersistenceFailure(AgentError):
    code = "PERSISTENCE_FAILURE"
