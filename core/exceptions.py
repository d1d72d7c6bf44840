"""Custom exceptions for the ledger sync service.

Every error carries a message and a details dict. ``to_dict`` gives the
shape used in structured logs and in API error bodies.
"""

from typing import Any, Optional


class LedgerSyncError(Exception):
    """Root of the service error tree."""

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


# --- network ---

class NetworkError(LedgerSyncError):
    """Raised when a remote service cannot be reached or answers badly."""

    def __init__(
        self,
        service: str,
        message: str,
        original_error: Optional[Exception] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(
            message=f"Request to {service} failed: {message}",
            details={
                "service": service,
                "status_code": status_code,
                "original_error": str(original_error) if original_error else None,
            }
        )
        self.service = service
        self.status_code = status_code
        self.original_error = original_error


class FeedTimeoutError(NetworkError):
    """Raised when a single feed request exceeds its network timeout."""

    def __init__(self, service: str, timeout_seconds: float):
        super().__init__(
            service=service,
            message=f"timed out after {timeout_seconds}s",
        )
        self.details["timeout_seconds"] = timeout_seconds
        self.timeout_seconds = timeout_seconds


class ContractQueryError(NetworkError):
    """Raised when a contract smart query fails."""

    def __init__(
        self,
        contract: str,
        message: str,
        original_error: Optional[Exception] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(
            service=f"contract {contract}",
            message=message,
            original_error=original_error,
            status_code=status_code,
        )
        self.details["contract"] = contract
        self.contract = contract


# --- data ---

class MalformedLedgerRecordError(LedgerSyncError):
    """Raised when a feed record lacks required fields or has the wrong shape."""

    def __init__(
        self,
        reason: str,
        tx_id: Optional[Any] = None,
        raw_data: Optional[str] = None
    ):
        super().__init__(
            message=f"Malformed ledger record {tx_id!r}: {reason}",
            details={
                "tx_id": tx_id,
                "reason": reason,
                "raw_data": raw_data[:200] if raw_data else None,
            }
        )
        self.tx_id = tx_id
        self.reason = reason


# --- sync ---

class ScanTimeoutError(LedgerSyncError):
    """Raised when an update cycle exceeds its wall-clock deadline."""

    def __init__(self, timeout_seconds: float, operation: str = "scan"):
        super().__init__(
            message=f"{operation.capitalize()} exceeded deadline of {timeout_seconds}s",
            details={
                "timeout_seconds": timeout_seconds,
                "operation": operation,
            }
        )
        self.timeout_seconds = timeout_seconds
        self.operation = operation


# --- store ---

class StoreError(LedgerSyncError):
    """Base exception for keyed store failures."""
    pass


class StoreWriteError(StoreError):
    """Raised when an aggregate cannot be persisted after retrying."""

    def __init__(
        self,
        key: str,
        attempts: int,
        original_error: Optional[Exception] = None
    ):
        super().__init__(
            message=f"Failed to persist {key} after {attempts} attempt(s)",
            details={
                "key": key,
                "attempts": attempts,
                "original_error": str(original_error) if original_error else None,
            }
        )
        self.key = key
        self.attempts = attempts
        self.original_error = original_error


# --- configuration ---

class ConfigurationError(LedgerSyncError):
    """Raised when there's a configuration error."""

    def __init__(self, message: str, config_key: Optional[str] = None):
        super().__init__(
            message=f"Configuration error: {message}",
            details={"config_key": config_key} if config_key else {}
        )
        self.config_key = config_key


class UnknownNetworkError(ConfigurationError):
    """Raised when a request names a network that is not configured."""

    def __init__(self, network: str, known: Optional[list[str]] = None):
        super().__init__(
            message=f"Unknown network '{network}'",
            config_key="networks",
        )
        self.details["known_networks"] = known or []
        self.network = network
