# =============================================================================
# sync_core/errors/exceptions.py
# Custom Exception Hierarchy for the offline sync cache
# =============================================================================

from typing import Optional, Dict, Any


class OfflineCacheError(Exception):
    """
    Base exception for all offline cache errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "REMOTE_001")
        details: Additional context as a dictionary
        recoverable: Whether the error can be recovered from
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "SYNC_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# REMOTE BACKEND EXCEPTIONS
# =============================================================================

# Fragments of transport error text that mean "could not reach the server"
NETWORK_ERROR_MARKERS = (
    "refused the network connection",
    "refused the connection",
    "connection refused",
    "failed host lookup",
    "no address associated with hostname",
    "name or service not known",
    "nodename nor servname provided",
    "temporary failure in name resolution",
    "failed to resolve",
)


class RemoteError(OfflineCacheError):
    """
    Raised by remote clients when a backend call fails.

    A status of 0 means no HTTP response was received at all.
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        response: Optional[Any] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if status is not None:
            details["status"] = status
        if response:
            details["response"] = response

        super().__init__(
            message=message,
            code="REMOTE_001",
            details=details,
            **kwargs,
        )
        self.status = status
        self.response = response

    @property
    def is_network_error(self) -> bool:
        """Transient failures: connection refused, DNS failure, zero status."""
        if self.status == 0:
            return True
        text = str(self).lower()
        cause = self.__cause__
        if cause is not None:
            text += " " + str(cause).lower()
        return any(marker in text for marker in NETWORK_ERROR_MARKERS)


# =============================================================================
# LOCAL LAYER EXCEPTIONS
# =============================================================================

class QueryTranslationError(OfflineCacheError):
    """Raised when a filter/sort/cursor cannot be translated"""

    def __init__(
        self,
        message: str,
        expression: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if expression:
            details["expression"] = expression

        super().__init__(
            message=message,
            code="QUERY_001",
            details=details,
            **kwargs,
        )


class QueueOperationError(OfflineCacheError):
    """Raised when a mutation cannot be queued"""

    def __init__(
        self,
        message: str,
        operation_type: Optional[str] = None,
        collection: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if operation_type:
            details["operation_type"] = operation_type
        if collection:
            details["collection"] = collection

        super().__init__(
            message=message,
            code="QUEUE_001",
            details=details,
            **kwargs,
        )


class StoreError(OfflineCacheError):
    """Raised for invalid operations against the local store"""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if table:
            details["table"] = table

        super().__init__(
            message=message,
            code="STORE_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(OfflineCacheError):
    """Raised when configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            recoverable=False,
            **kwargs,
        )
