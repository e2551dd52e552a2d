# =============================================================================
# planner_core/errors/exceptions.py
# Custom Exception Hierarchy for PlannerPro
# =============================================================================

from typing import Optional, Dict, Any


class PlannerError(Exception):
    """
    Base exception for all PlannerPro errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "STORE_001")
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
        self.code = code or "PP_000"
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
# RECORD / DATA EXCEPTIONS
# =============================================================================

class RecordValidationError(PlannerError):
    """Raised when a record fails validation at the facade boundary"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        collection: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if collection:
            details["collection"] = collection

        super().__init__(
            message=message,
            code="VALID_001",
            details=details,
            **kwargs,
        )
        self.field = field


class ImportFormatError(PlannerError):
    """Raised when an import document does not have the export layout"""

    def __init__(
        self,
        message: str,
        section: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if section:
            details["section"] = section

        super().__init__(
            message=message,
            code="DATA_002",
            details=details,
            **kwargs,
        )


# =============================================================================
# STORAGE EXCEPTIONS
# =============================================================================

class LocalStoreError(PlannerError):
    """Raised when a write to the local store fails"""

    def __init__(
        self,
        message: str,
        backend: Optional[str] = None,
        collection: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if backend:
            details["backend"] = backend
        if collection:
            details["collection"] = collection

        super().__init__(
            message=message,
            code="STORE_001",
            details=details,
            **kwargs,
        )


class RemoteUnavailableError(PlannerError):
    """Raised when an operation strictly requires the remote API"""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if endpoint:
            details["endpoint"] = endpoint
        if status_code is not None:
            details["status_code"] = status_code

        super().__init__(
            message=message,
            code="REMOTE_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(PlannerError):
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
