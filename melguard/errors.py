"""
MEL Guard - Error Taxonomy
Version: 1.0.0

Changelog:
v1.0.0 (2026-09-28): Initial exception hierarchy

Transient errors come from the Effort sources and are retryable by the caller.
Validation and not-found errors are raised at rule-write time. Malformed
membership payloads are logged and never escape the classifier.
"""

from typing import Any, Dict, Optional


class MelGuardError(Exception):
    """
    Base exception for all MEL Guard errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "SRC_001")
        details: Additional context as a dictionary
        recoverable: Whether retrying the operation may succeed
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "MEL_000"
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


class TransientExternalError(MelGuardError):
    """Equipment or work order source unavailable or timed out"""

    def __init__(self, message: str, source: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if source:
            details["source"] = source
        kwargs.setdefault("code", "SRC_001")
        super().__init__(message=message, details=details, recoverable=True, **kwargs)
        self.source = source


class ReconcileError(TransientExternalError):
    """A reconcile pass aborted before writing; alert state was left unchanged"""

    def __init__(self, message: str, phase: str, **kwargs):
        details = kwargs.pop("details", {})
        details["phase"] = phase
        details["alerts_unchanged"] = True
        super().__init__(message=message, code="REC_001", details=details, **kwargs)
        self.phase = phase


class ValidationError(MelGuardError):
    """Rule write rejected (negative minimum, unknown group, ...)"""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        super().__init__(message=message, code="VAL_001", details=details, **kwargs)
        self.field = field


class NotFoundError(MelGuardError):
    """Referenced rule or alert does not exist"""

    def __init__(self, entity: str, identifier: Any, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"entity": entity, "id": identifier})
        super().__init__(
            message=f"{entity} {identifier} not found",
            code="NF_001",
            details=details,
            **kwargs,
        )
        self.entity = entity
        self.identifier = identifier


class MalformedDataError(MelGuardError):
    """Unparseable persisted payload (custom group membership)"""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("code", "DATA_001")
        super().__init__(message=message, **kwargs)
