"""
Custom exception hierarchy for the field readiness system.
Provides clear error categories and rich error information.
"""
from typing import Optional, Any, Dict
from dataclasses import dataclass


@dataclass
class ErrorContext:
    """Context information for errors"""
    field_id: Optional[str] = None
    date: Optional[str] = None
    component: Optional[str] = None
    operation: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class FieldReadinessError(Exception):
    """Base exception for all field readiness errors"""

    def __init__(self, message: str, context: Optional[ErrorContext] = None):
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext()

    def __str__(self) -> str:
        context_str = ""
        if self.context.field_id:
            context_str += f" [Field: {self.context.field_id}]"
        if self.context.date:
            context_str += f" [Date: {self.context.date}]"
        if self.context.component:
            context_str += f" [Component: {self.context.component}]"
        if self.context.operation:
            context_str += f" [Operation: {self.context.operation}]"

        return f"{self.__class__.__name__}: {self.message}{context_str}"


# Input data errors
class InputDataError(FieldReadinessError):
    """Unusable request input such as an unknown operation key"""
    pass


# Configuration errors
class ConfigurationError(FieldReadinessError):
    """Malformed configuration, tuning or threshold document"""
    pass


# Workflow guardrails
class GuardrailViolation(FieldReadinessError):
    """
    Calibration request rejected before any write.

    The engine reports guardrails as outcome reason codes; this exception is
    only raised when a caller asks for it via ``raise_for_status``.
    """

    def __init__(self, message: str, reason: Any = None,
                 context: Optional[ErrorContext] = None):
        super().__init__(message, context)
        self.reason = reason


# Persistence errors
class PersistenceError(FieldReadinessError):
    """A document read or write failed"""
    pass


def handle_exception(exc: Exception, context: Optional[ErrorContext] = None) -> FieldReadinessError:
    """
    Wrap generic exceptions in the FieldReadinessError hierarchy.
    Useful for catching and categorizing backend exceptions.
    """
    if isinstance(exc, FieldReadinessError):
        return exc

    error_map = {
        FileNotFoundError: PersistenceError,
        PermissionError: PersistenceError,
        OSError: PersistenceError,
        ConnectionError: PersistenceError,
        TimeoutError: PersistenceError,
        ValueError: InputDataError,
        KeyError: ConfigurationError,
    }

    for exc_type, readiness_exc_type in error_map.items():
        if isinstance(exc, exc_type):
            return readiness_exc_type(str(exc), context)

    return FieldReadinessError(str(exc), context)
