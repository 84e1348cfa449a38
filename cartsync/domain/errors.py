# cartsync/domain/errors.py
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


class ErrorKind(str, Enum):
    VALIDATION = "VALIDATION"
    NETWORK = "NETWORK"
    PARTIAL_FAILURE = "PARTIAL_FAILURE"
    GATEWAY_ERROR = "GATEWAY_ERROR"
    GATEWAY_CANCELLED = "GATEWAY_CANCELLED"
    CONFIRMATION_AMBIGUOUS = "CONFIRMATION_AMBIGUOUS"


class CartError(BaseModel):
    """Blad zwracany jako wynik operacji, nigdy nie rzucany."""

    kind: ErrorKind
    message: str
    field_errors: Dict[str, str] = Field(default_factory=dict)
    details: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def validation(cls, message: str, field_errors: Dict[str, str] | None = None) -> "CartError":
        return cls(kind=ErrorKind.VALIDATION, message=message, field_errors=field_errors or {})

    @classmethod
    def network(cls, message: str, **details) -> "CartError":
        return cls(kind=ErrorKind.NETWORK, message=message, details=details)

    @classmethod
    def partial(cls, message: str, **details) -> "CartError":
        return cls(kind=ErrorKind.PARTIAL_FAILURE, message=message, details=details)


class CheckoutInProgressError(RuntimeError):
    """Checkout odpalony gdy poprzednia proba jeszcze trwa."""


class NotAuthenticatedError(PermissionError):
    """Operacja wymaga zalogowanego uzytkownika."""
