"""
errors.py - Action failure taxonomy.

Errors are contracts, not strings. Every handler failure is classified
before the dispatcher decides between retry, terminal failure and degraded
success.
"""

from __future__ import annotations

import smtplib
import socket
from enum import Enum
from typing import Any

import httpx
from redis import exceptions as redis_exceptions
from sqlalchemy import exc as sa_exc


class ErrorClass(str, Enum):
    CONFIGURATION = "configuration"  # Fatal, never retried
    TRANSIENT = "transient"          # Retried with backoff up to the threshold
    DEGRADED = "degraded"            # Side effect logged only, execution succeeds


class ActionErrorCode(str, Enum):
    UNSUPPORTED_ACTION = "unsupported_action"
    INVALID_CONFIGURATION = "invalid_configuration"
    MISSING_REFERENCE = "missing_reference"
    STRUCTURAL_REJECTION = "structural_rejection"
    COLLABORATOR_UNAVAILABLE = "collaborator_unavailable"
    TIMEOUT = "timeout"
    DELIVERY_FAILED = "delivery_failed"
    CAPABILITY_MISSING = "capability_missing"
    HANDLER_ERROR = "handler_error"


class ActionError(Exception):
    """Base for classified handler failures."""

    classification: ErrorClass = ErrorClass.CONFIGURATION
    code: ActionErrorCode = ActionErrorCode.HANDLER_ERROR

    def __init__(
        self,
        message: str,
        *,
        code: ActionErrorCode | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_code": self.code.value,
            "classification": self.classification.value,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(ActionError):
    classification = ErrorClass.CONFIGURATION
    code = ActionErrorCode.INVALID_CONFIGURATION


class UnsupportedActionError(ConfigurationError):
    code = ActionErrorCode.UNSUPPORTED_ACTION

    def __init__(self, action_type: str) -> None:
        super().__init__(
            f"Unsupported action type: {action_type}",
            details={"action_type": action_type},
        )


class TransientError(ActionError):
    classification = ErrorClass.TRANSIENT
    code = ActionErrorCode.COLLABORATOR_UNAVAILABLE


class CapabilityMissing(ActionError):
    classification = ErrorClass.DEGRADED
    code = ActionErrorCode.CAPABILITY_MISSING

    def __init__(self, capability: str) -> None:
        super().__init__(
            f"Required store '{capability}' is not available",
            details={"capability": capability},
        )
        self.capability = capability


_TRANSIENT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    TimeoutError,
    ConnectionError,
    socket.gaierror,
    smtplib.SMTPServerDisconnected,
    smtplib.SMTPConnectError,
    sa_exc.OperationalError,
    sa_exc.DisconnectionError,
    sa_exc.TimeoutError,
    httpx.TransportError,
    redis_exceptions.ConnectionError,
    redis_exceptions.TimeoutError,
)


def classify_exception(exc: BaseException) -> ActionError:
    """
    Map any exception raised by a handler onto the taxonomy.

    Integrity errors mean the store rejected the write for structural
    reasons (e.g. referenced rows missing) and are fatal. Connectivity and
    timeout errors are transient. Anything else is a fatal handler error.
    """
    if isinstance(exc, ActionError):
        return exc
    if isinstance(exc, sa_exc.IntegrityError):
        return ConfigurationError(
            f"Store rejected write: {exc.orig}",
            code=ActionErrorCode.STRUCTURAL_REJECTION,
        )
    if isinstance(exc, TimeoutError):
        return TransientError(str(exc) or "Handler timed out", code=ActionErrorCode.TIMEOUT)
    if isinstance(exc, _TRANSIENT_EXCEPTIONS):
        return TransientError(f"{type(exc).__name__}: {exc}")
    return ConfigurationError(
        f"{type(exc).__name__}: {exc}", code=ActionErrorCode.HANDLER_ERROR
    )
