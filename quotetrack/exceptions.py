"""Exception hierarchy for quotetrack.

All errors carry a human-readable ``message``, structured ``context`` for
logging and a ``user_message`` that handler layers can show to the person
who triggered the operation.

Usage:
    from quotetrack.exceptions import TransitionDeniedError

    try:
        service.request_transition(db, quote_id, QuoteEventKind.DECLINED)
    except TransitionDeniedError as e:
        logger.warning("transition_denied", error=str(e), context=e.context)
        console.print(e.user_message)
"""

from __future__ import annotations

from typing import Any


class QuoteTrackError(Exception):
    """Base exception for all quotetrack errors.

    Attributes:
        message: Human-readable error message
        context: Additional context for debugging (dict)
        original_error: Original exception if wrapped
    """

    retryable: bool = False
    default_user_message = "Something went wrong. Please try again."

    def __init__(
        self,
        message: str,
        *,
        context: dict[str, Any] | None = None,
        original_error: Exception | None = None,
        user_message: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.original_error = original_error
        self.user_message = user_message or self.default_user_message

    def __str__(self) -> str:
        base = self.message
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base = f"{base} ({ctx_str})"
        if self.original_error:
            base = f"{base} [caused by: {type(self.original_error).__name__}]"
        return base

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, context={self.context!r})"


# =============================================================================
# Validation & Input Errors
# =============================================================================


class ValidationError(QuoteTrackError):
    """Raised when input validation fails."""

    default_user_message = "Some of the submitted data is invalid."

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if field:
            context["field"] = field
        if value is not None:
            context["value"] = str(value)[:100]
        kwargs["context"] = context
        kwargs.setdefault("user_message", message)
        super().__init__(message, **kwargs)


class ConfigurationError(QuoteTrackError):
    """Raised when application configuration is invalid or missing."""

    def __init__(self, message: str, *, setting: str | None = None, **kwargs: Any) -> None:
        context = kwargs.get("context", {})
        if setting:
            context["setting"] = setting
        kwargs["context"] = context
        super().__init__(message, **kwargs)


class PermissionDeniedError(QuoteTrackError):
    """Raised when the acting user may not perform an operation."""

    default_user_message = "You are not allowed to perform this action."

    def __init__(self, message: str, *, actor: str | None = None, **kwargs: Any) -> None:
        context = kwargs.get("context", {})
        if actor:
            context["actor"] = actor
        kwargs["context"] = context
        super().__init__(message, **kwargs)


# =============================================================================
# Database & Persistence Errors
# =============================================================================


class DatabaseError(QuoteTrackError):
    """Base class for database-related errors."""


class RecordNotFoundError(DatabaseError):
    """Raised when a database record is not found."""

    default_user_message = "The requested record does not exist."

    def __init__(
        self,
        message: str,
        *,
        entity_type: str | None = None,
        entity_id: int | str | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if entity_type:
            context["entity_type"] = entity_type
        if entity_id:
            context["entity_id"] = str(entity_id)
        kwargs["context"] = context
        super().__init__(message, **kwargs)


class QuoteNotFoundError(RecordNotFoundError):
    """Raised when the referenced quote does not exist (404-equivalent, no retry)."""

    default_user_message = "This quote could not be found. It may have been deleted."

    def __init__(self, quote_id: str, **kwargs: Any) -> None:
        super().__init__(
            f"Quote {quote_id} not found", entity_type="quote", entity_id=quote_id, **kwargs
        )
        self.quote_id = quote_id


class StoreUnavailableError(DatabaseError):
    """Transient infrastructure failure. Callers may retry with backoff."""

    retryable = True
    default_user_message = "We could not reach the server. Please try again in a moment."


class ConcurrentUpdateError(StoreUnavailableError):
    """Raised when the conditional update keeps losing to concurrent writers."""

    def __init__(self, message: str, *, quote_id: str | None = None, **kwargs: Any) -> None:
        context = kwargs.get("context", {})
        if quote_id:
            context["quote_id"] = quote_id
        kwargs["context"] = context
        super().__init__(message, **kwargs)


# =============================================================================
# Business Logic Errors
# =============================================================================


class BusinessLogicError(QuoteTrackError):
    """Base class for business rule violations."""


class TransitionDeniedError(BusinessLogicError):
    """Raised when the lifecycle guard rejects a requested transition.

    Never retried automatically: the initiating actor must be told why.
    """

    default_user_message = "This action is not allowed for the quote in its current state."

    def __init__(
        self,
        message: str,
        *,
        current_status: str | None = None,
        requested_kind: str | None = None,
        quote_id: str | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if quote_id:
            context["quote_id"] = quote_id
        if current_status:
            context["current_status"] = current_status
        if requested_kind:
            context["requested_kind"] = requested_kind
        kwargs["context"] = context
        super().__init__(message, **kwargs)
        self.current_status = current_status
        self.requested_kind = requested_kind


class AlreadyTerminalError(TransitionDeniedError):
    """Raised when a quote already reached ``signed`` or ``declined``."""

    def __init__(
        self,
        message: str,
        *,
        current_status: str | None = None,
        requested_kind: str | None = None,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault(
            "user_message",
            f"This quote was already {current_status} and cannot be modified.",
        )
        super().__init__(
            message, current_status=current_status, requested_kind=requested_kind, **kwargs
        )


class QuoteLockedError(TransitionDeniedError):
    """Raised when editing the content of a signed or declined quote."""

    def __init__(self, message: str, *, current_status: str | None = None, **kwargs: Any) -> None:
        kwargs.setdefault(
            "user_message",
            f"This quote was already {current_status} and can no longer be edited.",
        )
        super().__init__(message, current_status=current_status, requested_kind="edit", **kwargs)


# =============================================================================
# External Integration Errors
# =============================================================================


class IntegrationError(QuoteTrackError):
    """Base class for external service integration errors."""


class NotificationError(IntegrationError):
    """Raised by a notification channel. Never escapes the dispatcher."""

    def __init__(self, message: str, *, channel: str | None = None, **kwargs: Any) -> None:
        context = kwargs.get("context", {})
        if channel:
            context["channel"] = channel
        kwargs["context"] = context
        super().__init__(message, **kwargs)


class QuoteDeliveryError(IntegrationError):
    """Raised when the quote e-mail could not be delivered to the client."""

    retryable = True
    default_user_message = "The quote e-mail could not be sent. Please try again."

    def __init__(self, message: str, *, recipient: str | None = None, **kwargs: Any) -> None:
        context = kwargs.get("context", {})
        if recipient:
            context["recipient"] = recipient
        kwargs["context"] = context
        super().__init__(message, **kwargs)


__all__ = [
    "QuoteTrackError",
    "ValidationError",
    "ConfigurationError",
    "PermissionDeniedError",
    "DatabaseError",
    "RecordNotFoundError",
    "QuoteNotFoundError",
    "StoreUnavailableError",
    "ConcurrentUpdateError",
    "BusinessLogicError",
    "TransitionDeniedError",
    "AlreadyTerminalError",
    "QuoteLockedError",
    "IntegrationError",
    "NotificationError",
    "QuoteDeliveryError",
]
