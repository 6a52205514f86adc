"""Error taxonomy shared by the services and the HTTP layer.

Every error carries the HTTP status it maps to; ``app.main`` renders
them as ``{"error": message}`` with that status.
"""
from fastapi import status


class HandyPayError(Exception):
    """Base class for all application errors."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message}


class ValidationError(HandyPayError):
    """Missing or malformed request fields."""

    status_code = status.HTTP_400_BAD_REQUEST


class NoProcessorAccountError(ValidationError):
    """The merchant has no connected account yet."""

    def __init__(self, message: str = "User does not have a Stripe account set up"):
        super().__init__(message)


class AccountNotReadyError(ValidationError):
    """The connected account cannot accept charges yet."""

    def __init__(
        self,
        message: str = (
            "Your Stripe account is not ready to accept payments. "
            "Please complete your onboarding."
        ),
    ):
        super().__init__(message)


class InvalidRedirectUrlError(ValidationError):
    """Neither the supplied nor the default redirect URL is usable."""


class SignatureError(HandyPayError):
    """Webhook signature verification failed."""

    status_code = status.HTTP_400_BAD_REQUEST


class InvalidStateError(HandyPayError):
    """The transaction is not in a state that allows the operation."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, current_status: str, message: str | None = None):
        super().__init__(message or f"Cannot cancel transaction with status: {current_status}")
        self.current_status = current_status

    def to_dict(self) -> dict:
        return {"error": self.message, "status": self.current_status}


class AuthenticationError(HandyPayError):
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class ForbiddenError(HandyPayError):
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class NotFoundError(HandyPayError):
    status_code = status.HTTP_404_NOT_FOUND


class RequestTimeoutError(HandyPayError):
    status_code = status.HTTP_408_REQUEST_TIMEOUT

    def __init__(self, message: str = "Request timeout"):
        super().__init__(message)


class UpstreamError(HandyPayError):
    """A collaborator (payment processor, database) failed."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class LedgerError(UpstreamError):
    """The ledger store rejected or failed a read/write."""
