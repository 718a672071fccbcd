"""
auth/errors.py -- Typed failures raised by the session and token lifecycle.

Every failure carries a machine-readable code, a human-readable message and
the HTTP status class it maps to. The API layer turns any AuthServiceError
into the standard error envelope with one exception handler; nothing in auth/
knows about HTTP beyond the status number.
"""

from __future__ import annotations


class AuthServiceError(Exception):
    """Base class for all structured auth failures."""

    code: str = "auth_error"
    message: str = "Authentication request failed."
    status_code: int = 400

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ConfigurationError(AuthServiceError):
    """Server misconfiguration (e.g. the default role is missing).

    The message shown to callers stays generic; the operator-facing detail
    goes to the log at the raise site.
    """

    code = "configuration_error"
    message = "Registration is currently unavailable."


class AuthenticationError(AuthServiceError):
    # Same message for unknown email and wrong password.
    code = "bad_credentials"
    message = "Invalid email or password."


class AccountDisabledError(AuthServiceError):
    code = "account_disabled"
    message = "Your account has been deactivated."


class AccountNotConfirmedError(AuthServiceError):
    code = "account_not_confirmed"
    message = "Your account is not confirmed yet. Check your inbox for the confirmation email."


class InvalidTokenError(AuthServiceError):
    code = "invalid_token"
    message = "The token is invalid."


class TokenExpiredError(AuthServiceError):
    code = "token_expired"
    message = "The token has expired."


class MalformedTokenError(AuthServiceError):
    code = "malformed_token"
    message = "The access token could not be verified."
    status_code = 401


class EmailAlreadyRegisteredError(AuthServiceError):
    code = "email_taken"
    message = "An account with that email address already exists."
    status_code = 409


class InternalInconsistency(AuthServiceError):
    """An invariant was violated (e.g. a verified credential with no user row)."""

    code = "internal_error"
    message = "An unexpected error occurred."
    status_code = 500
