"""
Domain exceptions - Semantic error types for onboarding.

This module defines the onboarding error taxonomy. Every error carries a
human-readable message suitable for display and, where it applies to a
single input, the name of the offending field.
"""

import math


class OnboardingError(Exception):
    """Base class for onboarding domain errors."""

    default_message = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None, field: str | None = None) -> None:
        self.message = message or self.default_message
        self.field = field
        super().__init__(self.message)


class ValidationError(OnboardingError):
    """Local input validation failed. No network call was made."""

    default_message = "Please correct the highlighted fields."

    def __init__(self, errors: dict[str, str], message: str | None = None) -> None:
        self.errors = dict(errors)
        field = next(iter(self.errors), None)
        super().__init__(message or self.errors.get(field) or None, field=field)


class SubmissionError(OnboardingError):
    """A remote call failed."""

    default_message = "Registration failed. Please try again."


class ConflictError(SubmissionError):
    """The email address is already registered."""

    default_message = "Email already exists. Please use a different email or try logging in."

    def __init__(self, message: str | None = None, field: str | None = "email") -> None:
        super().__init__(message, field=field)


class NetworkError(SubmissionError):
    """Transport failure or unexpected server error."""

    default_message = "Network error. Please check your connection."


class SessionStorageError(SubmissionError):
    """The session could not be stored or read back."""

    default_message = "We could not save your sign-in. Please try again."


class RateLimitedError(OnboardingError):
    """A code was requested again before the minimum interval elapsed."""

    default_message = "Please wait before requesting another code."

    def __init__(self, retry_after: float, message: str | None = None) -> None:
        self.retry_after = max(retry_after, 0.0)
        super().__init__(message or f"Please wait {math.ceil(self.retry_after)} seconds before requesting another code.")


class InvalidCodeError(OnboardingError):
    """Wrong or expired one-time code. The challenge remains usable."""

    default_message = "Invalid OTP. Please try again."

    def __init__(self, attempts: int = 0, message: str | None = None) -> None:
        self.attempts = attempts
        super().__init__(message, field="code")


class OperationInProgressError(OnboardingError):
    """An operation is already in flight for the current step."""

    default_message = "Please wait for the current request to finish."


class InvalidTransitionError(OnboardingError):
    """The requested transition is not defined from the current step."""

    default_message = "That action is not available at this step."


class StaleResponseError(OnboardingError):
    """A response arrived for a request that was abandoned."""

    default_message = "The request was abandoned."


class EnrollmentError(OnboardingError):
    """Base class for passkey enrollment failures."""

    default_message = "Failed to set up passkey. Please try again."


class UnsupportedPlatformError(EnrollmentError):
    """The platform cannot create public-key credentials."""

    default_message = (
        "Passkeys are not supported in this browser. "
        "Please use a modern browser that supports WebAuthn."
    )


class UnauthenticatedError(EnrollmentError):
    """No authenticated session is available for enrollment."""

    default_message = "You must be logged in to register a passkey."


class ChallengeExpiredError(EnrollmentError):
    """The server-issued challenge is no longer valid."""

    default_message = "The passkey challenge expired. Please try again."


class DataFormatError(EnrollmentError):
    """Malformed enrollment data exchanged with the server or platform."""

    default_message = "Invalid challenge data from server. Please try again."


class ServerConfigurationError(EnrollmentError):
    """The server issued options the platform cannot use."""

    default_message = "Server configuration error. Please contact support."


class UserCancelledError(EnrollmentError):
    """The user dismissed or refused the platform prompt."""

    default_message = "Passkey creation was cancelled or not allowed."
