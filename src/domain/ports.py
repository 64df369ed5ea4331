"""
Port interfaces - Protocol definitions for infrastructure abstraction.

This module defines the interfaces (ports) that the onboarding domain
requires from infrastructure. Adapters implement these protocols.
"""

from enum import Enum
from typing import Any, Protocol

from .models import Attestation, Role, Session, Skill, VerifyOutcome


class NotificationLevel(str, Enum):
    """Severity of a user-facing notification."""

    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class NotificationChannel(Protocol):
    """Port interface for fire-and-forget user notifications."""

    def publish(self, level: NotificationLevel, message: str) -> None:
        """
        Publish a message. No acknowledgment is expected.

        Args:
            level: Notification severity
            message: Human-readable text
        """
        ...


class SessionStore(Protocol):
    """Port interface for persisted session state."""

    def save(self, session: Session) -> None:
        """Persist access token, refresh token and the minimal user record."""
        ...

    def load(self) -> Session | None:
        """Return the persisted session, or None when not authenticated."""
        ...

    def clear(self) -> None:
        """Remove all persisted session state (logout)."""
        ...


class AccountGateway(Protocol):
    """Port interface for remote account and one-time code operations."""

    async def create_account(
        self,
        first_name: str,
        last_name: str,
        email: str,
        password: str,
        role: Role,
        location: str | None = None,
        phone: str | None = None,
    ) -> str:
        """
        Create an account.

        Returns:
            The new account id

        Raises:
            ConflictError: Email already registered
            NetworkError: Transport or server failure
        """
        ...

    async def send_otp(self, email: str) -> None:
        """Ask the backend to email a one-time code."""
        ...

    async def verify_otp(self, email: str, code: str) -> VerifyOutcome:
        """
        Submit a one-time code.

        Returns:
            VerifyOutcome carrying the issued Session when verified

        Raises:
            InvalidCodeError: Backend rejected the code outright
        """
        ...

    async def resend_otp(self, email: str) -> None:
        """Ask the backend to email a fresh one-time code."""
        ...


class SkillsGateway(Protocol):
    """Port interface for the skill catalog and freelancer profile skills."""

    async def list_skills(self) -> list[Skill]:
        ...

    async def add_skill(self, name: str, category: str | None = None) -> Skill:
        ...

    async def update_skills(self, skills: list[str], access_token: str) -> None:
        ...


class PasskeyGateway(Protocol):
    """Port interface for server-side passkey enrollment."""

    async def initiate_enrollment(self, device_label: str, access_token: str) -> dict[str, Any]:
        """
        Request public-key creation options for this device.

        Returns:
            Server-issued PublicKeyCredentialCreationOptions (JSON form)
            including a single-use challenge
        """
        ...

    async def complete_enrollment(
        self, attestation: Attestation, device_label: str, access_token: str
    ) -> None:
        """Submit the attestation for server-side verification."""
        ...


class CredentialCeremonyAdapter(Protocol):
    """Port interface for the platform's public-key credential API."""

    def credential_creation_supported(self) -> bool:
        """Whether the platform can create public-key credentials."""
        ...

    async def create_credential(self, options: dict[str, Any]) -> Attestation:
        """
        Run the platform prompt with the given creation options.

        May block indefinitely on user interaction.

        Raises:
            UserCancelledError: The user dismissed the prompt
            EnrollmentError: Other platform failures
        """
        ...
