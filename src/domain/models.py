"""
Domain models - Onboarding state, draft, challenges and session.

Plain dataclasses and enums shared by the onboarding services. Nothing in
here performs I/O.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .exceptions import DataFormatError, OnboardingError, StaleResponseError


class Role(str, Enum):
    """Marketplace side chosen by the new user."""

    CLIENT = "client"
    FREELANCER = "freelancer"


class Step(str, Enum):
    """
    Onboarding steps.

    Freelancer path: ROLE -> DETAILS -> VERIFICATION -> SKILLS -> PASSKEY -> COMPLETE
    Client path:     ROLE -> DETAILS -> VERIFICATION -> PASSKEY -> COMPLETE

    COMPLETE is terminal.
    """

    ROLE = "role"
    DETAILS = "details"
    VERIFICATION = "verification"
    SKILLS = "skills"
    PASSKEY = "passkey"
    COMPLETE = "complete"


class CeremonyPhase(str, Enum):
    """Sub-state of the passkey step."""

    INTRO = "intro"
    SETUP = "setup"
    SUCCESS = "success"


@dataclass
class RegistrationDraft:
    """User-supplied registration data accumulated across steps."""

    role: Role | None = None
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    password: str = ""
    confirm_password: str = ""
    location: str | None = None
    phone: str | None = None
    selected_skills: set[str] = field(default_factory=set)
    custom_skills: set[str] = field(default_factory=set)
    # Set once the account exists server-side
    submitted: bool = False

    def __repr__(self) -> str:
        return (
            f"RegistrationDraft(role={self.role!r}, email={self.email!r}, "
            f"submitted={self.submitted!r}, skills={sorted(self.selected_skills)!r})"
        )


@dataclass
class OTPChallenge:
    """Ephemeral one-time code challenge for an email address."""

    email: str
    verify_attempts: int = 0
    resend_count: int = 0
    last_sent_at: float | None = None
    issued_session: "Session | None" = field(default=None, repr=False)


@dataclass
class Attestation:
    """Authenticator output of a credential-creation ceremony."""

    credential_id: str
    raw_id: str
    attestation_object: str
    client_data_json: str
    type: str = "public-key"

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Attestation":
        """Build from the browser's JSON-serialised PublicKeyCredential."""
        try:
            response = payload["response"]
            return cls(
                credential_id=payload["id"],
                raw_id=payload["rawId"],
                attestation_object=response["attestationObject"],
                client_data_json=response["clientDataJSON"],
                type=payload.get("type", "public-key"),
            )
        except (KeyError, TypeError) as e:
            raise DataFormatError("Malformed credential returned by the platform.") from e

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.credential_id,
            "rawId": self.raw_id,
            "response": {
                "attestationObject": self.attestation_object,
                "clientDataJSON": self.client_data_json,
            },
            "type": self.type,
        }


@dataclass
class CredentialEnrollmentContext:
    """Ephemeral data for one passkey enrollment attempt."""

    device_label: str
    options: dict[str, Any] | None = None
    attestation: Attestation | None = None


@dataclass(frozen=True)
class Session:
    """Authenticated identity issued by the backend after OTP verification."""

    user_id: str
    display_name: str
    email: str
    role: Role
    access_token: str = field(repr=False)
    refresh_token: str = field(repr=False)

    def user_record(self) -> dict[str, str]:
        """Minimal user record persisted alongside the tokens."""
        return {
            "id": self.user_id,
            "name": self.display_name,
            "email": self.email,
            "role": self.role.value,
        }


@dataclass(frozen=True)
class VerifyOutcome:
    """Result of a remote verifyOtp call."""

    verified: bool
    session: Session | None = None


@dataclass(frozen=True)
class Skill:
    """Catalog entry for a freelancer skill."""

    id: str
    name: str
    category: str = "Other"
    custom: bool = False


@dataclass
class CancellationToken:
    """
    Per-request token. Cancelled when the user navigates away from the
    step that issued the request.
    """

    step: Step
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise StaleResponseError()


@dataclass
class OnboardingState:
    """Working state of the onboarding machine."""

    step: Step = Step.ROLE
    draft: RegistrationDraft = field(default_factory=RegistrationDraft)
    account_id: str | None = None
    session: Session | None = None
    error: OnboardingError | None = None
    passkey_enrolled: bool = False
