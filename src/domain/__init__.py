"""
Domain layer - Pure onboarding logic with zero framework imports.

This package contains the onboarding state machine, the one-time code
challenge, the passkey enrollment ceremony and the session bootstrapper.
It defines its own port interfaces for infrastructure abstraction.
"""

from .enrollment import EnrollmentCeremony
from .exceptions import (
    ChallengeExpiredError,
    ConflictError,
    DataFormatError,
    EnrollmentError,
    InvalidCodeError,
    InvalidTransitionError,
    NetworkError,
    OnboardingError,
    OperationInProgressError,
    RateLimitedError,
    ServerConfigurationError,
    SessionStorageError,
    StaleResponseError,
    SubmissionError,
    UnauthenticatedError,
    UnsupportedPlatformError,
    UserCancelledError,
    ValidationError,
)
from .models import Attestation, CeremonyPhase, Role, Session, Skill, Step
from .onboarding import StepController
from .otp import OTPChallengeManager
from .ports import (
    AccountGateway,
    CredentialCeremonyAdapter,
    NotificationChannel,
    NotificationLevel,
    PasskeyGateway,
    SessionStore,
    SkillsGateway,
)
from .session import SessionBootstrapper
from .skills import SkillCatalog

__all__ = [
    "AccountGateway",
    "Attestation",
    "CeremonyPhase",
    "ChallengeExpiredError",
    "ConflictError",
    "CredentialCeremonyAdapter",
    "DataFormatError",
    "EnrollmentCeremony",
    "EnrollmentError",
    "InvalidCodeError",
    "InvalidTransitionError",
    "NetworkError",
    "NotificationChannel",
    "NotificationLevel",
    "OTPChallengeManager",
    "OnboardingError",
    "OperationInProgressError",
    "PasskeyGateway",
    "RateLimitedError",
    "Role",
    "ServerConfigurationError",
    "SessionStorageError",
    "Session",
    "SessionBootstrapper",
    "SessionStore",
    "Skill",
    "SkillCatalog",
    "SkillsGateway",
    "StaleResponseError",
    "Step",
    "StepController",
    "SubmissionError",
    "UnauthenticatedError",
    "UnsupportedPlatformError",
    "UserCancelledError",
    "ValidationError",
]
