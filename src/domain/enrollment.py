"""
Passkey enrollment ceremony - Public-key credential registration.

Ceremony sequence (each await is a suspension point):

1. Resolve the device label (explicit, detected from the user agent, or generic)
2. Check preconditions without contacting the server:
   - platform capability        -> UnsupportedPlatformError
   - authenticated session      -> UnauthenticatedError
3. initiate_enrollment(label)   -> creation options (validated locally)
4. adapter.create_credential()  -> attestation (may block on the user prompt)
5. complete_enrollment(attestation, label)
6. Phase SUCCESS

Sub-phases: INTRO (entry) -> SETUP -> SUCCESS. Any failure reverts to INTRO
and re-raises a classified error so the caller can retry or skip.
"""

import base64
import binascii
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from .device import detect_device_label
from .exceptions import (
    DataFormatError,
    EnrollmentError,
    OnboardingError,
    ServerConfigurationError,
    SessionStorageError,
    StaleResponseError,
    UnauthenticatedError,
    UnsupportedPlatformError,
    UserCancelledError,
)
from .models import CancellationToken, CeremonyPhase, CredentialEnrollmentContext
from .ports import (
    CredentialCeremonyAdapter,
    NotificationChannel,
    NotificationLevel,
    PasskeyGateway,
    SessionStore,
)

logger = logging.getLogger(__name__)

_BASE64_RE = re.compile(r"^[A-Za-z0-9+/_-]+={0,2}$")


def validate_creation_options(options: Any) -> list[str]:
    """Return the structural problems of server-issued creation options."""
    if not options or not isinstance(options, dict):
        return ["No options provided"]

    problems = []

    challenge = options.get("challenge")
    if challenge is None:
        problems.append("Missing challenge")
    elif not isinstance(challenge, str):
        problems.append(f"Invalid challenge type: {type(challenge).__name__}")
    elif not challenge:
        problems.append("Empty challenge")

    rp = options.get("rp")
    if not isinstance(rp, dict):
        problems.append("Missing relying party (rp) information")
    else:
        if not rp.get("name"):
            problems.append("Missing rp.name")
        if not rp.get("id"):
            problems.append("Missing rp.id")

    user = options.get("user")
    if not isinstance(user, dict):
        problems.append("Missing user information")
    else:
        for key in ("id", "name", "displayName"):
            if not user.get(key):
                problems.append(f"Missing user.{key}")

    params = options.get("pubKeyCredParams")
    if not isinstance(params, list):
        problems.append("Missing or invalid pubKeyCredParams")
    elif not params:
        problems.append("Empty pubKeyCredParams array")

    if not options.get("authenticatorSelection"):
        problems.append("Missing authenticatorSelection")

    timeout = options.get("timeout")
    if timeout is not None and (
        isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0
    ):
        problems.append("Invalid timeout value")

    return problems


def decode_challenge(challenge: str) -> bytes:
    """
    Decode a base64 or base64url challenge.

    Raises:
        DataFormatError: Not valid base64
    """
    cleaned = challenge.strip()
    if not _BASE64_RE.match(cleaned):
        raise DataFormatError("Server provided data with invalid characters.")
    cleaned = cleaned.rstrip("=").replace("+", "-").replace("/", "_")
    try:
        return base64.urlsafe_b64decode(cleaned + "=" * (-len(cleaned) % 4))
    except (binascii.Error, ValueError) as e:
        raise DataFormatError("Server provided malformed base64 data.") from e


def classify_platform_error(name: str, message: str | None = None) -> EnrollmentError:
    """Map a platform (DOMException) error name to an enrollment error."""
    if name in ("NotAllowedError", "AbortError"):
        return UserCancelledError()
    if name == "NotSupportedError":
        return UnsupportedPlatformError("This device does not support the required passkey features.")
    if name == "InvalidStateError":
        return ServerConfigurationError("A passkey is already registered for this account on this device.")
    if name == "SecurityError":
        return ServerConfigurationError("Passkey creation failed due to security restrictions.")
    return DataFormatError(message or None)


@dataclass
class EnrollmentCeremony:
    """Orchestrates one passkey enrollment at a time."""

    gateway: PasskeyGateway
    adapter: CredentialCeremonyAdapter
    session_store: SessionStore
    notifications: NotificationChannel
    phase: CeremonyPhase = field(default=CeremonyPhase.INTRO, init=False)
    context: CredentialEnrollmentContext | None = field(default=None, init=False)
    last_error: OnboardingError | None = field(default=None, init=False)

    def reset(self) -> None:
        """Return to the entry phase and discard the context (skip or retreat)."""
        self.phase = CeremonyPhase.INTRO
        self.context = None

    async def enroll(
        self,
        device_label: str | None = None,
        user_agent: str | None = None,
        token: CancellationToken | None = None,
    ) -> CredentialEnrollmentContext:
        """
        Run the ceremony.

        Args:
            device_label: User-supplied label; detected when blank
            user_agent: Client user agent for label detection
            token: Cancellation token of the issuing step

        Returns:
            The completed enrollment context

        Raises:
            EnrollmentError: Classified ceremony failure (phase reverted to INTRO)
            NetworkError: Transport failure (phase reverted to INTRO)
            SessionStorageError: The stored session could not be read
            StaleResponseError: The token was cancelled while awaiting
        """
        label = (device_label or "").strip() or detect_device_label(user_agent)

        if not self.adapter.credential_creation_supported():
            raise self._revert(UnsupportedPlatformError())

        try:
            session = self.session_store.load()
        except SessionStorageError as e:
            raise self._revert(e) from e
        if session is None:
            raise self._revert(UnauthenticatedError())

        self.phase = CeremonyPhase.SETUP
        self.last_error = None
        self.context = context = CredentialEnrollmentContext(device_label=label)
        logger.info("Passkey enrollment started for %s on %r", session.user_id, label)

        try:
            options = await self.gateway.initiate_enrollment(label, session.access_token)
            self._check(token)

            problems = validate_creation_options(options)
            if problems:
                raise ServerConfigurationError(f"Server configuration error: {', '.join(problems)}")
            decode_challenge(options["challenge"])
            context.options = options

            attestation = await self.adapter.create_credential(options)
            self._check(token)
            context.attestation = attestation

            await self.gateway.complete_enrollment(attestation, label, session.access_token)
            self._check(token)
        except StaleResponseError:
            raise
        except OnboardingError as e:
            if token is not None and token.cancelled:
                raise StaleResponseError() from e
            raise self._revert(e) from None

        self.phase = CeremonyPhase.SUCCESS
        logger.info("Passkey enrolled for %s on %r", session.user_id, label)
        self.notifications.publish(
            NotificationLevel.SUCCESS,
            f'Your passkey "{label}" has been successfully set up.',
        )
        return context

    def _check(self, token: CancellationToken | None) -> None:
        if token is not None:
            token.raise_if_cancelled()

    def _revert(self, error: OnboardingError) -> OnboardingError:
        logger.info("Passkey enrollment failed: %s", type(error).__name__)
        self.reset()
        self.last_error = error
        return error
