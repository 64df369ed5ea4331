"""
OTP challenge manager - Send, resend and verify one-time email codes.

Throttling
==========
Both send() and resend() are guarded by the same minimum interval measured
from the last successful request. The timestamp is taken before the remote
call is awaited, so two rapid invocations cannot both reach the backend.
A failed request restores the previous timestamp. Timestamps are kept
per address, so discarding the challenge does not reset the interval.

Failures are surfaced once. Nothing here retries automatically.
"""

import logging
import re
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from .exceptions import InvalidCodeError, RateLimitedError, SubmissionError, ValidationError
from .models import CancellationToken, OTPChallenge, Session
from .ports import AccountGateway, NotificationChannel, NotificationLevel
from .session import SessionBootstrapper

logger = logging.getLogger(__name__)


@dataclass
class OTPChallengeManager:
    """
    Owns the one-time code challenge of the Verification step.

    The challenge is created by begin() and destroyed by a successful
    verify() or by discard().
    """

    gateway: AccountGateway
    notifications: NotificationChannel
    bootstrapper: SessionBootstrapper
    min_interval_seconds: float = 60.0
    code_length: int = 6
    clock: Callable[[], float] = time.monotonic
    challenge: OTPChallenge | None = field(default=None, init=False)
    # Outlives discard(), so leaving and re-entering Verification keeps the interval
    _last_sent: dict[str, float] = field(default_factory=dict, init=False, repr=False)

    def begin(self, email: str) -> OTPChallenge:
        """Create the challenge for an email, keeping an existing one for the same address."""
        email = self._normalize_email(email)
        if self.challenge is None or self.challenge.email != email:
            self.challenge = OTPChallenge(email=email, last_sent_at=self._last_sent.get(email))
        return self.challenge

    def discard(self) -> None:
        """Destroy the challenge (user navigated back past Verification)."""
        self.challenge = None

    def seconds_until_resend(self) -> float:
        """Remaining wait before another code may be requested."""
        if self.challenge is None or self.challenge.last_sent_at is None:
            return 0.0
        elapsed = self.clock() - self.challenge.last_sent_at
        return max(self.min_interval_seconds - elapsed, 0.0)

    async def send(self, email: str) -> None:
        """
        Send a code to the email address.

        Raises:
            RateLimitedError: Called again within the minimum interval
            SubmissionError: Remote send failed
        """
        await self._request(email, self.gateway.send_otp)
        self.notifications.publish(NotificationLevel.SUCCESS, "Verification code sent to your email!")

    async def resend(self, email: str) -> None:
        """
        Explicit user request for a fresh code.

        Subject to the same minimum interval as send().
        """
        challenge = await self._request(email, self.gateway.resend_otp)
        challenge.resend_count += 1
        self.notifications.publish(NotificationLevel.SUCCESS, "Verification code sent to your email!")

    async def verify(
        self, email: str, code: str, token: CancellationToken | None = None
    ) -> Session:
        """
        Submit a code and bootstrap the session on success.

        Args:
            email: Address the code was sent to
            code: Code entered by the user
            token: Cancellation token of the issuing step

        Returns:
            The bootstrapped Session

        Raises:
            ValidationError: Code is not code_length digits
            InvalidCodeError: Backend rejected the code (challenge stays valid)
            SessionStorageError: The session could not be stored; a later
                call retries the storage without asking the backend again
            StaleResponseError: The token was cancelled while awaiting
        """
        code = code.strip()
        if not re.fullmatch(rf"\d{{{self.code_length}}}", code):
            raise ValidationError({"code": f"Enter the {self.code_length}-digit code."})

        challenge = self.begin(email)
        if challenge.issued_session is None:
            challenge.issued_session = await self._check_code(challenge, code, token)
        else:
            # The backend already accepted a code; only storing the session failed
            logger.info("Retrying session storage for %s", challenge.email)

        session = self.bootstrapper.bootstrap(challenge.issued_session)
        self.challenge = None
        self.notifications.publish(NotificationLevel.SUCCESS, "Email verified successfully!")
        return session

    async def _check_code(
        self, challenge: OTPChallenge, code: str, token: CancellationToken | None
    ) -> Session:
        try:
            outcome = await self.gateway.verify_otp(challenge.email, code)
        except InvalidCodeError as e:
            if token is not None:
                token.raise_if_cancelled()
            challenge.verify_attempts += 1
            raise InvalidCodeError(challenge.verify_attempts, e.message) from e

        if token is not None:
            token.raise_if_cancelled()

        if not outcome.verified:
            challenge.verify_attempts += 1
            logger.info("OTP rejected for %s (attempt %d)", challenge.email, challenge.verify_attempts)
            raise InvalidCodeError(challenge.verify_attempts)

        if outcome.session is None:
            raise SubmissionError("Verification succeeded but no session was issued. Please sign in.")
        return outcome.session

    async def _request(
        self, email: str, call: Callable[[str], Awaitable[None]]
    ) -> OTPChallenge:
        challenge = self.begin(email)
        wait = self.seconds_until_resend()
        if wait > 0:
            raise RateLimitedError(wait)

        previous = challenge.last_sent_at
        self._stamp(challenge, self.clock())
        try:
            await call(challenge.email)
        except Exception:
            self._stamp(challenge, previous)
            raise

        challenge.verify_attempts = 0
        logger.info("OTP requested for %s", challenge.email)
        return challenge

    def _stamp(self, challenge: OTPChallenge, sent_at: float | None) -> None:
        challenge.last_sent_at = sent_at
        if sent_at is None:
            self._last_sent.pop(challenge.email, None)
        else:
            self._last_sent[challenge.email] = sent_at

    def _normalize_email(self, email: str) -> str:
        return email.strip().lower()
