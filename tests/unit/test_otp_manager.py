"""
Unit tests for OTPChallengeManager.

Tests verify:
- Email normalization and challenge lifetime
- Minimum interval between code requests
- Attempt counting and retry after a wrong code
- Session bootstrap on success
"""

import pytest

from src.domain.exceptions import (
    InvalidCodeError,
    NetworkError,
    RateLimitedError,
    SessionStorageError,
    StaleResponseError,
    SubmissionError,
    ValidationError,
)
from src.domain.models import CancellationToken, Step, VerifyOutcome
from src.domain.otp import OTPChallengeManager
from src.domain.ports import NotificationLevel
from src.domain.session import SessionBootstrapper
from tests.fakes import FakeClock, FakeMarketplace, InMemorySessionStore, RecordingNotifications


class TestChallengeLifetime:
    """Tests for begin() and discard()."""

    def test_begin_normalizes_email(self, otp: OTPChallengeManager) -> None:
        challenge = otp.begin("  Ada@Example.COM ")
        assert challenge.email == "ada@example.com"
        assert challenge.verify_attempts == 0
        assert challenge.last_sent_at is None

    def test_begin_keeps_challenge_for_same_email(self, otp: OTPChallengeManager) -> None:
        first = otp.begin("ada@example.com")
        first.verify_attempts = 2

        assert otp.begin("ADA@example.com") is first

    def test_begin_replaces_challenge_for_new_email(self, otp: OTPChallengeManager) -> None:
        first = otp.begin("ada@example.com")
        assert otp.begin("grace@example.com") is not first

    def test_discard(self, otp: OTPChallengeManager) -> None:
        otp.begin("ada@example.com")
        otp.discard()
        assert otp.challenge is None
        assert otp.seconds_until_resend() == 0.0


class TestSendAndResend:
    """Tests for the shared minimum interval."""

    @pytest.mark.asyncio
    async def test_send_records_time_and_notifies(
        self,
        otp: OTPChallengeManager,
        marketplace: FakeMarketplace,
        notifications: RecordingNotifications,
        clock: FakeClock,
    ) -> None:
        await otp.send("Ada@example.com")

        assert marketplace.calls == [("send_otp", ("ada@example.com",))]
        assert otp.challenge.last_sent_at == clock.now
        assert notifications.messages(NotificationLevel.SUCCESS) == ["Verification code sent to your email!"]

    @pytest.mark.asyncio
    async def test_second_send_within_interval_is_rate_limited(
        self, otp: OTPChallengeManager, marketplace: FakeMarketplace, clock: FakeClock
    ) -> None:
        """Rapid duplicate sends never reach the backend twice."""
        await otp.send("ada@example.com")
        clock.advance(10)

        with pytest.raises(RateLimitedError) as exc_info:
            await otp.send("ada@example.com")

        assert exc_info.value.retry_after == pytest.approx(50)
        assert marketplace.count("send_otp") == 1

    @pytest.mark.asyncio
    async def test_resend_before_interval_is_rate_limited(
        self, otp: OTPChallengeManager, clock: FakeClock
    ) -> None:
        await otp.send("ada@example.com")
        clock.advance(59)

        with pytest.raises(RateLimitedError):
            await otp.resend("ada@example.com")
        assert otp.seconds_until_resend() == pytest.approx(1)

    @pytest.mark.asyncio
    async def test_resend_after_interval_resets_attempts(
        self, otp: OTPChallengeManager, marketplace: FakeMarketplace, clock: FakeClock
    ) -> None:
        """A resend after the interval succeeds and resets the attempt counter."""
        await otp.send("ada@example.com")
        with pytest.raises(InvalidCodeError):
            await otp.verify("ada@example.com", "000000")
        assert otp.challenge.verify_attempts == 1

        clock.advance(60)
        await otp.resend("ada@example.com")

        assert otp.challenge.verify_attempts == 0
        assert otp.challenge.resend_count == 1
        assert marketplace.count("resend_otp") == 1

    @pytest.mark.asyncio
    async def test_discard_keeps_interval_for_the_address(
        self, otp: OTPChallengeManager, marketplace: FakeMarketplace, clock: FakeClock
    ) -> None:
        """A fresh challenge for the same address inherits the last send time."""
        await otp.send("ada@example.com")
        otp.discard()
        clock.advance(20)

        with pytest.raises(RateLimitedError) as exc_info:
            await otp.send("Ada@Example.com")

        assert exc_info.value.retry_after == pytest.approx(40)
        assert otp.seconds_until_resend() == pytest.approx(40)
        assert marketplace.count("send_otp") == 1

        otp.discard()
        await otp.send("grace@example.com")
        assert marketplace.count("send_otp") == 2

    @pytest.mark.asyncio
    async def test_failed_send_does_not_start_interval(
        self, otp: OTPChallengeManager, marketplace: FakeMarketplace
    ) -> None:
        """A failed request can be retried immediately."""
        marketplace.fail("send_otp", NetworkError())

        with pytest.raises(NetworkError):
            await otp.send("ada@example.com")
        assert otp.seconds_until_resend() == 0.0

        await otp.send("ada@example.com")
        assert marketplace.count("send_otp") == 2

    @pytest.mark.asyncio
    async def test_custom_interval(
        self,
        marketplace: FakeMarketplace,
        notifications: RecordingNotifications,
        store: InMemorySessionStore,
        clock: FakeClock,
    ) -> None:
        manager = OTPChallengeManager(
            gateway=marketplace,
            notifications=notifications,
            bootstrapper=SessionBootstrapper(store),
            min_interval_seconds=5,
            clock=clock,
        )
        await manager.send("ada@example.com")
        clock.advance(5)

        await manager.resend("ada@example.com")
        assert marketplace.count("resend_otp") == 1


class TestVerify:
    """Tests for code verification."""

    @pytest.mark.asyncio
    async def test_wrong_code_then_correct_code(
        self,
        otp: OTPChallengeManager,
        store: InMemorySessionStore,
        notifications: RecordingNotifications,
    ) -> None:
        """After one failure the challenge remains valid and a correct code succeeds."""
        await otp.send("ada@example.com")

        with pytest.raises(InvalidCodeError) as exc_info:
            await otp.verify("ada@example.com", "000000")
        assert exc_info.value.attempts == 1
        assert exc_info.value.field == "code"
        assert otp.challenge is not None

        session = await otp.verify("ada@example.com", "123456")

        assert session.email == "ada@example.com"
        assert store.session is session
        assert otp.challenge is None
        assert "Email verified successfully!" in notifications.messages(NotificationLevel.SUCCESS)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["", "12345", "1234567", "12a456", "abcdef"])
    async def test_malformed_code_is_rejected_locally(
        self, otp: OTPChallengeManager, marketplace: FakeMarketplace, code: str
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await otp.verify("ada@example.com", code)

        assert exc_info.value.errors == {"code": "Enter the 6-digit code."}
        assert marketplace.count("verify_otp") == 0

    @pytest.mark.asyncio
    async def test_code_is_trimmed(self, otp: OTPChallengeManager, marketplace: FakeMarketplace) -> None:
        await otp.verify("ada@example.com", " 123456 ")
        assert marketplace.calls[-1] == ("verify_otp", ("ada@example.com", "123456"))

    @pytest.mark.asyncio
    async def test_unverified_outcome_counts_attempt(
        self, otp: OTPChallengeManager, marketplace: FakeMarketplace
    ) -> None:
        async def not_verified(email: str, code: str) -> VerifyOutcome:
            return VerifyOutcome(verified=False)

        marketplace.verify_otp = not_verified

        with pytest.raises(InvalidCodeError) as exc_info:
            await otp.verify("ada@example.com", "123456")
        assert exc_info.value.attempts == 1

    @pytest.mark.asyncio
    async def test_verified_without_session_is_submission_error(
        self, otp: OTPChallengeManager, marketplace: FakeMarketplace, store: InMemorySessionStore
    ) -> None:
        async def no_session(email: str, code: str) -> VerifyOutcome:
            return VerifyOutcome(verified=True)

        marketplace.verify_otp = no_session

        with pytest.raises(SubmissionError):
            await otp.verify("ada@example.com", "123456")
        assert store.session is None

    @pytest.mark.asyncio
    async def test_storage_failure_retries_without_reverifying(
        self, otp: OTPChallengeManager, marketplace: FakeMarketplace, store: InMemorySessionStore
    ) -> None:
        """The backend consumes the code once; a retry only stores the session again."""
        store.failing_saves = 1

        with pytest.raises(SessionStorageError) as exc_info:
            await otp.verify("ada@example.com", "123456")
        assert exc_info.value.message == "We could not save your sign-in. Please try again."
        assert store.session is None
        assert otp.challenge is not None

        session = await otp.verify("ada@example.com", "123456")

        assert store.session is session
        assert marketplace.count("verify_otp") == 1
        assert otp.challenge is None

    @pytest.mark.asyncio
    async def test_cancelled_token_discards_result(
        self, otp: OTPChallengeManager, store: InMemorySessionStore
    ) -> None:
        """A result for an abandoned request never bootstraps a session."""
        token = CancellationToken(step=Step.VERIFICATION)
        token.cancel()

        with pytest.raises(StaleResponseError):
            await otp.verify("ada@example.com", "123456", token)
        assert store.session is None

    @pytest.mark.asyncio
    async def test_cancelled_token_discards_failure(self, otp: OTPChallengeManager) -> None:
        token = CancellationToken(step=Step.VERIFICATION)
        token.cancel()

        with pytest.raises(StaleResponseError):
            await otp.verify("ada@example.com", "000000", token)
        assert otp.challenge.verify_attempts == 0
