"""
Adversarial tests for one-time code guessing and resend flooding.

Verifies that:
- Wrong codes never bootstrap a session
- Malformed codes are rejected locally, without a backend call
- Resend requests inside the minimum interval never reach the backend

Attempt counting is informational; lockout is enforced by the backend.
"""

import pytest

from src.domain.exceptions import InvalidCodeError, RateLimitedError, ValidationError
from src.domain.models import Role, Step
from src.domain.onboarding import StepController
from tests.fakes import VALID_DETAILS, FakeClock, FakeMarketplace, InMemorySessionStore

pytestmark = pytest.mark.adversarial


async def on_verification(controller: StepController) -> None:
    controller.select_role(Role.CLIENT)
    await controller.advance()
    controller.update_details(**VALID_DETAILS)
    await controller.advance()


class TestCodeGuessing:
    """Repeated guesses against the verification step."""

    @pytest.mark.asyncio
    async def test_wrong_codes_never_bootstrap_session(
        self,
        controller: StepController,
        marketplace: FakeMarketplace,
        store: InMemorySessionStore,
    ) -> None:
        """
        Twenty wrong guesses in a row.

        Expected defense: every guess is rejected, the attempt counter
        grows, and no session is stored.
        """
        await on_verification(controller)

        for attempt in range(1, 21):
            with pytest.raises(InvalidCodeError) as exc_info:
                await controller.verify_code(f"{attempt:06d}")
            assert exc_info.value.attempts == attempt

        assert store.session is None
        assert controller.state.session is None
        assert controller.state.step is Step.VERIFICATION
        assert marketplace.count("verify_otp") == 20

    @pytest.mark.asyncio
    async def test_correct_code_still_accepted_after_guesses(
        self, controller: StepController, store: InMemorySessionStore
    ) -> None:
        await on_verification(controller)
        for code in ("111111", "222222", "333333"):
            with pytest.raises(InvalidCodeError):
                await controller.verify_code(code)

        step = await controller.verify_code("123456")

        assert step is Step.PASSKEY
        assert store.session is not None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["12345", "1234567", "abcdef", "12 456", "", "123456; DROP"])
    async def test_malformed_codes_rejected_locally(
        self, controller: StepController, marketplace: FakeMarketplace, code: str
    ) -> None:
        await on_verification(controller)

        with pytest.raises(ValidationError) as exc_info:
            await controller.verify_code(code)

        assert exc_info.value.field == "code"
        assert marketplace.count("verify_otp") == 0


class TestResendFlooding:
    """Repeated resend requests."""

    @pytest.mark.asyncio
    async def test_resend_flood_reaches_backend_once_per_interval(
        self, controller: StepController, marketplace: FakeMarketplace, clock: FakeClock
    ) -> None:
        await on_verification(controller)

        for _ in range(10):
            with pytest.raises(RateLimitedError):
                await controller.resend_code()
        assert marketplace.count("resend_otp") == 0

        clock.advance(60)
        await controller.resend_code()
        with pytest.raises(RateLimitedError) as exc_info:
            await controller.resend_code()

        assert marketplace.count("resend_otp") == 1
        assert exc_info.value.retry_after == 60.0

    @pytest.mark.asyncio
    async def test_rate_limited_resend_does_not_reset_timer(
        self, controller: StepController, clock: FakeClock
    ) -> None:
        await on_verification(controller)
        clock.advance(30)

        with pytest.raises(RateLimitedError):
            await controller.resend_code()

        assert controller.seconds_until_resend() == 30.0
