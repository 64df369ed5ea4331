"""
Shared test fixtures and configuration.

This module provides pytest fixtures for:
- In-memory fakes of the marketplace gateways and the session store
- A recording notification channel
- A scriptable credential ceremony adapter
- A controllable clock for OTP throttling
- Wired domain services built on those fakes
"""

import pytest

from src.domain.enrollment import EnrollmentCeremony
from src.domain.onboarding import StepController
from src.domain.otp import OTPChallengeManager
from src.domain.session import SessionBootstrapper
from src.domain.skills import SkillCatalog
from tests.fakes import (
    FakeCeremonyAdapter,
    FakeClock,
    FakeMarketplace,
    InMemorySessionStore,
    RecordingNotifications,
)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifications() -> RecordingNotifications:
    return RecordingNotifications()


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def marketplace() -> FakeMarketplace:
    return FakeMarketplace()


@pytest.fixture
def adapter() -> FakeCeremonyAdapter:
    return FakeCeremonyAdapter()


@pytest.fixture
def otp(
    marketplace: FakeMarketplace,
    notifications: RecordingNotifications,
    store: InMemorySessionStore,
    clock: FakeClock,
) -> OTPChallengeManager:
    return OTPChallengeManager(
        gateway=marketplace,
        notifications=notifications,
        bootstrapper=SessionBootstrapper(store),
        clock=clock,
    )


@pytest.fixture
def enrollment(
    marketplace: FakeMarketplace,
    adapter: FakeCeremonyAdapter,
    store: InMemorySessionStore,
    notifications: RecordingNotifications,
) -> EnrollmentCeremony:
    return EnrollmentCeremony(
        gateway=marketplace,
        adapter=adapter,
        session_store=store,
        notifications=notifications,
    )


@pytest.fixture
def controller(
    marketplace: FakeMarketplace,
    otp: OTPChallengeManager,
    enrollment: EnrollmentCeremony,
    notifications: RecordingNotifications,
) -> StepController:
    return StepController(
        accounts=marketplace,
        otp=otp,
        enrollment=enrollment,
        catalog=SkillCatalog(gateway=marketplace),
        notifications=notifications,
    )
