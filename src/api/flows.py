"""
Onboarding flows - Per-browser onboarding state hosted by the API.

Each flow wires one StepController with its own notification buffer,
browser relay and namespaced session store.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from src.adapters.http.backend import HttpMarketplaceBackend
from src.adapters.notifications.console import ConsoleNotificationChannel
from src.adapters.webauthn.relay import BrowserRelayCeremonyAdapter
from src.config.settings import Settings
from src.domain.enrollment import EnrollmentCeremony
from src.domain.models import Role
from src.domain.onboarding import StepController
from src.domain.otp import OTPChallengeManager
from src.domain.ports import SessionStore
from src.domain.session import SessionBootstrapper
from src.domain.skills import SkillCatalog

logger = logging.getLogger(__name__)


@dataclass
class OnboardingFlow:
    id: str
    controller: StepController
    notifications: ConsoleNotificationChannel
    relay: BrowserRelayCeremonyAdapter
    session_store: SessionStore
    ceremony_task: "asyncio.Task[Any] | None" = None
    last_seen: float = 0.0

    def release_ceremony(self) -> None:
        """Unblock a ceremony still waiting on the browser after the user left the step."""
        if self.relay.awaiting_credential:
            self.relay.abort("AbortError")

    def abandon(self) -> None:
        """Stop a running ceremony when the flow is evicted."""
        if self.ceremony_task is not None and not self.ceremony_task.done():
            logger.info("Cancelling passkey ceremony of abandoned flow %s", self.id)
            self.ceremony_task.cancel()


def build_flow(
    flow_id: str,
    backend: HttpMarketplaceBackend,
    session_store: SessionStore,
    settings: Settings,
) -> OnboardingFlow:
    """Wire the onboarding components for one flow."""
    notifications = ConsoleNotificationChannel()
    relay = BrowserRelayCeremonyAdapter()
    otp = OTPChallengeManager(
        gateway=backend,
        notifications=notifications,
        bootstrapper=SessionBootstrapper(session_store),
        min_interval_seconds=settings.otp_resend_interval_seconds,
        code_length=settings.otp_code_length,
    )
    enrollment = EnrollmentCeremony(
        gateway=backend,
        adapter=relay,
        session_store=session_store,
        notifications=notifications,
    )
    controller = StepController(
        accounts=backend,
        otp=otp,
        enrollment=enrollment,
        catalog=SkillCatalog(gateway=backend),
        notifications=notifications,
        min_password_length=settings.min_password_length,
        landing_paths={
            Role.FREELANCER: settings.freelancer_landing_path,
            Role.CLIENT: settings.client_landing_path,
        },
    )
    return OnboardingFlow(
        id=flow_id,
        controller=controller,
        notifications=notifications,
        relay=relay,
        session_store=session_store,
    )


class FlowRegistry:
    """
    In-memory registry of active onboarding flows.

    A flow untouched for idle_timeout_seconds is evicted when it is next
    looked up or when a new flow is created. At max_flows, the least
    recently used flow makes room for the new one. Eviction stops any
    passkey ceremony the flow still runs.
    """

    def __init__(
        self,
        idle_timeout_seconds: float = 1800.0,
        max_flows: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.idle_timeout_seconds = idle_timeout_seconds
        self.max_flows = max_flows
        self._clock = clock
        self._flows: dict[str, OnboardingFlow] = {}

    def create(self, factory: Callable[[str], OnboardingFlow]) -> OnboardingFlow:
        self.evict_idle()
        if self._flows and len(self._flows) >= self.max_flows:
            oldest = min(self._flows.values(), key=lambda f: f.last_seen)
            logger.warning("Flow limit %d reached, evicting %s", self.max_flows, oldest.id)
            self._evict(oldest.id)

        flow = factory(uuid4().hex)
        flow.last_seen = self._clock()
        self._flows[flow.id] = flow
        logger.info("Onboarding flow %s started", flow.id)
        return flow

    def get(self, flow_id: str) -> OnboardingFlow | None:
        """Return the flow and mark it as used, or None if unknown or expired."""
        flow = self._flows.get(flow_id)
        if flow is None:
            return None

        now = self._clock()
        if self._expired(flow, now):
            logger.info("Onboarding flow %s expired", flow_id)
            self._evict(flow_id)
            return None
        flow.last_seen = now
        return flow

    def discard(self, flow_id: str) -> None:
        self._flows.pop(flow_id, None)

    def evict_idle(self) -> int:
        """Evict every expired flow; returns how many were evicted."""
        now = self._clock()
        idle = [flow_id for flow_id, flow in self._flows.items() if self._expired(flow, now)]
        for flow_id in idle:
            self._evict(flow_id)
        if idle:
            logger.info("Evicted %d idle onboarding flow(s)", len(idle))
        return len(idle)

    def __len__(self) -> int:
        return len(self._flows)

    async def close(self) -> None:
        """Abandon every flow, letting pending passkey ceremonies settle first."""
        pending = []
        for flow in self._flows.values():
            flow.release_ceremony()
            if flow.ceremony_task is not None and not flow.ceremony_task.done():
                pending.append(flow.ceremony_task)

        if pending:
            logger.info("Waiting for %d passkey ceremony(ies) to settle", len(pending))
            await asyncio.gather(*pending, return_exceptions=True)

        logger.info("Closed %d onboarding flow(s)", len(self._flows))
        self._flows.clear()

    def _expired(self, flow: OnboardingFlow, now: float) -> bool:
        return now - flow.last_seen > self.idle_timeout_seconds

    def _evict(self, flow_id: str) -> None:
        self._flows.pop(flow_id).abandon()
