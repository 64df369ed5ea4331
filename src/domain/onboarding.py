"""
Onboarding step controller - Account onboarding state machine.

This module contains the finite-state machine that walks a new marketplace
user from role selection to an authenticated session.

Onboarding State Machine
========================

Paths (explicit per-role table):
    freelancer: ROLE -> DETAILS -> VERIFICATION -> SKILLS -> PASSKEY -> COMPLETE
    client:     ROLE -> DETAILS -> VERIFICATION -> PASSKEY -> COMPLETE

Transitions:
    advance()  validates the current step, performs its remote call, moves forward
    retreat()  DETAILS, VERIFICATION, SKILLS, PASSKEY -> previous step on the path
    skip()     SKILLS, PASSKEY -> next step, regardless of partial data
    verify_code() VERIFICATION -> next step once the session is bootstrapped

Invariants:
    - SKILLS is never on the client path
    - COMPLETE is terminal
    - Navigation never clears draft fields
    - Role and account fields are frozen once the account exists

Concurrency:
    One operation at a time, and draft edits are refused while it runs.
    Each operation holds a cancellation token;
    retreat() and skip() cancel it, and a late response for a cancelled
    token is discarded without touching state.
"""

import logging
import re
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TypeVar

from .enrollment import EnrollmentCeremony
from .exceptions import (
    InvalidTransitionError,
    OnboardingError,
    OperationInProgressError,
    RateLimitedError,
    StaleResponseError,
    SubmissionError,
    ValidationError,
)
from .models import CancellationToken, OnboardingState, Role, Step
from .otp import OTPChallengeManager
from .ports import AccountGateway, NotificationChannel, NotificationLevel
from .skills import SkillCatalog

logger = logging.getLogger(__name__)

T = TypeVar("T")

PATHS: dict[Role, tuple[Step, ...]] = {
    Role.FREELANCER: (
        Step.ROLE,
        Step.DETAILS,
        Step.VERIFICATION,
        Step.SKILLS,
        Step.PASSKEY,
        Step.COMPLETE,
    ),
    Role.CLIENT: (
        Step.ROLE,
        Step.DETAILS,
        Step.VERIFICATION,
        Step.PASSKEY,
        Step.COMPLETE,
    ),
}

RETREATABLE_STEPS = frozenset({Step.DETAILS, Step.VERIFICATION, Step.SKILLS, Step.PASSKEY})
SKIPPABLE_STEPS = frozenset({Step.SKILLS, Step.PASSKEY})

DEFAULT_LANDING_PATHS = {
    Role.FREELANCER: "/freelancer/dashboard",
    Role.CLIENT: "/projects",
}

_EMAIL_RE = re.compile(r"^\S+@\S+\.\S+$")


@dataclass
class StepController:
    """
    Root of the onboarding flow.

    Owns OnboardingState and the RegistrationDraft; every mutation goes
    through one of the transition methods below.
    """

    accounts: AccountGateway
    otp: OTPChallengeManager
    enrollment: EnrollmentCeremony
    catalog: SkillCatalog
    notifications: NotificationChannel
    min_password_length: int = 6
    landing_paths: dict[Role, str] = field(default_factory=lambda: dict(DEFAULT_LANDING_PATHS))
    state: OnboardingState = field(default_factory=OnboardingState, init=False)
    _active: CancellationToken | None = field(default=None, init=False, repr=False)

    # -- display helpers -------------------------------------------------

    @property
    def path(self) -> tuple[Step, ...]:
        return PATHS[self.state.draft.role or Role.CLIENT]

    @property
    def total_steps(self) -> int:
        return len(self.path)

    @property
    def step_number(self) -> int:
        return self.path.index(self.state.step) + 1

    @property
    def progress(self) -> float:
        return (self.step_number - 1) / (self.total_steps - 1)

    @property
    def in_flight(self) -> bool:
        return self._active is not None

    # -- Role ------------------------------------------------------------

    def select_role(self, role: Role | str) -> None:
        """Choose the marketplace side. Only on ROLE, and only before the account exists."""
        self._require_step(Step.ROLE)
        self._require_idle()
        if self.state.draft.submitted:
            raise self._surface(
                ValidationError({"role": "Role cannot be changed after the account is created."})
            )
        try:
            self.state.draft.role = Role(role)
        except ValueError:
            raise self._surface(ValidationError({"role": "Please select a valid role."})) from None

    # -- Details ---------------------------------------------------------

    def update_details(
        self,
        *,
        first_name: str | None = None,
        last_name: str | None = None,
        email: str | None = None,
        password: str | None = None,
        confirm_password: str | None = None,
        location: str | None = None,
        phone: str | None = None,
    ) -> None:
        """Update account fields. Arguments left as None are unchanged."""
        self._require_step(Step.DETAILS)
        self._require_idle()
        draft = self.state.draft
        if draft.submitted:
            raise self._surface(
                ValidationError({"email": "Account details cannot be changed after the account is created."})
            )

        updates = {
            "first_name": first_name,
            "last_name": last_name,
            "email": email,
            "password": password,
            "confirm_password": confirm_password,
            "location": location,
            "phone": phone,
        }
        for name, value in updates.items():
            if value is not None:
                setattr(draft, name, value)

    def validate_details(self) -> dict[str, str]:
        """Field-level problems of the Details step (empty when valid)."""
        draft = self.state.draft
        errors: dict[str, str] = {}

        if not draft.first_name.strip():
            errors["first_name"] = "First name is required"
        if not draft.last_name.strip():
            errors["last_name"] = "Last name is required"

        if not draft.email.strip():
            errors["email"] = "Email is required"
        elif not _EMAIL_RE.match(draft.email.strip()):
            errors["email"] = "Please enter a valid email"

        if not draft.password:
            errors["password"] = "Password is required"
        elif len(draft.password) < self.min_password_length:
            errors["password"] = f"Password must be at least {self.min_password_length} characters"

        if not draft.confirm_password:
            errors["confirm_password"] = "Please confirm your password"
        elif draft.password != draft.confirm_password:
            errors["confirm_password"] = "Passwords do not match"

        return errors

    # -- Verification ----------------------------------------------------

    async def verify_code(self, code: str) -> Step:
        """Verify the emailed code; on success the session exists and the flow moves on."""
        self._require_step(Step.VERIFICATION)
        if self.state.session is not None:
            raise self._surface(InvalidTransitionError("Your email is already verified."))

        async def operation() -> None:
            async with self._request() as token:
                session = await self.otp.verify(self.state.draft.email, code, token)
            self.state.session = session
            self._goto(self._next_step())

        await self._run(operation)
        return self.state.step

    async def resend_code(self) -> None:
        """Explicit user request for a new code."""
        self._require_step(Step.VERIFICATION)
        if self.state.session is not None:
            raise self._surface(InvalidTransitionError("Your email is already verified."))

        async def operation() -> None:
            async with self._request():
                await self.otp.resend(self.state.draft.email)

        await self._run(operation)

    def seconds_until_resend(self) -> float:
        return self.otp.seconds_until_resend()

    # -- Skills ----------------------------------------------------------

    async def load_skill_catalog(self) -> None:
        self._require_step(Step.SKILLS)
        await self.catalog.load()

    def select_skill(self, name: str) -> None:
        self._require_step(Step.SKILLS)
        self._require_idle()
        name = name.strip()
        if name:
            self.state.draft.selected_skills.add(name)

    def deselect_skill(self, name: str) -> None:
        self._require_step(Step.SKILLS)
        self._require_idle()
        self.state.draft.selected_skills.discard(name.strip())
        self.state.draft.custom_skills.discard(name.strip())

    async def add_custom_skill(self, name: str) -> None:
        """Add a user-typed skill to the catalog and select it."""
        self._require_step(Step.SKILLS)
        if not name.strip():
            raise self._surface(ValidationError({"skills": "Type a skill to add."}))

        async def operation() -> None:
            async with self._request() as token:
                skill = await self.catalog.add_custom(name)
                token.raise_if_cancelled()
            self.state.draft.selected_skills.add(skill.name)
            if skill.custom:
                self.state.draft.custom_skills.add(skill.name)

        await self._run(operation)

    # -- Passkey ---------------------------------------------------------

    async def enroll_passkey(self, device_label: str | None = None, user_agent: str | None = None) -> None:
        """Run the enrollment ceremony. Success leaves the flow on PASSKEY in the SUCCESS phase."""
        self._require_step(Step.PASSKEY)

        async def operation() -> None:
            async with self._request() as token:
                await self.enrollment.enroll(device_label, user_agent, token)
            self.state.passkey_enrolled = True

        await self._run(operation)

    # -- Navigation ------------------------------------------------------

    async def advance(self) -> Step:
        """
        Validate the current step and move to the next one.

        Raises:
            ValidationError: Local validation failed (no transition)
            SubmissionError: Remote call failed (no transition); ConflictError
                for an already-registered email
            InvalidTransitionError: Called on COMPLETE
        """
        handlers: dict[Step, Callable[[], Awaitable[None]]] = {
            Step.ROLE: self._advance_role,
            Step.DETAILS: self._advance_details,
            Step.VERIFICATION: self._advance_verification,
            Step.SKILLS: self._advance_skills,
            Step.PASSKEY: self._advance_passkey,
        }
        handler = handlers.get(self.state.step)
        if handler is None:
            raise self._surface(InvalidTransitionError("Onboarding is already complete."))

        await self._run(handler)
        return self.state.step

    def retreat(self) -> Step:
        """Return to the previous reachable step. In-flight responses are discarded."""
        step = self.state.step
        if step not in RETREATABLE_STEPS:
            raise self._surface(InvalidTransitionError(f"Cannot go back from the {step.value} step."))

        self._cancel_active()
        if step is Step.VERIFICATION:
            self.otp.discard()
        if step is Step.PASSKEY:
            self.enrollment.reset()

        self._goto(self.path[self.path.index(step) - 1])
        return self.state.step

    def skip(self) -> Step:
        """Skip an optional step. Partial data is kept but not submitted."""
        step = self.state.step
        if step not in SKIPPABLE_STEPS:
            raise self._surface(InvalidTransitionError(f"The {step.value} step cannot be skipped."))

        self._cancel_active()
        if step is Step.PASSKEY:
            self.enrollment.reset()

        self._goto(self._next_step())
        return self.state.step

    def complete(self) -> str:
        """Landing destination for the chosen role. Only valid on COMPLETE."""
        self._require_step(Step.COMPLETE)
        role = self.state.draft.role
        destination = self.landing_paths[role]
        logger.info("Onboarding complete for %s, landing on %s", role.value, destination)
        return destination

    # -- step handlers ---------------------------------------------------

    async def _advance_role(self) -> None:
        if self.state.draft.role is None:
            raise ValidationError({"role": "Please select a role."})
        self._goto(Step.DETAILS)

    async def _advance_details(self) -> None:
        draft = self.state.draft

        if not draft.submitted:
            errors = self.validate_details()
            if errors:
                raise ValidationError(errors)

            email = draft.email.strip().lower()
            async with self._request() as token:
                account_id = await self.accounts.create_account(
                    first_name=draft.first_name.strip(),
                    last_name=draft.last_name.strip(),
                    email=email,
                    password=draft.password,
                    role=draft.role,
                    location=(draft.location or "").strip() or None,
                    phone=(draft.phone or "").strip() or None,
                )
                token.raise_if_cancelled()

            draft.email = email
            draft.submitted = True
            self.state.account_id = account_id
            logger.info("Account %s created for %s", account_id, email)
            self.notifications.publish(
                NotificationLevel.SUCCESS, "Registration successful! Please verify your email."
            )

        self._goto(Step.VERIFICATION)
        if self.state.session is None:
            await self._send_first_code()

    async def _send_first_code(self) -> None:
        email = self.state.draft.email
        self.otp.begin(email)
        try:
            async with self._request():
                await self.otp.send(email)
        except RateLimitedError:
            logger.info("Code for %s sent recently, not sending again", email)
            self.notifications.publish(
                NotificationLevel.INFO, "A verification code was already sent to your email."
            )
        except SubmissionError as e:
            # The account exists; the user stays on Verification and can resend
            self._surface(e)

    async def _advance_verification(self) -> None:
        if self.state.session is None:
            raise ValidationError({"code": "Enter the verification code sent to your email."})
        self._goto(self._next_step())

    async def _advance_skills(self) -> None:
        skills = sorted(self.state.draft.selected_skills)
        if not skills:
            raise ValidationError({"skills": "Select at least one skill or skip this step."})

        async with self._request() as token:
            await self.catalog.save_profile_skills(skills, self.state.session.access_token)
            token.raise_if_cancelled()
        self._goto(Step.PASSKEY)

    async def _advance_passkey(self) -> None:
        if not self.state.passkey_enrolled:
            raise ValidationError({"passkey": "Set up a passkey or skip this step."})
        self.enrollment.reset()
        self._goto(Step.COMPLETE)

    # -- internals -------------------------------------------------------

    def _next_step(self) -> Step:
        return self.path[self.path.index(self.state.step) + 1]

    def _goto(self, step: Step) -> None:
        logger.info("Onboarding step %s -> %s", self.state.step.value, step.value)
        self.state.step = step
        self.state.error = None

    def _require_step(self, step: Step) -> None:
        if self.state.step is not step:
            raise self._surface(
                InvalidTransitionError(f"Not available on the {self.state.step.value} step.")
            )

    def _require_idle(self) -> None:
        if self._active is not None:
            raise self._surface(OperationInProgressError())

    def _surface(self, error: OnboardingError) -> OnboardingError:
        self.state.error = error
        self.notifications.publish(NotificationLevel.ERROR, error.message)
        return error

    def _cancel_active(self) -> None:
        if self._active is not None:
            self._active.cancel()
            self._active = None

    async def _run(self, operation: Callable[[], Awaitable[T]]) -> T | None:
        try:
            return await operation()
        except StaleResponseError:
            logger.debug("Discarded late response, now on %s", self.state.step.value)
            return None
        except OnboardingError as e:
            self._surface(e)
            raise

    @asynccontextmanager
    async def _request(self) -> AsyncIterator[CancellationToken]:
        if self._active is not None:
            raise OperationInProgressError()

        token = CancellationToken(step=self.state.step)
        self._active = token
        try:
            yield token
        except OnboardingError as e:
            if token.cancelled and not isinstance(e, StaleResponseError):
                raise StaleResponseError() from e
            raise
        finally:
            if self._active is token:
                self._active = None
