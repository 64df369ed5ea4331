"""
Browser relay ceremony adapter - Implements CredentialCeremonyAdapter protocol.

The platform credential API lives in the user's browser. This adapter
suspends the ceremony at create_credential() until the browser has
fetched the options, run navigator.credentials.create() and posted back
either the credential or the DOMException name it failed with.

    begin request   -> arm(); start ceremony task; wait_for_options()
    finish request  -> submit(attestation); await ceremony task
    abort request   -> abort(error_name); await ceremony task
"""

import asyncio
import logging
from typing import Any

from src.domain.enrollment import classify_platform_error
from src.domain.exceptions import InvalidTransitionError, UnsupportedPlatformError
from src.domain.models import Attestation

logger = logging.getLogger(__name__)


class BrowserRelayCeremonyAdapter:
    """
    Implements CredentialCeremonyAdapter protocol by relaying to a browser.

    Uses structural subtyping - no explicit inheritance from Protocol.
    One ceremony at a time; arm() must be called from the running loop
    before each ceremony.
    """

    def __init__(self) -> None:
        self.supported = False
        self._options: asyncio.Future[dict[str, Any]] | None = None
        self._attestation: asyncio.Future[Attestation] | None = None

    def arm(self, supported: bool) -> None:
        """
        Prepare for a new ceremony.

        Args:
            supported: Whether the browser reported WebAuthn support
        """
        loop = asyncio.get_running_loop()
        self.supported = supported
        self._options = loop.create_future()
        self._attestation = loop.create_future()

    @property
    def awaiting_credential(self) -> bool:
        return (
            self._options is not None
            and self._options.done()
            and self._attestation is not None
            and not self._attestation.done()
        )

    def credential_creation_supported(self) -> bool:
        return self.supported

    async def create_credential(self, options: dict[str, Any]) -> Attestation:
        """Hand the options to the browser and wait for its answer."""
        if self._options is None or self._attestation is None:
            raise UnsupportedPlatformError("No browser is attached to this ceremony.")
        if not self._options.done():
            self._options.set_result(options)
        return await self._attestation

    async def wait_for_options(self, ceremony: "asyncio.Task[Any]") -> dict[str, Any] | None:
        """
        Wait until the ceremony reaches the platform prompt or ends.

        Returns:
            Creation options for the browser, or None if the ceremony
            ended without reaching the prompt

        Raises:
            OnboardingError: The ceremony failed before the prompt
        """
        if self._options is None:
            raise InvalidTransitionError("No passkey ceremony has been started.")

        done, _ = await asyncio.wait({self._options, ceremony}, return_when=asyncio.FIRST_COMPLETED)
        if self._options in done:
            return self._options.result()
        ceremony.result()
        return None

    def submit(self, attestation: Attestation) -> None:
        """Deliver the credential created by the browser."""
        if not self.awaiting_credential:
            raise InvalidTransitionError("No passkey ceremony is waiting for a credential.")
        self._attestation.set_result(attestation)

    def abort(self, error_name: str, message: str | None = None) -> None:
        """Deliver the platform error the browser reported."""
        if not self.awaiting_credential:
            raise InvalidTransitionError("No passkey ceremony is waiting for a credential.")
        logger.info("Browser reported %s during credential creation", error_name)
        self._attestation.set_exception(classify_platform_error(error_name, message))
