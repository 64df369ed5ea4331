"""
Session bootstrapper - Single write path to the session store.

Invoked exactly once per onboarding, by a successful OTP verification.
No other onboarding component writes session state.
"""

import logging
from dataclasses import dataclass, field

from .models import Session
from .ports import SessionStore

logger = logging.getLogger(__name__)


@dataclass
class SessionBootstrapper:
    """Persists the session issued at verification time."""

    store: SessionStore
    _session: Session | None = field(default=None, init=False, repr=False)

    @property
    def session(self) -> Session | None:
        return self._session

    def bootstrap(self, session: Session) -> Session:
        """
        Persist tokens and the minimal user record.

        Raises:
            RuntimeError: If a session was already bootstrapped
        """
        if self._session is not None:
            raise RuntimeError("Session already bootstrapped for this onboarding")

        self.store.save(session)
        self._session = session
        logger.info("Session established for user %s (%s)", session.user_id, session.role.value)
        return session
