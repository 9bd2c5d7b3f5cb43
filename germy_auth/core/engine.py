"""
Identity Engine

Composition root for the identity core. Owns one instance of each
component and the revocation sweeper, with an explicit start/close
lifecycle:

    async with IdentityEngine.from_settings(store) as engine:
        result = await engine.access.authenticate(...)
"""

import logging
from datetime import timedelta
from typing import Optional

from germy_auth.config import Settings, get_settings
from germy_auth.core.access import AccessControlEngine
from germy_auth.core.approval import ApprovalWorkflow
from germy_auth.core.passwords import PasswordPolicyEngine
from germy_auth.core.revocation import RevocationRegistry, RevocationSweeper
from germy_auth.core.security import SecurityMonitor
from germy_auth.core.store import IdentityStore
from germy_auth.core.tokens import SigningKey, TokenService
from germy_auth.core.types import Clock, utcnow
from germy_auth.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)


class IdentityEngine:
    """Wires the identity components around a single store and clock."""

    def __init__(
        self,
        store: IdentityStore,
        tokens: TokenService,
        clock: Optional[Clock] = None,
        revocation_ttl: timedelta = timedelta(hours=24),
        store_timeout: float = 2.0,
        fail_open: bool = True,
        sweep_interval: float = 3600,
        frequency_window: timedelta = timedelta(minutes=15),
        alert_history: int = 500,
        bcrypt_rounds: int = 12,
    ):
        self.store = store
        self.clock = clock or utcnow
        self.tokens = tokens

        self.passwords = PasswordPolicyEngine()
        self.revocations = RevocationRegistry(
            store,
            clock=self.clock,
            default_ttl=revocation_ttl,
            store_timeout=store_timeout,
            fail_open=fail_open,
        )
        self.monitor = SecurityMonitor(
            store,
            clock=self.clock,
            frequency_window=frequency_window,
            alert_history=alert_history,
        )
        self.access = AccessControlEngine(
            store,
            tokens=self.tokens,
            revocations=self.revocations,
            monitor=self.monitor,
            passwords=self.passwords,
            clock=self.clock,
            bcrypt_rounds=bcrypt_rounds,
        )
        self.approvals = ApprovalWorkflow(store, self.access, self.monitor, clock=self.clock)
        self.sweeper = RevocationSweeper(self.revocations, interval_seconds=sweep_interval)
        self._started = False

    @classmethod
    def from_settings(
        cls,
        store: IdentityStore,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ) -> "IdentityEngine":
        """Build an engine from application settings."""
        settings = settings or get_settings()

        signing_key = SigningKey(settings.JWT_KEY_ID, settings.JWT_SECRET_KEY)
        previous = []
        if settings.JWT_PREVIOUS_SECRET_KEY and settings.JWT_PREVIOUS_KEY_ID:
            previous.append(SigningKey(settings.JWT_PREVIOUS_KEY_ID, settings.JWT_PREVIOUS_SECRET_KEY))

        tokens = TokenService(
            signing_key,
            verification_keys=previous,
            ttl=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
            algorithm=settings.JWT_ALGORITHM,
            issuer=settings.JWT_ISSUER,
            audience=settings.JWT_AUDIENCE,
            clock=clock,
        )

        return cls(
            store,
            tokens,
            clock=clock,
            revocation_ttl=timedelta(hours=settings.REVOCATION_DEFAULT_TTL_HOURS),
            store_timeout=settings.REVOCATION_STORE_TIMEOUT_SEC,
            fail_open=settings.REVOCATION_FAIL_OPEN,
            sweep_interval=settings.REVOCATION_SWEEP_INTERVAL_SEC,
            frequency_window=timedelta(minutes=settings.SECURITY_FREQUENCY_WINDOW_MINUTES),
            alert_history=settings.SECURITY_ALERT_HISTORY,
            bcrypt_rounds=settings.BCRYPT_ROUNDS,
        )

    @property
    def started(self) -> bool:
        return self._started

    async def start(self, run_sweeper: bool = True) -> None:
        """Load the revocation index and start the sweeper."""
        if self._started:
            return

        try:
            await self.revocations.load()
        except StoreUnavailableError as e:
            if not self.revocations.fail_open:
                raise
            logger.error(f"Starting with an empty revocation index: {e}")

        if run_sweeper:
            await self.sweeper.start()
        self._started = True
        logger.info("Identity engine started")

    async def close(self) -> None:
        await self.sweeper.stop()
        self._started = False
        logger.info("Identity engine stopped")

    async def __aenter__(self) -> "IdentityEngine":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
