"""
Token Revocation Registry

Tracks credentials that must be rejected before their natural expiry.

State:
    - Persistent store rows (source of truth, shared across processes)
    - In-process index of unexpired token digests, rebuilt at startup
    - In-process floor of accepted token versions per subject (revoke-all)

Both in-process maps are immutable snapshots replaced under a lock, so a
reader holding a reference never observes a partially rebuilt index. No
lock is held while awaiting the store.

Store faults fail OPEN by default: the request proceeds without denylist
protection and the fault is logged. Set ``fail_open=False`` to raise
StoreUnavailableError instead. Stores report faults as
StoreUnavailableError; a call that outlives ``store_timeout`` counts as one.

Version floors are a cache of the store's token versions. A floor older
than the token TTL is dropped on sweep and re-read from the store on demand.
"""

import asyncio
import hashlib
import logging
import threading
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Any, Awaitable, Dict, List, Mapping, NamedTuple, Optional, TypeVar
from uuid import UUID

import jwt
from jwt.exceptions import InvalidTokenError

from germy_auth.core.store import IdentityStore
from germy_auth.core.types import (
    Clock,
    RevocationEntry,
    RevocationReason,
    TokenClaims,
    utcnow,
)
from germy_auth.exceptions import NotFound, StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def token_digest(token: str) -> str:
    """Lookup key for a token. Raw token values are never persisted."""
    return hashlib.sha256(token.encode()).hexdigest()


class VersionFloor(NamedTuple):
    version: int
    raised_at: datetime


@dataclass
class RevocationStats:
    total_tokens: int = 0
    active_tokens: int = 0
    expired_tokens: int = 0
    tokens_by_reason: Dict[str, int] = field(default_factory=dict)


class RevocationRegistry:
    """Denylist of revoked tokens plus per-subject revoke-all floors."""

    def __init__(
        self,
        store: IdentityStore,
        clock: Optional[Clock] = None,
        default_ttl: timedelta = timedelta(hours=24),
        store_timeout: float = 2.0,
        fail_open: bool = True,
    ):
        self.store = store
        self.default_ttl = default_ttl
        self.store_timeout = store_timeout
        self.fail_open = fail_open
        self._clock = clock or utcnow

        self._lock = threading.Lock()
        self._index: Mapping[str, datetime] = MappingProxyType({})
        self._version_floors: Mapping[UUID, VersionFloor] = MappingProxyType({})

    # ==================== Lifecycle ====================

    async def load(self) -> int:
        """Rebuild the in-process index from unexpired store rows."""
        entries = await self._call(self.store.list_active_revocations(self._clock()))
        fresh = {entry.token_digest: entry.expires_at for entry in entries}
        with self._lock:
            self._index = MappingProxyType(fresh)
        logger.info(f"Initialized token revocation index with {len(fresh)} tokens")
        return len(fresh)

    # ==================== Revocation ====================

    async def revoke(
        self,
        token: str,
        subject_id: UUID,
        tenant_id: Optional[UUID],
        reason: RevocationReason = RevocationReason.LOGOUT,
        expires_at: Optional[datetime] = None,
    ) -> bool:
        """
        Revoke a token until ``expires_at`` (default now + default TTL).

        Store first, then index. Revoking an already revoked token is a no-op.
        """
        reason = RevocationReason(reason)
        expires_at = expires_at or self._clock() + self.default_ttl
        digest = token_digest(token)

        entry = RevocationEntry(
            token_digest=digest,
            subject_id=subject_id,
            tenant_id=tenant_id,
            reason=reason,
            expires_at=expires_at,
            created_at=self._clock(),
        )
        await self._call(self.store.insert_revocation_entry(entry))
        self._index_add(digest, expires_at)

        logger.info(
            f"Token revoked for subject {subject_id}",
            extra={
                "subject_id": str(subject_id),
                "tenant_id": str(tenant_id) if tenant_id else None,
                "reason": reason.value,
                "expires_at": expires_at.isoformat(),
            },
        )
        return True

    async def revoke_all(
        self,
        subject_id: UUID,
        tenant_id: Optional[UUID],
        reason: RevocationReason = RevocationReason.SECURITY,
    ) -> int:
        """
        Revoke every token issued to a subject so far.

        Bumps the subject's token version; tokens carrying an older ``ver``
        claim are revoked from then on. Callers changing the subject in the
        same step bump through the store write instead and report it with
        ``record_revoke_all``.

        Returns:
            The new token version
        """
        version = await self._call(self.store.increment_token_version(subject_id))
        if version is None:
            raise NotFound("User not found", details={"subject_id": str(subject_id)})
        self.record_revoke_all(subject_id, tenant_id, version, reason)
        return version

    def record_revoke_all(
        self,
        subject_id: UUID,
        tenant_id: Optional[UUID],
        version: int,
        reason: RevocationReason = RevocationReason.SECURITY,
    ) -> None:
        """Apply a token version bump the store has already committed."""
        self._raise_floor(subject_id, version)

        logger.info(
            f"All tokens revoked for subject {subject_id}",
            extra={
                "subject_id": str(subject_id),
                "tenant_id": str(tenant_id) if tenant_id else None,
                "reason": RevocationReason(reason).value,
                "token_version": version,
            },
        )

    async def is_revoked(self, token: str, claims: Optional[TokenClaims] = None) -> bool:
        """
        Check whether a token has been revoked.

        Index first; on a miss consult the store. Entries past their
        expiry are evicted and never count as revoked.
        """
        now = self._clock()
        digest = token_digest(token)

        index = self._index
        expires_at = index.get(digest)
        if expires_at is not None:
            if expires_at > now:
                return True
            self._index_discard(digest)
            return False

        subject_id, version = self._subject_version(token, claims)
        floor = self._version_floors.get(subject_id) if subject_id is not None else None
        if floor is not None and version < floor.version:
            return True

        try:
            entry = await self._call(self.store.find_revocation_entry(digest))
            if entry is not None:
                if entry.expires_at <= now:
                    await self._call(self.store.delete_revocation_entry(digest))
                    self._index_discard(digest)
                    return False
                self._index_add(digest, entry.expires_at)
                return True

            if subject_id is not None:
                current = await self._call(self.store.get_token_version(subject_id))
                if current is not None:
                    self._raise_floor(subject_id, current)
                    return version < current
        except StoreUnavailableError as e:
            if not self.fail_open:
                raise
            logger.error(
                "Revocation check degraded: store unavailable, treating token as not revoked",
                extra={"error": str(e), "subject_id": str(subject_id) if subject_id else None},
            )
        return False

    # ==================== Maintenance ====================

    async def sweep_expired(self) -> int:
        """
        Delete expired rows and swap in a freshly built index.

        Also drops version floors raised more than ``default_ttl`` ago: any
        token older than such a floor has expired by now.
        """
        now = self._clock()
        removed = await self._call(self.store.delete_expired_revocations(now))
        entries = await self._call(self.store.list_active_revocations(now))
        fresh = {entry.token_digest: entry.expires_at for entry in entries}
        cutoff = now - self.default_ttl
        with self._lock:
            self._index = MappingProxyType(fresh)
            self._version_floors = MappingProxyType({
                subject_id: floor
                for subject_id, floor in self._version_floors.items()
                if floor.raised_at > cutoff
            })

        logger.info(
            f"Cleaned up {removed} expired revoked tokens, {len(fresh)} remain",
            extra={"version_floors": len(self._version_floors)},
        )
        return removed

    async def get_subject_entries(self, subject_id: UUID) -> List[RevocationEntry]:
        return await self._call(self.store.list_revocations(subject_id))

    async def get_stats(self) -> RevocationStats:
        entries = await self._call(self.store.list_revocations())
        now = self._clock()
        stats = RevocationStats(total_tokens=len(entries))
        for entry in entries:
            if entry.expires_at <= now:
                stats.expired_tokens += 1
            else:
                stats.active_tokens += 1
        stats.tokens_by_reason = dict(Counter(entry.reason.value for entry in entries))
        return stats

    @property
    def indexed_count(self) -> int:
        return len(self._index)

    @property
    def floor_count(self) -> int:
        return len(self._version_floors)

    # ==================== Internals ====================

    async def _call(self, awaitable: Awaitable[T]) -> T:
        """
        Await a store call with a timeout, normalizing faults.

        Only ``is_revoked`` may swallow the resulting StoreUnavailableError;
        writes always raise so a revocation is never reported as recorded
        when it was not.
        """
        try:
            return await asyncio.wait_for(awaitable, timeout=self.store_timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Revocation store call timed out after {self.store_timeout}s")
            raise StoreUnavailableError(
                "Identity store timed out", details={"timeout": self.store_timeout}
            ) from e

    def _subject_version(self, token: str, claims: Optional[TokenClaims]):
        if claims is not None:
            return claims.subject_id, claims.token_version
        try:
            payload: Dict[str, Any] = jwt.decode(token, options={"verify_signature": False})
        except InvalidTokenError:
            return None, 0
        try:
            return UUID(payload["sub"]), int(payload.get("ver", 1))
        except (KeyError, TypeError, ValueError):
            return None, 0

    def _index_add(self, digest: str, expires_at: datetime) -> None:
        with self._lock:
            updated = dict(self._index)
            updated[digest] = expires_at
            self._index = MappingProxyType(updated)

    def _index_discard(self, digest: str) -> None:
        with self._lock:
            if digest not in self._index:
                return
            updated = dict(self._index)
            updated.pop(digest, None)
            self._index = MappingProxyType(updated)

    def _raise_floor(self, subject_id: UUID, version: int) -> None:
        with self._lock:
            current = self._version_floors.get(subject_id)
            if current is not None and current.version >= version:
                return
            updated = dict(self._version_floors)
            updated[subject_id] = VersionFloor(version, self._clock())
            self._version_floors = MappingProxyType(updated)


# ============================================================
# Background sweeper
# ============================================================


@dataclass
class WorkerStats:
    """Statistics for a background worker."""
    name: str
    started_at: datetime
    last_run_at: Optional[datetime] = None
    run_count: int = 0
    removed_count: int = 0
    error_count: int = 0
    last_error: Optional[str] = None


class RevocationSweeper:
    """
    Periodically purges expired revocation entries.

    Runs ``sweep_expired`` every ``interval_seconds`` until stopped.
    """

    def __init__(self, registry: RevocationRegistry, interval_seconds: float = 3600):
        self.registry = registry
        self.interval = interval_seconds
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._stats = WorkerStats(name="revocation_sweeper", started_at=utcnow())

    @property
    def running(self) -> bool:
        return self._running

    @property
    def stats(self) -> WorkerStats:
        return self._stats

    async def start(self) -> None:
        """Start the sweeper."""
        if self._running:
            return

        self._running = True
        self._stats.started_at = utcnow()
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Revocation sweeper started")

    async def stop(self) -> None:
        """Stop the sweeper."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Revocation sweeper stopped")

    async def run_once(self) -> int:
        removed = await self.registry.sweep_expired()
        self._stats.run_count += 1
        self._stats.removed_count += removed
        self._stats.last_run_at = utcnow()
        return removed

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval)
                await self.run_once()
            except asyncio.CancelledError:
                break
            except StoreUnavailableError as e:
                logger.error(f"Revocation sweep failed: {e}")
                self._stats.error_count += 1
                self._stats.last_error = str(e)
