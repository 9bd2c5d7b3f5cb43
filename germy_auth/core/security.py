"""
Security Monitoring

Records authentication and authorization outcomes as security events,
scores their risk, and raises alerts when a type's trailing-window count
crosses its threshold.

Events are append-only. Alerts are informational: nothing here locks an
account or blocks a request.
"""

import logging
from collections import Counter, deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional
from uuid import UUID, uuid4

from germy_auth.core.store import IdentityStore
from germy_auth.core.types import (
    Clock,
    SecurityEvent,
    SecurityEventType,
    Severity,
    utcnow,
)

logger = logging.getLogger(__name__)


# ============================================================
# Scoring Tables
# ============================================================


BASE_RISK_SCORES: Dict[SecurityEventType, int] = {
    SecurityEventType.LOGIN_FAILED: 30,
    SecurityEventType.RATE_LIMIT_EXCEEDED: 40,
    SecurityEventType.SUSPICIOUS_ACTIVITY: 80,
    SecurityEventType.PASSWORD_POLICY_VIOLATION: 20,
    SecurityEventType.UNAUTHORIZED_ACCESS: 90,
    SecurityEventType.TOKEN_BLACKLISTED: 50,
    SecurityEventType.ACCOUNT_LOCKED: 70,
    SecurityEventType.PERMISSION_ESCALATION: 95,
}
DEFAULT_RISK_SCORE = 10

SEVERITY_ADJUSTMENT: Dict[Severity, int] = {
    Severity.CRITICAL: 20,
    Severity.HIGH: 10,
    Severity.MEDIUM: 5,
    Severity.LOW: 0,
}

# (events seen from the same source address, bonus); first match wins
FREQUENCY_ADJUSTMENT = ((5, 20), (3, 10))
MAX_RISK_SCORE = 100


@dataclass(frozen=True)
class AlertThreshold:
    """``count`` events of one type within ``window`` raise an alert.

    A window of None means every occurrence counts on its own.
    """

    count: int
    window: Optional[timedelta]
    severity: Severity


ALERT_THRESHOLDS: Dict[SecurityEventType, AlertThreshold] = {
    SecurityEventType.LOGIN_FAILED: AlertThreshold(5, timedelta(minutes=15), Severity.HIGH),
    SecurityEventType.RATE_LIMIT_EXCEEDED: AlertThreshold(3, timedelta(minutes=5), Severity.MEDIUM),
    SecurityEventType.SUSPICIOUS_ACTIVITY: AlertThreshold(1, None, Severity.HIGH),
    SecurityEventType.PASSWORD_POLICY_VIOLATION: AlertThreshold(3, timedelta(hours=1), Severity.MEDIUM),
}

SEVERITY_LOG_LEVEL: Dict[Severity, int] = {
    Severity.CRITICAL: logging.ERROR,
    Severity.HIGH: logging.WARNING,
    Severity.MEDIUM: logging.WARNING,
    Severity.LOW: logging.INFO,
}


@dataclass
class SecurityAlert:
    """Alert raised when an event type crosses its threshold."""

    type: SecurityEventType
    severity: Severity
    message: str
    event_count: int
    window: Optional[timedelta]
    subject_id: Optional[UUID] = None
    tenant_id: Optional[UUID] = None
    source_address: Optional[str] = None
    created_at: Optional[datetime] = None
    id: UUID = field(default_factory=uuid4)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "type": self.type.value,
            "severity": self.severity.value,
            "message": self.message,
            "event_count": self.event_count,
            "window_seconds": int(self.window.total_seconds()) if self.window else None,
            "subject_id": str(self.subject_id) if self.subject_id else None,
            "tenant_id": str(self.tenant_id) if self.tenant_id else None,
            "source_address": self.source_address,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


AlertHandler = Callable[[SecurityAlert], Awaitable[None]]


# ============================================================
# Security Monitor
# ============================================================


class SecurityMonitor:
    """
    Central security event recorder.

    All authentication outcomes flow through this class.
    """

    def __init__(
        self,
        store: IdentityStore,
        clock: Optional[Clock] = None,
        frequency_window: timedelta = timedelta(minutes=15),
        alert_history: int = 500,
    ):
        self.store = store
        self.frequency_window = frequency_window
        self._clock = clock or utcnow
        self._alerts: Deque[SecurityAlert] = deque(maxlen=alert_history)
        self._handlers: List[AlertHandler] = []

    def add_alert_handler(self, handler: AlertHandler) -> None:
        """Register an async callable invoked with every new alert."""
        self._handlers.append(handler)

    async def record(self, event: SecurityEvent) -> SecurityEvent:
        """
        Score, persist and log an event, then evaluate alert thresholds.

        Args:
            event: Event to record; ``risk_score`` is computed when unset.
                The caller's instance is left untouched.

        Returns:
            The stored event
        """
        event = replace(event, timestamp=event.timestamp or self._clock())
        if event.risk_score is None:
            event = replace(event, risk_score=await self.calculate_risk_score(event))

        stored = await self.store.append_security_event(event)

        logger.log(
            SEVERITY_LOG_LEVEL.get(stored.severity, logging.INFO),
            f"Security Event: {stored.type.value}",
            extra={"security_event": stored.to_dict()},
        )

        await self._check_for_alerts(stored)
        return stored

    async def calculate_risk_score(self, event: SecurityEvent) -> int:
        """Base score by type, plus severity, plus source-address frequency; capped at 100."""
        score = BASE_RISK_SCORES.get(event.type, DEFAULT_RISK_SCORE)
        score += SEVERITY_ADJUSTMENT.get(event.severity, 0)

        if event.source_address:
            recent = await self.store.count_recent_events(
                since=self._clock() - self.frequency_window,
                source_address=event.source_address,
            )
            for above, bonus in FREQUENCY_ADJUSTMENT:
                if recent > above:
                    score += bonus
                    break

        return min(score, MAX_RISK_SCORE)

    # ==================== Alerts ====================

    async def _check_for_alerts(self, event: SecurityEvent) -> Optional[SecurityAlert]:
        threshold = ALERT_THRESHOLDS.get(event.type)
        if threshold is None:
            return None

        if threshold.window is None:
            count = 1
        else:
            count = await self.store.count_recent_events(
                since=self._clock() - threshold.window,
                event_type=event.type,
            )

        if count < threshold.count:
            return None

        alert = SecurityAlert(
            type=event.type,
            severity=threshold.severity,
            message=f"Multiple {event.type.value} events detected",
            event_count=count,
            window=threshold.window,
            subject_id=event.subject_id,
            tenant_id=event.tenant_id,
            source_address=event.source_address,
            created_at=self._clock(),
        )
        self._alerts.append(alert)

        logger.error("SECURITY ALERT", extra={"security_alert": alert.to_dict()})

        for handler in self._handlers:
            try:
                await handler(alert)
            except Exception as e:
                logger.error(f"Alert handler {handler!r} failed: {e}")

        return alert

    def get_active_alerts(
        self,
        since: Optional[datetime] = None,
        tenant_id: Optional[UUID] = None,
    ) -> List[SecurityAlert]:
        alerts = list(self._alerts)
        if since:
            alerts = [a for a in alerts if a.created_at and a.created_at >= since]
        if tenant_id:
            alerts = [a for a in alerts if a.tenant_id == tenant_id]
        return alerts

    # ==================== Queries ====================

    async def get_subject_events(self, subject_id: UUID, limit: int = 50) -> List[SecurityEvent]:
        return await self.store.query_recent_events(subject_id=subject_id, limit=limit)

    async def get_tenant_events(self, tenant_id: UUID, limit: int = 100) -> List[SecurityEvent]:
        return await self.store.query_recent_events(tenant_id=tenant_id, limit=limit)

    async def get_stats(
        self,
        window: timedelta = timedelta(hours=24),
        tenant_id: Optional[UUID] = None,
    ) -> Dict[str, Any]:
        """Event counts by type and severity, plus the busiest sources and subjects."""
        events = await self.store.query_recent_events(
            since=self._clock() - window, tenant_id=tenant_id
        )

        by_address = Counter(e.source_address for e in events if e.source_address)
        by_subject = Counter(str(e.subject_id) for e in events if e.subject_id)

        return {
            "total_events": len(events),
            "events_by_type": dict(Counter(e.type.value for e in events)),
            "events_by_severity": dict(Counter(e.severity.value for e in events)),
            "top_addresses": [
                {"address": address, "count": count}
                for address, count in by_address.most_common(10)
            ],
            "top_subjects": [
                {"subject_id": subject, "count": count}
                for subject, count in by_subject.most_common(10)
            ],
            "active_alerts": len(self._alerts),
        }

    # ==================== Convenience recorders ====================

    async def log_login_failure(
        self,
        email: str,
        source_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        subject_id: Optional[UUID] = None,
        tenant_id: Optional[UUID] = None,
    ) -> SecurityEvent:
        return await self.record(SecurityEvent(
            type=SecurityEventType.LOGIN_FAILED,
            severity=Severity.HIGH,
            subject_id=subject_id,
            tenant_id=tenant_id,
            email=email,
            source_address=source_address,
            user_agent=user_agent,
            details=details or {},
        ))

    async def log_login_success(
        self,
        subject_id: UUID,
        email: str,
        tenant_id: Optional[UUID],
        source_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> SecurityEvent:
        return await self.record(SecurityEvent(
            type=SecurityEventType.LOGIN_SUCCESS,
            severity=Severity.LOW,
            subject_id=subject_id,
            tenant_id=tenant_id,
            email=email,
            source_address=source_address,
            user_agent=user_agent,
        ))

    async def log_rate_limit_exceeded(
        self,
        source_address: str,
        endpoint: str,
        user_agent: Optional[str] = None,
    ) -> SecurityEvent:
        return await self.record(SecurityEvent(
            type=SecurityEventType.RATE_LIMIT_EXCEEDED,
            severity=Severity.MEDIUM,
            source_address=source_address,
            user_agent=user_agent,
            details={"endpoint": endpoint},
        ))

    async def log_suspicious_activity(
        self,
        description: str,
        subject_id: Optional[UUID] = None,
        tenant_id: Optional[UUID] = None,
        source_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> SecurityEvent:
        return await self.record(SecurityEvent(
            type=SecurityEventType.SUSPICIOUS_ACTIVITY,
            severity=Severity.HIGH,
            subject_id=subject_id,
            tenant_id=tenant_id,
            source_address=source_address,
            user_agent=user_agent,
            details={"description": description, **(details or {})},
        ))

    async def log_password_policy_violation(
        self,
        email: str,
        violations: List[str],
        tenant_id: Optional[UUID] = None,
        source_address: Optional[str] = None,
    ) -> SecurityEvent:
        return await self.record(SecurityEvent(
            type=SecurityEventType.PASSWORD_POLICY_VIOLATION,
            severity=Severity.MEDIUM,
            tenant_id=tenant_id,
            email=email,
            source_address=source_address,
            details={"violations": list(violations)},
        ))

    async def log_unauthorized_access(
        self,
        resource: str,
        subject_id: Optional[UUID] = None,
        tenant_id: Optional[UUID] = None,
        source_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> SecurityEvent:
        return await self.record(SecurityEvent(
            type=SecurityEventType.UNAUTHORIZED_ACCESS,
            severity=Severity.HIGH,
            subject_id=subject_id,
            tenant_id=tenant_id,
            source_address=source_address,
            user_agent=user_agent,
            details={"resource": resource, **(details or {})},
        ))

    async def log_token_revoked(
        self,
        subject_id: UUID,
        tenant_id: Optional[UUID],
        reason: str,
        source_address: Optional[str] = None,
    ) -> SecurityEvent:
        return await self.record(SecurityEvent(
            type=SecurityEventType.TOKEN_BLACKLISTED,
            severity=Severity.MEDIUM,
            subject_id=subject_id,
            tenant_id=tenant_id,
            source_address=source_address,
            details={"reason": reason},
        ))


__all__ = [
    "ALERT_THRESHOLDS",
    "BASE_RISK_SCORES",
    "SEVERITY_ADJUSTMENT",
    "AlertThreshold",
    "SecurityAlert",
    "SecurityMonitor",
]
