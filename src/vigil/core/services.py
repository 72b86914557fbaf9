"""Core services: event ingestion, velocity tracking and anomaly response."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Union

from vigil.config.settings import Settings
from vigil.core.models import (
    EventOrigin,
    EventType,
    IpCount,
    RecentEvent,
    RequestContext,
    SecurityEvent,
    SecurityStats,
    SweepResult,
)
from vigil.core.severity import classify, coerce_event_type, should_forward
from vigil.core.state import BlacklistStore, IpVelocityTracker, RecentEventRing
from vigil.services.telemetry import TelemetryDispatcher

# Configure module-level logger
logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class SecurityMonitor:
    """Turns a stream of security events into history, velocity and quarantine state.

    Args:
        settings: Thresholds, capacities and the execution mode.
        dispatcher: Optional telemetry dispatcher for severe events in production.
        clock: Returns the current time in epoch seconds.
    """

    def __init__(
        self,
        settings: Settings,
        dispatcher: Optional[TelemetryDispatcher] = None,
        clock: Clock = time.time,
    ) -> None:
        self.settings = settings
        self.dispatcher = dispatcher
        self._clock = clock
        self.recent_events = RecentEventRing(settings.RECENT_EVENTS_CAPACITY)
        self.ip_counts = IpVelocityTracker(window_ms=settings.VELOCITY_WINDOW_SECONDS * 1000)
        self.blacklist = BlacklistStore()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def log_security_event(
        self,
        event_type: Union[EventType, str],
        context: Union[RequestContext, Dict[str, Any]],
        details: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SecurityEvent:
        """Record an event observed by a request handler."""
        if not isinstance(context, RequestContext):
            context = RequestContext(**context)
        resolved_type, metadata = coerce_event_type(event_type, metadata)
        return self._ingest(resolved_type, context, details, metadata, EventOrigin.OBSERVED)

    def _ingest(
        self,
        event_type: EventType,
        context: RequestContext,
        details: str,
        metadata: Optional[Dict[str, Any]],
        origin: EventOrigin,
    ) -> SecurityEvent:
        now_ms = self._now_ms()
        event = SecurityEvent(
            type=event_type,
            severity=classify(event_type),
            timestamp=datetime.fromtimestamp(now_ms / 1000, tz=timezone.utc).isoformat(),
            ip=context.ip,
            user_id=context.user_id,
            user_agent=context.user_agent,
            path=context.path,
            method=context.method,
            details=details,
            metadata=metadata,
            origin=origin,
        )

        self.recent_events.append(RecentEvent(type=event.type, timestamp=now_ms, ip=event.ip))
        self._route(event)

        count = self.update_ip_event_count(event.ip)
        # Detector output must not feed back into the detector.
        if origin is EventOrigin.OBSERVED:
            self.detect_suspicious_activity(event.ip, count)
        return event

    def _route(self, event: SecurityEvent) -> None:
        if self.settings.is_production:
            if should_forward(event.severity) and self.dispatcher is not None:
                self.dispatcher.submit(event)
            return
        logger.info(
            "[SECURITY:%s] type=%s ip=%s path=%s details=%s",
            event.severity.value.upper(),
            event.type.value,
            event.ip,
            event.path,
            event.details,
        )

    def update_ip_event_count(self, ip: str) -> int:
        return self.ip_counts.increment(ip, self._now_ms())

    def detect_suspicious_activity(self, ip: str, count: Optional[int] = None) -> bool:
        """Blacklist ``ip`` once its window count exceeds the hourly threshold.

        ``count`` is the value returned by the increment that preceded this
        call; passing it keeps the threshold decision tied to that event even
        when other requests from the same IP are being counted concurrently.
        """
        if count is None:
            entry = self.ip_counts.get(ip)
            count = entry.count if entry else 0
        if count <= self.settings.MAX_EVENTS_PER_HOUR:
            return False

        expires_at = self._now_ms() + self.settings.BLACKLIST_DURATION_MINUTES * 60 * 1000
        self.blacklist.add(ip, expires_at)
        logger.warning("Blacklisted %s after %d events in the current window.", ip, count)

        self._ingest(
            EventType.API_ABUSE,
            RequestContext(ip=ip, path="/", method="ANY"),
            f"IP {ip} exceeded security event threshold",
            {"event_count": count},
            EventOrigin.SYNTHESIZED,
        )
        return True

    def is_ip_blacklisted(self, ip: str) -> bool:
        return self.blacklist.contains(ip, self._now_ms())

    def get_security_stats(self) -> SecurityStats:
        return SecurityStats(
            recent_events_count=len(self.recent_events),
            events_by_type=self.recent_events.aggregate_by_type(),
            blacklisted_ips_count=len(self.blacklist),
            top_suspicious_ips=[
                IpCount(ip=ip, count=count)
                for ip, count in self.ip_counts.top(self.settings.TOP_SUSPICIOUS_IPS)
            ],
        )

    def sweep(self) -> SweepResult:
        """Reclaim memory held by elapsed counters and expired blacklist entries."""
        now_ms = self._now_ms()
        return SweepResult(
            ip_counters_removed=self.ip_counts.sweep(now_ms, self.settings.MAX_TRACKED_IPS),
            blacklist_entries_removed=self.blacklist.sweep(now_ms, self.settings.MAX_BLACKLIST_ENTRIES),
        )

    def reset(self) -> None:
        self.recent_events.clear()
        self.ip_counts.clear()
        self.blacklist.clear()
