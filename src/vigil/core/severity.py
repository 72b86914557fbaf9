"""Fixed event-type to severity classification."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple, Union

from vigil.core.models import EventType, Severity

logger = logging.getLogger(__name__)


EVENT_SEVERITY: Dict[EventType, Severity] = {
    EventType.AUTH_SUCCESS: Severity.LOW,
    EventType.AUTH_FAILURE: Severity.LOW,
    EventType.AUTH_LOCKOUT: Severity.MEDIUM,
    EventType.CSRF_VIOLATION: Severity.HIGH,
    EventType.RATE_LIMIT_EXCEEDED: Severity.MEDIUM,
    EventType.SUSPICIOUS_REQUEST: Severity.MEDIUM,
    EventType.SQL_INJECTION_ATTEMPT: Severity.CRITICAL,
    EventType.XSS_ATTEMPT: Severity.HIGH,
    EventType.UNAUTHORIZED_ACCESS: Severity.MEDIUM,
    EventType.SESSION_HIJACK_ATTEMPT: Severity.CRITICAL,
    EventType.FILE_UPLOAD_BLOCKED: Severity.MEDIUM,
    EventType.API_ABUSE: Severity.HIGH,
    EventType.BRUTE_FORCE_ATTEMPT: Severity.HIGH,
    EventType.DATA_EXPORT: Severity.LOW,
    EventType.ADMIN_ACTION: Severity.MEDIUM,
}

TELEMETRY_LEVELS: Dict[Severity, str] = {
    Severity.CRITICAL: "fatal",
    Severity.HIGH: "error",
    Severity.MEDIUM: "warning",
    Severity.LOW: "info",
}

FORWARDED_SEVERITIES = frozenset({Severity.HIGH, Severity.CRITICAL})


def classify(event_type: EventType) -> Severity:
    return EVENT_SEVERITY[event_type]


def telemetry_level(severity: Severity) -> str:
    return TELEMETRY_LEVELS[severity]


def should_forward(severity: Severity) -> bool:
    """Only high and critical events leave the process."""
    return severity in FORWARDED_SEVERITIES


def coerce_event_type(
    value: Union[EventType, str],
    metadata: Optional[Dict[str, Any]] = None,
) -> Tuple[EventType, Optional[Dict[str, Any]]]:
    """Convert a caller-supplied type into an EventType.

    Unknown strings are recorded as ``suspicious_request`` and the raw value
    is kept in the returned metadata under ``original_type`` so nothing the
    caller reported is lost.

    Returns:
        The resolved event type and the (possibly extended) metadata.
    """
    if isinstance(value, EventType):
        return value, metadata
    try:
        return EventType(value), metadata
    except ValueError:
        logger.warning("Unknown security event type %r recorded as suspicious_request", value)
        merged = dict(metadata or {})
        merged["original_type"] = value
        return EventType.SUSPICIOUS_REQUEST, merged
