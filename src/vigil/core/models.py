from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Optional

class EventType(str, Enum):
    AUTH_SUCCESS = 'auth_success'
    AUTH_FAILURE = 'auth_failure'
    AUTH_LOCKOUT = 'auth_lockout'
    CSRF_VIOLATION = 'csrf_violation'
    RATE_LIMIT_EXCEEDED = 'rate_limit_exceeded'
    SUSPICIOUS_REQUEST = 'suspicious_request'
    SQL_INJECTION_ATTEMPT = 'sql_injection_attempt'
    XSS_ATTEMPT = 'xss_attempt'
    UNAUTHORIZED_ACCESS = 'unauthorized_access'
    SESSION_HIJACK_ATTEMPT = 'session_hijack_attempt'
    FILE_UPLOAD_BLOCKED = 'file_upload_blocked'
    API_ABUSE = 'api_abuse'
    BRUTE_FORCE_ATTEMPT = 'brute_force_attempt'
    DATA_EXPORT = 'data_export'
    ADMIN_ACTION = 'admin_action'

class Severity(str, Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    CRITICAL = 'critical'

class EventOrigin(str, Enum):
    """Who produced an event: a caller, or the anomaly detector itself."""
    OBSERVED = 'observed'
    SYNTHESIZED = 'synthesized'

class CheckStatus(str, Enum):
    PASS = 'pass'
    FAIL = 'fail'
    WARNING = 'warning'
    NOT_CHECKED = 'not_checked'

class RequestContext(BaseModel):
    ip: str = Field(..., min_length=1)
    path: str = '/'
    method: str = 'ANY'
    user_agent: Optional[str] = None
    user_id: Optional[str] = None

class SecurityEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: EventType
    severity: Severity
    timestamp: str
    ip: str
    user_id: Optional[str] = None
    user_agent: Optional[str] = None
    path: str
    method: str
    details: str
    metadata: Optional[dict[str, Any]] = None
    origin: EventOrigin = EventOrigin.OBSERVED

class RecentEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: EventType
    timestamp: int
    ip: str

class IpCount(BaseModel):
    ip: str
    count: int

class SecurityStats(BaseModel):
    recent_events_count: int
    events_by_type: dict[EventType, int] = Field(default_factory=dict)
    blacklisted_ips_count: int
    top_suspicious_ips: list[IpCount] = Field(default_factory=list)

class SweepResult(BaseModel):
    ip_counters_removed: int = 0
    blacklist_entries_removed: int = 0

class AuditCheckItem(BaseModel):
    id: str
    category: str
    description: str
    status: CheckStatus
    details: Optional[str] = None

class AuditSummary(BaseModel):
    passed: int
    failed: int
    warnings: int
    score: int = Field(..., ge=0, le=100)
