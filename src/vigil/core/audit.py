"""Configuration and posture audit with a numeric score."""

from __future__ import annotations

import logging
import math
import os
from typing import Callable, List, Mapping, Optional, Protocol, Sequence

from vigil.core.models import AuditCheckItem, AuditSummary, CheckStatus

logger = logging.getLogger(__name__)

# Values shipped in sample configs; treated the same as an unset key.
KNOWN_DEFAULT_SECRETS = frozenset({
    "changeme",
    "change-me",
    "secret",
    "default",
    "csrf-secret-key-change-in-production",
    "encryption-key-32bytes!",
})


class ConfigStore(Protocol):
    def get_string(self, key: str) -> Optional[str]: ...


class EnvironmentConfigStore:
    """Read-only lookups against the process environment."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None) -> None:
        self._environ = os.environ if environ is None else environ

    def get_string(self, key: str) -> Optional[str]:
        return self._environ.get(key)


class MappingConfigStore:
    """Read-only lookups against an arbitrary mapping, e.g. dumped settings."""

    def __init__(self, values: Mapping[str, object]) -> None:
        self._values = dict(values)

    def get_string(self, key: str) -> Optional[str]:
        value = self._values.get(key)
        return None if value is None else str(value)


def _is_set(store: ConfigStore, key: str) -> bool:
    value = store.get_string(key)
    if not value or not value.strip():
        return False
    return value != f"your_{key.lower()}"


def _is_custom_secret(store: ConfigStore, key: str) -> bool:
    return _is_set(store, key) and store.get_string(key).strip().lower() not in KNOWN_DEFAULT_SECRETS


Check = Callable[[ConfigStore, bool], AuditCheckItem]


def _check_database_url(store: ConfigStore, is_production: bool) -> AuditCheckItem:
    return AuditCheckItem(
        id="env_database_url",
        category="Configuration",
        description="Database URL configured",
        status=CheckStatus.PASS if _is_set(store, "DATABASE_URL") else CheckStatus.FAIL,
    )


def _check_service_key(store: ConfigStore, is_production: bool) -> AuditCheckItem:
    return AuditCheckItem(
        id="env_service_key",
        category="Configuration",
        description="Service role key configured (not exposed)",
        status=CheckStatus.PASS if _is_set(store, "SERVICE_ROLE_KEY") else CheckStatus.WARNING,
        details="Service key should be set in production",
    )


def _check_csrf_secret(store: ConfigStore, is_production: bool) -> AuditCheckItem:
    custom = _is_custom_secret(store, "CSRF_SECRET")
    return AuditCheckItem(
        id="env_csrf_secret",
        category="Configuration",
        description="CSRF secret configured",
        status=CheckStatus.PASS if custom else CheckStatus.WARNING,
        details=None if custom else "Using default CSRF secret",
    )


def _check_encryption_key(store: ConfigStore, is_production: bool) -> AuditCheckItem:
    custom = _is_custom_secret(store, "ENCRYPTION_KEY")
    return AuditCheckItem(
        id="env_encryption_key",
        category="Configuration",
        description="Encryption key configured",
        status=CheckStatus.PASS if custom else CheckStatus.WARNING,
        details=None if custom else "Using default encryption key",
    )


def _check_api_key(store: ConfigStore, is_production: bool) -> AuditCheckItem:
    return AuditCheckItem(
        id="env_api_key",
        category="Configuration",
        description="API key configured for protected endpoints",
        status=CheckStatus.PASS if _is_custom_secret(store, "API_KEY") else CheckStatus.FAIL,
    )


def _check_telemetry_sink(store: ConfigStore, is_production: bool) -> AuditCheckItem:
    if _is_set(store, "ELASTICSEARCH_URL"):
        status, details = CheckStatus.PASS, "Severe events are indexed in Elasticsearch"
    elif _is_set(store, "TELEMETRY_WEBHOOK_URL"):
        status, details = CheckStatus.PASS, "Severe events are posted to a webhook"
    else:
        status, details = CheckStatus.WARNING, "Severe events are only logged locally"
    return AuditCheckItem(
        id="telemetry_sink",
        category="Monitoring",
        description="Telemetry sink configured",
        status=status,
        details=details,
    )


def _static_check(check_id: str, category: str, description: str, details: str) -> Check:
    def check(store: ConfigStore, is_production: bool) -> AuditCheckItem:
        return AuditCheckItem(
            id=check_id,
            category=category,
            description=description,
            status=CheckStatus.PASS,
            details=details,
        )
    return check


def _check_production_mode(store: ConfigStore, is_production: bool) -> AuditCheckItem:
    return AuditCheckItem(
        id="production_mode",
        category="Environment",
        description="Production mode check",
        status=CheckStatus.PASS if is_production else CheckStatus.WARNING,
        details="Running in production mode" if is_production else "Running in development mode",
    )


DEFAULT_CHECKS: Sequence[Check] = (
    _check_database_url,
    _check_service_key,
    _check_csrf_secret,
    _check_encryption_key,
    _check_api_key,
    _check_telemetry_sink,
    _static_check(
        "security_headers", "Headers", "Security headers configured",
        "CSP, HSTS, X-Frame-Options set by the reverse proxy",
    ),
    _static_check(
        "security_middleware", "Middleware", "Security middleware active",
        "SQL injection, XSS and CSRF events reported to the monitor",
    ),
    _static_check(
        "rate_limiting", "Protection", "Rate limiting configured",
        "Per-IP velocity tracking with temporary blacklisting",
    ),
    _static_check(
        "input_validation", "Validation", "Input validation schemas configured",
        "Request bodies validated with pydantic models",
    ),
    _static_check(
        "auth_configuration", "Authentication", "Authentication configured",
        "API key required on protected endpoints",
    ),
    _check_production_mode,
)


class AuditEngine:
    """Runs a fixed, ordered list of independent checks against a config store."""

    def __init__(
        self,
        config_store: ConfigStore,
        is_production: bool = False,
        checks: Sequence[Check] = DEFAULT_CHECKS,
    ) -> None:
        self.config_store = config_store
        self.is_production = is_production
        self.checks = tuple(checks)

    def perform_security_audit(self) -> List[AuditCheckItem]:
        results: List[AuditCheckItem] = []
        for check in self.checks:
            try:
                results.append(check(self.config_store, self.is_production))
            except Exception as exc:  # noqa: BLE001 - one broken check must not abort the audit
                name = getattr(check, "__name__", repr(check))
                logger.exception("Audit check %s failed to run.", name)
                results.append(AuditCheckItem(
                    id=name.lstrip("_"),
                    category="Internal",
                    description=f"Check {name} could not run",
                    status=CheckStatus.NOT_CHECKED,
                    details=str(exc),
                ))
        return results

    def get_security_audit_summary(self, checks: Optional[List[AuditCheckItem]] = None) -> AuditSummary:
        if checks is None:
            checks = self.perform_security_audit()
        return summarize(checks)


def summarize(checks: Sequence[AuditCheckItem]) -> AuditSummary:
    """Reduce a checklist to pass/fail/warning counts and a 0-100 score.

    The score rounds half up and is 100 for an empty checklist.
    """
    passed = sum(1 for c in checks if c.status == CheckStatus.PASS)
    failed = sum(1 for c in checks if c.status == CheckStatus.FAIL)
    warnings = sum(1 for c in checks if c.status == CheckStatus.WARNING)
    total = len(checks)
    score = 100 if total == 0 else math.floor(passed * 100 / total + 0.5)
    return AuditSummary(passed=passed, failed=failed, warnings=warnings, score=score)
