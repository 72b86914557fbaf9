import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest

from vigil.core.models import EventOrigin, EventType, RecentEvent, RequestContext, Severity
from vigil.core.services import SecurityMonitor
from vigil.core.severity import classify, coerce_event_type, should_forward, telemetry_level
from vigil.core.state import BlacklistStore, IpVelocityTracker, RecentEventRing
from vigil.services.telemetry import TelemetryDispatcher

ATTACKER = {"ip": "1.2.3.4", "path": "/login", "method": "POST"}

# Each tuple contains: (event_type, expected_severity)
severity_test_cases = [
    (EventType.AUTH_SUCCESS, Severity.LOW),
    (EventType.AUTH_FAILURE, Severity.LOW),
    (EventType.DATA_EXPORT, Severity.LOW),
    (EventType.AUTH_LOCKOUT, Severity.MEDIUM),
    (EventType.RATE_LIMIT_EXCEEDED, Severity.MEDIUM),
    (EventType.SUSPICIOUS_REQUEST, Severity.MEDIUM),
    (EventType.UNAUTHORIZED_ACCESS, Severity.MEDIUM),
    (EventType.FILE_UPLOAD_BLOCKED, Severity.MEDIUM),
    (EventType.ADMIN_ACTION, Severity.MEDIUM),
    (EventType.CSRF_VIOLATION, Severity.HIGH),
    (EventType.XSS_ATTEMPT, Severity.HIGH),
    (EventType.API_ABUSE, Severity.HIGH),
    (EventType.BRUTE_FORCE_ATTEMPT, Severity.HIGH),
    (EventType.SQL_INJECTION_ATTEMPT, Severity.CRITICAL),
    (EventType.SESSION_HIJACK_ATTEMPT, Severity.CRITICAL),
]


def _log_many(monitor, n, event_type=EventType.AUTH_FAILURE, context=ATTACKER):
    for _ in range(n):
        monitor.log_security_event(event_type, context, "bad password")


# --- Severity classification ---

@pytest.mark.parametrize("event_type, expected", severity_test_cases)
def test_classify(event_type, expected):
    assert classify(event_type) == expected
    assert classify(event_type) == classify(event_type)


def test_every_event_type_is_classified():
    assert {t for t, _ in severity_test_cases} == set(EventType)


def test_only_high_and_critical_are_forwarded():
    assert should_forward(Severity.CRITICAL)
    assert should_forward(Severity.HIGH)
    assert not should_forward(Severity.MEDIUM)
    assert not should_forward(Severity.LOW)
    assert telemetry_level(Severity.CRITICAL) == "fatal"
    assert telemetry_level(Severity.HIGH) == "error"


def test_coerce_known_string():
    event_type, metadata = coerce_event_type("xss_attempt", {"field": "q"})
    assert event_type is EventType.XSS_ATTEMPT
    assert metadata == {"field": "q"}


def test_coerce_unknown_string_maps_to_suspicious_request():
    event_type, metadata = coerce_event_type("port_scan", None)
    assert event_type is EventType.SUSPICIOUS_REQUEST
    assert metadata == {"original_type": "port_scan"}


# --- Recent event ring ---

def test_ring_keeps_last_events_in_arrival_order():
    ring = RecentEventRing(capacity=5)
    for i in range(12):
        ring.append(RecentEvent(type=EventType.AUTH_FAILURE, timestamp=i, ip="10.0.0.1"))

    events = ring.snapshot()
    assert len(ring) == 5
    assert [e.timestamp for e in events] == [7, 8, 9, 10, 11]


def test_ring_eviction_ignores_severity():
    ring = RecentEventRing(capacity=2)
    ring.append(RecentEvent(type=EventType.SQL_INJECTION_ATTEMPT, timestamp=1, ip="a"))
    ring.append(RecentEvent(type=EventType.AUTH_SUCCESS, timestamp=2, ip="a"))
    ring.append(RecentEvent(type=EventType.AUTH_SUCCESS, timestamp=3, ip="a"))

    assert ring.aggregate_by_type() == {EventType.AUTH_SUCCESS: 2}


def test_ring_rejects_non_positive_capacity():
    with pytest.raises(ValueError):
        RecentEventRing(capacity=0)


def test_monitor_history_is_bounded(make_settings, clock):
    monitor = SecurityMonitor(make_settings(RECENT_EVENTS_CAPACITY=10, MAX_EVENTS_PER_HOUR=1000), clock=clock)
    for i in range(25):
        monitor.log_security_event(EventType.AUTH_SUCCESS, {"ip": f"10.0.0.{i}"}, "ok")

    assert monitor.get_security_stats().recent_events_count == 10
    assert [e.ip for e in monitor.recent_events.snapshot()] == [f"10.0.0.{i}" for i in range(15, 25)]


# --- Velocity tracker ---

def test_tracker_counts_within_window():
    tracker = IpVelocityTracker(window_ms=1000)
    assert tracker.increment("a", 0) == 1
    assert tracker.increment("a", 500) == 2
    assert tracker.increment("a", 999) == 3
    assert tracker.get("a").window_reset_at == 1000


def test_tracker_window_is_rolling():
    tracker = IpVelocityTracker(window_ms=1000)
    tracker.increment("a", 0)
    assert tracker.increment("a", 1000) == 1
    assert tracker.get("a").window_reset_at == 2000


def test_window_reset_starts_over(monitor, clock):
    _log_many(monitor, 40)
    assert monitor.ip_counts.get("1.2.3.4").count == 40

    clock.advance(minutes=61)
    monitor.log_security_event(EventType.AUTH_FAILURE, ATTACKER, "bad password")

    assert monitor.ip_counts.get("1.2.3.4").count == 1


def test_tracker_top_is_sorted_and_limited():
    tracker = IpVelocityTracker()
    for i in range(15):
        for _ in range(i + 1):
            tracker.increment(f"10.0.0.{i}", 0)

    top = tracker.top(10)
    assert len(top) == 10
    assert top[0] == ("10.0.0.14", 15)
    assert [count for _, count in top] == sorted([count for _, count in top], reverse=True)


def test_tracker_sweep_drops_elapsed_then_oldest():
    tracker = IpVelocityTracker(window_ms=1000)
    tracker.increment("stale", 0)
    tracker.increment("old", 500)
    tracker.increment("new", 900)

    assert tracker.sweep(now_ms=1200, max_entries=1) == 2
    assert tracker.get("stale") is None
    assert tracker.get("old") is None
    assert tracker.get("new").count == 1


# --- Blacklist ---

def test_blacklist_expires_on_read():
    store = BlacklistStore()
    store.add("a", expires_at_ms=1000)

    assert store.contains("a", 999)
    assert len(store) == 1
    assert not store.contains("a", 1000)
    assert len(store) == 0
    assert not store.contains("missing", 0)


def test_blacklist_sweep_respects_cap():
    store = BlacklistStore()
    store.add("expired", 10)
    store.add("soon", 200)
    store.add("later", 300)

    assert store.sweep(now_ms=100, max_entries=1) == 2
    assert store.expires_at("later") == 300


# --- Anomaly detection ---

def test_threshold_triggers_blacklist(monitor):
    _log_many(monitor, 50)
    assert not monitor.is_ip_blacklisted("1.2.3.4")
    assert EventType.API_ABUSE not in monitor.get_security_stats().events_by_type

    monitor.log_security_event(EventType.AUTH_FAILURE, ATTACKER, "bad password")

    stats = monitor.get_security_stats()
    assert monitor.is_ip_blacklisted("1.2.3.4")
    assert stats.events_by_type[EventType.API_ABUSE] == 1
    assert stats.events_by_type[EventType.AUTH_FAILURE] == 51
    assert stats.recent_events_count == 52
    assert stats.blacklisted_ips_count == 1


def test_detection_event_is_synthesized_once(monitor, caplog):
    _log_many(monitor, 50)
    with caplog.at_level(logging.INFO, logger="vigil.core.services"):
        monitor.log_security_event(EventType.AUTH_FAILURE, ATTACKER, "bad password")

    abuse_lines = [r for r in caplog.records if "type=api_abuse" in r.getMessage()]
    assert len(abuse_lines) == 1
    assert "exceeded security event threshold" in abuse_lines[0].getMessage()
    # The synthesized event is counted but does not re-run detection.
    assert monitor.ip_counts.get("1.2.3.4").count == 52


def test_each_event_past_threshold_refreshes_ttl(monitor, clock):
    _log_many(monitor, 51)
    first_expiry = monitor.blacklist.expires_at("1.2.3.4")

    clock.advance(minutes=10)
    monitor.log_security_event(EventType.AUTH_FAILURE, ATTACKER, "bad password")

    assert monitor.blacklist.expires_at("1.2.3.4") == first_expiry + 10 * 60 * 1000
    assert monitor.get_security_stats().events_by_type[EventType.API_ABUSE] == 2


def test_other_ips_are_unaffected(monitor):
    _log_many(monitor, 51)
    monitor.log_security_event(EventType.AUTH_SUCCESS, {"ip": "5.6.7.8"}, "ok")

    assert monitor.is_ip_blacklisted("1.2.3.4")
    assert not monitor.is_ip_blacklisted("5.6.7.8")


def test_blacklist_ttl(monitor, clock):
    _log_many(monitor, 51)
    assert monitor.get_security_stats().blacklisted_ips_count == 1

    clock.advance(minutes=59)
    assert monitor.is_ip_blacklisted("1.2.3.4")

    clock.advance(minutes=1)
    assert not monitor.is_ip_blacklisted("1.2.3.4")
    assert monitor.get_security_stats().blacklisted_ips_count == 0

    clock.advance(minutes=1)
    assert not monitor.is_ip_blacklisted("1.2.3.4")


def test_blacklisted_after_expiry_at_61_minutes(monitor, clock):
    _log_many(monitor, 51)
    clock.advance(minutes=61)
    assert not monitor.is_ip_blacklisted("1.2.3.4")


def test_detect_reads_tracker_when_count_omitted(monitor):
    _log_many(monitor, 50)
    assert not monitor.detect_suspicious_activity("1.2.3.4")
    monitor.update_ip_event_count("1.2.3.4")
    assert monitor.detect_suspicious_activity("1.2.3.4")
    assert monitor.is_ip_blacklisted("1.2.3.4")


# --- End to end ---

def test_sql_injection_end_to_end(monitor):
    event = monitor.log_security_event(
        "sql_injection_attempt",
        {"ip": "9.9.9.9", "path": "/api/x", "method": "POST"},
        "payload matched blocklist",
    )

    assert event.severity == Severity.CRITICAL
    assert event.origin == EventOrigin.OBSERVED
    assert event.timestamp.startswith("2023-11-14T22:13:20")
    assert monitor.get_security_stats().events_by_type[EventType.SQL_INJECTION_ATTEMPT] == 1


def test_unknown_type_is_recorded_as_suspicious(monitor):
    event = monitor.log_security_event("port_scan", RequestContext(ip="9.9.9.9"), "ports 1-1024")

    assert event.type == EventType.SUSPICIOUS_REQUEST
    assert event.metadata == {"original_type": "port_scan"}


def test_stats_top_suspicious_ips(monitor):
    for i in range(12):
        _log_many(monitor, i + 1, context={"ip": f"10.0.0.{i}"})

    top = monitor.get_security_stats().top_suspicious_ips
    assert len(top) == 10
    assert top[0].ip == "10.0.0.11"
    assert top[0].count == 12
    assert top[-1].count == 3


def test_sweep_uses_configured_caps(make_settings, clock):
    monitor = SecurityMonitor(make_settings(MAX_TRACKED_IPS=2), clock=clock)
    for i in range(5):
        monitor.log_security_event(EventType.AUTH_SUCCESS, {"ip": f"10.0.0.{i}"}, "ok")

    result = monitor.sweep()

    assert result.ip_counters_removed == 3
    assert len(monitor.ip_counts) == 2
    assert monitor.ip_counts.get("10.0.0.4") is not None


def test_reset_clears_state(monitor):
    _log_many(monitor, 51)
    monitor.reset()

    stats = monitor.get_security_stats()
    assert stats.recent_events_count == 0
    assert stats.blacklisted_ips_count == 0
    assert stats.top_suspicious_ips == []


# --- Routing between local logging and telemetry ---

def test_production_forwards_severe_events(make_settings, clock):
    dispatcher = MagicMock(spec=TelemetryDispatcher)
    monitor = SecurityMonitor(make_settings(ENVIRONMENT="production"), dispatcher=dispatcher, clock=clock)

    monitor.log_security_event(EventType.AUTH_FAILURE, ATTACKER, "bad password")
    monitor.log_security_event(EventType.XSS_ATTEMPT, ATTACKER, "<script>")

    dispatcher.submit.assert_called_once()
    forwarded = dispatcher.submit.call_args.args[0]
    assert forwarded.type == EventType.XSS_ATTEMPT
    assert forwarded.details == "<script>"


def test_production_forwards_synthesized_abuse_event(make_settings, clock):
    dispatcher = MagicMock(spec=TelemetryDispatcher)
    monitor = SecurityMonitor(make_settings(ENVIRONMENT="production"), dispatcher=dispatcher, clock=clock)

    _log_many(monitor, 51)

    dispatcher.submit.assert_called_once()
    forwarded = dispatcher.submit.call_args.args[0]
    assert forwarded.type == EventType.API_ABUSE
    assert forwarded.origin == EventOrigin.SYNTHESIZED
    assert forwarded.metadata == {"event_count": 51}
    assert forwarded.method == "ANY"


def test_development_logs_locally(monitor, caplog):
    dispatcher = MagicMock(spec=TelemetryDispatcher)
    monitor.dispatcher = dispatcher

    with caplog.at_level(logging.INFO, logger="vigil.core.services"):
        monitor.log_security_event(EventType.CSRF_VIOLATION, ATTACKER, "token mismatch")

    dispatcher.submit.assert_not_called()
    assert "[SECURITY:HIGH]" in caplog.text
    assert "token mismatch" in caplog.text


def test_production_without_dispatcher_is_silent(make_settings, clock):
    monitor = SecurityMonitor(make_settings(ENVIRONMENT="production"), clock=clock)
    event = monitor.log_security_event(EventType.SESSION_HIJACK_ATTEMPT, ATTACKER, "cookie replay")
    assert event.severity == Severity.CRITICAL


# --- Concurrency ---

def test_concurrent_events_are_all_counted(make_settings, clock):
    monitor = SecurityMonitor(make_settings(MAX_EVENTS_PER_HOUR=10_000), clock=clock)
    start = threading.Barrier(8)

    def worker():
        start.wait()
        for _ in range(100):
            monitor.log_security_event(EventType.AUTH_FAILURE, ATTACKER, "bad password")

    with ThreadPoolExecutor(max_workers=8) as pool:
        for future in [pool.submit(worker) for _ in range(8)]:
            future.result()

    assert monitor.ip_counts.get("1.2.3.4").count == 800
    assert monitor.get_security_stats().recent_events_count == 800


def test_concurrent_increments_never_share_a_count():
    tracker = IpVelocityTracker()
    seen = []
    lock = threading.Lock()

    def worker():
        for _ in range(200):
            count = tracker.increment("a", 0)
            with lock:
                seen.append(count)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(seen) == list(range(1, 801))
