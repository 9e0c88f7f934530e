"""Prometheus counters for the check-in engine (exposed via /metrics)."""

from prometheus_client import Counter

CHECK_INS_CREATED = Counter("check_ins_created_total", "Check-in instances created by the due scan")
CHECK_INS_SENT = Counter("check_ins_sent_total", "Check-in instances handed to the push dispatcher")
CHECK_INS_DISPATCH_FAILED = Counter("check_ins_dispatch_failed_total", "Failed or timed-out check-in sends")
CHECK_INS_COMPLETED = Counter("check_ins_completed_total", "Check-ins completed by the user")
CHECK_INS_MISSED = Counter("check_ins_missed_total", "Check-ins marked missed", ["reason"])
ESCALATIONS_RAISED = Counter("check_in_escalations_raised_total", "Sponsor escalations raised")
ESCALATIONS_NOTIFIED = Counter("check_in_escalations_notified_total", "Sponsor escalations delivered")
ORPHANS_SKIPPED = Counter("check_in_orphans_skipped_total", "Items skipped because their parent is missing")
SCHEDULES_DISABLED = Counter(
    "check_in_schedules_disabled_total", "Schedules disabled by the scan because their stored rule no longer resolves"
)
