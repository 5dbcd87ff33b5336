"""Central registry for Prometheus metrics used across the safety core."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram


MOD_REPORTS_TOTAL = Counter(
	"mod_reports_total",
	"Moderation reports processed by intake",
	["content_type", "outcome"],
)

MOD_REPORT_INTAKE_SECONDS = Histogram(
	"mod_report_intake_duration_seconds",
	"Time spent persisting a report and evaluating escalation",
	buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
)

MOD_ESCALATIONS_TOTAL = Counter(
	"mod_escalations_total",
	"Moderation escalations evaluated",
	["action"],
)

MOD_ESCALATION_FAILURES_TOTAL = Counter(
	"mod_escalation_failures_total",
	"Escalation evaluations that failed and were absorbed",
	["stage"],
)

MOD_RESOLUTIONS_TOTAL = Counter(
	"mod_resolutions_total",
	"Report resolutions applied",
	["content_type", "action", "result"],
)

MOD_SUSPENSION_TRANSITIONS_TOTAL = Counter(
	"mod_suspension_transitions_total",
	"Suspension lifecycle transitions",
	["transition", "type"],
)

MOD_SUSPENSIONS_ACTIVE = Gauge(
	"mod_suspensions_active",
	"Active suspensions observed by the last expiry sweep",
)

MOD_REPUTATION_ADJUSTMENTS_TOTAL = Counter(
	"mod_reputation_adjustments_total",
	"Reputation deltas requested by moderation outcomes",
	["reason", "direction"],
)

BACKGROUND_RUNS = Counter(
	"mod_jobs_runs_total",
	"Background job executions",
	["name", "result"],
)

BACKGROUND_DURATION = Histogram(
	"mod_jobs_duration_seconds",
	"Background job duration",
	["name"],
	buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 15.0, 30.0, 60.0),
)


def record_job_run(name: str, *, result: str, duration_seconds: float | None = None) -> None:
	BACKGROUND_RUNS.labels(name=name, result=result).inc()
	if duration_seconds is not None:
		BACKGROUND_DURATION.labels(name=name).observe(duration_seconds)


def record_reputation_adjustment(reason: str, delta: int) -> None:
	direction = "credit" if delta >= 0 else "debit"
	MOD_REPUTATION_ADJUSTMENTS_TOTAL.labels(reason=reason, direction=direction).inc()
