"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest


REQUEST_COUNTER = Counter(
	"chirisu_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"chirisu_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

REVIEW_CASES_CREATED_TOTAL = Counter(
	"review_cases_created_total",
	"Review cases opened by users",
	["kind"],
)

REVIEW_CASE_TRANSITIONS_TOTAL = Counter(
	"review_case_transitions_total",
	"Review case state transitions",
	["kind", "transition"],
)

REVIEW_CLAIM_CONFLICTS_TOTAL = Counter(
	"review_claim_conflicts_total",
	"Claims rejected because another moderator holds the case",
	["kind"],
)

REVIEW_REJECTED_REPORTS_TOTAL = Counter(
	"review_rejected_reports_total",
	"Reports refused at creation",
	["kind", "reason"],
)

REVIEW_APPLY_FAILURES_TOTAL = Counter(
	"review_apply_failures_total",
	"Approved contributions that could not be applied to the catalog",
	["subject_type"],
)

REVIEW_NOTIFICATION_FAILURES_TOTAL = Counter(
	"review_notification_failures_total",
	"Notifier deliveries that failed and were dropped",
	["channel"],
)

REVIEW_CASE_WRITE_LATENCY_SECONDS = Histogram(
	"review_case_write_latency_seconds",
	"Latency of case writes together with their audit row",
	buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
)

REVIEW_CASE_LIST_LATENCY_MS = Histogram(
	"review_case_list_latency_ms",
	"Review case list latency (milliseconds)",
	buckets=(5.0, 10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0),
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def case_created(kind: str) -> None:
	REVIEW_CASES_CREATED_TOTAL.labels(kind=kind).inc()


def case_transition(kind: str, transition: str) -> None:
	REVIEW_CASE_TRANSITIONS_TOTAL.labels(kind=kind, transition=transition).inc()


def claim_conflict(kind: str) -> None:
	REVIEW_CLAIM_CONFLICTS_TOTAL.labels(kind=kind).inc()


def report_rejected(kind: str, reason: str) -> None:
	REVIEW_REJECTED_REPORTS_TOTAL.labels(kind=kind, reason=reason).inc()


def apply_failed(subject_type: str) -> None:
	REVIEW_APPLY_FAILURES_TOTAL.labels(subject_type=subject_type).inc()


def notification_failed(channel: str) -> None:
	REVIEW_NOTIFICATION_FAILURES_TOTAL.labels(channel=channel).inc()


def render_latest() -> tuple[bytes, str]:
	return generate_latest(), CONTENT_TYPE_LATEST
