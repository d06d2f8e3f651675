"""
Prometheus metrics endpoint.

Exposes request, job lifecycle and credit metrics for monitoring.
"""
from fastapi import APIRouter, Response
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST

router = APIRouter()

# ============================================
# HTTP Request Metrics
# ============================================

http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# ============================================
# Business Metrics - Credits
# ============================================

credits_deducted = Counter(
    'credits_deducted_total',
    'Total credits deducted'
)

credits_refunded = Counter(
    'credits_refunded_total',
    'Total credits refunded'
)

# ============================================
# Business Metrics - Jobs
# ============================================

jobs_submitted = Counter(
    'jobs_submitted_total',
    'Total jobs created',
    ['kind']
)

jobs_dispatched = Counter(
    'jobs_dispatched_total',
    'Total jobs accepted by the AI provider',
    ['kind']
)

jobs_completed = Counter(
    'jobs_completed_total',
    'Total jobs completed successfully',
    ['kind']
)

jobs_failed = Counter(
    'jobs_failed_total',
    'Total jobs failed',
    ['kind', 'reason']
)

jobs_evicted = Counter(
    'jobs_evicted_total',
    'Jobs dropped from history to make room',
    ['kind', 'in_flight']
)

# ============================================
# Completion Signal Metrics
# ============================================

completion_signals = Counter(
    'completion_signals_total',
    'Completion signals received',
    ['channel', 'outcome']
)

mailbox_depth = Gauge(
    'completion_mailbox_depth',
    'Entries left in the completion mailbox after the last poll'
)

sweeper_timeouts = Counter(
    'sweeper_timeouts_total',
    'Jobs failed by the staleness sweeper',
    ['kind']
)

background_task_errors = Counter(
    'background_task_errors_total',
    'Unhandled errors in periodic background tasks',
    ['task']
)


# ============================================
# Metrics Helper Functions
# ============================================

def track_request(method: str, endpoint: str, status: int, duration_seconds: float):
    """
    Record HTTP request metrics.

    Called by LoggingMiddleware after each request.
    """
    http_requests_total.labels(
        method=method,
        endpoint=endpoint,
        status=status
    ).inc()

    http_request_duration.labels(
        method=method,
        endpoint=endpoint
    ).observe(duration_seconds)


def track_credit_deduction(amount: int):
    """Record credits debited for a job."""
    credits_deducted.inc(amount)


def track_credit_refund(amount: int):
    """Record credits refunded for a failed job."""
    credits_refunded.inc(amount)


def track_job_submitted(kind: str):
    jobs_submitted.labels(kind=kind).inc()


def track_job_dispatched(kind: str):
    jobs_dispatched.labels(kind=kind).inc()


def track_job_completed(kind: str):
    jobs_completed.labels(kind=kind).inc()


def track_job_failed(kind: str, reason: str):
    jobs_failed.labels(kind=kind, reason=reason).inc()


def track_job_evicted(kind: str, in_flight: bool):
    jobs_evicted.labels(kind=kind, in_flight=str(in_flight).lower()).inc()


def track_completion_signal(channel: str, outcome: str):
    """Record a completion signal and what the reconciler did with it."""
    completion_signals.labels(channel=channel, outcome=outcome).inc()


def update_mailbox_depth(depth: int):
    mailbox_depth.set(depth)


def track_sweeper_timeout(kind: str):
    sweeper_timeouts.labels(kind=kind).inc()


def track_background_error(task: str):
    background_task_errors.labels(task=task).inc()


# ============================================
# Prometheus Endpoint
# ============================================

@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Returns all registered metrics in Prometheus format.
    """
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
