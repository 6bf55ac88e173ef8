from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response

router = APIRouter()

# Metrics Definitions
TASKS_ENQUEUED = Counter('print_tasks_enqueued_total', 'Total tasks admitted to the queue', ['kind'])
TASK_FAILURES = Counter('print_task_failures_total', 'Total task failures', ['kind', 'type']) # type=retryable|final
TASK_COMPLETE_TOTAL = Counter('print_tasks_completed_total', 'Total tasks completed successfully', ['kind'])
TASK_DURATION = Histogram('print_task_duration_seconds', 'Time from claim to completion of one attempt', ['kind'], buckets=[0.1, 1.0, 5.0, 10.0, 60.0, 300.0, 900.0])

QUEUE_DEPTH = Gauge(
    "print_queue_depth",
    "Number of tasks waiting to be dispatched",
    ["kind"]
)

TASKS_INFLIGHT = Gauge(
    "print_tasks_inflight",
    "Number of tasks currently held by a worker slot",
    ["kind"]
)

PRINTER_SUBMISSIONS = Counter(
    "printer_submissions_total",
    "Printer driver submissions",
    ["result"] # accepted vs rejected
)

GUARD_VIOLATIONS = Counter(
    "print_guard_violations_total",
    "State machine guard violations reported by handlers",
    ["kind"]
)

@router.get("/metrics")
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
