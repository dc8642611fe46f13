"""
Prometheus metrics for report sync runs.
"""

from prometheus_client import Counter, Gauge, Histogram

from utils.metrics import get_or_create_metric

SYNC_RUNS = get_or_create_metric(
    lambda: Counter(
        "report_sync_runs_total",
        "Pipeline runs by terminal status",
        ["status"],  # completed, failed, aborted
    ),
    "report_sync_runs_total",
)

SYNC_RUN_DURATION = get_or_create_metric(
    lambda: Histogram(
        "report_sync_run_duration_seconds",
        "Wall-clock duration of pipeline runs",
        ["status"],
        buckets=[1, 5, 10, 30, 60, 120, 300, 600, 1800, 3600],
    ),
    "report_sync_run_duration_seconds",
)

SYNC_RECORDS = get_or_create_metric(
    lambda: Counter(
        "report_sync_records_total",
        "Records seen by completed runs",
        ["result"],  # matched, unmatched
    ),
    "report_sync_records_total",
)

SYNC_CHUNKS_DISPATCHED = get_or_create_metric(
    lambda: Counter(
        "report_sync_chunks_dispatched_total",
        "Chunk dispatch outcomes",
        ["status"],  # accepted, failed
    ),
    "report_sync_chunks_dispatched_total",
)

SYNC_DISPATCH_RETRIES = get_or_create_metric(
    lambda: Counter(
        "report_sync_dispatch_retries_total",
        "Dispatch attempts that failed and were retried",
    ),
    "report_sync_dispatch_retries_total",
)

SYNC_INFLIGHT_DISPATCHES = get_or_create_metric(
    lambda: Gauge(
        "report_sync_inflight_dispatches",
        "Dispatch calls currently holding a concurrency permit",
    ),
    "report_sync_inflight_dispatches",
)

SYNC_POLL_REQUESTS = get_or_create_metric(
    lambda: Counter(
        "report_sync_poll_requests_total",
        "Task status polls issued",
    ),
    "report_sync_poll_requests_total",
)

SYNC_TASKS_FINISHED = get_or_create_metric(
    lambda: Counter(
        "report_sync_tasks_finished_total",
        "Remote tasks by terminal outcome",
        ["status"],  # completed, failed, timeout, protocol_error
    ),
    "report_sync_tasks_finished_total",
)

SYNC_TASK_DURATION = get_or_create_metric(
    lambda: Histogram(
        "report_sync_task_duration_seconds",
        "Time from dispatch acknowledgement to terminal task status",
        buckets=[0.5, 1, 5, 10, 30, 60, 120, 300, 600],
    ),
    "report_sync_task_duration_seconds",
)

SYNC_RUN_PROGRESS = get_or_create_metric(
    lambda: Gauge(
        "report_sync_run_progress_percent",
        "Overall progress of the active run",
    ),
    "report_sync_run_progress_percent",
)
