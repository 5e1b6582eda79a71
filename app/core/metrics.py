"""
Prometheus metrics for the bet sync & settlement API.

Metrics exposed:
- Sync leg outcomes and sync-level failures
- Aggregator API success/failure counters
- Reconciliation updates and validation discrepancies
- Database connection pool gauges
- Scheduler status gauge
- Circuit breaker state
"""
from prometheus_client import Counter, Gauge, Histogram

# Sync Metrics
sync_legs_total = Counter(
    "sync_legs_total",
    "Bet legs processed by sync, by outcome",
    ["outcome"]  # inserted, updated, unchanged, failed
)

sync_errors_total = Counter(
    "sync_errors_total",
    "Sync calls that aborted, by error kind",
    ["error_type"]
)

sync_duration_seconds = Histogram(
    "sync_duration_seconds",
    "Duration of a full user bet sync in seconds"
)

# External API Metrics
aggregator_requests_success_total = Counter(
    "aggregator_requests_success_total",
    "Total successful bet aggregator requests"
)

aggregator_requests_failure_total = Counter(
    "aggregator_requests_failure_total",
    "Total failed bet aggregator requests",
    ["error_type"]
)

# Settlement Metrics
reconcile_updates_total = Counter(
    "reconcile_updates_total",
    "Bet profits rewritten by reconciliation",
    ["scope"]  # all, user
)

reconcile_errors_total = Counter(
    "reconcile_errors_total",
    "Bets or groups reconciliation could not settle",
    ["scope"]
)

settlement_discrepancies = Gauge(
    "settlement_discrepancies",
    "Profit mismatches found by the last validation sample"
)

# Database Metrics
db_pool_connections = Gauge(
    "db_pool_connections",
    "Number of database connections in the pool"
)

db_pool_connections_checked_out = Gauge(
    "db_pool_connections_checked_out",
    "Number of checked out database connections"
)

# Scheduler Metrics
scheduler_running = Gauge(
    "scheduler_running",
    "Whether the settlement scheduler is running (1=running, 0=stopped)"
)

scheduler_jobs_total = Gauge(
    "scheduler_jobs_total",
    "Total number of scheduled jobs"
)

# Circuit Breaker Metrics
circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open, 2=half_open)",
    ["service"]
)

circuit_breaker_failures_total = Counter(
    "circuit_breaker_failures_total",
    "Total circuit breaker failures",
    ["service"]
)


def update_db_pool_metrics():
    """
    Update database connection pool metrics from SQLAlchemy engine.

    Call this periodically to update pool metrics.
    """
    from app.core.database import engine

    pool = engine.pool
    if pool is None:
        return
    # StaticPool (sqlite in-memory) has no size accounting
    if hasattr(pool, "size") and hasattr(pool, "checkedout"):
        db_pool_connections.set(pool.size())
        db_pool_connections_checked_out.set(pool.checkedout())


def update_scheduler_metrics():
    """Update scheduler status gauges."""
    from app.core.scheduler import get_scheduler

    scheduler = get_scheduler()
    if scheduler and scheduler.running:
        scheduler_running.set(1)
        if scheduler.scheduler:
            scheduler_jobs_total.set(len(scheduler.scheduler.get_jobs()))
    else:
        scheduler_running.set(0)
        scheduler_jobs_total.set(0)


def record_sync_leg(outcome: str, count: int = 1):
    if count:
        sync_legs_total.labels(outcome=outcome).inc(count)


def record_sync_error(error_type: str = "unknown"):
    sync_errors_total.labels(error_type=error_type).inc()


def record_aggregator_request_success():
    """Record a successful aggregator request."""
    aggregator_requests_success_total.inc()


def record_aggregator_request_failure(error_type: str = "unknown"):
    """Record a failed aggregator request."""
    aggregator_requests_failure_total.labels(error_type=error_type).inc()


def record_reconcile(scope: str, updated: int, errors: int = 0):
    if updated:
        reconcile_updates_total.labels(scope=scope).inc(updated)
    if errors:
        reconcile_errors_total.labels(scope=scope).inc(errors)


def set_discrepancy_count(count: int):
    settlement_discrepancies.set(count)
