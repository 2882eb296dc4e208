"""Prometheus metrics for projection writes, tax runs, KPI recomputation and report latency"""

from prometheus_client import Counter, Histogram

# Projection store
projection_write_counter = Counter(
    "finplan_projection_writes_total",
    "Projection item writes",
    ["operation"],  # create | update | delete
)

conversion_failure_counter = Counter(
    "finplan_conversion_failures_total",
    "Currency conversions with no effective rate",
)

# Tax
tax_calculation_counter = Counter(
    "finplan_tax_calculations_total",
    "Tax calculations by outcome",
    ["outcome"],  # calculated | rule_not_found | failed
)

# KPIs and investment analysis
kpi_recompute_counter = Counter(
    "finplan_kpi_recomputations_total",
    "KPI catalogue recomputations",
    ["scenario"],
)

irr_outcome_counter = Counter(
    "finplan_irr_outcomes_total",
    "IRR root-finding outcomes",
    ["outcome"],  # converged | no_convergence
)

# Reports
report_latency_histogram = Histogram(
    "finplan_report_duration_seconds",
    "Report generation latency",
    ["report_type"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

cancelled_operation_counter = Counter(
    "finplan_cancelled_operations_total",
    "Operations aborted by a caller cancellation or timeout",
    ["operation"],
)


def record_projection_write(operation: str) -> None:
    projection_write_counter.labels(operation=operation).inc()


def record_conversion_failure() -> None:
    conversion_failure_counter.inc()


def record_tax_outcome(outcome: str) -> None:
    tax_calculation_counter.labels(outcome=outcome).inc()


def record_kpi_recompute(scenario: str) -> None:
    kpi_recompute_counter.labels(scenario=scenario).inc()


def record_irr_outcome(converged: bool) -> None:
    """Record IRR outcome for monitoring how often analyses fail to converge"""
    irr_outcome_counter.labels(outcome="converged" if converged else "no_convergence").inc()


def record_report(report_type: str, duration_seconds: float) -> None:
    report_latency_histogram.labels(report_type=report_type).observe(duration_seconds)


def record_cancellation(operation: str) -> None:
    cancelled_operation_counter.labels(operation=operation).inc()
