"""
Factory functions for per-run metrics and the aggregate report.

This module provides consistent result structures for:
- Error metrics (a failed run still yields exactly one metric)
- Aggregate results (averages, maxima and overall match over N runs)
"""

from typing import Sequence

from .constant import ExecutionStatus
from .meta import AggregateResult, ExecutionMetrics


def make_error_metrics(status: ExecutionStatus,
                       message: str = "") -> ExecutionMetrics:
    """
    Build a zero-valued, unmatched metric for a failed run.

    Args:
        status: Failure classification
        message: Diagnostic text stored as the run's output

    Returns:
        ExecutionMetrics with no elapsed time and no memory
    """
    return ExecutionMetrics(
        status=status,
        raw_output=message,
        elapsed_millis=0,
        memory_bytes=0,
        output_matched=False,
    )


def make_run_metrics(
    status: ExecutionStatus,
    output: str,
    elapsed_millis: int,
    memory_bytes: int = 0,
    expected_output: str | None = None,
) -> ExecutionMetrics:
    """
    Build the metric of a run that reached the program.

    The output is trimmed and compared to the trimmed expected output
    for exact, case-sensitive equality. A missing expected output never
    matches.
    """
    output = (output or "").strip()
    matched = expected_output is not None and output == expected_output.strip()
    return ExecutionMetrics(
        status=status,
        raw_output=output,
        elapsed_millis=max(0, int(elapsed_millis)),
        memory_bytes=max(0, int(memory_bytes)),
        output_matched=matched,
    )


def aggregate(metrics: Sequence[ExecutionMetrics]) -> AggregateResult:
    """
    Combine per-run metrics into one report.

    Averages are floor means. ``success`` only says the batch ran to the
    end; callers inspect ``output_matched`` and per-run statuses for
    pass/fail.
    """
    size = len(metrics)
    elapsed = [m.elapsed_millis for m in metrics]
    memory = [m.memory_bytes for m in metrics]
    return AggregateResult(
        success=True,
        output_matched=size > 0 and all(m.output_matched for m in metrics),
        per_run_metrics=list(metrics),
        avg_elapsed_millis=sum(elapsed) // size if size else 0,
        avg_memory_bytes=sum(memory) // size if size else 0,
        max_elapsed_millis=max(elapsed, default=0),
        max_memory_bytes=max(memory, default=0),
    )
