"""
Monitoring module exports.
"""

from fixloop.monitoring.logger import (
    JSONFormatter,
    get_logger,
    log_performance_metric,
    log_test_event,
    setup_logging,
)

from fixloop.monitoring.reporter import (
    ReportGenerator,
    generate_final_report,
    render_text_summary,
)

__all__ = [
    # Logger
    "setup_logging",
    "get_logger",
    "log_test_event",
    "log_performance_metric",
    "JSONFormatter",

    # Reporter
    "ReportGenerator",
    "generate_final_report",
    "render_text_summary",
]
