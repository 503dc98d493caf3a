"""
Monitoring package.

Metrics, status board, health and webhook notifications.
"""

from ethgrid.monitoring.alerting import NotifierConfig, Notifier, NotifyLevel, format_payload
from ethgrid.monitoring.metrics import GridMetrics, HealthChecker, start_metrics_server
from ethgrid.monitoring.status import StatusBoard

__all__ = [
    "NotifierConfig",
    "Notifier",
    "NotifyLevel",
    "format_payload",
    "GridMetrics",
    "HealthChecker",
    "start_metrics_server",
    "StatusBoard",
]
