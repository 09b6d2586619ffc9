"""
Monitoring Layer - component health and the HTTP dashboard.
"""

from .dashboard import create_dashboard_app, run_dashboard
from .health_checker import AggregateHealth, ComponentHealth, HealthChecker, HealthStatus

__all__ = [
    "AggregateHealth",
    "ComponentHealth",
    "HealthChecker",
    "HealthStatus",
    "create_dashboard_app",
    "run_dashboard",
]
