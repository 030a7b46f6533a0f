"""
Monitoring Layer - Health checks and the status dashboard.

This module provides:
    - HealthChecker: Feed, chat and destination health
    - create_dashboard_app / run_dashboard: FastAPI status API served by uvicorn
"""

from .health_checker import AggregateHealth, ComponentHealth, HealthChecker, HealthStatus
from .dashboard import create_dashboard_app, run_dashboard

__all__ = [
    "AggregateHealth",
    "ComponentHealth",
    "HealthChecker",
    "HealthStatus",
    "create_dashboard_app",
    "run_dashboard",
]
