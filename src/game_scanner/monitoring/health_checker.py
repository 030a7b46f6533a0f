"""
Health Checker for component health monitoring.

Monitors the feed poller, the chat connection and the per-destination
dispatchers.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, List, Optional

if TYPE_CHECKING:
    from game_scanner.feed.service import FeedService
    from game_scanner.notify.registry import DestinationRegistry

logger = logging.getLogger(__name__)


class HealthStatus(Enum):
    """Health status levels."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    WARNING = "warning"
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    """Health check result for a single component."""

    component: str
    status: HealthStatus
    message: str
    latency_ms: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "component": self.component,
            "status": self.status.value,
            "message": self.message,
            "latency_ms": self.latency_ms,
        }


@dataclass
class AggregateHealth:
    """Overall system health."""

    status: HealthStatus
    components: List[ComponentHealth] = field(default_factory=list)
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def healthy(self) -> bool:
        return self.status != HealthStatus.UNHEALTHY

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "components": [c.to_dict() for c in self.components],
            "checked_at": self.checked_at.isoformat(),
        }


class HealthChecker:
    """
    Checks health of scanner components.

    Monitors:
    - Feed polling: loop running, last successful poll age, consecutive failures
    - Chat platform connection
    - Destination dispatchers (dead workers)

    Usage:
        checker = HealthChecker(feed_service, platform, registry)

        # Check single component
        health = await checker.check_feed()

        # Check all components
        overall = await checker.check_all()
    """

    def __init__(
        self,
        feed_service: Optional["FeedService"] = None,
        platform: Optional[Any] = None,
        registry: Optional["DestinationRegistry"] = None,
        staleness_threshold: float = 60.0,
        failure_threshold: int = 3,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        """
        Initialize the health checker.

        Args:
            feed_service: Poller to check
            platform: Chat platform (anything with `is_connected`)
            registry: Destination registry to check
            staleness_threshold: Seconds since the last successful poll to consider stale
            failure_threshold: Consecutive failed polls before reporting degraded
            now: Clock, injectable for tests
        """
        self._feed_service = feed_service
        self._platform = platform
        self._registry = registry
        self._staleness_threshold = staleness_threshold
        self._failure_threshold = failure_threshold
        self._now = now

    async def check_feed(self) -> ComponentHealth:
        """
        Check the feed poller.

        Returns:
            ComponentHealth with status
        """
        if self._feed_service is None:
            return ComponentHealth(
                component="feed",
                status=HealthStatus.WARNING,
                message="No feed service configured",
            )

        if not self._feed_service.is_running:
            return ComponentHealth(
                component="feed",
                status=HealthStatus.UNHEALTHY,
                message=f"Feed service is {self._feed_service.state.value}",
            )

        stats = self._feed_service.stats
        if stats.last_success_at is None:
            return ComponentHealth(
                component="feed",
                status=HealthStatus.WARNING,
                message="No successful poll yet",
            )

        age_seconds = (self._now() - stats.last_success_at).total_seconds()
        if age_seconds > self._staleness_threshold:
            return ComponentHealth(
                component="feed",
                status=HealthStatus.UNHEALTHY,
                message=f"Feed is stale ({age_seconds:.0f}s since last successful poll)",
            )

        if stats.consecutive_failures >= self._failure_threshold:
            return ComponentHealth(
                component="feed",
                status=HealthStatus.DEGRADED,
                message=f"{stats.consecutive_failures} consecutive failed polls",
            )

        return ComponentHealth(
            component="feed",
            status=HealthStatus.HEALTHY,
            message=f"Feed is polling ({len(self._feed_service.snapshot())} games hosted)",
        )

    async def check_chat(self) -> ComponentHealth:
        """Check the chat platform connection."""
        if self._platform is None:
            return ComponentHealth(
                component="chat",
                status=HealthStatus.WARNING,
                message="No chat platform configured",
            )

        if not getattr(self._platform, "is_connected", False):
            return ComponentHealth(
                component="chat",
                status=HealthStatus.UNHEALTHY,
                message="Chat platform is disconnected",
            )

        return ComponentHealth(
            component="chat",
            status=HealthStatus.HEALTHY,
            message="Chat platform is connected",
        )

    async def check_destinations(self) -> ComponentHealth:
        """Check that every subscribed destination still has a live worker."""
        start_time = time.time()

        if self._registry is None:
            return ComponentHealth(
                component="destinations",
                status=HealthStatus.WARNING,
                message="No destination registry configured",
            )

        dispatchers = self._registry.dispatchers()
        dead = [d.destination_id for d in dispatchers if not d.is_alive]
        latency_ms = (time.time() - start_time) * 1000

        if dead:
            return ComponentHealth(
                component="destinations",
                status=HealthStatus.DEGRADED,
                message=f"{len(dead)} of {len(dispatchers)} dispatchers are not running: {dead}",
                latency_ms=latency_ms,
            )

        return ComponentHealth(
            component="destinations",
            status=HealthStatus.HEALTHY,
            message=f"{len(dispatchers)} destinations subscribed",
            latency_ms=latency_ms,
        )

    async def check_all(self, timeout: float = 5.0) -> AggregateHealth:
        """
        Check all components with timeout.

        Args:
            timeout: Maximum time for all checks in seconds

        Returns:
            AggregateHealth with all component results
        """
        components = []

        checks = [
            ("feed", self.check_feed),
            ("chat", self.check_chat),
            ("destinations", self.check_destinations),
        ]

        for name, check_func in checks:
            try:
                result = await asyncio.wait_for(
                    check_func(),
                    timeout=timeout / len(checks),
                )
                components.append(result)
            except asyncio.TimeoutError:
                components.append(ComponentHealth(
                    component=name,
                    status=HealthStatus.UNHEALTHY,
                    message=f"{name} check timed out",
                ))
            except Exception as e:
                logger.error(f"{name} health check failed: {e}")
                components.append(ComponentHealth(
                    component=name,
                    status=HealthStatus.UNHEALTHY,
                    message=f"{name} check failed: {str(e)}",
                ))

        return AggregateHealth(
            status=self._calculate_overall_status(components),
            components=components,
        )

    def _calculate_overall_status(
        self,
        components: List[ComponentHealth],
    ) -> HealthStatus:
        """Calculate overall status from component statuses."""
        statuses = [c.status for c in components]

        # Any UNHEALTHY -> overall UNHEALTHY
        if HealthStatus.UNHEALTHY in statuses:
            return HealthStatus.UNHEALTHY

        # Any DEGRADED or WARNING -> overall DEGRADED
        if HealthStatus.DEGRADED in statuses or HealthStatus.WARNING in statuses:
            return HealthStatus.DEGRADED

        return HealthStatus.HEALTHY
