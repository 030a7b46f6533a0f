"""
FastAPI dashboard for scanner monitoring.

Provides:
    - /health for process supervisors (503 when unhealthy)
    - REST API endpoints for status, hosted games and destinations
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from .health_checker import HealthChecker

if TYPE_CHECKING:
    from game_scanner.feed.service import FeedService
    from game_scanner.notify.registry import DestinationRegistry

logger = logging.getLogger(__name__)


def create_dashboard_app(
    feed_service: "FeedService",
    registry: Optional["DestinationRegistry"] = None,
    health_checker: Optional[HealthChecker] = None,
) -> FastAPI:
    """
    Create the FastAPI dashboard application.

    Args:
        feed_service: The feed poller to report on
        registry: Destination registry, for subscription details
        health_checker: Checker used by /health and /api/status

    Returns:
        FastAPI application instance
    """
    app = FastAPI(
        title="MMH Scanner Monitor",
        description="Status of the game listing poller and its notification channels",
        version="1.0.0",
    )
    checker = health_checker or HealthChecker(feed_service=feed_service, registry=registry)

    @app.get("/health")
    async def health_check():
        """
        Health check endpoint for Docker/systemd.

        Returns 200 if healthy or degraded, 503 if unhealthy.
        """
        health = await checker.check_all()
        body = {"status": health.status.value}
        if health.healthy:
            return body
        body["details"] = [c.to_dict() for c in health.components]
        return JSONResponse(status_code=503, content=body)

    @app.get("/api/status")
    async def get_status():
        """Get component health plus polling statistics."""
        health = await checker.check_all()
        return {
            "health": health.to_dict(),
            "feed": {
                "state": feed_service.state.value,
                "games": len(feed_service.snapshot()),
                "stats": feed_service.stats.to_dict(),
            },
            "destinations": len(registry) if registry is not None else 0,
        }

    @app.get("/api/games")
    async def get_games():
        """Get the currently hosted games."""
        games = feed_service.snapshot()
        return {"games": [g.to_dict() for g in games], "total": len(games)}

    @app.get("/api/destinations")
    async def get_destinations():
        """Get every subscribed destination and what it displays."""
        if registry is None:
            return {"destinations": [], "total": 0}

        destinations = []
        for destination_id, categories in sorted(registry.subscriptions().items()):
            dispatcher = registry.dispatcher_for(destination_id)
            destinations.append({
                # ids exceed the JS safe integer range
                "id": str(destination_id),
                "categories": sorted(c.name for c in categories),
                "displayed_games": len(dispatcher.games) if dispatcher else 0,
                "pending_operations": dispatcher.pending if dispatcher else 0,
                "alive": dispatcher.is_alive if dispatcher else False,
            })
        return {"destinations": destinations, "total": len(destinations)}

    return app


async def run_dashboard(
    feed_service: "FeedService",
    registry: Optional["DestinationRegistry"] = None,
    health_checker: Optional[HealthChecker] = None,
    host: str = "127.0.0.1",
    port: int = 9050,
) -> None:
    """
    Serve the dashboard until cancelled.

    Args:
        feed_service: The feed poller to report on
        registry: Destination registry
        health_checker: Shared health checker
        host: Host to bind to
        port: Port to listen on
    """
    import uvicorn

    app = create_dashboard_app(feed_service, registry, health_checker)
    config = uvicorn.Config(app, host=host, port=port, log_level="warning")
    server = uvicorn.Server(config)
    logger.info(f"Dashboard listening on http://{host}:{port}")
    await server.serve()
