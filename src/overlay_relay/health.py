"""Health check endpoints for the relay.

Provides HTTP endpoints for load balancers, monitoring systems and
orchestration tools (Docker healthcheck, Kubernetes probes), plus a
Prometheus metrics endpoint.
"""

import logging
import time
from typing import TYPE_CHECKING

from aiohttp import web

if TYPE_CHECKING:
    from overlay_relay.engine import RelayEngine

logger = logging.getLogger(__name__)


class HealthCheckHandler:
    """Health check handler for the relay.

    Provides /health, /liveness, /metrics and /metrics/summary.
    """

    def __init__(self, engine: "RelayEngine") -> None:
        """Initialize health check handler.

        Args:
            engine: Relay engine whose connections and state are reported
        """
        self.engine = engine
        self.start_time = time.time()

    async def health_check(self, request: web.Request) -> web.Response:
        """Health check endpoint.

        Response format:
        {
            "status": "healthy",
            "uptime_seconds": float,
            "connections": int,
            "state_keys": int
        }
        """
        response_data = {
            "status": "healthy",
            "uptime_seconds": time.time() - self.start_time,
            "connections": len(self.engine.registry),
            "state_keys": len(self.engine.get_snapshot()),
        }
        return web.json_response(response_data, status=200)

    async def liveness_check(self, request: web.Request) -> web.Response:
        """Liveness check endpoint. Returns OK while the process is running."""
        return web.json_response(
            {
                "status": "alive",
                "uptime_seconds": time.time() - self.start_time,
            },
            status=200,
        )

    async def metrics_endpoint(self, request: web.Request) -> web.Response:
        """Prometheus metrics endpoint.

        Returns:
            200 OK: Metrics in Prometheus text format
            Content-Type: text/plain; version=0.0.4
        """
        try:
            metrics_text = self.engine.metrics.export_prometheus()
        except Exception as e:
            logger.error("Failed to export metrics", extra={"error": str(e)}, exc_info=True)
            return web.Response(
                text=f"# Error exporting metrics: {e}\n",
                content_type="text/plain",
                status=500,
            )

        return web.Response(
            body=metrics_text.encode("utf-8"),
            headers={"Content-Type": "text/plain; version=0.0.4; charset=utf-8"},
            status=200,
        )

    async def metrics_summary(self, request: web.Request) -> web.Response:
        """Metrics summary in JSON format for dashboards and debugging."""
        return web.json_response(
            {
                "status": "ok",
                "uptime_seconds": time.time() - self.start_time,
                "metrics": self.engine.metrics.get_summary(),
            },
            status=200,
        )


def setup_health_routes(app: web.Application, engine: "RelayEngine") -> None:
    """Set up health check routes on application.

    Args:
        app: aiohttp Application instance
        engine: Relay engine to report on
    """
    handler = HealthCheckHandler(engine)

    app.router.add_get("/health", handler.health_check)
    app.router.add_get("/liveness", handler.liveness_check)
    app.router.add_get("/metrics", handler.metrics_endpoint)
    app.router.add_get("/metrics/summary", handler.metrics_summary)

    logger.info("Health check endpoints configured: /health, /liveness, /metrics, /metrics/summary")
