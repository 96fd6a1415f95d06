"""Overlay relay server.

Main server implementation that:
1. Loads the persisted shared state
2. Starts the WebSocket listener and hands connections to the relay engine
3. Optionally provides HTTP health check and metrics endpoints
4. Shuts down on SIGINT/SIGTERM by closing the listener
"""

import argparse
import asyncio
import logging
import signal
from pathlib import Path
from typing import Any

from aiohttp.web import Application, AppRunner, TCPSite
from websockets.asyncio.server import serve

from overlay_relay.config import RelayConfig
from overlay_relay.engine import RelayEngine
from overlay_relay.health import setup_health_routes
from overlay_relay.metrics import MetricsCollector

logger = logging.getLogger(__name__)


class RelayServer:
    """Lifecycle controller for the relay.

    Binds the listener, owns the relay engine and tears everything down on
    shutdown. Clients are not notified beyond the close frames the WebSocket
    server sends when it closes.
    """

    def __init__(self, config: RelayConfig, engine: RelayEngine | None = None) -> None:
        """Initialize relay server.

        Args:
            config: Server configuration
            engine: Optional pre-built engine (for testing)
        """
        self.config = config
        self.engine = engine or RelayEngine.from_config(config, MetricsCollector())
        self._server: Any = None  # websockets Server
        self._health_runner: AppRunner | None = None
        self._stop_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._server is not None

    @property
    def bound_port(self) -> int:
        """Port the WebSocket listener is bound to."""
        if self._server is None:
            raise RuntimeError("Relay server is not running")
        port: int = self._server.sockets[0].getsockname()[1]
        return port

    @property
    def health_port(self) -> int | None:
        """Port the health server is bound to, if it is running."""
        if self._health_runner is None or not self._health_runner.addresses:
            return None
        port: int = self._health_runner.addresses[0][1]
        return port

    async def start(self) -> None:
        """Bind the WebSocket listener and, if configured, the health server.

        Raises:
            RuntimeError: If the server is already running
            OSError: If port binding fails
        """
        if self._server is not None:
            raise RuntimeError("Relay server is already running")

        try:
            self._server = await serve(
                self.engine.handle_connection,
                self.config.host,
                self.config.port,
                max_size=self.config.max_message_bytes,
            )
        except OSError as e:
            logger.error(
                "Failed to bind WebSocket server",
                extra={"host": self.config.host, "port": self.config.port, "error": str(e)},
            )
            raise

        logger.info(
            f"Overlay WebSocket server running on ws://{self.config.host}:{self.bound_port}",
            extra={"state_path": str(self.config.state_path), "rate_limit": self.config.rate_limit},
        )

        if self.config.health_port is not None:
            await self._start_health_server(self.config.health_port)

    async def _start_health_server(self, port: int) -> None:
        health_app = Application()
        setup_health_routes(health_app, self.engine)

        runner = AppRunner(health_app)
        await runner.setup()
        site = TCPSite(runner, self.config.host, port)
        try:
            await site.start()
        except OSError:
            await runner.cleanup()
            await self.stop()
            raise
        self._health_runner = runner
        logger.info("Health check server started", extra={"port": self.health_port})

    async def stop(self) -> None:
        """Stop accepting connections and close the listener."""
        if self._health_runner is not None:
            await self._health_runner.cleanup()
            self._health_runner = None
            logger.info("Health check server stopped")

        if self._server is None:
            return

        logger.info("Overlay server shutting down...")
        self._server.close()
        await self._server.wait_closed()
        self._server = None
        logger.info("Overlay server stopped")

    def request_shutdown(self) -> None:
        """Ask `serve_forever` to return. Safe to call from a signal handler."""
        self._stop_event.set()

    async def serve_forever(self) -> None:
        """Start the server and run until a termination signal arrives."""
        await self.start()

        loop = asyncio.get_running_loop()
        installed: list[signal.Signals] = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
                installed.append(sig)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform/thread; KeyboardInterrupt still applies.
                logger.debug("Signal handler not installed", extra={"signal": sig.name})

        try:
            await self._stop_event.wait()
            logger.info("Received termination signal")
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
            await self.stop()


async def start_server(config: RelayConfig) -> None:
    """Run a relay server with the given configuration until signalled."""
    server = RelayServer(config)
    await server.serve_forever()


def main() -> None:
    """Entry point for the relay server."""
    parser = argparse.ArgumentParser(description="Overlay state relay server")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional YAML config file (OVERLAY_* environment variables override it)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override the configured log level (DEBUG, INFO, WARNING, ERROR)",
    )
    args = parser.parse_args()

    config = RelayConfig.from_yaml_with_defaults(args.config)
    if args.log_level:
        config = RelayConfig.model_validate({**config.model_dump(), "log_level": args.log_level})

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info(
        "Loaded configuration",
        extra={"config_path": str(args.config) if args.config else None},
    )

    try:
        asyncio.run(start_server(config))
    except KeyboardInterrupt:
        logger.info("Overlay server interrupted")
    except OSError as e:
        logger.error(f"Overlay server failed to start: {e}")
        raise SystemExit(1) from e


if __name__ == "__main__":
    main()
