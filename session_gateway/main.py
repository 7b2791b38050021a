"""Main entry point for the Session Gateway.

This module provides the main entry point that:
1. Loads and validates configuration
2. Sets up logging
3. Loads the protocol engine and restores stored sessions
4. Schedules the periodic chat store flush
5. Handles graceful shutdown on SIGTERM/SIGINT (stores are flushed on exit)
"""

import asyncio
import logging
import signal
import sys

from session_gateway import __version__
from session_gateway.cli import load_config_from_cli
from session_gateway.config import Settings, set_settings
from session_gateway.domain.services.session import SessionService
from session_gateway.infra.jobs.scheduler import JobScheduler
from session_gateway.infra.observability.logging import setup_logging
from session_gateway.infra.protocol.engine import load_engine


def print_startup_banner(settings: Settings) -> None:  # pragma: no cover
    """Print startup banner with configuration information.

    Args:
        settings: Settings instance
    """
    logger = logging.getLogger(__name__)

    logger.info("=" * 60)
    logger.info("Session Gateway")
    logger.info(f"Version: {__version__}")
    logger.info("=" * 60)
    logger.info("Configuration:")
    logger.info(f"  Environment: {settings.environment}")
    logger.info(f"  Debug: {settings.debug}")
    logger.info(f"  Log Level: {settings.log_level}")
    logger.info(f"  Sessions Dir: {settings.sessions_dir}")
    logger.info(f"  Max Retries: {settings.effective_max_retries}")
    logger.info(f"  Reconnect Interval: {settings.reconnect_interval_ms}ms")
    logger.info(f"  Consumer: {settings.app_url}")
    logger.info(f"  Protocol Engine: {settings.protocol_engine}")
    logger.info("=" * 60)


class GracefulShutdown:
    """Graceful shutdown coordinator.

    Waits for SIGTERM/SIGINT, then flushes every chat store, closes all
    connections and stops the scheduler.
    """

    def __init__(self) -> None:
        self._shutdown_event = asyncio.Event()
        self._service: SessionService | None = None
        self._scheduler: JobScheduler | None = None

    def set_service(self, service: SessionService) -> None:
        self._service = service

    def set_scheduler(self, scheduler: JobScheduler) -> None:
        self._scheduler = scheduler

    def _handle_signal(self, signum: int) -> None:
        """Signal handler that triggers shutdown.

        Args:
            signum: Signal number
        """
        signal_name = signal.Signals(signum).name
        logger = logging.getLogger(__name__)
        logger.info(f"Received {signal_name}, initiating graceful shutdown")
        self._shutdown_event.set()

    def register_handlers(self) -> None:
        """Register signal handlers for SIGTERM and SIGINT."""
        signal.signal(signal.SIGTERM, lambda s, _f: self._handle_signal(s))
        signal.signal(signal.SIGINT, lambda s, _f: self._handle_signal(s))

    async def wait_for_shutdown(self) -> None:
        """Wait for shutdown signal."""
        await self._shutdown_event.wait()

    async def cleanup(self) -> None:
        """Cleanup resources during shutdown."""
        logger = logging.getLogger(__name__)

        if self._scheduler and self._scheduler.started:
            await self._scheduler.shutdown(wait=False)

        if self._service:
            await self._service.shutdown()

        logger.info("Graceful shutdown complete")


async def run_gateway(settings: Settings) -> None:
    """Run the gateway until a shutdown signal arrives.

    Args:
        settings: Application settings (``protocol_engine`` must be set)
    """
    if not settings.protocol_engine:
        raise ValueError("No protocol engine configured (set --protocol-engine)")

    shutdown = GracefulShutdown()
    shutdown.register_handlers()

    engine = load_engine(settings.protocol_engine)
    service = SessionService.from_settings(settings, engine)
    shutdown.set_service(service)

    scheduler = JobScheduler(settings)
    scheduler.add_store_flush_job(service.flush_all)
    shutdown.set_scheduler(scheduler)
    await scheduler.start()

    try:
        await service.restore_sessions()
        await shutdown.wait_for_shutdown()
    finally:
        await shutdown.cleanup()


def main() -> int:  # pragma: no cover
    """Main entry point for the Session Gateway.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    try:
        # Step 1: Load configuration from CLI and environment
        settings = load_config_from_cli()
        set_settings(settings)

        # Step 2: Setup logging
        setup_logging(
            level="DEBUG" if settings.debug else settings.log_level,
            json_format=settings.log_format == "json",
        )

        # Step 3: Print startup banner
        print_startup_banner(settings)

        # Step 4: Run until signalled
        asyncio.run(run_gateway(settings))
        return 0

    except KeyboardInterrupt:
        print("\nShutdown requested... exiting", file=sys.stderr)
        return 0
    except Exception as e:
        if "settings" in locals():
            logger = logging.getLogger(__name__)
            logger.exception(f"Fatal error: {e}")
        else:
            print(f"Fatal error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
