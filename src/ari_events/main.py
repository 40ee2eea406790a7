"""ARI Event Service - keeps a Stasis application subscribed to Asterisk events."""

import asyncio
import logging
import os
import signal
import sys
from datetime import datetime, timezone
from typing import Optional

from .clients.ari_websocket import WebSocketDialer, build_events_url, build_headers
from .config.settings import load_settings
from .router import EventRouter, default_router
from .stream_client import ResilientStreamClient
from .utils.logging import setup_logging
from .utils.retry import ExponentialBackoff


logger = logging.getLogger(__name__)


class AriEventService:
    """Main service: wires configuration, transport, router and stream client."""

    def __init__(self, config_file: str = "config/local.yaml", router: Optional[EventRouter] = None):
        self.config = load_settings(config_file)
        setup_logging(self.config.logging, self.config.service_name)

        self.router = router or default_router()
        self.client: Optional[ResilientStreamClient] = None
        self._shutdown_event = asyncio.Event()

        ari = self.config.ari
        logger.info(
            f"initializing ARI client app \"{','.join(ari.applications)}\" with next values: "
            f"host: {ari.host}, user: {ari.username}, pass: ********"
        )

    def build_client(self) -> ResilientStreamClient:
        """Create the stream client for the configured ARI endpoint."""
        ari = self.config.ari
        return ResilientStreamClient(
            dialer=WebSocketDialer(ari),
            url=build_events_url(ari),
            headers=build_headers(ari),
            sink=self.router,
            cancel_event=self._shutdown_event,
            backoff=ExponentialBackoff.from_config(self.config.reconnect)
        )

    async def start(self):
        """Run the event stream until a shutdown signal arrives."""
        logger.info("Starting ARI Event Service")

        self.client = self.build_client()
        self._setup_signal_handlers()

        logger.info("started Asterisk ARI event stream worker")
        await self.client.run()

        logger.info("termination signal received. Shutting down gracefully.")
        logger.info("shutdown complete.")

    def stop(self):
        """Request shutdown; the stream client closes its connection and exits."""
        self._shutdown_event.set()

    def _setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum, frame=None):
            logger.info(f"Received signal {signum}, initiating shutdown")
            self._shutdown_event.set()

        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, signal_handler, signum)
            except NotImplementedError:
                # Event loops without signal support (Windows)
                signal.signal(signum, signal_handler)

    async def health_check(self) -> dict:
        """Perform health check."""
        health_status = {
            "service": self.config.service_name,
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "components": {}
        }

        if self.client:
            client_health = await self.client.health_check()
            health_status["components"]["stream_client"] = client_health
            health_status["status"] = client_health["status"]
        else:
            health_status["status"] = "unhealthy"

        return health_status


async def main():
    """Main entry point."""
    config_file = os.getenv("CONFIG_FILE", "config/local.yaml")

    try:
        service = AriEventService(config_file)
        await service.start()
    except Exception as e:
        logger.error(f"Service failed: {e}", exc_info=True)
        sys.exit(1)


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
