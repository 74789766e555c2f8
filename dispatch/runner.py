"""Main entry point for running the dispatch HTTP service with the expiry scheduler."""

import logging
import signal
import sys
import threading
import time
from pathlib import Path
from typing import Any

import orjson
import uvicorn

from core.courier import Courier

from .couriers import InMemoryCourierDirectory
from .io.http_server import DispatchHttpServer
from .scheduler import SweepScheduler
from .service import DispatchService
from .settings import DispatchSettings


def load_couriers(path: str | Path) -> InMemoryCourierDirectory:
    """Load couriers from a JSON list of courier dictionaries."""
    data = orjson.loads(Path(path).read_bytes())
    return InMemoryCourierDirectory([Courier.from_dict(item) for item in data])


class DispatchRunner:
    """Orchestrates the dispatch service, the sweep scheduler and the HTTP server."""

    def __init__(
        self,
        settings: DispatchSettings,
        couriers: InMemoryCourierDirectory | None = None,
        install_signal_handlers: bool = True,
    ) -> None:
        self.settings = settings

        logging.basicConfig(
            level=getattr(logging, settings.log_level.upper()),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            handlers=[
                logging.StreamHandler(sys.stdout),
            ],
        )
        self.logger = logging.getLogger(__name__)

        self.service = DispatchService.from_settings(settings, couriers=couriers)
        self.scheduler = SweepScheduler(
            self.service.sweeper, reminders=self.service.reminders, logger=self.logger
        )
        self.http_server = DispatchHttpServer(self.service, logger=self.logger)

        self._server: uvicorn.Server | None = None
        self._server_thread: threading.Thread | None = None
        self._shutdown_event = threading.Event()

        if install_signal_handlers:
            signal.signal(signal.SIGINT, self._signal_handler)
            signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum: int, _frame: Any) -> None:
        """Handle shutdown signals."""
        self.logger.info(f"Received signal {signum}, shutting down...")
        self.shutdown()

    def start(self) -> None:
        """Start the scheduler and the HTTP server, then block until shutdown."""
        self.logger.info("Starting dispatch runner...")
        self.scheduler.start()
        self._start_http_server()
        self.logger.info(f"Dispatch API listening on {self.settings.host}:{self.settings.port}")

        try:
            while not self._shutdown_event.is_set():
                time.sleep(0.1)
        except KeyboardInterrupt:
            self.logger.info("Received keyboard interrupt")
        finally:
            self.shutdown()

    def _start_http_server(self) -> None:
        config = uvicorn.Config(
            app=self.http_server.get_app(),
            host=self.settings.host,
            port=self.settings.port,
            log_level=self.settings.log_level.lower(),
            access_log=False,
        )
        self._server = uvicorn.Server(config)
        self._server_thread = threading.Thread(target=self._server.run, daemon=True)
        self._server_thread.start()

    def shutdown(self) -> None:
        """Stop everything gracefully; safe to call more than once."""
        if self._shutdown_event.is_set():
            return
        self.logger.info("Shutting down dispatch runner...")
        self._shutdown_event.set()

        self.scheduler.stop()

        if self._server is not None:
            self._server.should_exit = True
        if self._server_thread and self._server_thread.is_alive():
            self._server_thread.join(timeout=5.0)

        self.service.pricing.close()
        self.logger.info("Dispatch runner shutdown complete")

    def get_status(self) -> dict[str, Any]:
        return {
            "scheduler_running": self.scheduler.is_running,
            "last_sweep": self.service.sweeper.last_run.isoformat()
            if self.service.sweeper.last_run
            else None,
            "last_reminders": self.service.reminders.last_run.isoformat()
            if self.service.reminders.last_run
            else None,
            "notifications_logged": len(self.service.notifier.log),
        }


def main() -> None:
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Delivery dispatch service")
    parser.add_argument("--host", default=None, help="Host to bind to")
    parser.add_argument("--port", type=int, default=None, help="Port to bind to")
    parser.add_argument("--log-level", default=None, help="Log level")
    parser.add_argument("--database-url", default=None, help="SQLAlchemy database URL")
    parser.add_argument("--zones-file", default=None, help="JSON pricing zone table")
    parser.add_argument("--couriers-file", default=None, help="JSON list of couriers")
    args = parser.parse_args()

    overrides = {
        "host": args.host,
        "port": args.port,
        "log_level": args.log_level,
        "database_url": args.database_url,
        "zones_file": args.zones_file,
    }
    settings = DispatchSettings(**{k: v for k, v in overrides.items() if v is not None})
    couriers = load_couriers(args.couriers_file) if args.couriers_file else None

    runner = DispatchRunner(settings, couriers=couriers)

    try:
        runner.start()
    except Exception as e:
        logging.error(f"Error in dispatch runner: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
