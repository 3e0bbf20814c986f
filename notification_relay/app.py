"""Main application - keeps the queue draining to the webhook."""
import signal
import sys
import threading

from notification_relay.logging_conf import logger
from notification_relay import settings
from notification_relay.config_store import ConfigStore
from notification_relay.db import Database
from notification_relay.device import DeviceIdentity
from notification_relay.errors import ConfigInvalid, StorageFailure
from notification_relay.network import NetworkMonitor
from notification_relay.queue.store import QueueStore
from notification_relay.repository import DISPATCH_NOW_KEY, NotificationRepository
from notification_relay.scheduler import Scheduler
from notification_relay.webhook_client import WebhookClient
from notification_relay.worker import DispatchWorker

PERIODIC_KEY = "queue_periodic_work"


class Application:
    """Owns the queue database and the dispatch scheduler for one process."""

    def __init__(self, db_path=None, config_path=None):
        self.db = Database(db_path)
        self.store = QueueStore(self.db)
        self.config_store = ConfigStore(config_path)
        self.worker = DispatchWorker(
            self.store,
            self.config_store,
            client=WebhookClient(),
            device=DeviceIdentity(),
        )
        self.scheduler = Scheduler(
            self.worker.run_cycle,
            network_check=NetworkMonitor(),
            retry_delay=self.worker.seconds_until_next_due,
        )
        self.repository = NotificationRepository(self.store, self.config_store, self.scheduler)
        self.running = False
        self._stopped = threading.Event()

    def start(self):
        """Start the application."""
        logger.info("=" * 50)
        logger.info("Notification Relay")
        logger.info("=" * 50)
        logger.info(f"Queue: {self.db.path}")
        logger.info(f"Config: {self.config_store.path}")
        logger.info(f"Periodic interval: {settings.PERIODIC_INTERVAL_SECONDS}s")
        logger.info("=" * 50)

        settings.validate_config()

        # Claims left behind by a process that died mid-cycle
        self.store.release_stale_sending(self.worker.stale_after_ms)

        self.scheduler.schedule_periodic(settings.PERIODIC_INTERVAL_SECONDS, PERIODIC_KEY)
        self.scheduler.schedule_once(DISPATCH_NOW_KEY)
        self.scheduler.start()
        self.running = True
        logger.info("Started - relaying queued notifications")

    def stop(self):
        """Stop the application."""
        if not self.running:
            return
        self.running = False
        if not self.scheduler.stop():
            # The closed database fails the in-flight cycle instead of being reopened
            logger.warning("Closing the queue while a dispatch cycle is still running")
        self.db.close()
        self._stopped.set()
        logger.info("Stopped")

    def run(self):
        """Start and block until stop() is called."""
        self.start()
        try:
            while not self._stopped.wait(timeout=1):
                pass
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()


def main(db_path=None, config_path=None):
    """Entry point."""
    app = Application(db_path, config_path)

    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}")
        app.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        app.run()
    except ConfigInvalid as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)
    except StorageFailure as e:
        logger.error(f"Queue storage unavailable: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
