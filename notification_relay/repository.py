"""Entry points used by capture and by user actions on the queue."""
from typing import List, Optional

from notification_relay.config_store import ConfigStore
from notification_relay.filter_policy import allow
from notification_relay.logging_conf import logger
from notification_relay.queue.models import QueueItem, QueueStats
from notification_relay.queue.store import QueueStore, RecentListener, StatsListener, Subscription

DISPATCH_NOW_KEY = "queue_sync_work"


class NotificationRepository:
    """Gatekeeper between capture and the durable queue."""

    def __init__(self, store: QueueStore, config_store: ConfigStore, scheduler=None):
        self.store = store
        self.config_store = config_store
        self.scheduler = scheduler

    def enqueue(
        self,
        package_name: str,
        app_name: str,
        title: str,
        text: str,
        posted_at: int,
        notification_key: str,
    ) -> Optional[int]:
        """
        Queue a captured notification.

        Dropped without error when forwarding is disabled or the package is
        filtered out. A newly stored item asks the scheduler for an immediate
        dispatch.

        Returns:
            The new item id, or None if dropped or already queued
        """
        config = self.config_store.read_all()
        if not config.forwarding_enabled:
            logger.debug(f"Forwarding disabled; dropped {notification_key}")
            return None

        if not allow(package_name, config):
            logger.debug(f"Filtered out {package_name}; dropped {notification_key}")
            return None

        item = QueueItem.create(
            package_name=package_name,
            app_name=app_name,
            title=title,
            text=text,
            posted_at=posted_at,
            notification_key=notification_key,
        )
        item_id = self.store.insert(item)

        if item_id is not None and self.scheduler is not None:
            self.scheduler.schedule_once(DISPATCH_NOW_KEY)
        return item_id

    def delete_queue_item(self, item_id: int) -> bool:
        return self.store.delete_by_id(item_id)

    def clear_queue(self) -> int:
        return self.store.clear_all()

    def stats(self) -> QueueStats:
        return self.store.stats()

    def recent(self, limit: int) -> List[QueueItem]:
        return self.store.recent(limit)

    def observe_stats(self, listener: StatsListener) -> Subscription:
        return self.store.observe_stats(listener)

    def observe_recent(self, limit: int, listener: RecentListener) -> Subscription:
        return self.store.observe_recent(limit, listener)
