"""Dispatch cycle: deliver one batch of due notifications."""
from enum import Enum
from typing import Dict, Optional

from notification_relay import settings
from notification_relay.backoff import backoff
from notification_relay.config_store import AuthMode, ConfigStore, ForwardingConfig
from notification_relay.device import DeviceIdentity
from notification_relay.logging_conf import logger
from notification_relay.queue.models import QueueItem, QueueStatus, now_ms
from notification_relay.queue.store import QueueStore
from notification_relay.webhook_client import SendResult, WebhookClient


class CycleResult(str, Enum):
    """What the trigger should do after a cycle."""

    DONE = "done"
    RETRY = "retry"


def build_headers(config: ForwardingConfig) -> Dict[str, str]:
    """Content type, then bearer auth, then custom headers; later entries win."""
    headers = {"Content-Type": "application/json"}
    if config.auth_mode == AuthMode.BEARER and config.bearer_token:
        headers["Authorization"] = f"Bearer {config.bearer_token}"
    headers.update(config.custom_headers)
    return headers


class DispatchWorker:
    """Runs dispatch cycles against the queue store."""

    def __init__(
        self,
        store: QueueStore,
        config_store: ConfigStore,
        client: Optional[WebhookClient] = None,
        device: Optional[DeviceIdentity] = None,
        stale_after_ms: Optional[int] = None,
    ):
        self.store = store
        self.config_store = config_store
        self.client = client or WebhookClient()
        self.device = device or DeviceIdentity()
        if stale_after_ms is None:
            stale_after_ms = settings.STALE_SENDING_MINUTES * 60 * 1000
        self.stale_after_ms = stale_after_ms

    def run_cycle(self) -> CycleResult:
        """
        Fetch, claim and deliver one batch.

        Returns:
            CycleResult.RETRY if any item is waiting on a transient failure,
            CycleResult.DONE otherwise

        Raises:
            StorageFailure: the queue database is unavailable; items keep
                their last durably written state
        """
        config = self.config_store.read_all()
        if not config.forwarding_enabled or not config.webhook_url:
            logger.debug("Forwarding disabled or no webhook URL; nothing to do")
            return CycleResult.DONE

        self.store.release_stale_sending(self.stale_after_ms)

        items = self.store.fetch_due(config.batch_size)
        if not items:
            return CycleResult.DONE

        claimed_ids = set(self.store.mark_sending([item.id for item in items]))
        batch = [item for item in items if item.id in claimed_ids]
        if not batch:
            return CycleResult.DONE

        logger.info(f"Dispatching {len(batch)} items to {config.webhook_url}")
        device_id = self.device.get()
        headers = build_headers(config)

        should_retry = False
        for item in batch:
            result = self.client.send(config.webhook_url, headers, item, device_id)
            if result.success:
                self.store.mark_sent(item.id)
            elif self._record_failure(item, result, config.max_retries):
                should_retry = True

        return CycleResult.RETRY if should_retry else CycleResult.DONE

    def seconds_until_next_due(self) -> Optional[float]:
        """Seconds until the earliest PENDING item is due, 0 if one is due now."""
        due = self.store.next_pending_due()
        if due is None:
            return None
        return max(0.0, (due - now_ms()) / 1000)

    def _record_failure(self, item: QueueItem, result: SendResult, max_retries: int) -> bool:
        """Persist a failed attempt. Returns True if the item will be retried."""
        if result.is_permanent_failure:
            attempt = max_retries
        else:
            attempt = item.attempt_count + 1

        now = now_ms()
        if attempt >= max_retries:
            status = QueueStatus.FAILED
            next_retry_at = now
        else:
            status = QueueStatus.PENDING
            next_retry_at = now + backoff(attempt)

        self.store.mark_failure(item.id, attempt, status, next_retry_at, result.message)
        if status == QueueStatus.FAILED:
            logger.error(
                f"Giving up on #{item.id} after {attempt} attempts: {result.message}",
                extra={"item_id": item.id, "package_name": item.package_name},
            )
            return False
        return True
