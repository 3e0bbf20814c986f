"""HTTP client that delivers queued notifications to the webhook."""
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import requests

from notification_relay import settings
from notification_relay.logging_conf import logger
from notification_relay.queue.models import QueueItem


@dataclass(frozen=True)
class SendResult:
    """Outcome of one delivery attempt."""

    success: bool
    is_permanent_failure: bool
    message: str

    @property
    def is_transient(self) -> bool:
        return not self.success and not self.is_permanent_failure


def build_payload(item: QueueItem, device_id: str) -> Dict[str, object]:
    return {
        "deviceId": device_id,
        "packageName": item.package_name,
        "appName": item.app_name,
        "title": item.title,
        "text": item.text,
        "postedAt": item.posted_at,
        "notificationKey": item.notification_key,
    }


def classify_status(status_code: int) -> SendResult:
    """2xx succeeds; 4xx other than 429 is permanent; anything else is retried."""
    if 200 <= status_code < 300:
        return SendResult(True, False, "OK")
    permanent = 400 <= status_code < 500 and status_code != 429
    return SendResult(False, permanent, f"HTTP {status_code}")


class WebhookClient:
    """Posts one notification per request. Never retries and never raises."""

    def __init__(self, session: Optional[requests.Session] = None, timeout: Optional[Tuple[float, float]] = None):
        self.session = session or requests.Session()
        self.timeout = timeout or (settings.CONNECT_TIMEOUT, settings.READ_TIMEOUT)

    def send(self, url: str, headers: Dict[str, str], item: QueueItem, device_id: str) -> SendResult:
        """
        Deliver an item to the webhook.

        Args:
            url: Webhook endpoint
            headers: Fully composed request headers
            item: Queue item to deliver
            device_id: Stable id of this installation

        Returns:
            SendResult describing success or the failure class
        """
        try:
            response = self.session.post(
                url,
                json=build_payload(item, device_id),
                headers=headers,
                timeout=self.timeout,
            )
            try:
                result = classify_status(response.status_code)
            finally:
                response.close()
        except Exception as e:
            message = str(e) or "network error"
            logger.warning(f"Delivery of #{item.id} failed: {message}")
            return SendResult(False, False, message)

        if result.success:
            logger.info(f"Delivered #{item.id} ({item.package_name})")
        elif result.is_permanent_failure:
            logger.warning(f"Delivery of #{item.id} rejected: {result.message}")
        else:
            logger.warning(f"Delivery of #{item.id} failed: {result.message}")
        return result
