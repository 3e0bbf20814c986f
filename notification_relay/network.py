"""Network availability check used to gate dispatch runs."""
import socket
from typing import Optional, Tuple

from notification_relay import settings
from notification_relay.logging_conf import logger

# Public resolver used only to ask the OS for a route; no packet is sent
ROUTE_PROBE_TARGET = ("1.1.1.1", 53)


def _split_host(probe: str) -> Tuple[str, int]:
    host, _, port = probe.rpartition(":")
    if not host or not port.isdigit():
        return probe, 443
    return host, int(port)


def _has_route(target: Tuple[str, int]) -> bool:
    """True when the OS has an outbound route toward target.

    Connecting a UDP socket only selects a route and source address, so this
    works without reaching any server. Raises OSError when there is no route.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.connect(target)
        return sock.getsockname()[0] != "0.0.0.0"


class NetworkMonitor:
    """
    Reports whether the device has a usable network.

    This never looks at the webhook endpoint: an endpoint that is down or
    refusing connections is a delivery failure for the dispatch cycle to
    count, not a missing network. With NETWORK_PROBE_HOST set the check is a
    TCP connect to that host; otherwise it asks the OS for an outbound route.
    """

    def __init__(self, probe_host: Optional[str] = None, timeout: float = 3.0):
        self.probe_host = probe_host if probe_host is not None else settings.NETWORK_PROBE_HOST
        self.timeout = timeout

    def is_available(self) -> bool:
        if self.probe_host:
            target = _split_host(self.probe_host)
            try:
                with socket.create_connection(target, timeout=self.timeout):
                    return True
            except OSError as e:
                logger.info(f"Network check to {target[0]}:{target[1]} failed: {e}")
                return False

        try:
            return _has_route(ROUTE_PROBE_TARGET)
        except OSError as e:
            logger.info(f"No network route: {e}")
            return False

    __call__ = is_available
