"""Admission filter for captured notifications."""
from notification_relay.config_store import FilterMode, ForwardingConfig


def allow(package_name: str, config: ForwardingConfig) -> bool:
    """Check whether notifications from package_name may be queued."""
    if config.filter_mode == FilterMode.WHITELIST:
        return package_name in config.filter_packages
    if config.filter_mode == FilterMode.BLACKLIST:
        return package_name not in config.filter_packages
    return True
