"""Exceptions raised by the relay core."""


class RelayError(Exception):
    """Base class for relay errors."""


class StorageFailure(RelayError):
    """The queue database is unavailable or inconsistent."""


class ConfigInvalid(RelayError):
    """Process settings are unusable."""
