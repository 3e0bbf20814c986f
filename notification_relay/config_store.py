"""Forwarding settings, read fresh from a JSON key-value file."""
import json
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, Optional, Union

from notification_relay import settings
from notification_relay.logging_conf import logger

DEFAULT_MAX_RETRIES = 10
DEFAULT_BATCH_SIZE = 20


class FilterMode(str, Enum):
    ALL_APPS = "ALL_APPS"
    WHITELIST = "WHITELIST"
    BLACKLIST = "BLACKLIST"


class AuthMode(str, Enum):
    NONE = "NONE"
    BEARER = "BEARER"
    CUSTOM = "CUSTOM"


@dataclass(frozen=True)
class ForwardingConfig:
    """Snapshot of user settings for one enqueue or dispatch cycle."""

    webhook_url: str = ""
    forwarding_enabled: bool = True
    filter_mode: FilterMode = FilterMode.ALL_APPS
    filter_packages: FrozenSet[str] = field(default_factory=frozenset)
    auth_mode: AuthMode = AuthMode.NONE
    bearer_token: str = ""
    custom_headers_raw: str = ""
    max_retries: int = DEFAULT_MAX_RETRIES
    batch_size: int = DEFAULT_BATCH_SIZE

    @property
    def custom_headers(self) -> Dict[str, str]:
        return parse_headers(self.custom_headers_raw)


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def parse_packages(raw: Union[str, Iterable[str], None]) -> FrozenSet[str]:
    """Package ids from a list, or a string split on commas, semicolons or newlines."""
    if raw is None:
        return frozenset()
    if isinstance(raw, str):
        parts = re.split(r"[,;\n]", raw)
    else:
        parts = [str(p) for p in raw]
    return frozenset(p.strip() for p in parts if p.strip())


def parse_headers(raw: Optional[str]) -> Dict[str, str]:
    """Parse a `Key: Value` per line header block.

    Blank lines, lines without a colon and lines with an empty key are
    skipped. Later duplicates win.
    """
    headers: Dict[str, str] = {}
    for line in (raw or "").splitlines():
        trimmed = line.strip()
        if not trimmed or ":" not in trimmed:
            continue
        key, value = trimmed.split(":", 1)
        key = key.strip()
        if key:
            headers[key] = value.strip()
    return headers


def _enum_value(enum_cls, raw, default, key):
    if raw is None:
        return default
    try:
        return enum_cls(str(raw).strip().upper())
    except ValueError:
        logger.warning(f"Unknown {key} {raw!r}; using {default.value}")
        return default


def _int_value(raw, default, low, high, key):
    if raw is None:
        return default
    try:
        return clamp(int(raw), low, high)
    except (TypeError, ValueError):
        logger.warning(f"Invalid {key} {raw!r}; using {default}")
        return default


def _bool_value(raw, default):
    if raw is None:
        return default
    if isinstance(raw, str):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    return bool(raw)


def config_from_dict(data: Dict[str, Any]) -> ForwardingConfig:
    """Build a ForwardingConfig from raw key-value data, applying defaults and bounds."""
    return ForwardingConfig(
        webhook_url=str(data.get("webhook_url") or "").strip(),
        forwarding_enabled=_bool_value(data.get("forwarding_enabled"), True),
        filter_mode=_enum_value(FilterMode, data.get("filter_mode"), FilterMode.ALL_APPS, "filter_mode"),
        filter_packages=parse_packages(data.get("filter_packages")),
        auth_mode=_enum_value(AuthMode, data.get("auth_mode"), AuthMode.NONE, "auth_mode"),
        bearer_token=str(data.get("bearer_token") or "").strip(),
        custom_headers_raw=str(data.get("custom_headers_raw") or ""),
        max_retries=_int_value(data.get("max_retry", data.get("max_retries")), DEFAULT_MAX_RETRIES, 1, 20, "max_retries"),
        batch_size=_int_value(data.get("batch_size"), DEFAULT_BATCH_SIZE, 1, 100, "batch_size"),
    )


class ConfigStore:
    """Read-only view of the forwarding settings file.

    Nothing is cached: every read_all() goes back to disk so edits made
    between cycles take effect on the next one.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path is not None else settings.CONFIG_PATH

    def read_all(self) -> ForwardingConfig:
        return config_from_dict(self._load())

    def _load(self) -> Dict[str, Any]:
        try:
            if self.path.exists():
                with open(self.path, "r") as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    return data
                logger.warning(f"Config file {self.path} is not a JSON object; using defaults")
        except Exception as e:
            logger.warning(f"Failed to read config {self.path}: {e}")
        return {}
