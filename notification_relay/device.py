"""Stable per-installation device identifier."""
import json
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from notification_relay import settings
from notification_relay.logging_conf import logger

UNKNOWN_DEVICE = "unknown-device"


class DeviceIdentity:
    """Generates a device id once and keeps it in a small JSON file."""

    def __init__(self, path: Optional[Union[str, Path]] = None, override: Optional[str] = None):
        self.id_file = Path(path) if path is not None else settings.DEVICE_ID_PATH
        self.override = override if override is not None else settings.DEVICE_ID
        self._cached: Optional[str] = None

    def get(self) -> str:
        """
        Return the device id.

        Returns:
            The configured override, the persisted id, a freshly generated
            one, or "unknown-device" if none can be stored.
        """
        if self.override:
            return self.override
        if self._cached:
            return self._cached

        device_id = self._load()
        if not device_id:
            device_id = uuid.uuid4().hex
            if not self._save(device_id):
                return UNKNOWN_DEVICE

        self._cached = device_id
        return device_id

    def _load(self) -> Optional[str]:
        try:
            if self.id_file.exists():
                with open(self.id_file, "r") as f:
                    data = json.load(f)
                    device_id = data.get("device_id")
                    if device_id:
                        return str(device_id)
        except Exception as e:
            logger.warning(f"Failed to read device id: {e}")
        return None

    def _save(self, device_id: str) -> bool:
        try:
            self.id_file.parent.mkdir(parents=True, exist_ok=True)
            data = {
                "device_id": device_id,
                "created_at": datetime.now().isoformat()
            }
            with open(self.id_file, "w") as f:
                json.dump(data, f, indent=2)
            logger.info(f"Generated device id {device_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to save device id: {e}", exc_info=True)
            return False
