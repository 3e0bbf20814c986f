"""Process configuration for the notification relay."""
import os
from pathlib import Path
from dotenv import load_dotenv

from notification_relay.errors import ConfigInvalid

load_dotenv()

# Base paths, relative to where the relay is run rather than where it is installed
BASE_DIR = Path.cwd()
LOGS_DIR = Path(os.getenv("LOGS_DIR", str(BASE_DIR / "logs")))
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
BETTERSTACK_SOURCE_TOKEN = os.getenv("BETTERSTACK_SOURCE_TOKEN")
BETTERSTACK_INGEST_HOST = os.getenv("BETTERSTACK_INGEST_HOST")

# Storage
QUEUE_DB_PATH = Path(os.getenv("QUEUE_DB_PATH", str(DATA_DIR / "queue.db")))
CONFIG_PATH = Path(os.getenv("CONFIG_PATH", str(DATA_DIR / "config.json")))
DEVICE_ID_PATH = Path(os.getenv("DEVICE_ID_PATH", str(DATA_DIR / "device.json")))
DEVICE_ID = os.getenv("DEVICE_ID")

# Dispatch settings
PERIODIC_INTERVAL_SECONDS = int(os.getenv("PERIODIC_INTERVAL_SECONDS", "900"))
OFFLINE_RETRY_SECONDS = int(os.getenv("OFFLINE_RETRY_SECONDS", "30"))
STALE_SENDING_MINUTES = int(os.getenv("STALE_SENDING_MINUTES", "30"))
RECENT_LIMIT = int(os.getenv("RECENT_LIMIT", "50"))
NETWORK_PROBE_HOST = os.getenv("NETWORK_PROBE_HOST")

# Delivery timeouts (seconds)
CONNECT_TIMEOUT = float(os.getenv("CONNECT_TIMEOUT", "15"))
READ_TIMEOUT = float(os.getenv("READ_TIMEOUT", "20"))

# Reference receiver
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3000"))
WEBHOOK_PATH = os.getenv("WEBHOOK_PATH", "/webhook")
WEBHOOK_BEARER_TOKEN = os.getenv("WEBHOOK_BEARER_TOKEN", "")
WEBHOOK_LOG_FILE = Path(os.getenv("WEBHOOK_LOG_FILE", str(BASE_DIR / "logs" / "webhook.log")))
JSON_LIMIT = int(os.getenv("JSON_LIMIT", str(1024 * 1024)))


def validate_config():
    """Validate process configuration."""
    errors = []

    for name, directory in (
        ("LOGS_DIR", LOGS_DIR),
        ("QUEUE_DB_PATH", QUEUE_DB_PATH.parent),
        ("DEVICE_ID_PATH", DEVICE_ID_PATH.parent),
    ):
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except Exception as e:
            errors.append(f"Cannot create directory for {name}: {e}")

    if PERIODIC_INTERVAL_SECONDS <= 0:
        errors.append(f"PERIODIC_INTERVAL_SECONDS must be positive: {PERIODIC_INTERVAL_SECONDS}")

    if STALE_SENDING_MINUTES <= 0:
        errors.append(f"STALE_SENDING_MINUTES must be positive: {STALE_SENDING_MINUTES}")

    if CONNECT_TIMEOUT <= 0 or READ_TIMEOUT <= 0:
        errors.append("CONNECT_TIMEOUT and READ_TIMEOUT must be positive")

    if not WEBHOOK_PATH.startswith("/"):
        errors.append(f"WEBHOOK_PATH must start with '/': {WEBHOOK_PATH}")

    if errors:
        raise ConfigInvalid("Config errors:\n  " + "\n  ".join(errors))
