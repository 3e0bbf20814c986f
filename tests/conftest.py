import itertools
import json
import os
import tempfile
from unittest.mock import MagicMock

import pytest

# Settings are read at import time; keep logs and data out of the project tree
_TEST_ROOT = tempfile.mkdtemp(prefix="notification-relay-tests-")
os.environ.setdefault("LOGS_DIR", os.path.join(_TEST_ROOT, "logs"))
os.environ.setdefault("DATA_DIR", os.path.join(_TEST_ROOT, "data"))

from notification_relay.config_store import ConfigStore  # noqa: E402
from notification_relay.db import Database  # noqa: E402
from notification_relay.device import DeviceIdentity  # noqa: E402
from notification_relay.queue.models import QueueItem  # noqa: E402
from notification_relay.queue.store import QueueStore  # noqa: E402
from notification_relay.webhook_client import WebhookClient  # noqa: E402
from notification_relay.worker import DispatchWorker  # noqa: E402

WEBHOOK_URL = "https://hooks.example.com/notify"


@pytest.fixture
def db(tmp_path):
    """Queue database in a fresh temp directory."""
    database = Database(tmp_path / "queue.db")
    yield database
    database.close()


@pytest.fixture
def store(db):
    return QueueStore(db)


@pytest.fixture
def config_path(tmp_path):
    return tmp_path / "config.json"


@pytest.fixture
def write_config(config_path):
    """Write the forwarding config file; forwarding to WEBHOOK_URL unless overridden."""
    def _write(**values):
        data = {"webhook_url": WEBHOOK_URL, "forwarding_enabled": True}
        data.update(values)
        config_path.write_text(json.dumps(data))
        return config_path
    return _write


@pytest.fixture
def config_store(config_path, write_config):
    write_config()
    return ConfigStore(config_path)


@pytest.fixture
def session():
    """requests.Session stand-in answering 200 by default."""
    fake = MagicMock()
    fake.post.return_value = MagicMock(status_code=200)
    return fake


@pytest.fixture
def respond_with(session):
    """Queue HTTP status codes (or exceptions) for successive posts."""
    def _respond(*outcomes):
        effects = []
        for outcome in outcomes:
            if isinstance(outcome, int):
                effects.append(MagicMock(status_code=outcome))
            else:
                effects.append(outcome)
        session.post.side_effect = effects
    return _respond


@pytest.fixture
def client(session):
    return WebhookClient(session=session, timeout=(15, 20))


@pytest.fixture
def device():
    return DeviceIdentity(override="device-123")


@pytest.fixture
def worker(store, config_store, client, device):
    return DispatchWorker(store, config_store, client=client, device=device)


@pytest.fixture
def make_item():
    """Build QueueItems with unique dedupe keys."""
    counter = itertools.count(1)

    def _make(key=None, package_name="com.example.chat", **overrides):
        n = next(counter)
        item = QueueItem.create(
            package_name=package_name,
            app_name="Chat",
            title=f"Title {n}",
            text=f"Body {n}",
            posted_at=1_700_000_000_000 + n,
            notification_key=key or f"key-{n}",
        )
        for name, value in overrides.items():
            setattr(item, name, value)
        return item
    return _make
