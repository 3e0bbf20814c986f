"""
Tests for the capture entry point and user queue actions.
"""
from unittest.mock import MagicMock

import pytest

from notification_relay.repository import DISPATCH_NOW_KEY, NotificationRepository


@pytest.fixture
def scheduler():
    return MagicMock()


@pytest.fixture
def repository(store, config_store, scheduler):
    return NotificationRepository(store, config_store, scheduler)


def enqueue(repository, package_name="com.example.chat", key="k1"):
    return repository.enqueue(package_name, "Chat", "Title", "Body", 1_700_000_000_000, key)


class TestEnqueue:
    """Filtering, dedupe and immediate trigger."""

    def test_new_item_requests_dispatch(self, repository, store, scheduler):
        item_id = enqueue(repository)

        assert store.get(item_id).app_name == "Chat"
        scheduler.schedule_once.assert_called_once_with(DISPATCH_NOW_KEY)

    def test_duplicate_key_stores_once_without_trigger(self, repository, store, scheduler):
        enqueue(repository, key="same")
        scheduler.reset_mock()

        assert enqueue(repository, key="same") is None

        assert store.stats().total == 1
        scheduler.schedule_once.assert_not_called()

    def test_disabled_forwarding_drops(self, repository, store, scheduler, write_config):
        write_config(forwarding_enabled=False)

        assert enqueue(repository) is None

        assert store.stats().total == 0
        scheduler.schedule_once.assert_not_called()

    def test_whitelist_filters(self, repository, store, write_config):
        write_config(filter_mode="WHITELIST", filter_packages=["com.allowed"])

        assert enqueue(repository, package_name="com.other", key="a") is None
        assert enqueue(repository, package_name="com.allowed", key="b") is not None
        assert store.stats().total == 1

    def test_blacklist_filters(self, repository, store, write_config):
        write_config(filter_mode="BLACKLIST", filter_packages="com.noisy")

        assert enqueue(repository, package_name="com.noisy", key="a") is None
        assert enqueue(repository, package_name="com.quiet", key="b") is not None

    def test_enqueue_without_url_still_stores(self, repository, store, write_config):
        write_config(webhook_url="")

        assert enqueue(repository) is not None

    def test_works_without_scheduler(self, store, config_store):
        repository = NotificationRepository(store, config_store)

        assert enqueue(repository) is not None


class TestUserActions:
    """Delete, clear and observation pass through to the store."""

    def test_delete_and_clear(self, repository, store):
        first = enqueue(repository, key="a")
        second = enqueue(repository, key="b")
        enqueue(repository, key="c")

        assert repository.delete_queue_item(first) is True
        assert store.get(second) is not None
        assert repository.clear_queue() == 2
        assert repository.stats().total == 0

    def test_observers_see_enqueue(self, repository):
        stats_seen = []
        recent_seen = []
        repository.observe_stats(stats_seen.append)
        repository.observe_recent(10, recent_seen.append)

        enqueue(repository)

        assert stats_seen[-1].pending == 1
        assert [item.notification_key for item in recent_seen[-1]] == ["k1"]
        assert [item.notification_key for item in repository.recent(10)] == ["k1"]
