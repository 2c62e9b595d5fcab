"""Tests for progress record stores and publishing."""
from datetime import datetime, timedelta

import pytest

from wms.schemas.upload import JobStatus, UploadProgress
from wms.services.ingestion import RunCounters
from wms.services.progress import ProgressPublisher, RedisProgressStore, utcnow


class FakeRedis:
    """The handful of Redis commands the progress store uses, kept in memory."""

    def __init__(self):
        self.values = {}
        self.sets = {}
        self.ttls = {}
        self.published = []

    def set(self, name, value, xx=False):
        if xx and name not in self.values:
            return None
        self.values[name] = value
        return True

    def get(self, name):
        return self.values.get(name)

    def delete(self, *names):
        removed = 0
        for name in names:
            if self.values.pop(name, None) is not None:
                removed += 1
            self.ttls.pop(name, None)
        return removed

    def expire(self, name, seconds):
        if name not in self.values:
            return False
        self.ttls[name] = seconds
        return True

    def sadd(self, name, *members):
        members_set = self.sets.setdefault(name, set())
        before = len(members_set)
        members_set.update(members)
        return len(members_set) - before

    def srem(self, name, *members):
        members_set = self.sets.get(name, set())
        before = len(members_set)
        members_set.difference_update(members)
        return before - len(members_set)

    def smembers(self, name):
        return set(self.sets.get(name, set()))

    def publish(self, channel, message):
        self.published.append((channel, message))
        return 1


def make_progress(job_id="job-1", pipeline="inbound", **kwargs):
    return UploadProgress(
        job_id=job_id,
        pipeline=pipeline,
        batch_id="BULK_1_ABC",
        warehouse_id=1,
        filename="goods.csv",
        file_type="csv",
        start_time=kwargs.pop("start_time", utcnow()),
        **kwargs,
    )


def finish(progress):
    progress.status = JobStatus.COMPLETED
    progress.finished_at = utcnow()


@pytest.fixture
def redis_client():
    return FakeRedis()


@pytest.fixture(params=["sql", "redis"])
def any_store(request, store, redis_client):
    """Run a test against both progress backends."""
    if request.param == "sql":
        return store
    return RedisProgressStore(redis_client, retention_seconds=3600)


def test_create_then_get(any_store):
    any_store.create(make_progress())

    progress = any_store.get("job-1")

    assert progress.status is JobStatus.PROCESSING
    assert progress.batch_id == "BULK_1_ABC"
    assert progress.filename == "goods.csv"


def test_get_unknown_job(any_store):
    assert any_store.get("nope") is None


def test_update_applies_mutator(any_store):
    any_store.create(make_progress())

    def mutate(progress):
        progress.total = 10
        progress.processed = 4

    updated = any_store.update("job-1", mutate)

    assert updated.processed == 4
    assert any_store.get("job-1").total == 10


def test_update_after_delete_returns_none(any_store):
    any_store.create(make_progress())
    assert any_store.delete("job-1") is True

    assert any_store.update("job-1", finish) is None
    assert any_store.get("job-1") is None
    assert any_store.delete("job-1") is False


def test_list_active(any_store):
    any_store.create(make_progress("a", "inbound"))
    any_store.create(make_progress("b", "qc"))
    any_store.create(make_progress("c", "inbound"))
    any_store.update("c", finish)

    assert {p.job_id for p in any_store.list_active()} == {"a", "b"}
    assert [p.job_id for p in any_store.list_active("inbound")] == ["a"]
    assert any_store.list_active("picking") == []


def test_counters_never_move_backwards(any_store):
    any_store.create(make_progress())
    any_store.update("job-1", RunCounters(total=5, processed=3).apply_to)

    updated = any_store.update("job-1", RunCounters(total=5, processed=1).apply_to)

    assert updated.processed == 3
    assert any_store.get("job-1").processed == 3


def test_sql_purge_expired(store):
    store.create(make_progress("old"))
    store.create(make_progress("fresh"))
    store.create(make_progress("running"))
    store.update("old", finish)
    store.update("fresh", finish)

    later = utcnow() + timedelta(seconds=1800)
    assert store.purge_expired(now=later) == 0

    store.update("old", lambda p: setattr(p, "finished_at", utcnow() - timedelta(hours=2)))
    assert store.purge_expired() == 1
    assert store.get("old") is None
    assert store.get("fresh") is not None
    assert store.get("running") is not None


def test_sql_purge_never_touches_processing_jobs(store):
    store.create(make_progress("running", start_time=datetime(2020, 1, 1)))

    assert store.purge_expired(now=utcnow() + timedelta(days=30)) == 0
    assert store.get("running") is not None


def test_redis_terminal_record_expires(redis_client):
    store = RedisProgressStore(redis_client, retention_seconds=120)
    store.create(make_progress())
    assert "job-1" in redis_client.smembers(RedisProgressStore.ACTIVE_SET)

    store.update("job-1", finish)

    assert redis_client.ttls["upload:progress:job-1"] == 120
    assert "job-1" not in redis_client.smembers(RedisProgressStore.ACTIVE_SET)


def test_redis_list_active_drops_stale_members(redis_client):
    store = RedisProgressStore(redis_client)
    store.create(make_progress())
    # record expired but the id stayed in the active set
    redis_client.values.clear()

    assert store.list_active() == []
    assert redis_client.smembers(RedisProgressStore.ACTIVE_SET) == set()


def test_publisher_sends_snapshot(redis_client):
    publisher = ProgressPublisher("redis://unused:6379/0")
    publisher._client = redis_client

    publisher.publish(make_progress())

    channel, message = redis_client.published[0]
    assert channel == "upload:job-1"
    assert UploadProgress.model_validate_json(message).job_id == "job-1"


def test_disabled_publisher_is_silent(redis_client):
    publisher = ProgressPublisher("redis://unused:6379/0", enabled=False)
    publisher._client = redis_client

    publisher.publish(make_progress())

    assert redis_client.published == []
