"""Tests for the Firestore-backed bucket store against an in-memory fake client."""

import pytest
from google.api_core import exceptions as gcp_exceptions

from shipdesk.services.ratelimit import (
    BucketPolicy,
    FirestoreBucketStore,
    RateLimitWait,
    TokenBucketLimiter,
    TransactionContention,
    take_token,
)

NOW = 1000.0
POLICY = BucketPolicy(rate_per_second=5, capacity=5)
DOC = "rate_limits/chitchats-global"


class FakeSnapshot:
    def __init__(self, data):
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return dict(self._data) if self._data is not None else None


class FakeDocument:
    def __init__(self, db, path):
        self.db = db
        self.path = path

    async def get(self, transaction=None):
        self.db.reads.append((self.path, transaction))
        return FakeSnapshot(self.db.docs.get(self.path))


class FakeCollection:
    def __init__(self, db, name):
        self.db = db
        self.name = name

    def document(self, name):
        return FakeDocument(self.db, f"{self.name}/{name}")


class FakeTransaction:
    def __init__(self, db, max_attempts):
        self.db = db
        self.max_attempts = max_attempts
        self.writes = []

    def set(self, ref, data, merge=False):
        self.writes.append((ref.path, data, merge))


class FakeFirestore:
    """Just enough of AsyncClient for one document per bucket."""

    def __init__(self, docs=None):
        self.docs = dict(docs or {})
        self.reads = []
        self.transactions = []

    def collection(self, name):
        return FakeCollection(self, name)

    def transaction(self, max_attempts=5):
        tx = FakeTransaction(self, max_attempts)
        self.transactions.append(tx)
        return tx


def committing(fn):
    """Run ``fn`` and apply its staged writes, like a successful commit."""

    async def run(tx):
        result = await fn(tx)
        for path, data, merge in tx.writes:
            base = tx.db.docs.get(path, {}) if merge else {}
            tx.db.docs[path] = {**base, **data}
        return result

    return run


def failing_with(error, times=None):
    """Raise ``error`` from the commit, on every call or the first ``times``."""
    remaining = [times]

    def decorator(fn):
        async def run(tx):
            if remaining[0] is None or remaining[0] > 0:
                if remaining[0] is not None:
                    remaining[0] -= 1
                await fn(tx)
                raise error
            return await committing(fn)(tx)

        return run

    return decorator


def attempts_spent(fn):
    """Mirror the transactional wrapper giving up after its last attempt."""

    async def run(tx):
        await fn(tx)
        try:
            raise gcp_exceptions.Aborted("too much contention on these documents")
        except gcp_exceptions.Aborted as e:
            raise ValueError("Failed to commit transaction in 1 attempts.") from e

    return run


def take(bucket):
    return take_token(bucket, NOW, POLICY)


class TestUpdate:
    async def test_first_use_creates_full_bucket(self):
        db = FakeFirestore()
        store = FirestoreBucketStore(db, transactional=committing)

        bucket = await store.update("chitchats-global", take, POLICY, NOW)

        assert bucket.tokens == 4
        assert db.docs[DOC] == {"tokens": 4, "last_refill_at": NOW}
        assert db.transactions[0].max_attempts == 1
        assert db.reads == [(DOC, db.transactions[0])]
        assert db.transactions[0].writes[0][2] is True

    async def test_existing_document_is_refilled(self):
        db = FakeFirestore({DOC: {"tokens": 0, "last_refill_at": NOW - 0.5}})
        store = FirestoreBucketStore(db, transactional=committing)

        bucket = await store.update("chitchats-global", take, POLICY, NOW)

        assert bucket.tokens == pytest.approx(1.5)
        assert db.docs[DOC]["last_refill_at"] == NOW

    async def test_custom_collection(self):
        db = FakeFirestore()
        store = FirestoreBucketStore(db, collection="limits", transactional=committing)

        await store.update("smarty", take, POLICY, NOW)

        assert "limits/smarty" in db.docs

    async def test_wait_writes_nothing(self):
        stored = {"tokens": 0, "last_refill_at": NOW}
        db = FakeFirestore({DOC: stored})
        store = FirestoreBucketStore(db, transactional=committing)

        with pytest.raises(RateLimitWait) as exc:
            await store.update("chitchats-global", take, POLICY, NOW)

        assert exc.value.wait_seconds == pytest.approx(0.2)
        assert db.transactions[0].writes == []
        assert db.docs[DOC] == stored


class TestContention:
    @pytest.mark.parametrize(
        "error",
        [gcp_exceptions.Aborted("aborted"), gcp_exceptions.Conflict("conflict")],
    )
    async def test_commit_race_is_contention(self, error):
        store = FirestoreBucketStore(FakeFirestore(), transactional=failing_with(error))

        with pytest.raises(TransactionContention) as exc:
            await store.update("chitchats-global", take, POLICY, NOW)

        assert exc.value.__cause__ is error

    async def test_spent_attempts_are_contention(self):
        store = FirestoreBucketStore(FakeFirestore(), transactional=attempts_spent)

        with pytest.raises(TransactionContention):
            await store.update("chitchats-global", take, POLICY, NOW)

    async def test_unrelated_value_error_propagates(self):
        error = ValueError("bad payload")
        store = FirestoreBucketStore(FakeFirestore(), transactional=failing_with(error))

        with pytest.raises(ValueError) as exc:
            await store.update("chitchats-global", take, POLICY, NOW)

        assert exc.value is error


class AdvancingSleep:
    """Sleep that moves a fake clock forward by the requested delay."""

    def __init__(self):
        self.now = NOW
        self.delays = []

    def clock(self):
        return self.now

    async def __call__(self, seconds):
        self.delays.append(seconds)
        self.now += seconds


class TestWithLimiter:
    def make_limiter(self, store, sleep, policy=POLICY):
        return TokenBucketLimiter(
            store=store,
            policy=policy,
            clock=sleep.clock,
            sleep=sleep,
            rng=lambda: 0.0,
        )

    async def test_empty_bucket_is_rechecked_after_wait(self):
        db = FakeFirestore()
        sleep = AdvancingSleep()
        limiter = self.make_limiter(
            FirestoreBucketStore(db, transactional=committing),
            sleep,
            policy=BucketPolicy(rate_per_second=5, capacity=1),
        )

        await limiter.acquire()
        await limiter.acquire()

        assert sleep.delays == [pytest.approx(0.2)]
        assert len(db.transactions) == 3
        assert db.docs[DOC]["tokens"] == pytest.approx(0.0, abs=1e-6)

    async def test_contention_backs_off_then_succeeds(self):
        db = FakeFirestore()
        sleep = AdvancingSleep()
        store = FirestoreBucketStore(
            db,
            transactional=failing_with(gcp_exceptions.Aborted("aborted"), times=2),
        )

        await self.make_limiter(store, sleep).acquire()

        assert sleep.delays == [pytest.approx(0.4), pytest.approx(0.8)]
        assert db.docs[DOC]["tokens"] == 4
