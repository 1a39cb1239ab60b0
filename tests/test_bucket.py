"""Tests for token bucket math and backoff helpers."""

from email.utils import formatdate

import pytest

from shipdesk.services.ratelimit import (
    BucketPolicy,
    RateBucket,
    RateLimitWait,
    backoff_seconds,
    parse_retry_after,
    refill_tokens,
    take_token,
)

POLICY = BucketPolicy(rate_per_second=5, capacity=5)
T = 1_700_000_000.0


class TestRefill:
    @pytest.mark.parametrize(
        "t0,elapsed,expected",
        [
            (0.0, 0.1, 0.5),
            (1.0, 0.4, 3.0),
            (4.5, 1.0, 5.0),
            (0.0, 10.0, 5.0),
            (5.0, 3.0, 5.0),
        ],
    )
    def test_adds_min_of_headroom_and_elapsed_rate(self, t0, elapsed, expected):
        tokens = refill_tokens(t0, T, T + elapsed, POLICY)
        assert tokens == pytest.approx(expected)
        assert tokens - t0 == pytest.approx(min(POLICY.capacity - t0, elapsed * POLICY.rate_per_second))

    def test_clock_skew_refills_nothing(self):
        assert refill_tokens(2.0, T, T - 30, POLICY) == 2.0


class TestTakeToken:
    def test_consumes_one_token(self):
        bucket = take_token(RateBucket(tokens=3.0, last_refill_at=T), T, POLICY)
        assert bucket.tokens == pytest.approx(2.0)
        assert bucket.last_refill_at == T

    def test_empty_bucket_raises_wait(self):
        with pytest.raises(RateLimitWait) as exc:
            take_token(RateBucket(tokens=0.0, last_refill_at=T), T, POLICY)
        assert exc.value.wait_seconds == pytest.approx(0.2)

    def test_wait_includes_jitter_and_partial_refill(self):
        with pytest.raises(RateLimitWait) as exc:
            take_token(RateBucket(tokens=0.5, last_refill_at=T), T, POLICY, jitter_seconds=0.03)
        assert exc.value.wait_seconds == pytest.approx(0.1 + 0.03)

    def test_tokens_stay_within_bounds(self):
        bucket = RateBucket.full(POLICY, T)
        now = T
        for step in range(200):
            now += (step % 7) * 0.03
            try:
                bucket = take_token(bucket, now, POLICY)
            except RateLimitWait:
                continue
            assert 0 <= bucket.tokens <= POLICY.capacity


class TestDocument:
    def test_missing_document_is_full(self):
        bucket = RateBucket.from_document(None, POLICY, T)
        assert bucket.tokens == POLICY.capacity
        assert bucket.last_refill_at == T

    def test_bad_fields_fall_back(self):
        bucket = RateBucket.from_document({"tokens": "x"}, POLICY, T)
        assert bucket.tokens == POLICY.capacity
        assert bucket.last_refill_at == T

    def test_to_document(self):
        assert RateBucket(tokens=1.5, last_refill_at=T).to_document() == {
            "tokens": 1.5,
            "last_refill_at": T,
        }


class TestBackoff:
    def test_doubles_per_attempt(self):
        assert backoff_seconds(0) == pytest.approx(0.2)
        assert backoff_seconds(1) == pytest.approx(0.4)
        assert backoff_seconds(2) == pytest.approx(0.8)

    def test_capped_at_two_seconds(self):
        assert backoff_seconds(10) == pytest.approx(2.0)
        assert backoff_seconds(10, 0.04) == pytest.approx(2.04)


class TestRetryAfter:
    def test_seconds(self):
        assert parse_retry_after("3", T) == 3.0

    def test_fractional_seconds_round_up_to_ms(self):
        assert parse_retry_after("0.0004", T) == pytest.approx(0.001)

    def test_http_date(self):
        header = formatdate(T + 10, usegmt=True)
        assert parse_retry_after(header, T) == pytest.approx(10.0)

    def test_http_date_with_unknown_zone_is_utc(self):
        header = formatdate(T + 10)
        assert header.endswith("-0000")
        assert parse_retry_after(header, T) == pytest.approx(10.0)

    def test_past_http_date_is_zero(self):
        header = formatdate(T - 10, usegmt=True)
        assert parse_retry_after(header, T) == 0.0

    @pytest.mark.parametrize("value", [None, "", "soon"])
    def test_unparseable(self, value):
        assert parse_retry_after(value, T) is None
