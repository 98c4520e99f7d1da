"""Unit tests for time, vector and correlation helpers."""

import math
from datetime import UTC, datetime, timedelta, timezone

import structlog

from ellipsa_memory.services.retrieval import relational_score, temporal_score
from ellipsa_memory.utils.correlation import (
    create_child_correlation_id,
    get_correlation_id,
    set_correlation_id,
    with_correlation_id,
)
from ellipsa_memory.utils.time import age_in_days, ensure_utc, parse_datetime, utc_timestamp
from ellipsa_memory.utils.vectors import cosine_similarity, is_zero_vector


class TestTime:
    def test_ensure_utc_attaches_zone_to_naive(self):
        value = ensure_utc(datetime(2026, 3, 1, 12, 0))
        assert value.tzinfo is not None
        assert value.utcoffset() == timedelta(0)

    def test_ensure_utc_converts_offsets(self):
        value = ensure_utc(datetime(2026, 3, 1, 12, 0, tzinfo=timezone(timedelta(hours=2))))
        assert value.hour == 10

    def test_parse_datetime_accepts_dates_and_timestamps(self):
        assert parse_datetime("2026-11-01") == datetime(2026, 11, 1, tzinfo=UTC)
        assert parse_datetime("2026-11-01T09:30:00+01:00") == datetime(2026, 11, 1, 8, 30, tzinfo=UTC)

    def test_parse_datetime_is_lenient(self):
        assert parse_datetime(None) is None
        assert parse_datetime("") is None
        assert parse_datetime("sometime soon") is None

    def test_age_in_days_clamps_future(self):
        now = datetime(2026, 1, 10, tzinfo=UTC)
        assert age_in_days(now + timedelta(days=3), now) == 0
        assert age_in_days(now - timedelta(days=2), now) == 2

    def test_utc_timestamp_has_explicit_offset(self):
        assert utc_timestamp(datetime(2026, 1, 1, 0, 0)).endswith("+00:00")


class TestScores:
    def test_temporal_score_decays_with_age(self):
        now = datetime(2026, 1, 10, tzinfo=UTC)
        fresh = temporal_score(now, 0.1, now)
        old = temporal_score(now - timedelta(days=10), 0.1, now)
        assert fresh == 1.0
        assert math.isclose(old, math.exp(-1.0))
        assert temporal_score(None, 0.1, now) == 0.0

    def test_relational_score_is_share_of_context(self):
        assert relational_score({"a", "b"}, {"a", "c"}) == 0.5
        assert relational_score(set(), {"a"}) == 0.0
        assert relational_score({"a"}, set()) == 0.0


class TestVectors:
    def test_cosine_similarity(self):
        assert math.isclose(cosine_similarity([1, 0], [1, 0]), 1.0)
        assert math.isclose(cosine_similarity([1, 0], [0, 1]), 0.0)
        assert math.isclose(cosine_similarity([1, 0], [-1, 0]), -1.0)

    def test_cosine_similarity_degenerate_inputs(self):
        assert cosine_similarity([], []) == 0.0
        assert cosine_similarity([1, 2], [1, 2, 3]) == 0.0
        assert cosine_similarity([0, 0], [1, 1]) == 0.0

    def test_is_zero_vector(self):
        assert is_zero_vector(None)
        assert is_zero_vector([])
        assert is_zero_vector([0.0, 0.0])
        assert not is_zero_vector([0.0, 0.1])


class TestCorrelation:
    def test_child_id_extends_parent(self):
        set_correlation_id("req_parent")
        assert create_child_correlation_id("search") == "req_parent.search"

    async def test_decorator_restores_previous_id(self):
        set_correlation_id("req_outer")
        seen = []

        @with_correlation_id("job")
        async def job():
            seen.append(get_correlation_id())

        await job()

        assert seen[0].startswith("job_")
        assert get_correlation_id() == "req_outer"
        assert structlog.contextvars.get_contextvars()["correlation_id"] == "req_outer"
