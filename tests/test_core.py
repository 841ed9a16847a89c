"""
Tests for the core layer: cache keys, Redis degradation and JSON logging.
"""
import json
import logging
from unittest.mock import MagicMock, patch

import pytest
from pydantic import ValidationError
from redis.exceptions import ConnectionError as RedisConnectionError

from core import cache
from core.config import Settings
from core.logging import JSONFormatter


class TestCacheKey:
    def test_joins_parts(self):
        assert cache.cache_key("coach_cooldowns", "child-1") == "coach_cooldowns:child-1"

    def test_skips_none(self):
        assert cache.cache_key("coach_cooldowns", None, 3) == "coach_cooldowns:3"


class TestGetRedisClient:
    def setup_method(self):
        cache.reset_redis_client()

    def teardown_method(self):
        cache.reset_redis_client()

    def test_unreachable_redis_returns_none(self):
        client = MagicMock()
        client.ping.side_effect = RedisConnectionError("refused")
        with patch("core.cache.redis.from_url", return_value=client):
            assert cache.get_redis_client() is None

    def test_client_is_shared(self):
        client = MagicMock()
        with patch("core.cache.redis.from_url", return_value=client) as from_url:
            assert cache.get_redis_client() is client
            assert cache.get_redis_client() is client
        from_url.assert_called_once()


class TestJSONFormatter:
    def test_includes_extra_fields(self):
        record = logging.LogRecord(
            name="services.coaching.engine",
            level=logging.INFO,
            pathname=__file__,
            lineno=10,
            msg="Coach cards for child %s",
            args=("child-1",),
            exc_info=None,
        )
        record.extra_fields = {"selected": 2}

        data = json.loads(JSONFormatter().format(record))

        assert data["message"] == "Coach cards for child child-1"
        assert data["level"] == "INFO"
        assert data["service"] == "tinywins-coach"
        assert data["selected"] == 2


class TestSettings:
    def test_coach_defaults(self):
        s = Settings(COOLDOWN_BACKEND="memory")
        assert s.COACH_MAX_CARDS == 3
        assert s.COACH_RISK_CAP == 1
        assert s.COACH_IMPROVEMENT_CAP == 2

    def test_unknown_backend_is_rejected(self):
        with pytest.raises(ValidationError):
            Settings(COOLDOWN_BACKEND="filesystem")

    def test_backend_is_case_insensitive(self):
        assert Settings(COOLDOWN_BACKEND="Redis").COOLDOWN_BACKEND == "redis"
