"""Pytest configuration and fixtures shared across all test modules.

Environment variables are set before anything imports the settings module,
so tests never pick up a developer's .env file or start background threads.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"

os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123,test-api-key-456")
os.environ.setdefault("ENGINE_CLEANUP_ENABLED", "false")
os.environ.setdefault("ENGINE_CONDITION_TIMEZONE", "UTC")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from typing import Any
from unittest.mock import Mock

import pytest

from rate_engine.core.config import EngineSettings
from rate_engine.engine.models import RateLimitRequest, RateLimitRule, build_rule
from rate_engine.engine.service import RateLimitingService

# 2024-01-01T00:00:00Z, in epoch milliseconds
T0 = 1_704_067_200_000.0


def make_rule(**overrides: Any) -> RateLimitRule:
    overrides.setdefault("id", "test_rule")
    return build_rule(**overrides)


def make_request(**overrides: Any) -> RateLimitRequest:
    data: dict[str, Any] = {
        "ip_address": "10.0.0.1",
        "endpoint": "/api/items",
        "method": "GET",
        "timestamp": T0,
    }
    data.update(overrides)
    return RateLimitRequest(**data)


@pytest.fixture
def clock() -> Mock:
    return Mock(return_value=T0)


@pytest.fixture
def engine_settings() -> EngineSettings:
    return EngineSettings(seed_default_rules=False, cleanup_enabled=False, condition_timezone="UTC")


@pytest.fixture
def service(engine_settings: EngineSettings, clock: Mock) -> RateLimitingService:
    svc = RateLimitingService(engine_settings, clock=clock)
    yield svc
    svc.shutdown()
