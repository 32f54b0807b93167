"""Shared fixtures."""

from __future__ import annotations

import pytest

from tests.stubs import FailingWeatherService, StubWeatherService


@pytest.fixture
def stub_service() -> StubWeatherService:
    return StubWeatherService()


@pytest.fixture
def failing_service() -> FailingWeatherService:
    return FailingWeatherService()
