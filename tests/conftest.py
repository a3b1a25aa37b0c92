"""Shared test fixtures for the cpjudge test suite."""

from unittest.mock import MagicMock

import pytest

from cpjudge.config import TestingConfig
from cpjudge.http_client import HttpClient
from cpjudge.scrapers.common import Platform
from cpjudge.session import Session, SessionStore
from helpers import FakeTransport


@pytest.fixture()
def config():
    return TestingConfig


@pytest.fixture()
def transport():
    return FakeTransport()


@pytest.fixture()
def session_dir(tmp_path):
    return str(tmp_path / 'sessions')


@pytest.fixture()
def store(session_dir):
    return SessionStore(session_dir)


@pytest.fixture()
def atcoder_session():
    return Session(platform=Platform.ATCODER)


@pytest.fixture()
def make_http(transport, config):
    """Factory for an HttpClient bound to ``transport`` with no delays."""
    def factory(session, **kwargs):
        kwargs.setdefault('rate_limiter', MagicMock())
        kwargs.setdefault('jitter', lambda: 0.0)
        return HttpClient.from_config(session, config, http=transport, **kwargs)

    return factory
