"""
Pytest configuration for CatIndexer tests.

Makes the catindexer package and the shared test fakes importable during
test execution.
"""

import sys
import os

import pytest

# Add the project root directory to Python path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

# fakes.py lives beside this file
tests_dir = os.path.dirname(os.path.abspath(__file__))
if tests_dir not in sys.path:
    sys.path.insert(0, tests_dir)

from fakes import FakeDaemon, FakeEnv, FakeStorage  # noqa: E402


@pytest.fixture
def env():
    return FakeEnv()


@pytest.fixture
def fake_db():
    return FakeStorage()


@pytest.fixture
def fake_daemon():
    return FakeDaemon()
