"""Pytest configuration and shared fixtures."""

import sys
from pathlib import Path

import pytest

# Add the project root and src directory to Python path so tests can import properly
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))
sys.path.insert(0, str(project_root / "src"))

from procure_agent.backends import InMemoryProcurementBackend  # noqa: E402
from procure_agent.persistence import InMemoryConversationStore  # noqa: E402
from tests.fixtures import FakeClock  # noqa: E402


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def backend():
    return InMemoryProcurementBackend()


@pytest.fixture
def store():
    return InMemoryConversationStore()
