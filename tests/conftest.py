"""
Pytest configuration and fixtures.
Adds tests/ to Python path so test modules can import the shared fakes.
"""

import sys
from decimal import Decimal
from pathlib import Path

import pytest

tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

from fakes import RecordingNotifier  # noqa: E402
from ethgrid.state.persistence import JsonPersistence  # noqa: E402
from ethgrid.strategy.grid_calculator import GridCalculator  # noqa: E402


@pytest.fixture
def calculator():
    return GridCalculator(level_count=10, spacing_percent=Decimal("2"), amount_per_level=Decimal("100"))


@pytest.fixture
def persistence(tmp_path):
    return JsonPersistence(str(tmp_path / "state"))


@pytest.fixture
def notifier():
    return RecordingNotifier()
