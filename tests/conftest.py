"""
Pytest configuration file for Fulfillment Engine tests.

Puts 'src' on sys.path so tests import the engine modules the same way the
modules import each other, and provides shared fixtures: a controllable
clock, a mocked order provider and a ready-to-use engine.
"""

import sys
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Get the repository root directory (parent of tests directory)
repo_root = Path(__file__).parent.parent

src_dir = repo_root / 'src'
if str(src_dir) not in sys.path:
    sys.path.insert(0, str(src_dir))


class FakeClock:
    """Clock the tests move forward by hand."""

    def __init__(self, start: datetime = datetime(2025, 11, 5, 9, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def make_order_provider(orders: dict) -> MagicMock:
    """
    Mock order provider.

    Args:
        orders: order_id -> list of (code, quantity) or dict records
    """
    provider = MagicMock()
    provider.get_order_lines.side_effect = lambda order_id: orders.get(order_id, [])
    return provider


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def order_provider():
    return make_order_provider({
        'P0001': [('A1', 5)],
        'P0002': [
            {'code': 'A1', 'quantity': 5, 'description': 'Cream 50ml'},
            {'code': '00123', 'quantity': 2, 'description': 'Serum'},
            {'code': 'SKU-77', 'quantity': 1, 'description': 'Brush'},
        ],
        'P0003': [('A1', 5), ('B2', 0)],
    })


@pytest.fixture
def engine(order_provider, clock):
    from fulfillment_engine import FulfillmentEngine
    from engine_config import EngineConfig

    return FulfillmentEngine(order_provider, config=EngineConfig(), clock=clock)
