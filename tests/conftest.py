"""Test configuration and fixtures."""
import sys
from pathlib import Path

import pytest

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))
sys.path.insert(0, str(project_root / "tests"))

from helpers import fixed_clock  # noqa: E402
from ledger import TradeLedger  # noqa: E402
from shared.config import Config  # noqa: E402


@pytest.fixture
def ledger():
    return TradeLedger(Config(), clock=fixed_clock)
