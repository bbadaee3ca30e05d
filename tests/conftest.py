from __future__ import annotations

import pytest

from planner_fixtures import make_settings, mini_guitar_config
from src.instruments.loader import build_instrument


@pytest.fixture
def mini_guitar():
    return build_instrument(mini_guitar_config())


@pytest.fixture
def settings():
    return make_settings()
