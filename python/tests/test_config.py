from __future__ import annotations

import pytest

from tensat import config
from tensat.config import Budget


def test_defaults():
    budget = Budget()
    assert budget.iter_limit == config.ITER_LIMIT
    assert budget.node_limit == config.NODE_LIMIT
    assert budget.time_limit == config.TIME_LIMIT


def test_unbounded():
    assert Budget.unbounded() == Budget(None, None, None)


def test_negative_limits_are_rejected():
    with pytest.raises(ValueError, match="iter_limit must be non-negative"):
        Budget(iter_limit=-1)


def test_env_override(monkeypatch):
    monkeypatch.setenv("TENSAT_TEST_LIMIT", "12")
    assert config._env_number("TENSAT_TEST_LIMIT", 3, int) == 12
    monkeypatch.delenv("TENSAT_TEST_LIMIT")
    assert config._env_number("TENSAT_TEST_LIMIT", 3, int) == 3


def test_env_override_must_be_a_number(monkeypatch):
    monkeypatch.setenv("TENSAT_TEST_LIMIT", "lots")
    with pytest.raises(ValueError, match="must be a number"):
        config._env_number("TENSAT_TEST_LIMIT", 3, int)
