import logging

import pytest
import structlog

from tensat import AnalyticCostModel, EGraph, parse_rules


@pytest.fixture(autouse=True)
def _reset_logging():
    root = logging.getLogger()
    old_handlers, old_level = root.handlers[:], root.level
    yield
    structlog.reset_defaults()
    root.handlers[:] = old_handlers
    root.setLevel(old_level)


@pytest.fixture
def egraph():
    return EGraph()


@pytest.fixture
def analytic_egraph():
    return EGraph(analysis=AnalyticCostModel())


@pytest.fixture
def comm():
    return parse_rules("comm: (ewadd ?x ?y) => (ewadd ?y ?x)")


@pytest.fixture
def assoc_comm():
    return parse_rules(
        """
        assoc: (ewadd ?x (ewadd ?y ?z)) <=> (ewadd (ewadd ?x ?y) ?z)
        comm: (ewadd ?x ?y) => (ewadd ?y ?x)
        """
    )
