from __future__ import annotations

import json
import logging

import pytest

from tensat import EGraph, Runner, optimize, parse_rules, parse_term, verify
from tensat.config import Budget
from tensat.logs import configure_logging


def test_json_events(capsys, comm):
    configure_logging("INFO", "json")
    egraph = EGraph()
    egraph.insert(parse_term("(ewadd a b)"))
    Runner(comm, egraph, Budget.unbounded()).run()
    events = [json.loads(line) for line in capsys.readouterr().err.splitlines()]
    (stopped,) = [e for e in events if e["event"] == "run_stopped"]
    assert stopped["reason"] == "saturated"
    assert stopped["level"] == "info"
    # Debug events are filtered out at INFO
    assert not [e for e in events if e["event"] == "iteration_complete"]


def test_unknown_level():
    with pytest.raises(ValueError, match="Unknown log level"):
        configure_logging("LOUD")


def test_silent_until_configured(capsys, comm):
    verify(comm, parse_rules("swap: (ewadd ?a ?b) => (ewadd ?b ?a)"), Budget.unbounded())
    optimize(parse_term("(relu (input a@2_3))"), [], budget=Budget.unbounded())
    assert capsys.readouterr() == ("", "")


def test_events_go_to_module_loggers(caplog, comm):
    caplog.set_level(logging.DEBUG, logger="tensat")
    verify(comm, parse_rules("swap: (ewadd ?a ?b) => (ewadd ?b ?a)"), Budget.unbounded())
    assert {r.name for r in caplog.records} >= {"tensat.runner", "tensat.verify"}
    assert any("goal_proved" in r.getMessage() for r in caplog.records)
