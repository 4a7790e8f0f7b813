from __future__ import annotations

import pytest

from tensat.__main__ import EXIT_EXHAUSTED, EXIT_OK, EXIT_PARSE_ERROR, EXIT_RUN_ERROR, main

AXIOMS = """
assoc: (ewadd ?x (ewadd ?y ?z)) <=> (ewadd (ewadd ?x ?y) ?z)
comm: (ewadd ?x ?y) => (ewadd ?y ?x)
"""

CANDIDATES = """
swap: (ewadd ?a ?b) => (ewadd ?b ?a)
unsound: (ewadd ?a ?b) => (ewmul ?a ?b)
"""


@pytest.fixture
def files(tmp_path):
    axioms, candidates = tmp_path / "axioms.txt", tmp_path / "candidates.txt"
    axioms.write_text(AXIOMS)
    candidates.write_text(CANDIDATES)
    return str(axioms), str(candidates)


def test_verify(files, capsys):
    assert main(["--unbounded", "verify", *files]) == EXIT_OK
    out = capsys.readouterr().out
    assert "swap: verified" in out
    assert "unsound: unverified" in out


def test_verify_exhausted(files, capsys):
    assert main(["--iter-limit", "0", "verify", *files]) == EXIT_EXHAUSTED
    assert "inconclusive" in capsys.readouterr().out


def test_verify_with_backoff(files, capsys):
    assert main(["--unbounded", "--backoff", "verify", *files]) == EXIT_OK
    assert "swap: verified" in capsys.readouterr().out


def test_parse_error(tmp_path, capsys):
    bad = tmp_path / "bad.txt"
    bad.write_text("(ewadd ?x ?y) => (ewadd ?y ?z)\n")
    assert main(["verify", str(bad), str(bad)]) == EXIT_PARSE_ERROR
    assert "line 1" in capsys.readouterr().err


def test_missing_file(tmp_path, capsys):
    missing = str(tmp_path / "missing.txt")
    assert main(["verify", missing, missing]) == EXIT_PARSE_ERROR
    assert "missing.txt" in capsys.readouterr().err


def test_optimize(tmp_path, capsys):
    rules = tmp_path / "rules.txt"
    rules.write_text("(smul ?x 1) => ?x\n")
    assert main(["--unbounded", "optimize", str(rules), "(smul (smul (input a@4_4) 1) 1)"]) == EXIT_OK
    out = capsys.readouterr().out.splitlines()
    assert out[0] == 'input("a@4_4")'
    assert out[1].startswith("cost 0 ")


def test_optimize_bad_expression(tmp_path, capsys):
    rules = tmp_path / "rules.txt"
    rules.write_text("")
    assert main(["optimize", str(rules), "(smul ?x 1)"]) == EXIT_PARSE_ERROR


def test_no_command(capsys):
    assert main([]) == EXIT_PARSE_ERROR


def test_optimize_ill_typed_expression(tmp_path, capsys):
    rules = tmp_path / "rules.txt"
    rules.write_text("")
    assert main(["optimize", str(rules), "(ewadd (input a@2_3) (input b@4_5))"]) == EXIT_PARSE_ERROR
    assert "not compatible" in capsys.readouterr().err


def test_metadata_conflict(tmp_path, capsys):
    rules = tmp_path / "rules.txt"
    rules.write_text("drop-transpose: (transpose ?x) => ?x\n")
    assert main(["optimize", str(rules), "(transpose (input a@2_3))"]) == EXIT_RUN_ERROR
    err = capsys.readouterr().err
    assert "different shapes" in err
    # Notes name the rule being applied
    assert "while applying rule drop-transpose" in err
