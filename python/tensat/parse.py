"""
Reading terms, patterns and rule files written as s-expressions.

A rule file has one rule per line::

    # comments start with a hash
    ewadd-comm: (ewadd ?x ?y) => (ewadd ?y ?x)
    (smul (smul ?x ?y) ?w) <=> (smul ?x (smul ?y ?w))
    (ewadd ?x ?y) => (ewadd ?y ?x) if same_shape ?x ?y

Rules without a name are called `rule-<line number>`. Bidirectional rules add a second rule with `-rev` appended
to the name.
"""

from __future__ import annotations

import re
from pathlib import Path

from .declarations import *
from .rewrite import GUARDS, Guard, Rewrite, RewriteError, birewrite, rewrite

__all__ = ["ParseError", "parse_pattern", "parse_rule", "parse_rules", "parse_term", "read_rules"]

_TOKEN = re.compile(r"\(|\)|[^\s()]+")
_INT = re.compile(r"-?\d+")
_NAME = re.compile(r"^\s*([A-Za-z_][\w.\-]*)\s*:\s*")
_ARROWS = ("=>", "<=>")
# Operators without arguments, which can be written without parentheses
_NULLARY = {str(op): op for op in Op if not op.is_leaf and op.arity == 0}


class ParseError(ValueError):
    def __init__(self, msg: str, line: int | None = None) -> None:
        self.line = line
        super().__init__(msg if line is None else f"line {line}: {msg}")


class _Tokens:
    def __init__(self, text: str, line: int | None) -> None:
        self.tokens = _TOKEN.findall(text)
        self.pos = 0
        self.line = line

    def peek(self) -> str | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def next(self) -> str:
        token = self.peek()
        if token is None:
            msg = "Unexpected end of input"
            raise ParseError(msg, self.line)
        self.pos += 1
        return token

    def error(self, msg: str) -> ParseError:
        return ParseError(msg, self.line)


def _parse(tokens: _Tokens) -> Pattern:
    token = tokens.next()
    if token == ")":
        msg = "Unexpected ')'"
        raise tokens.error(msg)
    if token != "(":
        return _atom(token, tokens)
    head = tokens.next()
    try:
        op = Op(head)
    except ValueError:
        msg = f"Unknown operator {head!r}"
        raise tokens.error(msg) from None
    args = []
    while tokens.peek() != ")":
        if tokens.peek() is None:
            msg = f"Missing ')' for {op}"
            raise tokens.error(msg)
        args.append(_parse(tokens))
    tokens.next()
    try:
        return Call(op, tuple(args))
    except ValueError as err:
        raise tokens.error(str(err)) from err


def _atom(token: str, tokens: _Tokens) -> Pattern:
    if _INT.fullmatch(token):
        return Num(int(token))
    if token.startswith("?"):
        try:
            return Var(token)
        except ValueError as err:
            raise tokens.error(str(err)) from err
    if token in _ARROWS:
        msg = f"Unexpected {token!r}"
        raise tokens.error(msg)
    if token in _NULLARY:
        return Call(_NULLARY[token])
    return Symbol(token)


def parse_pattern(text: str, line: int | None = None) -> Pattern:
    tokens = _Tokens(text, line)
    pattern = _parse(tokens)
    if tokens.peek() is not None:
        msg = f"Unexpected {tokens.peek()!r} after {pattern}"
        raise tokens.error(msg)
    return pattern


def parse_term(text: str, line: int | None = None) -> Term:
    """
    Parse a term, which can't contain any pattern variables.
    """
    pattern = parse_pattern(text, line)
    if isinstance(pattern, Var) or not is_ground(pattern):
        msg = f"Terms can't contain pattern variables: {text.strip()}"
        raise ParseError(msg, line)
    return pattern


def _strip_comment(text: str) -> str:
    return text.split("#", 1)[0].strip()


def parse_rule(text: str, line: int = 1) -> list[Rewrite]:
    """
    Parse one rule, returning two rules if it is bidirectional and none if the line is empty.
    """
    text = _strip_comment(text)
    if not text:
        return []
    name = f"rule-{line}"
    if m := _NAME.match(text):
        name = m.group(1)
        text = text[m.end() :]
    tokens = _Tokens(text, line)
    lhs = _parse(tokens)
    arrow = tokens.peek()
    if arrow not in _ARROWS:
        msg = f"Expected '=>' or '<=>' after {lhs}, got {arrow!r}"
        raise tokens.error(msg)
    tokens.next()
    rhs = _parse(tokens)
    guard = _parse_guard(tokens)
    try:
        if arrow == "=>":
            return [rewrite(lhs).to(rhs, guard=guard, name=name)]
        return list(birewrite(lhs).to(rhs, guard=guard, name=name))
    except RewriteError as err:
        raise tokens.error(str(err)) from err


def _parse_guard(tokens: _Tokens) -> Guard | None:
    token = tokens.peek()
    if token is None:
        return None
    if token != "if":
        msg = f"Unexpected {token!r} after the right hand side"
        raise tokens.error(msg)
    tokens.next()
    name = tokens.next()
    if name not in GUARDS:
        msg = f"Unknown guard {name!r}, expected one of {sorted(GUARDS)}"
        raise tokens.error(msg)
    args = []
    while (token := tokens.peek()) is not None:
        arg = _atom(tokens.next(), tokens)
        if not isinstance(arg, Var):
            msg = f"Guard arguments must be pattern variables, got {token!r}"
            raise tokens.error(msg)
        args.append(arg)
    try:
        return GUARDS[name](*args)
    except RewriteError as err:
        raise tokens.error(str(err)) from err


def parse_rules(text: str) -> list[Rewrite]:
    """
    Parse a rule file. Raises a `ParseError` for the first invalid line or for a repeated rule name.
    """
    rules: list[Rewrite] = []
    seen: set[str] = set()
    for line, row in enumerate(text.splitlines(), start=1):
        for rule in parse_rule(row, line):
            if rule.name in seen:
                msg = f"Rule {rule.name!r} is defined twice"
                raise ParseError(msg, line)
            seen.add(rule.name)
            rules.append(rule)
    return rules


def read_rules(path: str | Path) -> list[Rewrite]:
    return parse_rules(Path(path).read_text())
