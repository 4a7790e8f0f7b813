"""
The default axioms about tensor operators, used both for optimizing and as the base of verification.

Operators taking an activation are only related when the activation is `ACTNONE` (0).
"""

from __future__ import annotations

from .parse import parse_rules

__all__ = ["AXIOMS", "AXIOMS_TEXT"]

AXIOMS_TEXT = """
# ewadd and ewmul are associative and commutative
ewadd-assoc: (ewadd ?x (ewadd ?y ?z)) <=> (ewadd (ewadd ?x ?y) ?z)
ewadd-comm: (ewadd ?x ?y) => (ewadd ?y ?x)
ewmul-assoc: (ewmul ?x (ewmul ?y ?z)) <=> (ewmul (ewmul ?x ?y) ?z)
ewmul-comm: (ewmul ?x ?y) => (ewmul ?y ?x)
ewmul-dist: (ewmul (ewadd ?x ?y) ?z) <=> (ewadd (ewmul ?x ?z) (ewmul ?y ?z))

# smul distributes and commutes with the linear operators
smul-assoc: (smul (smul ?x ?y) ?w) <=> (smul ?x (smul ?y ?w))
smul-dist: (smul (ewadd ?x ?y) ?w) <=> (ewadd (smul ?x ?w) (smul ?y ?w))
smul-ewmul: (smul (ewmul ?x ?y) ?w) <=> (ewmul ?x (smul ?y ?w))
smul-transpose: (smul (transpose ?x) ?w) <=> (transpose (smul ?x ?w))
smul-matmul: (smul (matmul 0 ?x ?y) ?w) <=> (matmul 0 ?x (smul ?y ?w))
smul-one: (smul ?x 1) => ?x

# transpose
transpose-involution: (transpose (transpose ?x)) => ?x
transpose-matmul: (transpose (matmul 0 ?x ?y)) <=> (matmul 0 (transpose ?y) (transpose ?x))
transpose-ewadd: (transpose (ewadd ?x ?y)) <=> (ewadd (transpose ?x) (transpose ?y)) if same_shape ?x ?y
transpose-ewmul: (transpose (ewmul ?x ?y)) <=> (ewmul (transpose ?x) (transpose ?y)) if same_shape ?x ?y
relu-transpose: (relu (transpose ?x)) <=> (transpose (relu ?x))

# matmul
matmul-assoc: (matmul 0 ?x (matmul 0 ?y ?z)) <=> (matmul 0 (matmul 0 ?x ?y) ?z)
matmul-linear-left: (matmul 0 ?x (ewadd ?y ?z)) <=> (ewadd (matmul 0 ?x ?y) (matmul 0 ?x ?z))
matmul-linear-right: (matmul 0 (ewadd ?x ?y) ?z) <=> (ewadd (matmul 0 ?x ?z) (matmul 0 ?y ?z))

# identities
matmul-identity: (matmul 0 ?x Imatmul) => ?x
ewmul-identity: (ewmul ?x Iewmul) => ?x
"""

AXIOMS = parse_rules(AXIOMS_TEXT)
