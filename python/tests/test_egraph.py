from __future__ import annotations

import graphviz
import pytest

from tensat.analysis import *
from tensat.declarations import *
from tensat.egraph import *
from tensat.parse import parse_term

x, y, z = Symbol("x"), Symbol("y"), Symbol("z")


def add(a: Pattern, b: Pattern) -> Call:
    return Call(Op.EWADD, (a, b))


def t(a: Pattern) -> Call:
    return Call(Op.TRANSPOSE, (a,))


def test_insert_is_hash_consed(egraph):
    a = egraph.insert(add(x, y))
    b = egraph.insert(add(x, y))
    assert a == b
    assert egraph.total_size == 3
    assert egraph.number_of_classes == 3


def test_shared_children_are_added_once(egraph):
    egraph.insert(add(t(x), t(x)))
    assert egraph.total_size == 3


def test_union(egraph):
    a, b = egraph.insert(x), egraph.insert(y)
    assert not egraph.equiv(a, b)
    root = egraph.union(a, b)
    assert egraph.find(a) == egraph.find(b) == root
    assert egraph.number_of_classes == 1
    assert egraph.union(a, b) == root


def test_find_is_idempotent_and_unions_are_permanent(egraph):
    a, b, c = egraph.insert(x), egraph.insert(y), egraph.insert(z)
    egraph.union(a, b)
    egraph.rebuild()
    egraph.union(b, c)
    egraph.rebuild()
    assert egraph.find(egraph.find(a)) == egraph.find(a)
    assert egraph.equiv(a, b)
    assert egraph.equiv(a, c)


def test_unionfind_union_of_non_canonical_ids():
    uf = UnionFind()
    a, b, c = uf.make(), uf.make(), uf.make()
    assert uf.union(a, b) == a
    # b is no longer canonical, its whole set has to move
    assert uf.union(c, b) == c
    assert uf.find(a) == uf.find(b) == uf.find(c) == c
    assert uf.union(a, c) == c


def test_union_keeps_class_with_more_parents(egraph):
    with_parents = egraph.insert(x)
    egraph.insert(t(x))
    egraph.insert(add(x, z))
    without_parents = egraph.insert(y)
    assert egraph.union(without_parents, with_parents) == with_parents


def test_congruence_is_restored_on_rebuild(egraph):
    tx, ty = egraph.insert(t(x)), egraph.insert(t(y))
    egraph.union(egraph.insert(x), egraph.insert(y))
    assert not egraph.equiv(tx, ty)
    assert not egraph.clean
    assert egraph.rebuild() == 1
    assert egraph.equiv(tx, ty)
    assert egraph.clean
    egraph.check_invariants()


def test_congruence_propagates_upwards(egraph):
    a, b = egraph.insert(t(t(add(x, z)))), egraph.insert(t(t(add(y, z))))
    egraph.union(egraph.insert(x), egraph.insert(y))
    assert egraph.rebuild() == 3
    assert egraph.equiv(a, b)
    egraph.check_invariants()


def test_rebuild_is_idempotent(egraph):
    egraph.insert(add(t(x), t(y)))
    egraph.union(egraph.insert(x), egraph.insert(y))
    egraph.rebuild()
    size, n_classes = egraph.total_size, egraph.number_of_classes
    assert egraph.rebuild() == 0
    assert (egraph.total_size, egraph.number_of_classes) == (size, n_classes)


def test_rebuild_deduplicates_nodes(egraph):
    root = egraph.insert(add(x, y))
    egraph.insert(add(x, x))
    egraph.union(egraph.insert(x), egraph.insert(y))
    egraph.rebuild()
    assert len(egraph[root]) == 1
    egraph.check_invariants()


def test_lookup(egraph):
    assert egraph.lookup(add(x, y)) is None
    root = egraph.insert(add(x, y))
    assert egraph.lookup(add(x, y)) == root
    assert add(x, y) in egraph
    assert add(y, y) not in egraph
    egraph.union(egraph.insert(x), egraph.insert(y))
    egraph.rebuild()
    assert egraph.lookup(add(y, y)) == egraph.find(root)


def test_instantiate(egraph):
    ix = egraph.insert(x)
    a = egraph.instantiate(add(Var("?a"), Num(1)), {Var("?a"): ix})
    assert a == egraph.insert(add(x, Num(1)))


def test_instantiate_unbound_variable(egraph):
    with pytest.raises(ValueError, match="not bound"):
        egraph.instantiate(t(Var("?a")), {})


def test_insert_variable(egraph):
    with pytest.raises(ValueError, match="pattern variable"):
        egraph.insert(Var("?a"))  # type: ignore[arg-type]


def test_classes_in_id_order(egraph):
    egraph.insert(add(x, y))
    ids = [c.id for c in egraph.classes()]
    assert ids == sorted(ids)


def test_nodes_keep_insertion_order(egraph):
    a = egraph.insert(add(x, y))
    b = egraph.insert(add(y, x))
    egraph.union(b, a)
    egraph.rebuild()
    ix, iy = egraph.find(egraph.insert(x)), egraph.find(egraph.insert(y))
    assert list(egraph[a]) == [ENode(Op.EWADD, (ix, iy)), ENode(Op.EWADD, (iy, ix))]


def test_representative(egraph):
    root = egraph.insert(add(x, t(y)))
    assert egraph.representative(root) == add(x, t(y))
    egraph.union(root, egraph.insert(z))
    egraph.rebuild()
    assert egraph.representative(root) == z


def test_check_invariants_finds_duplicates(egraph):
    egraph.insert(x)
    iy = egraph.insert(y)
    egraph[iy].nodes[ENode(Op.SYMBOL, payload="x")] = 100
    with pytest.raises(InvariantError, match="is in both"):
        egraph.check_invariants()


def test_analysis(analytic_egraph):
    i = analytic_egraph.insert(parse_term("(transpose (input a@2_3))"))
    assert analytic_egraph[i].data == TensorData.tensor((3, 2))


def test_merge_conflict(analytic_egraph):
    a = analytic_egraph.insert(parse_term("(input a@2_3)"))
    b = analytic_egraph.insert(parse_term("(input b@3_2)"))
    with pytest.raises(MergeConflictError, match="different shapes") as excinfo:
        analytic_egraph.union(a, b)
    notes = "\n".join(excinfo.value.__notes__)
    assert "(input a@2_3)" in notes
    assert "(input b@3_2)" in notes
    # Nothing was merged
    assert not analytic_egraph.equiv(a, b)


def test_merge_fills_in_unknown_shapes(analytic_egraph):
    unknown = parse_term("(matmul 0 (input a@2_3) Imatmul)")
    m = analytic_egraph.insert(unknown)
    outer = analytic_egraph.insert(Call(Op.TRANSPOSE, (unknown,)))
    assert analytic_egraph[outer].data == TensorData.tensor(None)
    analytic_egraph.union(m, analytic_egraph.insert(parse_term("(input a@2_3)")))
    analytic_egraph.rebuild()
    assert analytic_egraph[m].data == TensorData.tensor((2, 3))
    assert analytic_egraph[outer].data == TensorData.tensor((3, 2))


def test_graphviz(egraph):
    egraph.insert(add(x, t(y)))
    g = egraph.graphviz()
    assert isinstance(g, graphviz.Digraph)
    assert "cluster_" in g.source
    assert "ewadd" in g.source
