"""
The e-graph: a congruence closed set of e-classes, each holding e-nodes which are known to be equal.

Unions are cheap and only record what has to be repaired. `EGraph.rebuild` restores the invariants in one batch,
it is called once per round of rewriting instead of after every union.
"""

from __future__ import annotations

import itertools
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeAlias

import graphviz
from typing_extensions import assert_never

from .analysis import *
from .cost import CostOracle, OracleError
from .declarations import *

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping, Sequence


__all__ = ["ClassId", "EClass", "EGraph", "ENode", "InvariantError", "UnionFind"]

ClassId: TypeAlias = int


class InvariantError(AssertionError):
    """
    The e-graph is not congruence closed, or it contains non canonical e-nodes or duplicate e-nodes.
    """


@dataclass(frozen=True)
class ENode:
    """
    One operator applied to e-classes. Leaves have no children and hold their value in the payload instead.
    """

    op: Op
    children: tuple[ClassId, ...] = ()
    payload: int | str | None = None

    def __str__(self) -> str:
        if self.op.is_leaf:
            return str(self.payload)
        if not self.children:
            return str(self.op)
        return f"({self.op} {' '.join(map(str, self.children))})"


@dataclass
class EClass:
    id: ClassId
    # Mapping of e-node to the order it was first added in, kept sorted by that order
    nodes: dict[ENode, int] = field(default_factory=dict)
    # The e-nodes which have this class as a child, and the class they are in. May hold stale ids mid-round.
    parents: list[tuple[ENode, ClassId]] = field(default_factory=list)
    data: TensorData | None = None

    def __iter__(self) -> Iterator[ENode]:
        return iter(self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)


@dataclass
class UnionFind:
    _parents: list[ClassId] = field(default_factory=list)

    def make(self) -> ClassId:
        i = len(self._parents)
        self._parents.append(i)
        return i

    def find(self, i: ClassId) -> ClassId:
        root = i
        while self._parents[root] != root:
            root = self._parents[root]
        # Path compression
        while self._parents[i] != root:
            self._parents[i], i = root, self._parents[i]
        return root

    def union(self, root: ClassId, other: ClassId) -> ClassId:
        """
        Merge the set of `other` into the set of `root`, returning the canonical id of the result.
        """
        root, other = self.find(root), self.find(other)
        self._parents[other] = root
        return root

    def __len__(self) -> int:
        return len(self._parents)


@dataclass
class EGraph:
    """
    An e-graph over the tensor operator vocabulary.

    If an `analysis` oracle is given, every e-class carries the `TensorData` computed by it, and merging two classes
    with incompatible metadata raises a `MergeConflictError`.
    """

    analysis: CostOracle | None = None

    _unionfind: UnionFind = field(default_factory=UnionFind, repr=False)
    _classes: dict[ClassId, EClass] = field(default_factory=dict, repr=False)
    # Hash-cons: canonical e-node to the class that contains it
    _memo: dict[ENode, ClassId] = field(default_factory=dict, repr=False)
    # Parent e-nodes whose children were merged, and which need to be re-canonicalized
    _pending: deque[tuple[ENode, ClassId]] = field(default_factory=deque, repr=False)
    # Parent e-nodes whose children's metadata changed
    _analysis_pending: deque[tuple[ENode, ClassId]] = field(default_factory=deque, repr=False)
    _order: Iterator[int] = field(default_factory=itertools.count, repr=False)
    _clean: bool = field(default=True, repr=False)

    ##
    # Union-find
    ##

    def find(self, i: ClassId) -> ClassId:
        return self._unionfind.find(i)

    def equiv(self, a: ClassId, b: ClassId) -> bool:
        return self.find(a) == self.find(b)

    ##
    # Adding
    ##

    def add(self, node: ENode) -> ClassId:
        """
        Add an e-node, returning the class which already contains it if there is one.
        """
        node = self.canonicalize(node)
        existing = self._memo.get(node)
        if existing is not None:
            return self.find(existing)
        # Compute the metadata first so that nothing is changed if the oracle rejects the node
        data = self._make(node)
        i = self._unionfind.make()
        self._classes[i] = EClass(i, {node: next(self._order)}, data=data)
        for child in dict.fromkeys(node.children):
            self._classes[child].parents.append((node, i))
        self._memo[node] = i
        return i

    def insert(self, term: Term) -> ClassId:
        """
        Add a term, inserting its children first.
        """
        match term:
            case Num(value):
                return self.add(ENode(Op.NUM, payload=value))
            case Symbol(name):
                return self.add(ENode(Op.SYMBOL, payload=name))
            case Call(op, args):
                return self.add(ENode(op, tuple(self.insert(a) for a in args)))
            case Var(name):
                msg = f"Cannot insert pattern variable {name}, only ground terms can be inserted"
                raise ValueError(msg)
            case _:
                assert_never(term)

    def instantiate(self, pattern: Pattern, subst: Mapping[Var, ClassId]) -> ClassId:
        """
        Add a pattern, using the classes bound in `subst` for its variables.
        """
        match pattern:
            case Var():
                try:
                    return self.find(subst[pattern])
                except KeyError:
                    msg = f"Variable {pattern} is not bound"
                    raise ValueError(msg) from None
            case Call(op, args):
                return self.add(ENode(op, tuple(self.instantiate(a, subst) for a in args)))
            case Num() | Symbol():
                return self.insert(pattern)
            case _:
                assert_never(pattern)

    def lookup(self, term: Term) -> ClassId | None:
        """
        Returns the class of a ground term if it is in the e-graph, without adding it.
        """
        match term:
            case Num(value):
                node = ENode(Op.NUM, payload=value)
            case Symbol(name):
                node = ENode(Op.SYMBOL, payload=name)
            case Call(op, args):
                children = []
                for arg in args:
                    child = self.lookup(arg)
                    if child is None:
                        return None
                    children.append(child)
                node = ENode(op, tuple(children))
            case Var():
                return None
            case _:
                assert_never(term)
        found = self._memo.get(self.canonicalize(node))
        return None if found is None else self.find(found)

    def canonicalize(self, node: ENode) -> ENode:
        if not node.children:
            return node
        return ENode(node.op, tuple(self.find(c) for c in node.children), node.payload)

    def evaluate(self, node: ENode) -> TensorData | None:
        """
        Metadata the analysis would give `node`, without adding it. Raises `OracleError` if it is rejected.
        """
        return self._make(self.canonicalize(node))

    def _make(self, node: ENode) -> TensorData | None:
        if self.analysis is None:
            return None
        children = [self._classes[self.find(c)].data for c in node.children]
        _, data = self.analysis.evaluate(node.op, children, node.payload)
        return data

    ##
    # Merging
    ##

    def union(self, a: ClassId, b: ClassId) -> ClassId:
        """
        Merge two classes, returning the canonical id of the result.

        The class with more parents is kept as the canonical one. Congruence is only restored on `rebuild`.
        """
        a, b = self.find(a), self.find(b)
        if a == b:
            return a
        if len(self._classes[a].parents) < len(self._classes[b].parents):
            a, b = b, a
        keep, gone = self._classes[a], self._classes[b]
        try:
            data = merge_data(keep.data, gone.data)
        except MergeConflictError as err:
            err.add_note(self._describe(a))
            err.add_note(self._describe(b))
            raise

        self._unionfind.union(a, b)
        self._clean = False
        self._pending.extend(gone.parents)
        self._pending.extend(keep.parents)
        for node, order in gone.nodes.items():
            keep.nodes[node] = min(order, keep.nodes.get(node, order))
        keep.parents.extend(gone.parents)
        if data != keep.data or data != gone.data:
            self._analysis_pending.extend(keep.parents)
        keep.data = data
        del self._classes[b]
        return a

    def rebuild(self) -> int:
        """
        Restore the hash-cons, congruence and canonicalization invariants after a batch of unions.

        Returns the number of unions caused by congruence. Calling it again without new unions does nothing.
        """
        n_unions = 0
        while self._pending or self._analysis_pending:
            while self._pending:
                node, i = self._pending.popleft()
                node = self.canonicalize(node)
                existing = self._memo.get(node)
                if existing is None:
                    self._memo[node] = self.find(i)
                elif not self.equiv(existing, i):
                    self.union(existing, i)
                    n_unions += 1
            while self._analysis_pending:
                node, i = self._analysis_pending.popleft()
                self._repair_data(self.canonicalize(node), self.find(i))
        self._rebuild_classes()
        self._clean = True
        return n_unions

    def _repair_data(self, node: ENode, i: ClassId) -> None:
        eclass = self._classes[i]
        try:
            data = merge_data(eclass.data, self._make(node))
        except (MergeConflictError, OracleError) as err:
            msg = f"Metadata of e-class {i} is inconsistent after merging: {err}"
            conflict = MergeConflictError(msg)
            conflict.add_note(self._describe(i))
            raise conflict from err
        if data != eclass.data:
            eclass.data = data
            self._analysis_pending.extend(eclass.parents)

    def _rebuild_classes(self) -> None:
        self._memo.clear()
        for eclass in self._classes.values():
            nodes: dict[ENode, int] = {}
            for node, order in eclass.nodes.items():
                node = self.canonicalize(node)  # noqa: PLW2901
                nodes[node] = min(order, nodes.get(node, order))
            eclass.nodes = dict(sorted(nodes.items(), key=lambda kv: kv[1]))
            parents: dict[ENode, ClassId] = {}
            for node, parent in eclass.parents:
                parents.setdefault(self.canonicalize(node), self.find(parent))
            eclass.parents = list(parents.items())
            for node in eclass.nodes:
                self._memo[node] = eclass.id

    @property
    def clean(self) -> bool:
        """
        Whether there are no unions since the last rebuild.
        """
        return self._clean

    ##
    # Inspecting
    ##

    def classes(self) -> list[EClass]:
        """
        The canonical classes, in order of their ids.
        """
        return [self._classes[i] for i in sorted(self._classes)]

    def __getitem__(self, i: ClassId) -> EClass:
        return self._classes[self.find(i)]

    def __contains__(self, term: Term) -> bool:
        return self.lookup(term) is not None

    @property
    def number_of_classes(self) -> int:
        return len(self._classes)

    @property
    def total_size(self) -> int:
        """
        Total number of e-nodes.
        """
        return sum(len(c) for c in self._classes.values())

    def node_term(self, node: ENode, args: Sequence[Term]) -> Term:
        """
        Build a term from an e-node, using the given terms for its children.
        """
        match node.op:
            case Op.NUM:
                assert isinstance(node.payload, int)
                return Num(node.payload)
            case Op.SYMBOL:
                assert isinstance(node.payload, str)
                return Symbol(node.payload)
            case _:
                return Call(node.op, tuple(args))

    def representative(self, i: ClassId) -> Term:
        """
        The smallest term in a class. Used to describe classes in error messages.
        """
        best: dict[ClassId, tuple[int, Term]] = {}
        changed = True
        while changed:
            changed = False
            for eclass in self._classes.values():
                for node in eclass.nodes:
                    children = [best.get(self.find(c)) for c in node.children]
                    if any(c is None for c in children):
                        continue
                    size = 1 + sum(c[0] for c in children if c)
                    if eclass.id not in best or size < best[eclass.id][0]:
                        best[eclass.id] = size, self.node_term(node, [c[1] for c in children if c])
                        changed = True
        try:
            return best[self.find(i)][1]
        except KeyError:
            msg = f"E-class {i} does not contain any finite term"
            raise ValueError(msg) from None

    def _describe(self, i: ClassId) -> str:
        try:
            term = str(self.representative(i))
        except ValueError:
            term = "<cyclic>"
        return f"e-class {i}: {term} with {self._classes[self.find(i)].data}"

    def check_invariants(self) -> None:
        """
        Raise an `InvariantError` if the e-graph is not canonical, deduplicated and congruence closed.

        Only meaningful after a rebuild.
        """
        seen: dict[ENode, ClassId] = {}
        for i, eclass in self._classes.items():
            if self.find(i) != i or eclass.id != i:
                msg = f"E-class {i} is not canonical"
                raise InvariantError(msg)
            for node in eclass.nodes:
                if self.canonicalize(node) != node:
                    msg = f"E-node {node} in e-class {i} has non canonical children"
                    raise InvariantError(msg)
                if node in seen:
                    msg = f"E-node {node} is in both e-class {seen[node]} and e-class {i}"
                    raise InvariantError(msg)
                seen[node] = i
                if self._memo.get(node) != i:
                    msg = f"Hash-cons entry for {node} does not point at e-class {i}"
                    raise InvariantError(msg)

    def graphviz(self) -> graphviz.Digraph:
        """
        Render the e-graph, with a dotted cluster for every e-class and an edge from each e-node to its children.
        """
        g = graphviz.Digraph("egraph", graph_attr={"compound": "true", "clusterrank": "local"})
        classes = self.classes()
        for eclass in classes:
            with g.subgraph(name=f"cluster_{eclass.id}") as sub:
                label = str(eclass.id) if eclass.data is None else f"{eclass.id}: {eclass.data}"
                sub.attr(style="dotted", label=label)
                for n, node in enumerate(eclass.nodes):
                    text = str(node.payload) if node.op.is_leaf else str(node.op)
                    sub.node(f"{eclass.id}.{n}", label=text)
        for eclass in classes:
            for n, node in enumerate(eclass.nodes):
                for child in node.children:
                    child = self.find(child)  # noqa: PLW2901
                    g.edge(f"{eclass.id}.{n}", f"{child}.0", lhead=f"cluster_{child}")
        return g
