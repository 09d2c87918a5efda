from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, Flag
from typing import TYPE_CHECKING, Iterator, Optional

import numpy as np

from cctmerge.common.errors import DiagnosticError
from cctmerge.utils.interval_set import IntervalSet

if TYPE_CHECKING:  # pragma: no cover - typing only
    from cctmerge.services.derivation import MetricFormula
    from cctmerge.services.metric_catalog import MetricCatalog

# MARK: - Enums


class MetricKind(Enum):
    INCLUSIVE = "inclusive"
    EXCLUSIVE = "exclusive"
    DERIVED = "derived"


class NodeKind(Enum):
    ROOT = "root"
    FRAME = "frame"
    CALL_SITE = "call_site"
    LOOP = "loop"
    STATEMENT = "statement"


class StructKind(Enum):
    ROOT = "root"
    LOAD_MODULE = "load_module"
    FILE = "file"
    PROCEDURE = "procedure"
    LOOP = "loop"


class NormalizePolicy(Enum):
    NONE = "none"
    SAFE = "safe"
    ALL = "all"


class MergePolicy(Enum):
    CREATE_METRIC = "create_metric"  # one source metric per input (or group)
    MERGE_BY_NAME = "merge_by_name"  # inputs share columns by metric name


class SummaryStat(Enum):
    SUM = "sum"
    MEAN = "mean"
    STDDEV = "stddev"
    COEF_VAR = "cv"
    MIN = "min"
    MAX = "max"


class ReadFlag(Flag):
    NONE = 0
    MAKE_INCL_EXCL = 1  # each raw event yields an inclusive and an exclusive column


class MergeFlag(Flag):
    NONE = 0
    NORMALIZE_TRACE_IDS = 1


# MARK: - Metrics


@dataclass
class MetricDBInfo:
    """Location of a metric inside a per-thread metric database."""

    db_id: int
    db_num_metrics: int


@dataclass(eq=False)
class MetricDescriptor:
    name: str
    kind: MetricKind
    base_name: str = ""
    unit: Optional[str] = None
    period: float = 1.0
    is_visible: bool = True
    is_computed: bool = False
    formula: Optional["MetricFormula"] = None
    db_info: Optional[MetricDBInfo] = None
    metric_id: int = -1  # position in the catalog, assigned on insertion

    def __post_init__(self):
        if not self.base_name:
            self.base_name = self.name
        if self.kind is MetricKind.DERIVED and self.formula is None:
            raise ValueError(f"Derived metric '{self.name}' requires a formula")

    def has_db_info(self) -> bool:
        return self.db_info is not None

    def zero_db_info(self) -> None:
        self.db_info = None


# MARK: - Calling context tree


@dataclass(eq=False)
class CCTNode:
    kind: NodeKind
    name: str
    index: int
    parent: Optional[int]
    values: np.ndarray
    file: Optional[str] = None
    line: Optional[int] = None
    children: list[int] = field(default_factory=list)
    structure_id: Optional[int] = None
    trace_ids: set[tuple[int, int]] = field(default_factory=set)

    def key(self) -> tuple:
        """Identity used to match the same context across profiles."""
        return (self.kind, self.name, self.file, self.line)


class CallingContextTree:
    """Arena of :class:`CCTNode` objects linked by integer indices.

    Nodes are appended to the arena as they are created; structural edits
    (insertions, splices) only relink indices. Once
    :meth:`make_dense_preorder_ids` has run, the arena is compacted so that a
    node's index is its preorder id, and the tree no longer accepts structural
    changes.
    """

    ROOT_NAME = "<program root>"

    def __init__(self, width: int = 0):
        self._width = width
        self._ids_assigned = False
        self.nodes: list[CCTNode] = []
        # Inclusive metric ids whose subtree sums have already been folded in
        self.aggregated_inclusive = IntervalSet()
        self._new_node(NodeKind.ROOT, self.ROOT_NAME, None)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def root(self) -> CCTNode:
        return self.nodes[0]

    @property
    def width(self) -> int:
        return self._width

    @property
    def ids_assigned(self) -> bool:
        return self._ids_assigned

    def node(self, index: int) -> CCTNode:
        return self.nodes[index]

    def children_of(self, node: CCTNode) -> list[CCTNode]:
        return [self.nodes[i] for i in node.children]

    def __len__(self) -> int:
        return sum(1 for _ in self.preorder())

    # ------------------------------------------------------------------
    # Structural edits
    # ------------------------------------------------------------------
    def add_child(
        self,
        parent: CCTNode,
        kind: NodeKind,
        name: str,
        file: Optional[str] = None,
        line: Optional[int] = None,
        values: Optional[np.ndarray] = None,
    ) -> CCTNode:
        self._check_mutable()
        node = self._new_node(kind, name, parent.index, file=file, line=line)
        if values is not None:
            node.values[: len(values)] = values
        parent.children.append(node.index)
        return node

    def find_child(self, parent: CCTNode, key: tuple) -> Optional[CCTNode]:
        for index in parent.children:
            child = self.nodes[index]
            if child.key() == key:
                return child
        return None

    def insert_between(
        self,
        parent: CCTNode,
        children: list[CCTNode],
        kind: NodeKind,
        name: str,
        file: Optional[str] = None,
        line: Optional[int] = None,
    ) -> CCTNode:
        """Create a node under ``parent`` and move ``children`` beneath it.

        The new node takes the sibling position of the first moved child.
        """
        self._check_mutable()
        moved = {child.index for child in children}
        if not moved or not moved.issubset(parent.children):
            raise ValueError("insert_between requires existing children of parent")

        node = self._new_node(kind, name, parent.index, file=file, line=line)
        position = min(parent.children.index(i) for i in moved)
        parent.children = [i for i in parent.children if i not in moved]
        parent.children.insert(position, node.index)
        for child in children:
            child.parent = node.index
            node.children.append(child.index)
        return node

    def splice(self, node: CCTNode) -> CCTNode:
        """Remove ``node`` and hand its children and own values to its parent.

        Children are merged into matching siblings under the parent. Returns
        the parent.
        """
        self._check_mutable()
        if node.parent is None:
            raise ValueError("Cannot splice the root node")
        parent = self.nodes[node.parent]
        position = parent.children.index(node.index)
        parent.children.pop(position)
        parent.values += node.values
        parent.trace_ids |= node.trace_ids
        for child_index in list(node.children):
            self.adopt(parent, self.nodes[child_index])
        node.children = []
        node.parent = None
        return parent

    def adopt(self, parent: CCTNode, child: CCTNode) -> CCTNode:
        """Attach ``child`` under ``parent``, merging it into a matching sibling."""
        self._check_mutable()
        twin = self.find_child(parent, child.key())
        if twin is None or twin is child:
            child.parent = parent.index
            if child.index not in parent.children:
                parent.children.append(child.index)
            return child
        twin.values += child.values
        twin.trace_ids |= child.trace_ids
        if twin.structure_id is None:
            twin.structure_id = child.structure_id
        for grandchild_index in list(child.children):
            self.adopt(twin, self.nodes[grandchild_index])
        child.children = []
        child.parent = None
        return twin

    def ensure_width(self, width: int) -> None:
        """Grow every node's value array to ``width`` entries (zero filled)."""
        if width < self._width:
            raise ValueError(f"Cannot shrink metric arrays from {self._width} to {width}")
        if width == self._width:
            return
        for node in self.nodes:
            grown = np.zeros(width, dtype=np.float64)
            grown[: len(node.values)] = node.values
            node.values = grown
        self._width = width

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------
    def preorder(self) -> Iterator[CCTNode]:
        stack = [0]
        while stack:
            node = self.nodes[stack.pop()]
            yield node
            stack.extend(reversed(node.children))

    def postorder(self) -> list[CCTNode]:
        """Return reachable nodes with every child listed before its parent."""
        order = list(self.preorder())
        order.reverse()
        return order

    # ------------------------------------------------------------------
    # Finalize
    # ------------------------------------------------------------------
    def make_dense_preorder_ids(self) -> None:
        if self._ids_assigned:
            raise DiagnosticError("Dense preorder ids have already been assigned")

        order = list(self.preorder())
        remap = {node.index: new_id for new_id, node in enumerate(order)}
        for node in order:
            node.index = remap[node.index]
            node.parent = remap[node.parent] if node.parent is not None else None
            node.children = [remap[i] for i in node.children]
        self.nodes = order
        self._ids_assigned = True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _new_node(
        self,
        kind: NodeKind,
        name: str,
        parent: Optional[int],
        file: Optional[str] = None,
        line: Optional[int] = None,
    ) -> CCTNode:
        node = CCTNode(
            kind=kind,
            name=name,
            index=len(self.nodes),
            parent=parent,
            values=np.zeros(self._width, dtype=np.float64),
            file=file,
            line=line,
        )
        self.nodes.append(node)
        return node

    def _check_mutable(self) -> None:
        if self._ids_assigned:
            raise DiagnosticError(
                "The calling context tree is finalized; structure changes must happen before dense ids are assigned"
            )


# MARK: - Static structure


@dataclass(eq=False)
class StructureNode:
    kind: StructKind
    name: str
    index: int
    parent: Optional[int]
    begin_line: Optional[int] = None
    end_line: Optional[int] = None
    path: Optional[str] = None
    children: list[int] = field(default_factory=list)

    def contains_line(self, line: Optional[int]) -> bool:
        if line is None or self.begin_line is None or self.end_line is None:
            return False
        return self.begin_line <= line <= self.end_line


class StructureTree:
    """Static program structure: load modules, files, procedures and loops."""

    def __init__(self, name: str = ""):
        self.name = name
        self.nodes: list[StructureNode] = [
            StructureNode(kind=StructKind.ROOT, name=name, index=0, parent=None)
        ]

    @property
    def root(self) -> StructureNode:
        return self.nodes[0]

    def is_empty(self) -> bool:
        return not self.root.children

    def add(
        self,
        parent: StructureNode,
        kind: StructKind,
        name: str,
        begin_line: Optional[int] = None,
        end_line: Optional[int] = None,
        path: Optional[str] = None,
    ) -> StructureNode:
        node = StructureNode(
            kind=kind,
            name=name,
            index=len(self.nodes),
            parent=parent.index,
            begin_line=begin_line,
            end_line=end_line,
            path=path,
        )
        self.nodes.append(node)
        parent.children.append(node.index)
        return node

    def children_of(self, node: StructureNode) -> list[StructureNode]:
        return [self.nodes[i] for i in node.children]

    def procedures(self) -> Iterator[StructureNode]:
        return (node for node in self.nodes if node.kind is StructKind.PROCEDURE)

    def enclosing_file(self, node: StructureNode) -> Optional[StructureNode]:
        current: Optional[StructureNode] = node
        while current is not None:
            if current.kind is StructKind.FILE:
                return current
            current = self.nodes[current.parent] if current.parent is not None else None
        return None


# MARK: - Profile


@dataclass(eq=False)
class Profile:
    name: str
    cct: CallingContextTree
    catalog: "MetricCatalog"
    structure: Optional[StructureTree] = None
    source_paths: list[str] = field(default_factory=list)
    title: Optional[str] = None

    def trace_id_map(self) -> dict[str, int]:
        """Map ``"<input>:<trace id>"`` to the node's dense id."""
        mapping: dict[str, int] = {}
        for node in self.cct.preorder():
            for input_index, trace_id in sorted(node.trace_ids):
                mapping[f"{input_index}:{trace_id}"] = node.index
        return mapping
