"""
Arena-backed phylogenetic tree.

Nodes live in a flat ``NodeStore`` keyed by a stable integer handle that is
issued once, when the node is created, from a monotonically increasing
counter. Parent/child relations are expressed as handles, so the render diff
is a plain comparison of handle sets and no node ever references another
node object directly.

The child list of a node is modelled as a two-state union:

- ``Expanded(children)``: the children are live and laid out.
- ``Collapsed(saved_children)``: the children are hidden but retained.

A leaf is ``Expanded(())``. Because a node holds exactly one of the two
variants, "both populated" cannot be represented.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from cladescope.errors import TreeOperationError


# ===================================================================
# 1. ANNOTATION PAYLOAD
# ===================================================================


@dataclass
class Property:
    """Typed key/value annotation (phyloXML ``property`` element)."""

    ref: str
    value: Any
    datatype: str = "xsd:string"
    applies_to: str = "node"
    unit: Optional[str] = None


@dataclass
class Taxonomy:
    code: Optional[str] = None
    scientific_name: Optional[str] = None
    common_name: Optional[str] = None
    rank: Optional[str] = None
    synonyms: List[str] = field(default_factory=list)
    id_value: Optional[str] = None
    id_provider: Optional[str] = None


@dataclass
class Sequence:
    symbol: Optional[str] = None
    name: Optional[str] = None
    gene_name: Optional[str] = None
    accession: Optional[str] = None
    accession_source: Optional[str] = None
    mol_seq: Optional[str] = None
    location: Optional[str] = None
    type: Optional[str] = None


@dataclass
class Confidence:
    value: float
    type: Optional[str] = None
    stddev: Optional[float] = None


@dataclass
class Events:
    duplications: int = 0
    speciations: int = 0
    losses: int = 0


@dataclass
class Distribution:
    desc: str


@dataclass
class BranchColor:
    red: int
    green: int
    blue: int

    def to_css(self) -> str:
        return f"rgb({self.red},{self.green},{self.blue})"


# ===================================================================
# 2. STRUCTURE UNION
# ===================================================================


@dataclass(frozen=True)
class Expanded:
    """Live children, in display order. Empty for a leaf."""

    children: Tuple[int, ...] = ()


@dataclass(frozen=True)
class Collapsed:
    """Children hidden by a collapse; restored verbatim on expand."""

    saved_children: Tuple[int, ...]


Structure = Union[Expanded, Collapsed]


# ===================================================================
# 3. NODE RECORD
# ===================================================================


class Node:
    """
    A single tree node stored in a ``NodeStore``.

    Uses ``__slots__`` because large trees allocate many nodes and the render
    pass touches every visible one.
    """

    __slots__ = (
        "id",
        "parent",
        "structure",
        "name",
        "branch_length",
        "confidences",
        "properties",
        "taxonomies",
        "sequences",
        "distributions",
        "events",
        "color",
        "width",
        # derived render state, recomputed every pass
        "dist_to_root",
        "x",
        "y",
        "x0",
        "y0",
        "hide",
        "has_visualization",
        "collapsed_label",
        "feature_label",
    )

    def __init__(
        self,
        node_id: int,
        parent: Optional[int] = None,
        name: str = "",
        branch_length: Optional[float] = None,
    ):
        self.id = node_id
        self.parent = parent
        self.structure: Structure = Expanded()
        self.name = name
        self.branch_length = branch_length
        self.confidences: List[Confidence] = []
        self.properties: List[Property] = []
        self.taxonomies: List[Taxonomy] = []
        self.sequences: List[Sequence] = []
        self.distributions: List[Distribution] = []
        self.events: Optional[Events] = None
        self.color: Optional[BranchColor] = None
        self.width: Optional[float] = None

        self.dist_to_root = 0.0
        self.x = 0.0
        self.y = 0.0
        self.x0: Optional[float] = None
        self.y0: Optional[float] = None
        self.hide = False
        self.has_visualization = False
        self.collapsed_label: Optional[str] = None
        self.feature_label: Optional[str] = None

    def __repr__(self) -> str:
        return f"Node({self.id}, '{self.name}')"

    @property
    def children(self) -> Tuple[int, ...]:
        """Live children; empty when collapsed or a leaf."""
        if isinstance(self.structure, Expanded):
            return self.structure.children
        return ()

    @property
    def saved_children(self) -> Tuple[int, ...]:
        if isinstance(self.structure, Collapsed):
            return self.structure.saved_children
        return ()

    @property
    def all_children(self) -> Tuple[int, ...]:
        """Children regardless of collapse state."""
        if isinstance(self.structure, Collapsed):
            return self.structure.saved_children
        return self.structure.children

    def is_collapsed(self) -> bool:
        return isinstance(self.structure, Collapsed)

    def is_leaf(self) -> bool:
        """True when the node has no descendants at all (live or saved)."""
        return not self.all_children

    def is_external(self) -> bool:
        """True when the node is drawn as a tip: a leaf or a collapsed node."""
        return not self.children

    def property_values(self, ref: str, applies_to: Optional[str] = "node") -> List[Any]:
        return [
            p.value
            for p in self.properties
            if p.ref == ref and (applies_to is None or p.applies_to == applies_to)
        ]

    def is_display_eligible(self) -> bool:
        """True when the node carries at least one searchable data field."""
        if self.name or self.taxonomies or self.sequences:
            return True
        return any(p.applies_to == "node" for p in self.properties)


# ===================================================================
# 4. NODE STORE
# ===================================================================


class NodeStore:
    """
    Flat arena of nodes indexed by stable integer handles.

    Handles start at 1 and are never reused, so a handle identifies the same
    node across collapse, expand, reroot and every render pass.
    """

    def __init__(self) -> None:
        self.nodes: Dict[int, Node] = {}
        self.root: Optional[int] = None
        self.rooted: Optional[bool] = None
        self.name: Optional[str] = None
        self._counter = 0

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, handle: object) -> bool:
        return handle in self.nodes

    def __getitem__(self, handle: int) -> Node:
        try:
            return self.nodes[handle]
        except KeyError:
            raise TreeOperationError(f"unknown node handle {handle}") from None

    def __iter__(self) -> Iterator[Node]:
        return iter(self.nodes.values())

    def is_empty(self) -> bool:
        return self.root is None or not self.nodes

    # ------------------------------------------------------------------
    # construction
    # ------------------------------------------------------------------

    def new_node(
        self,
        parent: Optional[int] = None,
        name: str = "",
        branch_length: Optional[float] = None,
    ) -> Node:
        """Create a node, attach it as the last child of ``parent`` and return it."""
        self._counter += 1
        node = Node(self._counter, parent=parent, name=name, branch_length=branch_length)
        self.nodes[node.id] = node
        if parent is None:
            if self.root is None:
                self.root = node.id
        else:
            parent_node = self[parent]
            if parent_node.is_collapsed():
                raise TreeOperationError(
                    f"cannot attach a child to collapsed node {parent}"
                )
            self.set_children(parent, parent_node.children + (node.id,))
        return node

    def set_children(self, handle: int, children: Tuple[int, ...]) -> None:
        """Replace the child list of ``handle``, keeping its collapse state."""
        node = self[handle]
        children = tuple(children)
        if isinstance(node.structure, Collapsed) and children:
            node.structure = Collapsed(children)
        else:
            node.structure = Expanded(children)
        for child in children:
            self.nodes[child].parent = handle

    def remove(self, handle: int) -> None:
        self.nodes.pop(handle, None)

    # ------------------------------------------------------------------
    # collapse state
    # ------------------------------------------------------------------

    def collapse(self, handle: int) -> bool:
        """Move live children into the saved slot. Returns True if changed."""
        node = self[handle]
        if isinstance(node.structure, Expanded) and node.structure.children:
            node.structure = Collapsed(node.structure.children)
            return True
        return False

    def expand(self, handle: int) -> bool:
        """Restore saved children. Returns True if changed."""
        node = self[handle]
        if isinstance(node.structure, Collapsed):
            node.structure = Expanded(node.structure.saved_children)
            return True
        return False

    def toggle_collapse(self, handle: int) -> None:
        if not self.expand(handle):
            self.collapse(handle)

    # ------------------------------------------------------------------
    # navigation
    # ------------------------------------------------------------------

    def ancestors(self, handle: int) -> List[int]:
        """Handles from the parent of ``handle`` up to the root."""
        result: List[int] = []
        current = self[handle].parent
        while current is not None:
            result.append(current)
            current = self.nodes[current].parent
        return result

    def depth(self, handle: int) -> int:
        return len(self.ancestors(handle))

    def preorder(self, start: Optional[int] = None, include_collapsed: bool = False) -> List[int]:
        """Handles in pre-order, children in display order.

        Args:
            start: Handle to start from; defaults to the root.
            include_collapsed: Descend into saved children of collapsed nodes.
        """
        if start is None:
            start = self.root
        if start is None:
            return []
        result: List[int] = []
        stack = [start]
        while stack:
            handle = stack.pop()
            result.append(handle)
            node = self.nodes[handle]
            kids = node.all_children if include_collapsed else node.children
            stack.extend(reversed(kids))
        return result

    def postorder(self, start: Optional[int] = None, include_collapsed: bool = False) -> List[int]:
        if start is None:
            start = self.root
        if start is None:
            return []
        result: List[int] = []
        stack: List[Tuple[int, bool]] = [(start, False)]
        while stack:
            handle, visited = stack.pop()
            if visited:
                result.append(handle)
                continue
            stack.append((handle, True))
            node = self.nodes[handle]
            kids = node.all_children if include_collapsed else node.children
            for child in reversed(kids):
                stack.append((child, False))
        return result

    def external_descendants(self, handle: int) -> List[int]:
        """All leaves below ``handle`` (through collapsed nodes), in display order."""
        return [
            h for h in self.preorder(handle, include_collapsed=True) if self.nodes[h].is_leaf()
        ]

    def visible_external_nodes(self, start: Optional[int] = None) -> List[int]:
        """Tips as drawn: leaves and collapsed nodes reachable through live children."""
        return [h for h in self.preorder(start) if self.nodes[h].is_external()]

    def find_by_name(self, name: str) -> List[int]:
        return [n.id for n in self.nodes.values() if n.name == name]

    def to_newick(self, handle: Optional[int] = None, lengths: bool = True) -> str:
        if handle is None:
            handle = self.root
        return self._to_newick(handle, lengths) + ";"

    def _to_newick(self, handle: int, lengths: bool) -> str:
        node = self.nodes[handle]
        text = ""
        if node.all_children:
            text = "(" + ",".join(self._to_newick(c, lengths) for c in node.all_children) + ")"
        text += node.name or ""
        if lengths and node.branch_length is not None:
            text += f":{node.branch_length:g}"
        return text
