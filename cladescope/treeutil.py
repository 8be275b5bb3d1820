"""
Tree utility functions: statistics, structural collapse operations and search.

These are the structural operations the render engine calls between passes.
They mutate the ``NodeStore`` in place and never touch render state.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

from cladescope.errors import TreeOperationError
from cladescope.tree import NodeStore, Node

logger = logging.getLogger(__name__)


# ===================================================================
# 1. STATISTICS
# ===================================================================


@dataclass
class TreeProperties:
    """Which kinds of data occur anywhere in the tree."""

    node_names: bool = False
    internal_node_data: bool = False
    branch_lengths: bool = False
    confidences: bool = False
    sequences: bool = False
    taxonomies: bool = False
    properties: bool = False
    distributions: bool = False


@dataclass
class BasicTreeProperties:
    max_depth: int = 0
    external_nodes: int = 0
    branch_length_min: Optional[float] = None
    branch_length_max: Optional[float] = None
    branch_length_mean: Optional[float] = None
    average_branch_length: float = 0.0


def collect_tree_properties(store: NodeStore, start: Optional[int] = None) -> TreeProperties:
    props = TreeProperties()
    for handle in store.preorder(start, include_collapsed=True):
        n = store.nodes[handle]
        internal = not n.is_leaf()
        if n.name:
            props.node_names = True
            if internal:
                props.internal_node_data = True
        if n.branch_length is not None and n.branch_length > 0:
            props.branch_lengths = True
        if n.confidences:
            props.confidences = True
        if n.sequences:
            props.sequences = True
            if internal:
                props.internal_node_data = True
        if n.taxonomies:
            props.taxonomies = True
            if internal:
                props.internal_node_data = True
        if n.properties:
            props.properties = True
        if n.distributions:
            props.distributions = True
    return props


def basic_tree_properties(store: NodeStore, start: Optional[int] = None) -> BasicTreeProperties:
    """Depth and branch-length summary over the whole (uncollapsed) tree.

    ``average_branch_length`` is the mean over strictly positive lengths; it is
    the quantity substituted (halved) for a missing root-adjacent branch.
    """
    if start is None:
        start = store.root
    stats = BasicTreeProperties()
    if start is None:
        return stats
    lengths: List[float] = []
    for handle in store.preorder(start, include_collapsed=True):
        n = store.nodes[handle]
        if n.is_leaf():
            stats.external_nodes += 1
        if handle != start and n.branch_length is not None:
            lengths.append(n.branch_length)
    stats.max_depth = calc_max_depth(store, start)
    if lengths:
        stats.branch_length_min = min(lengths)
        stats.branch_length_max = max(lengths)
        stats.branch_length_mean = sum(lengths) / len(lengths)
        positive = [bl for bl in lengths if bl > 0]
        if positive:
            stats.average_branch_length = sum(positive) / len(positive)
    return stats


def calc_max_depth(store: NodeStore, start: Optional[int] = None) -> int:
    """Maximum number of edges from ``start`` to any leaf (through collapsed nodes)."""
    if start is None:
        start = store.root
    if start is None:
        return 0
    best = 0
    stack = [(start, 0)]
    while stack:
        handle, depth = stack.pop()
        best = max(best, depth)
        for child in store.nodes[handle].all_children:
            stack.append((child, depth + 1))
    return best


def calc_sum_of_all_external_descendants(store: NodeStore, handle: int) -> int:
    """Leaf count below ``handle``, including those hidden by collapses."""
    return len(store.external_descendants(handle))


def calc_sum_of_external_descendants(store: NodeStore, handle: int) -> int:
    """Tip count below ``handle`` as drawn (a collapsed node counts once)."""
    return len(store.visible_external_nodes(handle))


def calc_average_tree_height(store: NodeStore, handle: int, externals: Optional[List[int]] = None) -> float:
    """Mean path length from ``handle`` down to its leaves, positive lengths only."""
    leaves = externals if externals is not None else store.external_descendants(handle)
    if not leaves:
        return 0.0
    total = 0.0
    for leaf in leaves:
        current: Optional[int] = leaf
        while current is not None and current != handle:
            node = store.nodes[current]
            if node.branch_length is not None and node.branch_length > 0:
                total += node.branch_length
            current = node.parent
    return total / len(leaves)


# ===================================================================
# 2. COLLAPSE OPERATIONS
# ===================================================================


def uncollapse_all(store: NodeStore, start: Optional[int] = None) -> None:
    for handle in store.preorder(start, include_collapsed=True):
        store.expand(handle)


def collapse_to_depth(store: NodeStore, start: int, depth: int) -> None:
    """Collapse every internal node at ``depth`` edges below ``start``; expand above it."""

    def helper(handle: int, d: int) -> None:
        node = store.nodes[handle]
        if node.is_leaf():
            return
        if d >= depth:
            store.collapse(handle)
        else:
            store.expand(handle)
            for child in node.children:
                helper(child, d + 1)

    helper(start, 0)


def collapse_to_branch_length(store: NodeStore, start: int, branch_length: float) -> None:
    """Collapse internal nodes whose distance from ``start`` reaches ``branch_length``."""

    def helper(handle: int, dist: float) -> None:
        node = store.nodes[handle]
        if node.is_leaf():
            return
        if handle != start and node.branch_length is not None and node.branch_length > 0:
            dist += node.branch_length
        if dist >= branch_length:
            store.collapse(handle)
        else:
            store.expand(handle)
            for child in node.children:
                helper(child, dist)

    helper(start, 0.0)


def collapse_by_feature(
    store: NodeStore,
    start: int,
    feature: Callable[[Node], Optional[Any]],
) -> int:
    """Collapse maximal subtrees whose leaves all share one non-empty feature value.

    The shared value is written to ``Node.feature_label`` of each collapsed
    node so the collapsed label can show it. Returns the number of collapsed
    nodes.
    """
    shared: Dict[int, Optional[Any]] = {}
    missing = object()
    for handle in store.postorder(start, include_collapsed=True):
        node = store.nodes[handle]
        node.feature_label = None
        if node.is_leaf():
            value = feature(node)
            shared[handle] = value if value not in (None, "") else missing
            continue
        values = {repr(shared[c]) for c in node.all_children}
        first = shared[node.all_children[0]]
        shared[handle] = first if len(values) == 1 else missing

    count = 0

    def helper(handle: int) -> None:
        nonlocal count
        node = store.nodes[handle]
        if node.is_leaf():
            return
        value = shared[handle]
        if value is not missing and handle != start:
            store.collapse(handle)
            node.feature_label = str(value)
            count += 1
            return
        store.expand(handle)
        for child in node.children:
            helper(child)

    helper(start)
    logger.debug("collapse_by_feature collapsed %d subtrees", count)
    return count


def swap_children(store: NodeStore, handle: int) -> None:
    """Rotate the live children left by one (first child moves to the end)."""
    kids = store.nodes[handle].children
    if len(kids) > 1:
        store.set_children(handle, kids[1:] + kids[:1])


def order_subtree(store: NodeStore, handle: int, ascending: bool) -> bool:
    """Order bifurcations by external-descendant count.

    If nothing changes in the requested direction the opposite direction is
    applied. Returns the direction actually used.
    """

    def ordered(order: bool) -> bool:
        changed = False
        for h in store.preorder(handle):
            kids = store.nodes[h].children
            if len(kids) != 2:
                continue
            e0 = calc_sum_of_all_external_descendants(store, kids[0])
            e1 = calc_sum_of_all_external_descendants(store, kids[1])
            if e0 != e1 and (e0 < e1) == order:
                store.set_children(h, (kids[1], kids[0]))
                changed = True
        return changed

    if ordered(ascending):
        return ascending
    ordered(not ascending)
    return not ascending


def delete_subtree(store: NodeStore, handle: int) -> None:
    """Remove ``handle`` and all its descendants.

    A parent left with a single child is spliced out and its branch length is
    added to that child, so no unary nodes remain.
    """
    node = store[handle]
    if node.parent is None:
        raise TreeOperationError("cannot delete the root")
    parent = store.nodes[node.parent]
    remaining = tuple(c for c in parent.all_children if c != handle)
    for h in store.preorder(handle, include_collapsed=True):
        store.remove(h)
    store.set_children(parent.id, remaining)
    if not remaining:
        store.expand(parent.id)

    if len(remaining) == 1:
        only = store.nodes[remaining[0]]
        if parent.parent is None:
            store.root = only.id
            only.parent = None
            store.remove(parent.id)
        else:
            grand = store.nodes[parent.parent]
            if parent.branch_length is not None or only.branch_length is not None:
                only.branch_length = (parent.branch_length or 0.0) + (only.branch_length or 0.0)
            kids = tuple(only.id if c == parent.id else c for c in grand.all_children)
            store.remove(parent.id)
            store.set_children(grand.id, kids)


# ===================================================================
# 3. SEARCH
# ===================================================================

SEARCH_KEYS = ("NN", "TC", "TS", "TN", "SY", "TI", "SN", "GN", "SS", "SA", "MS")


@dataclass
class SearchFlags:
    case_sensitive: bool = False
    partial: bool = True
    regex: bool = False
    properties: bool = False


def _first(items: List[Any]) -> Optional[Any]:
    return items[0] if items else None


def _searchable_fields(node: Node, key: Optional[str], flags: SearchFlags) -> List[Optional[str]]:
    tax = _first(node.taxonomies)
    seq = _first(node.sequences)
    fields: Dict[str, List[Optional[str]]] = {
        "NN": [node.name],
        "TC": [tax.code if tax else None],
        "TS": [tax.scientific_name if tax else None],
        "TN": [tax.common_name if tax else None],
        "SY": list(tax.synonyms) if tax else [],
        "TI": [tax.id_value if tax else None],
        "SN": [seq.name if seq else None],
        "GN": [seq.gene_name if seq else None],
        "SS": [seq.symbol if seq else None],
        "SA": [seq.accession if seq else None],
        "MS": [seq.mol_seq if seq else None],
    }
    if key is not None:
        return fields[key]
    result = [v for k, values in fields.items() if k != "MS" for v in values]
    if flags.properties:
        result.extend(str(p.value) for p in node.properties if p.applies_to == "node")
    return result


def _match(text: Optional[str], query: str, flags: SearchFlags) -> bool:
    if not text or not query:
        return False
    s = text.strip()
    q = query.strip()
    if flags.regex:
        try:
            pattern = re.compile(q, 0 if flags.case_sensitive else re.IGNORECASE)
        except re.error:
            return False
        return pattern.search(s) is not None
    if not flags.case_sensitive:
        s = s.lower()
        q = q.lower()
    if flags.partial:
        return q in s
    return re.search(r"(\b|_)" + re.escape(q) + r"(\b|_)", s) is not None


def _split_key(term: str) -> tuple:
    if len(term) > 3 and term[2] == ":" and term[:2] in SEARCH_KEYS:
        return term[:2], term[3:]
    return None, term


def search_data(
    query: str,
    store: NodeStore,
    flags: Optional[SearchFlags] = None,
    start: Optional[int] = None,
) -> Set[int]:
    """Handles of nodes matching ``query``.

    Syntax (ignored in regex mode): ``,`` separates alternatives (OR), ``+``
    joins terms that must all match (AND), and a two-letter prefix such as
    ``TS:`` restricts a term to one field (``NN`` name, ``TC`` taxonomy code,
    ``TS`` scientific name, ``TN`` common name, ``SY`` synonym, ``TI``
    taxonomy id, ``SN`` sequence name, ``GN`` gene name, ``SS`` symbol,
    ``SA`` accession, ``MS`` molecular sequence).
    """
    flags = flags or SearchFlags()
    found: Set[int] = set()
    if store.is_empty() or not query:
        return found
    q = re.sub(r"\s\s+", " ", query.strip())
    if not q:
        return found
    if not flags.regex:
        q = re.sub(r"\+\++", "+", q)
        alternatives = [a.strip() for a in q.split(",")]
    else:
        alternatives = [q]

    handles = store.preorder(start, include_collapsed=True)
    for alternative in alternatives:
        if not alternative:
            continue
        terms = [t.strip() for t in alternative.split("+")] if not flags.regex else [alternative]
        if any(not t for t in terms):
            continue
        parsed = [_split_key(t) for t in terms]
        for handle in handles:
            node = store.nodes[handle]
            if all(
                any(_match(field, term, flags) for field in _searchable_fields(node, key, flags))
                for key, term in parsed
            ):
                found.add(handle)
    logger.debug("search %r matched %d nodes", query, len(found))
    return found
