"""
Rerooting operations on a ``NodeStore``.

This module provides:
- Rerooting on the branch above a node (split in half, or at a given distance)
- Midpoint rooting (centre of the longest leaf-to-leaf path)

Node handles survive rerooting; only the newly created root node gets a new
handle.
"""

import logging
from collections import deque
from typing import Dict, List, Optional, Tuple

from cladescope.errors import TreeOperationError
from cladescope.tree import Confidence, NodeStore

logger = logging.getLogger(__name__)

# =============================================================================
# HELPER FUNCTIONS FOR TREE STRUCTURE MANIPULATION
# =============================================================================


def _collect_path_to_root(store: NodeStore, handle: int) -> List[int]:
    """Handles from ``handle`` up to the current root (inclusive)."""
    return [handle] + store.ancestors(handle)


def _length(store: NodeStore, handle: int) -> float:
    bl = store.nodes[handle].branch_length
    return bl if bl is not None and bl > 0 else 0.0


def _neighbors(store: NodeStore, handle: int) -> List[Tuple[int, float]]:
    """Adjacent handles with edge lengths, treating the tree as undirected."""
    node = store.nodes[handle]
    result: List[Tuple[int, float]] = []
    if node.parent is not None:
        result.append((node.parent, _length(store, handle)))
    for child in node.all_children:
        result.append((child, _length(store, child)))
    return result


def _bfs_farthest_leaf(store: NodeStore, start: int) -> Tuple[int, float]:
    """Farthest leaf from ``start`` (excluding ``start`` itself)."""
    queue = deque([(start, 0.0)])
    visited = {start}
    farthest: Optional[int] = None
    max_distance = -1.0
    while queue:
        current, distance = queue.popleft()
        if current != start and store.nodes[current].is_leaf() and distance > max_distance:
            max_distance = distance
            farthest = current
        for neighbor, edge in _neighbors(store, current):
            if neighbor not in visited:
                visited.add(neighbor)
                queue.append((neighbor, distance + edge))
    if farthest is None:
        return start, 0.0
    return farthest, max_distance


def path_between(store: NodeStore, first: int, second: int) -> List[Tuple[int, int, bool]]:
    """Edges on the path from ``first`` to ``second``.

    Each edge is ``(lower, upper, upward)``: ``lower`` is the child end (whose
    branch length is the edge length) and ``upward`` tells whether the path
    walks the edge from child to parent.
    """
    up1 = _collect_path_to_root(store, first)
    up2 = _collect_path_to_root(store, second)
    ancestors2 = set(up2)
    lca = next(h for h in up1 if h in ancestors2)

    edges: List[Tuple[int, int, bool]] = []
    for h in up1:
        if h == lca:
            break
        edges.append((h, store.nodes[h].parent, True))
    down: List[Tuple[int, int, bool]] = []
    for h in up2:
        if h == lca:
            break
        down.append((h, store.nodes[h].parent, False))
    edges.extend(reversed(down))
    return edges


# =============================================================================
# CORE REROOTING OPERATIONS
# =============================================================================


def reroot(store: NodeStore, handle: int, distance_to_parent: float = -1.0) -> int:
    """
    Place a new root on the branch above ``handle``.

    The branch is split in half, or at ``distance_to_parent`` from ``handle``
    when that is non-negative. Branch lengths and confidences travel with their
    edges as the path to the old root is flipped. An old root left with a single
    child is spliced out and its branch length merged into that child.

    Returns:
        Handle of the new root.

    Raises:
        TreeOperationError: If ``handle`` is unknown or already the root.
    """
    node = store[handle]
    if node.parent is None:
        raise TreeOperationError(f"node {handle} is already the root")

    path = _collect_path_to_root(store, handle)
    for h in path[1:]:
        store.expand(h)

    lengths: Dict[int, Optional[float]] = {h: store.nodes[h].branch_length for h in path}
    confidences: Dict[int, List[Confidence]] = {h: list(store.nodes[h].confidences) for h in path}
    old_root = path[-1]

    new_root = store.new_node()
    new_root.name = ""

    # flip child lists along the path
    for i in range(1, len(path)):
        current = store.nodes[path[i]]
        below = path[i - 1]
        kids = list(current.all_children)
        if i + 1 < len(path):
            kids[kids.index(below)] = path[i + 1]
        else:
            kids.remove(below)
        store.set_children(path[i], tuple(kids))

    # split the branch above ``handle``
    d = lengths[handle]
    above = path[1]
    if d is None:
        store.nodes[handle].branch_length = None
        store.nodes[above].branch_length = None
    elif distance_to_parent >= 0:
        store.nodes[handle].branch_length = distance_to_parent
        store.nodes[above].branch_length = max(d - distance_to_parent, 0.0)
    else:
        store.nodes[handle].branch_length = d / 2.0
        store.nodes[above].branch_length = d / 2.0
    store.nodes[above].confidences = list(confidences[handle])

    for i in range(2, len(path)):
        store.nodes[path[i]].branch_length = lengths[path[i - 1]]
        store.nodes[path[i]].confidences = confidences[path[i - 1]]

    store.set_children(new_root.id, (handle, above))
    new_root.parent = None
    store.root = new_root.id
    store.rooted = True

    _remove_unary(store, old_root)
    logger.debug("rerooted on branch above node %d; new root %d", handle, new_root.id)
    return new_root.id


def _remove_unary(store: NodeStore, handle: int) -> None:
    """Splice out ``handle`` if it is left with at most one child."""
    node = store.nodes[handle]
    if node.parent is None or len(node.all_children) > 1:
        return
    parent = store.nodes[node.parent]
    kids = list(parent.all_children)
    index = kids.index(handle)
    if node.all_children:
        only = store.nodes[node.all_children[0]]
        if node.branch_length is None and only.branch_length is None:
            only.branch_length = None
        else:
            only.branch_length = max(node.branch_length or 0.0, 0.0) + max(
                only.branch_length or 0.0, 0.0
            )
        if node.confidences and not only.confidences:
            only.confidences = node.confidences
        kids[index] = only.id
    else:
        del kids[index]
    store.remove(handle)
    store.set_children(parent.id, tuple(kids))


# =============================================================================
# MIDPOINT ROOTING
# =============================================================================


def find_farthest_leaves(store: NodeStore) -> Tuple[int, int, float]:
    """The two leaves farthest apart, found by a double farthest-leaf search."""
    leaves = store.external_descendants(store.root)
    if len(leaves) < 2:
        raise TreeOperationError("tree must have at least 2 leaves for midpoint rooting")
    first, _ = _bfs_farthest_leaf(store, leaves[0])
    second, distance = _bfs_farthest_leaf(store, first)
    return first, second, distance


def midpoint_reroot(store: NodeStore) -> int:
    """
    Reroot at the midpoint of the longest leaf-to-leaf path.

    Trees with fewer than two leaves, and trees whose midpoint already is the
    root, are left unchanged.

    Returns:
        Handle of the (possibly unchanged) root.
    """
    if store.is_empty() or len(store.external_descendants(store.root)) < 2:
        return store.root
    first, second, total = find_farthest_leaves(store)
    target = total / 2.0

    travelled = 0.0
    for lower, upper, upward in path_between(store, first, second):
        edge = _length(store, lower)
        if travelled + edge >= target:
            into_edge = target - travelled
            # measured from ``lower`` towards ``upper``
            distance = into_edge if upward else edge - into_edge
            if upper == store.root and distance >= edge:
                return store.root
            return reroot(store, lower, distance)
        travelled += edge
    return store.root
