"""
Two-slot search state and per-node highlight resolution.

Each slot holds the handles matched by its query. Together with the manual
selection they resolve to one highlight colour per node:

1. A selected node gets the selection colour.
2. Otherwise, without negation: in both slots -> both-colour, slot A only ->
   A-colour, slot B only -> B-colour.
3. With negation (display-eligible nodes only) a node counts as found for a
   slot when that slot is non-empty and the node is absent from it; the same
   both > A > B order applies.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Set, Tuple

from cladescope.config import Options
from cladescope.tree import Node, NodeStore
from cladescope.treeutil import SearchFlags, search_data

logger = logging.getLogger(__name__)

SLOTS = (0, 1)


@dataclass
class SearchState:
    """Queries, their result sets and the manual selection."""

    queries: Dict[int, str] = field(default_factory=lambda: {0: "", 1: ""})
    found: Dict[int, Set[int]] = field(default_factory=lambda: {0: set(), 1: set()})
    selected: Set[int] = field(default_factory=set)
    negate: bool = False

    def set_query(
        self,
        store: NodeStore,
        slot: int,
        text: Optional[str],
        flags: Optional[SearchFlags] = None,
    ) -> Set[int]:
        """Run ``text`` against the tree and store the display-eligible matches in ``slot``."""
        if slot not in SLOTS:
            raise ValueError(f"search slot must be 0 or 1, got {slot}")
        self.queries[slot] = text or ""
        matches = search_data(text or "", store, flags) if text else set()
        self.found[slot] = {h for h in matches if store.nodes[h].is_display_eligible()}
        logger.debug("slot %d query %r: %d nodes", slot, text, len(self.found[slot]))
        return self.found[slot]

    def reset(self, slot: Optional[int] = None) -> None:
        for s in SLOTS if slot is None else (slot,):
            self.queries[s] = ""
            self.found[s] = set()

    def prune(self, store: NodeStore) -> None:
        """Drop handles that are no longer in the tree."""
        for s in SLOTS:
            self.found[s] &= set(store.nodes)
        self.selected &= set(store.nodes)

    def is_active(self) -> bool:
        return bool(self.found[0] or self.found[1])


class SearchHighlightResolver:
    """Resolves slot membership (honouring negation) and highlight colour per node."""

    def __init__(self, state: SearchState, options: Options):
        self.state = state
        self.options = options

    def found(self, node: Node) -> Tuple[bool, bool]:
        a, b = self.state.found[0], self.state.found[1]
        if not self.state.negate:
            return node.id in a, node.id in b
        if not node.is_display_eligible():
            return False, False
        return (bool(a) and node.id not in a, bool(b) and node.id not in b)

    def search_color(self, node: Node) -> Optional[str]:
        in_a, in_b = self.found(node)
        if in_a and in_b:
            return self.options.found0and1_color
        if in_a:
            return self.options.found0_color
        if in_b:
            return self.options.found1_color
        return None

    def highlight(self, node: Node) -> Optional[str]:
        """Highlight colour, or None to fall through to visualization/branch colouring."""
        if node.id in self.state.selected:
            return self.options.selected_color
        return self.search_color(node)
