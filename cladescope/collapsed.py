"""
Summary colour and label of collapsed subtrees.

The colour reflects how many of the hidden display-eligible leaves are search
hits; the label names the first and last leaf and the leaf count.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from cladescope.colors import interpolate_color
from cladescope.config import Options
from cladescope.labels import make_node_label
from cladescope.search import SearchHighlightResolver
from cladescope.tree import NodeStore
from cladescope.visualization import Visualization

logger = logging.getLogger(__name__)


@dataclass
class SearchTally:
    a_only: int = 0
    b_only: int = 0
    both: int = 0
    neither: int = 0

    @property
    def hits(self) -> int:
        return self.a_only + self.b_only + self.both

    @property
    def total(self) -> int:
        return self.hits + self.neither


@dataclass
class CollapsedSummary:
    color: str
    label: Optional[str]
    tally: SearchTally


class CollapsedSubtreeAggregator:
    def __init__(
        self,
        store: NodeStore,
        options: Options,
        resolver: SearchHighlightResolver,
        label_color: Optional[Visualization] = None,
    ):
        self.store = store
        self.options = options
        self.resolver = resolver
        self.label_color = label_color

    def eligible_descendants(self, handle: int) -> List[int]:
        return [
            h
            for h in self.store.external_descendants(handle)
            if self.store.nodes[h].is_display_eligible()
        ]

    def tally(self, handle: int) -> SearchTally:
        counts = SearchTally()
        for h in self.eligible_descendants(handle):
            in_a, in_b = self.resolver.found(self.store.nodes[h])
            if in_a and in_b:
                counts.both += 1
            elif in_a:
                counts.a_only += 1
            elif in_b:
                counts.b_only += 1
            else:
                counts.neither += 1
        return counts

    def color(self, handle: int, tally: Optional[SearchTally] = None) -> str:
        """
        Aggregate colour of a collapsed node.

        With search hits, the colour of the dominant bucket (both or overlap,
        then A, then B) is blended from the background by the share of hits;
        it is reached exactly when every eligible leaf is a hit. Without hits,
        a label colour shared by all eligible leaves is used, then the node's
        own branch colour, then the branch default.
        """
        tally = tally or self.tally(handle)
        o = self.options
        if tally.hits > 0:
            if tally.both == tally.total:
                return o.found0and1_color
            if tally.both > 0 or (tally.a_only > 0 and tally.b_only > 0):
                target = o.found0and1_color
            elif tally.a_only > 0:
                target = o.found0_color
            else:
                target = o.found1_color
            return interpolate_color(o.background_color_default, target, tally.hits / tally.total)

        uniform = self._uniform_label_color(handle)
        if uniform is not None:
            return uniform
        node = self.store.nodes[handle]
        if node.color is not None:
            return node.color.to_css()
        return o.branch_color_default

    def _uniform_label_color(self, handle: int) -> Optional[str]:
        if self.label_color is None:
            return None
        seen = set()
        for h in self.eligible_descendants(handle):
            visual = self.label_color.visual_for(self.store.nodes[h])
            if visual is None:
                return None
            seen.add(visual)
            if len(seen) > 1:
                return None
        return seen.pop() if seen else None

    def label(self, handle: int, tally: Optional[SearchTally] = None) -> Optional[str]:
        """``first ... last [n]``, plus ``[hits/eligible]`` and a feature prefix when present."""
        if not self.options.show_external_labels:
            return None
        tally = tally or self.tally(handle)
        descendants = self.store.external_descendants(handle)
        n = len(descendants)
        length = self.options.collapsed_label_length
        first = make_node_label(self.store.nodes[descendants[0]], self.options) if n else None
        last = make_node_label(self.store.nodes[descendants[-1]], self.options) if n else None
        if first and last:
            text = f"{first[:length]} ... {last[:length]} [{n}]"
        else:
            text = f"[{n}]"
        if tally.hits > 0:
            text += f" [{tally.hits}/{tally.total}]"
        feature = self.store.nodes[handle].feature_label
        if feature:
            text = f"{feature}: {text}"
        return text

    def summarize(self, handle: int) -> CollapsedSummary:
        tally = self.tally(handle)
        return CollapsedSummary(self.color(handle, tally), self.label(handle, tally), tally)
