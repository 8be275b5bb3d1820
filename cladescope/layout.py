"""
Layout calculation for the rectangular tree view.

This module computes the coordinates (x, y) for every visible node below the
view root. ``x`` is the horizontal axis (depth or distance from the root) and
``y`` the vertical axis (leaf order). Two modes are supported:

- 'cladogram': leaves are spread evenly over the height and pinned to the
  full drawable width; internal nodes sit at the mean height of their children
  and are placed horizontally by their height above the leaves.
- 'phylogram': vertical placement as above, horizontal placement by cumulative
  branch length from the view root, scaled linearly onto the drawable width.

The drawable width is the display width minus the space reserved for labels.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from cladescope.config import LayoutMode, Options, Settings
from cladescope.tree import NodeStore

logger = logging.getLogger(__name__)

# --- Layout Result Definition ---


@dataclass
class LayoutResult:
    """
    Summary of one layout pass. Per-node coordinates are written onto the nodes.

    Attributes:
        mode: Layout mode used.
        width: Drawable width (pixels) the distances were scaled onto.
        height: Display height (pixels).
        max_dist: Largest distance from the view root ('phylogram' only).
        visible: Visible node handles in pre-order.
        tips: Visible external nodes (leaves and collapsed nodes) in display order.
        label_x: Label anchor x per tip; pinned to ``width`` when aligned.
        connectors: Tip handle -> (x from, x to) of the aligned-label connector.
        dynahide_factor: Label thinning factor; below 2 nothing is hidden.
        non_finite: Handles whose branch length was treated as zero.
    """

    mode: LayoutMode
    width: float
    height: float
    max_dist: float = 0.0
    visible: List[int] = field(default_factory=list)
    tips: List[int] = field(default_factory=list)
    label_x: Dict[int, float] = field(default_factory=dict)
    connectors: Dict[int, Tuple[float, float]] = field(default_factory=dict)
    dynahide_factor: int = 0
    non_finite: List[int] = field(default_factory=list)

    def scale(self, dist: float) -> float:
        """Map a distance from the view root to pixels."""
        if self.mode is not LayoutMode.PHYLOGRAM or self.max_dist <= 0:
            return 0.0
        return dist / self.max_dist * self.width


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def reserved_label_space(settings: Settings, options: Options, max_label_length: int) -> float:
    """Horizontal pixels kept free for root offset, label gap and the longest label."""
    return (
        settings.root_offset
        + options.node_label_gap
        + max_label_length * options.external_node_font_size * 0.5
    )


def available_width(
    display_width: float, settings: Settings, options: Options, max_label_length: int
) -> float:
    return max(1.0, display_width - reserved_label_space(settings, options, max_label_length))


class LayoutEngine:
    """
    Computes node coordinates for one render pass.

    The drawable width is kept between passes so a pass may skip recalculating
    it (for example while a transition is running).
    """

    def __init__(self, options: Options, settings: Settings):
        self.options = options
        self.settings = settings
        self.width: Optional[float] = None

    def run(
        self,
        store: NodeStore,
        view_root: int,
        display_width: float,
        display_height: float,
        max_label_length: int,
        average_branch_length: float,
        recalculate_width: bool = True,
    ) -> LayoutResult:
        if recalculate_width or self.width is None:
            self.width = available_width(display_width, self.settings, self.options, max_label_length)
        w = self.width
        mode = self.options.layout_mode

        result = LayoutResult(mode=mode, width=w, height=display_height)
        result.visible = store.preorder(view_root)
        result.tips = [h for h in result.visible if store.nodes[h].is_external()]

        self._cladogram(store, view_root, result)
        if mode is LayoutMode.PHYLOGRAM:
            self._phylogram(store, view_root, result, average_branch_length)

        self._label_positions(store, result)
        self._dynahide(store, result)
        logger.debug(
            "layout %s: %d visible nodes, %d tips, width %.1f",
            mode.value, len(result.visible), len(result.tips), w,
        )
        return result

    # --- Cladogram Layout ---

    def _cladogram(self, store: NodeStore, view_root: int, result: LayoutResult) -> None:
        """Cluster layout; also supplies the vertical positions for phylograms."""
        n = max(1, len(result.tips))
        heights: Dict[int, int] = {}
        for i, handle in enumerate(result.tips):
            store.nodes[handle].y = (i + 0.5) / n * result.height
            heights[handle] = 0

        for handle in store.postorder(view_root):
            node = store.nodes[handle]
            kids = node.children
            if not kids:
                continue
            node.y = sum(store.nodes[c].y for c in kids) / len(kids)
            heights[handle] = 1 + max(heights[c] for c in kids)

        top = heights[view_root]
        for handle in result.visible:
            node = store.nodes[handle]
            node.x = (1 - heights[handle] / top) * result.width if top > 0 else 0.0
            node.dist_to_root = 0.0

    # --- Phylogram Layout ---

    def _effective_length(
        self,
        store: NodeStore,
        handle: int,
        view_root: int,
        average_branch_length: float,
        result: LayoutResult,
    ) -> float:
        node = store.nodes[handle]
        bl = node.branch_length
        if bl is not None and not math.isfinite(bl):
            logger.warning("non-finite branch length on node %d treated as zero", handle)
            result.non_finite.append(handle)
            return 0.0
        if node.parent == view_root and (bl is None or bl <= 0):
            return 0.5 * average_branch_length
        if bl is None or bl < 0:
            return 0.0
        return bl

    def compute_distances(
        self,
        store: NodeStore,
        view_root: int,
        average_branch_length: float,
        result: LayoutResult,
    ) -> float:
        """Cumulative distance from the view root for every node, collapsed ones included.

        Returns the largest distance.
        """
        store.nodes[view_root].dist_to_root = 0.0
        max_dist = 0.0
        for handle in store.preorder(view_root, include_collapsed=True):
            if handle == view_root:
                continue
            node = store.nodes[handle]
            parent_dist = store.nodes[node.parent].dist_to_root
            dist = parent_dist + self._effective_length(
                store, handle, view_root, average_branch_length, result
            )
            if not math.isfinite(dist):
                logger.warning("non-finite distance at node %d; subtree treated as zero length", handle)
                result.non_finite.append(handle)
                dist = parent_dist
            node.dist_to_root = dist
            max_dist = max(max_dist, dist)
        return max_dist

    def _phylogram(
        self,
        store: NodeStore,
        view_root: int,
        result: LayoutResult,
        average_branch_length: float,
    ) -> None:
        result.max_dist = self.compute_distances(store, view_root, average_branch_length, result)
        for handle in result.visible:
            node = store.nodes[handle]
            node.x = result.scale(node.dist_to_root)

    # --- Labels ---

    def _label_positions(self, store: NodeStore, result: LayoutResult) -> None:
        aligned = result.mode is LayoutMode.PHYLOGRAM and self.options.align_phylogram
        for handle in result.tips:
            x = store.nodes[handle].x
            if aligned:
                result.label_x[handle] = result.width
                if result.width - x > self.options.aligned_connector_min_gap:
                    result.connectors[handle] = (x, result.width)
            else:
                result.label_x[handle] = x

    def _dynahide(self, store: NodeStore, result: LayoutResult) -> None:
        for handle in result.visible:
            store.nodes[handle].hide = False
        if not self.options.dynahide or not result.tips or result.height <= 0:
            result.dynahide_factor = 0
            return
        spacing = self.options.dynahide_height_fraction * result.height / len(result.tips)
        factor = round_half_up(self.options.external_node_font_size / spacing)
        result.dynahide_factor = factor
        if factor < 2:
            return
        counter = 0
        for handle in result.tips:
            node = store.nodes[handle]
            if not node.is_leaf():
                continue
            counter += 1
            if counter % factor != 0:
                node.hide = True
