"""
Per-pass reconciliation of the tree against the previously rendered frame.

``ReconciliationController.update`` runs one render pass: it recomputes the
layout, partitions visible nodes and links into enter/update/exit by their
stable handle, computes every visual attribute from the current
visualization, search and selection state, and records the coordinates as the
starting point of the next pass.

Nodes entering the view start at the previous position of the source node of
the gesture (for example the node that was expanded); exiting nodes move to
the source node's new position.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from cladescope.collapsed import CollapsedSubtreeAggregator
from cladescope.config import LayoutMode, Options, Settings
from cladescope.labels import (
    calc_max_label_length,
    make_branch_length_label,
    make_confidence_label,
    make_node_label,
)
from cladescope.layout import LayoutEngine, LayoutResult
from cladescope.search import SearchHighlightResolver, SearchState
from cladescope.shapes import DEFAULT_SHAPE, symbol_path
from cladescope.tree import Node, NodeStore
from cladescope.treeutil import basic_tree_properties, calc_average_tree_height
from cladescope.visualization import ActiveVisualizations, Channel, VisualizationRegistry

logger = logging.getLogger(__name__)

Point = Tuple[float, float]


@dataclass
class NodeView:
    """Everything the renderer needs to draw one node."""

    id: int
    x: float
    y: float
    x0: float
    y0: float
    name: str = ""
    is_leaf: bool = False
    collapsed: bool = False
    fill: Optional[str] = None
    border_color: Optional[str] = None
    label_color: Optional[str] = None
    shape: str = DEFAULT_SHAPE
    shape_path: str = ""
    size: float = 0.0
    label: Optional[str] = None
    label_x: float = 0.0
    connector: Optional[Point] = None
    branch_length_label: Optional[str] = None
    confidence_label: Optional[str] = None
    collapsed_path: Optional[str] = None
    hide: bool = False
    has_visualization: bool = False
    moved: bool = False


@dataclass
class LinkView:
    """Elbow branch from ``source`` to ``target``; keyed by ``target``."""

    source: int
    target: int
    path: str
    path0: str
    color: str
    width: float
    moved: bool = False


@dataclass
class RenderFrame:
    enter: List[NodeView] = field(default_factory=list)
    update: List[NodeView] = field(default_factory=list)
    exit: List[NodeView] = field(default_factory=list)
    links_enter: List[LinkView] = field(default_factory=list)
    links_update: List[LinkView] = field(default_factory=list)
    links_exit: List[LinkView] = field(default_factory=list)
    transition_duration: int = 0
    layout_mode: LayoutMode = LayoutMode.CLADOGRAM
    width: float = 0.0
    height: float = 0.0
    max_dist: float = 0.0
    dynahide_factor: int = 0
    warnings: List[str] = field(default_factory=list)

    @property
    def nodes(self) -> List[NodeView]:
        """Visible nodes (entering and persisting)."""
        return self.enter + self.update

    @property
    def links(self) -> List[LinkView]:
        return self.links_enter + self.links_update

    def node(self, handle: int) -> Optional[NodeView]:
        for view in self.nodes:
            if view.id == handle:
                return view
        return None


def elbow(source: Point, target: Point) -> str:
    return f"M{source[0]:g},{source[1]:g}V{target[1]:g}H{target[0]:g}"


class ReconciliationController:
    def __init__(self, store: NodeStore, options: Options, settings: Settings):
        self.store = store
        self.options = options
        self.settings = settings
        self.layout = LayoutEngine(options, settings)
        self._previous: Dict[int, NodeView] = {}
        self._previous_links: Dict[int, LinkView] = {}
        self.last_layout: Optional[LayoutResult] = None

    def reset(self) -> None:
        """Forget the previous frame; the next pass enters every node."""
        self._previous = {}
        self._previous_links = {}

    def update(
        self,
        view_root: int,
        active: ActiveVisualizations,
        registry: VisualizationRegistry,
        search: SearchState,
        display_width: float,
        display_height: float,
        source: Optional[int] = None,
        transition_duration: Optional[int] = None,
        skip_width_recalc: bool = False,
    ) -> RenderFrame:
        """
        Run one render pass.

        Args:
            view_root: Handle of the node the view starts at.
            active: Active visualization label per channel.
            registry: Visualizations to read the active ones from.
            search: Search results and selection.
            display_width: Current display width in pixels.
            display_height: Current display height in pixels.
            source: Node the gesture happened at; the view root by default.
            transition_duration: Milliseconds; the configured default if omitted.
            skip_width_recalc: Keep the drawable width of the previous pass.

        Returns:
            The enter/update/exit partitions with visual attributes.
        """
        store = self.store
        if source is None or source not in store:
            source = view_root
        if transition_duration is None:
            transition_duration = self.settings.transition_duration

        source_prev = self._previous.get(source)
        if source_prev is not None:
            origin: Point = (source_prev.x, source_prev.y)
        else:
            origin = (store.nodes[source].x0 or 0.0, store.nodes[source].y0 or display_height / 2)

        max_label = calc_max_label_length(store, view_root, self.options)
        average = basic_tree_properties(store, view_root).average_branch_length
        layout = self.layout.run(
            store, view_root, display_width, display_height, max_label, average,
            recalculate_width=not skip_width_recalc,
        )
        self.last_layout = layout
        frame = RenderFrame(
            transition_duration=transition_duration,
            layout_mode=layout.mode,
            width=layout.width,
            height=layout.height,
            max_dist=layout.max_dist,
            dynahide_factor=layout.dynahide_factor,
        )
        for handle in layout.non_finite:
            frame.warnings.append(f"non-finite branch length at node {handle} treated as zero")
        self._guard_non_finite(layout, frame)

        resolver = SearchHighlightResolver(search, self.options)
        aggregator = CollapsedSubtreeAggregator(
            store, self.options, resolver, registry.active(active, Channel.LABEL_COLOR)
        )

        current: Dict[int, NodeView] = {}
        for handle in layout.visible:
            node = store.nodes[handle]
            prev = self._previous.get(handle)
            start = (prev.x, prev.y) if prev is not None else origin
            view = self._node_view(node, view_root, start, layout, active, registry, resolver, aggregator)
            view.moved = prev is None or (prev.x, prev.y) != (view.x, view.y)
            current[handle] = view
            if prev is None:
                frame.enter.append(view)
            else:
                frame.update.append(view)

        source_now: Point = (store.nodes[source].x, store.nodes[source].y)
        for handle, prev in self._previous.items():
            if handle not in current:
                frame.exit.append(
                    NodeView(**{**prev.__dict__, "x0": prev.x, "y0": prev.y,
                                "x": source_now[0], "y": source_now[1], "moved": True})
                )

        links: Dict[int, LinkView] = {}
        for handle in layout.visible:
            if handle == view_root:
                continue
            node = store.nodes[handle]
            parent = store.nodes[node.parent]
            path = elbow((parent.x, parent.y), (node.x, node.y))
            prev_link = self._previous_links.get(handle)
            link = LinkView(
                source=parent.id,
                target=handle,
                path=path,
                path0=prev_link.path if prev_link is not None else elbow(origin, origin),
                color=node.color.to_css() if node.color is not None else self.options.branch_color_default,
                width=node.width if node.width else self.options.branch_width_default,
            )
            link.moved = prev_link is None or prev_link.path != path
            links[handle] = link
            if prev_link is None:
                frame.links_enter.append(link)
            else:
                frame.links_update.append(link)
        collapse_point = elbow(source_now, source_now)
        for handle, prev_link in self._previous_links.items():
            if handle not in links:
                frame.links_exit.append(
                    LinkView(**{**prev_link.__dict__, "path0": prev_link.path,
                                "path": collapse_point, "moved": True})
                )

        for handle in layout.visible:
            node = store.nodes[handle]
            node.x0, node.y0 = node.x, node.y
        self._previous = current
        self._previous_links = links

        logger.debug(
            "pass: %d enter, %d update, %d exit; %d/%d/%d links",
            len(frame.enter), len(frame.update), len(frame.exit),
            len(frame.links_enter), len(frame.links_update), len(frame.links_exit),
        )
        return frame

    def _guard_non_finite(self, layout: LayoutResult, frame: RenderFrame) -> None:
        for handle in layout.visible:
            node = self.store.nodes[handle]
            if math.isfinite(node.x) and math.isfinite(node.y):
                continue
            parent = self.store.nodes[node.parent] if node.parent is not None else None
            logger.warning("non-finite coordinate at node %d; placed at its parent", handle)
            frame.warnings.append(f"non-finite coordinate at node {handle}")
            node.x = parent.x if parent is not None and handle != layout.visible[0] else 0.0
            if not math.isfinite(node.y):
                node.y = parent.y if parent is not None else 0.0

    # ------------------------------------------------------------------
    # visual attributes
    # ------------------------------------------------------------------

    def _node_view(
        self,
        node: Node,
        view_root: int,
        start: Point,
        layout: LayoutResult,
        active: ActiveVisualizations,
        registry: VisualizationRegistry,
        resolver: SearchHighlightResolver,
        aggregator: CollapsedSubtreeAggregator,
    ) -> NodeView:
        o = self.options
        view = NodeView(
            id=node.id, x=node.x, y=node.y, x0=start[0], y0=start[1],
            name=node.name, is_leaf=node.is_leaf(), collapsed=node.is_collapsed(),
            hide=node.hide,
        )
        highlight = resolver.highlight(node)
        own_color = node.color.to_css() if node.color is not None else None

        visuals = {}
        if self.settings.enable_node_visualizations:
            for channel in Channel:
                vis = registry.active(active, channel)
                visuals[channel] = vis.visual_for(node) if vis is not None else None
        else:
            label_vis = registry.active(active, Channel.LABEL_COLOR)
            visuals[Channel.LABEL_COLOR] = label_vis.visual_for(node) if label_vis else None

        node.has_visualization = any(
            visuals.get(c) is not None
            for c in (Channel.NODE_FILL_COLOR, Channel.NODE_BORDER_COLOR, Channel.NODE_SHAPE, Channel.NODE_SIZE)
        )
        view.has_visualization = node.has_visualization

        view.label_color = highlight or visuals.get(Channel.LABEL_COLOR) or own_color or o.label_color_default
        view.border_color = (
            highlight or visuals.get(Channel.NODE_BORDER_COLOR) or own_color or o.branch_color_default
        )

        summary = aggregator.summarize(node.id) if node.is_collapsed() else None
        if summary is not None:
            node.collapsed_label = summary.label
            view.fill = highlight or visuals.get(Channel.NODE_FILL_COLOR) or summary.color
            view.collapsed_path = self._collapsed_path(node, layout)
        else:
            node.collapsed_label = None
            view.fill = highlight or visuals.get(Channel.NODE_FILL_COLOR) or o.background_color_default

        view.shape = visuals.get(Channel.NODE_SHAPE) or DEFAULT_SHAPE
        view.size = self._node_size(node, view_root, layout, visuals.get(Channel.NODE_SIZE))
        view.shape_path = symbol_path(view.shape, view.size)

        if node.hide:
            view.label = None
        elif summary is not None:
            view.label = summary.label
        else:
            view.label = make_node_label(node, o)
        view.label_x = layout.label_x.get(node.id, node.x)
        view.connector = layout.connectors.get(node.id)
        if o.show_branch_length_values:
            view.branch_length_label = make_branch_length_label(node, o)
        if o.show_confidence_values:
            view.confidence_label = make_confidence_label(node, o)
        return view

    def _node_size(self, node: Node, view_root: int, layout: LayoutResult, visual_size) -> float:
        o = self.options
        if visual_size is not None:
            return float(visual_size)
        if node.id == view_root or o.internal_node_size <= 0:
            return 0.0
        if node.has_visualization:
            return o.internal_node_size
        if node.children and o.show_internal_nodes:
            return o.internal_node_size
        if node.is_leaf() and o.show_external_nodes:
            return o.internal_node_size
        bl = node.branch_length
        if layout.mode is LayoutMode.PHYLOGRAM and node.parent == view_root and (bl is None or bl <= 0):
            # marks the substituted root branch
            return o.internal_node_size
        return 0.0

    def _collapsed_path(self, node: Node, layout: LayoutResult) -> str:
        """Wedge drawn for a collapsed node, relative to the node position."""
        phylogram = layout.mode is LayoutMode.PHYLOGRAM
        length = layout.scale(calc_average_tree_height(self.store, node.id)) if phylogram else 0.0
        start = -1 if phylogram else -10
        half = (node.width if node.width else self.options.branch_width_default) / 2
        return (
            f"M{start:g},{-half:g}L{length:g},-4L{length:g},4"
            f"L{start:g},{half:g}L{start:g},{-half:g}"
        )
