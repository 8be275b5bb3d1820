"""
Interactive session: one tree, its view state and the host entry points.

Every gesture method mutates the session state and then runs one
reconciliation pass, returning the resulting ``RenderFrame``.
"""

import logging
from dataclasses import fields
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from cladescope import rooting, treeutil
from cladescope.config import LayoutMode, Options, Settings
from cladescope.errors import CladescopeError, EmptyTreeError, TreeOperationError, VisualizationConfigError
from cladescope.labels import calc_max_label_length, format_number
from cladescope.layout import reserved_label_space
from cladescope.overrides import ColorOverrideStore
from cladescope.parser import parse_tree
from cladescope.reconcile import ReconciliationController, RenderFrame
from cladescope.search import SearchState
from cladescope.tree import NodeStore
from cladescope.visualization import (
    ActiveVisualizations,
    Channel,
    FieldSelector,
    NODE_FIELDS,
    IgnoreList,
    Legend,
    PropertySelector,
    RegistryBuildResult,
    VisualizationRegistry,
    VisualizationSpec,
    build_registry,
)

logger = logging.getLogger(__name__)

OFF = "off"


class Session:
    """
    Owns the tree, the visualization registry, search state and overrides.

    Args:
        store: The parsed tree.
        options: Display options; switched to cladogram if the tree has no
            branch lengths.
        settings: Viewport settings.
        visualizations: Visualization configuration entries.
        ignore: ref -> values left out of visualization domains.

    Raises:
        EmptyTreeError: If the tree is missing or has no nodes.
    """

    def __init__(
        self,
        store: Optional[NodeStore],
        options: Optional[Options] = None,
        settings: Optional[Settings] = None,
        visualizations: Sequence[VisualizationSpec] = (),
        ignore: Optional[IgnoreList] = None,
    ):
        if store is None or store.is_empty():
            raise EmptyTreeError("cannot open a session on an empty tree")
        self.store = store
        self.tree_properties = treeutil.collect_tree_properties(store)
        self.options = (options or Options()).validated(self.tree_properties)
        self.settings = settings or Settings()

        self.view_root: int = store.root
        self._super_tree_roots: List[int] = []
        self.display_width = self.settings.display_width
        self.display_height = self.settings.display_height

        self.specs: List[VisualizationSpec] = list(visualizations)
        self.ignore = ignore
        self.active = ActiveVisualizations()
        self.registry = VisualizationRegistry()
        self.registry_errors: List[VisualizationConfigError] = []
        self.overrides = ColorOverrideStore()
        self.search = SearchState(negate=self.options.search_negate)

        self.depth_collapse_level = -1
        self.branch_length_collapse_level = -1.0
        self._order_ascending = True

        self.controller = ReconciliationController(store, self.options, self.settings)
        self.frame: Optional[RenderFrame] = None
        self.rebuild_visualizations()
        logger.info("session opened on tree with %d nodes", len(store))

    @classmethod
    def from_text(cls, text: Union[str, bytes], **kwargs: Any) -> "Session":
        """Open a session on a Newick or phyloXML document."""
        return cls(parse_tree(text), **kwargs)

    # ------------------------------------------------------------------
    # render pass
    # ------------------------------------------------------------------

    def update(
        self,
        source: Optional[int] = None,
        transition_duration: Optional[int] = None,
        skip_width_recalc: bool = False,
    ) -> RenderFrame:
        self.frame = self.controller.update(
            self.view_root,
            self.active,
            self.registry,
            self.search,
            self.display_width,
            self.display_height,
            source=source,
            transition_duration=transition_duration,
            skip_width_recalc=skip_width_recalc,
        )
        return self.frame

    # ------------------------------------------------------------------
    # visualizations
    # ------------------------------------------------------------------

    def rebuild_visualizations(self, ignore: Optional[IgnoreList] = None) -> RegistryBuildResult:
        """Rebuild the registry from the current view; re-applies colour overrides."""
        if ignore is not None:
            self.ignore = ignore
        result = build_registry(
            self.store, self.specs, self.options.node_shapes, self.ignore, self.view_root
        )
        self.registry = result.registry
        self.registry_errors = result.errors
        self.overrides.reapply(self.registry)
        for channel in Channel:
            label = self.active.get(channel)
            if label is not None and (channel, label) not in self.registry:
                self.active = self.active.with_channel(channel, None)
        return result

    def add_visualization(self, spec: VisualizationSpec) -> RegistryBuildResult:
        self.specs = [s for s in self.specs if s.label != spec.label] + [spec]
        return self.rebuild_visualizations()

    def set_channel_visualization(self, channel: Channel, label: Optional[str]) -> RenderFrame:
        """Activate visualization ``label`` on ``channel``; None clears the channel."""
        if label is not None and (channel, label) not in self.registry:
            raise VisualizationConfigError(label, f"no visualization on channel '{channel.value}'")
        self.active = self.active.with_channel(channel, label)
        return self.update(transition_duration=0, skip_width_recalc=True)

    def apply_color_override(self, channel: Channel, label: str, key: Any, color: str) -> RenderFrame:
        self.overrides.apply_override(self.registry, channel, label, key, color)
        return self.update(transition_duration=0, skip_width_recalc=True)

    def legend(self, channel: Channel, label: Optional[str] = None) -> Optional[Legend]:
        """Legend of ``label`` (the active visualization by default) on ``channel``."""
        visualization = self.registry.get(channel, label if label is not None else self.active.get(channel))
        if visualization is None:
            return None
        return visualization.legend(self.options.legend_decimals)

    # ------------------------------------------------------------------
    # search and selection
    # ------------------------------------------------------------------

    def search_flags(self) -> treeutil.SearchFlags:
        o = self.options
        return treeutil.SearchFlags(
            case_sensitive=o.search_is_case_sensitive,
            partial=o.search_is_partial,
            regex=o.search_uses_regex,
            properties=o.search_properties,
        )

    def set_search_query(
        self, slot: int, text: Optional[str], flags: Optional[treeutil.SearchFlags] = None
    ) -> RenderFrame:
        self.search.set_query(self.store, slot, text, flags or self.search_flags())
        return self.update(skip_width_recalc=True)

    def set_negate_search(self, negate: bool) -> RenderFrame:
        self.search.negate = negate
        self.options.search_negate = negate
        return self.update(skip_width_recalc=True)

    def reset_search(self, slot: Optional[int] = None) -> RenderFrame:
        self.search.reset(slot)
        return self.update(skip_width_recalc=True)

    def select_node(self, handle: int) -> RenderFrame:
        node = self.store[handle]
        self.search.selected.add(node.id)
        return self.update(skip_width_recalc=True)

    def deselect_node(self, handle: int) -> RenderFrame:
        self.search.selected.discard(handle)
        return self.update(skip_width_recalc=True)

    def clear_selection(self) -> RenderFrame:
        self.search.selected.clear()
        return self.update(skip_width_recalc=True)

    # ------------------------------------------------------------------
    # layout and options
    # ------------------------------------------------------------------

    def set_layout_mode(self, mode: Union[LayoutMode, str, bool], aligned: bool = False) -> RenderFrame:
        """Switch between cladogram and phylogram; ``aligned`` applies to phylograms only."""
        if isinstance(mode, bool):
            phylogram = mode
        else:
            phylogram = LayoutMode(mode) is LayoutMode.PHYLOGRAM
        if phylogram and not self.tree_properties.branch_lengths:
            raise TreeOperationError("tree has no branch lengths; phylogram unavailable")
        self.options.phylogram = phylogram
        self.options.align_phylogram = phylogram and aligned
        return self.update()

    def set_options(self, **changes: Any) -> RenderFrame:
        """Change display options by name (label switches, font sizes, colours...)."""
        known = {f.name for f in fields(Options)}
        unknown = set(changes) - known
        if unknown:
            raise CladescopeError(f"unknown option(s): {', '.join(sorted(unknown))}")
        if "phylogram" in changes or "align_phylogram" in changes:
            self.set_layout_mode(
                changes.pop("phylogram", self.options.phylogram),
                changes.pop("align_phylogram", self.options.align_phylogram),
            )
        for name, value in changes.items():
            setattr(self.options, name, value)
        self.search.negate = self.options.search_negate
        if "node_shapes" in changes:
            self.rebuild_visualizations()
        return self.update()

    # ------------------------------------------------------------------
    # zoom
    # ------------------------------------------------------------------

    def _max_label_length(self) -> int:
        return calc_max_label_length(self.store, self.view_root, self.options)

    def zoom_in_x(self) -> RenderFrame:
        self.display_width *= self.settings.zoom_in_factor
        return self.update(transition_duration=0)

    def zoom_out_x(self) -> RenderFrame:
        """Shrink horizontally unless the drawable width would drop below one pixel."""
        new_width = self.display_width * self.settings.zoom_out_factor
        reserved = reserved_label_space(self.settings, self.options, self._max_label_length())
        if new_width - reserved >= 1:
            self.display_width = new_width
        return self.update(transition_duration=0)

    def zoom_in_y(self) -> RenderFrame:
        self.display_height *= self.settings.zoom_in_factor
        return self.update(transition_duration=0)

    def zoom_out_y(self) -> RenderFrame:
        floor = self.settings.min_height_fraction * self.settings.display_height
        self.display_height = max(self.display_height * self.settings.zoom_out_factor, floor)
        return self.update(transition_duration=0)

    def zoom_fit(self) -> RenderFrame:
        self.display_width = self.settings.display_width
        self.display_height = self.settings.display_height
        return self.update(transition_duration=0)

    # ------------------------------------------------------------------
    # collapse
    # ------------------------------------------------------------------

    def toggle_collapse(self, handle: int) -> RenderFrame:
        node = self.store[handle]
        if node.is_leaf():
            raise TreeOperationError(f"node {handle} is a leaf and cannot be collapsed")
        self.store.toggle_collapse(handle)
        return self.update(source=handle)

    def uncollapse_all(self) -> RenderFrame:
        treeutil.uncollapse_all(self.store, self.view_root)
        self._reset_collapse_levels()
        return self.update()

    def _reset_collapse_levels(self) -> None:
        self.depth_collapse_level = -1
        self.branch_length_collapse_level = -1.0

    def _external_nodes(self) -> int:
        return treeutil.calc_sum_of_all_external_descendants(self.store, self.view_root)

    def _branch_length_range(self) -> Tuple[float, float, float]:
        """(min, max, step) of leaf distances from the view root."""
        dists = []
        for leaf in self.store.external_descendants(self.view_root):
            dist = 0.0
            current = leaf
            while current != self.view_root:
                node = self.store.nodes[current]
                if node.branch_length is not None and node.branch_length > 0:
                    dist += node.branch_length
                current = node.parent
            dists.append(dist)
        lo, hi = min(dists), max(dists)
        return lo, hi, (hi - lo) / max(1, self.settings.branch_length_collapse_steps)

    def incr_depth_collapse_level(self) -> RenderFrame:
        self.branch_length_collapse_level = -1.0
        if self._external_nodes() > 2:
            max_depth = treeutil.calc_max_depth(self.store, self.view_root)
            if self.depth_collapse_level < 0:
                self.depth_collapse_level = max_depth
            if self.depth_collapse_level >= max_depth:
                self.depth_collapse_level = 1
            else:
                treeutil.uncollapse_all(self.store, self.view_root)
                self.depth_collapse_level += 1
            treeutil.collapse_to_depth(self.store, self.view_root, self.depth_collapse_level)
        return self.update(transition_duration=0)

    def decr_depth_collapse_level(self) -> RenderFrame:
        self.branch_length_collapse_level = -1.0
        if self._external_nodes() > 2:
            max_depth = treeutil.calc_max_depth(self.store, self.view_root)
            if self.depth_collapse_level < 0:
                self.depth_collapse_level = max_depth
            if self.depth_collapse_level <= 1:
                self.depth_collapse_level = max_depth
                treeutil.uncollapse_all(self.store, self.view_root)
            else:
                self.depth_collapse_level -= 1
                treeutil.collapse_to_depth(self.store, self.view_root, self.depth_collapse_level)
        return self.update(transition_duration=0)

    def depth_collapse_display(self) -> Union[str, int]:
        if self._external_nodes() < 3 or self.depth_collapse_level < 0:
            return OFF
        if self.depth_collapse_level == treeutil.calc_max_depth(self.store, self.view_root):
            return OFF
        return self.depth_collapse_level

    def incr_branch_length_collapse_level(self) -> RenderFrame:
        self.depth_collapse_level = -1
        if self._external_nodes() > 2:
            lo, hi, step = self._branch_length_range()
            level = self.branch_length_collapse_level
            if level >= hi or level < 0:
                level = lo
            level += step
            if level >= hi:
                treeutil.uncollapse_all(self.store, self.view_root)
            else:
                treeutil.collapse_to_branch_length(self.store, self.view_root, level)
            self.branch_length_collapse_level = level
        return self.update(transition_duration=0)

    def decr_branch_length_collapse_level(self) -> RenderFrame:
        self.depth_collapse_level = -1
        if self._external_nodes() > 2:
            lo, hi, step = self._branch_length_range()
            level = self.branch_length_collapse_level
            if level <= lo:
                level = hi
            level -= step
            if level <= lo:
                treeutil.uncollapse_all(self.store, self.view_root)
            else:
                treeutil.collapse_to_branch_length(self.store, self.view_root, level)
            self.branch_length_collapse_level = level
        return self.update(transition_duration=0)

    def branch_length_collapse_display(self) -> str:
        if self._external_nodes() < 3:
            return OFF
        lo, hi, _ = self._branch_length_range()
        level = self.branch_length_collapse_level
        if level <= lo or level >= hi:
            return OFF
        return format_number(level, 4)

    def collapse_by_feature(
        self, property_ref: Optional[str] = None, field: Optional[str] = None
    ) -> RenderFrame:
        """Collapse maximal subtrees whose leaves share one value of a property or field."""
        if (property_ref is None) == (field is None):
            raise CladescopeError("give exactly one of 'property_ref' and 'field'")
        selector = PropertySelector(property_ref) if property_ref is not None else FieldSelector(field)
        if isinstance(selector, FieldSelector) and field not in NODE_FIELDS:
            raise CladescopeError(f"unknown node field '{field}'")

        def feature(node):
            values = selector.values(node)
            return values[0] if values else None

        treeutil.collapse_by_feature(self.store, self.view_root, feature)
        self._reset_collapse_levels()
        return self.update()

    # ------------------------------------------------------------------
    # structure
    # ------------------------------------------------------------------

    def go_to_subtree(self, handle: int) -> RenderFrame:
        """Show only the subtree at ``handle``; on the current view root, go back up."""
        node = self.store[handle]
        if handle == self.view_root:
            return self.return_to_super_tree()
        if not node.children:
            raise TreeOperationError(f"node {handle} has no visible children")
        self._super_tree_roots.append(self.view_root)
        self.view_root = handle
        return self._view_changed()

    def return_to_super_tree(self) -> RenderFrame:
        if self._super_tree_roots:
            self.view_root = self._super_tree_roots.pop()
        return self._view_changed()

    def _view_changed(self) -> RenderFrame:
        self._reset_collapse_levels()
        self.rebuild_visualizations()
        self.display_width = self.settings.display_width
        self.display_height = self.settings.display_height
        return self.update(transition_duration=0)

    def _show_whole_tree(self) -> None:
        self._super_tree_roots.clear()
        self.view_root = self.store.root

    def swap_children(self, handle: int) -> RenderFrame:
        treeutil.swap_children(self.store, handle)
        return self.update(source=handle)

    def order_subtree(self, handle: int) -> RenderFrame:
        """Order by external-node count; alternates direction between calls."""
        treeutil.order_subtree(self.store, handle, self._order_ascending)
        self._order_ascending = not self._order_ascending
        return self.update(source=handle)

    def reroot(self, handle: int, distance_to_parent: float = -1.0) -> RenderFrame:
        rooting.reroot(self.store, handle, distance_to_parent)
        self._show_whole_tree()
        return self._structure_changed(source=handle)

    def midpoint_reroot(self) -> RenderFrame:
        rooting.midpoint_reroot(self.store)
        self._show_whole_tree()
        return self._structure_changed()

    def delete_subtree(self, handle: int) -> RenderFrame:
        node = self.store[handle]
        if handle == self.view_root or node.parent is None:
            raise TreeOperationError("cannot delete the root of the current view")
        parent = node.parent
        removed = set(self.store.preorder(handle, include_collapsed=True))
        if self.view_root in removed or any(r in removed for r in self._super_tree_roots):
            self._show_whole_tree()
        treeutil.delete_subtree(self.store, handle)
        if self.view_root not in self.store:
            self._show_whole_tree()
        self.search.prune(self.store)
        return self._structure_changed(source=parent if parent in self.store else None)

    def _structure_changed(self, source: Optional[int] = None) -> RenderFrame:
        self.tree_properties = treeutil.collect_tree_properties(self.store)
        if not self.tree_properties.branch_lengths:
            self.options.phylogram = False
            self.options.align_phylogram = False
        self._reset_collapse_levels()
        self.rebuild_visualizations()
        return self.update(source=source)

    # ------------------------------------------------------------------
    # node data
    # ------------------------------------------------------------------

    def node_data(self, handle: int) -> List[Tuple[str, str]]:
        """Rows of the node-data panel, in display order."""
        n = self.store[handle]
        rows: List[Tuple[str, str]] = []
        if n.name:
            rows.append(("Name", n.name))
        if n.branch_length is not None:
            rows.append(("Distance to Parent", f"{n.branch_length:g}"))
        for c in n.confidences:
            rows.append((f"Confidence [{c.type}]" if c.type else "Confidence", f"{c.value:g}"))
            if c.stddev:
                rows.append(("- stdev", f"{c.stddev:g}"))
        for t in n.taxonomies:
            for key, value in (
                ("Taxonomy Code", t.code),
                ("Scientific Name", t.scientific_name),
                ("Common Name", t.common_name),
                ("Rank", t.rank),
                ("Taxonomy Id", t.id_value),
            ):
                if value:
                    rows.append((key, value))
            for synonym in t.synonyms:
                rows.append(("Synonym", synonym))
        for s in n.sequences:
            for key, value in (
                ("Symbol", s.symbol),
                ("Accession", s.accession),
                ("Sequence Name", s.name),
                ("Gene Name", s.gene_name),
                ("Location", s.location),
                ("Molecular Sequence", s.mol_seq),
            ):
                if value:
                    rows.append((key, value))
        if n.events is not None:
            for key, value in (
                ("Duplications", n.events.duplications),
                ("Speciations", n.events.speciations),
                ("Losses", n.events.losses),
            ):
                if value:
                    rows.append((key, str(value)))
        for d in n.distributions:
            rows.append(("Distribution", d.desc))
        for p in n.properties:
            text = f"{p.value} {p.unit}" if p.unit else str(p.value)
            rows.append((p.ref, text))
        rows.append(("Depth", str(self.store.depth(handle))))
        rows.append(("External Nodes", str(len(self.store.external_descendants(handle)))))
        return rows

    def summary(self) -> Dict[str, Any]:
        stats = treeutil.basic_tree_properties(self.store, self.view_root)
        return {
            "nodes": len(self.store),
            "external_nodes": stats.external_nodes,
            "visible_external_nodes": treeutil.calc_sum_of_external_descendants(self.store, self.view_root),
            "max_depth": stats.max_depth,
            "branch_length_min": stats.branch_length_min,
            "branch_length_mean": stats.branch_length_mean,
            "branch_length_max": stats.branch_length_max,
            "rooted": self.store.rooted,
            "view_root": self.view_root,
            "depth_collapse": self.depth_collapse_display(),
            "branch_length_collapse": self.branch_length_collapse_display(),
        }
