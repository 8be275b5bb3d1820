"""Display options and viewport settings for a session."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from cladescope.treeutil import TreeProperties


class LayoutMode(Enum):
    CLADOGRAM = "cladogram"
    PHYLOGRAM = "phylogram"


@dataclass
class Options:
    """What is drawn and how. Mutated by host gestures between passes."""

    phylogram: bool = False
    align_phylogram: bool = False
    dynahide: bool = False
    dynahide_height_fraction: float = 0.8

    show_branch_length_values: bool = False
    show_confidence_values: bool = False
    show_node_name: bool = True
    show_taxonomy: bool = False
    show_taxonomy_code: bool = False
    show_taxonomy_scientific_name: bool = False
    show_taxonomy_common_name: bool = False
    show_taxonomy_rank: bool = False
    show_taxonomy_synonyms: bool = False
    show_sequence: bool = False
    show_sequence_symbol: bool = False
    show_sequence_name: bool = False
    show_sequence_gene_symbol: bool = False
    show_distributions: bool = False
    show_internal_nodes: bool = False
    show_external_nodes: bool = False
    show_internal_labels: bool = False
    show_external_labels: bool = True

    branch_width_default: float = 2
    branch_color_default: str = "#aaaaaa"
    label_color_default: str = "#202020"
    background_color_default: str = "#f0f0f0"
    found0_color: str = "#00ff00"
    found1_color: str = "#ff0000"
    found0and1_color: str = "#00ffff"
    selected_color: str = "#ff00ff"

    internal_node_size: float = 3
    external_node_font_size: float = 10
    internal_node_font_size: float = 9
    branch_data_font_size: float = 7
    collapsed_label_length: int = 7
    node_label_gap: float = 10
    aligned_connector_min_gap: float = 5.0
    legend_decimals: int = 2

    min_branch_length_value_to_show: Optional[float] = None
    min_confidence_value_to_show: Optional[float] = None

    search_is_case_sensitive: bool = False
    search_is_partial: bool = True
    search_uses_regex: bool = False
    search_properties: bool = False
    search_negate: bool = False

    node_shapes: Optional[List[str]] = None

    @property
    def layout_mode(self) -> LayoutMode:
        return LayoutMode.PHYLOGRAM if self.phylogram else LayoutMode.CLADOGRAM

    def validated(self, tree_properties: "TreeProperties") -> "Options":
        """Copy with settings the tree cannot support switched off."""
        options = replace(self)
        if not tree_properties.branch_lengths:
            options.phylogram = False
            options.align_phylogram = False
        return options


@dataclass
class Settings:
    """Viewport geometry and animation defaults."""

    root_offset: float = 30
    display_width: float = 800
    display_height: float = 600
    transition_duration: int = 750
    zoom_in_factor: float = 1.2
    min_height_fraction: float = 0.25
    enable_node_visualizations: bool = True
    branch_length_collapse_steps: int = 10

    @property
    def zoom_out_factor(self) -> float:
        return 1 / self.zoom_in_factor
