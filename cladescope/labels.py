"""Label text for nodes, branch lengths and confidence values."""

from typing import Optional

from cladescope.config import Options
from cladescope.scales import round_half_away
from cladescope.tree import Node, NodeStore

BRANCH_LENGTH_DIGITS = 4
CONFIDENCE_VALUE_DIGITS = 2

# extra characters around the two truncated names of a collapsed label
COLLAPSED_LABEL_EXTRA = 8


def format_number(value: float, digits: int) -> str:
    """Rounded to ``digits`` decimals without trailing zeros (0.25 not 0.2500)."""
    text = f"{round_half_away(value, digits):.{digits}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def append(label: str, part: Optional[str]) -> str:
    if not part:
        return label
    return f"{label} {part}" if label else part


def append_parenthesised(label: str, part: Optional[str]) -> str:
    if not part:
        return label
    return f"{label} ({part})" if label else f"({part})"


def append_bracketed(label: str, part: Optional[str]) -> str:
    if not part:
        return label
    return f"{label} [{part}]" if label else f"[{part}]"


def make_node_label(node: Node, options: Options) -> Optional[str]:
    """Composed label text, or None when labels of this kind are switched off."""
    internal = not node.is_leaf()
    if internal and not options.show_internal_labels:
        return None
    if not internal and not options.show_external_labels:
        return None

    label = ""
    if options.show_node_name:
        label = append(label, node.name)
    if options.show_taxonomy and node.taxonomies:
        t = node.taxonomies[0]
        if options.show_taxonomy_code:
            label = append(label, t.code)
        if options.show_taxonomy_scientific_name:
            label = append(label, t.scientific_name)
        if options.show_taxonomy_common_name:
            label = append_parenthesised(label, t.common_name)
        if options.show_taxonomy_rank:
            label = append_parenthesised(label, t.rank)
        if options.show_taxonomy_synonyms:
            for synonym in t.synonyms:
                label = append_bracketed(label, synonym)
    if options.show_sequence and node.sequences:
        s = node.sequences[0]
        if options.show_sequence_symbol:
            label = append(label, s.symbol)
        if options.show_sequence_name:
            label = append(label, s.name)
        if options.show_sequence_gene_symbol:
            label = append_parenthesised(label, s.gene_name)
    if options.show_distributions:
        for d in node.distributions:
            label = append_bracketed(label, d.desc)
    return label


def make_branch_length_label(node: Node, options: Options) -> Optional[str]:
    bl = node.branch_length
    if bl is None or bl <= 0:
        return None
    if (
        options.phylogram
        and options.min_branch_length_value_to_show
        and bl < options.min_branch_length_value_to_show
    ):
        return None
    return format_number(bl, BRANCH_LENGTH_DIGITS)


def make_confidence_label(node: Node, options: Options) -> Optional[str]:
    if not node.confidences:
        return None
    threshold = options.min_confidence_value_to_show
    if threshold and not any(c.value >= threshold for c in node.confidences):
        return None
    parts = [format_number(c.value, CONFIDENCE_VALUE_DIGITS) for c in node.confidences if c.value]
    return "/".join(parts) if parts else None


def calc_max_label_length(store: NodeStore, view_root: int, options: Options) -> int:
    """Longest tip label, in characters, of the current view.

    Never less than the label gap; a collapsed node counts as two truncated
    names plus the surrounding text.
    """
    longest = int(options.node_label_gap)
    for handle in store.preorder(view_root):
        node = store.nodes[handle]
        if node.is_collapsed():
            longest = max(longest, 2 * options.collapsed_label_length + COLLAPSED_LABEL_EXTRA)
        elif node.is_leaf():
            label = make_node_label(node, options)
            if label:
                longest = max(longest, len(label))
    return longest
