"""
Tree parsers for Newick/NHX and phyloXML.

``parse_tree`` picks the format from the first non-blank character.
"""

from typing import List, Union

from cladescope.tree import NodeStore

from .newick_parser import (
    parse_newick,
    split_token,
    parse_metadata,
    apply_metadata,
    get_linear_order,
)
from .phyloxml_parser import parse_phyloxml, convert_property_value


def parse_tree(text: Union[str, bytes]) -> NodeStore:
    """Parse the first tree of a Newick or phyloXML document."""
    if isinstance(text, bytes):
        text = text.decode("utf-8")
    if text.lstrip().startswith("<"):
        trees: List[NodeStore] = parse_phyloxml(text, force_list=True)  # type: ignore[assignment]
    else:
        trees = parse_newick(text, force_list=True)  # type: ignore[assignment]
    return trees[0]


def read_tree(path: str) -> NodeStore:
    with open(path, encoding="utf-8") as f:
        return parse_tree(f.read())


__all__ = [
    "parse_tree",
    "read_tree",
    "parse_newick",
    "parse_phyloxml",
    "split_token",
    "parse_metadata",
    "apply_metadata",
    "convert_property_value",
    "get_linear_order",
]
