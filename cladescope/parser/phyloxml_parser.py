"""
phyloXML reader.

Reads the subset of phyloXML the viewer displays: clade names, branch lengths
(element or attribute), confidences, branch width and colour, taxonomies,
sequences, events, distributions and typed properties.
"""

import logging
import xml.etree.ElementTree as ET
from typing import Any, List, Optional, Tuple, Union

from cladescope.errors import TreeParseError
from cladescope.tree import (
    BranchColor,
    Confidence,
    Distribution,
    Events,
    Node,
    NodeStore,
    Property,
    Sequence,
    Taxonomy,
)

logger = logging.getLogger(__name__)

NUMERIC_DATATYPES = {
    "xsd:integer": int,
    "xsd:int": int,
    "xsd:long": int,
    "xsd:short": int,
    "xsd:nonNegativeInteger": int,
    "xsd:positiveInteger": int,
    "xsd:decimal": float,
    "xsd:float": float,
    "xsd:double": float,
}


def _local(tag: str) -> str:
    """Tag name without its namespace."""
    return tag.rsplit("}", 1)[-1]


def _children(element: ET.Element, name: str) -> List[ET.Element]:
    return [c for c in element if _local(c.tag) == name]


def _child(element: ET.Element, name: str) -> Optional[ET.Element]:
    for c in element:
        if _local(c.tag) == name:
            return c
    return None


def _text(element: ET.Element, name: str) -> Optional[str]:
    child = _child(element, name)
    if child is None or child.text is None:
        return None
    text = child.text.strip()
    return text or None


def _float(value: Optional[str], what: str) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        raise TreeParseError(f"invalid {what} {value!r}") from None


def convert_property_value(value: Optional[str], datatype: str) -> Any:
    """Convert a property's text by its declared xsd datatype."""
    if value is None:
        return None
    converter = NUMERIC_DATATYPES.get(datatype)
    if converter is None:
        if datatype == "xsd:boolean":
            return value.strip().lower() in ("true", "1")
        return value
    try:
        return converter(value)
    except ValueError:
        try:
            return float(value)
        except ValueError:
            logger.warning("property value %r is not a valid %s", value, datatype)
            return value


# ===================================================================
# ELEMENT READERS
# ===================================================================


def _read_taxonomy(element: ET.Element) -> Taxonomy:
    tax = Taxonomy(
        code=_text(element, "code"),
        scientific_name=_text(element, "scientific_name"),
        common_name=_text(element, "common_name"),
        rank=_text(element, "rank"),
        synonyms=[s.text.strip() for s in _children(element, "synonym") if s.text],
    )
    id_el = _child(element, "id")
    if id_el is not None and id_el.text:
        tax.id_value = id_el.text.strip()
        tax.id_provider = id_el.get("provider")
    return tax


def _read_sequence(element: ET.Element) -> Sequence:
    seq = Sequence(
        symbol=_text(element, "symbol"),
        name=_text(element, "name"),
        gene_name=_text(element, "gene_name"),
        location=_text(element, "location"),
        mol_seq=_text(element, "mol_seq"),
        type=element.get("type"),
    )
    acc = _child(element, "accession")
    if acc is not None and acc.text:
        seq.accession = acc.text.strip()
        seq.accession_source = acc.get("source")
    return seq


def _read_events(element: ET.Element) -> Events:
    def count(name: str) -> int:
        text = _text(element, name)
        return int(text) if text else 0

    return Events(
        duplications=count("duplications"),
        speciations=count("speciations"),
        losses=count("losses"),
    )


def _read_color(element: ET.Element) -> BranchColor:
    def channel(name: str) -> int:
        text = _text(element, name)
        return int(text) if text else 0

    return BranchColor(channel("red"), channel("green"), channel("blue"))


def _read_clade_data(node: Node, clade: ET.Element) -> None:
    attr_length = clade.get("branch_length")
    if attr_length is not None:
        node.branch_length = _float(attr_length, "branch length")

    for child in clade:
        tag = _local(child.tag)
        text = child.text.strip() if child.text else None
        if tag == "name":
            node.name = text or ""
        elif tag == "branch_length":
            node.branch_length = _float(text, "branch length")
        elif tag == "confidence":
            value = _float(text, "confidence")
            if value is not None:
                node.confidences.append(
                    Confidence(
                        value=value,
                        type=child.get("type"),
                        stddev=_float(child.get("stddev"), "confidence stddev"),
                    )
                )
        elif tag == "width":
            node.width = _float(text, "branch width")
        elif tag == "color":
            node.color = _read_color(child)
        elif tag == "taxonomy":
            node.taxonomies.append(_read_taxonomy(child))
        elif tag == "sequence":
            node.sequences.append(_read_sequence(child))
        elif tag == "events":
            node.events = _read_events(child)
        elif tag == "distribution":
            desc = _text(child, "desc")
            if desc:
                node.distributions.append(Distribution(desc=desc))
        elif tag == "property":
            ref = child.get("ref")
            if not ref:
                raise TreeParseError("property element without 'ref'")
            datatype = child.get("datatype", "xsd:string")
            node.properties.append(
                Property(
                    ref=ref,
                    value=convert_property_value(text, datatype),
                    datatype=datatype,
                    applies_to=child.get("applies_to", "node"),
                    unit=child.get("unit"),
                )
            )


def _read_phylogeny(phylogeny: ET.Element) -> NodeStore:
    store = NodeStore()
    rooted = phylogeny.get("rooted")
    store.rooted = None if rooted is None else rooted.lower() == "true"
    store.name = _text(phylogeny, "name")

    root_clade = _child(phylogeny, "clade")
    if root_clade is None:
        return store

    stack: List[Tuple[ET.Element, Optional[int]]] = [(root_clade, None)]
    while stack:
        clade, parent = stack.pop()
        node = store.new_node(parent=parent)
        _read_clade_data(node, clade)
        for sub in reversed(_children(clade, "clade")):
            stack.append((sub, node.id))
    return store


# ===================================================================
# PUBLIC API
# ===================================================================


def parse_phyloxml(text: Union[str, bytes], force_list: bool = False) -> Union[NodeStore, List[NodeStore]]:
    """
    Parse a phyloXML document.

    Args:
        text: The XML document
        force_list: Always return a list even for a single phylogeny

    Returns:
        Single NodeStore or list of NodeStores, one per ``phylogeny`` element

    Raises:
        TreeParseError: If the document is not well-formed or holds no phylogeny
    """
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise TreeParseError(f"malformed phyloXML: {e}") from e

    if _local(root.tag) == "phylogeny":
        phylogenies = [root]
    else:
        phylogenies = _children(root, "phylogeny")
    if not phylogenies:
        raise TreeParseError("no phylogeny element in phyloXML document")

    trees = [_read_phylogeny(p) for p in phylogenies]
    logger.debug("parsed %d phyloXML phylogenie(s)", len(trees))
    if len(trees) == 1 and not force_list:
        return trees[0]
    return trees
