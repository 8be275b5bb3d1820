import ast
import logging
import math

from typing import Any, Dict, List, Optional, Tuple, Union

from cladescope.errors import TreeParseError
from cladescope.tree import Confidence, Events, NodeStore, Property, Taxonomy

logger = logging.getLogger(__name__)

NHX_PREFIX = "&&NHX:"

# ===================================================================
# 1. METADATA PROCESSING FUNCTIONS
# ===================================================================


def split_token(token: str) -> Tuple[str, Any]:
    """
    Split a token into name and value parts.
    Handles both "name=value" and "name:value" formats for metadata.

    Args:
        token: A string token in format "name=value" or "name:value"

    Returns:
        Tuple of (name, parsed_value) where parsed_value could be string, int, or float
    """
    if "=" in token:
        name, value = token.split("=", 1)
    elif ":" in token:
        name, value = token.split(":", 1)
    else:
        return token, True

    try:
        # literal first (quoted strings, numbers); plain words stay strings
        parsed_value = ast.literal_eval(value)
    except (ValueError, SyntaxError):
        parsed_value = value

    return name, parsed_value


def parse_metadata(data: str) -> Dict[str, Any]:
    """
    Parse a metadata string into a dictionary.
    Handles both regular metadata and NHX format.

    Args:
        data: String containing metadata in format "key1=value1,key2=value2"
              or NHX format "&&NHX:key1=value1:key2=value2"

    Returns:
        Dictionary mapping keys to their parsed values
    """
    data = data.strip()
    if data.startswith(NHX_PREFIX):
        tokens = data[len(NHX_PREFIX):].split(":")
    else:
        tokens = data.replace(";", ",").replace(" ", ",").split(",")

    metadata: Dict[str, Any] = {}
    for token in tokens:
        if token.strip():
            name, value = split_token(token.strip())
            metadata[name] = value
    return metadata


def _datatype_of(value: Any) -> str:
    if isinstance(value, bool):
        return "xsd:boolean"
    if isinstance(value, int):
        return "xsd:integer"
    if isinstance(value, float):
        return "xsd:decimal"
    return "xsd:string"


def apply_metadata(store: NodeStore, handle: int, raw: str) -> None:
    """
    Attach bracketed metadata to a node.

    NHX keys with a dedicated meaning are mapped onto the annotation payload:
    ``B`` (support) becomes a confidence, ``D`` a duplication/speciation event,
    ``S`` the taxonomy scientific name and ``T`` the taxonomy id. Every other
    key becomes a node property. A bare number (``[95]``) is read as support.
    """
    node = store.nodes[handle]
    text = raw.strip()
    if not text:
        return
    is_nhx = text.startswith(NHX_PREFIX)

    if not is_nhx:
        try:
            node.confidences.append(Confidence(value=float(text), type="bootstrap"))
            return
        except ValueError:
            pass

    for key, value in parse_metadata(text).items():
        if is_nhx and key == "B":
            try:
                node.confidences.append(Confidence(value=float(value), type="bootstrap"))
            except (TypeError, ValueError):
                raise TreeParseError(f"invalid NHX support value {value!r}") from None
        elif is_nhx and key == "D":
            flag = str(value).upper()
            if flag in ("Y", "T", "TRUE"):
                node.events = Events(duplications=1)
            elif flag in ("N", "F", "FALSE"):
                node.events = Events(speciations=1)
        elif is_nhx and key in ("S", "T"):
            if not node.taxonomies:
                node.taxonomies.append(Taxonomy())
            if key == "S":
                node.taxonomies[0].scientific_name = str(value)
            else:
                node.taxonomies[0].id_value = str(value)
        else:
            ref = f"NHX:{key}" if is_nhx else key
            node.properties.append(
                Property(ref=ref, value=value, datatype=_datatype_of(value))
            )


# ===================================================================
# 2. BUFFER PROCESSING FUNCTIONS
# ===================================================================


def flush_character_buffer(buffer: List[str], stack: List[int], store: NodeStore) -> None:
    """Assign the buffered characters as the name of the current node."""
    if stack and buffer:
        name = "".join(buffer).strip()
        if name:
            store.nodes[stack[-1]].name = name
    buffer.clear()


def flush_length_buffer(buffer: List[str], stack: List[int], store: NodeStore) -> None:
    """
    Assign the buffered characters as the branch length of the current node.

    Null-like tokens ("", "null", "None") leave the length missing.

    Raises:
        TreeParseError: If the buffer content is not a finite number
    """
    if not stack:
        buffer.clear()
        return

    buffer_value = "".join(buffer).strip()
    buffer.clear()
    if buffer_value in {"", "null", "NULL", "none", "None"}:
        store.nodes[stack[-1]].branch_length = None
        return

    try:
        parsed_number = float(buffer_value)
    except ValueError:
        raise TreeParseError(f"invalid branch length {buffer_value!r}") from None
    if math.isinf(parsed_number) or math.isnan(parsed_number):
        raise TreeParseError(f"non-finite branch length {buffer_value!r}")
    store.nodes[stack[-1]].branch_length = parsed_number


def flush_buffer(buffer: List[str], stack: List[int], store: NodeStore, mode: str) -> None:
    if mode == "character_reader":
        flush_character_buffer(buffer, stack, store)
    elif mode == "length_reader":
        flush_length_buffer(buffer, stack, store)


# ===================================================================
# 3. NODE STACK MANAGEMENT FUNCTIONS
# ===================================================================


def init_nodestack(store: NodeStore) -> List[int]:
    """Start a new tree: the root is created up front."""
    root = store.new_node()
    return [root.id]


def create_new_node(stack: List[int], store: NodeStore) -> List[int]:
    """Append a new child to the node on top of the stack and push it."""
    node = store.new_node(parent=stack[-1])
    stack.append(node.id)
    return stack


def close_node(stack: List[int]) -> List[int]:
    stack.pop()
    return stack


# ===================================================================
# 4. CORE PARSING FUNCTIONS
# ===================================================================


def _parse_newick(tokens: str) -> List[NodeStore]:
    """
    Return one ``NodeStore`` per tree in the token string.

    This is the low-level parsing function that processes character by character.
    """
    trees: List[NodeStore] = []
    buffer: List[str] = []
    meta_buffer: List[str] = []
    mode: str = "character_reader"
    quoted = False
    depth = 0
    store = NodeStore()
    node_stack: List[int] = init_nodestack(store)

    for char in tokens:
        if quoted:
            if char == "'":
                quoted = False
            else:
                buffer.append(char)
            continue

        if char in "\n\r\t" and mode != "metadata_reader":
            continue

        elif char == "'" and mode == "character_reader":
            quoted = True

        elif char == "(" and mode != "metadata_reader":
            if not node_stack:
                store = NodeStore()
                node_stack = init_nodestack(store)
            depth += 1
            create_new_node(node_stack, store)
            mode = "character_reader"

        elif char == ")" and mode != "metadata_reader":
            flush_buffer(buffer, node_stack, store, mode)
            depth -= 1
            if depth < 0 or len(node_stack) < 2:
                raise TreeParseError("unbalanced ')' in newick string")
            close_node(node_stack)
            mode = "character_reader"

        elif char == "," and mode in ("character_reader", "length_reader"):
            flush_buffer(buffer, node_stack, store, mode)
            if len(node_stack) < 2:
                raise TreeParseError("unexpected ',' outside parentheses")
            close_node(node_stack)
            create_new_node(node_stack, store)
            mode = "character_reader"

        elif char == ":" and mode != "metadata_reader":
            flush_buffer(buffer, node_stack, store, mode)
            mode = "length_reader"

        elif char == "[" and mode != "metadata_reader":
            flush_buffer(buffer, node_stack, store, mode)
            mode = "metadata_reader"

        elif char == "]" and mode == "metadata_reader":
            if node_stack:
                apply_metadata(store, node_stack[-1], "".join(meta_buffer))
            meta_buffer.clear()
            mode = "character_reader"

        elif char == ";" and mode != "metadata_reader":
            flush_buffer(buffer, node_stack, store, mode)
            if depth != 0:
                raise TreeParseError("unbalanced '(' in newick string")
            if node_stack:
                trees.append(store)
            node_stack = []
            mode = "character_reader"

        elif mode == "metadata_reader":
            meta_buffer.append(char)
        else:
            buffer.append(char)

    if quoted:
        raise TreeParseError("unterminated quoted label")
    if mode == "metadata_reader":
        raise TreeParseError("unterminated '[' comment")
    if node_stack:
        flush_buffer(buffer, node_stack, store, mode)
        if depth != 0:
            raise TreeParseError("unbalanced '(' in newick string")
        trees.append(store)

    return trees


# ===================================================================
# 5. PUBLIC API FUNCTIONS
# ===================================================================


def parse_newick(
    tokens: str, force_list: bool = False
) -> Union[NodeStore, List[NodeStore]]:
    """
    Parse a Newick/NHX string into a tree or list of trees.

    Args:
        tokens: Newick format string, optionally with NHX or bracketed metadata
        force_list: Always return a list even for single trees

    Returns:
        Single NodeStore or list of NodeStores

    Raises:
        TreeParseError: If the input is empty or malformed
    """
    if not tokens or not tokens.strip():
        raise TreeParseError("empty newick input")
    trees = _parse_newick(tokens.strip())
    if not trees:
        raise TreeParseError("no tree found in newick input")
    for tree in trees:
        tree.rooted = None
    logger.debug("parsed %d newick tree(s)", len(trees))
    if len(trees) == 1 and not force_list:
        return trees[0]
    return trees


def get_linear_order(store: NodeStore, start: Optional[int] = None) -> List[str]:
    """Leaf names in display order."""
    return [
        store.nodes[h].name for h in store.external_descendants(start if start is not None else store.root)
        if store.nodes[h].name
    ]
