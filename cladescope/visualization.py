"""
Visualization registry: named property -> visual-channel mappings.

A ``VisualizationSpec`` is the configuration entry for one property (or node
field). ``build_registry`` turns a list of specs plus the values observed in
the tree into a ``VisualizationRegistry``: per channel, a mapping from label to
an immutable ``Visualization``.

The three colour channels of one spec share a single ``ScaleAdapter`` (or
mapping table), so recolouring one category through ``ColorOverrideStore``
shows up in label, fill and border colour alike.

Construction problems (bad colour-stop arity, ambiguous selector, unknown
palette) abort only the offending entry; they are collected in
``RegistryBuildResult.errors`` and logged.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

from cladescope import colors
from cladescope.errors import VisualizationConfigError
from cladescope.scales import (
    OUT_OF_RANGE_MARKER,
    LegendEntry,
    LinearScale,
    OrdinalScale,
    ScaleAdapter,
    ScaleType,
    format_legend_value,
)
from cladescope.tree import Node, NodeStore

logger = logging.getLogger(__name__)


# ===================================================================
# 1. CHANNELS AND SELECTORS
# ===================================================================


class Channel(Enum):
    LABEL_COLOR = "label_color"
    NODE_FILL_COLOR = "node_fill_color"
    NODE_BORDER_COLOR = "node_border_color"
    NODE_SHAPE = "node_shape"
    NODE_SIZE = "node_size"


COLOR_CHANNELS = (Channel.LABEL_COLOR, Channel.NODE_FILL_COLOR, Channel.NODE_BORDER_COLOR)

# protein residues, ambiguity code and gap
RESIDUE_ALPHABET = tuple("ACDEFGHIKLMNPQRSTVWYX-")


def _first(items: Sequence[Any]) -> Optional[Any]:
    return items[0] if items else None


def _taxonomy_field(attr: str) -> Callable[[Node], List[Any]]:
    def getter(node: Node) -> List[Any]:
        tax = _first(node.taxonomies)
        value = getattr(tax, attr) if tax is not None else None
        return [value] if value else []

    return getter


def _sequence_field(attr: str) -> Callable[[Node], List[Any]]:
    def getter(node: Node) -> List[Any]:
        seq = _first(node.sequences)
        value = getattr(seq, attr) if seq is not None else None
        return [value] if value else []

    return getter


def _event_kind(node: Node) -> List[Any]:
    if node.events is None:
        return []
    if node.events.duplications > 0:
        return ["duplication"]
    if node.events.speciations > 0:
        return ["speciation"]
    return []


NODE_FIELDS: Dict[str, Callable[[Node], List[Any]]] = {
    "name": lambda n: [n.name] if n.name else [],
    "branch_length": lambda n: [n.branch_length] if n.branch_length is not None else [],
    "confidence": lambda n: [c.value for c in n.confidences],
    "distribution": lambda n: [d.desc for d in n.distributions],
    "event": _event_kind,
    "taxonomy_code": _taxonomy_field("code"),
    "taxonomy_scientific_name": _taxonomy_field("scientific_name"),
    "taxonomy_common_name": _taxonomy_field("common_name"),
    "taxonomy_rank": _taxonomy_field("rank"),
    "sequence_symbol": _sequence_field("symbol"),
    "sequence_name": _sequence_field("name"),
    "sequence_gene_name": _sequence_field("gene_name"),
    "sequence_accession": _sequence_field("accession"),
    "mol_seq": _sequence_field("mol_seq"),
}


class SelectorKind(Enum):
    FIELD = "field"
    PROPERTY = "property"


@dataclass(frozen=True)
class FieldSelector:
    """Selects a node field; ``position`` picks one residue (1-based) of ``mol_seq``."""

    field: str
    position: Optional[int] = None
    kind: SelectorKind = SelectorKind.FIELD

    @property
    def key(self) -> str:
        if self.position is not None:
            return f"{self.field}:{self.position}"
        return self.field

    def values(self, node: Node) -> List[Any]:
        raw = NODE_FIELDS[self.field](node)
        if self.position is None:
            return raw
        result = []
        for seq in raw:
            if 0 < self.position <= len(seq):
                result.append(seq[self.position - 1].upper())
        return result


@dataclass(frozen=True)
class PropertySelector:
    """Selects values of node-applied properties with reference ``ref``."""

    ref: str
    kind: SelectorKind = SelectorKind.PROPERTY

    @property
    def key(self) -> str:
        return self.ref

    def values(self, node: Node) -> List[Any]:
        return [v for v in node.property_values(self.ref, "node") if v is not None and v != ""]


Selector = Union[FieldSelector, PropertySelector]


class MatchMode(Enum):
    EXACT = "exact"
    REGEX = "regex"


# ===================================================================
# 2. VISUALIZATION
# ===================================================================


class MappingTable:
    """Explicit value -> visual table; keys are literal values or regex patterns."""

    scale_type = ScaleType.ORDINAL

    def __init__(self, entries: Mapping[Any, Any], match_mode: MatchMode = MatchMode.EXACT):
        self.domain: List[Any] = list(entries)
        self.range: List[Any] = [entries[k] for k in self.domain]
        self.match_mode = match_mode
        self._patterns: List[Optional[re.Pattern]] = []
        for key in self.domain:
            if match_mode is MatchMode.REGEX:
                try:
                    self._patterns.append(re.compile(str(key)))
                except re.error as e:
                    raise ValueError(f"invalid pattern {key!r}: {e}") from None
            else:
                self._patterns.append(None)

    def index_of(self, value: Any) -> Optional[int]:
        if self.match_mode is MatchMode.REGEX:
            text = str(value)
            for i, pattern in enumerate(self._patterns):
                if pattern is not None and pattern.search(text):
                    return i
            return None
        for i, key in enumerate(self.domain):
            if key == value or str(key) == str(value):
                return i
        return None

    def apply(self, value: Any) -> Any:
        i = self.index_of(value)
        return self.range[i] if i is not None else None

    def __call__(self, value: Any) -> Any:
        return self.apply(value)

    def set_range_value(self, index: int, visual: Any) -> None:
        self.range[index] = visual

    @property
    def out_of_range(self) -> bool:
        return False

    def legend(self, digits: int = 2) -> List[LegendEntry]:
        return [
            LegendEntry(value=k, visual=v, text=format_legend_value(k, digits))
            for k, v in zip(self.domain, self.range)
        ]


ValueSource = Union[ScaleAdapter, MappingTable]


@dataclass(frozen=True)
class Visualization:
    """One named mapping for one channel.

    Exactly one of ``scale`` and ``table`` is set. ``alternate`` is a linear
    scale used in place of an overflowing ordinal ``scale``.
    """

    label: str
    channel: Channel
    selector: Selector
    scale: Optional[ScaleAdapter] = None
    table: Optional[MappingTable] = None
    alternate: Optional[ScaleAdapter] = None
    description: Optional[str] = None

    def __post_init__(self) -> None:
        if (self.scale is None) == (self.table is None):
            raise VisualizationConfigError(
                self.label, "exactly one of a scale or a mapping table is required"
            )

    @property
    def match_mode(self) -> MatchMode:
        return self.table.match_mode if self.table is not None else MatchMode.EXACT

    @property
    def source(self) -> ValueSource:
        """The adapter lookups go through; the alternate when the primary overflows."""
        if self.table is not None:
            return self.table
        if self.alternate is not None and self.scale.out_of_range:
            return self.alternate
        return self.scale

    @property
    def scale_type(self) -> ScaleType:
        return self.source.scale_type

    def lookup(self, value: Any) -> Any:
        return self.source.apply(value)

    def visual_for(self, node: Node) -> Any:
        """Visual of the first selector value that maps to something, else None."""
        for value in self.selector.values(node):
            visual = self.lookup(value)
            if visual is not None:
                return visual
        return None

    def legend(self, digits: int = 2) -> "Legend":
        source = self.source
        entries = source.legend(digits)
        return Legend(
            label=self.label,
            description=self.description,
            channel=self.channel,
            scale_type=source.scale_type,
            domain=list(source.domain),
            range=list(source.range),
            out_of_range=source.out_of_range,
            entries=entries,
        )


@dataclass
class Legend:
    label: str
    description: Optional[str]
    channel: Channel
    scale_type: ScaleType
    domain: List[Any]
    range: List[Any]
    out_of_range: bool
    entries: List[LegendEntry]

    @property
    def marker(self) -> str:
        return OUT_OF_RANGE_MARKER if self.out_of_range else ""


@dataclass(frozen=True)
class ActiveVisualizations:
    """Which visualization label (if any) is active on each channel."""

    label_color: Optional[str] = None
    node_fill_color: Optional[str] = None
    node_border_color: Optional[str] = None
    node_shape: Optional[str] = None
    node_size: Optional[str] = None

    def get(self, channel: Channel) -> Optional[str]:
        return getattr(self, channel.value)

    def with_channel(self, channel: Channel, label: Optional[str]) -> "ActiveVisualizations":
        return replace(self, **{channel.value: label})

    def any_node_visualization(self) -> bool:
        return any(
            self.get(c) is not None
            for c in (Channel.NODE_FILL_COLOR, Channel.NODE_BORDER_COLOR, Channel.NODE_SHAPE, Channel.NODE_SIZE)
        )


class VisualizationRegistry:
    """Per channel, label -> Visualization."""

    def __init__(self) -> None:
        self._channels: Dict[Channel, Dict[str, Visualization]] = {c: {} for c in Channel}

    def add(self, visualization: Visualization) -> None:
        self._channels[visualization.channel][visualization.label] = visualization

    def get(self, channel: Channel, label: Optional[str]) -> Optional[Visualization]:
        if label is None:
            return None
        return self._channels[channel].get(label)

    def labels(self, channel: Channel) -> List[str]:
        return list(self._channels[channel])

    def channel(self, channel: Channel) -> Dict[str, Visualization]:
        return dict(self._channels[channel])

    def active(self, active: ActiveVisualizations, channel: Channel) -> Optional[Visualization]:
        return self.get(channel, active.get(channel))

    def __contains__(self, item: Tuple[Channel, str]) -> bool:
        channel, label = item
        return label in self._channels[channel]

    def __len__(self) -> int:
        return sum(len(v) for v in self._channels.values())


# ===================================================================
# 3. CONFIGURATION ENTRIES
# ===================================================================


@dataclass
class VisualizationSpec:
    """
    Configuration of the visualizations built for one property or node field.

    Attributes:
        label: Unique key within each channel.
        field: Node field name (see ``NODE_FIELDS``); exclusive with ``property_ref``.
        property_ref: Reference of node-applied properties; exclusive with ``field``.
        position: 1-based sequence position, only with ``field="mol_seq"``.
        colors: 2 or 3 colour stops (linear colour scale).
        palette: Named categorical palette (ordinal colour scale).
        mapping: Explicit value -> colour table.
        regex: Treat ``mapping`` keys as regular expressions.
        alternate_colors: 2 or 3 colour stops used instead of an overflowing palette.
        shapes: Shape tokens for the shape channel; falls back to the registry's list.
        sizes: 2 or 3 numeric stops (linear size scale).
        channels: Restrict the channels built; all applicable channels by default.
    """

    label: str
    description: Optional[str] = None
    field: Optional[str] = None
    property_ref: Optional[str] = None
    position: Optional[int] = None
    colors: Optional[Sequence[str]] = None
    palette: Optional[str] = None
    mapping: Optional[Mapping[Any, str]] = None
    regex: bool = False
    alternate_colors: Optional[Sequence[str]] = None
    shapes: Optional[Sequence[str]] = None
    sizes: Optional[Sequence[float]] = None
    channels: Optional[Sequence[Channel]] = None

    def selector(self) -> Selector:
        if (self.field is None) == (self.property_ref is None):
            raise VisualizationConfigError(
                self.label, "exactly one of 'field' and 'property_ref' must be set"
            )
        if self.property_ref is not None:
            if self.position is not None:
                raise VisualizationConfigError(self.label, "'position' needs field 'mol_seq'")
            return PropertySelector(self.property_ref)
        if self.field not in NODE_FIELDS:
            raise VisualizationConfigError(self.label, f"unknown node field '{self.field}'")
        if self.position is not None:
            if self.field != "mol_seq" or self.position < 1:
                raise VisualizationConfigError(
                    self.label, "'position' must be a 1-based position on field 'mol_seq'"
                )
        return FieldSelector(self.field, self.position)

    def wants(self, channel: Channel) -> bool:
        return self.channels is None or channel in self.channels

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "VisualizationSpec":
        values = dict(data)
        if "channels" in values and values["channels"] is not None:
            values["channels"] = [Channel(c) for c in values["channels"]]
        return cls(**values)


@dataclass
class RegistryBuildResult:
    registry: VisualizationRegistry
    errors: List[VisualizationConfigError] = field(default_factory=list)


# ===================================================================
# 4. VALUE COLLECTION
# ===================================================================

IgnoreList = Mapping[str, Iterable[Any]]


def _ignored(ignore: Optional[IgnoreList], key: str, value: Any) -> bool:
    if not ignore or key not in ignore:
        return False
    return value in set(ignore[key]) or str(value) in {str(v) for v in ignore[key]}


def collect_selector_values(
    store: NodeStore,
    selector: Selector,
    start: Optional[int] = None,
    ignore: Optional[IgnoreList] = None,
) -> List[Any]:
    values = []
    for handle in store.preorder(start, include_collapsed=True):
        for value in selector.values(store.nodes[handle]):
            if not _ignored(ignore, selector.key, value):
                values.append(value)
    return values


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def sorted_distinct(values: Iterable[Any]) -> List[Any]:
    """Distinct values; numbers ascending first, then everything else by text."""
    seen: Set[Any] = set()
    distinct = []
    for v in values:
        marker = (type(v).__name__, v) if not isinstance(v, (int, float)) else ("num", v)
        if marker not in seen:
            seen.add(marker)
            distinct.append(v)
    def is_num(v: Any) -> bool:
        return isinstance(v, (int, float)) and not isinstance(v, bool)

    numeric = [v for v in distinct if is_num(v)]
    other = [v for v in distinct if not is_num(v)]
    return sorted(numeric) + sorted(other, key=str)


def linear_domain(values: Sequence[Any], stops: int, label: str) -> List[float]:
    numbers = [_as_number(v) for v in values]
    if any(n is None for n in numbers):
        raise VisualizationConfigError(label, "linear scale needs numeric values")
    lo, hi = min(numbers), max(numbers)  # type: ignore[type-var]
    if stops == 2:
        return [lo, hi]
    mean = sum(numbers) / len(numbers)  # type: ignore[arg-type]
    return [lo, mean, hi]


# ===================================================================
# 5. REGISTRY CONSTRUCTION
# ===================================================================


def _check_stops(label: str, what: str, stops: Sequence[Any]) -> None:
    if len(stops) not in (2, 3):
        raise VisualizationConfigError(
            label, f"{what} needs 2 or 3 stops, got {len(stops)}"
        )


def _color_source(spec: VisualizationSpec, values: List[Any]) -> Tuple[ValueSource, Optional[ScaleAdapter]]:
    forms = [f for f in (spec.colors, spec.palette, spec.mapping) if f is not None]
    if len(forms) != 1:
        raise VisualizationConfigError(
            spec.label, "exactly one of 'colors', 'palette' and 'mapping' is allowed"
        )
    if spec.regex and spec.mapping is None:
        raise VisualizationConfigError(spec.label, "regex matching needs a 'mapping' table")

    if spec.mapping is not None:
        bad = [c for c in spec.mapping.values() if not colors.is_color(c)]
        if bad:
            raise VisualizationConfigError(spec.label, f"invalid colour(s) {bad!r}")
        try:
            table = MappingTable(spec.mapping, MatchMode.REGEX if spec.regex else MatchMode.EXACT)
        except ValueError as e:
            raise VisualizationConfigError(spec.label, str(e)) from None
        return table, None

    if spec.colors is not None:
        _check_stops(spec.label, "colour scale", spec.colors)
        bad = [c for c in spec.colors if not colors.is_color(c)]
        if bad:
            raise VisualizationConfigError(spec.label, f"invalid colour(s) {bad!r}")
        domain = linear_domain(values, len(spec.colors), spec.label)
        return LinearScale(domain, list(spec.colors)), None

    try:
        palette = colors.palette(spec.palette)  # type: ignore[arg-type]
    except KeyError:
        raise VisualizationConfigError(spec.label, f"unknown palette '{spec.palette}'") from None
    domain = sorted_distinct(values)
    primary = OrdinalScale(domain, palette, wrap=True)
    alternate: Optional[ScaleAdapter] = None
    if primary.out_of_range:
        numeric = all(_as_number(v) is not None for v in domain)
        if spec.alternate_colors is not None and numeric:
            _check_stops(spec.label, "alternate colour scale", spec.alternate_colors)
            alternate = LinearScale(
                linear_domain(values, len(spec.alternate_colors), spec.label),
                list(spec.alternate_colors),
            )
            logger.info(
                "'%s': %d categories exceed palette '%s' (%d); using alternate linear scale",
                spec.label, len(domain), spec.palette, len(palette),
            )
        else:
            logger.warning(
                "'%s': %d categories exceed palette '%s' (%d); colours will repeat",
                spec.label, len(domain), spec.palette, len(palette),
            )
    return primary, alternate


def _build_entry(
    spec: VisualizationSpec,
    selector: Selector,
    values: List[Any],
    node_shapes: Optional[Sequence[str]],
) -> List[Visualization]:
    built: List[Visualization] = []

    color_channels = [c for c in COLOR_CHANNELS if spec.wants(c)]
    has_color_form = any(f is not None for f in (spec.colors, spec.palette, spec.mapping))
    if color_channels and has_color_form:
        source, alternate = _color_source(spec, values)
        for channel in color_channels:
            if isinstance(source, MappingTable):
                built.append(Visualization(spec.label, channel, selector, table=source, description=spec.description))
            else:
                built.append(
                    Visualization(
                        spec.label, channel, selector, scale=source, alternate=alternate,
                        description=spec.description,
                    )
                )

    shapes = list(spec.shapes) if spec.shapes else (list(node_shapes) if node_shapes else [])
    if shapes and spec.wants(Channel.NODE_SHAPE):
        if isinstance(selector, FieldSelector) and selector.position is not None:
            domain = list(RESIDUE_ALPHABET)
        else:
            domain = sorted_distinct(values)
        scale = OrdinalScale(domain, shapes, wrap=True)
        if scale.out_of_range:
            logger.warning(
                "'%s': %d categories exceed %d shapes; shapes will repeat",
                spec.label, len(domain), len(shapes),
            )
        built.append(
            Visualization(spec.label, Channel.NODE_SHAPE, selector, scale=scale, description=spec.description)
        )

    if spec.sizes is not None and spec.wants(Channel.NODE_SIZE):
        _check_stops(spec.label, "size scale", spec.sizes)
        if any(_as_number(s) is None for s in spec.sizes):
            raise VisualizationConfigError(spec.label, "size stops must be numbers")
        scale = LinearScale(
            linear_domain(values, len(spec.sizes), spec.label), [float(s) for s in spec.sizes]
        )
        built.append(
            Visualization(spec.label, Channel.NODE_SIZE, selector, scale=scale, description=spec.description)
        )
    return built


def build_registry(
    store: NodeStore,
    specs: Sequence[VisualizationSpec],
    node_shapes: Optional[Sequence[str]] = None,
    ignore: Optional[IgnoreList] = None,
    start: Optional[int] = None,
) -> RegistryBuildResult:
    """
    Build a registry from configuration entries and the tree's observed values.

    Args:
        store: The tree.
        specs: Configuration entries.
        node_shapes: Finite shape-token list; without it no shape channel is built
            (unless an entry brings its own shapes).
        ignore: ref -> values to leave out of the observed domains.
        start: Collect values below this node only (subtree view); root by default.
    """
    result = RegistryBuildResult(VisualizationRegistry())
    for spec in specs:
        try:
            selector = spec.selector()
            values = collect_selector_values(store, selector, start, ignore)
            if not values:
                logger.debug("'%s': no observed values, omitted", spec.label)
                continue
            for visualization in _build_entry(spec, selector, values, node_shapes):
                result.registry.add(visualization)
        except VisualizationConfigError as e:
            logger.warning("skipping visualization: %s", e)
            result.errors.append(e)
    logger.debug(
        "built %d visualizations from %d entries (%d errors)",
        len(result.registry), len(specs), len(result.errors),
    )
    return result
