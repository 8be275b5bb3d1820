"""
User colour overrides for single categories or linear stops.

An override rewrites one slot of the range of the adapter a colour
visualization reads through and leaves every other slot as it is. On an
ordinal scale whose categories wrap around the palette, the range is first
expanded to one slot per category. Because the three colour
channels of one property share their adapter, an override applied through any
of them is visible in all three.
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from cladescope.colors import is_color
from cladescope.errors import VisualizationConfigError
from cladescope.scales import LinearScale, OrdinalScale
from cladescope.visualization import (
    COLOR_CHANNELS,
    Channel,
    MappingTable,
    ValueSource,
    VisualizationRegistry,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ColorOverride:
    channel: Channel
    label: str
    key: Any
    color: str


def _index_by_text(domain: List[Any], key: Any) -> Optional[int]:
    for i, d in enumerate(domain):
        if str(d) == str(key):
            return i
    return None


def slot_index(source: ValueSource, key: Any) -> Optional[int]:
    """Domain index of a category (ordinal, table) or control point (linear)."""
    if isinstance(source, LinearScale):
        return source.stop_index(key)
    if isinstance(source, MappingTable):
        i = source.domain.index(key) if key in source.domain else None
        return i if i is not None else _index_by_text(source.domain, key)
    if isinstance(source, OrdinalScale):
        i = source.index_of(key)
        return i if i is not None else _index_by_text(source.domain, key)
    return None


class ColorOverrideStore:
    """Applies overrides and keeps their history for re-application after rebuilds."""

    def __init__(self) -> None:
        self.history: List[ColorOverride] = []

    def __len__(self) -> int:
        return len(self.history)

    def apply_override(
        self,
        registry: VisualizationRegistry,
        channel: Channel,
        label: str,
        key: Any,
        color: str,
    ) -> None:
        """
        Recolour category (or stop) ``key`` of visualization ``label``.

        Raises:
            VisualizationConfigError: If the channel is not a colour channel, the
                visualization or category is unknown, or ``color`` is not a colour.
        """
        self._apply(registry, ColorOverride(channel, label, key, color))
        self.history = [
            o for o in self.history if not (o.label == label and str(o.key) == str(key))
        ]
        self.history.append(ColorOverride(channel, label, key, color))

    def _apply(self, registry: VisualizationRegistry, override: ColorOverride) -> None:
        if override.channel not in COLOR_CHANNELS:
            raise VisualizationConfigError(
                override.label, f"channel '{override.channel.value}' does not take colours"
            )
        if not is_color(override.color):
            raise VisualizationConfigError(override.label, f"invalid colour {override.color!r}")
        visualization = registry.get(override.channel, override.label)
        if visualization is None:
            raise VisualizationConfigError(
                override.label, f"no visualization on channel '{override.channel.value}'"
            )

        source = visualization.source
        index = slot_index(source, override.key)
        if index is None:
            raise VisualizationConfigError(
                override.label, f"unknown category or stop {override.key!r}"
            )

        if isinstance(source, OrdinalScale):
            # re-read through the adapter; one slot per domain entry so wrapped
            # categories stop sharing a colour
            current = [source.apply(d) for d in source.domain]
            current += source.range[len(source.domain):]
        else:
            current = list(source.range)
        current[index] = override.color
        source.range[:] = current
        logger.debug(
            "override '%s' %r -> %s (%s)",
            override.label, override.key, override.color, override.channel.value,
        )

    def reapply(self, registry: VisualizationRegistry) -> List[ColorOverride]:
        """Re-apply the history to a rebuilt registry; returns overrides that no longer fit."""
        dropped = []
        for override in self.history:
            try:
                self._apply(registry, override)
            except VisualizationConfigError as e:
                logger.info("dropping stale override: %s", e)
                dropped.append(override)
        self.history = [o for o in self.history if o not in dropped]
        return dropped

    def clear(self) -> None:
        self.history.clear()
