"""
Scale adapters: domain -> visual range mappings.

Two kinds are supported:

- ``LinearScale``: piecewise interpolation between two or three control
  points (``[min, max]`` or ``[min, mean, max]``). Range elements are colours
  or numeric sizes. Inputs outside ``[min, max]`` are extrapolated, not
  clamped; callers validate values beforehand.
- ``OrdinalScale``: exact domain-to-range index lookup. When the domain is
  larger than the range, entries past the range are "out of range": they
  either repeat colours (``wrap=True``) or fail closed and return ``None``.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Sequence

from cladescope.colors import interpolate_color


class ScaleType(Enum):
    LINEAR = "linear"
    ORDINAL = "ordinal"


OUT_OF_RANGE_MARKER = "*"


def round_half_away(value: float, digits: int = 2) -> float:
    """Round to ``digits`` decimals, halves away from zero (2.5 -> 3, -2.5 -> -3)."""
    factor = 10 ** digits
    return math.copysign(math.floor(abs(value) * factor + 0.5) / factor, value)


def format_legend_value(value: Any, digits: int = 2) -> str:
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, (int, float)):
        rounded = round_half_away(float(value), digits)
        if rounded == int(rounded):
            return str(int(rounded))
        return f"{rounded:.{digits}f}".rstrip("0").rstrip(".")
    return str(value)


@dataclass
class LegendEntry:
    value: Any
    visual: Any
    text: str
    out_of_range: bool = False


class ScaleAdapter:
    """Base class; ``domain`` and ``range`` are plain lists."""

    scale_type: ScaleType

    def __init__(self, domain: Sequence[Any], range_: Sequence[Any]):
        self.domain: List[Any] = list(domain)
        self.range: List[Any] = list(range_)

    def apply(self, value: Any) -> Any:
        raise NotImplementedError

    def __call__(self, value: Any) -> Any:
        return self.apply(value)

    def set_range_value(self, index: int, visual: Any) -> None:
        self.range[index] = visual

    def legend(self, digits: int = 2) -> List[LegendEntry]:
        raise NotImplementedError

    @property
    def out_of_range(self) -> bool:
        return False

    def __repr__(self) -> str:
        return f"{type(self).__name__}(domain={self.domain!r}, range={self.range!r})"


class LinearScale(ScaleAdapter):
    """Piecewise-linear numeric scale over 2 or 3 ascending control points."""

    scale_type = ScaleType.LINEAR

    def __init__(self, domain: Sequence[float], range_: Sequence[Any]):
        if len(domain) not in (2, 3):
            raise ValueError(f"linear scale needs 2 or 3 control points, got {len(domain)}")
        if len(domain) != len(range_):
            raise ValueError("linear scale domain and range differ in length")
        super().__init__([float(d) for d in domain], range_)

    def apply(self, value: Any) -> Any:
        try:
            v = float(value)
        except (TypeError, ValueError):
            return None
        if math.isnan(v):
            return None
        for i, point in enumerate(self.domain):
            if v == point:
                return self.range[i]
        # pick the segment; outside values extrapolate along the end segment
        segment = 0
        for i in range(1, len(self.domain) - 1):
            if v > self.domain[i]:
                segment = i
        d0, d1 = self.domain[segment], self.domain[segment + 1]
        r0, r1 = self.range[segment], self.range[segment + 1]
        t = 0.0 if d1 == d0 else (v - d0) / (d1 - d0)
        if isinstance(r0, str):
            return interpolate_color(r0, r1, t)
        return r0 + (r1 - r0) * t

    def stop_index(self, stop: Any) -> Optional[int]:
        try:
            v = float(stop)
        except (TypeError, ValueError):
            return None
        for i, point in enumerate(self.domain):
            if point == v:
                return i
        return None

    def legend(self, digits: int = 2) -> List[LegendEntry]:
        return [
            LegendEntry(value=d, visual=self.apply(d), text=format_legend_value(d, digits))
            for d in self.domain
        ]


class OrdinalScale(ScaleAdapter):
    """Categorical lookup of a sorted distinct domain onto a finite range."""

    scale_type = ScaleType.ORDINAL

    def __init__(self, domain: Sequence[Any], range_: Sequence[Any], wrap: bool = True):
        if not range_:
            raise ValueError("ordinal scale needs a non-empty range")
        super().__init__(domain, range_)
        self.wrap = wrap
        self._index = {v: i for i, v in enumerate(self.domain)}

    def index_of(self, value: Any) -> Optional[int]:
        return self._index.get(value)

    def apply(self, value: Any) -> Any:
        i = self._index.get(value)
        if i is None:
            return None
        if i < len(self.range):
            return self.range[i]
        if self.wrap:
            return self.range[i % len(self.range)]
        return None

    @property
    def out_of_range(self) -> bool:
        return len(self.domain) > len(self.range)

    def legend(self, digits: int = 2) -> List[LegendEntry]:
        entries = []
        for i, d in enumerate(self.domain):
            overflow = i >= len(self.range)
            text = format_legend_value(d, digits)
            if overflow:
                text += OUT_OF_RANGE_MARKER
            entries.append(
                LegendEntry(value=d, visual=self.apply(d), text=text, out_of_range=overflow)
            )
        return entries
