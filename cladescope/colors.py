"""Colour parsing, interpolation and the named categorical palettes."""

import re
from typing import Dict, List, Optional, Sequence, Tuple

import matplotlib
import matplotlib.colors as mcolors
import numpy as np

RGB = Tuple[float, float, float]

_CSS_RGB = re.compile(
    r"^\s*rgb\(\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})\s*\)\s*$", re.IGNORECASE
)

# Palette name -> matplotlib qualitative colormap. Sizes are fixed by the colormap.
PALETTE_COLORMAPS: Dict[str, str] = {
    "category10": "tab10",
    "category20": "tab20",
    "category20b": "tab20b",
    "category20c": "tab20c",
    "set1": "Set1",
    "set3": "Set3",
    "paired": "Paired",
    "pastel1": "Pastel1",
}


def is_color(value: object) -> bool:
    if not isinstance(value, str):
        return False
    return bool(_CSS_RGB.match(value)) or mcolors.is_color_like(value)


def to_rgb(color: str) -> RGB:
    """Parse a CSS ``rgb(r,g,b)`` string or any matplotlib colour spec."""
    match = _CSS_RGB.match(color)
    if match:
        return tuple(min(int(c), 255) / 255.0 for c in match.groups())  # type: ignore[return-value]
    return mcolors.to_rgb(color)


def to_hex(color: str) -> str:
    return mcolors.to_hex(to_rgb(color))


def interpolate_color(start: str, end: str, t: float) -> str:
    """Linear RGB interpolation; ``t`` is not clamped.

    Returns ``start``/``end`` unchanged at exactly 0 and 1 so that control
    points map back to the colour string they were configured with.
    """
    if t == 0:
        return start
    if t == 1:
        return end
    a = np.asarray(to_rgb(start))
    b = np.asarray(to_rgb(end))
    mixed = np.clip(a + (b - a) * t, 0.0, 1.0)
    return mcolors.to_hex(tuple(mixed))


def palette(name: str) -> List[str]:
    """Hex colours of a named categorical palette.

    Raises:
        KeyError: If ``name`` is not a known palette.
    """
    cmap = matplotlib.colormaps[PALETTE_COLORMAPS[name]]
    return [mcolors.to_hex(c) for c in cmap.colors]  # type: ignore[attr-defined]


def smallest_palette_for(n: int, candidates: Optional[Sequence[str]] = None) -> Optional[str]:
    """Name of the smallest palette holding at least ``n`` colours, if any."""
    names = candidates if candidates is not None else ("category10", "category20")
    sized = sorted(((len(palette(name)), name) for name in names))
    for size, name in sized:
        if size >= n:
            return name
    return None
