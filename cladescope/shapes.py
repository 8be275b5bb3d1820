"""SVG path descriptors for node shape tokens, centred on the origin."""

import math
from typing import Callable, Dict

TAN30 = math.tan(math.pi / 6)
SQRT3 = math.sqrt(3)


def _circle(area: float) -> str:
    r = math.sqrt(area / math.pi)
    return f"M0,{r:g}A{r:g},{r:g} 0 1,1 0,{-r:g}A{r:g},{r:g} 0 1,1 0,{r:g}Z"


def _square(area: float) -> str:
    r = math.sqrt(area) / 2
    return f"M{-r:g},{-r:g}L{r:g},{-r:g} {r:g},{r:g} {-r:g},{r:g}Z"


def _diamond(area: float) -> str:
    ry = math.sqrt(area / (2 * TAN30))
    rx = ry * TAN30
    return f"M0,{-ry:g}L{rx:g},0 0,{ry:g} {-rx:g},0Z"


def _cross(area: float) -> str:
    r = math.sqrt(area / 5) / 2
    return (
        f"M{-3 * r:g},{-r:g}H{-r:g}V{-3 * r:g}H{r:g}V{-r:g}H{3 * r:g}V{r:g}"
        f"H{r:g}V{3 * r:g}H{-r:g}V{r:g}H{-3 * r:g}Z"
    )


def _triangle_up(area: float) -> str:
    rx = math.sqrt(area / SQRT3)
    ry = rx * SQRT3 / 2
    return f"M0,{-ry:g}L{rx:g},{ry:g} {-rx:g},{ry:g}Z"


def _triangle_down(area: float) -> str:
    rx = math.sqrt(area / SQRT3)
    ry = rx * SQRT3 / 2
    return f"M0,{ry:g}L{rx:g},{-ry:g} {-rx:g},{-ry:g}Z"


SHAPES: Dict[str, Callable[[float], str]] = {
    "circle": _circle,
    "square": _square,
    "diamond": _diamond,
    "cross": _cross,
    "triangle-up": _triangle_up,
    "triangle-down": _triangle_down,
}

DEFAULT_SHAPE = "circle"


def symbol_path(shape: str, size: float) -> str:
    """Path for ``shape`` whose bounding extent is roughly ``2 * size`` pixels.

    Unknown tokens fall back to a circle. A non-positive size yields an empty
    path.
    """
    if size <= 0:
        return ""
    builder = SHAPES.get(shape, SHAPES[DEFAULT_SHAPE])
    return builder((2 * size) ** 2)
