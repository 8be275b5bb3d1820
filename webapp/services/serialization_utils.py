"""JSON serialization of render frames, legends and node-data rows."""

import dataclasses
import json
import math
from enum import Enum
from typing import Any, Dict, List, Tuple

from cladescope.reconcile import RenderFrame


class FrameEncoder(json.JSONEncoder):
    def default(self, o: Any):
        # Render frame: add the visible node count for clients
        if isinstance(o, RenderFrame):
            data = {f.name: getattr(o, f.name) for f in dataclasses.fields(o)}
            data["node_count"] = len(o.nodes)
            return data

        # NodeView, LinkView, Legend, LegendEntry...
        if dataclasses.is_dataclass(o) and not isinstance(o, type):
            return {f.name: getattr(o, f.name) for f in dataclasses.fields(o)}

        if isinstance(o, Enum):
            return o.value

        if isinstance(o, (set, frozenset)):
            return sorted(o)

        # numpy scalars
        if hasattr(o, "item"):
            return o.item()

        return super().default(o)


def _finite(o: Any, encoder: FrameEncoder) -> Any:
    """Plain JSON structure of ``o`` with NaN and infinities replaced by None."""
    if isinstance(o, float):
        return o if math.isfinite(o) else None
    if o is None or isinstance(o, (str, int)):
        return o
    if isinstance(o, dict):
        return {k: _finite(v, encoder) for k, v in o.items()}
    if isinstance(o, (list, tuple)):
        return [_finite(v, encoder) for v in o]
    return _finite(encoder.default(o), encoder)


def to_json(payload: Any) -> str:
    encoder = FrameEncoder()
    return json.dumps(_finite(payload, encoder), allow_nan=False)


def rows_to_json(rows: List[Tuple[str, str]]) -> List[Dict[str, str]]:
    return [{"key": key, "value": value} for key, value in rows]
