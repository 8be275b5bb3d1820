"""Request handling helpers."""
from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

from flask import Request, current_app

from cladescope.config import Options
from cladescope.visualization import Channel, VisualizationSpec
from webapp.services.sessions import SessionStore


@dataclass
class SessionRequest:
    """Encapsulates the data of a session creation request."""

    tree_text: str
    options: Optional[Options] = None
    visualizations: List[VisualizationSpec] = field(default_factory=list)
    ignore: Optional[Dict[str, List[Any]]] = None


def sessions() -> SessionStore:
    return current_app.extensions["cladescope_sessions"]


def json_body(request: Request) -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object.")
    return data


def parse_options(data: Optional[Dict[str, Any]]) -> Optional[Options]:
    if not data:
        return None
    known = {f.name for f in fields(Options)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown option(s): {', '.join(unknown)}")
    return Options(**data)


def parse_channel(name: str) -> Channel:
    try:
        return Channel(name)
    except ValueError:
        valid = ", ".join(c.value for c in Channel)
        raise ValueError(f"Unknown channel '{name}'. Expected one of: {valid}") from None


def parse_visualizations(entries: List[Dict[str, Any]]) -> List[VisualizationSpec]:
    specs = []
    for entry in entries:
        try:
            specs.append(VisualizationSpec.from_dict(entry))
        except TypeError as e:
            raise ValueError(f"Malformed visualization entry: {e}") from e
    return specs


def parse_session_request(request: Request) -> SessionRequest:
    """Parses and validates a tree upload (multipart ``treeFile`` or JSON ``tree``)."""
    tree_file = request.files.get("treeFile")
    if tree_file is not None and tree_file.filename:
        text = tree_file.read().decode("utf-8", errors="replace")
        data: Dict[str, Any] = {}
    else:
        data = json_body(request)
        text = data.get("tree") or ""

    if not text.strip():
        raise ValueError("Missing tree. Provide a 'treeFile' upload or a JSON 'tree' field.")

    specs = parse_visualizations(data.get("visualizations") or [])
    return SessionRequest(
        tree_text=text,
        options=parse_options(data.get("options")),
        visualizations=specs,
        ignore=data.get("ignore"),
    )
