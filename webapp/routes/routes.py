# --------------------------------------------------------------
#  routes.py
# --------------------------------------------------------------
from __future__ import annotations

from logging import Logger
from typing import Any, Dict, Tuple, Union

from flask import Blueprint, Response, current_app, jsonify, request

from cladescope.config import LayoutMode
from cladescope.errors import CladescopeError
from cladescope.parser import read_tree
from cladescope.session import Session
from cladescope.treeutil import SearchFlags
from cladescope.visualization import Channel
from webapp.routes.helpers import (
    json_body,
    parse_channel,
    parse_session_request,
    parse_visualizations,
    sessions,
)
from webapp.services.serialization_utils import rows_to_json, to_json
from webapp.services.sessions import SessionNotFound

bp = Blueprint("main", __name__)


def _json(payload: Any, status: int = 200) -> Response:
    return Response(to_json(payload), status=status, mimetype="application/json")


@bp.route("/about")
def about() -> Response:
    """Simple health-check / about endpoint."""
    return jsonify({"about": "Cladescope tree viewer API backend."})


# ----------------------------------------------------------------------
# Session lifecycle
# ----------------------------------------------------------------------


@bp.route("/session", methods=["POST"])
def create_session() -> Response:
    log: Logger = current_app.logger
    log.info("[session] POST /session from %s", request.remote_addr)

    req = parse_session_request(request)
    session_id, session = sessions().create(
        req.tree_text,
        options=req.options,
        visualizations=req.visualizations,
        ignore=req.ignore,
    )
    frame = session.update()
    log.info(
        f"[session] {session_id}: {len(session.store)} nodes, "
        f"{len(session.registry)} visualizations, {len(session.registry_errors)} config errors"
    )
    return _json(
        {
            "session": session_id,
            "frame": frame,
            "summary": session.summary(),
            "visualization_errors": [str(e) for e in session.registry_errors],
        },
        201,
    )


@bp.route("/session/default", methods=["POST"])
def create_default_session() -> Union[Response, Tuple[Dict[str, Any], int]]:
    """Open the tree configured in ``CLADESCOPE_TREE``."""
    path = current_app.config.get("CLADESCOPE_TREE")
    if not path:
        return _fail(404, "No default tree configured (CLADESCOPE_TREE)."), 404
    session_id, session = sessions().add(Session(read_tree(path)))
    return _json({"session": session_id, "frame": session.update()}, 201)


@bp.route("/session/<session_id>", methods=["DELETE"])
def drop_session(session_id: str) -> Response:
    if not sessions().drop(session_id):
        raise SessionNotFound(session_id)
    return jsonify({"dropped": session_id})


@bp.route("/session/<session_id>/frame")
def frame(session_id: str) -> Response:
    with sessions().use(session_id) as session:
        return _json(session.frame if session.frame is not None else session.update())


@bp.route("/session/<session_id>/summary")
def summary(session_id: str) -> Response:
    with sessions().use(session_id) as session:
        return _json(session.summary())


@bp.route("/session/<session_id>/node/<int:node>")
def node_data(session_id: str, node: int) -> Response:
    with sessions().use(session_id) as session:
        return _json(rows_to_json(session.node_data(node)))


@bp.route("/session/<session_id>/newick")
def newick(session_id: str) -> Response:
    """The current tree (after reroots and deletions) as Newick text."""
    with sessions().use(session_id) as session:
        text = session.store.to_newick()
    return Response(text, mimetype="text/plain")


# ----------------------------------------------------------------------
# Gestures
# ----------------------------------------------------------------------


@bp.route("/session/<session_id>/collapse/<int:node>", methods=["POST"])
def collapse(session_id: str, node: int) -> Response:
    with sessions().use(session_id) as session:
        return _json(session.toggle_collapse(node))


@bp.route("/session/<session_id>/visualizations", methods=["POST"])
def add_visualization(session_id: str) -> Response:
    """Add (or replace, by label) one visualization entry and rebuild the registry."""
    (spec,) = parse_visualizations([json_body(request)])
    with sessions().use(session_id) as session:
        result = session.add_visualization(spec)
        return _json(
            {
                "visualizations": {
                    c.value: result.registry.labels(c) for c in Channel if result.registry.labels(c)
                },
                "visualization_errors": [str(e) for e in result.errors],
                "frame": session.update(transition_duration=0, skip_width_recalc=True),
            }
        )


@bp.route("/session/<session_id>/visualization", methods=["POST"])
def visualization(session_id: str) -> Response:
    data = json_body(request)
    channel = parse_channel(data.get("channel", ""))
    with sessions().use(session_id) as session:
        return _json(session.set_channel_visualization(channel, data.get("label")))


@bp.route("/session/<session_id>/search", methods=["POST"])
def search(session_id: str) -> Response:
    data = json_body(request)
    flags = None
    if "flags" in data:
        try:
            flags = SearchFlags(**data["flags"])
        except TypeError as e:
            raise ValueError(f"Malformed search flags: {e}") from e
    with sessions().use(session_id) as session:
        if "negate" in data:
            session.search.negate = bool(data["negate"])
            session.options.search_negate = session.search.negate
        return _json(session.set_search_query(int(data.get("slot", 0)), data.get("query"), flags))


@bp.route("/session/<session_id>/override", methods=["POST"])
def override(session_id: str) -> Response:
    data = json_body(request)
    for key in ("channel", "label", "key", "color"):
        if key not in data:
            raise ValueError(f"Missing '{key}'.")
    channel = parse_channel(data["channel"])
    with sessions().use(session_id) as session:
        return _json(session.apply_color_override(channel, data["label"], data["key"], data["color"]))


@bp.route("/session/<session_id>/layout", methods=["POST"])
def layout(session_id: str) -> Response:
    data = json_body(request)
    mode = LayoutMode(data.get("mode", LayoutMode.CLADOGRAM.value))
    with sessions().use(session_id) as session:
        return _json(session.set_layout_mode(mode, bool(data.get("aligned", False))))


# Session gestures reachable through /action; True when the gesture needs a node
ACTIONS: Dict[str, bool] = {
    "zoom_in_x": False,
    "zoom_out_x": False,
    "zoom_in_y": False,
    "zoom_out_y": False,
    "zoom_fit": False,
    "uncollapse_all": False,
    "incr_depth_collapse_level": False,
    "decr_depth_collapse_level": False,
    "incr_branch_length_collapse_level": False,
    "decr_branch_length_collapse_level": False,
    "return_to_super_tree": False,
    "midpoint_reroot": False,
    "clear_selection": False,
    "reset_search": False,
    "go_to_subtree": True,
    "swap_children": True,
    "order_subtree": True,
    "reroot": True,
    "delete_subtree": True,
    "select_node": True,
    "deselect_node": True,
}


@bp.route("/session/<session_id>/action", methods=["POST"])
def action(session_id: str) -> Response:
    data = json_body(request)
    name = data.get("action")
    if name not in ACTIONS:
        raise ValueError(f"Unknown action '{name}'. Expected one of: {', '.join(sorted(ACTIONS))}")
    if ACTIONS[name] and "node" not in data:
        raise ValueError(f"Action '{name}' needs a 'node'.")
    args = (int(data["node"]),) if ACTIONS[name] else ()
    with sessions().use(session_id) as session:
        return _json(getattr(session, name)(*args))


@bp.route("/session/<session_id>/legend/<channel>")
def legend(session_id: str, channel: str) -> Union[Response, Tuple[Dict[str, Any], int]]:
    with sessions().use(session_id) as session:
        result = session.legend(parse_channel(channel), request.args.get("label"))
    if result is None:
        return _fail(404, f"No visualization on channel '{channel}'."), 404
    return _json(result)


# ----------------------------------------------------------------------
# Error handlers
# ----------------------------------------------------------------------


@bp.errorhandler(SessionNotFound)
def session_not_found(exc: SessionNotFound):
    return _fail(404, f"Unknown session {exc.args[0]}"), 404


@bp.errorhandler(CladescopeError)
def cladescope_error(exc: CladescopeError):
    current_app.logger.warning(f"[cladescope] Bad request: {exc}")
    return _fail(400, str(exc)), 400


@bp.errorhandler(ValueError)
def bad_request(exc: ValueError):
    current_app.logger.warning(f"[request] Bad request: {exc}")
    return _fail(400, str(exc)), 400


@bp.errorhandler(Exception)
def global_error(exc: Exception):  # Flask passes the exception instance in
    current_app.logger.error("[global] Unhandled exception", exc_info=True)
    return _fail(500, str(exc)), 500


# ----------------------------------------------------------------------
# Utility: short error JSON helper
# ----------------------------------------------------------------------
def _fail(status_code: int, message: str) -> dict[str, Any]:
    return {
        "error": message,
        "status": status_code,
    }
