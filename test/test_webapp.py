import threading
from io import BytesIO

import pytest

from webapp import create_app
from webapp.services.serialization_utils import to_json

NEWICK = (
    "((A:1[habitat=sea],B:1[habitat=land])X:1,"
    "(C:2[habitat=air],D:3[habitat=sea])Y:1);"
)
HABITAT = {"label": "Habitat", "property_ref": "habitat", "palette": "category10"}
# handles are issued in parse order: root 1, X 2, A 3, B 4, Y 5, C 6, D 7
X, A, Y = 2, 3, 5


@pytest.fixture
def app(tmp_path):
    return create_app({"LOG_DIR": tmp_path, "TESTING": True})


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def session_id(client):
    response = client.post("/session", json={"tree": NEWICK, "visualizations": [HABITAT]})
    assert response.status_code == 201, response.get_data(as_text=True)
    return response.get_json()["session"]


def visible_ids(frame):
    return sorted(v["id"] for v in frame["enter"] + frame["update"])


def test_about(client):
    response = client.get("/about")
    assert response.status_code == 200
    assert "Cladescope" in response.get_json()["about"]


def test_create_session_returns_first_frame(client):
    response = client.post(
        "/session",
        json={"tree": NEWICK, "visualizations": [HABITAT], "options": {"show_internal_labels": True}},
    )
    assert response.status_code == 201
    body = response.get_json()
    assert body["visualization_errors"] == []
    assert body["summary"]["external_nodes"] == 4
    frame = body["frame"]
    assert frame["node_count"] == 7
    assert len(frame["enter"]) == 7
    assert frame["layout_mode"] == "cladogram"
    labels = {v["id"]: v["label"] for v in frame["enter"]}
    assert labels[X] == "X"


def test_upload_tree_file(client):
    data = {"treeFile": (BytesIO(NEWICK.encode("utf-8")), "test.tree")}
    response = client.post("/session", data=data, content_type="multipart/form-data")
    assert response.status_code == 201
    assert response.get_json()["frame"]["node_count"] == 7


def test_bad_requests(client):
    assert client.post("/session", json={}).status_code == 400
    assert client.post("/session", json={"tree": "((A,B);"}).status_code == 400
    assert client.post("/session", json={"tree": NEWICK, "options": {"bogus": 1}}).status_code == 400
    response = client.post(
        "/session", json={"tree": NEWICK, "visualizations": [{"label": "x", "nope": 1}]}
    )
    assert response.status_code == 400
    assert response.get_json()["status"] == 400


def test_visualization_errors_are_reported(client):
    broken = {"label": "Broken", "property_ref": "habitat", "palette": "no-such-palette"}
    response = client.post("/session", json={"tree": NEWICK, "visualizations": [broken]})
    assert response.status_code == 201
    assert len(response.get_json()["visualization_errors"]) == 1


def test_unknown_session(client):
    response = client.get("/session/does-not-exist/frame")
    assert response.status_code == 404
    assert "does-not-exist" in response.get_json()["error"]


def test_frame_summary_and_node(client, session_id):
    frame = client.get(f"/session/{session_id}/frame").get_json()
    assert visible_ids(frame) == [1, 2, 3, 4, 5, 6, 7]

    summary = client.get(f"/session/{session_id}/summary").get_json()
    assert summary["max_depth"] == 2

    rows = client.get(f"/session/{session_id}/node/{A}").get_json()
    assert {"key": "Name", "value": "A"} in rows
    assert {"key": "habitat", "value": "sea"} in rows

    assert client.get(f"/session/{session_id}/node/999").status_code == 400


def test_collapse_and_expand(client, session_id):
    frame = client.post(f"/session/{session_id}/collapse/{X}").get_json()
    assert sorted(v["id"] for v in frame["exit"]) == [3, 4]
    collapsed = next(v for v in frame["update"] if v["id"] == X)
    assert collapsed["label"] == "A ... B [2]"

    frame = client.post(f"/session/{session_id}/collapse/{X}").get_json()
    assert sorted(v["id"] for v in frame["enter"]) == [3, 4]

    assert client.post(f"/session/{session_id}/collapse/{A}").status_code == 400


def test_visualization_and_legend(client, session_id):
    url = f"/session/{session_id}"
    assert client.get(f"{url}/legend/label_color").status_code == 404

    response = client.post(f"{url}/visualization", json={"channel": "label_color", "label": "Habitat"})
    assert response.status_code == 200
    views = {v["id"]: v for v in response.get_json()["update"]}
    assert views[A]["label_color"] == "#2ca02c"

    legend = client.get(f"{url}/legend/label_color").get_json()
    assert [e["text"] for e in legend["entries"]] == ["air", "land", "sea"]
    assert legend["scale_type"] == "ordinal"

    assert client.post(f"{url}/visualization", json={"channel": "label_color", "label": "Nope"}).status_code == 400
    assert client.post(f"{url}/visualization", json={"channel": "nope", "label": "Habitat"}).status_code == 400


def test_override(client, session_id):
    url = f"/session/{session_id}"
    client.post(f"{url}/visualization", json={"channel": "label_color", "label": "Habitat"})
    response = client.post(
        f"{url}/override",
        json={"channel": "label_color", "label": "Habitat", "key": "sea", "color": "#000080"},
    )
    assert response.status_code == 200
    views = {v["id"]: v for v in response.get_json()["update"]}
    assert views[A]["label_color"] == "#000080"
    assert client.post(f"{url}/override", json={"channel": "label_color"}).status_code == 400


def test_search(client, session_id):
    url = f"/session/{session_id}/search"
    frame = client.post(url, json={"slot": 0, "query": "A"}).get_json()
    views = {v["id"]: v for v in frame["update"]}
    assert views[A]["label_color"] == "#00ff00"

    frame = client.post(url, json={"slot": 0, "query": "A", "negate": True}).get_json()
    views = {v["id"]: v for v in frame["update"]}
    assert views[A]["label_color"] != "#00ff00"
    assert views[6]["label_color"] == "#00ff00"

    flags = {"case_sensitive": True}
    frame = client.post(url, json={"slot": 1, "query": "a", "flags": flags, "negate": False}).get_json()
    views = {v["id"]: v for v in frame["update"]}
    assert views[A]["label_color"] == "#00ff00"

    assert client.post(url, json={"slot": 2, "query": "A"}).status_code == 400
    assert client.post(url, json={"query": "A", "flags": {"bogus": True}}).status_code == 400


def test_layout(client, session_id):
    url = f"/session/{session_id}/layout"
    frame = client.post(url, json={"mode": "phylogram", "aligned": True}).get_json()
    assert frame["layout_mode"] == "phylogram"
    assert frame["max_dist"] == pytest.approx(4.0)
    assert client.post(url, json={"mode": "radial"}).status_code == 400


def test_actions(client, session_id):
    url = f"/session/{session_id}/action"
    frame = client.post(url, json={"action": "go_to_subtree", "node": Y}).get_json()
    assert visible_ids(frame) == [5, 6, 7]
    frame = client.post(url, json={"action": "return_to_super_tree"}).get_json()
    assert visible_ids(frame) == [1, 2, 3, 4, 5, 6, 7]

    frame = client.post(url, json={"action": "delete_subtree", "node": A}).get_json()
    assert A in [v["id"] for v in frame["exit"]]

    assert client.post(url, json={"action": "zoom_in_x"}).status_code == 200
    assert client.post(url, json={"action": "incr_depth_collapse_level"}).status_code == 200
    summary = client.get(f"/session/{session_id}/summary").get_json()
    assert summary["depth_collapse"] == 1
    assert summary["external_nodes"] == 3

    assert client.post(url, json={"action": "reroot"}).status_code == 400
    assert client.post(url, json={"action": "__init__"}).status_code == 400


def test_drop_session(client, session_id):
    assert client.delete(f"/session/{session_id}").status_code == 200
    assert client.get(f"/session/{session_id}/frame").status_code == 404
    assert client.delete(f"/session/{session_id}").status_code == 404


def test_default_session(tmp_path):
    tree = tmp_path / "default.tree"
    tree.write_text(NEWICK, encoding="utf-8")
    client = create_app({"LOG_DIR": tmp_path, "CLADESCOPE_TREE": str(tree)}).test_client()
    response = client.post("/session/default")
    assert response.status_code == 201
    assert response.get_json()["frame"]["node_count"] == 7


def test_default_session_not_configured(tmp_path):
    client = create_app({"LOG_DIR": tmp_path, "CLADESCOPE_TREE": None}).test_client()
    assert client.post("/session/default").status_code == 404


def test_session_store_evicts_least_recently_used(tmp_path):
    app = create_app({"LOG_DIR": tmp_path, "MAX_SESSIONS": 2})
    client = app.test_client()
    first = client.post("/session", json={"tree": NEWICK}).get_json()["session"]
    second = client.post("/session", json={"tree": NEWICK}).get_json()["session"]
    client.get(f"/session/{first}/frame")
    client.post("/session", json={"tree": NEWICK})
    assert client.get(f"/session/{first}/frame").status_code == 200
    assert client.get(f"/session/{second}/frame").status_code == 404


def test_add_visualization(client, session_id):
    url = f"/session/{session_id}"
    spec = {"label": "Habitat colours", "property_ref": "habitat", "mapping": {"sea": "#0000ff"}}
    response = client.post(f"{url}/visualizations", json=spec)
    assert response.status_code == 200
    body = response.get_json()
    assert body["visualization_errors"] == []
    assert "Habitat colours" in body["visualizations"]["label_color"]

    frame = client.post(f"{url}/visualization", json={"channel": "label_color", "label": "Habitat colours"}).get_json()
    views = {v["id"]: v for v in frame["update"]}
    assert views[A]["label_color"] == "#0000ff"

    assert client.post(f"{url}/visualizations", json={"label": "x", "nope": 1}).status_code == 400


def test_newick_export(client, session_id):
    client.post(f"/session/{session_id}/action", json={"action": "delete_subtree", "node": A})
    response = client.get(f"/session/{session_id}/newick")
    assert response.status_code == 200
    assert response.get_data(as_text=True) == "(B:2,(C:2,D:3)Y:1);"


def test_concurrent_gestures_on_one_session_are_serialised(app, session_id):
    rounds = 8
    collapse_frames = []

    def toggle():
        collapse_frames.append(app.test_client().post(f"/session/{session_id}/collapse/{X}").get_json())

    def search(i):
        query = "A" if i % 2 else "C"
        app.test_client().post(f"/session/{session_id}/search", json={"slot": 0, "query": query})

    threads = []
    for i in range(2 * rounds):
        threads.append(threading.Thread(target=toggle))
        threads.append(threading.Thread(target=search, args=(i,)))
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(collapse_frames) == 2 * rounds
    for frame in collapse_frames:
        exited = sorted(v["id"] for v in frame["exit"])
        entered = sorted(v["id"] for v in frame["enter"])
        assert [3, 4] in (exited, entered), "every toggle sees the frame before it"
    assert sum(1 for f in collapse_frames if f["exit"]) == rounds


def test_non_finite_numbers_become_null():
    assert to_json({"a": float("inf"), "b": [float("nan"), 1.5]}) == '{"a": null, "b": [null, 1.5]}'
