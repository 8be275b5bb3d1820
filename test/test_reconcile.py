import math

from cladescope.config import Options


def ids(views):
    return sorted(v.id for v in views)


def test_first_pass_enters_everything(five_leaf_session):
    frame = five_leaf_session.update()
    store = five_leaf_session.store
    assert ids(frame.enter) == sorted(store.nodes)
    assert frame.update == [] and frame.exit == []
    assert len(frame.links_enter) == len(store) - 1
    assert all(v.moved for v in frame.enter)


def test_collapse_exits_to_the_source_position(five_leaf_session, by_name):
    session = five_leaf_session
    store = session.store
    session.update()
    ab = by_name(store, "AB")
    a, b = by_name(store, "Alphabeta"), by_name(store, "Betagamma")

    frame = session.toggle_collapse(ab)
    assert ids(frame.exit) == sorted([a, b])
    ab_now = frame.node(ab)
    assert ab in ids(frame.update)
    for view in frame.exit:
        assert (view.x, view.y) == (ab_now.x, ab_now.y)
    assert sorted(link.target for link in frame.links_exit) == sorted([a, b])
    assert frame.node(a) is None


def test_expand_enters_from_the_source_previous_position(five_leaf_session, by_name):
    session = five_leaf_session
    store = session.store
    session.update()
    ab = by_name(store, "AB")
    collapsed = session.toggle_collapse(ab)
    before = collapsed.node(ab)

    frame = session.toggle_collapse(ab)
    entering = {v.id: v for v in frame.enter}
    assert sorted(entering) == sorted([by_name(store, "Alphabeta"), by_name(store, "Betagamma")])
    for view in entering.values():
        assert (view.x0, view.y0) == (before.x, before.y)


def test_search_pass_keeps_positions(five_leaf_session, by_name):
    session = five_leaf_session
    session.update()
    frame = session.set_search_query(0, "Alphabeta")
    assert frame.enter == [] and frame.exit == []
    assert not any(v.moved for v in frame.update)
    hit = frame.node(by_name(session.store, "Alphabeta"))
    assert hit.label_color == Options().found0_color
    assert frame.node(by_name(session.store, "Ezeta")).label_color == Options().label_color_default


def test_previous_coordinates_are_recorded(five_leaf_session):
    session = five_leaf_session
    session.update()
    for handle in session.store.nodes:
        node = session.store.nodes[handle]
        assert (node.x0, node.y0) == (node.x, node.y)


def test_transition_duration_defaults_from_settings(five_leaf_session):
    frame = five_leaf_session.update()
    assert frame.transition_duration == five_leaf_session.settings.transition_duration
    assert five_leaf_session.update(transition_duration=0).transition_duration == 0


def test_non_finite_branch_length_is_reported(five_leaf_session, by_name):
    session = five_leaf_session
    ab = by_name(session.store, "AB")
    session.store.nodes[ab].branch_length = float("inf")
    frame = session.set_layout_mode("phylogram")
    assert any(str(ab) in w for w in frame.warnings)
    for view in frame.nodes:
        assert math.isfinite(view.x) and math.isfinite(view.y)


def test_collapsed_node_gets_summary_fill_and_label(five_leaf_session, by_name):
    session = five_leaf_session
    session.set_layout_mode("phylogram")
    frame = session.toggle_collapse(by_name(session.store, "AB"))
    view = frame.node(by_name(session.store, "AB"))
    assert view.collapsed
    assert view.fill == "#aaaaaa"
    assert view.label == "Alphabe ... Betagam [2]"
    assert view.collapsed_path.startswith("M-1,")
