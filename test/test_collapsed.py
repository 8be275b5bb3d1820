import pytest

from cladescope import colors
from cladescope.collapsed import CollapsedSubtreeAggregator
from cladescope.config import Options
from cladescope.parser import parse_newick
from cladescope.search import SearchHighlightResolver, SearchState
from cladescope.treeutil import collapse_by_feature


@pytest.fixture
def store(by_name):
    s = parse_newick("((A,B,C,D)X,E);")
    s.collapse(by_name(s, "X"))
    return s


def aggregator(store, state, options=None):
    options = options or Options()
    return CollapsedSubtreeAggregator(store, options, SearchHighlightResolver(state, options))


def found(store, *leaves):
    return {store.find_by_name(name)[0] for name in leaves}


def test_all_hits_in_one_slot_reach_the_slot_colour(store, by_name):
    state = SearchState()
    state.found[0] = found(store, "A", "B", "C", "D")
    assert aggregator(store, state).color(by_name(store, "X")) == Options().found0_color


def test_all_hits_in_both_slots(store, by_name):
    state = SearchState()
    state.found[0] = found(store, "A", "B", "C", "D")
    state.found[1] = found(store, "A", "B", "C", "D")
    assert aggregator(store, state).color(by_name(store, "X")) == Options().found0and1_color


def test_no_hits_falls_back_to_branch_default(store, by_name):
    assert aggregator(store, SearchState()).color(by_name(store, "X")) == "#aaaaaa"


def test_partial_hits_blend_from_the_background(store, by_name):
    state = SearchState()
    state.found[0] = found(store, "A")
    color = aggregator(store, state).color(by_name(store, "X"))
    background = colors.to_rgb(Options().background_color_default)
    target = colors.to_rgb(Options().found0_color)
    blended = colors.to_rgb(color)
    for b, t, c in zip(background, target, blended):
        assert min(b, t) <= c <= max(b, t)
    assert blended not in (background, target)


def test_tally_ignores_selection(store, by_name):
    state = SearchState()
    state.found[1] = found(store, "B", "C")
    state.selected.update(found(store, "A"))
    tally = aggregator(store, state).tally(by_name(store, "X"))
    assert (tally.a_only, tally.b_only, tally.both, tally.neither) == (0, 2, 0, 2)


def test_label_names_first_and_last_leaf(store, by_name):
    agg = aggregator(store, SearchState())
    assert agg.label(by_name(store, "X")) == "A ... D [4]"


def test_label_shows_hits(store, by_name):
    state = SearchState()
    state.found[0] = found(store, "A", "C")
    assert aggregator(store, state).label(by_name(store, "X")) == "A ... D [4] [2/4]"


def test_label_truncates_long_names():
    s = parse_newick("((Alphabeta,Betagamma)AB,C);")
    s.collapse(s.find_by_name("AB")[0])
    label = aggregator(s, SearchState()).label(s.find_by_name("AB")[0])
    assert label == "Alphabe ... Betagam [2]"


def test_label_carries_feature_prefix():
    s = parse_newick("((A[habitat=sea],B[habitat=sea])X,C[habitat=air]);")
    collapse_by_feature(s, s.root, lambda n: (n.property_values("habitat") or [None])[0])
    x = s.find_by_name("X")[0]
    assert aggregator(s, SearchState()).label(x) == "sea: A ... B [2]"


def test_no_label_when_external_labels_are_off(store, by_name):
    options = Options(show_external_labels=False)
    assert aggregator(store, SearchState(), options).label(by_name(store, "X")) is None
