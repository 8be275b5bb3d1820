import pytest

from cladescope.errors import TreeParseError
from cladescope.parser import get_linear_order, parse_newick, parse_tree, split_token


def test_parse_simple_tree_names_and_lengths(by_name):
    store = parse_newick("((A:0.1,B:0.2)AB:0.5,C:1e-2);")
    assert get_linear_order(store) == ["A", "B", "C"]
    assert store.nodes[by_name(store, "A")].branch_length == pytest.approx(0.1)
    assert store.nodes[by_name(store, "AB")].branch_length == pytest.approx(0.5)
    assert store.nodes[by_name(store, "C")].branch_length == pytest.approx(0.01)
    assert store.nodes[store.root].branch_length is None


def test_handles_follow_creation_order():
    store = parse_newick("((A,B),C);")
    assert store.root == 1
    assert [store.nodes[h].name for h in store.preorder()] == ["", "", "A", "B", "C"]
    assert store.preorder() == [1, 2, 3, 4, 5]


def test_missing_length_stays_missing(by_name):
    store = parse_newick("(A,B:2);")
    assert store.nodes[by_name(store, "A")].branch_length is None
    assert store.nodes[by_name(store, "B")].branch_length == 2


def test_quoted_labels_keep_spaces_and_punctuation():
    store = parse_newick("('Homo sapiens (human)':1,'B, b');")
    assert get_linear_order(store) == ["Homo sapiens (human)", "B, b"]


def test_multiple_trees():
    trees = parse_newick("(A,B);\n(C,(D,E));")
    assert len(trees) == 2
    assert get_linear_order(trees[1]) == ["C", "D", "E"]
    assert get_linear_order(parse_tree("(A,B);(C,D);")) == ["A", "B"]


def test_force_list():
    assert len(parse_newick("(A,B);", force_list=True)) == 1


def test_nhx_keys_map_onto_node_data(by_name):
    store = parse_newick(
        "((A[&&NHX:S=Homo sapiens:T=9606],B)AB[&&NHX:B=95:D=Y:foo=bar],C);"
    )
    a = store.nodes[by_name(store, "A")]
    assert a.taxonomies[0].scientific_name == "Homo sapiens"
    assert a.taxonomies[0].id_value == "9606"

    ab = store.nodes[by_name(store, "AB")]
    assert ab.confidences[0].value == 95
    assert ab.confidences[0].type == "bootstrap"
    assert ab.events.duplications == 1
    assert ab.property_values("NHX:foo") == ["bar"]


def test_bracketed_properties_and_bare_support(by_name):
    store = parse_newick("((A[habitat=sea,size=3],B)[87],C);")
    a = store.nodes[by_name(store, "A")]
    assert a.property_values("habitat") == ["sea"]
    assert a.property_values("size") == [3]
    inner = store.nodes[store.nodes[store.root].children[0]]
    assert inner.confidences[0].value == 87


def test_split_token():
    assert split_token("size=3") == ("size", 3)
    assert split_token("habitat=sea") == ("habitat", "sea")
    assert split_token("flag") == ("flag", True)


@pytest.mark.parametrize(
    "text",
    [
        "",
        "   ",
        "((A,B);",
        "(A,B));",
        "(A:abc,B);",
        "(A:inf,B);",
        "('A,B);",
        "(A[open,B);",
    ],
)
def test_malformed_input_raises(text):
    with pytest.raises(TreeParseError):
        parse_newick(text)


def test_linear_order_from_a_subtree(by_name):
    store = parse_newick("((A,B)AB,(C,D)CD);")
    assert get_linear_order(store, by_name(store, "CD")) == ["C", "D"]
