import pytest

from cladescope.errors import VisualizationConfigError
from cladescope.parser import parse_newick
from cladescope.scales import ScaleType
from cladescope.visualization import (
    ActiveVisualizations,
    Channel,
    FieldSelector,
    PropertySelector,
    Visualization,
    VisualizationSpec,
    build_registry,
    linear_domain,
    sorted_distinct,
)


def numbered_store(n):
    return parse_newick("(" + ",".join(f"L{i}[n={i}]" for i in range(n)) + ");")


def test_palette_builds_all_colour_channels_on_one_scale(habitat_store):
    spec = VisualizationSpec(label="Habitat", property_ref="habitat", palette="category10")
    result = build_registry(habitat_store, [spec])
    assert result.errors == []

    label = result.registry.get(Channel.LABEL_COLOR, "Habitat")
    fill = result.registry.get(Channel.NODE_FILL_COLOR, "Habitat")
    border = result.registry.get(Channel.NODE_BORDER_COLOR, "Habitat")
    assert label.scale is fill.scale is border.scale
    assert label.scale.domain == ["air", "land", "sea"]
    assert label.lookup("air") == "#1f77b4"
    assert label.lookup("land") == "#ff7f0e"
    assert label.lookup("sea") == "#2ca02c"
    # no shape list configured, no size stops: only the colour channels
    assert len(result.registry) == 3


def test_linear_colour_domain_is_min_mean_max(habitat_store):
    spec = VisualizationSpec(
        label="Size", property_ref="size", colors=["#0000ff", "#ffffff", "#ff0000"]
    )
    vis = build_registry(habitat_store, [spec]).registry.get(Channel.NODE_FILL_COLOR, "Size")
    assert vis.scale_type is ScaleType.LINEAR
    assert vis.scale.domain == [1.0, 3.0, 6.0]
    assert vis.lookup(1) == "#0000ff"
    assert vis.lookup(3) == "#ffffff"
    assert vis.lookup(6) == "#ff0000"


def test_bad_entry_is_reported_and_others_proceed(habitat_store):
    specs = [
        VisualizationSpec(label="Broken", property_ref="size", colors=["#000000"]),
        VisualizationSpec(label="Unknown palette", property_ref="habitat", palette="nope"),
        VisualizationSpec(label="Ambiguous", property_ref="habitat", field="name", palette="category10"),
        VisualizationSpec(label="Habitat", property_ref="habitat", palette="category10"),
    ]
    result = build_registry(habitat_store, specs)
    assert sorted(e.label for e in result.errors) == ["Ambiguous", "Broken", "Unknown palette"]
    assert all(isinstance(e, VisualizationConfigError) for e in result.errors)
    assert (Channel.LABEL_COLOR, "Habitat") in result.registry
    assert (Channel.LABEL_COLOR, "Broken") not in result.registry


def test_two_colour_forms_are_rejected(habitat_store):
    spec = VisualizationSpec(
        label="Both", property_ref="habitat", palette="category10", mapping={"sea": "#0000ff"}
    )
    result = build_registry(habitat_store, [spec])
    assert [e.label for e in result.errors] == ["Both"]


def test_exact_mapping_table(habitat_store):
    spec = VisualizationSpec(label="Sea", property_ref="habitat", mapping={"sea": "#0000ff"})
    vis = build_registry(habitat_store, [spec]).registry.get(Channel.LABEL_COLOR, "Sea")
    assert vis.lookup("sea") == "#0000ff"
    assert vis.lookup("land") is None


def test_regex_mapping_table_first_match_wins(habitat_store):
    spec = VisualizationSpec(
        label="Rx", property_ref="habitat", mapping={"^s": "#0000ff", "a": "#ff0000"}, regex=True
    )
    vis = build_registry(habitat_store, [spec]).registry.get(Channel.LABEL_COLOR, "Rx")
    assert vis.lookup("sea") == "#0000ff"
    assert vis.lookup("land") == "#ff0000"
    assert vis.lookup("xyz") is None


def test_regex_without_mapping_is_a_config_error(habitat_store):
    spec = VisualizationSpec(label="Rx", property_ref="habitat", palette="category10", regex=True)
    assert [e.label for e in build_registry(habitat_store, [spec]).errors] == ["Rx"]


def test_overflow_without_alternate_repeats_and_flags():
    store = numbered_store(12)
    spec = VisualizationSpec(label="N", property_ref="n", palette="category10")
    vis = build_registry(store, [spec]).registry.get(Channel.LABEL_COLOR, "N")
    legend = vis.legend()
    assert legend.out_of_range
    assert legend.marker == "*"
    assert legend.entries[10].text.endswith("*")
    assert vis.lookup(10) == vis.lookup(0)


def test_overflow_with_numeric_alternate_switches_to_linear():
    store = numbered_store(12)
    spec = VisualizationSpec(
        label="N", property_ref="n", palette="category10", alternate_colors=["#000000", "#ffffff"]
    )
    vis = build_registry(store, [spec]).registry.get(Channel.LABEL_COLOR, "N")
    assert vis.scale_type is ScaleType.LINEAR
    assert vis.lookup(0) == "#000000"
    assert vis.lookup(11) == "#ffffff"
    assert not vis.legend().out_of_range


def test_shape_and_size_channels(habitat_store):
    specs = [
        VisualizationSpec(label="Habitat", property_ref="habitat", channels=[Channel.NODE_SHAPE]),
        VisualizationSpec(label="Size", property_ref="size", sizes=[2, 10]),
    ]
    registry = build_registry(habitat_store, specs, node_shapes=["circle", "square"]).registry
    shape = registry.get(Channel.NODE_SHAPE, "Habitat")
    assert shape.lookup("air") == "circle"
    assert shape.lookup("land") == "square"
    assert shape.lookup("sea") == "circle"
    size = registry.get(Channel.NODE_SIZE, "Size")
    assert size.lookup(1) == pytest.approx(2.0)
    assert size.lookup(6) == pytest.approx(10.0)
    assert registry.get(Channel.LABEL_COLOR, "Habitat") is None


def test_residue_position_selector_uses_fixed_alphabet():
    store = parse_newick("(A,B);")
    spec = VisualizationSpec(label="Pos2", field="mol_seq", position=2)
    selector = spec.selector()
    assert selector == FieldSelector("mol_seq", 2)
    with pytest.raises(VisualizationConfigError):
        VisualizationSpec(label="Bad", field="name", position=2).selector()
    # no sequences in the tree: nothing observed, entry omitted
    assert len(build_registry(store, [spec], node_shapes=["circle"]).registry) == 0


def test_entries_without_values_are_omitted(habitat_store):
    spec = VisualizationSpec(label="Missing", property_ref="missing", palette="category10")
    result = build_registry(habitat_store, [spec])
    assert len(result.registry) == 0
    assert result.errors == []


def test_ignore_list_removes_values(habitat_store):
    spec = VisualizationSpec(label="Habitat", property_ref="habitat", palette="category10")
    registry = build_registry(habitat_store, [spec], ignore={"habitat": ["sea"]}).registry
    assert registry.get(Channel.LABEL_COLOR, "Habitat").scale.domain == ["air", "land"]


def test_visual_for_node(habitat_store, by_name):
    spec = VisualizationSpec(label="Habitat", property_ref="habitat", mapping={"sea": "#0000ff"})
    vis = build_registry(habitat_store, [spec]).registry.get(Channel.LABEL_COLOR, "Habitat")
    assert vis.visual_for(habitat_store.nodes[by_name(habitat_store, "A")]) == "#0000ff"
    assert vis.visual_for(habitat_store.nodes[by_name(habitat_store, "B")]) is None
    assert vis.visual_for(habitat_store.nodes[by_name(habitat_store, "X")]) is None


def test_visualization_needs_exactly_one_source():
    with pytest.raises(VisualizationConfigError):
        Visualization("x", Channel.LABEL_COLOR, PropertySelector("p"))


def test_active_visualizations_is_a_value_object():
    active = ActiveVisualizations()
    changed = active.with_channel(Channel.NODE_FILL_COLOR, "Habitat")
    assert active.get(Channel.NODE_FILL_COLOR) is None
    assert changed.get(Channel.NODE_FILL_COLOR) == "Habitat"
    assert changed.any_node_visualization()
    assert not active.with_channel(Channel.LABEL_COLOR, "Habitat").any_node_visualization()


def test_sorted_distinct_numbers_first():
    assert sorted_distinct([3, "b", 1, "a", 3, 2.5]) == [1, 2.5, 3, "a", "b"]


def test_linear_domain_mean_over_all_observations():
    assert linear_domain([1, 1, 4], 3, "x") == [1.0, 2.0, 4.0]
    assert linear_domain([1, 1, 4], 2, "x") == [1.0, 4.0]
    with pytest.raises(VisualizationConfigError):
        linear_domain([1, "a"], 2, "x")


def test_spec_from_dict_converts_channels():
    spec = VisualizationSpec.from_dict(
        {"label": "H", "property_ref": "habitat", "palette": "category10", "channels": ["label_color"]}
    )
    assert spec.channels == [Channel.LABEL_COLOR]
    assert spec.wants(Channel.LABEL_COLOR)
    assert not spec.wants(Channel.NODE_FILL_COLOR)
