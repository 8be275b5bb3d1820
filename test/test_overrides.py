import pytest

from cladescope.errors import VisualizationConfigError
from cladescope.overrides import ColorOverrideStore
from cladescope.parser import parse_newick
from cladescope.visualization import Channel, VisualizationSpec, build_registry

HABITAT = VisualizationSpec(label="Habitat", property_ref="habitat", palette="category10")


def registry_for(store, *specs):
    return build_registry(store, list(specs or [HABITAT])).registry


def test_override_changes_only_the_target_category(habitat_store):
    registry = registry_for(habitat_store)
    vis = registry.get(Channel.LABEL_COLOR, "Habitat")
    before = {d: vis.lookup(d) for d in ("air", "land", "sea")}

    ColorOverrideStore().apply_override(registry, Channel.LABEL_COLOR, "Habitat", "land", "#123456")

    assert vis.lookup("land") == "#123456"
    assert vis.lookup("air") == before["air"]
    assert vis.lookup("sea") == before["sea"]


def test_override_is_shared_by_all_colour_channels(habitat_store):
    registry = registry_for(habitat_store)
    ColorOverrideStore().apply_override(registry, Channel.NODE_FILL_COLOR, "Habitat", "sea", "#abcdef")
    for channel in (Channel.LABEL_COLOR, Channel.NODE_FILL_COLOR, Channel.NODE_BORDER_COLOR):
        assert registry.get(channel, "Habitat").lookup("sea") == "#abcdef"


def test_successive_overrides_do_not_clobber(habitat_store):
    registry = registry_for(habitat_store)
    overrides = ColorOverrideStore()
    overrides.apply_override(registry, Channel.LABEL_COLOR, "Habitat", "air", "#111111")
    overrides.apply_override(registry, Channel.LABEL_COLOR, "Habitat", "sea", "#222222")
    vis = registry.get(Channel.LABEL_COLOR, "Habitat")
    assert vis.lookup("air") == "#111111"
    assert vis.lookup("sea") == "#222222"
    assert len(overrides) == 2


def test_linear_stop_override(habitat_store):
    spec = VisualizationSpec(label="Size", property_ref="size", colors=["#000000", "#ffffff"])
    registry = registry_for(habitat_store, spec)
    ColorOverrideStore().apply_override(registry, Channel.LABEL_COLOR, "Size", 6, "#ff0000")
    vis = registry.get(Channel.LABEL_COLOR, "Size")
    assert vis.lookup(6) == "#ff0000"
    assert vis.lookup(1) == "#000000"


def test_linear_override_on_single_valued_property_keeps_other_stops():
    store = parse_newick("(A[w=5],B[w=5]);")
    spec = VisualizationSpec(label="W", property_ref="w", colors=["#ff0000", "#ffffff", "#0000ff"])
    registry = registry_for(store, spec)
    source = registry.get(Channel.LABEL_COLOR, "W").source
    assert source.domain == [5.0, 5.0, 5.0]

    ColorOverrideStore().apply_override(registry, Channel.LABEL_COLOR, "W", 5, "#00ff00")
    assert source.range == ["#00ff00", "#ffffff", "#0000ff"]


def test_override_on_wrapped_scale_separates_the_category():
    store = parse_newick("(" + ",".join(f"L{i}[n={i}]" for i in range(12)) + ");")
    spec = VisualizationSpec(label="N", property_ref="n", palette="category10")
    registry = registry_for(store, spec)
    vis = registry.get(Channel.LABEL_COLOR, "N")
    shared = vis.lookup(0)
    assert vis.lookup(10) == shared

    ColorOverrideStore().apply_override(registry, Channel.LABEL_COLOR, "N", 10, "#abcdef")
    assert vis.lookup(10) == "#abcdef"
    assert vis.lookup(0) == shared
    assert vis.lookup(11) == vis.lookup(1)


def test_invalid_overrides_raise(habitat_store):
    registry = registry_for(habitat_store)
    overrides = ColorOverrideStore()
    with pytest.raises(VisualizationConfigError):
        overrides.apply_override(registry, Channel.LABEL_COLOR, "Habitat", "space", "#000000")
    with pytest.raises(VisualizationConfigError):
        overrides.apply_override(registry, Channel.LABEL_COLOR, "Habitat", "sea", "not-a-colour")
    with pytest.raises(VisualizationConfigError):
        overrides.apply_override(registry, Channel.LABEL_COLOR, "Nope", "sea", "#000000")
    with pytest.raises(VisualizationConfigError):
        overrides.apply_override(registry, Channel.NODE_SHAPE, "Habitat", "sea", "#000000")
    assert len(overrides) == 0


def test_reapply_after_rebuild(habitat_store):
    overrides = ColorOverrideStore()
    overrides.apply_override(registry_for(habitat_store), Channel.LABEL_COLOR, "Habitat", "land", "#123456")

    rebuilt = registry_for(habitat_store)
    assert overrides.reapply(rebuilt) == []
    assert rebuilt.get(Channel.NODE_BORDER_COLOR, "Habitat").lookup("land") == "#123456"


def test_reapply_drops_stale_overrides(habitat_store):
    overrides = ColorOverrideStore()
    overrides.apply_override(registry_for(habitat_store), Channel.LABEL_COLOR, "Habitat", "land", "#123456")

    dropped = overrides.reapply(build_registry(habitat_store, [], None).registry)
    assert [o.key for o in dropped] == ["land"]
    assert len(overrides) == 0
