import pytest

from cladescope import colors
from cladescope.scales import (
    LinearScale,
    OrdinalScale,
    ScaleType,
    format_legend_value,
    round_half_away,
)


# ------------------------------------------------------------------
# linear
# ------------------------------------------------------------------


def test_linear_three_stops_hit_exact_range_values():
    scale = LinearScale([0.0, 4.0, 10.0], ["#000000", "rgb(10,20,30)", "white"])
    assert scale.apply(0.0) == "#000000"
    assert scale.apply(4.0) == "rgb(10,20,30)"
    assert scale.apply(10.0) == "white"
    assert scale.scale_type is ScaleType.LINEAR


def test_linear_interpolates_colours():
    scale = LinearScale([0, 5, 10], ["#000000", "#808080", "#ffffff"])
    assert scale.apply(2.5) == "#404040"


def test_linear_numeric_range():
    scale = LinearScale([0, 10], [2, 12])
    assert scale.apply(5) == pytest.approx(7)
    # outside the domain the end segment is extrapolated
    assert scale.apply(20) == pytest.approx(22)


def test_linear_non_numeric_input_maps_to_none():
    scale = LinearScale([0, 1], ["#000000", "#ffffff"])
    assert scale.apply("abc") is None
    assert scale.apply(float("nan")) is None


def test_linear_rejects_bad_arity():
    with pytest.raises(ValueError):
        LinearScale([0, 1, 2, 3], ["a", "b", "c", "d"])
    with pytest.raises(ValueError):
        LinearScale([0, 1], ["#000000"])


def test_linear_stop_index():
    scale = LinearScale([1, 3, 6], ["#000000", "#111111", "#222222"])
    assert scale.stop_index(3) == 1
    assert scale.stop_index("6") == 2
    assert scale.stop_index(4) is None


# ------------------------------------------------------------------
# ordinal
# ------------------------------------------------------------------


def test_ordinal_distinct_slots_in_construction_order():
    domain = ["air", "land", "sea"]
    range_ = ["#1", "#2", "#3", "#4"]
    scale = OrdinalScale(domain, range_)
    assert [scale.apply(d) for d in domain] == ["#1", "#2", "#3"]
    assert not scale.out_of_range
    assert scale.apply("space") is None


def test_ordinal_overflow_wraps_and_flags_legend():
    scale = OrdinalScale(["a", "b", "c"], ["red", "green"], wrap=True)
    assert scale.out_of_range
    assert scale.apply("c") == "red"
    legend = scale.legend()
    assert [e.text for e in legend] == ["a", "b", "c*"]
    assert [e.out_of_range for e in legend] == [False, False, True]


def test_ordinal_overflow_fail_closed():
    scale = OrdinalScale(["a", "b", "c"], ["red", "green"], wrap=False)
    assert scale.apply("c") is None


def test_ordinal_needs_range():
    with pytest.raises(ValueError):
        OrdinalScale(["a"], [])


# ------------------------------------------------------------------
# legend rounding
# ------------------------------------------------------------------


def test_round_half_away_from_zero():
    assert round_half_away(2.5, 0) == 3
    assert round_half_away(-2.5, 0) == -3
    assert round_half_away(0.125, 2) == pytest.approx(0.13)


def test_format_legend_value():
    assert format_legend_value(3.0) == "3"
    assert format_legend_value(0.125) == "0.13"
    assert format_legend_value(1.5) == "1.5"
    assert format_legend_value("sea") == "sea"
    assert format_legend_value(True) == "True"


# ------------------------------------------------------------------
# colours and palettes
# ------------------------------------------------------------------


def test_interpolate_color_endpoints_are_exact():
    assert colors.interpolate_color("rgb(1,2,3)", "blue", 0) == "rgb(1,2,3)"
    assert colors.interpolate_color("rgb(1,2,3)", "blue", 1) == "blue"
    assert colors.interpolate_color("#000000", "#ffffff", 0.5) in ("#7f7f7f", "#808080")


def test_css_rgb_strings_are_colours():
    assert colors.is_color("rgb(255, 0, 0)")
    assert colors.to_hex("rgb(255,0,0)") == "#ff0000"
    assert not colors.is_color("not-a-colour")
    assert not colors.is_color(12)


def test_palettes():
    assert len(colors.palette("category10")) == 10
    assert len(colors.palette("category20")) == 20
    assert colors.palette("category10")[0] == "#1f77b4"
    with pytest.raises(KeyError):
        colors.palette("no-such-palette")


def test_smallest_palette_for():
    assert colors.smallest_palette_for(5) == "category10"
    assert colors.smallest_palette_for(15) == "category20"
    assert colors.smallest_palette_for(50) is None
