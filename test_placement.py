"""Placement strategy geometry: strategy selection, scenarios and invariants."""

import itertools

import pytest

from app.models.ads import FormatSpec, PlacementStrategy, Rect
from app.services.catalog import load_catalog
from app.services.errors import InvalidDimensions
from app.services.placement import classify_ratio, plan_placement


SQUARE = FormatSpec(600, 500, "Banner Cuadrado")
LEADERBOARD = FormatSpec(728, 90, "Leaderboard")
RECTANGLE = FormatSpec(640, 200, "Banner Rectangular")

SOURCES = [
    (1600, 1200),
    (800, 800),
    (1200, 1600),
    (1920, 1080),
    (5000, 1000),
    (10000, 1000),
    (2000, 400),
    (333, 777),
    (1, 1),
    (1, 1000),
    (5000, 1),
]
FORMATS = [SQUARE, LEADERBOARD, RECTANGLE, FormatSpec(300, 250, "Medium"), FormatSpec(160, 600, "Skyscraper")]


def test_classify_ratio_buckets():
    assert classify_ratio(SQUARE.aspect_ratio) == "near_square"
    assert classify_ratio(LEADERBOARD.aspect_ratio) == "very_wide"
    assert classify_ratio(RECTANGLE.aspect_ratio) == "moderate"
    assert classify_ratio(4.0) == "very_wide"
    assert classify_ratio(1.5) == "near_square"
    assert classify_ratio(0.25) == "near_square"


def test_square_format_letterboxes_4_3_source():
    plan = plan_placement(1600, 1200, SQUARE)

    assert plan.strategy is PlacementStrategy.CENTER_SCALE
    assert plan.source_rect == Rect(0, 0, 1600, 1200)
    # scale 0.375 -> 600x450, 25px top/bottom margins, no side margins
    assert plan.dest_rect == Rect(0, 25, 600, 450)
    assert not plan.fills_canvas


def test_leaderboard_crops_horizontal_band_from_4_3_source():
    plan = plan_placement(1600, 1200, LEADERBOARD)

    assert plan.strategy is PlacementStrategy.CROP_HORIZONTAL
    # band height 1600 / (728 / 90) = 197.8 -> 197, centered at (1200 - 197) // 2
    assert plan.source_rect == Rect(0, 501, 1600, 197)
    assert plan.dest_rect == Rect(0, 0, 728, 90)
    assert plan.fills_canvas


def test_rectangle_crops_top_and_bottom_of_square_source():
    plan = plan_placement(800, 800, RECTANGLE)

    assert plan.strategy is PlacementStrategy.CROP_HORIZONTAL
    assert plan.source_rect == Rect(0, 275, 800, 250)
    assert plan.dest_rect == Rect(0, 0, 640, 200)
    assert plan.fills_canvas


def test_rectangle_crops_sides_of_wider_source():
    plan = plan_placement(2000, 400, RECTANGLE)

    assert plan.strategy is PlacementStrategy.CROP_VERTICAL
    # crop width 400 * 3.2 = 1280, centered at (2000 - 1280) // 2
    assert plan.source_rect == Rect(360, 0, 1280, 400)
    assert plan.fills_canvas


def test_leaderboard_fits_already_wide_source_by_height():
    plan = plan_placement(5000, 1000, LEADERBOARD)

    assert plan.strategy is PlacementStrategy.FIT_TALL
    assert plan.source_rect == Rect(0, 0, 5000, 1000)
    assert plan.dest_rect == Rect(139, 0, 450, 90)


def test_leaderboard_fits_very_wide_source_by_width():
    plan = plan_placement(10000, 1000, LEADERBOARD)

    assert plan.strategy is PlacementStrategy.FIT_WIDE
    assert plan.dest_rect == Rect(0, 9, 728, 72)


@pytest.mark.parametrize(
    "width, height, fmt",
    [
        (0, 100, SQUARE),
        (100, 0, SQUARE),
        (-5, 100, RECTANGLE),
        (100, 100, FormatSpec(0, 90, "Broken")),
        (100, 100, FormatSpec(728, -1, "Broken")),
    ],
)
def test_non_positive_dimensions_are_rejected(width, height, fmt):
    with pytest.raises(InvalidDimensions):
        plan_placement(width, height, fmt)


@pytest.mark.parametrize("source, fmt", list(itertools.product(SOURCES, FORMATS)))
def test_rects_stay_within_bounds(source, fmt):
    width, height = source
    plan = plan_placement(width, height, fmt)

    assert plan.source_rect.contained_in(width, height)
    assert plan.dest_rect.contained_in(fmt.width, fmt.height)


@pytest.mark.parametrize("source, fmt", list(itertools.product(SOURCES, FORMATS)))
def test_planning_is_deterministic(source, fmt):
    assert plan_placement(*source, fmt) == plan_placement(*source, fmt)


@pytest.mark.parametrize("source", SOURCES)
def test_near_square_keeps_full_source(source):
    plan = plan_placement(*source, SQUARE)

    assert plan.strategy is PlacementStrategy.CENTER_SCALE
    assert plan.source_rect == Rect(0, 0, *source)


@pytest.mark.parametrize("source, fmt", list(itertools.product(SOURCES, [LEADERBOARD, RECTANGLE])))
def test_crop_strategies_fill_the_canvas(source, fmt):
    plan = plan_placement(*source, fmt)

    if plan.strategy in (PlacementStrategy.CROP_HORIZONTAL, PlacementStrategy.CROP_VERTICAL):
        assert plan.fills_canvas
    else:
        # Only banner-shaped sources are letterboxed into a wide target.
        assert source[0] / source[1] > 4


def test_default_catalog_picks_one_strategy_family_per_format():
    strategies = {fmt.name: plan_placement(1600, 1200, fmt).strategy for fmt in load_catalog()}

    assert strategies == {
        "Banner Cuadrado": PlacementStrategy.CENTER_SCALE,
        "Leaderboard": PlacementStrategy.CROP_HORIZONTAL,
        "Banner Rectangular": PlacementStrategy.CROP_HORIZONTAL,
    }
