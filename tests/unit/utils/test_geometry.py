"""
Unit tests for display/source rectangle math.
"""

import pytest

from progresstracker.utils.geometry import (
    CropArea,
    DisplayBounds,
    Rect,
    clamp,
    fit_image_in_container,
    resolve_crop,
)


def test_clamp():
    assert clamp(5, 0, 10) == 5
    assert clamp(-1, 0, 10) == 0
    assert clamp(11, 0, 10) == 10


def test_rect_edges():
    rect = Rect.from_edges(10, 20, 110, 70)

    assert rect == Rect(10, 20, 100, 50)
    assert rect.right == 110
    assert rect.bottom == 70


def test_crop_area_box_is_rounded():
    area = CropArea(10.4, 20.6, 99.2, 50.0)

    assert area.to_box() == (10, 21, 110, 71)


class TestFitImageInContainer:
    """Test cases for letterboxed placement."""

    def test_wide_image_letterboxed_vertically(self):
        bounds = fit_image_in_container((2000, 1000), (400, 400))

        assert bounds == DisplayBounds(0.0, 100.0, 400, 200.0)

    def test_tall_image_letterboxed_horizontally(self):
        bounds = fit_image_in_container((1000, 2000), (400, 400))

        assert bounds == DisplayBounds(100.0, 0.0, 200.0, 400)

    def test_same_aspect_fills_container(self):
        bounds = fit_image_in_container((800, 600), (400, 300))

        assert bounds.offset_x == 0
        assert bounds.offset_y == 0
        assert (bounds.width, bounds.height) == (400, 300)

    def test_rejects_empty_sizes(self):
        with pytest.raises(ValueError):
            fit_image_in_container((0, 100), (400, 300))


class TestResolveCrop:
    """Test cases for display-to-source resolution."""

    def test_scales_and_offsets(self):
        bounds = DisplayBounds(100, 0, 200, 400)

        area = resolve_crop(Rect(150, 100, 100, 200), bounds, (1000, 2000))

        assert area == CropArea(250.0, 500.0, 500.0, 1000.0)

    def test_clamps_to_source(self):
        bounds = DisplayBounds(0, 0, 400, 300)

        area = resolve_crop(Rect(-50, 250, 500, 100), bounds, (800, 600))

        assert area.x == 0
        assert area.y == 500
        assert area.right == 800
        assert area.bottom == 600

    def test_rejects_empty_bounds(self):
        with pytest.raises(ValueError):
            resolve_crop(Rect(0, 0, 10, 10), DisplayBounds(0, 0, 0, 0), (10, 10))
