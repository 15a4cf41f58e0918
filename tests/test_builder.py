"""Tests for building page models from text lines."""

import numpy as np
import pytest

from conftest import draw_curved_page, synthetic_lines
from textdewarp.core.builder import PageModelBuilder, _edge_references
from textdewarp.exceptions import ConfigurationError, InvalidImageError
from textdewarp.models import FieldStatus


def blank_page(width=600, height=800):
    return np.zeros((height, width), dtype=bool)


def builder_for(lines, **kwargs):
    return PageModelBuilder(detector=lambda binary: lines, **kwargs)


def test_too_few_lines_is_not_an_error():
    """Pages with too few lines get a model with failed statuses."""
    model = builder_for(synthetic_lines(nlines=5, spacing=120)).build(blank_page(), 0)

    assert model.nlines == 5
    assert model.vstatus is FieldStatus.FAILED
    assert model.hstatus is FieldStatus.FAILED
    assert model.ystatus is FieldStatus.FAILED
    assert not model.vsuccess
    assert model.vertical is None


def test_lines_in_one_half_fail_coverage():
    model = builder_for(synthetic_lines(top=20, spacing=10)).build(blank_page(), 0)
    assert model.vstatus is FieldStatus.FAILED


@pytest.mark.parametrize("image", [
    None,
    np.zeros((80, 60), dtype=np.uint8),
    np.zeros((80, 60, 3), dtype=np.uint8),
])
def test_non_binary_input_raises(image):
    with pytest.raises(InvalidImageError):
        PageModelBuilder().build(image, 0)


def test_negative_page_number_raises():
    with pytest.raises(ValueError):
        builder_for(synthetic_lines()).build(blank_page(), -1)


def test_bad_builder_config_raises():
    with pytest.raises(ConfigurationError):
        PageModelBuilder(sampling=4)
    with pytest.raises(ConfigurationError):
        PageModelBuilder(redfactor=3)
    with pytest.raises(ConfigurationError):
        PageModelBuilder(minlines=2)


def test_vertical_model_from_curved_lines():
    """Curved lines give a vertical field that moves each line onto its top point."""
    model = builder_for(synthetic_lines()).build(blank_page(), 0)

    assert model.vstatus is FieldStatus.BUILT
    assert model.nlines == 20
    assert model.mincurv == 100
    assert model.maxcurv == 100
    assert (model.nx, model.ny) == (21, 28)

    np.testing.assert_allclose(model.midys, 80 + 32 * np.arange(20), atol=1e-6)
    assert np.all(np.diff(model.midys) > 0)
    np.testing.assert_allclose(model.curvatures, 1e-4, atol=1e-9)

    xs = np.arange(model.nx) * 30.0
    expected = -1e-4 * (xs - 300.0) ** 2
    np.testing.assert_allclose(model.vertical.sampled, np.tile(expected, (model.ny, 1)), atol=1e-6)


def test_flush_edges_give_horizontal_without_slope():
    model = builder_for(synthetic_lines()).build(blank_page(), 0)

    assert model.hstatus is FieldStatus.BUILT
    assert model.ystatus is FieldStatus.FAILED
    assert (model.leftslope, model.rightslope) == (0, 0)
    assert (model.leftcurv, model.rightcurv) == (0, 0)
    np.testing.assert_allclose(model.horizontal.sampled, 0.0, atol=1e-6)


def test_ragged_right_edge_builds_slope_field():
    """Short lines are left out of the edge fit and a slope field is built."""
    lines = synthetic_lines()
    lines = [line[line[:, 0] <= 500] if k % 2 else line for k, line in enumerate(lines)]

    model = builder_for(lines).build(blank_page(), 1, debug=True)

    assert model.hsuccess
    assert model.ysuccess
    assert len(model.diagnostics['right_points']) == 10
    np.testing.assert_allclose(model.diagnostics['right_points'][:, 0], 540.0)
    assert model.rightslope == 0


def test_curvature_outliers_are_dropped():
    lines = synthetic_lines()
    lines[7] = lines[7].copy()
    lines[7][:, 1] = 300 + 5e-3 * (lines[7][:, 0] - 300.0) ** 2

    model = builder_for(lines).build(blank_page(), 0)

    assert model.vsuccess
    assert model.maxcurv == 100
    assert len(model.midys) == 19


def test_curvatures_are_sorted():
    """Curvatures are kept in ascending order while midys stay top to bottom."""
    xs = np.arange(60, 541, 5, dtype=np.float64)
    lines = [np.column_stack([xs, 80 + k * 32 + (1.2e-4 - k * 1e-6) * (xs - 300.0) ** 2])
             for k in range(20)]

    model = builder_for(lines).build(blank_page(), 0)

    assert model.vsuccess
    assert (model.mincurv, model.maxcurv) == (101, 120)
    assert np.all(np.diff(model.curvatures) > 0)
    assert np.all(np.diff(model.midys) > 0)
    np.testing.assert_allclose(model.curvatures[[0, -1]], [1.01e-4, 1.2e-4], atol=1e-9)


def test_minlines_override():
    builder = builder_for(synthetic_lines())
    assert not builder.build(blank_page(), 0, minlines=25).vsuccess
    assert builder.build(blank_page(), 0, minlines=20).vsuccess
    with pytest.raises(ConfigurationError):
        builder.build(blank_page(), 0, minlines=3)


def test_debug_keeps_diagnostics():
    model = builder_for(synthetic_lines()).build(blank_page(), 0, debug=True)
    for key in ('lines', 'line_samples', 'line_refs', 'left_points', 'right_points'):
        assert key in model.diagnostics

    quiet = builder_for(synthetic_lines()).build(blank_page(), 0)
    assert quiet.diagnostics == {}


def test_edge_references_depend_on_parity():
    xl = np.array([10.0, 14.0, 12.0])
    xr = np.array([500.0, 496.0, 505.0])
    assert _edge_references(xl, xr, odd=True) == (14.0, 505.0)
    assert _edge_references(xl, xr, odd=False) == (10.0, 496.0)


def test_build_from_drawn_page():
    """The default detector finds the drawn lines and their curvature."""
    page = draw_curved_page()
    original = page.copy()

    model = PageModelBuilder().build(page, 0)

    np.testing.assert_array_equal(page, original)
    assert model.nlines == 20
    assert model.vsuccess
    assert 85 <= model.mincurv <= model.maxcurv <= 115
    assert model.hsuccess


def test_build_on_empty_page():
    model = PageModelBuilder().build(blank_page(), 2)
    assert model.nlines == 0
    assert model.vstatus is FieldStatus.FAILED
