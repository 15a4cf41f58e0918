"""Common test fixtures for the textdewarp package."""

import cv2
import numpy as np
import pytest
import torch

from textdewarp.models import DisparityField, DisparityKind, ModelCollection, PageModel


def draw_curved_page(width=600,
                     height=800,
                     nlines=20,
                     curvature=1e-4,
                     left=60,
                     right=540,
                     top=80,
                     spacing=32,
                     ragged=False,
                     columns=1,
                     gutter=60):
    """Draw a 1-bit page of solid text lines bending like a parabola."""
    img = np.zeros((height, width), dtype=np.uint8)
    colwidth = (right - left - (columns - 1) * gutter) // columns
    for k in range(nlines):
        y0 = top + k * spacing
        for c in range(columns):
            x0 = left + c * (colwidth + gutter)
            x1 = x0 + colwidth
            if ragged and k % 2 == 1:
                x1 -= 40
            xs = np.arange(x0, x1 + 1)
            ys = y0 + curvature * (xs - width / 2.0) ** 2
            pts = np.stack([xs, np.round(ys)], axis=1).astype(np.int32)
            cv2.polylines(img, [pts.reshape(-1, 1, 2)], False, 255, thickness=5)
    return img > 0


def synthetic_lines(nlines=20,
                    curvature=1e-4,
                    left=60,
                    right=540,
                    top=80,
                    spacing=32,
                    center=300.0,
                    step=5):
    """Text line center points as a detector would return them."""
    lines = []
    xs = np.arange(left, right + 1, step, dtype=np.float64)
    for k in range(nlines):
        ys = top + k * spacing + curvature * (xs - center) ** 2
        lines.append(np.column_stack([xs, ys]))
    return lines


@pytest.fixture
def test_device():
    """Provide a torch device for testing."""
    return torch.device('cpu')


@pytest.fixture
def temp_dir(tmp_path):
    """Provide a temporary directory for test files."""
    return tmp_path


@pytest.fixture
def curved_page():
    """A 600x800 page with 20 curved, flush text lines."""
    return draw_curved_page()


@pytest.fixture
def sparse_page():
    """A page with too few lines to build a model."""
    return draw_curved_page(nlines=5, spacing=120)


@pytest.fixture
def model_factory():
    """
    Create page models with chosen statistics and small constant fields,
    without going through image analysis.
    """
    def make(pageno,
             vertical=True,
             horizontal=True,
             slope=False,
             mincurv=20,
             maxcurv=60,
             leftslope=0,
             rightslope=0,
             leftcurv=0,
             rightcurv=0,
             w=300,
             h=400,
             sampling=30,
             redfactor=1,
             vvalue=0.0,
             hvalue=0.0):
        model = PageModel(pageno, w, h, sampling, redfactor)
        shape = (model.ny, model.nx)
        if vertical:
            model.set_field(DisparityField(DisparityKind.VERTICAL, np.full(shape, vvalue), sampling))
        else:
            model.mark_failed(DisparityKind.VERTICAL)
        if horizontal:
            model.set_field(DisparityField(DisparityKind.HORIZONTAL, np.full(shape, hvalue), sampling))
        else:
            model.mark_failed(DisparityKind.HORIZONTAL)
        if slope:
            model.set_field(DisparityField(DisparityKind.SLOPE, np.zeros(shape), sampling))
        else:
            model.mark_failed(DisparityKind.SLOPE)
        model.nlines = 20 if vertical else 3
        model.mincurv, model.maxcurv = mincurv, maxcurv
        model.leftslope, model.rightslope = leftslope, rightslope
        model.leftcurv, model.rightcurv = leftcurv, rightcurv
        return model

    return make


@pytest.fixture
def document(model_factory):
    """
    Collection for pages 0-9 with maxdist 4 where only page 3 builds a
    vertical model.
    """
    collection = ModelCollection(sampling=30, maxdist=4)
    for pageno in range(10):
        collection.insert_model(model_factory(pageno, vertical=pageno == 3, horizontal=pageno == 3))
    return collection
