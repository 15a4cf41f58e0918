"""Unit tests for model components."""

import numpy as np
import pytest
import torch

from textdewarp.models import (
    COLLECTION_CONFIGS,
    MODEL_VERSION,
    CollectionBuilder,
    FieldStatus,
    PageModel,
    get_collection,
    grid_size,
    list_available_presets,
)


def test_presets():
    """Test the collection factory presets."""
    assert set(list_available_presets()) == {'default', 'reduced', 'strict', 'lenient'}

    default = get_collection()
    assert (default.sampling, default.redfactor, default.minlines, default.maxdist) == (30, 1, 15, 16)
    assert default.useboth
    assert not default.check_columns

    reduced = get_collection('reduced')
    assert reduced.redfactor == 2
    assert reduced.sampling == 15

    strict = get_collection('strict')
    assert strict.max_linecurv == COLLECTION_CONFIGS['strict']['thresholds']['max_linecurv']
    assert strict.min_diff_linecurv == 0


def test_preset_overrides():
    collection = get_collection('strict', maxdist=2, thresholds={'max_linecurv': 90})
    assert collection.maxdist == 2
    assert collection.max_linecurv == 90
    assert collection.max_edgeslope == 50

    # Presets themselves are left untouched
    assert get_collection('strict').max_linecurv == 100


def test_unknown_preset():
    with pytest.raises(ValueError):
        get_collection('nonexistent')


def test_collection_builder():
    """Test CollectionBuilder functionality."""
    collection = (CollectionBuilder()
                  .select_preset('lenient')
                  .set_config(maxdist=3, check_columns=True, thresholds={'max_edgecurv': 70})
                  .build())
    assert collection.maxdist == 3
    assert collection.check_columns
    assert collection.max_edgecurv == 70
    assert collection.minlines == 8

    with pytest.raises(ValueError):
        CollectionBuilder().build()
    with pytest.raises(ValueError):
        CollectionBuilder().set_config(maxdist=3)


def test_grid_size():
    assert grid_size(600, 30) == 21
    assert grid_size(30, 30) == 2
    assert grid_size(31, 30) == 2
    assert grid_size(1, 30) == 1


def test_field_status():
    assert not FieldStatus.NOT_ATTEMPTED.has_field
    assert not FieldStatus.FAILED.has_field
    assert FieldStatus.BUILT.has_field
    assert FieldStatus.INVALID.has_field
    assert FieldStatus.VALID.has_field


def test_new_model_statuses():
    model = PageModel(0, 300, 400, 30)
    assert model.vstatus is FieldStatus.NOT_ATTEMPTED
    assert model.validity() == (False, False)
    assert not model.hasref
    assert model.collection is None


def test_reference_model():
    ref = PageModel.reference(5, 3, 30)
    assert ref.hasref
    assert ref.refpage == 3
    assert ref.vertical is None
    assert ref.validity() == (False, False)

    with pytest.raises(ValueError):
        PageModel.reference(5, 5, 30)
    with pytest.raises(ValueError):
        PageModel(-1, 300, 400, 30)


def test_populate_full_res(model_factory):
    model = model_factory(0, slope=True, vvalue=1.0, hvalue=2.0)
    model.populate_full_res()

    assert model.vertical.full.shape == (400, 300)
    assert model.horizontal.full.shape == (400, 300)
    assert model.slope.full.shape == (400, 300)
    np.testing.assert_allclose(model.horizontal.full, 2.0)

    reduced = model_factory(1, w=150, h=200, redfactor=2, vvalue=1.0)
    reduced.populate_full_res()
    assert reduced.vertical.full.shape == (400, 300)
    np.testing.assert_allclose(reduced.vertical.full, 2.0)


def test_page_model_save_and_load(model_factory, temp_dir):
    model = model_factory(4, slope=True, mincurv=-12, maxcurv=48, leftslope=7, rightcurv=-3, vvalue=1.5)
    model.midys = np.array([10.0, 50.0, 90.0])
    model.curvatures = np.array([1e-5, 2e-5, 3e-5])
    model.set_validity(True, False)
    path = temp_dir / "page.pt"
    model.save(path)

    loaded = PageModel.load(path)

    assert loaded.pageno == 4
    assert (loaded.w, loaded.h, loaded.sampling) == (300, 400, 30)
    assert loaded.vstatus is FieldStatus.VALID
    assert loaded.hstatus is FieldStatus.INVALID
    assert loaded.ystatus is FieldStatus.BUILT
    assert (loaded.mincurv, loaded.maxcurv, loaded.leftslope, loaded.rightcurv) == (-12, 48, 7, -3)
    np.testing.assert_allclose(loaded.vertical.sampled, 1.5)
    np.testing.assert_allclose(loaded.midys, model.midys)
    np.testing.assert_allclose(loaded.curvatures, model.curvatures)


def test_failed_model_save_and_load(model_factory, temp_dir):
    model = model_factory(2, vertical=False, horizontal=False)
    path = temp_dir / "failed.pt"
    model.save(path)

    loaded = PageModel.load(path)
    assert loaded.vstatus is FieldStatus.FAILED
    assert loaded.vertical is None


def test_reference_model_save_and_load(temp_dir):
    path = temp_dir / "ref.pt"
    PageModel.reference(7, 3, 30).save(path)

    loaded = PageModel.load(path)
    assert loaded.hasref
    assert loaded.refpage == 3
    assert loaded.pageno == 7


def test_inconsistent_record_is_rejected(model_factory):
    data = model_factory(0).to_dict()
    data['vstatus'] = FieldStatus.FAILED.value
    with pytest.raises(ValueError):
        PageModel.from_dict(data)


def test_additional_info_cannot_replace_version_tag(model_factory, temp_dir):
    path = temp_dir / "tagged.pt"
    model_factory(1).save(path, additional_info={'version': 1, 'record_type': 'other', 'note': 'scan 2'})

    saved = torch.load(path, weights_only=True)
    assert saved['version'] == MODEL_VERSION
    assert saved['record_type'] == 'page_model'
    assert saved['note'] == 'scan 2'
    assert PageModel.load(path).pageno == 1
