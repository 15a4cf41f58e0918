"""Tests for the model collection: storage, references, cache and persistence."""

from concurrent.futures import ThreadPoolExecutor

import pytest
import torch

from textdewarp.exceptions import ConfigurationError, VersionMismatchError
from textdewarp.models import MODEL_VERSION, ModelCollection, PageModel


def test_storage_grows_by_doubling(model_factory):
    collection = ModelCollection()
    assert collection.nalloc == 16
    assert collection.maxpage == -1

    collection.insert_model(model_factory(40))

    assert collection.nalloc == 64
    assert collection.maxpage == 40
    assert collection.get_model(40).pageno == 40
    assert collection.get_model(39) is None
    assert collection.get_model(100) is None


def test_page_lists(model_factory):
    collection = ModelCollection()
    for pageno in (0, 2, 5):
        collection.insert_model(model_factory(pageno))
    assert collection.napages == [0, 2, 5]
    assert collection.namodels == [0, 2, 5]
    assert len(collection) == 3


def test_insert_replaces_existing_model(model_factory):
    collection = ModelCollection()
    first, second = model_factory(3), model_factory(3)
    collection.insert_model(first)
    collection.insert_model(second)

    assert collection.get_model(3) is second
    assert second.collection is collection
    assert first.collection is None


def test_remove_model(model_factory):
    collection = ModelCollection()
    model = model_factory(2)
    collection.insert_model(model)

    assert collection.remove_model(2) is model
    assert model.collection is None
    assert collection.maxpage == -1
    assert collection.remove_model(2) is None


def test_mismatched_model_is_rejected(model_factory):
    collection = ModelCollection(sampling=30)
    with pytest.raises(ConfigurationError):
        collection.insert_model(model_factory(0, sampling=20))
    with pytest.raises(ConfigurationError):
        collection.insert_model(model_factory(0, redfactor=2))


@pytest.mark.parametrize("kwargs", [
    {'sampling': 5},
    {'sampling': True},
    {'redfactor': 3},
    {'minlines': 2},
    {'maxdist': -1},
    {'cache_size': -1},
])
def test_invalid_configuration(kwargs):
    with pytest.raises(ConfigurationError):
        ModelCollection(**kwargs)


def test_threshold_setters():
    collection = ModelCollection()
    collection.max_linecurv = 120
    collection.set_curvatures(max_edgeslope=60, max_edgecurv=30)

    assert collection.max_linecurv == 120
    assert collection.thresholds.max_edgeslope == 60
    assert collection.create_checker().thresholds.max_edgecurv == 30

    with pytest.raises(ConfigurationError):
        collection.max_linecurv = -1
    with pytest.raises(ConfigurationError):
        collection.set_curvatures(max_anything=3)
    with pytest.raises(ConfigurationError):
        collection.min_diff_linecurv = 500


def test_thresholds_property_is_a_copy():
    collection = ModelCollection()
    collection.thresholds.max_linecurv = 1
    assert collection.max_linecurv == 150


def test_minlines_setter():
    collection = ModelCollection()
    collection.minlines = 6
    assert collection.create_builder().minlines == 6
    with pytest.raises(ConfigurationError):
        collection.minlines = 3


def test_resolve_references(document):
    """Pages without a valid model point to the nearest valid page of the same parity."""
    assert not document.models_ready
    document.resolve_references()

    assert document.models_ready
    assert document.reference_for(1) == 3
    assert document.reference_for(5) == 3
    assert document.reference_for(7) == 3
    assert document.reference_for(9) is None
    for pageno in (0, 2, 4, 6, 8):
        assert document.get_model(pageno) is None
    assert document.reference_for(3) is None

    assert document.namodels == [3]
    assert document.napages == [1, 3, 5, 7]
    assert document.effective_model(7) is document.get_model(3)
    assert document.effective_model(9) is None


def test_reference_ties_go_to_the_lower_page(model_factory):
    collection = ModelCollection(maxdist=4)
    collection.insert_model(model_factory(2))
    collection.insert_model(model_factory(6))
    collection.resolve_references()

    assert collection.reference_for(4) == 2
    assert collection.reference_for(0) == 2
    for pageno in (1, 3, 5):
        assert collection.get_model(pageno) is None


def test_references_respect_parity_and_distance(model_factory):
    valid_pages = {0, 3, 4, 11, 20, 21}
    collection = ModelCollection(maxdist=6)
    for pageno in range(24):
        collection.insert_model(model_factory(pageno, vertical=pageno in valid_pages))
    collection.resolve_references()

    for pageno in range(24):
        model = collection.get_model(pageno)
        if model is None or not model.hasref:
            continue
        refpage = model.refpage
        assert refpage in valid_pages
        assert refpage % 2 == pageno % 2
        assert abs(refpage - pageno) <= 6
        assert collection.get_model(refpage).vvalid


def test_resolve_is_deterministic(document):
    document.resolve_references()
    first = [document.reference_for(p) for p in range(10)]
    document.resolve_references()
    assert [document.reference_for(p) for p in range(10)] == first


def test_resolve_with_notests(model_factory):
    collection = ModelCollection(maxdist=2)
    collection.insert_model(model_factory(0, maxcurv=400))
    collection.insert_model(model_factory(1))
    collection.resolve_references(notests=True)
    assert collection.get_model(0).vvalid


def test_invalid_models_are_cached(document):
    document.resolve_references()

    assert document.cached_pages == [0, 1, 2, 4, 5, 6, 7, 8, 9]
    cached = document.get_cached_model(5)
    assert cached is not None
    assert not cached.hasref
    assert document.cached_pages[-1] == 5
    assert document.get_cached_model(3) is None


def test_cache_evicts_least_recently_used(model_factory):
    collection = ModelCollection(cache_size=2)
    for pageno in range(4):
        collection.insert_model(model_factory(pageno, vertical=False))
    collection.insert_model(model_factory(4))
    collection.resolve_references()

    assert collection.cached_pages == [2, 3]
    collection.get_cached_model(2)
    assert collection.cached_pages == [3, 2]


def test_cache_disabled(document):
    document.cache_size = 0
    document.resolve_references()
    assert document.cached_pages == []
    assert document.model_stats()['nmodels'] == 1


def test_restore_models(document):
    document.resolve_references()
    document.restore_models()

    assert not document.models_ready
    assert document.cached_pages == []
    assert document.namodels == list(range(10))
    assert all(not m.hasref for m in document.models())


def test_strip_references(document):
    document.resolve_references()
    document.strip_references()
    assert not document.models_ready
    assert document.napages == [3]


def test_rebuilt_donor_is_seen_by_dependents(document, model_factory):
    document.resolve_references()

    replacement = model_factory(3, mincurv=30, maxcurv=70)
    document.insert_model(replacement)
    assert replacement.vvalid
    assert document.effective_model(1) is replacement

    document.insert_model(model_factory(3, maxcurv=400))
    assert document.effective_model(1) is None
    assert document.reference_for(1) == 3


def test_models_know_their_collection(document):
    model = document.get_model(3)
    assert model.collection is document
    document.resolve_references()
    assert document.get_model(1).collection is document


def test_model_stats(document):
    document.resolve_references()
    assert document.model_stats() == {
        'nmodels': 10,
        'nvsuccess': 1,
        'nvvalid': 1,
        'nhsuccess': 1,
        'nhvalid': 1,
        'nref': 3,
        'ncached': 9,
    }


def test_info(document):
    document.resolve_references()
    info = document.info()
    assert "maxdist = 4" in info
    assert "page 1: reference to page 3" in info


def test_save_and_load(document, temp_dir):
    document.max_edgecurv = 45
    document.resolve_references()
    path = temp_dir / "collection.pt"
    document.save(path)

    loaded = ModelCollection.load(path)

    assert not loaded.models_ready
    assert loaded.maxdist == 4
    assert loaded.max_edgecurv == 45
    assert loaded.namodels == list(range(10))
    assert loaded.get_model(3).vvalid

    loaded.resolve_references()
    assert [loaded.reference_for(p) for p in range(10)] == \
        [document.reference_for(p) for p in range(10)]


def test_load_rejects_other_versions(temp_dir):
    path = temp_dir / "old.pt"
    torch.save({'version': MODEL_VERSION - 1, 'record_type': 'model_collection', 'record': {}}, path)

    with pytest.raises(VersionMismatchError) as excinfo:
        ModelCollection.load(path)
    assert excinfo.value.found == MODEL_VERSION - 1


def test_load_rejects_other_record_types(model_factory, temp_dir):
    path = temp_dir / "page.pt"
    model_factory(0).save(path)
    with pytest.raises(ValueError):
        ModelCollection.load(path)


def test_concurrent_inserts(model_factory):
    collection = ModelCollection()
    models = [model_factory(pageno) for pageno in range(50)]

    with ThreadPoolExecutor(max_workers=8) as executor:
        list(executor.map(collection.insert_model, models))

    assert collection.maxpage == 49
    assert collection.napages == list(range(50))
    assert all(collection.get_model(p) is models[p] for p in range(50))


def test_reference_model_cannot_hold_fields(model_factory):
    ref = PageModel.reference(1, 3, 30)
    donor = model_factory(3)
    with pytest.raises(ValueError):
        ref.set_field(donor.vertical)


def test_repeated_resolve_keeps_trailing_references(document):
    document.resolve_references()
    document.resolve_references()

    assert document.reference_for(5) == 3
    assert document.reference_for(7) == 3
    assert document.cached_pages == [0, 1, 2, 4, 5, 6, 7, 8, 9]
    assert document.maxpage == 7


def test_repeated_resolve_revalidates_cached_models(model_factory):
    """Loosened thresholds apply to models set aside by an earlier pass."""
    collection = ModelCollection(maxdist=2)
    collection.insert_model(model_factory(0, mincurv=150, maxcurv=200))
    collection.resolve_references()
    assert collection.get_model(0) is None
    assert collection.cached_pages == [0]

    collection.max_linecurv = 250
    collection.resolve_references()

    assert collection.get_model(0).vvalid
    assert collection.cached_pages == []
    assert collection.namodels == [0]


def test_repeated_resolve_with_notests(model_factory):
    collection = ModelCollection(maxdist=2)
    collection.insert_model(model_factory(0, maxcurv=400))
    collection.resolve_references()
    assert collection.get_model(0) is None

    collection.resolve_references(notests=True)
    assert collection.get_model(0).vvalid


def test_resolve_covers_the_whole_document(model_factory):
    collection = ModelCollection(maxdist=4)
    collection.insert_model(model_factory(3))
    collection.resolve_references(npages=10)

    assert collection.npages == 10
    assert [collection.reference_for(p) for p in (1, 5, 7)] == [3, 3, 3]
    assert collection.reference_for(9) is None
    assert collection.napages == [1, 3, 5, 7]


def test_npages_never_shrinks(document):
    assert document.npages == 10
    document.resolve_references(npages=4)
    assert document.npages == 10

    document.remove_model(9)
    document.remove_model(8)
    assert document.npages == 10

    with pytest.raises(ConfigurationError):
        document.resolve_references(npages=-1)
    with pytest.raises(ConfigurationError):
        document.npages = True


def test_npages_survives_save_and_load(model_factory, temp_dir):
    collection = ModelCollection(maxdist=4)
    collection.insert_model(model_factory(3))
    collection.npages = 12
    path = temp_dir / "collection.pt"
    collection.save(path)

    loaded = ModelCollection.load(path)
    assert loaded.npages == 12
    loaded.resolve_references()
    assert loaded.reference_for(7) == 3
