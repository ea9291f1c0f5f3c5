import numpy as np
import pytest

from mitograph.components import label_components, filter_small_components, clean_boundaries, fill_holes


def test_diagonal_voxels_depend_on_connectivity():
    field = np.zeros((3, 3, 3))
    field[0, 0, 0] = field[1, 1, 1] = 1.0
    _, six = label_components(field, 6)
    _, twenty_six = label_components(field, 26)
    assert len(six) == 2
    assert len(twenty_six) == 1
    assert twenty_six[0].voxel_count == 2


def test_records_count_voxels_above_threshold():
    field = np.zeros((5, 5, 5))
    field[1, 1, 1:4] = 0.5
    field[3, 3, 3] = 0.05
    labels, records = label_components(field, 6, threshold=0.1)
    assert [r.voxel_count for r in records] == [3]
    assert labels[3, 3, 3] == 0


def test_unknown_connectivity_rejected():
    with pytest.raises(ValueError):
        label_components(np.zeros((2, 2, 2)), 8)


def test_small_components_removed():
    field = np.zeros((8, 8, 8))
    field[1, 1, 1] = 1.0
    field[5, 5, 1:6] = 1.0
    labels, records = label_components(field)
    filtered = filter_small_components(field, labels, records, 1)
    assert filtered[1, 1, 1] == 0
    assert np.count_nonzero(filtered) == 5
    assert np.all(filtered[field == 0] == 0)


def test_single_component_never_removed():
    field = np.zeros((4, 4, 4))
    field[1, 1, 1] = 1.0
    labels, records = label_components(field)
    filtered = filter_small_components(field, labels, records, 100)
    assert np.array_equal(filtered, field)


def test_clean_boundaries_zeroes_outer_layer():
    cleaned = clean_boundaries(np.ones((4, 4, 4)))
    assert cleaned.sum() == 8
    assert cleaned[1:3, 1:3, 1:3].all()


def test_enclosed_cavity_is_filled():
    shell = np.zeros((7, 7, 7), dtype=np.uint8)
    shell[1:6, 1:6, 1:6] = 255
    shell[2:5, 2:5, 2:5] = 0
    filled = fill_holes(shell)
    assert filled.dtype == np.uint8
    assert np.all(filled[1:6, 1:6, 1:6] == 255)
    assert filled[0, 0, 0] == 0


def test_open_cavity_is_left_alone():
    cup = np.zeros((7, 7, 7), dtype=np.uint8)
    cup[1:6, 1:6, 1:6] = 255
    cup[2:5, 2:5, 2:7] = 0
    filled = fill_holes(cup)
    assert filled[3, 3, 3] == 0
