import numpy as np

from mitograph.connectivity import (
    enhance_structural_connectivity, skeleton_endpoints, connect_skeleton_fragments,
)
from mitograph.data_structures import SkeletonGraph


def _broken_bar():
    field = np.zeros((11, 11, 20))
    field[4:7, 4:7, 2:18] = 0.5
    field[:, :, 10] = 0.0
    return field


def test_gap_in_bar_is_bridged():
    field = _broken_bar()
    enhanced = enhance_structural_connectivity(field)
    assert field[5, 5, 10] == 0.0
    assert enhanced[5, 5, 10] > 0.0
    assert enhanced[5, 5, 5] > 0.2


def test_outer_layer_and_input_untouched():
    field = _broken_bar()
    field[0, 5, 5] = 0.7
    original = field.copy()
    enhanced = enhance_structural_connectivity(field)
    assert np.array_equal(field, original)
    assert enhanced[0, 5, 5] == 0.7
    assert np.array_equal(enhanced[:, :, 0], original[:, :, 0])
    assert np.array_equal(enhanced[-1], original[-1])


def test_empty_field_stays_empty():
    assert not enhance_structural_connectivity(np.zeros((6, 6, 6))).any()


def _two_segments(offset=5.0):
    points = [[0, 0, 0], [1, 0, 0], [2, 0, 0],
              [2 + offset - 2, 0, 0], [3 + offset - 2, 0, 0], [4 + offset - 2, 0, 0]]
    return SkeletonGraph(np.array(points, dtype=float), [[0, 1, 2], [3, 4, 5]])


def test_endpoints_of_disjoint_segments():
    graph = _two_segments()
    assert list(skeleton_endpoints(graph)) == [0, 2, 3, 5]


def test_shared_vertex_is_not_an_endpoint():
    points = np.array([[0, 0, 0], [1, 0, 0], [2, 0, 0]], dtype=float)
    graph = SkeletonGraph(points, [[0, 1], [1, 2]])
    assert list(skeleton_endpoints(graph)) == [0, 2]


def test_close_endpoints_are_joined():
    graph = _two_segments(offset=5.0)
    repaired = connect_skeleton_fragments(graph, 3.0)
    assert graph.n_edges == 2
    assert [2, 3] in repaired.edges
    assert repaired.edges[:2] == graph.edges
    assert [0, 5] not in repaired.edges


def test_distant_endpoints_stay_apart():
    graph = _two_segments(offset=5.0)
    repaired = connect_skeleton_fragments(graph, 1.5)
    assert [2, 3] not in repaired.edges


def test_gap_measured_in_physical_units():
    graph = _two_segments(offset=5.0)
    assert [2, 3] not in connect_skeleton_fragments(graph, 1.0).edges
    scaled = connect_skeleton_fragments(graph, 1.0, spacing=(0.25, 0.25, 0.25))
    assert [2, 3] in scaled.edges
