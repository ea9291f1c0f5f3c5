import numpy as np
import pytest

from mitograph.attributes import (
    estimate_tubule_width, estimate_tubule_length, map_image_intensity,
    volume_from_length_and_width, topological_attributes, count_components, node_component_table,
)
from mitograph.components import label_components
from mitograph.connectivity import connect_skeleton_fragments
from mitograph.data_structures import AttributeReport, SkeletonGraph, Surface
from mitograph.grid import VoxelGrid


def _two_tubes():
    points = np.array([[0, 0, 0], [1, 0, 0], [2, 0, 0], [5, 0, 0], [6, 0, 0], [7, 0, 0]], dtype=float)
    return SkeletonGraph(points, [[0, 1, 2], [3, 4, 5]])


def test_width_from_surrounding_ring():
    angles = np.linspace(0, 2 * np.pi, 8, endpoint=False)
    ring = np.stack([np.cos(angles), np.sin(angles), np.zeros(8)], axis=1)
    graph = SkeletonGraph(np.zeros((1, 3)))
    report = AttributeReport()
    width = estimate_tubule_width(graph, Surface(ring), report)
    assert width[0] == pytest.approx(2.0)
    assert report.names() == ["Average width (um)", "Std width (um)"]
    assert report.get("Average width (um)") == pytest.approx(2.0)
    assert report.get("Std width (um)") == pytest.approx(0.0, abs=1e-6)


def test_width_zero_without_surface():
    graph = _two_tubes()
    report = AttributeReport()
    width = estimate_tubule_width(graph, Surface(), report)
    assert not width.any()
    assert np.array_equal(graph.layer('Width'), width)


def test_shared_point_keeps_length_of_first_edge():
    points = np.array([[0, 0, 0], [1, 0, 0], [1, 2, 0], [1, 3, 0]], dtype=float)
    graph = SkeletonGraph(points, [[0, 1], [1, 2, 3]])
    lengths = estimate_tubule_length(graph)
    assert np.allclose(lengths, [1.0, 3.0])
    assert np.allclose(graph.layer('Length'), [1.0, 1.0, 3.0, 3.0])


def test_constant_width_edge_volume_is_a_cylinder():
    graph = SkeletonGraph(np.array([[0, 0, 0], [2, 0, 0]], dtype=float), [[0, 1]],
                          {'Width': np.array([0.5, 0.5])})
    report = AttributeReport()
    volume = volume_from_length_and_width(graph, report, rad=0.15)
    assert volume == pytest.approx(np.pi * 2.0 * 0.25 ** 2)
    assert report.get("Total length (um)") == pytest.approx(2.0)
    assert report.get("Volume from length (um3)") == pytest.approx(2.0 * np.pi * 0.15 ** 2)
    assert report.get("Volume from width (um3)") == pytest.approx(volume)


def test_star_topology():
    points = np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0], [0, 0, 1]], dtype=float)
    graph = SkeletonGraph(points, [[0, 1], [0, 2], [0, 3]])
    report = AttributeReport()
    topological_attributes(graph, report)
    assert report.names() == ["#End points", "#Bifurcations", "#CComps"]
    assert report.values() == [3.0, 1.0, 1.0]


def test_fragment_repair_merges_components():
    graph = _two_tubes()
    assert count_components(graph) == 2
    assert count_components(connect_skeleton_fragments(graph, 3.5)) == 1
    assert count_components(connect_skeleton_fragments(graph, 1.0)) == 2


def test_isolated_points_count_as_components():
    graph = SkeletonGraph(np.zeros((3, 3)))
    assert count_components(graph) == 3


def test_intensity_averages_face_neighbors():
    grid = VoxelGrid(np.full((5, 5, 5), 7.0), spacing=(0.5, 0.5, 0.5))
    graph = SkeletonGraph(np.array([[1.0, 1.0, 1.0], [0.0, 0.0, 0.0]]))
    intensity = map_image_intensity(graph, grid)
    assert intensity[0] == pytest.approx(7.0)
    assert intensity[1] == pytest.approx(3.5)
    assert np.array_equal(graph.layer('Intensity'), intensity)


def test_node_component_table_uses_face_neighbors():
    field = np.zeros((5, 5, 5))
    field[1, 1, 1:4] = 1.0
    labels, records = label_components(field, 26)
    graph = SkeletonGraph(np.array([[2, 1, 0], [4, 4, 4]], dtype=float),
                          layers={'Nodes': np.array([0, 1])})
    rows = node_component_table(graph, labels, records, voxel_volume=0.5)
    assert rows == [(0, 1, 1.5), (1, 0, 0.0)]
