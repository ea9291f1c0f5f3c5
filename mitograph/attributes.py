import logging
from typing import List, Tuple
import numpy as np
import networkx as nx
from scipy.spatial import cKDTree

from .data_structures import AttributeReport, ComponentRecord, NodeType, SkeletonGraph, Surface
from .grid import NEIGHBOR_OFFSETS, FACE_OFFSETS, VoxelGrid

logger = logging.getLogger(__name__)

N_CLOSEST_SURFACE_POINTS = 3


def estimate_tubule_width(graph: SkeletonGraph, surface: Surface, report: AttributeReport) -> np.ndarray:
    """Width of every skeleton point from its closest surface points.

    The width is twice the mean distance to the 3 nearest surface vertices.
    Sets the Width layer and appends "Average width (um)" and
    "Std width (um)" to the report.
    """
    width = np.zeros(graph.n_points)
    if graph.n_points and not surface.is_empty():
        k = min(N_CLOSEST_SURFACE_POINTS, surface.n_points)
        tree = cKDTree(surface.vertices)
        distances, _ = tree.query(graph.points, k=k)
        distances = np.asarray(distances).reshape(graph.n_points, k)
        width = 2.0 * distances.mean(axis=1)
    elif graph.n_points:
        logger.warning("Empty surface, widths set to zero")

    graph.set_layer('Width', width)

    if graph.n_points:
        av_w = width.mean()
        sd_w = np.sqrt(max(0.0, np.mean(width ** 2) - av_w ** 2))
    else:
        av_w = sd_w = 0.0
    report.append("Average width (um)", av_w)
    report.append("Std width (um)", sd_w)
    return width


def estimate_tubule_length(graph: SkeletonGraph) -> np.ndarray:
    """Broadcast each edge length to the points of that edge.

    Edges are visited from last to first so a point shared by several
    edges keeps the length of the edge with the lowest index.

    Returns:
        Per-edge lengths
    """
    lengths = graph.edge_lengths()
    layer = np.zeros(graph.n_points)
    for edge_id in reversed(range(graph.n_edges)):
        layer[graph.edges[edge_id]] = lengths[edge_id]
    graph.set_layer('Length', layer)
    return lengths


def map_image_intensity(graph: SkeletonGraph, grid: VoxelGrid, n_neighbors: int = 6) -> np.ndarray:
    """Mean raw intensity around every skeleton point.

    Skeleton points are in physical units; they are mapped back to voxels
    before sampling the first n_neighbors neighbor offsets. Offsets falling
    outside the volume contribute nothing but still count in the average.
    """
    offsets = NEIGHBOR_OFFSETS[:n_neighbors]
    spacing = np.asarray(grid.spacing, dtype=float)
    origin = np.asarray(grid.origin, dtype=float)

    intensity = np.zeros(graph.n_points)
    for i, r in enumerate(graph.points):
        x, y, z = np.round(r / spacing - origin).astype(int)
        v = 0.0
        for dx, dy, dz in offsets:
            if grid.indexer.contains(x + dx, y + dy, z + dz):
                v += float(grid.value(x + dx, y + dy, z + dz))
        intensity[i] = v / n_neighbors

    graph.set_layer('Intensity', intensity)
    return intensity


def volume_from_length_and_width(graph: SkeletonGraph, report: AttributeReport, rad: float) -> float:
    """Network volume from the skeleton.

    Each edge segment is integrated as a frustum of cone with radii equal
    to half the width of its two points. Appends "Total length (um)",
    "Volume from length (um3)" (a tube of fixed radius rad) and
    "Volume from width (um3)" (the frustum sum).

    Returns:
        The frustum volume
    """
    width = graph.layers.get('Width', np.zeros(graph.n_points))
    length = 0.0
    volume = 0.0
    for edge in reversed(graph.edges):
        for p1, p2 in zip(edge[:-1], edge[1:]):
            R1, R2 = 0.5 * width[p1], 0.5 * width[p2]
            h = np.linalg.norm(graph.points[p2] - graph.points[p1])
            length += h
            volume += np.pi / 3.0 * h * (R1 * R1 + R2 * R2 + R1 * R2)

    report.append("Total length (um)", length)
    report.append("Volume from length (um3)", length * np.pi * rad ** 2)
    report.append("Volume from width (um3)", volume)
    return volume


def node_types(graph: SkeletonGraph) -> np.ndarray:
    """NodeType of every point from how many edges start or end there"""
    counts = graph.end_counts()
    types = np.full(graph.n_points, NodeType.SEGMENT, dtype=object)
    types[counts == 1] = NodeType.ENDPOINT
    types[counts >= 3] = NodeType.BIFURCATION
    return types


def to_networkx(graph: SkeletonGraph) -> nx.Graph:
    G = nx.Graph()
    G.add_nodes_from(range(graph.n_points))
    for edge in graph.edges:
        nx.add_path(G, edge)
    return G


def count_components(graph: SkeletonGraph) -> int:
    """Connected pieces of the skeleton, isolated points included"""
    return nx.number_connected_components(to_networkx(graph))


def topological_attributes(graph: SkeletonGraph, report: AttributeReport) -> None:
    """Append "#End points", "#Bifurcations" and "#CComps" to the report"""
    types = list(node_types(graph))
    report.append("#End points", types.count(NodeType.ENDPOINT))
    report.append("#Bifurcations", types.count(NodeType.BIFURCATION))
    report.append("#CComps", count_components(graph))


def node_component_table(graph: SkeletonGraph, labels: np.ndarray, records: List[ComponentRecord],
                         voxel_volume: float) -> List[Tuple[int, int, float]]:
    """Component and component volume of every skeleton vertex.

    The graph must still be in voxel coordinates. A vertex takes the
    component of its first face neighbor that lies on the foreground; if
    there is none, component 0 and volume 0 are reported.

    Returns:
        (node id, component id, component volume) rows
    """
    sizes = {r.component_id: r.voxel_count for r in records}
    nz, ny, nx_ = labels.shape
    nodes = graph.layers.get('Nodes')
    if nodes is None:
        return []

    rows = []
    for point_id in np.flatnonzero(nodes > -1):
        x, y, z = (int(c) for c in graph.points[point_id])
        cc_id = 0
        for dx, dy, dz in FACE_OFFSETS:
            xi, yi, zi = x + dx, y + dy, z + dz
            if 0 <= xi < nx_ and 0 <= yi < ny and 0 <= zi < nz and labels[zi, yi, xi] > 0:
                cc_id = int(labels[zi, yi, xi])
                break
        volume = sizes[cc_id] * voxel_volume if cc_id else 0.0
        rows.append((int(nodes[point_id]), cc_id, volume))
    return rows
