import logging
from typing import Dict, List, Set, Tuple
import numpy as np
from skimage.morphology import skeletonize

from .data_structures import SkeletonGraph
from .grid import NEIGHBOR_OFFSETS

logger = logging.getLogger(__name__)

Voxel = Tuple[int, int, int]  # (z, y, x)


def thin_volume(binary: np.ndarray) -> np.ndarray:
    """Reduce a binary volume to one-voxel-wide centerlines"""
    centerlines = skeletonize(np.asarray(binary) > 0, method='lee')
    return centerlines > 0


def _neighbor_table(centerlines: np.ndarray) -> Dict[Voxel, List[Voxel]]:
    """26-connected skeleton neighbors of every skeleton voxel"""
    voxels = {tuple(int(c) for c in p) for p in np.argwhere(centerlines)}
    neighbors = {}
    for z, y, x in sorted(voxels):
        found = []
        for dx, dy, dz in NEIGHBOR_OFFSETS:
            candidate = (z + int(dz), y + int(dy), x + int(dx))
            if candidate in voxels:
                found.append(candidate)
        neighbors[(z, y, x)] = found
    return neighbors


def _trace(start: Voxel, first: Voxel, neighbors: Dict[Voxel, List[Voxel]],
           is_vertex, visited: Set[Voxel]) -> List[Voxel]:
    """Follow a chain of degree-2 voxels until a vertex is reached"""
    path = [start, first]
    prev, current = start, first
    while not is_vertex(current):
        visited.add(current)
        following = [n for n in neighbors[current] if n != prev]
        if not following:
            break
        prev, current = current, following[0]
        path.append(current)
    return path


def trace_skeleton(centerlines: np.ndarray) -> SkeletonGraph:
    """Convert a one-voxel-wide centerline volume into a SkeletonGraph.

    Voxels with a number of neighbors other than 2 become vertices and
    the chains between them become edges. A closed loop without vertices
    gets one of its voxels promoted to vertex. Points are stored as
    (x, y, z) voxel coordinates.
    """
    neighbors = _neighbor_table(centerlines)
    vertices: Set[Voxel] = {v for v, n in neighbors.items() if len(n) != 2}

    voxels = sorted(neighbors)
    point_ids = {v: i for i, v in enumerate(voxels)}
    points = np.array([(x, y, z) for z, y, x in voxels], dtype=float).reshape(-1, 3)

    paths: List[List[Voxel]] = []
    used_steps: Set[Tuple[Voxel, Voxel]] = set()
    visited: Set[Voxel] = set()

    def walk_from(vertex: Voxel):
        for first in neighbors[vertex]:
            if (vertex, first) in used_steps:
                continue
            path = _trace(vertex, first, neighbors, lambda v: v in vertices, visited)
            used_steps.add((vertex, first))
            used_steps.add((path[-1], path[-2]))
            if path[-1] in vertices:
                paths.append(path)

    for vertex in sorted(vertices):
        walk_from(vertex)

    # Closed loops have no vertex to start from
    for voxel in voxels:
        if voxel in vertices or voxel in visited:
            continue
        vertices.add(voxel)
        walk_from(voxel)

    nodes = np.full(len(voxels), -1.0)
    for node_id, vertex in enumerate(sorted(vertices, key=point_ids.get)):
        nodes[point_ids[vertex]] = node_id

    graph = SkeletonGraph(points, layers={'Nodes': nodes})
    for path in paths:
        graph.add_edge([point_ids[v] for v in path])

    logger.info(f"Skeleton with {graph.n_points} points, {len(vertices)} vertices and {graph.n_edges} edges")
    return graph


def extract_skeleton(binary: np.ndarray) -> SkeletonGraph:
    """Thin a binary volume and trace it into a SkeletonGraph"""
    return trace_skeleton(thin_volume(binary))
