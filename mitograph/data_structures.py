from enum import Enum
from dataclasses import dataclass, field
from typing import List, Dict, Iterator, Optional, Sequence
import numpy as np
from scipy.sparse import coo_matrix
from scipy.sparse.csgraph import connected_components


class NodeType(Enum):
    """Role of a skeleton point, from the number of edge ends it carries"""
    SEGMENT = 0
    ENDPOINT = 1
    BIFURCATION = 3


class FailureKind(Enum):
    """Reasons a single file can fail to process"""
    UNREADABLE_INPUT = 'unreadable input'
    UNSUPPORTED_FORMAT = 'unsupported format'


@dataclass(frozen=True)
class Attribute:
    """Named scalar measured on a network"""
    name: str
    value: float


class AttributeReport:
    """Ordered, append-only list of attributes for one run"""

    def __init__(self):
        self._attributes: List[Attribute] = []

    def append(self, name: str, value: float) -> None:
        self._attributes.append(Attribute(name, float(value)))

    def __iter__(self) -> Iterator[Attribute]:
        return iter(self._attributes)

    def __len__(self) -> int:
        return len(self._attributes)

    def names(self) -> List[str]:
        return [a.name for a in self._attributes]

    def values(self) -> List[float]:
        return [a.value for a in self._attributes]

    def get(self, name: str) -> Optional[float]:
        """Latest value recorded under name, or None"""
        for attribute in reversed(self._attributes):
            if attribute.name == name:
                return attribute.value
        return None


@dataclass(frozen=True)
class ComponentRecord:
    """Connected component id and its voxel count"""
    component_id: int
    voxel_count: int


class SkeletonGraph:
    """Embedded centerline graph.

    Points are (x, y, z) coordinates, edges are ordered lists of point
    indices and layers hold one scalar per point. The "Nodes" layer stores
    a vertex id for points whose degree is not 2 and -1 elsewhere.
    """

    def __init__(self, points: np.ndarray, edges: Optional[Sequence[Sequence[int]]] = None,
                 layers: Optional[Dict[str, np.ndarray]] = None):
        self.points = np.asarray(points, dtype=float).reshape(-1, 3)
        self.edges: List[List[int]] = []
        self.layers: Dict[str, np.ndarray] = {}
        for name, values in (layers or {}).items():
            self.set_layer(name, values)
        for edge in edges or []:
            self.add_edge(edge)

    @property
    def n_points(self) -> int:
        return len(self.points)

    @property
    def n_edges(self) -> int:
        return len(self.edges)

    def add_edge(self, edge: Sequence[int]) -> None:
        edge = [int(i) for i in edge]
        if len(edge) < 2:
            raise ValueError("An edge needs at least two points")
        if min(edge) < 0 or max(edge) >= self.n_points:
            raise ValueError(f"Edge {edge} references points outside [0, {self.n_points})")
        self.edges.append(edge)

    def set_layer(self, name: str, values) -> None:
        values = np.asarray(values, dtype=float)
        if values.shape != (self.n_points,):
            raise ValueError(f"Layer {name} must have one value per point")
        self.layers[name] = values

    def layer(self, name: str) -> np.ndarray:
        return self.layers[name]

    def copy(self) -> 'SkeletonGraph':
        return SkeletonGraph(self.points.copy(), [list(e) for e in self.edges],
                             {k: v.copy() for k, v in self.layers.items()})

    def with_points(self, points: np.ndarray) -> 'SkeletonGraph':
        """Copy of the graph with replaced point coordinates"""
        graph = self.copy()
        points = np.asarray(points, dtype=float).reshape(-1, 3)
        if points.shape != graph.points.shape:
            raise ValueError("Point count must not change")
        graph.points = points
        return graph

    def end_counts(self) -> np.ndarray:
        """Number of edge ends (first/last point) at each point"""
        counts = np.zeros(self.n_points, dtype=int)
        for edge in self.edges:
            counts[edge[0]] += 1
            counts[edge[-1]] += 1
        return counts

    def edge_lengths(self) -> np.ndarray:
        lengths = np.zeros(self.n_edges)
        for i, edge in enumerate(self.edges):
            path = self.points[edge]
            lengths[i] = np.sum(np.linalg.norm(np.diff(path, axis=0), axis=1))
        return lengths


@dataclass
class Surface:
    """Triangulated iso-surface with (x, y, z) vertices"""
    vertices: np.ndarray = field(default_factory=lambda: np.zeros((0, 3)))
    faces: np.ndarray = field(default_factory=lambda: np.zeros((0, 3), dtype=int))

    @property
    def n_points(self) -> int:
        return len(self.vertices)

    def is_empty(self) -> bool:
        return self.n_points == 0

    def n_components(self) -> int:
        """Number of connected pieces of the mesh"""
        if self.is_empty():
            return 0
        if len(self.faces) == 0:
            return self.n_points
        faces = np.asarray(self.faces, dtype=int)
        rows = np.concatenate([faces[:, 0], faces[:, 1], faces[:, 2]])
        cols = np.concatenate([faces[:, 1], faces[:, 2], faces[:, 0]])
        adjacency = coo_matrix((np.ones(len(rows)), (rows, cols)),
                               shape=(self.n_points, self.n_points))
        n, _ = connected_components(adjacency, directed=False)
        return int(n)
