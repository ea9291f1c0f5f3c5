import os
import glob
import logging
from datetime import datetime
from enum import Enum
from typing import List, Optional, Sequence, Tuple
import numpy as np
import SimpleITK as sitk
import vtk
from vtk.util import numpy_support

from . import __version__
from .data_structures import AttributeReport, SkeletonGraph, Surface
from .grid import VoxelGrid

logger = logging.getLogger(__name__)


class SourceKind(Enum):
    """Supported input volumes and the file suffix each is found by"""
    TIF = '.tif'
    VTK = '-mitovolume.vtk'

    def base_name(self, path: str) -> str:
        """Path without the source suffix; all outputs are named after it"""
        return path[:-len(self.value)] if path.endswith(self.value) else os.path.splitext(path)[0]


# Outputs that share the input suffix and must not be picked up again
GENERATED_SUFFIXES = ('_binary.tif',)


def scan_folder(folder: str, kind: SourceKind) -> List[str]:
    """Sorted input files of the given kind inside folder"""
    files = glob.glob(os.path.join(folder, '*' + kind.value))
    return sorted(f for f in files if not f.endswith(GENERATED_SUFFIXES))


def load_tif(path: str, spacing: Tuple[float, float, float]) -> Optional[VoxelGrid]:
    """Read a (multi-page) TIFF into a VoxelGrid, None if it cannot be decoded"""
    try:
        image = sitk.ReadImage(path)
    except RuntimeError as e:
        logger.error(f"File {path} cannot be opened: {e}")
        return None

    if image.GetNumberOfComponentsPerPixel() != 1:
        logger.error(f"File {path} has {image.GetNumberOfComponentsPerPixel()} channels")
        return None

    data = sitk.GetArrayFromImage(image)
    if data.ndim == 2:
        data = data[np.newaxis]
    origin = tuple(image.GetOrigin()) + (0.0,) * (3 - image.GetDimension())
    return VoxelGrid(data, spacing, origin[:3])


def load_vtk(path: str, spacing: Tuple[float, float, float]) -> Optional[VoxelGrid]:
    """Read a legacy VTK structured points volume"""
    if not os.path.isfile(path):
        logger.error(f"File {path} cannot be opened")
        return None

    reader = vtk.vtkStructuredPointsReader()
    reader.SetFileName(path)
    reader.Update()
    image = reader.GetOutput()
    scalars = image.GetPointData().GetScalars() if image is not None else None
    if scalars is None:
        logger.error(f"File {path} holds no scalar volume")
        return None

    nx, ny, nz = image.GetDimensions()
    data = numpy_support.vtk_to_numpy(scalars).reshape(nz, ny, nx).copy()
    return VoxelGrid(data, spacing, tuple(image.GetOrigin()))


def load_volume(path: str, kind: SourceKind, spacing) -> Optional[VoxelGrid]:
    loaders = {SourceKind.TIF: load_tif, SourceKind.VTK: load_vtk}
    return loaders[kind](path, tuple(spacing))


def write_attributes(report: AttributeReport, path: str) -> None:
    """One tab separated row of names followed by one row of values"""
    with open(path, 'w') as f:
        f.write(''.join(f"{name}\t" for name in report.names()) + '\n')
        f.write(''.join(f"{value:1.5f}\t" for value in report.values()) + '\n')


def write_point_table(graph: SkeletonGraph, path: str) -> None:
    """Per-point table of every edge with coordinates, width and intensity"""
    width = graph.layers.get('Width', np.zeros(graph.n_points))
    intensity = graph.layers.get('Intensity', np.zeros(graph.n_points))
    with open(path, 'w') as f:
        f.write("line_id\tpoint_id\tx\ty\tz\twidth_(um)\tpixel_intensity\n")
        for edge_id, edge in enumerate(graph.edges):
            for point_index, p in enumerate(edge):
                x, y, z = graph.points[p]
                f.write(f"{edge_id}\t{point_index}\t{x:1.5f}\t{y:1.5f}\t{z:1.5f}\t"
                        f"{width[p]:1.5f}\t{intensity[p]:1.5f}\n")


def write_node_components(rows: Sequence[Tuple[int, int, float]], path: str) -> None:
    with open(path, 'w') as f:
        f.write("Node\tBelonging_CC\tVol_Of_Belonging_CC_From_Img_(um3)\n")
        for node_id, cc_id, volume in rows:
            f.write(f"{node_id}\t{cc_id}\t{volume:1.5f}\n")


def graph_to_polydata(graph: SkeletonGraph) -> vtk.vtkPolyData:
    """Skeleton as polylines with one point array per layer"""
    points = vtk.vtkPoints()
    for x, y, z in graph.points:
        points.InsertNextPoint(x, y, z)

    lines = vtk.vtkCellArray()
    for edge in graph.edges:
        line = vtk.vtkPolyLine()
        line.GetPointIds().SetNumberOfIds(len(edge))
        for i, p in enumerate(edge):
            line.GetPointIds().SetId(i, p)
        lines.InsertNextCell(line)

    polydata = vtk.vtkPolyData()
    polydata.SetPoints(points)
    polydata.SetLines(lines)
    for name, values in graph.layers.items():
        array = numpy_support.numpy_to_vtk(np.ascontiguousarray(values, dtype=np.float64), deep=True)
        array.SetName(name)
        polydata.GetPointData().AddArray(array)
    return polydata


def surface_to_polydata(surface: Surface) -> vtk.vtkPolyData:
    points = vtk.vtkPoints()
    for x, y, z in surface.vertices:
        points.InsertNextPoint(x, y, z)

    triangles = vtk.vtkCellArray()
    for face in np.asarray(surface.faces, dtype=int):
        triangle = vtk.vtkTriangle()
        for i in range(3):
            triangle.GetPointIds().SetId(i, int(face[i]))
        triangles.InsertNextCell(triangle)

    polydata = vtk.vtkPolyData()
    polydata.SetPoints(points)
    polydata.SetPolys(triangles)
    return polydata


def save_polydata(polydata: vtk.vtkPolyData, path: str) -> None:
    writer = vtk.vtkPolyDataWriter()
    writer.SetFileName(path)
    writer.SetInputData(polydata)
    writer.Write()


def export_max_projection(binary: np.ndarray, path: str) -> None:
    """PNG of the maximum projection along z"""
    projection = np.asarray(binary).max(axis=0).astype(np.uint8)
    sitk.WriteImage(sitk.GetImageFromArray(projection), path)


def export_binary_image(grid: VoxelGrid, path: str) -> None:
    image = sitk.GetImageFromArray(grid.data.astype(np.uint8))
    image.SetSpacing([float(s) for s in grid.spacing])
    sitk.WriteImage(image, path)


def export_config_file(config, folder: str, kind: SourceKind) -> str:
    """Write the run parameters to mitograph.config inside folder"""
    t, f = "[True]", "[False]"
    lines = []
    if config.adaptive:
        lines.append(f"MitoGraph v{__version__} [Adaptive Algorithm]")
    else:
        lines.append(f"MitoGraph v{__version__}")
    lines.append(f"Folder: {folder}")
    if config.adaptive:
        lines.append(f"NBlocks: {config.n_blocks}")
    if config.z_adaptive:
        lines.append(f"Z-Adaptive Processing: {t}")
        lines.append(f"Z-Block Size: {config.z_block_size}")
    lines.append(f"Enhance Connectivity: {t if config.enhance_connectivity else f}")
    if config.smart_component_filtering:
        lines.append(f"Smart Component Filtering: {t}")
        lines.append(f"Min Component Size: {config.min_component_size}")
    else:
        lines.append(f"Smart Component Filtering: {f}")
    lines.append(f"Normalization: {config.normalization_policy.value}")
    lines.append(f"Binarization: {config.binarization_policy.value}")
    lines.append(f"Pixel size: -xy {config.dxy:1.4f}um, -z {config.dz:1.4f}um")
    lines.append(f"Average tubule radius: -r {config.rad:1.4f}um")
    lines.append("Scales: -scales " + " ".join(f"{s:1.2f}" for s in config.scales))
    lines.append(f"Post-divergence threshold: -threshold {config.threshold:1.5f}")
    lines.append(f"Input type: {kind.name}")
    lines.append(f"Analyze: {t if config.analyze else f}")
    lines.append(f"Binary input: {t if config.binary_input else f}")
    lines.append(f"Z-Adaptive: {t if config.z_adaptive else f}")
    lines.append(datetime.now().strftime('%a %b %d %H:%M:%S %Y'))

    path = os.path.join(folder, 'mitograph.config')
    with open(path, 'w') as fh:
        fh.write('\n'.join(lines) + '\n')
    return path
