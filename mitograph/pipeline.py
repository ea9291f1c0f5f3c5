import os
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
import numpy as np
from tqdm import tqdm

from .attributes import (estimate_tubule_length, estimate_tubule_width, map_image_intensity,
                         node_component_table, topological_attributes, volume_from_length_and_width)
from .centerline_extraction import extract_skeleton
from .components import clean_boundaries, fill_holes, filter_small_components, label_components
from .config import PipelineConfig
from .connectivity import connect_skeleton_fragments, enhance_structural_connectivity
from .data_structures import AttributeReport, FailureKind, SkeletonGraph, Surface
from .grid import VoxelGrid, scale_points
from .preprocessing import normalize, promote_2d_to_stack, resample_z
from .surface import extract_surface
from .thresholding import binarize
from .vessel_enhancement import divergence_filter, multiscale_vesselness
from . import io

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)


def setup_logging(output_dir: Optional[str] = None, level=logging.INFO) -> Optional[logging.FileHandler]:
    """Configure console logging and, if output_dir is given, a mitograph.log file handler.

    Returns:
        The file handler so that the caller can remove it when done
    """
    logging.basicConfig(level=level, format=LOG_FORMAT)
    if output_dir is None:
        return None

    os.makedirs(output_dir, exist_ok=True)
    fh = logging.FileHandler(os.path.join(output_dir, 'mitograph.log'))
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger('mitograph').addHandler(fh)
    return fh


@dataclass
class RunResult:
    """Everything produced for one volume"""
    report: AttributeReport
    graph: SkeletonGraph
    surface: Surface
    binary: VoxelGrid
    node_components: List[Tuple[int, int, float]] = field(default_factory=list)
    path: Optional[str] = None


@dataclass
class BatchSummary:
    processed: List[str] = field(default_factory=list)
    failures: Dict[str, FailureKind] = field(default_factory=dict)


class MitoGraphPipeline:
    """
    Segmentation and network analysis of a 3D fluorescence volume.
    """

    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = (config if config is not None else PipelineConfig()).validated()
        self.last_failure: Optional[FailureKind] = None

    @property
    def source_kind(self) -> io.SourceKind:
        return io.SourceKind.VTK if self.config.vtk_input else io.SourceKind.TIF

    def process_file(self, path: str) -> Optional[RunResult]:
        """Load one volume, run the pipeline on it and write its outputs

        Returns:
            RunResult, or None if the file could not be read or has an
            unsupported bit depth
        """
        self.last_failure = None
        kind = self.source_kind
        logger.info(f"Processing {path}")

        grid = io.load_volume(path, kind, self.config.spacing)
        if grid is None:
            return self._fail(path, FailureKind.UNREADABLE_INPUT)

        result = self.process_grid(grid, base_name=kind.base_name(path))
        if result is not None:
            result.path = path
        return result

    def process_grid(self, grid: VoxelGrid, base_name: Optional[str] = None) -> Optional[RunResult]:
        """Run the pipeline on an in-memory volume.

        Outputs are written next to base_name when it is given.
        """
        config = self.config

        # Step 1: Shape the stack
        if grid.data.shape[0] == 1:
            logger.info("Step 1: 2D image detected, promoting to a stack...")
            grid = promote_2d_to_stack(grid)
        elif config.resample:
            logger.info("Step 1: Resampling along z...")
            grid = resample_z(grid)
        raw = grid

        # Step 2: Bit depth conversion
        logger.info("Step 2: Normalizing intensities...")
        normalized = normalize(grid, config.normalization_policy, config.z_block_size)
        if normalized is None:
            return self._fail(base_name or '<memory>', FailureKind.UNSUPPORTED_FORMAT)

        if config.binary_input:
            binary = normalized.data
            surface = extract_surface(binary, 0.5)
        else:
            binary, tubularity = self._segment(normalized.data)
            surface = extract_surface(tubularity, config.threshold)
            if base_name is not None:
                io.export_max_projection(binary, base_name + '.png')
                if config.export_image_binary:
                    io.export_binary_image(grid.with_data(binary), base_name + '_binary.tif')

        surface = Surface(scale_points(surface.vertices, grid.spacing, grid.origin), surface.faces)
        if base_name is not None:
            io.save_polydata(io.surface_to_polydata(surface), base_name + '_mitosurface.vtk')

        # Step 8: Components for graph analysis
        if config.analyze:
            logger.info("Step 8: Labeling 26-connected components...")
            cc_labels, cc_records = label_components(binary, connectivity=26, threshold=0)

        # Step 9: Skeletonization
        logger.info("Step 9: Extracting skeleton...")
        graph = extract_skeleton(binary)

        if config.enhance_connectivity:
            logger.info(f"Connecting skeleton fragments (gap {config.gap_distance:.3f})...")
            graph = connect_skeleton_fragments(graph, config.gap_distance, grid.spacing)

        node_components = []
        if config.analyze:
            node_components = node_component_table(graph, cc_labels, cc_records, grid.voxel_volume)
            if base_name is not None:
                io.write_node_components(node_components, base_name + '.cc')

        # Step 10: Attributes in physical units
        logger.info("Step 10: Measuring network attributes...")
        graph = graph.with_points(scale_points(graph.points, grid.spacing, grid.origin))
        report = AttributeReport()
        estimate_tubule_width(graph, surface, report)
        estimate_tubule_length(graph)
        map_image_intensity(graph, raw, 6)
        volume_from_length_and_width(graph, report, config.rad)
        topological_attributes(graph, report)

        if base_name is not None:
            io.write_point_table(graph, base_name + '.txt')
            io.write_attributes(report, base_name + '.mitograph')
            io.save_polydata(io.graph_to_polydata(graph), base_name + '_skeleton.vtk')

        for attribute in report:
            logger.info(f"\t{attribute.name}: {attribute.value:1.5f}")

        return RunResult(report, graph, surface, grid.with_data(binary), node_components)

    def _segment(self, data: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Tubularity field and binary mask of a normalized volume"""
        config = self.config

        logger.info(f"Step 3: Computing vesselness over {len(config.scales)} scales...")
        tubularity = multiscale_vesselness(data, config.scales, config.hessian_blocks)

        logger.info("Step 4: Applying divergence filter...")
        tubularity = divergence_filter(tubularity)

        logger.info("Step 5: Cleaning boundaries and removing tiny components...")
        tubularity = clean_boundaries(tubularity)
        if config.smart_component_filtering:
            labels, records = label_components(tubularity, connectivity=6, threshold=config.threshold)
            tubularity = filter_small_components(tubularity, labels, records, config.min_component_size)

        if config.enhance_connectivity:
            logger.info("Step 6: Enhancing structural connectivity...")
            tubularity = enhance_structural_connectivity(tubularity, config.enhancement_sigma)

        logger.info("Step 7: Binarizing...")
        binary = binarize(tubularity, config.binarization_policy, config.threshold, config.z_block_size)
        if config.improve_skeleton_quality:
            binary = fill_holes(binary)

        return binary, tubularity

    def _fail(self, path: str, kind: FailureKind) -> None:
        logger.error(f"Failed to process {path}: {kind.value}")
        self.last_failure = kind
        return None

    def process_folder(self, folder: str) -> BatchSummary:
        """Process every input volume in folder, continuing past failures"""
        fh = setup_logging(folder)
        summary = BatchSummary()
        try:
            files = io.scan_folder(folder, self.source_kind)
            logger.info(f"Found {len(files)} files in {folder}")
            for path in tqdm(files, desc="Processing files"):
                result = self.process_file(path)
                if result is None:
                    summary.failures[path] = self.last_failure
                    continue
                summary.processed.append(path)
                io.export_config_file(self.config, folder, self.source_kind)
        finally:
            logging.getLogger('mitograph').removeHandler(fh)
            fh.close()
        logger.info(f"Processed {len(summary.processed)} files, {len(summary.failures)} failures")
        return summary
