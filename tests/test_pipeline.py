import os

import numpy as np
import pytest
import SimpleITK as sitk

from mitograph.config import PipelineConfig
from mitograph.data_structures import FailureKind
from mitograph.grid import VoxelGrid
from mitograph.pipeline import MitoGraphPipeline
from mitograph.preprocessing import NormalizationPolicy
from mitograph.thresholding import BinarizationPolicy
from run_segmentation import build_config, parse_args


def _bar(value=255, background=0):
    data = np.full((20, 20, 20), background, dtype=np.uint8)
    data[9:12, 9:12, 5:15] = value
    return data


def test_binary_bar_is_a_single_tubule():
    pipeline = MitoGraphPipeline(PipelineConfig(binary_input=True, dxy=0.1, dz=0.1))
    result = pipeline.process_grid(VoxelGrid(_bar(), spacing=(0.1, 0.1, 0.1)))

    assert result is not None
    assert result.surface.n_components() == 1
    report = result.report
    assert report.get("#End points") == 2
    assert report.get("#Bifurcations") == 0
    assert report.get("#CComps") == 1
    assert 0.1 < report.get("Average width (um)") < 0.6
    assert 0.0 < report.get("Total length (um)") < 1.0
    assert report.get("Volume from length (um3)") == pytest.approx(
        report.get("Total length (um)") * np.pi * 0.15 ** 2)


def test_tube_in_noisy_background_is_segmented():
    config = PipelineConfig(sigma_min=1.0, sigma_max=1.5, n_scales=2, threshold=0.1)
    result = MitoGraphPipeline(config).process_grid(VoxelGrid(_bar(value=200, background=10)))

    assert result is not None
    assert result.binary.data[10, 10, 10] == 255
    assert result.binary.data[2, 2, 2] == 0
    assert result.binary.data[17, 17, 17] == 0
    assert result.surface.n_components() == 1
    report = result.report
    assert report.get("#End points") == 2
    assert report.get("#Bifurcations") == 0
    assert report.get("#CComps") == 1
    # Tube is 3 voxels across at 1 um spacing
    assert report.get("Average width (um)") == pytest.approx(3.0, abs=1.0)
    assert report.names() == [
        "Average width (um)", "Std width (um)", "Total length (um)",
        "Volume from length (um3)", "Volume from width (um3)",
        "#End points", "#Bifurcations", "#CComps",
    ]


def _two_bars():
    data = np.zeros((20, 20, 30), dtype=np.uint8)
    data[9:12, 9:12, 3:11] = 255
    data[9:12, 9:12, 17:25] = 255
    return VoxelGrid(data)


@pytest.mark.parametrize('repair, gap, expected', [
    (False, None, 2),
    (True, 15.0, 1),
    (True, 4.0, 2),
])
def test_two_tubes_merge_only_when_gap_allows(repair, gap, expected):
    config = PipelineConfig(binary_input=True, enhance_connectivity=repair, gap_distance_override=gap)
    result = MitoGraphPipeline(config).process_grid(_two_bars())
    assert result.report.get("#CComps") == expected


def test_unsupported_bit_depth_fails_cleanly():
    pipeline = MitoGraphPipeline()
    grid = VoxelGrid(np.zeros((4, 4, 4), dtype=np.float32))
    assert pipeline.process_grid(grid) is None
    assert pipeline.last_failure == FailureKind.UNSUPPORTED_FORMAT


def test_unreadable_file_fails_cleanly(tmp_path):
    path = tmp_path / 'broken.tif'
    path.write_bytes(b'not an image')
    pipeline = MitoGraphPipeline()
    assert pipeline.process_file(str(path)) is None
    assert pipeline.last_failure == FailureKind.UNREADABLE_INPUT


def test_outputs_written_next_to_input(tmp_path):
    path = str(tmp_path / 'cell.tif')
    sitk.WriteImage(sitk.GetImageFromArray(_bar()), path)
    pipeline = MitoGraphPipeline(PipelineConfig(binary_input=True, analyze=True))

    result = pipeline.process_file(path)

    assert result is not None
    assert result.path == path
    for suffix in ['.mitograph', '.txt', '.cc', '_skeleton.vtk', '_mitosurface.vtk']:
        assert os.path.isfile(str(tmp_path / ('cell' + suffix))), suffix
    assert all(cc_id == 1 for _, cc_id, _ in result.node_components)


def test_folder_run_continues_past_failures(tmp_path):
    sitk.WriteImage(sitk.GetImageFromArray(_bar()), str(tmp_path / 'a.tif'))
    (tmp_path / 'b.tif').write_bytes(b'garbage')
    pipeline = MitoGraphPipeline(PipelineConfig(binary_input=True))

    summary = pipeline.process_folder(str(tmp_path))

    assert [os.path.basename(p) for p in summary.processed] == ['a.tif']
    assert list(summary.failures.values()) == [FailureKind.UNREADABLE_INPUT]
    assert os.path.isfile(str(tmp_path / 'mitograph.config'))
    assert os.path.isfile(str(tmp_path / 'mitograph.log'))
    assert os.path.isfile(str(tmp_path / 'a.mitograph'))


def test_command_line_overrides_named_set():
    args = parse_args(['--path', '.', '--xy', '0.056', '--z', '0.2', '--parameter-set', 'sensitive',
                       '--threshold', '0.08', '--scales', '1.0', '2.0', '3',
                       '--smart-component-filtering', '10'])
    config = build_config(args)
    assert config.dxy == 0.056
    assert config.threshold == 0.08
    assert config.enhance_connectivity
    assert config.scales == pytest.approx([1.0, 1.5, 2.0])
    assert config.min_component_size == 10


def test_command_line_selects_policies():
    args = parse_args(['--path', '.', '--xy', '1', '--z', '1',
                       '--normalization', 'plane', '--binarization', 'plane'])
    config = build_config(args)
    assert config.normalization_policy == NormalizationPolicy.PLANE
    assert config.binarization_policy == BinarizationPolicy.PLANE


def test_plane_binarization_run_segments_tube():
    config = PipelineConfig(sigma_min=1.0, sigma_max=1.5, n_scales=2, threshold=0.1,
                            binarization=BinarizationPolicy.PLANE)
    result = MitoGraphPipeline(config).process_grid(VoxelGrid(_bar(value=200, background=10)))
    assert result.binary.data[10, 10, 10] == 255
    assert result.binary.data[2, 2, 2] == 0


def test_identity_normalization_keeps_16_bit_values():
    data = _bar().astype(np.uint16) * 4
    config = PipelineConfig(binary_input=True, normalization=NormalizationPolicy.IDENTITY)
    result = MitoGraphPipeline(config).process_grid(VoxelGrid(data))
    assert result.binary.data.dtype == np.uint16
    assert result.binary.data.max() == 1020
    assert result.report.get("#CComps") == 1
