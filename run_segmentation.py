import os
import sys
import argparse
import logging

from mitograph.config import PipelineConfig
from mitograph.pipeline import MitoGraphPipeline, setup_logging
from mitograph.preprocessing import NormalizationPolicy
from mitograph.thresholding import BinarizationPolicy

logger = logging.getLogger('mitograph.cli')


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='MitoGraph: segmentation and network analysis of mitochondria')
    parser.add_argument('--path', type=str, required=True,
                      help='Folder with the input volumes')
    parser.add_argument('--xy', type=float, required=True,
                      help='Pixel size in the XY plane (um)')
    parser.add_argument('--z', type=float, required=True,
                      help='Spacing between z-planes (um)')

    # Parameter selection options
    param_group = parser.add_argument_group('Parameter Selection')
    param_group.add_argument('--parameter-set', type=str, default='default',
                          choices=sorted(PipelineConfig.get_parameter_sets()),
                          help='Predefined parameter set')

    # Individual parameter overrides
    override_group = parser.add_argument_group('Parameter Overrides')
    override_group.add_argument('--rad', type=float,
                             help='Average tubule radius in um (default: 0.150)')
    override_group.add_argument('--scales', type=float, nargs=3, metavar=('MIN', 'MAX', 'N'),
                             help='Scale range and number of scales (default: 1.0 1.5 6)')
    override_group.add_argument('--threshold', type=float,
                             help='Post-divergence threshold (default: 0.1666667)')
    override_group.add_argument('--adaptive', type=int, metavar='N',
                             help='Block-wise Hessian noise floor over an NxN XY grid')
    override_group.add_argument('--z-adaptive', action='store_true',
                             help='Per-block normalization and binarization along z')
    override_group.add_argument('--normalization', type=str,
                             choices=[p.value for p in NormalizationPolicy],
                             help='Intensity normalization policy (default: global, gentle with --z-adaptive)')
    override_group.add_argument('--binarization', type=str,
                             choices=[p.value for p in BinarizationPolicy],
                             help='Binarization policy (default: fixed, block with --z-adaptive)')
    override_group.add_argument('--z-block-size', type=int,
                             help='Number of planes per z-block (default: 8)')
    override_group.add_argument('--enhance-connectivity', action='store_true',
                             help='Bridge gaps in the segmentation and the skeleton')
    override_group.add_argument('--gap-distance', type=float,
                             help='Largest endpoint gap to bridge in um (default: 3 or 5 x xy)')
    override_group.add_argument('--smart-component-filtering', type=int, nargs='?', const=-1, metavar='N',
                             help='Remove components of N voxels or fewer (default N: 5)')

    io_group = parser.add_argument_group('Input and Output')
    io_group.add_argument('--binary', action='store_true',
                       help='Input volumes are already segmented')
    io_group.add_argument('--vtk', action='store_true',
                       help='Read -mitovolume.vtk files instead of TIFF')
    io_group.add_argument('--analyze', action='store_true',
                       help='Write the node to component table (.cc)')
    io_group.add_argument('--resample', action='store_true',
                       help='Resample along z to the xy pixel size')
    io_group.add_argument('--precision-off', action='store_true',
                       help='Skip hole filling before skeletonization')
    io_group.add_argument('--export-image-binary', action='store_true',
                       help='Save the binary segmentation as _binary.tif')

    return parser.parse_args(argv)


def build_config(args) -> PipelineConfig:
    """Named parameter set with the command line overrides applied"""
    overrides = {
        'dxy': args.xy,
        'dz': args.z,
        'rad': args.rad,
        'threshold': args.threshold,
        'z_block_size': args.z_block_size,
        'gap_distance_override': args.gap_distance,
        'normalization': args.normalization,
        'binarization': args.binarization,
    }
    if args.scales is not None:
        overrides.update(sigma_min=args.scales[0], sigma_max=args.scales[1], n_scales=int(args.scales[2]))
    if args.adaptive is not None:
        overrides.update(adaptive=True, n_blocks=args.adaptive)
    if args.smart_component_filtering is not None:
        overrides['smart_component_filtering'] = True
        if args.smart_component_filtering != -1:
            overrides['min_component_size'] = args.smart_component_filtering
    for flag, key in [('z_adaptive', 'z_adaptive'), ('enhance_connectivity', 'enhance_connectivity'),
                      ('binary', 'binary_input'), ('vtk', 'vtk_input'), ('analyze', 'analyze'),
                      ('resample', 'resample'), ('export_image_binary', 'export_image_binary')]:
        if getattr(args, flag):
            overrides[key] = True
    if args.precision_off:
        overrides['improve_skeleton_quality'] = False

    base = PipelineConfig.get_parameter_sets()[args.parameter_set]
    return PipelineConfig.from_dict(overrides, base=base).validated()


def main(argv=None):
    args = parse_args(argv)
    setup_logging()

    if not os.path.isdir(args.path):
        logger.error(f"Input folder does not exist: {args.path}")
        return 1

    config = build_config(args)
    logger.info(f"Scales: {', '.join(f'{s:.3f}' for s in config.scales)}")
    logger.info(f"Threshold: {config.threshold:.5f}")

    pipeline = MitoGraphPipeline(config)
    summary = pipeline.process_folder(args.path)
    for path, kind in summary.failures.items():
        logger.warning(f"{os.path.basename(path)}: {kind.value}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
