import logging
from dataclasses import dataclass, fields, replace
from typing import Dict, List, Optional

from .preprocessing import NormalizationPolicy
from .thresholding import BinarizationPolicy
from .vessel_enhancement import scale_range

logger = logging.getLogger(__name__)

SENSITIVE_THRESHOLD = 0.1


@dataclass(frozen=True)
class PipelineConfig:
    """Parameters of a MitoGraph run

    Parameters:
        dxy: float = 1.0 (um)
            Pixel size in the XY plane.

        dz: float = 1.0 (um)
            Spacing between z-planes.

        rad: float = 0.150 (um)
            Average tubule radius, used for the volume-from-length estimate.

        threshold: float = 0.1666667
            Post-divergence threshold.
            - Smaller values (<0.1): more sensitive, also widens gap bridging
            - Larger values: fewer false positives but may fragment tubules

        sigma_min, sigma_max, n_scales: 1.0, 1.5, 6
            Gaussian scales used for the tubularity response.

        adaptive / n_blocks: False / 3
            Block-wise Hessian noise floor over an n_blocks x n_blocks XY grid.

        z_adaptive / z_block_size: False / 8
            Gentle per-block normalization and conservative per-block
            binarization over blocks of z_block_size planes.

        enhance_connectivity: False
            Voxel-level connectivity enhancement and skeleton gap repair.

        smart_component_filtering / min_component_size: False / 5
            Remove 6-connected components of min_component_size voxels or fewer.

        normalization / binarization: None / None
            Explicit NormalizationPolicy and BinarizationPolicy. When None the
            policies follow z_adaptive (GENTLE and BLOCK) or default to GLOBAL
            and FIXED.
    """
    dxy: float = 1.0
    dz: float = 1.0
    rad: float = 0.150
    threshold: float = 0.1666667
    sigma_min: float = 1.0
    sigma_max: float = 1.5
    n_scales: int = 6
    adaptive: bool = False
    n_blocks: int = 3
    z_adaptive: bool = False
    z_block_size: int = 8
    enhance_connectivity: bool = False
    smart_component_filtering: bool = False
    min_component_size: int = 5
    normalization: Optional[NormalizationPolicy] = None
    binarization: Optional[BinarizationPolicy] = None
    gap_distance_override: Optional[float] = None
    binary_input: bool = False
    vtk_input: bool = False
    analyze: bool = False
    resample: bool = False
    improve_skeleton_quality: bool = True
    export_image_binary: bool = False

    @classmethod
    def get_parameter_sets(cls) -> Dict[str, 'PipelineConfig']:
        """Named parameter sets"""
        return {
            'default': cls(),
            'adaptive': cls(
                adaptive=True,          # Block-wise noise floor for uneven background
                n_blocks=3,
            ),
            'z_adaptive': cls(
                z_adaptive=True,        # Compensate intensity decay along z
                z_block_size=8,
            ),
            'sensitive': cls(
                threshold=0.05,                  # Keep dim tubules
                enhance_connectivity=True,       # Bridge the gaps a low threshold leaves
                smart_component_filtering=True,  # Drop the specks it lets through
                min_component_size=5,
            ),
        }

    @classmethod
    def from_dict(cls, params_dict: Dict, base: Optional['PipelineConfig'] = None) -> 'PipelineConfig':
        """Create a config from a dictionary of overrides, ignoring unknown keys"""
        base = base if base is not None else cls()
        names = {f.name for f in fields(cls)}
        known = {k: v for k, v in params_dict.items() if k in names and v is not None}
        for key, policy in (('normalization', NormalizationPolicy), ('binarization', BinarizationPolicy)):
            if isinstance(known.get(key), str):
                known[key] = policy(known[key])
        unknown = sorted(set(params_dict) - names)
        if unknown:
            logger.debug(f"Ignoring unknown parameters: {unknown}")
        return replace(base, **known)

    def validated(self) -> 'PipelineConfig':
        """Copy with non-positive sizes clamped to 1"""
        changes = {}
        for name in ('z_block_size', 'min_component_size', 'n_blocks', 'n_scales'):
            value = getattr(self, name)
            if value < 1:
                logger.warning(f"{name} too small ({value}), setting to minimum of 1")
                changes[name] = 1
        return replace(self, **changes) if changes else self

    @property
    def spacing(self):
        return (self.dxy, self.dxy, self.dz)

    @property
    def scales(self) -> List[float]:
        return scale_range(self.sigma_min, self.sigma_max, self.n_scales)

    @property
    def hessian_blocks(self) -> Optional[int]:
        return self.n_blocks if self.adaptive else None

    @property
    def normalization_policy(self) -> NormalizationPolicy:
        if self.normalization is not None:
            return self.normalization
        return NormalizationPolicy.GENTLE if self.z_adaptive else NormalizationPolicy.GLOBAL

    @property
    def binarization_policy(self) -> BinarizationPolicy:
        if self.binarization is not None:
            return self.binarization
        return BinarizationPolicy.BLOCK if self.z_adaptive else BinarizationPolicy.FIXED

    @property
    def enhancement_sigma(self) -> float:
        return 2.0 if self.threshold < SENSITIVE_THRESHOLD else 1.5

    @property
    def gap_distance(self) -> float:
        if self.gap_distance_override is not None:
            return self.gap_distance_override
        factor = 5.0 if self.threshold < SENSITIVE_THRESHOLD else 3.0
        return factor * self.dxy
