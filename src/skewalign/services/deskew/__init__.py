"""
Deskew Module for SkewAlign.

Skew estimation and geometry reconciliation for invisible text overlays.

Main components:
- DeskewConfig: Configuration dataclass shared by every stage
- SkewEstimator: Global skew angle of a page (projection, band median, geometry)
- LocalAngleModel: Smoothed per-band angle profile
- reconcile: Hungarian matching of recognized lines to detected rows
- rotate_quad / PageTransform: Quad and coordinate transformations
"""

from skewalign.services.deskew.bands import band_median_angle, sample_band_angles
from skewalign.services.deskew.binarize import binarize, otsu_threshold
from skewalign.services.deskew.config import DeskewConfig
from skewalign.services.deskew.estimator import SkewEstimator, geometry_fallback_angle
from skewalign.services.deskew.line_angle import build_candidates, robust_slope_angle
from skewalign.services.deskew.local_model import LocalAngleModel
from skewalign.services.deskew.matching import min_cost_assignment
from skewalign.services.deskew.projection import estimate_projection_angle
from skewalign.services.deskew.quad import (
    PageTransform,
    deskewed_to_original,
    normalized_to_page,
    page_to_normalized,
    rotate_quad,
)
from skewalign.services.deskew.reconcile import ReconcileResult, reconcile
from skewalign.services.deskew.types import (
    AngleEstimate,
    AngleSample,
    Deadline,
    EstimateStatus,
    GeometryBlock,
    PageImage,
    PageResult,
    Placement,
    RecognizedLine,
    TextCandidate,
)

__all__ = [
    # Config
    "DeskewConfig",
    # Types
    "AngleEstimate",
    "AngleSample",
    "Deadline",
    "EstimateStatus",
    "GeometryBlock",
    "PageImage",
    "PageResult",
    "Placement",
    "RecognizedLine",
    "TextCandidate",
    # Estimation
    "SkewEstimator",
    "band_median_angle",
    "binarize",
    "estimate_projection_angle",
    "geometry_fallback_angle",
    "otsu_threshold",
    "sample_band_angles",
    # Reconciliation
    "LocalAngleModel",
    "ReconcileResult",
    "build_candidates",
    "min_cost_assignment",
    "reconcile",
    "robust_slope_angle",
    # Geometry
    "PageTransform",
    "deskewed_to_original",
    "normalized_to_page",
    "page_to_normalized",
    "rotate_quad",
]
