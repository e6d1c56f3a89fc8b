"""Raster processing modules for water detection, vectorization and terrain analysis."""

from glacierisk.raster.download import clip_to_geometry, load_raster
from glacierisk.raster.grid import (
    NODATA_LABEL,
    RasterAlignmentError,
    assert_aligned,
    make_raster,
)
from glacierisk.raster.index import IndexResult, compute_index, threshold
from glacierisk.raster.terrain import (
    FLAT_ASPECT,
    DEMData,
    GlacierProxies,
    derive_slope_aspect,
    estimate_thickness,
    load_dem_for_bbox,
)
from glacierisk.raster.vectorize import MaskPolygon, vectorize
from glacierisk.raster.water import WaterDetectionResult, detect_water

__all__ = [
    "make_raster",
    "assert_aligned",
    "RasterAlignmentError",
    "NODATA_LABEL",
    "load_raster",
    "clip_to_geometry",
    "compute_index",
    "threshold",
    "IndexResult",
    "vectorize",
    "MaskPolygon",
    "detect_water",
    "WaterDetectionResult",
    # Terrain analysis
    "load_dem_for_bbox",
    "derive_slope_aspect",
    "estimate_thickness",
    "DEMData",
    "GlacierProxies",
    "FLAT_ASPECT",
]
