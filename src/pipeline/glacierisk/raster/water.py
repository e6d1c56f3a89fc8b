"""Surface-water detection from a multi-band composite."""

from dataclasses import dataclass, field

import geopandas as gpd
import structlog
import xarray as xr

from glacierisk.config import get_config
from glacierisk.raster.index import IndexResult, compute_index, threshold
from glacierisk.raster.vectorize import MaskPolygon, polygons_to_geodataframe, vectorize

logger = structlog.get_logger()


@dataclass
class WaterDetectionResult:
    """Result of NDWI water detection."""

    index: IndexResult
    mask: xr.DataArray
    polygons: list[MaskPolygon]
    threshold: float
    stats: dict[str, float] = field(default_factory=dict)

    def to_geodataframe(self) -> gpd.GeoDataFrame:
        """Convert lake polygons to a GeoDataFrame in the mask CRS."""
        return polygons_to_geodataframe(self.polygons, self.mask.rio.crs)


def detect_water(
    raster: xr.DataArray,
    band_a: str | None = None,
    band_b: str | None = None,
    threshold_value: float | None = None,
    connectivity: int | None = None,
    min_pixels: int | None = None,
) -> WaterDetectionResult:
    """Detect water bodies as NDWI > threshold and vectorize them.

    Args:
        raster: Multi-band composite (typically a cloud-filtered median).
        band_a: Green band name (default from config, B3).
        band_b: NIR band name (default from config, B8).
        threshold_value: NDWI threshold (default from config, 0.3).
        connectivity: Component connectivity for vectorization (4 or 8).
        min_pixels: Minimum component size in pixels.

    Returns:
        WaterDetectionResult with index, mask and lake polygons.
    """
    config = get_config()
    band_a = band_a or config.water.green_band
    band_b = band_b or config.water.nir_band
    threshold_value = threshold_value if threshold_value is not None else config.water.ndwi_threshold
    connectivity = connectivity or config.water.connectivity
    min_pixels = min_pixels if min_pixels is not None else config.water.min_pixels

    logger.info(
        "Detecting water",
        band_a=band_a,
        band_b=band_b,
        threshold=threshold_value,
        connectivity=connectivity,
    )

    index = compute_index(raster, band_a, band_b, name="ndwi")
    mask = threshold(index, threshold_value)
    polygons = vectorize(mask, connectivity=connectivity, min_pixels=min_pixels)

    water_pixels = int(mask.sum().values)
    stats = {
        "water_pixels": water_pixels,
        "total_pixels": int(mask.size),
        "water_percent": float(water_pixels / mask.size * 100) if mask.size else 0.0,
        "nodata_pixels": index.nodata_pixels,
        "num_polygons": len(polygons),
    }

    logger.info(
        "Water detection complete",
        num_polygons=len(polygons),
        water_percent=f"{stats['water_percent']:.2f}%",
    )

    return WaterDetectionResult(
        index=index,
        mask=mask,
        polygons=polygons,
        threshold=threshold_value,
        stats=stats,
    )
