"""Normalized-difference index calculation and thresholding."""

from dataclasses import dataclass
from pathlib import Path

import numpy as np
import structlog
import xarray as xr

from glacierisk.raster.grid import assert_aligned, select_band

logger = structlog.get_logger()


@dataclass
class IndexResult:
    """Result of a normalized-difference index calculation."""

    data: xr.DataArray
    name: str
    band_a: str
    band_b: str
    min_value: float
    max_value: float
    mean_value: float
    nodata_pixels: int

    def save(self, output_path: Path) -> Path:
        """Save the index raster to a GeoTIFF file.

        Args:
            output_path: Output file path.

        Returns:
            Path to the saved file.
        """
        self.data.rio.write_nodata(np.nan).rio.to_raster(output_path)
        logger.info(
            "Saved index raster",
            index=self.name,
            path=str(output_path),
            mean=f"{self.mean_value:.3f}",
        )
        return output_path


def compute_index(
    raster: xr.DataArray,
    band_a: str,
    band_b: str,
    name: str = "ndwi",
) -> IndexResult:
    """Calculate a normalized band-difference index.

    index = (A - B) / (A + B)

    With A=B3 (green) and B=B8 (NIR) this is the NDWI used for water detection.
    Pixels where A + B == 0, or where either band is NaN, are NaN (no-data).
    Defined values are clipped to [-1, 1].

    Args:
        raster: Multi-band raster containing both bands.
        band_a: Name of the first band (minuend).
        band_b: Name of the second band (subtrahend).
        name: Name given to the index raster.

    Returns:
        IndexResult with the index raster and its statistics.
    """
    logger.info("Calculating index", index=name, band_a=band_a, band_b=band_b)

    a = select_band(raster, band_a).astype(np.float32)
    b = select_band(raster, band_b).astype(np.float32)
    assert_aligned(a, b)

    denominator = a + b
    with np.errstate(divide="ignore", invalid="ignore"):
        index = xr.where(denominator != 0, (a - b) / denominator, np.nan)

    index = index.clip(-1, 1).astype(np.float32).rename(name)
    index = index.rio.write_crs(raster.rio.crs)
    index = index.rio.write_transform(raster.rio.transform())
    index = index.rio.write_nodata(np.nan)

    values = index.values
    valid = ~np.isnan(values)
    has_valid = bool(valid.any())

    result = IndexResult(
        data=index,
        name=name,
        band_a=band_a,
        band_b=band_b,
        min_value=float(values[valid].min()) if has_valid else float("nan"),
        max_value=float(values[valid].max()) if has_valid else float("nan"),
        mean_value=float(values[valid].mean()) if has_valid else float("nan"),
        nodata_pixels=int((~valid).sum()),
    )

    logger.info(
        "Index calculated",
        index=name,
        min=f"{result.min_value:.3f}",
        max=f"{result.max_value:.3f}",
        mean=f"{result.mean_value:.3f}",
        nodata_pixels=result.nodata_pixels,
    )

    return result


def threshold(index: IndexResult | xr.DataArray, value: float) -> xr.DataArray:
    """Threshold an index raster into a binary mask.

    mask = 1 where index > value, else 0. No-data (NaN) index pixels always
    map to 0, so an undefined index is never counted as a detection.

    Args:
        index: IndexResult or index DataArray.
        value: Threshold; the comparison is strict.

    Returns:
        uint8 mask on the index grid.
    """
    data = index.data if isinstance(index, IndexResult) else index

    # NaN > value is False, which implements the no-data policy.
    mask = xr.where(data > value, 1, 0).astype(np.uint8)
    mask = mask.rio.write_crs(data.rio.crs)
    mask = mask.rio.write_transform(data.rio.transform())

    logger.debug(
        "Thresholded index",
        threshold=value,
        set_pixels=int(mask.sum().values),
        total_pixels=int(mask.size),
    )
    return mask
