"""Raster grid helpers shared by every raster-to-raster transform.

A raster is an ``xarray.DataArray`` with ``("y", "x")`` or
``("band", "y", "x")`` dims whose CRS and affine transform are carried by
rioxarray. Float rasters use NaN as no-data; label rasters are ``uint8`` with
``NODATA_LABEL``.
"""

from typing import Any, Sequence

import numpy as np
import rioxarray  # noqa: F401 - needed for .rio accessor on DataArrays
import xarray as xr
from affine import Affine
from rasterio.transform import from_origin

DEFAULT_CRS = "EPSG:32645"  # UTM 45N, covers the Dudh Koshi basin
NODATA_LABEL = 255


class RasterAlignmentError(ValueError):
    """Raised when rasters combined per pixel do not share a grid."""


def make_raster(
    values: Any,
    transform: Affine | None = None,
    crs: Any = DEFAULT_CRS,
    bands: Sequence[str] | None = None,
    nodata: float | int | None = None,
    name: str | None = None,
) -> xr.DataArray:
    """Build a georeferenced raster from an array.

    Coordinates are pixel centres derived from the transform.

    Args:
        values: 2D ``(rows, cols)`` or 3D ``(bands, rows, cols)`` array.
        transform: Affine transform. Defaults to a 1-unit north-up grid
            whose top-left corner sits at ``(0, rows)``.
        crs: Coordinate reference system.
        bands: Band names for 3D input. Defaults to ``b1``, ``b2``, ...
        nodata: Optional nodata value written to the raster metadata.
        name: Optional DataArray name.

    Returns:
        DataArray with spatial coordinates, CRS and transform.
    """
    data = np.asarray(values)
    if data.ndim not in (2, 3):
        raise ValueError(f"Raster values must be 2D or 3D, got shape {data.shape}")

    rows, cols = data.shape[-2:]
    if transform is None:
        transform = from_origin(0.0, float(rows), 1.0, 1.0)

    coords: dict[str, Any] = {
        "y": transform.f + (np.arange(rows) + 0.5) * transform.e,
        "x": transform.c + (np.arange(cols) + 0.5) * transform.a,
    }
    if data.ndim == 3:
        if bands is None:
            bands = [f"b{i + 1}" for i in range(data.shape[0])]
        if len(bands) != data.shape[0]:
            raise ValueError(
                f"Got {len(bands)} band names for {data.shape[0]} bands"
            )
        coords["band"] = list(bands)
        dims: tuple[str, ...] = ("band", "y", "x")
    else:
        dims = ("y", "x")

    da = xr.DataArray(data, dims=dims, coords=coords, name=name)
    da = da.rio.write_crs(crs)
    da = da.rio.write_transform(transform)
    if nodata is not None:
        da = da.rio.write_nodata(nodata)
    return da


def like(template: xr.DataArray, values: np.ndarray, name: str | None = None) -> xr.DataArray:
    """Wrap a 2D array on the grid of ``template``."""
    return make_raster(
        values,
        transform=template.rio.transform(),
        crs=template.rio.crs,
        name=name,
    )


def band_names(raster: xr.DataArray) -> list[str]:
    """Band names of a raster (empty for a single-band raster)."""
    if "band" not in raster.dims:
        return []
    return [str(b) for b in raster.coords["band"].values]


def select_band(raster: xr.DataArray, band: str) -> xr.DataArray:
    """Select one named band as a 2D raster.

    Raises:
        ValueError: If the raster has no band with that name.
    """
    names = band_names(raster)
    if band not in names:
        raise ValueError(f"Band '{band}' not in raster bands {names}")
    selected = raster.sel(band=band).drop_vars("band")
    selected = selected.rio.write_crs(raster.rio.crs)
    return selected.rio.write_transform(raster.rio.transform())


def single_band(raster: xr.DataArray, band: str | None = None) -> xr.DataArray:
    """Return a 2D raster, selecting ``band`` when the input is multi-band."""
    if raster.ndim == 2:
        return raster
    if band is not None:
        return select_band(raster, band)
    if raster.sizes["band"] == 1:
        return select_band(raster, band_names(raster)[0])
    raise ValueError(
        f"Raster has {raster.sizes['band']} bands; specify one of {band_names(raster)}"
    )


def assert_aligned(*rasters: xr.DataArray) -> None:
    """Check that rasters share shape, transform and CRS.

    Raises:
        RasterAlignmentError: On the first mismatch found.
    """
    if len(rasters) < 2:
        return
    reference = rasters[0]
    ref_shape = reference.shape[-2:]
    ref_transform = reference.rio.transform()
    ref_crs = reference.rio.crs

    for i, other in enumerate(rasters[1:], start=1):
        if other.shape[-2:] != ref_shape:
            raise RasterAlignmentError(
                f"Raster {i} has grid shape {other.shape[-2:]}, expected {ref_shape}"
            )
        if not other.rio.transform().almost_equals(ref_transform):
            raise RasterAlignmentError(
                f"Raster {i} transform {tuple(other.rio.transform())[:6]} "
                f"differs from {tuple(ref_transform)[:6]}"
            )
        if other.rio.crs != ref_crs:
            raise RasterAlignmentError(
                f"Raster {i} CRS {other.rio.crs} differs from {ref_crs}"
            )


def valid_mask(raster: xr.DataArray) -> np.ndarray:
    """Boolean array of pixels holding data (not NaN, not the nodata value)."""
    values = raster.values
    valid = np.ones(values.shape, dtype=bool)
    if np.issubdtype(values.dtype, np.floating):
        valid &= ~np.isnan(values)
    nodata = raster.rio.nodata
    if nodata is not None and not (isinstance(nodata, float) and np.isnan(nodata)):
        valid &= values != nodata
    return valid
