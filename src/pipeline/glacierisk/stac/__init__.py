"""STAC catalog access and raster sources for time-stamped collections."""

from glacierisk.stac.client import StacClient
from glacierisk.stac.source import (
    MODIS_LST,
    NASADEM,
    SENTINEL2_L2A,
    LocalRasterSource,
    StacRasterSource,
)

__all__ = [
    "StacClient",
    "StacRasterSource",
    "LocalRasterSource",
    "SENTINEL2_L2A",
    "MODIS_LST",
    "NASADEM",
]
