"""Shared test fixtures for glacierisk pipeline tests."""

import numpy as np
import pytest
from rasterio.transform import from_origin

from glacierisk.config import reload_config
from glacierisk.raster.grid import make_raster

# 10 m UTM 45N grid in the Khumbu region
UTM_ORIGIN = (470000.0, 3090000.0)


@pytest.fixture(autouse=True)
def default_config():
    """Every test starts from code defaults (plus environment)."""
    return reload_config(None)


@pytest.fixture
def utm_transform():
    return from_origin(UTM_ORIGIN[0], UTM_ORIGIN[1], 10.0, 10.0)


@pytest.fixture
def lake_composite(utm_transform):
    """6-band composite with a 3x3 lake in the top-left and a 2x2 lake bottom-right.

    Water pixels: green=0.08, nir=0.02 (NDWI 0.6). Land: green=0.06, nir=0.30.
    """
    rows, cols = 10, 10
    water = np.zeros((rows, cols), dtype=bool)
    water[1:4, 1:4] = True
    water[7:9, 7:9] = True

    bands = ["B2", "B3", "B4", "B8", "B11", "B12"]
    data = np.empty((len(bands), rows, cols), dtype=np.float32)
    data[0] = np.where(water, 0.05, 0.04)
    data[1] = np.where(water, 0.08, 0.06)
    data[2] = np.where(water, 0.03, 0.08)
    data[3] = np.where(water, 0.02, 0.30)
    data[4] = np.where(water, 0.01, 0.20)
    data[5] = np.where(water, 0.01, 0.15)
    return make_raster(data, transform=utm_transform, crs="EPSG:32645", bands=bands)

