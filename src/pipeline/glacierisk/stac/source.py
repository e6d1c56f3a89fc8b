"""Raster sources that fill a RasterCollection from STAC items or local files."""

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

import numpy as np
import pystac
import rioxarray as rxr
import structlog
import xarray as xr
from rasterio.enums import Resampling
from rasterio.transform import from_origin
from rasterio.warp import transform_bounds
from shapely.geometry.base import BaseGeometry

from glacierisk.raster.download import load_raster
from glacierisk.raster.grid import make_raster
from glacierisk.stac.client import StacClient
from glacierisk.temporal.collection import CollectionMember, RasterCollection

logger = structlog.get_logger()


@dataclass(frozen=True)
class CollectionPreset:
    """How a STAC collection names its band assets."""

    collection: str
    assets: dict[str, str]
    cloud_property: str | None = None


SENTINEL2_L2A = CollectionPreset(
    collection="sentinel-2-l2a",
    assets={
        "B2": "B02",
        "B3": "B03",
        "B4": "B04",
        "B8": "B08",
        "B11": "B11",
        "B12": "B12",
    },
    cloud_property="eo:cloud_cover",
)

MODIS_LST = CollectionPreset(
    collection="modis-11A1-061",
    assets={"LST_Day_1km": "LST_Day_1km", "LST_Night_1km": "LST_Night_1km"},
)

NASADEM = CollectionPreset(collection="nasadem", assets={"elevation": "elevation"})

PRESETS = {p.collection: p for p in (SENTINEL2_L2A, MODIS_LST, NASADEM)}


def _naive_utc(timestamp: datetime) -> datetime:
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone(timezone.utc).replace(tzinfo=None)
    return timestamp


def _match_grid(raster: xr.DataArray, template: xr.DataArray) -> xr.DataArray:
    """Resample ``raster`` onto the grid of ``template`` (nearest neighbour)."""
    if (
        raster.shape[-2:] == template.shape[-2:]
        and raster.rio.crs == template.rio.crs
        and raster.rio.transform().almost_equals(template.rio.transform())
    ):
        return raster
    matched = raster.rio.write_nodata(np.nan).rio.reproject_match(
        template, resampling=Resampling.nearest
    )
    return matched.assign_coords(x=template.x.values, y=template.y.values)


def _snap(value: float, origin: float, step: float, rounding) -> float:
    return origin + rounding(round((value - origin) / step, 6)) * step


def _union_template(rasters: Sequence[xr.DataArray]) -> xr.DataArray:
    """NaN grid covering every raster, on the first raster's CRS and pixel lattice."""
    reference = rasters[0]
    crs = reference.rio.crs
    ref = reference.rio.transform()
    res_x, res_y = abs(ref.a), abs(ref.e)

    extents = [
        r.rio.bounds() if r.rio.crs == crs else r.rio.transform_bounds(crs)
        for r in rasters
    ]
    left = _snap(min(e[0] for e in extents), ref.c, res_x, math.floor)
    right = _snap(max(e[2] for e in extents), ref.c, res_x, math.ceil)
    top = _snap(max(e[3] for e in extents), ref.f, res_y, math.ceil)
    bottom = _snap(min(e[1] for e in extents), ref.f, res_y, math.floor)

    shape = (int(round((top - bottom) / res_y)), int(round((right - left) / res_x)))
    return make_raster(
        np.full(shape, np.nan, dtype=np.float32),
        transform=from_origin(left, top, res_x, res_y),
        crs=crs,
    )


def _common_grid(rasters: list[xr.DataArray]) -> list[xr.DataArray]:
    """Resample rasters onto one grid spanning all of their footprints.

    Tiles that only partly overlap (adjacent MGRS tiles, say) keep their data;
    pixels a raster does not cover are NaN.
    """
    if not rasters:
        return rasters
    template = _union_template(rasters)
    return [_match_grid(r, template) for r in rasters]


def _clip_bounds(raster: xr.DataArray, bounds: tuple[float, float, float, float]) -> xr.DataArray:
    """Clip to lon/lat bounds given in EPSG:4326."""
    if raster.rio.crs is not None and raster.rio.crs.to_epsg() != 4326:
        bounds = transform_bounds("EPSG:4326", raster.rio.crs, *bounds)
    minx, miny, maxx, maxy = bounds
    return raster.rio.clip_box(minx=minx, miny=miny, maxx=maxx, maxy=maxy)


class StacRasterSource:
    """RasterSource backed by a STAC collection.

    Band assets of each item are read masked, clipped to the geometry bounds
    and stacked into one ``("band", "y", "x")`` raster. Every item is then
    resampled (nearest) onto a grid spanning the footprints of all loaded
    items, in the CRS and pixel lattice of the first one, so adjacent tiles
    keep their data and all members share one grid. Items that fail to load
    are logged and skipped.
    """

    def __init__(
        self,
        collection: str,
        assets: dict[str, str] | None = None,
        client: StacClient | None = None,
    ):
        preset = PRESETS.get(collection)
        self.collection = collection
        self.assets = assets or (preset.assets if preset else {})
        self.cloud_property = preset.cloud_property if preset else None
        self.client = client or StacClient()

    def _asset_key(self, band: str) -> str:
        return self.assets.get(band, band)

    def _load_item(
        self,
        item: pystac.Item,
        bands: Sequence[str],
        bounds: tuple[float, float, float, float],
    ) -> xr.DataArray:
        layers = []
        for band in bands:
            key = self._asset_key(band)
            asset = item.assets.get(key)
            if asset is None:
                raise KeyError(f"Item {item.id} has no asset '{key}' for band {band}")
            da = rxr.open_rasterio(asset.href, masked=True)
            if "band" in da.dims:
                da = da.squeeze("band", drop=True)
            da = _clip_bounds(da, bounds).astype(np.float32)
            # 20 m bands are resampled onto the 10 m grid of the first band
            if layers:
                da = _match_grid(da, layers[0])
            layers.append(da)

        stacked = xr.concat(layers, dim="band", join="override").assign_coords(band=list(bands))
        stacked = stacked.rio.write_crs(layers[0].rio.crs)
        return stacked.rio.write_transform(layers[0].rio.transform())

    def fetch_collection(
        self,
        bands: Sequence[str],
        geometry: BaseGeometry,
        date_range: tuple[str, str],
        max_cloud_cover: float | None = None,
    ) -> RasterCollection:
        """Fetch every item intersecting the geometry within the date range.

        Args:
            bands: Band names, in output order.
            geometry: Area of interest in EPSG:4326.
            date_range: (start, end) ISO dates.
            max_cloud_cover: Cloud cover percentage; items must be strictly
                below it. Ignored for collections without cloud metadata.

        Returns:
            RasterCollection of the items that loaded.
        """
        bounds = tuple(geometry.bounds)
        cloud_filter = max_cloud_cover if self.cloud_property else None
        items = self.client.search_items(
            collection=self.collection,
            bbox=bounds,
            start_date=date_range[0],
            end_date=date_range[1],
            max_cloud_cover=cloud_filter,
        )

        loaded = []
        for item in items:
            try:
                raster = self._load_item(item, bands, bounds)
            except Exception as e:
                logger.warning(
                    "Skipping item that failed to load",
                    collection=self.collection,
                    item_id=item.id,
                    error=str(e),
                )
                continue

            loaded.append((item, raster))

        members = []
        rasters = _common_grid([raster for _, raster in loaded])
        for (item, _), raster in zip(loaded, rasters):
            properties: dict[str, Any] = {"id": item.id, "collection": self.collection}
            if self.cloud_property:
                properties["cloud_cover"] = item.properties.get(self.cloud_property)
            members.append(CollectionMember(raster, _naive_utc(item.datetime), properties))

        logger.info(
            "Fetched raster collection",
            collection=self.collection,
            found=len(items),
            loaded=len(members),
        )
        return RasterCollection(members)


DEFAULT_DATE_PATTERN = r"(?P<year>\d{4})\.(?P<month>\d{2})\.(?P<pentad>\d)"


@dataclass
class LocalRasterSource:
    """RasterSource over a directory of dated GeoTIFFs.

    Timestamps are parsed from file names with ``date_pattern``, a regex with
    named groups ``year`` and ``month`` and optionally ``day`` or ``pentad``
    (CHIRPS pentad ``n`` starts on day ``5 * (n - 1) + 1``). Files whose names
    do not match, or that fail to load, are logged and skipped.
    """

    directory: Path
    pattern: str = "*.tif"
    date_pattern: str = DEFAULT_DATE_PATTERN
    _regex: re.Pattern = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.directory = Path(self.directory)
        self._regex = re.compile(self.date_pattern)

    def parse_timestamp(self, path: Path) -> datetime | None:
        match = self._regex.search(path.name)
        if match is None:
            return None
        groups = match.groupdict()
        day = 1
        if groups.get("day"):
            day = int(groups["day"])
        elif groups.get("pentad"):
            day = 5 * (int(groups["pentad"]) - 1) + 1
        return datetime(int(groups["year"]), int(groups["month"]), day)

    def fetch_collection(
        self,
        bands: Sequence[str],
        geometry: BaseGeometry | None,
        date_range: tuple[str, str],
        max_cloud_cover: float | None = None,
    ) -> RasterCollection:
        """Load files dated within ``[start, end)``.

        Local files carry no cloud metadata, so ``max_cloud_cover`` is not
        applied.
        """
        start = datetime.fromisoformat(date_range[0])
        end = datetime.fromisoformat(date_range[1])

        loaded = []
        for path in sorted(self.directory.glob(self.pattern)):
            timestamp = self.parse_timestamp(path)
            if timestamp is None:
                logger.warning("Skipping file without a parseable date", path=str(path))
                continue
            if not start <= timestamp < end:
                continue

            try:
                raster = load_raster(path, bands=list(bands))
                if geometry is not None:
                    raster = _clip_bounds(raster, tuple(geometry.bounds))
            except Exception as e:
                logger.warning("Skipping file that failed to load", path=str(path), error=str(e))
                continue

            loaded.append((path, timestamp, raster))

        rasters = _common_grid([raster for _, _, raster in loaded])
        members = [
            CollectionMember(raster, timestamp, {"id": path.name})
            for (path, timestamp, _), raster in zip(loaded, rasters)
        ]

        logger.info(
            "Loaded local raster collection",
            directory=str(self.directory),
            loaded=len(members),
        )
        return RasterCollection(members)
