"""STAC catalog client for Microsoft Planetary Computer."""

from typing import Any

import planetary_computer
import pystac
import pystac_client
import structlog

from glacierisk.config import get_config

logger = structlog.get_logger()


class StacClient:
    """Client for searching imagery, LST and DEM items in Planetary Computer."""

    def __init__(self, catalog_url: str | None = None):
        """Initialize the STAC client.

        Args:
            catalog_url: STAC catalog URL. Defaults to Planetary Computer.
        """
        config = get_config()
        self.catalog_url = catalog_url or config.stac.catalog_url
        self.imagery_collection = config.stac.imagery_collection
        self.lst_collection = config.stac.lst_collection
        self.dem_collection = config.stac.dem_collection
        self.max_items = config.stac.max_items

        self._client: pystac_client.Client | None = None

    @property
    def client(self) -> pystac_client.Client:
        """Get or create the STAC client."""
        if self._client is None:
            self._client = pystac_client.Client.open(
                self.catalog_url,
                modifier=planetary_computer.sign_inplace,
            )
            logger.info("Connected to STAC catalog", url=self.catalog_url)
        return self._client

    def search_items(
        self,
        collection: str,
        bbox: tuple[float, float, float, float],
        start_date: str | None = None,
        end_date: str | None = None,
        max_items: int | None = None,
        max_cloud_cover: float | None = None,
    ) -> list[pystac.Item]:
        """Search a collection for items within a bounding box and date range.

        Args:
            collection: STAC collection ID.
            bbox: Bounding box as (min_lon, min_lat, max_lon, max_lat).
            start_date: Start date in ISO format (YYYY-MM-DD), optional.
            end_date: End date in ISO format (YYYY-MM-DD), optional.
            max_items: Maximum number of items to return.
            max_cloud_cover: Only items with ``eo:cloud_cover`` strictly
                below this percentage. Omitted for collections without
                cloud metadata.

        Returns:
            Signed STAC items in ascending datetime order.
        """
        max_items = max_items or self.max_items
        search_kwargs: dict[str, Any] = {
            "collections": [collection],
            "bbox": bbox,
            "max_items": max_items,
        }
        if start_date and end_date:
            search_kwargs["datetime"] = f"{start_date}/{end_date}"
        if max_cloud_cover is not None:
            search_kwargs["query"] = {"eo:cloud_cover": {"lt": max_cloud_cover}}

        logger.info(
            "Searching STAC catalog",
            collection=collection,
            bbox=bbox,
            date_range=f"{start_date}/{end_date}" if start_date else None,
            max_cloud_cover=max_cloud_cover,
        )

        items = list(self.client.search(**search_kwargs).items())
        items.sort(key=lambda item: item.properties.get("datetime") or "")
        logger.info("Search complete", collection=collection, num_results=len(items))
        return items
