"""Configuration management for the GlacieRisk pipeline."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv


def _as_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


@dataclass
class StacConfig:
    """STAC catalog configuration."""

    catalog_url: str = "https://planetarycomputer.microsoft.com/api/stac/v1"
    imagery_collection: str = "sentinel-2-l2a"
    lst_collection: str = "modis-11A1-061"
    dem_collection: str = "nasadem"
    max_cloud_cover: float = 5.0
    max_items: int = 500


@dataclass
class MinioConfig:
    """MinIO storage configuration."""

    endpoint: str = "localhost:9000"
    access_key: str = ""
    secret_key: str = ""
    secure: bool = False
    bucket_outputs: str = "glacierisk-outputs"


@dataclass
class WaterConfig:
    """Surface-water detection configuration."""

    green_band: str = "B3"
    nir_band: str = "B8"
    ndwi_threshold: float = 0.3
    connectivity: int = 8
    min_pixels: int = 1


@dataclass
class TerrainConfig:
    """Terrain and glacier proxy configuration."""

    enabled: bool = True
    dem_source: str = "nasadem"  # "nasadem", "local"
    local_dem_path: str | None = None
    snowline_elevation_m: float = 3000.0
    velocity_factor: float = 0.02


@dataclass
class ClimateConfig:
    """Precipitation and land-surface-temperature configuration."""

    year: int = 2024
    precipitation_dir: str | None = None
    precipitation_pattern: str = "*.tif"
    precipitation_band: str = "precipitation"
    precipitation_scale_m: float = 5000.0
    precipitation_unit_factor: float = 100.0
    lst_band: str = "LST_Day_1km"
    lst_scale_m: float = 1000.0
    lst_scale_factor: float = 0.02
    lst_offset: float = -273.15


@dataclass
class ClassifierConfig:
    """Hazard classifier configuration."""

    bands: list[str] = field(
        default_factory=lambda: ["B2", "B3", "B4", "B8", "B11", "B12"]
    )
    tree_count: int = 50
    seed: int = 0
    block_rows: int = 256
    training_points_path: str | None = None


@dataclass
class Config:
    """Main configuration container."""

    stac: StacConfig = field(default_factory=StacConfig)
    minio: MinioConfig = field(default_factory=MinioConfig)
    water: WaterConfig = field(default_factory=WaterConfig)
    terrain: TerrainConfig = field(default_factory=TerrainConfig)
    climate: ClimateConfig = field(default_factory=ClimateConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)

    @classmethod
    def load(cls, config_dir: Path | None = None) -> "Config":
        """Load configuration from files and environment variables."""
        # Load .env file if present
        env_file = Path(__file__).parent.parent / ".env"
        if env_file.exists():
            load_dotenv(env_file)

        config = cls()

        if config_dir and config_dir.exists():
            processing_file = config_dir / "processing.yaml"
            if processing_file.exists():
                config._load_yaml(processing_file)

        # Override with environment variables
        config._load_from_env()

        return config

    def _load_yaml(self, path: Path) -> None:
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
            if data:
                self._apply_yaml_config(data)

    def _apply_yaml_config(self, data: dict[str, Any]) -> None:
        """Apply YAML configuration data."""
        if "stac" in data:
            stac = data["stac"]
            if "catalog_url" in stac:
                self.stac.catalog_url = stac["catalog_url"]
            if "imagery_collection" in stac:
                self.stac.imagery_collection = stac["imagery_collection"]
            if "lst_collection" in stac:
                self.stac.lst_collection = stac["lst_collection"]
            if "dem_collection" in stac:
                self.stac.dem_collection = stac["dem_collection"]
            if "max_cloud_cover" in stac:
                self.stac.max_cloud_cover = float(stac["max_cloud_cover"])
            if "max_items" in stac:
                self.stac.max_items = int(stac["max_items"])

        if "water" in data:
            water = data["water"]
            if "green_band" in water:
                self.water.green_band = water["green_band"]
            if "nir_band" in water:
                self.water.nir_band = water["nir_band"]
            if "ndwi_threshold" in water:
                self.water.ndwi_threshold = float(water["ndwi_threshold"])
            if "connectivity" in water:
                self.water.connectivity = int(water["connectivity"])
            if "min_pixels" in water:
                self.water.min_pixels = int(water["min_pixels"])

        if "terrain" in data:
            terrain = data["terrain"]
            if "enabled" in terrain:
                self.terrain.enabled = bool(terrain["enabled"])
            if "dem_source" in terrain:
                self.terrain.dem_source = terrain["dem_source"]
            if "local_dem_path" in terrain:
                self.terrain.local_dem_path = terrain["local_dem_path"]
            if "snowline_elevation_m" in terrain:
                self.terrain.snowline_elevation_m = float(terrain["snowline_elevation_m"])
            if "velocity_factor" in terrain:
                self.terrain.velocity_factor = float(terrain["velocity_factor"])

        if "climate" in data:
            climate = data["climate"]
            if "year" in climate:
                self.climate.year = int(climate["year"])
            if "precipitation_dir" in climate:
                self.climate.precipitation_dir = climate["precipitation_dir"]
            if "precipitation_pattern" in climate:
                self.climate.precipitation_pattern = climate["precipitation_pattern"]
            if "precipitation_scale_m" in climate:
                self.climate.precipitation_scale_m = float(climate["precipitation_scale_m"])
            if "precipitation_unit_factor" in climate:
                self.climate.precipitation_unit_factor = float(climate["precipitation_unit_factor"])
            if "lst_scale_m" in climate:
                self.climate.lst_scale_m = float(climate["lst_scale_m"])
            if "lst_scale_factor" in climate:
                self.climate.lst_scale_factor = float(climate["lst_scale_factor"])

        if "classifier" in data:
            classifier = data["classifier"]
            if "bands" in classifier:
                self.classifier.bands = [str(b) for b in classifier["bands"]]
            if "tree_count" in classifier:
                self.classifier.tree_count = int(classifier["tree_count"])
            if "seed" in classifier:
                self.classifier.seed = int(classifier["seed"])
            if "block_rows" in classifier:
                self.classifier.block_rows = int(classifier["block_rows"])
            if "training_points_path" in classifier:
                self.classifier.training_points_path = classifier["training_points_path"]

    def _load_from_env(self) -> None:
        """Override configuration from environment variables."""
        # MinIO
        if endpoint := os.getenv("MINIO_ENDPOINT"):
            self.minio.endpoint = endpoint
        if access_key := os.getenv("MINIO_ACCESS_KEY"):
            self.minio.access_key = access_key
        if secret_key := os.getenv("MINIO_SECRET_KEY"):
            self.minio.secret_key = secret_key
        if secure := os.getenv("MINIO_SECURE"):
            self.minio.secure = _as_bool(secure)
        if bucket := os.getenv("MINIO_BUCKET_OUTPUTS"):
            self.minio.bucket_outputs = bucket

        # STAC
        if url := os.getenv("STAC_CATALOG_URL"):
            self.stac.catalog_url = url
        if cloud := os.getenv("STAC_MAX_CLOUD_COVER"):
            self.stac.max_cloud_cover = float(cloud)

        # Water
        if threshold := os.getenv("NDWI_THRESHOLD"):
            self.water.ndwi_threshold = float(threshold)

        # Terrain
        if terrain_enabled := os.getenv("TERRAIN_ENABLED"):
            self.terrain.enabled = _as_bool(terrain_enabled)
        if dem_source := os.getenv("DEM_SOURCE"):
            self.terrain.dem_source = dem_source
        if local_dem_path := os.getenv("LOCAL_DEM_PATH"):
            self.terrain.local_dem_path = local_dem_path
        if snowline := os.getenv("SNOWLINE_ELEVATION_M"):
            self.terrain.snowline_elevation_m = float(snowline)
        if velocity := os.getenv("GLACIER_VELOCITY_FACTOR"):
            self.terrain.velocity_factor = float(velocity)

        # Climate
        if year := os.getenv("ANALYSIS_YEAR"):
            self.climate.year = int(year)
        if precip_dir := os.getenv("PRECIPITATION_DIR"):
            self.climate.precipitation_dir = precip_dir

        # Classifier
        if trees := os.getenv("CLASSIFIER_TREE_COUNT"):
            self.classifier.tree_count = int(trees)
        if seed := os.getenv("CLASSIFIER_SEED"):
            self.classifier.seed = int(seed)
        if training := os.getenv("TRAINING_POINTS_PATH"):
            self.classifier.training_points_path = training


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get or create the global configuration instance."""
    global _config
    if _config is None:
        config_dir = Path(__file__).parent.parent / "config"
        _config = Config.load(config_dir)
    return _config


def reload_config(config_dir: Path | None = None) -> Config:
    """Reload configuration (useful for testing)."""
    global _config
    _config = Config.load(config_dir)
    return _config
