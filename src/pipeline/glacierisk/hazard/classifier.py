"""Point-sampled random-forest hazard classification.

Training samples are band vectors read at labelled point locations; the
fitted forest is applied pixel-wise with a hard majority vote. The same
mechanics serve every hazard problem (rockfall, GLOF); only the training
points differ.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Sequence

import numpy as np
import structlog
import xarray as xr
from pyproj import CRS, Transformer
from sklearn.ensemble import RandomForestClassifier

from glacierisk.config import get_config
from glacierisk.raster.grid import NODATA_LABEL, band_names, like

logger = structlog.get_logger()

VALID_LABELS = (0, 1)


class TrainingDataError(ValueError):
    """Raised when a training set cannot produce a trustworthy model."""


@dataclass(frozen=True)
class TrainingPoint:
    """A labelled location, in the CRS given when sampling."""

    x: float
    y: float
    label: int


@dataclass(frozen=True)
class TrainingSample:
    """Band values at a training point, paired with its label."""

    features: tuple[float, ...]
    label: int
    point: TrainingPoint | None = None


@dataclass
class TrainingSet:
    """Samples sharing one band schema."""

    bands: list[str]
    samples: list[TrainingSample] = field(default_factory=list)
    dropped: int = 0

    def __len__(self) -> int:
        return len(self.samples)

    @property
    def features(self) -> np.ndarray:
        return np.array([s.features for s in self.samples], dtype=np.float64).reshape(
            len(self.samples), len(self.bands)
        )

    @property
    def labels(self) -> np.ndarray:
        return np.array([s.label for s in self.samples], dtype=np.int64)

    @property
    def class_counts(self) -> dict[int, int]:
        labels, counts = np.unique(self.labels, return_counts=True)
        return {int(label): int(count) for label, count in zip(labels, counts)}


@dataclass(frozen=True)
class HazardModel:
    """A fitted random forest and the band schema it expects."""

    estimator: RandomForestClassifier
    bands: tuple[str, ...]
    classes: tuple[int, ...]
    tree_count: int
    seed: int | None
    name: str = "hazard"

    def predict(self, features: np.ndarray) -> np.ndarray:
        """Majority vote across trees; ties go to the lowest label.

        Args:
            features: (n_samples, n_bands) array without NaN.

        Returns:
            int64 label array.
        """
        if features.shape[0] == 0:
            return np.empty(0, dtype=np.int64)

        # Forest trees predict encoded class indices 0..n_classes-1.
        votes = np.stack(
            [tree.predict(features) for tree in self.estimator.estimators_]
        ).astype(np.intp)
        counts = np.stack([(votes == k).sum(axis=0) for k in range(len(self.classes))])
        # argmax returns the first maximum, i.e. the lowest class index.
        winners = counts.argmax(axis=0)
        return np.asarray(self.classes, dtype=np.int64)[winners]


def _raster_bands(raster: xr.DataArray, bands: Sequence[str] | None) -> tuple[list[str], np.ndarray]:
    """Select bands in order and return them as a (bands, rows, cols) array."""
    available = band_names(raster)
    if not available:
        raise ValueError("Hazard classification needs a multi-band raster with named bands")
    bands = list(bands) if bands is not None else available
    missing = [b for b in bands if b not in available]
    if missing:
        raise ValueError(f"Raster is missing bands {missing}; has {available}")
    values = raster.sel(band=bands).values.astype(np.float64)
    return bands, values


def extract_features(
    raster: xr.DataArray,
    points: Sequence[TrainingPoint],
    bands: Sequence[str] | None = None,
    points_crs: Any = "EPSG:4326",
) -> TrainingSet:
    """Sample band values at labelled points.

    Each point reads its nearest pixel (the pixel containing it); there is no
    interpolation. Points outside the raster extent, or on a pixel where any
    band is no-data, are dropped with a warning.

    Args:
        raster: Multi-band raster to sample.
        points: Labelled points.
        bands: Bands to use, in feature order. Defaults to all raster bands.
        points_crs: CRS of the point coordinates.

    Returns:
        TrainingSet of the retained samples.

    Raises:
        ValueError: If a point's label is not 0 or 1.
    """
    bands, values = _raster_bands(raster, bands)
    rows, cols = values.shape[-2:]
    inverse = ~raster.rio.transform()

    transformer = None
    raster_crs = raster.rio.crs
    if points_crs is not None and raster_crs is not None:
        if CRS.from_user_input(points_crs) != CRS.from_user_input(raster_crs):
            transformer = Transformer.from_crs(points_crs, raster_crs, always_xy=True)

    samples = []
    dropped = 0
    for point in points:
        if point.label not in VALID_LABELS:
            raise ValueError(f"Training label must be 0 or 1, got {point.label!r} at ({point.x}, {point.y})")

        x, y = transformer.transform(point.x, point.y) if transformer else (point.x, point.y)
        col_f, row_f = inverse * (x, y)
        row, col = int(np.floor(row_f)), int(np.floor(col_f))

        if not (0 <= row < rows and 0 <= col < cols):
            logger.warning("Training point outside raster extent, dropped", x=point.x, y=point.y, label=point.label)
            dropped += 1
            continue

        vector = values[:, row, col]
        if np.isnan(vector).any():
            logger.warning("Training point on no-data pixel, dropped", x=point.x, y=point.y, label=point.label)
            dropped += 1
            continue

        samples.append(TrainingSample(tuple(float(v) for v in vector), int(point.label), point))

    training_set = TrainingSet(bands=bands, samples=samples, dropped=dropped)
    logger.info(
        "Extracted training samples",
        samples=len(samples),
        dropped=dropped,
        class_counts=training_set.class_counts,
    )
    return training_set


def train(
    samples: TrainingSet,
    tree_count: int | None = None,
    seed: int | None = None,
    name: str = "hazard",
) -> HazardModel:
    """Fit a random forest on a training set.

    Each tree is grown on a bootstrap sample and considers a random subset
    of sqrt(n_bands) features at every split. Training is reproducible for a
    given seed.

    Args:
        samples: Labelled training samples.
        tree_count: Number of trees (default from config, 50).
        seed: Random seed (default from config, 0).
        name: Problem name used in logs.

    Returns:
        Fitted HazardModel.

    Raises:
        TrainingDataError: If the set is empty or holds a single class.
    """
    config = get_config()
    tree_count = tree_count if tree_count is not None else config.classifier.tree_count
    seed = config.classifier.seed if seed is None else seed

    if len(samples) == 0:
        raise TrainingDataError(f"No training samples for '{name}'")
    counts = samples.class_counts
    if len(counts) < 2:
        raise TrainingDataError(
            f"Training set for '{name}' has a single class {list(counts)}; need both 0 and 1"
        )
    if tree_count < 1:
        raise ValueError(f"tree_count must be positive, got {tree_count}")

    estimator = RandomForestClassifier(
        n_estimators=tree_count,
        max_features="sqrt",
        bootstrap=True,
        random_state=seed,
    )
    estimator.fit(samples.features, samples.labels)

    model = HazardModel(
        estimator=estimator,
        bands=tuple(samples.bands),
        classes=tuple(int(c) for c in estimator.classes_),
        tree_count=tree_count,
        seed=seed,
        name=name,
    )
    logger.info(
        "Trained hazard classifier",
        name=name,
        trees=tree_count,
        seed=seed,
        samples=len(samples),
        class_counts=counts,
    )
    return model


def classify(
    model: HazardModel,
    raster: xr.DataArray,
    block_rows: int | None = None,
    workers: int | None = None,
) -> xr.DataArray:
    """Apply a hazard model to every pixel of a raster.

    Pixels where any model band is no-data get NODATA_LABEL. Rows are
    processed in independent blocks, optionally on a thread pool, and each
    block is written back at its own position.

    Args:
        model: Fitted HazardModel.
        raster: Multi-band raster holding the model bands.
        block_rows: Rows per block (default from config).
        workers: Thread count; None or 1 runs sequentially.

    Returns:
        uint8 label raster on the input grid.
    """
    config = get_config()
    block_rows = block_rows or config.classifier.block_rows

    _, values = _raster_bands(raster, model.bands)
    n_bands, rows, cols = values.shape
    labels = np.full((rows, cols), NODATA_LABEL, dtype=np.uint8)

    def _classify_block(start: int) -> tuple[int, np.ndarray]:
        block = values[:, start:start + block_rows, :]
        pixels = block.reshape(n_bands, -1).T
        valid = ~np.isnan(pixels).any(axis=1)
        out = np.full(pixels.shape[0], NODATA_LABEL, dtype=np.uint8)
        out[valid] = model.predict(pixels[valid]).astype(np.uint8)
        return start, out.reshape(block.shape[1], cols)

    starts = range(0, rows, block_rows)
    if workers and workers > 1:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            results = list(executor.map(_classify_block, starts))
    else:
        results = [_classify_block(s) for s in starts]

    for start, block_labels in results:
        labels[start:start + block_labels.shape[0]] = block_labels

    classified = like(raster, labels, name=f"{model.name}_class")
    classified = classified.rio.write_nodata(NODATA_LABEL)

    logger.info(
        "Classification complete",
        name=model.name,
        positive_pixels=int((labels == 1).sum()),
        nodata_pixels=int((labels == NODATA_LABEL).sum()),
    )
    return classified


class HazardClassifier:
    """One hazard problem: its band schema, forest settings and fitted model."""

    def __init__(
        self,
        name: str,
        bands: Sequence[str] | None = None,
        tree_count: int | None = None,
        seed: int | None = None,
    ):
        config = get_config()
        self.name = name
        self.bands = list(bands) if bands is not None else list(config.classifier.bands)
        self.tree_count = tree_count if tree_count is not None else config.classifier.tree_count
        self.seed = seed if seed is not None else config.classifier.seed
        self.model: HazardModel | None = None
        self.training_set: TrainingSet | None = None

    def fit(
        self,
        raster: xr.DataArray,
        points: Sequence[TrainingPoint],
        points_crs: Any = "EPSG:4326",
    ) -> HazardModel:
        """Sample the raster at the points and train the forest."""
        self.training_set = extract_features(raster, points, bands=self.bands, points_crs=points_crs)
        self.model = train(self.training_set, tree_count=self.tree_count, seed=self.seed, name=self.name)
        return self.model

    def apply(self, raster: xr.DataArray, workers: int | None = None) -> xr.DataArray:
        """Classify a raster with the fitted model."""
        if self.model is None:
            raise RuntimeError(f"Classifier '{self.name}' has not been trained")
        return classify(self.model, raster, workers=workers)
