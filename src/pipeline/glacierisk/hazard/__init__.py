"""Random-forest hazard classification (rockfall, GLOF) from labelled points."""

from glacierisk.hazard.classifier import (
    HazardClassifier,
    HazardModel,
    TrainingDataError,
    TrainingPoint,
    classify,
    extract_features,
    train,
)
from glacierisk.hazard.training import load_training_sets

__all__ = [
    "HazardClassifier",
    "HazardModel",
    "TrainingPoint",
    "TrainingDataError",
    "extract_features",
    "train",
    "classify",
    "load_training_sets",
]
