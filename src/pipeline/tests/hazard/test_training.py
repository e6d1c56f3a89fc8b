"""Unit tests for loading training-point sets."""

from pathlib import Path

import pytest
from pyproj import Transformer

from glacierisk.hazard.classifier import TrainingPoint
from glacierisk.hazard.training import load_training_sets

DUDH_KOSHI = Path(__file__).resolve().parents[4] / "areas-of-interest" / "dudh-koshi" / "training_points.yaml"


class TestLoadTrainingSets:
    """YAML problems -> labelled TrainingPoints."""

    def test_class_keyed_points(self, tmp_path):
        path = tmp_path / "points.yaml"
        path.write_text(
            "problems:\n"
            "  rockfall:\n"
            "    1: [[86.92, 27.89]]\n"
            "    0: [[86.85, 27.85], [86.80, 27.80]]\n"
        )

        sets = load_training_sets(path)

        assert sets["rockfall"] == [
            TrainingPoint(86.92, 27.89, 1),
            TrainingPoint(86.85, 27.85, 0),
            TrainingPoint(86.80, 27.80, 0),
        ]

    def test_projected_points_reprojected_to_wgs84(self, tmp_path):
        x, y = Transformer.from_crs("EPSG:4326", "EPSG:32645", always_xy=True).transform(86.9, 27.9)
        path = tmp_path / "points.yaml"
        path.write_text(
            "crs: EPSG:32645\n"
            "problems:\n"
            "  rockfall:\n"
            f"    1: [[{x}, {y}]]\n"
        )

        sets = load_training_sets(path)

        point = sets["rockfall"][0]
        assert point.x == pytest.approx(86.9, abs=1e-6)
        assert point.y == pytest.approx(27.9, abs=1e-6)
        assert point.label == 1

    def test_mapping_points(self, tmp_path):
        path = tmp_path / "points.yaml"
        path.write_text(
            "problems:\n"
            "  glof:\n"
            "    points:\n"
            "      - {x: 86.9, y: 27.9, label: 1}\n"
            "      - {lon: 86.5, lat: 27.7, class: 0}\n"
        )

        sets = load_training_sets(path)

        assert [p.label for p in sets["glof"]] == [1, 0]
        assert sets["glof"][1].x == pytest.approx(86.5)

    def test_dudh_koshi_points(self):
        sets = load_training_sets(DUDH_KOSHI)

        assert set(sets) == {"rockfall", "glof"}
        assert sum(p.label == 1 for p in sets["rockfall"]) == 3
        assert sum(p.label == 0 for p in sets["rockfall"]) == 2
        assert sum(p.label == 1 for p in sets["glof"]) == 12
        assert sum(p.label == 0 for p in sets["glof"]) == 4

    def test_no_problems_raises(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("crs: EPSG:4326\n")

        with pytest.raises(ValueError, match="No training problems"):
            load_training_sets(path)

    def test_malformed_point_raises(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("problems:\n  rockfall:\n    1: [[86.9, 27.9, 4000]]\n")

        with pytest.raises(ValueError, match="Invalid training point"):
            load_training_sets(path)

    def test_missing_label_raises(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("problems:\n  rockfall:\n    points:\n      - {x: 86.9, y: 27.9}\n")

        with pytest.raises(ValueError, match="no label"):
            load_training_sets(path)
