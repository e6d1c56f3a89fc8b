"""Tests for uploading exported outputs to MinIO/S3.

The boto3 client is replaced with a MagicMock so no network calls occur.
"""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from glacierisk.storage.minio import MinioStorage


@pytest.fixture
def storage():
    store = MinioStorage(endpoint="localhost:9000", access_key="key", secret_key="secret", secure=False)
    store._client = MagicMock()
    return store


@pytest.fixture
def output_files(tmp_path):
    (tmp_path / "slope.tif").write_bytes(b"tif")
    (tmp_path / "slope.json").write_text("{}")
    (tmp_path / "lakes.geojson").write_text("{}")
    return {
        "slope": tmp_path / "slope.tif",
        "lakes": tmp_path / "lakes.geojson",
    }


class TestMinioStorage:
    def test_minio_mode_endpoint(self):
        store = MinioStorage(endpoint="minio:9000", secure=True)

        assert store.endpoint_url == "https://minio:9000"

    def test_s3_mode_without_endpoint(self):
        store = MinioStorage(endpoint="")

        assert store.endpoint_url is None

    def test_upload_outputs_with_sidecars(self, storage, output_files):
        uploaded = storage.upload_outputs(output_files, "dudh-koshi", "run-1")

        bucket = storage.bucket_outputs
        assert uploaded == {
            "slope": f"{bucket}/dudh-koshi/run-1/slope.tif",
            "lakes": f"{bucket}/dudh-koshi/run-1/lakes.geojson",
        }
        keys = [call.args[2] for call in storage.client.upload_file.call_args_list]
        assert keys == [
            "dudh-koshi/run-1/slope.tif",
            "dudh-koshi/run-1/slope.json",
            "dudh-koshi/run-1/lakes.geojson",
        ]
        content_types = [call.kwargs["ExtraArgs"]["ContentType"] for call in storage.client.upload_file.call_args_list]
        assert content_types == ["image/tiff", "application/json", "application/geo+json"]

    def test_only_known_companions_uploaded(self, storage, tmp_path):
        for name in ("lakes.geojson", "lakes.shp", "lakes.tif", "glaciers.shp", "glaciers.shx",
                     "glaciers.dbf", "glaciers.prj", "glaciers.cpg", "glaciers.geojson"):
            (tmp_path / name).write_text("x")

        storage.upload_outputs(
            {"lakes": tmp_path / "lakes.geojson", "glaciers": tmp_path / "glaciers.shp"},
            "dudh-koshi",
            "run-1",
        )

        keys = [call.args[2] for call in storage.client.upload_file.call_args_list]
        assert keys == [
            "dudh-koshi/run-1/lakes.geojson",
            "dudh-koshi/run-1/glaciers.shp",
            "dudh-koshi/run-1/glaciers.shx",
            "dudh-koshi/run-1/glaciers.dbf",
            "dudh-koshi/run-1/glaciers.prj",
            "dudh-koshi/run-1/glaciers.cpg",
        ]

    def test_missing_bucket_created(self, storage, output_files):
        storage.client.head_bucket.side_effect = ClientError({"Error": {"Code": "404"}}, "HeadBucket")

        storage.upload_outputs(output_files, "dudh-koshi", "run-1")

        storage.client.create_bucket.assert_called_once_with(Bucket=storage.bucket_outputs)

    def test_missing_bucket_in_s3_mode_raises(self, output_files):
        store = MinioStorage(endpoint="")
        store._client = MagicMock()
        store.client.head_bucket.side_effect = ClientError({"Error": {"Code": "NoSuchBucket"}}, "HeadBucket")

        with pytest.raises(RuntimeError, match="not found"):
            store.upload_outputs(output_files, "dudh-koshi", "run-1")
