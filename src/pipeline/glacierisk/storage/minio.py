"""MinIO S3-compatible storage client for exported outputs."""

from pathlib import Path
from typing import Any

import boto3
import structlog
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError

from glacierisk.config import get_config

logger = structlog.get_logger()

CONTENT_TYPES = {
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".geojson": "application/geo+json",
    ".json": "application/json",
    ".csv": "text/csv",
}

# Files written alongside an output that travel with it
COMPANION_SUFFIXES = {
    ".tif": (".json",),
    ".tiff": (".json",),
    ".shp": (".shx", ".dbf", ".prj", ".cpg"),
}


class MinioStorage:
    """Client for MinIO S3-compatible object storage."""

    def __init__(
        self,
        endpoint: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        secure: bool | None = None,
    ):
        """Initialize the MinIO storage client.

        Args:
            endpoint: MinIO endpoint URL.
            access_key: Access key for authentication.
            secret_key: Secret key for authentication.
            secure: Use HTTPS if True.
        """
        config = get_config()

        self.endpoint = endpoint if endpoint is not None else config.minio.endpoint
        self.access_key = access_key or config.minio.access_key
        self.secret_key = secret_key or config.minio.secret_key
        self.secure = secure if secure is not None else config.minio.secure
        self.bucket_outputs = config.minio.bucket_outputs

        # S3 mode when no endpoint is configured, MinIO mode otherwise
        self._s3_mode = not self.endpoint

        if not self._s3_mode:
            protocol = "https" if self.secure else "http"
            self.endpoint_url = f"{protocol}://{self.endpoint}"
        else:
            self.endpoint_url = None

        self._client = None

    @property
    def client(self) -> Any:
        """Get or create the boto3 S3 client."""
        if self._client is None:
            if self._s3_mode:
                # S3 mode: use IAM role credentials and default S3 endpoint
                self._client = boto3.client("s3")
                logger.info("Connected to AWS S3 (IAM role)")
            else:
                self._client = boto3.client(
                    "s3",
                    endpoint_url=self.endpoint_url,
                    aws_access_key_id=self.access_key,
                    aws_secret_access_key=self.secret_key,
                    config=BotoConfig(
                        signature_version="s3v4",
                        s3={"addressing_style": "path"},
                    ),
                )
                logger.info("Connected to MinIO", endpoint=self.endpoint)
        return self._client

    def ensure_bucket(self, bucket: str) -> None:
        """Ensure a bucket exists, creating it if necessary.

        In S3 mode buckets must already exist. In MinIO mode a missing
        bucket is created.

        Args:
            bucket: Bucket name.
        """
        try:
            self.client.head_bucket(Bucket=bucket)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "")
            if error_code in ("404", "NoSuchBucket"):
                if self._s3_mode:
                    raise RuntimeError(
                        f"S3 bucket '{bucket}' not found. Check the MINIO_BUCKET_OUTPUTS env var."
                    ) from e
                self.client.create_bucket(Bucket=bucket)
                logger.info("Created bucket", bucket=bucket)
            else:
                raise

    def upload_file(
        self,
        local_path: Path,
        bucket: str,
        object_key: str,
        content_type: str = "application/octet-stream",
    ) -> str:
        """Upload a local file to storage.

        Args:
            local_path: Path to the local file.
            bucket: Target bucket name.
            object_key: Object key (path) in the bucket.
            content_type: MIME type of the file.

        Returns:
            Full object path (bucket/key).
        """
        self.client.upload_file(
            str(local_path),
            bucket,
            object_key,
            ExtraArgs={"ContentType": content_type},
        )

        logger.info(
            "Uploaded file",
            bucket=bucket,
            key=object_key,
            size=local_path.stat().st_size,
        )

        return f"{bucket}/{object_key}"

    def upload_outputs(
        self,
        paths: dict[str, Path],
        aoi_id: str,
        run_id: str,
    ) -> dict[str, str]:
        """Upload exported analysis outputs to the outputs bucket.

        Objects are keyed ``{aoi_id}/{run_id}/{filename}``. Sidecar files
        written next to a raster (``.json``) and Shapefile companions are
        uploaded with it.

        Args:
            paths: Output name -> local file path, as returned by export.
            aoi_id: Area of Interest ID.
            run_id: Processing run ID.

        Returns:
            Output name -> uploaded object path.
        """
        self.ensure_bucket(self.bucket_outputs)

        uploaded = {}
        for name, path in paths.items():
            path = Path(path)
            companions = [
                path.with_suffix(suffix)
                for suffix in COMPANION_SUFFIXES.get(path.suffix.lower(), ())
                if path.with_suffix(suffix).exists()
            ]
            for local_path in [path, *companions]:
                content_type = CONTENT_TYPES.get(local_path.suffix.lower(), "application/octet-stream")
                object_path = self.upload_file(
                    local_path,
                    self.bucket_outputs,
                    f"{aoi_id}/{run_id}/{local_path.name}",
                    content_type=content_type,
                )
                if local_path == path:
                    uploaded[name] = object_path

        logger.info("Uploaded outputs", aoi_id=aoi_id, run_id=run_id, count=len(uploaded))
        return uploaded
