"""A small path-style S3 client for MinIO-compatible object stores."""

from __future__ import annotations

import datetime as _dt
import hashlib
import hmac
import logging
import os
from collections.abc import Iterator
from pathlib import Path
from typing import BinaryIO
from urllib.parse import quote, urlsplit

import requests

logger = logging.getLogger(__name__)

MINIO_ENDPOINT_URL_ENV_VAR = "MINIO_ENDPOINT_URL"
MINIO_REGION_ENV_VAR = "MINIO_AWS_REGION"
DEFAULT_MINIO_ENDPOINT_URL = "http://localhost:9000"
DEFAULT_MINIO_REGION = "us-east-1"

_ALGORITHM = "AWS4-HMAC-SHA256"
_UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"
_CHUNK_SIZE = 64 * 1024


class S3Error(Exception):
    """An object-store request or a local file operation around it failed."""


def _hmac_sha256(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


def _sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class S3Client:
    """Path-style S3 client signing requests with AWS Signature Version 4."""

    def __init__(
        self,
        endpoint_url: str,
        region: str,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        session_token: str | None = None,
        session: requests.Session | None = None,
        timeout: float = 60.0,
    ) -> None:
        self.endpoint_url = endpoint_url.rstrip("/")
        self.region = region
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self.session_token = session_token
        self.timeout = timeout
        self._session = session or requests.Session()
        parts = urlsplit(self.endpoint_url)
        self._host = parts.netloc
        self._base_path = parts.path.rstrip("/")

    def _object_path(self, bucket: str, key: str) -> str:
        return f"{self._base_path}/{quote(bucket, safe='')}/{quote(key, safe='/')}"

    def _headers(self, method: str, path: str, payload_hash: str) -> dict[str, str]:
        now = _dt.datetime.now(_dt.timezone.utc)
        amz_date = now.strftime("%Y%m%dT%H%M%SZ")
        datestamp = now.strftime("%Y%m%d")
        headers = {"x-amz-content-sha256": payload_hash, "x-amz-date": amz_date}
        if self.session_token:
            headers["x-amz-security-token"] = self.session_token
        if not (self.access_key_id and self.secret_access_key):
            return headers

        canonical = {"host": self._host, **headers}
        names = sorted(canonical)
        canonical_headers = "".join(f"{name}:{canonical[name].strip()}\n" for name in names)
        signed_headers = ";".join(names)
        canonical_request = "\n".join(
            [method, path, "", canonical_headers, signed_headers, payload_hash]
        )
        scope = f"{datestamp}/{self.region}/s3/aws4_request"
        string_to_sign = "\n".join(
            [_ALGORITHM, amz_date, scope, _sha256_hex(canonical_request.encode("utf-8"))]
        )
        signing_key = ("AWS4" + self.secret_access_key).encode("utf-8")
        for part in (datestamp, self.region, "s3", "aws4_request"):
            signing_key = _hmac_sha256(signing_key, part)
        signature = hmac.new(
            signing_key, string_to_sign.encode("utf-8"), hashlib.sha256
        ).hexdigest()
        headers["Authorization"] = (
            f"{_ALGORITHM} Credential={self.access_key_id}/{scope}, "
            f"SignedHeaders={signed_headers}, Signature={signature}"
        )
        return headers

    def get_object(self, bucket: str, key: str) -> Iterator[bytes]:
        """Request an object and return an iterator over its body chunks."""
        path = self._object_path(bucket, key)
        headers = self._headers("GET", path, _sha256_hex(b""))
        try:
            response = self._session.get(
                self.endpoint_url.rsplit(self._base_path, 1)[0] + path
                if self._base_path
                else self.endpoint_url + path,
                headers=headers,
                stream=True,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise S3Error(str(exc)) from exc
        if response.status_code != 200:
            detail = response.text.strip()
            response.close()
            raise S3Error(f"HTTP {response.status_code}: {detail}")
        return self._iter_body(response)

    @staticmethod
    def _iter_body(response: requests.Response) -> Iterator[bytes]:
        with response:
            try:
                for chunk in response.iter_content(_CHUNK_SIZE):
                    if chunk:
                        yield chunk
            except requests.RequestException as exc:
                raise S3Error(str(exc)) from exc

    def put_object(self, bucket: str, key: str, body: bytes | BinaryIO) -> None:
        """Store body (bytes or a binary file) under bucket/key."""
        path = self._object_path(bucket, key)
        if isinstance(body, (bytes, bytearray)):
            payload_hash = _sha256_hex(bytes(body))
        else:
            payload_hash = _UNSIGNED_PAYLOAD
        headers = self._headers("PUT", path, payload_hash)
        url = (
            self.endpoint_url.rsplit(self._base_path, 1)[0] + path
            if self._base_path
            else self.endpoint_url + path
        )
        try:
            response = self._session.put(url, data=body, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            raise S3Error(str(exc)) from exc
        with response:
            if not 200 <= response.status_code < 300:
                raise S3Error(f"HTTP {response.status_code}: {response.text.strip()}")


def new_s3_client() -> S3Client:
    """Create a client from MinIO endpoint/region and AWS credential variables."""
    endpoint_url = os.environ.get(MINIO_ENDPOINT_URL_ENV_VAR, DEFAULT_MINIO_ENDPOINT_URL)
    region = os.environ.get(MINIO_REGION_ENV_VAR, DEFAULT_MINIO_REGION)
    client = S3Client(
        endpoint_url,
        region,
        access_key_id=os.environ.get("AWS_ACCESS_KEY_ID") or None,
        secret_access_key=os.environ.get("AWS_SECRET_ACCESS_KEY") or None,
        session_token=os.environ.get("AWS_SESSION_TOKEN") or None,
    )
    logger.info("Creating S3 client with endpoint: %s", client.endpoint_url)
    return client


def download_file(
    client: S3Client, bucket: str, key: str, download_path: str | os.PathLike[str]
) -> None:
    """Download s3://bucket/key into download_path, creating parent directories."""
    path = Path(download_path)
    logger.info("S3: Attempting to download s3://%s/%s to %s", bucket, key, path)
    try:
        chunks = client.get_object(bucket, key)
    except S3Error as exc:
        message = f"S3: Failed to get object s3://{bucket}/{key}: {exc}"
        logger.error(message)
        raise S3Error(message) from exc

    parent = path.parent
    try:
        parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise S3Error(f"Failed to create download directory {parent}: {exc}") from exc
    try:
        handle = path.open("wb")
    except OSError as exc:
        raise S3Error(f"Failed to create file {path}: {exc}") from exc

    written = 0
    with handle:
        try:
            for chunk in chunks:
                handle.write(chunk)
                written += len(chunk)
        except S3Error as exc:
            raise S3Error(
                f"Error reading S3 object body stream for s3://{bucket}/{key}: {exc}"
            ) from exc
        except OSError as exc:
            raise S3Error(f"Failed to write to file {path}: {exc}") from exc
    logger.debug(
        "S3: Successfully downloaded %d bytes from s3://%s/%s to %s", written, bucket, key, path
    )


def upload_file(
    client: S3Client, bucket: str, key: str, upload_path: str | os.PathLike[str]
) -> None:
    """Upload the file at upload_path to s3://bucket/key."""
    path = Path(upload_path)
    logger.info("S3: Attempting to upload %s to s3://%s/%s", path, bucket, key)
    if not path.exists():
        raise S3Error(f"File to upload does not exist: {path}")
    try:
        handle = path.open("rb")
    except OSError as exc:
        message = f"S3: Failed to create ByteStream from path {path}: {exc}"
        logger.error(message)
        raise S3Error(message) from exc
    with handle:
        try:
            client.put_object(bucket, key, handle)
        except S3Error as exc:
            message = f"S3: Failed to upload {path} to s3://{bucket}/{key}: {exc}"
            logger.error(message)
            raise S3Error(message) from exc
    logger.info("S3: Successfully uploaded %s to s3://%s/%s", path, bucket, key)