"""S3-compatible object store adapter.

Works with AWS S3, Cloudflare R2, MinIO and the Google Cloud Storage XML
interoperability endpoint. This is the only module that talks to boto3;
botocore failures are translated into build_cache.remote types here.

Credentials come from the boto3 default chain (environment variables,
shared credentials file, named profile, instance metadata).
"""

from datetime import datetime, timezone
from typing import Any, Optional

import boto3
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    NoCredentialsError,
    PartialCredentialsError,
    ProfileNotFound,
)

from build_cache.errors import ConfigurationError, TransportError
from build_cache.logging_config import get_logger
from build_cache.remote import (
    RemoteError,
    RemoteObject,
    might_require_reauthentication,
    remote_error,
)

logger = get_logger(__name__)

# Error codes S3-compatible stores return without a numeric status
ERROR_CODE_STATUS = {
    "AccessDenied": 403,
    "InvalidAccessKeyId": 403,
    "SignatureDoesNotMatch": 403,
    "AllAccessDisabled": 403,
    "ExpiredToken": 400,
    "InvalidToken": 400,
    "BadRequest": 400,
    "Unauthorized": 401,
    "NoSuchKey": 404,
    "NoSuchBucket": 404,
    "NotFound": 404,
    "InternalError": 500,
    "SlowDown": 503,
    "ServiceUnavailable": 503,
}

NOT_FOUND_CODES = frozenset({"NoSuchKey", "NotFound", "404"})

REAUTHENTICATION_ADVICE = (
    "credentials may have expired, refresh them (e.g. `aws sso login` "
    "or `gcloud auth login --update-adc`)"
)


def status_code_of(exc: ClientError) -> Optional[int]:
    """Resolve the HTTP status code of a botocore ClientError.

    Args:
        exc: Error raised by a boto3 client call

    Returns:
        Status code, or None if it cannot be determined
    """
    response = getattr(exc, "response", None) or {}
    status = response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    if status:
        return int(status)

    code = str(response.get("Error", {}).get("Code", ""))
    if code.isdigit():
        return int(code)
    return ERROR_CODE_STATUS.get(code)


def error_code_of(exc: ClientError) -> str:
    response = getattr(exc, "response", None) or {}
    return str(response.get("Error", {}).get("Code", ""))


def is_not_found(exc: ClientError) -> bool:
    """Check whether a ClientError means the object does not exist.

    Not-found arrives through two channels: a structured error code / 404
    status, or only as "404" inside the error text. Both count.
    """
    if status_code_of(exc) == 404 or error_code_of(exc) in NOT_FOUND_CODES:
        return True
    return "404" in str(exc)


def _as_utc(value: Any) -> datetime:
    if not isinstance(value, datetime):
        raise ValueError(f"Unexpected LastModified value: {value!r}")
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class S3Bucket:
    """Live handle to one bucket.

    Attributes:
        name: Bucket name
    """

    def __init__(self, client: Any, name: str):
        """Wrap a boto3 S3 client bound to a bucket.

        Args:
            client: boto3 S3 client
            name: Bucket name
        """
        self._client = client
        self.name = name

    @property
    def client(self) -> Any:
        return self._client

    def put(self, key: str, content: bytes) -> None:
        """Create or overwrite the object named ``key``.

        Raises:
            RemoteError: If the upload fails (AuthFailure for 400/401/403)
        """
        try:
            self._client.put_object(Bucket=self.name, Key=key, Body=bytes(content))
        except ClientError as e:
            raise remote_error(str(e), status_code_of(e), "PutObject") from e
        except BotoCoreError as e:
            raise RemoteError(str(e), None, "PutObject") from e

    def get(self, key: str) -> Optional[RemoteObject]:
        """Fetch the object named ``key``.

        Returns:
            The object, or None if it does not exist

        Raises:
            RemoteError: If the download fails (AuthFailure for 400/401/403,
                with not_found set when the error text also reports "404")
        """
        try:
            response = self._client.get_object(Bucket=self.name, Key=key)
            body = response["Body"]
            try:
                content = body.read()
            finally:
                body.close()
        except ClientError as e:
            status = status_code_of(e)
            if not is_not_found(e):
                raise remote_error(str(e), status, "GetObject") from e
            if might_require_reauthentication(status):
                # Missing object, but the credentials still need refreshing
                raise remote_error(str(e), status, "GetObject", not_found=True) from e
            logger.debug(f"Object {key} not found in {self.name} ({error_code_of(e) or e})")
            return None
        except BotoCoreError as e:
            raise RemoteError(str(e), None, "GetObject") from e

        return RemoteObject(content=content, last_modified=_as_utc(response["LastModified"]))


def connect(
    bucket_name: str,
    endpoint_url: Optional[str] = None,
    region: Optional[str] = None,
    profile: Optional[str] = None,
    session: Optional[Any] = None,
) -> S3Bucket:
    """Resolve ambient credentials and look up a bucket.

    Args:
        bucket_name: Bucket to use
        endpoint_url: Custom endpoint (R2, MinIO, GCS interoperability)
        region: Region name
        profile: Named profile from the shared credentials file
        session: Pre-built boto3 session (overrides profile)

    Returns:
        S3Bucket handle for the bucket

    Raises:
        ConfigurationError: If the bucket is missing or not accessible,
            or no credentials are available
        TransportError: If the store cannot be reached
    """
    try:
        if session is None:
            session = boto3.session.Session(profile_name=profile or None)
        client = session.client(
            "s3",
            endpoint_url=endpoint_url or None,
            region_name=region or None,
        )
        client.head_bucket(Bucket=bucket_name)
    except ClientError as e:
        status = status_code_of(e)
        message = f"Bucket '{bucket_name}' is unavailable (status {status})"
        if might_require_reauthentication(status):
            message += f", {REAUTHENTICATION_ADVICE}"
        raise ConfigurationError(message, bucket=bucket_name, status_code=status) from e
    except (NoCredentialsError, PartialCredentialsError, ProfileNotFound) as e:
        raise ConfigurationError(
            f"No usable credentials for bucket '{bucket_name}': {e}", bucket=bucket_name
        ) from e
    except BotoCoreError as e:
        raise TransportError(
            f"Unable to reach object store for bucket '{bucket_name}': {e}", bucket=bucket_name
        ) from e

    logger.info(f"Connected to bucket {bucket_name}" + (f" at {endpoint_url}" if endpoint_url else ""))
    return S3Bucket(client, bucket_name)
