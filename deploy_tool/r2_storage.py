"""
Cloudflare R2 object storage access.

R2 is S3-compatible, so object-level work (PUT, list, delete, multipart
cleanup) goes through a boto3 S3 client pointed at the account endpoint.
Bucket-level management lives in cloudflare_api.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import boto3
from botocore.config import Config as BotocoreConfig
from botocore.exceptions import BotoCoreError, ClientError, ConnectionError as BotoConnectionError
from botocore.exceptions import ConnectTimeoutError, ReadTimeoutError

from album_core.constants import (
    CLOUDFLARE_R2_ENDPOINT_TEMPLATE, DEFAULT_NETWORK_TIMEOUT, DELETE_BATCH_SIZE,
)
from album_core.errors import ApiError, TransportError
from album_core.models import RemoteObject

logger = logging.getLogger(__name__)

_TRANSPORT_ERRORS = (BotoConnectionError, ConnectTimeoutError, ReadTimeoutError)


def _api_error(operation: str, resource: str, error: ClientError) -> ApiError:
    info = error.response.get('Error', {})
    status = error.response.get('ResponseMetadata', {}).get('HTTPStatusCode')
    message = info.get('Message') or info.get('Code') or str(error)
    return ApiError(operation, resource, status, [message])


class R2ObjectStore:
    """
    Object primitives for R2 buckets using the boto3 S3 client.

    R2 uses the 'auto' region and an account-scoped endpoint.
    """

    def __init__(self, account_id: str, access_key_id: str, secret_access_key: str,
                 client: Any = None):
        self.account_id = account_id
        self.endpoint_url = CLOUDFLARE_R2_ENDPOINT_TEMPLATE.format(account_id=account_id)

        if client is None:
            client = boto3.client(
                's3',
                endpoint_url=self.endpoint_url,
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key,
                region_name='auto',  # R2 uses 'auto' region
                # Retries are owned by the upload engine
                config=BotocoreConfig(
                    retries={'max_attempts': 1, 'mode': 'standard'},
                    connect_timeout=30,
                    read_timeout=DEFAULT_NETWORK_TIMEOUT,
                ),
            )
        self.s3_client = client

    def upload_object(self, bucket: str, local_path, key: str, content_type: str) -> None:
        """
        PUT one file into a bucket.

        Raises:
            TransportError: Connection problems or timeouts
            ApiError: R2 rejected the request
        """
        operation = "upload object"
        resource = f"{bucket}/{key}"
        try:
            with open(Path(local_path), 'rb') as body:
                self.s3_client.put_object(Bucket=bucket, Key=key, Body=body, ContentType=content_type)
        except _TRANSPORT_ERRORS as e:
            raise TransportError(operation, resource, e)
        except ClientError as e:
            raise _api_error(operation, resource, e)
        except BotoCoreError as e:
            raise TransportError(operation, resource, e)

    def list_objects(self, bucket: str, prefix: Optional[str] = None) -> List[RemoteObject]:
        """List every object in a bucket (paginated)."""
        kwargs: Dict[str, Any] = {'Bucket': bucket}
        if prefix:
            kwargs['Prefix'] = prefix

        objects = []
        try:
            paginator = self.s3_client.get_paginator('list_objects_v2')
            for page in paginator.paginate(**kwargs):
                for obj in page.get('Contents', []):
                    objects.append(RemoteObject(key=obj['Key'], size=obj.get('Size', 0)))
        except _TRANSPORT_ERRORS as e:
            raise TransportError("list objects", bucket, e)
        except ClientError as e:
            raise _api_error("list objects", bucket, e)
        except BotoCoreError as e:
            raise TransportError("list objects", bucket, e)
        return objects

    def delete_objects(self, bucket: str, keys: List[str]) -> int:
        """
        Delete objects in batches of 1000.

        Returns:
            Number of objects deleted

        Raises:
            ApiError: If any key could not be deleted
        """
        deleted = 0
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start:start + DELETE_BATCH_SIZE]
            try:
                response = self.s3_client.delete_objects(
                    Bucket=bucket,
                    Delete={'Objects': [{'Key': k} for k in batch], 'Quiet': True},
                )
            except _TRANSPORT_ERRORS as e:
                raise TransportError("delete objects", bucket, e)
            except ClientError as e:
                raise _api_error("delete objects", bucket, e)
            except BotoCoreError as e:
                raise TransportError("delete objects", bucket, e)

            errors = response.get('Errors') or []
            if errors:
                messages = [f"{err.get('Key')}: {err.get('Message') or err.get('Code')}" for err in errors]
                raise ApiError("delete objects", bucket, messages=messages)
            deleted += len(batch)
        return deleted

    def list_multipart_uploads(self, bucket: str) -> List[Dict[str, str]]:
        """List incomplete multipart uploads as {'key', 'upload_id'} dicts."""
        uploads = []
        try:
            paginator = self.s3_client.get_paginator('list_multipart_uploads')
            for page in paginator.paginate(Bucket=bucket):
                for upload in page.get('Uploads', []):
                    uploads.append({'key': upload['Key'], 'upload_id': upload['UploadId']})
        except _TRANSPORT_ERRORS as e:
            raise TransportError("list multipart uploads", bucket, e)
        except ClientError as e:
            raise _api_error("list multipart uploads", bucket, e)
        except BotoCoreError as e:
            raise TransportError("list multipart uploads", bucket, e)
        return uploads

    def abort_multipart_uploads(self, bucket: str) -> int:
        """Abort every incomplete multipart upload. Returns how many were aborted."""
        aborted = 0
        for upload in self.list_multipart_uploads(bucket):
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=bucket, Key=upload['key'], UploadId=upload['upload_id'],
                )
            except _TRANSPORT_ERRORS as e:
                raise TransportError("abort multipart upload", f"{bucket}/{upload['key']}", e)
            except ClientError as e:
                raise _api_error("abort multipart upload", f"{bucket}/{upload['key']}", e)
            except BotoCoreError as e:
                raise TransportError("abort multipart upload", f"{bucket}/{upload['key']}", e)
            aborted += 1
        return aborted

    def empty_bucket(self, bucket: str) -> Tuple[int, int]:
        """
        Remove everything from a bucket so it can be deleted.

        Returns:
            (objects deleted, multipart uploads aborted)
        """
        aborted = self.abort_multipart_uploads(bucket)
        keys = [obj.key for obj in self.list_objects(bucket)]
        deleted = self.delete_objects(bucket, keys) if keys else 0
        logger.info("Emptied bucket %s: %d objects, %d multipart uploads", bucket, deleted, aborted)
        return deleted, aborted
