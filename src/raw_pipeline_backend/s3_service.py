"""
S3 access for staged originals and processed output.

This module provides functionality for:
- Reading staged RAW/JPEG files into memory for upload to the editor
- Writing rendered output under the review-queue or finished prefixes
- Bulk-deleting staged originals once a job's output is stored
- Generating presigned URLs for time-limited downloads

The bucket name comes from configuration (``storage.bucket`` / ``MEDIA_BUCKET``).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

# DeleteObjects accepts at most this many keys per request.
DELETE_BATCH_SIZE = 1000


class MediaStorage:
    """Object storage for one media bucket."""

    def __init__(self, bucket: str, client: Any = None) -> None:
        if not bucket:
            raise ValueError("A media bucket name is required")
        self.bucket = bucket
        self._client = client or boto3.client("s3")

    def get_object_bytes(self, key: str) -> bytes:
        """
        Download an object fully into memory.

        Args:
            key: S3 object key

        Returns:
            The object body

        Raises:
            botocore.exceptions.ClientError: If the object is missing or unreadable
        """
        response = self._client.get_object(Bucket=self.bucket, Key=key)
        return response["Body"].read()

    def put_object(self, key: str, body: bytes, content_type: str = "application/octet-stream") -> str:
        logger.debug(f"Writing {len(body)} bytes to s3://{self.bucket}/{key}")
        self._client.put_object(Bucket=self.bucket, Key=key, Body=body, ContentType=content_type)
        return key

    def delete_objects(self, keys: Sequence[str]) -> List[Dict[str, Any]]:
        """
        Best-effort bulk delete.

        Args:
            keys: Object keys to delete

        Returns:
            Per-key errors reported by S3 (empty when everything was deleted)

        Note:
            Errors are returned rather than raised; callers decide whether a
            partial delete matters.
        """
        errors: List[Dict[str, Any]] = []
        unique_keys = list(dict.fromkeys(keys))
        for start in range(0, len(unique_keys), DELETE_BATCH_SIZE):
            batch = unique_keys[start:start + DELETE_BATCH_SIZE]
            try:
                response = self._client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
                )
            except ClientError as e:
                logger.error(f"S3 bulk delete failed for {len(batch)} keys: {e}")
                errors.extend({"Key": key, "Message": str(e)} for key in batch)
                continue
            errors.extend(response.get("Errors") or [])
        return errors

    def generate_presigned_url(self, key: str, expiration: int = 3600) -> Optional[str]:
        """
        Generate a presigned GET URL for an object.

        Returns:
            Presigned URL string, or None if generation fails
        """
        try:
            return self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expiration,
            )
        except ClientError as e:
            logger.error(f"Failed to generate presigned URL: {e}")
            return None
