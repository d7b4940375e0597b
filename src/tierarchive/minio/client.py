from __future__ import annotations

import logging

from minio import Minio
from minio.datatypes import Bucket
from minio.error import S3Error

logger = logging.getLogger("minio-wrapper")


class MinioClient:
    """
    Control plane operations on the object store.

    Only bucket level calls are made here, object data is always
    moved by rclone inside the generated job scripts.
    """

    def __init__(
        self,
        url: str = "localhost:9000",
        access_key: str = "minioadmin",
        secret_key: str = "minioadmin",
        secure=False,
        minio: Minio | None = None,
    ):

        self.url = url
        self.access_key = access_key
        self.secret_key = secret_key
        self.secure = secure

        # Python SDK minio client
        self.minio = minio or Minio(
            self.url,
            secure=self.secure,
            access_key=self.access_key,
            secret_key=self.secret_key,
        )

    def bucket_exists(self, bucket_name: str) -> bool:
        return self.minio.bucket_exists(bucket_name)

    def get_bucket(self, bucket_name: str) -> Bucket | None:
        # Unfortunately, the MinIO Python SDK does not provide a get_bucket method
        if not self.bucket_exists(bucket_name):
            return None
        for b in self.minio.list_buckets():
            if b.name == bucket_name:
                return b

    def make_bucket(self, bucket_name: str) -> Bucket | None:
        # Unfortunately, the MinIO Python SDK does not return a Bucket object
        self.minio.make_bucket(bucket_name)
        return self.get_bucket(bucket_name)

    def get_bucket_policy(self, bucket_name: str) -> str | None:
        try:
            return self.minio.get_bucket_policy(bucket_name)
        except S3Error as e:
            if e.code == "NoSuchBucketPolicy":
                return None
            raise

    def set_bucket_policy(self, bucket_name: str, policy: str) -> None:
        # a bucket has exactly one policy, setting it replaces the old one
        self.minio.set_bucket_policy(bucket_name, policy)

    def delete_bucket_policy(self, bucket_name: str) -> None:
        self.minio.delete_bucket_policy(bucket_name)
