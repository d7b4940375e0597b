#!/usr/bin/env python3

from unittest.mock import MagicMock

from tierarchive.minio.client import MinioClient


def make_client():
    sdk = MagicMock()
    return MinioClient("s3.example.org", "AK", "SK", secure=True, minio=sdk), sdk


def test_MinioClient_make_bucket():
    client, sdk = make_client()
    bucket = MagicMock()
    bucket.name = "bucket"
    sdk.bucket_exists.return_value = True
    sdk.list_buckets.return_value = [MagicMock(), bucket]
    assert client.make_bucket("bucket") is bucket
    sdk.make_bucket.assert_called_once_with("bucket")


def test_MinioClient_get_bucket__missing():
    client, sdk = make_client()
    sdk.bucket_exists.return_value = False
    assert client.get_bucket("bucket") is None
    sdk.list_buckets.assert_not_called()


def test_MinioClient_policy_calls():
    client, sdk = make_client()
    sdk.get_bucket_policy.return_value = '{"Version": "2012-10-17"}'
    assert client.get_bucket_policy("bucket") == '{"Version": "2012-10-17"}'
    client.set_bucket_policy("bucket", "{}")
    sdk.set_bucket_policy.assert_called_once_with("bucket", "{}")
    client.delete_bucket_policy("bucket")
    sdk.delete_bucket_policy.assert_called_once_with("bucket")
