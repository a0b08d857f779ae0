"""
Tests for the S3 image storage wrapper. boto3 is replaced by a MagicMock.
"""

import pytest
from botocore.exceptions import ClientError

from storefront.tools.object_storage import ObjectStorage


def _client_error(code):
    return ClientError({"Error": {"Code": code, "Message": "x"}}, "HeadBucket")


class TestUpload:
    def test_url_format(self, storage, s3_client):
        url = storage.upload("ảnh 1.jpg", b"data", "image/jpeg")
        assert url == "http://minio.test:9000/productimages/1700000000500-ảnh 1.jpg"
        s3_client.put_object.assert_called_once_with(
            Bucket="productimages",
            Key="1700000000500-ảnh 1.jpg",
            Body=b"data",
            ContentType="image/jpeg",
        )

    def test_trailing_slash_in_public_base(self, settings, s3_client):
        settings.s3_public_url = "http://cdn.test/"
        storage = ObjectStorage(settings, client=s3_client, clock=lambda: 2.0)
        assert storage.upload("a.png", b"x") == "http://cdn.test/productimages/2000-a.png"


class TestDelete:
    def test_object_name_is_last_segment(self, storage, s3_client):
        storage.delete("http://minio.test:9000/productimages/1700000000500-a.jpg")
        s3_client.delete_object.assert_called_once_with(
            Bucket="productimages", Key="1700000000500-a.jpg"
        )

    def test_delete_all(self, storage, s3_client):
        storage.delete_all(["http://x/b/1-a.jpg", "http://x/b/2-b.jpg"])
        assert s3_client.delete_object.call_count == 2

    def test_delete_all_continues_past_failures(self, storage, s3_client):
        s3_client.delete_object.side_effect = [_client_error("500"), None]
        failed = storage.delete_all(["http://x/b/1-a.jpg", "http://x/b/2-b.jpg"])
        assert failed == ["http://x/b/1-a.jpg"]
        assert s3_client.delete_object.call_count == 2


class TestBucket:
    def test_existing_bucket_left_alone(self, storage, s3_client):
        storage.ensure_bucket()
        s3_client.create_bucket.assert_not_called()

    def test_missing_bucket_created(self, storage, s3_client):
        s3_client.head_bucket.side_effect = _client_error("404")
        storage.ensure_bucket()
        s3_client.create_bucket.assert_called_once_with(Bucket="productimages")

    def test_other_errors_propagate(self, storage, s3_client):
        s3_client.head_bucket.side_effect = _client_error("403")
        with pytest.raises(ClientError):
            storage.ensure_bucket()
