import io
from unittest.mock import Mock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from object_store import (
    STORAGE_CONNECT_TIMEOUT_SECONDS,
    STORAGE_READ_TIMEOUT_SECONDS,
    ObjectStore,
)
from runpod_exceptions import AssetNotFoundError, StorageError, TransientAssetError


def _client_error(code, op="GetObject"):
    return ClientError({"Error": {"Code": code, "Message": code}}, op)


@pytest.fixture
def s3():
    return Mock()


class TestDownload:
    """Source fetches"""

    def test_returns_bytes(self, s3):
        s3.get_object.return_value = {"Body": io.BytesIO(b"RIFF")}
        assert ObjectStore(s3).download("audio-files", "t1.wav") == b"RIFF"
        s3.get_object.assert_called_once_with(Bucket="audio-files", Key="t1.wav")

    def test_missing_key(self, s3):
        s3.get_object.side_effect = _client_error("NoSuchKey")
        with pytest.raises(AssetNotFoundError):
            ObjectStore(s3).download("audio-files", "t1.wav")

    def test_other_client_error_is_transient(self, s3):
        s3.get_object.side_effect = _client_error("AccessDenied")
        with pytest.raises(TransientAssetError) as excinfo:
            ObjectStore(s3).download("audio-files", "t1.wav")
        assert not isinstance(excinfo.value, AssetNotFoundError)

    def test_connection_error_is_transient(self, s3):
        s3.get_object.side_effect = EndpointConnectionError(endpoint_url="http://store")
        with pytest.raises(TransientAssetError):
            ObjectStore(s3).download("audio-files", "t1.wav")

    def test_empty_body(self, s3):
        s3.get_object.return_value = {"Body": io.BytesIO(b"")}
        with pytest.raises(TransientAssetError):
            ObjectStore(s3).download("audio-files", "t1.wav")


class TestPublish:
    """Archive upload and signing"""

    def test_upload_overwrites_with_content_type(self, s3):
        ObjectStore(s3).upload("archives", "A1.zip", b"PK", "application/zip")
        s3.put_object.assert_called_once_with(
            Bucket="archives", Key="A1.zip", Body=b"PK",
            ContentType="application/zip")

    def test_upload_failure(self, s3):
        s3.put_object.side_effect = _client_error("InternalError", "PutObject")
        with pytest.raises(StorageError):
            ObjectStore(s3).upload("archives", "A1.zip", b"PK")

    def test_sign(self, s3):
        s3.generate_presigned_url.return_value = "https://signed"
        assert ObjectStore(s3).sign("archives", "A1.zip", 900) == "https://signed"
        s3.generate_presigned_url.assert_called_once_with(
            "get_object", Params={"Bucket": "archives", "Key": "A1.zip"},
            ExpiresIn=900)

    def test_sign_failure(self, s3):
        s3.generate_presigned_url.side_effect = _client_error("SignatureDoesNotMatch")
        with pytest.raises(StorageError):
            ObjectStore(s3).sign("archives", "A1.zip", 900)


class TestFromEnv:
    """Client construction"""

    def test_single_attempt_with_timeouts(self, monkeypatch):
        monkeypatch.setenv("STORAGE_ENDPOINT_URL", "https://store.test")
        monkeypatch.setenv("STORAGE_ACCESS_KEY_ID", "key")
        monkeypatch.setenv("STORAGE_SECRET_ACCESS_KEY", "secret")

        with patch("object_store.boto3.client") as client:
            store = ObjectStore.from_env()

        assert store.s3_client is client.return_value
        kwargs = client.call_args.kwargs
        assert kwargs["service_name"] == "s3"
        assert kwargs["endpoint_url"] == "https://store.test"
        assert kwargs["aws_access_key_id"] == "key"
        config = kwargs["config"]
        assert config.signature_version == "s3v4"
        assert config.retries == {"total_max_attempts": 1}
        assert config.connect_timeout == STORAGE_CONNECT_TIMEOUT_SECONDS
        assert config.read_timeout == STORAGE_READ_TIMEOUT_SECONDS

    def test_default_endpoint(self, monkeypatch):
        monkeypatch.delenv("STORAGE_ENDPOINT_URL", raising=False)
        with patch("object_store.boto3.client") as client:
            ObjectStore.from_env()
        assert client.call_args.kwargs["endpoint_url"] is None
