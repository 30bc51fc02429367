"""
Tests for the blob storage backends
"""

import io
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from kyc_service.core.errors import ConfigurationError, DatabaseError, NotFound
from kyc_service.services import storage
from kyc_service.services.storage import LocalDocumentStore, S3DocumentStore


class TestLocalDocumentStore:
    """Tests for LocalDocumentStore"""

    @pytest.mark.asyncio
    async def test_write_read_delete(self, tmp_path):
        store = LocalDocumentStore(tmp_path)
        await store.write("documents/abc", b"ciphertext")

        assert (tmp_path / "documents" / "abc").read_bytes() == b"ciphertext"
        assert await store.read("documents/abc") == b"ciphertext"

        await store.delete("documents/abc")
        with pytest.raises(NotFound):
            await store.read("documents/abc")

    @pytest.mark.asyncio
    async def test_deleting_missing_blob_is_a_no_op(self, tmp_path):
        await LocalDocumentStore(tmp_path).delete("documents/never-written")

    @pytest.mark.asyncio
    async def test_filesystem_errors_are_typed(self, tmp_path):
        blocker = tmp_path / "documents"
        blocker.write_bytes(b"not a directory")
        with pytest.raises(DatabaseError):
            await LocalDocumentStore(tmp_path).write("documents/abc", b"x")

    @pytest.mark.asyncio
    async def test_keys_cannot_escape_base_path(self, tmp_path):
        store = LocalDocumentStore(tmp_path / "base")
        with pytest.raises(ConfigurationError):
            await store.write("../outside", b"x")


class TestS3DocumentStore:
    """Tests for S3DocumentStore with a mocked boto3 client"""

    @pytest.fixture
    def client(self):
        return MagicMock()

    @pytest.fixture
    def store(self, client):
        return S3DocumentStore("kyc-bucket", "kyc-documents/", client=client)

    @pytest.mark.asyncio
    async def test_write_uses_prefix_and_sse(self, store, client):
        await store.write("documents/abc", b"ciphertext")

        args, kwargs = client.upload_fileobj.call_args
        assert args[0].read() == b"ciphertext"
        assert args[1:] == ("kyc-bucket", "kyc-documents/documents/abc")
        assert kwargs["ExtraArgs"]["ServerSideEncryption"] == "AES256"

    @pytest.mark.asyncio
    async def test_read(self, store, client):
        client.get_object.return_value = {"Body": io.BytesIO(b"ciphertext")}

        assert await store.read("documents/abc") == b"ciphertext"
        client.get_object.assert_called_once_with(Bucket="kyc-bucket", Key="kyc-documents/documents/abc")

    @pytest.mark.asyncio
    async def test_missing_key(self, store, client):
        client.get_object.side_effect = ClientError({"Error": {"Code": "NoSuchKey"}}, "GetObject")
        with pytest.raises(NotFound):
            await store.read("documents/abc")

    @pytest.mark.asyncio
    async def test_other_client_errors_are_typed(self, store, client):
        client.get_object.side_effect = ClientError({"Error": {"Code": "AccessDenied"}}, "GetObject")
        with pytest.raises(DatabaseError) as exc_info:
            await store.read("documents/abc")
        assert isinstance(exc_info.value.__cause__, ClientError)

    @pytest.mark.asyncio
    async def test_write_failure_is_typed(self, store, client):
        client.upload_fileobj.side_effect = EndpointConnectionError(endpoint_url="https://s3.test")
        with pytest.raises(DatabaseError):
            await store.write("documents/abc", b"ciphertext")

    @pytest.mark.asyncio
    async def test_delete(self, store, client):
        await store.delete("documents/abc")
        client.delete_object.assert_called_once_with(Bucket="kyc-bucket", Key="kyc-documents/documents/abc")

    def test_bucket_required(self):
        with pytest.raises(ConfigurationError):
            S3DocumentStore("", client=MagicMock())


def test_backend_selection(monkeypatch, tmp_path):
    monkeypatch.setattr(storage.settings, "DOCUMENT_STORAGE_BACKEND", "local")
    monkeypatch.setattr(storage.settings, "DOCUMENT_STORAGE_PATH", str(tmp_path))
    assert isinstance(storage.get_document_store(), LocalDocumentStore)

    monkeypatch.setattr(storage.settings, "DOCUMENT_STORAGE_BACKEND", "ftp")
    with pytest.raises(ConfigurationError):
        storage.get_document_store()
