import pytest

from book_importer.core.errors import BlobNotFoundError, BlobStorageError
from book_importer.storage.blob_store import LocalBlobStore


def test_local_store_upload_download_delete(tmp_path):
    store = LocalBlobStore(tmp_path, "book-imports")

    locator = store.upload(b"isbn\n9780306406157\n", "lib-1/2024/03/09/abc-books.csv")

    assert locator == "book-imports/lib-1/2024/03/09/abc-books.csv"
    assert store.download(locator).read() == b"isbn\n9780306406157\n"

    store.delete(locator)
    with pytest.raises(BlobNotFoundError):
        store.download(locator)


def test_local_store_rejects_path_traversal(tmp_path):
    store = LocalBlobStore(tmp_path, "book-imports")
    with pytest.raises(BlobStorageError):
        store.upload(b"x", "../outside.csv")
    with pytest.raises(BlobStorageError):
        store.download("other-container/file.csv")
