"""Unit tests for docvault.storage — key derivation and the local backend."""

import os

import pytest

from docvault.engine.errors import StorageNotFoundError
from docvault.storage import create_file_store
from docvault.storage.base import (
    STORAGE_KEY_PATTERN,
    SignedUrlPolicy,
    generate_storage_key,
    is_valid_storage_key,
    sanitize_filename,
)
from docvault.engine.config import StorageConfig
from docvault.storage.local import LocalFileStore


class TestSanitizeFilename:

    @pytest.mark.parametrize("name", [
        "../../etc/passwd",
        "a;rm -rf.png",
        "my photo (1).jpg",
        "..\\..\\windows\\system32",
        "$(whoami)`id`.gif",
        "naïve café.webp",
    ])
    def test_only_permitted_characters_survive(self, name):
        cleaned = sanitize_filename(name)
        assert STORAGE_KEY_PATTERN.match(cleaned)
        assert ".." not in cleaned
        assert "/" not in cleaned

    def test_traversal_example(self):
        assert sanitize_filename("../../etc/passwd") == "._._etc_passwd"

    def test_spaces_become_underscores(self):
        assert sanitize_filename("my photo.png") == "my_photo.png"

    def test_empty_name(self):
        assert sanitize_filename("") == "file"
        assert sanitize_filename("...") == "file"

    def test_long_name_keeps_extension(self):
        cleaned = sanitize_filename("a" * 500 + ".png")
        assert len(cleaned) <= 200
        assert cleaned.endswith(".png")


class TestStorageKeys:

    def test_identical_names_never_collide(self):
        keys = {generate_storage_key("photo.png") for _ in range(200)}
        assert len(keys) == 200

    def test_key_shape(self):
        key = generate_storage_key("../../etc/passwd")
        prefix, _, rest = key.partition("_")
        assert len(prefix) == 32
        assert rest == "._._etc_passwd"
        assert is_valid_storage_key(key)

    @pytest.mark.parametrize("key", ["", "../x", "a/b", "a b", "a..b"])
    def test_invalid_keys(self, key):
        assert not is_valid_storage_key(key)


class TestLocalFileStore:

    def setup_method(self):
        self.data = b"\x89PNG\r\n\x1a\n" + b"\x01" * 24

    def test_store_and_read(self, tmp_path):
        store = LocalFileStore(str(tmp_path))
        key = store.store(self.data, {"original_name": "photo.png"})
        assert key.endswith("_photo.png")
        assert store.read(key) == self.data
        assert store.exists(key)
        assert (tmp_path / key).is_file()

    def test_no_partial_files_left(self, tmp_path):
        store = LocalFileStore(str(tmp_path))
        store.store(self.data, {"original_name": "photo.png"})
        assert not [p for p in os.listdir(tmp_path) if p.endswith(".part")]

    def test_same_name_twice(self, tmp_path):
        store = LocalFileStore(str(tmp_path))
        k1 = store.store(b"first", {"original_name": "photo.png"})
        k2 = store.store(b"second", {"original_name": "photo.png"})
        assert k1 != k2
        assert store.read(k1) == b"first"
        assert store.read(k2) == b"second"

    def test_read_missing(self, tmp_path):
        store = LocalFileStore(str(tmp_path))
        with pytest.raises(StorageNotFoundError):
            store.read("0" * 32 + "_missing.png")

    def test_traversal_key_cannot_escape_root(self, tmp_path):
        root = tmp_path / "vault"
        store = LocalFileStore(str(root))
        (tmp_path / "secret.txt").write_text("top secret")
        with pytest.raises(StorageNotFoundError):
            store.read("../secret.txt")
        assert store.exists("../secret.txt") is False
        assert store.delete("../secret.txt") is False
        assert (tmp_path / "secret.txt").exists()

    def test_delete(self, tmp_path):
        store = LocalFileStore(str(tmp_path))
        key = store.store(self.data, {"original_name": "photo.png"})
        assert store.delete(key) is True
        assert store.exists(key) is False
        assert store.delete(key) is False

    def test_locator_is_proxy_path_for_both_policies(self, tmp_path):
        store = LocalFileStore(str(tmp_path))
        key = store.store(self.data, {"original_name": "photo.png"})
        assert store.locator(key) == f"/api/secure-file/{key}"
        assert store.locator(key, SignedUrlPolicy.VIEW) == f"/api/secure-file/{key}"

    def test_factory_selects_local(self, tmp_path):
        store = create_file_store(StorageConfig(backend="local", local_root=str(tmp_path / "x")))
        assert isinstance(store, LocalFileStore)
        assert store.root.is_dir()
