import hashlib

import pytest

from hashfolder.errors import UnknownAlgorithm
from hashfolder.hashes import (
    HASH_ALGORITHMS,
    MultiHash,
    blob_header,
    hash_file,
    is_git_algorithm,
    normalize_algorithm,
    raw_algorithm,
    validate_algorithms,
)

EMPTY_BLOB_SHA1 = "e69de29bb2d1d6434b8b29ae775ad8c2e48c5391"
HELLO_BLOB_SHA1 = "3b18e512dba79e4c8300dd08aeb37f8e728b8dad"


def test_registry_has_git_variant_for_every_raw_algorithm():
    raw = [name for name in HASH_ALGORITHMS if not is_git_algorithm(name)]
    assert "SHA256" in raw
    assert "SHA1" in raw
    for name in raw:
        assert f"GIT-{name}" in HASH_ALGORITHMS
    assert not any(name.startswith("SHAKE") for name in raw)


def test_normalize_is_case_insensitive():
    assert normalize_algorithm("sha256") == "SHA256"
    assert normalize_algorithm(" git-sha1 ") == "GIT-SHA1"
    assert raw_algorithm("GIT-SHA1") == "SHA1"
    assert raw_algorithm("SHA1") == "SHA1"


def test_unknown_algorithm_is_rejected():
    with pytest.raises(UnknownAlgorithm) as excinfo:
        validate_algorithms(["SHA256", "not-a-hash"])
    assert isinstance(excinfo.value, ValueError)
    assert excinfo.value.algorithm == "not-a-hash"


def test_validate_removes_duplicates_keeping_order():
    assert validate_algorithms(["git-sha1", "SHA256", "GIT-SHA1"]) == ["GIT-SHA1", "SHA256"]
    with pytest.raises(ValueError):
        validate_algorithms([])


def test_git_blob_digests_match_git():
    empty = MultiHash(["GIT-SHA1"], blob_header(0))
    assert empty.digest()["GIT-SHA1"].hex() == EMPTY_BLOB_SHA1

    content = b"hello world\n"
    hasher = MultiHash(["GIT-SHA1", "SHA1"], blob_header(len(content)))
    hasher.update(content[:5])
    hasher.update(content[5:])
    digests = hasher.digest()
    assert digests["GIT-SHA1"].hex() == HELLO_BLOB_SHA1
    # The header only primes git variants.
    assert digests["SHA1"] == hashlib.sha1(content).digest()


def test_per_algorithm_headers():
    hasher = MultiHash(["GIT-SHA1", "GIT-SHA256"], {"GIT-SHA1": b"one", "GIT-SHA256": b"two"})
    hasher.update_one("GIT-SHA1", b"x")
    digests = hasher.digest()
    assert digests["GIT-SHA1"] == hashlib.sha1(b"onex").digest()
    assert digests["GIT-SHA256"] == hashlib.sha256(b"two").digest()


def test_digest_is_terminal():
    hasher = MultiHash(["SHA256"])
    hasher.digest()
    with pytest.raises(RuntimeError):
        hasher.update(b"late")
    with pytest.raises(RuntimeError):
        hasher.digest()


def test_hash_file_streams_in_chunks(tmp_path):
    path = tmp_path / "data.bin"
    payload = bytes(range(256)) * 40
    path.write_bytes(payload)

    digests = hash_file(path, MultiHash(["SHA256", "GIT-SHA1"], blob_header(len(payload))), chunk_size=100)

    assert digests["SHA256"] == hashlib.sha256(payload).digest()
    assert digests["GIT-SHA1"] == hashlib.sha1(blob_header(len(payload)) + payload).digest()
