"""Multi-algorithm streaming digests, with git-object compatible variants.

An algorithm name prefixed with ``GIT-`` uses the underlying raw algorithm,
but the digest is primed with a git object header (``blob <len>\\0`` or
``tree <len>\\0``) so that the result matches what git itself computes.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from hashfolder.errors import UnknownAlgorithm


GIT_PREFIX = "GIT-"


def _raw_hash_algorithms() -> dict[str, str]:
    algorithms: dict[str, str] = {}
    for name in sorted(hashlib.algorithms_available):
        upper = name.upper()
        # XOF digests need an explicit output length.
        if upper.startswith("SHAKE"):
            continue
        try:
            hashlib.new(name)
        except ValueError:
            continue
        algorithms.setdefault(upper, name)
    return algorithms


RAW_HASH_ALGORITHMS = _raw_hash_algorithms()
HASH_ALGORITHMS = (
    *RAW_HASH_ALGORITHMS,
    *(f"{GIT_PREFIX}{name}" for name in RAW_HASH_ALGORITHMS),
)


def is_git_algorithm(algorithm: str) -> bool:
    return algorithm.startswith(GIT_PREFIX)


def raw_algorithm(algorithm: str) -> str:
    return algorithm[len(GIT_PREFIX):] if is_git_algorithm(algorithm) else algorithm


def normalize_algorithm(algorithm: str) -> str:
    name = algorithm.strip().upper()
    if name not in HASH_ALGORITHMS:
        raise UnknownAlgorithm(algorithm)
    return name


def validate_algorithms(algorithms: Iterable[str]) -> list[str]:
    """Normalize requested names, dropping duplicates but keeping order."""
    result: list[str] = []
    for algorithm in algorithms:
        name = normalize_algorithm(algorithm)
        if name not in result:
            result.append(name)
    if not result:
        raise ValueError("At least one hash algorithm is required.")
    return result


def new_hash(algorithm: str, git_header: bytes = b"") -> Any:
    hash_obj = hashlib.new(RAW_HASH_ALGORITHMS[raw_algorithm(algorithm)])
    if is_git_algorithm(algorithm):
        hash_obj.update(git_header)
    return hash_obj


def blob_header(size: int) -> bytes:
    return f"blob {size}\0".encode("utf-8")


def tree_header(size: int) -> bytes:
    return f"tree {size}\0".encode("utf-8")


class MultiHash:
    """One streaming digest per algorithm, fed together.

    ``git_header`` primes the ``GIT-`` algorithms only. It is either shared
    by all of them or given per algorithm.
    """

    def __init__(
        self,
        algorithms: Iterable[str],
        git_header: bytes | Mapping[str, bytes] = b"",
    ) -> None:
        self._hashes: dict[str, Any] = {}
        for algorithm in algorithms:
            header = git_header if isinstance(git_header, bytes) else git_header.get(algorithm, b"")
            self._hashes[algorithm] = new_hash(algorithm, header)
        if not self._hashes:
            raise ValueError("MultiHash requires at least one algorithm.")
        self._finalized = False

    @property
    def algorithms(self) -> list[str]:
        return list(self._hashes)

    def update(self, chunk: bytes) -> None:
        self._check_open()
        for hash_obj in self._hashes.values():
            hash_obj.update(chunk)

    def update_one(self, algorithm: str, chunk: bytes) -> None:
        self._check_open()
        self._hashes[algorithm].update(chunk)

    def digest(self) -> dict[str, bytes]:
        self._check_open()
        self._finalized = True
        return {name: hash_obj.digest() for name, hash_obj in self._hashes.items()}

    def _check_open(self) -> None:
        if self._finalized:
            raise RuntimeError("MultiHash was already finalized.")


def hash_file(path: Path, hasher: MultiHash, chunk_size: int = 1024 * 1024) -> dict[str, bytes]:
    with path.open("rb") as fh:
        while True:
            chunk = fh.read(chunk_size)
            if not chunk:
                break
            hasher.update(chunk)
    return hasher.digest()
