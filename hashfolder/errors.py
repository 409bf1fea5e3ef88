from __future__ import annotations


class HashfolderError(RuntimeError):
    """Base class for errors reported by hashfolder."""


class IndexVersionMismatch(HashfolderError):
    def __init__(self, path: object, expected: str, found: str | None) -> None:
        super().__init__(
            f"File '{path}' contains an incompatible version of a hashfolder database, "
            f"expected {expected}, found {found}"
        )
        self.expected = expected
        self.found = found


class IndexCorrupt(HashfolderError):
    def __init__(self, path: object) -> None:
        super().__init__(f"File '{path}' does not contain a hashfolder database.")


class UnknownAlgorithm(HashfolderError, ValueError):
    def __init__(self, algorithm: str) -> None:
        super().__init__(
            f"Unknown hash algorithm: {algorithm}. Run `hashfolder algorithms` to list supported names."
        )
        self.algorithm = algorithm


class NoHashesAvailable(HashfolderError):
    pass
