from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class EntryType(str, Enum):
    FILE = "file"
    FOLDER = "folder"
    LINK = "link"


@dataclass(slots=True)
class FileRecord:
    path: str
    type: EntryType
    mode: int
    size: int
    ctime_ns: int
    mtime_ns: int
    last_check_time: int


@dataclass(slots=True)
class HashRecord:
    path: str
    algorithm: str
    digest: bytes


@dataclass(slots=True)
class DuplicateGroup:
    type: EntryType
    digest: bytes
    size: int
    count: int


@dataclass(slots=True)
class UpdateResult:
    record: FileRecord
    digests: dict[str, bytes]
