"""Incremental Merkle-tree hashing of a folder into a :class:`HashIndex`.

Files and links are hashed from their content (or link target) unless the
index already holds digests for unchanged metadata. Folders are always
rebuilt from the digests of their children, which are visited concurrently.
Bulk reads go through the shared :class:`ConcurrencyGate`.
"""

from __future__ import annotations

import asyncio
import logging
import os
import stat as stat_module
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Iterable

from hashfolder.config import DEFAULT_CHUNK_SIZE
from hashfolder.gate import ConcurrencyGate
from hashfolder.hashes import (
    MultiHash,
    blob_header,
    hash_file,
    is_git_algorithm,
    tree_header,
    validate_algorithms,
)
from hashfolder.models import EntryType, FileRecord, HashRecord, UpdateResult
from hashfolder.state_db import HashIndex


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class UpdateStats:
    hashed: int = 0
    reused: int = 0
    folders: int = 0
    skipped: int = 0
    reclaimed: int = 0


@dataclass(slots=True)
class UpdateContext:
    index: HashIndex
    root: Path
    algorithms: list[str]
    last_check_time: int
    gate: ConcurrencyGate
    recompute_all: bool = False
    chunk_size: int = DEFAULT_CHUNK_SIZE
    stats: UpdateStats = field(default_factory=UpdateStats)

    def full_path(self, path: str) -> Path:
        return self.root if path == "." else self.root.joinpath(*path.split("/"))


@dataclass(slots=True)
class IndexUpdate:
    root: UpdateResult
    stats: UpdateStats


VisitFunction = Callable[[UpdateContext, str], Awaitable[UpdateResult]]


def child_path(parent: str, name: str) -> str:
    return name if parent == "." else f"{parent}/{name}"


def entry_sort_key(name: str, is_dir: bool) -> bytes:
    # Directories sort as if their name ended with "/", as in git trees.
    raw = os.fsencode(name)
    return raw + b"/" if is_dir else raw


def git_mode(record: FileRecord) -> str:
    if record.type is EntryType.FOLDER:
        return "40000"
    if record.type is EntryType.LINK:
        return "120000"
    if record.mode & stat_module.S_IXUSR:
        return "100755"
    return "100644"


def metadata_unchanged(previous: FileRecord | None, entry_type: EntryType, st: os.stat_result) -> bool:
    return (
        previous is not None
        and previous.type is entry_type
        and previous.size == st.st_size
        and previous.mode == st.st_mode
        and previous.mtime_ns == st.st_mtime_ns
        and previous.ctime_ns == st.st_ctime_ns
    )


def decide_reuse(
    algorithms: Iterable[str],
    recompute_all: bool,
    previous: FileRecord | None,
    previous_hashes: Iterable[HashRecord] | None,
    entry_type: EntryType,
    st: os.stat_result,
) -> dict[str, bytes] | None:
    """Return the stored digests when they can stand in for a recomputation."""
    if recompute_all or previous_hashes is None:
        return None
    if not metadata_unchanged(previous, entry_type, st):
        return None
    stored = {record.algorithm: record.digest for record in previous_hashes}
    if not all(algorithm in stored for algorithm in algorithms):
        return None
    return {algorithm: stored[algorithm] for algorithm in algorithms}


async def _store(context: UpdateContext, record: FileRecord, digests: dict[str, bytes], *, replace: bool) -> None:
    index = context.index
    if replace:
        await index.delete_file_hashes(record.path)
    await index.upsert_file(record)
    if replace:
        for algorithm, digest in digests.items():
            await index.upsert_file_hash(HashRecord(path=record.path, algorithm=algorithm, digest=digest))


def _hash_link_target(full_path: Path, algorithms: list[str]) -> dict[str, bytes]:
    target = os.readlink(os.fsencode(full_path))
    hasher = MultiHash(algorithms, blob_header(len(target)))
    hasher.update(target)
    return hasher.digest()


async def _visit_leaf(context: UpdateContext, path: str, entry_type: EntryType) -> UpdateResult:
    full_path = context.full_path(path)
    st = await asyncio.to_thread(os.lstat, full_path)

    previous = None if context.recompute_all else await context.index.get_file(path)
    previous_hashes = None
    if metadata_unchanged(previous, entry_type, st):
        previous_hashes = await context.index.get_file_hashes(path)
    digests = decide_reuse(
        context.algorithms, context.recompute_all, previous, previous_hashes, entry_type, st
    )

    reused = digests is not None
    if digests is None:
        if entry_type is EntryType.LINK:
            digests = await context.gate.run(_hash_link_target, full_path, context.algorithms)
        else:
            hasher = MultiHash(context.algorithms, blob_header(st.st_size))
            digests = await context.gate.run(hash_file, full_path, hasher, context.chunk_size)
        context.stats.hashed += 1
        logger.debug("Hashed %s %s", entry_type.value, path)
    else:
        context.stats.reused += 1
        logger.debug("Reused hashes of %s %s", entry_type.value, path)

    record = FileRecord(
        path=path,
        type=entry_type,
        mode=st.st_mode,
        size=st.st_size,
        ctime_ns=st.st_ctime_ns,
        mtime_ns=st.st_mtime_ns,
        last_check_time=context.last_check_time,
    )
    await _store(context, record, digests, replace=not reused)
    return UpdateResult(record=record, digests=digests)


async def visit_file(context: UpdateContext, path: str) -> UpdateResult:
    return await _visit_leaf(context, path, EntryType.FILE)


async def visit_link(context: UpdateContext, path: str) -> UpdateResult:
    return await _visit_leaf(context, path, EntryType.LINK)


def _list_dir(full_path: Path) -> list[tuple[str, VisitFunction | None]]:
    with os.scandir(full_path) as entries:
        listed = [(entry.name, entry.is_dir(follow_symlinks=False), classify(entry)) for entry in entries]
    listed.sort(key=lambda item: entry_sort_key(item[0], item[1]))
    return [(name, visit) for name, _, visit in listed]


async def _visit_children(
    context: UpdateContext, path: str, children: list[tuple[str, VisitFunction]]
) -> list[UpdateResult]:
    tasks = [asyncio.ensure_future(visit(context, child_path(path, name))) for name, visit in children]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        # Cancelled reads keep running in their worker threads after their gate slot is freed.
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def visit_folder(context: UpdateContext, path: str) -> UpdateResult:
    full_path = context.full_path(path)
    st = await asyncio.to_thread(os.stat, full_path)
    entries = await context.gate.run(_list_dir, full_path)

    children: list[tuple[str, VisitFunction]] = []
    for name, visit in entries:
        if visit is None:
            context.stats.skipped += 1
            logger.warning("Skipping unsupported entry %s", child_path(path, name))
            continue
        children.append((name, visit))

    results = await _visit_children(context, path, children)

    size = 0
    ctime_ns = st.st_ctime_ns
    mtime_ns = st.st_mtime_ns
    git_entries: list[bytes] = []
    plain_entries: list[bytes] = []
    tree_sizes = {algorithm: 0 for algorithm in context.algorithms if is_git_algorithm(algorithm)}
    for (name, _), result in zip(children, results):
        size += result.record.size
        ctime_ns = max(ctime_ns, result.record.ctime_ns)
        mtime_ns = max(mtime_ns, result.record.mtime_ns)
        raw_name = os.fsencode(name)
        git_entry = git_mode(result.record).encode("ascii") + b" " + raw_name + b"\0"
        git_entries.append(git_entry)
        plain_entries.append(result.record.type.value.encode("ascii") + b" " + raw_name + b"\0")
        for algorithm in tree_sizes:
            tree_sizes[algorithm] += len(git_entry) + len(result.digests[algorithm])

    hasher = MultiHash(
        context.algorithms,
        {algorithm: tree_header(tree_size) for algorithm, tree_size in tree_sizes.items()},
    )
    for git_entry, plain_entry, result in zip(git_entries, plain_entries, results):
        for algorithm in context.algorithms:
            hasher.update_one(algorithm, git_entry if is_git_algorithm(algorithm) else plain_entry)
            hasher.update_one(algorithm, result.digests[algorithm])
    digests = hasher.digest()

    record = FileRecord(
        path=path,
        type=EntryType.FOLDER,
        mode=st.st_mode,
        size=size,
        ctime_ns=ctime_ns,
        mtime_ns=mtime_ns,
        last_check_time=context.last_check_time,
    )
    await _store(context, record, digests, replace=True)
    context.stats.folders += 1
    logger.debug("Hashed folder %s (%d entries)", path, len(children))
    return UpdateResult(record=record, digests=digests)


def classify(entry: os.DirEntry | os.stat_result) -> VisitFunction | None:
    """Pick the visit routine for an entry; links are never followed."""
    if isinstance(entry, os.stat_result):
        mode = entry.st_mode
        if stat_module.S_ISLNK(mode):
            return visit_link
        if stat_module.S_ISDIR(mode):
            return visit_folder
        if stat_module.S_ISREG(mode):
            return visit_file
        return None
    if entry.is_symlink():
        return visit_link
    if entry.is_dir(follow_symlinks=False):
        return visit_folder
    if entry.is_file(follow_symlinks=False):
        return visit_file
    return None


async def update_index(
    index: HashIndex,
    root: Path,
    algorithms: Iterable[str],
    *,
    concurrency: int,
    recompute_all: bool = False,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    last_check_time: int | None = None,
) -> IndexUpdate:
    """Hash ``root`` into ``index`` and drop records of paths that are gone."""
    algorithms = validate_algorithms(algorithms)
    gate = ConcurrencyGate(concurrency)
    root = Path(root)
    if not root.is_dir():
        raise NotADirectoryError(f"Not a folder: {root}")

    context = UpdateContext(
        index=index,
        root=root,
        algorithms=algorithms,
        last_check_time=time.time_ns() if last_check_time is None else last_check_time,
        gate=gate,
        recompute_all=recompute_all,
        chunk_size=chunk_size,
    )
    logger.info(
        "Updating index %s from %s (%s, concurrency %d)",
        index.path,
        root,
        ", ".join(algorithms),
        concurrency,
    )
    result = await visit_folder(context, ".")
    context.stats.reclaimed = await index.remove_old_entries(context.last_check_time)
    logger.info(
        "Index updated: %d hashed, %d reused, %d folders, %d skipped, %d removed",
        context.stats.hashed,
        context.stats.reused,
        context.stats.folders,
        context.stats.skipped,
        context.stats.reclaimed,
    )
    return IndexUpdate(root=result, stats=context.stats)
