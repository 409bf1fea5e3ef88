from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path


CONFIG_FILENAME = ".hashfolder.json"
DEFAULT_ALGORITHMS = ("SHA256",)
DEFAULT_CHUNK_SIZE = 1024 * 1024
CONCURRENCY_ENV = "HASHFOLDER_CONCURRENCY"
ALGORITHMS_ENV = "HASHFOLDER_ALGORITHMS"


def default_concurrency() -> int:
    return os.cpu_count() or 1


@dataclass(slots=True)
class HashfolderConfig:
    concurrency: int = field(default_factory=default_concurrency)
    algorithms: tuple[str, ...] = DEFAULT_ALGORITHMS
    chunk_size: int = DEFAULT_CHUNK_SIZE


def load_config(base_dir: Path | None = None) -> HashfolderConfig:
    """Load defaults, then `.hashfolder.json`, then environment overrides."""
    config = HashfolderConfig()

    path = Path(base_dir or ".") / CONFIG_FILENAME
    if path.exists():
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
        if "concurrency" in data:
            config.concurrency = _parse_concurrency(data["concurrency"], source=str(path))
        if "algorithms" in data:
            config.algorithms = _parse_algorithms(data["algorithms"], source=str(path))
        if "chunk_size" in data:
            config.chunk_size = _parse_chunk_size(data["chunk_size"], source=str(path))

    env_concurrency = os.getenv(CONCURRENCY_ENV, "").strip()
    if env_concurrency:
        config.concurrency = _parse_concurrency(env_concurrency, source=CONCURRENCY_ENV)
    env_algorithms = os.getenv(ALGORITHMS_ENV, "").strip()
    if env_algorithms:
        config.algorithms = _parse_algorithms(env_algorithms, source=ALGORITHMS_ENV)
    return config


def _parse_concurrency(value: object, *, source: str) -> int:
    try:
        concurrency = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid concurrency in {source}: {value!r}") from exc
    if concurrency < 1:
        raise ValueError(f"Invalid concurrency in {source}: {value!r}")
    return concurrency


def _parse_chunk_size(value: object, *, source: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"Invalid chunk_size in {source}: {value!r}")
    return value


def _parse_algorithms(value: object, *, source: str) -> tuple[str, ...]:
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, list) and all(isinstance(item, str) for item in value):
        items = value
    else:
        raise ValueError(f"Invalid algorithms in {source}: {value!r}")
    return tuple(item.strip() for item in items if item.strip())
