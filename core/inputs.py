"""Input validation and content addressing for documents and videos."""

from __future__ import annotations

import hashlib
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from .errors import InputError

__all__ = [
    "DOCUMENT_EXTENSIONS",
    "HashedFile",
    "InputKind",
    "VIDEO_EXTENSIONS",
    "check_input_path",
    "hash_file",
    "hash_files",
]

LOGGER = logging.getLogger("slidesync.inputs")

_CHUNK_SIZE = 1024 * 1024

DOCUMENT_EXTENSIONS = frozenset({".pdf"})
VIDEO_EXTENSIONS = frozenset(
    {
        ".3gp",
        ".avi",
        ".flv",
        ".m2ts",
        ".m4v",
        ".mkv",
        ".mov",
        ".mp4",
        ".mpeg",
        ".mpg",
        ".mts",
        ".ogv",
        ".ts",
        ".webm",
        ".wmv",
    }
)


class InputKind(str, Enum):
    DOCUMENT = "document"
    VIDEO = "video"


@dataclass(frozen=True, slots=True)
class HashedFile:
    """A file identified by the SHA-256 of its bytes.

    Equality and hashing use ``hash`` only, so two paths with identical
    content collapse into one entry in sets and dicts.
    """

    path: Path = field(compare=False)
    hash: str
    kind: Optional[InputKind] = field(default=None, compare=False)


def check_input_path(path: str | os.PathLike[str]) -> InputKind:
    """Classify *path* by extension, rejecting directories and unknown types."""

    candidate = Path(path)
    if candidate.is_dir():
        raise InputError(f"The path '{candidate}' is a directory, but a file was expected")
    if not candidate.exists():
        raise InputError(f"The path '{candidate}' does not exist")
    suffix = candidate.suffix.lower()
    if suffix in DOCUMENT_EXTENSIONS:
        return InputKind.DOCUMENT
    if suffix in VIDEO_EXTENSIONS:
        return InputKind.VIDEO
    if not suffix:
        raise InputError(f"Unsupported file without extension '{candidate}'")
    raise InputError(f"Unsupported file extension '{suffix}' in path '{candidate}'")


def hash_file(path: str | os.PathLike[str]) -> str:
    """Return the lowercase hex SHA-256 digest of the file at *path*."""

    digest = hashlib.sha256()
    try:
        with Path(path).open("rb") as handle:
            for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
                digest.update(chunk)
    except OSError as exc:
        raise InputError(f"Cannot read '{path}': {exc}") from exc
    return digest.hexdigest()


def hash_files(
    paths: Iterable[str | os.PathLike[str]],
    *,
    max_workers: Optional[int] = None,
) -> List[HashedFile]:
    """Validate and hash every path, preserving input order.

    All paths are classified before any file is read, so an invalid input
    fails the call without doing any hashing work.
    """

    checked: Sequence[tuple[Path, InputKind]] = [
        (Path(p).resolve(), check_input_path(p)) for p in paths
    ]
    if not checked:
        return []
    workers = max_workers or min(len(checked), os.cpu_count() or 1)
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="hash") as executor:
        digests = list(executor.map(lambda item: hash_file(item[0]), checked))
    hashed = [
        HashedFile(path=path, hash=digest, kind=kind)
        for (path, kind), digest in zip(checked, digests)
    ]
    for item in hashed:
        LOGGER.debug("Hashed %s -> %s", item.path, item.hash)
    return hashed
