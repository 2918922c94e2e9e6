"""
Helpers for object keys and batching.

This module provides helper functions for:
- Deriving the filename the editing service sees from an S3 key
- Classifying staged files by extension
- Splitting work into fixed-size batches
"""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Iterable, Iterator, List, Sequence, TypeVar

T = TypeVar("T")

DEFAULT_OUTPUT_EXTENSION = ".jpg"

CONTENT_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".webp": "image/webp",
}


def key_basename(key: str) -> str:
    """
    Return the last path segment of an object key.

    Example:
        >>> key_basename("staging/gallery-1/IMG_0001.CR3")
        "IMG_0001.CR3"
    """
    return PurePosixPath(key).name or key


def key_extension(key: str) -> str:
    """Lower-cased extension including the dot, or an empty string."""
    return PurePosixPath(key_basename(key)).suffix.lower()


def all_match_extensions(keys: Iterable[str], extensions: Iterable[str]) -> bool:
    """
    True when every key ends in one of ``extensions`` (case-insensitive).

    An empty ``keys`` never matches.
    """
    allowed = {ext.lower() for ext in extensions}
    keys = list(keys)
    return bool(keys) and all(key_extension(key) in allowed for key in keys)


def output_extension(file_name: str) -> str:
    ext = key_extension(file_name)
    return ext if ext in CONTENT_TYPES else DEFAULT_OUTPUT_EXTENSION


def content_type_for(file_name: str) -> str:
    return CONTENT_TYPES.get(output_extension(file_name), "image/jpeg")


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """
    Yield consecutive slices of at most ``size`` items.

    Raises:
        ValueError: If size is not positive
    """
    if size < 1:
        raise ValueError("Batch size must be at least 1")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])
