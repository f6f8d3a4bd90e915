"""Helper functions for chunking iterables."""
from collections.abc import Iterable, Iterator
from itertools import islice
from typing import TypeVar

T = TypeVar("T")


def chunked(iterable: Iterable[T], size: int) -> Iterator[list[T]]:
    """Yield successive lists of at most ``size`` items, preserving order."""
    if size <= 0:
        raise ValueError(f"Chunk size must be positive, got {size}")
    iterator = iter(iterable)
    while batch := list(islice(iterator, size)):
        yield batch


def chunk_count(total: int, size: int) -> int:
    """Number of chunks ``chunked`` yields for ``total`` items."""
    if size <= 0:
        raise ValueError(f"Chunk size must be positive, got {size}")
    return -(-total // size)
