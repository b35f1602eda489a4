"""Batching helper shared by the classifier and the annotation backend."""

from typing import List, Sequence, TypeVar

from contract_ai.utils.logging import get_logger

LOGGER = get_logger(__name__)

T = TypeVar("T")


def create_batches(items: Sequence[T], batch_size: int) -> List[List[T]]:
    """Split items into contiguous batches of at most ``batch_size``.

    Example:
        >>> create_batches([1, 2, 3, 4, 5], 2)
        [[1, 2], [3, 4], [5]]
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")

    batches = [list(items[i:i + batch_size]) for i in range(0, len(items), batch_size)]

    LOGGER.debug(
        f"Created {len(batches)} batches from {len(items)} items "
        f"(batch_size={batch_size})"
    )
    return batches
