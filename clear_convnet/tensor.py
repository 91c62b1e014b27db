import numpy as np
from typing import Sequence, Union
import logging

ArrayLike = Union[Sequence[float], np.ndarray]


class ShapeError(ValueError):
    """Raised when a vector, weight or bias block has the wrong number of elements."""


def to_vector(maps: np.ndarray) -> np.ndarray:
    """Flattens a (depth, height, width) volume into a 1-D vector.

    Order is depth-major, then row-major, then column.
    """
    return np.ascontiguousarray(maps, dtype=float).reshape(-1).copy()


def to_maps(vector: ArrayLike, height: int, width: int, depth: int) -> np.ndarray:
    """Reshapes a flat vector into a (depth, height, width) volume.

    Args:
        vector: Flat input of length height * width * depth.
        height: Map height.
        width: Map width.
        depth: Number of maps.

    Returns:
        A new float array of shape (depth, height, width).

    Raises:
        ShapeError: If the vector length does not equal height * width * depth.
    """
    vector = np.asarray(vector, dtype=float).reshape(-1)
    expected = height * width * depth
    if vector.size != expected:
        raise ShapeError(
            f"Cannot reshape vector of length {vector.size} into "
            f"{depth}x{height}x{width} maps (expected {expected} elements)"
        )
    logging.debug(f"to_maps - {vector.size} elements -> ({depth}, {height}, {width})")
    return vector.reshape(depth, height, width).copy()


def to_matrix(vector: ArrayLike, height: int, width: int) -> np.ndarray:
    """Reshapes a flat vector into a single (height, width) matrix."""
    return to_maps(vector, height, width, 1)[0]
